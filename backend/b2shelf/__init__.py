"""b2shelf — folder-aware file manager over Backblaze B2."""

__version__ = "0.3.0"
