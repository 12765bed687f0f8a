"""Human-readable size and duration formatting."""

import math

SIZE_UNITS = ("Bytes", "KB", "MB", "GB", "TB")


def format_size(num_bytes: int) -> str:
    """Format a byte count the way the file list shows it (1024 base)."""
    if num_bytes <= 0:
        return "0 Bytes"
    i = min(int(math.floor(math.log(num_bytes, 1024))), len(SIZE_UNITS) - 1)
    value = round(num_bytes / 1024 ** i, 2)
    return f"{value:g} {SIZE_UNITS[i]}"


def format_duration(seconds: float | None) -> str:
    """Format seconds as m:ss."""
    if seconds is None or math.isnan(seconds):
        return "0:00"
    minutes, secs = divmod(int(seconds), 60)
    return f"{minutes}:{secs:02d}"
