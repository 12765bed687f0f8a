"""Storage key derivation.

Remote keys look like ``files/<sanitized-title>_<unixMillis>.<ext>`` and
``thumbnails/<sanitized-title>_<unixMillis>.jpg``. The millisecond suffix
keeps two uploads with the same title from colliding.
"""

from __future__ import annotations

import re
import time
from dataclasses import dataclass
from pathlib import PurePosixPath

FILES_PREFIX = "files/"
THUMBNAILS_PREFIX = "thumbnails/"

_UNSAFE = re.compile(r"[^A-Za-z0-9]")
_KEY_NAME = re.compile(r"^(?P<stem>.*)_(?P<ts>\d+)(?P<ext>\.[^.]*)?$")


def now_millis() -> int:
    return int(time.time() * 1000)


def sanitize_title(title: str) -> str:
    """Replace every character outside [A-Za-z0-9] with an underscore."""
    return _UNSAFE.sub("_", title)


def extension_of(filename: str) -> str:
    """Extension including the dot, or an empty string."""
    return PurePosixPath(filename).suffix


@dataclass(frozen=True)
class StorageKey:
    """A derived pair of file and thumbnail keys sharing one base name."""

    base_name: str
    extension: str

    @property
    def file_name(self) -> str:
        return f"{self.base_name}{self.extension}"

    @property
    def key(self) -> str:
        return f"{FILES_PREFIX}{self.file_name}"

    @property
    def thumbnail_file_name(self) -> str:
        return f"{self.base_name}.jpg"

    @property
    def thumbnail_key(self) -> str:
        return f"{THUMBNAILS_PREFIX}{self.thumbnail_file_name}"


def derive_storage_key(title: str, extension: str, timestamp_ms: int | None = None) -> StorageKey:
    ts = now_millis() if timestamp_ms is None else timestamp_ms
    return StorageKey(base_name=f"{sanitize_title(title)}_{ts}", extension=extension)


def strip_prefix(key: str) -> str:
    """``files/x.png`` -> ``x.png`` (any single namespace)."""
    return key.split("/", 1)[1] if "/" in key else key


def title_from_key(key: str) -> str:
    """Best-effort display title for a remote object with no local record."""
    name = strip_prefix(key)
    match = _KEY_NAME.match(name)
    stem = match.group("stem") if match else PurePosixPath(name).stem
    return stem.replace("_", " ").strip()


def file_url(account: str, file_name: str) -> str:
    return f"/files/{account}/{file_name}"


def thumbnail_url(account: str, file_name: str) -> str:
    return f"/thumbnails/{account}/{file_name}"


def thumbnail_key_from_url(url: str) -> str:
    """``/thumbnails/account1/x_1.jpg`` -> ``thumbnails/x_1.jpg``."""
    return f"{THUMBNAILS_PREFIX}{url.rstrip('/').rsplit('/', 1)[-1]}"
