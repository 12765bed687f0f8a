"""SQLAlchemy ORM models for b2shelf."""

from b2shelf.models.base import Base
from b2shelf.models.file_record import FileRecord
from b2shelf.models.folder import Folder

__all__ = [
    "Base",
    "FileRecord",
    "Folder",
]
