"""Folder model — virtual folder tree with a materialized path."""

from datetime import datetime
from typing import Optional

from sqlalchemy import ForeignKey, String, DateTime, Text
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from b2shelf.models.base import Base


class Folder(Base):
    __tablename__ = "folders"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    parent_id: Mapped[Optional[str]] = mapped_column(
        String, ForeignKey("folders.id"), nullable=True, index=True
    )
    path: Mapped[str] = mapped_column(Text, nullable=False, index=True)
    account: Mapped[str] = mapped_column(String(100), default="account1", nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), onupdate=func.now(), nullable=False
    )

    def __repr__(self) -> str:
        return f"<Folder(id={self.id}, path='{self.path}')>"
