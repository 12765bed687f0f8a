"""b2shelf configuration — Pydantic BaseSettings loaded from .env."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from b2shelf.errors import ConfigError

logger = logging.getLogger(__name__)

PLACEHOLDER_ACCOUNTS = ("account1", "account2")


@dataclass(frozen=True)
class Account:
    """One logical storage identity bound to a single B2 bucket."""

    key: str
    bucket_id: str = ""
    bucket_name: str = "Unconfigured"
    key_id: str = ""
    application_key: str = ""

    @property
    def is_configured(self) -> bool:
        return bool(self.bucket_id and self.key_id and self.application_key)


class Settings(BaseSettings):
    """Application settings."""

    app_name: str = "b2shelf"
    debug: bool = False
    log_level: str = "INFO"

    # Network
    host: str = "127.0.0.1"
    port: int = 3000
    cors_origins: list[str] = ["*"]

    # Account map: {"account1": {"bucketId", "bucketName", "keyId", "applicationKey"}, ...}
    bucket_config: str = ""

    # Backblaze B2
    b2_api_url: str = "https://api.backblazeb2.com"
    b2_api_version: str = "v2"
    b2_timeout_seconds: float = 60.0
    upload_author: str = "b2shelf"
    list_page_size: int = 1000
    download_url_ttl_seconds: int = 86400  # 24 hours

    # Listing & usage cache
    listing_cache_ttl_seconds: float = 300.0  # 5 minutes

    # Uploads
    max_upload_bytes: int = 1000 * 1024 * 1024
    thumbnail_size: str = "320x180"
    thumbnail_position: float = 0.1  # fraction of the duration
    ffmpeg_timeout_seconds: int = 60

    # Storage paths (relative resolved from backend/ at runtime)
    data_dir: str = "./data"
    temp_dir: str = "./data/temp"
    database_path: str = "./data/b2shelf.db"

    model_config = SettingsConfigDict(
        env_file=(".env", "../.env"),
        env_file_encoding="utf-8",
        env_prefix="B2SHELF_",
        extra="ignore",
    )

    @field_validator("cors_origins", mode="before")
    @classmethod
    def assemble_cors_origins(cls, value: list[str] | str) -> list[str]:
        if isinstance(value, str) and not value.startswith("["):
            return [o.strip() for o in value.split(",") if o.strip()]
        if isinstance(value, list):
            return value
        return ["*"]

    @model_validator(mode="after")
    def _resolve_paths(self) -> "Settings":
        """Ensure data directories are absolute."""
        base = Path(__file__).resolve().parent.parent  # backend/
        for field in ("data_dir", "temp_dir", "database_path"):
            val = getattr(self, field)
            if not Path(val).is_absolute():
                setattr(self, field, str(base / val))
        return self

    @property
    def accounts(self) -> dict[str, Account]:
        return load_accounts(self.bucket_config)


def _placeholder_accounts() -> dict[str, Account]:
    return {key: Account(key=key) for key in PLACEHOLDER_ACCOUNTS}


def load_accounts(raw: str | None) -> dict[str, Account]:
    """Parse the JSON account map.

    A missing or malformed map degrades to unconfigured placeholder
    accounts instead of failing startup.
    """
    if not raw:
        logger.warning("No bucket configuration set (B2SHELF_BUCKET_CONFIG) — using placeholders")
        return _placeholder_accounts()

    try:
        data = json.loads(raw)
        if not isinstance(data, dict) or not data:
            raise ConfigError("bucket configuration must be a non-empty JSON object")
        accounts: dict[str, Account] = {}
        for key, entry in data.items():
            if not isinstance(entry, dict):
                raise ConfigError(f"entry for {key!r} must be an object")
            accounts[key] = Account(
                key=key,
                bucket_id=str(entry.get("bucketId") or ""),
                bucket_name=str(entry.get("bucketName") or "Unconfigured"),
                key_id=str(entry.get("keyId") or ""),
                application_key=str(entry.get("applicationKey") or ""),
            )
    except (json.JSONDecodeError, ConfigError) as e:
        logger.error("Error parsing bucket config, using placeholders: %s", e)
        return _placeholder_accounts()

    for account in accounts.values():
        if not account.is_configured:
            logger.warning("Account %s is missing bucket id or credentials", account.key)
    return accounts


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
