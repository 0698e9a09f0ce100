"""Configuration management for the payables ingestion pipeline."""

import os
from dataclasses import dataclass
from typing import Optional

TRUTHY = {"1", "true", "yes", "on"}


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return value.strip().lower() in TRUTHY


@dataclass
class Config:
    """Application configuration loaded from environment variables."""

    # Database
    database_url: str

    # Mailbox
    imap_host: str
    imap_user: str
    imap_password: Optional[str] = None
    imap_access_token: Optional[str] = None  # XOAUTH2 instead of password login
    imap_port: int = 993
    imap_folder: str = "INBOX"

    # Extraction oracle (OpenAI-compatible endpoint)
    oracle_api_url: str = ""
    oracle_api_key: str = "not-needed"
    oracle_model: str = "Qwen/Qwen3-8B-FP8"
    extraction_max_attempts: int = 3
    extraction_retry_delay_sec: float = 1.0

    # Tracing (Langfuse)
    langfuse_enabled: bool = False
    langfuse_public_key: Optional[str] = None
    langfuse_secret_key: Optional[str] = None
    langfuse_base_url: str = "https://cloud.langfuse.com"

    # Currency
    base_currency: str = "EUR"
    fx_api_url: str = "https://api.frankfurter.app"
    fx_timeout_sec: float = 10.0

    # Business policy
    strict_attachment_filter: bool = False
    mark_receipts_paid: bool = False

    @classmethod
    def from_env(cls) -> "Config":
        """Load configuration from environment variables.

        Returns:
            Config: Configuration object

        Raises:
            ValueError: If required environment variables are missing
        """
        required_vars = [
            "DATABASE_URL",
            "IMAP_HOST",
            "IMAP_USER",
            "ORACLE_API_URL",
        ]

        missing = [var for var in required_vars if not os.getenv(var)]
        if not os.getenv("IMAP_PASSWORD") and not os.getenv("IMAP_ACCESS_TOKEN"):
            missing.append("IMAP_PASSWORD or IMAP_ACCESS_TOKEN")
        if _env_bool("LANGFUSE_ENABLED"):
            missing += [var for var in ("LANGFUSE_PUBLIC_KEY", "LANGFUSE_SECRET_KEY") if not os.getenv(var)]
        if missing:
            raise ValueError(f"Missing required environment variables: {', '.join(missing)}")

        return cls(
            database_url=os.getenv("DATABASE_URL"),
            imap_host=os.getenv("IMAP_HOST"),
            imap_user=os.getenv("IMAP_USER"),
            imap_password=os.getenv("IMAP_PASSWORD") or None,
            imap_access_token=os.getenv("IMAP_ACCESS_TOKEN") or None,
            imap_port=int(os.getenv("IMAP_PORT", "993")),
            imap_folder=os.getenv("IMAP_FOLDER", "INBOX"),
            oracle_api_url=os.getenv("ORACLE_API_URL"),
            oracle_api_key=os.getenv("ORACLE_API_KEY", "not-needed"),
            oracle_model=os.getenv("ORACLE_MODEL", "Qwen/Qwen3-8B-FP8"),
            extraction_max_attempts=int(os.getenv("EXTRACTION_MAX_ATTEMPTS", "3")),
            extraction_retry_delay_sec=float(os.getenv("EXTRACTION_RETRY_DELAY_SEC", "1.0")),
            langfuse_enabled=_env_bool("LANGFUSE_ENABLED"),
            langfuse_public_key=os.getenv("LANGFUSE_PUBLIC_KEY") or None,
            langfuse_secret_key=os.getenv("LANGFUSE_SECRET_KEY") or None,
            langfuse_base_url=os.getenv("LANGFUSE_BASE_URL", "https://cloud.langfuse.com"),
            base_currency=os.getenv("BASE_CURRENCY", "EUR").upper(),
            fx_api_url=os.getenv("FX_API_URL", "https://api.frankfurter.app"),
            fx_timeout_sec=float(os.getenv("FX_TIMEOUT_SEC", "10")),
            strict_attachment_filter=_env_bool("STRICT_ATTACHMENT_FILTER"),
            mark_receipts_paid=_env_bool("MARK_RECEIPTS_PAID"),
        )
