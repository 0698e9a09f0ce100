"""Tests for environment-based configuration."""

import pytest

from payables.config import Config

REQUIRED = {
    "DATABASE_URL": "postgresql://localhost/payables",
    "IMAP_HOST": "imap.example.com",
    "IMAP_USER": "ap@example.com",
    "IMAP_PASSWORD": "secret",
    "ORACLE_API_URL": "http://localhost:8000/v1",
}

OPTIONAL = [
    "IMAP_ACCESS_TOKEN", "IMAP_PORT", "IMAP_FOLDER", "ORACLE_API_KEY", "ORACLE_MODEL",
    "BASE_CURRENCY", "FX_API_URL", "FX_TIMEOUT_SEC", "STRICT_ATTACHMENT_FILTER",
    "EXTRACTION_MAX_ATTEMPTS", "EXTRACTION_RETRY_DELAY_SEC", "MARK_RECEIPTS_PAID",
    "LANGFUSE_ENABLED", "LANGFUSE_PUBLIC_KEY", "LANGFUSE_SECRET_KEY", "LANGFUSE_BASE_URL",
]


@pytest.fixture
def env(monkeypatch):
    for name in OPTIONAL:
        monkeypatch.delenv(name, raising=False)
    for name, value in REQUIRED.items():
        monkeypatch.setenv(name, value)
    return monkeypatch


def test_defaults(env):
    config = Config.from_env()

    assert config.imap_port == 993
    assert config.imap_folder == "INBOX"
    assert config.oracle_model == "Qwen/Qwen3-8B-FP8"
    assert config.base_currency == "EUR"
    assert config.fx_api_url == "https://api.frankfurter.app"
    assert config.extraction_max_attempts == 3
    assert config.extraction_retry_delay_sec == 1.0
    assert config.strict_attachment_filter is False
    assert config.mark_receipts_paid is False
    assert config.langfuse_enabled is False
    assert config.langfuse_base_url == "https://cloud.langfuse.com"


def test_overrides(env):
    env.setenv("BASE_CURRENCY", "usd")
    env.setenv("IMAP_PORT", "1993")
    env.setenv("STRICT_ATTACHMENT_FILTER", "Yes")
    env.setenv("MARK_RECEIPTS_PAID", "1")
    env.setenv("EXTRACTION_MAX_ATTEMPTS", "5")

    config = Config.from_env()

    assert config.base_currency == "USD"
    assert config.imap_port == 1993
    assert config.strict_attachment_filter is True
    assert config.mark_receipts_paid is True
    assert config.extraction_max_attempts == 5


def test_access_token_replaces_password(env):
    env.delenv("IMAP_PASSWORD")
    env.setenv("IMAP_ACCESS_TOKEN", "ya29.token")

    config = Config.from_env()

    assert config.imap_password is None
    assert config.imap_access_token == "ya29.token"


def test_missing_variables_are_all_named(env):
    env.delenv("DATABASE_URL")
    env.delenv("ORACLE_API_URL")
    env.delenv("IMAP_PASSWORD")

    with pytest.raises(ValueError) as exc_info:
        Config.from_env()

    message = str(exc_info.value)
    assert "DATABASE_URL" in message
    assert "ORACLE_API_URL" in message
    assert "IMAP_PASSWORD or IMAP_ACCESS_TOKEN" in message


def test_langfuse_settings(env):
    env.setenv("LANGFUSE_ENABLED", "true")
    env.setenv("LANGFUSE_PUBLIC_KEY", "pk-lf-1")
    env.setenv("LANGFUSE_SECRET_KEY", "sk-lf-1")
    env.setenv("LANGFUSE_BASE_URL", "https://langfuse.internal.example")

    config = Config.from_env()

    assert config.langfuse_enabled is True
    assert (config.langfuse_public_key, config.langfuse_secret_key) == ("pk-lf-1", "sk-lf-1")
    assert config.langfuse_base_url == "https://langfuse.internal.example"


def test_enabled_langfuse_requires_keys(env):
    env.setenv("LANGFUSE_ENABLED", "1")

    with pytest.raises(ValueError, match="LANGFUSE_PUBLIC_KEY, LANGFUSE_SECRET_KEY"):
        Config.from_env()
