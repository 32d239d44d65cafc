"""Environment-driven settings and logging setup."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        logging.getLogger(__name__).warning(f"Ignoring non-integer {name}={raw!r}, using {default}")
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        logging.getLogger(__name__).warning(f"Ignoring non-numeric {name}={raw!r}, using {default}")
        return default


@dataclass(frozen=True)
class Settings:
    """Runtime configuration. Every field defaults from the environment."""

    anthropic_api_key: str | None = field(default_factory=lambda: os.environ.get("ANTHROPIC_API_KEY"))
    llm_model: str = field(
        default_factory=lambda: os.environ.get("DEFAULT_LLM_MODEL", "claude-haiku-4-5-20251001")
    )
    embedding_backend: str = field(default_factory=lambda: os.environ.get("EMBEDDING_BACKEND", "openai"))
    openai_api_key: str | None = field(default_factory=lambda: os.environ.get("OPENAI_API_KEY"))
    embedding_model: str = field(
        default_factory=lambda: os.environ.get("EMBEDDING_MODEL", "text-embedding-3-small")
    )
    ollama_url: str = field(default_factory=lambda: os.environ.get("OLLAMA_URL", "http://localhost:11434"))
    request_timeout: float = field(default_factory=lambda: _env_float("MAIL_INSIGHT_TIMEOUT", 30.0))

    data_dir: Path = field(
        default_factory=lambda: Path(
            os.environ.get("MAIL_INSIGHT_DATA_DIR", "~/.mail_insight")
        ).expanduser()
    )
    store_backend: str = field(default_factory=lambda: os.environ.get("MAIL_INSIGHT_STORE", "chroma"))

    analysis_batch_size: int = field(default_factory=lambda: _env_int("ANALYSIS_BATCH_SIZE", 10))
    map_workers: int = field(default_factory=lambda: _env_int("ANALYSIS_WORKERS", 4))
    ingestion_workers: int = field(default_factory=lambda: _env_int("INGESTION_WORKERS", 2))
    ingestion_queue_size: int = field(default_factory=lambda: _env_int("INGESTION_QUEUE_SIZE", 64))
    page_size: int = field(default_factory=lambda: _env_int("PROVIDER_PAGE_SIZE", 50))
    prune_interval: float = field(default_factory=lambda: _env_float("MAIL_INSIGHT_PRUNE_INTERVAL", 3600.0))

    google_client_id: str = field(default_factory=lambda: os.environ.get("GOOGLE_CLIENT_ID", ""))
    google_client_secret: str = field(default_factory=lambda: os.environ.get("GOOGLE_CLIENT_SECRET", ""))
    google_redirect_uri: str = field(default_factory=lambda: os.environ.get("GOOGLE_REDIRECT_URI", ""))

    microsoft_client_id: str = field(default_factory=lambda: os.environ.get("MICROSOFT_CLIENT_ID", ""))
    microsoft_client_secret: str = field(
        default_factory=lambda: os.environ.get("MICROSOFT_CLIENT_SECRET", "")
    )
    microsoft_redirect_uri: str = field(
        default_factory=lambda: os.environ.get("MICROSOFT_REDIRECT_URI", "")
    )
    microsoft_tenant: str = field(default_factory=lambda: os.environ.get("MICROSOFT_TENANT", "common"))

    @property
    def credentials_dir(self) -> Path:
        return self.data_dir / "credentials"

    @property
    def store_dir(self) -> Path:
        return self.data_dir / "corpus"

    @property
    def google_scopes(self) -> tuple[str, ...]:
        return ("https://www.googleapis.com/auth/gmail.readonly",)

    @property
    def microsoft_scopes(self) -> tuple[str, ...]:
        return ("offline_access", "User.Read", "Mail.Read")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()


LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(level: int | str = logging.INFO) -> logging.Logger:
    """Attach one stream handler to the package logger. Safe to call twice."""
    logger = logging.getLogger("mail_insight")
    logger.setLevel(level)
    if not any(getattr(h, "_mail_insight", False) for h in logger.handlers):
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        handler._mail_insight = True
        logger.addHandler(handler)
    return logger
