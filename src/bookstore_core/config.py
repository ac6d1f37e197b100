"""Application configuration helpers."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path


def _env_bool(name: str, default: str) -> bool:
    return os.environ.get(name, default).lower() in {"1", "true", "yes", "on"}


def _default_data_root() -> Path:
    """Return the platform specific directory used for persistent data."""

    if os.name == "nt":
        base = Path(os.environ.get("LOCALAPPDATA", Path.home()))
        return base / "BookstoreCore"
    return Path.home() / ".bookstore_core"


def _default_database_url() -> str:
    """Resolve the database URL taking overrides into account."""

    override = os.environ.get("BOOKSTORE_DATABASE_URL")
    if override:
        return override
    return f"sqlite:///{_default_data_root() / 'bookstore.sqlite3'}"


@dataclass(slots=True)
class Settings:
    """Runtime configuration loaded from environment variables."""

    app_name: str = field(default_factory=lambda: os.environ.get("BOOKSTORE_APP_NAME", "Bookstore Core"))
    host: str = field(default_factory=lambda: os.environ.get("BOOKSTORE_HOST", "127.0.0.1"))
    port: int = field(default_factory=lambda: int(os.environ.get("BOOKSTORE_PORT", "8000")))
    reload: bool = field(default_factory=lambda: _env_bool("BOOKSTORE_RELOAD", "false"))
    log_level: str = field(default_factory=lambda: os.environ.get("BOOKSTORE_LOG_LEVEL", "info"))
    log_json: bool = field(default_factory=lambda: _env_bool("BOOKSTORE_LOG_JSON", "false"))
    database_url: str = field(default_factory=_default_database_url)
    echo_sql: bool = field(default_factory=lambda: _env_bool("BOOKSTORE_ECHO_SQL", "false"))
    # Upper bound a transaction may wait on a contended row or database lock.
    lock_timeout_seconds: float = field(
        default_factory=lambda: float(os.environ.get("BOOKSTORE_LOCK_TIMEOUT", "5"))
    )
    api_prefix: str = field(default_factory=lambda: os.environ.get("BOOKSTORE_API_PREFIX", "/api/v1"))
    max_page_size: int = field(default_factory=lambda: int(os.environ.get("BOOKSTORE_MAX_PAGE_SIZE", "200")))
    default_low_stock_threshold: int = field(
        default_factory=lambda: int(os.environ.get("BOOKSTORE_LOW_STOCK_THRESHOLD", "5"))
    )

    @property
    def database_path(self) -> Path | None:
        """Filesystem path of the SQLite database, ``None`` for other backends."""

        prefix = "sqlite:///"
        if not self.database_url.startswith(prefix):
            return None
        raw = self.database_url[len(prefix):]
        if not raw or raw == ":memory:":
            return None
        return Path(raw).expanduser()

    def ensure_storage(self) -> None:
        """Ensure that the database directory exists."""

        path = self.database_path
        if path is not None:
            path.parent.mkdir(parents=True, exist_ok=True)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached application settings."""

    settings = Settings()
    settings.ensure_storage()
    return settings
