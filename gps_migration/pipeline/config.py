"""
Centralized configuration for the migration pipeline.

Intent:
    Provide one place that reads the environment (optionally seeded from a
    `.env` file via python-dotenv) so the CLI, the stages and the tests agree
    on defaults for the legacy MySQL source, the destination stores and the
    run settings.

Behavior:
    - `load_environment()` loads `.env` without overriding variables that are
      already exported.
    - `MigrationSettings.from_env()` snapshots all settings into a frozen
      dataclass; CLI flags override individual fields via `dataclasses.replace`.
    - `missing_settings()` names the variables a run still lacks.

Permissions:
    Pure configuration; no external calls.
"""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv


DEFAULT_TABLE_PREFIX = "wpiy_"
DEFAULT_OUTPUT_DIR = "scripts/migration/output"
DEFAULT_STRAPI_URL = "http://localhost:1337"
DEFAULT_CLERK_API_URL = "https://api.clerk.com/v1"
DEFAULT_BATCH_SIZE = 100


def load_environment(dotenv_path: str | None = None) -> None:
    """Populate os.environ from a `.env` file when one exists."""
    load_dotenv(dotenv_path, override=False)


def _parse_int_env(name: str, default: int) -> int:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        return default
    if value <= 0:
        return default
    return value


def _parse_float_env(name: str, default: float) -> float:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError:
        return default
    return value if value > 0 else default


def _env(name: str, default: str = "") -> str:
    return (os.getenv(name) or default).strip()


@dataclass(frozen=True)
class SourceSettings:
    """Connection parameters for the legacy WordPress MySQL database."""

    host: str = "localhost"
    port: int = 3306
    user: str = "root"
    password: str = ""
    database: str = "gpsdentaltraining"
    table_prefix: str = DEFAULT_TABLE_PREFIX
    charset: str = "utf8mb4"
    connect_timeout: int = 10

    def to_connection_params(self) -> dict:
        return {
            "host": self.host,
            "port": self.port,
            "user": self.user,
            "password": self.password,
            "database": self.database,
            "charset": self.charset,
            "connect_timeout": self.connect_timeout,
        }


@dataclass(frozen=True)
class MigrationSettings:
    """Snapshot of every setting a migration run needs."""

    source: SourceSettings = field(default_factory=SourceSettings)
    db_dsn: str | None = None
    supabase_url: str = ""
    strapi_url: str = DEFAULT_STRAPI_URL
    strapi_token: str = ""
    clerk_secret_key: str = ""
    clerk_api_url: str = DEFAULT_CLERK_API_URL
    http_timeout: float = 10.0
    dry_run: bool = False
    log_level: str = "info"
    output_dir: Path = Path(DEFAULT_OUTPUT_DIR)
    batch_size: int = DEFAULT_BATCH_SIZE

    @classmethod
    def from_env(cls) -> "MigrationSettings":
        """Build settings from the process environment.

        Env:
            WP_DB_HOST, WP_DB_PORT, WP_DB_USER, WP_DB_PASSWORD, WP_DB_NAME,
            WP_TABLE_PREFIX – legacy source.
            SUPABASE_DB_URL (fallback DATABASE_URL) – transactional store DSN.
            STRAPI_URL, STRAPI_API_TOKEN – content repository.
            CLERK_SECRET_KEY, CLERK_API_URL – optional identity provisioning.
            MIGRATION_DRY_RUN, MIGRATION_LOG_LEVEL, MIGRATION_OUTPUT_DIR,
            MIGRATION_BATCH_SIZE, MIGRATION_HTTP_TIMEOUT – run settings.
        """
        source = SourceSettings(
            host=_env("WP_DB_HOST", "localhost"),
            port=_parse_int_env("WP_DB_PORT", 3306),
            user=_env("WP_DB_USER", "root"),
            password=os.getenv("WP_DB_PASSWORD") or "",
            database=_env("WP_DB_NAME", "gpsdentaltraining"),
            table_prefix=_env("WP_TABLE_PREFIX", DEFAULT_TABLE_PREFIX),
        )
        return cls(
            source=source,
            db_dsn=_env("SUPABASE_DB_URL") or _env("DATABASE_URL") or None,
            supabase_url=_env("SUPABASE_URL"),
            strapi_url=_env("STRAPI_URL", DEFAULT_STRAPI_URL).rstrip("/"),
            strapi_token=_env("STRAPI_API_TOKEN"),
            clerk_secret_key=_env("CLERK_SECRET_KEY"),
            clerk_api_url=_env("CLERK_API_URL", DEFAULT_CLERK_API_URL).rstrip("/"),
            http_timeout=_parse_float_env("MIGRATION_HTTP_TIMEOUT", 10.0),
            dry_run=_env("MIGRATION_DRY_RUN").lower() == "true",
            log_level=_env("MIGRATION_LOG_LEVEL", "info").lower(),
            output_dir=Path(_env("MIGRATION_OUTPUT_DIR", DEFAULT_OUTPUT_DIR)),
            batch_size=_parse_int_env("MIGRATION_BATCH_SIZE", DEFAULT_BATCH_SIZE),
        )

    def missing_settings(self, *, destination: bool) -> list[str]:
        """Return the names of required settings that are not configured.

        The legacy source is always required; the transactional DSN only when
        the run writes to the destinations (not for dry runs or exports).
        """
        missing = [name for name in ("WP_DB_HOST", "WP_DB_USER", "WP_DB_NAME") if not os.getenv(name)]
        if destination and not self.db_dsn:
            missing.append("SUPABASE_DB_URL")
        return missing


__all__ = [
    "DEFAULT_BATCH_SIZE",
    "DEFAULT_OUTPUT_DIR",
    "DEFAULT_TABLE_PREFIX",
    "MigrationSettings",
    "SourceSettings",
    "load_environment",
]
