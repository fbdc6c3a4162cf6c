"""
Pytest configuration for the migration tests.

Why: make `gps_migration` importable without an editable install and keep the
environment free of live connection settings, so no test can reach a real
database or HTTP API by accident.
"""
from __future__ import annotations

import sys
from pathlib import Path

import pytest


REPO_ROOT = Path(__file__).resolve().parents[2]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

_LIVE_ENV = (
    "WP_DB_HOST",
    "WP_DB_PORT",
    "WP_DB_USER",
    "WP_DB_PASSWORD",
    "WP_DB_NAME",
    "WP_TABLE_PREFIX",
    "SUPABASE_DB_URL",
    "DATABASE_URL",
    "SUPABASE_URL",
    "STRAPI_URL",
    "STRAPI_API_TOKEN",
    "CLERK_SECRET_KEY",
    "CLERK_API_URL",
    "MIGRATION_DRY_RUN",
    "MIGRATION_LOG_LEVEL",
    "MIGRATION_OUTPUT_DIR",
    "MIGRATION_BATCH_SIZE",
    "MIGRATION_HTTP_TIMEOUT",
)


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch):
    for name in _LIVE_ENV:
        monkeypatch.delenv(name, raising=False)
    yield
