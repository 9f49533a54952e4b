from __future__ import annotations

import os
from dataclasses import dataclass


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _bool_env(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


@dataclass(frozen=True)
class Settings:
    app_env: str
    persistence_enabled: bool
    persistence_db_path: str
    database_url: str
    workflow_api_base_url: str
    workflow_request_timeout_seconds: int
    workflow_page_limit: int
    analytics_cache_ttl_seconds: int
    catalog_cache_ttl_seconds: int


def load_settings() -> Settings:
    persistence_db_path = os.getenv("PERSISTENCE_DB_PATH", "data/agency_workflow.sqlite3").strip()
    database_url = os.getenv("DATABASE_URL", "").strip()
    if not database_url:
        database_url = f"sqlite:///{persistence_db_path.replace(chr(92), '/')}"
    return Settings(
        app_env=os.getenv("APP_ENV", "development"),
        persistence_enabled=_bool_env("PERSISTENCE_ENABLED", True),
        persistence_db_path=persistence_db_path,
        database_url=database_url,
        workflow_api_base_url=os.getenv(
            "WORKFLOW_API_BASE_URL", "http://localhost:8000"
        ).strip().rstrip("/"),
        workflow_request_timeout_seconds=max(0, _int_env("WORKFLOW_REQUEST_TIMEOUT_SECONDS", 0)),
        workflow_page_limit=max(1, min(100, _int_env("WORKFLOW_PAGE_LIMIT", 15))),
        analytics_cache_ttl_seconds=max(1, _int_env("ANALYTICS_CACHE_TTL_SECONDS", 30)),
        catalog_cache_ttl_seconds=max(1, _int_env("CATALOG_CACHE_TTL_SECONDS", 3600)),
    )
