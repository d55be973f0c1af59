"""
Session store settings.

SESSION_STORE picks the backend: "postgres", "memory", or unset (Postgres when
a DSN can be built, otherwise in-memory). Postgres is configured either with
POSTGRES_DSN or with the POSTGRES_HOST/PORT/DB/USER/PASSWORD parts.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Optional

_TRUTHY = ("1", "true", "yes", "y", "on")


def _env_str(name: str) -> Optional[str]:
    return (os.getenv(name) or "").strip() or None


def _env_bool(name: str, default: bool = False) -> bool:
    raw = _env_str(name)
    return default if raw is None else raw.lower() in _TRUTHY


def _env_int(name: str, default: int, *, lo: int, hi: int) -> int:
    try:
        value = int(_env_str(name) or default)
    except ValueError:
        value = default
    return max(lo, min(value, hi))


@dataclass(frozen=True)
class PostgresSettings:
    dsn: Optional[str] = None
    host: Optional[str] = None
    port: int = 5432
    dbname: Optional[str] = None
    user: Optional[str] = None
    password: Optional[str] = None

    @property
    def has_parts(self) -> bool:
        return bool(self.host and self.dbname and self.user and self.password)


@dataclass(frozen=True)
class MemoryConfig:
    session_store: Optional[str] = None
    db_auto_migrate: bool = False
    connect_timeout_seconds: int = 5
    postgres: PostgresSettings = field(default_factory=PostgresSettings)


def load_memory_config() -> MemoryConfig:
    postgres = PostgresSettings(
        dsn=_env_str("POSTGRES_DSN"),
        host=_env_str("POSTGRES_HOST"),
        port=_env_int("POSTGRES_PORT", 5432, lo=1, hi=65535),
        dbname=_env_str("POSTGRES_DB"),
        user=_env_str("POSTGRES_USER"),
        password=_env_str("POSTGRES_PASSWORD"),
    )
    backend = _env_str("SESSION_STORE")
    return MemoryConfig(
        session_store=backend.lower() if backend else None,
        db_auto_migrate=_env_bool("DB_AUTO_MIGRATE"),
        connect_timeout_seconds=_env_int("POSTGRES_CONNECT_TIMEOUT_SECONDS", 5, lo=1, hi=60),
        postgres=postgres,
    )


def build_postgres_dsn(cfg: MemoryConfig) -> Optional[str]:
    """POSTGRES_DSN wins; otherwise all parts are required. None when unconfigured."""
    pg = cfg.postgres
    if pg.dsn:
        return pg.dsn
    if not pg.has_parts:
        return None
    # make_conninfo escapes special characters in passwords
    from psycopg.conninfo import make_conninfo  # type: ignore[import-not-found]

    return make_conninfo(host=pg.host, port=pg.port, dbname=pg.dbname, user=pg.user, password=pg.password)
