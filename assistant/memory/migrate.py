"""
Schema migrations for the Postgres session store.

Migrations are the `NNNN_name.sql` files in `migrations/`, applied in filename
order, each in its own transaction, under a session-level advisory lock so
replicas starting together don't race. Applied versions are recorded with a
sha256 of the file; editing an applied file is an error.
"""

from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, List, Optional, Tuple

from assistant.memory.config import MemoryConfig, build_postgres_dsn, load_memory_config

logger = logging.getLogger(__name__)

MIGRATIONS_DIR = Path(__file__).parent / "migrations"

# bigint key for pg_advisory_lock
MIGRATION_LOCK_KEY = 730214556102

_VERSIONS_DDL = """
CREATE TABLE IF NOT EXISTS assistant_schema_versions (
  version text PRIMARY KEY,
  sha256 text NOT NULL,
  applied_at timestamptz NOT NULL DEFAULT now()
);
"""


@dataclass(frozen=True)
class Migration:
    version: str
    path: Path
    checksum: str
    sql: str


@dataclass
class MigrationReport:
    applied: List[str] = field(default_factory=list)
    already_applied: List[str] = field(default_factory=list)

    def describe(self) -> str:
        if not self.applied:
            return f"No pending migrations ({len(self.already_applied)} already applied)"
        return f"Applied {len(self.applied)} migration(s): {', '.join(self.applied)}"


def load_migrations(directory: Path = MIGRATIONS_DIR) -> List[Migration]:
    if not directory.is_dir():
        return []
    out: List[Migration] = []
    for p in sorted(directory.glob("*.sql")):
        raw = p.read_bytes()
        out.append(Migration(version=p.stem, path=p, checksum=hashlib.sha256(raw).hexdigest(), sql=raw.decode("utf-8")))
    return out


async def _recorded_versions(conn) -> dict:
    cur = await conn.execute("SELECT version, sha256 FROM assistant_schema_versions;")
    return {str(v): str(s) for v, s in await cur.fetchall()}


async def apply_migrations(*, dsn: str, migrations: Optional[Iterable[Migration]] = None) -> MigrationReport:
    """
    Raises:
        RuntimeError when an applied migration file was edited afterwards
        psycopg errors on connection or SQL failure
    """
    import psycopg  # type: ignore[import-not-found]

    pending = list(migrations) if migrations is not None else load_migrations()
    report = MigrationReport()

    async with await psycopg.AsyncConnection.connect(dsn, autocommit=True) as conn:
        await conn.execute("SELECT pg_advisory_lock(%s);", (MIGRATION_LOCK_KEY,))
        try:
            await conn.execute(_VERSIONS_DDL)
            recorded = await _recorded_versions(conn)
            for m in pending:
                known = recorded.get(m.version)
                if known is not None:
                    if known != m.checksum:
                        raise RuntimeError(
                            f"{m.path.name} changed after it was applied (db={known[:12]} file={m.checksum[:12]})"
                        )
                    report.already_applied.append(m.version)
                    continue
                async with conn.transaction():
                    await conn.execute(m.sql)
                    await conn.execute(
                        "INSERT INTO assistant_schema_versions (version, sha256) VALUES (%s, %s);",
                        (m.version, m.checksum),
                    )
                logger.info(f"Applied migration {m.version}")
                report.applied.append(m.version)
        finally:
            await conn.execute("SELECT pg_advisory_unlock(%s);", (MIGRATION_LOCK_KEY,))
    return report


async def maybe_auto_migrate(cfg: Optional[MemoryConfig] = None) -> Tuple[bool, str]:
    """
    Migrate at startup when DB_AUTO_MIGRATE=1 and Postgres is configured.

    Returns: (did_attempt, message). Never raises.
    """
    cfg = cfg or load_memory_config()
    if not cfg.db_auto_migrate:
        return False, "DB_AUTO_MIGRATE is disabled"
    try:
        dsn = build_postgres_dsn(cfg)
    except Exception as e:
        return False, f"Postgres DSN could not be built: {type(e).__name__}"
    if not dsn:
        return False, "Postgres DSN not configured"
    try:
        report = await apply_migrations(dsn=dsn)
    except Exception as e:
        logger.exception("Session store migration failed")
        return True, f"Migration failed: {type(e).__name__}: {e}"
    return True, report.describe()
