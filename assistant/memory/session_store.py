"""
Session transcript storage.

One key per session (`session:<id>:display`) holding the JSON-serialized
DisplayMessage array, written with an expiry. The backing store only needs
get / set-with-expiry / delete:

- InMemoryKeyValueStore: process-local, for development and tests
- PostgresKeyValueStore: `session_kv` table (see migrations/), psycopg async
"""

from __future__ import annotations

import json
import logging
import time
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional, Protocol, Sequence, Tuple

from pydantic import ValidationError

from assistant.chat.types import DisplayMessage
from assistant.errors import SessionStoreUnavailable
from assistant.memory.config import MemoryConfig, build_postgres_dsn, load_memory_config

logger = logging.getLogger(__name__)


class KeyValueStore(Protocol):
    async def get(self, key: str) -> Optional[str]: ...

    async def set(self, key: str, value: str, ttl_seconds: int) -> None: ...

    async def delete(self, key: str) -> int:
        """Return the number of keys removed (0 or 1)."""
        ...


class InMemoryKeyValueStore:
    """Process-local store; expired keys are invisible and purged on every write."""

    def __init__(self, *, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._data: Dict[str, Tuple[str, float]] = {}

    def _live(self, key: str) -> Optional[str]:
        item = self._data.get(key)
        if item is None:
            return None
        value, expires_at = item
        if self._clock() >= expires_at:
            self._data.pop(key, None)
            return None
        return value

    async def get(self, key: str) -> Optional[str]:
        return self._live(key)

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        now = self._clock()
        for k in [k for k, (_, exp) in self._data.items() if now >= exp]:
            del self._data[k]
        self._data[key] = (value, now + max(1, int(ttl_seconds)))

    async def delete(self, key: str) -> int:
        existed = self._live(key) is not None
        self._data.pop(key, None)
        return 1 if existed else 0


class PostgresKeyValueStore:
    """
    Key/value rows with `expires_at`; expired rows are invisible and purged on write.
    Driver/connection errors surface as SessionStoreUnavailable.
    """

    def __init__(self, dsn: str, *, connect_timeout: int = 5) -> None:
        self.dsn = dsn
        self.connect_timeout = connect_timeout

    async def _connect(self):
        import psycopg  # type: ignore[import-not-found]

        return await psycopg.AsyncConnection.connect(self.dsn, connect_timeout=self.connect_timeout, autocommit=True)

    async def get(self, key: str) -> Optional[str]:
        try:
            async with await self._connect() as conn:
                cur = await conn.execute(
                    "SELECT value FROM session_kv WHERE key = %s AND expires_at > now();",
                    (key,),
                )
                row = await cur.fetchone()
        except Exception as e:
            logger.error(f"Session store read failed: {type(e).__name__}: {e}")
            raise SessionStoreUnavailable(f"session store read failed: {type(e).__name__}") from e
        return str(row[0]) if row else None

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        expires_at = datetime.now(timezone.utc) + timedelta(seconds=max(1, int(ttl_seconds)))
        try:
            async with await self._connect() as conn:
                await conn.execute("DELETE FROM session_kv WHERE expires_at <= now();")
                await conn.execute(
                    """
                    INSERT INTO session_kv (key, value, expires_at, updated_at)
                    VALUES (%s, %s, %s, now())
                    ON CONFLICT (key) DO UPDATE
                      SET value = EXCLUDED.value, expires_at = EXCLUDED.expires_at, updated_at = now();
                    """,
                    (key, value, expires_at),
                )
        except Exception as e:
            logger.error(f"Session store write failed: {type(e).__name__}: {e}")
            raise SessionStoreUnavailable(f"session store write failed: {type(e).__name__}") from e

    async def delete(self, key: str) -> int:
        try:
            async with await self._connect() as conn:
                cur = await conn.execute(
                    "DELETE FROM session_kv WHERE key = %s AND expires_at > now();",
                    (key,),
                )
                return int(cur.rowcount or 0)
        except Exception as e:
            logger.error(f"Session store delete failed: {type(e).__name__}: {e}")
            raise SessionStoreUnavailable(f"session store delete failed: {type(e).__name__}") from e


def display_key(session_id: str) -> str:
    return f"session:{session_id}:display"


class SessionStore:
    """Read/append/delete a session's DisplayMessage transcript."""

    def __init__(self, kv: KeyValueStore, *, default_ttl_seconds: int = 1800) -> None:
        self.kv = kv
        self.default_ttl_seconds = default_ttl_seconds

    async def load(self, session_id: str) -> List[DisplayMessage]:
        raw = await self.kv.get(display_key(session_id))
        if not raw:
            return []
        try:
            items = json.loads(raw)
            if not isinstance(items, list):
                raise ValueError("transcript is not a list")
            return [DisplayMessage.model_validate(x) for x in items]
        except (ValueError, ValidationError) as e:
            # Unreadable history is dropped rather than failing every later turn.
            logger.warning(f"Discarding unreadable transcript for session {session_id}: {type(e).__name__}")
            return []

    async def save(
        self, session_id: str, transcript: Sequence[DisplayMessage], ttl_seconds: Optional[int] = None
    ) -> None:
        payload = json.dumps([m.to_wire() for m in transcript], ensure_ascii=False)
        await self.kv.set(display_key(session_id), payload, ttl_seconds or self.default_ttl_seconds)

    async def append(
        self, session_id: str, messages: Sequence[DisplayMessage], ttl_seconds: Optional[int] = None
    ) -> List[DisplayMessage]:
        transcript = await self.load(session_id) + list(messages)
        await self.save(session_id, transcript, ttl_seconds)
        return transcript

    async def delete(self, session_id: str) -> int:
        return await self.kv.delete(display_key(session_id))


def build_key_value_store(cfg: Optional[MemoryConfig] = None) -> KeyValueStore:
    cfg = cfg or load_memory_config()
    backend = cfg.session_store
    dsn = build_postgres_dsn(cfg) if backend in (None, "postgres") else None

    if backend == "postgres" and not dsn:
        raise ValueError("SESSION_STORE=postgres but Postgres not configured (set POSTGRES_DSN or POSTGRES_* env vars)")
    if dsn:
        return PostgresKeyValueStore(dsn, connect_timeout=cfg.connect_timeout_seconds)
    if backend not in (None, "memory"):
        raise ValueError(f"Unknown SESSION_STORE backend: {backend}")
    logger.warning("Using in-memory session store; transcripts are lost on restart and not shared across replicas")
    return InMemoryKeyValueStore()


_session_store: Optional[SessionStore] = None


def get_session_store() -> SessionStore:
    global _session_store
    if _session_store is None:
        from assistant.chat.policy import load_chat_policy

        _session_store = SessionStore(
            build_key_value_store(), default_ttl_seconds=load_chat_policy().session_ttl_seconds
        )
    return _session_store


def set_session_store(store: Optional[SessionStore]) -> None:
    """Set session store instance (for testing)."""
    global _session_store
    _session_store = store
