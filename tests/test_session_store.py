from __future__ import annotations

import pytest

from assistant.chat.types import DisplayMessage
from assistant.errors import SessionStoreUnavailable
from assistant.memory.config import load_memory_config
from assistant.memory.session_store import (
    InMemoryKeyValueStore,
    PostgresKeyValueStore,
    SessionStore,
    build_key_value_store,
    display_key,
)


class _Clock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def _msg(role: str, content: str, sid: str = "s1") -> DisplayMessage:
    return DisplayMessage.create(role=role, content=content, session_id=sid)  # type: ignore[arg-type]


@pytest.mark.asyncio
async def test_round_trip_preserves_order_and_wire_shape() -> None:
    store = SessionStore(InMemoryKeyValueStore())
    msgs = [_msg("user", "hi"), _msg("assistant", "hello")]

    await store.save("s1", msgs)
    loaded = await store.load("s1")

    assert loaded == msgs
    wire = loaded[0].to_wire()
    assert set(wire) == {"id", "role", "content", "timestamp", "sessionId"}
    assert wire["id"].startswith("user-")


@pytest.mark.asyncio
async def test_unknown_session_is_empty() -> None:
    assert await SessionStore(InMemoryKeyValueStore()).load("never") == []


@pytest.mark.asyncio
async def test_transcript_expires_after_ttl() -> None:
    clock = _Clock()
    store = SessionStore(InMemoryKeyValueStore(clock=clock), default_ttl_seconds=1800)
    await store.save("s1", [_msg("user", "hi")])

    clock.now += 1799
    assert len(await store.load("s1")) == 1

    clock.now += 1
    assert await store.load("s1") == []


@pytest.mark.asyncio
async def test_append_refreshes_ttl() -> None:
    clock = _Clock()
    store = SessionStore(InMemoryKeyValueStore(clock=clock), default_ttl_seconds=100)
    await store.save("s1", [_msg("user", "a")])

    clock.now += 90
    await store.append("s1", [_msg("assistant", "b")])
    clock.now += 90

    assert [m.content for m in await store.load("s1")] == ["a", "b"]


@pytest.mark.asyncio
async def test_expired_keys_are_purged_on_write() -> None:
    clock = _Clock()
    kv = InMemoryKeyValueStore(clock=clock)
    for i in range(100):
        await kv.set(f"session:s{i}:display", "[]", 10)
    clock.now += 10

    await kv.set("session:fresh:display", "[]", 10)

    assert list(kv._data) == ["session:fresh:display"]

@pytest.mark.asyncio
async def test_corrupt_payload_is_treated_as_empty() -> None:
    kv = InMemoryKeyValueStore()
    store = SessionStore(kv)

    await kv.set(display_key("s1"), "{not json", 60)
    assert await store.load("s1") == []

    await kv.set(display_key("s1"), '{"role": "user"}', 60)
    assert await store.load("s1") == []

    await kv.set(display_key("s1"), '[{"role": "robot"}]', 60)
    assert await store.load("s1") == []


@pytest.mark.asyncio
async def test_delete_reports_removed_key_count() -> None:
    store = SessionStore(InMemoryKeyValueStore())
    await store.save("s1", [_msg("user", "hi")])

    assert await store.delete("s1") == 1
    assert await store.delete("s1") == 0
    assert await store.load("s1") == []


def test_key_layout() -> None:
    assert display_key("abc") == "session:abc:display"


def test_backend_selection(monkeypatch) -> None:
    assert isinstance(build_key_value_store(load_memory_config()), InMemoryKeyValueStore)

    monkeypatch.setenv("POSTGRES_DSN", "postgresql://u:p@localhost:5432/assistant")
    kv = build_key_value_store(load_memory_config())
    assert isinstance(kv, PostgresKeyValueStore)
    assert kv.dsn == "postgresql://u:p@localhost:5432/assistant"

    monkeypatch.setenv("SESSION_STORE", "memory")
    assert isinstance(build_key_value_store(load_memory_config()), InMemoryKeyValueStore)


def test_backend_selection_rejects_misconfiguration(monkeypatch) -> None:
    monkeypatch.setenv("SESSION_STORE", "postgres")
    with pytest.raises(ValueError):
        build_key_value_store(load_memory_config())

    monkeypatch.setenv("SESSION_STORE", "redis")
    with pytest.raises(ValueError):
        build_key_value_store(load_memory_config())


@pytest.mark.asyncio
async def test_postgres_outage_surfaces_as_store_unavailable(monkeypatch) -> None:
    kv = PostgresKeyValueStore("postgresql://u:p@127.0.0.1:1/none", connect_timeout=1)

    async def _refuse():  # type: ignore[no-untyped-def]
        raise OSError("connection refused")

    monkeypatch.setattr(kv, "_connect", _refuse)

    with pytest.raises(SessionStoreUnavailable):
        await kv.get("k")
    with pytest.raises(SessionStoreUnavailable):
        await kv.set("k", "v", 60)
    with pytest.raises(SessionStoreUnavailable):
        await SessionStore(kv).delete("s1")
