"""
Pytest config.

Local imports like `import assistant` rely on the repo root being on sys.path.
When invoking a global `pytest` entrypoint that doesn't happen reliably during
collection, so we pin the behavior here.
"""

from __future__ import annotations

import sys
from pathlib import Path

import pytest


def _ensure_repo_root_on_syspath() -> None:
    repo_root = Path(__file__).resolve().parents[1]
    repo_root_str = str(repo_root)
    if repo_root_str not in sys.path:
        sys.path.insert(0, repo_root_str)


_ensure_repo_root_on_syspath()


_ISOLATED_ENV = (
    "LLM_MOCK",
    "LLM_PROVIDER",
    "LANGSMITH_TRACING",
    "LANGCHAIN_TRACING_V2",
    "TOOL_SERVER_URL",
    "SESSION_STORE",
    "DB_AUTO_MIGRATE",
    "POSTGRES_DSN",
    "POSTGRES_HOST",
    "POSTGRES_DB",
    "POSTGRES_USER",
    "POSTGRES_PASSWORD",
    "LANGSMITH_TRACE_EXCLUDE",
)


@pytest.fixture(autouse=True)
def _isolate_process_singletons(monkeypatch: pytest.MonkeyPatch):
    """
    Unit tests never reach a real model, tool server, GitHub or Postgres.

    Env that would switch a backend on is cleared, and process-wide singletons
    are reset before and after each test so overrides don't leak.
    """
    for k in _ISOLATED_ENV:
        monkeypatch.delenv(k, raising=False)

    from assistant.llm.client import set_completion_client
    from assistant.memory.session_store import set_session_store
    from assistant.providers.github_provider import set_github_provider
    from assistant.runtime import set_runtime

    def _reset() -> None:
        set_runtime(None)
        set_session_store(None)
        set_completion_client(None)
        set_github_provider(None)

    _reset()
    yield
    _reset()
