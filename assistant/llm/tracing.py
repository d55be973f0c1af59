"""
LangSmith tracing for chat turns, model completions and tool calls.

Off unless LANGSMITH_TRACING (or LANGCHAIN_TRACING_V2) is set and an API key is
present. Settings are read from the environment on every call so tests and
long-running servers pick up changes without a restart.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_PROJECT = "sdlc-assistant"


def _first_env(*names: str) -> str:
    for n in names:
        v = (os.getenv(n) or "").strip()
        if v:
            return v
    return ""


def _csv(raw: str) -> Tuple[str, ...]:
    return tuple(x.strip() for x in raw.split(",") if x.strip())


@dataclass(frozen=True)
class TraceSettings:
    requested: bool
    api_key: str
    project: str
    tags: Tuple[str, ...]
    run_name_prefix: str
    # run names to skip; a trailing '*' matches by prefix, e.g. "tool:get_recent_*"
    exclude: Tuple[str, ...]

    @property
    def enabled(self) -> bool:
        return self.requested and bool(self.api_key)

    def skips(self, run_name: str) -> bool:
        n = (run_name or "").strip()
        for pat in self.exclude:
            if (pat.endswith("*") and n.startswith(pat[:-1])) or n == pat:
                return True
        return False


def load_trace_settings() -> TraceSettings:
    flag = _first_env("LANGSMITH_TRACING", "LANGCHAIN_TRACING_V2").lower()
    s = TraceSettings(
        requested=flag in ("1", "true", "yes", "y", "on"),
        api_key=_first_env("LANGSMITH_API_KEY", "LANGCHAIN_API_KEY"),
        project=_first_env("LANGSMITH_PROJECT", "LANGCHAIN_PROJECT") or DEFAULT_PROJECT,
        tags=_csv(_first_env("LANGSMITH_TAGS")),
        run_name_prefix=_first_env("LANGSMITH_RUN_NAME_PREFIX"),
        exclude=_csv(_first_env("LANGSMITH_TRACE_EXCLUDE")),
    )
    if s.requested and not s.api_key:
        logger.warning("LangSmith tracing requested without LANGSMITH_API_KEY; tracing disabled")
    return s


def _tracer(s: TraceSettings) -> Optional[Any]:
    try:
        from langchain_core.tracers.langchain import LangChainTracer  # type: ignore[import-not-found]
        from langsmith import Client  # type: ignore[import-not-found]
    except ImportError as e:
        logger.warning("LangSmith tracing enabled but dependencies unavailable: %s", type(e).__name__)
        return None
    return LangChainTracer(project_name=s.project, client=Client(api_key=s.api_key), tags=list(s.tags) or None)


def build_invoke_config(*, kind: str, run_name: str, metadata: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """
    RunnableConfig for a LangChain/LangGraph invocation.

    Always returns a fresh dict ({} when tracing is off) that callers may extend,
    e.g. with `recursion_limit`.
    """
    s = load_trace_settings()
    if not s.enabled or s.skips(run_name):
        return {}

    cfg: Dict[str, Any] = {
        "run_name": f"{s.run_name_prefix}{run_name}",
        "metadata": {**(metadata or {}), "kind": kind or "unknown"},
    }
    tracer = _tracer(s)
    if tracer is not None:
        cfg["callbacks"] = [tracer]
    if s.tags:
        cfg["tags"] = list(s.tags)
    return cfg


async def trace_tool_call(*, tool: str, args: Dict[str, Any], fn: Callable[[], Awaitable[T]]) -> T:
    """Await `fn()` exactly once, inside a `tool:<name>` span when tracing is on."""
    run_name = f"tool:{tool}"
    s = load_trace_settings()
    if not s.enabled or s.skips(run_name):
        return await fn()

    from langsmith.run_helpers import traceable  # type: ignore[import-not-found]

    @traceable(name=run_name, run_type="tool", project_name=s.project)
    async def _span(tool: str, args: Dict[str, Any]) -> T:
        return await fn()

    return await _span(tool, dict(args or {}))
