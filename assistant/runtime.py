"""Process-wide wiring of the chat runtime (registry, dispatcher, orchestrator, store)."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from assistant.analysis.pipeline import RepositoryAnalysisPipeline
from assistant.chat.dispatcher import ToolDispatcher
from assistant.chat.orchestrator import ConversationOrchestrator
from assistant.chat.policy import ChatPolicy, load_chat_policy
from assistant.chat.registry import ToolRegistry
from assistant.llm.client import ChatCompletionClient, get_completion_client
from assistant.memory.session_store import SessionStore, get_session_store
from assistant.providers.tool_provider import ToolProvider, build_tool_provider


@dataclass
class AssistantRuntime:
    policy: ChatPolicy
    registry: ToolRegistry
    dispatcher: ToolDispatcher
    orchestrator: ConversationOrchestrator
    store: SessionStore


def build_runtime(
    *,
    provider: Optional[ToolProvider] = None,
    client: Optional[ChatCompletionClient] = None,
    store: Optional[SessionStore] = None,
    policy: Optional[ChatPolicy] = None,
    pipeline: Optional[RepositoryAnalysisPipeline] = None,
) -> AssistantRuntime:
    policy = policy or load_chat_policy()
    provider = provider or build_tool_provider()
    client = client or get_completion_client()
    store = store or get_session_store()
    pipeline = pipeline or RepositoryAnalysisPipeline.from_env(client=client)

    registry = ToolRegistry(provider)
    dispatcher = ToolDispatcher(registry, provider, pipeline=pipeline)
    orchestrator = ConversationOrchestrator(
        client=client, registry=registry, dispatcher=dispatcher, store=store, policy=policy
    )
    return AssistantRuntime(
        policy=policy, registry=registry, dispatcher=dispatcher, orchestrator=orchestrator, store=store
    )


_runtime: Optional[AssistantRuntime] = None


def get_runtime() -> AssistantRuntime:
    global _runtime
    if _runtime is None:
        _runtime = build_runtime()
    return _runtime


def set_runtime(runtime: Optional[AssistantRuntime]) -> None:
    """Set runtime instance (for testing)."""
    global _runtime
    _runtime = runtime
