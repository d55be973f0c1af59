from __future__ import annotations

import asyncio
import json
import logging
import weakref
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, TypedDict

from assistant.chat.dispatcher import ToolDispatcher
from assistant.chat.policy import ChatPolicy
from assistant.chat.prompts import EMPTY_REPLY, EXHAUSTED_REPLY, SYSTEM_PROMPT, fallback_reply
from assistant.chat.registry import ToolRegistry
from assistant.chat.tools import ToolResult
from assistant.chat.types import DisplayMessage, Message, ToolCallRequest
from assistant.errors import InvalidRequestError
from assistant.llm.client import ChatCompletionClient
from assistant.llm.tracing import build_invoke_config, trace_tool_call
from assistant.memory.session_store import SessionStore

logger = logging.getLogger(__name__)


class TurnPhase(str, Enum):
    LOADING = "loading"
    AWAITING_MODEL = "awaiting_model"
    DISPATCHING_TOOLS = "dispatching_tools"
    DONE = "done"
    EXHAUSTED = "exhausted"


@dataclass(frozen=True)
class TurnResult:
    assistant_text: str
    transcript: List[DisplayMessage]
    iterations: int
    outcome: TurnPhase


# Module level: LangGraph resolves state type hints at compile time.
class TurnState(TypedDict, total=False):
    messages: List[Message]
    pending_calls: List[ToolCallRequest]
    iterations: int
    phase: str
    final_text: Optional[str]


def ensure_system_message(messages: Sequence[Message], prompt: str) -> List[Message]:
    out = list(messages)
    if not out or out[0].role != "system":
        out.insert(0, Message(role="system", content=prompt))
    return out


def window_history(history: Sequence[DisplayMessage], size: int) -> List[Message]:
    """Last `size` stored display messages as model context."""
    if size <= 0:
        return []
    return [Message(role=m.role, content=m.content) for m in list(history)[-size:]]


def parse_tool_arguments(raw: str) -> Dict[str, Any]:
    """
    Raises:
        ValueError when `raw` is not a JSON object
    """
    text = (raw or "").strip() or "{}"
    obj = json.loads(text)
    if not isinstance(obj, dict):
        raise ValueError(f"tool arguments must be a JSON object, got {type(obj).__name__}")
    return obj


class ConversationOrchestrator:
    """
    Bounded model/tool loop for one chat turn.

    Per turn: one transcript read, up to `policy.max_iterations` model calls,
    tool calls dispatched one at a time in the order the model emitted them,
    one transcript write. Turns on the same session id are serialized.
    """

    def __init__(
        self,
        *,
        client: ChatCompletionClient,
        registry: ToolRegistry,
        dispatcher: ToolDispatcher,
        store: SessionStore,
        policy: Optional[ChatPolicy] = None,
    ) -> None:
        self.client = client
        self.registry = registry
        self.dispatcher = dispatcher
        self.store = store
        self.policy = policy or ChatPolicy()
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()
        self._graph = self._build_graph()

    @property
    def system_prompt(self) -> str:
        return self.policy.system_prompt or SYSTEM_PROMPT

    def _lock_for(self, session_id: str) -> asyncio.Lock:
        lock = self._locks.get(session_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[session_id] = lock
        return lock

    async def clear_history(self, session_id: str) -> int:
        """
        Delete the stored transcript once any in-flight turn on the session has saved.

        Raises:
            SessionStoreUnavailable
        """
        async with self._lock_for(session_id):
            return await self.store.delete(session_id)

    def _build_graph(self):
        from langgraph.graph import END, StateGraph  # type: ignore[import-not-found]

        policy = self.policy

        async def model_step(state):
            messages = list(state.get("messages") or [])
            iterations = int(state.get("iterations") or 0) + 1
            completion, err = await self.client.complete(
                messages,
                tools=self.registry.openai_tools(),
                temperature=policy.temperature,
                run_name=f"chat_turn:model:{iterations}",
            )
            if err or completion is None:
                logger.warning(f"Completion failed on iteration {iterations}: {err}")
                return {
                    "iterations": iterations,
                    "phase": TurnPhase.DONE.value,
                    "final_text": fallback_reply(err or "empty_completion"),
                    "pending_calls": [],
                }

            if completion.tool_calls:
                messages.append(
                    Message(role="assistant", content=completion.text or None, tool_calls=list(completion.tool_calls))
                )
                return {
                    "messages": messages,
                    "iterations": iterations,
                    "phase": TurnPhase.DISPATCHING_TOOLS.value,
                    "pending_calls": list(completion.tool_calls),
                }

            return {
                "iterations": iterations,
                "phase": TurnPhase.DONE.value,
                "final_text": completion.text or EMPTY_REPLY,
                "pending_calls": [],
            }

        async def tool_step(state):
            messages = list(state.get("messages") or [])
            for call in state.get("pending_calls") or []:
                try:
                    args = parse_tool_arguments(call.arguments_json)
                except ValueError as e:
                    logger.info(f"Tool {call.name} called with unparseable arguments")
                    result = ToolResult.failure("invalid_arguments", f"Could not parse arguments as JSON object: {e}")
                else:
                    result = await trace_tool_call(
                        tool=call.name,
                        args=args,
                        fn=lambda name=call.name, a=args: self.dispatcher.dispatch(name, a),
                    )
                if not result.ok:
                    logger.info(f"Tool {call.name} returned error: {result.error}")
                # One tool message per call, success or failure.
                messages.append(Message(role="tool", content=result.to_content(), tool_call_id=call.id))
            return {"messages": messages, "pending_calls": [], "phase": TurnPhase.AWAITING_MODEL.value}

        def exhausted_step(state):
            logger.warning(f"Turn exhausted after {state.get('iterations')} model call(s)")
            return {"phase": TurnPhase.EXHAUSTED.value, "final_text": EXHAUSTED_REPLY}

        def route_after_model(state) -> str:
            if state.get("phase") == TurnPhase.DISPATCHING_TOOLS.value:
                return "tools"
            return "end"

        def route_after_tools(state) -> str:
            if int(state.get("iterations") or 0) >= int(policy.max_iterations):
                return "exhausted"
            return "model"

        g = StateGraph(TurnState)
        g.add_node("model", model_step)
        g.add_node("tools", tool_step)
        g.add_node("exhausted", exhausted_step)
        g.set_entry_point("model")
        g.add_conditional_edges("model", route_after_model, {"tools": "tools", "end": END})
        g.add_conditional_edges("tools", route_after_tools, {"model": "model", "exhausted": "exhausted"})
        g.add_edge("exhausted", END)
        return g.compile()

    async def handle_turn(self, session_id: str, user_text: str) -> TurnResult:
        """
        Raises:
            InvalidRequestError: empty session id or message (before any I/O)
            SessionStoreUnavailable: transcript could not be read or written
        """
        sid = (session_id or "").strip()
        if not sid:
            raise InvalidRequestError("sessionId is required")
        if not (user_text or "").strip():
            raise InvalidRequestError("message is required")

        async with self._lock_for(sid):
            history = await self.store.load(sid)
            user_msg = DisplayMessage.create(role="user", content=user_text, session_id=sid)

            context = ensure_system_message(window_history(history, self.policy.context_window), self.system_prompt)
            context.append(Message(role="user", content=user_text))

            init: TurnState = {
                "messages": context,
                "pending_calls": [],
                "iterations": 0,
                "phase": TurnPhase.AWAITING_MODEL.value,
                "final_text": None,
            }
            cfg = build_invoke_config(
                kind="chat_turn",
                run_name=f"chat_turn:{sid}",
                metadata={"session_id": sid, "max_iterations": int(self.policy.max_iterations)},
            )
            cfg["recursion_limit"] = 2 * int(self.policy.max_iterations) + 5
            out = await self._graph.ainvoke(init, config=cfg)

            outcome = TurnPhase(out.get("phase") or TurnPhase.DONE.value)
            final = str(out.get("final_text") or "").strip() or EXHAUSTED_REPLY
            iterations = int(out.get("iterations") or 0)
            assistant_msg = DisplayMessage.create(role="assistant", content=final, session_id=sid)

            transcript = list(history) + [user_msg, assistant_msg]
            await self.store.save(sid, transcript, self.policy.session_ttl_seconds)

        logger.info(f"Turn finished for session {sid}: outcome={outcome.value} iterations={iterations}")
        return TurnResult(assistant_text=final, transcript=transcript, iterations=iterations, outcome=outcome)
