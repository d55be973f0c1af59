"""
Provider-agnostic chat completion client with tool calling.

Goals:
- One uniform way to call any configured chat model with a tool catalog.
- Calling contract: `await client.complete(messages, tools=...) -> (completion, err_code)`.
- Stable error classification; never raise (callers have deterministic fallbacks).

Env (core):
- LLM_PROVIDER: which provider to use (default: "vertexai")
  - vertexai: Gemini via Vertex AI using `langchain_google_vertexai`
  - anthropic: Claude via Anthropic API using `langchain_anthropic`
- LLM_MODEL: model name (default: "gemini-2.5-flash")
- LLM_MOCK=1: return a deterministic stub (no external calls)
- LLM_TIMEOUT_SECONDS: HTTP timeout for LLM requests (default: 180, range: 5-300)

Vertex requirements:
- GOOGLE_CLOUD_PROJECT, GOOGLE_CLOUD_LOCATION
- Application Default Credentials (ADC)

Anthropic requirements:
- ANTHROPIC_API_KEY
"""

from __future__ import annotations

import json
import logging
import os
import uuid
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional, Sequence, Tuple

from assistant.chat.types import Message, ToolCallRequest
from assistant.llm.tracing import build_invoke_config

logger = logging.getLogger(__name__)

MOCK_REPLY = "LLM_MOCK enabled: no external call was made."


def _env_bool(name: str, default: bool = False) -> bool:
    raw = (os.getenv(name) or "").strip().lower()
    return default if not raw else raw in ("1", "true", "yes", "y", "on")


def _env_num(name: str, default: float, lo: float, hi: float, cast=float):  # type: ignore[no-untyped-def]
    try:
        value = cast((os.getenv(name) or "").strip() or default)
    except ValueError:
        value = default
    return cast(max(lo, min(value, hi)))


def _provider() -> str:
    return (os.getenv("LLM_PROVIDER") or "").strip().lower() or "vertexai"


@dataclass(frozen=True)
class LLMConfig:
    model: str
    temperature: float
    max_output_tokens: int
    timeout: int = 180


@dataclass(frozen=True)
class Completion:
    text: str = ""
    tool_calls: List[ToolCallRequest] = field(default_factory=list)
    model: str = ""


def _load_config() -> LLMConfig:
    return LLMConfig(
        model=(os.getenv("LLM_MODEL") or "").strip() or "gemini-2.5-flash",
        temperature=_env_num("LLM_TEMPERATURE", 0.1, 0.0, 1.0),
        max_output_tokens=_env_num("LLM_MAX_OUTPUT_TOKENS", 4096, 64, 8192, cast=int),
        timeout=_env_num("LLM_TIMEOUT_SECONDS", 180, 5, 300, cast=int),
    )


# First match wins.
_ERROR_RULES: Tuple[Tuple[str, Tuple[str, ...]], ...] = (
    ("timeout", ("408",)),
    ("gateway_timeout", ("504",)),
    ("deadline_exceeded", ("DEADLINE_EXCEEDED", "DEADLINE EXCEEDED")),
    ("timeout", ("TIMEOUT", "TIMED OUT")),
    ("permission_denied", ("PERMISSION_DENIED", "403")),
    ("unauthenticated", ("UNAUTHENTICATED", "401")),
    ("model_not_found", ("404", "NOT FOUND")),
    ("rate_limited", ("429", "RATE LIMIT", "RATE_LIMIT", "OVERLOADED", "RESOURCE_EXHAUSTED")),
    ("max_tokens_truncated", ("MAX_TOKENS", "MAX TOKENS", "CONTEXT LENGTH")),
)


def _classify_error(e: Exception, *, model: str) -> str:
    if isinstance(e, TimeoutError):
        return "timeout"
    text = str(e or "").replace("\n", " ").upper()
    for code, needles in _ERROR_RULES:
        if any(n in text for n in needles):
            return f"model_not_found:{model}" if code == "model_not_found" else code
    if "API_KEY" in text and ("INVALID" in text or "MISSING" in text):
        return "unauthenticated"
    return f"llm_error:{type(e).__name__}"


def _vertex_llm(cfg: LLMConfig) -> Tuple[Any, Optional[str]]:
    project = (os.getenv("GOOGLE_CLOUD_PROJECT") or "").strip()
    location = (os.getenv("GOOGLE_CLOUD_LOCATION") or "").strip()
    if not project:
        return None, "missing_gcp_project"
    if not location:
        return None, "missing_gcp_location"

    # ADC preflight yields a stable error code instead of a deep SDK failure
    try:
        import google.auth  # type: ignore[import-not-found]
        from langchain_google_vertexai import ChatVertexAI  # type: ignore[import-not-found]
    except ImportError as e:
        return None, f"sdk_import_failed:{e.name or 'langchain_google_vertexai'}"
    try:
        google.auth.default(scopes=["https://www.googleapis.com/auth/cloud-platform"])
    except Exception:
        return None, "missing_adc_credentials"

    return (
        ChatVertexAI(
            model=cfg.model,
            temperature=cfg.temperature,
            max_output_tokens=cfg.max_output_tokens,
            project=project,
            location=location,
            timeout=cfg.timeout,
        ),
        None,
    )


def _anthropic_llm(cfg: LLMConfig) -> Tuple[Any, Optional[str]]:
    api_key = (os.getenv("ANTHROPIC_API_KEY") or "").strip()
    if not api_key:
        return None, "missing_api_key"
    try:
        from langchain_anthropic import ChatAnthropic  # type: ignore[import-not-found]
    except ImportError:
        return None, "sdk_import_failed:langchain_anthropic"

    # no extended thinking: it forces temperature=1
    return (
        ChatAnthropic(
            model=cfg.model,
            temperature=cfg.temperature,
            max_tokens=cfg.max_output_tokens,
            anthropic_api_key=api_key,
            timeout=cfg.timeout,
        ),
        None,
    )


_PROVIDERS = {
    "vertexai": _vertex_llm,
    "vertex": _vertex_llm,
    "gcp_vertexai": _vertex_llm,
    "anthropic": _anthropic_llm,
}


def _get_llm_instance(provider: str, cfg: LLMConfig) -> Tuple[Any, Optional[str]]:
    """Returns: (chat model, err_code). Exactly one is None."""
    factory = _PROVIDERS.get(provider)
    if factory is None:
        return None, "provider_not_configured"
    return factory(cfg)


def _parse_args(raw: str) -> Dict[str, Any]:
    try:
        obj = json.loads(raw or "{}")
    except Exception:
        return {}
    return obj if isinstance(obj, dict) else {}


def to_langchain_messages(messages: Sequence[Message]) -> List[Any]:
    from langchain_core.messages import AIMessage, HumanMessage, SystemMessage, ToolMessage

    out: List[Any] = []
    for m in messages:
        if m.role == "system":
            out.append(SystemMessage(content=m.content or ""))
        elif m.role == "user":
            out.append(HumanMessage(content=m.content or ""))
        elif m.role == "assistant":
            calls = [{"name": tc.name, "args": _parse_args(tc.arguments_json), "id": tc.id} for tc in m.tool_calls]
            out.append(AIMessage(content=m.content or "", tool_calls=calls))
        else:
            out.append(ToolMessage(content=m.content or "", tool_call_id=m.tool_call_id or ""))
    return out


def extract_text(content: Any) -> str:
    """Flatten a LangChain message `content` (str or list of content blocks) into text."""
    if content is None:
        return ""
    if isinstance(content, str):
        return content
    text = ""
    if isinstance(content, list):
        for block in content:
            if isinstance(block, str):
                text += block
            elif isinstance(block, dict) and block.get("type") == "text":
                text += str(block.get("text") or "")
            elif hasattr(block, "text"):
                text += str(block.text)
    return text


def _invalid_args_text(tc: Dict[str, Any]) -> str:
    """Raw argument text of a call the provider could not parse; never parses as an empty object."""
    raw = str(tc.get("args") or "").strip()
    if raw:
        return raw
    return f"<unparseable tool arguments: {tc.get('error') or 'missing'}>"


def from_langchain_message(msg: Any, *, model: str) -> Completion:
    calls: List[ToolCallRequest] = []
    for tc in getattr(msg, "tool_calls", None) or []:
        calls.append(
            ToolCallRequest(
                id=str(tc.get("id") or f"call_{uuid.uuid4().hex[:12]}"),
                name=str(tc.get("name") or ""),
                arguments_json=json.dumps(tc.get("args") or {}, ensure_ascii=False),
            )
        )
    # Provider-side parse failures keep their raw argument text so the chat loop can report them.
    for tc in getattr(msg, "invalid_tool_calls", None) or []:
        calls.append(
            ToolCallRequest(
                id=str(tc.get("id") or f"call_{uuid.uuid4().hex[:12]}"),
                name=str(tc.get("name") or ""),
                arguments_json=_invalid_args_text(tc),
            )
        )
    return Completion(text=extract_text(getattr(msg, "content", None)).strip(), tool_calls=calls, model=model)


class ChatCompletionClient:
    """
    Tool-calling completion client backed by a LangChain chat model.

    `llm` may be injected (tests); otherwise it is built per call from env so
    config changes are picked up without a restart.
    """

    def __init__(self, llm: Any = None, *, model_name: Optional[str] = None) -> None:
        self._llm = llm
        self._model_name = model_name

    @property
    def model_name(self) -> str:
        return self._model_name or _load_config().model

    def _resolve_llm(self, *, temperature: Optional[float], max_output_tokens: Optional[int]) -> Tuple[Any, str, Optional[str]]:
        if self._llm is not None:
            return self._llm, self.model_name, None
        cfg = _load_config()
        if temperature is not None:
            cfg = replace(cfg, temperature=max(0.0, min(float(temperature), 1.0)))
        if max_output_tokens is not None:
            cfg = replace(cfg, max_output_tokens=max(64, min(int(max_output_tokens), 8192)))
        llm, err = _get_llm_instance(_provider(), cfg)
        return llm, cfg.model, err

    async def complete(
        self,
        messages: Sequence[Message],
        *,
        tools: Sequence[Dict[str, Any]] = (),
        max_output_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
        run_name: Optional[str] = None,
    ) -> Tuple[Optional[Completion], Optional[str]]:
        """
        Returns: (completion, err_code). Exactly one is non-None.

        `tools` are OpenAI-style function tool dicts; an empty catalog binds no tools.
        """
        if _env_bool("LLM_MOCK", False) and self._llm is None:
            return Completion(text=MOCK_REPLY, tool_calls=[], model="mock"), None

        llm, model, err = self._resolve_llm(temperature=temperature, max_output_tokens=max_output_tokens)
        if err:
            return None, err

        try:
            runnable = llm.bind_tools(list(tools)) if tools else llm
            cfg = build_invoke_config(kind="llm", run_name=run_name or "llm.complete", metadata={"model": model})
            msg = await runnable.ainvoke(to_langchain_messages(messages), config=cfg or None)
            return from_langchain_message(msg, model=model), None
        except Exception as e:
            code = _classify_error(e, model=model)
            logger.warning(f"LLM completion failed: {code}")
            return None, code


_client: Optional[ChatCompletionClient] = None


def get_completion_client() -> ChatCompletionClient:
    global _client
    if _client is None:
        _client = ChatCompletionClient()
    return _client


def set_completion_client(client: Optional[ChatCompletionClient]) -> None:
    """Override the process-wide client (tests)."""
    global _client
    _client = client
