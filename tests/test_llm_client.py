"""Tool-calling completion client with an injected fake LangChain chat model."""

from __future__ import annotations

import json
from typing import Any, List

import pytest
from langchain_core.messages import AIMessage, HumanMessage, SystemMessage, ToolMessage

from assistant.chat.types import Message, ToolCallRequest
from assistant.llm.client import (
    MOCK_REPLY,
    ChatCompletionClient,
    extract_text,
    from_langchain_message,
    to_langchain_messages,
)


class _FakeLLM:
    def __init__(self, reply: Any = None, exc: Exception | None = None) -> None:
        self.reply = reply if reply is not None else AIMessage(content="ok")
        self.exc = exc
        self.bound: List[Any] = []
        self.invocations: List[Any] = []

    def bind_tools(self, tools):  # type: ignore[no-untyped-def]
        self.bound.append(tools)
        return self

    async def ainvoke(self, messages, config=None):  # type: ignore[no-untyped-def]
        self.invocations.append(messages)
        if self.exc is not None:
            raise self.exc
        return self.reply


_TOOL = {"type": "function", "function": {"name": "a", "description": "", "parameters": {"type": "object"}}}


@pytest.mark.asyncio
async def test_no_tool_catalog_means_no_bind() -> None:
    llm = _FakeLLM()
    completion, err = await ChatCompletionClient(llm, model_name="fake").complete([Message(role="user", content="hi")])

    assert err is None
    assert completion is not None
    assert completion.text == "ok"
    assert completion.tool_calls == []
    assert completion.model == "fake"
    assert llm.bound == []


@pytest.mark.asyncio
async def test_tool_catalog_is_bound_and_calls_are_returned() -> None:
    reply = AIMessage(content="", tool_calls=[{"name": "a", "args": {"repositoryName": "api"}, "id": "call_1"}])
    llm = _FakeLLM(reply)

    completion, err = await ChatCompletionClient(llm).complete([Message(role="user", content="hi")], tools=[_TOOL])

    assert err is None
    assert llm.bound == [[_TOOL]]
    [call] = completion.tool_calls  # type: ignore[union-attr]
    assert call.id == "call_1"
    assert call.name == "a"
    assert json.loads(call.arguments_json) == {"repositoryName": "api"}


@pytest.mark.asyncio
async def test_provider_exception_is_classified() -> None:
    llm = _FakeLLM(exc=RuntimeError("429 rate limit exceeded"))
    completion, err = await ChatCompletionClient(llm).complete([Message(role="user", content="hi")])

    assert completion is None
    assert err == "rate_limited"


@pytest.mark.asyncio
async def test_mock_mode_makes_no_call(monkeypatch) -> None:
    monkeypatch.setenv("LLM_MOCK", "1")
    completion, err = await ChatCompletionClient().complete([Message(role="user", content="hi")])

    assert err is None
    assert completion.text == MOCK_REPLY  # type: ignore[union-attr]


@pytest.mark.asyncio
async def test_unknown_provider(monkeypatch) -> None:
    monkeypatch.setenv("LLM_PROVIDER", "carrier-pigeon")
    completion, err = await ChatCompletionClient().complete([Message(role="user", content="hi")])

    assert completion is None
    assert err == "provider_not_configured"


@pytest.mark.asyncio
async def test_anthropic_requires_api_key(monkeypatch) -> None:
    monkeypatch.setenv("LLM_PROVIDER", "anthropic")
    monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)

    _, err = await ChatCompletionClient().complete([Message(role="user", content="hi")])
    assert err == "missing_api_key"


@pytest.mark.asyncio
async def test_vertex_requires_project(monkeypatch) -> None:
    monkeypatch.setenv("LLM_PROVIDER", "vertexai")
    monkeypatch.delenv("GOOGLE_CLOUD_PROJECT", raising=False)

    _, err = await ChatCompletionClient().complete([Message(role="user", content="hi")])
    assert err == "missing_gcp_project"


def test_message_conversion() -> None:
    msgs = [
        Message(role="system", content="sys"),
        Message(role="user", content="question"),
        Message(role="assistant", tool_calls=[ToolCallRequest(id="c1", name="a", arguments_json='{"x": 1}')]),
        Message(role="tool", content='{"ok": true}', tool_call_id="c1"),
    ]

    out = to_langchain_messages(msgs)

    assert [type(m) for m in out] == [SystemMessage, HumanMessage, AIMessage, ToolMessage]
    assert out[2].tool_calls[0]["args"] == {"x": 1}
    assert out[2].tool_calls[0]["id"] == "c1"
    assert out[3].tool_call_id == "c1"


def test_malformed_arguments_are_kept_verbatim() -> None:
    msg = AIMessage(
        content="",
        invalid_tool_calls=[{"name": "a", "args": "{broken", "id": "c9", "error": "bad json", "type": "invalid_tool_call"}],
    )

    completion = from_langchain_message(msg, model="m")

    assert [(c.id, c.name, c.arguments_json) for c in completion.tool_calls] == [("c9", "a", "{broken")]



def test_invalid_call_without_arguments_never_parses_as_empty() -> None:
    from assistant.chat.orchestrator import parse_tool_arguments

    msg = AIMessage(
        content="",
        invalid_tool_calls=[{"name": "a", "args": None, "id": "c7", "error": "truncated", "type": "invalid_tool_call"}],
    )

    (call,) = from_langchain_message(msg, model="m").tool_calls

    assert "truncated" in call.arguments_json
    with pytest.raises(ValueError):
        parse_tool_arguments(call.arguments_json)

def test_extract_text_flattens_content_blocks() -> None:
    assert extract_text(None) == ""
    assert extract_text("plain") == "plain"
    assert extract_text([{"type": "text", "text": "a"}, {"type": "tool_use", "id": "x"}, "b"]) == "ab"
