from __future__ import annotations

from typing import Any, Dict, List

import pytest

from assistant.chat.registry import ToolRegistry
from assistant.chat.tools import ToolDefinition, ToolResult
from assistant.errors import ToolProviderUnavailable, ToolRegistryError


class _Provider:
    def __init__(self, tools: List[Any]) -> None:
        self.tools = tools
        self.fail = False

    async def list_tools(self) -> List[Any]:
        if self.fail:
            raise ToolProviderUnavailable("tool server unreachable: ConnectionError")
        return list(self.tools)

    async def call_tool(self, name: str, arguments: Dict[str, Any]) -> Any:
        return {}


@pytest.mark.asyncio
async def test_refresh_loads_catalog_in_provider_order() -> None:
    reg = ToolRegistry(_Provider([ToolDefinition(name="b"), ToolDefinition(name="a", description="A tool")]))

    tools = await reg.refresh()

    assert [t.name for t in tools] == ["b", "a"]
    assert [t.name for t in reg.list()] == ["b", "a"]
    assert reg.get("a").description == "A tool"  # type: ignore[union-attr]
    assert reg.get("missing") is None
    assert reg.openai_tools()[1] == {
        "type": "function",
        "function": {"name": "a", "description": "A tool", "parameters": {"type": "object", "properties": {}}},
    }


@pytest.mark.asyncio
async def test_failed_refresh_clears_catalog_and_raises() -> None:
    provider = _Provider([ToolDefinition(name="a")])
    reg = ToolRegistry(provider)
    await reg.refresh()

    provider.fail = True
    with pytest.raises(ToolRegistryError):
        await reg.refresh()

    assert reg.list() == []
    assert reg.get("a") is None


@pytest.mark.asyncio
async def test_malformed_entry_fails_the_whole_refresh() -> None:
    reg = ToolRegistry(_Provider([ToolDefinition(name="a"), {"name": "raw-dict"}]))

    with pytest.raises(ToolRegistryError):
        await reg.refresh()
    assert reg.list() == []


@pytest.mark.asyncio
async def test_duplicate_names_keep_first_definition() -> None:
    reg = ToolRegistry(_Provider([ToolDefinition(name="a", description="first"), ToolDefinition(name="a", description="second")]))

    tools = await reg.refresh()

    assert len(tools) == 1
    assert reg.get("a").description == "first"  # type: ignore[union-attr]


def test_list_is_a_copy() -> None:
    reg = ToolRegistry(_Provider([]))
    reg.list().append(ToolDefinition(name="x"))
    assert reg.list() == []


def test_tool_result_payloads() -> None:
    assert ToolResult(ok=True, result={"a": 1}).to_content() == '{"a": 1}'
    assert ToolResult(ok=True, result="plain").to_content() == "plain"

    failed = ToolResult(ok=False, result={"repository": "api"}, error="All chunk analyses failed", details="x")
    assert failed.to_payload() == {"repository": "api", "error": "All chunk analyses failed", "details": "x"}
    assert ToolResult.failure("unknown_tool").to_payload() == {"error": "unknown_tool", "details": None}


def test_tool_result_truncates_oversized_content() -> None:
    out = ToolResult(ok=True, result="y" * 500).to_content(max_chars=100)
    assert out.startswith('{"truncated": true')
    assert "y" * 100 in out
