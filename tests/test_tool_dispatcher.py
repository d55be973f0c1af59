from __future__ import annotations

from typing import Any, Dict, List, Optional

import pytest

from assistant.analysis.models import AggregatedReport
from assistant.chat.dispatcher import ToolDispatcher
from assistant.chat.registry import ToolRegistry
from assistant.chat.tools import ToolDefinition
from assistant.errors import InvalidRequestError, ToolExecutionFailed
from assistant.providers.tool_provider import ANALYZE_REPOSITORY_TOOL


class _Provider:
    def __init__(self) -> None:
        self.calls: List[tuple] = []
        self.raise_with: Optional[Exception] = None

    async def list_tools(self) -> List[ToolDefinition]:
        return [ToolDefinition(name="get_repository_metadata"), ToolDefinition(name=ANALYZE_REPOSITORY_TOOL)]

    async def call_tool(self, name: str, arguments: Dict[str, Any]) -> Any:
        self.calls.append((name, arguments))
        if self.raise_with is not None:
            raise self.raise_with
        return {"name": "payments-api", "default_branch": "main"}


class _Pipeline:
    def __init__(self, report: Optional[AggregatedReport] = None, exc: Optional[Exception] = None) -> None:
        self.report = report
        self.exc = exc
        self.calls: List[Dict[str, Any]] = []

    async def run(self, repository: str, **kwargs: Any) -> AggregatedReport:
        self.calls.append({"repository": repository, **kwargs})
        if self.exc is not None:
            raise self.exc
        return self.report or AggregatedReport(repository=repository, synthesized_text="report")


async def _dispatcher(pipeline: Optional[_Pipeline] = None):  # type: ignore[no-untyped-def]
    provider = _Provider()
    registry = ToolRegistry(provider)
    await registry.refresh()
    return ToolDispatcher(registry, provider, pipeline=pipeline), provider  # type: ignore[arg-type]


@pytest.mark.asyncio
async def test_unregistered_tool_is_reported_not_raised() -> None:
    d, provider = await _dispatcher()

    res = await d.dispatch("delete_repository", {})

    assert res.ok is False
    assert res.error == "unknown_tool"
    assert "delete_repository" in (res.details or "")
    assert provider.calls == []


@pytest.mark.asyncio
async def test_registered_tool_is_forwarded_to_provider() -> None:
    d, provider = await _dispatcher()

    res = await d.dispatch("get_repository_metadata", {"repositoryName": "payments-api"})

    assert res.ok is True
    assert res.result["default_branch"] == "main"
    assert provider.calls == [("get_repository_metadata", {"repositoryName": "payments-api"})]


@pytest.mark.asyncio
async def test_provider_failure_becomes_error_result() -> None:
    d, provider = await _dispatcher()
    provider.raise_with = ToolExecutionFailed("github_error:HTTPError: 404 Not Found")

    res = await d.dispatch("get_repository_metadata", {"repositoryName": "ghost"})

    assert res.ok is False
    assert res.error == "github_error:HTTPError: 404 Not Found"
    assert res.details == "ToolExecutionFailed"


@pytest.mark.asyncio
async def test_analysis_call_with_url_runs_pipeline_on_normalized_name() -> None:
    pipeline = _Pipeline()
    d, provider = await _dispatcher(pipeline)

    res = await d.dispatch(
        ANALYZE_REPOSITORY_TOOL,
        {"repositoryName": "https://github.com/acme/payments-api.git", "branch": "dev", "maxTokensPerChunk": 50000},
    )

    assert res.ok is True
    assert res.result["comprehensiveAnalysis"] == "report"
    assert pipeline.calls == [
        {"repository": "payments-api", "branch": "dev", "max_tokens_per_chunk": 50000, "exclude_patterns": None}
    ]
    assert provider.calls == []


@pytest.mark.asyncio
async def test_analysis_call_without_repository_is_forwarded() -> None:
    pipeline = _Pipeline()
    d, provider = await _dispatcher(pipeline)

    res = await d.dispatch(ANALYZE_REPOSITORY_TOOL, {"branch": "main"})

    assert res.ok is True
    assert pipeline.calls == []
    assert provider.calls == [(ANALYZE_REPOSITORY_TOOL, {"branch": "main"})]


@pytest.mark.asyncio
async def test_analysis_error_report_is_a_failed_result_with_details() -> None:
    pipeline = _Pipeline(report=AggregatedReport(repository="ghost", error="Repository code not found for: ghost"))
    d, _ = await _dispatcher(pipeline)

    res = await d.dispatch(ANALYZE_REPOSITORY_TOOL, {"repositoryName": "ghost"})

    assert res.ok is False
    assert res.error == "Repository code not found for: ghost"
    assert res.to_payload()["repository"] == "ghost"


@pytest.mark.asyncio
async def test_invalid_analysis_arguments() -> None:
    d, _ = await _dispatcher(_Pipeline(exc=InvalidRequestError("maxTokensPerChunk must be positive, got -1")))

    res = await d.dispatch(ANALYZE_REPOSITORY_TOOL, {"repositoryName": "api", "maxTokensPerChunk": -1})

    assert res.ok is False
    assert res.error == "invalid_arguments"
    assert "positive" in (res.details or "")


@pytest.mark.asyncio
async def test_custom_handler_overrides_default() -> None:
    provider = _Provider()
    registry = ToolRegistry(provider)
    await registry.refresh()

    async def _local(name: str, args: Dict[str, Any]):  # type: ignore[no-untyped-def]
        from assistant.chat.tools import ToolResult

        return ToolResult(ok=True, result={"local": name})

    d = ToolDispatcher(registry, provider, handlers={"get_repository_metadata": _local})

    res = await d.dispatch("get_repository_metadata", {})
    assert res.result == {"local": "get_repository_metadata"}
    assert provider.calls == []
