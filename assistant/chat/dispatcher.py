from __future__ import annotations

import logging
from typing import Any, Dict, Mapping, Optional, Protocol

from assistant.analysis.aggregator import ResultAggregator
from assistant.analysis.pipeline import RepositoryAnalysisPipeline
from assistant.chat.registry import ToolRegistry
from assistant.chat.tools import ToolResult
from assistant.errors import InvalidRequestError
from assistant.providers.github_provider import normalize_repository_name
from assistant.providers.tool_provider import ANALYZE_REPOSITORY_TOOL, ToolProvider

logger = logging.getLogger(__name__)


class ToolHandler(Protocol):
    async def __call__(self, name: str, args: Dict[str, Any]) -> ToolResult: ...


class ForwardToProvider:
    """Default handler: pass the call through to the tool provider unchanged."""

    def __init__(self, provider: ToolProvider) -> None:
        self.provider = provider

    async def __call__(self, name: str, args: Dict[str, Any]) -> ToolResult:
        result = await self.provider.call_tool(name, args)
        return ToolResult(ok=True, result=result)


class RepositoryAnalysisHandler:
    """
    Run the chunked analysis pipeline for calls that carry `repositoryName`.
    Calls without one are forwarded to the provider as-is.
    """

    def __init__(self, pipeline: RepositoryAnalysisPipeline, fallback: ToolHandler) -> None:
        self.pipeline = pipeline
        self.fallback = fallback

    async def __call__(self, name: str, args: Dict[str, Any]) -> ToolResult:
        raw = args.get("repositoryName")
        if not isinstance(raw, str) or not raw.strip():
            return await self.fallback(name, args)

        repo = normalize_repository_name(raw)
        logger.info(f"Routing {name} for {repo} to the chunked analysis pipeline")
        report = await self.pipeline.run(
            repo,
            branch=args.get("branch"),
            max_tokens_per_chunk=args.get("maxTokensPerChunk"),
            exclude_patterns=args.get("excludePatterns"),
        )
        rendered = ResultAggregator.render(report)
        if report.error:
            return ToolResult(ok=False, result=rendered, error=report.error, details=f"repository={repo}")
        return ToolResult(ok=True, result=rendered)


class ToolDispatcher:
    """
    Resolve a tool call against the registry and execute it.

    `dispatch` never raises. Unknown names, argument errors and provider
    failures all come back as `ToolResult(ok=False, error=..., details=...)`.
    """

    def __init__(
        self,
        registry: ToolRegistry,
        provider: ToolProvider,
        *,
        pipeline: Optional[RepositoryAnalysisPipeline] = None,
        handlers: Optional[Mapping[str, ToolHandler]] = None,
    ) -> None:
        self.registry = registry
        self.default_handler: ToolHandler = ForwardToProvider(provider)
        self.handlers: Dict[str, ToolHandler] = {}
        if pipeline is not None:
            self.handlers[ANALYZE_REPOSITORY_TOOL] = RepositoryAnalysisHandler(pipeline, self.default_handler)
        if handlers:
            self.handlers.update(handlers)

    def handler_for(self, name: str) -> Optional[ToolHandler]:
        if self.registry.get(name) is None:
            return None
        return self.handlers.get(name, self.default_handler)

    async def dispatch(self, name: str, args: Dict[str, Any]) -> ToolResult:
        handler = self.handler_for(name)
        if handler is None:
            logger.warning(f"Model requested unregistered tool: {name}")
            return ToolResult.failure("unknown_tool", f"Tool '{name}' is not registered")

        try:
            return await handler(name, dict(args or {}))
        except InvalidRequestError as e:
            return ToolResult.failure("invalid_arguments", str(e))
        except Exception as e:
            logger.exception(f"Tool {name} failed")
            return ToolResult.failure(str(e) or type(e).__name__, type(e).__name__)
