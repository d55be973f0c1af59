"""
Tool providers: where tool definitions come from and where calls are executed.

- HttpToolProvider: remote tool server (GET /tools, POST /tools/call)
- GitHubToolProvider: built-in read-only repository tools
- CompositeToolProvider: merges several providers behind one catalog

Env:
- TOOL_SERVER_URL: base URL of a remote tool server (optional)
- TOOL_SERVER_TIMEOUT_SECONDS: per-call timeout (default: 300, range: 5-900)
- GITHUB_TOOLS_ENABLED: expose the built-in GitHub tools (default: 1)
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Protocol, Sequence

import requests

from assistant.chat.tools import ToolDefinition
from assistant.errors import ToolExecutionFailed, ToolProviderUnavailable
from assistant.providers.github_provider import (
    GitHubProvider,
    get_github_provider,
    normalize_repository_name,
    repository_full_name,
)

logger = logging.getLogger(__name__)

ANALYZE_REPOSITORY_TOOL = "analyze_repository_code"


def _env_bool(name: str, default: bool = False) -> bool:
    raw = (os.getenv(name) or "").strip().lower()
    if not raw:
        return default
    return raw in ("1", "true", "yes", "y", "on")


def _env_int(name: str, default: int) -> int:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except Exception:
        return default


class ToolProvider(Protocol):
    """Uniform contract for an external tool provider."""

    async def list_tools(self) -> List[ToolDefinition]:
        """Raises on any transport/protocol failure (the registry treats it as fatal)."""
        ...

    async def call_tool(self, name: str, arguments: Dict[str, Any]) -> Any:
        """Return the tool's JSON-compatible result; raise on failure."""
        ...


def _definition_from_wire(obj: Any) -> ToolDefinition:
    if not isinstance(obj, dict) or not str(obj.get("name") or "").strip():
        raise ValueError(f"malformed tool entry: {obj!r}")
    schema = obj.get("inputSchema") or obj.get("parameters") or obj.get("parameterSchema")
    return ToolDefinition(
        name=str(obj["name"]).strip(),
        description=str(obj.get("description") or ""),
        parameter_schema=schema if isinstance(schema, dict) else {"type": "object", "properties": {}},
    )


def _decode_call_response(data: Any) -> Any:
    """
    Tool server responses carry `content: [{"type": "text", "text": ...}]`.
    The first text block is decoded as JSON when possible.
    """
    if not isinstance(data, dict):
        return data
    content = data.get("content")
    if not isinstance(content, list):
        return data
    texts = [str(b.get("text") or "") for b in content if isinstance(b, dict) and b.get("type") == "text"]
    if not texts:
        return content
    try:
        return json.loads(texts[0])
    except Exception:
        return texts[0] if len(texts) == 1 else "\n".join(texts)


class HttpToolProvider:
    def __init__(self, base_url: str, *, timeout: int = 300, session: Optional[requests.Session] = None) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._session = session or requests.Session()

    def _get_tools(self) -> List[ToolDefinition]:
        response = self._session.get(f"{self.base_url}/tools", timeout=min(self.timeout, 30))
        response.raise_for_status()
        data = response.json()
        tools = data.get("tools") if isinstance(data, dict) else data
        if not isinstance(tools, list):
            raise ValueError("tool server returned no tool list")
        return [_definition_from_wire(t) for t in tools]

    def _post_call(self, name: str, arguments: Dict[str, Any]) -> Any:
        response = self._session.post(
            f"{self.base_url}/tools/call",
            json={"name": name, "arguments": arguments},
            timeout=self.timeout,
        )
        response.raise_for_status()
        data = response.json()
        result = _decode_call_response(data)
        if isinstance(data, dict) and data.get("isError"):
            raise ToolExecutionFailed(result if isinstance(result, str) else json.dumps(result, default=str))
        return result

    async def list_tools(self) -> List[ToolDefinition]:
        try:
            return await asyncio.to_thread(self._get_tools)
        except requests.RequestException as e:
            raise ToolProviderUnavailable(f"tool server unreachable: {type(e).__name__}") from e

    async def call_tool(self, name: str, arguments: Dict[str, Any]) -> Any:
        try:
            return await asyncio.to_thread(self._post_call, name, dict(arguments or {}))
        except requests.RequestException as e:
            raise ToolProviderUnavailable(f"tool server unreachable: {type(e).__name__}") from e


_REPO_PARAM = {"type": "string", "description": "Repository name, 'org/repo', or GitHub URL"}

GITHUB_TOOLS: Sequence[ToolDefinition] = (
    ToolDefinition(
        name="get_repository_metadata",
        description="Get the metadata associated with a GitHub repository. Not associated with SDLC analysis.",
        parameter_schema={
            "type": "object",
            "properties": {"repositoryName": _REPO_PARAM},
            "required": ["repositoryName"],
        },
    ),
    ToolDefinition(
        name=ANALYZE_REPOSITORY_TOOL,
        description=(
            "Analyze a repository's source code for SDLC practices, security, code quality and architecture. "
            "Returns a synthesized report. SDLC analysis is the core objective of this tool."
        ),
        parameter_schema={
            "type": "object",
            "properties": {
                "repositoryName": _REPO_PARAM,
                "branch": {"type": "string", "description": "Branch name (defaults to 'main')"},
                "maxTokensPerChunk": {"type": "number", "description": "Maximum tokens per chunk (defaults to 100000)"},
                "excludePatterns": {
                    "type": "array",
                    "items": {"type": "string"},
                    "description": "Path substrings to exclude from analysis",
                },
            },
            "required": ["repositoryName"],
        },
    ),
    ToolDefinition(
        name="read_repository_file",
        description="Read a single file from a GitHub repository.",
        parameter_schema={
            "type": "object",
            "properties": {
                "repositoryName": _REPO_PARAM,
                "path": {"type": "string", "description": "File path, e.g. 'README.md'"},
                "ref": {"type": "string", "description": "Branch, tag or commit SHA (defaults to 'main')"},
            },
            "required": ["repositoryName", "path"],
        },
    ),
    ToolDefinition(
        name="get_recent_commits",
        description="List recent commits on a branch (newest first, capped at 30).",
        parameter_schema={
            "type": "object",
            "properties": {
                "repositoryName": _REPO_PARAM,
                "branch": {"type": "string", "description": "Branch name (defaults to 'main')"},
                "hours": {"type": "number", "description": "Look-back window in hours (default 168, max 720)"},
                "limit": {"type": "number", "description": "Maximum commits to return (default 20, max 30)"},
            },
            "required": ["repositoryName"],
        },
    ),
)


class GitHubToolProvider:
    """Built-in GitHub tools; blocking HTTP runs in a worker thread."""

    def __init__(self, github: Optional[GitHubProvider] = None) -> None:
        self._github = github

    @property
    def github(self) -> GitHubProvider:
        return self._github or get_github_provider()

    async def list_tools(self) -> List[ToolDefinition]:
        return list(GITHUB_TOOLS)

    async def call_tool(self, name: str, arguments: Dict[str, Any]) -> Any:
        args = dict(arguments or {})
        repo = repository_full_name(str(args.get("repositoryName") or ""))
        if not repo:
            raise ToolExecutionFailed("repositoryName is required")

        if name == "get_repository_metadata":
            out = await asyncio.to_thread(self.github.get_repository_metadata, repo)
            if isinstance(out, dict) and out.get("error"):
                raise ToolExecutionFailed(f"{out['error']}: {out.get('message') or ''}".strip())
            return out

        if name == "read_repository_file":
            path = str(args.get("path") or "").strip()
            if not path:
                raise ToolExecutionFailed("path is required")
            ref = str(args.get("ref") or "main")
            text = await asyncio.to_thread(self.github.get_file_contents, repo, path, ref)
            return {"repository": repo, "path": path, "ref": ref, "content": text[:20000], "truncated": len(text) > 20000}

        if name == "get_recent_commits":
            try:
                hours = max(1, min(int(args.get("hours") or 168), 720))
                limit = max(1, min(int(args.get("limit") or 20), 30))
            except (TypeError, ValueError) as e:
                raise ToolExecutionFailed(f"invalid numeric argument: {e}") from e
            until = datetime.now(timezone.utc)
            commits = await asyncio.to_thread(
                self.github.get_recent_commits,
                repo,
                until - timedelta(hours=hours),
                until,
                str(args.get("branch") or "main"),
            )
            if commits and isinstance(commits[0], dict) and commits[0].get("error"):
                raise ToolExecutionFailed(f"{commits[0]['error']}: {commits[0].get('message') or ''}".strip())
            return {"repository": repo, "commits": commits[:limit]}

        if name == ANALYZE_REPOSITORY_TOOL:
            # Direct calls return the chunk plan; the dispatcher runs the full analysis.
            from assistant.analysis.pipeline import RepositoryAnalysisPipeline

            pipeline = RepositoryAnalysisPipeline.from_env(github=self._github)
            prepared = await pipeline.prepare(
                normalize_repository_name(repo),
                branch=args.get("branch"),
                max_tokens_per_chunk=args.get("maxTokensPerChunk"),
                exclude_patterns=args.get("excludePatterns"),
            )
            return prepared.to_chunk_payload()

        raise ToolExecutionFailed(f"unknown_tool:{name}")


class CompositeToolProvider:
    """
    Merge several providers into one catalog. The first provider to advertise
    a name owns it; calls are routed to the owner.
    """

    def __init__(self, providers: Sequence[ToolProvider]) -> None:
        self._providers = list(providers)
        self._routes: Dict[str, ToolProvider] = {}

    async def list_tools(self) -> List[ToolDefinition]:
        out: List[ToolDefinition] = []
        routes: Dict[str, ToolProvider] = {}
        for p in self._providers:
            for t in await p.list_tools():
                if t.name in routes:
                    logger.warning(f"Tool {t.name} advertised by more than one provider; keeping the first")
                    continue
                routes[t.name] = p
                out.append(t)
        self._routes = routes
        return out

    async def call_tool(self, name: str, arguments: Dict[str, Any]) -> Any:
        if name not in self._routes:
            await self.list_tools()
        provider = self._routes.get(name)
        if provider is None:
            raise ToolExecutionFailed(f"unknown_tool:{name}")
        return await provider.call_tool(name, arguments)


def build_tool_provider() -> ToolProvider:
    providers: List[ToolProvider] = []
    if _env_bool("GITHUB_TOOLS_ENABLED", True):
        providers.append(GitHubToolProvider())
    base_url = (os.getenv("TOOL_SERVER_URL") or "").strip()
    if base_url:
        timeout = max(5, min(_env_int("TOOL_SERVER_TIMEOUT_SECONDS", 300), 900))
        providers.append(HttpToolProvider(base_url, timeout=timeout))
    return CompositeToolProvider(providers)
