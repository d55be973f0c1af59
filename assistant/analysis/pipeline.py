"""
Repository analysis pipeline: fetch -> filter -> plan -> analyze chunks -> aggregate.

Chunk analyses run behind an `asyncio.Semaphore` (ANALYSIS_MAX_CONCURRENCY,
default 1 = sequential). Results are reassembled in chunk-index order, so the
concurrency limit never changes the report.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Protocol, Sequence

from assistant.analysis.aggregator import ResultAggregator
from assistant.analysis.analyzer import ChunkAnalyzer
from assistant.analysis.config import AnalysisConfig, load_analysis_config
from assistant.analysis.models import (
    AggregatedReport,
    ChunkAnalysisResult,
    ChunkPlan,
    RawFile,
    RepositorySummary,
)
from assistant.analysis.planner import (
    ChunkPlanner,
    analyze_basic_structure,
    build_file_entries,
    detect_technologies,
    file_extension,
    filter_relevant_files,
)
from assistant.errors import InvalidRequestError, ToolExecutionFailed
from assistant.llm.client import ChatCompletionClient
from assistant.providers.github_provider import GitHubProvider, get_github_provider

logger = logging.getLogger(__name__)


class RepositoryNotFound(ToolExecutionFailed):
    pass


class RepositorySource(Protocol):
    def fetch_files(self, repository: str, branch: str) -> Optional[List[RawFile]]:
        """All files on `branch`, or None when the repository/branch does not exist."""
        ...


class GitHubRepositorySource:
    """Recursive git tree + blob fetch. Per-file failures keep the entry with no content."""

    def __init__(self, github: Optional[GitHubProvider] = None) -> None:
        self._github = github

    @property
    def github(self) -> GitHubProvider:
        return self._github or get_github_provider()

    def fetch_files(self, repository: str, branch: str) -> Optional[List[RawFile]]:
        tree = self.github.get_repository_tree(repository, branch)
        if tree is None:
            return None
        blobs = [t for t in tree if isinstance(t, dict) and t.get("type") == "blob" and t.get("path")]
        logger.info(f"Fetching {len(blobs)} file(s) from {repository}@{branch}")

        files: List[RawFile] = []
        for item in blobs:
            path = str(item["path"])
            size = int(item.get("size") or 0)
            sha = str(item.get("sha") or "")
            try:
                content = self.github.get_blob_contents(repository, sha) if sha else None
            except Exception as e:
                logger.warning(f"Could not fetch {path}: {type(e).__name__}")
                content = None
            files.append(RawFile(path=path, content=content, size_bytes=size))
        return files


@dataclass
class PreparedRepository:
    summary: RepositorySummary
    plan: ChunkPlan
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def to_chunk_payload(self) -> Dict[str, Any]:
        repo = self.summary.repository
        return {
            "repository": repo,
            "branch": self.summary.branch,
            "timestamp": self.timestamp,
            "summary": self.summary.model_dump(mode="json", by_alias=True, exclude={"repository", "branch"}),
            "chunks": [
                {
                    "chunkIndex": c.index,
                    "chunkId": f"{repo}-chunk-{c.index}",
                    "fileCount": len(c.files),
                    "estimatedTokens": c.estimated_tokens,
                    "files": [
                        {
                            "path": f.path,
                            "content": f.content,
                            "size": f.size_bytes,
                            "extension": file_extension(f.path),
                            "priority": f.priority,
                            "estimatedTokens": f.estimated_tokens,
                        }
                        for f in c.files
                    ],
                }
                for c in self.plan.chunks
            ],
            "skipped": [s.model_dump(mode="json") for s in self.plan.skipped],
            "processingInstructions": {
                "method": "Send each chunk to the model for analysis",
                "prompt": "Analyze this code chunk for SDLC practices, security, and recommendations",
                "aggregation": "Combine all chunk responses into one comprehensive assessment",
            },
        }


def _coerce_max_tokens(value: Any, default: int) -> int:
    if value is None or value == "":
        return default
    try:
        n = int(float(value))
    except (TypeError, ValueError) as e:
        raise InvalidRequestError(f"maxTokensPerChunk must be a number, got {value!r}") from e
    if n <= 0:
        raise InvalidRequestError(f"maxTokensPerChunk must be positive, got {n}")
    return n


def _coerce_patterns(value: Any, default: Sequence[str]) -> List[str]:
    if value is None:
        return list(default)
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, (list, tuple)):
        raise InvalidRequestError("excludePatterns must be a list of strings")
    return [str(x) for x in value if str(x).strip()]


class RepositoryAnalysisPipeline:
    def __init__(
        self,
        *,
        source: RepositorySource,
        planner: ChunkPlanner,
        analyzer: ChunkAnalyzer,
        aggregator: ResultAggregator,
        config: Optional[AnalysisConfig] = None,
    ) -> None:
        self.source = source
        self.planner = planner
        self.analyzer = analyzer
        self.aggregator = aggregator
        self.config = config or AnalysisConfig()

    @classmethod
    def from_env(
        cls,
        *,
        github: Optional[GitHubProvider] = None,
        client: Optional[ChatCompletionClient] = None,
        source: Optional[RepositorySource] = None,
    ) -> "RepositoryAnalysisPipeline":
        cfg = load_analysis_config()
        return cls(
            source=source or GitHubRepositorySource(github),
            planner=ChunkPlanner.from_config(cfg),
            analyzer=ChunkAnalyzer(
                client, max_output_tokens=cfg.chunk_max_output_tokens, temperature=cfg.chunk_temperature
            ),
            aggregator=ResultAggregator(
                client, max_output_tokens=cfg.synthesis_max_output_tokens, temperature=cfg.synthesis_temperature
            ),
            config=cfg,
        )

    async def prepare(
        self,
        repository: str,
        *,
        branch: Optional[str] = None,
        max_tokens_per_chunk: Any = None,
        exclude_patterns: Any = None,
    ) -> PreparedRepository:
        """
        Fetch, filter and plan.

        Raises:
            InvalidRequestError on bad arguments
            RepositoryNotFound when the source has no such repository/branch
        """
        if not (repository or "").strip():
            raise InvalidRequestError("repositoryName is required")
        br = str(branch or "").strip() or self.config.default_branch
        max_tokens = _coerce_max_tokens(max_tokens_per_chunk, self.config.max_tokens_per_chunk)
        patterns = _coerce_patterns(exclude_patterns, self.config.exclude_patterns)

        raw = await asyncio.to_thread(self.source.fetch_files, repository, br)
        if raw is None:
            raise RepositoryNotFound(f"Repository code not found for: {repository}")

        relevant = filter_relevant_files(raw, patterns)
        entries = build_file_entries(relevant, file_overhead_tokens=self.config.file_overhead_tokens)
        plan = self.planner.plan(entries, max_tokens)
        logger.info(
            f"{repository}@{br}: {len(raw)} file(s), {len(relevant)} relevant, "
            f"{len(plan.chunks)} chunk(s), {len(plan.skipped)} skipped"
        )

        paths = [f.path for f in relevant]
        summary = RepositorySummary(
            repository=repository,
            branch=br,
            total_files_in_repo=len(raw),
            relevant_files=len(relevant),
            total_chunks=len(plan.chunks),
            skipped_files=len(plan.skipped),
            technologies=detect_technologies(paths),
            basic_structure=analyze_basic_structure(paths),
        )
        return PreparedRepository(summary=summary, plan=plan)

    async def analyze_chunks(self, prepared: PreparedRepository) -> List[ChunkAnalysisResult]:
        chunks = prepared.plan.chunks
        total = len(chunks)
        semaphore = asyncio.Semaphore(max(1, int(self.config.max_concurrency)))

        async def _one(i: int) -> ChunkAnalysisResult:
            async with semaphore:
                return await self.analyzer.analyze(chunks[i], prepared.summary.repository, i, total)

        # gather preserves input order regardless of completion order
        return list(await asyncio.gather(*[_one(i) for i in range(total)]))

    async def run(
        self,
        repository: str,
        *,
        branch: Optional[str] = None,
        max_tokens_per_chunk: Any = None,
        exclude_patterns: Any = None,
    ) -> AggregatedReport:
        try:
            prepared = await self.prepare(
                repository,
                branch=branch,
                max_tokens_per_chunk=max_tokens_per_chunk,
                exclude_patterns=exclude_patterns,
            )
        except RepositoryNotFound as e:
            return AggregatedReport(repository=repository, error=str(e))

        if not prepared.plan.chunks:
            return AggregatedReport(
                repository=repository,
                error="No analyzable files",
                summary=prepared.summary,
                processing_stats={"totalChunks": 0, "skippedFiles": len(prepared.plan.skipped)},
            )

        results = await self.analyze_chunks(prepared)
        return await self.aggregator.aggregate(results, prepared.summary)
