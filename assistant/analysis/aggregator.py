from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Sequence

from assistant.analysis.models import AggregatedReport, ChunkAnalysisResult, RepositorySummary
from assistant.analysis.prompts import SDLC_SYSTEM_PROMPT, build_synthesis_prompt
from assistant.chat.types import Message
from assistant.llm.client import ChatCompletionClient, get_completion_client

logger = logging.getLogger(__name__)

ALL_CHUNKS_FAILED = "All chunk analyses failed"


class ResultAggregator:
    """
    Reduce per-chunk analyses into one report.

    - no successful chunk: all-failed report, no model call
    - otherwise one synthesis call
    - synthesis failure: degraded report carrying the chunk analyses verbatim
    """

    def __init__(
        self,
        client: Optional[ChatCompletionClient] = None,
        *,
        max_output_tokens: int = 6000,
        temperature: float = 0.2,
    ) -> None:
        self._client = client
        self.max_output_tokens = max_output_tokens
        self.temperature = temperature

    @property
    def client(self) -> ChatCompletionClient:
        return self._client or get_completion_client()

    @staticmethod
    def _stats(results: Sequence[ChunkAnalysisResult], succeeded: Sequence[ChunkAnalysisResult]) -> Dict[str, Any]:
        avg = 0
        if succeeded:
            avg = round(sum(r.estimated_tokens for r in succeeded) / len(succeeded))
        return {
            "totalChunks": len(results),
            "successfulChunks": len(succeeded),
            "failedChunks": len(results) - len(succeeded),
            "averageTokensPerChunk": avg,
        }

    async def aggregate(self, results: Sequence[ChunkAnalysisResult], repo_meta: RepositorySummary) -> AggregatedReport:
        ordered = sorted(results, key=lambda r: r.chunk_index)
        succeeded: List[ChunkAnalysisResult] = [r for r in ordered if r.succeeded]
        failed: List[ChunkAnalysisResult] = [r for r in ordered if not r.succeeded]
        stats = self._stats(ordered, succeeded)

        if not succeeded:
            logger.warning(f"All {len(ordered)} chunk analyses failed for {repo_meta.repository}")
            return AggregatedReport(
                repository=repo_meta.repository,
                per_chunk_summaries=list(ordered),
                processing_stats=stats,
                error=ALL_CHUNKS_FAILED,
                failed_chunks=[r.chunk_index for r in failed],
                summary=repo_meta,
            )

        prompt = build_synthesis_prompt(succeeded, total_chunks=len(ordered), summary=repo_meta)
        err: Optional[str]
        try:
            completion, err = await self.client.complete(
                [Message(role="system", content=SDLC_SYSTEM_PROMPT), Message(role="user", content=prompt)],
                max_output_tokens=self.max_output_tokens,
                temperature=self.temperature,
                run_name=f"synthesis:{repo_meta.repository}",
            )
        except Exception as e:
            logger.exception("Synthesis call raised")
            completion, err = None, f"{type(e).__name__}: {e}"

        text = (completion.text or "").strip() if completion is not None else ""
        if err or not text:
            logger.warning(f"Synthesis failed for {repo_meta.repository}; returning individual analyses: {err}")
            return AggregatedReport(
                repository=repo_meta.repository,
                per_chunk_summaries=list(ordered),
                processing_stats=stats,
                degraded=True,
                failed_chunks=[r.chunk_index for r in failed],
                aggregation_error=f"Failed to create comprehensive report: {err or 'empty_completion'}",
                summary=repo_meta,
            )

        stats["model"] = completion.model if completion is not None else ""
        return AggregatedReport(
            repository=repo_meta.repository,
            per_chunk_summaries=list(ordered),
            synthesized_text=text,
            processing_stats=stats,
            failed_chunks=[r.chunk_index for r in failed],
            summary=repo_meta,
        )

    @staticmethod
    def render(report: AggregatedReport) -> Dict[str, Any]:
        """Tool-result shape handed back to the chat loop."""
        out: Dict[str, Any] = {
            "repository": report.repository,
            "processingDetails": report.processing_stats,
        }
        if report.summary is not None:
            out["repositorySummary"] = report.summary.model_dump(mode="json", by_alias=True)
        if report.error:
            out["error"] = report.error
            out["failedChunks"] = [
                {"chunkIndex": r.chunk_index, "error": r.error} for r in report.per_chunk_summaries if not r.succeeded
            ]
            return out
        if report.degraded:
            out["individualAnalyses"] = [
                {"chunkIndex": r.chunk_index, "fileCount": r.file_count, "analysis": r.analysis_text}
                for r in report.per_chunk_summaries
                if r.succeeded
            ]
            out["aggregationError"] = report.aggregation_error
            out["fallbackNote"] = "Individual chunk analyses provided due to aggregation failure"
            return out
        out["comprehensiveAnalysis"] = report.synthesized_text
        if report.failed_chunks:
            out["processingErrors"] = [
                {"chunkIndex": r.chunk_index, "error": r.error} for r in report.per_chunk_summaries if not r.succeeded
            ]
        return out
