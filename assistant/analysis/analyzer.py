from __future__ import annotations

import logging
from typing import Optional

from assistant.analysis.models import Chunk, ChunkAnalysisResult
from assistant.analysis.prompts import SDLC_SYSTEM_PROMPT, build_chunk_prompt
from assistant.chat.types import Message
from assistant.llm.client import ChatCompletionClient, get_completion_client

logger = logging.getLogger(__name__)


class ChunkAnalyzer:
    """
    Send one chunk to the completion service with the SDLC rubric.

    `analyze` never raises: provider errors and unexpected exceptions become
    `succeeded=False` results so the remaining chunks can still be processed.
    """

    def __init__(
        self,
        client: Optional[ChatCompletionClient] = None,
        *,
        max_output_tokens: int = 4000,
        temperature: float = 0.1,
    ) -> None:
        self._client = client
        self.max_output_tokens = max_output_tokens
        self.temperature = temperature

    @property
    def client(self) -> ChatCompletionClient:
        return self._client or get_completion_client()

    async def analyze(self, chunk: Chunk, repo_name: str, index: int, total: int) -> ChunkAnalysisResult:
        base = {
            "chunk_index": chunk.index,
            "file_count": len(chunk.files),
            "estimated_tokens": chunk.estimated_tokens,
        }
        try:
            prompt = build_chunk_prompt(chunk, repo_name=repo_name, index=index, total=total)
            logger.info(f"Analyzing chunk {index + 1}/{total} of {repo_name} (~{chunk.estimated_tokens} tokens)")
            completion, err = await self.client.complete(
                [Message(role="system", content=SDLC_SYSTEM_PROMPT), Message(role="user", content=prompt)],
                max_output_tokens=self.max_output_tokens,
                temperature=self.temperature,
                run_name=f"chunk_analysis:{repo_name}:{index + 1}/{total}",
            )
        except Exception as e:
            logger.exception(f"Chunk {index + 1}/{total} analysis raised")
            return ChunkAnalysisResult(succeeded=False, error=f"{type(e).__name__}: {e}", **base)

        if err or completion is None:
            logger.warning(f"Chunk {index + 1}/{total} analysis failed: {err}")
            return ChunkAnalysisResult(succeeded=False, error=err or "empty_completion", **base)

        text = (completion.text or "").strip()
        if not text:
            return ChunkAnalysisResult(succeeded=False, error="empty_completion", **base)
        return ChunkAnalysisResult(succeeded=True, analysis_text=text, **base)
