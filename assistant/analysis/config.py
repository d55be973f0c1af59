from __future__ import annotations

import os
from dataclasses import dataclass
from typing import List, Optional, Tuple

PACKING_STRATEGIES: Tuple[str, ...] = ("first_fit", "next_fit")

DEFAULT_EXCLUDE_PATTERNS: Tuple[str, ...] = (
    "node_modules",
    "build",
    "dist",
    ".git",
    ".next",
    "coverage",
    "vendor",
    "target",
    "logs",
)


def _env_int(name: str, default: int) -> int:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except Exception:
        return default


def _split_csv(raw: str) -> List[str]:
    return [x.strip() for x in (raw or "").split(",") if x.strip()]


@dataclass(frozen=True)
class AnalysisConfig:
    max_tokens_per_chunk: int = 100_000
    reserve_tokens: int = 20_000
    file_overhead_tokens: int = 200
    chunk_overhead_tokens: int = 0
    max_files_per_chunk: Optional[int] = None
    packing: str = "first_fit"

    # 1 keeps chunk analysis strictly sequential
    max_concurrency: int = 1

    chunk_max_output_tokens: int = 4000
    chunk_temperature: float = 0.1
    synthesis_max_output_tokens: int = 6000
    synthesis_temperature: float = 0.2

    default_branch: str = "main"
    exclude_patterns: Tuple[str, ...] = DEFAULT_EXCLUDE_PATTERNS


def load_analysis_config() -> AnalysisConfig:
    """
    Load repository analysis settings from env.

    Recognized vars:
    - ANALYSIS_MAX_TOKENS_PER_CHUNK=100000
    - ANALYSIS_RESERVE_TOKENS=20000
    - ANALYSIS_FILE_OVERHEAD_TOKENS=200
    - ANALYSIS_CHUNK_OVERHEAD_TOKENS=0
    - ANALYSIS_MAX_FILES_PER_CHUNK=     (unset = unlimited; 20 reproduces the legacy chunker)
    - ANALYSIS_PACKING=first_fit        (first_fit | next_fit)
    - ANALYSIS_MAX_CONCURRENCY=1        (1..8)
    - ANALYSIS_CHUNK_MAX_OUTPUT_TOKENS=4000
    - ANALYSIS_SYNTHESIS_MAX_OUTPUT_TOKENS=6000
    - ANALYSIS_DEFAULT_BRANCH=main
    - ANALYSIS_EXCLUDE_PATTERNS=node_modules,build,...
    """
    max_files_raw = _env_int("ANALYSIS_MAX_FILES_PER_CHUNK", 0)
    packing = (os.getenv("ANALYSIS_PACKING") or "").strip().lower() or "first_fit"
    exclude = tuple(_split_csv(os.getenv("ANALYSIS_EXCLUDE_PATTERNS", ""))) or DEFAULT_EXCLUDE_PATTERNS

    return AnalysisConfig(
        max_tokens_per_chunk=max(1000, _env_int("ANALYSIS_MAX_TOKENS_PER_CHUNK", 100_000)),
        reserve_tokens=max(0, _env_int("ANALYSIS_RESERVE_TOKENS", 20_000)),
        file_overhead_tokens=max(0, _env_int("ANALYSIS_FILE_OVERHEAD_TOKENS", 200)),
        chunk_overhead_tokens=max(0, _env_int("ANALYSIS_CHUNK_OVERHEAD_TOKENS", 0)),
        max_files_per_chunk=max_files_raw if max_files_raw > 0 else None,
        packing=packing if packing in PACKING_STRATEGIES else "first_fit",
        max_concurrency=max(1, min(_env_int("ANALYSIS_MAX_CONCURRENCY", 1), 8)),
        chunk_max_output_tokens=max(256, min(_env_int("ANALYSIS_CHUNK_MAX_OUTPUT_TOKENS", 4000), 8192)),
        synthesis_max_output_tokens=max(256, min(_env_int("ANALYSIS_SYNTHESIS_MAX_OUTPUT_TOKENS", 6000), 8192)),
        default_branch=(os.getenv("ANALYSIS_DEFAULT_BRANCH") or "").strip() or "main",
        exclude_patterns=exclude,
    )
