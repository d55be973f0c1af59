"""
Token-budgeted chunk planning for repository analysis.

Pipeline:
- `filter_relevant_files`: drop excluded / binary-ish / empty files
- `build_file_entries`: estimate token cost and priority per file
- `ChunkPlanner.plan`: pack entries into chunks that fit the effective budget

Token costs are a character heuristic (`ceil(len / 3.5)`), not a tokenizer.
"""

from __future__ import annotations

import logging
import math
from typing import Dict, Iterable, List, Optional, Sequence

from assistant.analysis.config import DEFAULT_EXCLUDE_PATTERNS, AnalysisConfig
from assistant.analysis.models import BasicStructure, Chunk, ChunkPlan, FileEntry, RawFile, SkippedFile
from assistant.errors import InvalidRequestError

logger = logging.getLogger(__name__)

CHARS_PER_TOKEN = 3.5

PACKING_FIRST_FIT = "first_fit"
PACKING_NEXT_FIT = "next_fit"

SKIP_REASON_OVERSIZE = "exceeds_effective_budget"

RELEVANT_EXTENSIONS = (
    ".js",
    ".ts",
    ".jsx",
    ".tsx",
    ".py",
    ".java",
    ".cs",
    ".go",
    ".rb",
    ".php",
    ".cpp",
    ".c",
    ".h",
    ".json",
    ".yml",
    ".yaml",
    ".xml",
    ".sql",
    ".md",
    ".txt",
    ".env",
    ".config",
    ".toml",
    ".ini",
    ".sh",
    ".bat",
    ".ps1",
    ".dockerfile",
)

RELEVANT_NAME_MARKERS = (
    "dockerfile",
    "makefile",
    "readme",
    "license",
    "package.json",
    "docker-compose",
    "requirements.txt",
)

LANGUAGE_BY_EXTENSION: Dict[str, str] = {
    ".js": "JavaScript",
    ".ts": "TypeScript",
    ".py": "Python",
    ".java": "Java",
    ".cs": "C#",
    ".go": "Go",
    ".rb": "Ruby",
    ".php": "PHP",
    ".cpp": "C++",
    ".c": "C",
}


def estimate_tokens(text: Optional[str]) -> int:
    if not text:
        return 0
    return int(math.ceil(len(text) / CHARS_PER_TOKEN))


def file_extension(path: str) -> str:
    name = (path or "").rsplit("/", 1)[-1]
    if "." not in name:
        return ""
    return "." + name.rsplit(".", 1)[-1].lower()


def file_priority(path: str) -> int:
    """
    Rank a path for analysis order: manifests/build files > entry points >
    source by extension > docs > everything else.
    """
    p = (path or "").lower()

    if "package.json" in p:
        return 100
    if "dockerfile" in p:
        return 95
    if "docker-compose" in p:
        return 90
    if "tsconfig.json" in p:
        return 85
    if ".env" in p and "example" not in p:
        return 80

    if "index." in p or "main." in p:
        return 75
    if "app." in p:
        return 70
    if "server." in p:
        return 65
    if "config." in p:
        return 60

    if p.endswith((".ts", ".tsx")):
        return 50
    if p.endswith((".js", ".jsx", ".py", ".java")):
        return 45

    if "readme" in p:
        return 25
    if p.endswith(".md"):
        return 20
    if p.endswith(".json"):
        return 15
    return 10


def is_relevant_path(path: str) -> bool:
    p = (path or "").lower()
    if p.endswith(RELEVANT_EXTENSIONS):
        return True
    return any(marker in p for marker in RELEVANT_NAME_MARKERS)


def filter_relevant_files(
    files: Iterable[RawFile], exclude_patterns: Optional[Sequence[str]] = None
) -> List[RawFile]:
    """Keep files with content, outside excluded paths, of an analyzable type."""
    patterns = [x.lower() for x in (exclude_patterns if exclude_patterns is not None else DEFAULT_EXCLUDE_PATTERNS) if x]
    out: List[RawFile] = []
    for f in files:
        if not f.content:
            continue
        p = f.path.lower()
        if any(pat in p for pat in patterns):
            continue
        if not is_relevant_path(p):
            continue
        out.append(f)
    return out


def build_file_entries(files: Iterable[RawFile], *, file_overhead_tokens: int = 200) -> List[FileEntry]:
    entries: List[FileEntry] = []
    for f in files:
        content = f.content or ""
        entries.append(
            FileEntry(
                path=f.path,
                content=content,
                size_bytes=f.size_bytes or len(content.encode("utf-8")),
                estimated_tokens=estimate_tokens(content) + int(file_overhead_tokens),
                priority=file_priority(f.path),
            )
        )
    return entries


def detect_technologies(paths: Iterable[str]) -> List[str]:
    seen: List[str] = []

    def _add(name: str) -> None:
        if name not in seen:
            seen.append(name)

    for path in paths:
        p = path.lower()
        lang = LANGUAGE_BY_EXTENSION.get(file_extension(p))
        if lang:
            _add(lang)
        if "package.json" in p:
            _add("Node.js")
        if "requirements.txt" in p:
            _add("Python")
        if "dockerfile" in p:
            _add("Docker")
        if "docker-compose" in p:
            _add("Docker Compose")
        if ".env" in p:
            _add("Environment Variables")
    return seen


def analyze_basic_structure(paths: Iterable[str]) -> BasicStructure:
    s = BasicStructure()
    dirs: List[str] = []
    for path in paths:
        p = path.lower()
        if "test" in p or "spec" in p:
            s.has_tests = True
        if "readme" in p or "doc" in p:
            s.has_documentation = True
        if "config" in p or ".env" in p:
            s.has_config_files = True
        if "security" in p or "auth" in p:
            s.has_security_files = True
        if ".github" in p or "ci" in p or "pipeline" in p:
            s.has_cicd = True
        top = p.split("/", 1)[0]
        if top and top not in dirs:
            dirs.append(top)
    s.main_directories = dirs
    return s


class ChunkPlanner:
    """
    Pack prioritized files into chunks whose estimated size fits
    `max_tokens_per_chunk - reserve_tokens`.

    Files are ordered by (priority desc, estimated tokens asc, path asc), which
    makes plans deterministic for identical input. A file that cannot fit into
    an empty chunk is reported in `skipped` and never placed.

    Packing strategies:
    - first_fit (default): place each file in the earliest chunk with room,
      opening a new chunk when none fits.
    - next_fit: only the most recent chunk is open; a file that does not fit
      closes it.
    """

    def __init__(
        self,
        *,
        reserve_tokens: int = 20_000,
        chunk_overhead_tokens: int = 0,
        max_files_per_chunk: Optional[int] = None,
        packing: str = PACKING_FIRST_FIT,
    ) -> None:
        if packing not in (PACKING_FIRST_FIT, PACKING_NEXT_FIT):
            raise ValueError(f"unknown packing strategy: {packing}")
        self.reserve_tokens = int(reserve_tokens)
        self.chunk_overhead_tokens = int(chunk_overhead_tokens)
        self.max_files_per_chunk = max_files_per_chunk if max_files_per_chunk and max_files_per_chunk > 0 else None
        self.packing = packing

    @classmethod
    def from_config(cls, cfg: AnalysisConfig) -> "ChunkPlanner":
        return cls(
            reserve_tokens=cfg.reserve_tokens,
            chunk_overhead_tokens=cfg.chunk_overhead_tokens,
            max_files_per_chunk=cfg.max_files_per_chunk,
            packing=cfg.packing,
        )

    def effective_budget(self, max_tokens_per_chunk: int) -> int:
        return int(max_tokens_per_chunk) - self.reserve_tokens

    @staticmethod
    def order(files: Iterable[FileEntry]) -> List[FileEntry]:
        return sorted(files, key=lambda f: (-f.priority, f.estimated_tokens, f.path))

    def plan(self, files: Sequence[FileEntry], max_tokens_per_chunk: int) -> ChunkPlan:
        budget = self.effective_budget(max_tokens_per_chunk)
        if budget <= self.chunk_overhead_tokens:
            raise InvalidRequestError(
                f"maxTokensPerChunk={max_tokens_per_chunk} leaves no room after reserving {self.reserve_tokens} tokens"
            )

        capacity = budget - self.chunk_overhead_tokens
        bins: List[List[FileEntry]] = []
        totals: List[int] = []
        skipped: List[SkippedFile] = []

        for f in self.order(files):
            cost = int(f.estimated_tokens)
            if cost > capacity:
                logger.warning(f"Skipping oversized file: {f.path} ({cost} tokens > {capacity})")
                skipped.append(SkippedFile(path=f.path, estimated_tokens=cost, reason=SKIP_REASON_OVERSIZE))
                continue

            candidates = range(len(bins)) if self.packing == PACKING_FIRST_FIT else range(len(bins) - 1, len(bins))
            target = None
            for i in candidates:
                if i < 0:
                    continue
                if totals[i] + cost > capacity:
                    continue
                if self.max_files_per_chunk is not None and len(bins[i]) >= self.max_files_per_chunk:
                    continue
                target = i
                break

            if target is None:
                bins.append([])
                totals.append(0)
                target = len(bins) - 1
            bins[target].append(f)
            totals[target] += cost

        chunks = [
            Chunk(index=i, files=list(b), estimated_tokens=totals[i] + self.chunk_overhead_tokens)
            for i, b in enumerate(bins)
        ]
        logger.info(
            f"Planned {len(chunks)} chunk(s) from {len(files)} file(s); skipped={len(skipped)} budget={budget}"
        )
        return ChunkPlan(chunks=chunks, skipped=skipped, effective_budget=budget)
