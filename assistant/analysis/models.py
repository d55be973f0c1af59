from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class RawFile(BaseModel):
    """A file as fetched from the repository source (content may be missing)."""

    path: str
    content: Optional[str] = None
    size_bytes: int = 0


class FileEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    path: str
    content: str
    size_bytes: int
    estimated_tokens: int
    priority: int


class SkippedFile(BaseModel):
    model_config = ConfigDict(frozen=True)

    path: str
    estimated_tokens: int
    reason: str


class Chunk(BaseModel):
    model_config = ConfigDict(frozen=True)

    index: int
    files: List[FileEntry] = Field(default_factory=list)
    # sum(file.estimated_tokens) + chunk overhead
    estimated_tokens: int = 0


class ChunkPlan(BaseModel):
    chunks: List[Chunk] = Field(default_factory=list)
    skipped: List[SkippedFile] = Field(default_factory=list)
    effective_budget: int


class ChunkAnalysisResult(BaseModel):
    chunk_index: int
    analysis_text: Optional[str] = None
    succeeded: bool
    error: Optional[str] = None
    file_count: int = 0
    estimated_tokens: int = 0


class BasicStructure(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    has_tests: bool = Field(default=False, alias="hasTests")
    has_documentation: bool = Field(default=False, alias="hasDocumentation")
    has_config_files: bool = Field(default=False, alias="hasConfigFiles")
    has_security_files: bool = Field(default=False, alias="hasSecurityFiles")
    has_cicd: bool = Field(default=False, alias="hasCICD")
    main_directories: List[str] = Field(default_factory=list, alias="mainDirectories")


class RepositorySummary(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    repository: str
    branch: str
    total_files_in_repo: int = Field(default=0, alias="totalFilesInRepo")
    relevant_files: int = Field(default=0, alias="relevantFiles")
    total_chunks: int = Field(default=0, alias="totalChunks")
    skipped_files: int = Field(default=0, alias="skippedFiles")
    technologies: List[str] = Field(default_factory=list)
    basic_structure: BasicStructure = Field(default_factory=BasicStructure, alias="basicStructure")


class AggregatedReport(BaseModel):
    repository: str
    per_chunk_summaries: List[ChunkAnalysisResult] = Field(default_factory=list)
    synthesized_text: Optional[str] = None
    processing_stats: Dict[str, Any] = Field(default_factory=dict)
    degraded: bool = False

    # Set when no analysis could be produced at all
    error: Optional[str] = None
    failed_chunks: List[int] = Field(default_factory=list)

    # Set on the degraded path (synthesis call failed)
    aggregation_error: Optional[str] = None
    summary: Optional[RepositorySummary] = None
