"""Context discovery schemas.

Defines models for detected projects, scored files, optimizer selections,
materialized file contents, context chunks, and cache records used by the
smart context discovery engine.
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator


def clamp_score(value: float) -> float:
    """Clamp a relevance score into the closed range [0.0, 1.0]."""
    return min(max(float(value), 0.0), 1.0)


class ProjectType(StrEnum):
    """Ecosystem a project directory was classified as."""

    RUST = "rust"
    JAVASCRIPT = "javascript"
    PYTHON = "python"
    GO = "go"
    KOTLIN = "kotlin"
    JAVA = "java"
    GIT = "git"
    GENERIC = "generic"


class FileType(StrEnum):
    """Coarse role of a file inside a project."""

    SOURCE_CODE = "source_code"
    TEST = "test"
    CONFIGURATION = "configuration"
    DOCUMENTATION = "documentation"
    DATA = "data"
    OTHER = "other"


class ImportanceFactor(StrEnum):
    """Reasons a file received extra relevance."""

    ENTRY_POINT = "entry_point"
    MAIN_MODULE = "main_module"
    CONFIG_FILE = "config_file"
    TEST_FILE = "test_file"
    DOCUMENTATION = "documentation"
    SMALL_SIZE = "small_size"
    PRIORITY_MATCH = "priority_match"
    REFERENCED_BY_ENTRY = "referenced_by_entry"
    HIGHLY_REFERENCED = "highly_referenced"
    DEPENDENCY_ROOT = "dependency_root"
    QUERY_MATCH = "query_match"


class ChunkType(StrEnum):
    """Kind of content grouped into a context chunk."""

    OVERVIEW = "overview"
    CORE = "core"
    UTILS = "utils"
    TESTS = "tests"
    CONFIG = "config"
    DOCS = "docs"


class ProjectInfo(BaseModel):
    """Result of a successful project detection."""

    project_type: ProjectType = Field(description="Detected ecosystem")
    root_path: str = Field(description="Absolute path to the project root")
    entry_points: list[str] = Field(
        default_factory=list, description="Entry point files relative to the root"
    )
    important_files: list[str] = Field(
        default_factory=list, description="Manifests, docs and other key files"
    )
    confidence: float = Field(
        default=0.0, ge=0.0, le=1.0, description="Detector confidence"
    )


class FileScore(BaseModel):
    """A candidate file and its relevance score.

    ``relevance_score`` is clamped into [0, 1] on construction and on every
    assignment, so additive boosts can never push it out of range.
    """

    model_config = ConfigDict(validate_assignment=True)

    path: str = Field(description="Path relative to the project root (POSIX)")
    relevance_score: float = Field(default=0.0, description="Relevance in [0, 1]")
    file_type: FileType = Field(default=FileType.OTHER, description="File role")
    importance_factors: set[ImportanceFactor] = Field(
        default_factory=set, description="Factors that raised the score"
    )
    size_bytes: int = Field(default=0, ge=0, description="File size in bytes")
    estimated_tokens: int = Field(
        default=0, ge=0, description="Approximate token cost of the full content"
    )

    @field_validator("relevance_score", mode="before")
    @classmethod
    def _clamp(cls, value: float) -> float:
        return clamp_score(value)

    @field_serializer("importance_factors")
    def _sorted_factors(self, factors: set[ImportanceFactor]) -> list[str]:
        return sorted(f.value for f in factors)

    def has_any(self, *factors: ImportanceFactor) -> bool:
        """Return True if any of the given factors is present."""
        return any(f in self.importance_factors for f in factors)


class FileSelection(BaseModel):
    """A file chosen by the token optimizer.

    ``token_limit`` is set when the file has to be cut down to fit the
    remaining budget; the consumer sees an explicit truncation marker.
    """

    score: FileScore = Field(description="The selected file")
    token_limit: int | None = Field(
        default=None, ge=0, description="Token allowance when the file is cut down"
    )
    summarized: bool = Field(
        default=False, description="Whether only imports/signatures are kept"
    )

    @property
    def truncated(self) -> bool:
        return self.token_limit is not None

    @property
    def budget_tokens(self) -> int:
        """Tokens this selection charges against the budget."""
        if self.token_limit is None:
            return self.score.estimated_tokens
        return min(self.token_limit, self.score.estimated_tokens)


class FileContent(BaseModel):
    """A materialized file handed to the downstream consumer."""

    model_config = ConfigDict(frozen=True)

    path: str = Field(description="Path relative to the project root")
    content: str = Field(default="", description="File content, possibly truncated")
    truncated: bool = Field(
        default=False, description="Whether content was cut to fit a budget"
    )
    original_chars: int = Field(
        default=0, ge=0, description="Length of the untruncated content"
    )


class ContextChunk(BaseModel):
    """One self-contained, budget-respecting group of files."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(description="Stable chunk identifier")
    name: str = Field(description="Human-friendly chunk name")
    description: str = Field(default="", description="Short summary of the chunk")
    files: tuple[FileContent, ...] = Field(
        default=(), description="Materialized files in delivery order"
    )
    estimated_tokens: int = Field(default=0, ge=0, description="Approximate token cost")
    chunk_type: ChunkType = Field(description="Kind of content in this chunk")
    priority: float = Field(default=0.0, ge=0.0, le=1.0, description="Delivery priority")


class CacheEntry(BaseModel):
    """Cached outcome of a full project scan."""

    project_path: str = Field(description="Absolute project path the scan ran on")
    config_hash: str = Field(description="Fingerprint of the scoring configuration")
    project_info: ProjectInfo | None = Field(
        default=None, description="Detection result at scan time"
    )
    file_scores: list[FileScore] = Field(
        default_factory=list, description="Scores after dependency analysis"
    )
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(UTC), description="When the scan finished"
    )


class CacheStats(BaseModel):
    """Diagnostic summary of the context cache."""

    entry_count: int = Field(default=0, ge=0, description="Stored project entries")
    hit_count: int = Field(default=0, ge=0, description="Lookups served from cache")
    miss_count: int = Field(default=0, ge=0, description="Lookups that missed")
    db_path: str = Field(default="", description="Location of the cache database")


class DiscoveryResult(BaseModel):
    """Outcome of a discovery request, flat or chunked."""

    project_info: ProjectInfo | None = Field(default=None, description="Detected project")
    files: list[FileContent] = Field(
        default_factory=list, description="Selected files (non-chunked mode)"
    )
    chunks: list[ContextChunk] = Field(
        default_factory=list, description="Chunks in delivery order (chunked mode)"
    )
    selections: list[FileSelection] = Field(
        default_factory=list, description="Optimizer output behind ``files``"
    )
    total_tokens: int = Field(default=0, ge=0, description="Estimated tokens delivered")
    token_budget: int = Field(default=0, ge=0, description="Budget in effect")
    from_cache: bool = Field(default=False, description="Whether scores came from cache")
    warnings: list[str] = Field(
        default_factory=list, description="Recovered problems worth surfacing"
    )
