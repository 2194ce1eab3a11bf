"""Configuration schemas for context discovery.

Defines the project-local ``.smartctx.toml`` model, the token optimizer
configuration, chunking strategies, and the inbound discovery request.
"""

from __future__ import annotations

from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field

DEFAULT_MAX_TOKENS = 4000
DEFAULT_CHUNK_TOKENS = 3000


class OptimizationStrategy(StrEnum):
    """What the optimizer does with a file that overflows the budget."""

    TRUNCATE = "truncate"
    SUMMARIZE = "summarize"
    SKIP = "skip"


class ChunkingStrategy(StrEnum):
    """How oversized projects are split into chunks."""

    MODULE = "module"
    FUNCTIONAL = "functional"
    TOKEN = "token"
    HIERARCHICAL = "hierarchical"


class ContextSettings(BaseModel):
    """The ``[context]`` table.

    ``max_tokens``, ``include``, ``exclude``, ``priority_patterns`` and
    ``include_tests`` change which files are scored or selected and are part
    of the cache fingerprint. ``enable_cache``, ``chunk_strategy``,
    ``chunk_max_tokens``, ``cache_path`` and ``cache_max_age_hours`` are not:
    changing them never invalidates cached scans.
    """

    max_tokens: int = Field(
        default=DEFAULT_MAX_TOKENS, gt=0, description="Token budget for a selection"
    )
    include: list[str] = Field(
        default_factory=list,
        description="Glob patterns to include (empty = everything)",
    )
    exclude: list[str] = Field(
        default_factory=lambda: [
            "target/**",
            "**/*.log",
            "**/node_modules/**",
            ".git/**",
        ],
        description="Glob patterns to exclude (wins over include)",
    )
    priority_patterns: list[str] = Field(
        default_factory=lambda: [
            "main.rs",
            "lib.rs",
            "mod.rs",
            "index.js",
            "index.ts",
            "main.py",
            "__init__.py",
        ],
        description="File name fragments that mark a file as important",
    )
    include_tests: bool = Field(
        default=False, description="Score test files instead of excluding them"
    )
    enable_cache: bool = Field(default=True, description="Use the scan cache")
    chunk_strategy: ChunkingStrategy = Field(
        default=ChunkingStrategy.HIERARCHICAL,
        description="Default chunking strategy for chunked discovery",
    )
    chunk_max_tokens: int | None = Field(
        default=None, gt=0, description="Per-chunk budget (default: max_tokens)"
    )
    cache_path: str | None = Field(
        default=None, description="Override for the cache database location"
    )
    cache_max_age_hours: float | None = Field(
        default=24.0,
        gt=0,
        description="Drop cached scans older than this when the cache opens (None keeps them)",
    )


class ProjectSettings(BaseModel):
    """The optional ``[project]`` table."""

    type: str | None = Field(
        default=None, description="Force a project type (rust, python, ...)"
    )
    entry_points: list[str] = Field(
        default_factory=list, description="Extra entry points relative to the root"
    )


class ContextConfig(BaseModel):
    """Complete context discovery configuration for one project."""

    context: ContextSettings = Field(default_factory=ContextSettings)
    project: ProjectSettings | None = Field(default=None)


class OptimizationConfig(BaseModel):
    """Token optimizer settings, fixed for one discovery call."""

    model_config = ConfigDict(frozen=True)

    max_tokens: int = Field(default=DEFAULT_MAX_TOKENS, gt=0, description="Token budget")
    strategy: OptimizationStrategy = Field(
        default=OptimizationStrategy.TRUNCATE, description="Overflow handling"
    )
    preserve_signatures: bool = Field(
        default=True, description="Keep declaration lines when summarizing"
    )
    preserve_imports: bool = Field(
        default=True, description="Keep import lines when summarizing"
    )


class DiscoveryRequest(BaseModel):
    """Inbound discovery request from the CLI or another host."""

    root_path: str = Field(description="Project directory to scan")
    query: str | None = Field(default=None, description="Optional free-text query")
    max_tokens: int | None = Field(
        default=None, gt=0, description="Override for the configured token budget"
    )
    chunking_enabled: bool = Field(default=False, description="Return chunks")
    chunk_strategy: str | None = Field(
        default=None, description="module, functional, token or hierarchical"
    )
