"""Pydantic schemas for the smart context discovery engine."""

from smartctx.schemas.config import (
    ChunkingStrategy,
    ContextConfig,
    ContextSettings,
    DiscoveryRequest,
    OptimizationConfig,
    OptimizationStrategy,
    ProjectSettings,
)
from smartctx.schemas.context import (
    CacheEntry,
    CacheStats,
    ChunkType,
    ContextChunk,
    DiscoveryResult,
    FileContent,
    FileScore,
    FileSelection,
    FileType,
    ImportanceFactor,
    ProjectInfo,
    ProjectType,
)

__all__ = [
    "CacheEntry",
    "CacheStats",
    "ChunkType",
    "ChunkingStrategy",
    "ContextChunk",
    "ContextConfig",
    "ContextSettings",
    "DiscoveryRequest",
    "DiscoveryResult",
    "FileContent",
    "FileScore",
    "FileSelection",
    "FileType",
    "ImportanceFactor",
    "OptimizationConfig",
    "OptimizationStrategy",
    "ProjectInfo",
    "ProjectSettings",
    "ProjectType",
]
