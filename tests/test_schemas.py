"""Tests for the context discovery schemas."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from smartctx.schemas.config import (
    ChunkingStrategy,
    ContextConfig,
    ContextSettings,
    OptimizationConfig,
)
from smartctx.schemas.context import (
    CacheEntry,
    ChunkType,
    ContextChunk,
    FileContent,
    FileScore,
    FileSelection,
    FileType,
    ImportanceFactor,
    ProjectInfo,
    ProjectType,
)


def _make_score(**overrides) -> FileScore:
    defaults = {
        "path": "src/main.rs",
        "relevance_score": 0.5,
        "file_type": FileType.SOURCE_CODE,
        "size_bytes": 200,
        "estimated_tokens": 50,
    }
    defaults.update(overrides)
    return FileScore(**defaults)


# ── FileScore ─────────────────────────────────────────────────────


class TestFileScore:
    def test_score_clamped_on_construction(self):
        assert _make_score(relevance_score=1.7).relevance_score == 1.0
        assert _make_score(relevance_score=-0.2).relevance_score == 0.0

    def test_score_clamped_on_assignment(self):
        score = _make_score(relevance_score=0.9)
        score.relevance_score = score.relevance_score + 0.3
        assert score.relevance_score == 1.0

    def test_factors_serialized_sorted(self):
        score = _make_score(
            importance_factors={
                ImportanceFactor.SMALL_SIZE,
                ImportanceFactor.ENTRY_POINT,
            },
        )
        dumped = score.model_dump(mode="json")
        assert dumped["importance_factors"] == ["entry_point", "small_size"]

    def test_has_any(self):
        score = _make_score(importance_factors={ImportanceFactor.MAIN_MODULE})
        assert score.has_any(ImportanceFactor.ENTRY_POINT, ImportanceFactor.MAIN_MODULE)
        assert not score.has_any(ImportanceFactor.TEST_FILE)

    def test_negative_size_rejected(self):
        with pytest.raises(ValidationError):
            _make_score(size_bytes=-1)


# ── FileSelection ─────────────────────────────────────────────────


class TestFileSelection:
    def test_untruncated_charges_estimate(self):
        selection = FileSelection(score=_make_score(estimated_tokens=80))
        assert not selection.truncated
        assert selection.budget_tokens == 80

    def test_truncated_charges_limit(self):
        selection = FileSelection(score=_make_score(estimated_tokens=80), token_limit=20)
        assert selection.truncated
        assert selection.budget_tokens == 20

    def test_limit_above_estimate_charges_estimate(self):
        selection = FileSelection(score=_make_score(estimated_tokens=10), token_limit=20)
        assert selection.budget_tokens == 10


# ── Chunks and contents ───────────────────────────────────────────


class TestContextChunk:
    def test_chunk_is_immutable(self):
        chunk = ContextChunk(
            id="overview",
            name="Project Overview",
            files=(FileContent(path="README.md", content="# Demo"),),
            estimated_tokens=1,
            chunk_type=ChunkType.OVERVIEW,
            priority=1.0,
        )
        with pytest.raises(ValidationError):
            chunk.priority = 0.5

    def test_priority_range_enforced(self):
        with pytest.raises(ValidationError):
            ContextChunk(id="x", name="x", chunk_type=ChunkType.CORE, priority=1.5)

    def test_file_content_is_immutable(self):
        content = FileContent(path="a.py", content="x = 1\n")
        with pytest.raises(ValidationError):
            content.content = "y = 2\n"


# ── Cache entry ───────────────────────────────────────────────────


class TestCacheEntry:
    def test_json_round_trip_keeps_factor_sets(self):
        entry = CacheEntry(
            project_path="/work/demo",
            config_hash="abc123",
            project_info=ProjectInfo(
                project_type=ProjectType.RUST,
                root_path="/work/demo",
                entry_points=["src/main.rs"],
                confidence=0.9,
            ),
            file_scores=[
                _make_score(
                    importance_factors={
                        ImportanceFactor.ENTRY_POINT,
                        ImportanceFactor.MAIN_MODULE,
                    },
                ),
            ],
        )
        restored = CacheEntry.model_validate_json(entry.model_dump_json())
        assert restored == entry
        assert restored.file_scores[0].importance_factors == {
            ImportanceFactor.ENTRY_POINT,
            ImportanceFactor.MAIN_MODULE,
        }


# ── Config models ─────────────────────────────────────────────────


class TestConfigModels:
    def test_defaults(self):
        config = ContextConfig()
        assert config.context.max_tokens == 4000
        assert config.context.include == []
        assert config.context.chunk_strategy == ChunkingStrategy.HIERARCHICAL
        assert config.project is None

    def test_max_tokens_must_be_positive(self):
        with pytest.raises(ValidationError):
            ContextSettings(max_tokens=0)

    def test_unknown_chunk_strategy_rejected(self):
        with pytest.raises(ValidationError):
            ContextSettings(chunk_strategy="by-vibes")

    def test_optimization_config_frozen(self):
        config = OptimizationConfig(max_tokens=100)
        with pytest.raises(ValidationError):
            config.max_tokens = 200
