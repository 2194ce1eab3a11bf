"""Context chunking for projects that exceed a single token budget.

Splits scored files into an ordered sequence of budget-respecting chunks.
Chunk order is delivery order. The chunker is pure: file contents are
passed in, so chunking never touches the filesystem and the same inputs
always give the same chunks.

No file with content is ever dropped: a file that does not fit the current
chunk starts a new one, and a file too large to fit even an empty chunk is
truncated with an explicit marker.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Iterable, Mapping
from pathlib import PurePosixPath

from smartctx.context.analyzer import rank_key
from smartctx.context.tokens import estimate_tokens, truncate_to_tokens
from smartctx.errors import InvalidChunkStrategyError
from smartctx.schemas.config import DEFAULT_CHUNK_TOKENS, ChunkingStrategy
from smartctx.schemas.context import (
    ChunkType,
    ContextChunk,
    FileContent,
    FileScore,
    FileType,
    ImportanceFactor,
    clamp_score,
)

logger = logging.getLogger(__name__)

# Files per chunk, regardless of budget
MAX_FILES_PER_CHUNK = 20

# File name fragments that belong in the project overview
OVERVIEW_PATTERNS: tuple[str, ...] = (
    "README",
    "CHANGELOG",
    "LICENSE",
    "Cargo.toml",
    "package.json",
    "pyproject.toml",
    "go.mod",
    "pom.xml",
    "build.gradle",
    "main.rs",
    "index.js",
    "index.ts",
    "main.py",
    "main.go",
)

# (bucket, display name, priority) in delivery order
_FUNCTIONAL_BUCKETS: tuple[tuple[ChunkType, str, float], ...] = (
    (ChunkType.CORE, "Core Application", 0.9),
    (ChunkType.CONFIG, "Configuration", 0.7),
    (ChunkType.DOCS, "Documentation", 0.5),
    (ChunkType.UTILS, "Utilities", 0.4),
    (ChunkType.TESTS, "Tests", 0.3),
)

_MODULE_IMPORTANCE_BONUS = 0.3


def parse_chunking_strategy(name: str | ChunkingStrategy) -> ChunkingStrategy:
    """Resolve a strategy name.

    Raises:
        InvalidChunkStrategyError: If the name is not a known strategy.
    """
    if isinstance(name, ChunkingStrategy):
        return name
    try:
        return ChunkingStrategy(name.strip().lower())
    except ValueError:
        valid = ", ".join(s.value for s in ChunkingStrategy)
        raise InvalidChunkStrategyError(
            f"Invalid chunk strategy '{name}'. Valid options: {valid}"
        ) from None


def is_overview_file(score: FileScore) -> bool:
    """README, manifests and main modules open a hierarchical chunk set."""
    if ImportanceFactor.MAIN_MODULE in score.importance_factors:
        return True
    name = PurePosixPath(score.path).name
    return any(pattern in name for pattern in OVERVIEW_PATTERNS)


def functional_bucket(score: FileScore) -> ChunkType:
    """Classify a file into a functional chunk type."""
    if score.file_type == FileType.TEST:
        return ChunkType.TESTS
    if score.file_type == FileType.CONFIGURATION:
        return ChunkType.CONFIG
    if score.file_type == FileType.DOCUMENTATION:
        return ChunkType.DOCS
    if score.file_type == FileType.SOURCE_CODE and score.has_any(
        ImportanceFactor.ENTRY_POINT, ImportanceFactor.MAIN_MODULE,
    ):
        return ChunkType.CORE
    return ChunkType.UTILS


def module_chunk_type(module_name: str, scores: list[FileScore]) -> ChunkType:
    """Guess a chunk type from a directory name."""
    name = module_name.lower()
    if "test" in name:
        return ChunkType.TESTS
    if "config" in name or "settings" in name:
        return ChunkType.CONFIG
    if "doc" in name or "readme" in name:
        return ChunkType.DOCS
    if "util" in name or "helper" in name:
        return ChunkType.UTILS
    if any(ImportanceFactor.ENTRY_POINT in s.importance_factors for s in scores):
        return ChunkType.CORE
    return ChunkType.UTILS


class ContextChunker:
    """Builds ordered context chunks with one strategy per call.

    A chunk holds at most ``MAX_FILES_PER_CHUNK`` files. Buckets and modules
    are never capped: one that outgrows a chunk continues in ``<id>_2``,
    ``<id>_3`` and so on, named "(part N)", in the same position of the
    delivery order.
    """

    def __init__(
        self,
        max_tokens_per_chunk: int = DEFAULT_CHUNK_TOKENS,
        strategy: ChunkingStrategy = ChunkingStrategy.HIERARCHICAL,
    ) -> None:
        if max_tokens_per_chunk <= 0:
            raise ValueError("max_tokens_per_chunk must be positive")
        self._max_tokens = max_tokens_per_chunk
        self._strategy = strategy

    @property
    def strategy(self) -> ChunkingStrategy:
        return self._strategy

    @property
    def max_tokens_per_chunk(self) -> int:
        return self._max_tokens

    def create_chunks(
        self,
        scores: list[FileScore],
        contents: Mapping[str, str],
    ) -> list[ContextChunk]:
        """Split scored files into chunks using the configured strategy.

        Args:
            scores: Scored candidate files.
            contents: File content keyed by relative path; files without an
                entry are left out.

        Returns:
            Chunks in delivery order.
        """
        available = sorted((s for s in scores if s.path in contents), key=rank_key)

        if self._strategy == ChunkingStrategy.MODULE:
            chunks = self._chunk_by_modules(available, contents)
        elif self._strategy == ChunkingStrategy.FUNCTIONAL:
            chunks = self._chunk_by_function(available, contents)
        elif self._strategy == ChunkingStrategy.TOKEN:
            chunks = self._chunk_by_tokens(available, contents)
        else:
            chunks = self._chunk_hierarchically(available, contents)

        logger.info(
            "Built %d %s chunks from %d files",
            len(chunks),
            self._strategy.value,
            len(available),
        )
        return chunks

    def create_overview_chunk(
        self,
        scores: list[FileScore],
        contents: Mapping[str, str],
    ) -> tuple[ContextChunk, list[FileScore]]:
        """Build the overview chunk.

        Returns:
            The overview chunk (possibly empty) and the overview candidates
            that did not fit, so the caller can place them elsewhere.
        """
        files: list[FileContent] = []
        leftovers: list[FileScore] = []
        used = 0

        candidates = sorted(
            (s for s in scores if s.path in contents and is_overview_file(s)),
            key=rank_key,
        )
        for score in candidates:
            content = contents[score.path]
            tokens = estimate_tokens(content)
            if used + tokens <= self._max_tokens and len(files) < MAX_FILES_PER_CHUNK:
                files.append(_file_content(score.path, content, content))
                used += tokens
            elif not files:
                text = truncate_to_tokens(content, self._max_tokens)
                files.append(_file_content(score.path, text, content))
                used += estimate_tokens(text)
            else:
                leftovers.append(score)

        chunk = ContextChunk(
            id="overview",
            name="Project Overview",
            description="Main project files, configuration, and entry points",
            files=tuple(files),
            estimated_tokens=used,
            chunk_type=ChunkType.OVERVIEW,
            priority=1.0,
        )
        return chunk, leftovers

    # ── Packing ──────────────────────────────────────────────────

    def _pack(
        self,
        scores: Iterable[FileScore],
        contents: Mapping[str, str],
    ) -> list[tuple[list[FileContent], int]]:
        """Greedy sequential packing into groups that fit the chunk budget."""
        groups: list[tuple[list[FileContent], int]] = []
        current: list[FileContent] = []
        used = 0

        for score in scores:
            content = contents[score.path]
            tokens = estimate_tokens(content)

            full = used + tokens > self._max_tokens or len(current) >= MAX_FILES_PER_CHUNK
            if full and current:
                groups.append((current, used))
                current, used = [], 0

            if tokens > self._max_tokens:
                # Too large even alone: truncated, never dropped
                text = truncate_to_tokens(content, self._max_tokens)
                groups.append(([_file_content(score.path, text, content)], estimate_tokens(text)))
                continue

            current.append(_file_content(score.path, content, content))
            used += tokens

        if current:
            groups.append((current, used))
        return groups

    # ── Strategies ───────────────────────────────────────────────

    def _chunk_by_modules(
        self,
        scores: list[FileScore],
        contents: Mapping[str, str],
    ) -> list[ContextChunk]:
        modules: dict[str, list[FileScore]] = defaultdict(list)
        for score in scores:
            parent = PurePosixPath(score.path).parent.as_posix()
            modules["root" if parent == "." else parent].append(score)

        chunks: list[ContextChunk] = []
        for module_name, module_scores in modules.items():
            priority = _module_priority(module_scores)
            chunk_type = module_chunk_type(module_name, module_scores)
            base_id = "module_" + module_name.replace("/", "_").replace("\\", "_")
            groups = self._pack(module_scores, contents)
            for index, (files, used) in enumerate(groups):
                suffix = "" if index == 0 else f"_{index + 1}"
                label = "" if len(groups) == 1 else f" (part {index + 1})"
                chunks.append(
                    ContextChunk(
                        id=base_id + suffix,
                        name=f"Module: {module_name}{label}",
                        description=f"Files from {module_name} directory ({len(files)} files)",
                        files=tuple(files),
                        estimated_tokens=used,
                        chunk_type=chunk_type,
                        priority=priority,
                    )
                )

        chunks.sort(key=lambda c: (-c.priority, c.id))
        return chunks

    def _chunk_by_function(
        self,
        scores: list[FileScore],
        contents: Mapping[str, str],
    ) -> list[ContextChunk]:
        buckets: dict[ChunkType, list[FileScore]] = defaultdict(list)
        for score in scores:
            buckets[functional_bucket(score)].append(score)

        chunks: list[ContextChunk] = []
        for chunk_type, display_name, priority in _FUNCTIONAL_BUCKETS:
            bucket = buckets.get(chunk_type)
            if not bucket:
                continue
            groups = self._pack(bucket, contents)
            for index, (files, used) in enumerate(groups):
                suffix = "" if index == 0 else f"_{index + 1}"
                label = "" if len(groups) == 1 else f" (part {index + 1})"
                chunks.append(
                    ContextChunk(
                        id=chunk_type.value + suffix,
                        name=display_name + label,
                        description=f"{display_name} files ({len(files)} files)",
                        files=tuple(files),
                        estimated_tokens=used,
                        chunk_type=chunk_type,
                        priority=priority,
                    )
                )
        return chunks

    def _chunk_by_tokens(
        self,
        scores: list[FileScore],
        contents: Mapping[str, str],
    ) -> list[ContextChunk]:
        chunks: list[ContextChunk] = []
        for index, (files, used) in enumerate(self._pack(scores, contents)):
            chunks.append(
                ContextChunk(
                    id=f"chunk_{index}",
                    name=f"Context Chunk {index + 1}",
                    description=f"Token-based chunk ({len(files)} files, ~{used} tokens)",
                    files=tuple(files),
                    estimated_tokens=used,
                    chunk_type=ChunkType.CORE,
                    # Strictly decreasing with position
                    priority=1.0 / (index + 1),
                )
            )
        return chunks

    def _chunk_hierarchically(
        self,
        scores: list[FileScore],
        contents: Mapping[str, str],
    ) -> list[ContextChunk]:
        overview, _ = self.create_overview_chunk(scores, contents)
        placed = {f.path for f in overview.files}
        remaining = [s for s in scores if s.path not in placed]
        return [overview, *self._chunk_by_function(remaining, contents)]


def _module_priority(scores: list[FileScore]) -> float:
    average = sum(s.relevance_score for s in scores) / len(scores)
    if any(
        s.has_any(ImportanceFactor.ENTRY_POINT, ImportanceFactor.MAIN_MODULE)
        for s in scores
    ):
        average += _MODULE_IMPORTANCE_BONUS
    return clamp_score(average)


def _file_content(path: str, text: str, original: str) -> FileContent:
    return FileContent(
        path=path,
        content=text,
        truncated=text != original,
        original_chars=len(original),
    )
