"""Smart context discovery orchestrator.

Ties detection, candidate collection, scoring, caching, query re-ranking,
budget selection and chunking into the public discovery calls. Blocking
filesystem work runs in worker threads so discovery can be awaited from
an event loop.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable
from pathlib import Path, PurePosixPath

from smartctx.context.analyzer import FileAnalyzer
from smartctx.context.cache import ContextCache
from smartctx.context.chunker import ContextChunker, parse_chunking_strategy
from smartctx.context.config import config_fingerprint, discover_config
from smartctx.context.detector import detect_project
from smartctx.context.optimizer import TokenOptimizer
from smartctx.context.scanner import CodeScanner
from smartctx.errors import CacheError, ProjectPathError
from smartctx.schemas.config import (
    ChunkingStrategy,
    ContextConfig,
    DiscoveryRequest,
    OptimizationConfig,
)
from smartctx.schemas.context import (
    CacheEntry,
    CacheStats,
    ContextChunk,
    DiscoveryResult,
    FileContent,
    FileScore,
    FileSelection,
    ProjectInfo,
)

logger = logging.getLogger(__name__)


def _resolve_root(path: str | Path) -> Path:
    root = Path(path).expanduser()
    if not root.exists():
        raise ProjectPathError(f"Project path does not exist: {root}")
    if not root.is_dir():
        raise ProjectPathError(f"Project path is not a directory: {root}")
    return root.resolve()


def _read_file(path: Path) -> str:
    return path.read_text(encoding="utf-8", errors="replace")


def _contained_path(root: Path, rel_path: str) -> Path | None:
    """``root / rel_path``, or None if the path escapes the project."""
    pure = PurePosixPath(rel_path)
    if pure.is_absolute() or ".." in pure.parts:
        return None
    path = root / pure
    if path.is_symlink() or not path.resolve().is_relative_to(root):
        return None
    return path


class SmartContext:
    """Discovers the files worth handing to a language model.

    Scoring for a project is cached per configuration fingerprint when a
    :class:`ContextCache` is supplied; query re-ranking, budget selection
    and chunking always run fresh. A cache that fails is disabled for the
    rest of this object's life and discovery carries on without it.
    """

    def __init__(
        self,
        config: ContextConfig | None = None,
        cache: ContextCache | None = None,
    ) -> None:
        self._config = config or ContextConfig()
        self._cache = cache
        self._cache_failed = False
        self._analyzer = FileAnalyzer(self._config.context.priority_patterns)
        self._optimizer = TokenOptimizer(
            OptimizationConfig(max_tokens=self._config.context.max_tokens)
        )

    @classmethod
    def from_project(
        cls,
        path: str | Path,
        cache: ContextCache | None = None,
    ) -> SmartContext:
        """Build a SmartContext from the project's ``.smartctx.toml``."""
        return cls(discover_config(_resolve_root(path)), cache)

    @property
    def config(self) -> ContextConfig:
        return self._config

    @property
    def optimizer(self) -> TokenOptimizer:
        return self._optimizer

    @property
    def cache_enabled(self) -> bool:
        return (
            self._cache is not None
            and self._config.context.enable_cache
            and not self._cache_failed
        )

    # ── Pipeline steps ───────────────────────────────────────────

    def detect_project(self, path: str | Path) -> ProjectInfo | None:
        """Classify the project directory.

        Raises:
            ProjectPathError: If the directory is missing or unreadable.
        """
        root = _resolve_root(path)
        try:
            return detect_project(root, self._config)
        except OSError as e:
            raise ProjectPathError(f"Cannot read project directory {root}: {e}") from e

    def collect_candidate_files(
        self,
        path: str | Path,
        project_info: ProjectInfo | None = None,
    ) -> list[Path]:
        """Flagged files plus the bounded directory walk, deduplicated."""
        return CodeScanner(_resolve_root(path), self._config, project_info).scan()

    def score_files(
        self,
        root: Path,
        candidates: list[Path],
        project_info: ProjectInfo | None = None,
    ) -> list[FileScore]:
        """Score candidates and apply the dependency boost."""
        entry_points = project_info.entry_points if project_info else []
        scores = self._analyzer.analyze_files(candidates, root, entry_points)
        self._analyzer.analyze_dependencies(scores, root)
        return scores

    async def analyze_project(
        self,
        path: str | Path,
    ) -> tuple[ProjectInfo | None, list[FileScore], bool]:
        """Detect, collect and score a project, or reuse a cached scan.

        Returns:
            Project info, scores sorted by relevance, and whether they came
            from the cache.

        Raises:
            ProjectPathError: If the directory is missing or unreadable.
        """
        return await self._analyze(_resolve_root(path), [])

    async def _analyze(
        self,
        root: Path,
        warnings: list[str],
    ) -> tuple[ProjectInfo | None, list[FileScore], bool]:
        fingerprint = config_fingerprint(self._config)

        entry = await self._cache_get(root, fingerprint, warnings)
        if entry is not None:
            logger.info("Using cached scan for %s", root)
            return entry.project_info, entry.file_scores, True

        info = await asyncio.to_thread(self.detect_project, root)
        candidates = await asyncio.to_thread(self.collect_candidate_files, root, info)
        scores = await asyncio.to_thread(self.score_files, root, candidates, info)

        # Only a complete analysis is ever written
        await self._cache_put(root, fingerprint, scores, info, warnings)
        return info, scores, False

    async def read_contents(
        self,
        path: str | Path,
        items: Iterable[FileSelection | FileScore],
    ) -> tuple[dict[str, str], list[str]]:
        """Read file contents keyed by relative path.

        Returns:
            The contents that could be read, and one warning per file that
            could not.
        """
        root = _resolve_root(path)
        contents: dict[str, str] = {}
        warnings: list[str] = []
        for item in items:
            rel = item.score.path if isinstance(item, FileSelection) else item.path
            target = _contained_path(root, rel)
            if target is None:
                logger.warning("Refusing to read %s: outside the project", rel)
                warnings.append(f"Skipped {rel}: outside the project")
                continue
            try:
                contents[rel] = await asyncio.to_thread(_read_file, target)
            except OSError as e:
                logger.warning("Dropping unreadable file %s: %s", rel, e)
                warnings.append(f"Could not read {rel}: {e}")
        return contents, warnings

    # ── Cache plumbing ───────────────────────────────────────────

    def _disable_cache(self, error: CacheError, warnings: list[str]) -> None:
        logger.warning("Context cache disabled: %s", error)
        warnings.append(f"Cache disabled: {error}")
        self._cache_failed = True

    async def _open_cache(self) -> ContextCache:
        if self._cache is None:
            raise CacheError("No context cache configured")
        if not self._cache.is_open:
            await self._cache.open()
        return self._cache

    async def _cache_get(
        self,
        root: Path,
        fingerprint: str,
        warnings: list[str],
    ) -> CacheEntry | None:
        if not self.cache_enabled:
            return None
        try:
            cache = await self._open_cache()
            return await cache.get(root, fingerprint)
        except CacheError as e:
            self._disable_cache(e, warnings)
            return None

    async def _cache_put(
        self,
        root: Path,
        fingerprint: str,
        scores: list[FileScore],
        info: ProjectInfo | None,
        warnings: list[str],
    ) -> None:
        if not self.cache_enabled:
            return
        try:
            cache = await self._open_cache()
            await cache.put(root, fingerprint, scores, info)
        except CacheError as e:
            self._disable_cache(e, warnings)

    async def cache_stats(self) -> CacheStats | None:
        """Statistics of the attached cache, or None without one."""
        if self._cache is None:
            return None
        cache = await self._open_cache()
        return await cache.stats()

    async def invalidate_cache(self, path: str | Path) -> int:
        if self._cache is None:
            return 0
        cache = await self._open_cache()
        return await cache.invalidate(Path(path).expanduser().resolve())

    async def clear_cache(self) -> int:
        if self._cache is None:
            return 0
        cache = await self._open_cache()
        return await cache.clear()

    # ── Discovery ────────────────────────────────────────────────

    async def discover(self, request: DiscoveryRequest) -> DiscoveryResult:
        """Run a full discovery request.

        The chunk strategy is validated before any filesystem work.

        Raises:
            InvalidChunkStrategyError: If ``chunk_strategy`` is unknown.
            ProjectPathError: If the project directory is missing.
        """
        strategy = (
            parse_chunking_strategy(request.chunk_strategy)
            if request.chunk_strategy is not None
            else self._config.context.chunk_strategy
        )
        root = _resolve_root(request.root_path)
        budget = request.max_tokens or self._config.context.max_tokens
        optimizer = TokenOptimizer(self._optimizer.config.model_copy(update={"max_tokens": budget}))

        warnings: list[str] = []
        info, scores, from_cache = await self._analyze(root, warnings)
        ranked = self._analyzer.filter_by_query(scores, request.query)

        if request.chunking_enabled:
            chunk_budget = self._config.context.chunk_max_tokens or budget
            contents, read_warnings = await self.read_contents(root, ranked)
            warnings.extend(read_warnings)
            chunks = ContextChunker(chunk_budget, strategy).create_chunks(ranked, contents)
            return DiscoveryResult(
                project_info=info,
                chunks=chunks,
                total_tokens=sum(c.estimated_tokens for c in chunks),
                token_budget=chunk_budget,
                from_cache=from_cache,
                warnings=warnings,
            )

        selections = optimizer.optimize_files(ranked)
        contents, read_warnings = await self.read_contents(root, selections)
        warnings.extend(read_warnings)

        kept = [s for s in selections if s.score.path in contents]
        files = [optimizer.materialize(s, contents[s.score.path]) for s in kept]
        return DiscoveryResult(
            project_info=info,
            files=files,
            selections=kept,
            total_tokens=optimizer.total_tokens(kept),
            token_budget=budget,
            from_cache=from_cache,
            warnings=warnings,
        )

    async def discover_context(
        self,
        path: str | Path,
        query: str | None = None,
    ) -> list[FileContent]:
        """Select the most relevant files that fit the token budget."""
        result = await self.discover(DiscoveryRequest(root_path=str(path), query=query))
        return result.files

    async def discover_chunks(
        self,
        path: str | Path,
        query: str | None = None,
        strategy: ChunkingStrategy | str = ChunkingStrategy.HIERARCHICAL,
        max_tokens_per_chunk: int | None = None,
    ) -> list[ContextChunk]:
        """Split the whole scored project into ordered chunks."""
        chunk_strategy = parse_chunking_strategy(strategy)
        root = _resolve_root(path)
        budget = (
            max_tokens_per_chunk
            or self._config.context.chunk_max_tokens
            or self._config.context.max_tokens
        )

        _, scores, _ = await self._analyze(root, [])
        ranked = self._analyzer.filter_by_query(scores, query)
        contents, _ = await self.read_contents(root, ranked)
        return ContextChunker(budget, chunk_strategy).create_chunks(ranked, contents)

    # ── Preview ──────────────────────────────────────────────────

    def preview_context_selection(
        self,
        selections: list[FileSelection] | list[FileScore],
        token_budget: int | None = None,
    ) -> str:
        """Plain-text summary of a selection for display before sending."""
        items = [
            s if isinstance(s, FileSelection) else FileSelection(score=s)
            for s in selections
        ]
        budget = token_budget or self._optimizer.get_token_budget()
        total = TokenOptimizer.total_tokens(items)

        lines = [
            "Smart Context Selection Summary",
            "=" * 35,
            "",
            f"Selected {len(items)} files",
            f"Estimated tokens: ~{total}",
            f"Token budget: {budget}",
            "",
            "Selected files (by relevance):",
            "-" * 35,
        ]
        for i, item in enumerate(items, 1):
            score = item.score
            bar = "█" * int(score.relevance_score * 10)
            name = Path(score.path).name
            note = " [truncated]" if item.truncated else ""
            if item.summarized:
                note = " [summarized]"
            lines.append(
                f"{i:2}. {bar:<10} ({score.relevance_score * 100:.1f}%) {name}{note}"
            )
            lines.append(f"    {score.path} (~{item.budget_tokens} tokens)")
            if score.importance_factors:
                tags = ", ".join(sorted(f.value for f in score.importance_factors))
                lines.append(f"    tags: {tags}")
            lines.append("")

        return "\n".join(lines)
