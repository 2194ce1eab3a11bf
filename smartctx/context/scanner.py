"""Candidate file collection.

Walks a project directory respecting .gitignore patterns and the project
configuration, and drops files that are never worth scoring: hidden,
binary, generated or oversized files. Files the detector flagged as
important come first.
"""

from __future__ import annotations

import fnmatch
import logging
import os
from pathlib import Path

from smartctx.context.analyzer import is_test_file
from smartctx.context.config import is_explicitly_included, matches_pattern, should_include
from smartctx.schemas.config import ContextConfig
from smartctx.schemas.context import ProjectInfo

logger = logging.getLogger(__name__)

# Default directories/files to always ignore
_ALWAYS_IGNORE: set[str] = {
    ".git",
    ".hg",
    ".svn",
    "__pycache__",
    ".mypy_cache",
    ".ruff_cache",
    ".pytest_cache",
    "node_modules",
    "target",
    ".venv",
    "venv",
    ".tox",
    "dist",
    "build",
    "*.egg-info",
    ".DS_Store",
    "Thumbs.db",
}

_BINARY_EXTENSIONS: set[str] = {
    # Images
    ".png", ".jpg", ".jpeg", ".gif", ".bmp", ".ico", ".webp", ".tiff", ".psd",
    # Audio / video
    ".mp3", ".wav", ".ogg", ".flac", ".mp4", ".avi", ".mov", ".mkv", ".webm",
    # Archives
    ".zip", ".tar", ".gz", ".tgz", ".bz2", ".xz", ".7z", ".rar", ".jar", ".war",
    # Compiled / binary
    ".exe", ".dll", ".so", ".dylib", ".a", ".o", ".obj", ".class", ".pyc", ".pyo",
    ".wasm", ".rlib", ".bin", ".dat", ".db", ".sqlite", ".sqlite3",
    # Documents / fonts
    ".pdf", ".doc", ".docx", ".xls", ".xlsx", ".ppt", ".pptx",
    ".ttf", ".otf", ".woff", ".woff2", ".eot",
}

# Generated or lock files that add tokens but no insight
_GENERATED_PATTERNS: tuple[str, ...] = (
    "*.min.js",
    "*.min.css",
    "*.map",
    "*.lock",
    "package-lock.json",
    "pnpm-lock.yaml",
    "yarn.lock",
    "go.sum",
)

# Max file size to scan (1 MB)
MAX_FILE_BYTES = 1_000_000

MAX_WALK_DEPTH = 10

# Bytes sniffed for NUL when deciding whether a file is binary
_SNIFF_BYTES = 1024


def is_binary_file(path: Path) -> bool:
    """Check the extension, then sniff the first 1 KB for a NUL byte."""
    if path.suffix.lower() in _BINARY_EXTENSIONS:
        return True
    try:
        with open(path, "rb") as f:
            return b"\x00" in f.read(_SNIFF_BYTES)
    except OSError:
        return True


def is_generated_file(name: str) -> bool:
    return any(fnmatch.fnmatch(name, pattern) for pattern in _GENERATED_PATTERNS)


class CodeScanner:
    """Collects the candidate files of a project.

    Respects .gitignore patterns and the include/exclude globs of the
    configuration. Hidden files are skipped unless an include pattern names
    them or the detector listed them. Test files are skipped unless
    ``include_tests`` is set.
    """

    def __init__(
        self,
        root: str | Path,
        config: ContextConfig | None = None,
        project_info: ProjectInfo | None = None,
    ) -> None:
        self._root = Path(root).resolve()
        self._config = config or ContextConfig()
        self._project_info = project_info
        self._gitignore_patterns: list[str] = []
        self._load_gitignore()

    def _load_gitignore(self) -> None:
        """Load .gitignore patterns from the project root."""
        gitignore = self._root / ".gitignore"
        if not gitignore.is_file():
            return
        try:
            text = gitignore.read_text(encoding="utf-8", errors="replace")
        except OSError as e:
            logger.debug("Could not read %s: %s", gitignore, e)
            return
        for line in text.splitlines():
            stripped = line.strip()
            if stripped and not stripped.startswith(("#", "!")):
                self._gitignore_patterns.append(stripped.rstrip("/"))

    def _is_ignored(self, rel_path: str) -> bool:
        """Check if a path should be ignored based on gitignore + default rules."""
        parts = rel_path.split("/")

        # Check each path component against always-ignore set
        for part in parts:
            if part in _ALWAYS_IGNORE:
                return True
            for pattern in _ALWAYS_IGNORE:
                if fnmatch.fnmatch(part, pattern):
                    return True

        for pattern in self._gitignore_patterns:
            anchored = pattern.lstrip("/")
            if fnmatch.fnmatch(rel_path, anchored):
                return True
            if not pattern.startswith("/") and fnmatch.fnmatch(rel_path, f"*/{anchored}"):
                return True
            for part in parts:
                if fnmatch.fnmatch(part, anchored):
                    return True

        return False

    def _is_hidden(self, rel_path: str) -> bool:
        if not any(part.startswith(".") for part in rel_path.split("/")):
            return False
        return not is_explicitly_included(self._config, rel_path)

    def _accept(self, path: Path, rel_path: str, flagged: bool = False) -> bool:
        """Apply every per-file exclusion rule."""
        if flagged:
            # Detector-flagged files only honor exclude patterns
            if any(matches_pattern(rel_path, p) for p in self._config.context.exclude):
                return False
        elif self._is_hidden(rel_path) or self._is_ignored(rel_path):
            return False
        elif not should_include(self._config, rel_path):
            return False

        if not self._config.context.include_tests and is_test_file(rel_path):
            return False

        if is_generated_file(path.name):
            return False

        try:
            size = path.stat().st_size
        except OSError:
            return False

        if size > MAX_FILE_BYTES:
            logger.debug("Skipping oversized file %s (%d bytes)", rel_path, size)
            return False

        return not is_binary_file(path)

    def _flagged_files(self) -> list[str]:
        if self._project_info is None:
            return []
        return list(
            dict.fromkeys([
                *self._project_info.important_files,
                *self._project_info.entry_points,
            ])
        )

    def scan(self) -> list[Path]:
        """Walk the project and return absolute candidate paths.

        Detector-flagged files come first, then the walk in sorted order.
        Each file appears once, keyed by its resolved path.
        """
        if not self._root.is_dir():
            logger.warning("Project directory does not exist: %s", self._root)
            return []

        seen: set[Path] = set()
        files: list[Path] = []

        def add(path: Path) -> None:
            resolved = path.resolve()
            if resolved not in seen:
                seen.add(resolved)
                files.append(path)

        for rel in self._flagged_files():
            path = self._root / rel
            if not self._is_contained(path):
                logger.warning("Skipping flagged file outside the project: %s", rel)
                continue
            if path.is_file() and self._accept(path, rel, flagged=True):
                add(path)

        for dirpath, dirnames, filenames in os.walk(self._root, followlinks=False):
            current = Path(dirpath)
            rel_dir = current.relative_to(self._root).as_posix()
            depth = 0 if rel_dir == "." else rel_dir.count("/") + 1

            if depth >= MAX_WALK_DEPTH:
                dirnames[:] = []
            else:
                dirnames[:] = sorted(
                    d
                    for d in dirnames
                    if not self._skip_dir(d if rel_dir == "." else f"{rel_dir}/{d}")
                )

            for name in sorted(filenames):
                path = current / name
                if path.is_symlink():
                    continue
                rel = name if rel_dir == "." else f"{rel_dir}/{name}"
                if self._accept(path, rel):
                    add(path)

        logger.info("Collected %d candidate files in %s", len(files), self._root)
        return files

    def _is_contained(self, path: Path) -> bool:
        # Symlinks are never followed, same as the walk
        if path.is_symlink():
            return False
        try:
            return path.resolve().is_relative_to(self._root)
        except OSError:
            return False

    def _skip_dir(self, rel_dir: str) -> bool:
        if self._is_ignored(rel_dir):
            return True
        name = rel_dir.rsplit("/", 1)[-1]
        if name.startswith("."):
            # Hidden directories are entered only when an include pattern
            # reaches inside them
            return not any(
                p.lstrip("/").startswith(f"{rel_dir}/") or p.startswith("**")
                for p in self._config.context.include
            )
        return False
