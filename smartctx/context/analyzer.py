"""File relevance analysis.

Scores candidate files from path and name heuristics, boosts files that
important files depend on, and re-ranks by lexical overlap with a query.
Scoring depends only on paths, sizes and content, never on the clock, so a
fixed file set always produces the same scores.
"""

from __future__ import annotations

import logging
import posixpath
import re
from collections import defaultdict
from collections.abc import Iterable, Mapping
from pathlib import Path, PurePosixPath

from smartctx.context.config import is_priority_file
from smartctx.context.tokens import estimate_tokens
from smartctx.schemas.context import FileScore, FileType, ImportanceFactor

logger = logging.getLogger(__name__)

# File extension → file type mapping
_EXT_TYPE: dict[str, FileType] = {
    ".rs": FileType.SOURCE_CODE,
    ".js": FileType.SOURCE_CODE,
    ".jsx": FileType.SOURCE_CODE,
    ".mjs": FileType.SOURCE_CODE,
    ".cjs": FileType.SOURCE_CODE,
    ".ts": FileType.SOURCE_CODE,
    ".tsx": FileType.SOURCE_CODE,
    ".py": FileType.SOURCE_CODE,
    ".java": FileType.SOURCE_CODE,
    ".kt": FileType.SOURCE_CODE,
    ".kts": FileType.SOURCE_CODE,
    ".go": FileType.SOURCE_CODE,
    ".c": FileType.SOURCE_CODE,
    ".h": FileType.SOURCE_CODE,
    ".cpp": FileType.SOURCE_CODE,
    ".hpp": FileType.SOURCE_CODE,
    ".cs": FileType.SOURCE_CODE,
    ".rb": FileType.SOURCE_CODE,
    ".php": FileType.SOURCE_CODE,
    ".swift": FileType.SOURCE_CODE,
    ".sh": FileType.SOURCE_CODE,
    ".sql": FileType.SOURCE_CODE,
    ".toml": FileType.CONFIGURATION,
    ".json": FileType.CONFIGURATION,
    ".yaml": FileType.CONFIGURATION,
    ".yml": FileType.CONFIGURATION,
    ".ini": FileType.CONFIGURATION,
    ".cfg": FileType.CONFIGURATION,
    ".conf": FileType.CONFIGURATION,
    ".xml": FileType.CONFIGURATION,
    ".gradle": FileType.CONFIGURATION,
    ".properties": FileType.CONFIGURATION,
    ".md": FileType.DOCUMENTATION,
    ".rst": FileType.DOCUMENTATION,
    ".txt": FileType.DOCUMENTATION,
    ".adoc": FileType.DOCUMENTATION,
    ".csv": FileType.DATA,
    ".tsv": FileType.DATA,
}

_CONFIG_NAMES = {"Dockerfile", "Makefile", "justfile", "Procfile", "Pipfile"}

# Built-in priority name fragments, extended by configured patterns
PRIORITY_PATTERNS: tuple[str, ...] = (
    "main.rs",
    "lib.rs",
    "mod.rs",
    "index.js",
    "index.ts",
    "main.py",
    "__init__.py",
    "main.go",
    "Main.java",
    "Application.java",
    "Main.kt",
    "Application.kt",
    "Cargo.toml",
    "package.json",
    "pyproject.toml",
    "go.mod",
    "pom.xml",
    "build.gradle",
    "build.gradle.kts",
    "README.md",
)

MAIN_MODULES: frozenset[str] = frozenset({
    "main.rs",
    "main.py",
    "index.js",
    "index.ts",
    "main.go",
    "Main.java",
    "Main.kt",
    "Application.java",
    "Application.kt",
})

_TYPE_BONUS: dict[FileType, float] = {
    FileType.SOURCE_CODE: 1.0,
    FileType.CONFIGURATION: 0.8,
    FileType.DOCUMENTATION: 0.6,
    FileType.TEST: 0.5,
    FileType.DATA: 0.2,
    FileType.OTHER: 0.1,
}

_SMALL_FILE_BYTES = 10_000
_LARGE_FILE_BYTES = 100_000

# Dependency boosts (one hop only)
REFERENCED_BY_ENTRY_BONUS = 0.3
HIGHLY_REFERENCED_BONUS = 0.3
DEPENDENCY_ROOT_BONUS = 0.2

QUERY_BONUS = 0.5

_TEST_SUFFIXES = (
    "_test.rs",
    "_test.py",
    "_test.go",
    "test.java",
    "test.kt",
    ".test.js",
    ".test.ts",
    ".spec.js",
    ".spec.ts",
)


def is_test_file(path: str) -> bool:
    """Check whether a relative path looks like a test file."""
    path_str = path.replace("\\", "/").lower()
    if (
        "/test/" in path_str
        or "/tests/" in path_str
        or path_str.startswith(("test/", "tests/"))
    ):
        return True

    name = PurePosixPath(path_str).name
    return name.startswith("test_") or name.endswith(_TEST_SUFFIXES)


def determine_file_type(path: str) -> FileType:
    """Classify a file by test naming, extension, then special names."""
    if is_test_file(path):
        return FileType.TEST

    pure = PurePosixPath(path.replace("\\", "/"))
    file_type = _EXT_TYPE.get(pure.suffix.lower())
    if file_type is not None:
        return file_type

    name = pure.name
    if name in _CONFIG_NAMES:
        return FileType.CONFIGURATION
    if name.startswith(".") and ("rc" in name or "config" in name):
        return FileType.CONFIGURATION
    lower = name.lower()
    if "readme" in lower or "license" in lower or "changelog" in lower:
        return FileType.DOCUMENTATION
    return FileType.OTHER


def rank_key(score: FileScore) -> tuple[float, str]:
    """Sort key: highest relevance first, path as a stable tie-breaker."""
    return (-score.relevance_score, score.path)


def _read_text(path: Path) -> str:
    return path.read_text(encoding="utf-8", errors="replace")


# ── Reference extraction ──────────────────────────────────────────

_RUST_KEYWORDS = {"crate", "self", "super", "std", "core", "alloc", "as", "pub", "use", "mod"}
_JS_EXTENSIONS = (".js", ".ts", ".jsx", ".tsx", ".mjs", ".cjs")
_JS_IMPORT = re.compile(r"""(?:from\s+|require\(\s*|import\s+)["'](\.{1,2}/[^"']+)["']""")
_PY_FROM = re.compile(r"^from\s+(\.*)([\w.]*)\s+import\s+(.+)$")
_PY_IMPORT = re.compile(r"^import\s+(.+)$")
_IDENT = re.compile(r"[A-Za-z_]\w*")

_FAMILIES: dict[str, str] = {
    ".rs": "rust",
    ".py": "python",
    ".java": "jvm",
    ".kt": "jvm",
    **{ext: "js" for ext in _JS_EXTENSIONS},
}

# Files that stand for their parent directory as a module
_PACKAGE_FILES = {"mod.rs", "__init__.py", "index.js", "index.ts"}


def _rust_names(content: str) -> set[str]:
    names: set[str] = set()
    for raw in content.splitlines():
        line = raw.strip()
        if line.startswith("pub "):
            line = line[4:].lstrip()
        if line.startswith("mod "):
            names.add(line[4:].split(";")[0].split("{")[0].strip())
        elif line.startswith(("use ", "extern crate ")):
            names.update(n for n in _IDENT.findall(line) if n not in _RUST_KEYWORDS)
    return names


def _python_names(content: str) -> set[str]:
    names: set[str] = set()
    for raw in content.splitlines():
        line = raw.strip()
        match = _PY_FROM.match(line)
        if match:
            names.update(p for p in match.group(2).split(".") if p)
            imported = match.group(3).strip("() ")
            for part in imported.split(","):
                ident = part.strip().split(" as ")[0].strip()
                if ident and ident != "*":
                    names.add(ident)
            continue
        match = _PY_IMPORT.match(line)
        if match:
            for part in match.group(1).split(","):
                module = part.strip().split(" as ")[0].strip()
                names.update(p for p in module.split(".") if p)
    return {n for n in names if not n.startswith("__")}


def _jvm_names(content: str) -> set[str]:
    names: set[str] = set()
    for raw in content.splitlines():
        line = raw.strip().rstrip(";")
        if line.startswith("import "):
            last = line.split()[-1].split(".")[-1]
            if last and last != "*":
                names.add(last)
    return names


def _js_specs(content: str) -> set[str]:
    specs: set[str] = set()
    for raw in content.splitlines():
        line = raw.strip()
        if line.startswith(("import ", "export ")) or "require(" in line:
            specs.update(_JS_IMPORT.findall(line))
    return specs


class FileAnalyzer:
    """Scores candidate files and adjusts scores using dependencies.

    Scoring heuristics (normalized by 10, clamped to [0, 1]):
    - Base score 1.0
    - Priority name pattern or detected entry point: +2.0
    - Main module (main.rs, main.py, index.js, ...): +1.5
    - Test file: +0.5
    - Small file (< 10 KB): +0.5, large file (> 100 KB): -0.5
    - File type: source 1.0, config 0.8, docs 0.6, test 0.5, data 0.2
    """

    def __init__(self, priority_patterns: Iterable[str] = ()) -> None:
        self._priority_patterns = tuple(
            dict.fromkeys([*PRIORITY_PATTERNS, *priority_patterns])
        )

    def score_file(
        self,
        rel_path: str,
        size_bytes: int,
        content: str,
        entry_points: Iterable[str] = (),
    ) -> FileScore:
        """Compute the base relevance score for one file."""
        name = PurePosixPath(rel_path).name
        file_type = determine_file_type(rel_path)
        factors: set[ImportanceFactor] = set()
        base_score = 1.0

        priority = is_priority_file(rel_path, self._priority_patterns)
        if priority:
            factors.add(ImportanceFactor.PRIORITY_MATCH)
        if priority or rel_path in set(entry_points):
            factors.add(ImportanceFactor.ENTRY_POINT)
            base_score += 2.0

        if name in MAIN_MODULES:
            factors.add(ImportanceFactor.MAIN_MODULE)
            base_score += 1.5

        if file_type == FileType.TEST:
            factors.add(ImportanceFactor.TEST_FILE)
            base_score += 0.5
        elif file_type == FileType.CONFIGURATION:
            factors.add(ImportanceFactor.CONFIG_FILE)
        elif file_type == FileType.DOCUMENTATION:
            factors.add(ImportanceFactor.DOCUMENTATION)

        # Prefer smaller files for context
        if size_bytes < _SMALL_FILE_BYTES:
            factors.add(ImportanceFactor.SMALL_SIZE)
            base_score += 0.5
        elif size_bytes > _LARGE_FILE_BYTES:
            base_score -= 0.5

        base_score += _TYPE_BONUS[file_type]

        return FileScore(
            path=rel_path,
            relevance_score=base_score / 10.0,
            file_type=file_type,
            importance_factors=factors,
            size_bytes=size_bytes,
            estimated_tokens=estimate_tokens(content),
        )

    def analyze_file(
        self,
        path: Path,
        root: Path | None = None,
        entry_points: Iterable[str] = (),
    ) -> FileScore:
        """Read and score a single file.

        Raises:
            OSError: If the file cannot be read.
            ValueError: If ``path`` lies outside ``root``.
        """
        rel_path = _relative(path, root)
        content = _read_text(path)
        size = path.stat().st_size
        return self.score_file(rel_path, size, content, entry_points)

    def analyze_files(
        self,
        paths: Iterable[Path],
        root: Path | None = None,
        entry_points: Iterable[str] = (),
    ) -> list[FileScore]:
        """Score many files, skipping unreadable ones, sorted by relevance."""
        entries = set(entry_points)
        scores: list[FileScore] = []
        for path in paths:
            try:
                scores.append(self.analyze_file(path, root, entries))
            except (OSError, ValueError) as e:
                logger.debug("Skipping file %s: %s", path, e)

        scores.sort(key=rank_key)
        return scores

    # ── Dependency analysis ──────────────────────────────────────

    def build_dependency_map(
        self,
        scores: list[FileScore],
        root: Path | None = None,
        contents: Mapping[str, str] | None = None,
    ) -> dict[str, set[str]]:
        """Map each file to the candidate files it references."""
        index: dict[tuple[str, str], list[str]] = defaultdict(list)
        known = {s.path for s in scores}
        for s in scores:
            pure = PurePosixPath(s.path)
            family = _FAMILIES.get(pure.suffix.lower())
            if family is None:
                continue
            index[(family, pure.stem)].append(s.path)
            if pure.name in _PACKAGE_FILES and pure.parent.name:
                index[(family, pure.parent.name)].append(s.path)

        dependency_map: dict[str, set[str]] = {}
        for s in scores:
            content = self._content_for(s.path, root, contents)
            if content is None:
                dependency_map[s.path] = set()
                continue
            deps = self._resolve(s.path, content, index, known)
            deps.discard(s.path)
            dependency_map[s.path] = deps
        return dependency_map

    def analyze_dependencies(
        self,
        scores: list[FileScore],
        root: Path | None = None,
        contents: Mapping[str, str] | None = None,
    ) -> None:
        """Boost files that important files depend on (in place).

        Only adds to scores and only follows one hop: a file referenced by
        an entry point is boosted, files referenced by that file are not.
        """
        dependency_map = self.build_dependency_map(scores, root, contents)

        referrers: dict[str, set[str]] = defaultdict(set)
        for source, deps in dependency_map.items():
            for dep in deps:
                referrers[dep].add(source)

        # Snapshot before boosting so the pass is order independent
        important = {
            s.path
            for s in scores
            if s.has_any(ImportanceFactor.ENTRY_POINT, ImportanceFactor.MAIN_MODULE)
        }

        for file_score in scores:
            refs = referrers.get(file_score.path, set())
            if not refs:
                continue

            if refs & important:
                self._boost(
                    file_score, ImportanceFactor.REFERENCED_BY_ENTRY, REFERENCED_BY_ENTRY_BONUS,
                )

            # High reference count indicates an important file
            if len(refs) >= 3:
                self._boost(
                    file_score, ImportanceFactor.HIGHLY_REFERENCED, HIGHLY_REFERENCED_BONUS,
                )

            # Depended on by several files, depends on little itself
            if len(refs) >= 2 and len(dependency_map.get(file_score.path, ())) <= 1:
                self._boost(
                    file_score, ImportanceFactor.DEPENDENCY_ROOT, DEPENDENCY_ROOT_BONUS,
                )

        scores.sort(key=rank_key)

    @staticmethod
    def _boost(score: FileScore, factor: ImportanceFactor, bonus: float) -> None:
        if factor in score.importance_factors:
            return
        score.importance_factors.add(factor)
        # Assignment is validated, which clamps to 1.0
        score.relevance_score = score.relevance_score + bonus

    @staticmethod
    def _content_for(
        rel_path: str,
        root: Path | None,
        contents: Mapping[str, str] | None,
    ) -> str | None:
        if contents is not None and rel_path in contents:
            return contents[rel_path]
        path = root / rel_path if root else Path(rel_path)
        try:
            return _read_text(path)
        except OSError:
            return None

    @staticmethod
    def _resolve(
        rel_path: str,
        content: str,
        index: Mapping[tuple[str, str], list[str]],
        known: set[str],
    ) -> set[str]:
        pure = PurePosixPath(rel_path)
        family = _FAMILIES.get(pure.suffix.lower())
        if family is None:
            return set()

        if family == "js":
            return _resolve_js(pure, _js_specs(content), known)

        if family == "rust":
            names = _rust_names(content)
        elif family == "python":
            names = _python_names(content)
        else:
            names = _jvm_names(content)

        resolved: set[str] = set()
        for name in names:
            candidates = [c for c in index.get((family, name), []) if c != rel_path]
            resolved.update(_closest(pure, candidates))
        return resolved

    # ── Query re-ranking ─────────────────────────────────────────

    def filter_by_query(
        self,
        scores: list[FileScore],
        query: str | None = None,
    ) -> list[FileScore]:
        """Re-rank files by lexical overlap between query and path.

        Nothing is dropped: matching files get a bonus proportional to the
        share of query keywords found in their path. Returns new objects;
        the input list is left untouched. With no query this is the
        identity.
        """
        if query is None:
            return list(scores)

        keywords = [
            w for w in (k.strip(".,;:!?\"'()").lower() for k in query.split()) if w
        ]
        if not keywords:
            return list(scores)

        ranked: list[FileScore] = []
        for s in scores:
            path_lower = s.path.lower()
            matched = sum(1 for k in keywords if k in path_lower)
            if matched:
                factors = {*s.importance_factors, ImportanceFactor.QUERY_MATCH}
                ranked.append(
                    s.model_copy(
                        update={
                            "relevance_score": min(
                                s.relevance_score + QUERY_BONUS * matched / len(keywords),
                                1.0,
                            ),
                            "importance_factors": factors,
                        },
                    )
                )
            else:
                ranked.append(s.model_copy(deep=True))

        ranked.sort(key=rank_key)
        return ranked


def _relative(path: Path, root: Path | None) -> str:
    if root is None:
        return path.as_posix()
    try:
        return path.resolve().relative_to(root.resolve()).as_posix()
    except ValueError:
        raise ValueError(f"{path} is outside the project root {root}") from None


def _closest(referrer: PurePosixPath, candidates: list[str]) -> list[str]:
    """Pick the candidates sharing the longest directory prefix."""
    if len(candidates) <= 1:
        return candidates

    ref_parts = referrer.parent.parts

    def shared(candidate: str) -> int:
        count = 0
        for a, b in zip(ref_parts, PurePosixPath(candidate).parent.parts):
            if a != b:
                break
            count += 1
        return count

    best = max(shared(c) for c in candidates)
    return sorted(c for c in candidates if shared(c) == best)


def _resolve_js(referrer: PurePosixPath, specs: set[str], known: set[str]) -> set[str]:
    resolved: set[str] = set()
    base = referrer.parent.as_posix()
    for spec in specs:
        target = posixpath.normpath(posixpath.join(base, spec)) if base else posixpath.normpath(spec)
        options = [target, *(target + ext for ext in _JS_EXTENSIONS)]
        options += [f"{target}/index{ext}" for ext in _JS_EXTENSIONS]
        for option in options:
            if option in known:
                resolved.add(option)
                break
    return resolved
