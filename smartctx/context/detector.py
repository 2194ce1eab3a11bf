"""Project type detection.

Inspects a directory for ecosystem markers (manifests, lockfiles, source
layouts) and reports entry points and important files. Detectors form a
closed, ordered table: the first detector that matches wins, so a
directory matching two ecosystems is classified by priority order rather
than by confidence.
"""

from __future__ import annotations

import logging
import os
import subprocess
from collections.abc import Callable
from pathlib import Path, PurePosixPath

from smartctx.schemas.config import ContextConfig
from smartctx.schemas.context import ProjectInfo, ProjectType

logger = logging.getLogger(__name__)

# Directories never searched when probing for source files
_PROBE_SKIP_DIRS: set[str] = {
    "node_modules",
    "target",
    "build",
    "dist",
    "__pycache__",
    "venv",
}

_PROBE_MAX_DEPTH = 8

_RECENT_FILES_LIMIT = 10

Detector = Callable[[Path], ProjectInfo | None]


def _existing(root: Path, names: list[str] | tuple[str, ...]) -> list[str]:
    """Return the names that exist under root, in the given order."""
    return [name for name in names if (root / name).exists()]


def _has_suffix_files(directory: Path, suffix: str, recursive: bool = True) -> bool:
    """Check whether a directory holds files with the given suffix."""
    if not directory.is_dir():
        return False

    base_depth = len(directory.parts)
    for dirpath, dirnames, filenames in os.walk(directory):
        if any(name.endswith(suffix) for name in filenames):
            return True
        if not recursive or len(Path(dirpath).parts) - base_depth >= _PROBE_MAX_DEPTH:
            dirnames[:] = []
            continue
        dirnames[:] = [
            d for d in dirnames if not d.startswith(".") and d not in _PROBE_SKIP_DIRS
        ]
    return False


def _info(
    project_type: ProjectType,
    root: Path,
    entry_points: list[str],
    important_files: list[str],
    confidence: float,
) -> ProjectInfo:
    # Entry points double as important files, README last
    important = list(dict.fromkeys([*important_files, *entry_points]))
    if (root / "README.md").exists() and "README.md" not in important:
        important.append("README.md")
    return ProjectInfo(
        project_type=project_type,
        root_path=str(root),
        entry_points=entry_points,
        important_files=important,
        confidence=confidence,
    )


# ── Ecosystem detectors ───────────────────────────────────────────


def detect_rust(root: Path) -> ProjectInfo | None:
    """Cargo crate: ``Cargo.toml`` with ``src/main.rs`` / ``src/lib.rs``."""
    if not (root / "Cargo.toml").exists():
        return None

    entry_points = _existing(root, ("src/main.rs", "src/lib.rs"))
    confidence = 0.9 if entry_points else 0.6
    return _info(ProjectType.RUST, root, entry_points, ["Cargo.toml"], confidence)


def detect_javascript(root: Path) -> ProjectInfo | None:
    """Node/TypeScript package: ``package.json``."""
    if not (root / "package.json").exists():
        return None

    entry_points = _existing(
        root,
        (
            "index.js",
            "index.ts",
            "src/index.js",
            "src/index.ts",
            "src/main.js",
            "src/main.ts",
        ),
    )
    important = ["package.json", *_existing(
        root, ("tsconfig.json", ".eslintrc.json", "webpack.config.js"),
    )]
    confidence = 0.9 if entry_points else 0.6
    return _info(ProjectType.JAVASCRIPT, root, entry_points, important, confidence)


_PYTHON_INDICATORS = (
    "pyproject.toml",
    "setup.py",
    "requirements.txt",
    "Pipfile",
    "poetry.lock",
)


def detect_python(root: Path) -> ProjectInfo | None:
    """Python project: any packaging or requirements file."""
    important = _existing(root, _PYTHON_INDICATORS)
    if not important:
        return None

    entry_points = _existing(root, ("main.py", "__init__.py", "app.py", "src/main.py"))
    confidence = 0.8 if entry_points else 0.6
    return _info(ProjectType.PYTHON, root, entry_points, important, confidence)


_GO_INDICATORS = ("go.mod", "go.sum", "Gopkg.toml", "glide.yaml")


def detect_go(root: Path) -> ProjectInfo | None:
    """Go module, or loose ``.go`` files in the usual directories."""
    important = _existing(root, _GO_INDICATORS)
    if not important:
        has_go_files = any(
            _has_suffix_files(root / d, ".go", recursive=False)
            for d in (".", "cmd", "internal", "pkg")
        )
        if not has_go_files:
            return None

    entry_points = _existing(root, ("main.go", "cmd/main.go"))
    cmd_dir = root / "cmd"
    if cmd_dir.is_dir():
        for sub in sorted(cmd_dir.iterdir()):
            if sub.is_dir() and (sub / "main.go").exists():
                entry_points.append(f"cmd/{sub.name}/main.go")

    confidence = 0.8 if entry_points else 0.6
    return _info(ProjectType.GO, root, entry_points, important, confidence)


_GRADLE_KOTLIN = ("build.gradle.kts", "settings.gradle.kts", "gradle.properties")
_JVM_BUILD_FILES = (
    "build.gradle.kts",
    "build.gradle",
    "settings.gradle.kts",
    "settings.gradle",
    "gradle.properties",
    "pom.xml",
)


def detect_kotlin(root: Path) -> ProjectInfo | None:
    """Gradle or Maven build that actually contains ``.kt`` sources."""
    has_build = (
        bool(_existing(root, _GRADLE_KOTLIN))
        or bool(_existing(root, ("build.gradle", "settings.gradle", "pom.xml")))
    )
    if not has_build or not _has_suffix_files(root, ".kt"):
        return None

    important = _existing(root, _JVM_BUILD_FILES)
    entry_points = _existing(
        root,
        ("src/main/kotlin/Main.kt", "src/main/kotlin/Application.kt", "Main.kt"),
    )
    confidence = 0.9 if entry_points else 0.7
    return _info(ProjectType.KOTLIN, root, entry_points, important, confidence)


def _find_spring_boot_apps(root: Path) -> list[str]:
    """Find ``*Application.java`` files under ``src/main/java``."""
    java_root = root / "src" / "main" / "java"
    if not java_root.is_dir():
        return []
    found = [
        p.relative_to(root).as_posix()
        for p in java_root.rglob("*Application.java")
        if p.is_file()
    ]
    return sorted(found)


def detect_java(root: Path) -> ProjectInfo | None:
    """Gradle, Maven or Ant build, or plain ``.java`` sources."""
    important = _existing(
        root,
        ("pom.xml", "build.gradle", "settings.gradle", "gradle.properties", "build.xml"),
    )
    if not important and not _has_suffix_files(root, ".java"):
        return None

    entry_points = _existing(
        root,
        (
            "src/main/java/Main.java",
            "src/main/java/Application.java",
            "Main.java",
            "App.java",
        ),
    )
    for app in _find_spring_boot_apps(root):
        if app not in entry_points:
            entry_points.append(app)

    confidence = 0.8 if entry_points else 0.6
    return _info(ProjectType.JAVA, root, entry_points, important, confidence)


def _git_lines(root: Path, *args: str) -> list[str]:
    """Run a git command and return its non-empty output lines.

    Any failure (git missing, not a repository) yields an empty list.
    """
    try:
        result = subprocess.run(
            ["git", *args],
            cwd=str(root),
            capture_output=True,
            text=True,
            check=False,
        )
    except (OSError, subprocess.SubprocessError) as e:
        logger.debug("git %s failed in %s: %s", " ".join(args), root, e)
        return []

    if result.returncode != 0:
        return []
    return [line.strip() for line in result.stdout.splitlines() if line.strip()]


def _present(root: Path, files: list[str]) -> list[str]:
    """Deduplicate preserving order and drop files deleted from disk."""
    return [f for f in dict.fromkeys(files) if (root / f).is_file()]


def detect_git(root: Path) -> ProjectInfo | None:
    """Any git repository; staged and modified files become entry points."""
    if not (root / ".git").exists():
        return None

    important = _existing(
        root, (".gitignore", "README.md", "LICENSE", "CHANGELOG.md", ".github/workflows"),
    )

    recent = _present(root, _git_lines(root, "log", "--pretty=format:", "--name-only", "-n", "50"))
    for f in recent[:_RECENT_FILES_LIMIT]:
        if f not in important:
            important.append(f)

    changed = _present(
        root,
        _git_lines(root, "diff", "--name-only", "--cached")
        + _git_lines(root, "diff", "--name-only"),
    )
    entry_points = [f for f in changed if f not in important]

    return _info(ProjectType.GIT, root, entry_points, important, 0.8)


# Fixed priority order: first match wins
DETECTORS: tuple[tuple[ProjectType, Detector], ...] = (
    (ProjectType.RUST, detect_rust),
    (ProjectType.JAVASCRIPT, detect_javascript),
    (ProjectType.PYTHON, detect_python),
    (ProjectType.GO, detect_go),
    (ProjectType.KOTLIN, detect_kotlin),
    (ProjectType.JAVA, detect_java),
    (ProjectType.GIT, detect_git),
)

_TYPE_ALIASES: dict[str, ProjectType] = {
    "rust": ProjectType.RUST,
    "javascript": ProjectType.JAVASCRIPT,
    "js": ProjectType.JAVASCRIPT,
    "typescript": ProjectType.JAVASCRIPT,
    "ts": ProjectType.JAVASCRIPT,
    "python": ProjectType.PYTHON,
    "py": ProjectType.PYTHON,
    "go": ProjectType.GO,
    "golang": ProjectType.GO,
    "kotlin": ProjectType.KOTLIN,
    "kt": ProjectType.KOTLIN,
    "java": ProjectType.JAVA,
    "git": ProjectType.GIT,
}


def parse_project_type(name: str) -> ProjectType:
    """Map a configured project type name; unknown names become GENERIC."""
    return _TYPE_ALIASES.get(name.strip().lower(), ProjectType.GENERIC)


def _is_local_file(root: Path, rel_path: str) -> bool:
    """True for a regular file named by a relative path inside ``root``."""
    pure = PurePosixPath(rel_path.replace("\\", "/"))
    if pure.is_absolute() or ".." in pure.parts:
        logger.warning("Ignoring configured entry point outside the project: %s", rel_path)
        return False
    path = root / pure
    if path.is_symlink() or not path.resolve().is_relative_to(root):
        logger.warning("Ignoring configured entry point outside the project: %s", rel_path)
        return False
    return path.is_file()


def detect_project(
    path: str | Path,
    config: ContextConfig | None = None,
) -> ProjectInfo | None:
    """Classify a project directory.

    Args:
        path: Project root directory.
        config: Optional configuration; ``[project].type`` forces a type
            and ``[project].entry_points`` are merged into the result.

    Returns:
        The first matching ProjectInfo in priority order, or None.

    Raises:
        OSError: If the directory itself cannot be read.
    """
    root = Path(path).resolve()
    with os.scandir(root):
        pass

    project = config.project if config else None
    info: ProjectInfo | None = None

    if project and project.type:
        forced = parse_project_type(project.type)
        detectors = dict(DETECTORS)
        if forced in detectors:
            info = detectors[forced](root)
        if info is None:
            info = _info(forced, root, [], [], 1.0)
    else:
        for project_type, detector in DETECTORS:
            info = detector(root)
            if info is not None:
                logger.debug("Detected %s project at %s", project_type.value, root)
                break

    if project and project.entry_points:
        if info is None:
            info = _info(ProjectType.GENERIC, root, [], [], 0.5)
        extra = [e for e in project.entry_points if _is_local_file(root, e)]
        merged = list(dict.fromkeys([*info.entry_points, *extra]))
        important = list(dict.fromkeys([*info.important_files, *extra]))
        info = info.model_copy(update={"entry_points": merged, "important_files": important})

    return info
