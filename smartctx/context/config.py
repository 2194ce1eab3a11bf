"""Project-local configuration loader and pattern matching.

Loads ``.smartctx.toml`` from a project root, matches paths against the
include/exclude/priority glob patterns, and computes the configuration
fingerprint used to validate cached scans.
"""

from __future__ import annotations

import functools
import hashlib
import json
import logging
import re
import tomllib
from collections.abc import Iterable
from pathlib import Path, PurePosixPath

from pydantic import ValidationError

from smartctx.errors import ConfigError
from smartctx.schemas.config import ContextConfig

logger = logging.getLogger(__name__)

CONFIG_FILE_NAME = ".smartctx.toml"

_DEFAULT_TEMPLATE = """\
# smartctx project configuration

[context]
# Token budget for a single selection (approximate, 1 token ~ 4 chars)
max_tokens = 4000

# Glob patterns; an empty include list means "everything"
include = []
exclude = ["target/**", "**/*.log", "**/node_modules/**", ".git/**"]

# File name fragments that mark a file as important
priority_patterns = ["main.rs", "lib.rs", "mod.rs", "index.js", "index.ts", "main.py", "__init__.py"]

# Score test files instead of excluding them
include_tests = false

# Settings below never invalidate cached scans
enable_cache = true
chunk_strategy = "hierarchical"
# Cached scans older than this are removed when the cache opens
cache_max_age_hours = 24

# [project]
# type = "rust"
# entry_points = ["src/main.rs"]
"""


def load_context_config(config_path: Path) -> ContextConfig:
    """Load a context configuration from a TOML file.

    Args:
        config_path: Path to a ``.smartctx.toml`` file.

    Returns:
        The parsed configuration, or the default configuration when the
        file does not exist.

    Raises:
        ConfigError: If the file cannot be read, is not valid TOML, or
            holds values of the wrong type.
    """
    if not config_path.exists():
        return ContextConfig()

    try:
        with open(config_path, "rb") as f:
            raw = tomllib.load(f)
    except (tomllib.TOMLDecodeError, OSError) as e:
        raise ConfigError(f"Failed to parse {config_path}: {e}") from e

    try:
        return ContextConfig.model_validate(raw)
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration in {config_path}: {e}") from e


def discover_config(project_root: Path) -> ContextConfig:
    """Find and load the configuration for a project directory.

    An unparseable file is not fatal: the default configuration is used and
    a warning is logged.
    """
    config_path = Path(project_root) / CONFIG_FILE_NAME
    try:
        return load_context_config(config_path)
    except ConfigError as e:
        logger.warning("%s; falling back to default configuration", e)
        return ContextConfig()


def write_default_config(config_path: Path, overwrite: bool = False) -> Path:
    """Write a commented default configuration file.

    Raises:
        FileExistsError: If the file exists and ``overwrite`` is False.
    """
    if config_path.exists() and not overwrite:
        raise FileExistsError(f"Configuration already exists: {config_path}")
    config_path.write_text(_DEFAULT_TEMPLATE, encoding="utf-8")
    return config_path


@functools.lru_cache(maxsize=512)
def _compile_glob(pattern: str) -> re.Pattern[str]:
    """Translate a glob with ``**`` support into an anchored regex."""
    out: list[str] = []
    i = 0
    while i < len(pattern):
        if pattern.startswith("**/", i):
            out.append("(?:.*/)?")
            i += 3
        elif pattern.startswith("**", i):
            out.append(".*")
            i += 2
        elif pattern[i] == "*":
            out.append("[^/]*")
            i += 1
        elif pattern[i] == "?":
            out.append("[^/]")
            i += 1
        else:
            out.append(re.escape(pattern[i]))
            i += 1
    return re.compile("".join(out) + r"\Z")


def matches_pattern(file_path: str, pattern: str) -> bool:
    """Check a relative path against a glob pattern.

    Patterns without a slash match the file name at any depth; patterns
    with a slash are anchored at the project root. ``**`` crosses
    directory boundaries, ``*`` does not.
    """
    path = file_path.replace("\\", "/").lstrip("/")
    pattern = pattern.replace("\\", "/").lstrip("/")
    if not pattern:
        return False

    if "/" not in pattern:
        return _compile_glob(pattern).match(PurePosixPath(path).name) is not None
    return _compile_glob(pattern).match(path) is not None


def should_include(config: ContextConfig, file_path: str) -> bool:
    """Apply exclude patterns first, then include patterns."""
    settings = config.context
    if any(matches_pattern(file_path, p) for p in settings.exclude):
        return False
    if not settings.include:
        return True
    return any(matches_pattern(file_path, p) for p in settings.include)


def is_explicitly_included(config: ContextConfig, file_path: str) -> bool:
    """Return True if an include pattern names this path."""
    return any(matches_pattern(file_path, p) for p in config.context.include)


def is_priority_file(file_path: str, patterns: Iterable[str]) -> bool:
    """Return True if the file name contains one of ``patterns``."""
    name = PurePosixPath(file_path.replace("\\", "/")).name
    return any(p in name for p in patterns)


def config_fingerprint(config: ContextConfig) -> str:
    """Deterministic hash over the scoring-relevant configuration fields.

    Covers the token budget, include/exclude/priority patterns, test
    inclusion and the project overrides. Other fields are left out so
    changing them keeps cached scans valid.
    """
    settings = config.context
    project = config.project
    payload = {
        "max_tokens": settings.max_tokens,
        "include": settings.include,
        "exclude": settings.exclude,
        "priority_patterns": settings.priority_patterns,
        "include_tests": settings.include_tests,
        "project_type": project.type if project else None,
        "entry_points": project.entry_points if project else [],
    }
    encoded = json.dumps(payload, sort_keys=True).encode("utf-8")
    return hashlib.sha256(encoded).hexdigest()[:16]
