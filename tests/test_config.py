"""Tests for the .smartctx.toml loader, pattern matching and fingerprinting."""

from __future__ import annotations

import textwrap
from pathlib import Path

import pytest

from smartctx.context.config import (
    CONFIG_FILE_NAME,
    config_fingerprint,
    discover_config,
    is_priority_file,
    load_context_config,
    matches_pattern,
    should_include,
    write_default_config,
)
from smartctx.errors import ConfigError
from smartctx.schemas.config import ChunkingStrategy, ContextConfig, ContextSettings


def _write_config(root: Path, body: str) -> Path:
    path = root / CONFIG_FILE_NAME
    path.write_text(textwrap.dedent(body), encoding="utf-8")
    return path


# ── Loading ───────────────────────────────────────────────────────


class TestLoadContextConfig:
    def test_missing_file_gives_defaults(self, tmp_path):
        config = load_context_config(tmp_path / CONFIG_FILE_NAME)
        assert config == ContextConfig()

    def test_parses_context_and_project(self, tmp_path):
        path = _write_config(tmp_path, """\
            [context]
            max_tokens = 8000
            include = ["src/**"]
            include_tests = true
            chunk_strategy = "token"

            [project]
            type = "rust"
            entry_points = ["src/bin/tool.rs"]
            """)
        config = load_context_config(path)
        assert config.context.max_tokens == 8000
        assert config.context.include == ["src/**"]
        assert config.context.include_tests is True
        assert config.context.chunk_strategy == ChunkingStrategy.TOKEN
        assert config.project.type == "rust"
        assert config.project.entry_points == ["src/bin/tool.rs"]

    def test_invalid_toml_raises(self, tmp_path):
        path = _write_config(tmp_path, "[context\nmax_tokens = \n")
        with pytest.raises(ConfigError, match="Failed to parse"):
            load_context_config(path)

    def test_wrong_type_raises(self, tmp_path):
        path = _write_config(tmp_path, """\
            [context]
            max_tokens = "lots"
            """)
        with pytest.raises(ConfigError, match="Invalid configuration"):
            load_context_config(path)

    def test_discover_falls_back_on_bad_file(self, tmp_path):
        _write_config(tmp_path, "not = [valid")
        assert discover_config(tmp_path) == ContextConfig()


class TestWriteDefaultConfig:
    def test_template_loads_as_defaults(self, tmp_path):
        path = write_default_config(tmp_path / CONFIG_FILE_NAME)
        assert load_context_config(path) == ContextConfig()

    def test_refuses_to_overwrite(self, tmp_path):
        path = write_default_config(tmp_path / CONFIG_FILE_NAME)
        with pytest.raises(FileExistsError):
            write_default_config(path)

    def test_overwrite_flag(self, tmp_path):
        path = _write_config(tmp_path, "[context]\nmax_tokens = 10\n")
        write_default_config(path, overwrite=True)
        assert load_context_config(path).context.max_tokens == 4000


# ── Pattern matching ──────────────────────────────────────────────


class TestMatchesPattern:
    @pytest.mark.parametrize(
        ("path", "pattern", "expected"),
        [
            ("target/debug/build.rs", "target/**", True),
            ("src/target.rs", "target/**", False),
            ("app.log", "**/*.log", True),
            ("logs/deep/app.log", "**/*.log", True),
            ("web/node_modules/pkg/index.js", "**/node_modules/**", True),
            ("src/main.rs", "*.rs", True),
            ("src/nested/mod.rs", "src/*.rs", False),
            ("src/lib.rs", "src/*.rs", True),
            ("src/a.rs", "src/?.rs", True),
        ],
    )
    def test_glob_semantics(self, path, pattern, expected):
        assert matches_pattern(path, pattern) is expected

    def test_exclude_wins_over_include(self):
        config = ContextConfig(
            context=ContextSettings(include=["src/**"], exclude=["src/gen/**"]),
        )
        assert should_include(config, "src/main.rs")
        assert not should_include(config, "src/gen/out.rs")
        assert not should_include(config, "docs/intro.md")

    def test_empty_include_means_everything(self):
        config = ContextConfig(context=ContextSettings(exclude=[]))
        assert should_include(config, "anything/at/all.txt")

    def test_priority_file_by_name_fragment(self):
        patterns = ContextConfig().context.priority_patterns
        assert is_priority_file("crates/core/src/lib.rs", patterns)
        assert not is_priority_file("src/util.rs", patterns)
        assert is_priority_file("src\\server_main.rs", ["main.rs"])


# ── Fingerprint ───────────────────────────────────────────────────


class TestConfigFingerprint:
    def test_stable(self):
        assert config_fingerprint(ContextConfig()) == config_fingerprint(ContextConfig())

    def test_scoring_fields_change_fingerprint(self):
        base = config_fingerprint(ContextConfig())
        assert config_fingerprint(
            ContextConfig(context=ContextSettings(max_tokens=9000))
        ) != base
        assert config_fingerprint(
            ContextConfig(context=ContextSettings(include_tests=True))
        ) != base

    def test_delivery_fields_do_not_change_fingerprint(self):
        base = config_fingerprint(ContextConfig())
        changed = ContextConfig(
            context=ContextSettings(
                chunk_strategy=ChunkingStrategy.MODULE,
                enable_cache=False,
                chunk_max_tokens=500,
                cache_path="/tmp/elsewhere.db",
            ),
        )
        assert config_fingerprint(changed) == base
