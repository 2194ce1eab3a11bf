"""Tests for file scoring, dependency boosts and query re-ranking."""

from __future__ import annotations

import textwrap

import pytest

from smartctx.context.analyzer import (
    FileAnalyzer,
    determine_file_type,
    is_test_file,
)
from smartctx.schemas.context import FileScore, FileType, ImportanceFactor

# ── Helpers ───────────────────────────────────────────────────────


def _source(head: str, size: int = 200) -> str:
    """Source text of an exact size, padded with a comment line."""
    body = head.rstrip("\n") + "\n"
    return body + "/" * (size - len(body))


def _score_all(analyzer: FileAnalyzer, contents: dict[str, str], entry_points=()):
    return [
        analyzer.score_file(path, len(text), text, entry_points)
        for path, text in contents.items()
    ]


def _by_path(scores: list[FileScore]) -> dict[str, FileScore]:
    return {s.path: s for s in scores}


# ── Classification ────────────────────────────────────────────────


class TestClassification:
    @pytest.mark.parametrize(
        ("path", "expected"),
        [
            ("src/main.rs", FileType.SOURCE_CODE),
            ("web/App.tsx", FileType.SOURCE_CODE),
            ("Cargo.toml", FileType.CONFIGURATION),
            ("package.json", FileType.CONFIGURATION),
            ("Dockerfile", FileType.CONFIGURATION),
            (".eslintrc", FileType.CONFIGURATION),
            ("docs/guide.md", FileType.DOCUMENTATION),
            ("LICENSE", FileType.DOCUMENTATION),
            ("fixtures/users.csv", FileType.DATA),
            ("tests/test_app.py", FileType.TEST),
            ("src/parser_test.go", FileType.TEST),
            ("bin/run", FileType.OTHER),
        ],
    )
    def test_determine_file_type(self, path, expected):
        assert determine_file_type(path) == expected

    @pytest.mark.parametrize(
        ("path", "expected"),
        [
            ("tests/integration.rs", True),
            ("pkg/test/helpers.py", True),
            ("test_utils.py", True),
            ("src/button.spec.ts", True),
            ("src/UserServiceTest.java", True),
            ("src/testing.rs", False),
            ("src/contest.py", False),
        ],
    )
    def test_is_test_file(self, path, expected):
        assert is_test_file(path) is expected


# ── Base scoring ──────────────────────────────────────────────────


class TestScoreFile:
    def test_main_module_entry_point(self):
        score = FileAnalyzer().score_file("src/main.rs", 200, _source("fn main() {}"))
        # 1.0 base + 2.0 priority + 1.5 main + 0.5 small + 1.0 source
        assert score.relevance_score == pytest.approx(0.6)
        assert score.importance_factors >= {
            ImportanceFactor.ENTRY_POINT,
            ImportanceFactor.MAIN_MODULE,
            ImportanceFactor.PRIORITY_MATCH,
            ImportanceFactor.SMALL_SIZE,
        }
        assert score.estimated_tokens == 50

    def test_plain_source(self):
        score = FileAnalyzer().score_file("src/util.rs", 200, _source("pub fn f() {}"))
        assert score.relevance_score == pytest.approx(0.25)
        assert score.importance_factors == {ImportanceFactor.SMALL_SIZE}

    def test_detected_entry_point(self):
        score = FileAnalyzer().score_file(
            "src/bin/tool.rs", 200, _source("fn main() {}"), ["src/bin/tool.rs"],
        )
        assert ImportanceFactor.ENTRY_POINT in score.importance_factors
        assert ImportanceFactor.PRIORITY_MATCH not in score.importance_factors
        assert score.relevance_score == pytest.approx(0.45)

    def test_configured_priority_pattern(self):
        analyzer = FileAnalyzer(priority_patterns=["router"])
        score = analyzer.score_file("src/router.rs", 200, _source("mod x;"))
        assert ImportanceFactor.PRIORITY_MATCH in score.importance_factors
        assert score.relevance_score == pytest.approx(0.45)

    def test_manifest(self):
        score = FileAnalyzer().score_file("Cargo.toml", 30, '[package]\nname = "demo"\n')
        assert score.file_type == FileType.CONFIGURATION
        assert score.relevance_score == pytest.approx(0.43)

    def test_large_file_penalized(self):
        score = FileAnalyzer().score_file("src/big.rs", 150_000, "x" * 100)
        assert score.relevance_score == pytest.approx(0.15)

    def test_test_file_bonus(self):
        score = FileAnalyzer().score_file("tests/it.rs", 200, _source("#[test]"))
        assert score.file_type == FileType.TEST
        assert ImportanceFactor.TEST_FILE in score.importance_factors
        # 1.0 + 0.5 test + 0.5 small + 0.5 test type
        assert score.relevance_score == pytest.approx(0.25)

    def test_scores_stay_in_range(self):
        analyzer = FileAnalyzer(priority_patterns=["main"])
        score = analyzer.score_file("main.py", 10, "print()\n", ["main.py"])
        assert 0.0 <= score.relevance_score <= 1.0


class TestAnalyzeFiles:
    def test_reads_sorts_and_skips_unreadable(self, tmp_path):
        src = tmp_path / "src"
        src.mkdir()
        (src / "main.rs").write_text(_source("fn main() {}"), encoding="utf-8")
        (src / "b.rs").write_text(_source("pub fn b() {}"), encoding="utf-8")
        (src / "a.rs").write_text(_source("pub fn a() {}"), encoding="utf-8")

        scores = FileAnalyzer().analyze_files(
            [src / "b.rs", src / "missing.rs", src / "a.rs", src / "main.rs"],
            tmp_path,
        )
        # Ties are broken by path
        assert [s.path for s in scores] == ["src/main.rs", "src/a.rs", "src/b.rs"]
        assert scores[0].size_bytes == 200

    def test_analyze_file_raises_for_missing(self, tmp_path):
        with pytest.raises(OSError):
            FileAnalyzer().analyze_file(tmp_path / "ghost.rs", tmp_path)


# ── Dependency analysis ───────────────────────────────────────────


class TestAnalyzeDependencies:
    def test_entry_point_reference_boost(self):
        contents = {
            "src/main.rs": _source("fn main() {}"),
            "src/lib.rs": _source("use crate::util::helper;"),
            "src/util.rs": _source("pub fn helper() {}"),
            "src/other.rs": _source("pub fn other() {}"),
        }
        analyzer = FileAnalyzer()
        scores = _score_all(analyzer, contents)
        analyzer.analyze_dependencies(scores, contents=contents)

        by_path = _by_path(scores)
        util = by_path["src/util.rs"]
        assert ImportanceFactor.REFERENCED_BY_ENTRY in util.importance_factors
        assert util.relevance_score == pytest.approx(0.55)
        assert by_path["src/other.rs"].relevance_score == pytest.approx(0.25)
        assert [s.path for s in scores] == [
            "src/main.rs", "src/util.rs", "src/lib.rs", "src/other.rs",
        ]

    def test_one_hop_only(self):
        contents = {
            "src/main.rs": _source("mod a;"),
            "src/a.rs": _source("mod b;"),
            "src/b.rs": _source("pub fn b() {}"),
        }
        analyzer = FileAnalyzer()
        scores = _score_all(analyzer, contents)
        analyzer.analyze_dependencies(scores, contents=contents)

        by_path = _by_path(scores)
        assert ImportanceFactor.REFERENCED_BY_ENTRY in by_path["src/a.rs"].importance_factors
        assert by_path["src/b.rs"].importance_factors == {ImportanceFactor.SMALL_SIZE}

    def test_highly_referenced_dependency_root(self):
        contents = {
            "pkg/a.py": _source("import helper"),
            "pkg/b.py": _source("from helper import run"),
            "pkg/c.py": _source("import helper as h"),
            "pkg/helper.py": _source("def run(): pass"),
        }
        analyzer = FileAnalyzer()
        scores = _score_all(analyzer, contents)
        analyzer.analyze_dependencies(scores, contents=contents)

        helper = _by_path(scores)["pkg/helper.py"]
        assert helper.has_any(ImportanceFactor.HIGHLY_REFERENCED)
        assert helper.has_any(ImportanceFactor.DEPENDENCY_ROOT)
        assert helper.relevance_score == pytest.approx(0.75)
        assert scores[0].path == "pkg/helper.py"

    def test_javascript_relative_imports(self):
        contents = {
            "src/index.js": _source('import { pad } from "./lib/pad";'),
            "src/lib/pad.js": _source("export function pad() {}"),
            "src/lib/unused.js": _source("export const x = 1;"),
        }
        analyzer = FileAnalyzer()
        scores = _score_all(analyzer, contents)
        analyzer.analyze_dependencies(scores, contents=contents)

        by_path = _by_path(scores)
        assert by_path["src/lib/pad.js"].has_any(ImportanceFactor.REFERENCED_BY_ENTRY)
        assert not by_path["src/lib/unused.js"].has_any(ImportanceFactor.REFERENCED_BY_ENTRY)

    def test_java_imports_resolve_class_files(self):
        contents = {
            "src/main/java/app/Main.java": _source("import app.model.User;"),
            "src/main/java/app/model/User.java": _source("public class User {}"),
        }
        analyzer = FileAnalyzer()
        scores = _score_all(analyzer, contents)
        analyzer.analyze_dependencies(scores, contents=contents)

        user = _by_path(scores)["src/main/java/app/model/User.java"]
        assert user.has_any(ImportanceFactor.REFERENCED_BY_ENTRY)

    def test_same_directory_preferred(self):
        contents = {
            "a/main.py": _source("import util"),
            "a/util.py": _source("x = 1"),
            "b/util.py": _source("y = 2"),
        }
        analyzer = FileAnalyzer()
        deps = analyzer.build_dependency_map(_score_all(analyzer, contents), contents=contents)
        assert deps["a/main.py"] == {"a/util.py"}

    def test_order_independent(self):
        contents = {
            "src/main.rs": _source("mod util;\nmod net;"),
            "src/lib.rs": _source("use crate::util;"),
            "src/util.rs": _source("pub fn u() {}"),
            "src/net.rs": _source("use crate::util;"),
        }
        analyzer = FileAnalyzer()

        forward = _score_all(analyzer, contents)
        analyzer.analyze_dependencies(forward, contents=contents)

        backward = list(reversed(_score_all(analyzer, contents)))
        analyzer.analyze_dependencies(backward, contents=contents)

        assert [(s.path, s.relevance_score) for s in forward] == [
            (s.path, s.relevance_score) for s in backward
        ]

    def test_reads_from_disk_when_no_contents(self, tmp_path):
        src = tmp_path / "src"
        src.mkdir()
        (src / "main.rs").write_text(_source("mod util;"), encoding="utf-8")
        (src / "util.rs").write_text(_source("pub fn u() {}"), encoding="utf-8")

        analyzer = FileAnalyzer()
        scores = analyzer.analyze_files(sorted(src.iterdir()), tmp_path)
        analyzer.analyze_dependencies(scores, tmp_path)
        assert _by_path(scores)["src/util.rs"].has_any(ImportanceFactor.REFERENCED_BY_ENTRY)


# ── Query re-ranking ──────────────────────────────────────────────


class TestFilterByQuery:
    def _scores(self):
        contents = {
            "src/main.rs": _source("fn main() {}"),
            "src/util.rs": _source("pub fn helper() {}"),
            "src/net.rs": _source("pub fn net() {}"),
        }
        return _score_all(FileAnalyzer(), contents)

    def test_no_query_is_identity(self):
        scores = self._scores()
        assert FileAnalyzer().filter_by_query(scores, None) == scores

    def test_blank_query_is_identity(self):
        scores = self._scores()
        assert FileAnalyzer().filter_by_query(scores, "   ") == scores

    def test_matching_file_ranked_first(self):
        ranked = FileAnalyzer().filter_by_query(self._scores(), "util")
        assert [s.path for s in ranked] == ["src/util.rs", "src/main.rs", "src/net.rs"]
        assert ranked[0].has_any(ImportanceFactor.QUERY_MATCH)
        assert ranked[0].relevance_score == pytest.approx(0.75)

    def test_never_drops_files(self):
        ranked = FileAnalyzer().filter_by_query(self._scores(), "database migrations")
        assert len(ranked) == 3

    def test_partial_keyword_match(self):
        ranked = FileAnalyzer().filter_by_query(self._scores(), "net timeout")
        net = _by_path(ranked)["src/net.rs"]
        assert net.relevance_score == pytest.approx(0.25 + 0.25)

    def test_input_not_mutated(self):
        scores = self._scores()
        FileAnalyzer().filter_by_query(scores, "util")
        util = _by_path(scores)["src/util.rs"]
        assert util.relevance_score == pytest.approx(0.25)
        assert not util.has_any(ImportanceFactor.QUERY_MATCH)

    def test_case_insensitive(self):
        ranked = FileAnalyzer().filter_by_query(self._scores(), "UTIL")
        assert ranked[0].path == "src/util.rs"


def test_python_package_import_resolves_init():
    contents = {
        "main.py": _source(textwrap.dedent("""\
            from storage import backend
            """)),
        "storage/__init__.py": _source("VERSION = 1"),
        "storage/backend.py": _source("class Backend: pass"),
    }
    analyzer = FileAnalyzer()
    deps = analyzer.build_dependency_map(_score_all(analyzer, contents), contents=contents)
    assert deps["main.py"] == {"storage/__init__.py", "storage/backend.py"}
