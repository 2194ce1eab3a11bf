"""Tests for token estimation, truncation and summarization."""

from __future__ import annotations

import textwrap

from smartctx.context.tokens import (
    estimate_tokens,
    is_truncated,
    summarize_content,
    truncate_to_tokens,
)


class TestEstimateTokens:
    def test_four_chars_per_token(self):
        assert estimate_tokens("") == 0
        assert estimate_tokens("abc") == 0
        assert estimate_tokens("a" * 200) == 50


class TestTruncateToTokens:
    def test_fitting_text_unchanged(self):
        text = "fn main() {}\n"
        assert truncate_to_tokens(text, 100) == text

    def test_truncated_text_fits_budget(self):
        text = "x" * 1000
        result = truncate_to_tokens(text, 20)
        assert estimate_tokens(result) <= 20
        assert is_truncated(result)
        assert "1000 chars total" in result

    def test_prefers_line_boundary(self):
        text = "\n".join(f"line {i:03d}" for i in range(100))
        result = truncate_to_tokens(text, 30)
        head = result.split("\n...[truncated")[0]
        assert head.endswith(tuple(f"line {i:03d}" for i in range(100)))

    def test_tiny_budget_still_within_limit(self):
        result = truncate_to_tokens("y" * 500, 2)
        assert len(result) <= 8

    def test_untouched_text_not_flagged(self):
        assert not is_truncated("plain content")


class TestSummarizeContent:
    def test_keeps_imports_and_signatures(self):
        source = textwrap.dedent("""\
            import os
            from pathlib import Path


            class Loader:
                def load(self, path):
                    data = Path(path).read_text()
                    return data.strip()
            """)
        summary = summarize_content(source)
        assert "import os" in summary
        assert "from pathlib import Path" in summary
        assert "class Loader:" in summary
        assert "def load(self, path):" in summary
        assert "read_text" not in summary
        assert "[summarized," in summary

    def test_rust_items(self):
        source = "use crate::util;\n\npub fn run() {\n    util::go();\n}\n"
        summary = summarize_content(source)
        assert "use crate::util;" in summary
        assert "pub fn run() {" in summary
        assert "util::go();" not in summary

    def test_nothing_recognized_returns_original(self):
        text = "just some prose\nwithout code\n"
        assert summarize_content(text) == text

    def test_imports_can_be_dropped(self):
        source = "import os\n\ndef main():\n    pass\n"
        summary = summarize_content(source, preserve_imports=False)
        assert "import os" not in summary
        assert "def main():" in summary
