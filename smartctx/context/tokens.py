"""Token estimation and truncation helpers.

Every budget decision in the engine (analyzer, optimizer, chunker, preview)
goes through ``estimate_tokens`` so rankings and budgets stay comparable.
The estimate is a fast character-count approximation, not a tokenizer-exact
count.
"""

from __future__ import annotations

import re

# Rough estimate: 1 token ≈ 4 characters
CHARS_PER_TOKEN = 4

TRUNCATION_MARKER = "...[truncated, {total} chars total]"

_IMPORT_LINE = re.compile(
    r"^\s*(import\s|from\s+\S+\s+import\s|use\s|mod\s|extern\s+crate\s|package\s"
    r"|#include\s|require\(|const\s+\w+\s*=\s*require\()"
)
_SIGNATURE_LINE = re.compile(
    r"^\s*(pub(\([^)]*\))?\s+)?(async\s+)?"
    r"(def|class|fn|func|struct|enum|trait|impl|interface|type|function"
    r"|export\s+(default\s+)?(function|class|const|interface|type)"
    r"|public|private|protected|internal|fun|object|data\s+class)\b"
)


def estimate_tokens(text: str) -> int:
    """Approximate the token count of ``text`` (len // 4)."""
    return len(text) // CHARS_PER_TOKEN


def truncate_to_tokens(text: str, max_tokens: int) -> str:
    """Cut ``text`` so its estimate fits ``max_tokens``.

    Content that already fits is returned unchanged. Otherwise the text is
    cut, preferably at a line boundary, and an explicit marker naming the
    original length is appended. The marker is counted against the budget.
    """
    if estimate_tokens(text) <= max_tokens:
        return text

    char_limit = max(max_tokens, 0) * CHARS_PER_TOKEN
    marker = "\n" + TRUNCATION_MARKER.format(total=len(text))
    keep = max(char_limit - len(marker), 0)

    head = text[:keep]
    # Try to cut at a clean boundary
    last_newline = head.rfind("\n")
    if last_newline > keep // 2:
        head = head[:last_newline]

    # A budget smaller than the marker keeps only the marker prefix
    return (head + marker)[:char_limit]


def is_truncated(text: str) -> bool:
    """Return True if ``text`` carries a truncation marker."""
    return "...[truncated, " in text


def summarize_content(
    text: str,
    preserve_imports: bool = True,
    preserve_signatures: bool = True,
) -> str:
    """Reduce source text to its import and declaration lines.

    Line-based only: no parsing, so it works the same for every language
    the analyzer knows about. Falls back to the original text when nothing
    matches.
    """
    kept: list[str] = []
    for line in text.splitlines():
        if preserve_imports and _IMPORT_LINE.match(line):
            kept.append(line.rstrip())
        elif preserve_signatures and _SIGNATURE_LINE.match(line):
            kept.append(line.rstrip())

    if not kept:
        return text
    return "\n".join(kept) + f"\n...[summarized, {len(text)} chars total]"
