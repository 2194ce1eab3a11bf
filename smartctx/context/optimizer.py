"""Token-budget-constrained file selection.

Pure over ``FileScore.estimated_tokens``: selection never touches the
filesystem, so the same scores and budget always give the same result.
Content is only cut down later, in :meth:`TokenOptimizer.materialize`.
"""

from __future__ import annotations

import logging

from smartctx.context.analyzer import rank_key
from smartctx.context.tokens import summarize_content, truncate_to_tokens
from smartctx.schemas.config import OptimizationConfig, OptimizationStrategy
from smartctx.schemas.context import FileContent, FileScore, FileSelection

logger = logging.getLogger(__name__)

# Smallest allowance worth spending on a truncated file
MIN_TRUNCATION_TOKENS = 16


class TokenOptimizer:
    """Selects the most relevant files that fit a token budget.

    Files are taken in descending relevance order while the running total
    stays within ``max_tokens``. The first file that does not fit is handled
    by the configured strategy:

    - ``truncate``: included with the remaining budget as its limit (if at
      least ``MIN_TRUNCATION_TOKENS`` remain), then selection stops.
    - ``summarize``: included as imports and signatures only, limited to
      the remaining budget, then selection stops.
    - ``skip``: dropped, and smaller files further down are still tried.
    """

    def __init__(self, config: OptimizationConfig | None = None) -> None:
        self._config = config or OptimizationConfig()

    @property
    def config(self) -> OptimizationConfig:
        return self._config

    def get_token_budget(self) -> int:
        return self._config.max_tokens

    def calculate_remaining_tokens(self, used_tokens: int) -> int:
        return max(self._config.max_tokens - used_tokens, 0)

    @staticmethod
    def total_tokens(selections: list[FileSelection]) -> int:
        """Tokens the selections charge against the budget."""
        return sum(s.budget_tokens for s in selections)

    def optimize_files(self, scores: list[FileScore]) -> list[FileSelection]:
        """Pick files in relevance order until the budget is spent."""
        selections: list[FileSelection] = []
        used = 0
        strategy = self._config.strategy

        for score in sorted(scores, key=rank_key):
            if used + score.estimated_tokens <= self._config.max_tokens:
                selections.append(FileSelection(score=score))
                used += score.estimated_tokens
                continue

            remaining = self.calculate_remaining_tokens(used)

            if strategy == OptimizationStrategy.SKIP:
                logger.debug("Skipping %s (%d tokens)", score.path, score.estimated_tokens)
                continue

            if strategy == OptimizationStrategy.SUMMARIZE:
                if remaining > 0:
                    selections.append(
                        FileSelection(score=score, token_limit=remaining, summarized=True)
                    )
                    used += remaining
                break

            if remaining >= MIN_TRUNCATION_TOKENS:
                logger.debug(
                    "Truncating %s from %d to %d tokens",
                    score.path,
                    score.estimated_tokens,
                    remaining,
                )
                selections.append(FileSelection(score=score, token_limit=remaining))
                used += remaining
            break

        logger.info(
            "Selected %d of %d files (%d/%d tokens)",
            len(selections),
            len(scores),
            used,
            self._config.max_tokens,
        )
        return selections

    def materialize(self, selection: FileSelection, content: str) -> FileContent:
        """Apply the selection's summary or truncation to file content."""
        text = content
        if selection.summarized:
            text = summarize_content(
                text,
                preserve_imports=self._config.preserve_imports,
                preserve_signatures=self._config.preserve_signatures,
            )
        # Content that grew since it was scored is cut back to its charge
        text = truncate_to_tokens(text, selection.budget_tokens)

        return FileContent(
            path=selection.score.path,
            content=text,
            truncated=text != content,
            original_chars=len(content),
        )
