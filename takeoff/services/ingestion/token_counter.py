"""Token counting utilities for the chunker.

Plan sheets are dense with dimensions, callouts and abbreviations, so a flat
characters-per-token estimate is used rather than a word-based one.
"""

import math
import re

from takeoff.utils.logging import get_logger

LOGGER = get_logger(__name__)

_SENTENCE_END = re.compile(r"[.!?]\s+")


class TokenCounter:
    """Token estimator used for chunk budgeting.

    The estimate is ``ceil(len(text) / CHARS_PER_TOKEN)`` plus a fixed cost
    per rendered page image when images travel with the chunk.
    """

    CHARS_PER_TOKEN = 4

    def __init__(self, image_token_cost: int = 765):
        """Initialize token counter.

        Args:
            image_token_cost: Tokens charged for each page image
        """
        self.image_token_cost = image_token_cost

    def count_tokens(self, text: str) -> int:
        """Estimate the token count of text.

        Example:
            >>> TokenCounter().count_tokens("A-101 FLOOR PLAN")
            4
        """
        if not text:
            return 0
        return math.ceil(len(text) / self.CHARS_PER_TOKEN)

    def count_page_tokens(self, text: str, has_image: bool = False) -> int:
        tokens = self.count_tokens(text)
        if has_image:
            tokens += self.image_token_cost
        return tokens

    def can_fit_in_limit(self, text: str, limit: int) -> bool:
        return self.count_tokens(text) <= limit

    def tail_text(self, text: str, max_tokens: int) -> str:
        """Return the end of text holding at most max_tokens tokens.

        The cut is moved forward to the nearest line break, or failing that
        the nearest sentence end, so the tail starts on a clean boundary.
        When neither exists inside the window the raw character cut is used.

        Args:
            text: Source text
            max_tokens: Token budget for the tail

        Returns:
            str: Tail of the text, possibly empty
        """
        if max_tokens <= 0 or not text:
            return ""

        max_chars = max_tokens * self.CHARS_PER_TOKEN
        if len(text) <= max_chars:
            return text

        window = text[-max_chars:]

        newline = window.find("\n")
        if 0 <= newline < len(window) - 1:
            return window[newline + 1:]

        sentence = _SENTENCE_END.search(window)
        if sentence and sentence.end() < len(window):
            return window[sentence.end():]

        return window
