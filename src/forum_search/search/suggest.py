"""
Spelling Suggestions

"Did you mean" corrections from the forum's own vocabulary.
"""

import difflib
from typing import Iterable


class VocabularySuggester:
    """
    Proposes the closest known word for each unknown search word.

    Args:
        vocabulary: Known words (any case)
        cutoff: Minimum similarity ratio in [0, 1]
    """

    def __init__(self, vocabulary: Iterable[str], cutoff: float = 0.75):
        self.vocabulary = sorted({w.lower() for w in vocabulary if w})
        self._known = set(self.vocabulary)
        self.cutoff = cutoff

    def suggest(self, words: Iterable[str]) -> dict[str, str]:
        """Map each misspelled word to its correction; known words are skipped."""
        corrections = {}
        for word in words:
            lowered = word.lower()
            if " " in lowered or "*" in lowered or lowered in self._known:
                continue
            matches = difflib.get_close_matches(lowered, self.vocabulary, n=1, cutoff=self.cutoff)
            if matches:
                corrections[word] = matches[0]
        return corrections
