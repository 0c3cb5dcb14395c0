"""Lexical similarity strategies for paragraph grounding.

Two scorers answer the same "is this paragraph supported by that chunk"
question with different precision:

- ``FastJaccardScorer`` is used inline at generation time, where a missed
  redaction is worse than an extra one.
- ``JaccardPhraseScorer`` feeds the persisted coverage numbers users see,
  and rewards shared three-word phrases on top of shared vocabulary.

Their thresholds are tuned separately and must not be merged.
"""

import re
from typing import Protocol, Set, runtime_checkable

from grantguard.utils.text import word_tokens

_NON_WORD_RE = re.compile(r"[^\w\s]")


@runtime_checkable
class TextSimilarityScorer(Protocol):
    """Scores how much of ``text`` is supported by ``source`` in [0, 1]."""

    name: str

    def score(self, text: str, source: str) -> float:
        ...


def jaccard(a: Set[str], b: Set[str]) -> float:
    if not a or not b:
        return 0.0
    return len(a & b) / len(a | b)


class FastJaccardScorer:
    """Whitespace-token Jaccard index over words longer than 2 characters."""

    name = "fast_jaccard"

    @staticmethod
    def tokens(text: str) -> Set[str]:
        return {w for w in text.lower().split() if len(w) > 2}

    def score(self, text: str, source: str) -> float:
        return jaccard(self.tokens(text), self.tokens(source))


class JaccardPhraseScorer:
    """Weighted blend of word Jaccard and 3-word phrase overlap.

    Attributes:
        word_weight: Weight of the vocabulary Jaccard term
        phrase_weight: Weight of the phrase overlap term
        phrase_length: Words per phrase
    """

    name = "jaccard_phrase"

    def __init__(self, word_weight: float = 0.7, phrase_weight: float = 0.3, phrase_length: int = 3):
        self.word_weight = word_weight
        self.phrase_weight = phrase_weight
        self.phrase_length = phrase_length

    @staticmethod
    def tokens(text: str) -> list:
        return word_tokens(text, min_length=3)

    def phrases(self, text: str) -> Set[str]:
        words = _NON_WORD_RE.sub(" ", text.lower()).split()
        n = self.phrase_length
        return {" ".join(words[i:i + n]) for i in range(len(words) - n + 1)}

    def phrase_overlap(self, text: str, source: str) -> float:
        """Share of the text's phrases that also occur in the source."""
        text_phrases = self.phrases(text)
        if not text_phrases:
            return 0.0
        source_phrases = self.phrases(source)
        return len(text_phrases & source_phrases) / len(text_phrases)

    def score(self, text: str, source: str) -> float:
        word_score = jaccard(set(self.tokens(text)), set(self.tokens(source)))
        phrase_score = self.phrase_overlap(text, source)
        return min(1.0, word_score * self.word_weight + phrase_score * self.phrase_weight)
