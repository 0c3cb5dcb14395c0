"""Text normalization helpers shared by the enforcement services."""

import re
from typing import List

_TAG_RE = re.compile(r"<[^>]*>")
_PARAGRAPH_BREAK_RE = re.compile(r"\n\s*\n+")
_WHITESPACE_RE = re.compile(r"\s+")
_NON_WORD_RE = re.compile(r"[^\w\s]")

STOPWORDS = frozenset(
    """
    a about above after again against all also am an and any are as at be because been
    before being below between both but by can could did do does doing down during each
    few for from further had has have having he her here hers him his how i if in into is
    it its itself just me more most my no nor not now of off on once only or other our ours
    out over own same she should so some such than that the their theirs them then there
    these they this those through to too under until up very was we were what when where
    which while who whom why will with would you your yours
    """.split()
)


def strip_html(html: str, tag_replacement: str = "") -> str:
    """Remove HTML tags from content.

    Args:
        html: Raw section content, possibly containing markup
        tag_replacement: Text to put where each tag was

    Returns:
        Content without tags, trimmed
    """
    if not html:
        return ""
    return _TAG_RE.sub(tag_replacement, html).strip()


def split_paragraphs(text: str) -> List[str]:
    """Split text on blank lines, dropping empty paragraphs."""
    if not text:
        return []
    return [p.strip() for p in _PARAGRAPH_BREAK_RE.split(text) if p.strip()]


def normalize_whitespace(text: str) -> str:
    return _WHITESPACE_RE.sub(" ", text).strip()


def count_words(text: str) -> int:
    return len(text.split()) if text else 0


def count_characters(text: str) -> int:
    return len(text) if text else 0


def word_tokens(text: str, min_length: int = 3) -> List[str]:
    """Lowercase word tokens with punctuation removed.

    Args:
        text: Input text
        min_length: Minimum token length to keep

    Returns:
        Tokens in order of appearance
    """
    cleaned = _NON_WORD_RE.sub(" ", text.lower())
    return [w for w in cleaned.split() if len(w) >= min_length]


def content_tokens(text: str) -> List[str]:
    """Word tokens with stopwords and pure numbers removed."""
    return [
        w for w in word_tokens(text, min_length=3)
        if w not in STOPWORDS and not w.replace("_", "").isdigit()
    ]


_SENTENCE_END_RE = re.compile(r"[.!?](?=\s|$)|\n")


def enclosing_sentence(text: str, start: int, end: int) -> str:
    """Return the sentence around ``text[start:end]``.

    Decimal points are not sentence boundaries.
    """
    left = 0
    right = len(text)
    for match in _SENTENCE_END_RE.finditer(text):
        if match.end() <= start:
            left = match.end()
        elif match.start() >= end:
            right = match.end()
            break
    return text[left:right].strip()
