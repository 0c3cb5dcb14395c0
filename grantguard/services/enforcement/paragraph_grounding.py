"""Paragraph-level grounding of generated text against retrieved chunks."""

from typing import List, Optional, Sequence

from grantguard.schemas.enforcement import (
    EnforcedParagraph,
    ParagraphStatus,
    PlaceholderType,
    RetrievedChunk,
    SupportingChunk,
)
from grantguard.services.enforcement.placeholders import (
    contains_blocking_placeholder,
    create_placeholder,
    make_placeholder_id,
    strip_placeholders,
)
from grantguard.services.enforcement.similarity import FastJaccardScorer, TextSimilarityScorer
from grantguard.services.enforcement.thresholds import DEFAULT_THRESHOLDS, EnforcementThresholds
from grantguard.utils.text import normalize_whitespace, split_paragraphs

PREVIEW_CHARS = 100
SUPPORT_MIN_SIMILARITY = 0.1
SUPPORT_CONTENT_CHARS = 200


def ungrounded_placeholder(paragraph: str, index: int) -> str:
    """MISSING_DATA token that keeps a preview of the removed paragraph."""
    prose = normalize_whitespace(strip_placeholders(paragraph))
    preview = prose[:PREVIEW_CHARS] + ("..." if len(prose) > PREVIEW_CHARS else "")
    description = (
        "No supporting source found for this content. "
        f'Original text preserved for reference - "{preview}"'
    )
    return create_placeholder(
        PlaceholderType.MISSING_DATA,
        description,
        make_placeholder_id("para", index, paragraph),
    )


def _scoreable(text: str) -> bool:
    return any(len(word) > 2 for word in text.split())


def enforce_paragraph_grounding(
    text: str,
    chunks: Sequence[RetrievedChunk],
    scorer: Optional[TextSimilarityScorer] = None,
    thresholds: EnforcementThresholds = DEFAULT_THRESHOLDS,
) -> List[EnforcedParagraph]:
    """Classify each paragraph of ``text`` against the chunk set.

    Paragraphs holding a blocking placeholder, or nothing but verification
    placeholders, pass through unchanged as PLACEHOLDER. Inline verification
    placeholders are ignored when scoring the remaining prose. Ungrounded
    paragraphs are replaced wholesale by a MISSING_DATA placeholder.

    Args:
        text: Generated (optionally claim-enforced) text
        chunks: Retrieved source chunks
        scorer: Similarity strategy, fast Jaccard by default
        thresholds: Grounding thresholds

    Returns:
        One EnforcedParagraph per non-empty paragraph, in order
    """
    scorer = scorer or FastJaccardScorer()
    results: List[EnforcedParagraph] = []

    for index, paragraph in enumerate(split_paragraphs(text)):
        prose = strip_placeholders(paragraph, PlaceholderType.VERIFICATION_NEEDED)
        if contains_blocking_placeholder(paragraph) or not _scoreable(strip_placeholders(prose)):
            results.append(EnforcedParagraph(
                index=index,
                original_text=paragraph,
                enforced_text=paragraph,
                status=ParagraphStatus.PLACEHOLDER,
            ))
            continue

        scored = sorted(
            ((scorer.score(prose, chunk.content), chunk) for chunk in chunks),
            key=lambda pair: pair[0],
            reverse=True,
        )
        best_similarity = scored[0][0] if scored else 0.0
        supporting = [
            SupportingChunk(
                content=chunk.content[:SUPPORT_CONTENT_CHARS],
                similarity=similarity,
                document_id=chunk.document_id,
                filename=chunk.filename,
            )
            for similarity, chunk in scored[:thresholds.max_supporting_chunks]
            if similarity > SUPPORT_MIN_SIMILARITY
        ]

        enforced_text = paragraph
        if best_similarity >= thresholds.grounded_threshold:
            status = ParagraphStatus.GROUNDED
        elif best_similarity >= thresholds.partial_threshold:
            status = ParagraphStatus.PARTIAL
        else:
            status = ParagraphStatus.UNGROUNDED
            enforced_text = ungrounded_placeholder(paragraph, index)

        results.append(EnforcedParagraph(
            index=index,
            original_text=paragraph,
            enforced_text=enforced_text,
            status=status,
            best_similarity=best_similarity,
            supporting_chunks=supporting,
        ))

    return results
