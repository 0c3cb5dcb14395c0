"""Tests for context-aware claim support checks."""

from grantguard.schemas.enforcement import ClaimType
from grantguard.services.enforcement.claim_extractor import ClaimExtractor, extract_claims
from grantguard.services.enforcement.evidence_matcher import (
    EvidenceMatcher,
    claim_context_tokens,
    is_claim_supported,
)
from grantguard.services.enforcement.thresholds import DEFAULT_THRESHOLDS


def _claim(text: str, value: str, claim_type: ClaimType):
    start = text.index(value)
    return ClaimExtractor().build_claim(text, claim_type, start, start + len(value))


class TestNumericClaims:

    def test_number_collision_is_not_support(self, make_chunk):
        text = "Last year we convened 500 partner organizations across the state."
        claim = _claim(text, "500 partner organizations", ClaimType.NUMBER)
        chunks = [make_chunk("The foundation awarded a $500,000 grant for capacity building.")]

        assert not is_claim_supported(claim, chunks, source_text=text)

    def test_number_with_matching_context_is_supported(self, make_chunk):
        text = "The program served 1,200 youth in after-school tutoring."
        claim = next(c for c in extract_claims(text) if c.type == ClaimType.NUMBER)
        chunks = [make_chunk(
            "In 2023 the after-school tutoring program served 1,200 youth across three sites."
        )]

        assert is_claim_supported(claim, chunks, source_text=text)

    def test_number_without_context_overlap_is_rejected(self, make_chunk):
        text = "The program served 1,200 youth in after-school tutoring."
        claim = next(c for c in extract_claims(text) if c.type == ClaimType.NUMBER)
        chunks = [make_chunk("Our parking lot holds 1,200 cars on weekends.")]

        assert not is_claim_supported(claim, chunks, source_text=text)

    def test_no_chunks(self):
        text = "We raised $50,000."
        claim = extract_claims(text)[0]

        assert not EvidenceMatcher(DEFAULT_THRESHOLDS).is_supported(claim, [])

    def test_context_tokens_skip_stopwords_and_numbers(self):
        text = "The program served 1,200 youth in after-school tutoring."
        claim = next(c for c in extract_claims(text) if c.type == ClaimType.NUMBER)
        tokens = claim_context_tokens(claim, text)

        assert "the" not in tokens
        assert "200" not in tokens
        assert "tutoring" in tokens


class TestNameClaims:

    def test_person_names_require_exact_case(self, make_chunk):
        text = "Dr. Maria Lopez will lead the evaluation."
        claim = _claim(text, "Dr. Maria Lopez", ClaimType.NAMED_PERSON)

        assert is_claim_supported(claim, [make_chunk("Evaluation lead: Dr. Maria Lopez, PhD.")])
        assert not is_claim_supported(claim, [make_chunk("evaluation lead: dr. maria lopez")])

    def test_person_names_are_not_fuzzy(self, make_chunk):
        text = "Dr. Maria Lopez will lead the evaluation."
        claim = _claim(text, "Dr. Maria Lopez", ClaimType.NAMED_PERSON)

        assert not is_claim_supported(claim, [make_chunk("Dr. Mario Lopez leads our evaluation team.")])

    def test_organization_match_is_case_insensitive(self, make_chunk):
        text = "We partnered with Springfield Food Bank."
        claim = _claim(text, "Springfield Food Bank", ClaimType.NAMED_ORG)

        assert is_claim_supported(claim, [make_chunk("A partnership with the SPRINGFIELD FOOD  BANK since 2019.")])
        assert not is_claim_supported(claim, [make_chunk("Springfield Library hosts our sessions.")])
