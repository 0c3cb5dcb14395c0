"""Generation enforcement package.

Generation-time enforcement (claim replacement and paragraph grounding),
post-hoc attribution and coverage, claim verification, RFP ambiguity and
compliance checks, and the export gate that reads all of them. RFP checklist
mapping lives beside compliance but is not an export gate input.
"""

from grantguard.services.enforcement.thresholds import (
    DEFAULT_THRESHOLDS,
    STRICT_THRESHOLDS,
    EnforcementThresholds,
    get_thresholds,
)
from grantguard.services.enforcement.claim_extractor import ClaimExtractor, LLMClaimEnhancer
from grantguard.services.enforcement.evidence_matcher import EvidenceMatcher, is_claim_supported
from grantguard.services.enforcement.paragraph_grounding import enforce_paragraph_grounding
from grantguard.services.enforcement.generation_enforcer import (
    GenerationEnforcer,
    check_retrieval_sufficiency,
    enforce_claim_verification,
    enforce_generation,
)
from grantguard.services.enforcement.instruction_sanitizer import sanitize_custom_instructions
from grantguard.services.enforcement.citation_mapper import CitationMapper
from grantguard.services.enforcement.coverage_scorer import CoverageScorer, compute_overall_coverage
from grantguard.services.enforcement.claim_verifier import ClaimVerifier
from grantguard.services.enforcement.ambiguity_detector import AmbiguityDetector
from grantguard.services.enforcement.compliance_checker import ComplianceChecker
from grantguard.services.enforcement.checklist_mapper import ChecklistMapper
from grantguard.services.enforcement.placeholder_service import PlaceholderService
from grantguard.services.enforcement.export_gate import ExportGatekeeper, evaluate_export_gate

__all__ = [
    # Thresholds
    "EnforcementThresholds",
    "DEFAULT_THRESHOLDS",
    "STRICT_THRESHOLDS",
    "get_thresholds",
    # Generation time
    "ClaimExtractor",
    "LLMClaimEnhancer",
    "EvidenceMatcher",
    "is_claim_supported",
    "enforce_paragraph_grounding",
    "check_retrieval_sufficiency",
    "enforce_claim_verification",
    "enforce_generation",
    "GenerationEnforcer",
    "sanitize_custom_instructions",
    # Post-hoc
    "CitationMapper",
    "CoverageScorer",
    "compute_overall_coverage",
    "ClaimVerifier",
    "AmbiguityDetector",
    "ComplianceChecker",
    "ChecklistMapper",
    "PlaceholderService",
    # Export
    "ExportGatekeeper",
    "evaluate_export_gate",
]
