"""Tunable thresholds for every enforcement stage.

Services receive an ``EnforcementThresholds`` instance instead of reading
module constants, so a test or deployment can swap presets without touching
code. Two presets are kept: ``default`` (the looser grounding values now in
use) and ``strict`` (the original, tighter values).
"""

from dataclasses import dataclass, replace
from typing import Dict, Optional

from grantguard.core.exceptions import ConfigurationError
from grantguard.utils.logging import get_logger

LOGGER = get_logger(__name__)


@dataclass(frozen=True)
class EnforcementThresholds:
    """Threshold values used across the enforcement pipeline."""

    # Generation-time retrieval gate
    min_chunk_similarity: float = 0.40
    min_chunks_for_generation: int = 1

    # Generation-time paragraph grounding (fast Jaccard)
    grounded_threshold: float = 0.55
    partial_threshold: float = 0.50

    # Post-hoc attribution (Jaccard + phrase overlap)
    grounded_similarity: float = 0.70
    partial_similarity: float = 0.50
    min_paragraphs_for_coverage: int = 1
    max_supporting_chunks: int = 3

    # Claim verification
    claim_verify_threshold: float = 0.70
    context_window: int = 100
    context_overlap_ratio: float = 0.25
    source_stale_months: int = 24

    # Coverage gates (percent)
    coverage_block: int = 30
    coverage_warn: int = 50
    coverage_section_warn: int = 40

    # Compliance
    word_limit_block_percent: int = 10
    word_limit_warn_percent: int = 0
    min_section_content_length: int = 50

    # Export warnings
    max_verification_placeholders: int = 3

    def with_overrides(self, **overrides) -> "EnforcementThresholds":
        """Return a copy with the given fields replaced."""
        return replace(self, **overrides)

    @classmethod
    def from_settings(cls, enforcement_settings=None) -> "EnforcementThresholds":
        """Build thresholds from the configured preset and env overrides.

        Args:
            enforcement_settings: Optional ``EnforcementSettings``; the
                application settings are used when omitted

        Returns:
            EnforcementThresholds for the running configuration
        """
        if enforcement_settings is None:
            from grantguard.core.config import settings
            enforcement_settings = settings.enforcement

        base = get_thresholds(enforcement_settings.preset)
        overrides = enforcement_settings.overrides()
        if overrides:
            LOGGER.info(
                "Applying enforcement threshold overrides",
                extra={"preset": enforcement_settings.preset, "overrides": overrides}
            )
            return base.with_overrides(**overrides)
        return base


DEFAULT_THRESHOLDS = EnforcementThresholds()

STRICT_THRESHOLDS = EnforcementThresholds(
    min_chunk_similarity=0.65,
    grounded_threshold=0.70,
)

PRESETS: Dict[str, EnforcementThresholds] = {
    "default": DEFAULT_THRESHOLDS,
    "strict": STRICT_THRESHOLDS,
}


def get_thresholds(preset: Optional[str] = None) -> EnforcementThresholds:
    """Look up a named threshold preset.

    Raises:
        ConfigurationError: If the preset name is unknown
    """
    name = (preset or "default").lower()
    if name not in PRESETS:
        raise ConfigurationError(
            f"Unknown enforcement preset '{preset}'. Expected one of: {', '.join(PRESETS)}"
        )
    return PRESETS[name]
