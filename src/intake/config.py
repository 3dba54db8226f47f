"""
Configuration for the intake pipeline.

Holds the thresholds and retry policy shared by the stage components.
"""

from ..utils.config import Settings


class PipelineConfig:
    """Thresholds and retry policy for the intake pipeline."""

    def __init__(
        self,
        commit_confidence: float = 70.0,
        duplicate_block: float = 80.0,
        duplicate_disclosure: float = 40.0,
        village_match_threshold: float = 80.0,
        name_similarity_threshold: float = 85.0,
        proximity_meters: float = 100.0,
        discrepancy_penalty: float = 25.0,
        unresolved_confidence_cap: float = 30.0,
        lease_seconds: float = 30.0,
        max_stage_attempts: int = 4,
        retry_backoff_base: float = 0.5,
        retry_backoff_max: float = 8.0,
        review_sla_hours: float = 72.0,
    ):
        """
        Initialize pipeline configuration.

        Args:
            commit_confidence: Minimum job confidence (0-100) for automatic commit
            duplicate_block: Duplicate probability above which review is forced
            duplicate_disclosure: Duplicate score above which candidates are recorded
            village_match_threshold: Minimum fuzzy score (0-100) for a village match
            name_similarity_threshold: Minimum patta-holder similarity (0-100)
            proximity_meters: Centroid distance counted as a proximity signal
            discrepancy_penalty: Confidence lost when coordinates fall outside the village
            unresolved_confidence_cap: Confidence ceiling when no village matched
            lease_seconds: Lease duration granted per stage execution
            max_stage_attempts: Attempt ceiling per stage before the job fails
            retry_backoff_base: First exponential backoff delay in seconds
            retry_backoff_max: Backoff delay cap in seconds
            review_sla_hours: Review-queue age that triggers a notification
        """
        self.commit_confidence = commit_confidence
        self.duplicate_block = duplicate_block
        self.duplicate_disclosure = duplicate_disclosure
        self.village_match_threshold = village_match_threshold
        self.name_similarity_threshold = name_similarity_threshold
        self.proximity_meters = proximity_meters
        self.discrepancy_penalty = discrepancy_penalty
        self.unresolved_confidence_cap = unresolved_confidence_cap
        self.lease_seconds = lease_seconds
        self.max_stage_attempts = max_stage_attempts
        self.retry_backoff_base = retry_backoff_base
        self.retry_backoff_max = retry_backoff_max
        self.review_sla_hours = review_sla_hours

    @classmethod
    def from_settings(cls, settings: Settings) -> "PipelineConfig":
        """Create config from application settings."""
        return cls(
            commit_confidence=settings.commit_confidence,
            duplicate_block=settings.duplicate_block,
            duplicate_disclosure=settings.duplicate_disclosure,
            village_match_threshold=settings.village_match_threshold,
            name_similarity_threshold=settings.name_similarity_threshold,
            proximity_meters=settings.proximity_meters,
            discrepancy_penalty=settings.discrepancy_penalty,
            lease_seconds=settings.lease_seconds,
            max_stage_attempts=settings.max_stage_attempts,
            retry_backoff_base=settings.retry_backoff_base,
            retry_backoff_max=settings.retry_backoff_max,
            review_sla_hours=settings.review_sla_hours,
        )

    def validate(self) -> bool:
        """Check that thresholds are coherent."""
        return (
            0.0 <= self.duplicate_disclosure <= self.duplicate_block <= 100.0
            and 0.0 <= self.commit_confidence <= 100.0
            and self.max_stage_attempts >= 1
            and self.lease_seconds > 0
        )
