"""
Commit gate decision.

A pure function over an immutable snapshot of the job's confidence,
conflicts and duplicate probability. Returns one of three decision
variants; the stage handler acts on the variant, never on the raw inputs.
"""

from dataclasses import dataclass
from typing import Optional, Sequence, Tuple, Union

from ..intake.config import PipelineConfig
from ..intake.schema import CandidateClaim, ConflictRecord, ConflictSeverity, Job


@dataclass(frozen=True)
class AutoCommit:
    """All gate rules pass."""


@dataclass(frozen=True)
class RequireReview:
    """At least one rule failed; the job must wait for a reviewer."""
    reasons: Tuple[str, ...]


@dataclass(frozen=True)
class ReviewerApproved:
    """A reviewer approved the job; commit without re-checking the rules."""
    reviewer_id: str


GateDecision = Union[AutoCommit, RequireReview, ReviewerApproved]


def review_reasons(
    confidence: float,
    conflicts: Sequence[ConflictRecord],
    duplicate_probability: float,
    config: PipelineConfig,
) -> Tuple[str, ...]:
    """Every gate rule the snapshot fails, in a stable order."""
    reasons = []
    if confidence < config.commit_confidence:
        reasons.append(f"confidence {confidence:.1f} below {config.commit_confidence:.0f}")

    blocking = [c for c in conflicts if c.severity.rank > ConflictSeverity.LOW.rank]
    if blocking:
        worst = max(blocking, key=lambda c: (c.severity.rank, c.overlap_pct))
        reasons.append(
            f"{len(blocking)} conflict(s) above low, worst {worst.severity.value} "
            f"with {worst.layer_type.value} {worst.feature_id} ({worst.overlap_pct:.1f}%)"
        )

    if duplicate_probability > config.duplicate_block:
        reasons.append(f"duplicate probability {duplicate_probability:.1f} above {config.duplicate_block:.0f}")
    return tuple(reasons)


def decide(
    candidate: Optional[CandidateClaim],
    confidence: float,
    conflicts: Sequence[ConflictRecord],
    duplicate_probability: float,
    review_override: Optional[str] = None,
    config: Optional[PipelineConfig] = None,
) -> GateDecision:
    """
    Decide whether a job may commit.

    A candidate without a claim number or region code can never commit,
    even with a reviewer override.
    """
    config = config or PipelineConfig()
    if candidate is None or not candidate.claim_number or not candidate.region_code:
        return RequireReview(("claim number or region code missing",))
    if review_override:
        return ReviewerApproved(review_override)

    reasons = review_reasons(confidence, conflicts, duplicate_probability, config)
    if reasons:
        return RequireReview(reasons)
    return AutoCommit()


def decide_for_job(job: Job, config: Optional[PipelineConfig] = None) -> GateDecision:
    return decide(
        job.candidate,
        job.confidence,
        job.conflicts,
        job.duplicate_probability,
        review_override=job.review_override,
        config=config,
    )
