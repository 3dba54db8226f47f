"""Commit gating, human review and commit coordination for intake jobs."""

from .commit import CommitCoordinator, claim_id_for
from .decision import (
    AutoCommit,
    GateDecision,
    RequireReview,
    ReviewerApproved,
    decide,
    decide_for_job,
    review_reasons,
)
from .review_gate import ReviewGate

__all__ = [
    "CommitCoordinator",
    "claim_id_for",
    "AutoCommit",
    "GateDecision",
    "RequireReview",
    "ReviewerApproved",
    "decide",
    "decide_for_job",
    "review_reasons",
    "ReviewGate",
]
