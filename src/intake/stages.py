"""
Stage handlers.

One handler per actionable stage. A handler reads the job snapshot it was
given, calls its component and returns the next stage plus the fields it
owns. Handlers never write to the store; the dispatcher does that under
the job's lease.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional

from pydantic import ValidationError

from ..routing.commit import CommitCoordinator
from ..routing.decision import AutoCommit, RequireReview, ReviewerApproved, decide_for_job
from .config import PipelineConfig
from .conflicts import ConflictDetector
from .dedup import FLAG_POTENTIAL_DUPLICATE, DuplicateDetector
from .errors import CommitConflict, MalformedPayload
from .geocoding import GEOCODING_FLAGS, GeocodingResolver
from .normalize import normalize_payload, validate_payload
from .schema import ExtractionPayload, Job, JobStage

logger = logging.getLogger(__name__)

FLAG_COMMIT_CONFLICT = "commit_conflict"

# Attempt counters are kept per stage name
STAGE_NAMES: Dict[JobStage, str] = {
    JobStage.QUEUED: "extract",
    JobStage.EXTRACTED: "validate",
    JobStage.VALIDATED: "normalize",
    JobStage.NEEDS_REVIEW: "normalize",
    JobStage.NORMALIZED: "geocode",
    JobStage.GEOCODED: "dedup",
    JobStage.DEDUP_CHECKED: "conflict",
    JobStage.CONFLICT_CHECKED: "commit",
}


def stage_groups() -> List[List[JobStage]]:
    """One group per stage name; VALIDATED and NEEDS_REVIEW share normalize."""
    groups: Dict[str, List[JobStage]] = {}
    for stage, name in STAGE_NAMES.items():
        groups.setdefault(name, []).append(stage)
    return list(groups.values())


@dataclass
class StageOutcome:
    """Next stage and the job fields the handler owns."""
    next_stage: JobStage
    updates: Dict[str, Any] = field(default_factory=dict)


def replace_flags(current: Iterable[str], owned: Iterable[str], new: Iterable[str]) -> List[str]:
    """Drop the flags a stage owns, then add its fresh ones."""
    owned = set(owned)
    flags = [f for f in current if f not in owned]
    for flag in new:
        if flag not in flags:
            flags.append(flag)
    return flags


def merge_issues(current: Iterable[str], new: Iterable[str]) -> List[str]:
    issues = list(current)
    for issue in new:
        if issue not in issues:
            issues.append(issue)
    return issues


class StageHandlers:
    """
    Maps each actionable stage to its component.

    Usage:
        handlers = StageHandlers(geocoder, dedup, conflicts, committer, config)
        outcome = handlers.handle(job)
    """

    def __init__(
        self,
        geocoder: GeocodingResolver,
        dedup: DuplicateDetector,
        conflicts: ConflictDetector,
        committer: CommitCoordinator,
        config: Optional[PipelineConfig] = None,
    ):
        self.geocoder = geocoder
        self.dedup = dedup
        self.conflicts = conflicts
        self.committer = committer
        self.config = config or PipelineConfig()
        self._handlers: Dict[JobStage, Callable[[Job], StageOutcome]] = {
            JobStage.QUEUED: self.accept,
            JobStage.EXTRACTED: self.validate,
            JobStage.VALIDATED: self.normalize,
            JobStage.NEEDS_REVIEW: self.normalize,
            JobStage.NORMALIZED: self.geocode,
            JobStage.GEOCODED: self.check_duplicates,
            JobStage.DEDUP_CHECKED: self.check_conflicts,
            JobStage.CONFLICT_CHECKED: self.gate,
        }

    def handle(self, job: Job) -> StageOutcome:
        handler = self._handlers.get(job.stage)
        if handler is None:
            raise ValueError(f"No handler for stage {job.stage.value}")
        return handler(job)

    @staticmethod
    def _payload(job: Job) -> ExtractionPayload:
        if job.payload is None:
            raise MalformedPayload(f"job {job.job_id} has no accepted payload")
        return job.payload

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    def accept(self, job: Job) -> StageOutcome:
        """Parse the ingested payload into its typed form."""
        if not isinstance(job.source_payload, dict):
            raise MalformedPayload("payload must be a JSON object")
        try:
            payload = ExtractionPayload.model_validate(job.source_payload)
        except ValidationError as e:
            raise MalformedPayload(f"payload rejected: {e.error_count()} error(s): {e.errors()[0]['msg']}") from e
        return StageOutcome(JobStage.EXTRACTED, {"payload": payload})

    def validate(self, job: Job) -> StageOutcome:
        """Required-field check and confidence score."""
        report = validate_payload(self._payload(job))
        error = report.as_error()
        if error is not None:
            logger.info(f"Job {job.job_id}: {error.describe()}")
        next_stage = JobStage.VALIDATED if report.is_valid else JobStage.NEEDS_REVIEW
        return StageOutcome(next_stage, {"confidence": report.confidence, "issues": report.issues})

    def normalize(self, job: Job) -> StageOutcome:
        """
        Build the candidate claim.

        Validation is recomputed so a corrected payload revision gets a fresh
        score and issue list.
        """
        payload = self._payload(job)
        report = validate_payload(payload)
        candidate = normalize_payload(payload, report)
        return StageOutcome(JobStage.NORMALIZED, {
            "candidate": candidate,
            "confidence": report.confidence,
            "issues": report.issues,
        })

    def geocode(self, job: Job) -> StageOutcome:
        if job.candidate is None:
            raise MalformedPayload(f"job {job.job_id} reached geocoding without a candidate")
        result = self.geocoder.resolve(job.candidate, self._payload(job))
        return StageOutcome(JobStage.GEOCODED, {
            "candidate": result.candidate,
            "confidence": result.confidence,
            "flags": replace_flags(job.flags, GEOCODING_FLAGS, result.flags),
            "issues": merge_issues(job.issues, result.issues),
        })

    def check_duplicates(self, job: Job) -> StageOutcome:
        report = self.dedup.detect(job.candidate, job.job_id)
        flags = [FLAG_POTENTIAL_DUPLICATE] if report.flagged else []
        return StageOutcome(JobStage.DEDUP_CHECKED, {
            "duplicates": report.candidates,
            "duplicate_probability": report.max_probability,
            "flags": replace_flags(job.flags, {FLAG_POTENTIAL_DUPLICATE}, flags),
        })

    def check_conflicts(self, job: Job) -> StageOutcome:
        conflicts = self.conflicts.detect(job.candidate, job.job_id)
        return StageOutcome(JobStage.CONFLICT_CHECKED, {"conflicts": conflicts})

    def gate(self, job: Job) -> StageOutcome:
        """
        Apply the commit gate, then commit or suspend for review.

        A uniqueness conflict at commit time sends the job back through
        duplicate detection instead of overwriting the existing claim.
        """
        decision = decide_for_job(job, self.config)

        if isinstance(decision, RequireReview):
            logger.info(f"Job {job.job_id} requires review: {'; '.join(decision.reasons)}")
            return StageOutcome(JobStage.REVIEW_PENDING, {
                "issues": merge_issues(job.issues, decision.reasons),
                "review_override": None,
            })

        approved_by = decision.reviewer_id if isinstance(decision, ReviewerApproved) else None
        try:
            claim = self.committer.commit(job, approved_by=approved_by)
        except CommitConflict as e:
            logger.warning(f"Job {job.job_id}: {e.describe()}; re-checking duplicates")
            # Re-entered stages are not retries of this one
            return StageOutcome(JobStage.GEOCODED, {
                "attempts": {},
                "flags": replace_flags(job.flags, {FLAG_COMMIT_CONFLICT}, [FLAG_COMMIT_CONFLICT]),
                "issues": merge_issues(job.issues, [e.describe()]),
                "last_error": e.describe(),
                "review_override": None,
            })

        reason = "auto-commit" if isinstance(decision, AutoCommit) else f"approved by {approved_by}"
        return StageOutcome(JobStage.COMMITTED, {
            "committed_claim_id": claim.claim_id,
            "outcome_reason": reason,
            "review_override": None,
        })
