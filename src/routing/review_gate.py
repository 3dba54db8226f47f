"""
Review gate.

Jobs that fail the commit gate wait in REVIEW_PENDING until a reviewer
decides. Waiting is a persisted state, not a blocking call: submit()
resumes the state machine from the decision.
"""

import logging
from datetime import datetime
from typing import List, Optional

from ..intake.config import PipelineConfig
from ..intake.errors import InvalidTransition, MalformedPayload, ReviewTimeout
from ..intake.notifications import (
    OUTCOME_REJECTED,
    OUTCOME_REVIEW_TIMEOUT,
    NotificationEvent,
    Notifier,
    send,
)
from ..intake.schema import Job, JobStage, ReviewDecision, ReviewVerdict, TerminalOutcome
from ..storage.job_store import JobStore

logger = logging.getLogger(__name__)


class ReviewGate:
    """
    Review queue and reviewer decisions.

    Usage:
        gate = ReviewGate(job_store, notifier, config)
        for job in gate.queue():
            ...
        gate.submit(job.job_id, ReviewDecision(reviewer_id="r1", verdict="approve"))
    """

    def __init__(self, jobs: JobStore, notifier: Optional[Notifier] = None, config: Optional[PipelineConfig] = None):
        self.jobs = jobs
        self.notifier = notifier
        self.config = config or PipelineConfig()

    def queue(self, limit: int = 100) -> List[Job]:
        """Pending jobs by ascending confidence, severity, then age."""
        return self.jobs.review_queue(limit=limit)

    def submit(self, job_id: str, decision: ReviewDecision) -> Job:
        """
        Apply a reviewer's decision to a pending job.

        - approve: back to CONFLICT_CHECKED with a one-shot override, then commit
        - request_info: corrections become a new payload revision; full re-run from VALIDATED
        - reject: terminal REJECTED with the reviewer's reason

        Raises:
            JobNotFound: no such job
            InvalidTransition: the job is not pending review
            MalformedPayload: corrections name fields the payload does not have
        """
        job = self.jobs.require(job_id)
        if job.stage != JobStage.REVIEW_PENDING:
            raise InvalidTransition(f"job {job_id} is at {job.stage.value}, not pending review")

        if decision.verdict == ReviewVerdict.APPROVE:
            # A new review cycle starts with fresh attempt counters
            updated = self.jobs.transition_unleased(
                job_id,
                JobStage.REVIEW_PENDING,
                JobStage.CONFLICT_CHECKED,
                review_override=decision.reviewer_id,
                attempts={},
            )
        elif decision.verdict == ReviewVerdict.REQUEST_INFO:
            updated = self._request_info(job, decision)
        else:
            reason = decision.reason or "rejected by reviewer"
            updated = self.jobs.transition_unleased(
                job_id,
                JobStage.REVIEW_PENDING,
                JobStage.REJECTED,
                outcome=TerminalOutcome.REJECTED,
                outcome_reason=reason,
            )
            send(self.notifier, NotificationEvent(job_id=job_id, outcome=OUTCOME_REJECTED, detail=reason))

        self.jobs.log_review(
            job,
            reviewer_id=decision.reviewer_id,
            verdict=decision.verdict.value,
            decided_at=decision.decided_at,
            reason=decision.reason,
            corrected_fields=decision.corrected_fields or None,
        )
        logger.info(f"Review of job {job_id} by {decision.reviewer_id}: {decision.verdict.value}")
        return updated

    def _request_info(self, job: Job, decision: ReviewDecision) -> Job:
        if job.payload is None:
            raise InvalidTransition(f"job {job.job_id} has no payload to correct")
        try:
            payload = job.payload.with_corrections(decision.corrected_fields, decision.reviewer_id)
        except ValueError as e:
            raise MalformedPayload(str(e)) from e

        # Corrections never skip checks: every stage after validation re-runs
        return self.jobs.transition_unleased(
            job.job_id,
            JobStage.REVIEW_PENDING,
            JobStage.VALIDATED,
            payload=payload,
            attempts={},
            flags=[],
            duplicates=[],
            duplicate_probability=0.0,
            conflicts=[],
            review_override=None,
            last_error=None,
        )

    def check_sla(self, now: Optional[datetime] = None) -> List[ReviewTimeout]:
        """
        Report jobs waiting longer than the review SLA.

        Each review cycle is reported at most once; the job stays pending.
        """
        now = now or self.jobs.clock()
        breaches = []
        for job in self.jobs.review_queue(limit=10_000):
            if job.sla_notified or job.review_entered_at is None:
                continue
            waited_hours = (now - job.review_entered_at).total_seconds() / 3600.0
            if waited_hours < self.config.review_sla_hours:
                continue
            if not self.jobs.mark_sla_notified(job.job_id):
                continue
            timeout = ReviewTimeout(job.job_id, waited_hours)
            logger.warning(timeout.describe())
            send(self.notifier, NotificationEvent(
                job_id=job.job_id,
                outcome=OUTCOME_REVIEW_TIMEOUT,
                detail=timeout.describe(),
            ))
            breaches.append(timeout)
        return breaches
