"""
Commit coordinator.

Turns a gated job into a CommittedClaim with a single idempotent write
keyed by job id. The claim id is derived from the job id, so replaying a
commit after a lost lease resolves to the same record.
"""

import logging
import uuid
from typing import Optional

from ..intake.errors import MalformedPayload
from ..intake.notifications import OUTCOME_COMMITTED, NotificationEvent, Notifier, send
from ..intake.schema import CommittedClaim, Job
from ..storage.claim_store import ClaimStore

logger = logging.getLogger(__name__)

CLAIM_NAMESPACE = uuid.UUID("6f1c2b7e-4d0a-5b8e-9a3c-2e7f1d6c0b94")


def claim_id_for(job_id: str) -> str:
    """Deterministic claim id for a job."""
    return f"FRC-{uuid.uuid5(CLAIM_NAMESPACE, job_id).hex[:16].upper()}"


class CommitCoordinator:
    """
    Writes committed claims and emits the completion signal.

    Usage:
        coordinator = CommitCoordinator(claim_store, notifier)
        claim = coordinator.commit(job, approved_by="reviewer-7")
    """

    def __init__(self, claims: ClaimStore, notifier: Optional[Notifier] = None):
        self.claims = claims
        self.notifier = notifier

    def build_claim(self, job: Job, approved_by: Optional[str] = None) -> CommittedClaim:
        """Project a job's candidate onto the committed record."""
        candidate = job.candidate
        if candidate is None or not candidate.claim_number or not candidate.region_code:
            raise MalformedPayload(f"job {job.job_id} has no claim number or region to commit")
        return CommittedClaim(
            claim_id=claim_id_for(job.job_id),
            job_id=job.job_id,
            claim_number=candidate.claim_number,
            region_code=candidate.region_code,
            patta_holder=candidate.patta_holder,
            claim_type=candidate.claim_type,
            hierarchy=candidate.hierarchy,
            geometry=candidate.geometry,
            centroid=candidate.centroid,
            area_ha=candidate.area_ha,
            approved_by=approved_by,
            committed_at=self.claims.clock(),
        )

    def commit(self, job: Job, approved_by: Optional[str] = None) -> CommittedClaim:
        """
        Commit a job's claim.

        Returns:
            The stored claim (the existing one if this job already committed)

        Raises:
            CommitConflict: another job holds the same claim number in the region
        """
        claim, created = self.claims.commit(self.build_claim(job, approved_by))
        if created:
            send(self.notifier, NotificationEvent(
                job_id=job.job_id,
                outcome=OUTCOME_COMMITTED,
                claim_id=claim.claim_id,
                detail=f"{claim.claim_number} ({claim.region_code})",
            ))
        else:
            logger.info(f"Job {job.job_id} already committed as {claim.claim_id}")
        return claim

    def withdraw(self, claim_id: str, reason: str) -> bool:
        """Retire a claim written for a job that never reached COMMITTED."""
        withdrawn = self.claims.mark_rejected(claim_id, notes=f"withdrawn: {reason}")
        if withdrawn:
            logger.warning(f"Withdrew claim {claim_id}: {reason}")
        return withdrawn
