"""
Error taxonomy for the claim-intake pipeline.

Non-fatal errors are handled inside the stage that raises them; only
malformed input and retry exhaustion end a job as FAILED.
"""

from typing import Optional


class PipelineError(RuntimeError):
    """Base class for pipeline errors."""

    fatal = False

    def describe(self) -> str:
        """Render as '<ErrorType>: <message>' for the job audit trail."""
        return f"{type(self).__name__}: {self}"


class ExtractionIncomplete(PipelineError):
    """A required field is missing or unparseable. Routes to NEEDS_REVIEW."""

    def __init__(self, fields: list[str]):
        self.fields = list(fields)
        super().__init__(f"missing or invalid required fields: {', '.join(self.fields)}")


class GeocodingUnresolved(PipelineError):
    """No village matched. Placeholder geometry is used with low confidence."""


class TransientLookupFailure(PipelineError):
    """Reference-data lookup timed out or was unavailable. Retried with backoff."""


class MalformedInput(PipelineError):
    """Input that can never be processed. Fails the job without retry."""

    fatal = True


class MalformedPayload(MalformedInput):
    """Upstream payload does not have the expected shape."""


class MalformedGeometry(MalformedInput):
    """Coordinates or polygon could not be parsed into a valid geometry."""


class CommitConflict(PipelineError):
    """Another job already committed the same (claim_number, region_code)."""

    def __init__(self, claim_number: str, region_code: str, existing_claim_id: Optional[str] = None):
        self.claim_number = claim_number
        self.region_code = region_code
        self.existing_claim_id = existing_claim_id
        super().__init__(
            f"claim {claim_number} in region {region_code} already committed"
            + (f" as {existing_claim_id}" if existing_claim_id else "")
        )


class ReviewTimeout(PipelineError):
    """A job waited in the review queue longer than the SLA."""

    def __init__(self, job_id: str, waited_hours: float):
        self.job_id = job_id
        self.waited_hours = waited_hours
        super().__init__(f"job {job_id} pending review for {waited_hours:.1f}h")


class LeaseLost(PipelineError):
    """The worker's lease expired or was taken over before it could write."""


class JobCancelled(PipelineError):
    """Cancellation was requested for the job."""


class JobNotFound(PipelineError):
    """No job exists with the given id."""


class InvalidTransition(PipelineError):
    """Operation is not allowed from the job's current stage."""
