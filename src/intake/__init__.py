"""
Claim-intake module.

Staged pipeline that turns document-extraction payloads into committed,
spatially validated forest-rights claims, routing uncertain ones to review.

The pipeline facade lives in src.intake.pipeline; this package exports the
schema, error taxonomy and configuration shared by every stage.
"""

from .config import PipelineConfig
from .errors import (
    CommitConflict,
    ExtractionIncomplete,
    GeocodingUnresolved,
    InvalidTransition,
    JobCancelled,
    JobNotFound,
    LeaseLost,
    MalformedGeometry,
    MalformedInput,
    MalformedPayload,
    PipelineError,
    ReviewTimeout,
    TransientLookupFailure,
)
from .schema import (
    # Enums
    JobStage,
    TerminalOutcome,
    ClaimType,
    LayerType,
    ConflictSeverity,
    LocationSource,
    ReviewVerdict,
    DuplicateSignal,
    # Models
    ExtractedField,
    ExtractionPayload,
    HierarchyPath,
    CandidateClaim,
    DuplicateEvidence,
    DuplicateCandidate,
    ConflictRecord,
    ReviewDecision,
    CommittedClaim,
    Job,
)

__all__ = [
    "PipelineConfig",
    # Errors
    "PipelineError",
    "ExtractionIncomplete",
    "GeocodingUnresolved",
    "TransientLookupFailure",
    "MalformedInput",
    "MalformedPayload",
    "MalformedGeometry",
    "CommitConflict",
    "ReviewTimeout",
    "LeaseLost",
    "JobCancelled",
    "JobNotFound",
    "InvalidTransition",
    # Enums
    "JobStage",
    "TerminalOutcome",
    "ClaimType",
    "LayerType",
    "ConflictSeverity",
    "LocationSource",
    "ReviewVerdict",
    "DuplicateSignal",
    # Models
    "ExtractedField",
    "ExtractionPayload",
    "HierarchyPath",
    "CandidateClaim",
    "DuplicateEvidence",
    "DuplicateCandidate",
    "ConflictRecord",
    "ReviewDecision",
    "CommittedClaim",
    "Job",
]
