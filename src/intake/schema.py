"""
Canonical schema for forest-rights claim intake.

Defines the Pydantic models that flow through the pipeline: the upstream
extraction payload (with per-field provenance confidence), the working
candidate claim, duplicate and conflict findings, reviewer decisions, the
committed claim record and the job itself.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


# ============================================================================
# Enums
# ============================================================================


class JobStage(str, Enum):
    """Pipeline state of an intake job."""
    QUEUED = "queued"
    EXTRACTED = "extracted"
    VALIDATED = "validated"
    NEEDS_REVIEW = "needs_review"
    NORMALIZED = "normalized"
    GEOCODED = "geocoded"
    DEDUP_CHECKED = "dedup_checked"
    CONFLICT_CHECKED = "conflict_checked"
    REVIEW_PENDING = "review_pending"
    COMMITTED = "committed"
    REJECTED = "rejected"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STAGES


TERMINAL_STAGES = frozenset({JobStage.COMMITTED, JobStage.REJECTED, JobStage.FAILED})


class TerminalOutcome(str, Enum):
    """How a job ended."""
    COMMITTED = "committed"
    REJECTED = "rejected"
    FAILED = "failed"


class ClaimType(str, Enum):
    """Forest-rights claim category."""
    INDIVIDUAL = "IFR"           # Individual forest rights
    COMMUNITY_FOREST = "CFR"     # Community forest resource rights
    COMMUNITY_RIGHTS = "CR"      # Community rights
    UNKNOWN = "unknown"


class LayerType(str, Enum):
    """Spatial reference layers checked for conflicts."""
    PROTECTED = "protected"
    FOREST = "forest"
    REVENUE = "revenue"
    CLAIM = "claim"


class ConflictSeverity(str, Enum):
    """Impact tier of a geometric overlap."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @property
    def rank(self) -> int:
        return {"low": 1, "medium": 2, "high": 3}[self.value]


class LocationSource(str, Enum):
    """Where the candidate geometry came from."""
    EXTRACTED_POINT = "extracted_point"
    EXTRACTED_POLYGON = "extracted_polygon"
    VILLAGE_CENTROID = "village_centroid"
    NONE = "none"


class ReviewVerdict(str, Enum):
    """Reviewer decision on a pending job."""
    APPROVE = "approve"
    REJECT = "reject"
    REQUEST_INFO = "request_info"


class DuplicateSignal(str, Enum):
    """Evidence kinds used by the duplicate detector."""
    CLAIM_NUMBER = "claim_number"
    NAME_VILLAGE = "name_village"
    PROXIMITY = "proximity"


# ============================================================================
# Upstream Extraction Payload
# ============================================================================


class ExtractedField(BaseModel):
    """
    A single extracted value with provenance.

    Confidence is the upstream extractor's own estimate for this field.
    """
    model_config = ConfigDict(frozen=True)

    value: Any = Field(None, description="Raw extracted value (string, number or coordinate list)")
    confidence: float = Field(1.0, ge=0.0, le=1.0, description="Extraction confidence between 0 and 1")
    source: Optional[str] = Field(None, description="Pointer into the source document, e.g. 'page:1/line:4'")

    @property
    def is_blank(self) -> bool:
        if self.value is None:
            return True
        if isinstance(self.value, str):
            return not self.value.strip()
        if isinstance(self.value, (list, tuple, dict)):
            return len(self.value) == 0
        return False


PAYLOAD_FIELDS = (
    "claim_number",
    "patta_holder",
    "village",
    "block",
    "district",
    "state",
    "land_extent",
    "coordinates",
    "claim_type",
    "claim_status",
    "submission_date",
    "decision_date",
)


class ExtractionPayload(BaseModel):
    """
    Structured entity set produced by the upstream extraction service.

    Immutable once ingested. Reviewer corrections produce a new revision via
    with_corrections(); the original is never overwritten.
    """
    model_config = ConfigDict(frozen=True, extra="ignore")

    payload_version: str = Field("1.0", description="Upstream payload format version")
    document_type: str = Field("unknown", description="Document-type tag from the extractor")

    claim_number: Optional[ExtractedField] = None
    patta_holder: Optional[ExtractedField] = None
    village: Optional[ExtractedField] = None
    block: Optional[ExtractedField] = None
    district: Optional[ExtractedField] = None
    state: Optional[ExtractedField] = None
    land_extent: Optional[ExtractedField] = None
    coordinates: Optional[ExtractedField] = None
    claim_type: Optional[ExtractedField] = None
    claim_status: Optional[ExtractedField] = None
    submission_date: Optional[ExtractedField] = None
    decision_date: Optional[ExtractedField] = None

    @field_validator(*PAYLOAD_FIELDS, mode="before")
    @classmethod
    def wrap_bare_values(cls, v: Any) -> Any:
        """Accept a bare value as a field at full confidence."""
        if v is None or isinstance(v, ExtractedField):
            return v
        if isinstance(v, dict) and {"value", "confidence", "source"} & set(v):
            return v
        return {"value": v}

    def field(self, name: str) -> Optional[ExtractedField]:
        """Return an extracted field, treating blank values as absent."""
        value = getattr(self, name, None)
        if value is None or value.is_blank:
            return None
        return value

    def with_corrections(self, corrections: Dict[str, Any], reviewer_id: str) -> "ExtractionPayload":
        """Return a new revision with reviewer-supplied values at full confidence."""
        unknown = sorted(set(corrections) - set(PAYLOAD_FIELDS))
        if unknown:
            raise ValueError(f"Unknown payload fields: {', '.join(unknown)}")
        update = {
            name: ExtractedField(value=value, confidence=1.0, source=f"review:{reviewer_id}")
            for name, value in corrections.items()
        }
        return self.model_copy(update=update)


# ============================================================================
# Working Projection
# ============================================================================


class HierarchyPath(BaseModel):
    """Resolved administrative hierarchy (state → district → block → village)."""
    state: Optional[str] = None
    district: Optional[str] = None
    block: Optional[str] = None
    village: Optional[str] = None
    state_code: Optional[str] = None
    village_code: Optional[str] = None


class CandidateClaim(BaseModel):
    """
    Normalized projection of a job's payload.

    Normalization owns the identity and document fields, geocoding owns the
    hierarchy and geometry fields. Each stage replaces only its own fields.
    """

    # Normalization-owned
    claim_number: Optional[str] = None
    region_code: Optional[str] = None
    patta_holder: Optional[str] = None
    claim_type: ClaimType = ClaimType.UNKNOWN
    claim_status: Optional[str] = None
    submission_date: Optional[str] = Field(None, description="ISO date YYYY-MM-DD")
    decision_date: Optional[str] = Field(None, description="ISO date YYYY-MM-DD")
    declared_area_ha: Optional[float] = Field(None, ge=0)
    extracted_geometry: Optional[Dict[str, Any]] = Field(None, description="GeoJSON from extracted coordinates")
    validation_confidence: float = Field(0.0, ge=0.0, le=100.0)

    # Geocoding-owned
    hierarchy: Optional[HierarchyPath] = None
    geometry: Optional[Dict[str, Any]] = Field(None, description="Resolved GeoJSON geometry")
    centroid: Optional[Tuple[float, float]] = Field(None, description="(lon, lat)")
    area_ha: Optional[float] = Field(None, ge=0)
    location_source: LocationSource = LocationSource.NONE
    geocoding_confidence: float = Field(0.0, ge=0.0, le=100.0)


class DuplicateEvidence(BaseModel):
    """One signal contributing to a duplicate score."""
    signal: DuplicateSignal
    strength: float = Field(ge=0.0, le=1.0)
    detail: str = ""


class DuplicateCandidate(BaseModel):
    """A committed claim that may describe the same real-world claim."""
    claim_id: str
    claim_number: str
    probability: float = Field(ge=0.0, le=100.0)
    evidence: List[DuplicateEvidence] = Field(default_factory=list)


class ConflictRecord(BaseModel):
    """Geometric overlap between the job and a reference feature or claim."""
    layer_type: LayerType
    feature_id: str
    overlap_area_ha: float = Field(ge=0.0)
    overlap_pct: float = Field(ge=0.0, le=100.0)
    severity: ConflictSeverity


# ============================================================================
# Review & Commit
# ============================================================================


class ReviewDecision(BaseModel):
    """A reviewer's verdict on a job in REVIEW_PENDING."""
    reviewer_id: str
    verdict: ReviewVerdict
    corrected_fields: Dict[str, Any] = Field(default_factory=dict)
    reason: Optional[str] = None
    decided_at: datetime = Field(default_factory=utcnow)

    @field_validator("reviewer_id")
    @classmethod
    def validate_reviewer_id(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("reviewer_id cannot be empty")
        return v.strip()


class CommittedClaim(BaseModel):
    """Durable, versioned claim record."""
    claim_id: str
    job_id: str
    claim_number: str
    region_code: str
    patta_holder: Optional[str] = None
    claim_type: ClaimType = ClaimType.UNKNOWN
    hierarchy: Optional[HierarchyPath] = None
    geometry: Optional[Dict[str, Any]] = None
    centroid: Optional[Tuple[float, float]] = None
    area_ha: Optional[float] = None
    version: int = 1
    status: str = "active"
    approved_by: Optional[str] = None
    committed_at: datetime = Field(default_factory=utcnow)

    def content_key(self) -> dict:
        """Fields that must match for a repeated commit to count as the same record."""
        return self.model_dump(
            mode="json",
            include={
                "claim_id", "job_id", "claim_number", "region_code", "patta_holder",
                "claim_type", "hierarchy", "geometry", "area_ha",
            },
        )


# ============================================================================
# Job
# ============================================================================


class Job(BaseModel):
    """One document's progress unit through the pipeline."""

    job_id: str
    stage: JobStage = JobStage.QUEUED
    attempts: Dict[str, int] = Field(default_factory=dict, description="Attempt count per stage")

    source_payload: Dict[str, Any] = Field(default_factory=dict, description="Payload as ingested")
    payload: Optional[ExtractionPayload] = Field(None, description="Latest payload revision")
    confidence: float = Field(0.0, ge=0.0, le=100.0)

    candidate: Optional[CandidateClaim] = None
    issues: List[str] = Field(default_factory=list, description="Missing/invalid fields for reviewers")
    flags: List[str] = Field(default_factory=list)
    duplicates: List[DuplicateCandidate] = Field(default_factory=list)
    duplicate_probability: float = Field(0.0, ge=0.0, le=100.0)
    conflicts: List[ConflictRecord] = Field(default_factory=list)

    outcome: Optional[TerminalOutcome] = None
    outcome_reason: Optional[str] = None
    last_error: Optional[str] = None
    committed_claim_id: Optional[str] = None

    lease_token: Optional[str] = None
    lease_owner: Optional[str] = None
    lease_expires_at: Optional[datetime] = None
    cancel_requested: bool = False

    review_override: Optional[str] = Field(None, description="Reviewer who approved the next commit")
    review_entered_at: Optional[datetime] = None
    review_cycles: int = 0
    sla_notified: bool = False

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def is_terminal(self) -> bool:
        return self.stage.is_terminal

    @property
    def max_severity(self) -> Optional[ConflictSeverity]:
        if not self.conflicts:
            return None
        return max((c.severity for c in self.conflicts), key=lambda s: s.rank)
