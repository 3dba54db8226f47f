"""
Validation & normalization for extracted forest-rights claims.

Analyzes an ExtractionPayload to:
- Check required fields are present and well-typed
- Compute a 0-100 confidence score from per-field extraction confidences
- Normalize names, dates, coordinates, land extent and claim-type codes
"""

import logging
import re
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, Field

from .errors import ExtractionIncomplete, MalformedGeometry
from .geometry import area_hectares, coordinates_to_geometry, geometry_to_geojson
from .schema import CandidateClaim, ClaimType, ExtractionPayload

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ("claim_number", "village", "land_extent")

# Relative weight of each field in the confidence score
FIELD_WEIGHTS: Dict[str, float] = {
    "claim_number": 0.25,
    "village": 0.20,
    "land_extent": 0.15,
    "patta_holder": 0.15,
    "coordinates": 0.10,
    "claim_type": 0.05,
    "claim_status": 0.05,
    "submission_date": 0.05,
}

# Confidence ceiling when a required field is missing or invalid
INCOMPLETE_CONFIDENCE_CAP = 69.0

# Land units → hectares
HECTARES_PER_UNIT: Dict[str, float] = {
    "ha": 1.0,
    "hectare": 1.0,
    "hectares": 1.0,
    "acre": 0.40468564224,
    "acres": 0.40468564224,
    "ac": 0.40468564224,
    "sqm": 0.0001,
    "sq m": 0.0001,
    "sq. m": 0.0001,
    "m2": 0.0001,
    "square metre": 0.0001,
    "square metres": 0.0001,
    "square meter": 0.0001,
    "square meters": 0.0001,
    "sqft": 0.000009290304,
    "sq ft": 0.000009290304,
    "sq. ft": 0.000009290304,
    "square feet": 0.000009290304,
    "guntha": 0.0101171,
    "gunthas": 0.0101171,
    "cent": 0.0040468564224,
    "cents": 0.0040468564224,
    "decimal": 0.0040468564224,
    "decimals": 0.0040468564224,
}

DATE_FORMATS = (
    "%Y-%m-%d",
    "%d/%m/%Y",
    "%d-%m-%Y",
    "%d.%m.%Y",
    "%d/%m/%y",
    "%d-%m-%y",
    "%d %B %Y",
    "%d %b %Y",
    "%B %d, %Y",
    "%b %d, %Y",
)

_CLAIM_NUMBER = re.compile(r"^[A-Z0-9]+(?:/[A-Z0-9]+)*$")
_CLAIM_TYPE_ALIASES: List[Tuple[ClaimType, Tuple[str, ...]]] = [
    (ClaimType.COMMUNITY_FOREST, ("cfr", "community forest", "forest resource")),
    (ClaimType.COMMUNITY_RIGHTS, ("cr", "community right", "community")),
    (ClaimType.INDIVIDUAL, ("ifr", "individual", "ior")),
]


class ValidationReport(BaseModel):
    """
    Result of validating an extraction payload.

    Gives reviewers the list of missing or invalid fields alongside the
    confidence score used for gating.
    """

    confidence: float = Field(ge=0.0, le=100.0, description="Overall confidence from 0 to 100")
    missing_required: List[str] = Field(default_factory=list)
    invalid_fields: List[str] = Field(default_factory=list)
    issues: List[str] = Field(default_factory=list, description="Human-readable problems for reviewers")

    @property
    def is_valid(self) -> bool:
        """All required fields present and parseable."""
        return not self.missing_required and not self.invalid_required

    @property
    def invalid_required(self) -> List[str]:
        return [f for f in self.invalid_fields if f in REQUIRED_FIELDS]

    def as_error(self) -> Optional[ExtractionIncomplete]:
        """The ExtractionIncomplete this report represents, if any."""
        if self.is_valid:
            return None
        return ExtractionIncomplete(self.missing_required + self.invalid_required)


# ============================================================================
# Field normalizers
# ============================================================================


def normalize_whitespace(value: Any) -> str:
    return re.sub(r"\s+", " ", str(value)).strip()


def normalize_name(value: Any) -> Optional[str]:
    """Trim, collapse whitespace and title-case a personal or place name."""
    if value is None:
        return None
    text = normalize_whitespace(value).strip(" .,;:")
    if not text:
        return None
    return re.sub(r"[^\W\d_]+", lambda m: m.group().capitalize(), text.lower())


def normalize_claim_number(value: Any) -> Optional[str]:
    """Upper-case a claim number and unify separators to '/'."""
    if value is None:
        return None
    text = normalize_whitespace(value).upper()
    text = re.sub(r"\s*[\\|-]\s*|\s*/\s*", "/", text)
    text = text.replace(" ", "")
    if not text or not _CLAIM_NUMBER.match(text):
        return None
    return text


def parse_date(value: Any) -> Optional[str]:
    """Parse a document date into ISO YYYY-MM-DD. Day-first formats win."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date().isoformat()
    text = normalize_whitespace(value)
    text = re.sub(r"(\d)(st|nd|rd|th)\b", r"\1", text, flags=re.IGNORECASE)
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date().isoformat()
        except ValueError:
            continue
    return None


def parse_land_extent(value: Any) -> Optional[float]:
    """Convert an extent like '2.5 acres' or '1,200 sq m' to hectares."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value) if value > 0 else None

    text = normalize_whitespace(value).lower().replace(",", "")
    match = re.match(r"^(\d+(?:\.\d+)?)\s*(.*)$", text)
    if not match:
        return None
    amount = float(match.group(1))
    unit = match.group(2).strip().rstrip(".")
    if unit == "":
        factor = 1.0
    elif unit in HECTARES_PER_UNIT:
        factor = HECTARES_PER_UNIT[unit]
    else:
        return None
    hectares = amount * factor
    return round(hectares, 6) if hectares > 0 else None


def map_claim_type(value: Any, claim_number: Optional[str] = None) -> ClaimType:
    """Map free-text claim type (or a claim-number segment) to a type code."""
    candidates: List[str] = []
    if value is not None:
        candidates.append(normalize_whitespace(value).lower())
    if claim_number:
        candidates.extend(seg.lower() for seg in claim_number.split("/"))

    for text in candidates:
        for claim_type, aliases in _CLAIM_TYPE_ALIASES:
            for alias in aliases:
                if text == alias or (len(alias) > 3 and alias in text):
                    return claim_type
    return ClaimType.UNKNOWN


def region_from_claim_number(claim_number: Optional[str]) -> Optional[str]:
    """Leading alphabetic segment of a claim number, e.g. 'MP' for MP/IFR/2024/1."""
    if not claim_number:
        return None
    head = claim_number.split("/")[0]
    return head if head.isalpha() else None


# ============================================================================
# Validation
# ============================================================================


def _field_is_parseable(name: str, value: Any) -> bool:
    if name == "claim_number":
        return normalize_claim_number(value) is not None
    if name == "village":
        return isinstance(value, str) and re.search(r"[^\W\d_]", value) is not None
    if name == "land_extent":
        return parse_land_extent(value) is not None
    if name in ("submission_date", "decision_date"):
        return parse_date(value) is not None
    return True


def validate_payload(payload: ExtractionPayload) -> ValidationReport:
    """
    Check required fields and compute the confidence score.

    The score is the weighted average of present fields' extraction
    confidences, scaled by required-field coverage. A missing or invalid
    required field caps the score below the commit threshold.

    Args:
        payload: The extraction payload to check

    Returns:
        ValidationReport with confidence and missing/invalid field lists
    """
    missing: List[str] = []
    invalid: List[str] = []
    issues: List[str] = []

    weighted = 0.0
    total_weight = 0.0
    for name, weight in FIELD_WEIGHTS.items():
        field = payload.field(name)
        if field is None:
            if name in REQUIRED_FIELDS:
                missing.append(name)
                issues.append(f"Required field '{name}' is missing")
            continue
        if not _field_is_parseable(name, field.value):
            invalid.append(name)
            issues.append(f"Field '{name}' could not be parsed: {field.value!r}")
            continue
        weighted += weight * field.confidence
        total_weight += weight

    decision = payload.field("decision_date")
    if decision is not None and not _field_is_parseable("decision_date", decision.value):
        invalid.append("decision_date")
        issues.append(f"Field 'decision_date' could not be parsed: {decision.value!r}")

    average = weighted / total_weight if total_weight else 0.0
    bad_required = set(missing) | {f for f in invalid if f in REQUIRED_FIELDS}
    coverage = (len(REQUIRED_FIELDS) - len(bad_required)) / len(REQUIRED_FIELDS)
    confidence = 100.0 * average * (0.5 + 0.5 * coverage)
    if bad_required:
        confidence = min(confidence, INCOMPLETE_CONFIDENCE_CAP)

    return ValidationReport(
        confidence=round(confidence, 2),
        missing_required=missing,
        invalid_fields=invalid,
        issues=issues,
    )


# ============================================================================
# Normalization
# ============================================================================


def _value(payload: ExtractionPayload, name: str) -> Any:
    field = payload.field(name)
    return field.value if field is not None else None


def normalize_payload(payload: ExtractionPayload, report: Optional[ValidationReport] = None) -> CandidateClaim:
    """
    Build the normalization-owned fields of a CandidateClaim.

    Raises:
        MalformedGeometry: extracted coordinates are present but unparseable
    """
    report = report or validate_payload(payload)

    claim_number = normalize_claim_number(_value(payload, "claim_number"))
    claim_type = map_claim_type(_value(payload, "claim_type"), claim_number)
    status = _value(payload, "claim_status")

    extracted_geometry = None
    coordinates = _value(payload, "coordinates")
    if coordinates is not None:
        geom = coordinates_to_geometry(coordinates)
        if geom.geom_type not in ("Point", "Polygon", "MultiPolygon"):
            raise MalformedGeometry(f"Unsupported geometry type: {geom.geom_type}")
        extracted_geometry = geometry_to_geojson(geom)
        if geom.geom_type != "Point":
            logger.debug(f"Extracted polygon area: {area_hectares(geom):.3f} ha")

    return CandidateClaim(
        claim_number=claim_number,
        region_code=region_from_claim_number(claim_number),
        patta_holder=normalize_name(_value(payload, "patta_holder")),
        claim_type=claim_type,
        claim_status=normalize_whitespace(status).lower() if status is not None else None,
        submission_date=parse_date(_value(payload, "submission_date")),
        decision_date=parse_date(_value(payload, "decision_date")),
        declared_area_ha=parse_land_extent(_value(payload, "land_extent")),
        extracted_geometry=extracted_geometry,
        validation_confidence=report.confidence,
    )
