"""
Geocoding resolver.

Resolves the extracted village reference against the gazetteer, checks the
extracted geometry against the village boundary, substitutes the village
centroid when no coordinates were extracted, and derives the job confidence.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from shapely.geometry import Point

from ..reference.gazetteer import Gazetteer, GazetteerMatch
from .config import PipelineConfig
from .errors import GeocodingUnresolved
from .geometry import area_hectares, centroid_of, geojson_to_geometry, geometry_to_geojson
from .schema import CandidateClaim, ExtractionPayload, LocationSource

logger = logging.getLogger(__name__)

FLAG_UNRESOLVED = "geocoding_unresolved"
FLAG_DISCREPANCY = "geocoding_discrepancy"
FLAG_APPROXIMATE = "approximate_location"
FLAG_REGION_MISMATCH = "region_mismatch"

GEOCODING_FLAGS = frozenset({FLAG_UNRESOLVED, FLAG_DISCREPANCY, FLAG_APPROXIMATE, FLAG_REGION_MISMATCH})


@dataclass
class GeocodingResult:
    """Updated candidate plus the job-level confidence and flags."""
    candidate: CandidateClaim
    confidence: float
    flags: List[str] = field(default_factory=list)
    issues: List[str] = field(default_factory=list)


def _clamp(value: float) -> float:
    return max(0.0, min(100.0, value))


def parent_hints(payload: ExtractionPayload) -> Dict[str, str]:
    """State/district/block values from the payload, for narrowing the search."""
    hints = {}
    for level in ("state", "district", "block"):
        extracted = payload.field(level)
        if extracted is not None:
            hints[level] = str(extracted.value)
    return hints


class GeocodingResolver:
    """
    Resolves a candidate claim's location.

    Usage:
        resolver = GeocodingResolver(gazetteer, config)
        result = resolver.resolve(candidate, payload)
    """

    def __init__(self, gazetteer: Gazetteer, config: Optional[PipelineConfig] = None):
        self.gazetteer = gazetteer
        self.config = config or PipelineConfig()

    def resolve(self, candidate: CandidateClaim, payload: ExtractionPayload) -> GeocodingResult:
        """
        Resolve hierarchy and geometry for a normalized candidate.

        Raises:
            TransientLookupFailure: the gazetteer timed out (retried by the dispatcher)
        """
        village = payload.field("village")
        match = None
        if village is not None:
            match = self.gazetteer.resolve(str(village.value), parent_hints(payload))

        if match is None:
            name = village.value if village is not None else None
            return self._unresolved(candidate, GeocodingUnresolved(f"no gazetteer match for village {name!r}"))
        return self._resolved(candidate, match)

    def _unresolved(self, candidate: CandidateClaim, error: GeocodingUnresolved) -> GeocodingResult:
        logger.warning(f"{error.describe()}; keeping extracted geometry")

        geometry = candidate.extracted_geometry
        centroid = None
        area = candidate.declared_area_ha
        source = LocationSource.NONE
        if geometry is not None:
            geom = geojson_to_geometry(geometry)
            centroid = centroid_of(geom)
            if geom.geom_type == "Point":
                source = LocationSource.EXTRACTED_POINT
            else:
                source = LocationSource.EXTRACTED_POLYGON
                area = round(area_hectares(geom), 4)

        updated = candidate.model_copy(update={
            "hierarchy": None,
            "geometry": geometry,
            "centroid": centroid,
            "area_ha": area,
            "location_source": source,
            "geocoding_confidence": 0.0,
        })
        confidence = min(candidate.validation_confidence, self.config.unresolved_confidence_cap)
        return GeocodingResult(
            candidate=updated,
            confidence=_clamp(confidence),
            flags=[FLAG_UNRESOLVED],
            issues=[error.describe()],
        )

    def _resolved(self, candidate: CandidateClaim, match: GazetteerMatch) -> GeocodingResult:
        flags: List[str] = []
        issues: List[str] = []
        boundary = geojson_to_geometry(match.boundary)
        penalty = 0.0

        if candidate.extracted_geometry is not None:
            geom = geojson_to_geometry(candidate.extracted_geometry)
            is_point = geom.geom_type == "Point"
            source = LocationSource.EXTRACTED_POINT if is_point else LocationSource.EXTRACTED_POLYGON
            if not boundary.covers(Point(centroid_of(geom))):
                flags.append(FLAG_DISCREPANCY)
                issues.append(f"Extracted coordinates fall outside village {match.hierarchy.village}")
                penalty = self.config.discrepancy_penalty
            geometry = candidate.extracted_geometry
        else:
            geom = Point(match.centroid)
            is_point = True
            source = LocationSource.VILLAGE_CENTROID
            flags.append(FLAG_APPROXIMATE)
            geometry = geometry_to_geojson(geom)

        region_code = candidate.region_code
        state_code = match.hierarchy.state_code
        if state_code:
            if region_code and region_code != state_code:
                flags.append(FLAG_REGION_MISMATCH)
                issues.append(f"Claim number region {region_code} differs from village state {state_code}")
            region_code = state_code

        area = candidate.declared_area_ha if is_point else round(area_hectares(geom), 4)
        updated = candidate.model_copy(update={
            "region_code": region_code,
            "hierarchy": match.hierarchy,
            "geometry": geometry,
            "centroid": centroid_of(geom),
            "area_ha": area,
            "location_source": source,
            "geocoding_confidence": match.match_confidence,
        })

        confidence = candidate.validation_confidence * match.match_confidence / 100.0 - penalty
        logger.info(
            f"Resolved village '{match.hierarchy.village}' ({match.match_confidence:.0f}), "
            f"source={source.value}, confidence={confidence:.1f}"
        )
        return GeocodingResult(candidate=updated, confidence=_clamp(confidence), flags=flags, issues=issues)
