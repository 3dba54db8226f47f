"""
Conflict detector.

Intersects the candidate geometry with protected, forest and revenue layers
and with other committed claims in the same region, and classifies each
overlap by how much of the claim it covers.
"""

import logging
from typing import List, Optional

from ..reference.layers import LayerFeature, LayerHit, SpatialLayerStore, overlap_hits
from .dedup import ActiveClaimSource
from .geometry import area_hectares, centroid_of, geojson_to_geometry
from .schema import CandidateClaim, ConflictRecord, ConflictSeverity, LayerType, LocationSource

logger = logging.getLogger(__name__)

REFERENCE_LAYERS = (LayerType.PROTECTED, LayerType.FOREST, LayerType.REVENUE)

HIGH_OVERLAP_PCT = 50.0
MEDIUM_OVERLAP_PCT = 10.0


def classify(overlap_pct: float, layer_type: LayerType) -> ConflictSeverity:
    """
    Severity tier for an overlap.

    Protected-area intersections are never below medium.
    """
    if overlap_pct >= HIGH_OVERLAP_PCT:
        return ConflictSeverity.HIGH
    if overlap_pct >= MEDIUM_OVERLAP_PCT or layer_type == LayerType.PROTECTED:
        return ConflictSeverity.MEDIUM
    return ConflictSeverity.LOW


def overlap_percent(hit: LayerHit, own_area_ha: float, is_point: bool) -> float:
    """Share of the claim's own area covered by the hit, clamped to [0, 100]."""
    if is_point:
        return 100.0
    if own_area_ha <= 0:
        return 0.0
    return max(0.0, min(100.0, 100.0 * hit.overlap_area_ha / own_area_ha))


class ConflictDetector:
    """
    Detects geometric conflicts for a candidate claim.

    Usage:
        detector = ConflictDetector(layers, claim_store)
        conflicts = detector.detect(candidate, job_id)
    """

    def __init__(self, layers: SpatialLayerStore, claims: Optional[ActiveClaimSource] = None):
        self.layers = layers
        self.claims = claims

    def _claim_features(self, candidate: CandidateClaim, job_id: Optional[str]) -> List[LayerFeature]:
        if self.claims is None:
            return []
        features = []
        for claim in self.claims.list_active(candidate.region_code):
            if claim.geometry is None or claim.job_id == job_id:
                continue
            geom = geojson_to_geometry(claim.geometry)
            if geom.geom_type == "Point":
                continue
            features.append(LayerFeature(claim.claim_id, LayerType.CLAIM, geom))
        return features

    def detect(self, candidate: CandidateClaim, job_id: Optional[str] = None) -> List[ConflictRecord]:
        """
        Record every intersection of the candidate geometry.

        Returns:
            ConflictRecords sorted by severity, highest first
        """
        if candidate.geometry is None:
            logger.info(f"No geometry for {candidate.claim_number}; skipping conflict check")
            return []

        geom = geojson_to_geometry(candidate.geometry)
        origin = centroid_of(geom)
        is_point = geom.geom_type == "Point"
        own_area = 0.0 if is_point else area_hectares(geom, origin)

        # A village-centroid placeholder says nothing about parcel overlap:
        # layer hits are recorded as low and claims are not compared at all
        placeholder = candidate.location_source == LocationSource.VILLAGE_CENTROID

        hits: List[LayerHit] = []
        for layer_type in REFERENCE_LAYERS:
            hits.extend(self.layers.intersects(geom, layer_type))
        if not placeholder:
            hits.extend(overlap_hits(geom, self._claim_features(candidate, job_id), origin))

        records = []
        for hit in hits:
            pct = overlap_percent(hit, own_area, is_point)
            records.append(ConflictRecord(
                layer_type=hit.layer_type,
                feature_id=hit.feature_id,
                overlap_area_ha=round(hit.overlap_area_ha, 4),
                overlap_pct=round(pct, 2),
                severity=ConflictSeverity.LOW if placeholder else classify(pct, hit.layer_type),
            ))

        records.sort(key=lambda r: (r.severity.rank, r.overlap_pct), reverse=True)
        for record in records:
            logger.info(
                f"Conflict with {record.layer_type.value} {record.feature_id}: "
                f"{record.overlap_pct:.1f}% ({record.severity.value})"
            )
        return records
