"""
Tests for the spatial layer store and conflict detector.

Verifies that:
- Overlap percentages stay within [0, 100]
- Severity tiers follow the overlap share, with protected areas at least medium
- Committed claims in the same region count as a conflict layer
- The job's own claim and placeholder locations do not conflict with claims
- Layer hits on a village-centroid placeholder are recorded as low
"""

import pytest
from shapely.geometry import Point

from conftest import ListClaimSource, rectangle

from src.intake.conflicts import ConflictDetector, classify, overlap_percent
from src.intake.schema import (
    CandidateClaim,
    CommittedClaim,
    ConflictSeverity,
    LayerType,
    LocationSource,
)
from src.reference.layers import LayerHit, SpatialLayerStore

# Job parcel: lon 77.956-77.960, lat 21.901-21.905
JOB_PARCEL = rectangle(77.956, 21.901, 0.004, 0.004)


def layer(layer_type: LayerType, **polygons) -> list:
    return SpatialLayerStore.features_from_geojson(
        {"features": [{"id": fid, "properties": {}, "geometry": geom} for fid, geom in polygons.items()]},
        layer_type,
    )


def parcel(geometry=JOB_PARCEL, source=LocationSource.EXTRACTED_POLYGON) -> CandidateClaim:
    return CandidateClaim(claim_number="MP/IFR/2024/12345", region_code="MP", geometry=geometry, location_source=source)


def committed(claim_id: str, geometry, job_id: str = "JOB-OLD") -> CommittedClaim:
    return CommittedClaim(
        claim_id=claim_id,
        job_id=job_id,
        claim_number=f"MP/IFR/2024/{claim_id}",
        region_code="MP",
        geometry=geometry,
    )


# ============================================================================
# Classification
# ============================================================================


class TestClassify:

    @pytest.mark.parametrize("pct,severity", [
        (0.0, ConflictSeverity.LOW),
        (9.99, ConflictSeverity.LOW),
        (10.0, ConflictSeverity.MEDIUM),
        (49.9, ConflictSeverity.MEDIUM),
        (50.0, ConflictSeverity.HIGH),
        (100.0, ConflictSeverity.HIGH),
    ])
    def test_tiers(self, pct, severity):
        assert classify(pct, LayerType.FOREST) == severity

    def test_protected_is_at_least_medium(self):
        assert classify(1.0, LayerType.PROTECTED) == ConflictSeverity.MEDIUM
        assert classify(60.0, LayerType.PROTECTED) == ConflictSeverity.HIGH

    def test_percent_is_clamped(self):
        hit = LayerHit("X", LayerType.FOREST, overlap_area_ha=12.0)

        assert overlap_percent(hit, 10.0, is_point=False) == 100.0
        assert overlap_percent(hit, 0.0, is_point=False) == 0.0
        assert overlap_percent(hit, 10.0, is_point=True) == 100.0


# ============================================================================
# Spatial Layer Store
# ============================================================================


class TestSpatialLayerStore:

    def test_feature_ids(self):
        features = SpatialLayerStore.features_from_geojson({"features": [
            {"id": "A", "properties": {}, "geometry": rectangle(0, 0, 1, 1)},
            {"properties": {"id": "B"}, "geometry": rectangle(0, 0, 1, 1)},
            {"properties": {}, "geometry": rectangle(0, 0, 1, 1)},
        ]}, LayerType.REVENUE)

        assert [f.feature_id for f in features] == ["A", "B", "revenue-2"]

    def test_counts_per_layer(self, layers):
        assert layers.count(LayerType.PROTECTED) == 1
        assert layers.count(LayerType.REVENUE) == 0
        assert set(layers.layer_types) == {LayerType.PROTECTED, LayerType.FOREST}

    def test_intersects_reports_overlap_area(self):
        store = SpatialLayerStore(layer(LayerType.FOREST, F1=rectangle(0, 0, 0.01, 0.01)))
        hits = store.intersects(rectangle(0.005, 0, 0.01, 0.01), LayerType.FOREST)

        assert [h.feature_id for h in hits] == ["F1"]
        assert hits[0].overlap_area_ha == pytest.approx(61.82, rel=1e-2)

    def test_touching_edges_are_not_hits(self):
        store = SpatialLayerStore(layer(LayerType.FOREST, F1=rectangle(0, 0, 0.01, 0.01)))
        assert store.intersects(rectangle(0.01, 0, 0.01, 0.01), LayerType.FOREST) == []

    def test_point_hit_has_no_area(self):
        store = SpatialLayerStore(layer(LayerType.PROTECTED, P1=rectangle(0, 0, 0.01, 0.01)))
        hits = store.intersects(Point(0.005, 0.005), LayerType.PROTECTED)

        assert len(hits) == 1
        assert hits[0].overlap_area_ha == 0.0

    def test_empty_layer(self):
        assert SpatialLayerStore().intersects(Point(0, 0), LayerType.FOREST) == []

    def test_load_from_files(self, tmp_path):
        path = tmp_path / "forest.geojson"
        path.write_text('{"type": "FeatureCollection", "features": [{"type": "Feature", "id": "F9", '
                        '"properties": {}, "geometry": {"type": "Polygon", '
                        '"coordinates": [[[0, 0], [1, 0], [1, 1], [0, 1], [0, 0]]]}}]}')

        store = SpatialLayerStore.from_geojson_files({LayerType.FOREST: path, LayerType.REVENUE: None})

        assert store.count(LayerType.FOREST) == 1
        assert store.layer_types == [LayerType.FOREST]


# ============================================================================
# Conflict Detector
# ============================================================================


class TestConflictDetector:

    def test_no_geometry_no_conflicts(self):
        detector = ConflictDetector(SpatialLayerStore())
        assert detector.detect(CandidateClaim(claim_number="X")) == []

    def test_protected_strip_is_medium(self):
        # 0.0006 of the parcel's 0.004 width
        store = SpatialLayerStore(layer(LayerType.PROTECTED, PA=rectangle(77.956, 21.895, 0.0006, 0.02)))
        records = ConflictDetector(store).detect(parcel())

        assert len(records) == 1
        assert records[0].overlap_pct == pytest.approx(15.0, abs=0.1)
        assert records[0].severity == ConflictSeverity.MEDIUM

    def test_small_forest_overlap_is_low(self):
        store = SpatialLayerStore(layer(LayerType.FOREST, RF=rectangle(77.956, 21.895, 0.0002, 0.02)))
        records = ConflictDetector(store).detect(parcel())

        assert records[0].overlap_pct == pytest.approx(5.0, abs=0.1)
        assert records[0].severity == ConflictSeverity.LOW

    def test_contained_parcel_is_high(self):
        store = SpatialLayerStore(layer(LayerType.REVENUE, RV=rectangle(77.95, 21.90, 0.02, 0.02)))
        records = ConflictDetector(store).detect(parcel())

        assert records[0].overlap_pct == pytest.approx(100.0)
        assert records[0].severity == ConflictSeverity.HIGH

    def test_point_inside_feature(self):
        store = SpatialLayerStore(layer(LayerType.PROTECTED, PA=rectangle(77.95, 21.90, 0.02, 0.02)))
        point = {"type": "Point", "coordinates": [77.958, 21.903]}
        records = ConflictDetector(store).detect(parcel(point, LocationSource.EXTRACTED_POINT))

        assert records[0].overlap_pct == 100.0
        assert records[0].overlap_area_ha == 0.0

    def test_records_sorted_by_severity(self):
        store = SpatialLayerStore(
            layer(LayerType.FOREST, RF=rectangle(77.956, 21.895, 0.0002, 0.02))
            + layer(LayerType.REVENUE, RV=rectangle(77.95, 21.90, 0.02, 0.02))
            + layer(LayerType.PROTECTED, PA=rectangle(77.956, 21.895, 0.0006, 0.02))
        )
        records = ConflictDetector(store).detect(parcel())

        assert [r.feature_id for r in records] == ["RV", "PA", "RF"]
        assert all(0.0 <= r.overlap_pct <= 100.0 for r in records)

    def test_overlapping_claim(self):
        # Covers the eastern 62.5% of the parcel
        claims = ListClaimSource([committed("FRC-1", rectangle(77.9575, 21.901, 0.004, 0.004))])
        records = ConflictDetector(SpatialLayerStore(), claims).detect(parcel(), job_id="JOB-NEW")

        assert len(records) == 1
        assert records[0].layer_type == LayerType.CLAIM
        assert records[0].feature_id == "FRC-1"
        assert records[0].overlap_pct == pytest.approx(62.5, abs=0.1)
        assert records[0].severity == ConflictSeverity.HIGH

    def test_own_claim_is_not_a_conflict(self):
        claims = ListClaimSource([committed("FRC-1", JOB_PARCEL, job_id="JOB-NEW")])
        assert ConflictDetector(SpatialLayerStore(), claims).detect(parcel(), job_id="JOB-NEW") == []

    def test_point_claims_are_ignored(self):
        claims = ListClaimSource([committed("FRC-1", {"type": "Point", "coordinates": [77.958, 21.903]})])
        assert ConflictDetector(SpatialLayerStore(), claims).detect(parcel()) == []

    def test_village_centroid_skips_claim_layer(self):
        claims = ListClaimSource([committed("FRC-1", rectangle(77.95, 21.90, 0.02, 0.02))])
        point = {"type": "Point", "coordinates": [77.96, 21.91]}
        detector = ConflictDetector(SpatialLayerStore(), claims)

        assert detector.detect(parcel(point, LocationSource.VILLAGE_CENTROID)) == []
        assert len(detector.detect(parcel(point, LocationSource.EXTRACTED_POINT))) == 1

    def test_village_centroid_layer_hits_are_low(self):
        store = SpatialLayerStore(
            layer(LayerType.PROTECTED, PA=rectangle(77.95, 21.90, 0.02, 0.02))
            + layer(LayerType.FOREST, RF=rectangle(77.95, 21.90, 0.02, 0.02))
        )
        point = {"type": "Point", "coordinates": [77.96, 21.91]}
        detector = ConflictDetector(store)

        placeholder = detector.detect(parcel(point, LocationSource.VILLAGE_CENTROID))
        assert {r.feature_id for r in placeholder} == {"PA", "RF"}
        assert all(r.severity == ConflictSeverity.LOW for r in placeholder)

        extracted = detector.detect(parcel(point, LocationSource.EXTRACTED_POINT))
        assert all(r.severity == ConflictSeverity.HIGH for r in extracted)
