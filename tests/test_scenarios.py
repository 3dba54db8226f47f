"""
End-to-end intake scenarios.

Each scenario ingests payloads and drives the pipeline to a resting state
(terminal or pending review) with the in-process dispatcher.
"""

import pytest

from conftest import make_payload, rectangle, rectangle_coordinates

from src.intake.geocoding import FLAG_APPROXIMATE
from src.intake.schema import (
    ConflictSeverity,
    JobStage,
    LayerType,
    LocationSource,
    ReviewDecision,
)
from src.intake.stages import FLAG_COMMIT_CONFLICT
from src.reference.layers import SpatialLayerStore
from src.routing.commit import claim_id_for
from src.storage.job_store import ACTIONABLE_STAGES


class TestCleanAutoCommit:
    """High-confidence payload with no conflicts commits without review."""

    def test_commits(self, pipeline, notifier):
        job = pipeline.ingest(make_payload(confidence=0.92), job_id="JOB-A")
        pipeline.run_until_idle()
        job = pipeline.get_job("JOB-A")

        assert job.stage == JobStage.COMMITTED
        assert job.review_cycles == 0
        assert job.confidence == pytest.approx(92.0)
        assert job.outcome_reason == "auto-commit"
        assert job.committed_claim_id == claim_id_for("JOB-A")
        assert notifier.outcomes("JOB-A") == ["committed"]

        claim = pipeline.claims.get(job.committed_claim_id)
        assert claim.claim_number == "MP/IFR/2024/12345"
        assert claim.region_code == "MP"
        assert claim.hierarchy.village == "Khairwada"
        assert claim.patta_holder == "Ramesh Kumar Uikey"
        assert [v.version for v in pipeline.claims.history(claim.claim_id)] == [1]


class TestProtectedAreaOverlap:
    """A parcel partly inside a protected area goes to review, then commits on approval."""

    @pytest.fixture
    def protected(self):
        # 0.0006 degree strip across the parcel's western edge: 15% of its width
        return SpatialLayerStore(SpatialLayerStore.features_from_geojson(
            {"features": [{"id": "PA-SATPURA-07", "properties": {}, "geometry": rectangle(77.956, 21.895, 0.0006, 0.02)}]},
            LayerType.PROTECTED,
        ))

    def test_review_then_approve(self, make_pipeline, protected):
        pipeline = make_pipeline(layers=protected)
        payload = make_payload(
            confidence=0.96,
            village="Chicholi",
            block="Chicholi",
            coordinates=rectangle_coordinates(77.956, 21.901, 0.004, 0.004),
        )
        pipeline.ingest(payload, job_id="JOB-B")
        pipeline.run_until_idle()
        job = pipeline.get_job("JOB-B")

        assert job.stage == JobStage.REVIEW_PENDING
        assert job.candidate.location_source == LocationSource.EXTRACTED_POLYGON
        assert len(job.conflicts) == 1
        record = job.conflicts[0]
        assert record.layer_type == LayerType.PROTECTED
        assert record.overlap_pct == pytest.approx(15.0, abs=0.1)
        assert record.severity == ConflictSeverity.MEDIUM
        assert pipeline.claims.count() == 0

        pipeline.submit_review("JOB-B", ReviewDecision(reviewer_id="forest-officer-2", verdict="approve"))
        pipeline.run_until_idle()
        job = pipeline.get_job("JOB-B")

        assert job.stage == JobStage.COMMITTED
        assert job.outcome_reason == "approved by forest-officer-2"
        assert pipeline.claims.get(job.committed_claim_id).area_ha == pytest.approx(18.36, rel=0.01)


class TestConcurrentDuplicateCommit:
    """Two jobs race to commit the same claim number; exactly one wins."""

    def test_second_commit_goes_to_review(self, pipeline):
        payload = make_payload(claim_number="MP/IFR/2024/99999")
        pipeline.ingest(payload, job_id="JOB-C1")
        pipeline.ingest(payload, job_id="JOB-C2")

        # Both pass every check before either commits
        before_commit = [s for s in ACTIONABLE_STAGES if s != JobStage.CONFLICT_CHECKED]
        pipeline.run_until_idle(before_commit)
        assert all(pipeline.get_job(j).stage == JobStage.CONFLICT_CHECKED for j in ("JOB-C1", "JOB-C2"))

        first = pipeline.run_once([JobStage.CONFLICT_CHECKED])
        second = pipeline.run_once([JobStage.CONFLICT_CHECKED])

        assert first.job_id == "JOB-C1"
        assert first.stage == JobStage.COMMITTED
        assert second.stage == JobStage.GEOCODED
        assert FLAG_COMMIT_CONFLICT in second.flags
        assert second.last_error.startswith("CommitConflict")

        pipeline.run_until_idle()
        loser = pipeline.get_job("JOB-C2")

        assert loser.stage == JobStage.REVIEW_PENDING
        assert loser.duplicate_probability == 100.0
        assert loser.duplicates[0].claim_id == first.committed_claim_id
        assert pipeline.claims.count() == 1

    def test_rejecting_the_loser_keeps_the_winner(self, pipeline):
        payload = make_payload(claim_number="MP/IFR/2024/99999")
        pipeline.ingest(payload, job_id="JOB-C1")
        pipeline.run_until_idle()
        pipeline.ingest(payload, job_id="JOB-C2")
        pipeline.run_until_idle()

        assert pipeline.get_job("JOB-C2").stage == JobStage.REVIEW_PENDING
        pipeline.submit_review("JOB-C2", ReviewDecision(reviewer_id="r1", verdict="reject", reason="duplicate"))

        assert pipeline.claims.count("active") == 1
        assert pipeline.get_job("JOB-C1").stage == JobStage.COMMITTED


class TestMissingCoordinates:
    """Without coordinates the village centroid stands in and the job still commits."""

    def test_centroid_fallback(self, pipeline):
        pipeline.ingest(make_payload(coordinates=None), job_id="JOB-D")
        pipeline.run_until_idle()
        job = pipeline.get_job("JOB-D")

        assert job.stage == JobStage.COMMITTED
        assert FLAG_APPROXIMATE in job.flags
        assert job.candidate.location_source == LocationSource.VILLAGE_CENTROID
        assert job.candidate.centroid == pytest.approx((77.91, 21.91))
        assert set(job.attempts) == {"extract", "validate", "normalize", "geocode", "dedup", "conflict", "commit"}
        assert all(count == 1 for count in job.attempts.values())

    def test_centroid_inside_forest_still_commits(self, make_pipeline):
        forest = SpatialLayerStore(SpatialLayerStore.features_from_geojson(
            {"features": [{"id": "RF-KHAIRWADA", "properties": {}, "geometry": rectangle(77.90, 21.90, 0.02, 0.02)}]},
            LayerType.FOREST,
        ))
        pipeline = make_pipeline(layers=forest)
        pipeline.ingest(make_payload(coordinates=None), job_id="JOB-D")
        pipeline.run_until_idle()
        job = pipeline.get_job("JOB-D")

        assert job.stage == JobStage.COMMITTED
        assert [c.feature_id for c in job.conflicts] == ["RF-KHAIRWADA"]
        assert job.conflicts[0].severity == ConflictSeverity.LOW


class TestDuplicateDisclosure:
    """A second filing by the same holder at the same place is held for review."""

    def test_same_holder_same_place(self, pipeline):
        pipeline.ingest(make_payload(), job_id="JOB-E1")
        pipeline.run_until_idle()
        pipeline.ingest(make_payload(claim_number="MP/IFR/2024/54321"), job_id="JOB-E2")
        pipeline.run_until_idle()
        job = pipeline.get_job("JOB-E2")

        assert job.stage == JobStage.REVIEW_PENDING
        assert job.duplicate_probability == pytest.approx(82.0)
        assert "potential_duplicate" in job.flags
