"""Tests for committed claim storage."""

import pytest

from conftest import rectangle

from src.intake.errors import CommitConflict
from src.intake.schema import CommittedClaim, HierarchyPath


def make_claim(claim_id="FRC-1", job_id="JOB-1", claim_number="MP/IFR/2024/1", region_code="MP", **kwargs):
    return CommittedClaim(
        claim_id=claim_id,
        job_id=job_id,
        claim_number=claim_number,
        region_code=region_code,
        patta_holder="Ramesh Kumar Uikey",
        hierarchy=HierarchyPath(state_code=region_code, village="Khairwada", village_code="482913"),
        geometry=kwargs.pop("geometry", rectangle(77.905, 21.905, 0.001, 0.001)),
        centroid=(77.9055, 21.9055),
        area_ha=1.15,
        **kwargs,
    )


class TestCommit:

    def test_commit_and_read_back(self, claim_store):
        claim, created = claim_store.commit(make_claim())
        stored = claim_store.get("FRC-1")

        assert created
        assert stored.claim_number == "MP/IFR/2024/1"
        assert stored.hierarchy.village == "Khairwada"
        assert stored.geometry["type"] == "Polygon"
        assert stored.centroid == (77.9055, 21.9055)
        assert stored.version == 1
        assert claim_store.get_by_job("JOB-1").claim_id == "FRC-1"

    def test_commit_is_idempotent_per_job(self, claim_store):
        claim_store.commit(make_claim())
        again, created = claim_store.commit(make_claim())

        assert not created
        assert again.claim_id == "FRC-1"
        assert claim_store.count() == 1

    def test_same_number_in_region_conflicts(self, claim_store):
        claim_store.commit(make_claim())

        with pytest.raises(CommitConflict) as exc_info:
            claim_store.commit(make_claim(claim_id="FRC-2", job_id="JOB-2"))

        assert exc_info.value.existing_claim_id == "FRC-1"
        assert claim_store.count() == 1

    def test_same_number_in_other_region(self, claim_store):
        claim_store.commit(make_claim())
        _, created = claim_store.commit(make_claim(claim_id="FRC-2", job_id="JOB-2", region_code="CG"))
        assert created

    def test_rejected_claim_frees_number(self, claim_store):
        claim_store.commit(make_claim())
        assert claim_store.mark_rejected("FRC-1", notes="withdrawn")

        _, created = claim_store.commit(make_claim(claim_id="FRC-2", job_id="JOB-2"))

        assert created
        assert [c.claim_id for c in claim_store.list_active("MP")] == ["FRC-2"]
        assert claim_store.count("rejected") == 1

    def test_mark_rejected_unknown(self, claim_store):
        assert not claim_store.mark_rejected("FRC-404")


class TestReads:

    def test_list_active_by_region(self, claim_store):
        claim_store.commit(make_claim())
        claim_store.commit(make_claim(claim_id="FRC-2", job_id="JOB-2", claim_number="CG/IFR/2024/9", region_code="CG"))

        assert [c.claim_id for c in claim_store.list_active("MP")] == ["FRC-1"]
        assert len(claim_store.list_active()) == 2

    def test_list_all_filters(self, claim_store):
        claim_store.commit(make_claim())
        claim_store.commit(make_claim(claim_id="FRC-2", job_id="JOB-2", claim_number="MP/IFR/2024/2"))
        claim_store.mark_rejected("FRC-2")

        assert [c.claim_id for c in claim_store.list_all(status="active")] == ["FRC-1"]
        assert len(claim_store.list_all(region_code="MP")) == 2


class TestVersions:

    def test_add_version_keeps_history(self, claim_store):
        claim_store.commit(make_claim())
        resurvey = rectangle(77.905, 21.905, 0.002, 0.001)

        updated = claim_store.add_version("FRC-1", resurvey, area_ha=2.3, note="resurvey")
        history = claim_store.history("FRC-1")

        assert updated.version == 2
        assert updated.area_ha == 2.3
        assert [v.version for v in history] == [1, 2]
        assert history[0].note == "initial commit"
        assert history[0].area_ha == 1.15
        assert history[1].geometry == resurvey

    def test_add_version_unknown_claim(self, claim_store):
        assert claim_store.add_version("FRC-404", rectangle(0, 0, 1, 1)) is None
