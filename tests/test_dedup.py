"""
Tests for the duplicate detector.

Verifies that:
- A matching claim number alone reaches 100
- Name-in-village and proximity signals combine with a noisy-OR
- The score never drops when a signal gets stronger
- Candidates below the disclosure threshold are not recorded
"""

import pytest

from conftest import ListClaimSource

from src.intake.config import PipelineConfig
from src.intake.dedup import DuplicateDetector, combine, name_similarity, same_village
from src.intake.schema import (
    CandidateClaim,
    CommittedClaim,
    DuplicateEvidence,
    DuplicateSignal,
    HierarchyPath,
)

KHAIRWADA = HierarchyPath(state="Madhya Pradesh", state_code="MP", village="Khairwada", village_code="482913")
CHICHOLI = HierarchyPath(state="Madhya Pradesh", state_code="MP", village="Chicholi", village_code="482977")


def committed(**overrides) -> CommittedClaim:
    data = dict(
        claim_id="FRC-EXISTING",
        job_id="JOB-OLD",
        claim_number="MP/IFR/2024/00001",
        region_code="MP",
        patta_holder="Ramesh Kumar Uikey",
        hierarchy=KHAIRWADA,
        centroid=(77.91, 21.91),
    )
    data.update(overrides)
    return CommittedClaim(**data)


def candidate(**overrides) -> CandidateClaim:
    data = dict(
        claim_number="MP/IFR/2024/12345",
        region_code="MP",
        patta_holder="Ramesh Kumar Uikey",
        hierarchy=KHAIRWADA,
        centroid=(77.91, 21.91),
    )
    data.update(overrides)
    return CandidateClaim(**data)


def evidence(signal: DuplicateSignal, strength: float) -> DuplicateEvidence:
    return DuplicateEvidence(signal=signal, strength=strength)


# ============================================================================
# Scoring
# ============================================================================


class TestCombine:

    def test_no_evidence(self):
        assert combine([]) == 0.0

    def test_claim_number_is_decisive(self):
        assert combine([evidence(DuplicateSignal.CLAIM_NUMBER, 1.0)]) == 100.0

    def test_name_and_proximity(self):
        score = combine([
            evidence(DuplicateSignal.NAME_VILLAGE, 1.0),
            evidence(DuplicateSignal.PROXIMITY, 1.0),
        ])
        assert score == pytest.approx(82.0)

    @pytest.mark.parametrize("signal", list(DuplicateSignal))
    def test_monotonic_in_each_signal(self, signal):
        base = [evidence(s, 0.5) for s in DuplicateSignal if s != signal]
        previous = combine(base)
        for strength in (0.1, 0.4, 0.7, 1.0):
            current = combine(base + [evidence(signal, strength)])
            assert current >= previous
            previous = current


class TestSimilarity:

    def test_name_order_does_not_matter(self):
        assert name_similarity("Uikey Ramesh Kumar", "ramesh kumar uikey") == 100.0

    def test_missing_name(self):
        assert name_similarity(None, "Ramesh") == 0.0

    def test_same_village_by_code(self):
        assert same_village(candidate(), committed())
        assert not same_village(candidate(hierarchy=CHICHOLI), committed())

    def test_same_village_by_name_without_codes(self):
        ours = candidate(hierarchy=HierarchyPath(village="Khairwada"))
        theirs = committed(hierarchy=HierarchyPath(village="KHAIRWADA"))
        assert same_village(ours, theirs)

    def test_unresolved_is_never_same_village(self):
        assert not same_village(candidate(hierarchy=None), committed())


# ============================================================================
# Detector
# ============================================================================


class TestDuplicateDetector:

    def test_exact_claim_number(self):
        detector = DuplicateDetector(ListClaimSource([committed(claim_number="MP/IFR/2024/12345")]))
        report = detector.detect(candidate(), job_id="JOB-NEW")

        assert report.max_probability == 100.0
        assert report.flagged
        assert report.candidates[0].claim_id == "FRC-EXISTING"
        assert report.candidates[0].evidence[0].signal == DuplicateSignal.CLAIM_NUMBER

    def test_same_holder_same_place_is_flagged(self):
        detector = DuplicateDetector(ListClaimSource([committed()]))
        report = detector.detect(candidate(), job_id="JOB-NEW")

        assert report.max_probability == pytest.approx(82.0)
        assert report.flagged
        signals = {e.signal for e in report.candidates[0].evidence}
        assert signals == {DuplicateSignal.NAME_VILLAGE, DuplicateSignal.PROXIMITY}

    def test_same_holder_elsewhere_is_disclosed_only(self):
        detector = DuplicateDetector(ListClaimSource([committed(centroid=(77.93, 21.91))]))
        report = detector.detect(candidate(), job_id="JOB-NEW")

        assert report.max_probability == pytest.approx(60.0)
        assert not report.flagged
        assert len(report.candidates) == 1

    def test_weak_match_is_not_recorded(self):
        detector = DuplicateDetector(ListClaimSource([
            committed(patta_holder="Sita Bai", centroid=(77.9106, 21.91)),
        ]))
        report = detector.detect(candidate(), job_id="JOB-NEW")

        assert report.candidates == []
        assert report.max_probability == 0.0
        assert not report.flagged

    def test_other_regions_are_ignored(self):
        detector = DuplicateDetector(ListClaimSource([
            committed(claim_number="MP/IFR/2024/12345", region_code="CG"),
        ]))
        assert detector.detect(candidate()).candidates == []

    def test_own_claim_is_skipped(self):
        detector = DuplicateDetector(ListClaimSource([
            committed(claim_number="MP/IFR/2024/12345", job_id="JOB-NEW"),
        ]))
        assert detector.detect(candidate(), job_id="JOB-NEW").max_probability == 0.0

    def test_candidates_sorted_by_probability(self):
        detector = DuplicateDetector(ListClaimSource([
            committed(claim_id="FRC-A", centroid=(77.93, 21.91)),
            committed(claim_id="FRC-B", claim_number="MP/IFR/2024/12345", centroid=(77.93, 21.91)),
        ]))
        report = detector.detect(candidate())
        assert [c.claim_id for c in report.candidates] == ["FRC-B", "FRC-A"]

    def test_thresholds_come_from_config(self):
        config = PipelineConfig(duplicate_disclosure=10.0, duplicate_block=50.0)
        detector = DuplicateDetector(ListClaimSource([committed(centroid=(77.93, 21.91))]), config)
        assert detector.detect(candidate()).flagged
