"""
Duplicate detector.

Scores a candidate against committed, non-rejected claims in the same
region. Signals are combined with a noisy-OR so the probability never drops
when any single signal gets stronger.
"""

import logging
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Protocol, Tuple

from rapidfuzz import fuzz, utils

from ..reference.gazetteer import place_key
from .config import PipelineConfig
from .geometry import distance_metres
from .schema import CandidateClaim, CommittedClaim, DuplicateCandidate, DuplicateEvidence, DuplicateSignal

logger = logging.getLogger(__name__)

FLAG_POTENTIAL_DUPLICATE = "potential_duplicate"

# Evidence weights in the noisy-OR
SIGNAL_WEIGHTS = {
    DuplicateSignal.CLAIM_NUMBER: 1.0,
    DuplicateSignal.NAME_VILLAGE: 0.6,
    DuplicateSignal.PROXIMITY: 0.55,
}


class ActiveClaimSource(Protocol):
    def list_active(self, region_code: Optional[str] = None) -> List[CommittedClaim]:
        ...


@dataclass
class DuplicateReport:
    """Recorded candidates and the highest probability seen."""
    candidates: List[DuplicateCandidate] = field(default_factory=list)
    max_probability: float = 0.0
    flagged: bool = False


def combine(evidence: Iterable[DuplicateEvidence]) -> float:
    """Noisy-OR of weighted evidence strengths, as a 0-100 probability."""
    miss = 1.0
    for item in evidence:
        miss *= 1.0 - SIGNAL_WEIGHTS[item.signal] * item.strength
    return round(100.0 * (1.0 - miss), 2)


def name_similarity(a: Optional[str], b: Optional[str]) -> float:
    """Order-insensitive name similarity, 0-100."""
    if not a or not b:
        return 0.0
    return fuzz.token_sort_ratio(a, b, processor=utils.default_process)


def same_village(candidate: CandidateClaim, claim: CommittedClaim) -> bool:
    """Both resolved to the same gazetteer village."""
    if candidate.hierarchy is None or claim.hierarchy is None:
        return False
    ours, theirs = candidate.hierarchy, claim.hierarchy
    if ours.village_code and theirs.village_code:
        return ours.village_code == theirs.village_code
    return bool(ours.village) and place_key(ours.village) == place_key(theirs.village)


class DuplicateDetector:
    """
    Scores duplicate probability against committed claims.

    Usage:
        detector = DuplicateDetector(claim_store, config)
        report = detector.detect(candidate, job_id)
    """

    def __init__(self, claims: ActiveClaimSource, config: Optional[PipelineConfig] = None):
        self.claims = claims
        self.config = config or PipelineConfig()

    def evidence(self, candidate: CandidateClaim, claim: CommittedClaim) -> List[DuplicateEvidence]:
        """Collect every signal linking the candidate to one committed claim."""
        found: List[DuplicateEvidence] = []

        if candidate.claim_number and candidate.claim_number == claim.claim_number:
            found.append(DuplicateEvidence(
                signal=DuplicateSignal.CLAIM_NUMBER,
                strength=1.0,
                detail=f"claim number {claim.claim_number}",
            ))

        if same_village(candidate, claim):
            similarity = name_similarity(candidate.patta_holder, claim.patta_holder)
            if similarity >= self.config.name_similarity_threshold:
                found.append(DuplicateEvidence(
                    signal=DuplicateSignal.NAME_VILLAGE,
                    strength=round(similarity / 100.0, 4),
                    detail=f"patta holder '{claim.patta_holder}' ({similarity:.0f}) in same village",
                ))

        if candidate.centroid and claim.centroid:
            distance = distance_metres(candidate.centroid, claim.centroid)
            if distance <= self.config.proximity_meters:
                found.append(DuplicateEvidence(
                    signal=DuplicateSignal.PROXIMITY,
                    strength=round(1.0 - distance / self.config.proximity_meters, 4),
                    detail=f"centroids {distance:.1f} m apart",
                ))
        return found

    def score(self, candidate: CandidateClaim, claim: CommittedClaim) -> DuplicateCandidate:
        evidence = self.evidence(candidate, claim)
        return DuplicateCandidate(
            claim_id=claim.claim_id,
            claim_number=claim.claim_number,
            probability=combine(evidence),
            evidence=evidence,
        )

    def detect(self, candidate: CandidateClaim, job_id: Optional[str] = None) -> DuplicateReport:
        """
        Score the candidate against every active claim in its region.

        Args:
            candidate: Geocoded candidate claim
            job_id: The job's own id; its committed claim (if any) is skipped

        Returns:
            DuplicateReport with candidates above the disclosure threshold
        """
        scored: List[Tuple[float, DuplicateCandidate]] = []
        for claim in self.claims.list_active(candidate.region_code):
            if job_id is not None and claim.job_id == job_id:
                continue
            result = self.score(candidate, claim)
            if result.probability > self.config.duplicate_disclosure:
                scored.append((result.probability, result))

        scored.sort(key=lambda item: item[0], reverse=True)
        candidates = [c for _, c in scored]
        max_probability = scored[0][0] if scored else 0.0
        flagged = max_probability > self.config.duplicate_block
        if candidates:
            logger.info(
                f"{len(candidates)} duplicate candidate(s) for {candidate.claim_number}, "
                f"max probability {max_probability:.1f}"
            )
        return DuplicateReport(candidates=candidates, max_probability=max_probability, flagged=flagged)
