"""
Intake pipeline facade.

Wires the stores, reference data, stage components and review gate into
one object with the operations the API and CLI need: ingest, run, review,
cancel and SLA checks.
"""

import logging
import uuid
from pathlib import Path
from typing import Any, Dict, List, Optional

from ..reference.gazetteer import Gazetteer, InMemoryGazetteer
from ..reference.layers import SpatialLayerStore
from ..routing.commit import CommitCoordinator
from ..routing.review_gate import ReviewGate
from ..storage.base import Clock
from ..storage.claim_store import ClaimStore
from ..storage.job_store import JobStore
from ..utils.config import Settings, get_settings
from .config import PipelineConfig
from .conflicts import ConflictDetector
from .dedup import DuplicateDetector
from .dispatcher import StageDispatcher, WorkerPool
from .errors import InvalidTransition, MalformedPayload
from .geocoding import GeocodingResolver
from .notifications import LoggingNotifier, Notifier
from .schema import Job, LayerType, ReviewDecision
from .stages import StageHandlers, stage_groups

logger = logging.getLogger(__name__)


class IntakePipeline:
    """
    Claim-intake pipeline.

    Usage:
        pipeline = IntakePipeline(jobs, claims, gazetteer, layers)
        job = pipeline.ingest(payload_dict)
        pipeline.run_until_idle()
        pipeline.get_job(job.job_id).stage
    """

    def __init__(
        self,
        jobs: JobStore,
        claims: ClaimStore,
        gazetteer: Gazetteer,
        layers: Optional[SpatialLayerStore] = None,
        notifier: Optional[Notifier] = None,
        config: Optional[PipelineConfig] = None,
        sleep=None,
    ):
        self.jobs = jobs
        self.claims = claims
        self.gazetteer = gazetteer
        self.layers = layers or SpatialLayerStore()
        self.notifier = notifier or LoggingNotifier()
        self.config = config or PipelineConfig()
        self._sleep = sleep

        self.committer = CommitCoordinator(claims, self.notifier)
        self.handlers = StageHandlers(
            geocoder=GeocodingResolver(gazetteer, self.config),
            dedup=DuplicateDetector(claims, self.config),
            conflicts=ConflictDetector(self.layers, claims),
            committer=self.committer,
            config=self.config,
        )
        self.review = ReviewGate(jobs, self.notifier, self.config)
        self.dispatcher = self.make_dispatcher("worker-main")

    def make_dispatcher(self, worker_id: str) -> StageDispatcher:
        kwargs = {"sleep": self._sleep} if self._sleep is not None else {}
        return StageDispatcher(self.jobs, self.handlers, self.notifier, self.config, worker_id=worker_id, **kwargs)

    def worker_pool(self, workers: int = 2, poll_interval: float = 0.5) -> WorkerPool:
        """Pool with `workers` threads for each stage group."""
        return WorkerPool(
            self.make_dispatcher,
            workers=workers,
            poll_interval=poll_interval,
            stage_groups=stage_groups(),
        )

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def ingest(self, payload: Dict[str, Any], job_id: Optional[str] = None) -> Job:
        """
        Queue a new job for an upstream extraction payload.

        Raises:
            MalformedPayload: the payload is not a JSON object
        """
        if not isinstance(payload, dict):
            raise MalformedPayload("payload must be a JSON object")
        job_id = job_id or f"JOB-{uuid.uuid4().hex[:12].upper()}"
        return self.jobs.create(job_id, payload)

    def run_once(self, stages=None) -> Optional[Job]:
        return self.dispatcher.run_once(stages)

    def run_until_idle(self, stages=None, max_steps: int = 10_000) -> int:
        return self.dispatcher.run_until_idle(stages, max_steps=max_steps)

    def get_job(self, job_id: str) -> Job:
        return self.jobs.require(job_id)

    def cancel(self, job_id: str) -> Job:
        """
        Cancel a job that has not committed.

        Raises:
            JobNotFound: no such job
            InvalidTransition: the job is committed, or its claim is already
                written and only the job's own transition is outstanding
        """
        claim = self.claims.get_by_job(job_id)
        if claim is not None and claim.status != "rejected":
            raise InvalidTransition(f"job {job_id} already committed claim {claim.claim_id}")
        return self.jobs.request_cancel(job_id)

    def review_queue(self, limit: int = 100) -> List[Job]:
        return self.review.queue(limit)

    def submit_review(self, job_id: str, decision: ReviewDecision) -> Job:
        return self.review.submit(job_id, decision)

    def check_review_sla(self):
        return self.review.check_sla()

    def stats(self) -> Dict[str, Any]:
        return {
            "jobs_by_stage": self.jobs.count_by_stage(),
            "claims_active": self.claims.count("active"),
            "claims_total": self.claims.count(),
        }


# =============================================================================
# Construction from settings
# =============================================================================


def load_layers(settings: Settings) -> SpatialLayerStore:
    return SpatialLayerStore.from_geojson_files({
        LayerType.PROTECTED: settings.protected_layer_path,
        LayerType.FOREST: settings.forest_layer_path,
        LayerType.REVENUE: settings.revenue_layer_path,
    })


def create_pipeline(
    settings: Optional[Settings] = None,
    database_path: Optional[Path] = None,
    notifier: Optional[Notifier] = None,
    clock: Optional[Clock] = None,
) -> IntakePipeline:
    """Build a pipeline from application settings."""
    settings = settings or get_settings()
    config = PipelineConfig.from_settings(settings)
    if not config.validate():
        raise ValueError("Incoherent pipeline thresholds; check the INTAKE_* settings")
    db_path = database_path or settings.database_path

    if settings.gazetteer_path:
        gazetteer = InMemoryGazetteer.from_geojson(
            settings.gazetteer_path, match_threshold=settings.village_match_threshold
        )
    else:
        logger.warning("No gazetteer configured; every village will be unresolved")
        gazetteer = InMemoryGazetteer([], match_threshold=settings.village_match_threshold)

    return IntakePipeline(
        jobs=JobStore(db_path, clock=clock),
        claims=ClaimStore(db_path, clock=clock),
        gazetteer=gazetteer,
        layers=load_layers(settings),
        notifier=notifier,
        config=config,
    )
