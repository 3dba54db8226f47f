"""
Stage dispatcher and worker pool.

A worker leases one actionable job, runs the handler for its stage with
tenacity-backed retries for transient lookup failures, and writes the
result back under the lease. Cancellation is checked before every attempt
and again before the transition.
"""

import logging
import threading
import time
import uuid
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Iterable, List, Optional, Sequence

from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from ..storage.job_store import ACTIONABLE_STAGES, CANCELLED_REASON, JobStore, Lease
from .config import PipelineConfig
from .errors import JobCancelled, LeaseLost, PipelineError, TransientLookupFailure
from .notifications import OUTCOME_FAILED, NotificationEvent, Notifier, send
from .schema import Job, JobStage
from .stages import STAGE_NAMES, StageHandlers, StageOutcome

logger = logging.getLogger(__name__)


class StageDispatcher:
    """
    Drives leased jobs through their next stage.

    Usage:
        dispatcher = StageDispatcher(job_store, handlers, notifier, config)
        dispatcher.run_until_idle()
    """

    def __init__(
        self,
        jobs: JobStore,
        handlers: StageHandlers,
        notifier: Optional[Notifier] = None,
        config: Optional[PipelineConfig] = None,
        worker_id: Optional[str] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.jobs = jobs
        self.handlers = handlers
        self.notifier = notifier
        self.config = config or PipelineConfig()
        self.worker_id = worker_id or f"worker-{uuid.uuid4().hex[:8]}"
        self.sleep = sleep

    def run_once(self, stages: Optional[Iterable[JobStage]] = None) -> Optional[Job]:
        """
        Lease and advance one job.

        Args:
            stages: Only lease jobs in these stages

        Returns:
            The job after this step, or None if nothing was available
            (or the lease was lost mid-step)
        """
        lease = self.jobs.acquire_lease(self.worker_id, self.config.lease_seconds, stages)
        if lease is None:
            return None
        return self._execute(lease)

    def run_until_idle(self, stages: Optional[Iterable[JobStage]] = None, max_steps: int = 10_000) -> int:
        """Advance jobs until none are available. Returns the number of steps taken."""
        stages = list(stages) if stages is not None else None
        steps = 0
        while steps < max_steps:
            lease = self.jobs.acquire_lease(self.worker_id, self.config.lease_seconds, stages)
            if lease is None:
                break
            self._execute(lease)
            steps += 1
        return steps

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def _fail(self, lease: Lease, error: str, reason: Optional[str] = None) -> Optional[Job]:
        try:
            job = self.jobs.fail(lease, error, reason)
        except LeaseLost as e:
            logger.warning(f"{self.worker_id}: {e}")
            return None
        send(self.notifier, NotificationEvent(job_id=job.job_id, outcome=OUTCOME_FAILED, detail=job.outcome_reason))
        return job

    def _cancel(self, lease: Lease) -> Optional[Job]:
        logger.info(f"Job {lease.job_id} cancelled at {lease.stage.value}")
        return self._fail(lease, JobCancelled("cancellation requested").describe(), CANCELLED_REASON)

    def _execute(self, lease: Lease) -> Optional[Job]:
        job = lease.job
        stage_name = STAGE_NAMES[lease.stage]

        if self.jobs.is_cancel_requested(job.job_id):
            return self._cancel(lease)

        remaining = self.config.max_stage_attempts - job.attempts.get(stage_name, 0)
        if remaining <= 0:
            error = job.last_error or f"retry ceiling reached at {stage_name}"
            return self._fail(lease, error, f"{stage_name} failed after {self.config.max_stage_attempts} attempts")

        holder = {"lease": lease}

        def _before_sleep(retry_state):
            error = retry_state.outcome.exception()
            logger.warning(
                f"Job {job.job_id} {stage_name} attempt failed ({error}); "
                f"retrying in {retry_state.next_action.sleep:.2f}s"
            )
            holder["lease"] = self.jobs.renew_lease(holder["lease"], self.config.lease_seconds)

        @retry(
            reraise=True,
            stop=stop_after_attempt(remaining),
            wait=wait_exponential(multiplier=self.config.retry_backoff_base, max=self.config.retry_backoff_max),
            retry=retry_if_exception_type(TransientLookupFailure),
            before_sleep=_before_sleep,
            sleep=self.sleep,
        )
        def _attempt() -> StageOutcome:
            if self.jobs.is_cancel_requested(job.job_id):
                raise JobCancelled("cancellation requested")
            self.jobs.record_attempt(holder["lease"], stage_name)
            return self.handlers.handle(job)

        try:
            outcome = _attempt()
        except JobCancelled:
            return self._cancel(holder["lease"])
        except TransientLookupFailure as e:
            return self._fail(
                holder["lease"],
                e.describe(),
                f"{stage_name} failed after {self.config.max_stage_attempts} attempts",
            )
        except LeaseLost as e:
            logger.warning(f"{self.worker_id}: {e}")
            return None
        except PipelineError as e:
            if e.fatal:
                return self._fail(holder["lease"], e.describe())
            logger.error(f"Job {job.job_id} {stage_name} raised {e.describe()}")
            return self._unexpected(holder["lease"], stage_name, e)
        except Exception as e:
            logger.error(f"Job {job.job_id} {stage_name} raised unexpectedly: {e}", exc_info=True)
            return self._unexpected(holder["lease"], stage_name, e)

        lease = holder["lease"]
        # A committed claim cannot be cancelled
        if outcome.next_stage != JobStage.COMMITTED and self.jobs.is_cancel_requested(job.job_id):
            return self._cancel(lease)

        try:
            return self.jobs.transition(lease, outcome.next_stage, **outcome.updates)
        except LeaseLost as e:
            logger.warning(f"{self.worker_id}: {e}")
            if outcome.next_stage == JobStage.COMMITTED:
                self._withdraw_orphan(lease.job_id, outcome.updates["committed_claim_id"])
            return None

    def _withdraw_orphan(self, job_id: str, claim_id: str):
        """Retire a claim whose job was terminated before it could be marked committed."""
        job = self.jobs.get(job_id)
        if job is None or not job.is_terminal or job.stage == JobStage.COMMITTED:
            # Still in flight: the next lease holder re-commits idempotently
            return
        self.handlers.committer.withdraw(claim_id, f"job {job_id} ended as {job.stage.value}")

    def _unexpected(self, lease: Lease, stage_name: str, error: Exception) -> Optional[Job]:
        """Count the failed attempt; fail the job once the ceiling is reached."""
        text = f"{type(error).__name__}: {error}"
        current = self.jobs.get(lease.job_id)
        used = current.attempts.get(stage_name, 0) if current else 0
        if used >= self.config.max_stage_attempts:
            return self._fail(lease, text, f"{stage_name} failed after {used} attempts")
        try:
            # Same stage: records the error and frees the job for another attempt
            return self.jobs.transition(lease, lease.stage, last_error=text)
        except LeaseLost as e:
            logger.warning(f"{self.worker_id}: {e}")
            return None


class WorkerPool:
    """
    Runs dispatcher loops on a thread pool.

    Each worker gets its own dispatcher (and worker id) and polls the store
    until stop() is called.

    Usage:
        pool = WorkerPool(make_dispatcher, workers=4)
        pool.start()
        ...
        pool.stop()
    """

    def __init__(
        self,
        dispatcher_factory: Callable[[str], StageDispatcher],
        workers: int = 2,
        poll_interval: float = 0.5,
        stage_groups: Optional[Sequence[Sequence[JobStage]]] = None,
    ):
        self.dispatcher_factory = dispatcher_factory
        self.workers = workers
        self.poll_interval = poll_interval
        self.stage_groups: List[Sequence[JobStage]] = list(stage_groups or [ACTIONABLE_STAGES])
        self._stop = threading.Event()
        self._executor: Optional[ThreadPoolExecutor] = None
        self._futures = []

    def _loop(self, worker_id: str, stages: Sequence[JobStage]):
        dispatcher = self.dispatcher_factory(worker_id)
        logger.info(f"{worker_id} started for {len(stages)} stage(s)")
        while not self._stop.is_set():
            try:
                job = dispatcher.run_once(stages)
            except Exception:
                logger.exception(f"{worker_id} loop error")
                job = None
            if job is None:
                self._stop.wait(self.poll_interval)
        logger.info(f"{worker_id} stopped")

    def start(self):
        total = self.workers * len(self.stage_groups)
        self._executor = ThreadPoolExecutor(max_workers=total, thread_name_prefix="intake-worker")
        for group_index, stages in enumerate(self.stage_groups):
            for i in range(self.workers):
                worker_id = f"worker-{group_index}-{i}"
                self._futures.append(self._executor.submit(self._loop, worker_id, stages))
        logger.info(f"Worker pool started with {total} worker(s)")

    def stop(self, wait: bool = True):
        self._stop.set()
        if self._executor is not None:
            self._executor.shutdown(wait=wait)
            self._executor = None
        self._futures = []

    @property
    def running(self) -> bool:
        return self._executor is not None and not self._stop.is_set()
