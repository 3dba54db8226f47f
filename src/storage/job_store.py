"""
SQLite-backed job store.

Jobs are the unit of progress through the pipeline. Workers take
time-bounded leases on one job at a time; every write a worker makes is
conditional on still holding its lease token, so two workers can never
advance the same job concurrently. An expired lease makes the job
available again at the same stage.
"""

import json
import logging
import sqlite3
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional

from pydantic_core import to_jsonable_python

from ..intake.errors import InvalidTransition, JobNotFound, LeaseLost
from ..intake.schema import TERMINAL_STAGES, Job, JobStage, TerminalOutcome
from .base import SQLiteStore, format_ts

logger = logging.getLogger(__name__)

# Stages a worker may lease; REVIEW_PENDING waits for a reviewer instead
ACTIONABLE_STAGES = tuple(
    s for s in JobStage if s not in TERMINAL_STAGES and s != JobStage.REVIEW_PENDING
)

JSON_COLUMNS = frozenset({
    "attempts", "source_payload", "payload", "candidate", "issues",
    "flags", "duplicates", "conflicts",
})

JOB_COLUMNS = tuple(Job.model_fields)

CANCELLED_REASON = "cancelled"


@dataclass(frozen=True)
class Lease:
    """A worker's exclusive, time-bounded claim on one job."""
    job_id: str
    token: str
    owner: str
    stage: JobStage
    expires_at: datetime
    job: Job


@dataclass
class ReviewLogEntry:
    """One review cycle of a job."""
    job_id: str
    cycle: int
    entered_at: Optional[str]
    decided_at: str
    reviewer_id: str
    verdict: str
    reason: Optional[str] = None
    corrected_fields: Optional[dict] = None


def _encode(name: str, value: Any) -> Any:
    """Convert a Job field value to its column representation."""
    if name in JSON_COLUMNS:
        return json.dumps(to_jsonable_python(value))
    if isinstance(value, datetime):
        return format_ts(value)
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, bool):
        return int(value)
    return value


def _severity_rank(job: Job) -> int:
    severity = job.max_severity
    return severity.rank if severity else 0


class JobStore(SQLiteStore):
    """
    Persistent job arena with lease-based ownership.

    Usage:
        store = JobStore(db_path)
        store.create("job-1", payload_dict)

        lease = store.acquire_lease("worker-a", lease_seconds=30)
        if lease:
            store.transition(lease, JobStage.EXTRACTED, payload=payload)
    """

    def _init_db(self):
        """Create tables if they don't exist."""
        with self._get_connection() as conn:
            conn.execute("PRAGMA journal_mode=WAL")
            conn.execute("""
                CREATE TABLE IF NOT EXISTS jobs (
                    job_id TEXT PRIMARY KEY,
                    stage TEXT NOT NULL DEFAULT 'queued',
                    attempts TEXT NOT NULL DEFAULT '{}',

                    -- Payload and working projection (JSON)
                    source_payload TEXT NOT NULL DEFAULT '{}',
                    payload TEXT,
                    confidence REAL NOT NULL DEFAULT 0,
                    candidate TEXT,
                    issues TEXT NOT NULL DEFAULT '[]',
                    flags TEXT NOT NULL DEFAULT '[]',
                    duplicates TEXT NOT NULL DEFAULT '[]',
                    duplicate_probability REAL NOT NULL DEFAULT 0,
                    conflicts TEXT NOT NULL DEFAULT '[]',
                    severity_rank INTEGER NOT NULL DEFAULT 0,

                    -- Outcome
                    outcome TEXT,
                    outcome_reason TEXT,
                    last_error TEXT,
                    committed_claim_id TEXT,

                    -- Lease
                    lease_token TEXT,
                    lease_owner TEXT,
                    lease_expires_at TEXT,
                    cancel_requested INTEGER NOT NULL DEFAULT 0,

                    -- Review
                    review_override TEXT,
                    review_entered_at TEXT,
                    review_cycles INTEGER NOT NULL DEFAULT 0,
                    sla_notified INTEGER NOT NULL DEFAULT 0,

                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS review_log (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    job_id TEXT NOT NULL,
                    cycle INTEGER NOT NULL,
                    entered_at TEXT,
                    decided_at TEXT NOT NULL,
                    reviewer_id TEXT NOT NULL,
                    verdict TEXT NOT NULL,
                    reason TEXT,
                    corrected_fields TEXT
                )
            """)

            conn.execute("CREATE INDEX IF NOT EXISTS idx_jobs_stage ON jobs(stage)")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_jobs_created ON jobs(created_at)")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_review_log_job ON review_log(job_id)")
            conn.commit()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def _row_to_job(self, row: sqlite3.Row) -> Job:
        """Convert a database row to a Job."""
        data: Dict[str, Any] = {}
        for name in JOB_COLUMNS:
            value = row[name]
            if name in JSON_COLUMNS and value is not None:
                value = json.loads(value)
            data[name] = value
        return Job.model_validate(data)

    def get(self, job_id: str) -> Optional[Job]:
        """
        Retrieve a job by ID.

        Returns:
            Job or None if not found
        """
        with self._get_connection() as conn:
            row = conn.execute("SELECT * FROM jobs WHERE job_id = ?", (job_id,)).fetchone()
            if row:
                return self._row_to_job(row)
        return None

    def require(self, job_id: str) -> Job:
        """Retrieve a job or raise JobNotFound."""
        job = self.get(job_id)
        if job is None:
            raise JobNotFound(f"job {job_id} not found")
        return job

    def list_jobs(
        self,
        stage: Optional[JobStage] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> List[Job]:
        """List jobs, newest first, optionally filtered by stage."""
        query = "SELECT * FROM jobs WHERE 1=1"
        params: List[Any] = []

        if stage:
            query += " AND stage = ?"
            params.append(JobStage(stage).value)

        query += " ORDER BY created_at DESC LIMIT ? OFFSET ?"
        params.extend([limit, offset])

        with self._get_connection() as conn:
            rows = conn.execute(query, params).fetchall()
            return [self._row_to_job(row) for row in rows]

    def review_queue(self, limit: int = 100) -> List[Job]:
        """
        Jobs awaiting review, most urgent first.

        Ordered by ascending confidence, then highest conflict severity,
        then time entered into review.
        """
        with self._get_connection() as conn:
            rows = conn.execute(
                """
                SELECT * FROM jobs WHERE stage = ?
                ORDER BY confidence ASC, severity_rank DESC, review_entered_at ASC, job_id ASC
                LIMIT ?
                """,
                (JobStage.REVIEW_PENDING.value, limit),
            ).fetchall()
            return [self._row_to_job(row) for row in rows]

    def count_by_stage(self) -> Dict[str, int]:
        with self._get_connection() as conn:
            rows = conn.execute("SELECT stage, COUNT(*) FROM jobs GROUP BY stage").fetchall()
            return {row[0]: row[1] for row in rows}

    def has_actionable(self, stages: Optional[Iterable[JobStage]] = None) -> bool:
        """True if any job in the given stages exists, leased or not."""
        stage_values = [JobStage(s).value for s in (stages or ACTIONABLE_STAGES)]
        marks = ",".join("?" * len(stage_values))
        with self._get_connection() as conn:
            row = conn.execute(
                f"SELECT COUNT(*) FROM jobs WHERE stage IN ({marks})", stage_values
            ).fetchone()
            return row[0] > 0

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def create(self, job_id: str, source_payload: dict) -> Job:
        """
        Insert a new QUEUED job.

        Ingesting the same job id twice returns the existing job unchanged.
        """
        now = self.clock()
        job = Job(job_id=job_id, source_payload=source_payload, created_at=now, updated_at=now)
        values = [_encode(name, getattr(job, name)) for name in JOB_COLUMNS]
        columns = ", ".join(JOB_COLUMNS)
        marks = ", ".join("?" * len(JOB_COLUMNS))

        with self._get_connection() as conn:
            result = conn.execute(f"INSERT OR IGNORE INTO jobs ({columns}) VALUES ({marks})", values)
            conn.commit()

        if result.rowcount == 0:
            logger.info(f"Job {job_id} already ingested")
            return self.require(job_id)
        logger.info(f"Job {job_id} queued")
        return job

    # ------------------------------------------------------------------
    # Leases
    # ------------------------------------------------------------------

    def acquire_lease(
        self,
        owner: str,
        lease_seconds: float = 30.0,
        stages: Optional[Iterable[JobStage]] = None,
    ) -> Optional[Lease]:
        """
        Atomically lease the oldest available job.

        A job is available when it sits in an actionable stage and has no
        lease, or its lease has expired.

        Args:
            owner: Worker identifier, recorded for diagnostics
            lease_seconds: Lease duration
            stages: Restrict to these stages (default: all actionable)

        Returns:
            Lease, or None when nothing is available
        """
        stage_values = [JobStage(s).value for s in (stages or ACTIONABLE_STAGES)]
        if not stage_values:
            return None
        marks = ",".join("?" * len(stage_values))
        token = uuid.uuid4().hex
        now = self.clock()
        now_s = format_ts(now)
        expires = now + timedelta(seconds=lease_seconds)

        with self._get_connection() as conn:
            result = conn.execute(
                f"""
                UPDATE jobs
                SET lease_token = ?, lease_owner = ?, lease_expires_at = ?, updated_at = ?
                WHERE job_id = (
                    SELECT job_id FROM jobs
                    WHERE stage IN ({marks})
                      AND (lease_token IS NULL OR lease_expires_at <= ?)
                    ORDER BY created_at ASC, job_id ASC
                    LIMIT 1
                )
                AND (lease_token IS NULL OR lease_expires_at <= ?)
                """,
                [token, owner, format_ts(expires), now_s, *stage_values, now_s, now_s],
            )
            conn.commit()
            if result.rowcount == 0:
                return None
            row = conn.execute("SELECT * FROM jobs WHERE lease_token = ?", (token,)).fetchone()

        if row is None:
            return None
        job = self._row_to_job(row)
        logger.debug(f"{owner} leased job {job.job_id} at {job.stage.value}")
        return Lease(job.job_id, token, owner, job.stage, expires, job)

    def renew_lease(self, lease: Lease, lease_seconds: float = 30.0) -> Lease:
        """
        Extend a lease still held by its owner.

        Raises:
            LeaseLost: the lease was taken over by another worker
        """
        now = self.clock()
        expires = now + timedelta(seconds=lease_seconds)
        with self._get_connection() as conn:
            result = conn.execute(
                "UPDATE jobs SET lease_expires_at = ?, updated_at = ? WHERE job_id = ? AND lease_token = ?",
                (format_ts(expires), format_ts(now), lease.job_id, lease.token),
            )
            conn.commit()
        if result.rowcount == 0:
            raise LeaseLost(f"lease on job {lease.job_id} lost before renewal")
        return Lease(lease.job_id, lease.token, lease.owner, lease.stage, expires, lease.job)

    def release_lease(self, lease: Lease) -> bool:
        """Give up a lease without changing stage. No-op if already lost."""
        with self._get_connection() as conn:
            result = conn.execute(
                """
                UPDATE jobs SET lease_token = NULL, lease_owner = NULL, lease_expires_at = NULL, updated_at = ?
                WHERE job_id = ? AND lease_token = ?
                """,
                (self._now(), lease.job_id, lease.token),
            )
            conn.commit()
            return result.rowcount > 0

    def record_attempt(self, lease: Lease, stage_name: str) -> int:
        """
        Increment and return the persisted attempt count for a stage.

        Raises:
            LeaseLost: the lease was taken over by another worker
        """
        path = f"$.{stage_name}"
        with self._get_connection() as conn:
            result = conn.execute(
                """
                UPDATE jobs
                SET attempts = json_set(attempts, ?, COALESCE(json_extract(attempts, ?), 0) + 1),
                    updated_at = ?
                WHERE job_id = ? AND lease_token = ?
                """,
                (path, path, self._now(), lease.job_id, lease.token),
            )
            conn.commit()
            if result.rowcount == 0:
                raise LeaseLost(f"lease on job {lease.job_id} lost before attempt")
            row = conn.execute(
                "SELECT json_extract(attempts, ?) FROM jobs WHERE job_id = ?",
                (path, lease.job_id),
            ).fetchone()
            return int(row[0])

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def _assignments(self, to_stage: JobStage, updates: Dict[str, Any]) -> tuple:
        unknown = set(updates) - set(JOB_COLUMNS)
        if unknown:
            raise ValueError(f"Unknown job fields: {', '.join(sorted(unknown))}")

        sets = ["stage = ?", "updated_at = ?"]
        params: List[Any] = [to_stage.value, self._now()]
        for name, value in updates.items():
            sets.append(f"{name} = ?")
            params.append(_encode(name, value))

        if "conflicts" in updates:
            ranked = Job(job_id="-", conflicts=updates["conflicts"])
            sets.append("severity_rank = ?")
            params.append(_severity_rank(ranked))

        if to_stage == JobStage.REVIEW_PENDING:
            sets.extend(["review_entered_at = ?", "review_cycles = review_cycles + 1", "sla_notified = 0"])
            params.append(self._now())

        if to_stage in TERMINAL_STAGES and "outcome" not in updates:
            sets.append("outcome = ?")
            params.append(TerminalOutcome(to_stage.value).value)
        return sets, params

    def transition(self, lease: Lease, to_stage: JobStage, release: bool = True, **updates) -> Job:
        """
        Move a leased job to its next stage, writing stage-owned fields.

        The write only succeeds if the lease token and the expected current
        stage still match.

        Args:
            lease: Lease held by the calling worker
            to_stage: Next stage
            release: Clear the lease as part of the write
            **updates: Job fields to replace

        Raises:
            LeaseLost: the lease was taken over or the job moved on
        """
        to_stage = JobStage(to_stage)
        sets, params = self._assignments(to_stage, updates)
        if release:
            sets.extend(["lease_token = NULL", "lease_owner = NULL", "lease_expires_at = NULL"])

        with self._get_connection() as conn:
            result = conn.execute(
                f"UPDATE jobs SET {', '.join(sets)} WHERE job_id = ? AND lease_token = ? AND stage = ?",
                [*params, lease.job_id, lease.token, lease.stage.value],
            )
            conn.commit()
        if result.rowcount == 0:
            raise LeaseLost(f"lease on job {lease.job_id} lost before transition to {to_stage.value}")

        logger.info(f"Job {lease.job_id}: {lease.stage.value} -> {to_stage.value}")
        return self.require(lease.job_id)

    def fail(self, lease: Lease, error: str, reason: Optional[str] = None) -> Job:
        """Terminate a leased job as FAILED, preserving the triggering error."""
        job = self.transition(
            lease,
            JobStage.FAILED,
            outcome=TerminalOutcome.FAILED,
            outcome_reason=reason or error,
            last_error=error,
        )
        logger.error(f"Job {lease.job_id} failed at {lease.stage.value}: {error}")
        return job

    def transition_unleased(self, job_id: str, expected: JobStage, to_stage: JobStage, **updates) -> Job:
        """
        Move a job that no worker holds, e.g. on a reviewer decision.

        Raises:
            JobNotFound: no such job
            InvalidTransition: the job is not at the expected stage or is leased
        """
        to_stage = JobStage(to_stage)
        sets, params = self._assignments(to_stage, updates)
        with self._get_connection() as conn:
            result = conn.execute(
                f"""
                UPDATE jobs SET {', '.join(sets)}
                WHERE job_id = ? AND stage = ? AND (lease_token IS NULL OR lease_expires_at <= ?)
                """,
                [*params, job_id, JobStage(expected).value, self._now()],
            )
            conn.commit()
        if result.rowcount == 0:
            job = self.require(job_id)
            raise InvalidTransition(
                f"job {job_id} is at {job.stage.value}, expected {JobStage(expected).value}"
            )
        logger.info(f"Job {job_id}: {JobStage(expected).value} -> {to_stage.value}")
        return self.require(job_id)

    # ------------------------------------------------------------------
    # Cancellation
    # ------------------------------------------------------------------

    def request_cancel(self, job_id: str) -> Job:
        """
        Request cancellation of a job.

        Unleased jobs fail immediately with reason 'cancelled'; a leased job
        is failed by its worker at the next safe point.

        Raises:
            JobNotFound: no such job
            InvalidTransition: the job is already committed
        """
        job = self.require(job_id)
        if job.stage == JobStage.COMMITTED:
            raise InvalidTransition(f"job {job_id} is already committed")
        if job.is_terminal:
            return job

        now = self._now()
        terminal = [s.value for s in TERMINAL_STAGES]
        marks = ",".join("?" * len(terminal))
        with self._get_connection() as conn:
            conn.execute(
                "UPDATE jobs SET cancel_requested = 1, updated_at = ? WHERE job_id = ?",
                (now, job_id),
            )
            result = conn.execute(
                f"""
                UPDATE jobs
                SET stage = ?, outcome = ?, outcome_reason = ?, last_error = ?,
                    lease_token = NULL, lease_owner = NULL, lease_expires_at = NULL, updated_at = ?
                WHERE job_id = ? AND stage NOT IN ({marks})
                  AND (lease_token IS NULL OR lease_expires_at <= ?)
                """,
                [
                    JobStage.FAILED.value, TerminalOutcome.FAILED.value, CANCELLED_REASON,
                    "JobCancelled: cancellation requested", now, job_id, *terminal, now,
                ],
            )
            conn.commit()

        if result.rowcount:
            logger.info(f"Job {job_id} cancelled")
        else:
            logger.info(f"Job {job_id} is leased; cancellation deferred to its worker")
        return self.require(job_id)

    def is_cancel_requested(self, job_id: str) -> bool:
        with self._get_connection() as conn:
            row = conn.execute("SELECT cancel_requested FROM jobs WHERE job_id = ?", (job_id,)).fetchone()
            return bool(row and row[0])

    # ------------------------------------------------------------------
    # Review bookkeeping
    # ------------------------------------------------------------------

    def mark_sla_notified(self, job_id: str) -> bool:
        """Flag a pending job's SLA breach as reported. False if already reported."""
        with self._get_connection() as conn:
            result = conn.execute(
                "UPDATE jobs SET sla_notified = 1 WHERE job_id = ? AND stage = ? AND sla_notified = 0",
                (job_id, JobStage.REVIEW_PENDING.value),
            )
            conn.commit()
            return result.rowcount > 0

    def log_review(
        self,
        job: Job,
        reviewer_id: str,
        verdict: str,
        decided_at: datetime,
        reason: Optional[str] = None,
        corrected_fields: Optional[dict] = None,
    ) -> None:
        """Append a review cycle to the audit log."""
        with self._get_connection() as conn:
            conn.execute(
                """
                INSERT INTO review_log (
                    job_id, cycle, entered_at, decided_at, reviewer_id, verdict, reason, corrected_fields
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    job.job_id,
                    job.review_cycles,
                    format_ts(job.review_entered_at),
                    format_ts(decided_at),
                    reviewer_id,
                    verdict,
                    reason,
                    json.dumps(to_jsonable_python(corrected_fields)) if corrected_fields else None,
                ),
            )
            conn.commit()

    def review_history(self, job_id: str) -> List[ReviewLogEntry]:
        with self._get_connection() as conn:
            rows = conn.execute(
                "SELECT * FROM review_log WHERE job_id = ? ORDER BY id ASC", (job_id,)
            ).fetchall()
        return [
            ReviewLogEntry(
                job_id=row["job_id"],
                cycle=row["cycle"],
                entered_at=row["entered_at"],
                decided_at=row["decided_at"],
                reviewer_id=row["reviewer_id"],
                verdict=row["verdict"],
                reason=row["reason"],
                corrected_fields=json.loads(row["corrected_fields"]) if row["corrected_fields"] else None,
            )
            for row in rows
        ]
