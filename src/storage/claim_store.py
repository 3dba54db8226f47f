"""
SQLite-based committed claim storage.

Holds the durable claim records produced by the commit coordinator. The
uniqueness of (claim_number, region_code) among non-rejected claims is
enforced by a partial unique index, and every geometry change is appended
to a version history rather than overwriting the previous one.
"""

import json
import logging
import sqlite3
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from pydantic_core import to_jsonable_python

from ..intake.errors import CommitConflict
from ..intake.schema import CommittedClaim
from .base import SQLiteStore, format_ts

logger = logging.getLogger(__name__)


@dataclass
class ClaimVersion:
    """One entry in a claim's geometry history."""
    claim_id: str
    version: int
    geometry: Optional[dict]
    area_ha: Optional[float]
    recorded_at: str
    note: Optional[str] = None


def _json(value: Any) -> Optional[str]:
    return json.dumps(to_jsonable_python(value)) if value is not None else None


class ClaimStore(SQLiteStore):
    """
    SQLite-based storage for committed forest-rights claims.

    Usage:
        store = ClaimStore(db_path)

        # Idempotent commit keyed by job id
        claim, created = store.commit(claim)

        # Retrieve
        claim = store.get(claim_id)
        active = store.list_active("MP")

        # Geometry history
        store.add_version(claim_id, new_geometry, area_ha=2.1, note="resurvey")
        versions = store.history(claim_id)
    """

    def _init_db(self):
        """Create tables if they don't exist."""
        with self._get_connection() as conn:
            conn.execute("PRAGMA journal_mode=WAL")
            conn.execute("""
                CREATE TABLE IF NOT EXISTS claims (
                    claim_id TEXT PRIMARY KEY,
                    job_id TEXT NOT NULL UNIQUE,
                    claim_number TEXT NOT NULL,
                    region_code TEXT NOT NULL,
                    patta_holder TEXT,
                    claim_type TEXT NOT NULL,

                    -- Location (JSON)
                    hierarchy TEXT,
                    geometry TEXT,
                    centroid TEXT,
                    area_ha REAL,

                    version INTEGER NOT NULL DEFAULT 1,
                    status TEXT NOT NULL DEFAULT 'active',
                    approved_by TEXT,
                    notes TEXT,
                    committed_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS claim_versions (
                    claim_id TEXT NOT NULL,
                    version INTEGER NOT NULL,
                    geometry TEXT,
                    area_ha REAL,
                    recorded_at TEXT NOT NULL,
                    note TEXT,
                    PRIMARY KEY (claim_id, version)
                )
            """)

            # One live claim per (claim_number, region_code)
            conn.execute("""
                CREATE UNIQUE INDEX IF NOT EXISTS idx_claims_number_region
                ON claims(claim_number, region_code) WHERE status != 'rejected'
            """)
            conn.execute("CREATE INDEX IF NOT EXISTS idx_claims_region ON claims(region_code)")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_claims_status ON claims(status)")
            conn.commit()

    def _row_to_claim(self, row: sqlite3.Row) -> CommittedClaim:
        """Convert a database row to CommittedClaim."""
        return CommittedClaim(
            claim_id=row["claim_id"],
            job_id=row["job_id"],
            claim_number=row["claim_number"],
            region_code=row["region_code"],
            patta_holder=row["patta_holder"],
            claim_type=row["claim_type"],
            hierarchy=json.loads(row["hierarchy"]) if row["hierarchy"] else None,
            geometry=json.loads(row["geometry"]) if row["geometry"] else None,
            centroid=json.loads(row["centroid"]) if row["centroid"] else None,
            area_ha=row["area_ha"],
            version=row["version"],
            status=row["status"],
            approved_by=row["approved_by"],
            committed_at=row["committed_at"],
        )

    # ------------------------------------------------------------------
    # Commit
    # ------------------------------------------------------------------

    def commit(self, claim: CommittedClaim) -> Tuple[CommittedClaim, bool]:
        """
        Insert a claim, idempotently per job id.

        Runs inside an immediate transaction so the existence check, the
        uniqueness check and the insert are atomic.

        Returns:
            (stored claim, True if newly inserted)

        Raises:
            CommitConflict: another job holds the same (claim_number, region_code)
        """
        now = format_ts(claim.committed_at)
        with self._get_connection() as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                row = conn.execute("SELECT * FROM claims WHERE job_id = ?", (claim.job_id,)).fetchone()
                if row:
                    conn.rollback()
                    existing = self._row_to_claim(row)
                    if existing.content_key() != claim.content_key():
                        logger.warning(
                            f"Job {claim.job_id} re-committed with different content; "
                            f"keeping {existing.claim_id} v{existing.version}"
                        )
                    return existing, False

                try:
                    conn.execute(
                        """
                        INSERT INTO claims (
                            claim_id, job_id, claim_number, region_code, patta_holder, claim_type,
                            hierarchy, geometry, centroid, area_ha,
                            version, status, approved_by, committed_at, updated_at
                        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                        """,
                        (
                            claim.claim_id, claim.job_id, claim.claim_number, claim.region_code,
                            claim.patta_holder, claim.claim_type.value,
                            _json(claim.hierarchy), _json(claim.geometry), _json(claim.centroid), claim.area_ha,
                            claim.version, claim.status, claim.approved_by, now, now,
                        ),
                    )
                except sqlite3.IntegrityError:
                    holder = conn.execute(
                        """
                        SELECT claim_id FROM claims
                        WHERE claim_number = ? AND region_code = ? AND status != 'rejected'
                        """,
                        (claim.claim_number, claim.region_code),
                    ).fetchone()
                    conn.rollback()
                    raise CommitConflict(
                        claim.claim_number, claim.region_code, holder["claim_id"] if holder else None
                    )

                conn.execute(
                    """
                    INSERT INTO claim_versions (claim_id, version, geometry, area_ha, recorded_at, note)
                    VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    (claim.claim_id, claim.version, _json(claim.geometry), claim.area_ha, now, "initial commit"),
                )
                conn.commit()
            except CommitConflict:
                raise
            except Exception:
                conn.rollback()
                raise

        logger.info(f"Committed claim {claim.claim_id} ({claim.claim_number}, {claim.region_code})")
        return claim, True

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, claim_id: str) -> Optional[CommittedClaim]:
        """
        Retrieve a claim by ID.

        Returns:
            CommittedClaim or None if not found
        """
        with self._get_connection() as conn:
            row = conn.execute("SELECT * FROM claims WHERE claim_id = ?", (claim_id,)).fetchone()
            if row:
                return self._row_to_claim(row)
        return None

    def get_by_job(self, job_id: str) -> Optional[CommittedClaim]:
        with self._get_connection() as conn:
            row = conn.execute("SELECT * FROM claims WHERE job_id = ?", (job_id,)).fetchone()
            if row:
                return self._row_to_claim(row)
        return None

    def list_active(self, region_code: Optional[str] = None) -> List[CommittedClaim]:
        """Non-rejected claims, optionally limited to one region."""
        query = "SELECT * FROM claims WHERE status != 'rejected'"
        params: List[Any] = []
        if region_code:
            query += " AND region_code = ?"
            params.append(region_code)
        query += " ORDER BY committed_at ASC"

        with self._get_connection() as conn:
            rows = conn.execute(query, params).fetchall()
            return [self._row_to_claim(row) for row in rows]

    def list_all(
        self,
        status: Optional[str] = None,
        region_code: Optional[str] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> List[CommittedClaim]:
        """
        List claims with optional filtering.

        Args:
            status: Filter by status
            region_code: Filter by region
            limit: Max results
            offset: Pagination offset
        """
        query = "SELECT * FROM claims WHERE 1=1"
        params: List[Any] = []

        if status:
            query += " AND status = ?"
            params.append(status)

        if region_code:
            query += " AND region_code = ?"
            params.append(region_code)

        query += " ORDER BY committed_at DESC LIMIT ? OFFSET ?"
        params.extend([limit, offset])

        with self._get_connection() as conn:
            rows = conn.execute(query, params).fetchall()
            return [self._row_to_claim(row) for row in rows]

    def count(self, status: Optional[str] = None) -> int:
        """Count claims, optionally by status."""
        with self._get_connection() as conn:
            if status:
                row = conn.execute("SELECT COUNT(*) FROM claims WHERE status = ?", (status,)).fetchone()
            else:
                row = conn.execute("SELECT COUNT(*) FROM claims").fetchone()
            return row[0]

    # ------------------------------------------------------------------
    # Updates
    # ------------------------------------------------------------------

    def add_version(
        self,
        claim_id: str,
        geometry: Dict[str, Any],
        area_ha: Optional[float] = None,
        note: Optional[str] = None,
    ) -> Optional[CommittedClaim]:
        """
        Record a new geometry for a claim, keeping every prior version.

        Returns:
            Updated claim, or None if not found
        """
        now = self._now()
        with self._get_connection() as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                row = conn.execute("SELECT version FROM claims WHERE claim_id = ?", (claim_id,)).fetchone()
                if row is None:
                    conn.rollback()
                    return None
                version = row["version"] + 1
                conn.execute(
                    """
                    INSERT INTO claim_versions (claim_id, version, geometry, area_ha, recorded_at, note)
                    VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    (claim_id, version, _json(geometry), area_ha, now, note),
                )
                conn.execute(
                    "UPDATE claims SET geometry = ?, area_ha = ?, version = ?, updated_at = ? WHERE claim_id = ?",
                    (_json(geometry), area_ha, version, now, claim_id),
                )
                conn.commit()
            except Exception:
                conn.rollback()
                raise
        logger.info(f"Claim {claim_id} geometry updated to v{version}")
        return self.get(claim_id)

    def history(self, claim_id: str) -> List[ClaimVersion]:
        """Geometry versions of a claim, oldest first."""
        with self._get_connection() as conn:
            rows = conn.execute(
                "SELECT * FROM claim_versions WHERE claim_id = ? ORDER BY version ASC", (claim_id,)
            ).fetchall()
        return [
            ClaimVersion(
                claim_id=row["claim_id"],
                version=row["version"],
                geometry=json.loads(row["geometry"]) if row["geometry"] else None,
                area_ha=row["area_ha"],
                recorded_at=row["recorded_at"],
                note=row["note"],
            )
            for row in rows
        ]

    def mark_rejected(self, claim_id: str, notes: Optional[str] = None) -> bool:
        """
        Retire a claim. Its (claim_number, region_code) becomes free again.

        Returns:
            True if updated, False if claim not found
        """
        with self._get_connection() as conn:
            result = conn.execute(
                "UPDATE claims SET status = 'rejected', notes = ?, updated_at = ? WHERE claim_id = ?",
                (notes, self._now(), claim_id),
            )
            conn.commit()
            return result.rowcount > 0
