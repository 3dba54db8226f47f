"""
Storage module for persisting jobs and committed claims.

Provides SQLite-based storage for:
- Intake jobs with lease-based worker ownership
- Review cycle audit log
- Committed claims with append-only geometry history
"""

from .base import SQLiteStore, format_ts
from .claim_store import ClaimStore, ClaimVersion
from .job_store import ACTIONABLE_STAGES, JobStore, Lease, ReviewLogEntry

__all__ = [
    "SQLiteStore",
    "format_ts",
    "ClaimStore",
    "ClaimVersion",
    "ACTIONABLE_STAGES",
    "JobStore",
    "Lease",
    "ReviewLogEntry",
]
