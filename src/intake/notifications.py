"""
Notification collaborator adapters.

The pipeline emits an event when a job reaches a terminal state and when a
pending review breaches its SLA. Delivery is best effort: a failing
notifier is logged and never blocks a state transition.
"""

import logging
import threading
from datetime import datetime
from typing import List, Optional, Protocol

from pydantic import BaseModel, Field

from .schema import utcnow

logger = logging.getLogger(__name__)

OUTCOME_COMMITTED = "committed"
OUTCOME_REJECTED = "rejected"
OUTCOME_FAILED = "failed"
OUTCOME_REVIEW_TIMEOUT = "review_timeout"


class NotificationEvent(BaseModel):
    """Event sent to the notification collaborator."""
    job_id: str
    outcome: str = Field(description="committed, rejected, failed or review_timeout")
    detail: Optional[str] = None
    claim_id: Optional[str] = None
    occurred_at: datetime = Field(default_factory=utcnow)


class Notifier(Protocol):
    def notify(self, event: NotificationEvent) -> None:
        ...


class LoggingNotifier:
    """Writes events to the application log."""

    def notify(self, event: NotificationEvent) -> None:
        suffix = f" ({event.detail})" if event.detail else ""
        logger.info(f"[notify] job {event.job_id}: {event.outcome}{suffix}")


class CollectingNotifier:
    """Keeps events in memory; used by tests and the CLI summary."""

    def __init__(self):
        self.events: List[NotificationEvent] = []
        self._lock = threading.Lock()

    def notify(self, event: NotificationEvent) -> None:
        with self._lock:
            self.events.append(event)

    def for_job(self, job_id: str) -> List[NotificationEvent]:
        with self._lock:
            return [e for e in self.events if e.job_id == job_id]

    def outcomes(self, job_id: str) -> List[str]:
        return [e.outcome for e in self.for_job(job_id)]


def send(notifier: Optional[Notifier], event: NotificationEvent) -> None:
    """Deliver an event, logging (not raising) delivery failures."""
    if notifier is None:
        return
    try:
        notifier.notify(event)
    except Exception:
        logger.exception(f"Notification delivery failed for job {event.job_id} ({event.outcome})")
