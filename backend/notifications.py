"""
Best-effort notification delivery
Single sends and a settle-all fan-out that records one outcome per recipient
"""
import logging
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass
from typing import List, Optional, Sequence

from database import NotificationOutcome
from .exceptions import NotificationFailure

logger = logging.getLogger(__name__)


@dataclass
class NotificationJob:
    """A rendered message plus the bookkeeping needed for its outcome"""
    to: str
    passenger: str
    booking_ref: str
    subject: str
    html: str
    text: str


class NotificationDispatcher:
    """Delivers notification jobs through an email sender"""

    def __init__(self, sender, max_workers: int = 8):
        self.sender = sender
        self.max_workers = max(1, max_workers)

    def _deliver(self, job: NotificationJob) -> NotificationOutcome:
        try:
            result = self.sender.send(job.to, job.subject, job.html, job.text)
            if not result.success:
                raise NotificationFailure(result.error or 'Unknown error')
        except Exception as e:
            logger.warning("Notification to %s for booking %s failed: %s", job.to, job.booking_ref, e)
            return NotificationOutcome(
                email=job.to,
                passenger=job.passenger,
                booking_ref=job.booking_ref,
                status=NotificationOutcome.FAILED,
                error=str(e) or e.__class__.__name__
            )

        logger.info("Notification sent to %s for booking %s (%s)", job.to, job.booking_ref, result.message_id)
        return NotificationOutcome(
            email=job.to,
            passenger=job.passenger,
            booking_ref=job.booking_ref,
            status=NotificationOutcome.SENT
        )

    def send_one(self, job: Optional[NotificationJob]) -> Optional[NotificationOutcome]:
        """Deliver a single job inline; failures become a failed outcome"""
        if job is None:
            return None
        return self._deliver(job)

    def dispatch_all(self, jobs: Sequence[NotificationJob]) -> List[NotificationOutcome]:
        """
        Send every job concurrently and wait for all of them to settle

        One failing or slow recipient never cancels the others. Outcomes are
        returned in job order.
        """
        if not jobs:
            return []

        workers = min(self.max_workers, len(jobs))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix='notify') as executor:
            futures = [executor.submit(self._deliver, job) for job in jobs]
            wait(futures)

        return [future.result() for future in futures]


def count_sent(outcomes: Sequence[NotificationOutcome]) -> int:
    return sum(1 for outcome in outcomes if outcome.sent)
