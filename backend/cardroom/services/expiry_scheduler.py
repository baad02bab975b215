"""
Waitlist expiry job.

Polls each active room on an interval and moves overdue calledin/notified
entries to expired. Deadlines are policy constants, anchored on created_at
(calledin) or notified_at (notified); nothing per-entry is stored.

Uses an APScheduler BackgroundScheduler with one interval job per room. Jobs
live for the process lifetime only and must be re-armed after a restart by
whoever shows the room's waitlist.

Ticks are safe to overlap or repeat: the expired transition is guarded on the
status that was read, so a second tick for the same entry is a no-op.
"""
import logging
from datetime import datetime
from typing import Callable, List, Optional

from apscheduler.events import EVENT_JOB_ERROR, EVENT_JOB_MISSED
from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session

from cardroom.database import session_factory as default_session_factory
from cardroom.models.waitlist_entry import STATUS_CALLEDIN, STATUS_NOTIFIED
from cardroom.services.results import ErrorKind
from cardroom.services.status_manager import WaitlistStatusManager
from cardroom.services.waitlist_store import WaitlistStore
from cardroom.settings import WaitlistPolicy, get_policy
from cardroom.utils.waitlist_status import entry_deadline

logger = logging.getLogger(__name__)

JOB_ID_PREFIX = "waitlist-expiry"


def expiry_job_id(room_id: int) -> str:
    return f"{JOB_ID_PREFIX}:{room_id}"


def expire_overdue_entries(
    session: Session,
    room_id: int,
    policy: Optional[WaitlistPolicy] = None,
    now: Optional[datetime] = None,
) -> List[int]:
    """Expire every overdue calledin/notified entry in the room. Returns the ids actually expired."""
    policy = policy or get_policy()
    now = now or datetime.utcnow()
    store = WaitlistStore(session)

    try:
        candidates = store.entries_by_status(room_id, (STATUS_CALLEDIN, STATUS_NOTIFIED))
    except SQLAlchemyError:
        logger.exception("Error fetching entries for expiry check in room %s", room_id)
        return []

    overdue = []
    for entry in candidates:
        deadline = entry_deadline(entry, policy)
        if deadline is not None and now >= deadline:
            overdue.append(entry.id)

    if not overdue:
        return []

    status_manager = WaitlistStatusManager(session, policy)
    expired = []
    for entry_id in overdue:
        result = status_manager.expire_entry(entry_id, now=now)
        if result.success:
            expired.append(entry_id)
        elif result.kind == ErrorKind.INVALID_STATE:
            # Already moved on (seated, cancelled, or expired by an overlapping tick)
            logger.debug("Skipped expiring entry %s: %s", entry_id, result.error)
        else:
            logger.error("Failed to expire entry %s: %s", entry_id, result.error)

    logger.info("Expiry check for room %s: %d overdue, %d expired", room_id, len(overdue), len(expired))
    return expired


def _on_job_error(event):
    logger.error("Expiry job FAILED: job_id=%s error=%s", event.job_id, event.exception)
    if event.traceback:
        logger.error("Traceback for job %s:\n%s", event.job_id, event.traceback)


def _on_job_missed(event):
    logger.warning(
        "Expiry job MISSED: job_id=%s scheduled_run_time=%s",
        event.job_id,
        event.scheduled_run_time,
    )


class WaitlistExpiryScheduler:
    """Per-room interval jobs that run ``expire_overdue_entries``."""

    def __init__(
        self,
        session_factory: Optional[Callable[[], Session]] = None,
        policy: Optional[WaitlistPolicy] = None,
        scheduler: Optional[BackgroundScheduler] = None,
    ):
        self.session_factory = session_factory or default_session_factory()
        self.policy = policy or get_policy()
        self._scheduler = scheduler

    @property
    def scheduler(self) -> BackgroundScheduler:
        if self._scheduler is None:
            self._scheduler = BackgroundScheduler(
                timezone="UTC",
                job_defaults={
                    "coalesce": True,
                    "max_instances": 1,
                    "misfire_grace_time": self.policy.expiry_interval_seconds,
                },
            )
            self._scheduler.add_listener(_on_job_error, EVENT_JOB_ERROR)
            self._scheduler.add_listener(_on_job_missed, EVENT_JOB_MISSED)
        return self._scheduler

    def check_and_expire_entries(self, room_id: int, now: Optional[datetime] = None) -> List[int]:
        """One tick for one room, in a session of its own."""
        with self.session_factory() as session:
            return expire_overdue_entries(session, room_id, self.policy, now)

    def start_expiry_checking(self, room_id: int) -> Callable[[], None]:
        """Arm (or re-arm) the room's job. Returns a callable that stops it."""
        if not self.scheduler.running:
            self.scheduler.start()
            logger.info("Expiry scheduler started")

        self.scheduler.add_job(
            func=self.check_and_expire_entries,
            trigger=IntervalTrigger(seconds=self.policy.expiry_interval_seconds),
            args=[room_id],
            id=expiry_job_id(room_id),
            name=f"Expire stale waitlist entries (room {room_id})",
            replace_existing=True,
        )
        logger.info(
            "Scheduled job: %s (every %s seconds)", expiry_job_id(room_id), self.policy.expiry_interval_seconds
        )

        def stop() -> None:
            self.stop_expiry_checking(room_id)

        return stop

    def stop_expiry_checking(self, room_id: int) -> bool:
        if self._scheduler is None:
            return False
        try:
            self._scheduler.remove_job(expiry_job_id(room_id))
        except JobLookupError:
            return False
        logger.info("Removed job: %s", expiry_job_id(room_id))
        return True

    def is_running(self, room_id: int) -> bool:
        if self._scheduler is None:
            return False
        return self._scheduler.get_job(expiry_job_id(room_id)) is not None

    def active_rooms(self) -> List[int]:
        if self._scheduler is None:
            return []
        rooms = []
        for job in self._scheduler.get_jobs():
            if job.id.startswith(f"{JOB_ID_PREFIX}:"):
                rooms.append(int(job.id.split(":", 1)[1]))
        return sorted(rooms)

    def shutdown(self) -> None:
        if self._scheduler is not None and self._scheduler.running:
            self._scheduler.shutdown(wait=False)
            logger.info("Expiry scheduler shut down")
