"""
Waitlist entry status lifecycle.

    (new) ──► waiting ◄──────────────┐
    (new) ──► calledin ──► notified  │ back to waiting / rejoin
                 │            │      │
                 ├────────────┴──► seated      (terminal)
                 ├────────────┴──► expired     (rejoin only)
                 └─── + waiting ─► cancelled   (rejoin only)

Pure state machine with timestamp side effects; it never schedules anything
itself. Writes are guarded on the status that was read, so two callers racing
the same transition (e.g. overlapping expiry ticks) apply it exactly once.
"""
import logging
import math
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from cardroom.models.waitlist_entry import (
    ACTIVE_STATUSES,
    ALL_STATUSES,
    CANCELLED_BY_STAFF,
    CANCELLED_BY_SYSTEM,
    CANCELLED_BY_VALUES,
    STATUS_CALLEDIN,
    STATUS_CANCELLED,
    STATUS_EXPIRED,
    STATUS_NOTIFIED,
    STATUS_SEATED,
    STATUS_WAITING,
    WaitlistEntry,
)
from cardroom.services.position_manager import WaitlistPositionManager
from cardroom.services.results import ErrorKind, ExpiryWarning, StatusResult
from cardroom.services.waitlist_store import WaitlistStore
from cardroom.settings import WaitlistPolicy, get_policy
from cardroom.utils.waitlist_status import entry_deadline

logger = logging.getLogger(__name__)

VALID_TRANSITIONS: Dict[str, Tuple[str, ...]] = {
    STATUS_CALLEDIN: (STATUS_NOTIFIED, STATUS_WAITING, STATUS_CANCELLED, STATUS_EXPIRED, STATUS_SEATED),
    STATUS_NOTIFIED: (STATUS_WAITING, STATUS_CANCELLED, STATUS_EXPIRED, STATUS_SEATED),
    STATUS_WAITING: (STATUS_CANCELLED, STATUS_SEATED),
    STATUS_SEATED: (),
    STATUS_CANCELLED: (STATUS_WAITING,),
    STATUS_EXPIRED: (STATUS_WAITING,),
}


def validate_status_transition(current: Optional[str], new: str) -> bool:
    if not current:
        return False
    return new in VALID_TRANSITIONS.get(current, ())


class WaitlistStatusManager:
    def __init__(self, session: Session, policy: Optional[WaitlistPolicy] = None):
        self.session = session
        self.policy = policy or get_policy()
        self.store = WaitlistStore(session)
        self.positions = WaitlistPositionManager(session, self.policy)

    def get_entry(self, entry_id: int) -> Optional[WaitlistEntry]:
        try:
            return self.store.get_entry(entry_id)
        except SQLAlchemyError:
            logger.exception("Error getting entry %s", entry_id)
            return None

    def register_call_in(
        self, game_id: int, player_id: int, room_id: int, notes: Optional[str] = None
    ) -> Optional[WaitlistEntry]:
        """Create a remote (phone) reservation. It has no rank until the player checks in."""
        try:
            return self.store.create_entry(
                game_id=game_id,
                player_id=player_id,
                room_id=room_id,
                status=STATUS_CALLEDIN,
                position=None,
                notes=notes or None,
            )
        except SQLAlchemyError:
            logger.exception("Error creating called-in entry for game %s player %s", game_id, player_id)
            return None

    def update_status(
        self,
        entry_id: int,
        new_status: str,
        updated_by: str = CANCELLED_BY_STAFF,
        cancelled_by: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> StatusResult:
        """Move an entry to ``new_status`` applying that transition's side effects."""
        if new_status not in ALL_STATUSES:
            return StatusResult.fail(f"Unknown status '{new_status}'", ErrorKind.INVALID_STATE)

        now = now or datetime.utcnow()
        try:
            entry = self.store.get_entry(entry_id)
            if entry is None:
                return StatusResult.fail("Entry not found", ErrorKind.NOT_FOUND)

            current = entry.status
            if not validate_status_transition(current, new_status):
                return StatusResult.fail(
                    f"Invalid status transition from {current} to {new_status}", ErrorKind.INVALID_STATE
                )

            values = {"status": new_status, "updated_at": now}

            if new_status == STATUS_NOTIFIED:
                if entry.notified_at is None:
                    values["notified_at"] = now
            elif new_status == STATUS_WAITING:
                values["checked_in_at"] = now
                values["position"] = self.positions.next_end_position(entry.game_id, exclude_id=entry.id)
                if current in (STATUS_CANCELLED, STATUS_EXPIRED):
                    values["cancelled_at"] = None
                    values["cancelled_by"] = None
            elif new_status == STATUS_CANCELLED:
                who = cancelled_by or updated_by
                if who not in CANCELLED_BY_VALUES:
                    return StatusResult.fail(f"Invalid cancelled_by '{who}'", ErrorKind.INVALID_STATE)
                values["cancelled_at"] = now
                values["cancelled_by"] = who

            if not self.store.compare_and_set_status(entry_id, current, values):
                return StatusResult.fail(
                    f"Entry {entry_id} is no longer {current}; transition to {new_status} not applied",
                    ErrorKind.INVALID_STATE,
                )
        except SQLAlchemyError:
            logger.exception("Error updating waitlist entry %s to %s", entry_id, new_status)
            return StatusResult.fail("Failed to update entry", ErrorKind.STORE_FAILURE)

        logger.info("Waitlist entry %s: %s -> %s (by %s)", entry_id, current, new_status, updated_by)
        return StatusResult.ok()

    # Convenience wrappers

    def check_in_player(self, entry_id: int, now: Optional[datetime] = None) -> StatusResult:
        return self.update_status(entry_id, STATUS_WAITING, CANCELLED_BY_STAFF, now=now)

    def notify_player(self, entry_id: int, now: Optional[datetime] = None) -> StatusResult:
        return self.update_status(entry_id, STATUS_NOTIFIED, CANCELLED_BY_STAFF, now=now)

    def cancel_entry(
        self, entry_id: int, cancelled_by: str = CANCELLED_BY_STAFF, now: Optional[datetime] = None
    ) -> StatusResult:
        return self.update_status(entry_id, STATUS_CANCELLED, cancelled_by, cancelled_by=cancelled_by, now=now)

    def expire_entry(self, entry_id: int, now: Optional[datetime] = None) -> StatusResult:
        return self.update_status(entry_id, STATUS_EXPIRED, CANCELLED_BY_SYSTEM, now=now)

    def seat_entry(self, entry_id: int, now: Optional[datetime] = None) -> StatusResult:
        return self.update_status(entry_id, STATUS_SEATED, CANCELLED_BY_STAFF, now=now)

    def rejoin_entry(self, entry_id: int, now: Optional[datetime] = None) -> StatusResult:
        return self.update_status(entry_id, STATUS_WAITING, CANCELLED_BY_STAFF, now=now)

    def cancel_other_active_entries(
        self,
        player_id: int,
        keep_entry_ids: Iterable[int] = (),
        now: Optional[datetime] = None,
        cancelled_by: str = CANCELLED_BY_SYSTEM,
    ) -> int:
        """Cancel the player's active entries except ``keep_entry_ids``. Returns how many were cancelled."""
        keep = list(keep_entry_ids)
        try:
            query = select(WaitlistEntry).where(
                WaitlistEntry.player_id == player_id,
                WaitlistEntry.status.in_(ACTIVE_STATUSES),
            )
            if keep:
                query = query.where(WaitlistEntry.id.not_in(keep))
            others = self.session.exec(query.order_by(WaitlistEntry.id)).all()
            other_ids = [e.id for e in others]
        except SQLAlchemyError:
            logger.exception("Error loading other entries for player %s", player_id)
            return 0

        cancelled = 0
        for other_id in other_ids:
            result = self.cancel_entry(other_id, cancelled_by, now=now)
            if result.success:
                cancelled += 1
            else:
                logger.warning("Could not cancel entry %s: %s", other_id, result.error)
        return cancelled

    # Deadlines

    def calculate_remaining_minutes(self, entry: WaitlistEntry, now: Optional[datetime] = None) -> int:
        deadline = entry_deadline(entry, self.policy)
        if deadline is None:
            return 0
        remaining = (deadline - (now or datetime.utcnow())).total_seconds()
        return max(0, math.ceil(remaining / 60))

    def get_entries_needing_expiry_warning(
        self, room_id: int, warning_minutes: Optional[int] = None, now: Optional[datetime] = None
    ) -> List[ExpiryWarning]:
        """calledin/notified entries whose deadline falls within the warning lead time."""
        lead = self.policy.expiry_warning_minutes if warning_minutes is None else warning_minutes
        now = now or datetime.utcnow()
        try:
            entries = self.store.entries_by_status(room_id, (STATUS_CALLEDIN, STATUS_NOTIFIED))
        except SQLAlchemyError:
            logger.exception("Error fetching entries for expiry warnings in room %s", room_id)
            return []

        warnings = []
        for entry in entries:
            deadline = entry_deadline(entry, self.policy)
            if deadline is None:
                continue
            remaining = self.calculate_remaining_minutes(entry, now)
            if 0 < remaining <= lead:
                warnings.append(
                    ExpiryWarning(
                        entry_id=entry.id,
                        player_id=entry.player_id,
                        game_id=entry.game_id,
                        status=entry.status,
                        remaining_minutes=remaining,
                        deadline=deadline,
                    )
                )
        return warnings

    def get_recently_closed_entries(
        self, room_id: int, within_minutes: int = 60, now: Optional[datetime] = None
    ) -> List[WaitlistEntry]:
        """Cancelled/expired entries touched within the window, newest first."""
        cutoff = (now or datetime.utcnow()) - timedelta(minutes=within_minutes)
        try:
            return list(
                self.session.exec(
                    select(WaitlistEntry)
                    .where(
                        WaitlistEntry.room_id == room_id,
                        WaitlistEntry.status.in_((STATUS_CANCELLED, STATUS_EXPIRED)),
                        WaitlistEntry.updated_at >= cutoff,
                    )
                    .order_by(WaitlistEntry.updated_at.desc(), WaitlistEntry.id.desc())
                ).all()
            )
        except SQLAlchemyError:
            logger.exception("Error fetching closed entries for room %s", room_id)
            return []
