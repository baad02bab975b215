"""
Waitlist store adapter.

Thin layer over a SQLModel Session exposing the reads and single-row writes
the waitlist services need. Every write commits on its own; nothing here spans
more than one statement, so callers must not assume atomicity across calls.

Store errors propagate as ``sqlalchemy.exc.SQLAlchemyError`` after the
session is rolled back, so the same session stays usable.
"""
from datetime import datetime
from typing import List, Optional, Sequence

from sqlalchemy import func, update
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from cardroom.models.waitlist_entry import STATUS_WAITING, WaitlistEntry


class WaitlistStore:
    def __init__(self, session: Session):
        self.session = session

    # ── reads ────────────────────────────────────────────────────────────

    def get_entry(self, entry_id: int) -> Optional[WaitlistEntry]:
        return self.session.get(WaitlistEntry, entry_id)

    def _waiting(self, game_id: int, exclude_id: Optional[int] = None):
        query = select(WaitlistEntry).where(
            WaitlistEntry.game_id == game_id,
            WaitlistEntry.status == STATUS_WAITING,
        )
        if exclude_id is not None:
            query = query.where(WaitlistEntry.id != exclude_id)
        return query

    def max_waiting_position(self, game_id: int, exclude_id: Optional[int] = None) -> Optional[float]:
        entry = self.session.exec(
            self._waiting(game_id, exclude_id).order_by(WaitlistEntry.position.desc()).limit(1)
        ).first()
        return entry.position if entry else None

    def min_waiting_position(self, game_id: int, exclude_id: Optional[int] = None) -> Optional[float]:
        entry = self.session.exec(
            self._waiting(game_id, exclude_id).order_by(WaitlistEntry.position.asc()).limit(1)
        ).first()
        return entry.position if entry else None

    def neighbor_above(self, game_id: int, position: float) -> Optional[float]:
        """Nearest waiting rank strictly smaller than ``position``."""
        entry = self.session.exec(
            self._waiting(game_id)
            .where(WaitlistEntry.position < position)
            .order_by(WaitlistEntry.position.desc())
            .limit(1)
        ).first()
        return entry.position if entry else None

    def neighbor_below(self, game_id: int, position: float) -> Optional[float]:
        """Nearest waiting rank strictly greater than ``position``."""
        entry = self.session.exec(
            self._waiting(game_id)
            .where(WaitlistEntry.position > position)
            .order_by(WaitlistEntry.position.asc())
            .limit(1)
        ).first()
        return entry.position if entry else None

    def waiting_positions_slice(self, game_id: int, offset: int, limit: int) -> List[float]:
        entries = self.session.exec(
            self._waiting(game_id).order_by(WaitlistEntry.position.asc()).offset(offset).limit(limit)
        ).all()
        return [e.position for e in entries]

    def waiting_entries(self, game_id: int, room_id: Optional[int] = None) -> List[WaitlistEntry]:
        query = self._waiting(game_id)
        if room_id is not None:
            query = query.where(WaitlistEntry.room_id == room_id)
        return list(self.session.exec(query.order_by(WaitlistEntry.position.asc(), WaitlistEntry.id.asc())).all())

    def count_waiting_before(self, game_id: int, position: float) -> int:
        count = self.session.exec(
            select(func.count())
            .select_from(WaitlistEntry)
            .where(
                WaitlistEntry.game_id == game_id,
                WaitlistEntry.status == STATUS_WAITING,
                WaitlistEntry.position < position,
            )
        ).one()
        return int(count)

    def count_waiting_at(self, game_id: int, position: float, exclude_id: Optional[int] = None) -> int:
        """Number of other waiting entries sharing ``position`` (ties are a rebalance trigger)."""
        query = (
            select(func.count())
            .select_from(WaitlistEntry)
            .where(
                WaitlistEntry.game_id == game_id,
                WaitlistEntry.status == STATUS_WAITING,
                WaitlistEntry.position == position,
            )
        )
        if exclude_id is not None:
            query = query.where(WaitlistEntry.id != exclude_id)
        return int(self.session.exec(query).one())

    def entries_by_status(self, room_id: int, statuses: Sequence[str]) -> List[WaitlistEntry]:
        return list(
            self.session.exec(
                select(WaitlistEntry)
                .where(WaitlistEntry.room_id == room_id, WaitlistEntry.status.in_(statuses))
                .order_by(WaitlistEntry.id)
            ).all()
        )

    # ── writes ───────────────────────────────────────────────────────────

    def _commit(self) -> None:
        try:
            self.session.commit()
        except SQLAlchemyError:
            self.session.rollback()
            raise

    def create_entry(self, **fields) -> WaitlistEntry:
        entry = WaitlistEntry(**fields)
        self.session.add(entry)
        self._commit()
        self.session.refresh(entry)
        return entry

    def set_position(self, entry_id: int, position: float) -> bool:
        """Write ``position`` only while the entry is still waiting; ranks freeze once it leaves."""
        result = self.session.execute(
            update(WaitlistEntry)
            .where(WaitlistEntry.id == entry_id, WaitlistEntry.status == STATUS_WAITING)
            .values(position=position)
        )
        self._commit()
        return result.rowcount == 1

    def compare_and_set_position(
        self, entry_id: int, expected: float, new_position: float, now: Optional[datetime] = None
    ) -> bool:
        """Write ``new_position`` only if the entry is still waiting at ``expected``."""
        result = self.session.execute(
            update(WaitlistEntry)
            .where(
                WaitlistEntry.id == entry_id,
                WaitlistEntry.status == STATUS_WAITING,
                WaitlistEntry.position == expected,
            )
            .values(position=new_position, updated_at=now or datetime.utcnow())
        )
        self._commit()
        return result.rowcount == 1

    def compare_and_set_status(self, entry_id: int, expected_status: str, values: dict) -> bool:
        """Apply ``values`` only if the entry still has ``expected_status``."""
        result = self.session.execute(
            update(WaitlistEntry)
            .where(WaitlistEntry.id == entry_id, WaitlistEntry.status == expected_status)
            .values(**values)
        )
        self._commit()
        return result.rowcount == 1
