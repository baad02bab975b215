"""
Seat assignment: bridges waitlist entries to physical seats.

A seat is free when its table's open session has no occupancy record
(PlayerSession with end_time NULL) for that seat number.

Seating is two writes in separate commits: create the occupancy record, then
move the entry to seated. If the second write fails, the just-created open
occupancy record is deleted again (compensating rollback), so a failed
assignment never leaves a seat held.

Every public operation returns a value; none raise for expected failures.
"""
import logging
from datetime import datetime
from typing import List, Optional, Set

from sqlalchemy import delete
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from cardroom.models.game_table import GameTable
from cardroom.models.player import Player
from cardroom.models.player_session import PlayerSession
from cardroom.models.table_session import TableSession
from cardroom.models.waitlist_entry import ACTIVE_STATUSES
from cardroom.services.position_manager import WaitlistPositionManager
from cardroom.services.results import (
    AssignmentResult,
    ErrorKind,
    SeatCandidate,
    SeatedPlayer,
    TableOccupancy,
)
from cardroom.services.status_manager import WaitlistStatusManager
from cardroom.settings import WaitlistPolicy, get_policy

logger = logging.getLogger(__name__)


class WaitlistTableIntegration:
    def __init__(self, session: Session, policy: Optional[WaitlistPolicy] = None):
        self.session = session
        self.policy = policy or get_policy()
        self.status_manager = WaitlistStatusManager(session, self.policy)
        self.positions = WaitlistPositionManager(session, self.policy)

    # ── occupancy reads ──────────────────────────────────────────────────

    def _open_table_session(self, table_id: int) -> Optional[TableSession]:
        return self.session.exec(
            select(TableSession)
            .where(TableSession.table_id == table_id, TableSession.end_time.is_(None))
            .order_by(TableSession.start_time.desc(), TableSession.id.desc())
        ).first()

    def _occupied_seats(self, table_session_id: int) -> Set[int]:
        rows = self.session.exec(
            select(PlayerSession).where(
                PlayerSession.table_session_id == table_session_id,
                PlayerSession.end_time.is_(None),
            )
        ).all()
        return {ps.seat_number for ps in rows}

    def get_available_seats(self, table_id: int) -> List[int]:
        try:
            table = self.session.get(GameTable, table_id)
            if table is None:
                logger.warning("Table %s not found", table_id)
                return []
            all_seats = list(range(1, table.seat_count + 1))
            table_session = self._open_table_session(table_id)
            if table_session is None:
                # No open session, so nothing is occupied
                return all_seats
            occupied = self._occupied_seats(table_session.id)
            return [seat for seat in all_seats if seat not in occupied]
        except SQLAlchemyError:
            logger.exception("Error getting available seats for table %s", table_id)
            return []

    def is_seat_available(self, table_id: int, seat_number: int) -> bool:
        try:
            table = self.session.get(GameTable, table_id)
            if table is None or not 1 <= seat_number <= table.seat_count:
                return False
            table_session = self._open_table_session(table_id)
            if table_session is None:
                return False
            existing = self.session.exec(
                select(PlayerSession).where(
                    PlayerSession.table_session_id == table_session.id,
                    PlayerSession.seat_number == seat_number,
                    PlayerSession.end_time.is_(None),
                )
            ).first()
            return existing is None
        except SQLAlchemyError:
            logger.exception("Error checking seat %s on table %s", seat_number, table_id)
            return False

    def get_table_occupancy(self, table_id: int) -> Optional[TableOccupancy]:
        try:
            table = self.session.get(GameTable, table_id)
            if table is None:
                logger.warning("Table %s not found", table_id)
                return None

            table_session = self._open_table_session(table_id)
            if table_session is None:
                return TableOccupancy(
                    table_id=table_id,
                    total_seats=table.seat_count,
                    occupied_seats=0,
                    available_seats=table.seat_count,
                    players=[],
                )

            rows = self.session.exec(
                select(PlayerSession, Player)
                .join(Player, Player.id == PlayerSession.player_id, isouter=True)
                .where(
                    PlayerSession.table_session_id == table_session.id,
                    PlayerSession.end_time.is_(None),
                )
                .order_by(PlayerSession.seat_number)
            ).all()
        except SQLAlchemyError:
            logger.exception("Error getting occupancy for table %s", table_id)
            return None

        players = [
            SeatedPlayer(
                player_id=ps.player_id,
                alias=player.alias if player else None,
                seat_number=ps.seat_number,
                start_time=ps.start_time,
                player_session_id=ps.id,
            )
            for ps, player in rows
        ]
        return TableOccupancy(
            table_id=table_id,
            total_seats=table.seat_count,
            occupied_seats=len(players),
            available_seats=table.seat_count - len(players),
            players=players,
        )

    # ── seating ──────────────────────────────────────────────────────────

    def _rollback_player_session(self, table_session_id: int, seat_number: int, player_id: int) -> None:
        try:
            self.session.execute(
                delete(PlayerSession).where(
                    PlayerSession.table_session_id == table_session_id,
                    PlayerSession.seat_number == seat_number,
                    PlayerSession.player_id == player_id,
                    PlayerSession.end_time.is_(None),
                )
            )
            self.session.commit()
            logger.info(
                "Rolled back player session: table_session=%s seat=%s player=%s",
                table_session_id,
                seat_number,
                player_id,
            )
        except SQLAlchemyError:
            self.session.rollback()
            logger.exception(
                "Rollback of player session failed: table_session=%s seat=%s player=%s",
                table_session_id,
                seat_number,
                player_id,
            )

    def assign_player_to_table(
        self,
        entry_id: int,
        table_id: int,
        seat_number: int,
        assigned_by: str,
        now: Optional[datetime] = None,
    ) -> AssignmentResult:
        now = now or datetime.utcnow()
        try:
            entry = self.status_manager.get_entry(entry_id)
            if entry is None:
                return AssignmentResult.fail("Waitlist entry not found", ErrorKind.NOT_FOUND)
            if entry.status not in ACTIVE_STATUSES:
                return AssignmentResult.fail(
                    f"Entry cannot be seated from status {entry.status}", ErrorKind.INVALID_STATE
                )
            player_id = entry.player_id

            table = self.session.get(GameTable, table_id)
            if table is None:
                return AssignmentResult.fail("Table not found", ErrorKind.NOT_FOUND)

            table_session = self._open_table_session(table_id)
            if table_session is None:
                return AssignmentResult.fail("No active table session", ErrorKind.INVALID_STATE)
            table_session_id = table_session.id

            # Re-check right before writing; another assignment may have taken the seat
            if not self.is_seat_available(table_id, seat_number):
                return AssignmentResult.fail("Seat is not available", ErrorKind.INVALID_STATE)
        except SQLAlchemyError:
            logger.exception("Error preparing assignment of entry %s to table %s", entry_id, table_id)
            return AssignmentResult.fail("Failed to load assignment data", ErrorKind.STORE_FAILURE)

        player_session = PlayerSession(
            table_session_id=table_session_id,
            player_id=player_id,
            seat_number=seat_number,
            start_time=now,
        )
        try:
            self.session.add(player_session)
            self.session.commit()
            self.session.refresh(player_session)
        except SQLAlchemyError:
            self.session.rollback()
            logger.exception("Error creating player session for entry %s", entry_id)
            return AssignmentResult.fail("Failed to create player session", ErrorKind.STORE_FAILURE)

        result = self.status_manager.seat_entry(entry_id, now=now)
        if not result.success:
            logger.warning("Seating entry %s failed (%s); rolling back seat %s", entry_id, result.error, seat_number)
            self._rollback_player_session(table_session_id, seat_number, player_id)
            return AssignmentResult.fail(result.error, result.kind)

        if self.policy.cancel_other_entries_on_seat:
            cancelled = self.status_manager.cancel_other_active_entries(player_id, [entry_id], now=now)
            if cancelled:
                logger.info("Cancelled %d other waitlist entries for player %s", cancelled, player_id)

        logger.info(
            "Assigned entry %s (player %s) to table %s seat %s by %s",
            entry_id,
            player_id,
            table_id,
            seat_number,
            assigned_by,
        )
        return AssignmentResult(
            success=True,
            player_session_id=player_session.id,
            table_id=table_id,
            seat_number=seat_number,
            waitlist_entry_id=entry_id,
        )

    def remove_player_from_table(
        self,
        session_id: int,
        add_to_waitlist: bool = False,
        game_id: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> AssignmentResult:
        """End an occupancy record; optionally put the player back on the waitlist (best-effort)."""
        try:
            player_session = self.session.get(PlayerSession, session_id)
            if player_session is None:
                return AssignmentResult.fail("Player session not found", ErrorKind.NOT_FOUND)
            if player_session.end_time is not None:
                return AssignmentResult.fail("Player session already ended", ErrorKind.INVALID_STATE)

            player_session.end_time = now or datetime.utcnow()
            self.session.add(player_session)
            self.session.commit()
            self.session.refresh(player_session)
            table_session = self.session.get(TableSession, player_session.table_session_id)
        except SQLAlchemyError:
            self.session.rollback()
            logger.exception("Error ending player session %s", session_id)
            return AssignmentResult.fail("Failed to remove player from table", ErrorKind.STORE_FAILURE)

        result = AssignmentResult(
            success=True,
            player_session_id=player_session.id,
            table_id=table_session.table_id if table_session else None,
            seat_number=player_session.seat_number,
        )

        if add_to_waitlist:
            target_game = game_id or (table_session.game_id if table_session else None)
            if target_game is None or table_session is None:
                logger.warning("Cannot requeue player %s: no game for session %s", player_session.player_id, session_id)
                return result
            entry = self.positions.add_to_end(target_game, player_session.player_id, table_session.room_id)
            if entry is None:
                logger.error("Error adding player %s back to waitlist for game %s", player_session.player_id, target_game)
            else:
                result.waitlist_entry_id = entry.id

        return result

    # ── automatic seating ────────────────────────────────────────────────

    def find_next_available_seat(self, game_id: int) -> Optional[SeatCandidate]:
        """First-fit over the game's active tables that have an open session."""
        try:
            tables = self.session.exec(
                select(GameTable)
                .where(GameTable.game_id == game_id, GameTable.is_active == True)  # noqa: E712
                .order_by(GameTable.id)
            ).all()
            for table in tables:
                if self._open_table_session(table.id) is None:
                    continue
                seats = self.get_available_seats(table.id)
                if seats:
                    return SeatCandidate(table_id=table.id, seat_number=seats[0], table_name=table.name)
            return None
        except SQLAlchemyError:
            logger.exception("Error finding next available seat for game %s", game_id)
            return None

    def auto_assign_next_player(self, room_id: int, game_id: int, assigned_by: str) -> AssignmentResult:
        candidate = self.find_next_available_seat(game_id)
        if candidate is None:
            return AssignmentResult.fail("No available seats for this game", ErrorKind.INVALID_STATE)

        next_entry = self.positions.next_waiting_entry(game_id, room_id=room_id)
        if next_entry is None:
            return AssignmentResult.fail("No players waiting for this game", ErrorKind.INVALID_STATE)
        entry_id = next_entry.id
        player_id = next_entry.player_id

        result = self.assign_player_to_table(entry_id, candidate.table_id, candidate.seat_number, assigned_by)
        if not result.success:
            return result

        try:
            player = self.session.get(Player, player_id)
        except SQLAlchemyError:
            logger.exception("Error loading player %s", player_id)
            player = None
        result.assigned_player = (player.alias if player and player.alias else None) or "Unknown Player"
        return result
