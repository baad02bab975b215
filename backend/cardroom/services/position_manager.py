"""
Waitlist ordering with fractional positions.

Each waiting entry of a game carries a float rank; lower ranks sort first.
New ranks are midpoints between neighbours, so inserting or moving an entry
rewrites only that entry's row. When repeated splitting leaves two adjacent
ranks closer than the configured epsilon, the whole game is rebalanced to
integral ranks 1..N and the move is recomputed.

Rank writes for moves are conditional on the rank read at the start of the
operation (compare-and-set), which narrows but does not close the window for
concurrent reorders. Anything that slips through shows up as a tie or an
out-of-gap rank and is repaired by the next rebalance.

None of the public methods raise: store errors are logged and reported as
``None`` / ``False``.
"""
import logging
from datetime import datetime
from typing import List, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session

from cardroom.models.waitlist_entry import STATUS_WAITING, WaitlistEntry
from cardroom.services.waitlist_store import WaitlistStore
from cardroom.settings import WaitlistPolicy, get_policy

logger = logging.getLogger(__name__)

UP = "up"
DOWN = "down"


class WaitlistPositionManager:
    def __init__(self, session: Session, policy: Optional[WaitlistPolicy] = None):
        self.store = WaitlistStore(session)
        self.policy = policy or get_policy()

    @property
    def epsilon(self) -> float:
        return self.policy.position_epsilon

    # ── inserts ──────────────────────────────────────────────────────────

    def next_end_position(self, game_id: int, exclude_id: Optional[int] = None) -> float:
        """Rank that sorts after every current waiting entry of the game."""
        last = self.store.max_waiting_position(game_id, exclude_id=exclude_id)
        return 1.0 if last is None else last + 1

    def add_to_end(
        self, game_id: int, player_id: int, room_id: int, notes: Optional[str] = None
    ) -> Optional[WaitlistEntry]:
        try:
            new_position = self.next_end_position(game_id)
            return self.store.create_entry(
                game_id=game_id,
                player_id=player_id,
                room_id=room_id,
                position=new_position,
                status=STATUS_WAITING,
                checked_in_at=datetime.utcnow(),
                notes=notes or None,
            )
        except SQLAlchemyError:
            logger.exception("add_to_end failed for game %s player %s", game_id, player_id)
            return None

    def _slot_neighbors(self, game_id: int, target_position: int) -> Tuple[Optional[float], Optional[float]]:
        """Ranks of the entries that would sit just before and just after queue place ``target_position``."""
        if target_position <= 1:
            head = self.store.waiting_positions_slice(game_id, offset=0, limit=1)
            return None, (head[0] if head else None)

        pair = self.store.waiting_positions_slice(game_id, offset=target_position - 2, limit=2)
        if len(pair) == 2:
            return pair[0], pair[1]
        if len(pair) == 1:
            return pair[0], None
        # Requested place is past the tail; append.
        return self.store.max_waiting_position(game_id), None

    def _slot_rank(self, before: Optional[float], after: Optional[float]) -> Optional[float]:
        """Rank for the gap between two neighbours, or None if the gap has collapsed."""
        if before is None and after is None:
            return 1.0
        if after is None:
            return before + 1
        if before is None:
            candidate = after / 2
            return candidate if after - candidate >= self.epsilon else None
        if after - before < self.epsilon:
            return None
        candidate = (before + after) / 2
        return candidate if before < candidate < after else None

    def insert_at_position(
        self,
        game_id: int,
        player_id: int,
        room_id: int,
        target_position: int,
        notes: Optional[str] = None,
    ) -> Optional[WaitlistEntry]:
        """Insert a new waiting entry so that it lands at 1-based queue place ``target_position``."""
        try:
            target = max(int(target_position), 1)
            before, after = self._slot_neighbors(game_id, target)
            new_position = self._slot_rank(before, after)
            if new_position is None:
                logger.info("Rank gap collapsed inserting into game %s at place %s; rebalancing", game_id, target)
                if not self.rebalance_positions(game_id):
                    return None
                before, after = self._slot_neighbors(game_id, target)
                new_position = self._slot_rank(before, after)
                if new_position is None:
                    return None

            return self.store.create_entry(
                game_id=game_id,
                player_id=player_id,
                room_id=room_id,
                position=new_position,
                status=STATUS_WAITING,
                checked_in_at=datetime.utcnow(),
                notes=notes or None,
            )
        except (SQLAlchemyError, TypeError, ValueError):
            logger.exception("insert_at_position failed for game %s player %s", game_id, player_id)
            return None

    # ── single-step moves ────────────────────────────────────────────────

    def _load_waiting(self, entry_id: int, action: str) -> Optional[WaitlistEntry]:
        entry = self.store.get_entry(entry_id)
        if entry is None:
            logger.warning("Entry %s not found, cannot %s", entry_id, action)
            return None
        if entry.status != STATUS_WAITING or entry.position is None:
            logger.warning("Entry %s is %s, cannot %s", entry_id, entry.status, action)
            return None
        return entry

    def _step_neighbors(self, game_id: int, current: float, direction: str) -> Tuple[Optional[float], Optional[float]]:
        """(displaced neighbour, the one beyond it) in the requested direction."""
        if direction == UP:
            neighbor = self.store.neighbor_above(game_id, current)
            beyond = self.store.neighbor_above(game_id, neighbor) if neighbor is not None else None
        else:
            neighbor = self.store.neighbor_below(game_id, current)
            beyond = self.store.neighbor_below(game_id, neighbor) if neighbor is not None else None
        return neighbor, beyond

    def _step_rank(self, neighbor: float, beyond: Optional[float], direction: str) -> float:
        if beyond is not None:
            return (neighbor + beyond) / 2
        return neighbor / 2 if direction == UP else neighbor + 1

    def _gaps_collapsed(self, current: float, neighbor: float, beyond: Optional[float], direction: str) -> bool:
        if abs(current - neighbor) < self.epsilon:
            return True
        if beyond is not None:
            return abs(neighbor - beyond) < self.epsilon
        # Halving toward zero at the head
        return direction == UP and neighbor / 2 < self.epsilon

    def _move_one(self, entry_id: int, direction: str) -> bool:
        action = f"move {direction}"
        entry = self._load_waiting(entry_id, action)
        if entry is None:
            return False
        game_id = entry.game_id
        current = entry.position

        if self.store.count_waiting_at(game_id, current, exclude_id=entry_id) > 0:
            logger.warning("Tied rank %s in game %s; rebalancing before %s", current, game_id, action)
            if not self.rebalance_positions(game_id):
                return False
            entry = self._load_waiting(entry_id, action)
            if entry is None:
                return False
            current = entry.position

        neighbor, beyond = self._step_neighbors(game_id, current, direction)
        if neighbor is None:
            # Already at the boundary
            return False

        # A tied neighbour would be skipped together with its twin
        neighbor_tied = self.store.count_waiting_at(game_id, neighbor) > 1
        if neighbor_tied or self._gaps_collapsed(current, neighbor, beyond, direction):
            if neighbor_tied:
                logger.warning("Tied rank %s in game %s; rebalancing before %s", neighbor, game_id, action)
            else:
                logger.info("Rank gap below %s in game %s; rebalancing before %s", self.epsilon, game_id, action)
            if not self.rebalance_positions(game_id):
                return False
            entry = self._load_waiting(entry_id, action)
            if entry is None:
                return False
            current = entry.position
            neighbor, beyond = self._step_neighbors(game_id, current, direction)
            if neighbor is None:
                return False

        new_position = self._step_rank(neighbor, beyond, direction)

        if direction == UP:
            moved_past = new_position < neighbor and (beyond is None or new_position > beyond)
        else:
            moved_past = new_position > neighbor and (beyond is None or new_position < beyond)
        if not moved_past:
            logger.warning(
                "Computed rank %s for entry %s does not pass neighbour %s; refusing %s",
                new_position,
                entry_id,
                neighbor,
                action,
            )
            return False

        if not self.store.compare_and_set_position(entry_id, current, new_position):
            logger.warning("Entry %s changed concurrently; %s not applied", entry_id, action)
            return False
        return True

    def move_up(self, entry_id: int) -> bool:
        try:
            return self._move_one(entry_id, UP)
        except SQLAlchemyError:
            logger.exception("move_up failed for entry %s", entry_id)
            return False

    def move_down(self, entry_id: int) -> bool:
        try:
            return self._move_one(entry_id, DOWN)
        except SQLAlchemyError:
            logger.exception("move_down failed for entry %s", entry_id)
            return False

    # ── jumps to the ends ────────────────────────────────────────────────

    def move_to_top(self, entry_id: int) -> bool:
        try:
            entry = self._load_waiting(entry_id, "move to top")
            if entry is None:
                return False
            game_id = entry.game_id
            top = self.store.min_waiting_position(game_id, exclude_id=entry_id)
            if top is None or entry.position < top:
                return True

            if top / 2 < self.epsilon:
                logger.info("Head rank %s too close to zero in game %s; rebalancing", top, game_id)
                if not self.rebalance_positions(game_id):
                    return False
                entry = self._load_waiting(entry_id, "move to top")
                if entry is None:
                    return False
                top = self.store.min_waiting_position(game_id, exclude_id=entry_id)
                if top is None or entry.position < top:
                    return True

            return self.store.compare_and_set_position(entry_id, entry.position, top / 2)
        except SQLAlchemyError:
            logger.exception("move_to_top failed for entry %s", entry_id)
            return False

    def move_to_bottom(self, entry_id: int) -> bool:
        try:
            entry = self._load_waiting(entry_id, "move to bottom")
            if entry is None:
                return False
            bottom = self.store.max_waiting_position(entry.game_id, exclude_id=entry_id)
            if bottom is None or entry.position > bottom:
                return True
            return self.store.compare_and_set_position(entry_id, entry.position, bottom + 1)
        except SQLAlchemyError:
            logger.exception("move_to_bottom failed for entry %s", entry_id)
            return False

    # ── maintenance & queries ────────────────────────────────────────────

    def rebalance_positions(self, game_id: int) -> bool:
        """Reassign ranks 1..N to the game's waiting entries, preserving order."""
        try:
            entries = self.store.waiting_entries(game_id)
            plan: List[Tuple[int, float]] = [(e.id, float(index + 1)) for index, e in enumerate(entries)]
            written = 0
            for entry_id, new_position in plan:
                if self.store.set_position(entry_id, new_position):
                    written += 1
                else:
                    logger.info("Entry %s left waiting during rebalance; rank kept", entry_id)
            logger.info("Rebalanced %d of %d waiting entries for game %s", written, len(plan), game_id)
            return True
        except SQLAlchemyError:
            logger.exception("rebalance_positions failed for game %s", game_id)
            return False

    def get_position(self, entry_id: int) -> Optional[int]:
        """1-based place of a waiting entry in its game's queue."""
        try:
            entry = self.store.get_entry(entry_id)
            if entry is None or entry.status != STATUS_WAITING or entry.position is None:
                return None
            return self.store.count_waiting_before(entry.game_id, entry.position) + 1
        except SQLAlchemyError:
            logger.exception("get_position failed for entry %s", entry_id)
            return None

    def can_move_up(self, entry_id: int) -> bool:
        try:
            entry = self.store.get_entry(entry_id)
            if entry is None or entry.status != STATUS_WAITING or entry.position is None:
                return False
            return self.store.neighbor_above(entry.game_id, entry.position) is not None
        except SQLAlchemyError:
            logger.exception("can_move_up failed for entry %s", entry_id)
            return False

    def can_move_down(self, entry_id: int) -> bool:
        try:
            entry = self.store.get_entry(entry_id)
            if entry is None or entry.status != STATUS_WAITING or entry.position is None:
                return False
            return self.store.neighbor_below(entry.game_id, entry.position) is not None
        except SQLAlchemyError:
            logger.exception("can_move_down failed for entry %s", entry_id)
            return False

    def next_waiting_entry(self, game_id: int, room_id: Optional[int] = None) -> Optional[WaitlistEntry]:
        """Front of the game's queue (lowest rank)."""
        try:
            entries = self.store.waiting_entries(game_id, room_id=room_id)
            return entries[0] if entries else None
        except SQLAlchemyError:
            logger.exception("next_waiting_entry failed for game %s", game_id)
            return None
