"""
Room waitlist endpoints: join, reorder, status changes, expiry, auto-assign.
Request validation and HTTP mapping only; all rules live in the services.
"""
import logging
from datetime import datetime
from typing import List, Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import BaseModel, Field
from sqlmodel import Session, select

from cardroom.database import get_session
from cardroom.models.game import Game
from cardroom.models.player import Player
from cardroom.models.room import Room
from cardroom.models.waitlist_entry import (
    ACTIVE_STATUSES,
    ALL_STATUSES,
    CANCELLED_BY_PLAYER,
    STATUS_CALLEDIN,
    STATUS_WAITING,
    WaitlistEntry,
)
from cardroom.services.expiry_scheduler import WaitlistExpiryScheduler, expire_overdue_entries
from cardroom.services.position_manager import WaitlistPositionManager
from cardroom.services.results import ErrorKind
from cardroom.services.seat_assignment import WaitlistTableIntegration
from cardroom.services.status_manager import WaitlistStatusManager
from cardroom.utils.waitlist_status import entry_deadline, get_status_config

logger = logging.getLogger(__name__)

router = APIRouter()


# ── Schemas ─────────────────────────────────────────────────────────────


class JoinWaitlistRequest(BaseModel):
    player_id: int
    game_ids: List[int] = Field(min_length=1)
    notes: Optional[str] = None
    entry_method: Literal["inperson", "calledin"] = "inperson"
    target_position: Optional[int] = Field(default=None, ge=1)
    keep_other_entries: bool = True


class UpdateStatusRequest(BaseModel):
    status: str
    cancelled_by: Optional[Literal["player", "staff", "system"]] = None


class AutoAssignRequest(BaseModel):
    game_id: int
    assigned_by: str = Field(min_length=1)


class WaitlistEntryRead(BaseModel):
    id: int
    room_id: int
    game_id: int
    player_id: int
    player_alias: Optional[str] = None
    status: str
    status_label: str
    position: Optional[float] = None
    queue_place: Optional[int] = None
    notes: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    notified_at: Optional[datetime] = None
    checked_in_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    cancelled_by: Optional[str] = None
    target_time: Optional[datetime] = None


class ExpiryWarningRead(BaseModel):
    entry_id: int
    player_id: int
    game_id: int
    status: str
    remaining_minutes: int
    deadline: datetime


class ExpiryProcessResponse(BaseModel):
    success: bool = True
    expired_entry_ids: List[int]
    warnings: List[ExpiryWarningRead]


class OperationResponse(BaseModel):
    success: bool = True
    message: Optional[str] = None


def _raise_for_failure(error: Optional[str], kind: Optional[ErrorKind]) -> None:
    status_code = 404 if kind == ErrorKind.NOT_FOUND else 400
    raise HTTPException(status_code=status_code, detail=error or "Operation failed")


def _get_room_or_404(session: Session, room_id: int) -> Room:
    room = session.get(Room, room_id)
    if not room:
        raise HTTPException(status_code=404, detail="Room not found")
    return room


def _get_entry_or_404(session: Session, room_id: int, entry_id: int) -> WaitlistEntry:
    entry = session.get(WaitlistEntry, entry_id)
    if not entry or entry.room_id != room_id:
        raise HTTPException(status_code=404, detail="Entry not found")
    return entry


def _entry_to_read(session: Session, entry: WaitlistEntry, queue_place: Optional[int] = None) -> WaitlistEntryRead:
    player = session.get(Player, entry.player_id)
    return WaitlistEntryRead(
        id=entry.id,
        room_id=entry.room_id,
        game_id=entry.game_id,
        player_id=entry.player_id,
        player_alias=player.alias if player else None,
        status=entry.status,
        status_label=get_status_config(entry.status).label,
        position=entry.position,
        queue_place=queue_place,
        notes=entry.notes,
        created_at=entry.created_at,
        updated_at=entry.updated_at,
        notified_at=entry.notified_at,
        checked_in_at=entry.checked_in_at,
        cancelled_at=entry.cancelled_at,
        cancelled_by=entry.cancelled_by,
        target_time=entry_deadline(entry),
    )


def get_expiry_scheduler(request: Request) -> WaitlistExpiryScheduler:
    return request.app.state.expiry_scheduler


# ── Join & listing ──────────────────────────────────────────────────────


@router.post("/rooms/{room_id}/waitlist/join", response_model=List[WaitlistEntryRead], status_code=201)
def join_waitlist(
    room_id: int,
    payload: JoinWaitlistRequest,
    session: Session = Depends(get_session),
) -> List[WaitlistEntryRead]:
    """Add a player to one or more games' waitlists in this room."""
    _get_room_or_404(session, room_id)
    if not session.get(Player, payload.player_id):
        raise HTTPException(status_code=404, detail="Player not found")

    games = session.exec(select(Game).where(Game.room_id == room_id, Game.id.in_(payload.game_ids))).all()
    if len(games) != len(set(payload.game_ids)):
        raise HTTPException(status_code=404, detail="One or more games not found")
    inactive = [g.name for g in games if not g.is_active]
    if inactive:
        raise HTTPException(status_code=400, detail=f"One or more games are inactive: {', '.join(inactive)}")

    positions = WaitlistPositionManager(session)
    statuses = WaitlistStatusManager(session)
    created = []
    for game_id in dict.fromkeys(payload.game_ids):
        if payload.entry_method == "calledin":
            entry = statuses.register_call_in(game_id, payload.player_id, room_id, payload.notes)
        elif payload.target_position is not None:
            entry = positions.insert_at_position(
                game_id, payload.player_id, room_id, payload.target_position, payload.notes
            )
        else:
            entry = positions.add_to_end(game_id, payload.player_id, room_id, payload.notes)
        if entry is None:
            raise HTTPException(status_code=500, detail=f"Failed to add player to waitlist for game {game_id}")
        created.append(entry)

    # Old entries go only once every new one exists
    if not payload.keep_other_entries:
        cancelled = statuses.cancel_other_active_entries(
            payload.player_id, [e.id for e in created], cancelled_by=CANCELLED_BY_PLAYER
        )
        logger.info("Player %s replaced %d active entries on join", payload.player_id, cancelled)

    return [_entry_to_read(session, e, positions.get_position(e.id)) for e in created]


@router.get("/rooms/{room_id}/waitlist", response_model=List[WaitlistEntryRead])
def list_active_waitlist(
    room_id: int,
    game_id: Optional[int] = Query(default=None),
    session: Session = Depends(get_session),
) -> List[WaitlistEntryRead]:
    """Active entries: waiting ones in queue order per game, then calledin/notified by age."""
    _get_room_or_404(session, room_id)
    query = select(WaitlistEntry).where(
        WaitlistEntry.room_id == room_id, WaitlistEntry.status.in_(ACTIVE_STATUSES)
    )
    if game_id is not None:
        query = query.where(WaitlistEntry.game_id == game_id)
    entries = session.exec(query).all()

    waiting = sorted(
        (e for e in entries if e.status == STATUS_WAITING),
        key=lambda e: (e.game_id, e.position if e.position is not None else float("inf"), e.id),
    )
    others = sorted((e for e in entries if e.status != STATUS_WAITING), key=lambda e: (e.created_at, e.id))

    result = []
    place_by_game = {}
    for entry in waiting:
        place_by_game[entry.game_id] = place_by_game.get(entry.game_id, 0) + 1
        result.append(_entry_to_read(session, entry, place_by_game[entry.game_id]))
    result.extend(_entry_to_read(session, e) for e in others)
    return result


@router.get("/rooms/{room_id}/waitlist/closed", response_model=List[WaitlistEntryRead])
def list_closed_entries(
    room_id: int,
    within_minutes: int = Query(default=60, ge=1),
    session: Session = Depends(get_session),
) -> List[WaitlistEntryRead]:
    """Cancelled/expired entries from the recent window, newest first."""
    _get_room_or_404(session, room_id)
    entries = WaitlistStatusManager(session).get_recently_closed_entries(room_id, within_minutes)
    return [_entry_to_read(session, e) for e in entries]


# ── Expiry ──────────────────────────────────────────────────────────────


@router.post("/rooms/{room_id}/waitlist/expiry/process", response_model=ExpiryProcessResponse)
def process_expiry(room_id: int, session: Session = Depends(get_session)) -> ExpiryProcessResponse:
    """Run one expiry pass now and report entries close to their deadline."""
    _get_room_or_404(session, room_id)
    statuses = WaitlistStatusManager(session)
    warnings = statuses.get_entries_needing_expiry_warning(room_id)
    expired = expire_overdue_entries(session, room_id, statuses.policy)
    return ExpiryProcessResponse(
        expired_entry_ids=expired,
        warnings=[ExpiryWarningRead(**w.__dict__) for w in warnings],
    )


@router.post("/rooms/{room_id}/waitlist/expiry/start", response_model=OperationResponse)
def start_expiry(
    room_id: int,
    session: Session = Depends(get_session),
    scheduler: WaitlistExpiryScheduler = Depends(get_expiry_scheduler),
) -> OperationResponse:
    _get_room_or_404(session, room_id)
    scheduler.start_expiry_checking(room_id)
    return OperationResponse(message=f"Expiry checking started for room {room_id}")


@router.post("/rooms/{room_id}/waitlist/expiry/stop", response_model=OperationResponse)
def stop_expiry(
    room_id: int,
    scheduler: WaitlistExpiryScheduler = Depends(get_expiry_scheduler),
) -> OperationResponse:
    stopped = scheduler.stop_expiry_checking(room_id)
    return OperationResponse(
        success=stopped,
        message="Expiry checking stopped" if stopped else "Expiry checking was not running",
    )


# ── Auto-assign ─────────────────────────────────────────────────────────


@router.post("/rooms/{room_id}/waitlist/auto-assign")
def auto_assign(room_id: int, payload: AutoAssignRequest, session: Session = Depends(get_session)):
    _get_room_or_404(session, room_id)
    result = WaitlistTableIntegration(session).auto_assign_next_player(room_id, payload.game_id, payload.assigned_by)
    if not result.success:
        _raise_for_failure(result.error or "Failed to auto-assign player", result.kind)
    return {
        "success": True,
        "message": f"Successfully assigned {result.assigned_player} to a table",
        "assigned_player": result.assigned_player,
        "table_id": result.table_id,
        "seat_number": result.seat_number,
        "player_session_id": result.player_session_id,
    }


# ── Reordering ──────────────────────────────────────────────────────────


@router.post("/rooms/{room_id}/waitlist/games/{game_id}/rebalance", response_model=OperationResponse)
def rebalance_game(room_id: int, game_id: int, session: Session = Depends(get_session)) -> OperationResponse:
    game = session.get(Game, game_id)
    if not game or game.room_id != room_id:
        raise HTTPException(status_code=404, detail="Game not found")
    if not WaitlistPositionManager(session).rebalance_positions(game_id):
        raise HTTPException(status_code=500, detail="Failed to rebalance positions")
    return OperationResponse(message="Positions rebalanced")


def _apply_move(session: Session, room_id: int, entry_id: int, mover: str, failure: str) -> OperationResponse:
    _get_entry_or_404(session, room_id, entry_id)
    manager = WaitlistPositionManager(session)
    if not getattr(manager, mover)(entry_id):
        raise HTTPException(status_code=400, detail=failure)
    return OperationResponse()


@router.post("/rooms/{room_id}/waitlist/{entry_id}/move-up", response_model=OperationResponse)
def move_entry_up(room_id: int, entry_id: int, session: Session = Depends(get_session)) -> OperationResponse:
    return _apply_move(session, room_id, entry_id, "move_up", "Failed to move entry up")


@router.post("/rooms/{room_id}/waitlist/{entry_id}/move-down", response_model=OperationResponse)
def move_entry_down(room_id: int, entry_id: int, session: Session = Depends(get_session)) -> OperationResponse:
    return _apply_move(session, room_id, entry_id, "move_down", "Failed to move entry down")


@router.post("/rooms/{room_id}/waitlist/{entry_id}/move-to-top", response_model=OperationResponse)
def move_entry_to_top(room_id: int, entry_id: int, session: Session = Depends(get_session)) -> OperationResponse:
    return _apply_move(session, room_id, entry_id, "move_to_top", "Failed to move entry to top")


@router.post("/rooms/{room_id}/waitlist/{entry_id}/move-to-bottom", response_model=OperationResponse)
def move_entry_to_bottom(room_id: int, entry_id: int, session: Session = Depends(get_session)) -> OperationResponse:
    return _apply_move(session, room_id, entry_id, "move_to_bottom", "Failed to move entry to bottom")


@router.get("/rooms/{room_id}/waitlist/{entry_id}/position")
def get_entry_position(room_id: int, entry_id: int, session: Session = Depends(get_session)):
    _get_entry_or_404(session, room_id, entry_id)
    manager = WaitlistPositionManager(session)
    place = manager.get_position(entry_id)
    if place is None:
        raise HTTPException(status_code=404, detail="Entry is not waiting")
    return {
        "position": place,
        "can_move_up": manager.can_move_up(entry_id),
        "can_move_down": manager.can_move_down(entry_id),
    }


# ── Status ──────────────────────────────────────────────────────────────


@router.get("/rooms/{room_id}/waitlist/{entry_id}", response_model=WaitlistEntryRead)
def get_entry(room_id: int, entry_id: int, session: Session = Depends(get_session)) -> WaitlistEntryRead:
    entry = _get_entry_or_404(session, room_id, entry_id)
    return _entry_to_read(session, entry, WaitlistPositionManager(session).get_position(entry_id))


@router.post("/rooms/{room_id}/waitlist/{entry_id}/status", response_model=OperationResponse)
def update_entry_status(
    room_id: int,
    entry_id: int,
    payload: UpdateStatusRequest,
    session: Session = Depends(get_session),
) -> OperationResponse:
    if payload.status not in ALL_STATUSES:
        raise HTTPException(status_code=422, detail=f"Invalid status: {payload.status}")
    if payload.status == "seated":
        raise HTTPException(status_code=400, detail="Use table assignment to seat a player")
    if payload.status == "expired":
        raise HTTPException(status_code=400, detail="Entries expire automatically")
    _get_entry_or_404(session, room_id, entry_id)

    result = WaitlistStatusManager(session).update_status(
        entry_id, payload.status, "staff", cancelled_by=payload.cancelled_by
    )
    if not result.success:
        _raise_for_failure(result.error, result.kind)
    return OperationResponse(message=f"Status updated to {payload.status}")


@router.post("/rooms/{room_id}/waitlist/{entry_id}/notify", response_model=OperationResponse)
def notify_entry(room_id: int, entry_id: int, session: Session = Depends(get_session)) -> OperationResponse:
    """Tell a called-in player a seat is opening; starts the response window."""
    entry = _get_entry_or_404(session, room_id, entry_id)
    if entry.status != STATUS_CALLEDIN:
        raise HTTPException(status_code=400, detail=f"Only called-in entries can be notified (is {entry.status})")
    result = WaitlistStatusManager(session).notify_player(entry_id)
    if not result.success:
        _raise_for_failure(result.error, result.kind)
    return OperationResponse(message="Player notified")
