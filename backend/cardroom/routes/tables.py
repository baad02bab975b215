"""
Table seating endpoints: seat availability, occupancy, assign from the waitlist, remove.
"""
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlmodel import Session

from cardroom.database import get_session
from cardroom.models.game_table import GameTable
from cardroom.models.waitlist_entry import WaitlistEntry
from cardroom.services.results import ErrorKind
from cardroom.services.seat_assignment import WaitlistTableIntegration

router = APIRouter()


class AssignSeatRequest(BaseModel):
    entry_id: int
    seat_number: int = Field(ge=1)
    assigned_by: str = Field(min_length=1)


class RemovePlayerRequest(BaseModel):
    add_to_waitlist: bool = False
    game_id: Optional[int] = None


class AssignmentResponse(BaseModel):
    success: bool = True
    player_session_id: Optional[int] = None
    table_id: Optional[int] = None
    seat_number: Optional[int] = None
    waitlist_entry_id: Optional[int] = None


class SeatedPlayerRead(BaseModel):
    player_id: int
    alias: Optional[str] = None
    seat_number: int
    start_time: Optional[datetime] = None
    player_session_id: int


class TableOccupancyRead(BaseModel):
    table_id: int
    total_seats: int
    occupied_seats: int
    available_seats: int
    players: List[SeatedPlayerRead]


def _get_table_or_404(session: Session, table_id: int) -> GameTable:
    table = session.get(GameTable, table_id)
    if not table:
        raise HTTPException(status_code=404, detail="Table not found")
    return table


@router.get("/tables/{table_id}/seats")
def get_available_seats(table_id: int, session: Session = Depends(get_session)):
    _get_table_or_404(session, table_id)
    seats = WaitlistTableIntegration(session).get_available_seats(table_id)
    return {"table_id": table_id, "available_seats": seats}


@router.get("/tables/{table_id}/occupancy", response_model=TableOccupancyRead)
def get_table_occupancy(table_id: int, session: Session = Depends(get_session)) -> TableOccupancyRead:
    _get_table_or_404(session, table_id)
    occupancy = WaitlistTableIntegration(session).get_table_occupancy(table_id)
    if occupancy is None:
        raise HTTPException(status_code=500, detail="Failed to load table occupancy")
    return TableOccupancyRead(
        table_id=occupancy.table_id,
        total_seats=occupancy.total_seats,
        occupied_seats=occupancy.occupied_seats,
        available_seats=occupancy.available_seats,
        players=[SeatedPlayerRead(**p.__dict__) for p in occupancy.players],
    )


@router.post("/tables/{table_id}/assign", response_model=AssignmentResponse)
def assign_seat(
    table_id: int,
    payload: AssignSeatRequest,
    session: Session = Depends(get_session),
) -> AssignmentResponse:
    """Seat a waitlist entry at a specific seat."""
    table = _get_table_or_404(session, table_id)
    entry = session.get(WaitlistEntry, payload.entry_id)
    if entry and entry.room_id != table.room_id:
        raise HTTPException(status_code=400, detail="Entry and table belong to different rooms")

    result = WaitlistTableIntegration(session).assign_player_to_table(
        payload.entry_id, table_id, payload.seat_number, payload.assigned_by
    )
    if not result.success:
        status_code = 404 if result.kind == ErrorKind.NOT_FOUND else 400
        raise HTTPException(status_code=status_code, detail=result.error)
    return AssignmentResponse(
        player_session_id=result.player_session_id,
        table_id=result.table_id,
        seat_number=result.seat_number,
        waitlist_entry_id=result.waitlist_entry_id,
    )


@router.post("/player-sessions/{session_id}/remove", response_model=AssignmentResponse)
def remove_player(
    session_id: int,
    payload: Optional[RemovePlayerRequest] = None,
    session: Session = Depends(get_session),
) -> AssignmentResponse:
    """End a player's seat; optionally put them back at the end of a waitlist."""
    payload = payload or RemovePlayerRequest()
    result = WaitlistTableIntegration(session).remove_player_from_table(
        session_id, payload.add_to_waitlist, payload.game_id
    )
    if not result.success:
        status_code = 404 if result.kind == ErrorKind.NOT_FOUND else 400
        raise HTTPException(status_code=status_code, detail=result.error)
    return AssignmentResponse(
        player_session_id=result.player_session_id,
        table_id=result.table_id,
        seat_number=result.seat_number,
        waitlist_entry_id=result.waitlist_entry_id,
    )
