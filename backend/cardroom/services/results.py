"""Outcome types shared by the waitlist services."""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional


class ErrorKind(str, Enum):
    NOT_FOUND = "not_found"
    INVALID_STATE = "invalid_state"
    STORE_FAILURE = "store_failure"
    PRECISION_COLLAPSE = "precision_collapse"


@dataclass
class StatusResult:
    success: bool
    error: Optional[str] = None
    kind: Optional[ErrorKind] = None

    @classmethod
    def ok(cls) -> "StatusResult":
        return cls(success=True)

    @classmethod
    def fail(cls, error: str, kind: ErrorKind) -> "StatusResult":
        return cls(success=False, error=error, kind=kind)


@dataclass
class AssignmentResult:
    success: bool
    error: Optional[str] = None
    kind: Optional[ErrorKind] = None
    player_session_id: Optional[int] = None
    assigned_player: Optional[str] = None
    table_id: Optional[int] = None
    seat_number: Optional[int] = None
    waitlist_entry_id: Optional[int] = None

    @classmethod
    def fail(cls, error: str, kind: ErrorKind) -> "AssignmentResult":
        return cls(success=False, error=error, kind=kind)


@dataclass
class SeatCandidate:
    table_id: int
    seat_number: int
    table_name: str


@dataclass
class SeatedPlayer:
    player_id: int
    alias: Optional[str]
    seat_number: int
    start_time: Optional[datetime]
    player_session_id: int


@dataclass
class TableOccupancy:
    table_id: int
    total_seats: int
    occupied_seats: int
    available_seats: int
    players: List[SeatedPlayer] = field(default_factory=list)


@dataclass
class ExpiryWarning:
    entry_id: int
    player_id: int
    game_id: int
    status: str
    remaining_minutes: int
    deadline: datetime
