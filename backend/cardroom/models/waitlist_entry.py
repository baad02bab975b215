from datetime import datetime
from typing import Optional

from sqlalchemy import Index
from sqlmodel import Field, SQLModel

STATUS_WAITING = "waiting"
STATUS_CALLEDIN = "calledin"
STATUS_NOTIFIED = "notified"
STATUS_SEATED = "seated"
STATUS_CANCELLED = "cancelled"
STATUS_EXPIRED = "expired"

ALL_STATUSES = (
    STATUS_WAITING,
    STATUS_CALLEDIN,
    STATUS_NOTIFIED,
    STATUS_SEATED,
    STATUS_CANCELLED,
    STATUS_EXPIRED,
)
ACTIVE_STATUSES = (STATUS_WAITING, STATUS_CALLEDIN, STATUS_NOTIFIED)

CANCELLED_BY_PLAYER = "player"
CANCELLED_BY_STAFF = "staff"
CANCELLED_BY_SYSTEM = "system"
CANCELLED_BY_VALUES = (CANCELLED_BY_PLAYER, CANCELLED_BY_STAFF, CANCELLED_BY_SYSTEM)


class WaitlistEntry(SQLModel, table=True):
    __table_args__ = (
        Index("ix_waitlist_game_status_position", "game_id", "status", "position"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    game_id: int = Field(foreign_key="game.id")
    room_id: int = Field(foreign_key="room.id", index=True)
    player_id: int = Field(foreign_key="player.id", index=True)
    status: str = Field(default=STATUS_WAITING)
    # Rank among waiting entries of the same game; frozen once the entry leaves waiting
    position: Optional[float] = None
    notes: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)
    notified_at: Optional[datetime] = None
    checked_in_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    cancelled_by: Optional[str] = None
