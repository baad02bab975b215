from datetime import datetime
from typing import Optional

from sqlmodel import Field, SQLModel


class GameTable(SQLModel, table=True):
    """A physical table in a room, configured to run one game."""

    id: Optional[int] = Field(default=None, primary_key=True)
    room_id: int = Field(foreign_key="room.id", index=True)
    game_id: Optional[int] = Field(default=None, foreign_key="game.id", index=True)
    name: str
    seat_count: int
    is_active: bool = Field(default=True)
    created_at: datetime = Field(default_factory=datetime.utcnow)
