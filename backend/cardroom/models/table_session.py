from datetime import datetime
from typing import Optional

from sqlmodel import Field, SQLModel


class TableSession(SQLModel, table=True):
    """One open seating period for a table. end_time is NULL while open."""

    id: Optional[int] = Field(default=None, primary_key=True)
    table_id: int = Field(foreign_key="gametable.id", index=True)
    room_id: int = Field(foreign_key="room.id")
    game_id: int = Field(foreign_key="game.id")
    start_time: datetime = Field(default_factory=datetime.utcnow)
    end_time: Optional[datetime] = None
