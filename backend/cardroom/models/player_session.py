from datetime import datetime
from typing import Optional

from sqlalchemy import Index, text
from sqlmodel import Field, SQLModel


class PlayerSession(SQLModel, table=True):
    """Occupancy record: a player in a seat of a table session (end_time NULL while seated)."""

    __table_args__ = (
        # At most one open occupancy record per seat
        Index(
            "uq_playersession_open_seat",
            "table_session_id",
            "seat_number",
            unique=True,
            sqlite_where=text("end_time IS NULL"),
            postgresql_where=text("end_time IS NULL"),
        ),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    table_session_id: int = Field(foreign_key="tablesession.id", index=True)
    player_id: int = Field(foreign_key="player.id", index=True)
    seat_number: int
    start_time: datetime = Field(default_factory=datetime.utcnow)
    end_time: Optional[datetime] = None
