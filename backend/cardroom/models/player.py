from datetime import datetime
from typing import Optional

from sqlmodel import Field, SQLModel


class Player(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    alias: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
