# Force SQLModel table registration at test discovery time
# This ensures all models are registered before any test database creation
from cardroom.models.game import Game  # noqa: F401
from cardroom.models.game_table import GameTable  # noqa: F401
from cardroom.models.player import Player  # noqa: F401
from cardroom.models.player_session import PlayerSession  # noqa: F401
from cardroom.models.room import Room  # noqa: F401
from cardroom.models.table_session import TableSession  # noqa: F401
from cardroom.models.waitlist_entry import WaitlistEntry  # noqa: F401
