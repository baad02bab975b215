from cardroom.models.game import Game
from cardroom.models.game_table import GameTable
from cardroom.models.player import Player
from cardroom.models.player_session import PlayerSession
from cardroom.models.room import Room
from cardroom.models.table_session import TableSession
from cardroom.models.waitlist_entry import WaitlistEntry

__all__ = [
    "Room",
    "Game",
    "Player",
    "GameTable",
    "TableSession",
    "PlayerSession",
    "WaitlistEntry",
]
