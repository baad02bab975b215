import os

# Keep app startup (init_db) off the on-disk database
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402
from sqlmodel import Session, SQLModel, create_engine  # noqa: E402

from cardroom.database import get_session, session_factory  # noqa: E402
from cardroom.main import app  # noqa: E402
from cardroom.models import Game, GameTable, Player, Room, TableSession  # noqa: E402
from cardroom.services.expiry_scheduler import WaitlistExpiryScheduler  # noqa: E402
from cardroom.settings import WaitlistPolicy  # noqa: E402

TEST_DATABASE_URL = "sqlite:///:memory:"

# ============================================================================
# Test Database Setup with StaticPool
# ============================================================================
# 1. sqlite:///:memory: with StaticPool so ALL sessions share the same DB
# 2. check_same_thread=False required for TestClient/threaded access
# 3. Tables are created before each test and dropped after it
# 4. App dependency overridden to use test_engine (see client_fixture)
test_engine = create_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)


def override_get_session():
    """Override session to use test engine"""
    with Session(test_engine) as session:
        yield session


@pytest.fixture(name="session", scope="function")
def session_fixture():
    """Provide a test database session on a fresh schema."""
    SQLModel.metadata.create_all(test_engine)

    with Session(test_engine) as session:
        yield session

    SQLModel.metadata.drop_all(test_engine)


@pytest.fixture(name="policy")
def policy_fixture() -> WaitlistPolicy:
    """Default policy, independent of whatever is in the environment."""
    return WaitlistPolicy()


@pytest.fixture(name="client")
def client_fixture(session: Session, policy: WaitlistPolicy):
    """Provide a test client with overridden database session and expiry scheduler.

    Override MUST be set BEFORE TestClient() and stay in place for the
    entire duration, so the app never uses its own engine.
    """
    app.dependency_overrides[get_session] = override_get_session
    original_scheduler = app.state.expiry_scheduler
    app.state.expiry_scheduler = WaitlistExpiryScheduler(session_factory(test_engine), policy)

    with TestClient(app) as client:
        yield client

    app.state.expiry_scheduler.shutdown()
    app.state.expiry_scheduler = original_scheduler
    app.dependency_overrides.clear()


@pytest.fixture(name="room_setup")
def room_setup_fixture(session: Session):
    """One room running one hold'em game, three players, one 6-seat table with an open session."""
    room = Room(name="Main Room")
    session.add(room)
    session.commit()
    session.refresh(room)

    game = Game(room_id=room.id, name="1/2 NLH")
    other_game = Game(room_id=room.id, name="2/5 PLO", game_type="omaha")
    session.add(game)
    session.add(other_game)
    session.commit()
    session.refresh(game)
    session.refresh(other_game)

    players = [Player(alias=alias) for alias in ("Ace", "Blinds", "Cutoff")]
    for player in players:
        session.add(player)
    session.commit()
    for player in players:
        session.refresh(player)

    table = GameTable(room_id=room.id, game_id=game.id, name="Table 1", seat_count=6)
    session.add(table)
    session.commit()
    session.refresh(table)

    table_session = TableSession(table_id=table.id, room_id=room.id, game_id=game.id)
    session.add(table_session)
    session.commit()
    session.refresh(table_session)

    return {
        "room_id": room.id,
        "game_id": game.id,
        "other_game_id": other_game.id,
        "player_ids": [p.id for p in players],
        "table_id": table.id,
        "table_session_id": table_session.id,
    }
