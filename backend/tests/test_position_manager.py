"""Waitlist ordering: fractional ranks, single-step moves, jumps, rebalancing."""
from sqlmodel import Session

from cardroom.models.waitlist_entry import STATUS_CANCELLED, WaitlistEntry
from cardroom.services.position_manager import WaitlistPositionManager
from cardroom.services.waitlist_store import WaitlistStore


def _queue(session: Session, game_id: int):
    """Entry ids in queue order."""
    session.expire_all()
    return [e.id for e in WaitlistStore(session).waiting_entries(game_id)]


def _add(manager: WaitlistPositionManager, setup, count: int):
    entries = []
    for i in range(count):
        player_id = setup["player_ids"][i % len(setup["player_ids"])]
        entries.append(manager.add_to_end(setup["game_id"], player_id, setup["room_id"]))
    return entries


def test_add_to_end_assigns_increasing_ranks(session: Session, room_setup, policy):
    manager = WaitlistPositionManager(session, policy)
    first, second = _add(manager, room_setup, 2)

    assert first.position == 1.0
    assert second.position == 2.0
    assert first.status == "waiting"
    assert first.checked_in_at is not None


def test_add_to_end_ignores_non_waiting_entries(session: Session, room_setup, policy):
    manager = WaitlistPositionManager(session, policy)
    a, b = _add(manager, room_setup, 2)
    WaitlistStore(session).compare_and_set_status(b.id, "waiting", {"status": STATUS_CANCELLED})

    c = manager.add_to_end(room_setup["game_id"], room_setup["player_ids"][2], room_setup["room_id"])
    assert c.position == 2.0


def test_move_up_places_entry_between_neighbours(session: Session, room_setup, policy):
    manager = WaitlistPositionManager(session, policy)
    a, b, c = _add(manager, room_setup, 3)

    assert manager.move_up(c.id) is True

    session.expire_all()
    assert session.get(WaitlistEntry, c.id).position == 1.5
    assert _queue(session, room_setup["game_id"]) == [a.id, c.id, b.id]


def test_move_up_into_head(session: Session, room_setup, policy):
    manager = WaitlistPositionManager(session, policy)
    a, b = _add(manager, room_setup, 2)

    assert manager.move_up(b.id) is True

    session.expire_all()
    assert session.get(WaitlistEntry, b.id).position == 0.5
    assert _queue(session, room_setup["game_id"]) == [b.id, a.id]


def test_move_down_past_tail_and_between(session: Session, room_setup, policy):
    manager = WaitlistPositionManager(session, policy)
    a, b, c = _add(manager, room_setup, 3)

    assert manager.move_down(a.id) is True
    assert _queue(session, room_setup["game_id"]) == [b.id, a.id, c.id]
    assert session.get(WaitlistEntry, a.id).position == 2.5

    assert manager.move_down(a.id) is True
    assert _queue(session, room_setup["game_id"]) == [b.id, c.id, a.id]
    assert session.get(WaitlistEntry, a.id).position == 4.0


def test_moves_at_boundaries_fail_without_changes(session: Session, room_setup, policy):
    manager = WaitlistPositionManager(session, policy)
    a, b = _add(manager, room_setup, 2)

    assert manager.move_up(a.id) is False
    assert manager.move_down(b.id) is False

    session.expire_all()
    assert session.get(WaitlistEntry, a.id).position == 1.0
    assert session.get(WaitlistEntry, b.id).position == 2.0


def test_move_missing_or_non_waiting_entry_fails(session: Session, room_setup, policy):
    manager = WaitlistPositionManager(session, policy)
    a, b = _add(manager, room_setup, 2)
    WaitlistStore(session).compare_and_set_status(b.id, "waiting", {"status": STATUS_CANCELLED})

    assert manager.move_up(9999) is False
    assert manager.move_up(b.id) is False
    assert manager.move_to_top(b.id) is False
    assert manager.move_to_bottom(9999) is False


def test_move_to_top_and_bottom(session: Session, room_setup, policy):
    manager = WaitlistPositionManager(session, policy)
    a, b, c = _add(manager, room_setup, 3)

    assert manager.move_to_top(c.id) is True
    session.expire_all()
    assert session.get(WaitlistEntry, c.id).position == 0.5
    assert _queue(session, room_setup["game_id"]) == [c.id, a.id, b.id]

    assert manager.move_to_bottom(c.id) is True
    session.expire_all()
    assert session.get(WaitlistEntry, c.id).position == 3.0
    assert _queue(session, room_setup["game_id"]) == [a.id, b.id, c.id]


def test_sole_entry_jumps_are_noops(session: Session, room_setup, policy):
    manager = WaitlistPositionManager(session, policy)
    (only,) = _add(manager, room_setup, 1)

    assert manager.move_to_bottom(only.id) is True
    assert manager.move_to_top(only.id) is True
    session.expire_all()
    assert session.get(WaitlistEntry, only.id).position == 1.0


def test_rebalance_preserves_order(session: Session, room_setup, policy):
    manager = WaitlistPositionManager(session, policy)
    a, b, c, d = _add(manager, room_setup, 4)
    manager.move_up(d.id)
    manager.move_up(d.id)
    manager.move_to_top(c.id)
    before = _queue(session, room_setup["game_id"])

    assert manager.rebalance_positions(room_setup["game_id"]) is True

    assert _queue(session, room_setup["game_id"]) == before
    ranks = [session.get(WaitlistEntry, entry_id).position for entry_id in before]
    assert ranks == [1.0, 2.0, 3.0, 4.0]


def test_rebalance_empty_game_succeeds(session: Session, room_setup, policy):
    manager = WaitlistPositionManager(session, policy)
    assert manager.rebalance_positions(room_setup["game_id"]) is True


def test_collapsed_gap_triggers_rebalance(session: Session, room_setup, policy):
    manager = WaitlistPositionManager(session, policy)
    a, b, c = _add(manager, room_setup, 3)
    store = WaitlistStore(session)
    store.set_position(a.id, 1.0)
    store.set_position(b.id, 1.0004)
    store.set_position(c.id, 1.0008)

    assert manager.move_up(c.id) is True

    assert _queue(session, room_setup["game_id"]) == [a.id, c.id, b.id]
    # Neighbours were renumbered before the move
    assert session.get(WaitlistEntry, a.id).position == 1.0
    assert session.get(WaitlistEntry, b.id).position == 2.0
    assert session.get(WaitlistEntry, c.id).position == 1.5


def test_tied_ranks_are_rebalanced_before_moving(session: Session, room_setup, policy):
    manager = WaitlistPositionManager(session, policy)
    a, b = _add(manager, room_setup, 2)
    WaitlistStore(session).set_position(b.id, 1.0)

    assert manager.move_up(b.id) is True
    assert _queue(session, room_setup["game_id"]) == [b.id, a.id]


def test_move_to_top_rebalances_near_zero_head(session: Session, room_setup, policy):
    manager = WaitlistPositionManager(session, policy)
    a, b = _add(manager, room_setup, 2)
    WaitlistStore(session).set_position(a.id, 0.0015)

    assert manager.move_to_top(b.id) is True

    session.expire_all()
    assert session.get(WaitlistEntry, b.id).position == 0.5
    assert session.get(WaitlistEntry, a.id).position == 1.0


def test_repeated_moves_keep_a_strict_order(session: Session, room_setup, policy):
    manager = WaitlistPositionManager(session, policy)
    a, b, c = _add(manager, room_setup, 3)

    # Each jump halves the head rank; the manager has to renumber along the way
    for _ in range(30):
        last = _queue(session, room_setup["game_id"])[-1]
        assert manager.move_to_top(last) is True

    queue = _queue(session, room_setup["game_id"])
    assert queue == [a.id, b.id, c.id]
    ranks = [session.get(WaitlistEntry, entry_id).position for entry_id in queue]
    assert len(set(ranks)) == 3
    assert ranks == sorted(ranks)


def test_insert_at_position(session: Session, room_setup, policy):
    manager = WaitlistPositionManager(session, policy)
    a, b, c = _add(manager, room_setup, 3)
    game_id = room_setup["game_id"]
    room_id = room_setup["room_id"]
    player_id = room_setup["player_ids"][0]

    middle = manager.insert_at_position(game_id, player_id, room_id, 2)
    assert middle.position == 1.5
    assert manager.get_position(middle.id) == 2

    head = manager.insert_at_position(game_id, player_id, room_id, 1)
    assert head.position == 0.5
    assert manager.get_position(head.id) == 1

    tail = manager.insert_at_position(game_id, player_id, room_id, 50)
    assert tail.position == 4.0
    assert _queue(session, game_id) == [head.id, a.id, middle.id, b.id, c.id, tail.id]


def test_insert_at_position_rebalances_collapsed_gap(session: Session, room_setup, policy):
    manager = WaitlistPositionManager(session, policy)
    a, b = _add(manager, room_setup, 2)
    WaitlistStore(session).set_position(b.id, 1.0005)

    entry = manager.insert_at_position(room_setup["game_id"], room_setup["player_ids"][2], room_setup["room_id"], 2)

    assert entry is not None
    assert entry.position == 1.5
    assert _queue(session, room_setup["game_id"]) == [a.id, entry.id, b.id]


def test_position_queries(session: Session, room_setup, policy):
    manager = WaitlistPositionManager(session, policy)
    a, b, c = _add(manager, room_setup, 3)

    assert [manager.get_position(e.id) for e in (a, b, c)] == [1, 2, 3]
    assert manager.can_move_up(a.id) is False
    assert manager.can_move_down(a.id) is True
    assert manager.can_move_up(c.id) is True
    assert manager.can_move_down(c.id) is False
    assert manager.get_position(9999) is None

    nxt = manager.next_waiting_entry(room_setup["game_id"], room_id=room_setup["room_id"])
    assert nxt.id == a.id


def test_games_are_ordered_independently(session: Session, room_setup, policy):
    manager = WaitlistPositionManager(session, policy)
    a = manager.add_to_end(room_setup["game_id"], room_setup["player_ids"][0], room_setup["room_id"])
    other = manager.add_to_end(room_setup["other_game_id"], room_setup["player_ids"][1], room_setup["room_id"])

    assert a.position == 1.0
    assert other.position == 1.0
    assert manager.move_up(other.id) is False


def test_move_up_past_tied_neighbours_moves_one_place(session: Session, room_setup, policy):
    manager = WaitlistPositionManager(session, policy)
    a, b, b_twin, c = _add(manager, room_setup, 4)
    store = WaitlistStore(session)
    store.set_position(b_twin.id, 2.0)
    store.set_position(c.id, 4.0)

    assert manager.move_up(c.id) is True

    assert _queue(session, room_setup["game_id"]) == [a.id, b.id, c.id, b_twin.id]
    ranks = [session.get(WaitlistEntry, entry_id).position for entry_id in (a.id, b.id, c.id, b_twin.id)]
    assert len(set(ranks)) == 4


def test_move_down_past_tied_neighbours_moves_one_place(session: Session, room_setup, policy):
    manager = WaitlistPositionManager(session, policy)
    a, b, b_twin, c = _add(manager, room_setup, 4)
    WaitlistStore(session).set_position(b_twin.id, 2.0)

    assert manager.move_down(a.id) is True

    assert _queue(session, room_setup["game_id"]) == [b.id, a.id, b_twin.id, c.id]


def test_rebalance_keeps_rank_of_entry_that_left_waiting(session: Session, room_setup, policy, monkeypatch):
    manager = WaitlistPositionManager(session, policy)
    a, b, c = _add(manager, room_setup, 3)
    assert manager.move_to_top(b.id) is True
    store = manager.store
    read_waiting = store.waiting_entries

    def read_then_cancel(game_id, room_id=None):
        entries = read_waiting(game_id, room_id=room_id)
        # B is cancelled after the rebalance read but before its writes
        store.compare_and_set_status(b.id, "waiting", {"status": STATUS_CANCELLED})
        return entries

    monkeypatch.setattr(store, "waiting_entries", read_then_cancel)

    assert manager.rebalance_positions(room_setup["game_id"]) is True

    session.expire_all()
    cancelled = session.get(WaitlistEntry, b.id)
    assert cancelled.status == STATUS_CANCELLED
    assert cancelled.position == 0.5
    assert _queue(session, room_setup["game_id"]) == [a.id, c.id]
    assert session.get(WaitlistEntry, a.id).position == 2.0
    assert session.get(WaitlistEntry, c.id).position == 3.0
