import logging

import pytest

from kanban.errors import NotFoundError
from kanban.models import Priority
from kanban.snapshot import CardFilter, SnapshotService


@pytest.fixture
def snapshots(store):
    return SnapshotService(store)


def test_snapshot_orders_and_counts(store, coordinator, snapshots, board):
    todo, doing = board.columns[0].id, board.columns[1].id
    for title in "abc":
        coordinator.create_card(todo, title)
    done = coordinator.create_card(doing, "shipped")
    store.update_card(done.id, is_completed=True)

    view = snapshots.snapshot(board.id)

    assert [c.column.name for c in view.columns] == ["Todo", "Doing", "Done"]
    assert [c.title for c in view.columns[0].cards] == ["a", "b", "c"]
    assert view.columns[0].card_count == 3
    assert view.columns[1].completed_count == 1
    assert view.card_count == 4
    assert view.completed_count == 1
    assert view.version == store.get_board(board.id).version


def test_wip_limit_flags_overloaded_column(store, coordinator, snapshots, board):
    column = store.update_column(board.columns[1].id, wip_limit=1)
    coordinator.create_card(column.id, "a")
    assert not snapshots.snapshot(board.id).columns[1].over_limit
    coordinator.create_card(column.id, "b")
    assert snapshots.snapshot(board.id).columns[1].over_limit


def test_filters_hide_cards_but_keep_counts(store, coordinator, snapshots, board):
    todo = board.columns[0].id
    coordinator.create_card(todo, "Fix login", priority="high", labels=["auth"])
    coordinator.create_card(todo, "Write docs", priority="low", assignee_id="u1")
    finished = coordinator.create_card(todo, "Ship release", priority="high")
    store.update_card(finished.id, is_completed=True)

    by_priority = snapshots.snapshot(board.id, CardFilter(priority=Priority.HIGH))
    assert [c.title for c in by_priority.columns[0].cards] == ["Fix login", "Ship release"]
    assert by_priority.columns[0].card_count == 3

    by_label = snapshots.snapshot(board.id, CardFilter(search="AUTH"))
    assert [c.title for c in by_label.columns[0].cards] == ["Fix login"]

    open_only = snapshots.snapshot(board.id, CardFilter(include_completed=False))
    assert [c.title for c in open_only.columns[0].cards] == ["Fix login", "Write docs"]
    assert open_only.completed_count == 1

    mine = snapshots.snapshot(board.id, CardFilter(assignee_id="u1"))
    assert [c.title for c in mine.columns[0].cards] == ["Write docs"]


def test_version_changes_after_every_mutation(store, coordinator, snapshots, board):
    seen = [snapshots.snapshot(board.id).version]
    card = coordinator.create_card(board.columns[0].id, "a")
    seen.append(snapshots.snapshot(board.id).version)
    coordinator.move_card(card.id, board.columns[1].id, 0)
    seen.append(snapshots.snapshot(board.id).version)
    coordinator.delete_card(card.id)
    seen.append(snapshots.snapshot(board.id).version)
    assert seen == sorted(set(seen))


def test_snapshot_of_missing_board(snapshots):
    with pytest.raises(NotFoundError):
        snapshots.snapshot("missing")


def test_snapshot_reflects_moves(store, coordinator, snapshots, board):
    todo, done = board.columns[0].id, board.columns[2].id
    a, b = coordinator.create_card(todo, "a"), coordinator.create_card(todo, "b")
    coordinator.move_card(b.id, done, 0)
    coordinator.move_card(a.id, done, 0)
    view = snapshots.snapshot(board.id)
    assert view.columns[0].cards == []
    assert [c.title for c in view.columns[2].cards] == ["a", "b"]


def test_unordered_positions_are_logged(memory_store, caplog):
    board = memory_store.create_board("B")
    column = board.columns[0].id
    memory_store.create_card(column, "a")
    loaded = memory_store.get_board(board.id)
    loaded.columns[0].cards.append(loaded.columns[0].cards[0])

    class Frozen:
        def get_board(self, board_id):
            return loaded

    with caplog.at_level(logging.WARNING, logger="kanban.snapshot"):
        SnapshotService(Frozen()).snapshot(board.id)
    assert "tied or unordered" in caplog.text
