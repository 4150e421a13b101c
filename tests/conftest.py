import pytest
from fastapi.testclient import TestClient

from kanban.activity import ActivitySink
from kanban.config import Settings
from kanban.coordinator import MoveCoordinator
from kanban.db import SqlBoardStore
from kanban.main import create_app
from kanban.models import ColumnSpec
from kanban.storage import MemoryBoardStore


class RecordingSink(ActivitySink):
    def __init__(self):
        self.events = []

    def record(self, event):
        self.events.append(event)

    def actions(self):
        return [e.action for e in self.events]


@pytest.fixture(params=["memory", "sql"])
def store(request, tmp_path):
    if request.param == "memory":
        yield MemoryBoardStore()
        return
    sql_store = SqlBoardStore(f"sqlite:///{tmp_path / 'board.db'}")
    yield sql_store
    sql_store.engine.dispose()


@pytest.fixture
def memory_store():
    return MemoryBoardStore()


@pytest.fixture
def activity():
    return RecordingSink()


@pytest.fixture
def coordinator(store, activity):
    return MoveCoordinator(store, lock_timeout=2.0, activity=activity)


@pytest.fixture
def board(store):
    return store.create_board(
        "Website relaunch",
        columns=[ColumnSpec("Todo"), ColumnSpec("Doing"), ColumnSpec("Done")],
    )


@pytest.fixture
def client(activity):
    app = create_app(Settings(STORE_BACKEND="memory", LOG_LEVEL="WARNING"), activity=activity)
    return TestClient(app)


def titles(store, column_id):
    return [c.title for c in store.list_cards(column_id)]


def positions(store, column_id):
    return [c.position for c in store.list_cards(column_id)]


def assert_strictly_increasing(keys):
    assert all(a < b for a, b in zip(keys, keys[1:])), keys
