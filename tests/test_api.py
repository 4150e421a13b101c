import pytest
from fastapi.testclient import TestClient

from kanban.config import Settings
from kanban.locks import column_key
from kanban.main import create_app


@pytest.fixture
def board(client):
    response = client.post("/boards", json={"name": "Website relaunch", "clientId": "acme"})
    assert response.status_code == 201
    return response.json()


def column_ids(board):
    return [c["id"] for c in board["columns"]]


def add_card(client, board, column_id, title, **extra):
    response = client.post(f"/boards/{board['board']['id']}/cards", json={"columnId": column_id, "title": title, **extra})
    assert response.status_code == 201, response.text
    return response.json()


def fetch(client, board):
    response = client.get(f"/boards/{board['board']['id']}")
    assert response.status_code == 200
    return response.json()


def card_titles(snapshot, index):
    return [c["title"] for c in snapshot["columns"][index]["cards"]]


def test_create_board_seeds_default_columns(board):
    assert [c["name"] for c in board["columns"]] == ["To do", "In progress", "In review", "Done"]
    assert board["board"]["clientId"] == "acme"
    assert board["cardCount"] == 0


def test_create_board_with_custom_columns(client):
    response = client.post(
        "/boards",
        json={"name": "Ops", "columns": [{"name": "Inbox"}, {"name": "Working", "wipLimit": 2}]},
    )
    assert response.status_code == 201
    columns = response.json()["columns"]
    assert [c["name"] for c in columns] == ["Inbox", "Working"]
    assert columns[1]["wipLimit"] == 2


def test_create_card(client, board):
    todo = column_ids(board)[0]
    card = add_card(client, board, todo, "Design hero", priority="high", labels=["design"])
    assert card["columnId"] == todo
    assert card["priority"] == "high"
    assert card["version"] == 1
    assert card_titles(fetch(client, board), 0) == ["Design hero"]


def test_create_card_rejects_bad_input(client, board):
    todo = column_ids(board)[0]
    url = f"/boards/{board['board']['id']}/cards"
    assert client.post(url, json={"columnId": todo, "title": ""}).status_code == 422

    blank = client.post(url, json={"columnId": todo, "title": "   "})
    assert blank.status_code == 422
    assert blank.json()["error"]["code"] == "invalid_argument"

    other = client.post("/boards", json={"name": "Other"}).json()
    foreign = client.post(url, json={"columnId": column_ids(other)[0], "title": "x"})
    assert foreign.status_code == 422

    missing = client.post(url, json={"columnId": "nope", "title": "x"})
    assert missing.status_code == 404
    assert missing.json()["error"]["code"] == "not_found"

    assert card_titles(fetch(client, board), 0) == []


def test_move_card_and_refetch(client, board):
    todo, doing = column_ids(board)[:2]
    cards = [add_card(client, board, todo, t) for t in "abc"]

    response = client.put(f"/cards/{cards[0]['id']}/move", json={"columnId": todo, "position": 2})
    assert response.status_code == 200
    assert card_titles(fetch(client, board), 0) == ["b", "a", "c"]

    response = client.put(f"/cards/{cards[2]['id']}/move", json={"columnId": doing, "position": 0})
    assert response.json()["columnId"] == doing
    snapshot = fetch(client, board)
    assert card_titles(snapshot, 0) == ["b", "a"]
    assert card_titles(snapshot, 1) == ["c"]


def test_move_card_validation(client, board):
    todo = column_ids(board)[0]
    card = add_card(client, board, todo, "a")
    negative = client.put(f"/cards/{card['id']}/move", json={"columnId": todo, "position": -1})
    assert negative.status_code == 422

    missing = client.put("/cards/nope/move", json={"columnId": todo, "position": 0})
    assert missing.status_code == 404


def test_move_card_with_stale_version(client, board):
    todo, doing = column_ids(board)[:2]
    card = add_card(client, board, todo, "a")
    client.patch(f"/cards/{card['id']}", json={"title": "renamed"})

    response = client.put(
        f"/cards/{card['id']}/move",
        json={"columnId": doing, "position": 0, "expectedVersion": card["version"]},
    )
    assert response.status_code == 409
    assert response.json()["error"]["code"] == "concurrent_modification"
    assert card_titles(fetch(client, board), 0) == ["renamed"]


def test_delete_card_twice(client, board):
    card = add_card(client, board, column_ids(board)[0], "a")
    assert client.delete(f"/cards/{card['id']}").status_code == 204
    again = client.delete(f"/cards/{card['id']}")
    assert again.status_code == 404
    assert again.json()["error"]["code"] == "not_found"


def test_delete_column_requires_cascade(client, board):
    doing = column_ids(board)[1]
    add_card(client, board, doing, "a")
    add_card(client, board, doing, "b")

    refused = client.delete(f"/columns/{doing}")
    assert refused.status_code == 409
    assert refused.json()["error"]["code"] == "column_not_empty"
    assert refused.json()["error"]["details"]["cardCount"] == 2

    assert client.delete(f"/columns/{doing}", params={"cascade": "true"}).status_code == 204
    snapshot = fetch(client, board)
    assert doing not in column_ids(snapshot)
    assert snapshot["cardCount"] == 0


def test_complete_card(client, board):
    card = add_card(client, board, column_ids(board)[0], "a")
    response = client.patch(f"/cards/{card['id']}", json={"isCompleted": True, "commentCount": 2})
    assert response.status_code == 200
    body = response.json()
    assert body["isCompleted"] is True
    assert body["completedAt"] is not None
    assert body["commentCount"] == 2
    assert body["position"] == card["position"]
    assert fetch(client, board)["completedCount"] == 1


def test_snapshot_etag_follows_version(client, board):
    first = client.get(f"/boards/{board['board']['id']}")
    assert first.headers["etag"] == f'"{first.json()["version"]}"'
    add_card(client, board, column_ids(board)[0], "a")
    second = client.get(f"/boards/{board['board']['id']}")
    assert second.json()["version"] > first.json()["version"]
    assert second.headers["etag"] != first.headers["etag"]


def test_snapshot_filters(client, board):
    todo = column_ids(board)[0]
    add_card(client, board, todo, "Fix login", priority="urgent")
    add_card(client, board, todo, "Write docs", priority="low")
    response = client.get(f"/boards/{board['board']['id']}", params={"priority": "urgent"})
    column = response.json()["columns"][0]
    assert [c["title"] for c in column["cards"]] == ["Fix login"]
    assert column["cardCount"] == 2


def test_error_envelope_carries_request_id(client):
    response = client.get("/boards/missing", headers={"X-Request-Id": "req-123"})
    assert response.status_code == 404
    error = response.json()["error"]
    assert error["code"] == "not_found"
    assert error["requestId"] == "req-123"
    assert response.headers["x-request-id"] == "req-123"


def test_board_update_and_listing(client, board):
    board_id = board["board"]["id"]
    other = client.post("/boards", json={"name": "Internal"}).json()["board"]["id"]

    response = client.patch(f"/boards/{board_id}", json={"isArchived": True})
    assert response.status_code == 200
    assert response.json()["isArchived"] is True

    listed = client.get("/boards").json()["boards"]
    assert [b["id"] for b in listed] == [other]
    archived = client.get("/boards", params={"includeArchived": "true", "clientId": "acme"}).json()["boards"]
    assert [b["id"] for b in archived] == [board_id]


def test_delete_board(client, board):
    board_id = board["board"]["id"]
    assert client.delete(f"/boards/{board_id}").status_code == 204
    assert client.get(f"/boards/{board_id}").status_code == 404


def test_column_lifecycle(client, board):
    board_id = board["board"]["id"]
    created = client.post(f"/boards/{board_id}/columns", json={"name": "Blocked", "wipLimit": 3})
    assert created.status_code == 201
    column = created.json()

    renamed = client.patch(f"/columns/{column['id']}", json={"name": "Waiting"})
    assert renamed.json()["name"] == "Waiting"

    moved = client.put(f"/columns/{column['id']}/move", json={"position": 0})
    assert moved.status_code == 200
    names = [c["name"] for c in fetch(client, board)["columns"]]
    assert names == ["Waiting", "To do", "In progress", "In review", "Done"]

    stale = client.put(f"/columns/{column['id']}/move", json={"position": 2, "expectedVersion": column["version"]})
    assert stale.status_code == 409


def test_actor_is_recorded(client, board, activity):
    todo = column_ids(board)[0]
    client.post(
        f"/boards/{board['board']['id']}/cards",
        json={"columnId": todo, "title": "a"},
        headers={"Authorization": "Bearer user-42"},
    )
    client.post(
        f"/boards/{board['board']['id']}/cards",
        json={"columnId": todo, "title": "b"},
        headers={"X-Actor": "robot"},
    )
    assert [e.actor for e in activity.events] == ["user-42", "robot"]


def test_busy_column_returns_503(activity):
    app = create_app(Settings(STORE_BACKEND="memory", LOCK_TIMEOUT_SECONDS=0.05, LOG_LEVEL="WARNING"), activity=activity)
    client = TestClient(app)
    board = client.post("/boards", json={"name": "B"}).json()
    todo = column_ids(board)[0]
    card = add_card(client, board, todo, "a")

    with app.state.coordinator.locks.hold(column_key(todo), mover="someone-else"):
        response = client.put(f"/cards/{card['id']}/move", json={"columnId": todo, "position": 0})
    assert response.status_code == 503
    assert response.json()["error"]["code"] == "board_busy"


def test_deleting_boards_releases_their_locks(client, activity):
    coordinator = client.app.state.coordinator
    for round_number in range(20):
        board = client.post("/boards", json={"name": f"Board {round_number}"}).json()
        add_card(client, board, column_ids(board)[0], "a")
        client.post(f"/boards/{board['board']['id']}/columns", json={"name": "Extra"})
        assert client.delete(f"/boards/{board['board']['id']}").status_code == 204
    assert len(coordinator.locks) == 0
    assert client.get("/boards").json()["boards"] == []
    assert activity.actions().count("board.deleted") == 20
    assert activity.actions().count("card.deleted") == 20


def test_null_flags_are_rejected(client, board):
    card = add_card(client, board, column_ids(board)[0], "a")
    response = client.patch(f"/cards/{card['id']}", json={"isCompleted": None})
    assert response.status_code == 422
    assert response.json()["error"]["code"] == "invalid_argument"
    archived = client.patch(f"/boards/{board['board']['id']}", json={"isArchived": None})
    assert archived.status_code == 422


def test_move_down_lands_before_the_card_at_the_index(client, board):
    todo = column_ids(board)[0]
    cards = [add_card(client, board, todo, t) for t in "abcd"]
    client.put(f"/cards/{cards[0]['id']}/move", json={"columnId": todo, "position": 3})
    assert card_titles(fetch(client, board), 0) == ["b", "c", "a", "d"]
    client.put(f"/cards/{cards[3]['id']}/move", json={"columnId": todo, "position": 0})
    assert card_titles(fetch(client, board), 0) == ["d", "b", "c", "a"]
