from kanban import __version__


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


def test_version(client):
    assert client.get("/version").json() == {"version": __version__}


def test_responses_carry_request_headers(client):
    response = client.get("/health", headers={"X-Request-Id": "req-42"})
    assert response.headers["X-Request-Id"] == "req-42"
    assert "X-Request-Duration-Ms" in response.headers
