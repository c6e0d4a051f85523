def test_health(client):
    r = client.get("/health")

    assert r.status_code == 200
    assert r.json() == {"status": "ok"}


def test_request_id_is_generated(client):
    r = client.get("/health")

    assert r.headers["X-Request-ID"]


def test_request_id_is_propagated(client):
    r = client.get("/health", headers={"X-Request-ID": "req-123"})

    assert r.headers["X-Request-ID"] == "req-123"


def test_unknown_route(client):
    assert client.get("/nope").status_code == 404
