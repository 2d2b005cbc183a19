def test_health_ok(client):
    res = client.get("/health")
    assert res.status_code == 200
    assert res.json().get("status") == "ok"


def test_health_db_ok(client):
    res = client.get("/health/db")
    assert res.status_code == 200
    assert res.json() == {"status": "ok", "database": "1"}


def test_responses_carry_request_id_and_security_headers(client):
    res = client.get("/health", headers={"X-Request-Id": "req-123"})
    assert res.headers["X-Request-Id"] == "req-123"
    assert res.headers["X-Content-Type-Options"] == "nosniff"


def test_metrics_report_requests_and_live_connections(client):
    client.get("/health")
    res = client.get("/metrics")
    assert res.status_code == 200
    body = res.json()
    assert body["requests_total"] >= 1
    assert body["by_path"]["/health"]["count"] >= 1
    assert body["live_wishlists"] == 0
    assert body["live_connections"] == 0


def test_metrics_count_open_sockets(client, login):
    headers = login(4040, "Metric")
    share_id = client.get("/wishlist", headers=headers).json()["shareId"]
    token = headers["Authorization"].removeprefix("Bearer ")

    with client.websocket_connect(f"/ws/{share_id}?token={token}") as ws:
        ws.receive_json()
        body = client.get("/metrics").json()

    assert body["live_wishlists"] == 1
    assert body["live_connections"] == 1


def test_unknown_route_is_not_found(client):
    assert client.get("/nope").status_code == 404


def test_metrics_track_reservations_and_rejections(client, login):
    owner = login(5050, "Owner")
    guest = login(6060, "Guest")
    client.get("/wishlist", headers=owner)
    item_id = client.put("/wishlist/items", json={"items": [{"text": "Vase"}]}, headers=owner).json()["items"][0]["id"]
    before = client.get("/metrics").json()

    client.post(f"/wishlist/items/{item_id}/reserve", headers=guest)
    client.post(f"/wishlist/items/{item_id}/reserve", headers=owner)
    after = client.get("/metrics").json()

    assert after["reservations"].get("reserved", 0) == before["reservations"].get("reserved", 0) + 1
    assert after["rejections"].get("403", 0) == before["rejections"].get("403", 0) + 1
