async def test_health(client):
    resp = await client.get("/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "running"
    assert resp.json()["database"] == "ok"


async def test_metrics_exposed(client):
    resp = await client.get("/metrics")
    assert resp.status_code == 200
    assert "public_links_issued_total" in resp.text


async def test_validation_errors_name_the_field(client):
    resp = await client.post("/auth/login", json={"email": "not-an-email", "password": "x"})
    assert resp.status_code == 400
    body = resp.json()
    assert body["kind"] == "validation_error"
    assert body["detail"].startswith("email")
