from paynotify.db import models


def test_paid_payment_returns_code(client, paid_payment):
    r = client.post("/payments/status", json={"provider_payment_id": "pi_123"})

    assert r.status_code == 200
    assert r.json() == {
        "ok": True,
        "payment": {
            "purchase_id": "pay_1",
            "status": "paid",
            "access_code": "123456",
            "valid_until": "2026-12-31T23:59:00+00:00",
        },
    }


def test_lookup_by_checkout_session(client, paid_payment):
    r = client.post("/payments/status", json={"provider_payment_id": "cs_123"})

    assert r.status_code == 200
    assert r.json()["payment"]["purchase_id"] == "pay_1"


def test_pending_payment_hides_code(client, db):
    db.add(models.AccessCode(id="code_9", code_plaintext="999999"))
    db.add(
        models.Payment(
            id="pay_9", provider_payment_id="pi_pending", status="pending", access_code_id="code_9"
        )
    )
    db.commit()

    r = client.post("/payments/status", json={"provider_payment_id": "pi_pending"})

    assert r.status_code == 200
    payment = r.json()["payment"]
    assert payment["status"] == "pending"
    assert payment["access_code"] is None
    assert payment["valid_until"] is None


def test_unknown_payment(client):
    r = client.post("/payments/status", json={"provider_payment_id": "pi_missing"})

    assert r.status_code == 404
    assert r.json() == {"error": "payment_not_found"}


def test_missing_payment_id(client):
    r = client.post("/payments/status", json={})

    assert r.status_code == 400
    assert r.json() == {"error": "missing_provider_payment_id"}


def test_status_rate_limited(client):
    codes = [
        client.post("/payments/status", json={"provider_payment_id": "pi_missing"}).status_code
        for _ in range(11)
    ]

    assert codes[:10] == [404] * 10
    assert codes[10] == 429
