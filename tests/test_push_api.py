from __future__ import annotations

from datetime import date

import httpx

from bills_agent.services.projection import current_month_key

TOKEN = "ExponentPushToken[device-1]"


def _due_today(client, bill_id="rent", amount=1200):
    client.post("/api/bills", json={"id": bill_id, "name": bill_id.title(), "dueDay": date.today().day, "amount": amount})


def test_register_is_idempotent(client, store_path):
    first = client.post("/api/push/register", json={"token": TOKEN, "platform": "ios"})
    second = client.post("/api/push/register", json={"token": TOKEN})

    assert first.json() == {"ok": True, "token": TOKEN}
    assert second.status_code == 200
    assert store_path.read_text().count(TOKEN) == 1
    assert '"platform": "ios"' in store_path.read_text()


def test_register_accepts_any_format(client, store_path):
    response = client.post("/api/push/register", json={"token": "not-an-expo-token"})

    assert response.status_code == 200
    assert '"platform": "unknown"' in store_path.read_text()


def test_register_and_unregister_require_token(client):
    assert client.post("/api/push/register", json={}).json() == {
        "error": "token is required",
        "details": "token: Field required",
    }
    assert client.post("/api/push/register", json={"token": ""}).status_code == 400
    assert client.post("/api/push/unregister", json={}).status_code == 400


def test_unregister(client, store_path):
    client.post("/api/push/register", json={"token": TOKEN})

    response = client.post("/api/push/unregister", json={"token": TOKEN})

    assert response.json() == {"ok": True}
    assert TOKEN not in store_path.read_text()
    assert client.post("/api/push/unregister", json={"token": TOKEN}).status_code == 200


def test_send_without_upcoming_bills(client):
    client.post("/api/push/register", json={"token": TOKEN})

    assert client.post("/api/push/send-upcoming", json={}).json() == {"sent": 0, "reason": "no-upcoming"}


def test_send_skips_paid_bills(client):
    client.post("/api/push/register", json={"token": TOKEN})
    _due_today(client)
    client.post("/api/bills/rent/paid", json={"isPaid": True})

    assert client.post("/api/push/send-upcoming", json={}).json()["reason"] == "no-upcoming"


def test_send_without_valid_tokens(client):
    _due_today(client)
    client.post("/api/push/register", json={"token": "garbage"})

    assert client.post("/api/push/send-upcoming", json={}).json() == {"sent": 0, "reason": "no-tokens"}


def test_send_batches_one_notification_per_valid_token(make_client, recorder):
    expo = recorder(lambda request: httpx.Response(200, json={"data": [{"status": "ok", "id": "t1"}, {"status": "ok", "id": "t2"}]}))
    client = make_client(expo=expo)
    _due_today(client, "rent", 1200)
    _due_today(client, "gym", 40)
    client.post("/api/push/register", json={"token": TOKEN})
    client.post("/api/push/register", json={"token": "ExponentPushToken[device-2]"})
    client.post("/api/push/register", json={"token": "legacy-token"})

    response = client.post("/api/push/send-upcoming", json={})

    assert response.status_code == 200
    assert response.json() == {"sent": 2, "tickets": [{"status": "ok", "id": "t1"}, {"status": "ok", "id": "t2"}]}
    assert len(expo.requests) == 1
    [messages] = expo.json_bodies()
    assert [message["to"] for message in messages] == [TOKEN, "ExponentPushToken[device-2]"]
    day = date.today().day
    assert messages[0]["title"] == "Bills due soon"
    assert messages[0]["body"] == f"Rent is due on day {day} (1200.00)\nGym is due on day {day} (40.00)"
    assert messages[0]["data"] == {"month": current_month_key(), "bills": ["rent", "gym"]}
    assert messages[0]["body"] == messages[1]["body"]


def test_send_failure_is_aggregate_502(make_client, recorder):
    expo = recorder(lambda request: httpx.Response(400, json={"errors": [{"message": "bad token"}, {"message": "slow down"}]}))
    client = make_client(expo=expo)
    _due_today(client)
    client.post("/api/push/register", json={"token": TOKEN})

    response = client.post("/api/push/send-upcoming", json={})

    assert response.status_code == 502
    assert response.json() == {"error": "Failed to send push notifications", "details": "bad token, slow down"}


def test_send_transport_fault_is_502(make_client):
    def unreachable(request):
        raise httpx.ConnectError("connection refused", request=request)

    client = make_client(expo=unreachable)
    _due_today(client)
    client.post("/api/push/register", json={"token": TOKEN})

    response = client.post("/api/push/send-upcoming", json={})

    assert response.status_code == 502
    assert response.json()["details"] == "connection refused"
