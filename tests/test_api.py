from datetime import timedelta

import pytest
from httpx import ASGITransport, AsyncClient

from payouts.deps import get_db, get_locks
from payouts.main import app
from payouts.models import utcnow
from payouts.transaction_service import TransactionProcessor


@pytest.fixture
async def client(session_factory, locks, rail):
    processor = TransactionProcessor(session_factory, rail, timeout_seconds=5, locks=locks)

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_locks] = lambda: locks
    app.state.processor = processor

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

    await processor.shutdown()
    app.state.processor = None
    app.dependency_overrides.clear()


def schedule_payload(**overrides):
    payload = {
        "entityId": "pharmacy-1",
        "entityName": "MediCare Pharmacy",
        "entityType": "pharmacy",
        "scheduleType": "collection",
        "frequency": "biweekly",
        "nextDueDate": (utcnow() - timedelta(days=1, hours=1)).isoformat(),
        "pendingAmount": 2156.8,
        "totalAmount": 5431.2,
        "paymentMethod": "bank_transfer",
        "minimumAmount": 1500,
        "alertSettings": {"alertDaysBefore": 2, "escalationDays": 5},
    }
    payload.update(overrides)
    return payload


async def test_health(client):
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok", "inFlightTransactions": 0}


async def test_create_and_fetch_schedule(client):
    response = await client.post("/schedules", json=schedule_payload())
    assert response.status_code == 201
    body = response.json()
    assert body["entityId"] == "pharmacy-1"
    assert body["status"] == "overdue"
    assert body["alertSettings"] == {
        "enableAlerts": True,
        "alertDaysBefore": 2,
        "enableOverdueAlerts": True,
        "escalationDays": 5,
    }
    assert body["totalCollected"] == 0.0
    assert body["successfulTransactions"] == 0

    fetched = await client.get(f"/schedules/{body['id']}")
    assert fetched.status_code == 200
    assert fetched.json()["id"] == body["id"]

    missing = await client.get("/schedules/999")
    assert missing.status_code == 404
    assert "not found" in missing.json()["detail"]


async def test_create_rejects_bad_input(client):
    bad_frequency = await client.post("/schedules", json=schedule_payload(frequency="daily"))
    assert bad_frequency.status_code == 422

    negative = await client.post("/schedules", json=schedule_payload(pendingAmount=-1))
    assert negative.status_code == 422

    mismatch = await client.post("/schedules", json=schedule_payload(entityType="doctor"))
    assert mismatch.status_code == 422


async def test_create_rejects_duplicate_entity(client):
    assert (await client.post("/schedules", json=schedule_payload())).status_code == 201

    duplicate = await client.post("/schedules", json=schedule_payload(frequency="weekly"))
    assert duplicate.status_code == 422
    assert "already has schedule" in duplicate.json()["detail"]


async def test_list_filters(client):
    await client.post("/schedules", json=schedule_payload())
    await client.post(
        "/schedules",
        json=schedule_payload(
            entityId="doctor-0",
            entityName="Dr. Ahmed Hassan",
            entityType="doctor",
            scheduleType="payout",
            nextDueDate=(utcnow() + timedelta(days=5)).isoformat(),
        ),
    )

    everything = (await client.get("/schedules")).json()
    assert [s["entityId"] for s in everything] == ["pharmacy-1", "doctor-0"]

    payouts = (await client.get("/schedules", params={"scheduleType": "payout"})).json()
    assert [s["entityId"] for s in payouts] == ["doctor-0"]

    overdue = (await client.get("/schedules", params={"status": "overdue"})).json()
    assert [s["entityId"] for s in overdue] == ["pharmacy-1"]


async def test_patch_and_status(client):
    created = (await client.post("/schedules", json=schedule_payload())).json()

    patched = await client.patch(
        f"/schedules/{created['id']}",
        json={"pendingAmount": 100.5, "alertSettings": {"enableAlerts": False}},
    )
    assert patched.status_code == 200
    assert patched.json()["pendingAmount"] == 100.5
    assert patched.json()["alertSettings"]["enableAlerts"] is False
    assert patched.json()["alertSettings"]["escalationDays"] == 5

    paused = await client.post(f"/schedules/{created['id']}/status", json={"status": "paused"})
    assert paused.status_code == 200
    assert paused.json()["status"] == "paused"

    cancelled = await client.post(f"/schedules/{created['id']}/status", json={"status": "cancelled"})
    assert cancelled.json()["status"] == "cancelled"

    revived = await client.post(f"/schedules/{created['id']}/status", json={"status": "active"})
    assert revived.status_code == 409


async def test_process_flow(client):
    created = (await client.post("/schedules", json=schedule_payload())).json()

    evaluated = await client.post("/alerts/evaluate")
    assert evaluated.status_code == 200
    assert [c["alert"]["alertType"] for c in evaluated.json()] == ["collection_overdue"]

    response = await client.post(f"/schedules/{created['id']}/process", json={"notes": "Monthly sweep"})
    assert response.status_code == 202
    transaction = response.json()
    assert transaction["status"] == "processing"
    assert transaction["amount"] == 2156.8
    assert transaction["notes"] == "Monthly sweep"

    await app.state.processor.wait_for(transaction["id"])

    settled = (await client.get(f"/schedules/{created['id']}")).json()
    assert settled["pendingAmount"] == 0.0
    assert settled["status"] == "active"
    assert settled["totalCollected"] == 2156.8

    fetched = (await client.get(f"/transactions/{transaction['id']}")).json()
    assert fetched["status"] == "completed"

    history = (await client.get(f"/schedules/{created['id']}/transactions")).json()
    assert [t["id"] for t in history] == [transaction["id"]]
    everything = (await client.get("/transactions", params={"scheduleId": created["id"]})).json()
    assert [t["id"] for t in everything] == [transaction["id"]]

    alerts = (await client.get("/alerts", params={"isResolved": "true"})).json()
    assert len(alerts) == 1

    again = await client.post(f"/schedules/{created['id']}/process")
    assert again.status_code == 409


async def test_process_conflict_while_in_flight(client, rail):
    created = (await client.post("/schedules", json=schedule_payload())).json()
    rail.hold()

    first = await client.post(f"/schedules/{created['id']}/process")
    assert first.status_code == 202
    second = await client.post(f"/schedules/{created['id']}/process")
    assert second.status_code == 409
    top_up = await client.patch(f"/schedules/{created['id']}", json={"pendingAmount": 3000})
    assert top_up.status_code == 409

    health = (await client.get("/health")).json()
    assert health["inFlightTransactions"] == 1

    rail.release()
    await app.state.processor.drain()


async def test_alert_actions(client):
    await client.post("/schedules", json=schedule_payload())
    changes = (await client.post("/alerts/evaluate")).json()
    alert = changes[0]["alert"]
    assert changes[0]["action"] == "created"
    assert alert["severity"] == "high"
    assert alert["metadata"]["paymentMethod"] == "bank_transfer"

    unread = (await client.get("/alerts", params={"isRead": "false"})).json()
    assert [a["id"] for a in unread] == [alert["id"]]

    read = await client.post(f"/alerts/{alert['id']}/read")
    assert read.status_code == 200
    assert read.json() is True

    resolved = await client.post(f"/alerts/{alert['id']}/resolve")
    assert resolved.json() is True
    twice = await client.post(f"/alerts/{alert['id']}/resolve")
    assert twice.status_code == 409

    missing = await client.post("/alerts/999/read")
    assert missing.status_code == 404

    assert (await client.post("/alerts/evaluate")).json()[0]["action"] == "created"


async def test_metrics_and_analytics(client):
    await client.post("/schedules", json=schedule_payload())

    metrics = await client.get("/metrics")
    assert metrics.status_code == 200
    body = metrics.json()
    assert body["overdueCollections"] == 1
    assert body["overduePayouts"] == 0
    assert body["totalPendingCollections"] == 2156.8
    assert set(body["upcomingDue"]) == {"today", "thisWeek", "nextWeek"}
    assert set(body["performance"]) == {"onTimeRate", "averageDelayDays", "successRate"}

    analytics = await client.get("/analytics", params={"timeframe": "7d"})
    assert analytics.status_code == 200
    assert analytics.json()["timeframe"] == "7d"
    assert analytics.json()["collectionSuccess"] == 100.0

    bad = await client.get("/analytics", params={"timeframe": "soon"})
    assert bad.status_code == 422
