"""Mining session endpoints."""

from datetime import datetime, timezone
from decimal import Decimal

from mining_rewards.db.models import SessionState


async def _register(client, user_id: str = "u1", referred_by: str | None = None) -> dict:
    body = {"user_id": user_id}
    if referred_by:
        body["referred_by_code"] = referred_by
    response = await client.post("/api/v1/users", json=body)
    assert response.status_code == 201
    return response.json()


class TestCreateSession:
    async def test_creates_pending_session_and_publishes(self, client, publisher, api_stores):
        await _register(client)

        response = await client.post(
            "/api/v1/mining/sessions",
            json={"user_id": "u1", "session_id": "s1", "start_at": "2026-03-10T09:30:15Z"},
        )

        assert response.status_code == 201
        data = response.json()
        assert data["session_id"] == "s1"
        assert data["state"] == "PENDING"
        assert data["end_at"] is None
        [event] = publisher.events
        assert event.session_id == "s1"
        assert event.user_id == "u1"
        assert event.start_instant == datetime(2026, 3, 10, 9, 30, 15, tzinfo=timezone.utc)
        assert (await api_stores.sessions.get("s1")).state == SessionState.PENDING

    async def test_generates_id_and_start(self, client, publisher):
        await _register(client)
        response = await client.post("/api/v1/mining/sessions", json={"user_id": "u1"})
        assert response.status_code == 201
        assert response.json()["session_id"] == publisher.events[0].session_id

    async def test_unknown_user(self, client, publisher):
        response = await client.post("/api/v1/mining/sessions", json={"user_id": "ghost"})
        assert response.status_code == 404
        assert publisher.events == []

    async def test_duplicate_session_id(self, client):
        await _register(client)
        body = {"user_id": "u1", "session_id": "s1"}
        assert (await client.post("/api/v1/mining/sessions", json=body)).status_code == 201
        assert (await client.post("/api/v1/mining/sessions", json=body)).status_code == 409

    async def test_missing_user_id(self, client):
        response = await client.post("/api/v1/mining/sessions", json={})
        assert response.status_code == 422
        assert response.json()["detail"] == "Validation error"


class TestReadSession:
    async def test_found(self, client):
        await _register(client)
        await client.post("/api/v1/mining/sessions", json={"user_id": "u1", "session_id": "s1"})
        response = await client.get("/api/v1/mining/sessions/s1")
        assert response.status_code == 200
        assert response.json()["user_id"] == "u1"

    async def test_not_found(self, client):
        response = await client.get("/api/v1/mining/sessions/nope")
        assert response.status_code == 404
        assert response.json() == {"detail": "Session not found"}


class TestRewardPreview:
    async def test_full_bonus(self, client):
        response = await client.get(
            "/api/v1/mining/reward-preview",
            params={"population": 5000, "active_referrals": 3, "streak": "true"},
        )
        assert response.status_code == 200
        data = response.json()
        assert Decimal(data["reward"]) == Decimal("46.080")
        assert Decimal(data["base"]) == Decimal("24")
        assert data["has_streak"] is True

    async def test_defaults(self, client):
        response = await client.get("/api/v1/mining/reward-preview", params={"population": 100_000})
        assert Decimal(response.json()["reward"]) == Decimal("8.000")

    async def test_negative_population_rejected(self, client):
        response = await client.get("/api/v1/mining/reward-preview", params={"population": -1})
        assert response.status_code == 422
