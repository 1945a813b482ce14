"""Tests for the pickup lifecycle API router."""

import uuid
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from fastapi.routing import APIRoute, APIWebSocketRoute
from fastapi.testclient import TestClient
from httpx import ASGITransport, AsyncClient
from jose import jwt
from sqlalchemy.exc import OperationalError
from starlette.websockets import WebSocketDisconnect

from ecopickup.app import app
from ecopickup.config import settings
from ecopickup.database.session import get_db
from ecopickup.models.enums import ActorRole
from ecopickup.modules.pickup.live_feed import get_pickup_feed
from ecopickup.modules.pickup.router import router
from ecopickup.modules.pickup.service import PickupService
from ecopickup.rate_limit import limiter

PREFIX = "/api/v1/pickups"


def _token(user_id: uuid.UUID, role: ActorRole) -> str:
    claims = {
        "sub": str(user_id),
        "email": f"{user_id.hex[:8]}@ecopickup.test",
        "role": role.value,
        "name": role.value,
    }
    return jwt.encode(claims, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def _auth(user_id: uuid.UUID, role: ActorRole) -> dict:
    return {"Authorization": f"Bearer {_token(user_id, role)}"}


def _proposal_body(post_id: uuid.UUID, details: dict) -> dict:
    body = dict(details)
    body["post_id"] = str(post_id)
    body["pickup_date"] = details["pickup_date"].isoformat()
    body["pickup_time"] = details["pickup_time"].isoformat()
    return body


@pytest_asyncio.fixture
async def client(session_factory, feed):
    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_pickup_feed] = lambda: feed
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


class TestRouterEndpoints:
    def test_has_expected_routes(self):
        routes = {
            (route.path, method)
            for route in router.routes
            if isinstance(route, APIRoute)
            for method in route.methods
        }
        expected = {
            ("/pickups", "POST"),
            ("/pickups", "GET"),
            ("/pickups/upcoming", "GET"),
            ("/pickups/by-post/{post_id}", "GET"),
            ("/pickups/by-post/{post_id}/active", "GET"),
            ("/pickups/{pickup_id}", "GET"),
            ("/pickups/{pickup_id}", "PATCH"),
            ("/pickups/{pickup_id}/cancellation", "GET"),
            ("/pickups/{pickup_id}/confirm", "POST"),
            ("/pickups/{pickup_id}/in-transit", "POST"),
            ("/pickups/{pickup_id}/start-picking", "POST"),
            ("/pickups/{pickup_id}/cancel", "POST"),
            ("/pickups/{pickup_id}/complete", "POST"),
        }
        assert expected <= routes

    def test_has_live_view_socket(self):
        sockets = [r.path for r in router.routes if isinstance(r, APIWebSocketRoute)]
        assert sockets == ["/pickups/{pickup_id}/live"]


class TestPickupApi:
    @pytest.mark.asyncio
    async def test_propose_then_confirm(self, client, marketplace, make_details):
        response = await client.post(
            PREFIX,
            json=_proposal_body(marketplace.post_id, make_details()),
            headers=_auth(marketplace.collector_id, ActorRole.COLLECTOR),
        )
        assert response.status_code == 201
        created = response.json()
        assert created["status"] == "Proposed"
        assert created["version"] == 1
        assert created["giver_id"] == str(marketplace.giver_id)

        response = await client.post(
            f"{PREFIX}/{created['id']}/confirm",
            headers=_auth(marketplace.giver_id, ActorRole.GIVER),
        )
        assert response.status_code == 200
        assert response.json()["status"] == "Confirmed"
        assert response.json()["version"] == 2

    @pytest.mark.asyncio
    async def test_collector_cannot_confirm(self, client, marketplace, proposed):
        response = await client.post(
            f"{PREFIX}/{proposed.id}/confirm",
            headers={
                **_auth(marketplace.collector_id, ActorRole.COLLECTOR),
                "X-Request-ID": "req-123",
            },
        )
        assert response.status_code == 403
        error = response.json()["error"]
        assert error["code"] == "FORBIDDEN"
        assert error["details"] == [{"reason": "WrongActor"}]
        assert error["retryable"] is False
        assert error["requestId"] == "req-123"
        assert response.headers["x-request-id"] == "req-123"

    @pytest.mark.asyncio
    async def test_initiative_post_is_rejected(self, client, marketplace, make_details):
        response = await client.post(
            PREFIX,
            json=_proposal_body(marketplace.initiative_post_id, make_details()),
            headers=_auth(marketplace.collector_id, ActorRole.COLLECTOR),
        )
        assert response.status_code == 422
        assert response.json()["error"]["code"] == "VALIDATION_ERROR"

    @pytest.mark.asyncio
    async def test_missing_token(self, client, proposed):
        response = await client.get(f"{PREFIX}/{proposed.id}")
        assert response.status_code == 401
        assert response.json()["error"]["code"] == "UNAUTHORIZED"

    @pytest.mark.asyncio
    async def test_non_party_cannot_read(self, client, marketplace, proposed):
        response = await client.get(
            f"{PREFIX}/{proposed.id}",
            headers=_auth(marketplace.other_collector_id, ActorRole.COLLECTOR),
        )
        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_cancellation_check(self, client, marketplace, confirmed):
        response = await client.get(
            f"{PREFIX}/{confirmed.id}/cancellation",
            headers=_auth(marketplace.giver_id, ActorRole.GIVER),
        )
        assert response.status_code == 200
        body = response.json()
        assert body["can_cancel"] is True
        assert body["hours_until_pickup"] > 5
        assert body["deadline"] is not None

    @pytest.mark.asyncio
    async def test_cancel_with_reason(self, client, marketplace, proposed):
        response = await client.post(
            f"{PREFIX}/{proposed.id}/cancel",
            json={"reason": "Truck broke down"},
            headers=_auth(marketplace.collector_id, ActorRole.COLLECTOR),
        )
        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "Cancelled"
        assert body["cancellation_reason"] == "Truck broke down"
        assert body["cancelled_by"] == str(marketplace.collector_id)

    @pytest.mark.asyncio
    async def test_malformed_completion(self, client, marketplace, in_transit):
        response = await client.post(
            f"{PREFIX}/{in_transit.id}/complete",
            json={"lines": "a lot of bottles"},
            headers=_auth(marketplace.giver_id, ActorRole.GIVER),
        )
        assert response.status_code == 422
        error = response.json()["error"]
        assert error["code"] == "VALIDATION_ERROR"
        assert error["details"][0]["field"] == "body.lines"

    @pytest.mark.asyncio
    async def test_complete(self, client, marketplace, in_transit):
        response = await client.post(
            f"{PREFIX}/{in_transit.id}/complete",
            json={
                "lines": [{"material_id": "cardboard", "quantity": "4.5", "payment": "9"}],
                "payment_method": "gcash",
            },
            headers=_auth(marketplace.giver_id, ActorRole.GIVER),
        )
        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "Completed"
        assert body["completion"]["lines"][0]["material_name"] == "Cardboard"

    @pytest.mark.asyncio
    async def test_clearing_required_detail_is_rejected(self, client, marketplace, proposed):
        headers = _auth(marketplace.collector_id, ActorRole.COLLECTOR)
        response = await client.patch(
            f"{PREFIX}/{proposed.id}", json={"contact_person": None}, headers=headers
        )
        assert response.status_code == 422
        error = response.json()["error"]
        assert error["code"] == "VALIDATION_ERROR"
        assert "contact_person" in error["details"][0]["message"]

        current = await client.get(f"{PREFIX}/{proposed.id}", headers=headers)
        assert current.json()["contact_person"] == "Maria Santos"
        assert current.json()["version"] == 1

    @pytest.mark.asyncio
    async def test_store_outage_is_retryable(self, client, marketplace, proposed, monkeypatch):
        lost = OperationalError("SELECT", {}, ConnectionResetError("server closed the connection"))
        monkeypatch.setattr(PickupService, "_load_for_update", AsyncMock(side_effect=lost))

        response = await client.post(
            f"{PREFIX}/{proposed.id}/confirm",
            headers=_auth(marketplace.giver_id, ActorRole.GIVER),
        )
        assert response.status_code == 503
        error = response.json()["error"]
        assert error["code"] == "STORE_UNAVAILABLE"
        assert error["retryable"] is True

    @pytest.mark.asyncio
    async def test_proposal_rate_limit(self, client, marketplace, make_details):
        body = _proposal_body(marketplace.initiative_post_id, make_details())
        headers = _auth(marketplace.collector_id, ActorRole.COLLECTOR)
        limiter.reset()
        try:
            for _ in range(40):
                response = await client.post(PREFIX, json=body, headers=headers)
                if response.status_code == 429:
                    break
        finally:
            limiter.reset()

        assert response.status_code == 429
        error = response.json()["error"]
        assert error["code"] == "RATE_LIMITED"
        assert error["retryable"] is True

    @pytest.mark.asyncio
    async def test_list_and_upcoming(self, client, marketplace, proposed):
        headers = _auth(marketplace.giver_id, ActorRole.GIVER)

        listed = await client.get(PREFIX, params={"role": "giver"}, headers=headers)
        assert listed.status_code == 200
        assert listed.json()["total"] == 1

        upcoming = await client.get(f"{PREFIX}/upcoming", headers=headers)
        assert [item["id"] for item in upcoming.json()["items"]] == [str(proposed.id)]

        active = await client.get(f"{PREFIX}/by-post/{marketplace.post_id}/active", headers=headers)
        assert active.json()["id"] == str(proposed.id)

        outsider = _auth(marketplace.other_collector_id, ActorRole.COLLECTOR)
        history = await client.get(f"{PREFIX}/by-post/{marketplace.post_id}", headers=outsider)
        assert history.json() == []


class TestLiveView:
    def test_socket_without_token_is_refused(self, feed):
        app.dependency_overrides[get_pickup_feed] = lambda: feed
        try:
            test_client = TestClient(app)
            with pytest.raises(WebSocketDisconnect) as excinfo:
                with test_client.websocket_connect(f"{PREFIX}/{uuid.uuid4()}/live") as ws:
                    ws.receive_json()
            assert excinfo.value.code == 1008
        finally:
            app.dependency_overrides.clear()
