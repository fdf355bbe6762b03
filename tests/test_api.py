"""
Integration tests for the REST API endpoints.

The app is built around the in-memory engine from ``conftest`` so the
routes, error mapping and schemas are exercised without PostgreSQL or
Redis.  ``ASGITransport`` does not run the lifespan, so the dispatch
worker never starts.
"""

from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from src.api.app import create_app
from src.api.middleware import limiter
from src.domain.exceptions import ConcurrentUpdate


@pytest_asyncio.fixture
async def client(engine):
    limiter.reset()
    app = create_app(ride_engine=engine)
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


def _ride_body(rider_id: int, **extra) -> dict:
    body = {
        "rider_id": rider_id,
        "pickup": {"latitude": 19.0896, "longitude": 72.8656, "name": "Terminal 2"},
        "destination": {"latitude": 19.1176, "longitude": 72.8490},
        "fare": 20.0,
    }
    body.update(extra)
    return body


async def _create(client: AsyncClient, rider_id: int, **extra) -> int:
    resp = await client.post("/api/v1/rides", json=_ride_body(rider_id, **extra))
    assert resp.status_code == 202
    return resp.json()["id"]


# ── Tests ─────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_health(client: AsyncClient, people):
    await _create(client, people.alice)
    resp = await client.get("/api/v1/admin/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok", "pending_rides": 1}


@pytest.mark.asyncio
async def test_create_ride_returns_202(client: AsyncClient, people):
    resp = await client.post(
        "/api/v1/rides",
        json=_ride_body(
            people.alice,
            vehicle_type="premium",
            payment_method="card",
            split_fare=True,
            split_with=["bob@example.com"],
        ),
    )
    assert resp.status_code == 202
    data = resp.json()
    assert data["status"] == "requested"
    assert data["driver_id"] is None
    assert data["vehicle_type"] == "premium"
    assert data["split_with"] == ["bob@example.com"]
    assert data["pickup"]["name"] == "Terminal 2"


@pytest.mark.asyncio
async def test_create_ride_unknown_rider(client: AsyncClient):
    resp = await client.post("/api/v1/rides", json=_ride_body(999))
    assert resp.status_code == 404
    assert resp.json()["error"] == "not_found"


@pytest.mark.asyncio
async def test_create_ride_validation(client: AsyncClient, people):
    resp = await client.post(
        "/api/v1/rides", json=_ride_body(people.alice, fare=-5)
    )
    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_get_ride_not_found(client: AsyncClient):
    resp = await client.get("/api/v1/rides/9999")
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_pending_rides_priority_order(client: AsyncClient, people):
    bob = await _create(client, people.bob)
    alice = await _create(client, people.alice)

    resp = await client.get("/api/v1/rides/pending")
    assert resp.status_code == 200
    pending = resp.json()
    assert [p["ride_id"] for p in pending] == [alice, bob]
    assert [p["is_priority"] for p in pending] == [True, False]
    assert pending[0]["rider_name"] == "Alice"


@pytest.mark.asyncio
async def test_accept_race_loser_gets_409(client: AsyncClient, people):
    ride_id = await _create(client, people.alice)

    first = await client.post(
        f"/api/v1/rides/{ride_id}/accept", json={"driver_id": people.driver}
    )
    second = await client.post(
        f"/api/v1/rides/{ride_id}/accept", json={"driver_id": people.other_driver}
    )

    assert first.status_code == 200
    assert first.json()["status"] == "accepted"
    assert first.json()["driver_id"] == people.driver
    assert second.status_code == 409
    assert second.json()["error"] == "already_matched"


@pytest.mark.asyncio
async def test_offline_driver_cannot_accept(client: AsyncClient, people):
    ride_id = await _create(client, people.alice)
    resp = await client.post(
        f"/api/v1/rides/{ride_id}/accept", json={"driver_id": people.offline_driver}
    )
    assert resp.status_code == 409
    assert resp.json()["error"] == "driver_unavailable"


@pytest.mark.asyncio
async def test_reject_hides_ride_from_that_driver(client: AsyncClient, people):
    ride_id = await _create(client, people.alice)

    resp = await client.post(
        f"/api/v1/rides/{ride_id}/reject", json={"driver_id": people.driver}
    )
    assert resp.status_code == 204

    mine = await client.get(
        "/api/v1/rides/pending", params={"driver_id": people.driver}
    )
    theirs = await client.get(
        "/api/v1/rides/pending", params={"driver_id": people.other_driver}
    )
    assert mine.json() == []
    assert [p["ride_id"] for p in theirs.json()] == [ride_id]


@pytest.mark.asyncio
async def test_next_ride(client: AsyncClient, people):
    empty = await client.post(f"/api/v1/drivers/{people.driver}/next-ride")
    assert empty.status_code == 204

    ride_id = await _create(client, people.bob)
    resp = await client.post(f"/api/v1/drivers/{people.driver}/next-ride")
    assert resp.status_code == 200
    assert resp.json()["id"] == ride_id
    assert resp.json()["status"] == "accepted"


@pytest.mark.asyncio
async def test_full_lifecycle(client: AsyncClient, people):
    ride_id = await _create(client, people.alice)
    await client.post(
        f"/api/v1/rides/{ride_id}/accept", json={"driver_id": people.driver}
    )

    started = await client.post(f"/api/v1/rides/{ride_id}/start")
    assert started.json()["status"] == "in_progress"

    driver_done = await client.post(f"/api/v1/rides/{ride_id}/confirm/driver")
    assert driver_done.json() == {
        "rider_completed": False,
        "driver_completed": True,
        "both_completed": False,
    }
    status = await client.get(f"/api/v1/rides/{ride_id}/completion")
    assert status.json()["driver_completed"] is True

    rider_done = await client.post(
        f"/api/v1/rides/{ride_id}/confirm/rider", json={"rating": 5}
    )
    assert rider_done.json()["both_completed"] is True

    ride = (await client.get(f"/api/v1/rides/{ride_id}")).json()
    assert ride["status"] == "completed"
    assert ride["rating"] == 5
    assert ride["points_earned"] == 33
    assert ride["driver_bonus"] == 2.0
    assert ride["completed_at"] is not None


@pytest.mark.asyncio
async def test_rider_confirmation_without_body(client: AsyncClient, people):
    ride_id = await _create(client, people.bob)
    await client.post(
        f"/api/v1/rides/{ride_id}/accept", json={"driver_id": people.driver}
    )

    resp = await client.post(f"/api/v1/rides/{ride_id}/confirm/rider")
    assert resp.status_code == 200
    assert resp.json()["rider_completed"] is True


@pytest.mark.asyncio
async def test_rating_out_of_range(client: AsyncClient, people):
    ride_id = await _create(client, people.bob)
    await client.post(
        f"/api/v1/rides/{ride_id}/accept", json={"driver_id": people.driver}
    )
    resp = await client.post(
        f"/api/v1/rides/{ride_id}/confirm/rider", json={"rating": 6}
    )
    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_confirm_requested_ride_fails(client: AsyncClient, people):
    ride_id = await _create(client, people.alice)
    resp = await client.post(f"/api/v1/rides/{ride_id}/confirm/driver")
    assert resp.status_code == 409
    assert resp.json()["error"] == "invalid_ride_state"


@pytest.mark.asyncio
async def test_cancel_pending_ride(client: AsyncClient, people):
    ride_id = await _create(client, people.alice)
    resp = await client.patch(f"/api/v1/rides/{ride_id}/cancel")
    assert resp.status_code == 200
    assert resp.json()["status"] == "canceled"

    pending = await client.get("/api/v1/rides/pending")
    assert pending.json() == []


@pytest.mark.asyncio
async def test_cancel_already_canceled_ride_fails(client: AsyncClient, people):
    ride_id = await _create(client, people.alice)
    await client.patch(f"/api/v1/rides/{ride_id}/cancel")
    resp = await client.patch(f"/api/v1/rides/{ride_id}/cancel")
    assert resp.status_code == 409
    assert resp.json()["error"] == "invalid_transition"


@pytest.mark.asyncio
async def test_ride_history(client: AsyncClient, people):
    first = await _create(client, people.alice)
    second = await _create(client, people.alice)
    await client.post(
        f"/api/v1/rides/{first}/accept", json={"driver_id": people.driver}
    )

    rider = await client.get(f"/api/v1/users/{people.alice}/rides")
    assert [r["id"] for r in rider.json()] == [second, first]

    driver = await client.get(f"/api/v1/drivers/{people.driver}/rides")
    assert [r["id"] for r in driver.json()] == [first]


@pytest.mark.asyncio
async def test_profiles_reflect_completed_ride(client: AsyncClient, people):
    ride_id = await _create(client, people.alice)
    await client.post(
        f"/api/v1/rides/{ride_id}/accept", json={"driver_id": people.driver}
    )
    await client.post(f"/api/v1/rides/{ride_id}/confirm/driver")
    await client.post(f"/api/v1/rides/{ride_id}/confirm/rider", json={"rating": 5})

    user = await client.get(f"/api/v1/users/{people.alice}")
    assert user.status_code == 200
    assert user.json() == {
        "id": people.alice,
        "name": "Alice",
        "rating": 4.9,
        "total_rides": 1,
        "points": 33,
        "level": 1,
    }

    driver = await client.get(f"/api/v1/drivers/{people.driver}")
    assert driver.status_code == 200
    body = driver.json()
    assert (body["name"], body["vehicle"], body["license_plate"]) == (
        "Dave",
        "Toyota Camry",
        "ABC-1234",
    )
    assert (body["total_rides"], body["rating"], body["is_active"]) == (1, 5.0, True)


@pytest.mark.asyncio
async def test_list_drivers_by_online_flag(client: AsyncClient, people):
    everyone = await client.get("/api/v1/drivers")
    assert [d["id"] for d in everyone.json()] == [
        people.offline_driver,
        people.driver,
        people.other_driver,
    ]

    online = await client.get("/api/v1/drivers", params={"active": "true"})
    assert [d["id"] for d in online.json()] == [people.driver, people.other_driver]

    offline = await client.get("/api/v1/drivers", params={"active": "false"})
    assert [d["id"] for d in offline.json()] == [people.offline_driver]


@pytest.mark.asyncio
async def test_unknown_profiles_404(client: AsyncClient, people):
    user = await client.get("/api/v1/users/999")
    assert user.status_code == 404
    assert user.json()["error"] == "not_found"

    driver = await client.get("/api/v1/drivers/999")
    assert driver.status_code == 404


@pytest.mark.asyncio
async def test_version_conflict_returns_409(client: AsyncClient, engine, people):
    ride_id = await _create(client, people.alice)
    engine.store.save = AsyncMock(side_effect=ConcurrentUpdate("ride changed"))

    resp = await client.patch(f"/api/v1/rides/{ride_id}/cancel")

    assert resp.status_code == 409
    assert resp.json()["error"] == "concurrent_update"
