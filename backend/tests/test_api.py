from __future__ import annotations

import threading
from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient

from jobclock.config import Settings
from jobclock.database import db_session
from jobclock.errors import StoreNotConfiguredError
from jobclock.main import _attach_persistence, create_app, get_store
from jobclock.store import WorkOrderStore

from conftest import SOFIA, FakeClock


def _create_order(client: TestClient, order_id: str, **overrides) -> dict:
    payload = {
        "id": order_id,
        "customer": "Agroinvest",
        "machine": "JD 8R",
        "description": "Engine repair",
        "planned_hours": 8,
        "technician_id": "tech-1",
        "technician_name": "Ivan Ivanov",
    }
    payload.update(overrides)
    response = client.post("/orders", json=payload)
    assert response.status_code == 201
    return response.json()


def test_order_start_stop_flow(client: TestClient, clock: FakeClock):
    created = _create_order(client, "WO-1", planned_hours=4)
    assert created["status"] == "Pending"
    assert created["start_time"] is None

    start_resp = client.post("/orders/WO-1/start")
    assert start_resp.status_code == 200
    assert start_resp.json()["status"] == "In Progress"
    assert start_resp.json()["start_time"].endswith("+00:00")

    clock.advance(hours=1.5)
    stop_resp = client.post("/orders/WO-1/stop")
    assert stop_resp.status_code == 200
    data = stop_resp.json()
    assert data["status"] == "Completed"
    assert data["actual_hours"] == 1.5
    assert data["start_time"] is None
    assert data["is_overdue"] is False

    activities = client.get("/technicians/tech-1/activities").json()
    assert [a["status"] for a in activities] == ["completed"]


def test_unknown_order_returns_not_found(client: TestClient):
    assert client.post("/orders/missing/start").status_code == 404
    assert client.patch("/orders/missing", json={"machine": "x"}).status_code == 404


def test_clock_in_out_flow(client: TestClient, clock: FakeClock):
    clock_in = client.post(
        "/clock/in",
        json={
            "order_id": "AD-1",
            "technician_id": "tech-9",
            "technician_name": "Test Tech",
            "description": "Inspection",
            "is_scheduled": False,
        },
    )
    assert clock_in.status_code == 201
    activity = clock_in.json()
    assert activity["status"] == "active"
    assert activity["clock_in_hour"] == 9

    conflict = client.post(
        "/clock/in",
        json={"order_id": "AD-2", "technician_id": "tech-9", "description": "Second job"},
    )
    assert conflict.status_code == 409

    active = client.get("/technicians/tech-9/active")
    assert active.status_code == 200
    assert active.json()["id"] == activity["id"]

    clock.advance(minutes=30)
    out = client.post(f"/clock/out/{activity['id']}")
    assert out.status_code == 200
    assert out.json()["status"] == "completed"
    assert out.json()["clock_out_minute"] == 30

    orders = {o["id"]: o for o in client.get("/orders").json()}
    assert orders["AD-1"]["status"] == "Completed"
    assert orders["AD-1"]["actual_hours"] == 0.5
    assert orders["AD-1"]["is_scheduled"] is False

    assert client.get("/technicians/tech-9/active").status_code == 404
    again = client.post(f"/clock/out/{activity['id']}")
    assert again.status_code == 200
    assert client.post("/clock/out/clock-missing").status_code == 404


def test_admin_activity_correction(client: TestClient):
    activity = client.post(
        "/clock/in",
        json={"order_id": "AD-3", "technician_id": "tech-2", "description": "Help"},
    ).json()
    times = {"clock_in_hour": 8, "clock_in_minute": 0, "clock_out_hour": 9, "clock_out_minute": 15}

    denied = client.patch(f"/activities/{activity['id']}", json=times)
    assert denied.status_code == 403

    invalid = client.patch(
        f"/activities/{activity['id']}",
        json={**times, "clock_out_hour": 7, "is_admin": True},
    )
    assert invalid.status_code == 422

    edited = client.patch(f"/activities/{activity['id']}", json={**times, "is_admin": True})
    assert edited.status_code == 200
    assert edited.json()["clock_out_minute"] == 15
    assert edited.json()["status"] == "completed"


def test_note_conversion_and_job_cards(client: TestClient):
    note = client.post("/notes/convert", json={"text": "Replace filters", "estimated_hours": 1.5})
    assert note.status_code == 201
    order = note.json()
    assert order["status"] == "Pending"
    assert order["is_scheduled"] is False

    _create_order(client, "JC-0101", order_number="ON-5521")
    _create_order(client, "JC-0102", order_number="ON-5521")
    cards = client.get("/orders/by-number/ON-5521").json()
    assert [c["id"] for c in cards] == ["JC-0101", "JC-0102"]

    activities = client.get("/activities").json()
    assert activities == []


def test_invalid_status_payloads_are_rejected(client: TestClient):
    bad = client.post("/orders", json={"technician_id": "tech-1", "planned_hours": -1})
    assert bad.status_code == 422


def test_get_store_requires_configured_application():
    request = SimpleNamespace(app=SimpleNamespace(state=SimpleNamespace()))
    with pytest.raises(StoreNotConfiguredError):
        get_store(request)


def test_state_is_persisted_between_app_runs(tmp_path, session_factory, clock: FakeClock):
    app_settings = Settings(sqlite_path=tmp_path / "unused.db", timezone="Europe/Sofia", tick_interval_seconds=3600)

    first_store = WorkOrderStore(tz=SOFIA, clock=clock, seed=1)
    with TestClient(create_app(app_settings, store=first_store, session_factory=session_factory)) as client:
        _create_order(client, "WO-50")
        client.post("/orders/WO-50/start")
        clock.advance(hours=2)
        client.post("/orders/WO-50/stop")

    second_store = WorkOrderStore(tz=SOFIA, clock=clock, seed=1)
    with TestClient(create_app(app_settings, store=second_store, session_factory=session_factory)) as client:
        orders = client.get("/orders").json()

    assert [o["id"] for o in orders] == ["WO-50"]
    assert orders[0]["actual_hours"] == 2.0
    assert orders[0]["status"] == "Completed"


def test_concurrent_changes_are_all_persisted(session_factory, clock: FakeClock):
    store = WorkOrderStore(tz=SOFIA, clock=clock, seed=1)
    unsubscribe = _attach_persistence(store, session_factory)
    start = threading.Barrier(8)

    def add_orders(worker: int) -> None:
        start.wait()
        for n in range(5):
            store.add_work_order(
                order_id=f"WO-{worker}-{n}",
                customer="Agroinvest",
                machine="JD 8R",
                description="Service",
                technician_id=f"tech-{worker}",
                technician_name="Ivan Ivanov",
            )

    workers = [threading.Thread(target=add_orders, args=(worker,)) for worker in range(8)]
    for thread in workers:
        thread.start()
    for thread in workers:
        thread.join(10)
    unsubscribe()

    restored = WorkOrderStore(tz=SOFIA, clock=clock, seed=1)
    with db_session(session_factory) as session:
        restored.load_from_db(session)

    assert len(restored.orders) == 40
    assert {o.id for o in restored.orders} == {o.id for o in store.orders}
