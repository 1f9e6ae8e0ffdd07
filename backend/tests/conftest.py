from __future__ import annotations

import datetime as dt
from pathlib import Path
from typing import Generator
from zoneinfo import ZoneInfo

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session, sessionmaker

from jobclock.config import Settings
from jobclock.database import build_engine, build_session_factory
from jobclock.main import create_app
from jobclock.store import WorkOrderStore

SOFIA = ZoneInfo("Europe/Sofia")


class FakeClock:
    """Manually advanced time source."""

    def __init__(self, start: dt.datetime) -> None:
        self.now = start

    def __call__(self) -> dt.datetime:
        return self.now

    def advance(self, **kwargs: float) -> dt.datetime:
        self.now = self.now + dt.timedelta(**kwargs)
        return self.now


class FixedJitter:
    """Stand-in for ``random.Random`` that always yields the same minute."""

    def __init__(self, minute: int = 10) -> None:
        self.minute = minute

    def randrange(self, stop: int) -> int:
        return min(self.minute, stop - 1)


@pytest.fixture()
def clock() -> FakeClock:
    # 09:00 local time in Sofia (UTC+2 in early March).
    return FakeClock(dt.datetime(2024, 3, 4, 7, 0, tzinfo=dt.timezone.utc))


@pytest.fixture()
def store(clock: FakeClock) -> WorkOrderStore:
    return WorkOrderStore(tz=SOFIA, clock=clock, seed=7, tick_interval_seconds=3600)


@pytest.fixture()
def session_factory(tmp_path: Path) -> sessionmaker:
    engine = build_engine(tmp_path / "jobclock.db")
    yield build_session_factory(engine)
    engine.dispose()


@pytest.fixture()
def session(session_factory: sessionmaker) -> Generator[Session, None, None]:
    db = session_factory()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture()
def app_settings(tmp_path: Path) -> Settings:
    return Settings(
        sqlite_path=tmp_path / "app.db",
        persist_changes=False,
        timezone="Europe/Sofia",
        tick_interval_seconds=3600,
    )


@pytest.fixture()
def client(app_settings: Settings, store: WorkOrderStore) -> Generator[TestClient, None, None]:
    app = create_app(app_settings, store=store)
    with TestClient(app) as c:
        yield c


@pytest.fixture()
def add_order(store: WorkOrderStore):
    def _add(order_id: str, technician_id: str = "tech-1", **kwargs):
        options = {
            "customer": "Agroinvest",
            "machine": "JD 8R",
            "description": "Oil change",
            "technician_name": "Ivan Ivanov",
            "planned_hours": 4,
        }
        options.update(kwargs)
        return store.add_work_order(order_id=order_id, technician_id=technician_id, **options)

    return _add
