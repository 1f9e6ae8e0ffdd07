from __future__ import annotations

import datetime as dt
import random

from jobclock.domain import ActivityStatus, OrderStatus, WorkOrder
from jobclock.projection import project_activities

from conftest import SOFIA, FixedJitter


def _order(order_id: str, technician_id: str = "tech-1", **kwargs) -> WorkOrder:
    options = dict(
        id=order_id,
        customer="Zarno AD",
        machine="Claas Lexion",
        description="Annual service",
        technician_id=technician_id,
        technician_name="Petar Petrov",
        planned_hours=3,
    )
    options.update(kwargs)
    return WorkOrder(**options)


def _completed(order_id: str, hours: float, technician_id: str = "tech-1", **kwargs) -> WorkOrder:
    return _order(
        order_id,
        technician_id,
        status=OrderStatus.COMPLETED,
        actual_hours=hours,
        banked_hours=hours,
        **kwargs,
    )


def _minutes(hour: int, minute: int) -> int:
    return hour * 60 + minute


def test_pending_orders_produce_no_activity():
    orders = [_order("WO-1"), _completed("WO-2", 1.0)]
    activities = project_activities(orders, tz=SOFIA, rng=FixedJitter())
    assert [a.order_id for a in activities] == ["WO-2"]


def test_in_progress_uses_local_start_time():
    started = dt.datetime(2024, 3, 4, 7, 15, tzinfo=dt.timezone.utc)
    orders = [_order("WO-3", status=OrderStatus.IN_PROGRESS, start_time=started)]

    [activity] = project_activities(orders, tz=SOFIA, rng=FixedJitter())

    assert activity.status == ActivityStatus.ACTIVE
    assert (activity.clock_in_hour, activity.clock_in_minute) == (9, 15)
    assert activity.clock_out_hour is None
    assert activity.clock_out_minute is None
    assert activity.id == "clock-WO-3-tech-1"


def test_completed_orders_of_one_technician_do_not_overlap():
    orders = [_completed("A", 2.0), _completed("B", 1.0)]

    first, second = project_activities(orders, tz=SOFIA, buffer_minutes=30, rng=FixedJitter(10))

    assert (first.clock_in_hour, first.clock_in_minute) == (8, 10)
    assert (first.clock_out_hour, first.clock_out_minute) == (10, 10)
    assert _minutes(second.clock_in_hour, second.clock_in_minute) >= _minutes(
        first.clock_out_hour, first.clock_out_minute
    ) + 30
    assert (second.clock_in_hour, second.clock_in_minute) == (11, 10)
    assert (second.clock_out_hour, second.clock_out_minute) == (12, 10)
    assert {first.status, second.status} == {ActivityStatus.COMPLETED}


def test_no_overlap_for_any_jitter():
    orders = [_completed(f"WO-{i}", 0.4 + i * 0.35) for i in range(6)]
    activities = project_activities(orders, tz=SOFIA, rng=random.Random(99))
    for earlier, later in zip(activities, activities[1:]):
        end = _minutes(earlier.clock_out_hour, earlier.clock_out_minute)
        assert _minutes(later.clock_in_hour, later.clock_in_minute) >= end + 30


def test_technician_cursors_are_independent():
    orders = [_completed("A", 3.0, "tech-1"), _completed("B", 1.0, "tech-2")]
    first, second = project_activities(orders, tz=SOFIA, workday_start_hour=7, rng=FixedJitter(0))
    assert first.clock_in_hour == 7
    assert second.clock_in_hour == 7


def test_projection_is_repeatable_with_equal_seeds():
    orders = [
        _completed("A", 1.25),
        _completed("B", 2.5),
        _completed("C", 0.75, "tech-2"),
        _order("D", status=OrderStatus.IN_PROGRESS, start_time=dt.datetime(2024, 3, 4, 6, 0, tzinfo=dt.timezone.utc)),
    ]
    first = project_activities(orders, tz=SOFIA, rng=random.Random(5))
    second = project_activities(orders, tz=SOFIA, rng=random.Random(5))
    assert first == second


def test_jitter_stays_inside_the_hour():
    orders = [_completed("A", 1.0), _completed("B", 1.0, "tech-2")]
    wide = project_activities(orders, tz=SOFIA, jitter_window_minutes=120, rng=FixedJitter(500))
    assert all(a.clock_in_minute == 59 for a in wide)

    none = project_activities(orders, tz=SOFIA, jitter_window_minutes=0, rng=FixedJitter(20))
    assert all(a.clock_in_minute == 0 for a in none)


def test_labels_and_schedule_flag_come_from_the_order():
    orders = [_completed("UNSCH-9", 1.0, description="", is_scheduled=False)]
    [activity] = project_activities(orders, tz=SOFIA, rng=FixedJitter())
    assert activity.description == "Claas Lexion - Zarno AD"
    assert activity.is_scheduled is False
    assert activity.machine == "Claas Lexion"
    assert activity.customer == "Zarno AD"
    assert activity.authored is False
