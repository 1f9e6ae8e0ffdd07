"""Derive a display timeline of clocking activities from work orders.

Completed orders carry no wall-clock history, only accumulated hours, so they
are laid out on a synthetic per-technician timeline: each technician starts at
the workday start hour and every completed order claims the next free slot, in
insertion order. In-progress orders use their real start time.
"""

from __future__ import annotations

import math
import random
from typing import Dict, Iterable, List, Optional, Protocol
from zoneinfo import ZoneInfo

from .domain import ActivityStatus, ClockingActivity, OrderStatus, WorkOrder
from .utils import local_hour_minute, split_minutes


class JitterSource(Protocol):
    def randrange(self, stop: int) -> int: ...


def derived_activity_id(order_id: str, technician_id: str) -> str:
    return f"clock-{order_id}-{technician_id}"


def describe_order(order: WorkOrder) -> str:
    if order.description:
        return order.description
    return f"{order.machine} - {order.customer}"


def _jitter_minute(rng: JitterSource, window: int) -> int:
    window = min(window, 60)
    if window <= 0:
        return 0
    return rng.randrange(window)


def project_activities(
    orders: Iterable[WorkOrder],
    *,
    tz: ZoneInfo,
    workday_start_hour: int = 8,
    buffer_minutes: int = 30,
    jitter_window_minutes: int = 30,
    rng: Optional[JitterSource] = None,
) -> List[ClockingActivity]:
    if rng is None:
        rng = random.Random()
    cursors: Dict[str, int] = {}
    activities: List[ClockingActivity] = []

    for order in orders:
        if order.status == OrderStatus.PENDING:
            continue

        clock_out_hour: Optional[int] = None
        clock_out_minute: Optional[int] = None
        if order.status == OrderStatus.IN_PROGRESS:
            if order.start_time is None:
                continue
            clock_in_hour, clock_in_minute = local_hour_minute(order.start_time, tz)
            status = ActivityStatus.ACTIVE
        else:
            slot_hour = cursors.get(order.technician_id, workday_start_hour)
            clock_in_hour = slot_hour
            clock_in_minute = _jitter_minute(rng, jitter_window_minutes)
            start_minutes = clock_in_hour * 60 + clock_in_minute
            end_minutes = start_minutes + int(round(order.actual_hours * 60))
            clock_out_hour, clock_out_minute = split_minutes(end_minutes)
            # Next slot starts on the first whole hour after the buffer.
            cursors[order.technician_id] = math.ceil((end_minutes + buffer_minutes) / 60)
            status = ActivityStatus.COMPLETED

        activities.append(
            ClockingActivity(
                id=derived_activity_id(order.id, order.technician_id),
                technician_id=order.technician_id,
                technician_name=order.technician_name,
                order_id=order.id,
                description=describe_order(order),
                clock_in_hour=clock_in_hour,
                clock_in_minute=clock_in_minute,
                clock_out_hour=clock_out_hour,
                clock_out_minute=clock_out_minute,
                is_scheduled=order.is_scheduled,
                status=status,
                machine=order.machine,
                customer=order.customer,
            )
        )
    return activities


__all__ = ["JitterSource", "derived_activity_id", "describe_order", "project_activities"]
