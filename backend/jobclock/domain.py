"""Value types for work orders and clocking activities."""

from __future__ import annotations

import datetime as dt
from dataclasses import dataclass, replace
from enum import Enum
from typing import Optional


class OrderStatus(str, Enum):
    PENDING = "Pending"
    IN_PROGRESS = "In Progress"
    COMPLETED = "Completed"


class ActivityStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    # Reserved; the projection never produces it.
    BREAK = "break"


class OrderAction(str, Enum):
    START = "start"
    STOP = "stop"


@dataclass(frozen=True, slots=True)
class WorkOrder:
    """A job card assigned to a single technician."""

    id: str
    customer: str
    machine: str
    description: str
    technician_id: str
    technician_name: str
    planned_hours: float = 0.0
    status: OrderStatus = OrderStatus.PENDING
    actual_hours: float = 0.0
    start_time: Optional[dt.datetime] = None
    is_scheduled: bool = True
    order_number: Optional[str] = None
    banked_hours: float = 0.0

    @property
    def is_active(self) -> bool:
        return self.status == OrderStatus.IN_PROGRESS

    @property
    def is_overdue(self) -> bool:
        return self.planned_hours > 0 and self.actual_hours > self.planned_hours

    def evolve(self, **changes) -> "WorkOrder":
        return replace(self, **changes)


@dataclass(frozen=True, slots=True)
class ClockingActivity:
    """One clock-in/clock-out window of a technician against a work order."""

    id: str
    technician_id: str
    technician_name: str
    order_id: str
    description: str
    clock_in_hour: int
    clock_in_minute: int
    clock_out_hour: Optional[int] = None
    clock_out_minute: Optional[int] = None
    is_scheduled: bool = True
    status: ActivityStatus = ActivityStatus.ACTIVE
    machine: Optional[str] = None
    customer: Optional[str] = None
    authored: bool = False

    @property
    def is_active(self) -> bool:
        return self.status == ActivityStatus.ACTIVE

    def evolve(self, **changes) -> "ClockingActivity":
        return replace(self, **changes)


__all__ = [
    "ActivityStatus",
    "ClockingActivity",
    "OrderAction",
    "OrderStatus",
    "WorkOrder",
]
