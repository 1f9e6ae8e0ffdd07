from __future__ import annotations

import datetime as dt
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, model_serializer, model_validator

from .domain import ActivityStatus, OrderStatus


def _serialize_datetime(value: dt.datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=dt.timezone.utc)
    else:
        value = value.astimezone(dt.timezone.utc)
    return value.isoformat()


class WorkOrderResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: str
    order_number: Optional[str]
    customer: str
    machine: str
    description: str
    status: OrderStatus
    planned_hours: float
    actual_hours: float
    start_time: Optional[dt.datetime]
    technician_id: str
    technician_name: str
    is_scheduled: bool
    is_overdue: bool

    @model_serializer(mode="plain", when_used="json")
    def _serialize(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "order_number": self.order_number,
            "customer": self.customer,
            "machine": self.machine,
            "description": self.description,
            "status": self.status.value,
            "planned_hours": self.planned_hours,
            "actual_hours": self.actual_hours,
            "start_time": _serialize_datetime(self.start_time) if self.start_time else None,
            "technician_id": self.technician_id,
            "technician_name": self.technician_name,
            "is_scheduled": self.is_scheduled,
            "is_overdue": self.is_overdue,
        }


class ClockingActivityResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: str
    technician_id: str
    technician_name: str
    order_id: str
    description: str
    clock_in_hour: int
    clock_in_minute: int
    clock_out_hour: Optional[int]
    clock_out_minute: Optional[int]
    is_scheduled: bool
    status: ActivityStatus
    machine: Optional[str] = None
    customer: Optional[str] = None


class WorkOrderCreateRequest(BaseModel):
    id: Optional[str] = None
    order_number: Optional[str] = None
    customer: str = ""
    machine: str = ""
    description: str = ""
    planned_hours: float = Field(default=0.0, ge=0)
    technician_id: str
    technician_name: str = ""
    is_scheduled: bool = True


class WorkOrderUpdateRequest(BaseModel):
    order_number: Optional[str] = None
    customer: Optional[str] = None
    machine: Optional[str] = None
    description: Optional[str] = None
    technician_id: Optional[str] = None
    technician_name: Optional[str] = None


class NoteConvertRequest(BaseModel):
    text: str = Field(min_length=1)
    estimated_hours: Optional[float] = Field(default=None, gt=0)
    technician_id: str = ""
    technician_name: str = ""


class ClockInRequest(BaseModel):
    order_id: str = Field(min_length=1)
    technician_id: str = Field(min_length=1)
    technician_name: str = ""
    description: str = ""
    is_scheduled: bool = False
    machine: Optional[str] = None
    customer: Optional[str] = None


class ActivityEditRequest(BaseModel):
    clock_in_hour: int = Field(ge=0, le=23)
    clock_in_minute: int = Field(ge=0, le=59)
    clock_out_hour: int = Field(ge=0, le=23)
    clock_out_minute: int = Field(ge=0, le=59)
    is_admin: bool = False

    @model_validator(mode="after")
    def _check_order(self) -> "ActivityEditRequest":
        if (self.clock_out_hour, self.clock_out_minute) < (self.clock_in_hour, self.clock_in_minute):
            raise ValueError("Clock-out must not be before clock-in")
        return self
