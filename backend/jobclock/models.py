from __future__ import annotations

from sqlalchemy import Boolean, Column, DateTime, Float, Integer, String, Text
from sqlalchemy.orm import declarative_base

from .utils import utcnow

Base = declarative_base()


class WorkOrderRecord(Base):
    __tablename__ = "work_orders"

    # Order ids are not unique, so the insertion position is the key.
    position = Column(Integer, primary_key=True)
    id = Column(String(64), nullable=False, index=True)
    order_number = Column(String(64), nullable=True, index=True)
    customer = Column(String(200), nullable=False, default="")
    machine = Column(String(200), nullable=False, default="")
    description = Column(Text, nullable=False, default="")
    status = Column(String(20), nullable=False, default="Pending", index=True)
    planned_hours = Column(Float, nullable=False, default=0.0)
    actual_hours = Column(Float, nullable=False, default=0.0)
    banked_hours = Column(Float, nullable=False, default=0.0)
    start_time = Column(DateTime(timezone=True), nullable=True)
    technician_id = Column(String(64), nullable=False, index=True)
    technician_name = Column(String(200), nullable=False, default="")
    is_scheduled = Column(Boolean, nullable=True)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)


class ClockingActivityRecord(Base):
    """Activities authored by explicit clock-in; derived ones are never stored."""

    __tablename__ = "clocking_activities"

    id = Column(String(64), primary_key=True)
    position = Column(Integer, nullable=False, default=0, index=True)
    technician_id = Column(String(64), nullable=False, index=True)
    technician_name = Column(String(200), nullable=False, default="")
    order_id = Column(String(64), nullable=False, index=True)
    description = Column(Text, nullable=False, default="")
    clock_in_hour = Column(Integer, nullable=False)
    clock_in_minute = Column(Integer, nullable=False)
    clock_out_hour = Column(Integer, nullable=True)
    clock_out_minute = Column(Integer, nullable=True)
    is_scheduled = Column(Boolean, nullable=False, default=True)
    status = Column(String(20), nullable=False, default="active", index=True)
    machine = Column(String(200), nullable=True)
    customer = Column(String(200), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

