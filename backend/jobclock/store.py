"""Canonical work-order state and technician time accounting.

All mutations go through one re-entrant lock, so start/stop, clock-in/out and
the periodic tick are atomic read-modify-write steps even when the tick runs
on its own thread. Records are frozen dataclasses and every change replaces
the record; snapshots handed out by the accessors are never mutated later.

Hours accounting uses one rule everywhere: ``banked_hours`` holds the time
committed by finished sessions and ``actual_hours`` is ``banked_hours`` plus
the running session. The tick refreshes the running part, ``stop`` commits it.
"""

from __future__ import annotations

import datetime as dt
import logging
import random
import re
import threading
import uuid
from typing import Any, Callable, Dict, List, Optional, Tuple
from zoneinfo import ZoneInfo

from sqlalchemy.orm import Session

from .config import Settings
from .domain import ActivityStatus, ClockingActivity, OrderAction, OrderStatus, WorkOrder
from .errors import ClockingConflictError
from .models import ClockingActivityRecord, WorkOrderRecord
from .projection import project_activities
from .utils import elapsed_hours, ensure_utc, local_hour_minute, round_hours, utcnow

logger = logging.getLogger(__name__)

Clock = Callable[[], dt.datetime]
Subscriber = Callable[[str, "WorkOrderStore"], None]

UNSCHEDULED_LABEL = "Unscheduled"
EDITABLE_FIELDS = frozenset(
    {"customer", "machine", "description", "order_number", "technician_id", "technician_name"}
)
_GENERATED_ID = re.compile(r"^JC-(\d+)$")


class WorkOrderStore:
    def __init__(
        self,
        *,
        tz: ZoneInfo,
        clock: Clock = utcnow,
        seed: Optional[int] = None,
        workday_start_hour: int = 8,
        buffer_minutes: int = 30,
        jitter_window_minutes: int = 30,
        tick_interval_seconds: float = 60.0,
        adhoc_prefix: str = "UNSCH",
        enforce_single_active: bool = True,
    ) -> None:
        self._lock = threading.RLock()
        self._tz = tz
        self._clock = clock
        # A fixed seed per store keeps the cosmetic jitter stable between refreshes.
        self._jitter_seed = seed if seed is not None else random.randrange(2**32)
        self.workday_start_hour = workday_start_hour
        self.buffer_minutes = buffer_minutes
        self.jitter_window_minutes = jitter_window_minutes
        self.tick_interval_seconds = tick_interval_seconds
        self.adhoc_prefix = adhoc_prefix
        self.enforce_single_active = enforce_single_active

        self._orders: List[WorkOrder] = []
        self._authored: List[ClockingActivity] = []
        self._activities: List[ClockingActivity] = []
        self._subscribers: List[Subscriber] = []
        self._next_number = 1

        self._ticker: Optional[threading.Thread] = None
        self._ticker_stop: Optional[threading.Event] = None

    @classmethod
    def from_settings(cls, settings: Settings, **overrides: Any) -> "WorkOrderStore":
        options: Dict[str, Any] = {
            "tz": settings.tz,
            "workday_start_hour": settings.workday_start_hour,
            "buffer_minutes": settings.slot_buffer_minutes,
            "jitter_window_minutes": settings.jitter_window_minutes,
            "tick_interval_seconds": settings.tick_interval_seconds,
            "adhoc_prefix": settings.adhoc_prefix,
            "enforce_single_active": settings.enforce_single_active,
        }
        options.update(overrides)
        return cls(**options)

    # ------------------------------------------------------------------
    # Read access
    # ------------------------------------------------------------------
    @property
    def orders(self) -> Tuple[WorkOrder, ...]:
        with self._lock:
            return tuple(self._orders)

    @property
    def activities(self) -> Tuple[ClockingActivity, ...]:
        with self._lock:
            return tuple(self._activities)

    def get_order(self, order_id: str) -> Optional[WorkOrder]:
        with self._lock:
            for order in self._orders:
                if order.id == order_id:
                    return order
        return None

    def get_activities_for_technician(self, technician_id: str) -> List[ClockingActivity]:
        with self._lock:
            return [a for a in self._activities if a.technician_id == technician_id]

    def get_active_activity(self, technician_id: str) -> Optional[ClockingActivity]:
        with self._lock:
            for activity in self._activities:
                if activity.technician_id == technician_id and activity.is_active:
                    return activity
        return None

    def get_order_job_cards(self, order_number: str) -> List[WorkOrder]:
        with self._lock:
            return [o for o in self._orders if o.order_number == order_number]

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------
    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        with self._lock:
            self._subscribers.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe

    def _notify(self, event: str) -> None:
        with self._lock:
            subscribers = list(self._subscribers)
        for callback in subscribers:
            callback(event, self)

    # ------------------------------------------------------------------
    # Work order lifecycle
    # ------------------------------------------------------------------
    def add_work_order(
        self,
        *,
        customer: str,
        machine: str,
        description: str,
        technician_id: str,
        technician_name: str,
        planned_hours: float = 0.0,
        order_id: Optional[str] = None,
        is_scheduled: bool = True,
        order_number: Optional[str] = None,
    ) -> WorkOrder:
        """Register a new order as Pending with no time booked.

        Duplicate ids are accepted; lookups then act on every record
        carrying that id.
        """
        with self._lock:
            if order_id is None:
                order_id = self._generate_id()
            else:
                self._bump_counter(order_id)
            order = WorkOrder(
                id=order_id,
                customer=customer,
                machine=machine,
                description=description,
                technician_id=technician_id,
                technician_name=technician_name,
                planned_hours=max(float(planned_hours), 0.0),
                is_scheduled=is_scheduled,
                order_number=order_number or f"ON-{order_id}",
            )
            self._orders.append(order)
            self._refresh()
        logger.info("Work order %s added for %s", order.id, order.technician_id)
        self._notify("order_added")
        return order

    def convert_note_to_order(
        self,
        text: str,
        *,
        estimated_hours: Optional[float] = None,
        technician_id: str = "",
        technician_name: str = "",
    ) -> WorkOrder:
        with self._lock:
            order_id = self._generate_id()
        return self.add_work_order(
            order_id=order_id,
            customer=UNSCHEDULED_LABEL,
            machine="-",
            description=text,
            technician_id=technician_id,
            technician_name=technician_name,
            planned_hours=estimated_hours or 1.0,
            is_scheduled=False,
            order_number=f"ON-{self.adhoc_prefix}-{order_id}",
        )

    def update_work_order(self, order_id: str, **changes: Any) -> Optional[WorkOrder]:
        unknown = set(changes) - EDITABLE_FIELDS
        if unknown:
            raise ValueError(f"Fields cannot be edited: {', '.join(sorted(unknown))}")
        with self._lock:
            updated = self._replace_orders(order_id, lambda order: order.evolve(**changes))
            if updated is None:
                logger.debug("Ignoring update for unknown work order %s", order_id)
                return None
            self._refresh()
        self._notify("order_updated")
        return updated

    def update_work_order_status(self, order_id: str, action: OrderAction | str) -> Optional[WorkOrder]:
        """Start or stop the clock on an order.

        ``start`` on an active order and ``stop`` on an idle one leave the
        record untouched, as does an unknown ``order_id``. The return value is
        the record after the call, or ``None`` when no order matched.
        Stopping also clocks out every activity still active on the order.
        """
        action = OrderAction(action)
        with self._lock:
            now = ensure_utc(self._clock())
            existing = self.get_order(order_id)
            if existing is None:
                logger.debug("Ignoring %s for unknown work order %s", action.value, order_id)
                return None
            if action == OrderAction.START:
                if existing.is_active:
                    logger.debug("Work order %s already in progress", order_id)
                    return existing
                updated = self._replace_orders(order_id, lambda order: self._started(order, now))
                event = "order_started"
            else:
                if existing.start_time is None:
                    logger.debug("Work order %s is not running", order_id)
                    return existing
                updated = self._stop_order(order_id, now)
                event = "order_stopped"
            self._refresh()
        logger.info("Work order %s: %s (actual %.2fh)", order_id, updated.status.value, updated.actual_hours)
        self._notify(event)
        return updated

    def tick(self) -> int:
        """Refresh ``actual_hours`` of every running order; returns how many changed."""
        with self._lock:
            now = ensure_utc(self._clock())
            changed = 0
            orders: List[WorkOrder] = []
            for order in self._orders:
                if order.is_active and order.start_time is not None:
                    live = round_hours(order.banked_hours + elapsed_hours(order.start_time, now))
                    if live != order.actual_hours:
                        order = order.evolve(actual_hours=live)
                        changed += 1
                orders.append(order)
            self._orders = orders
            if changed:
                self._refresh()
        if changed:
            self._notify("tick")
        return changed

    # ------------------------------------------------------------------
    # Direct clock-in / clock-out
    # ------------------------------------------------------------------
    def clock_in(
        self,
        order_id: str,
        technician_id: str,
        technician_name: str,
        description: str,
        is_scheduled: bool,
        machine: Optional[str] = None,
        customer: Optional[str] = None,
    ) -> ClockingActivity:
        with self._lock:
            if self.enforce_single_active:
                active = self.get_active_activity(technician_id)
                if active is not None:
                    raise ClockingConflictError(technician_id, active.id)
            now = ensure_utc(self._clock())
            hour, minute = local_hour_minute(now, self._tz)
            activity = ClockingActivity(
                id=f"clock-{uuid.uuid4().hex}",
                technician_id=technician_id,
                technician_name=technician_name,
                order_id=order_id,
                description=description,
                clock_in_hour=hour,
                clock_in_minute=minute,
                is_scheduled=is_scheduled,
                status=ActivityStatus.ACTIVE,
                machine=machine,
                customer=customer,
                authored=True,
            )
            self._authored.append(activity)
            if self._replace_orders(order_id, lambda order: self._started(order, now)) is None:
                self._orders.append(
                    WorkOrder(
                        id=order_id,
                        customer=customer or UNSCHEDULED_LABEL,
                        machine=machine or "-",
                        description=description,
                        technician_id=technician_id,
                        technician_name=technician_name,
                        planned_hours=0.0,
                        status=OrderStatus.IN_PROGRESS,
                        start_time=now,
                        is_scheduled=is_scheduled,
                        order_number=f"ON-{order_id}",
                    )
                )
            self._refresh()
        logger.info("%s clocked in on %s at %02d:%02d", technician_id, order_id, hour, minute)
        self._notify("clocked_in")
        return activity

    def clock_out(self, activity_id: str) -> Optional[ClockingActivity]:
        """Close an active activity and commit the order's running session.

        The order is only stopped once no other authored activity on it is
        still active. Unknown or already closed activities are ignored.
        """
        with self._lock:
            now = ensure_utc(self._clock())
            index = self._authored_index(activity_id)
            if index is None:
                derived = next((a for a in self._activities if a.id == activity_id and not a.authored), None)
                if derived is None or not derived.is_active:
                    logger.debug("Ignoring clock-out for unknown or closed activity %s", activity_id)
                    return None
                self._stop_order(derived.order_id, now)
                self._refresh()
                closed = next((a for a in self._activities if a.id == activity_id), derived)
            else:
                activity = self._authored[index]
                if not activity.is_active:
                    logger.debug("Activity %s already clocked out", activity_id)
                    return None
                hour, minute = local_hour_minute(now, self._tz)
                closed = activity.evolve(
                    clock_out_hour=hour,
                    clock_out_minute=minute,
                    status=ActivityStatus.COMPLETED,
                )
                self._authored[index] = closed
                still_active = any(
                    a.order_id == activity.order_id and a.is_active for a in self._authored
                )
                if not still_active:
                    self._stop_order(activity.order_id, now)
                self._refresh()
        logger.info("%s clocked out of %s", closed.technician_id, closed.order_id)
        self._notify("clocked_out")
        return closed

    def edit_activity(
        self,
        activity_id: str,
        *,
        clock_in_hour: int,
        clock_in_minute: int,
        clock_out_hour: int,
        clock_out_minute: int,
        is_admin: bool,
    ) -> Optional[ClockingActivity]:
        """Correct the times of an authored activity. Only admins may do this.

        Correcting a running activity closes it; when it was the last one
        active on its order, the order is stopped as with ``clock_out``.
        """
        if not is_admin:
            logger.debug("Non-admin edit of %s ignored", activity_id)
            return None
        for hour in (clock_in_hour, clock_out_hour):
            if not 0 <= hour <= 23:
                raise ValueError("Hours must be between 0 and 23")
        for minute in (clock_in_minute, clock_out_minute):
            if not 0 <= minute <= 59:
                raise ValueError("Minutes must be between 0 and 59")
        if (clock_out_hour, clock_out_minute) < (clock_in_hour, clock_in_minute):
            raise ValueError("Clock-out must not be before clock-in")
        with self._lock:
            index = self._authored_index(activity_id)
            if index is None:
                return None
            was_active = self._authored[index].is_active
            edited = self._authored[index].evolve(
                clock_in_hour=clock_in_hour,
                clock_in_minute=clock_in_minute,
                clock_out_hour=clock_out_hour,
                clock_out_minute=clock_out_minute,
                status=ActivityStatus.COMPLETED,
            )
            self._authored[index] = edited
            still_active = any(a.order_id == edited.order_id and a.is_active for a in self._authored)
            if was_active and not still_active:
                self._stop_order(edited.order_id, ensure_utc(self._clock()))
            self._refresh()
        logger.info("Activity %s corrected by admin", activity_id)
        self._notify("activity_edited")
        return edited

    # ------------------------------------------------------------------
    # Periodic tick
    # ------------------------------------------------------------------
    @property
    def ticker_running(self) -> bool:
        return self._ticker is not None and self._ticker.is_alive()

    def start_ticker(self) -> None:
        with self._lock:
            if self.ticker_running:
                return
            stop_event = threading.Event()
            thread = threading.Thread(
                target=self._run_ticker,
                args=(stop_event,),
                name="jobclock-tick",
                daemon=True,
            )
            self._ticker_stop = stop_event
            self._ticker = thread
            thread.start()
        logger.info("Tick started (every %ss)", self.tick_interval_seconds)

    def stop_ticker(self, timeout: Optional[float] = None) -> None:
        with self._lock:
            thread, stop_event = self._ticker, self._ticker_stop
            self._ticker = None
            self._ticker_stop = None
        if thread is None or stop_event is None:
            return
        stop_event.set()
        thread.join(timeout)
        logger.info("Tick stopped")

    def _run_ticker(self, stop_event: threading.Event) -> None:
        while not stop_event.wait(self.tick_interval_seconds):
            try:
                self.tick()
            except Exception:
                logger.exception("Tick failed")

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------
    def load_from_db(self, session: Session) -> None:
        order_records = session.query(WorkOrderRecord).order_by(WorkOrderRecord.position).all()
        activity_records = (
            session.query(ClockingActivityRecord).order_by(ClockingActivityRecord.position).all()
        )
        with self._lock:
            self._orders = [self._order_from_record(record) for record in order_records]
            self._authored = [self._activity_from_record(record) for record in activity_records]
            self._next_number = 1
            for order in self._orders:
                self._bump_counter(order.id)
            self._refresh()
        logger.info("Loaded %d work orders and %d activities", len(order_records), len(activity_records))
        self._notify("loaded")

    def persist(self, session: Session) -> None:
        """Replace the stored tables with the current state.

        The lock is held through the commit, so a concurrent caller can never
        commit an older state over a newer one.
        """
        with self._lock:
            session.query(WorkOrderRecord).delete()
            session.query(ClockingActivityRecord).delete()
            for position, order in enumerate(self._orders):
                session.add(
                    WorkOrderRecord(
                        position=position,
                        id=order.id,
                        order_number=order.order_number,
                        customer=order.customer,
                        machine=order.machine,
                        description=order.description,
                        status=order.status.value,
                        planned_hours=order.planned_hours,
                        actual_hours=order.actual_hours,
                        banked_hours=order.banked_hours,
                        start_time=order.start_time,
                        technician_id=order.technician_id,
                        technician_name=order.technician_name,
                        is_scheduled=order.is_scheduled,
                    )
                )
            for position, activity in enumerate(self._authored):
                session.add(
                    ClockingActivityRecord(
                        position=position,
                        id=activity.id,
                        technician_id=activity.technician_id,
                        technician_name=activity.technician_name,
                        order_id=activity.order_id,
                        description=activity.description,
                        clock_in_hour=activity.clock_in_hour,
                        clock_in_minute=activity.clock_in_minute,
                        clock_out_hour=activity.clock_out_hour,
                        clock_out_minute=activity.clock_out_minute,
                        is_scheduled=activity.is_scheduled,
                        status=activity.status.value,
                        machine=activity.machine,
                        customer=activity.customer,
                    )
                )
            session.commit()

    def _order_from_record(self, record: WorkOrderRecord) -> WorkOrder:
        status = OrderStatus(record.status)
        start_time = None
        if status == OrderStatus.IN_PROGRESS and record.start_time is not None:
            start_time = ensure_utc(record.start_time)
        if status == OrderStatus.IN_PROGRESS and start_time is None:
            logger.warning("Work order %s was running without a start time; closing it", record.id)
            status = OrderStatus.COMPLETED
        is_scheduled = record.is_scheduled
        if is_scheduled is None:
            is_scheduled = not record.id.startswith(self.adhoc_prefix)
        return WorkOrder(
            id=record.id,
            customer=record.customer,
            machine=record.machine,
            description=record.description,
            technician_id=record.technician_id,
            technician_name=record.technician_name,
            planned_hours=record.planned_hours,
            status=status,
            actual_hours=record.actual_hours,
            start_time=start_time,
            is_scheduled=is_scheduled,
            order_number=record.order_number or f"ON-{record.id}",
            banked_hours=record.banked_hours if record.banked_hours is not None else record.actual_hours,
        )

    @staticmethod
    def _activity_from_record(record: ClockingActivityRecord) -> ClockingActivity:
        return ClockingActivity(
            id=record.id,
            technician_id=record.technician_id,
            technician_name=record.technician_name,
            order_id=record.order_id,
            description=record.description,
            clock_in_hour=record.clock_in_hour,
            clock_in_minute=record.clock_in_minute,
            clock_out_hour=record.clock_out_hour,
            clock_out_minute=record.clock_out_minute,
            is_scheduled=record.is_scheduled,
            status=ActivityStatus(record.status),
            machine=record.machine,
            customer=record.customer,
            authored=True,
        )

    # ------------------------------------------------------------------
    # Internals (callers hold the lock)
    # ------------------------------------------------------------------
    @staticmethod
    def _started(order: WorkOrder, now: dt.datetime) -> WorkOrder:
        if order.is_active:
            return order
        return order.evolve(
            status=OrderStatus.IN_PROGRESS,
            start_time=now,
            banked_hours=order.actual_hours,
        )

    @staticmethod
    def _committed(order: WorkOrder, now: dt.datetime) -> WorkOrder:
        if order.start_time is None:
            return order
        total = round_hours(order.banked_hours + elapsed_hours(order.start_time, now))
        return order.evolve(
            status=OrderStatus.COMPLETED,
            actual_hours=total,
            banked_hours=total,
            start_time=None,
        )

    def _stop_order(self, order_id: str, now: dt.datetime) -> Optional[WorkOrder]:
        """Commit the running session and clock out everyone still on the order."""
        hour, minute = local_hour_minute(now, self._tz)
        for index, activity in enumerate(self._authored):
            if activity.order_id == order_id and activity.is_active:
                self._authored[index] = activity.evolve(
                    clock_out_hour=hour,
                    clock_out_minute=minute,
                    status=ActivityStatus.COMPLETED,
                )
        return self._replace_orders(order_id, lambda order: self._committed(order, now))

    def _replace_orders(
        self, order_id: str, change: Callable[[WorkOrder], WorkOrder]
    ) -> Optional[WorkOrder]:
        last: Optional[WorkOrder] = None
        orders: List[WorkOrder] = []
        for order in self._orders:
            if order.id == order_id:
                order = change(order)
                last = order
            orders.append(order)
        self._orders = orders
        return last

    def _authored_index(self, activity_id: str) -> Optional[int]:
        for index, activity in enumerate(self._authored):
            if activity.id == activity_id:
                return index
        return None

    def _generate_id(self) -> str:
        existing = {order.id for order in self._orders}
        while True:
            candidate = f"JC-{self._next_number:04d}"
            self._next_number += 1
            if candidate not in existing:
                return candidate

    def _bump_counter(self, order_id: str) -> None:
        match = _GENERATED_ID.match(order_id)
        if match:
            self._next_number = max(self._next_number, int(match.group(1)) + 1)

    def _refresh(self) -> None:
        derived = project_activities(
            self._orders,
            tz=self._tz,
            workday_start_hour=self.workday_start_hour,
            buffer_minutes=self.buffer_minutes,
            jitter_window_minutes=self.jitter_window_minutes,
            rng=random.Random(self._jitter_seed),
        )
        authored_orders = {a.order_id for a in self._authored}
        active_authored_orders = {a.order_id for a in self._authored if a.is_active}
        kept = [
            activity
            for activity in derived
            if activity.order_id not in authored_orders
            or (activity.is_active and activity.order_id not in active_authored_orders)
        ]
        self._activities = kept + list(self._authored)


__all__ = ["Clock", "Subscriber", "WorkOrderStore"]
