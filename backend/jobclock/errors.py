from __future__ import annotations


class JobClockError(RuntimeError):
    """Base error for the time-accounting engine."""


class StoreNotConfiguredError(JobClockError):
    """Raised when the work-order store is used before it has been wired up."""


class ClockingConflictError(JobClockError):
    """Raised when a technician already holds an active clocking activity."""

    def __init__(self, technician_id: str, activity_id: str) -> None:
        super().__init__(f"Technician {technician_id} is already clocked in ({activity_id})")
        self.technician_id = technician_id
        self.activity_id = activity_id
