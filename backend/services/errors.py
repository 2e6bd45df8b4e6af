from __future__ import annotations


class HabitTrackerError(Exception):
    """Base class for domain errors raised by the service layer."""


class NotFoundError(HabitTrackerError):
    def __init__(self, resource: str, resource_id: object | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        suffix = f" {resource_id}" if resource_id is not None else ""
        super().__init__(f"{resource}{suffix} not found")


class ValidationError(HabitTrackerError):
    pass


class StoreError(HabitTrackerError):
    """Persistence failure; the original exception is chained as ``__cause__``."""

    def __init__(self, operation: str) -> None:
        self.operation = operation
        super().__init__(f"Store operation failed: {operation}")
