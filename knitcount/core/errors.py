"""Error taxonomy shared by the counter engine services and the API layer."""

from __future__ import annotations

from typing import Any
from uuid import UUID


class CounterEngineError(Exception):
    """Base class for every error the counter engine reports to callers."""

    code = "counter_engine_error"
    status_code = 400

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_payload(self) -> dict[str, Any]:
        return {"detail": self.message, "code": self.code}


class ValidationError(CounterEngineError):
    """Malformed counter or link definition. No state was changed."""

    code = "validation_error"
    status_code = 422


class BoundsExceeded(CounterEngineError):
    """A mutation would move a counter outside its [min, max] range."""

    code = "bounds_exceeded"
    status_code = 409

    def __init__(
        self,
        *,
        counter_id: UUID,
        candidate: int,
        min_value: int | None,
        max_value: int | None,
    ) -> None:
        if max_value is not None and candidate > max_value:
            message = f"Cannot exceed maximum value of {max_value}"
        else:
            message = f"Cannot go below minimum value of {min_value}"
        super().__init__(message)
        self.counter_id = counter_id
        self.candidate = candidate
        self.min_value = min_value
        self.max_value = max_value

    def to_payload(self) -> dict[str, Any]:
        payload = super().to_payload()
        payload.update(
            counter_id=str(self.counter_id),
            candidate=self.candidate,
            min_value=self.min_value,
            max_value=self.max_value,
        )
        return payload


class CycleGuardTripped(CounterEngineError):
    """Record of a cascade edge skipped because its target was already triggered.

    Never raised across the service boundary; the engine keeps these as
    observability records while the rest of the cascade continues.
    """

    code = "cycle_guard_tripped"
    status_code = 200

    def __init__(self, *, link_id: UUID, source_id: UUID, target_id: UUID, depth: int) -> None:
        super().__init__(
            f"Link {link_id} skipped: counter {target_id} already triggered in this update"
        )
        self.link_id = link_id
        self.source_id = source_id
        self.target_id = target_id
        self.depth = depth


class NotFound(CounterEngineError):
    """Referenced counter, link or history entry does not exist in the project."""

    code = "not_found"
    status_code = 404


class Unauthorized(CounterEngineError):
    """Caller has no ownership context for the requested project."""

    code = "unauthorized"
    status_code = 403
