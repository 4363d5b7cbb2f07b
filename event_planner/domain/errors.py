"""Error taxonomy for recurrence parsing and conflict validation."""

from __future__ import annotations

from collections.abc import Iterable
from enum import StrEnum


class ErrorCode(StrEnum):
    INVALID_RECURRENCE_RULE = "invalid_recurrence_rule"
    INVALID_EVENT_TIME = "invalid_event_time"
    EVENT_CONFLICT = "event_conflict"


class EventPlannerError(Exception):
    """Base class for all errors raised by the planner core."""

    error_code: ErrorCode

    def __init__(self, message: str, error_code: ErrorCode) -> None:
        super().__init__(message)
        self.message = message
        self.error_code = error_code


class InvalidPatternError(EventPlannerError):
    """Malformed or self-contradictory recurrence rule text."""

    def __init__(self, token: str, reason: str) -> None:
        super().__init__(
            f"Invalid recurrence rule token {token!r}: {reason}",
            ErrorCode.INVALID_RECURRENCE_RULE,
        )
        self.token = token
        self.reason = reason


class InvalidTimeRangeError(EventPlannerError):
    """End not strictly after start, for a span or a pattern."""

    def __init__(self, message: str) -> None:
        super().__init__(message, ErrorCode.INVALID_EVENT_TIME)


class ConflictError(EventPlannerError):
    """A candidate overlaps one or more events the owner already has."""

    def __init__(self, conflicting_ids: Iterable[str]) -> None:
        self.conflicting_ids = frozenset(conflicting_ids)
        ids = ", ".join(sorted(self.conflicting_ids))
        super().__init__(
            f"Event conflicts with existing events: {ids}",
            ErrorCode.EVENT_CONFLICT,
        )
