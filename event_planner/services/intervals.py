"""Interval helpers shared by the conflict detectors."""

from __future__ import annotations

from datetime import date, datetime, timezone
from zoneinfo import ZoneInfo

from event_planner.domain.errors import InvalidTimeRangeError
from event_planner.domain.models import RecurrencePattern, TimeSpan
from event_planner.services.recurrence import occurrence_bounds


def spans_overlap(
    a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime
) -> bool:
    """Whether two half-open ranges share a strictly positive duration.

    Overlap rule: a_start < b_end AND b_start < a_end.
    Exact boundary touches (end == start) are NOT considered conflicts.
    """
    return a_start < b_end and b_start < a_end


def validate_span(span: TimeSpan) -> None:
    if span.end is not None and span.end <= span.start:
        raise InvalidTimeRangeError(
            f"end ({span.end.isoformat()}) must be after start ({span.start.isoformat()})"
        )


def validate_pattern(pattern: RecurrencePattern) -> None:
    if pattern.start_time == pattern.end_time:
        raise InvalidTimeRangeError(
            f"start_time and end_time are both {pattern.start_time.isoformat()}"
        )
    if pattern.end_date is not None and pattern.end_date < pattern.start_date:
        raise InvalidTimeRangeError(
            f"end_date ({pattern.end_date}) is before start_date ({pattern.start_date})"
        )


def occurrence_span(
    pattern: RecurrencePattern, day: date, zone: ZoneInfo
) -> tuple[datetime, datetime]:
    """UTC instants of the occurrence of *pattern* on *day* in *zone*."""
    start, end = occurrence_bounds(pattern, day)
    return (
        start.replace(tzinfo=zone).astimezone(timezone.utc),
        end.replace(tzinfo=zone).astimezone(timezone.utc),
    )
