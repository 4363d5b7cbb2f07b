"""Lookup interfaces the conflict engine consumes from the repository layer."""

from __future__ import annotations

from datetime import date, datetime
from typing import Protocol

from event_planner.domain.models import Event, RecurringEvent


class PlainEventLookup(Protocol):
    """Confirmed plain events of an owner overlapping an instant range."""

    def find_overlapping_plain_events(
        self, owner_id: str, start: datetime, end: datetime
    ) -> list[Event]:
        ...


class RecurringEventLookup(Protocol):
    """Confirmed recurring events whose date range could overlap the given one.

    ``to_date`` of ``None`` means the range is open-ended.
    """

    def find_overlapping_recurring_events(
        self, owner_id: str, from_date: date, to_date: date | None
    ) -> list[RecurringEvent]:
        ...


class ConfirmedRecurringEventLookup(Protocol):
    """Confirmed recurring events active at some point between two dates."""

    def find_confirmed_recurring_events_between(
        self, owner_id: str, from_date: date, to_date: date
    ) -> list[RecurringEvent]:
        ...
