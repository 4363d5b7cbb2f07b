"""In-memory repositories for plain and recurring events."""

from __future__ import annotations

from datetime import date, datetime

from event_planner.domain.models import Event, RecurringEvent

# Stand-in end date for open-ended recurring events in range comparisons
FAR_FUTURE_DATE = date(5000, 1, 1)


class EventRepository:
    """Dict-backed store for Event instances, keyed by id."""

    def __init__(self) -> None:
        self._store: dict[str, Event] = {}

    def add(self, event: Event) -> None:
        self._store[event.id] = event

    def get(self, event_id: str) -> Event | None:
        return self._store.get(event_id)

    def list_all(self) -> list[Event]:
        return list(self._store.values())

    def delete(self, event_id: str) -> None:
        self._store.pop(event_id, None)

    def find_overlapping_plain_events(
        self, owner_id: str, start: datetime, end: datetime
    ) -> list[Event]:
        """Confirmed events of *owner_id* sharing a positive duration with [start, end)."""
        return [
            e
            for e in self._store.values()
            if e.owner_id == owner_id
            and e.confirmed
            and e.start < end
            and start < e.effective_end
        ]


class RecurringEventRepository:
    """Dict-backed store for RecurringEvent instances, keyed by id."""

    def __init__(self) -> None:
        self._store: dict[str, RecurringEvent] = {}

    def add(self, event: RecurringEvent) -> None:
        self._store[event.id] = event

    def get(self, event_id: str) -> RecurringEvent | None:
        return self._store.get(event_id)

    def list_all(self) -> list[RecurringEvent]:
        return list(self._store.values())

    def delete(self, event_id: str) -> None:
        self._store.pop(event_id, None)

    def add_skip_dates(self, event_id: str, dates: set[date]) -> RecurringEvent | None:
        event = self._store.get(event_id)
        if event is None:
            return None
        updated = event.model_copy(update={"skip_dates": event.skip_dates | dates})
        self._store[event_id] = updated
        return updated

    def remove_skip_dates(self, event_id: str, dates: set[date]) -> RecurringEvent | None:
        event = self._store.get(event_id)
        if event is None:
            return None
        updated = event.model_copy(update={"skip_dates": event.skip_dates - dates})
        self._store[event_id] = updated
        return updated

    def _confirmed_between(
        self, owner_id: str, from_date: date, to_date: date
    ) -> list[RecurringEvent]:
        return [
            e
            for e in self._store.values()
            if e.owner_id == owner_id
            and e.confirmed
            and e.start_date <= to_date
            and (e.end_date or FAR_FUTURE_DATE) >= from_date
        ]

    def find_overlapping_recurring_events(
        self, owner_id: str, from_date: date, to_date: date | None
    ) -> list[RecurringEvent]:
        return self._confirmed_between(owner_id, from_date, to_date or FAR_FUTURE_DATE)

    def find_confirmed_recurring_events_between(
        self, owner_id: str, from_date: date, to_date: date
    ) -> list[RecurringEvent]:
        return self._confirmed_between(owner_id, from_date, to_date)
