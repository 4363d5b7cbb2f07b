"""Service for detecting scheduling conflicts between a candidate event and the
events its owner already has, plain or recurring."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import date, datetime, timedelta

from event_planner.config import Settings
from event_planner.domain.errors import ConflictError
from event_planner.domain.models import (
    ConflictVerdict,
    ConflictWindow,
    RecurringEvent,
    TimeSpan,
)
from event_planner.domain.ports import (
    ConfirmedRecurringEventLookup,
    PlainEventLookup,
    RecurringEventLookup,
)
from event_planner.services.intervals import (
    occurrence_span,
    spans_overlap,
    validate_pattern,
    validate_span,
)
from event_planner.services.recurrence import (
    expand_occurrences,
    may_share_dates,
    occurs_on,
)

logger = logging.getLogger(__name__)


class ConflictValidator:
    """Decides whether a candidate would overlap another event of the same owner.

    Holds only its injected lookups and settings. Every check is an
    independent evaluation, so one instance can serve concurrent callers.
    The ``check_*`` methods return a verdict; the ``validate_*`` methods
    raise ``ConflictError`` when the verdict has conflicts.
    """

    def __init__(
        self,
        plain_events: PlainEventLookup,
        recurring_events: RecurringEventLookup,
        confirmed_recurring_events: ConfirmedRecurringEventLookup,
        settings: Settings | None = None,
    ) -> None:
        self.plain_events = plain_events
        self.recurring_events = recurring_events
        self.confirmed_recurring_events = confirmed_recurring_events
        self.window_days = (settings or Settings()).conflict_window_days

    # ------------------------------------------------------------------
    # Plain event candidates
    # ------------------------------------------------------------------

    def check_event(self, candidate: TimeSpan, exclude_id: str | None = None) -> ConflictVerdict:
        """Check a timed span against plain events and recurring occurrences.

        Both sources are always consulted so the verdict reports the union of
        their conflicts.
        """
        validate_span(candidate)
        if exclude_id is None:
            exclude_id = getattr(candidate, "id", None)
        verdict = self._plain_conflicts(candidate, exclude_id).merge(
            self._recurring_conflicts(candidate, exclude_id)
        )
        self._log_verdict("Event", exclude_id, verdict)
        return verdict

    def _plain_conflicts(self, candidate: TimeSpan, exclude_id: str | None) -> ConflictVerdict:
        start, end = candidate.start, candidate.effective_end
        conflicting = {
            other.id
            for other in self.plain_events.find_overlapping_plain_events(
                candidate.owner_id, start, end
            )
            if other.id != exclude_id
            and spans_overlap(start, end, other.start, other.effective_end)
        }
        logger.debug(f"{len(conflicting)} plain event conflicts for owner {candidate.owner_id}")
        return ConflictVerdict(conflicting_ids=frozenset(conflicting))

    def _recurring_conflicts(self, candidate: TimeSpan, exclude_id: str | None) -> ConflictVerdict:
        # Each recurring event has its own zone, so its local dates lie within a
        # day of the UTC dates; an overnight occurrence starts one day earlier
        start, end = candidate.start, candidate.effective_end
        first_day, last_day = start.date(), end.date()
        recurring = self.confirmed_recurring_events.find_confirmed_recurring_events_between(
            candidate.owner_id, first_day - timedelta(days=2), last_day + timedelta(days=1)
        )
        logger.debug(f"{len(recurring)} recurring candidates between {first_day} and {last_day}")
        conflicting = {
            other.id
            for other in recurring
            if other.id != exclude_id and self._occurrence_overlaps(other, start, end)
        }
        return ConflictVerdict(conflicting_ids=frozenset(conflicting))

    def _occurrence_overlaps(self, other: RecurringEvent, start: datetime, end: datetime) -> bool:
        first_day, last_day = self._local_dates(start, end, other.zone)
        for day in expand_occurrences(other, first_day - timedelta(days=1), last_day):
            occ_start, occ_end = occurrence_span(other, day, other.zone)
            if spans_overlap(start, end, occ_start, occ_end):
                return True
        return False

    @staticmethod
    def _local_dates(start: datetime, end: datetime, zone) -> tuple[date, date]:
        return start.astimezone(zone).date(), end.astimezone(zone).date()

    # ------------------------------------------------------------------
    # Recurring event candidates
    # ------------------------------------------------------------------

    def check_recurring_event(
        self, candidate: RecurringEvent, exclude_id: str | None = None
    ) -> ConflictVerdict:
        """Check a recurring event against the owner's other recurring events."""
        validate_pattern(candidate)
        if exclude_id is None:
            exclude_id = candidate.id
        if candidate.rule.is_unspecified:
            logger.debug(f"Recurring event {candidate.id} has an unspecified rule, nothing to check")
            return ConflictVerdict()

        others = self.recurring_events.find_overlapping_recurring_events(
            candidate.owner_id, candidate.start_date, candidate.end_date
        )
        logger.debug(f"{len(others)} recurring candidates for {candidate.id}")

        conflicting: set[str] = set()
        for other in others:
            if other.id == exclude_id:
                continue
            if self._patterns_conflict(candidate, other):
                conflicting.add(other.id)

        verdict = ConflictVerdict(conflicting_ids=frozenset(conflicting))
        self._log_verdict("Recurring event", exclude_id, verdict)
        return verdict

    def comparison_window(
        self, a: RecurringEvent, b: RecurringEvent
    ) -> ConflictWindow | None:
        """Date window over which two recurring events are compared.

        ``None`` when their date ranges do not intersect. When either side is
        open-ended the window is capped to ``window_days`` from the later start.
        """
        start = max(a.start_date, b.start_date)
        ends = [d for d in (a.end_date, b.end_date) if d is not None]
        end = min(ends) if ends else None
        if end is not None and end < start:
            return None

        if end is None:
            end = start + timedelta(days=self.window_days - 1)
        window = ConflictWindow(from_date=start, to_date=end)
        if a.is_open_ended or b.is_open_ended:
            window = window.capped(self.window_days)
            logger.debug(f"Comparing open-ended patterns over {window.days} days from {start}")
        return window

    def _patterns_conflict(self, a: RecurringEvent, b: RecurringEvent) -> bool:
        if b.rule.is_unspecified:
            return False

        window = self.comparison_window(a, b)
        if window is None:
            logger.debug(f"Skipping {b.id}: date ranges do not intersect")
            return False
        if not may_share_dates(a, b):
            logger.debug(f"Skipping {b.id}: no shared recurrence days")
            return False

        dates_b = set(expand_occurrences(b, window.from_date, window.to_date))
        for day in expand_occurrences(a, window.from_date, window.to_date):
            if day not in dates_b:
                continue
            if spans_overlap(*occurrence_span(a, day, a.zone), *occurrence_span(b, day, b.zone)):
                logger.debug(f"{a.id} and {b.id} overlap on {day}")
                return True
        return False

    # ------------------------------------------------------------------
    # Skip-day removal
    # ------------------------------------------------------------------

    def check_skip_days(
        self, event: RecurringEvent, dates_to_unskip: Iterable[date]
    ) -> ConflictVerdict:
        """Check the occurrences re-activated by removing dates from the skip list."""
        validate_pattern(event)
        # Only dates on which the rule itself fires come back to life
        reactivated = sorted(
            day for day in set(dates_to_unskip) if occurs_on(event, day, frozenset())
        )
        if not reactivated:
            logger.debug(f"No occurrences re-activated for {event.id}")
            return ConflictVerdict()

        conflicting: set[str] = set()
        spans = {day: occurrence_span(event, day, event.zone) for day in reactivated}

        for other in self.recurring_events.find_overlapping_recurring_events(
            event.owner_id, event.start_date, event.end_date
        ):
            if other.id == event.id or not may_share_dates(event, other):
                continue
            for day in reactivated:
                if occurs_on(other, day) and spans_overlap(
                    *spans[day], *occurrence_span(other, day, other.zone)
                ):
                    logger.debug(f"Re-activating {day} collides with {other.id}")
                    conflicting.add(other.id)
                    break

        for day in reactivated:
            occ_start, occ_end = spans[day]
            for plain in self.plain_events.find_overlapping_plain_events(
                event.owner_id, occ_start, occ_end
            ):
                if plain.id != event.id and spans_overlap(
                    occ_start, occ_end, plain.start, plain.effective_end
                ):
                    logger.debug(f"Re-activating {day} collides with {plain.id}")
                    conflicting.add(plain.id)

        verdict = ConflictVerdict(conflicting_ids=frozenset(conflicting))
        self._log_verdict("Skip-day removal", event.id, verdict)
        return verdict

    # ------------------------------------------------------------------
    # Raising entry points
    # ------------------------------------------------------------------

    def validate_event_no_conflict(
        self, candidate: TimeSpan, exclude_id: str | None = None
    ) -> ConflictVerdict:
        return _raise_on_conflict(self.check_event(candidate, exclude_id))

    def validate_recurring_event_no_conflict(
        self, candidate: RecurringEvent, exclude_id: str | None = None
    ) -> ConflictVerdict:
        return _raise_on_conflict(self.check_recurring_event(candidate, exclude_id))

    def validate_skip_days_no_conflict(
        self, event: RecurringEvent, dates_to_unskip: Iterable[date]
    ) -> ConflictVerdict:
        return _raise_on_conflict(self.check_skip_days(event, dates_to_unskip))

    def validate_no_conflict(
        self, candidate: TimeSpan | RecurringEvent, exclude_id: str | None = None
    ) -> ConflictVerdict:
        """Validate either kind of candidate, raising ``ConflictError`` on conflict."""
        if isinstance(candidate, RecurringEvent):
            return self.validate_recurring_event_no_conflict(candidate, exclude_id)
        if isinstance(candidate, TimeSpan):
            return self.validate_event_no_conflict(candidate, exclude_id)
        raise TypeError(f"cannot validate {type(candidate).__name__}")

    @staticmethod
    def _log_verdict(kind: str, subject_id: str | None, verdict: ConflictVerdict) -> None:
        if verdict.has_conflict:
            logger.warning(
                f"{kind} {subject_id} conflicts with {len(verdict.conflicting_ids)} "
                f"events: {sorted(verdict.conflicting_ids)}"
            )
        else:
            logger.info(f"{kind} {subject_id} validated, no conflicts found")


def _raise_on_conflict(verdict: ConflictVerdict) -> ConflictVerdict:
    if verdict.has_conflict:
        raise ConflictError(verdict.conflicting_ids)
    return verdict
