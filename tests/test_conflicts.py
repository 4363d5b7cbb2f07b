"""Tests for the conflict validator: plain events, recurring events and
skip-day removal."""

from __future__ import annotations

from datetime import date, datetime, time, timezone
from unittest.mock import patch

import pytest

from event_planner.config import Settings
from event_planner.domain.errors import ConflictError, ErrorCode, InvalidTimeRangeError
from event_planner.domain.models import Event, RecurringEvent
from event_planner.repos.memory import EventRepository, RecurringEventRepository
from event_planner.services.conflicts import ConflictValidator
from event_planner.services.recurrence import expand_occurrences, parse_rule

OWNER = "user-1"


def _utc(year, month, day, hour=0, minute=0) -> datetime:
    return datetime(year, month, day, hour, minute, tzinfo=timezone.utc)


def _make_event(start: datetime, end: datetime | None, **overrides) -> Event:
    return Event(owner_id=overrides.pop("owner_id", OWNER), start=start, end=end, **overrides)


def _make_recurring(
    rule: str,
    start_time: time,
    end_time: time,
    start_date: date,
    end_date: date | None = None,
    **overrides,
) -> RecurringEvent:
    return RecurringEvent(
        owner_id=overrides.pop("owner_id", OWNER),
        rule=parse_rule(rule),
        start_time=start_time,
        end_time=end_time,
        start_date=start_date,
        end_date=end_date,
        **overrides,
    )


class _StaticLookup:
    """Lookup that ignores its range arguments and returns everything it holds."""

    def __init__(self, plain=(), recurring=()):
        self.plain = list(plain)
        self.recurring = list(recurring)

    def find_overlapping_plain_events(self, owner_id, start, end):
        return list(self.plain)

    def find_overlapping_recurring_events(self, owner_id, from_date, to_date):
        return list(self.recurring)

    def find_confirmed_recurring_events_between(self, owner_id, from_date, to_date):
        return list(self.recurring)


class _FailingLookup:
    """Lookup whose every query raises the same error."""

    def __init__(self, error: Exception):
        self.error = error

    def find_overlapping_plain_events(self, owner_id, start, end):
        raise self.error

    def find_overlapping_recurring_events(self, owner_id, from_date, to_date):
        raise self.error

    def find_confirmed_recurring_events_between(self, owner_id, from_date, to_date):
        raise self.error


def _static_validator(plain=(), recurring=(), settings=None) -> ConflictValidator:
    lookup = _StaticLookup(plain, recurring)
    return ConflictValidator(lookup, lookup, lookup, settings=settings)


@pytest.fixture
def events() -> EventRepository:
    return EventRepository()


@pytest.fixture
def recurring() -> RecurringEventRepository:
    return RecurringEventRepository()


@pytest.fixture
def validator(events, recurring) -> ConflictValidator:
    return ConflictValidator(events, recurring, recurring)


def _window_sizes(spy) -> list[int]:
    return [(c.args[2] - c.args[1]).days + 1 for c in spy.call_args_list]


# ---------------------------------------------------------------------------
# Plain event candidates
# ---------------------------------------------------------------------------


def test_touching_events_do_not_conflict(events, validator):
    events.add(_make_event(_utc(2025, 7, 1, 10), _utc(2025, 7, 1, 11)))
    candidate = _make_event(_utc(2025, 7, 1, 11), _utc(2025, 7, 1, 12))
    assert not validator.check_event(candidate).has_conflict


def test_overlapping_event_conflicts(events, validator):
    existing = _make_event(_utc(2025, 7, 1, 10), _utc(2025, 7, 1, 11))
    events.add(existing)
    candidate = _make_event(_utc(2025, 7, 1, 10, 30), _utc(2025, 7, 1, 12))

    verdict = validator.check_event(candidate)
    assert verdict.conflicting_ids == {existing.id}

    with pytest.raises(ConflictError) as exc_info:
        validator.validate_event_no_conflict(candidate)
    assert exc_info.value.conflicting_ids == {existing.id}
    assert exc_info.value.error_code == ErrorCode.EVENT_CONFLICT


def test_other_owner_and_unconfirmed_events_are_ignored(events, validator):
    events.add(_make_event(_utc(2025, 7, 1, 10), _utc(2025, 7, 1, 11), owner_id="user-2"))
    events.add(_make_event(_utc(2025, 7, 1, 10), _utc(2025, 7, 1, 11), confirmed=False))
    candidate = _make_event(_utc(2025, 7, 1, 10), _utc(2025, 7, 1, 11))
    assert not validator.check_event(candidate).has_conflict


def test_event_does_not_conflict_with_itself(events, validator):
    existing = _make_event(_utc(2025, 7, 1, 10), _utc(2025, 7, 1, 11))
    events.add(existing)
    assert not validator.check_event(existing).has_conflict

    moved = _make_event(_utc(2025, 7, 1, 10, 30), _utc(2025, 7, 1, 11, 30))
    assert not validator.check_event(moved, exclude_id=existing.id).has_conflict


def test_lookup_results_are_rechecked():
    far_away = _make_event(_utc(2025, 8, 1, 10), _utc(2025, 8, 1, 11))
    validator = _static_validator(plain=[far_away])
    candidate = _make_event(_utc(2025, 7, 1, 10), _utc(2025, 7, 1, 11))
    assert not validator.check_event(candidate).has_conflict


def test_point_event_inside_existing_event(events, validator):
    events.add(_make_event(_utc(2025, 7, 1, 10), _utc(2025, 7, 1, 11)))
    assert validator.check_event(_make_event(_utc(2025, 7, 1, 10, 30), None)).has_conflict
    assert not validator.check_event(_make_event(_utc(2025, 7, 1, 11), None)).has_conflict


def test_event_ending_before_start_is_rejected(validator):
    candidate = _make_event(_utc(2025, 7, 1, 11), _utc(2025, 7, 1, 11))
    with pytest.raises(InvalidTimeRangeError):
        validator.check_event(candidate)


def test_event_spanning_midnight_hits_morning_occurrence(recurring, validator):
    standup = _make_recurring("DAILY", time(7, 0), time(9, 0), date(2025, 7, 1))
    recurring.add(standup)
    candidate = _make_event(_utc(2025, 6, 30, 22), _utc(2025, 7, 1, 8))

    with pytest.raises(ConflictError) as exc_info:
        validator.validate_event_no_conflict(candidate)
    assert exc_info.value.conflicting_ids == {standup.id}


def test_overnight_occurrence_reaches_into_next_day(recurring, validator):
    night_shift = _make_recurring(
        "DAILY", time(22, 0), time(6, 0), date(2025, 7, 1), date(2025, 7, 1)
    )
    recurring.add(night_shift)

    early = _make_event(_utc(2025, 7, 2, 5), _utc(2025, 7, 2, 5, 30))
    after = _make_event(_utc(2025, 7, 2, 6), _utc(2025, 7, 2, 7))
    assert validator.check_event(early).conflicting_ids == {night_shift.id}
    assert not validator.check_event(after).has_conflict


def test_recurring_occurrence_uses_owner_timezone(recurring, validator):
    # 09:00 in Toronto during July is 13:00 UTC
    meeting = _make_recurring(
        "WEEKLY:TUE", time(9, 0), time(10, 0), date(2025, 7, 1), timezone="America/Toronto"
    )
    recurring.add(meeting)

    assert validator.check_event(
        _make_event(_utc(2025, 7, 1, 13, 30), _utc(2025, 7, 1, 14))
    ).has_conflict
    assert not validator.check_event(
        _make_event(_utc(2025, 7, 1, 9, 30), _utc(2025, 7, 1, 10))
    ).has_conflict


def test_recurring_occurrence_in_zone_ahead_of_candidate(recurring, validator):
    # 01:00 on July 2 in Kiritimati (UTC+14) is 11:00 UTC on July 1
    early_bird = _make_recurring(
        "DAILY",
        time(1, 0),
        time(3, 0),
        date(2025, 7, 2),
        date(2025, 7, 2),
        timezone="Pacific/Kiritimati",
    )
    recurring.add(early_bird)

    candidate = _make_event(_utc(2025, 7, 1, 12), _utc(2025, 7, 1, 12, 30))
    assert validator.check_event(candidate).conflicting_ids == {early_bird.id}


def test_overnight_occurrence_in_zone_far_behind_candidate(recurring, validator):
    # 22:00 on June 30 at UTC-12 is 10:00 UTC on July 1, which is already
    # July 2 for a candidate in Kiritimati
    late_shift = _make_recurring(
        "DAILY",
        time(22, 0),
        time(2, 0),
        date(2025, 6, 30),
        date(2025, 6, 30),
        timezone="Etc/GMT+12",
    )
    recurring.add(late_shift)

    candidate = _make_event(
        _utc(2025, 7, 1, 10, 30), _utc(2025, 7, 1, 11), timezone="Pacific/Kiritimati"
    )
    assert validator.check_event(candidate).conflicting_ids == {late_shift.id}


def test_skipped_occurrence_does_not_conflict(recurring, validator):
    recurring.add(
        _make_recurring(
            "DAILY",
            time(9, 0),
            time(10, 0),
            date(2025, 7, 1),
            skip_dates=frozenset({date(2025, 7, 2)}),
        )
    )
    assert not validator.check_event(
        _make_event(_utc(2025, 7, 2, 9), _utc(2025, 7, 2, 10))
    ).has_conflict


def test_plain_and_recurring_conflicts_are_reported_together(events, recurring, validator):
    plain = _make_event(_utc(2025, 7, 1, 9), _utc(2025, 7, 1, 9, 30))
    daily = _make_recurring("DAILY", time(9, 0), time(10, 0), date(2025, 7, 1))
    events.add(plain)
    recurring.add(daily)

    candidate = _make_event(_utc(2025, 7, 1, 9, 15), _utc(2025, 7, 1, 9, 45))
    assert validator.check_event(candidate).conflicting_ids == {plain.id, daily.id}


# ---------------------------------------------------------------------------
# Recurring event candidates
# ---------------------------------------------------------------------------


def test_monday_and_tuesday_series_do_not_conflict(recurring, validator):
    recurring.add(
        _make_recurring("WEEKLY:MON", time(9, 0), time(10, 0), date(2025, 7, 1), date(2025, 12, 31))
    )
    candidate = _make_recurring(
        "WEEKLY:TUE", time(9, 0), time(10, 0), date(2025, 7, 1), date(2025, 12, 31)
    )
    assert not validator.check_recurring_event(candidate).has_conflict


def test_same_day_overlapping_series_conflict(recurring, validator):
    existing = _make_recurring("WEEKLY:MON", time(9, 0), time(10, 0), date(2025, 7, 1))
    recurring.add(existing)
    candidate = _make_recurring("WEEKLY:MON,WED", time(9, 30), time(10, 30), date(2025, 7, 1))

    with pytest.raises(ConflictError) as exc_info:
        validator.validate_recurring_event_no_conflict(candidate)
    assert exc_info.value.conflicting_ids == {existing.id}


def test_back_to_back_series_do_not_conflict(recurring, validator):
    recurring.add(_make_recurring("DAILY", time(9, 0), time(10, 0), date(2025, 7, 1)))
    candidate = _make_recurring("DAILY", time(10, 0), time(11, 0), date(2025, 7, 1))
    assert not validator.check_recurring_event(candidate).has_conflict


def test_series_does_not_conflict_with_itself(recurring, validator):
    existing = _make_recurring("DAILY", time(9, 0), time(10, 0), date(2025, 7, 1))
    recurring.add(existing)
    assert not validator.check_recurring_event(existing).has_conflict


def test_alternating_biweekly_series_do_not_conflict(recurring, validator):
    recurring.add(_make_recurring("WEEKLY,2:MON", time(9, 0), time(10, 0), date(2025, 6, 30)))
    candidate = _make_recurring("WEEKLY,2:MON", time(9, 0), time(10, 0), date(2025, 7, 7))
    assert not validator.check_recurring_event(candidate).has_conflict


def test_overnight_series_conflicts_on_shared_date(recurring, validator):
    existing = _make_recurring(
        "DAILY", time(22, 0), time(2, 0), date(2025, 7, 1), date(2025, 7, 10)
    )
    recurring.add(existing)
    candidate = _make_recurring(
        "DAILY", time(23, 0), time(23, 30), date(2025, 7, 5), date(2025, 7, 5)
    )
    assert validator.check_recurring_event(candidate).conflicting_ids == {existing.id}


def test_monthly_nth_weekday_against_weekly(recurring, validator):
    first_monday = _make_recurring(
        "MONTHLY:1:MON", time(9, 0), time(10, 0), date(2025, 7, 1), date(2025, 8, 31)
    )
    recurring.add(first_monday)

    weekly = _make_recurring(
        "WEEKLY:MON", time(9, 30), time(10, 30), date(2025, 7, 1), date(2025, 8, 31)
    )
    fifteenth = _make_recurring(
        "MONTHLY:15", time(9, 0), time(10, 0), date(2025, 7, 1), date(2025, 8, 31)
    )
    assert validator.check_recurring_event(weekly).conflicting_ids == {first_monday.id}
    assert not validator.check_recurring_event(fifteenth).has_conflict


def test_unspecified_rules_never_conflict(recurring, validator):
    recurring.add(_make_recurring("UNSPECIFIED", time(9, 0), time(10, 0), date(2025, 7, 1)))
    daily = _make_recurring("DAILY", time(9, 0), time(10, 0), date(2025, 7, 1))
    draft = _make_recurring("UNSPECIFIED", time(9, 0), time(10, 0), date(2025, 7, 1))

    assert not validator.check_recurring_event(daily).has_conflict
    recurring.add(daily)
    assert not validator.check_recurring_event(draft).has_conflict


def test_series_with_equal_times_is_rejected(validator):
    candidate = _make_recurring("DAILY", time(9, 0), time(9, 0), date(2025, 7, 1))
    with pytest.raises(InvalidTimeRangeError):
        validator.check_recurring_event(candidate)


def test_series_ending_before_start_is_rejected(validator):
    candidate = _make_recurring(
        "DAILY", time(9, 0), time(10, 0), date(2025, 7, 10), date(2025, 7, 1)
    )
    with pytest.raises(InvalidTimeRangeError):
        validator.check_recurring_event(candidate)


# ---------------------------------------------------------------------------
# Comparison window
# ---------------------------------------------------------------------------


def test_open_ended_comparison_is_capped():
    existing = _make_recurring("WEEKLY:MON", time(9, 0), time(10, 0), date(2025, 6, 30))
    candidate = _make_recurring("WEEKLY:MON", time(9, 0), time(10, 0), date(2025, 7, 7))
    validator = _static_validator(recurring=[existing])

    with patch(
        "event_planner.services.conflicts.expand_occurrences", wraps=expand_occurrences
    ) as spy:
        verdict = validator.check_recurring_event(candidate)

    assert verdict.conflicting_ids == {existing.id}
    assert spy.call_count == 2
    assert all(days <= 31 for days in _window_sizes(spy))
    assert spy.call_args_list[0].args[1] == date(2025, 7, 7)


def test_long_bounded_series_against_open_ended_is_capped():
    existing = _make_recurring(
        "DAILY", time(9, 0), time(10, 0), date(2025, 1, 1), date(2030, 12, 31)
    )
    candidate = _make_recurring("DAILY", time(12, 0), time(13, 0), date(2025, 7, 1))
    validator = _static_validator(recurring=[existing])

    with patch(
        "event_planner.services.conflicts.expand_occurrences", wraps=expand_occurrences
    ) as spy:
        assert not validator.check_recurring_event(candidate).has_conflict

    assert _window_sizes(spy) == [31, 31]


def test_cap_follows_settings():
    existing = _make_recurring("DAILY", time(9, 0), time(10, 0), date(2025, 7, 1))
    validator = _static_validator(
        recurring=[existing], settings=Settings(conflict_window_days=7)
    )
    window = validator.comparison_window(
        existing, _make_recurring("DAILY", time(9, 0), time(10, 0), date(2025, 7, 3))
    )
    assert window.from_date == date(2025, 7, 3)
    assert window.to_date == date(2025, 7, 9)


def test_bounded_series_are_compared_over_their_intersection(validator):
    a = _make_recurring("DAILY", time(9, 0), time(10, 0), date(2025, 7, 1), date(2025, 8, 31))
    b = _make_recurring("DAILY", time(9, 0), time(10, 0), date(2025, 7, 15), date(2025, 9, 30))
    window = validator.comparison_window(a, b)
    assert window.from_date == date(2025, 7, 15)
    assert window.to_date == date(2025, 8, 31)
    assert window.days == 48


def test_disjoint_date_ranges_skip_expansion():
    old = _make_recurring("DAILY", time(9, 0), time(10, 0), date(2020, 1, 1), date(2020, 12, 31))
    candidate = _make_recurring("DAILY", time(9, 0), time(10, 0), date(2025, 7, 1))
    validator = _static_validator(recurring=[old])

    assert validator.comparison_window(old, candidate) is None
    with patch(
        "event_planner.services.conflicts.expand_occurrences", wraps=expand_occurrences
    ) as spy:
        assert not validator.check_recurring_event(candidate).has_conflict
    spy.assert_not_called()


def test_disjoint_weekdays_skip_expansion():
    monday = _make_recurring("WEEKLY:MON", time(9, 0), time(10, 0), date(2025, 7, 1))
    tuesday = _make_recurring("WEEKLY:TUE", time(9, 0), time(10, 0), date(2025, 7, 1))
    validator = _static_validator(recurring=[monday])

    with patch(
        "event_planner.services.conflicts.expand_occurrences", wraps=expand_occurrences
    ) as spy:
        assert not validator.check_recurring_event(tuesday).has_conflict
    spy.assert_not_called()


# ---------------------------------------------------------------------------
# Skip-day removal
# ---------------------------------------------------------------------------


@pytest.fixture
def mondays(recurring) -> RecurringEvent:
    # 2025-07-14 is a Monday
    event = _make_recurring(
        "WEEKLY:MON",
        time(9, 0),
        time(10, 0),
        date(2025, 7, 7),
        date(2025, 8, 25),
        skip_dates=frozenset({date(2025, 7, 14)}),
    )
    recurring.add(event)
    return event


def test_unskipping_collides_with_recurring_event(recurring, validator, mondays):
    one_off = _make_recurring(
        "DAILY", time(9, 30), time(10, 30), date(2025, 7, 14), date(2025, 7, 14)
    )
    recurring.add(one_off)

    assert validator.check_skip_days(mondays, {date(2025, 7, 14)}).conflicting_ids == {
        one_off.id
    }
    with pytest.raises(ConflictError):
        validator.validate_skip_days_no_conflict(mondays, [date(2025, 7, 14)])


def test_unskipping_collides_with_plain_event(events, validator, mondays):
    dentist = _make_event(_utc(2025, 7, 14, 9, 15), _utc(2025, 7, 14, 9, 45))
    events.add(dentist)
    assert validator.check_skip_days(mondays, {date(2025, 7, 14)}).conflicting_ids == {
        dentist.id
    }


def test_unskipping_next_to_other_events_is_clean(events, validator, mondays):
    events.add(_make_event(_utc(2025, 7, 14, 10), _utc(2025, 7, 14, 11)))
    assert not validator.check_skip_days(mondays, {date(2025, 7, 14)}).has_conflict


def test_unskipping_date_without_occurrence_is_clean(events, validator, mondays):
    # Tuesday: the rule never fires, so nothing comes back
    events.add(_make_event(_utc(2025, 7, 15, 9), _utc(2025, 7, 15, 10)))
    assert not validator.check_skip_days(mondays, {date(2025, 7, 15)}).has_conflict


# ---------------------------------------------------------------------------
# Lookup failures
# ---------------------------------------------------------------------------


def test_lookup_errors_propagate_unchanged():
    error = RuntimeError("db down")
    lookup = _FailingLookup(error)
    validator = ConflictValidator(lookup, lookup, lookup)
    series = _make_recurring(
        "WEEKLY:MON",
        time(9, 0),
        time(10, 0),
        date(2025, 7, 7),
        skip_dates=frozenset({date(2025, 7, 14)}),
    )

    with pytest.raises(RuntimeError) as exc_info:
        validator.check_event(_make_event(_utc(2025, 7, 1, 9), _utc(2025, 7, 1, 10)))
    assert exc_info.value is error

    with pytest.raises(RuntimeError) as exc_info:
        validator.check_recurring_event(series)
    assert exc_info.value is error

    with pytest.raises(RuntimeError) as exc_info:
        validator.check_skip_days(series, {date(2025, 7, 14)})
    assert exc_info.value is error


# ---------------------------------------------------------------------------
# Dispatch
# ---------------------------------------------------------------------------


def test_validate_no_conflict_dispatches_on_type(events, recurring, validator):
    events.add(_make_event(_utc(2025, 7, 1, 9), _utc(2025, 7, 1, 10)))
    recurring.add(_make_recurring("WEEKLY:WED", time(9, 0), time(10, 0), date(2025, 7, 1)))

    with pytest.raises(ConflictError):
        validator.validate_no_conflict(_make_event(_utc(2025, 7, 1, 9), _utc(2025, 7, 1, 10)))
    with pytest.raises(ConflictError):
        validator.validate_no_conflict(
            _make_recurring("WEEKLY:WED", time(9, 30), time(10, 30), date(2025, 7, 1))
        )
    assert not validator.validate_no_conflict(
        _make_event(_utc(2025, 7, 1, 10), _utc(2025, 7, 1, 11))
    ).has_conflict
    with pytest.raises(TypeError):
        validator.validate_no_conflict("not an event")
