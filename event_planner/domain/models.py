"""Domain models for recurrence expansion and conflict detection."""

from __future__ import annotations

import uuid
from datetime import date, datetime, time, timedelta, timezone
from enum import StrEnum
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from event_planner.config import DEFAULT_TIMEZONE


class Frequency(StrEnum):
    DAILY = "DAILY"
    WEEKLY = "WEEKLY"
    MONTHLY = "MONTHLY"


class Weekday(StrEnum):
    MON = "MON"
    TUE = "TUE"
    WED = "WED"
    THU = "THU"
    FRI = "FRI"
    SAT = "SAT"
    SUN = "SUN"

    @property
    def position(self) -> int:
        """Position in the week, matching ``date.weekday()`` (Monday is 0)."""
        return list(Weekday).index(self)

    @classmethod
    def from_date(cls, day: date) -> Weekday:
        return list(cls)[day.weekday()]


ALL_WEEKDAYS = frozenset(Weekday)

MAX_NTH_WEEKDAY = 4
MAX_DAY_OF_MONTH = 31


def _new_id() -> str:
    return str(uuid.uuid4())


def _check_zone(value: str) -> str:
    try:
        ZoneInfo(value)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ValueError(f"unknown timezone {value!r}") from exc
    return value


# ---------------------------------------------------------------------------
# Recurrence
# ---------------------------------------------------------------------------


class RecurrenceRule(BaseModel):
    """Structured recurrence rule, as produced by ``parse_rule``.

    ``frequency`` is ``None`` for the ``UNSPECIFIED`` draft placeholder, which
    never yields occurrences. For MONTHLY rules ``ordinal`` is the day of the
    month when ``days_of_week`` is empty, otherwise the n-th weekday.
    """

    model_config = ConfigDict(frozen=True)

    frequency: Frequency | None = None
    interval: int = Field(default=1, ge=1)
    days_of_week: frozenset[Weekday] = frozenset()
    ordinal: int | None = None

    @property
    def is_unspecified(self) -> bool:
        return self.frequency is None

    @model_validator(mode="after")
    def _qualifiers_match_frequency(self) -> RecurrenceRule:
        if self.frequency is None:
            if self.interval != 1 or self.days_of_week or self.ordinal is not None:
                raise ValueError("UNSPECIFIED rule takes no interval, days or ordinal")
        elif self.frequency == Frequency.DAILY:
            if self.days_of_week or self.ordinal is not None:
                raise ValueError("DAILY rule takes no days or ordinal")
        elif self.frequency == Frequency.WEEKLY:
            if self.ordinal is not None:
                raise ValueError("WEEKLY rule takes no ordinal")
        elif self.days_of_week:
            if self.ordinal is None or not 1 <= self.ordinal <= MAX_NTH_WEEKDAY:
                raise ValueError(
                    f"MONTHLY weekday rule needs an ordinal from 1 to {MAX_NTH_WEEKDAY}"
                )
        elif self.ordinal is not None and not 1 <= self.ordinal <= MAX_DAY_OF_MONTH:
            raise ValueError(f"MONTHLY day of month must be 1 to {MAX_DAY_OF_MONTH}")
        return self


UNSPECIFIED_RULE = RecurrenceRule()


class RecurrencePattern(BaseModel):
    """A recurrence rule anchored to local times of day and a date range.

    ``end_time`` earlier than ``start_time`` means each occurrence runs past
    midnight into the next day. ``end_date`` of ``None`` is open-ended.
    """

    model_config = ConfigDict(frozen=True)

    rule: RecurrenceRule
    start_time: time
    end_time: time
    start_date: date
    end_date: date | None = None
    skip_dates: frozenset[date] = frozenset()

    @property
    def is_open_ended(self) -> bool:
        return self.end_date is None

    @property
    def is_overnight(self) -> bool:
        return self.end_time < self.start_time


class RecurringEvent(RecurrencePattern):
    id: str = Field(default_factory=_new_id)
    owner_id: str
    name: str = ""
    timezone: str = DEFAULT_TIMEZONE
    confirmed: bool = True

    @field_validator("timezone")
    @classmethod
    def _known_zone(cls, value: str) -> str:
        return _check_zone(value)

    @property
    def zone(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)


# ---------------------------------------------------------------------------
# Plain events
# ---------------------------------------------------------------------------


class TimeSpan(BaseModel):
    """An absolute time span owned by a user.

    Instants are normalised to UTC. A missing ``end`` is a zero-duration point.
    """

    model_config = ConfigDict(frozen=True)

    owner_id: str
    start: datetime
    end: datetime | None = None
    timezone: str = DEFAULT_TIMEZONE

    @field_validator("timezone")
    @classmethod
    def _known_zone(cls, value: str) -> str:
        return _check_zone(value)

    @field_validator("start", "end")
    @classmethod
    def _to_utc(cls, value: datetime | None) -> datetime | None:
        if value is None:
            return None
        if value.tzinfo is None:
            raise ValueError("datetimes must be timezone-aware")
        return value.astimezone(timezone.utc)

    @property
    def effective_end(self) -> datetime:
        return self.end if self.end is not None else self.start

    @property
    def zone(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)


class Event(TimeSpan):
    id: str = Field(default_factory=_new_id)
    name: str = ""
    confirmed: bool = True


# ---------------------------------------------------------------------------
# Verdicts and windows
# ---------------------------------------------------------------------------


class ConflictVerdict(BaseModel):
    model_config = ConfigDict(frozen=True)

    conflicting_ids: frozenset[str] = frozenset()

    @property
    def has_conflict(self) -> bool:
        return bool(self.conflicting_ids)

    def merge(self, other: ConflictVerdict) -> ConflictVerdict:
        return ConflictVerdict(conflicting_ids=self.conflicting_ids | other.conflicting_ids)


class ConflictWindow(BaseModel):
    """Inclusive date range bounding an expansion."""

    model_config = ConfigDict(frozen=True)

    from_date: date
    to_date: date

    @property
    def days(self) -> int:
        return (self.to_date - self.from_date).days + 1

    def capped(self, max_days: int) -> ConflictWindow:
        if self.days <= max_days:
            return self
        return ConflictWindow(
            from_date=self.from_date,
            to_date=self.from_date + timedelta(days=max_days - 1),
        )


# ---------------------------------------------------------------------------
# Request / Response DTOs
# ---------------------------------------------------------------------------


class ParseRuleRequest(BaseModel):
    rule: str
    start_date: date | None = None
    end_date: date | None = None


class ParseRuleResponse(BaseModel):
    rule: RecurrenceRule
    summary: str
    description: str | None = None


class EventCreateRequest(BaseModel):
    owner_id: str
    name: str = ""
    start: datetime
    end: datetime | None = None
    timezone: str | None = None
    confirmed: bool = True


class RecurringEventCreateRequest(BaseModel):
    owner_id: str
    name: str = ""
    rule: str
    start_time: time
    end_time: time
    start_date: date
    end_date: date | None = None
    skip_dates: list[date] = Field(default_factory=list)
    timezone: str | None = None
    confirmed: bool = True


class SkipDaysRequest(BaseModel):
    dates: list[date] = Field(min_length=1)


class ConflictCheckResponse(BaseModel):
    has_conflict: bool
    conflicting_ids: list[str]
