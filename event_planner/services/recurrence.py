"""Service for parsing compact recurrence rules into structured rules, rendering
canonical summaries, and expanding recurrence patterns into occurrence dates."""

from __future__ import annotations

import logging
from datetime import date, datetime, time, timedelta

from dateutil.relativedelta import relativedelta
from dateutil.rrule import (
    DAILY,
    MONTHLY,
    WEEKLY,
    FR,
    MO,
    SA,
    SU,
    TH,
    TU,
    WE,
    rrule,
)

from event_planner.domain.errors import InvalidPatternError
from event_planner.domain.models import (
    ALL_WEEKDAYS,
    MAX_DAY_OF_MONTH,
    MAX_NTH_WEEKDAY,
    UNSPECIFIED_RULE,
    Frequency,
    RecurrencePattern,
    RecurrenceRule,
    Weekday,
)

logger = logging.getLogger(__name__)

UNSPECIFIED = "UNSPECIFIED"

_DAY_MAP = {
    Weekday.MON: MO,
    Weekday.TUE: TU,
    Weekday.WED: WE,
    Weekday.THU: TH,
    Weekday.FRI: FR,
    Weekday.SAT: SA,
    Weekday.SUN: SU,
}

_DAY_NAMES = {
    Weekday.MON: "Monday",
    Weekday.TUE: "Tuesday",
    Weekday.WED: "Wednesday",
    Weekday.THU: "Thursday",
    Weekday.FRI: "Friday",
    Weekday.SAT: "Saturday",
    Weekday.SUN: "Sunday",
}

# Accept both the canonical three-letter codes and full English names
_DAY_ALIASES = {day.value: day for day in Weekday} | {
    name.upper(): day for day, name in _DAY_NAMES.items()
}

_FREQ_MAP = {Frequency.DAILY: DAILY, Frequency.WEEKLY: WEEKLY, Frequency.MONTHLY: MONTHLY}

_ORDINAL_WORDS = {1: "first", 2: "second", 3: "third", 4: "fourth"}


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


def parse_rule(text: str) -> RecurrenceRule:
    """Parse a compact rule such as ``"WEEKLY,2:MON,WED"`` into a RecurrenceRule.

    Trailing ``;FROM=`` / ``;UNTIL=`` clauses (as written by ``build_summary``)
    are validated and discarded. Raises ``InvalidPatternError`` naming the
    offending token.
    """
    rule, _, _ = parse_summary(text)
    return rule


def parse_summary(text: str) -> tuple[RecurrenceRule, date | None, date | None]:
    """Parse a canonical summary into its rule and optional date bounds."""
    if text is None or not text.strip():
        raise InvalidPatternError(text or "", "recurrence rule is empty")

    logger.debug(f"Parsing recurrence rule: {text!r}")
    rule_text, *clauses = [part.strip() for part in text.strip().split(";")]
    rule = _parse_rule_text(rule_text)

    bounds: dict[str, date] = {}
    for clause in clauses:
        key, sep, value = clause.partition("=")
        key = key.strip().upper()
        if not sep or key not in ("FROM", "UNTIL"):
            raise InvalidPatternError(clause, "expected FROM=<date> or UNTIL=<date>")
        if key in bounds:
            raise InvalidPatternError(clause, f"{key} given more than once")
        try:
            bounds[key] = date.fromisoformat(value.strip())
        except ValueError:
            raise InvalidPatternError(clause, "date must be YYYY-MM-DD") from None

    start_date = bounds.get("FROM")
    end_date = bounds.get("UNTIL")
    if start_date is not None and end_date is not None and end_date < start_date:
        raise InvalidPatternError(f"UNTIL={end_date.isoformat()}", "UNTIL is before FROM")

    return rule, start_date, end_date


def _parse_rule_text(text: str) -> RecurrenceRule:
    head, *qualifiers = [part.strip() for part in text.split(":")]
    freq_token, has_interval, interval_token = head.partition(",")
    freq_token = freq_token.strip().upper()

    if freq_token == UNSPECIFIED:
        if has_interval or qualifiers:
            raise InvalidPatternError(text, "UNSPECIFIED takes no interval or qualifiers")
        return UNSPECIFIED_RULE

    try:
        frequency = Frequency(freq_token)
    except ValueError:
        raise InvalidPatternError(freq_token or text, "unknown frequency") from None

    interval = 1
    if has_interval:
        interval = _parse_int(interval_token.strip() or head, "interval", 1, None)

    days: frozenset[Weekday] = frozenset()
    ordinal: int | None = None

    if frequency == Frequency.DAILY:
        if qualifiers:
            raise InvalidPatternError(qualifiers[0], "DAILY takes no qualifiers")

    elif frequency == Frequency.WEEKLY:
        if len(qualifiers) > 1:
            raise InvalidPatternError(qualifiers[1], "WEEKLY takes a single day list")
        if qualifiers:
            days = _parse_days(qualifiers[0])

    else:
        if len(qualifiers) > 2:
            raise InvalidPatternError(qualifiers[2], "MONTHLY takes at most an ordinal and a day list")
        if len(qualifiers) == 1:
            ordinal = _parse_int(qualifiers[0], "day of month", 1, MAX_DAY_OF_MONTH)
        elif len(qualifiers) == 2:
            ordinal = _parse_int(qualifiers[0], "weekday ordinal", 1, MAX_NTH_WEEKDAY)
            days = _parse_days(qualifiers[1])

    rule = RecurrenceRule(
        frequency=frequency, interval=interval, days_of_week=days, ordinal=ordinal
    )
    logger.debug(f"Parsed recurrence rule: {rule}")
    return rule


def _parse_int(token: str, what: str, low: int, high: int | None) -> int:
    try:
        value = int(token)
    except ValueError:
        raise InvalidPatternError(token, f"{what} must be a number") from None
    if value < low or (high is not None and value > high):
        upper = f" to {high}" if high is not None else " or more"
        raise InvalidPatternError(token, f"{what} must be {low}{upper}")
    return value


def _parse_days(token: str) -> frozenset[Weekday]:
    if not token:
        raise InvalidPatternError(":", "day-of-week list is empty")
    days = set()
    for item in token.split(","):
        name = item.strip().upper()
        day = _DAY_ALIASES.get(name)
        if day is None:
            raise InvalidPatternError(item.strip() or token, "unknown day of week")
        days.add(day)
    return frozenset(days)


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------


def _sorted_days(days: frozenset[Weekday]) -> list[Weekday]:
    return sorted(days, key=lambda d: d.position)


def build_summary(
    rule: RecurrenceRule, start_date: date | None = None, end_date: date | None = None
) -> str:
    """Render the canonical summary of a rule with its date bounds.

    Equal rules with equal bounds always render the same string, and the
    result parses back to an equal rule.
    """
    if rule.is_unspecified:
        text = UNSPECIFIED
    else:
        text = rule.frequency.value
        if rule.interval != 1:
            text += f",{rule.interval}"
        if rule.ordinal is not None:
            text += f":{rule.ordinal}"
        if rule.days_of_week:
            text += ":" + ",".join(day.value for day in _sorted_days(rule.days_of_week))

    if start_date is not None:
        text += f";FROM={start_date.isoformat()}"
    if end_date is not None:
        text += f";UNTIL={end_date.isoformat()}"
    return text


def _format_date(day: date) -> str:
    return f"{day:%B} {day.day}, {day.year}"


def _format_day_list(days: frozenset[Weekday]) -> str:
    return " and ".join(_DAY_NAMES[day] for day in _sorted_days(days))


def describe_rule(
    rule: RecurrenceRule, start_date: date | None = None, end_date: date | None = None
) -> str:
    """Human-readable summary, e.g. "Every Monday from July 1, 2025 forever"."""
    if rule.is_unspecified:
        return "Unspecified recurrence"

    n = rule.interval
    if rule.frequency == Frequency.DAILY:
        text = "Every day" if n == 1 else f"Every {n} days"
    elif rule.frequency == Frequency.WEEKLY:
        text = "Every week" if n == 1 else f"Every {n} weeks"
        if rule.days_of_week:
            days = _format_day_list(rule.days_of_week)
            text = f"Every {days}" if n == 1 else f"{text} on {days}"
    else:
        months = "month" if n == 1 else f"{n} months"
        if rule.days_of_week:
            nth = _ORDINAL_WORDS[rule.ordinal]
            period = "the month" if n == 1 else f"every {n} months"
            text = f"Every {nth} {_format_day_list(rule.days_of_week)} of {period}"
        elif rule.ordinal is not None:
            text = f"Every {months} on day {rule.ordinal}"
        else:
            text = f"Every {months}"

    if start_date is not None:
        text += f" from {_format_date(start_date)}"
    text += f" until {_format_date(end_date)}" if end_date is not None else " forever"
    return text


# ---------------------------------------------------------------------------
# Expansion
# ---------------------------------------------------------------------------


def _weekly_days(pattern: RecurrencePattern) -> frozenset[Weekday]:
    return pattern.rule.days_of_week or frozenset({Weekday.from_date(pattern.start_date)})


def _day_of_month(pattern: RecurrencePattern) -> int:
    return pattern.rule.ordinal or pattern.start_date.day


def _rebase(pattern: RecurrencePattern, lower: date) -> date:
    """Latest date aligned with the rule's period that is not after ``lower``.

    Starting the rrule here instead of at ``start_date`` keeps expansion cost
    proportional to the window rather than to the pattern's age.
    """
    start = pattern.start_date
    if lower <= start:
        return start

    rule = pattern.rule
    if rule.frequency == Frequency.MONTHLY:
        months = (lower.year - start.year) * 12 + lower.month - start.month
        periods = months // rule.interval
        if periods == 0:
            return start
        return (start + relativedelta(months=periods * rule.interval)).replace(day=1)

    step = rule.interval * (7 if rule.frequency == Frequency.WEEKLY else 1)
    periods = (lower - start).days // step
    return start + timedelta(days=periods * step)


def _build_rrule(pattern: RecurrencePattern, anchor: date) -> rrule:
    rule = pattern.rule
    kwargs: dict = {
        "dtstart": datetime.combine(anchor, time.min),
        "interval": rule.interval,
    }
    if pattern.end_date is not None:
        kwargs["until"] = datetime.combine(pattern.end_date, time.min)

    if rule.frequency == Frequency.WEEKLY:
        kwargs["byweekday"] = tuple(_DAY_MAP[d] for d in _sorted_days(_weekly_days(pattern)))
        # Weeks are counted from the pattern's first day, not from Monday
        kwargs["wkst"] = pattern.start_date.weekday()
    elif rule.frequency == Frequency.MONTHLY:
        if rule.days_of_week:
            kwargs["byweekday"] = tuple(
                _DAY_MAP[d](rule.ordinal) for d in _sorted_days(rule.days_of_week)
            )
        else:
            # The last existing day out of 28..N clamps N to short months
            day = _day_of_month(pattern)
            kwargs["bymonthday"] = tuple(range(min(day, 28), day + 1))
            kwargs["bysetpos"] = -1

    return rrule(_FREQ_MAP[rule.frequency], **kwargs)


def expand_occurrences(
    pattern: RecurrencePattern,
    from_date: date,
    to_date: date,
    skip_dates: frozenset[date] | set[date] | None = None,
) -> list[date]:
    """Return the ordered occurrence dates of *pattern* within ``[from_date, to_date]``.

    Dates outside the pattern's own range and dates in *skip_dates* (the
    pattern's ``skip_dates`` when omitted) are excluded. An inverted window or
    an UNSPECIFIED rule yields an empty list.
    """
    if pattern.rule.is_unspecified:
        return []

    skip = pattern.skip_dates if skip_dates is None else skip_dates
    lower = max(from_date, pattern.start_date)
    upper = to_date if pattern.end_date is None else min(to_date, pattern.end_date)
    if lower > upper:
        return []

    rule = _build_rrule(pattern, _rebase(pattern, lower))
    occurrences = [
        dt.date()
        for dt in rule.between(
            datetime.combine(lower, time.min), datetime.combine(upper, time.min), inc=True
        )
        if dt.date() not in skip
    ]
    logger.debug(
        f"Expanded {build_summary(pattern.rule)} over {lower}..{upper}: "
        f"{len(occurrences)} occurrences"
    )
    return occurrences


def occurs_on(
    pattern: RecurrencePattern,
    day: date,
    skip_dates: frozenset[date] | set[date] | None = None,
) -> bool:
    """Whether *pattern* has an occurrence on *day*."""
    return bool(expand_occurrences(pattern, day, day, skip_dates))


def occurrence_bounds(pattern: RecurrencePattern, day: date) -> tuple[datetime, datetime]:
    """Naive local start/end of the occurrence on *day*.

    Overnight patterns end on the following calendar day.
    """
    start = datetime.combine(day, pattern.start_time)
    end_day = day + timedelta(days=1) if pattern.is_overnight else day
    return start, datetime.combine(end_day, pattern.end_time)


def possible_weekdays(pattern: RecurrencePattern) -> frozenset[Weekday]:
    """Weekdays on which *pattern* can ever fire."""
    rule = pattern.rule
    if rule.is_unspecified:
        return frozenset()
    if rule.frequency == Frequency.WEEKLY:
        return _weekly_days(pattern)
    if rule.frequency == Frequency.MONTHLY and rule.days_of_week:
        return rule.days_of_week
    return ALL_WEEKDAYS


def possible_month_days(pattern: RecurrencePattern) -> frozenset[int] | None:
    """Days of the month on which *pattern* can fire, or ``None`` for any."""
    rule = pattern.rule
    if rule.is_unspecified:
        return frozenset()
    if rule.frequency != Frequency.MONTHLY:
        return None
    if rule.days_of_week:
        # The n-th weekday always falls within the n-th block of seven days
        return frozenset(range(7 * (rule.ordinal - 1) + 1, 7 * rule.ordinal + 1))
    day = _day_of_month(pattern)
    return frozenset(range(min(day, 28), day + 1))


def may_share_dates(a: RecurrencePattern, b: RecurrencePattern) -> bool:
    """Cheap pre-filter: False when the two patterns can never fire on one date."""
    if not possible_weekdays(a) & possible_weekdays(b):
        return False
    days_a, days_b = possible_month_days(a), possible_month_days(b)
    if days_a is not None and days_b is not None and not days_a & days_b:
        return False
    return True
