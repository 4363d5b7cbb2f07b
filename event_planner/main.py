"""FastAPI application entry point for the event planner conflict service."""

from __future__ import annotations

import logging

from fastapi import FastAPI, HTTPException

from event_planner.config import configure_logging, load_settings
from event_planner.domain.errors import (
    ConflictError,
    InvalidPatternError,
    InvalidTimeRangeError,
)
from event_planner.domain.models import (
    ConflictCheckResponse,
    ConflictVerdict,
    Event,
    EventCreateRequest,
    ParseRuleRequest,
    ParseRuleResponse,
    RecurringEvent,
    RecurringEventCreateRequest,
    SkipDaysRequest,
)
from event_planner.repos.memory import EventRepository, RecurringEventRepository
from event_planner.services.conflicts import ConflictValidator
from event_planner.services.intervals import validate_pattern, validate_span
from event_planner.services.recurrence import (
    build_summary,
    describe_rule,
    parse_summary,
)

settings = load_settings()
configure_logging(settings)
logger = logging.getLogger(__name__)

app = FastAPI(title="Event Planner Conflict Service")

# ── Singletons (created at import time for simplicity) ────────────────
event_repo = EventRepository()
recurring_event_repo = RecurringEventRepository()

conflict_validator = ConflictValidator(
    plain_events=event_repo,
    recurring_events=recurring_event_repo,
    confirmed_recurring_events=recurring_event_repo,
    settings=settings,
)


def _conflict_detail(exc: ConflictError) -> dict:
    return {
        "error_code": exc.error_code,
        "message": exc.message,
        "conflicting_ids": sorted(exc.conflicting_ids),
    }


def _invalid_detail(exc: InvalidPatternError | InvalidTimeRangeError) -> dict:
    return {"error_code": exc.error_code, "message": exc.message}


def _verdict_response(verdict: ConflictVerdict) -> ConflictCheckResponse:
    return ConflictCheckResponse(
        has_conflict=verdict.has_conflict,
        conflicting_ids=sorted(verdict.conflicting_ids),
    )


def _build_event(body: EventCreateRequest) -> Event:
    try:
        return Event(
            owner_id=body.owner_id,
            name=body.name,
            start=body.start,
            end=body.end,
            timezone=body.timezone or settings.default_timezone,
            confirmed=body.confirmed,
        )
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc


# ── Recurrence rules ──────────────────────────────────────────────────


@app.post("/recurrence/parse", response_model=ParseRuleResponse)
def parse_recurrence(payload: ParseRuleRequest) -> ParseRuleResponse:
    """Parse a compact rule and return its canonical summary."""
    try:
        rule, start_date, end_date = parse_summary(payload.rule)
    except InvalidPatternError as exc:
        raise HTTPException(status_code=422, detail=_invalid_detail(exc)) from exc

    start_date = payload.start_date or start_date
    end_date = payload.end_date or end_date
    return ParseRuleResponse(
        rule=rule,
        summary=build_summary(rule, start_date, end_date),
        description=describe_rule(rule, start_date, end_date),
    )


# ── Plain events ──────────────────────────────────────────────────────


@app.post("/conflicts/check", response_model=ConflictCheckResponse)
def check_event_conflicts(body: EventCreateRequest) -> ConflictCheckResponse:
    """Dry run: report conflicts for a candidate event without storing it."""
    candidate = _build_event(body)
    try:
        verdict = conflict_validator.check_event(candidate)
    except InvalidTimeRangeError as exc:
        raise HTTPException(status_code=422, detail=_invalid_detail(exc)) from exc
    return _verdict_response(verdict)


@app.post("/events", response_model=Event, status_code=201)
def create_event(body: EventCreateRequest) -> Event:
    """Store a plain event after checking it against the owner's calendar."""
    event = _build_event(body)
    try:
        validate_span(event)
        if event.confirmed:
            conflict_validator.validate_event_no_conflict(event)
    except InvalidTimeRangeError as exc:
        raise HTTPException(status_code=422, detail=_invalid_detail(exc)) from exc
    except ConflictError as exc:
        raise HTTPException(status_code=409, detail=_conflict_detail(exc)) from exc
    event_repo.add(event)
    logger.info(f"Created event {event.id} for owner {event.owner_id}")
    return event


@app.get("/events", response_model=list[Event])
def list_events() -> list[Event]:
    return event_repo.list_all()


@app.get("/events/{event_id}", response_model=Event)
def get_event(event_id: str) -> Event:
    event = event_repo.get(event_id)
    if event is None:
        raise HTTPException(status_code=404, detail="Event not found")
    return event


# ── Recurring events ──────────────────────────────────────────────────


@app.post("/recurring-events", response_model=RecurringEvent, status_code=201)
def create_recurring_event(body: RecurringEventCreateRequest) -> RecurringEvent:
    """Parse the rule, check for conflicts when confirmed, and store."""
    try:
        rule, _, _ = parse_summary(body.rule)
    except InvalidPatternError as exc:
        raise HTTPException(status_code=422, detail=_invalid_detail(exc)) from exc

    try:
        event = RecurringEvent(
            owner_id=body.owner_id,
            name=body.name,
            rule=rule,
            start_time=body.start_time,
            end_time=body.end_time,
            start_date=body.start_date,
            end_date=body.end_date,
            skip_dates=frozenset(body.skip_dates),
            timezone=body.timezone or settings.default_timezone,
            confirmed=body.confirmed,
        )
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc

    try:
        validate_pattern(event)
        if event.confirmed:
            conflict_validator.validate_recurring_event_no_conflict(event)
    except InvalidTimeRangeError as exc:
        raise HTTPException(status_code=422, detail=_invalid_detail(exc)) from exc
    except ConflictError as exc:
        raise HTTPException(status_code=409, detail=_conflict_detail(exc)) from exc

    recurring_event_repo.add(event)
    logger.info(
        f"Created recurring event {event.id} "
        f"({build_summary(event.rule, event.start_date, event.end_date)})"
    )
    return event


@app.get("/recurring-events", response_model=list[RecurringEvent])
def list_recurring_events() -> list[RecurringEvent]:
    return recurring_event_repo.list_all()


@app.get("/recurring-events/{event_id}", response_model=RecurringEvent)
def get_recurring_event(event_id: str) -> RecurringEvent:
    event = recurring_event_repo.get(event_id)
    if event is None:
        raise HTTPException(status_code=404, detail="Recurring event not found")
    return event


@app.post("/recurring-events/{event_id}/skip-days", response_model=RecurringEvent)
def add_skip_days(event_id: str, body: SkipDaysRequest) -> RecurringEvent:
    """Suppress occurrences on the given dates."""
    event = recurring_event_repo.add_skip_dates(event_id, set(body.dates))
    if event is None:
        raise HTTPException(status_code=404, detail="Recurring event not found")
    return event


@app.post("/recurring-events/{event_id}/skip-days/remove", response_model=RecurringEvent)
def remove_skip_days(event_id: str, body: SkipDaysRequest) -> RecurringEvent:
    """Re-activate skipped occurrences after checking them for conflicts."""
    event = recurring_event_repo.get(event_id)
    if event is None:
        raise HTTPException(status_code=404, detail="Recurring event not found")

    to_remove = set(body.dates) & event.skip_dates
    if event.confirmed and to_remove:
        try:
            conflict_validator.validate_skip_days_no_conflict(event, to_remove)
        except ConflictError as exc:
            raise HTTPException(status_code=409, detail=_conflict_detail(exc)) from exc

    return recurring_event_repo.remove_skip_dates(event_id, to_remove)
