"""Calendar-date helpers; every date in the engine is a plain ``date``."""

from __future__ import annotations

from datetime import date, datetime, timedelta
from typing import Iterable, Optional, Sequence

from transit_inventory.domain.errors import InvalidRangeError, InvalidRequestError


def coerce_calendar_date(value: date | datetime | str, field_name: str) -> date:
    """Drop any time-of-day so dates compare as calendar dates."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        candidate = value.strip().split("T")[0].split(" ")[0]
        try:
            return datetime.strptime(candidate, "%Y-%m-%d").date()
        except ValueError as exc:
            raise InvalidRequestError(f"{field_name} must follow YYYY-MM-DD format") from exc
    raise InvalidRequestError(f"{field_name} must be a date")


def coerce_date_range(
    start_value: date | datetime | str,
    end_value: date | datetime | str,
) -> tuple[date, date]:
    start_date = coerce_calendar_date(start_value, "start_date")
    end_date = coerce_calendar_date(end_value, "end_date")
    if start_date > end_date:
        raise InvalidRangeError(
            f"start_date {start_date.isoformat()} is after end_date {end_date.isoformat()}"
        )
    return start_date, end_date


def date_span(start_date: date, end_date: date) -> list[date]:
    """Inclusive list of calendar dates."""
    return [
        start_date + timedelta(days=offset)
        for offset in range((end_date - start_date).days + 1)
    ]


def longest_available_run(
    dates: Sequence[date],
    unavailable: Iterable[date],
) -> Optional[tuple[date, date]]:
    """Longest contiguous run of dates not in ``unavailable``; earliest wins ties."""
    blocked = set(unavailable)
    best: Optional[tuple[date, date]] = None
    best_length = 0
    run_start: Optional[date] = None
    run_length = 0
    for current in dates:
        if current in blocked:
            run_start = None
            run_length = 0
            continue
        if run_start is None:
            run_start = current
        run_length += 1
        if run_length > best_length:
            best_length = run_length
            best = (run_start, current)
    return best
