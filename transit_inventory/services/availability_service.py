"""Capacity grid computation over the reservation ledger."""

from __future__ import annotations

from collections import defaultdict
from datetime import date, datetime
from typing import Iterable, Optional, Protocol, Sequence

import numpy as np

from transit_inventory.domain.calendar import coerce_calendar_date, coerce_date_range, date_span
from transit_inventory.domain.constraints import round_half_up, validate_dayparts
from transit_inventory.domain.errors import InvalidRequestError
from transit_inventory.domain.models import (
    AVAILABILITY_MODES,
    DAYPARTS,
    MODE_SOFT,
    MODE_STRICT,
    AvailabilityResult,
    CapacityBottleneck,
    DateAvailability,
    Reservation,
    RouteAvailabilitySummary,
)
from transit_inventory.repository.data_repository import DataRepository
from transit_inventory.utils.config import Settings, get_settings
from transit_inventory.utils.logger import get_logger


logger = get_logger(__name__)

# Cells are rounded once, after the summed load is subtracted, so 1 - 0.7 - 0.3 reads as exactly 0.
CELL_PRECISION = 6


class ReservationSource(Protocol):
    def list_reservations(
        self,
        *,
        statuses: Iterable[str],
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        route_ids: Optional[Sequence[str]] = None,
    ) -> list[Reservation]:
        ...


def normalize_route_ids(route_ids: Iterable[str]) -> tuple[str, ...]:
    cleaned = tuple(dict.fromkeys(str(route_id).strip() for route_id in route_ids))
    cleaned = tuple(route_id for route_id in cleaned if route_id)
    if not cleaned:
        raise InvalidRequestError("At least one route_id is required")
    return cleaned


def resolve_mode(mode: str) -> frozenset[str]:
    statuses = AVAILABILITY_MODES.get(mode)
    if statuses is None:
        raise InvalidRequestError(
            f"mode must be one of {', '.join(sorted(AVAILABILITY_MODES))}"
        )
    return statuses


def compute_availability(
    *,
    route_ids: Sequence[str],
    start_date: date,
    end_date: date,
    dayparts: Sequence[str],
    reservations: Iterable[Reservation],
    mode: str = MODE_STRICT,
    exclude_reservation_id: Optional[str] = None,
) -> AvailabilityResult:
    """Subtract every overlapping reservation from a routes x dates x dayparts grid.

    Callers pass already-validated inputs; ``reservations`` may contain rows that
    do not touch the window or the requested routes, they are skipped here.
    """
    dates = date_span(start_date, end_date)
    route_index = {route_id: position for position, route_id in enumerate(route_ids)}
    daypart_index = {daypart: position for position, daypart in enumerate(dayparts)}

    load = np.zeros((len(route_ids), len(dates), len(dayparts)), dtype=float)

    for reservation in reservations:
        if exclude_reservation_id is not None and reservation.reservation_id == exclude_reservation_id:
            continue
        route_rows = sorted({route_index[r] for r in reservation.route_ids if r in route_index})
        if not route_rows:
            continue
        daypart_cols = sorted(
            {daypart_index[d] for d in reservation.effective_dayparts if d in daypart_index}
        )
        if not daypart_cols:
            continue
        overlap_start = max(reservation.start_date, start_date)
        overlap_end = min(reservation.end_date, end_date)
        if overlap_start > overlap_end:
            continue

        first = (overlap_start - start_date).days
        last = (overlap_end - start_date).days
        block = np.ix_(route_rows, np.arange(first, last + 1), daypart_cols)
        load[block] += reservation.share_of_voice

    grid = np.round(np.maximum(1.0 - load, 0.0), CELL_PRECISION)

    per_date_min = grid.min(axis=(0, 2))
    unavailable_mask = per_date_min <= 0.0
    available_values = per_date_min[~unavailable_mask]
    min_available_sov = float(available_values.min()) if available_values.size else 0.0

    per_route_date_min = grid.min(axis=2)
    date_availability = [
        DateAvailability(
            date=current,
            min_available=float(per_date_min[offset]),
            unavailable=bool(unavailable_mask[offset]),
            exhausted_route_ids=tuple(
                route_ids[row]
                for row in np.flatnonzero(per_route_date_min[:, offset] <= 0.0)
            ),
        )
        for offset, current in enumerate(dates)
    ]

    bottlenecks = [
        CapacityBottleneck(
            route_id=route_ids[row],
            date=dates[col],
            daypart=dayparts[part],
            available_percent=round_half_up(float(grid[row, col, part]) * 100),
        )
        for row, col, part in np.argwhere(grid < 1.0)
    ]

    grid_view = {
        route_id: {
            current.isoformat(): {
                daypart: float(grid[row, col, part])
                for part, daypart in enumerate(dayparts)
            }
            for col, current in enumerate(dates)
        }
        for row, route_id in enumerate(route_ids)
    }

    return AvailabilityResult(
        mode=mode,
        route_ids=tuple(route_ids),
        dates=tuple(dates),
        dayparts=tuple(dayparts),
        grid=grid_view,
        min_available_sov=min_available_sov,
        unavailable_dates=[current for current, flag in zip(dates, unavailable_mask) if flag],
        bottlenecks=bottlenecks,
        date_availability=date_availability,
    )


def summarize_route_bookings(
    route_ids: Sequence[str],
    reservations: Iterable[Reservation],
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
) -> list[RouteAvailabilitySummary]:
    """Per-route booked load over every date any reservation covers."""
    wanted = set(route_ids)
    booked: dict[str, dict[date, dict[str, float]]] = {
        route_id: defaultdict(lambda: dict.fromkeys(DAYPARTS, 0.0)) for route_id in route_ids
    }

    for reservation in reservations:
        matching_routes = [r for r in dict.fromkeys(reservation.route_ids) if r in wanted]
        if not matching_routes or reservation.share_of_voice <= 0.0:
            continue
        window_start = max(reservation.start_date, start_date) if start_date else reservation.start_date
        window_end = min(reservation.end_date, end_date) if end_date else reservation.end_date
        if window_start > window_end:
            continue
        covered = [d for d in reservation.effective_dayparts if d in DAYPARTS]
        for current in date_span(window_start, window_end):
            for route_id in matching_routes:
                cell = booked[route_id][current]
                for daypart in covered:
                    cell[daypart] += reservation.share_of_voice

    summaries: list[RouteAvailabilitySummary] = []
    for route_id in route_ids:
        max_booked = 0.0
        dates_with_booking: list[date] = []
        for current in sorted(booked[route_id]):
            date_max = round(max(booked[route_id][current].values()), CELL_PRECISION)
            if date_max > 0.0:
                dates_with_booking.append(current)
                max_booked = max(max_booked, date_max)
        summaries.append(
            RouteAvailabilitySummary(
                route_id=route_id,
                has_limited_availability=max_booked > 0.0,
                max_booked_sov=max_booked,
                dates_with_booking=dates_with_booking,
                min_available_sov=max(0.0, round(1.0 - max_booked, CELL_PRECISION)),
            )
        )
    return summaries


class AvailabilityService:
    """Answers "how much SOV is still free" for routes, dates and dayparts."""

    def __init__(
        self,
        repository: Optional[DataRepository] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._repository = repository or DataRepository(self._settings)

    def get_availability(
        self,
        route_ids: Iterable[str],
        start_date: date | datetime | str,
        end_date: date | datetime | str,
        dayparts: Optional[Iterable[str]] = None,
        exclude_reservation_id: Optional[str] = None,
        mode: str = MODE_STRICT,
        ledger: Optional[ReservationSource] = None,
    ) -> AvailabilityResult:
        """Compute the remaining-capacity grid for a candidate reservation.

        ``ledger`` lets the admission path read through its open transaction;
        plain reads go straight to the repository.
        """
        normalized_routes = normalize_route_ids(route_ids)
        window_start, window_end = coerce_date_range(start_date, end_date)
        requested_dayparts = validate_dayparts(dayparts or ())
        statuses = resolve_mode(mode)

        source: ReservationSource = ledger if ledger is not None else self._repository
        reservations = source.list_reservations(
            statuses=statuses,
            start_date=window_start,
            end_date=window_end,
            route_ids=normalized_routes,
        )
        result = compute_availability(
            route_ids=normalized_routes,
            start_date=window_start,
            end_date=window_end,
            dayparts=requested_dayparts,
            reservations=reservations,
            mode=mode,
            exclude_reservation_id=exclude_reservation_id,
        )
        logger.info(
            "Availability computed | mode=%s | routes=%s | start=%s | end=%s | "
            "reservations=%s | min_available_sov=%.4f | unavailable_dates=%s",
            mode,
            len(normalized_routes),
            window_start.isoformat(),
            window_end.isoformat(),
            len(reservations),
            result.min_available_sov,
            len(result.unavailable_dates),
        )
        return result

    def summarize_routes(
        self,
        route_ids: Iterable[str],
        start_date: Optional[date | datetime | str] = None,
        end_date: Optional[date | datetime | str] = None,
        mode: str = MODE_SOFT,
    ) -> list[RouteAvailabilitySummary]:
        normalized_routes = normalize_route_ids(route_ids)
        window_start = coerce_calendar_date(start_date, "start_date") if start_date else None
        window_end = coerce_calendar_date(end_date, "end_date") if end_date else None
        if window_start and window_end:
            coerce_date_range(window_start, window_end)
        statuses = resolve_mode(mode)

        reservations = self._repository.list_reservations(
            statuses=statuses,
            start_date=window_start,
            end_date=window_end,
            route_ids=normalized_routes,
        )
        return summarize_route_bookings(normalized_routes, reservations, window_start, window_end)
