"""Atomic admission control and approval workflow for reservations.

Every decision that can add load to a capacity cell (a new reservation, or a
status change into the booking-blocking set) re-reads availability inside one
``BEGIN IMMEDIATE`` ledger transaction and writes in that same transaction, so
two concurrent callers cannot both see the same free capacity.
"""

from __future__ import annotations

import time
from datetime import date, datetime
from threading import RLock
from typing import Any, Callable, Iterable, Optional, TypeVar
from uuid import uuid4

from transit_inventory.domain.calendar import coerce_date_range, longest_available_run
from transit_inventory.domain.constraints import (
    ADMISSION_INITIAL_STATUSES,
    AdmissionPolicy,
    validate_admission_policy,
    validate_dayparts,
    validate_share_of_voice,
    validate_transition,
)
from transit_inventory.domain.errors import (
    CapacityExceededError,
    ConcurrentModificationError,
    InvalidRequestError,
    LedgerBusyError,
    RouteNotFoundError,
)
from transit_inventory.domain.models import (
    DAYPARTS,
    MODE_STRICT,
    STATUS_APPROVED,
    STATUS_CANCELLED,
    STATUS_PENDING_APPROVAL,
    STATUS_REJECTED,
    STRICT_STATUSES,
    AdmissionDecision,
    Reservation,
)
from transit_inventory.repository.data_repository import DataRepository, LedgerTransaction
from transit_inventory.services.availability_service import AvailabilityService, normalize_route_ids
from transit_inventory.utils.config import Settings, get_settings
from transit_inventory.utils.logger import get_logger


logger = get_logger(__name__)

T = TypeVar("T")

SnapshotBuilder = Callable[[date, date], Optional[dict[str, Any]]]

REVIEW_ACTIONS: dict[str, str] = {
    "approve": STATUS_APPROVED,
    "reject": STATUS_REJECTED,
}


class AdmissionService:
    """Serializes reservation writes against the capacity invariant."""

    def __init__(
        self,
        repository: Optional[DataRepository] = None,
        settings: Optional[Settings] = None,
        availability_service: Optional[AvailabilityService] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._settings = settings or get_settings()
        self._repository = repository or DataRepository(self._settings)
        self._availability = availability_service or AvailabilityService(
            repository=self._repository,
            settings=self._settings,
        )
        self._policy = AdmissionPolicy(
            max_retries=self._settings.admission_max_retries,
            retry_backoff_seconds=self._settings.admission_retry_backoff_seconds,
        )
        validate_admission_policy(self._policy)
        self._sleep = sleep
        self._lock = RLock()

    def _run_atomically(self, operation: str, work: Callable[[LedgerTransaction], T]) -> T:
        attempts = self._policy.max_retries + 1
        for attempt in range(1, attempts + 1):
            try:
                with self._lock:
                    with self._repository.admission_transaction() as ledger:
                        return work(ledger)
            except LedgerBusyError as exc:
                if attempt >= attempts:
                    logger.error(
                        "Ledger contention exhausted retries | operation=%s | attempts=%s",
                        operation,
                        attempt,
                    )
                    raise ConcurrentModificationError(
                        f"{operation} could not acquire the ledger after {attempt} attempts"
                    ) from exc
                backoff = self._policy.retry_backoff_seconds * attempt
                logger.warning(
                    "Ledger busy, retrying | operation=%s | attempt=%s | backoff=%.3f",
                    operation,
                    attempt,
                    backoff,
                )
                self._sleep(backoff)
        raise ConcurrentModificationError(f"{operation} did not run")  # pragma: no cover

    def try_reserve(
        self,
        campaign_id: str,
        route_ids: Iterable[str],
        start_date: date | datetime | str,
        end_date: date | datetime | str,
        dayparts: Optional[Iterable[str]],
        requested_sov: float,
        trim_to_available: bool = False,
        exclude_reservation_id: Optional[str] = None,
        initial_status: str = STATUS_PENDING_APPROVAL,
        name: Optional[str] = None,
        pricing_snapshot: Optional[dict[str, Any]] = None,
        snapshot_builder: Optional[SnapshotBuilder] = None,
    ) -> AdmissionDecision:
        """Admit the reservation if every cell in its window can hold ``requested_sov``.

        A rejection is returned, not raised, and carries the largest SOV the
        window could still take. Validation problems raise ``InvalidRequestError``.

        ``exclude_reservation_id`` names the reservation being replaced. Its load
        is ignored for the check and, when it holds approved or active capacity,
        it is cancelled in the same transaction as the insert.

        ``snapshot_builder`` is called with the effective window once the
        reservation is accepted; its result replaces ``pricing_snapshot``.
        """
        if not str(campaign_id or "").strip():
            raise InvalidRequestError("campaign_id is required")
        if isinstance(requested_sov, bool) or not isinstance(requested_sov, (int, float)):
            raise InvalidRequestError("share_of_voice must be a number")
        requested = float(requested_sov)
        validate_share_of_voice(requested)
        if initial_status not in ADMISSION_INITIAL_STATUSES:
            raise InvalidRequestError(
                f"initial_status must be one of {', '.join(sorted(ADMISSION_INITIAL_STATUSES))}"
            )

        normalized_routes = normalize_route_ids(route_ids)
        window_start, window_end = coerce_date_range(start_date, end_date)
        requested_dayparts = validate_dayparts(dayparts or ())

        known_routes = {route.route_id for route in self._repository.get_routes(normalized_routes)}
        missing = [route_id for route_id in normalized_routes if route_id not in known_routes]
        if missing:
            raise RouteNotFoundError(f"Unknown route ids: {', '.join(missing)}")

        def admit(ledger: LedgerTransaction) -> AdmissionDecision:
            replaced = (
                ledger.get_reservation(exclude_reservation_id)
                if exclude_reservation_id
                else None
            )
            availability = self._availability.get_availability(
                normalized_routes,
                window_start,
                window_end,
                requested_dayparts,
                exclude_reservation_id=exclude_reservation_id,
                mode=MODE_STRICT,
                ledger=ledger,
            )
            effective_start, effective_end = window_start, window_end
            if not availability.unavailable_dates:
                ceiling = availability.min_available_sov
            elif trim_to_available:
                run = longest_available_run(availability.dates, availability.unavailable_dates)
                if run is None:
                    ceiling = 0.0
                else:
                    effective_start, effective_end = run
                    ceiling = availability.min_available_between(effective_start, effective_end)
            else:
                ceiling = 0.0

            if requested > ceiling:
                return AdmissionDecision(
                    accepted=False,
                    requested_sov=requested,
                    max_available_sov=round(ceiling, 2),
                    unavailable_dates=list(availability.unavailable_dates),
                )

            reservation = Reservation(
                reservation_id=uuid4().hex,
                campaign_id=str(campaign_id),
                name=name,
                start_date=effective_start,
                end_date=effective_end,
                route_ids=normalized_routes,
                dayparts=requested_dayparts,
                share_of_voice=requested,
                status=initial_status,
                pricing_snapshot=(
                    snapshot_builder(effective_start, effective_end)
                    if snapshot_builder is not None
                    else pricing_snapshot
                ),
            )
            superseded_id = None
            if replaced is not None and replaced.status in STRICT_STATUSES:
                validate_transition(replaced.status, STATUS_CANCELLED)
                ledger.update_reservation_status(
                    replaced,
                    STATUS_CANCELLED,
                    f"superseded by {reservation.reservation_id}",
                )
                superseded_id = replaced.reservation_id
            ledger.insert_reservation(reservation)
            return AdmissionDecision(
                accepted=True,
                requested_sov=requested,
                max_available_sov=round(ceiling, 2),
                reservation_id=reservation.reservation_id,
                effective_start_date=effective_start,
                effective_end_date=effective_end,
                unavailable_dates=list(availability.unavailable_dates),
                superseded_reservation_id=superseded_id,
            )

        decision = self._run_atomically("try_reserve", admit)
        logger.info(
            "Admission decided | campaign_id=%s | accepted=%s | requested_sov=%.4f | "
            "max_available_sov=%.2f | reservation_id=%s | start=%s | end=%s | superseded=%s",
            campaign_id,
            decision.accepted,
            decision.requested_sov,
            decision.max_available_sov,
            decision.reservation_id,
            decision.effective_start_date,
            decision.effective_end_date,
            decision.superseded_reservation_id,
        )
        return decision

    def _ensure_capacity(self, ledger: LedgerTransaction, reservation: Reservation) -> None:
        availability = self._availability.get_availability(
            reservation.route_ids,
            reservation.start_date,
            reservation.end_date,
            [daypart for daypart in reservation.effective_dayparts if daypart in DAYPARTS],
            exclude_reservation_id=reservation.reservation_id,
            mode=MODE_STRICT,
            ledger=ledger,
        )
        ceiling = 0.0 if availability.unavailable_dates else availability.min_available_sov
        if reservation.share_of_voice > ceiling:
            raise CapacityExceededError(
                f"Reservation {reservation.reservation_id} needs "
                f"{reservation.share_of_voice:.2f} SOV but only {ceiling:.2f} is free",
                max_available_sov=round(ceiling, 2),
                unavailable_dates=availability.unavailable_dates,
            )

    def _apply_transition(
        self,
        ledger: LedgerTransaction,
        reservation: Reservation,
        new_status: str,
        notes: Optional[str],
    ) -> Reservation:
        validate_transition(reservation.status, new_status)
        if new_status in STRICT_STATUSES and reservation.status not in STRICT_STATUSES:
            self._ensure_capacity(ledger, reservation)
        return ledger.update_reservation_status(reservation, new_status, notes)

    def transition_status(
        self,
        reservation_id: str,
        new_status: str,
        notes: Optional[str] = None,
    ) -> Reservation:
        def transition(ledger: LedgerTransaction) -> Reservation:
            reservation = ledger.get_reservation(reservation_id)
            return self._apply_transition(ledger, reservation, new_status, notes)

        updated = self._run_atomically("transition_status", transition)
        logger.info(
            "Reservation transitioned | reservation_id=%s | status=%s",
            reservation_id,
            updated.status,
        )
        return updated

    def review_campaign(
        self,
        campaign_id: str,
        action: str,
        notes: Optional[str] = None,
    ) -> list[Reservation]:
        """Approve or reject every pending reservation of a campaign, all or nothing."""
        new_status = REVIEW_ACTIONS.get(action)
        if new_status is None:
            raise InvalidRequestError(f"action must be one of {', '.join(sorted(REVIEW_ACTIONS))}")

        def review(ledger: LedgerTransaction) -> list[Reservation]:
            pending = ledger.list_campaign_reservations(campaign_id, {STATUS_PENDING_APPROVAL})
            if not pending:
                raise InvalidRequestError(
                    f"Campaign '{campaign_id}' has no reservations pending approval"
                )
            return [
                self._apply_transition(ledger, reservation, new_status, notes)
                for reservation in pending
            ]

        reviewed = self._run_atomically("review_campaign", review)
        logger.info(
            "Campaign reviewed | campaign_id=%s | action=%s | reservations=%s",
            campaign_id,
            action,
            len(reviewed),
        )
        return reviewed
