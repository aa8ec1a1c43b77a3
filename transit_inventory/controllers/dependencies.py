"""Shared FastAPI dependency providers and error translation for controllers."""

from __future__ import annotations

from datetime import date, datetime
from typing import Annotated, Any

from fastapi import HTTPException, Request, status
from pydantic import BeforeValidator

from transit_inventory.domain.constraints import normalize_share_of_voice
from transit_inventory.domain.errors import (
    CapacityExceededError,
    ConcurrentModificationError,
    InvalidPricingConfigError,
    InvalidRequestError,
    InvalidTransitionError,
    InventoryError,
    LedgerUnavailableError,
    PricingConfigNotFoundError,
    ReservationNotFoundError,
    RouteNotFoundError,
)
from transit_inventory.services.admission_service import AdmissionService
from transit_inventory.services.availability_service import AvailabilityService
from transit_inventory.services.pricing_service import PricingEstimationService


ERROR_STATUS_CODES: tuple[tuple[type[InventoryError], int], ...] = (
    (InvalidRequestError, status.HTTP_400_BAD_REQUEST),
    (InvalidPricingConfigError, status.HTTP_400_BAD_REQUEST),
    (RouteNotFoundError, status.HTTP_404_NOT_FOUND),
    (ReservationNotFoundError, status.HTTP_404_NOT_FOUND),
    (PricingConfigNotFoundError, status.HTTP_404_NOT_FOUND),
    (InvalidTransitionError, status.HTTP_409_CONFLICT),
    (CapacityExceededError, status.HTTP_409_CONFLICT),
    (ConcurrentModificationError, status.HTTP_409_CONFLICT),
    (LedgerUnavailableError, status.HTTP_503_SERVICE_UNAVAILABLE),
)


def to_http_exception(exc: InventoryError) -> HTTPException:
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    for error_type, mapped_status in ERROR_STATUS_CODES:
        if isinstance(exc, error_type):
            status_code = mapped_status
            break

    detail: Any = str(exc)
    if isinstance(exc, CapacityExceededError):
        detail = {
            "message": str(exc),
            "max_available_sov": exc.max_available_sov,
            "max_available_percent": int(round(exc.max_available_sov * 100)),
            "unavailable_dates": [item.isoformat() for item in exc.unavailable_dates],
        }
    return HTTPException(status_code=status_code, detail=detail)


def parse_wire_share_of_voice(value: Any) -> Any:
    """Pydantic ``before`` hook: legacy percents become fractions, range is checked later."""
    if isinstance(value, bool):
        raise ValueError("share_of_voice must be a number")
    try:
        return normalize_share_of_voice(value)
    except InvalidRequestError as exc:
        raise ValueError(str(exc)) from exc


def parse_wire_date(value: Any) -> Any:
    """Pydantic ``before`` hook: ``2025-06-01T10:00:00Z`` is the calendar date 2025-06-01."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, str):
        return value.strip().split("T")[0].split(" ")[0]
    return value


CalendarDate = Annotated[date, BeforeValidator(parse_wire_date)]
WireShareOfVoice = Annotated[float, BeforeValidator(parse_wire_share_of_voice)]


def get_availability_service(request: Request) -> AvailabilityService:
    service = getattr(request.app.state, "availability_service", None)
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Availability service is not initialized",
        )
    return service


def get_admission_service(request: Request) -> AdmissionService:
    service = getattr(request.app.state, "admission_service", None)
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Admission service is not initialized",
        )
    return service


def get_pricing_service(request: Request) -> PricingEstimationService:
    service = getattr(request.app.state, "pricing_service", None)
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Pricing service is not initialized",
        )
    return service
