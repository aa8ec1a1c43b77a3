"""HTTP controller layer for availability, admission and approval workflow."""

from __future__ import annotations

from datetime import date
from functools import partial
from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from pydantic import BaseModel, Field

from transit_inventory.controllers.dependencies import (
    CalendarDate,
    WireShareOfVoice,
    get_admission_service,
    get_availability_service,
    get_pricing_service,
    to_http_exception,
)
from transit_inventory.domain.errors import InventoryError
from transit_inventory.domain.models import (
    MODE_SOFT,
    MODE_STRICT,
    STATUS_PENDING_APPROVAL,
    AdmissionDecision,
    AvailabilityResult,
    Reservation,
)
from transit_inventory.services.admission_service import AdmissionService
from transit_inventory.services.availability_service import AvailabilityService
from transit_inventory.services.pricing_service import PricingEstimationService
from transit_inventory.utils.logger import get_logger


logger = get_logger(__name__)

router = APIRouter(tags=["inventory"])


class AvailabilityRequest(BaseModel):
    """Input DTO validated before entering service layer."""

    route_ids: list[str]
    start_date: CalendarDate
    end_date: CalendarDate
    dayparts: list[str] = Field(default_factory=list)
    exclude_reservation_id: Optional[str] = None
    mode: str = MODE_STRICT


class BottleneckResponse(BaseModel):
    route_id: str
    date: date
    daypart: str
    available_percent: int = Field(ge=0, le=100)


class DateAvailabilityResponse(BaseModel):
    date: date
    min_available: float = Field(ge=0.0, le=1.0)
    unavailable: bool
    exhausted_route_ids: list[str]


class AvailabilityResponse(BaseModel):
    mode: str
    min_available_sov: float = Field(ge=0.0, le=1.0)
    unavailable_dates: list[date]
    bottlenecks: list[BottleneckResponse]
    date_availability: list[DateAvailabilityResponse]
    grid: dict[str, dict[str, dict[str, float]]]


class RouteSummaryResponse(BaseModel):
    has_limited_availability: bool
    max_booked_sov: float = Field(ge=0.0)
    dates_with_booking: list[date]
    min_available_sov: float = Field(ge=0.0, le=1.0)


class RouteAvailabilityResponse(BaseModel):
    routes: dict[str, RouteSummaryResponse]


class ReserveRequest(BaseModel):
    campaign_id: str = Field(min_length=1)
    route_ids: list[str]
    start_date: CalendarDate
    end_date: CalendarDate
    dayparts: list[str] = Field(default_factory=list)
    share_of_voice: WireShareOfVoice
    trim_to_available: bool = False
    exclude_reservation_id: Optional[str] = None
    initial_status: str = STATUS_PENDING_APPROVAL
    name: Optional[str] = None
    pricing_snapshot: Optional[dict[str, Any]] = None
    attach_estimate: bool = False
    days_of_week: Optional[list[int]] = None
    placement_type: str = "portal_banner"


class AdmissionResponse(BaseModel):
    accepted: bool
    requested_sov: float
    max_available_sov: float
    max_available_percent: int
    reservation_id: Optional[str] = None
    effective_start_date: Optional[date] = None
    effective_end_date: Optional[date] = None
    unavailable_dates: list[date] = Field(default_factory=list)
    superseded_reservation_id: Optional[str] = None


class TransitionRequest(BaseModel):
    status: str = Field(min_length=1)
    notes: Optional[str] = None


class ReservationResponse(BaseModel):
    reservation_id: str
    campaign_id: str
    name: Optional[str] = None
    start_date: date
    end_date: date
    route_ids: list[str]
    dayparts: list[str]
    share_of_voice: float = Field(ge=0.0, le=1.0)
    status: str


class ReviewRequest(BaseModel):
    action: str = Field(min_length=1)
    notes: Optional[str] = None


class ReviewResponse(BaseModel):
    campaign_id: str
    action: str
    reservations: list[ReservationResponse]


def _availability_response(result: AvailabilityResult) -> AvailabilityResponse:
    return AvailabilityResponse(
        mode=result.mode,
        min_available_sov=result.min_available_sov,
        unavailable_dates=result.unavailable_dates,
        bottlenecks=[
            BottleneckResponse(
                route_id=item.route_id,
                date=item.date,
                daypart=item.daypart,
                available_percent=item.available_percent,
            )
            for item in result.bottlenecks
        ],
        date_availability=[
            DateAvailabilityResponse(
                date=item.date,
                min_available=item.min_available,
                unavailable=item.unavailable,
                exhausted_route_ids=list(item.exhausted_route_ids),
            )
            for item in result.date_availability
        ],
        grid=result.grid,
    )


def _admission_response(decision: AdmissionDecision) -> AdmissionResponse:
    return AdmissionResponse(
        accepted=decision.accepted,
        requested_sov=decision.requested_sov,
        max_available_sov=decision.max_available_sov,
        max_available_percent=decision.max_available_percent,
        reservation_id=decision.reservation_id,
        effective_start_date=decision.effective_start_date,
        effective_end_date=decision.effective_end_date,
        unavailable_dates=decision.unavailable_dates,
        superseded_reservation_id=decision.superseded_reservation_id,
    )


def _reservation_response(reservation: Reservation) -> ReservationResponse:
    return ReservationResponse(
        reservation_id=reservation.reservation_id,
        campaign_id=reservation.campaign_id,
        name=reservation.name,
        start_date=reservation.start_date,
        end_date=reservation.end_date,
        route_ids=list(reservation.route_ids),
        dayparts=list(reservation.dayparts),
        share_of_voice=reservation.share_of_voice,
        status=reservation.status,
    )


def _build_pricing_snapshot(
    payload: ReserveRequest,
    pricing_service: PricingEstimationService,
    start_date: date,
    end_date: date,
) -> Optional[dict[str, Any]]:
    """Best-effort estimate over the admitted window; never blocks admission."""
    try:
        estimate = pricing_service.estimate(
            start_date=start_date,
            end_date=end_date,
            share_of_voice=payload.share_of_voice,
            route_ids=payload.route_ids,
            days_of_week=payload.days_of_week,
            dayparts=payload.dayparts,
            placement_type=payload.placement_type,
        )
    except InventoryError as exc:
        logger.warning(
            "Pricing snapshot skipped | campaign_id=%s | error=%s",
            payload.campaign_id,
            exc,
        )
        return payload.pricing_snapshot
    snapshot = dict(payload.pricing_snapshot or {})
    snapshot.update(estimate.to_dict())
    snapshot["shareOfVoice"] = payload.share_of_voice
    return snapshot


@router.post(
    "/availability",
    response_model=AvailabilityResponse,
    status_code=status.HTTP_200_OK,
)
async def get_availability(
    payload: AvailabilityRequest,
    service: AvailabilityService = Depends(get_availability_service),
) -> AvailabilityResponse:
    """Remaining SOV per route, date and daypart for a candidate window."""
    try:
        result = service.get_availability(
            route_ids=payload.route_ids,
            start_date=payload.start_date,
            end_date=payload.end_date,
            dayparts=payload.dayparts,
            exclude_reservation_id=payload.exclude_reservation_id,
            mode=payload.mode,
        )
        return _availability_response(result)
    except InventoryError as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:  # pragma: no cover
        logger.exception("Unexpected availability failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to compute availability",
        ) from exc


@router.get(
    "/routes/availability",
    response_model=RouteAvailabilityResponse,
    status_code=status.HTTP_200_OK,
)
async def get_route_availability(
    route_ids: str = Query(..., description="Comma separated route ids"),
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    mode: str = MODE_SOFT,
    service: AvailabilityService = Depends(get_availability_service),
) -> RouteAvailabilityResponse:
    """Pipeline view: how loaded each route already is, drafts included."""
    try:
        summaries = service.summarize_routes(
            route_ids=[item for item in route_ids.split(",") if item.strip()],
            start_date=start_date,
            end_date=end_date,
            mode=mode,
        )
        return RouteAvailabilityResponse(
            routes={
                summary.route_id: RouteSummaryResponse(
                    has_limited_availability=summary.has_limited_availability,
                    max_booked_sov=summary.max_booked_sov,
                    dates_with_booking=summary.dates_with_booking,
                    min_available_sov=summary.min_available_sov,
                )
                for summary in summaries
            }
        )
    except InventoryError as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:  # pragma: no cover
        logger.exception("Unexpected route availability failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to summarize route availability",
        ) from exc


# Ledger writes block on SQLite locks and retry backoff, so these run in the threadpool.
@router.post(
    "/reservations",
    response_model=AdmissionResponse,
    status_code=status.HTTP_201_CREATED,
    responses={status.HTTP_409_CONFLICT: {"model": AdmissionResponse}},
)
def create_reservation(
    payload: ReserveRequest,
    response: Response,
    service: AdmissionService = Depends(get_admission_service),
    pricing_service: PricingEstimationService = Depends(get_pricing_service),
) -> AdmissionResponse:
    """Admit a reservation atomically; a rejection answers 409 with the ceiling."""
    try:
        decision = service.try_reserve(
            campaign_id=payload.campaign_id,
            route_ids=payload.route_ids,
            start_date=payload.start_date,
            end_date=payload.end_date,
            dayparts=payload.dayparts,
            requested_sov=payload.share_of_voice,
            trim_to_available=payload.trim_to_available,
            exclude_reservation_id=payload.exclude_reservation_id,
            initial_status=payload.initial_status,
            name=payload.name,
            pricing_snapshot=payload.pricing_snapshot,
            snapshot_builder=(
                partial(_build_pricing_snapshot, payload, pricing_service)
                if payload.attach_estimate
                else None
            ),
        )
        if not decision.accepted:
            response.status_code = status.HTTP_409_CONFLICT
        return _admission_response(decision)
    except InventoryError as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:  # pragma: no cover
        logger.exception("Unexpected admission failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to reserve inventory",
        ) from exc


@router.post(
    "/reservations/{reservation_id}/transition",
    response_model=ReservationResponse,
    status_code=status.HTTP_200_OK,
)
def transition_reservation(
    reservation_id: str,
    payload: TransitionRequest,
    service: AdmissionService = Depends(get_admission_service),
) -> ReservationResponse:
    try:
        updated = service.transition_status(
            reservation_id=reservation_id,
            new_status=payload.status,
            notes=payload.notes,
        )
        return _reservation_response(updated)
    except InventoryError as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:  # pragma: no cover
        logger.exception("Unexpected transition failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to transition reservation",
        ) from exc


@router.post(
    "/campaigns/{campaign_id}/review",
    response_model=ReviewResponse,
    status_code=status.HTTP_200_OK,
)
def review_campaign(
    campaign_id: str,
    payload: ReviewRequest,
    service: AdmissionService = Depends(get_admission_service),
) -> ReviewResponse:
    """Approve or reject all pending reservations of a campaign together."""
    try:
        reviewed = service.review_campaign(
            campaign_id=campaign_id,
            action=payload.action,
            notes=payload.notes,
        )
        return ReviewResponse(
            campaign_id=campaign_id,
            action=payload.action,
            reservations=[_reservation_response(item) for item in reviewed],
        )
    except InventoryError as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:  # pragma: no cover
        logger.exception("Unexpected campaign review failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to review campaign",
        ) from exc
