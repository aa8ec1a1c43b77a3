"""HTTP controller layer for yield estimation and pricing configuration."""

from __future__ import annotations

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field, field_validator

from transit_inventory.controllers.dependencies import (
    CalendarDate,
    WireShareOfVoice,
    get_pricing_service,
    to_http_exception,
)
from transit_inventory.domain.errors import InvalidPricingConfigError, InventoryError
from transit_inventory.domain.models import Estimate, PricingConfig
from transit_inventory.services.pricing_service import PricingEstimationService
from transit_inventory.utils.logger import get_logger


logger = get_logger(__name__)

router = APIRouter(tags=["pricing"])


class EstimateRequest(BaseModel):
    """Either ``route_ids`` or ``corridor_ids`` selects the inventory to price."""

    route_ids: Optional[list[str]] = None
    corridor_ids: Optional[list[str]] = None
    start_date: CalendarDate
    end_date: CalendarDate
    days_of_week: Optional[list[int]] = None
    dayparts: list[str] = Field(default_factory=list)
    placement_type: str = "portal_banner"
    share_of_voice: WireShareOfVoice
    pricing_config_id: Optional[str] = None
    exclude_dates: list[CalendarDate] = Field(default_factory=list)
    exclude_unavailable: bool = False


class RouteBreakdownResponse(BaseModel):
    route_id: str
    impressions: int = Field(ge=0)
    estimated_cost: int = Field(ge=0)


class EstimateResponse(BaseModel):
    total_impressions: int = Field(ge=0)
    estimated_reach: int = Field(ge=0)
    avg_frequency: float = Field(ge=0.0)
    cpm: float = Field(ge=0.0)
    estimated_cost: int = Field(ge=0)
    days: int = Field(ge=0)
    wifi_riders: float = Field(ge=0.0)
    breakdown: list[RouteBreakdownResponse]


class PricingConfigRequest(BaseModel):
    name: str = Field(min_length=1)
    version: int = Field(default=1, gt=0)
    pricing_type: str = "cpm"
    applicable_to: str = "all"
    base_cpm: dict[str, float]
    placement_multipliers: dict[str, float] = Field(default_factory=dict)
    daypart_multipliers: dict[str, float] = Field(default_factory=dict)
    active_from: Optional[CalendarDate] = None
    active_to: Optional[CalendarDate] = None
    is_active: bool = True

    @field_validator("base_cpm")
    @classmethod
    def validate_base_cpm(cls, value: dict[str, float]) -> dict[str, float]:
        if not value:
            raise ValueError("base_cpm must define at least one tier")
        return value


class PricingConfigResponse(BaseModel):
    config_id: str
    name: str
    version: int
    pricing_type: str
    applicable_to: str
    is_active: bool
    active_from: Optional[date] = None
    active_to: Optional[date] = None
    base_cpm: dict[str, float]
    placement_multipliers: dict[str, float]
    daypart_multipliers: dict[str, float]


def _estimate_response(estimate: Estimate) -> EstimateResponse:
    return EstimateResponse(
        total_impressions=estimate.total_impressions,
        estimated_reach=estimate.estimated_reach,
        avg_frequency=estimate.avg_frequency,
        cpm=estimate.cpm,
        estimated_cost=estimate.estimated_cost,
        days=estimate.days,
        wifi_riders=estimate.wifi_riders,
        breakdown=[
            RouteBreakdownResponse(
                route_id=row.route_id,
                impressions=row.impressions,
                estimated_cost=row.estimated_cost,
            )
            for row in estimate.breakdown
        ],
    )


def _pricing_config_response(config: PricingConfig) -> PricingConfigResponse:
    return PricingConfigResponse(
        config_id=config.config_id,
        name=config.name,
        version=config.version,
        pricing_type=config.pricing_type,
        applicable_to=config.applicable_to,
        is_active=config.is_active,
        active_from=config.active_from,
        active_to=config.active_to,
        base_cpm=config.base_cpm,
        placement_multipliers=config.placement_multipliers,
        daypart_multipliers=config.daypart_multipliers,
    )


@router.post(
    "/estimate",
    response_model=EstimateResponse,
    status_code=status.HTTP_200_OK,
)
async def estimate(
    payload: EstimateRequest,
    service: PricingEstimationService = Depends(get_pricing_service),
) -> EstimateResponse:
    """What-if yield estimate; never touches the reservation ledger."""
    try:
        result = service.estimate(
            start_date=payload.start_date,
            end_date=payload.end_date,
            share_of_voice=payload.share_of_voice,
            route_ids=payload.route_ids,
            corridor_ids=payload.corridor_ids,
            days_of_week=payload.days_of_week,
            dayparts=payload.dayparts,
            placement_type=payload.placement_type,
            pricing_config_id=payload.pricing_config_id,
            exclude_dates=payload.exclude_dates,
            exclude_unavailable=payload.exclude_unavailable,
        )
        return _estimate_response(result)
    except InvalidPricingConfigError as exc:
        logger.error("Stored pricing config failed validation | error=%s", exc)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=str(exc),
        ) from exc
    except InventoryError as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:  # pragma: no cover
        logger.exception("Unexpected estimation failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to estimate campaign",
        ) from exc


@router.post(
    "/pricing_configs",
    response_model=PricingConfigResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_pricing_config(
    payload: PricingConfigRequest,
    service: PricingEstimationService = Depends(get_pricing_service),
) -> PricingConfigResponse:
    try:
        config = service.register_pricing_config(
            name=payload.name,
            version=payload.version,
            pricing_type=payload.pricing_type,
            applicable_to=payload.applicable_to,
            base_cpm=payload.base_cpm,
            placement_multipliers=payload.placement_multipliers,
            daypart_multipliers=payload.daypart_multipliers,
            active_from=payload.active_from,
            active_to=payload.active_to,
            is_active=payload.is_active,
        )
        return _pricing_config_response(config)
    except InventoryError as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:  # pragma: no cover
        logger.exception("Unexpected pricing config failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to create pricing config",
        ) from exc


@router.get(
    "/pricing_configs/active",
    response_model=PricingConfigResponse,
    status_code=status.HTTP_200_OK,
)
async def get_active_pricing_config(
    service: PricingEstimationService = Depends(get_pricing_service),
) -> PricingConfigResponse:
    try:
        return _pricing_config_response(service.resolve_pricing_config())
    except InvalidPricingConfigError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=str(exc),
        ) from exc
    except InventoryError as exc:
        raise to_http_exception(exc) from exc
