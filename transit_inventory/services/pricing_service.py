"""Impression, reach and cost estimation for real or hypothetical reservations."""

from __future__ import annotations

from datetime import date, datetime
from typing import Iterable, Optional, Sequence
from uuid import uuid4

import numpy as np

from transit_inventory.domain.calendar import coerce_calendar_date, coerce_date_range
from transit_inventory.domain.constraints import (
    EstimationConstants,
    round_half_up,
    validate_dayparts,
    validate_estimation_constants,
    validate_pricing_config,
    validate_share_of_voice,
)
from transit_inventory.domain.errors import (
    InvalidRequestError,
    PricingConfigNotFoundError,
    RouteNotFoundError,
)
from transit_inventory.domain.models import (
    MODE_STRICT,
    PLACEMENT_TYPES,
    Estimate,
    PricingConfig,
    Route,
    RouteBreakdown,
)
from transit_inventory.repository.data_repository import DataRepository
from transit_inventory.services.availability_service import AvailabilityService
from transit_inventory.utils.config import Settings, get_settings
from transit_inventory.utils.logger import get_logger


logger = get_logger(__name__)

ALL_DAYS_OF_WEEK: tuple[int, ...] = (0, 1, 2, 3, 4, 5, 6)


def validate_days_of_week(days_of_week: Optional[Iterable[int]]) -> frozenset[int]:
    """Days use 0 = Sunday .. 6 = Saturday; ``None`` means every day."""
    if days_of_week is None:
        return frozenset(ALL_DAYS_OF_WEEK)
    days: set[int] = set()
    for value in days_of_week:
        if isinstance(value, bool) or not isinstance(value, int) or not 0 <= value <= 6:
            raise InvalidRequestError("days_of_week entries must be integers 0 (Sunday) to 6 (Saturday)")
        days.add(value)
    return frozenset(days)


def count_campaign_days(
    start_date: date,
    end_date: date,
    days_of_week: Iterable[int],
    exclude_dates: Iterable[date] = (),
) -> int:
    """Count dates in the inclusive window on selected weekdays, minus exclusions."""
    selected = set(days_of_week)
    # numpy weekmasks start on Monday; Sunday-first day numbers shift by one.
    weekmask = [1 if (position + 1) % 7 in selected else 0 for position in range(7)]
    if start_date > end_date or not any(weekmask):
        return 0
    holidays = sorted({excluded for excluded in exclude_dates if start_date <= excluded <= end_date})
    return int(
        np.busday_count(
            np.datetime64(start_date, "D"),
            np.datetime64(end_date, "D") + np.timedelta64(1, "D"),
            weekmask=weekmask,
            holidays=[np.datetime64(excluded, "D") for excluded in holidays],
        )
    )


def estimate_campaign(
    routes: Sequence[Route],
    start_date: date,
    end_date: date,
    days_of_week: Iterable[int],
    dayparts: Sequence[str],
    placement_type: str,
    share_of_voice: float,
    pricing_config: PricingConfig,
    constants: EstimationConstants,
    exclude_dates: Iterable[date] = (),
) -> Estimate:
    """Pure estimate: probabilistic reach plus ridership-weighted cost split.

    Reach treats every Wi-Fi session as an independent draw won with
    probability ``share_of_voice``; a rider is reached if any of their ``T``
    sessions over the campaign is won.
    """
    days = count_campaign_days(start_date, end_date, days_of_week, exclude_dates)
    total_daily_riders = sum(route.estimated_daily_ridership for route in routes)
    if not routes or days == 0 or total_daily_riders <= 0:
        return Estimate(
            total_impressions=0,
            estimated_reach=0,
            avg_frequency=0.0,
            cpm=0.0,
            estimated_cost=0,
            breakdown=[RouteBreakdown(route.route_id, 0, 0) for route in routes],
            days=days,
            wifi_riders=total_daily_riders * constants.wifi_adoption_rate,
        )

    wifi_riders = total_daily_riders * constants.wifi_adoption_rate
    sessions = constants.avg_sessions_per_rider_per_day * days
    probability = share_of_voice

    estimated_reach = round_half_up(wifi_riders * (1.0 - (1.0 - probability) ** sessions))
    total_impressions = round_half_up(wifi_riders * sessions * probability)
    avg_frequency = total_impressions / estimated_reach if estimated_reach > 0 else 0.0

    placement_multiplier = pricing_config.placement_multiplier(placement_type)
    daypart_multiplier = pricing_config.average_daypart_multiplier(tuple(dayparts))

    breakdown: list[RouteBreakdown] = []
    total_cost = 0.0
    for route in routes:
        route_share = route.estimated_daily_ridership / total_daily_riders
        route_impressions = round_half_up(total_impressions * route_share)
        route_cpm = (
            pricing_config.base_cpm_for_tier(route.tier, constants.fallback_base_cpm)
            * placement_multiplier
            * daypart_multiplier
        )
        route_cost = route_impressions / 1000.0 * route_cpm
        total_cost += route_cost
        breakdown.append(
            RouteBreakdown(
                route_id=route.route_id,
                impressions=route_impressions,
                estimated_cost=round_half_up(route_cost),
            )
        )

    blended_cpm = total_cost / total_impressions * 1000.0 if total_impressions > 0 else 0.0
    return Estimate(
        total_impressions=total_impressions,
        estimated_reach=estimated_reach,
        avg_frequency=avg_frequency,
        cpm=blended_cpm,
        estimated_cost=round_half_up(total_cost),
        breakdown=breakdown,
        days=days,
        wifi_riders=wifi_riders,
    )


class PricingEstimationService:
    """Resolves routes and pricing, then runs the pure estimator."""

    def __init__(
        self,
        repository: Optional[DataRepository] = None,
        settings: Optional[Settings] = None,
        availability_service: Optional[AvailabilityService] = None,
        constants: Optional[EstimationConstants] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._repository = repository or DataRepository(self._settings)
        self._availability = availability_service or AvailabilityService(
            repository=self._repository,
            settings=self._settings,
        )
        self._constants = constants or EstimationConstants(
            wifi_adoption_rate=self._settings.wifi_adoption_rate,
            avg_sessions_per_rider_per_day=self._settings.avg_sessions_per_rider_per_day,
            fallback_base_cpm=self._settings.fallback_base_cpm,
        )
        validate_estimation_constants(self._constants)

    @property
    def constants(self) -> EstimationConstants:
        return self._constants

    def _resolve_routes(
        self,
        route_ids: Optional[Sequence[str]],
        corridor_ids: Optional[Sequence[str]],
    ) -> list[Route]:
        if route_ids:
            routes = self._repository.get_routes(route_ids)
            found = {route.route_id for route in routes}
            missing = [route_id for route_id in dict.fromkeys(route_ids) if route_id not in found]
            if missing:
                raise RouteNotFoundError(f"Unknown route ids: {', '.join(missing)}")
            return routes
        if corridor_ids:
            return self._repository.list_routes_by_corridors(corridor_ids)
        raise InvalidRequestError("Either route_ids or corridor_ids must be provided")

    def resolve_pricing_config(self, pricing_config_id: Optional[str] = None) -> PricingConfig:
        if pricing_config_id:
            config = self._repository.get_pricing_config(pricing_config_id)
            if config is None:
                raise PricingConfigNotFoundError(f"Pricing config '{pricing_config_id}' was not found")
            return config
        config = self._repository.get_active_pricing_config()
        if config is None:
            raise PricingConfigNotFoundError("No active pricing config is configured")
        return config

    def estimate(
        self,
        start_date: date | datetime | str,
        end_date: date | datetime | str,
        share_of_voice: float,
        route_ids: Optional[Sequence[str]] = None,
        corridor_ids: Optional[Sequence[str]] = None,
        days_of_week: Optional[Iterable[int]] = None,
        dayparts: Optional[Iterable[str]] = None,
        placement_type: str = "portal_banner",
        pricing_config_id: Optional[str] = None,
        exclude_dates: Optional[Iterable[date | datetime | str]] = None,
        exclude_unavailable: bool = False,
    ) -> Estimate:
        window_start, window_end = coerce_date_range(start_date, end_date)
        if isinstance(share_of_voice, bool) or not isinstance(share_of_voice, (int, float)):
            raise InvalidRequestError("share_of_voice must be a number")
        validate_share_of_voice(float(share_of_voice))
        if placement_type not in PLACEMENT_TYPES:
            raise InvalidRequestError(
                f"placement_type must be one of {', '.join(PLACEMENT_TYPES)}"
            )
        weekdays = validate_days_of_week(days_of_week)
        # Empty dayparts price at a neutral multiplier; they are not expanded here.
        requested_dayparts = validate_dayparts(dayparts) if dayparts else ()
        excluded = {
            coerce_calendar_date(value, "exclude_dates") for value in (exclude_dates or ())
        }

        routes = self._resolve_routes(route_ids, corridor_ids)
        pricing_config = self.resolve_pricing_config(pricing_config_id)

        if exclude_unavailable and routes:
            availability = self._availability.get_availability(
                [route.route_id for route in routes],
                window_start,
                window_end,
                requested_dayparts,
                mode=MODE_STRICT,
            )
            excluded.update(availability.unavailable_dates)

        estimate = estimate_campaign(
            routes=routes,
            start_date=window_start,
            end_date=window_end,
            days_of_week=weekdays,
            dayparts=requested_dayparts,
            placement_type=placement_type,
            share_of_voice=float(share_of_voice),
            pricing_config=pricing_config,
            constants=self._constants,
            exclude_dates=excluded,
        )
        logger.info(
            "Estimate computed | routes=%s | days=%s | sov=%.4f | config_id=%s | "
            "impressions=%s | reach=%s | cost=%s",
            len(routes),
            estimate.days,
            float(share_of_voice),
            pricing_config.config_id,
            estimate.total_impressions,
            estimate.estimated_reach,
            estimate.estimated_cost,
        )
        return estimate

    def register_pricing_config(
        self,
        name: str,
        base_cpm: dict[str, float],
        placement_multipliers: Optional[dict[str, float]] = None,
        daypart_multipliers: Optional[dict[str, float]] = None,
        version: int = 1,
        pricing_type: str = "cpm",
        applicable_to: str = "all",
        active_from: Optional[date | datetime | str] = None,
        active_to: Optional[date | datetime | str] = None,
        is_active: bool = True,
    ) -> PricingConfig:
        """Create a pricing config; new configs become the active one by default."""
        config = PricingConfig(
            config_id=uuid4().hex,
            name=name.strip(),
            version=version,
            base_cpm=dict(base_cpm),
            placement_multipliers=dict(placement_multipliers or {}),
            daypart_multipliers=dict(daypart_multipliers or {}),
            pricing_type=pricing_type,
            applicable_to=applicable_to,
            is_active=is_active,
            active_from=coerce_calendar_date(active_from, "active_from") if active_from else None,
            active_to=coerce_calendar_date(active_to, "active_to") if active_to else None,
        )
        validate_pricing_config(config)
        return self._repository.create_pricing_config(config)
