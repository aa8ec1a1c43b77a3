"""Domain models for capacity accounting, admission and yield estimation."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import Any, Optional


DAYPARTS: tuple[str, ...] = ("morning_peak", "daytime", "evening_peak")
ROUTE_TIERS: tuple[str, ...] = ("tier_1_core", "tier_2_strong", "tier_3_longtail")
PLACEMENT_TYPES: tuple[str, ...] = ("portal_banner", "full_screen", "survey", "voucher")
CAMPAIGN_SIZE_CLASSES: tuple[str, ...] = ("all", "sme", "enterprise")

STATUS_DRAFT = "draft"
STATUS_PENDING_APPROVAL = "pending_approval"
STATUS_APPROVED = "approved"
STATUS_REJECTED = "rejected"
STATUS_ACTIVE = "active"
STATUS_COMPLETED = "completed"
STATUS_CANCELLED = "cancelled"

RESERVATION_STATUSES: tuple[str, ...] = (
    STATUS_DRAFT,
    STATUS_PENDING_APPROVAL,
    STATUS_APPROVED,
    STATUS_REJECTED,
    STATUS_ACTIVE,
    STATUS_COMPLETED,
    STATUS_CANCELLED,
)

# Statuses that hold hard capacity (booking-blocking checks).
STRICT_STATUSES: frozenset[str] = frozenset({STATUS_APPROVED, STATUS_ACTIVE})
# Statuses shown to operators as upcoming contention.
SOFT_STATUSES: frozenset[str] = frozenset(
    {STATUS_DRAFT, STATUS_PENDING_APPROVAL, STATUS_APPROVED, STATUS_ACTIVE}
)

MODE_STRICT = "strict"
MODE_SOFT = "soft"
AVAILABILITY_MODES: dict[str, frozenset[str]] = {
    MODE_STRICT: STRICT_STATUSES,
    MODE_SOFT: SOFT_STATUSES,
}


@dataclass(frozen=True)
class Corridor:
    corridor_id: str
    name: str
    area_cluster: Optional[str] = None
    estimated_daily_ridership: int = 0


@dataclass(frozen=True)
class Route:
    route_id: str
    name: str
    tier: str
    estimated_daily_ridership: int
    corridor_id: Optional[str] = None
    route_code: Optional[str] = None


@dataclass(frozen=True)
class Reservation:
    """A committed or proposed claim on capacity ("flight")."""

    reservation_id: str
    campaign_id: str
    start_date: date
    end_date: date
    route_ids: tuple[str, ...]
    dayparts: tuple[str, ...]
    share_of_voice: float
    status: str
    name: Optional[str] = None
    pricing_snapshot: Optional[dict[str, Any]] = None

    @property
    def effective_dayparts(self) -> tuple[str, ...]:
        """An empty daypart set claims every daypart."""
        return self.dayparts or DAYPARTS


@dataclass(frozen=True)
class PricingConfig:
    config_id: str
    name: str
    version: int
    base_cpm: dict[str, float]
    placement_multipliers: dict[str, float] = field(default_factory=dict)
    daypart_multipliers: dict[str, float] = field(default_factory=dict)
    pricing_type: str = "cpm"
    applicable_to: str = "all"
    is_active: bool = False
    active_from: Optional[date] = None
    active_to: Optional[date] = None

    def base_cpm_for_tier(self, tier: str, fallback: float) -> float:
        return float(self.base_cpm.get(tier, fallback))

    def placement_multiplier(self, placement_type: str) -> float:
        return float(self.placement_multipliers.get(placement_type, 1.0))

    def average_daypart_multiplier(self, dayparts: tuple[str, ...]) -> float:
        if not dayparts:
            return 1.0
        multipliers = [float(self.daypart_multipliers.get(daypart, 1.0)) for daypart in dayparts]
        return sum(multipliers) / len(multipliers)

    def to_config_dict(self) -> dict[str, Any]:
        """JSON document persisted in the ``config`` column."""
        return {
            "base_cpm": dict(self.base_cpm),
            "multipliers": {
                "placement": dict(self.placement_multipliers),
                "daypart": dict(self.daypart_multipliers),
            },
        }


@dataclass(frozen=True)
class RouteBreakdown:
    route_id: str
    impressions: int
    estimated_cost: int


@dataclass(frozen=True)
class Estimate:
    total_impressions: int
    estimated_reach: int
    avg_frequency: float
    cpm: float
    estimated_cost: int
    breakdown: list[RouteBreakdown]
    days: int = 0
    wifi_riders: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "totalImpressions": self.total_impressions,
            "estimatedReach": self.estimated_reach,
            "avgFrequency": self.avg_frequency,
            "cpm": self.cpm,
            "estimatedCost": self.estimated_cost,
            "days": self.days,
            "wifiRiders": self.wifi_riders,
            "breakdown": [
                {
                    "routeId": row.route_id,
                    "impressions": row.impressions,
                    "estimatedCost": row.estimated_cost,
                }
                for row in self.breakdown
            ],
        }


@dataclass(frozen=True)
class CapacityBottleneck:
    route_id: str
    date: date
    daypart: str
    available_percent: int


@dataclass(frozen=True)
class DateAvailability:
    date: date
    min_available: float
    unavailable: bool
    exhausted_route_ids: tuple[str, ...]


@dataclass(frozen=True)
class AvailabilityResult:
    mode: str
    route_ids: tuple[str, ...]
    dates: tuple[date, ...]
    dayparts: tuple[str, ...]
    grid: dict[str, dict[str, dict[str, float]]]
    min_available_sov: float
    unavailable_dates: list[date]
    bottlenecks: list[CapacityBottleneck]
    date_availability: list[DateAvailability]

    def min_available_between(self, start_date: date, end_date: date) -> float:
        """Minimum cell value over an inclusive sub-window of the query."""
        values = [
            row.min_available
            for row in self.date_availability
            if start_date <= row.date <= end_date
        ]
        if not values:
            return 0.0
        return min(values)


@dataclass(frozen=True)
class RouteAvailabilitySummary:
    route_id: str
    has_limited_availability: bool
    max_booked_sov: float
    dates_with_booking: list[date]
    min_available_sov: float


@dataclass(frozen=True)
class AdmissionDecision:
    accepted: bool
    requested_sov: float
    max_available_sov: float
    reservation_id: Optional[str] = None
    effective_start_date: Optional[date] = None
    effective_end_date: Optional[date] = None
    unavailable_dates: list[date] = field(default_factory=list)
    superseded_reservation_id: Optional[str] = None

    @property
    def max_available_percent(self) -> int:
        return int(round(self.max_available_sov * 100))
