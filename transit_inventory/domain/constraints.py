"""Domain-level validation rules for capacity, pricing and lifecycle."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Iterable

from transit_inventory.domain.errors import (
    InvalidPricingConfigError,
    InvalidRequestError,
    InvalidTransitionError,
)
from transit_inventory.domain.models import (
    CAMPAIGN_SIZE_CLASSES,
    DAYPARTS,
    RESERVATION_STATUSES,
    STATUS_ACTIVE,
    STATUS_APPROVED,
    STATUS_CANCELLED,
    STATUS_COMPLETED,
    STATUS_DRAFT,
    STATUS_PENDING_APPROVAL,
    STATUS_REJECTED,
    PricingConfig,
)


ALLOWED_TRANSITIONS: dict[str, frozenset[str]] = {
    STATUS_DRAFT: frozenset({STATUS_PENDING_APPROVAL}),
    STATUS_PENDING_APPROVAL: frozenset({STATUS_APPROVED, STATUS_REJECTED}),
    STATUS_APPROVED: frozenset({STATUS_ACTIVE, STATUS_CANCELLED}),
    STATUS_ACTIVE: frozenset({STATUS_COMPLETED, STATUS_CANCELLED}),
    STATUS_REJECTED: frozenset(),
    STATUS_COMPLETED: frozenset(),
    STATUS_CANCELLED: frozenset(),
}

ADMISSION_INITIAL_STATUSES: frozenset[str] = frozenset(
    {STATUS_DRAFT, STATUS_PENDING_APPROVAL, STATUS_APPROVED}
)


@dataclass(frozen=True)
class EstimationConstants:
    wifi_adoption_rate: float
    avg_sessions_per_rider_per_day: float
    fallback_base_cpm: float


@dataclass(frozen=True)
class AdmissionPolicy:
    max_retries: int
    retry_backoff_seconds: float


def validate_estimation_constants(constants: EstimationConstants) -> None:
    if not 0.0 <= constants.wifi_adoption_rate <= 1.0:
        raise ValueError("wifi_adoption_rate must be between 0 and 1")
    if constants.avg_sessions_per_rider_per_day < 0.0:
        raise ValueError("avg_sessions_per_rider_per_day must be >= 0")
    if constants.fallback_base_cpm < 0.0:
        raise ValueError("fallback_base_cpm must be >= 0")


def validate_admission_policy(policy: AdmissionPolicy) -> None:
    if policy.max_retries < 0:
        raise ValueError("max_retries must be >= 0")
    if policy.retry_backoff_seconds < 0.0:
        raise ValueError("retry_backoff_seconds must be >= 0")


def normalize_share_of_voice(value: Any, *, clamp: bool = False) -> float:
    """Convert a decimal or legacy percent SOV into a fraction.

    Values above 1 are treated as percentages. ``clamp`` is used for persisted
    rows, which must never fail a read; wire input is range-checked instead.
    """
    if isinstance(value, bool) or value is None:
        raise InvalidRequestError("share_of_voice must be a number")
    if isinstance(value, str):
        try:
            value = float(value.strip())
        except ValueError as exc:
            raise InvalidRequestError("share_of_voice must be a number") from exc
    try:
        sov = float(value)
    except (TypeError, ValueError) as exc:
        raise InvalidRequestError("share_of_voice must be a number") from exc

    if math.isnan(sov):
        if clamp:
            return 0.0
        raise InvalidRequestError("share_of_voice must be a number")
    if sov > 1.0:
        sov = sov / 100.0
    if clamp:
        sov = max(0.0, min(1.0, sov))
    return sov


def validate_share_of_voice(sov: float) -> None:
    if not 0.0 <= sov <= 1.0:
        raise InvalidRequestError("share_of_voice must be between 0 and 1 (or 0-100 percent)")


def validate_dayparts(dayparts: Iterable[str]) -> tuple[str, ...]:
    """Return dayparts in canonical order; empty input means every daypart."""
    requested = set(dayparts)
    unknown = sorted(requested.difference(DAYPARTS))
    if unknown:
        raise InvalidRequestError(f"Unknown dayparts: {', '.join(unknown)}")
    if not requested:
        return DAYPARTS
    return tuple(daypart for daypart in DAYPARTS if daypart in requested)


def _require_positive_multipliers(table: dict[str, float], label: str) -> None:
    for key, value in table.items():
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise InvalidPricingConfigError(f"{label}[{key}] must be a number")
        if not math.isfinite(value) or value <= 0.0:
            raise InvalidPricingConfigError(f"{label}[{key}] must be > 0")


def validate_pricing_config(config: PricingConfig) -> None:
    if not config.name.strip():
        raise InvalidPricingConfigError("pricing config name must be non-empty")
    if config.version <= 0:
        raise InvalidPricingConfigError("pricing config version must be > 0")
    if config.pricing_type != "cpm":
        raise InvalidPricingConfigError("only cpm pricing configs are supported")
    if config.applicable_to not in CAMPAIGN_SIZE_CLASSES:
        raise InvalidPricingConfigError(
            f"applicable_to must be one of {', '.join(CAMPAIGN_SIZE_CLASSES)}"
        )
    if not config.base_cpm:
        raise InvalidPricingConfigError("base_cpm must define at least one tier")
    _require_positive_multipliers(config.base_cpm, "base_cpm")
    _require_positive_multipliers(config.placement_multipliers, "placement")
    _require_positive_multipliers(config.daypart_multipliers, "daypart")
    unknown_dayparts = sorted(set(config.daypart_multipliers).difference(DAYPARTS))
    if unknown_dayparts:
        raise InvalidPricingConfigError(
            f"daypart multipliers reference unknown dayparts: {', '.join(unknown_dayparts)}"
        )
    if (
        config.active_from is not None
        and config.active_to is not None
        and config.active_from > config.active_to
    ):
        raise InvalidPricingConfigError("active_from must not be after active_to")


def validate_transition(current_status: str, new_status: str) -> None:
    if new_status not in RESERVATION_STATUSES:
        raise InvalidTransitionError(f"Unknown reservation status '{new_status}'")
    allowed = ALLOWED_TRANSITIONS.get(current_status, frozenset())
    if new_status not in allowed:
        raise InvalidTransitionError(
            f"Cannot move reservation from '{current_status}' to '{new_status}'"
        )


def round_half_up(value: float) -> int:
    """Round .5 away from zero for non-negative amounts."""
    return int(math.floor(value + 0.5))
