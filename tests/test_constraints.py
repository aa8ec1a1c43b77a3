"""Tests for domain validation rules.

Covers SOV normalization, daypart and date handling, pricing config
validation and the reservation lifecycle graph.
"""

from __future__ import annotations

from datetime import date, datetime

import pytest

from transit_inventory.domain.calendar import (
    coerce_calendar_date,
    coerce_date_range,
    date_span,
    longest_available_run,
)
from transit_inventory.domain.constraints import (
    AdmissionPolicy,
    EstimationConstants,
    normalize_share_of_voice,
    round_half_up,
    validate_admission_policy,
    validate_dayparts,
    validate_estimation_constants,
    validate_pricing_config,
    validate_share_of_voice,
    validate_transition,
)
from transit_inventory.domain.errors import (
    InvalidPricingConfigError,
    InvalidRangeError,
    InvalidRequestError,
    InvalidTransitionError,
)
from transit_inventory.domain.models import DAYPARTS, PricingConfig


def valid_pricing_config(**overrides) -> PricingConfig:
    """Return a valid baseline PricingConfig, optionally overriding fields."""
    defaults = {
        "config_id": "cfg-1",
        "name": "Standard",
        "version": 1,
        "base_cpm": {"tier_1_core": 150.0, "tier_2_strong": 100.0},
        "placement_multipliers": {"portal_banner": 1.0, "full_screen": 2.0},
        "daypart_multipliers": {"morning_peak": 1.2, "daytime": 0.8},
    }
    defaults.update(overrides)
    return PricingConfig(**defaults)


# --- share of voice ---

@pytest.mark.parametrize(
    ("raw", "expected"),
    [(0.5, 0.5), (50, 0.5), ("50", 0.5), ("0.25", 0.25), (1, 1.0), (0, 0.0), (100, 1.0)],
)
def test_normalize_share_of_voice_accepts_fraction_and_percent(raw, expected) -> None:
    assert normalize_share_of_voice(raw) == pytest.approx(expected)


def test_percent_and_fraction_normalize_to_identical_value() -> None:
    assert normalize_share_of_voice(50) == normalize_share_of_voice(0.5)


def test_normalize_share_of_voice_wire_mode_does_not_clamp() -> None:
    assert normalize_share_of_voice(150) == pytest.approx(1.5)
    assert normalize_share_of_voice(-0.2) == pytest.approx(-0.2)


def test_normalize_share_of_voice_clamp_mode_bounds_value() -> None:
    assert normalize_share_of_voice(150, clamp=True) == 1.0
    assert normalize_share_of_voice(-5, clamp=True) == 0.0
    assert normalize_share_of_voice(float("nan"), clamp=True) == 0.0


@pytest.mark.parametrize("raw", [None, True, "abc", [0.5], float("nan")])
def test_normalize_share_of_voice_rejects_non_numbers(raw) -> None:
    with pytest.raises(InvalidRequestError):
        normalize_share_of_voice(raw)


def test_validate_share_of_voice_range() -> None:
    validate_share_of_voice(0.0)
    validate_share_of_voice(1.0)
    with pytest.raises(InvalidRequestError):
        validate_share_of_voice(1.01)
    with pytest.raises(InvalidRequestError):
        validate_share_of_voice(-0.01)


# --- dayparts ---

def test_empty_dayparts_mean_all_dayparts() -> None:
    assert validate_dayparts([]) == DAYPARTS


def test_dayparts_are_returned_in_canonical_order() -> None:
    assert validate_dayparts(["evening_peak", "morning_peak"]) == ("morning_peak", "evening_peak")


def test_unknown_daypart_raises() -> None:
    with pytest.raises(InvalidRequestError):
        validate_dayparts(["late_night"])


# --- calendar ---

def test_coerce_calendar_date_truncates_time() -> None:
    assert coerce_calendar_date("2025-06-01T23:30:00Z", "start_date") == date(2025, 6, 1)
    assert coerce_calendar_date(datetime(2025, 6, 1, 18, 0), "start_date") == date(2025, 6, 1)


def test_coerce_calendar_date_rejects_malformed_value() -> None:
    with pytest.raises(InvalidRequestError):
        coerce_calendar_date("06/01/2025", "start_date")


def test_reversed_range_raises_invalid_range() -> None:
    with pytest.raises(InvalidRangeError):
        coerce_date_range("2025-06-05", "2025-06-01")


def test_date_span_is_inclusive() -> None:
    assert date_span(date(2025, 6, 1), date(2025, 6, 1)) == [date(2025, 6, 1)]
    assert len(date_span(date(2025, 6, 1), date(2025, 6, 7))) == 7


def test_longest_available_run_prefers_longest_then_earliest() -> None:
    dates = date_span(date(2025, 6, 1), date(2025, 6, 10))
    blocked = [date(2025, 6, 3), date(2025, 6, 8)]
    assert longest_available_run(dates, blocked) == (date(2025, 6, 4), date(2025, 6, 7))

    tie_blocked = [date(2025, 6, 4)]
    short = date_span(date(2025, 6, 1), date(2025, 6, 7))
    assert longest_available_run(short, tie_blocked) == (date(2025, 6, 1), date(2025, 6, 3))


def test_longest_available_run_none_when_everything_blocked() -> None:
    dates = date_span(date(2025, 6, 1), date(2025, 6, 2))
    assert longest_available_run(dates, dates) is None


# --- pricing config ---

def test_valid_pricing_config_passes() -> None:
    validate_pricing_config(valid_pricing_config())


@pytest.mark.parametrize(
    "overrides",
    [
        {"name": "  "},
        {"version": 0},
        {"pricing_type": "flat_fee"},
        {"applicable_to": "everyone"},
        {"base_cpm": {}},
        {"base_cpm": {"tier_1_core": -1.0}},
        {"placement_multipliers": {"full_screen": 0.0}},
        {"daypart_multipliers": {"late_night": 1.5}},
        {"daypart_multipliers": {"daytime": "fast"}},
        {"active_from": date(2025, 12, 31), "active_to": date(2025, 1, 1)},
    ],
)
def test_invalid_pricing_config_raises(overrides) -> None:
    with pytest.raises(InvalidPricingConfigError):
        validate_pricing_config(valid_pricing_config(**overrides))


def test_average_daypart_multiplier_defaults_to_one() -> None:
    config = valid_pricing_config()
    assert config.average_daypart_multiplier(()) == 1.0
    assert config.average_daypart_multiplier(("morning_peak", "evening_peak")) == pytest.approx(1.1)
    assert config.base_cpm_for_tier("tier_3_longtail", 100.0) == 100.0


# --- lifecycle ---

@pytest.mark.parametrize(
    ("current", "new"),
    [
        ("draft", "pending_approval"),
        ("pending_approval", "approved"),
        ("pending_approval", "rejected"),
        ("approved", "active"),
        ("approved", "cancelled"),
        ("active", "completed"),
        ("active", "cancelled"),
    ],
)
def test_allowed_transitions_pass(current, new) -> None:
    validate_transition(current, new)


@pytest.mark.parametrize(
    ("current", "new"),
    [
        ("draft", "approved"),
        ("rejected", "approved"),
        ("completed", "active"),
        ("cancelled", "approved"),
        ("approved", "unknown"),
    ],
)
def test_disallowed_transitions_raise(current, new) -> None:
    with pytest.raises(InvalidTransitionError):
        validate_transition(current, new)


# --- injectable constants ---

def test_estimation_constants_validation() -> None:
    validate_estimation_constants(EstimationConstants(0.6, 1.8, 100.0))
    with pytest.raises(ValueError):
        validate_estimation_constants(EstimationConstants(1.5, 1.8, 100.0))
    with pytest.raises(ValueError):
        validate_estimation_constants(EstimationConstants(0.6, -1.0, 100.0))


def test_admission_policy_validation() -> None:
    validate_admission_policy(AdmissionPolicy(max_retries=0, retry_backoff_seconds=0.0))
    with pytest.raises(ValueError):
        validate_admission_policy(AdmissionPolicy(max_retries=-1, retry_backoff_seconds=0.0))


def test_round_half_up() -> None:
    assert round_half_up(2.5) == 3
    assert round_half_up(3.5) == 4
    assert round_half_up(2.49) == 2
