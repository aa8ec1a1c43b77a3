from __future__ import annotations

import sqlite3
import threading
from dataclasses import replace
from datetime import date

import pytest

from transit_inventory.domain.errors import (
    CapacityExceededError,
    ConcurrentModificationError,
    InvalidRequestError,
    InvalidTransitionError,
    LedgerBusyError,
    LedgerUnavailableError,
    ReservationNotFoundError,
    RouteNotFoundError,
)
from transit_inventory.domain.models import STRICT_STATUSES
from transit_inventory.repository.data_repository import DataRepository, LedgerTransaction
from transit_inventory.services.admission_service import AdmissionService
from transit_inventory.services.availability_service import AvailabilityService
from transit_inventory.utils.config import get_settings


def _build_test_settings(tmp_path, filename: str, **overrides):
    get_settings.cache_clear()
    base = get_settings()
    return replace(
        base,
        database_path=tmp_path / filename,
        seed_demo_data=False,
        admission_retry_backoff_seconds=0.0,
        **overrides,
    )


def _build_services(tmp_path, filename: str = "admission.db", **overrides):
    settings = _build_test_settings(tmp_path, filename, **overrides)
    repository = DataRepository(settings)
    repository.initialize_database()
    repository.create_route("Route R", "tier_1_core", 10000, route_id="R")
    repository.create_route("Route S", "tier_2_strong", 5000, route_id="S")
    availability = AvailabilityService(repository=repository, settings=settings)
    admission = AdmissionService(
        repository=repository,
        settings=settings,
        availability_service=availability,
    )
    return admission, availability, repository


def _max_strict_load(repository: DataRepository, route_id: str, day: date) -> float:
    total = {}
    for reservation in repository.list_reservations(statuses=STRICT_STATUSES):
        if route_id not in reservation.route_ids:
            continue
        if not reservation.start_date <= day <= reservation.end_date:
            continue
        for daypart in reservation.effective_dayparts:
            total[daypart] = total.get(daypart, 0.0) + reservation.share_of_voice
    return max(total.values(), default=0.0)


def test_accepts_within_capacity_and_persists_pending(tmp_path):
    admission, _, repository = _build_services(tmp_path)

    decision = admission.try_reserve(
        campaign_id="camp-1",
        route_ids=["R"],
        start_date="2025-06-01",
        end_date="2025-06-07",
        dayparts=["morning_peak"],
        requested_sov=0.4,
        name="Winter launch",
    )

    assert decision.accepted is True
    assert decision.effective_start_date == date(2025, 6, 1)
    assert decision.effective_end_date == date(2025, 6, 7)
    stored = repository.get_reservation(decision.reservation_id)
    assert stored is not None
    assert stored.status == "pending_approval"
    assert stored.share_of_voice == pytest.approx(0.4)
    assert stored.dayparts == ("morning_peak",)
    assert repository.list_transitions(decision.reservation_id) == [
        {"from_status": None, "to_status": "pending_approval", "notes": "admitted"}
    ]


def test_rejects_when_cell_is_exhausted(tmp_path):
    admission, _, repository = _build_services(tmp_path)
    for campaign in ("a", "b"):
        repository.import_reservation(
            campaign_id=campaign,
            start_date=date(2025, 6, 1),
            end_date=date(2025, 6, 1),
            route_ids=["R"],
            dayparts=["morning_peak"],
            share_of_voice=0.5,
            status="approved",
        )

    decision = admission.try_reserve(
        campaign_id="camp-2",
        route_ids=["R"],
        start_date="2025-06-01",
        end_date="2025-06-01",
        dayparts=["morning_peak"],
        requested_sov=0.1,
    )

    assert decision.accepted is False
    assert decision.max_available_sov == 0.0
    assert decision.max_available_percent == 0
    assert decision.unavailable_dates == [date(2025, 6, 1)]
    assert repository.count_reservations() == 2


def test_rejection_reports_rounded_ceiling(tmp_path):
    admission, _, repository = _build_services(tmp_path)
    repository.import_reservation(
        campaign_id="a",
        start_date=date(2025, 6, 1),
        end_date=date(2025, 6, 3),
        route_ids=["R"],
        share_of_voice=0.666,
        status="approved",
    )

    decision = admission.try_reserve("camp", ["R"], "2025-06-01", "2025-06-03", None, 0.5)

    assert decision.accepted is False
    assert decision.max_available_sov == 0.33
    assert decision.max_available_percent == 33


def test_any_unavailable_date_rejects_without_trimming(tmp_path):
    admission, _, repository = _build_services(tmp_path)
    repository.import_reservation(
        campaign_id="a",
        start_date=date(2025, 6, 3),
        end_date=date(2025, 6, 3),
        route_ids=["R"],
        share_of_voice=1.0,
        status="approved",
    )

    decision = admission.try_reserve("camp", ["R"], "2025-06-01", "2025-06-07", None, 0.2)

    assert decision.accepted is False
    assert decision.max_available_sov == 0.0
    assert decision.unavailable_dates == [date(2025, 6, 3)]


def test_trimming_picks_longest_available_run(tmp_path):
    admission, _, repository = _build_services(tmp_path)
    repository.import_reservation(
        campaign_id="a",
        start_date=date(2025, 6, 3),
        end_date=date(2025, 6, 3),
        route_ids=["R"],
        share_of_voice=1.0,
        status="approved",
    )

    decision = admission.try_reserve(
        "camp", ["R"], "2025-06-01", "2025-06-07", None, 0.2, trim_to_available=True
    )

    assert decision.accepted is True
    assert decision.effective_start_date == date(2025, 6, 4)
    assert decision.effective_end_date == date(2025, 6, 7)
    stored = repository.get_reservation(decision.reservation_id)
    assert (stored.start_date, stored.end_date) == (date(2025, 6, 4), date(2025, 6, 7))


def test_trimming_with_every_date_unavailable_rejects(tmp_path):
    admission, _, repository = _build_services(tmp_path)
    repository.import_reservation(
        campaign_id="a",
        start_date=date(2025, 6, 1),
        end_date=date(2025, 6, 2),
        route_ids=["R"],
        share_of_voice=1.0,
        status="active",
    )

    decision = admission.try_reserve(
        "camp", ["R"], "2025-06-01", "2025-06-02", None, 0.1, trim_to_available=True
    )

    assert decision.accepted is False
    assert decision.max_available_sov == 0.0


def test_invalid_admission_requests_raise(tmp_path):
    admission, _, _ = _build_services(tmp_path)

    with pytest.raises(InvalidRequestError):
        admission.try_reserve("camp", ["R"], "2025-06-01", "2025-06-02", None, 1.5)
    with pytest.raises(InvalidRequestError):
        admission.try_reserve("camp", [], "2025-06-01", "2025-06-02", None, 0.5)
    with pytest.raises(InvalidRequestError):
        admission.try_reserve("camp", ["R"], "2025-06-01", "2025-06-02", None, 0.5, initial_status="active")
    with pytest.raises(RouteNotFoundError):
        admission.try_reserve("camp", ["R", "missing"], "2025-06-01", "2025-06-02", None, 0.5)


def test_concurrent_reservations_never_oversell(tmp_path):
    admission, _, repository = _build_services(
        tmp_path,
        ledger_busy_timeout_seconds=10.0,
        admission_max_retries=5,
    )
    barrier = threading.Barrier(10)
    decisions = []
    errors = []

    def attempt(index: int) -> None:
        barrier.wait()
        try:
            decisions.append(
                admission.try_reserve(
                    campaign_id=f"camp-{index}",
                    route_ids=["R"],
                    start_date="2025-06-01",
                    end_date="2025-06-03",
                    dayparts=["daytime"],
                    requested_sov=0.3,
                    initial_status="approved",
                )
            )
        except Exception as exc:  # collected for the assertion below
            errors.append(exc)

    threads = [threading.Thread(target=attempt, args=(index,)) for index in range(10)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert errors == []
    accepted = [decision for decision in decisions if decision.accepted]
    assert len(accepted) == 3
    assert _max_strict_load(repository, "R", date(2025, 6, 2)) <= 1.0 + 1e-9


def test_concurrent_services_on_shared_ledger_never_oversell(tmp_path):
    admission, _, repository = _build_services(
        tmp_path,
        ledger_busy_timeout_seconds=10.0,
        admission_max_retries=5,
    )
    settings = _build_test_settings(
        tmp_path,
        "admission.db",
        ledger_busy_timeout_seconds=10.0,
        admission_max_retries=5,
    )
    # Separate service instances share no in-process lock, only the SQLite ledger.
    services = [admission] + [
        AdmissionService(repository=DataRepository(settings), settings=settings) for _ in range(3)
    ]
    barrier = threading.Barrier(8)
    decisions = []

    def attempt(index: int) -> None:
        barrier.wait()
        decisions.append(
            services[index % len(services)].try_reserve(
                f"camp-{index}", ["R"], "2025-06-01", "2025-06-01", None, 0.25, initial_status="approved"
            )
        )

    threads = [threading.Thread(target=attempt, args=(index,)) for index in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert len(decisions) == 8
    assert sum(1 for decision in decisions if decision.accepted) == 4
    assert _max_strict_load(repository, "R", date(2025, 6, 1)) == pytest.approx(1.0)


def test_approval_rechecks_capacity(tmp_path):
    admission, _, repository = _build_services(tmp_path)
    first = admission.try_reserve("camp-1", ["R"], "2025-06-01", "2025-06-02", None, 0.7)
    second = admission.try_reserve("camp-2", ["R"], "2025-06-01", "2025-06-02", None, 0.7)
    assert first.accepted and second.accepted

    approved = admission.transition_status(first.reservation_id, "approved", notes="ok")
    assert approved.status == "approved"

    with pytest.raises(CapacityExceededError) as excinfo:
        admission.transition_status(second.reservation_id, "approved")
    assert excinfo.value.max_available_sov == pytest.approx(0.3)
    assert repository.get_reservation(second.reservation_id).status == "pending_approval"


def test_concurrent_approvals_never_oversell(tmp_path):
    admission, _, repository = _build_services(tmp_path, ledger_busy_timeout_seconds=10.0)
    pending = [
        admission.try_reserve(f"camp-{index}", ["R"], "2025-06-01", "2025-06-01", None, 0.4)
        for index in range(5)
    ]
    barrier = threading.Barrier(len(pending))
    outcomes = []

    def approve(reservation_id: str) -> None:
        barrier.wait()
        try:
            admission.transition_status(reservation_id, "approved")
            outcomes.append("approved")
        except CapacityExceededError:
            outcomes.append("refused")

    threads = [threading.Thread(target=approve, args=(item.reservation_id,)) for item in pending]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert outcomes.count("approved") == 2
    assert outcomes.count("refused") == 3
    assert _max_strict_load(repository, "R", date(2025, 6, 1)) <= 1.0 + 1e-9


def test_transition_lifecycle_and_audit_trail(tmp_path):
    admission, _, repository = _build_services(tmp_path)
    decision = admission.try_reserve(
        "camp", ["R"], "2025-06-01", "2025-06-01", None, 0.2, initial_status="draft"
    )

    admission.transition_status(decision.reservation_id, "pending_approval")
    admission.transition_status(decision.reservation_id, "approved")
    admission.transition_status(decision.reservation_id, "active")
    final = admission.transition_status(decision.reservation_id, "completed", notes="flight ended")

    assert final.status == "completed"
    history = repository.list_transitions(decision.reservation_id)
    assert [item["to_status"] for item in history] == [
        "draft",
        "pending_approval",
        "approved",
        "active",
        "completed",
    ]
    assert history[-1]["notes"] == "flight ended"

    with pytest.raises(InvalidTransitionError):
        admission.transition_status(decision.reservation_id, "active")
    with pytest.raises(ReservationNotFoundError):
        admission.transition_status("does-not-exist", "approved")


def test_review_campaign_is_all_or_nothing(tmp_path):
    admission, _, repository = _build_services(tmp_path)
    admission.try_reserve("big", ["R"], "2025-06-01", "2025-06-01", None, 0.6)
    admission.try_reserve("big", ["R"], "2025-06-01", "2025-06-01", None, 0.6)
    admission.try_reserve("small", ["S"], "2025-06-01", "2025-06-01", None, 0.5)

    with pytest.raises(CapacityExceededError):
        admission.review_campaign("big", "approve")
    assert repository.count_reservations(["approved"]) == 0

    approved = admission.review_campaign("small", "approve", notes="looks good")
    assert [item.status for item in approved] == ["approved"]

    rejected = admission.review_campaign("big", "reject")
    assert {item.status for item in rejected} == {"rejected"}

    with pytest.raises(InvalidRequestError):
        admission.review_campaign("big", "approve")
    with pytest.raises(InvalidRequestError):
        admission.review_campaign("small", "escalate")


def test_busy_ledger_is_retried_then_reported(tmp_path, monkeypatch):
    admission, _, repository = _build_services(tmp_path, admission_max_retries=2)
    calls = []

    def always_busy():
        calls.append(1)
        raise LedgerBusyError("database is locked")

    monkeypatch.setattr(repository, "admission_transaction", always_busy)

    with pytest.raises(ConcurrentModificationError):
        admission.try_reserve("camp", ["R"], "2025-06-01", "2025-06-01", None, 0.2)
    assert len(calls) == 3
    assert repository.count_reservations() == 0


def test_replacing_an_approved_reservation_cancels_it(tmp_path):
    admission, _, repository = _build_services(tmp_path)
    day = date(2025, 6, 1)
    original_id = repository.import_reservation(
        campaign_id="camp-1", start_date=day, end_date=day, route_ids=["R"],
        share_of_voice=0.6, status="approved",
    )
    repository.import_reservation(
        campaign_id="camp-2", start_date=day, end_date=day, route_ids=["R"],
        share_of_voice=0.3, status="approved",
    )

    too_big = admission.try_reserve(
        "camp-1", ["R"], "2025-06-01", "2025-06-01", None, 0.8,
        exclude_reservation_id=original_id, initial_status="approved",
    )
    assert too_big.accepted is False
    assert too_big.max_available_sov == pytest.approx(0.7)
    assert repository.get_reservation(original_id).status == "approved"

    replacement = admission.try_reserve(
        "camp-1", ["R"], "2025-06-01", "2025-06-01", None, 0.7,
        exclude_reservation_id=original_id, initial_status="approved",
    )

    assert replacement.accepted is True
    assert replacement.superseded_reservation_id == original_id
    assert repository.get_reservation(original_id).status == "cancelled"
    assert repository.list_transitions(original_id)[-1] == {
        "from_status": "approved",
        "to_status": "cancelled",
        "notes": f"superseded by {replacement.reservation_id}",
    }
    assert _max_strict_load(repository, "R", day) == pytest.approx(1.0)


def test_replacing_a_pending_reservation_leaves_it_for_review(tmp_path):
    admission, _, repository = _build_services(tmp_path)
    day = date(2025, 6, 1)
    pending_id = repository.import_reservation(
        campaign_id="camp-1", start_date=day, end_date=day, route_ids=["R"],
        share_of_voice=0.6, status="pending_approval",
    )

    decision = admission.try_reserve(
        "camp-1", ["R"], "2025-06-01", "2025-06-01", None, 0.6,
        exclude_reservation_id=pending_id, initial_status="approved",
    )

    assert decision.accepted is True
    assert decision.superseded_reservation_id is None
    assert repository.get_reservation(pending_id).status == "pending_approval"
    with pytest.raises(CapacityExceededError):
        admission.transition_status(pending_id, "approved")
    assert _max_strict_load(repository, "R", day) == pytest.approx(0.6)


def test_replacing_an_unknown_reservation_raises(tmp_path):
    admission, _, repository = _build_services(tmp_path)

    with pytest.raises(ReservationNotFoundError):
        admission.try_reserve(
            "camp-1", ["R"], "2025-06-01", "2025-06-01", None, 0.2,
            exclude_reservation_id="missing",
        )
    assert repository.count_reservations() == 0


def test_failed_admission_write_commits_nothing(tmp_path, monkeypatch):
    admission, _, repository = _build_services(tmp_path)
    day = date(2025, 6, 1)
    original_id = repository.import_reservation(
        campaign_id="camp-1", start_date=day, end_date=day, route_ids=["R"],
        share_of_voice=0.6, status="approved",
    )
    insert_reservation = LedgerTransaction.insert_reservation

    def insert_then_fail(self, reservation):
        insert_reservation(self, reservation)
        raise sqlite3.OperationalError("disk I/O error")

    monkeypatch.setattr(LedgerTransaction, "insert_reservation", insert_then_fail)

    with pytest.raises(LedgerUnavailableError) as excinfo:
        admission.try_reserve(
            "camp-1", ["R"], "2025-06-01", "2025-06-01", None, 0.5,
            exclude_reservation_id=original_id, initial_status="approved",
        )

    assert not isinstance(excinfo.value, LedgerBusyError)
    assert repository.count_reservations() == 1
    assert repository.get_reservation(original_id).status == "approved"
    assert all(row["to_status"] != "cancelled" for row in repository.list_transitions(original_id))
