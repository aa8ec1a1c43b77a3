#!/usr/bin/env python3
"""Validate local inventory engine environment readiness."""

from __future__ import annotations

import importlib
import shutil
import sys
import tempfile
from dataclasses import replace
from importlib.metadata import PackageNotFoundError, version
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from transit_inventory.domain.errors import InventoryError
from transit_inventory.repository.data_repository import DEMO_ROUTES, DataRepository
from transit_inventory.services.availability_service import AvailabilityService
from transit_inventory.services.pricing_service import PricingEstimationService
from transit_inventory.utils.config import get_settings

SEPARATOR_LINE = "=" * 44


def _print_result(name: str, success: bool, detail: str = "") -> tuple[bool, str]:
    if success:
        return True, f"[PASS] {name}{detail}"
    return False, f"[FAIL] {name}: {detail}"


def main() -> int:
    results: list[str] = []
    all_passed = True
    temp_dir = tempfile.mkdtemp(prefix="transit-inventory-env-")

    # CHECK 1: Python version >= 3.10
    if sys.version_info >= (3, 10):
        ok, line = _print_result("Python " + sys.version.split()[0], True)
    else:
        ok, line = _print_result(
            "Python version >= 3.10",
            False,
            f"found {sys.version.split()[0]}",
        )
    results.append(line)
    all_passed = all_passed and ok

    # CHECK 2: Required packages importable
    package_specs = [
        ("fastapi", "fastapi"),
        ("uvicorn", "uvicorn"),
        ("pydantic", "pydantic"),
        ("numpy", "numpy"),
        ("httpx", "httpx"),
        ("pytest", "pytest"),
    ]
    import_errors: list[str] = []
    for module_name, dist_name in package_specs:
        try:
            importlib.import_module(module_name)
            version(dist_name)
        except (ImportError, PackageNotFoundError) as exc:
            import_errors.append(f"{module_name} ({exc})")
    if import_errors:
        ok, line = _print_result(
            "Required packages",
            False,
            "missing/unimportable -> " + "; ".join(import_errors),
        )
    else:
        ok, line = _print_result("Required packages: all importable", True)
    results.append(line)
    all_passed = all_passed and ok

    try:
        validation_settings = replace(
            get_settings(),
            database_path=Path(temp_dir) / "inventory_validation.db",
        )
        repository = DataRepository(validation_settings)

        # CHECK 3: Ledger schema
        try:
            repository.initialize_database()
            ok, line = _print_result("Ledger initialization", True)
        except InventoryError as exc:
            ok, line = _print_result("Ledger initialization", False, str(exc))
        results.append(line)
        all_passed = all_passed and ok

        # CHECK 4: Demo catalog seeding
        try:
            seeded = repository.seed_demo_data()
            if seeded != len(DEMO_ROUTES):
                raise RuntimeError(f"expected {len(DEMO_ROUTES)} routes, got {seeded}")
            if repository.get_active_pricing_config() is None:
                raise RuntimeError("no active pricing config after seeding")
            ok, line = _print_result("Demo catalog", True, f": {seeded} routes")
        except (InventoryError, RuntimeError) as exc:
            ok, line = _print_result("Demo catalog", False, str(exc))
        results.append(line)
        all_passed = all_passed and ok

        route_ids = [row[0] for row in DEMO_ROUTES]

        # CHECK 5: Availability query
        try:
            availability = AvailabilityService(
                repository=repository,
                settings=validation_settings,
            ).get_availability(route_ids, "2025-06-01", "2025-06-07")
            if availability.min_available_sov != 1.0:
                raise RuntimeError(
                    f"expected full availability, got {availability.min_available_sov}"
                )
            ok, line = _print_result("Availability query", True)
        except (InventoryError, RuntimeError) as exc:
            ok, line = _print_result("Availability query", False, str(exc))
        results.append(line)
        all_passed = all_passed and ok

        # CHECK 6: Pricing estimate
        try:
            estimate = PricingEstimationService(
                repository=repository,
                settings=validation_settings,
            ).estimate(
                start_date="2025-06-01",
                end_date="2025-06-07",
                share_of_voice=0.5,
                route_ids=route_ids,
            )
            if estimate.total_impressions <= 0 or estimate.estimated_cost <= 0:
                raise RuntimeError("estimate produced no impressions")
            ok, line = _print_result(
                "Pricing estimate",
                True,
                f": impressions={estimate.total_impressions} cost={estimate.estimated_cost}",
            )
        except (InventoryError, RuntimeError) as exc:
            ok, line = _print_result("Pricing estimate", False, str(exc))
        results.append(line)
        all_passed = all_passed and ok

    finally:
        shutil.rmtree(temp_dir, ignore_errors=True)

    print(SEPARATOR_LINE)
    print(" Transit Inventory Environment Validation")
    print(SEPARATOR_LINE)
    for line in results:
        print(f" {line}")
    print(SEPARATOR_LINE)
    if all_passed:
        print(" All checks passed. Environment is ready.")
        print(SEPARATOR_LINE)
        return 0
    print(" One or more checks failed.")
    print(SEPARATOR_LINE)
    return 1


if __name__ == "__main__":
    raise SystemExit(main())
