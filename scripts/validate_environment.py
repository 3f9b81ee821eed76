#!/usr/bin/env python3
"""Validate local booking engine environment readiness."""

from __future__ import annotations

import importlib
import shutil
import sys
import tempfile
from dataclasses import replace
from datetime import datetime, timedelta
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from backend.domain.models import AvailabilityResult, TimeSlot
from backend.repository.data_repository import DataRepository
from backend.services.availability_service import AvailabilityService, validate_settings
from backend.services.booking_service import BookingConflictError, BookingService
from backend.utils.config import get_settings

SEPARATOR_LINE = "=" * 44


def _print_result(name: str, success: bool, detail: str = "") -> tuple[bool, str]:
    if success:
        return True, f"[PASS] {name}{detail}"
    return False, f"[FAIL] {name}: {detail}"


def main() -> int:
    results: list[str] = []
    all_passed = True
    temp_dir = tempfile.mkdtemp(prefix="booking-env-")

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

    # CHECK 2: Required packages importable with versions
    package_specs = [
        ("fastapi", "fastapi"),
        ("uvicorn", "uvicorn"),
        ("pydantic", "pydantic"),
        ("httpx", "httpx"),
        ("pytest", "pytest"),
    ]
    from importlib.metadata import PackageNotFoundError, version

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
        base_settings = get_settings()
        validation_settings = replace(
            base_settings,
            database_path=Path(temp_dir) / "booking_validation.db",
            seed_demo_data=True,
        )

        # CHECK 3: Configured engine settings
        try:
            validate_settings(validation_settings)
            ok, line = _print_result("Engine settings", True)
        except ValueError as exc:
            ok, line = _print_result("Engine settings", False, str(exc))
        results.append(line)
        all_passed = all_passed and ok

        repository = DataRepository(validation_settings)

        # CHECK 4: Database initialization
        try:
            repository.initialize_database()
            ok, line = _print_result("Database initialization", True)
        except Exception as exc:
            ok, line = _print_result("Database initialization", False, str(exc))
        results.append(line)
        all_passed = all_passed and ok

        # CHECK 5: Demo data seeding
        try:
            seeded = repository.seed_demo_data_if_empty()
            if seeded != 2:
                raise RuntimeError(f"expected 2 demo bookings, got {seeded}")
            ok, line = _print_result("Demo data seeding", True, f": {seeded} bookings")
        except Exception as exc:
            ok, line = _print_result("Demo data seeding", False, str(exc))
        results.append(line)
        all_passed = all_passed and ok

        # CHECK 6: Availability check against seeded occupancy
        availability_service = AvailabilityService(
            occupancy_provider=repository,
            settings=validation_settings,
        )
        tomorrow = (datetime.now() + timedelta(days=1)).replace(
            minute=0, second=0, microsecond=0
        )
        taken = TimeSlot(start=tomorrow.replace(hour=11), duration_minutes=60)
        free = TimeSlot(start=tomorrow.replace(hour=8), duration_minutes=60)
        try:
            taken_result = availability_service.check_availability("provider-demo", taken)
            if taken_result is not AvailabilityResult.UNAVAILABLE:
                raise RuntimeError("seeded 10:00 booking was not detected")
            free_result = availability_service.check_availability("provider-demo", free)
            if free_result is not AvailabilityResult.AVAILABLE:
                raise RuntimeError("free 08:00 slot reported as taken")
            ok, line = _print_result("Availability check", True)
        except Exception as exc:
            ok, line = _print_result("Availability check", False, str(exc))
        results.append(line)
        all_passed = all_passed and ok

        # CHECK 7: Booking commit and overlap guard
        booking_service = BookingService(
            repository=repository,
            availability_service=availability_service,
            settings=validation_settings,
        )
        try:
            booking = booking_service.book_listing(1, free)
            try:
                booking_service.book_listing(1, free)
            except BookingConflictError:
                pass
            else:
                raise RuntimeError("second booking for the same slot was accepted")
            ok, line = _print_result(
                "Booking commit",
                True,
                f": reference={booking.reference} total={booking.total}",
            )
        except Exception as exc:
            ok, line = _print_result("Booking commit", False, str(exc))
        results.append(line)
        all_passed = all_passed and ok

    finally:
        shutil.rmtree(temp_dir, ignore_errors=True)

    print(SEPARATOR_LINE)
    print(" Booking Engine Environment Validation")
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
