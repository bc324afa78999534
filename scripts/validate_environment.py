#!/usr/bin/env python3
"""Validate local venue waitlist environment readiness."""

from __future__ import annotations

import importlib
import shutil
import sys
import tempfile
from dataclasses import replace
from datetime import date, timedelta
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from venue_waitlist.domain.models import SpaceWindow
from venue_waitlist.repository.data_repository import DataRepository
from venue_waitlist.services.availability_service import AvailabilityService
from venue_waitlist.services.notification_service import OutboxNotificationDispatcher
from venue_waitlist.services.promotion_service import PromotionOrchestrator
from venue_waitlist.services.reservation_service import TemporaryReservationService
from venue_waitlist.services.waitlist_service import WaitlistService
from venue_waitlist.utils.config import get_settings

SEPARATOR_LINE = "=" * 44


def _print_result(name: str, success: bool, detail: str = "") -> tuple[bool, str]:
    if success:
        return True, f"[PASS] {name}{detail}"
    return False, f"[FAIL] {name}: {detail}"


def main() -> int:
    results: list[str] = []
    all_passed = True
    temp_dir = tempfile.mkdtemp(prefix="venue-waitlist-env-")

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
    package_names = ["fastapi", "uvicorn", "pydantic", "numpy", "pandas", "requests", "httpx", "pytest"]
    import_errors: list[str] = []
    for module_name in package_names:
        try:
            importlib.import_module(module_name)
        except ImportError as exc:
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
            database_path=Path(temp_dir) / "venue_waitlist_validation.db",
        )
        repository = DataRepository(validation_settings)

        # CHECK 3: Database initialization
        try:
            repository.initialize_database()
            ok, line = _print_result("Database initialization", True)
        except RuntimeError as exc:
            ok, line = _print_result("Database initialization", False, str(exc))
        results.append(line)
        all_passed = all_passed and ok

        # CHECK 4: Demo seeding
        try:
            seeded = repository.seed_demo_data_if_empty()
            if seeded <= 0:
                raise RuntimeError("no demo rows inserted")
            ok, line = _print_result("Demo seeding", True, f": {seeded} rows")
        except Exception as exc:
            ok, line = _print_result("Demo seeding", False, str(exc))
        results.append(line)
        all_passed = all_passed and ok

        # CHECK 5: Hold lifecycle and promotion round trip
        try:
            space_id = str(repository.query("spaces", limit=1)[0]["id"])
            client_id = str(repository.query("clients", limit=1)[0]["id"])
            target = (date.today() + timedelta(days=30)).isoformat()
            window = SpaceWindow(space_id=space_id, date_start=target, date_end=target)

            availability = AvailabilityService(repository)
            reservations = TemporaryReservationService(
                repository, availability, settings=validation_settings
            )
            waitlist = WaitlistService(repository, settings=validation_settings)
            orchestrator = PromotionOrchestrator(
                repository=repository,
                availability_service=availability,
                waitlist_service=waitlist,
                reservation_service=reservations,
                dispatcher=OutboxNotificationDispatcher(repository),
                settings=validation_settings,
            )

            hold = reservations.create(space_id, window, client_id=client_id)
            waitlist.join(client_id, space_id, window, deal_value=12000, priority=7)
            _, promotion = orchestrator.release_and_promote(hold.id, reason="validation")
            if promotion.promoted is None:
                raise RuntimeError("freed window was not offered to the waitlist")
            ok, line = _print_result(
                "Lifecycle round trip",
                True,
                f": notification={promotion.notification_status}",
            )
        except Exception as exc:
            ok, line = _print_result("Lifecycle round trip", False, str(exc))
        results.append(line)
        all_passed = all_passed and ok

    finally:
        shutil.rmtree(temp_dir, ignore_errors=True)

    print(SEPARATOR_LINE)
    print(" Venue Waitlist Environment Validation")
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
