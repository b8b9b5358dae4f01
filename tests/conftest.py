from datetime import UTC, date, datetime

import pytest
from freezegun import freeze_time

from roster.config import Settings
from roster.database import InMemoryKeyValueDatabase
from roster.leave import LeaveLedger
from roster.locks import KeyedLocks
from roster.models import (
    Doctor,
    DutyAssignment,
    LeaveRequest,
    LeaveStatus,
    LeaveType,
    Shift,
)
from roster.store import RosterStore
from roster.swaps import SwapCoordinator

# Monday 2026-01-05, 10:00 facility time: today's morning shift has started,
# today's evening and night shifts have not.
NOW = "2026-01-05 10:00:00"


def utc_now() -> datetime:
    return datetime.now(UTC)


@pytest.fixture
def settings() -> Settings:
    return Settings(
        facility_timezone="UTC",
        leave_concurrency_cap=2,
        default_annual_leave_days=45,
        warn_counts_pending_leave=True,
    )


@pytest.fixture
def frozen():
    with freeze_time(NOW) as frozen_time:
        yield frozen_time


@pytest.fixture
def store() -> RosterStore:
    store = RosterStore(InMemoryKeyValueDatabase())
    for doctor_id, name in [
        ("dr-a", "Amal Haddad"),
        ("dr-b", "Bilal Saeed"),
        ("dr-c", "Chen Wu"),
        ("dr-d", "Dana Okafor"),
    ]:
        store.put_doctor(Doctor(id=doctor_id, name=name))
    return store


@pytest.fixture
def locks() -> KeyedLocks:
    return KeyedLocks()


@pytest.fixture
def ledger(store, settings, locks, frozen) -> LeaveLedger:
    return LeaveLedger(store, settings, locks, utc_now)


@pytest.fixture
def swaps(store, settings, locks, frozen) -> SwapCoordinator:
    return SwapCoordinator(store, settings, locks, utc_now)


@pytest.fixture
def add_duty(store):
    def _add(
        duty_id: str,
        doctor_id: str,
        day: date,
        shift: Shift,
        *,
        referral: bool = False,
    ) -> DutyAssignment:
        duty = DutyAssignment(
            id=duty_id,
            doctor_id=doctor_id,
            date=day,
            shift=shift,
            is_referral_duty=referral,
        )
        store.put_duty(duty)
        return duty

    return _add


@pytest.fixture
def add_leave(store):
    def _add(
        leave_id: str,
        doctor_id: str,
        start: date,
        end: date,
        status: LeaveStatus = LeaveStatus.APPROVED,
        leave_type: LeaveType = LeaveType.ANNUAL,
    ) -> LeaveRequest:
        leave = LeaveRequest(
            id=leave_id,
            doctor_id=doctor_id,
            type=leave_type,
            start_date=start,
            end_date=end,
            status=status,
            created_at=datetime(2026, 1, 1, tzinfo=UTC),
        )
        store.put_leave(leave)
        return leave

    return _add
