"""
Side-effect free checks shared by the leave ledger and the swap coordinator.

Nothing here writes to the store, so these can be called from any worker
without holding a lock. Callers that act on the answer must hold the
relevant keyed locks themselves.
"""

from collections.abc import Collection
from datetime import date, datetime, time, timedelta
from zoneinfo import ZoneInfo

from roster.config import Settings
from roster.models import (
    DutyAssignment,
    LeaveBalance,
    LeaveRequest,
    LeaveStatus,
    LeaveType,
    Shift,
)
from roster.store import RosterStore


def local_now(now: datetime, settings: Settings) -> datetime:
    """
    `now` in facility local time; naive values are taken as already local.
    """
    if now.tzinfo is None:
        return now
    return now.astimezone(ZoneInfo(settings.facility_timezone)).replace(
        tzinfo=None
    )


def shift_window(
    day: date, shift: Shift, settings: Settings
) -> tuple[datetime, datetime]:
    start = datetime.combine(day, time(settings.shift_start_hours[shift]))
    return start, start + timedelta(hours=settings.shift_length_hours)


def shifts_overlap(
    day_a: date, shift_a: Shift, day_b: date, shift_b: Shift, settings: Settings
) -> bool:
    start_a, end_a = shift_window(day_a, shift_a, settings)
    start_b, end_b = shift_window(day_b, shift_b, settings)
    return start_a < end_b and start_b < end_a


def doctors_on_leave(
    store: RosterStore, day: date, *, include_pending: bool = False
) -> set[str]:
    counted = {LeaveStatus.APPROVED}
    if include_pending:
        counted.add(LeaveStatus.PENDING)
    return {
        r.doctor_id for r in store.leaves_covering(day) if r.status in counted
    }


def is_on_approved_leave(store: RosterStore, doctor_id: str, day: date) -> bool:
    return doctor_id in doctors_on_leave(store, day)


def is_doctor_free(
    store: RosterStore,
    doctor_id: str,
    day: date,
    shift: Shift,
    settings: Settings,
    ignore: Collection[str] = (),
) -> bool:
    """
    True when the doctor has no duty overlapping (day, shift) and is not on
    approved leave that day. Duty ids in `ignore` are left out of the check.
    """
    if is_on_approved_leave(store, doctor_id, day):
        return False

    # a night shift runs into the next morning, so look one day either side
    nearby = store.list_duties_for_doctor(
        doctor_id, day - timedelta(days=1), day + timedelta(days=1)
    )
    return not any(
        shifts_overlap(d.date, d.shift, day, shift, settings)
        for d in nearby
        if d.id not in ignore
    )


def is_duty_eligible_for_swap(
    duty: DutyAssignment, now: datetime, settings: Settings
) -> bool:
    current = local_now(now, settings)
    today = current.date()
    if duty.date > today:
        return True
    if duty.date < today:
        return False
    return current.hour < settings.shift_start_hours[duty.shift]


def leave_would_exceed_concurrency_cap(
    store: RosterStore,
    day: date,
    proposed_doctor_id: str,
    cap: int,
    *,
    include_pending: bool = False,
) -> bool:
    others = doctors_on_leave(store, day, include_pending=include_pending)
    others.discard(proposed_doctor_id)
    return len(others) + 1 > cap


def overlapping_leaves(
    store: RosterStore,
    doctor_id: str,
    start: date,
    end: date,
    *,
    exclude_id: str | None = None,
) -> list[LeaveRequest]:
    """
    The doctor's pending or approved requests sharing a day with start..end.
    """
    return [
        r
        for r in store.list_leaves()
        if r.doctor_id == doctor_id
        and r.id != exclude_id
        and r.status in (LeaveStatus.PENDING, LeaveStatus.APPROVED)
        and r.start_date <= end
        and r.end_date >= start
    ]


def has_sufficient_balance(
    balance: LeaveBalance, leave_type: LeaveType, duration: int
) -> bool:
    if leave_type != LeaveType.ANNUAL:
        return True
    return balance.remaining >= duration


def exchange_conflicts(
    store: RosterStore,
    duty_a: DutyAssignment,
    duty_b: DutyAssignment,
    settings: Settings,
) -> list[str]:
    """
    Reasons why handing duty_a's doctor duty_b (and vice versa) would break
    the roster. An empty list means the exchange is valid.
    """
    if duty_a.id == duty_b.id:
        return ["a duty cannot be swapped with itself"]
    if duty_a.doctor_id == duty_b.doctor_id:
        return [f"both duties already belong to {duty_a.doctor_id}"]

    reasons = []
    pair = {duty_a.id, duty_b.id}
    for taker, duty in ((duty_a.doctor_id, duty_b), (duty_b.doctor_id, duty_a)):
        if is_on_approved_leave(store, taker, duty.date):
            reasons.append(
                f"{taker} is on approved leave on {duty.date.isoformat()}"
            )
        elif not is_doctor_free(
            store, taker, duty.date, duty.shift, settings, ignore=pair
        ):
            reasons.append(
                f"{taker} already has a duty overlapping the "
                f"{duty.shift} shift on {duty.date.isoformat()}"
            )
    return reasons
