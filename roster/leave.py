import calendar
import logging
import uuid
from collections import Counter, defaultdict
from collections.abc import Callable
from datetime import date, datetime, timedelta

from roster.config import Settings
from roster.conflicts import (
    doctors_on_leave,
    has_sufficient_balance,
    leave_would_exceed_concurrency_cap,
    local_now,
    overlapping_leaves,
)
from roster.errors import (
    ConcurrencyCapExceeded,
    InsufficientBalance,
    InvalidTransition,
    NotFound,
    NotPermitted,
    ValidationFailed,
)
from roster.locks import KeyedLocks, date_key, doctor_key, leave_key
from roster.models import (
    LEAVE_TRANSITIONS,
    ConflictReport,
    LeaveBalance,
    LeaveRequest,
    LeaveStatus,
    LeaveType,
)
from roster.store import RosterStore

logger = logging.getLogger(__name__)

NowFn = Callable[[], datetime]


def _days(start: date, end: date) -> list[date]:
    return [start + timedelta(days=i) for i in range((end - start).days + 1)]


class LeaveLedger:
    """
    Leave requests and annual balances.

    A request moves pending -> approved/rejected (admin) or
    pending -> cancelled (owner). Approval is the hard admission gate for
    the per-day concurrency cap; submission only warns.
    """

    def __init__(
        self,
        store: RosterStore,
        settings: Settings,
        locks: KeyedLocks,
        now_fn: NowFn,
    ) -> None:
        self.store = store
        self.settings = settings
        self.locks = locks
        self.now_fn = now_fn

    def _today(self) -> date:
        return local_now(self.now_fn(), self.settings).date()

    def _require(self, request_id: str) -> LeaveRequest:
        leave = self.store.get_leave(request_id)
        if leave is None:
            raise NotFound(f"Leave request {request_id} not found")
        return leave

    def _check_range(self, start_date: date, end_date: date) -> None:
        if start_date > end_date:
            raise ValidationFailed("start_date must not be after end_date")
        longest = self.settings.max_leave_days
        if (end_date - start_date).days + 1 > longest:
            raise ValidationFailed(f"Leave may span at most {longest} days")

    def _transition(
        self, leave: LeaveRequest, status: LeaveStatus, **changes
    ) -> LeaveRequest:
        if status not in LEAVE_TRANSITIONS[leave.status]:
            raise InvalidTransition(
                f"Leave request {leave.id} is {leave.status}, cannot become {status}"
            )
        return leave.model_copy(
            update={"status": status, "updated_at": self.now_fn(), **changes}
        )

    # balances

    def get_balance(self, doctor_id: str) -> LeaveBalance:
        balance = self.store.get_balance(doctor_id)
        if balance is None:
            with self.locks.hold(doctor_key(doctor_id)):
                balance = self.store.get_balance(doctor_id)
                if balance is None:
                    balance = LeaveBalance(
                        doctor_id=doctor_id,
                        total_days=self.settings.default_annual_leave_days,
                    )
                    self.store.put_balance(balance)
        return balance

    def set_balance(self, doctor_id: str, total_days: int) -> LeaveBalance:
        if total_days < 0:
            raise ValidationFailed("total_days must not be negative")
        self.get_balance(doctor_id)
        with self.locks.hold(doctor_key(doctor_id)):
            balance = self.store.get_balance(doctor_id)
            if total_days < balance.used_days:
                raise ValidationFailed(
                    f"{doctor_id} has already used {balance.used_days} days"
                )
            balance = balance.model_copy(update={"total_days": total_days})
            self.store.put_balance(balance)
        logger.info(f"Leave balance set: {doctor_id} total={total_days}")
        return balance

    # conflicts

    def check_conflicts(
        self, start_date: date, end_date: date, doctor_id: str | None = None
    ) -> ConflictReport:
        """
        Dates in range where one more doctor on leave would pass the cap.
        """
        self._check_range(start_date, end_date)

        cap = self.settings.leave_concurrency_cap
        crowded = [
            day
            for day in _days(start_date, end_date)
            if leave_would_exceed_concurrency_cap(
                self.store,
                day,
                doctor_id or "",
                cap,
                include_pending=self.settings.warn_counts_pending_leave,
            )
        ]
        if not crowded:
            return ConflictReport()

        listed = ", ".join(day.isoformat() for day in crowded)
        return ConflictReport(
            has_conflict=True,
            message=f"{cap} or more doctors already on leave on: {listed}",
            dates=crowded,
        )

    # state machine

    def submit(
        self,
        doctor_id: str,
        leave_type: LeaveType,
        start_date: date,
        end_date: date,
        reason: str = "",
    ) -> tuple[LeaveRequest, ConflictReport]:
        self._check_range(start_date, end_date)
        if start_date < self._today():
            raise ValidationFailed("Leave cannot start in the past")

        duration = (end_date - start_date).days + 1
        balance = self.get_balance(doctor_id)
        if not has_sufficient_balance(balance, leave_type, duration):
            logger.warning(
                f"Leave refused for {doctor_id}: {duration} days asked, "
                f"{balance.remaining} remaining"
            )
            raise InsufficientBalance(
                f"{duration} days requested but only {balance.remaining} remaining"
            )

        conflict = self.check_conflicts(start_date, end_date, doctor_id)

        with self.locks.hold(doctor_key(doctor_id)):
            clash = overlapping_leaves(self.store, doctor_id, start_date, end_date)
            if clash:
                raise ValidationFailed(
                    f"{doctor_id} already has {clash[0].status} leave "
                    f"{clash[0].start_date}..{clash[0].end_date}"
                )
            leave = LeaveRequest(
                id=uuid.uuid4().hex,
                doctor_id=doctor_id,
                type=leave_type,
                start_date=start_date,
                end_date=end_date,
                reason=reason,
                created_at=self.now_fn(),
            )
            self.store.put_leave(leave)
        logger.info(
            f"Leave submitted: {leave.id} {doctor_id} {leave_type} "
            f"{start_date}..{end_date} conflict={conflict.has_conflict}"
        )
        return leave, conflict

    def approve(
        self, request_id: str, admin_notes: str | None = None
    ) -> LeaveRequest:
        leave = self._require(request_id)
        keys = [leave_key(leave.id), doctor_key(leave.doctor_id)]
        keys += [date_key(day) for day in leave.days()]

        self.get_balance(leave.doctor_id)
        with self.locks.hold(*keys):
            leave = self._require(request_id)
            approved = self._transition(
                leave, LeaveStatus.APPROVED, admin_notes=admin_notes
            )

            taken = [
                r
                for r in overlapping_leaves(
                    self.store,
                    leave.doctor_id,
                    leave.start_date,
                    leave.end_date,
                    exclude_id=leave.id,
                )
                if r.status == LeaveStatus.APPROVED
            ]
            if taken:
                raise ValidationFailed(
                    f"{leave.doctor_id} is already on approved leave "
                    f"{taken[0].start_date}..{taken[0].end_date}"
                )

            cap = self.settings.leave_concurrency_cap
            crowded = [
                day
                for day in leave.days()
                if leave_would_exceed_concurrency_cap(
                    self.store, day, leave.doctor_id, cap
                )
            ]
            if crowded:
                logger.warning(
                    f"Leave approval blocked: {leave.id} cap {cap} reached on "
                    f"{[d.isoformat() for d in crowded]}"
                )
                raise ConcurrencyCapExceeded(
                    f"{cap} doctors already on approved leave on "
                    + ", ".join(d.isoformat() for d in crowded)
                )

            balance = None
            if leave.type == LeaveType.ANNUAL:
                balance = self.store.get_balance(leave.doctor_id)
                if not has_sufficient_balance(
                    balance, leave.type, leave.duration
                ):
                    raise InsufficientBalance(
                        f"{leave.duration} days requested but only "
                        f"{balance.remaining} remaining"
                    )
                balance = balance.model_copy(
                    update={"used_days": balance.used_days + leave.duration}
                )

            self.store.commit_leave(approved, balance)

        logger.info(f"Leave approved: {leave.id} {leave.doctor_id}")
        return approved

    def reject(self, request_id: str, reason: str | None = None) -> LeaveRequest:
        with self.locks.hold(leave_key(request_id)):
            leave = self._require(request_id)
            rejected = self._transition(
                leave, LeaveStatus.REJECTED, admin_notes=reason
            )
            self.store.put_leave(rejected)
        logger.info(f"Leave rejected: {request_id}")
        return rejected

    def cancel(self, request_id: str, by_doctor_id: str) -> LeaveRequest:
        with self.locks.hold(leave_key(request_id)):
            leave = self._require(request_id)
            cancelled = self._transition(leave, LeaveStatus.CANCELLED)
            if leave.doctor_id != by_doctor_id:
                raise NotPermitted(
                    f"Only {leave.doctor_id} can cancel leave request {leave.id}"
                )
            self.store.put_leave(cancelled)
        logger.info(f"Leave cancelled: {request_id} by {by_doctor_id}")
        return cancelled

    # read side

    def get(self, request_id: str) -> LeaveRequest:
        return self._require(request_id)

    def list_requests(
        self,
        doctor_id: str | None = None,
        status: LeaveStatus | None = None,
    ) -> list[LeaveRequest]:
        return [
            r
            for r in self.store.list_leaves()
            if (doctor_id is None or r.doctor_id == doctor_id)
            and (status is None or r.status == status)
        ]

    def calendar_for_month(self, year: int, month: int) -> dict[date, list[str]]:
        first, last = _month_bounds(year, month)
        days: dict[date, list[str]] = {}
        for day in _days(first, last):
            on_leave = doctors_on_leave(self.store, day)
            if on_leave:
                days[day] = sorted(on_leave)
        return days

    def statistics(self, year: int | None = None) -> dict:
        today = self._today()
        year = year or today.year
        requests = [
            r for r in self.store.list_leaves() if r.start_date.year == year
        ]
        by_status = Counter(r.status for r in requests)
        decided = by_status[LeaveStatus.APPROVED] + by_status[LeaveStatus.REJECTED]
        horizon = today + timedelta(days=30)
        upcoming = [
            r
            for r in requests
            if r.status in (LeaveStatus.APPROVED, LeaveStatus.PENDING)
            and today <= r.start_date <= horizon
        ]
        return {
            "year": year,
            "total": len(requests),
            "pending": by_status[LeaveStatus.PENDING],
            "approved": by_status[LeaveStatus.APPROVED],
            "rejected": by_status[LeaveStatus.REJECTED],
            "cancelled": by_status[LeaveStatus.CANCELLED],
            "approval_rate": (
                round(100 * by_status[LeaveStatus.APPROVED] / decided)
                if decided
                else 0
            ),
            "by_type": {t.value: 0 for t in LeaveType}
            | dict(Counter(r.type.value for r in requests)),
            "upcoming": sorted(upcoming, key=lambda r: r.start_date),
        }

    def monthly_summary(self, year: int, month: int) -> dict:
        first, last = _month_bounds(year, month)
        leaves = [
            r
            for r in self.store.list_leaves()
            if r.status == LeaveStatus.APPROVED
            and r.start_date <= last
            and r.end_date >= first
        ]

        per_doctor: dict[str, dict] = defaultdict(
            lambda: {"days": 0, "types": set()}
        )
        leave_days: set[date] = set()
        for r in leaves:
            in_month = [d for d in r.days() if first <= d <= last]
            leave_days.update(in_month)
            per_doctor[r.doctor_id]["days"] += len(in_month)
            per_doctor[r.doctor_id]["types"].add(r.type.value)

        return {
            "year": year,
            "month": month,
            "month_name": calendar.month_name[month],
            "total_leaves": len(leaves),
            "days_with_leaves": len(leave_days),
            "total_days": sum(entry["days"] for entry in per_doctor.values()),
            "summary": [
                {
                    "doctor_id": doctor_id,
                    "days": entry["days"],
                    "types": sorted(entry["types"]),
                }
                for doctor_id, entry in sorted(per_doctor.items())
            ],
        }

    def yearly_plan(self, year: int) -> dict:
        """Approved leave for the year, rolled up month by month."""
        first, last = date(year, 1, 1), date(year, 12, 31)
        total = sum(
            1
            for r in self.store.list_leaves()
            if r.status == LeaveStatus.APPROVED
            and r.start_date <= last
            and r.end_date >= first
        )
        return {
            "year": year,
            "total_leaves": total,
            "months": {
                month: self.monthly_summary(year, month) for month in range(1, 13)
            },
        }


def _month_bounds(year: int, month: int) -> tuple[date, date]:
    if not 1 <= month <= 12:
        raise ValidationFailed(f"Invalid month {month}")
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, 1), date(year, month, last_day)
