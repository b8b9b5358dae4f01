"""
Roster domain models: doctors, duties, leave and swap requests.
"""

from datetime import date, datetime, timedelta
from enum import StrEnum

from pydantic import BaseModel, Field, computed_field


class Shift(StrEnum):
    MORNING = "morning"
    EVENING = "evening"
    NIGHT = "night"


class LeaveType(StrEnum):
    ANNUAL = "annual"
    SICK = "sick"
    EMERGENCY = "emergency"
    PERSONAL = "personal"


class LeaveStatus(StrEnum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


class SwapStatus(StrEnum):
    PENDING = "pending"
    APPROVED = "approved"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    DECLINED = "declined"
    CANCELLED = "cancelled"


# allowed status moves; anything missing here is an invalid transition
LEAVE_TRANSITIONS: dict[LeaveStatus, frozenset[LeaveStatus]] = {
    LeaveStatus.PENDING: frozenset(
        {LeaveStatus.APPROVED, LeaveStatus.REJECTED, LeaveStatus.CANCELLED}
    ),
    LeaveStatus.APPROVED: frozenset(),
    LeaveStatus.REJECTED: frozenset(),
    LeaveStatus.CANCELLED: frozenset(),
}

SWAP_TRANSITIONS: dict[SwapStatus, frozenset[SwapStatus]] = {
    SwapStatus.PENDING: frozenset(
        {
            SwapStatus.APPROVED,
            SwapStatus.ACCEPTED,
            SwapStatus.REJECTED,
            SwapStatus.DECLINED,
            SwapStatus.CANCELLED,
        }
    ),
    SwapStatus.APPROVED: frozenset(),
    SwapStatus.ACCEPTED: frozenset(),
    SwapStatus.REJECTED: frozenset(),
    SwapStatus.DECLINED: frozenset(),
    SwapStatus.CANCELLED: frozenset(),
}


class Doctor(BaseModel):
    id: str
    name: str


class DutyAssignment(BaseModel):
    id: str
    doctor_id: str
    date: date
    shift: Shift
    is_referral_duty: bool = False


class LeaveBalance(BaseModel):
    doctor_id: str
    total_days: int
    used_days: int = 0

    @computed_field
    @property
    def remaining(self) -> int:
        return self.total_days - self.used_days


class LeaveRequest(BaseModel):
    id: str
    doctor_id: str
    type: LeaveType
    start_date: date
    end_date: date
    status: LeaveStatus = LeaveStatus.PENDING
    reason: str = ""
    admin_notes: str | None = None
    created_at: datetime
    updated_at: datetime | None = None

    @property
    def duration(self) -> int:
        return (self.end_date - self.start_date).days + 1

    def covers(self, day: date) -> bool:
        return self.start_date <= day <= self.end_date

    def days(self) -> list[date]:
        return [
            self.start_date + timedelta(days=i) for i in range(self.duration)
        ]


class SwapRequest(BaseModel):
    id: str
    requestor_id: str
    requestor_duty_id: str
    target_id: str
    target_duty_id: str
    reason: str = ""
    status: SwapStatus = SwapStatus.PENDING
    admin_notes: str | None = None
    created_at: datetime
    updated_at: datetime | None = None

    def touches(self, duty_id: str) -> bool:
        return duty_id in (self.requestor_duty_id, self.target_duty_id)


class ConflictReport(BaseModel):
    has_conflict: bool = False
    message: str | None = None
    dates: list[date] = Field(default_factory=list)


class AvailableTarget(BaseModel):
    doctor: Doctor
    available_duties: list[DutyAssignment]
