"""
Typed record access over a key/value database.

Records are stored under `<kind>:<id>` keys. Stored models are treated as
immutable: writers put a fresh copy, so a reader never sees a record change
underneath it.
"""

from datetime import date

from roster.database import KeyValueDatabase
from roster.errors import NotFound
from roster.models import (
    Doctor,
    DutyAssignment,
    LeaveBalance,
    LeaveRequest,
    Shift,
    SwapRequest,
)

Record = Doctor | DutyAssignment | LeaveBalance | LeaveRequest | SwapRequest


class RosterStore:
    def __init__(self, db: KeyValueDatabase[str, Record]) -> None:
        self.db = db

    # doctors

    def put_doctor(self, doctor: Doctor) -> None:
        self.db.put(f"doctor:{doctor.id}", doctor)

    def get_doctor(self, doctor_id: str) -> Doctor | None:
        doctor = self.db.get(f"doctor:{doctor_id}")
        return doctor if isinstance(doctor, Doctor) else None

    def list_doctors(self) -> list[Doctor]:
        """
        Registered doctors plus any doctor id that only appears on a duty.
        """
        records = self.db.all()
        doctors = {r.id: r for r in records if isinstance(r, Doctor)}
        for r in records:
            if isinstance(r, DutyAssignment) and r.doctor_id not in doctors:
                doctors[r.doctor_id] = Doctor(id=r.doctor_id, name=r.doctor_id)
        return sorted(doctors.values(), key=lambda d: d.id)

    # duties

    def put_duty(self, duty: DutyAssignment) -> None:
        self.db.put(f"duty:{duty.id}", duty)

    def get_duty(self, duty_id: str) -> DutyAssignment | None:
        duty = self.db.get(f"duty:{duty_id}")
        return duty if isinstance(duty, DutyAssignment) else None

    def require_duty(self, duty_id: str) -> DutyAssignment:
        duty = self.get_duty(duty_id)
        if duty is None:
            raise NotFound(f"Duty {duty_id} not found")
        return duty

    def list_duties(
        self, start: date | None = None, end: date | None = None
    ) -> list[DutyAssignment]:
        duties = [
            r
            for r in self.db.all()
            if isinstance(r, DutyAssignment)
            and (start is None or r.date >= start)
            and (end is None or r.date <= end)
        ]
        shifts = list(Shift)
        return sorted(
            duties, key=lambda d: (d.date, shifts.index(d.shift), d.id)
        )

    def list_duties_for_doctor(
        self,
        doctor_id: str,
        start: date | None = None,
        end: date | None = None,
    ) -> list[DutyAssignment]:
        return [
            d for d in self.list_duties(start, end) if d.doctor_id == doctor_id
        ]

    def list_duties_on_date(self, day: date) -> list[DutyAssignment]:
        return self.list_duties(day, day)

    def exchange_duties(
        self,
        duty_a: DutyAssignment,
        duty_b: DutyAssignment,
        swap: SwapRequest | None = None,
    ) -> tuple[DutyAssignment, DutyAssignment]:
        """
        Swap the doctors of two duties, writing the optional swap request in
        the same unit.
        """
        moved_a = duty_a.model_copy(update={"doctor_id": duty_b.doctor_id})
        moved_b = duty_b.model_copy(update={"doctor_id": duty_a.doctor_id})
        records: dict[str, Record] = {
            f"duty:{moved_a.id}": moved_a,
            f"duty:{moved_b.id}": moved_b,
        }
        if swap is not None:
            records[f"swap:{swap.id}"] = swap
        self.db.put_many(records)
        return moved_a, moved_b

    # leave

    def put_leave(self, leave: LeaveRequest) -> None:
        self.db.put(f"leave:{leave.id}", leave)

    def get_leave(self, leave_id: str) -> LeaveRequest | None:
        leave = self.db.get(f"leave:{leave_id}")
        return leave if isinstance(leave, LeaveRequest) else None

    def list_leaves(self) -> list[LeaveRequest]:
        leaves = [r for r in self.db.all() if isinstance(r, LeaveRequest)]
        return sorted(leaves, key=lambda r: r.created_at)

    def leaves_covering(self, day: date) -> list[LeaveRequest]:
        return [r for r in self.list_leaves() if r.covers(day)]

    def get_balance(self, doctor_id: str) -> LeaveBalance | None:
        balance = self.db.get(f"balance:{doctor_id}")
        return balance if isinstance(balance, LeaveBalance) else None

    def put_balance(self, balance: LeaveBalance) -> None:
        self.db.put(f"balance:{balance.doctor_id}", balance)

    def commit_leave(
        self, leave: LeaveRequest, balance: LeaveBalance | None = None
    ) -> None:
        records: dict[str, Record] = {f"leave:{leave.id}": leave}
        if balance is not None:
            records[f"balance:{balance.doctor_id}"] = balance
        self.db.put_many(records)

    # swaps

    def put_swap(self, swap: SwapRequest) -> None:
        self.db.put(f"swap:{swap.id}", swap)

    def get_swap(self, swap_id: str) -> SwapRequest | None:
        swap = self.db.get(f"swap:{swap_id}")
        return swap if isinstance(swap, SwapRequest) else None

    def list_swaps(self) -> list[SwapRequest]:
        swaps = [r for r in self.db.all() if isinstance(r, SwapRequest)]
        return sorted(swaps, key=lambda r: r.created_at)
