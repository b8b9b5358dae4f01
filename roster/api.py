import logging
from datetime import UTC, date, datetime

from fastapi import APIRouter, FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from roster.config import Settings, get_settings
from roster.database import InMemoryKeyValueDatabase
from roster.errors import ROSTER_ERRORS, RosterError
from roster.leave import LeaveLedger
from roster.locks import KeyedLocks
from roster.models import (
    AvailableTarget,
    ConflictReport,
    DutyAssignment,
    LeaveBalance,
    LeaveRequest,
    LeaveStatus,
    LeaveType,
    SwapRequest,
    SwapStatus,
)
from roster.store import Record, RosterStore
from roster.swaps import SwapCoordinator

logger = logging.getLogger(__name__)

router = APIRouter()


class LeaveSubmission(BaseModel):
    doctor_id: str
    type: LeaveType = LeaveType.ANNUAL
    start_date: date
    end_date: date
    reason: str = ""


class LeaveSubmitted(BaseModel):
    leave: LeaveRequest
    conflict: ConflictReport


class ConflictCheck(BaseModel):
    start_date: date
    end_date: date
    doctor_id: str | None = None


class BalanceUpdate(BaseModel):
    total_days: int = Field(ge=0)


class SwapProposal(BaseModel):
    requestor_id: str
    requestor_duty_id: str
    target_id: str
    target_duty_id: str
    reason: str = ""


class AdminDecision(BaseModel):
    notes: str | None = None


class DoctorAction(BaseModel):
    doctor_id: str
    reason: str | None = None


class MyRequests(BaseModel):
    sent: list[SwapRequest]
    received: list[SwapRequest]


def _ledger(request: Request) -> LeaveLedger:
    return request.app.state.leave_ledger


def _swaps(request: Request) -> SwapCoordinator:
    return request.app.state.swap_coordinator


@router.get("/health")
async def health_check() -> dict[str, str]:
    return {"status": "ok"}


# roster


@router.get("/roster/{year}/{month}")
def month_roster(year: int, month: int, request: Request) -> list[DutyAssignment]:
    store: RosterStore = request.app.state.store
    return [
        d
        for d in store.list_duties()
        if d.date.year == year and d.date.month == month
    ]


@router.get("/duties/{duty_id}")
def get_duty(duty_id: str, request: Request) -> DutyAssignment:
    store: RosterStore = request.app.state.store
    return store.require_duty(duty_id)


@router.get("/doctors/{doctor_id}/duties")
def doctor_duties(
    doctor_id: str,
    request: Request,
    start: date | None = None,
    end: date | None = None,
) -> list[DutyAssignment]:
    store: RosterStore = request.app.state.store
    return store.list_duties_for_doctor(doctor_id, start, end)


# leave


@router.post("/leaves/request")
def submit_leave(body: LeaveSubmission, request: Request) -> LeaveSubmitted:
    leave, conflict = _ledger(request).submit(
        body.doctor_id, body.type, body.start_date, body.end_date, body.reason
    )
    return LeaveSubmitted(leave=leave, conflict=conflict)


@router.post("/leaves/check-conflicts")
def check_conflicts(body: ConflictCheck, request: Request) -> ConflictReport:
    return _ledger(request).check_conflicts(
        body.start_date, body.end_date, body.doctor_id
    )


@router.get("/leaves")
def list_leaves(
    request: Request,
    doctor_id: str | None = None,
    status: LeaveStatus | None = None,
) -> list[LeaveRequest]:
    return _ledger(request).list_requests(doctor_id, status)


@router.get("/leaves/balance/{doctor_id}")
def get_balance(doctor_id: str, request: Request) -> LeaveBalance:
    return _ledger(request).get_balance(doctor_id)


@router.put("/leaves/balance/{doctor_id}")
def set_balance(
    doctor_id: str, body: BalanceUpdate, request: Request
) -> LeaveBalance:
    return _ledger(request).set_balance(doctor_id, body.total_days)


@router.get("/leaves/calendar/{year}/{month}")
def leave_calendar(year: int, month: int, request: Request) -> dict[str, list[str]]:
    days = _ledger(request).calendar_for_month(year, month)
    return {day.isoformat(): doctors for day, doctors in days.items()}


@router.get("/leaves/statistics")
def leave_statistics(request: Request, year: int | None = None) -> dict:
    return _ledger(request).statistics(year)


@router.get("/leaves/monthly-summary/{year}/{month}")
def monthly_summary(year: int, month: int, request: Request) -> dict:
    return _ledger(request).monthly_summary(year, month)


@router.get("/leaves/yearly-plan/{year}")
def yearly_plan(year: int, request: Request) -> dict:
    return _ledger(request).yearly_plan(year)


@router.get("/leaves/{leave_id}")
def get_leave(leave_id: str, request: Request) -> LeaveRequest:
    return _ledger(request).get(leave_id)


@router.post("/leaves/{leave_id}/approve")
def approve_leave(
    leave_id: str, body: AdminDecision, request: Request
) -> LeaveRequest:
    return _ledger(request).approve(leave_id, body.notes)


@router.post("/leaves/{leave_id}/reject")
def reject_leave(
    leave_id: str, body: AdminDecision, request: Request
) -> LeaveRequest:
    return _ledger(request).reject(leave_id, body.notes)


@router.post("/leaves/{leave_id}/cancel")
def cancel_leave(
    leave_id: str, body: DoctorAction, request: Request
) -> LeaveRequest:
    return _ledger(request).cancel(leave_id, body.doctor_id)


# swaps


@router.post("/swaps/request")
def propose_swap(body: SwapProposal, request: Request) -> SwapRequest:
    return _swaps(request).propose(
        body.requestor_id,
        body.requestor_duty_id,
        body.target_id,
        body.target_duty_id,
        body.reason,
    )


@router.get("/swaps/available-targets/{duty_id}")
def available_targets(duty_id: str, request: Request) -> list[AvailableTarget]:
    return _swaps(request).available_targets(duty_id)


@router.get("/swaps/my-requests/{doctor_id}")
def my_requests(doctor_id: str, request: Request) -> MyRequests:
    return MyRequests(**_swaps(request).my_requests(doctor_id))


@router.get("/swaps/all")
def all_swaps(
    request: Request, status: SwapStatus | None = None
) -> list[SwapRequest]:
    return _swaps(request).all_requests(status)


@router.get("/swaps/{swap_id}")
def get_swap(swap_id: str, request: Request) -> SwapRequest:
    return _swaps(request).get(swap_id)


@router.post("/swaps/{swap_id}/approve")
def approve_swap(
    swap_id: str, body: AdminDecision, request: Request
) -> SwapRequest:
    return _swaps(request).approve(swap_id, body.notes)


@router.post("/swaps/{swap_id}/reject")
def reject_swap(
    swap_id: str, body: AdminDecision, request: Request
) -> SwapRequest:
    return _swaps(request).reject(swap_id, body.notes)


@router.post("/swaps/{swap_id}/accept")
def accept_swap(swap_id: str, body: DoctorAction, request: Request) -> SwapRequest:
    return _swaps(request).accept(swap_id, body.doctor_id)


@router.post("/swaps/{swap_id}/decline")
def decline_swap(
    swap_id: str, body: DoctorAction, request: Request
) -> SwapRequest:
    return _swaps(request).decline(swap_id, body.doctor_id, body.reason)


@router.post("/swaps/{swap_id}/cancel")
def cancel_swap(swap_id: str, body: DoctorAction, request: Request) -> SwapRequest:
    return _swaps(request).cancel(swap_id, body.doctor_id)


async def roster_error_handler(request: Request, exc: RosterError) -> JSONResponse:
    status_code = ROSTER_ERRORS.get(type(exc), 400)
    logger.info(f"{request.method} {request.url.path} -> {status_code} {exc.code}")
    return JSONResponse(
        status_code=status_code,
        content={"error": exc.code, "detail": exc.message},
    )


def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or get_settings()

    app = FastAPI(title="ER Roster Coordination")
    db: InMemoryKeyValueDatabase[str, Record] = InMemoryKeyValueDatabase()
    store = RosterStore(db)
    locks = KeyedLocks()

    app.state.settings = settings
    app.state.database = db
    app.state.store = store
    app.state.now_fn = lambda: datetime.now(UTC)

    # read app.state.now_fn on every call so tests can swap the clock
    def now() -> datetime:
        return app.state.now_fn()

    app.state.leave_ledger = LeaveLedger(store, settings, locks, now)
    app.state.swap_coordinator = SwapCoordinator(store, settings, locks, now)

    app.add_exception_handler(RosterError, roster_error_handler)
    app.include_router(router)
    return app
