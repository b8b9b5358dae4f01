import logging
import uuid
from collections.abc import Callable
from datetime import datetime

from roster.config import Settings
from roster.conflicts import exchange_conflicts, is_duty_eligible_for_swap
from roster.errors import (
    DuplicateSwapRequest,
    DutyNotEligible,
    DutyNotOwned,
    InvalidTransition,
    NotFound,
    NotPermitted,
    StaleSwapState,
    ValidationFailed,
    WouldCreateDoubleBooking,
)
from roster.locks import KeyedLocks, doctor_key, duty_key, swap_key
from roster.models import (
    SWAP_TRANSITIONS,
    AvailableTarget,
    DutyAssignment,
    SwapRequest,
    SwapStatus,
)
from roster.store import RosterStore

logger = logging.getLogger(__name__)

NowFn = Callable[[], datetime]


class SwapCoordinator:
    """
    Duty swap requests and the two-sided duty exchange.

    A pending request ends in exactly one of: approved or rejected (admin),
    accepted or declined (target doctor), cancelled (requestor). Approved
    and accepted both exchange the two duties' doctors; if the roster moved
    since the proposal the commit raises StaleSwapState and the request
    stays pending.
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

    def _require(self, request_id: str) -> SwapRequest:
        swap = self.store.get_swap(request_id)
        if swap is None:
            raise NotFound(f"Swap request {request_id} not found")
        return swap

    def _transition(
        self, swap: SwapRequest, status: SwapStatus, **changes
    ) -> SwapRequest:
        if status not in SWAP_TRANSITIONS[swap.status]:
            raise InvalidTransition(
                f"Swap request {swap.id} is {swap.status}, cannot become {status}"
            )
        return swap.model_copy(
            update={"status": status, "updated_at": self.now_fn(), **changes}
        )

    def _eligible(self, duty: DutyAssignment) -> bool:
        return is_duty_eligible_for_swap(duty, self.now_fn(), self.settings)

    def _pending_duty_ids(self) -> set[str]:
        return {
            duty_id
            for s in self.store.list_swaps()
            if s.status == SwapStatus.PENDING
            for duty_id in (s.requestor_duty_id, s.target_duty_id)
        }

    # proposal

    def propose(
        self,
        requestor_id: str,
        requestor_duty_id: str,
        target_id: str,
        target_duty_id: str,
        reason: str = "",
    ) -> SwapRequest:
        if requestor_id == target_id:
            raise ValidationFailed("A doctor cannot swap with themselves")

        with self.locks.hold(
            duty_key(requestor_duty_id),
            duty_key(target_duty_id),
            doctor_key(requestor_id),
            doctor_key(target_id),
        ):
            offered = self.store.require_duty(requestor_duty_id)
            wanted = self.store.require_duty(target_duty_id)

            if offered.doctor_id != requestor_id:
                raise DutyNotOwned(
                    f"Duty {offered.id} does not belong to {requestor_id}"
                )
            if wanted.doctor_id != target_id:
                raise DutyNotOwned(
                    f"Duty {wanted.id} does not belong to {target_id}"
                )
            for duty in (offered, wanted):
                if not self._eligible(duty):
                    raise DutyNotEligible(
                        f"The {duty.shift} shift on {duty.date.isoformat()} "
                        "has already started"
                    )

            reasons = exchange_conflicts(
                self.store, offered, wanted, self.settings
            )
            if reasons:
                raise WouldCreateDoubleBooking("; ".join(reasons))

            busy = self._pending_duty_ids() & {offered.id, wanted.id}
            if busy:
                raise DuplicateSwapRequest(
                    f"Duty {sorted(busy)[0]} is already part of a pending swap"
                )

            swap = SwapRequest(
                id=uuid.uuid4().hex,
                requestor_id=requestor_id,
                requestor_duty_id=offered.id,
                target_id=target_id,
                target_duty_id=wanted.id,
                reason=reason,
                created_at=self.now_fn(),
            )
            self.store.put_swap(swap)

        logger.info(
            f"Swap proposed: {swap.id} {requestor_id}:{offered.id} <-> "
            f"{target_id}:{wanted.id}"
        )
        return swap

    def available_targets(self, duty_id: str) -> list[AvailableTarget]:
        """
        Every other doctor holding at least one duty they could trade for
        `duty_id` without double-booking either side.
        """
        offered = self.store.require_duty(duty_id)
        if not self._eligible(offered):
            return []

        pending = self._pending_duty_ids()
        if offered.id in pending:
            return []

        targets = []
        for doctor in self.store.list_doctors():
            if doctor.id == offered.doctor_id:
                continue
            duties = [
                duty
                for duty in self.store.list_duties_for_doctor(doctor.id)
                if duty.id not in pending
                and self._eligible(duty)
                and not exchange_conflicts(
                    self.store, offered, duty, self.settings
                )
            ]
            if duties:
                targets.append(
                    AvailableTarget(doctor=doctor, available_duties=duties)
                )
        return targets

    # resolution

    def _commit_exchange(
        self,
        request_id: str,
        status: SwapStatus,
        actor: str | None = None,
        **changes,
    ) -> SwapRequest:
        swap = self._require(request_id)
        with self.locks.hold(
            swap_key(swap.id),
            duty_key(swap.requestor_duty_id),
            duty_key(swap.target_duty_id),
            doctor_key(swap.requestor_id),
            doctor_key(swap.target_id),
        ):
            swap = self._require(request_id)
            done = self._transition(swap, status, **changes)
            if status == SwapStatus.ACCEPTED and actor != swap.target_id:
                raise NotPermitted(
                    f"Only {swap.target_id} can accept swap {swap.id}"
                )

            offered = self.store.get_duty(swap.requestor_duty_id)
            wanted = self.store.get_duty(swap.target_duty_id)
            problems = []
            if offered is None or wanted is None:
                problems.append("one of the duties no longer exists")
            else:
                if offered.doctor_id != swap.requestor_id:
                    problems.append(f"duty {offered.id} changed hands")
                if wanted.doctor_id != swap.target_id:
                    problems.append(f"duty {wanted.id} changed hands")
                for duty in (offered, wanted):
                    if not self._eligible(duty):
                        problems.append(f"duty {duty.id} has already started")
                if not problems:
                    problems += exchange_conflicts(
                        self.store, offered, wanted, self.settings
                    )

            if problems:
                logger.warning(
                    f"Swap commit aborted: {swap.id} {'; '.join(problems)}"
                )
                raise StaleSwapState(
                    f"Swap {swap.id} can no longer be applied: "
                    + "; ".join(problems)
                )

            self.store.exchange_duties(offered, wanted, done)

        logger.info(
            f"Swap {status}: {swap.id} {swap.requestor_id} now holds "
            f"{wanted.id}, {swap.target_id} now holds {offered.id}"
        )
        return done

    def _close(
        self, request_id: str, status: SwapStatus, actor: str | None, **changes
    ) -> SwapRequest:
        with self.locks.hold(swap_key(request_id)):
            swap = self._require(request_id)
            closed = self._transition(swap, status, **changes)
            if status == SwapStatus.DECLINED and actor != swap.target_id:
                raise NotPermitted(
                    f"Only {swap.target_id} can decline swap {swap.id}"
                )
            if status == SwapStatus.CANCELLED and actor != swap.requestor_id:
                raise NotPermitted(
                    f"Only {swap.requestor_id} can cancel swap {swap.id}"
                )
            self.store.put_swap(closed)
        logger.info(f"Swap {status}: {request_id}")
        return closed

    def approve(
        self, request_id: str, admin_notes: str | None = None
    ) -> SwapRequest:
        return self._commit_exchange(
            request_id, SwapStatus.APPROVED, admin_notes=admin_notes
        )

    def reject(self, request_id: str, reason: str | None = None) -> SwapRequest:
        return self._close(
            request_id, SwapStatus.REJECTED, None, admin_notes=reason
        )

    def accept(self, request_id: str, by_doctor_id: str) -> SwapRequest:
        return self._commit_exchange(
            request_id, SwapStatus.ACCEPTED, actor=by_doctor_id
        )

    def decline(
        self, request_id: str, by_doctor_id: str, reason: str | None = None
    ) -> SwapRequest:
        return self._close(
            request_id, SwapStatus.DECLINED, by_doctor_id, admin_notes=reason
        )

    def cancel(self, request_id: str, by_doctor_id: str) -> SwapRequest:
        return self._close(request_id, SwapStatus.CANCELLED, by_doctor_id)

    # read side

    def get(self, request_id: str) -> SwapRequest:
        return self._require(request_id)

    def my_requests(self, doctor_id: str) -> dict[str, list[SwapRequest]]:
        swaps = self.store.list_swaps()
        return {
            "sent": [s for s in swaps if s.requestor_id == doctor_id],
            "received": [s for s in swaps if s.target_id == doctor_id],
        }

    def all_requests(self, status: SwapStatus | None = None) -> list[SwapRequest]:
        return [
            s
            for s in self.store.list_swaps()
            if status is None or s.status == status
        ]

    def all_pending(self) -> list[SwapRequest]:
        return self.all_requests(SwapStatus.PENDING)
