class RosterError(Exception):
    """Base class for every rejected roster operation."""

    code = "roster_error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class NotFound(RosterError):
    """Raised when a duty, doctor, leave or swap id is unknown."""

    code = "not_found"


class InvalidTransition(RosterError):
    """Raised when a request is moved out of a state that does not allow it."""

    code = "invalid_transition"


class DutyNotOwned(RosterError):
    """Raised when a doctor offers or is asked for a duty they do not hold."""

    code = "duty_not_owned"


class DutyNotEligible(RosterError):
    """Raised when a duty's shift has already started or is in the past."""

    code = "duty_not_eligible"


class WouldCreateDoubleBooking(RosterError):
    """Raised when an exchange would give a doctor two overlapping duties."""

    code = "would_create_double_booking"


class ConcurrencyCapExceeded(RosterError):
    """Raised when approving leave would put too many doctors off on one day."""

    code = "concurrency_cap_exceeded"


class InsufficientBalance(RosterError):
    """Raised when annual leave asks for more days than remain."""

    code = "insufficient_balance"


class StaleSwapState(RosterError):
    """Raised when a swap commit finds the roster changed since it was proposed."""

    code = "stale_swap_state"


class ValidationFailed(RosterError):
    """Raised when request input is malformed, out of range or overlapping."""

    code = "validation_failed"


class NotPermitted(RosterError):
    """Raised when the acting doctor is not the party allowed to act."""

    code = "not_permitted"


class DuplicateSwapRequest(RosterError):
    """Raised when a duty is already part of another pending swap."""

    code = "duplicate_swap_request"


# Mapping of roster errors to HTTP status codes
ROSTER_ERRORS: dict[type[RosterError], int] = {
    NotFound: 404,
    InvalidTransition: 409,
    DutyNotOwned: 403,
    DutyNotEligible: 409,
    WouldCreateDoubleBooking: 409,
    ConcurrencyCapExceeded: 409,
    InsufficientBalance: 409,
    StaleSwapState: 409,
    ValidationFailed: 422,
    NotPermitted: 403,
    DuplicateSwapRequest: 409,
}
