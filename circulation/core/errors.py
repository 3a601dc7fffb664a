"""
Errores tipados del motor de circulación.

Cada error sabe si el cliente puede reintentar la operación y con qué código
HTTP lo traduce el adaptador FastAPI.
"""


class CirculationError(Exception):
    kind = "circulation_error"
    status_code = 400
    retryable = False

    def __init__(self, message: str | None = None, **context):
        self.message = message or self.__class__.__doc__ or self.kind
        self.context = context
        super().__init__(self.message)


class Conflict(CirculationError):
    """Another request modified the record first; retry."""

    kind = "conflict"
    status_code = 409
    retryable = True


class StoreUnavailable(CirculationError):
    """The ledger store did not answer in time."""

    kind = "store_unavailable"
    status_code = 503
    retryable = True


class NotFound(CirculationError):
    kind = "not_found"
    status_code = 404


class CopyUnavailable(CirculationError):
    """The copy cannot be lent right now."""

    kind = "copy_unavailable"
    status_code = 409


class MemberIneligible(CirculationError):
    kind = "member_ineligible"
    status_code = 422


class NotBorrowed(CirculationError):
    """The loan is not in borrowed or overdue status."""

    kind = "not_borrowed"
    status_code = 409


class RenewalNotAllowed(CirculationError):
    kind = "renewal_not_allowed"
    status_code = 409


class DuplicateReservation(CirculationError):
    """The member already has an active reservation for this book."""

    kind = "duplicate_reservation"
    status_code = 409


class InvalidTransition(CirculationError):
    kind = "invalid_transition"
    status_code = 409


class InvalidPayment(CirculationError):
    kind = "invalid_payment"
    status_code = 422
