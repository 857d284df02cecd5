"""
Error kinds raised by the event directory and capacity ledger.

All of them are expected outcomes that callers can act on; the HTTP layer maps
``status_code`` straight onto the response.
"""


class RegistryError(Exception):
    code = "INTERNAL_ERROR"
    status_code = 500

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class NotFoundError(RegistryError):
    code = "NOT_FOUND"
    status_code = 404


class ValidationFailedError(RegistryError):
    code = "VALIDATION_FAILED"
    status_code = 400


class EventNotUpcomingError(RegistryError):
    code = "EVENT_NOT_UPCOMING"
    status_code = 400


class CapacityExceededError(RegistryError):
    code = "CAPACITY_EXCEEDED"
    status_code = 400


class DuplicateRegistrationError(RegistryError):
    code = "DUPLICATE_REGISTRATION"
    status_code = 409


class InternalError(RegistryError):
    """Storage failures and anything else not explained by the kinds above."""


class LedgerBusyError(InternalError):
    code = "LEDGER_BUSY"
    status_code = 503
