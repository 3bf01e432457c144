"""
Domain error taxonomy.

Validation and conflict errors are recoverable: the conversation re-prompts or
offers an alternate path. External failures are retried through the inbound
event ledger. Invariant violations are rejected and never coerced.
"""


class AgendaError(Exception):
    """Base class for every domain error"""

    pass


class ValidationError(AgendaError):
    """Malformed input (date, time, CPF, email, ...)"""

    pass


class ConflictError(AgendaError):
    pass


class SlotTaken(ConflictError):
    """The requested slot is no longer free"""

    def __init__(self, date_str: str, time_str: str):
        self.date_str = date_str
        self.time_str = time_str
        super().__init__(f"Slot {date_str} {time_str} is no longer available")


class DuplicateInvoice(ConflictError):
    pass


class OverlappingRule(ConflictError):
    pass


class NotFoundError(AgendaError):
    pass


class ExternalServiceError(AgendaError):
    """A calendar, payment or messaging call failed or timed out"""

    def __init__(self, service: str, message: str, status_code: int = None):
        self.service = service
        self.status_code = status_code
        super().__init__(f"{service}: {message}")


class InvariantViolation(AgendaError):
    pass


class CannotCancelCompleted(InvariantViolation):
    pass


class NotCompleted(InvariantViolation):
    pass


class InvalidTransition(InvariantViolation):
    pass


class StaleConversationState(AgendaError):
    """Another message already moved the conversation forward"""

    pass
