"""Exceptions raised by the reconciliation engine."""

from typing import List, Optional

from .models import RowError


class ReconciliationError(Exception):
    """Base class for reconciliation failures."""
    pass


class StatementValidationError(ReconciliationError):
    """The uploaded statement contained no usable transaction."""

    def __init__(self, message: str, errors: Optional[List[RowError]] = None):
        super().__init__(message)
        self.errors = errors or []


class StateTransitionError(ReconciliationError):
    """A lifecycle operation was rejected because a precondition does not hold."""

    def __init__(self, mutation_id: str, state: str, reason: str):
        super().__init__(reason)
        self.mutation_id = mutation_id
        self.state = state
        self.reason = reason


class MutationNotFoundError(ReconciliationError):
    def __init__(self, mutation_id: str):
        super().__init__(f"Bank mutation not found: {mutation_id}")
        self.mutation_id = mutation_id


class ResidentNotFoundError(ReconciliationError):
    def __init__(self, resident_id: str):
        super().__init__(f"Resident not found: {resident_id}")
        self.resident_id = resident_id


class PaymentNotFoundError(ReconciliationError):
    def __init__(self, payment_id: str):
        super().__init__(f"Payment not found: {payment_id}")
        self.payment_id = payment_id


class PersistenceError(ReconciliationError):
    """A storage failure interrupted an operation; nothing was committed."""
    pass


class ExternalMatchError(ReconciliationError):
    """The external scoring service failed or answered with an error status."""
    pass
