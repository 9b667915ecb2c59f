"""
Error types raised by the ledgers and the workflow coordinator.

Every error here is recoverable: the caller decides whether to retry the
action. The HTTP layer maps each class to a status code.
"""
from typing import Optional


class RestaurantError(Exception):
    status_code = 400

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail


class ValidationFailed(RestaurantError):
    """Input rejected before any write was issued."""
    status_code = 422


class NotFound(RestaurantError):
    status_code = 404


class InvalidTransition(RestaurantError):
    """Order status change not allowed by the order lifecycle."""
    status_code = 409


class StoreWriteError(RestaurantError):
    """The document store rejected or failed a read or write."""
    status_code = 503


class PaymentFailed(RestaurantError):
    status_code = 402


class PartialFailure(RestaurantError):
    """A multi-step workflow finished its first step but not a later one."""
    status_code = 502

    def __init__(self, detail: str, completed_id: Optional[str] = None, pending_step: Optional[str] = None):
        super().__init__(detail)
        self.completed_id = completed_id
        self.pending_step = pending_step
