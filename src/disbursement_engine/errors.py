"""Error taxonomy for the disbursement engine."""

from __future__ import annotations

from typing import Any


class DisbursementError(Exception):
    """Base class for all engine errors."""


class ValidationError(DisbursementError):
    """Bad caller input. Never retried."""


class NotFoundError(DisbursementError):
    """Unknown batch, item or recipient id."""

    def __init__(self, entity: str, entity_id: Any):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} {entity_id} not found")


class AuthError(DisbursementError):
    """Gateway rejected our credentials.

    Recovered only through re-authentication, never through job retry.
    """


class GatewayError(DisbursementError):
    """Transport failure or non-success response from the gateway."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        payload: Any = None,
    ):
        self.status_code = status_code
        self.payload = payload
        super().__init__(message)


class AlreadyFinalizedError(DisbursementError):
    """Attempted mutation of an item already in a terminal state.

    Indicates a benign race with another writer; callers treat it as a no-op.
    """

    def __init__(self, item_id: int, status: str):
        self.item_id = item_id
        self.status = status
        super().__init__(f"Item {item_id} already finalized ({status})")


class InvalidTransitionError(DisbursementError):
    """Raised when an invalid state transition is attempted."""

    def __init__(self, from_status: str, to_status: str, reason: str | None = None):
        self.from_status = from_status
        self.to_status = to_status
        self.reason = reason
        msg = f"Invalid transition from '{from_status}' to '{to_status}'"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)
