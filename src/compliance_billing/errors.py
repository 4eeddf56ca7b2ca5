"""Domain error taxonomy for the billing workflow engine."""

from __future__ import annotations

from typing import Any
from uuid import UUID


class BillingEngineError(Exception):
    """Base class for all domain errors."""

    code = "ENGINE_ERROR"


class ValidationError(BillingEngineError):
    """Raised when input is malformed. Never retried."""

    code = "VALIDATION_ERROR"

    def __init__(self, message: str, field: str | None = None):
        self.field = field
        super().__init__(message)


class NotFoundError(BillingEngineError):
    """Raised when an entity does not exist or is outside the caller's firm."""

    code = "NOT_FOUND"

    def __init__(self, entity: str, entity_id: UUID | str):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} {entity_id} not found")


class InvalidTransitionError(BillingEngineError):
    """Raised when an invalid state transition is attempted."""

    code = "INVALID_TRANSITION"

    def __init__(self, from_status: str, to_status: str, reason: str | None = None):
        self.from_status = from_status
        self.to_status = to_status
        self.reason = reason
        msg = f"Invalid transition from '{from_status}' to '{to_status}'"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class ConcurrencyConflict(BillingEngineError):
    """Raised when a versioned write lost a race with another writer."""

    code = "CONCURRENCY_CONFLICT"

    def __init__(self, entity: str, entity_id: UUID | str, detail: Any = None):
        self.entity = entity
        self.entity_id = entity_id
        self.detail = detail
        super().__init__(f"{entity} {entity_id} was modified concurrently")


class GatewayError(BillingEngineError):
    """Raised by a payment link provider when the gateway rejects a request."""

    code = "GATEWAY_ERROR"

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)


class GatewayTimeoutError(GatewayError):
    """Raised when a gateway call exceeds its deadline."""

    code = "GATEWAY_TIMEOUT"
