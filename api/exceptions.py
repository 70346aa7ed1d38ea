"""Standard exception classes for the API.

All custom exceptions inherit from SeatpoolException and include:
- message: Human-readable error message
- error_code: Machine-readable error code (e.g., "POOL_FULL")
- details: Optional dictionary with additional context

Services raise these directly; api.error_handlers turns them into JSON.
"""

from typing import Any, Optional
from uuid import UUID


class SeatpoolException(Exception):
    """Base exception for all seat pool API errors.

    Attributes:
        message: Human-readable error message
        error_code: Machine-readable error code for client handling
        details: Optional dictionary with additional error context
        status_code: HTTP status code (set by subclasses)
    """

    status_code: int = 500
    default_error_code: str = "INTERNAL_ERROR"

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        error_code: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ):
        self.message = message
        self.error_code = error_code or self.default_error_code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for JSON response."""
        result = {
            "code": self.error_code,
            "message": self.message,
        }
        if self.details:
            result["details"] = self.details
        return result


class NotFoundError(SeatpoolException):
    """Resource not found (HTTP 404).

    Never retried automatically.
    """

    status_code = 404
    default_error_code = "NOT_FOUND"

    def __init__(
        self,
        message: str = "Resource not found",
        error_code: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ):
        super().__init__(message, error_code, details)


class ValidationError(SeatpoolException):
    """Request validation failed (HTTP 400).

    Raised at the boundary before any mutation.
    """

    status_code = 400
    default_error_code = "VALIDATION_ERROR"

    def __init__(
        self,
        message: str = "Validation failed",
        error_code: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ):
        super().__init__(message, error_code, details)


class ConflictError(SeatpoolException):
    """Request conflicts with current state (HTTP 409)."""

    status_code = 409
    default_error_code = "CONFLICT"

    def __init__(
        self,
        message: str = "Resource conflict",
        error_code: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ):
        super().__init__(message, error_code, details)


# =============================================================================
# Not found
# =============================================================================


class PoolNotFound(NotFoundError):
    default_error_code = "POOL_NOT_FOUND"

    def __init__(self, pool_id: UUID):
        self.pool_id = pool_id
        super().__init__(f"Pool {pool_id} not found", details={"pool_id": str(pool_id)})


class SeatNotFound(NotFoundError):
    default_error_code = "SEAT_NOT_FOUND"

    def __init__(self, seat_id: UUID):
        self.seat_id = seat_id
        super().__init__(f"Seat {seat_id} not found", details={"seat_id": str(seat_id)})


class SubscriptionNotFound(NotFoundError):
    default_error_code = "SUBSCRIPTION_NOT_FOUND"

    def __init__(self, subscription_id: UUID):
        self.subscription_id = subscription_id
        super().__init__(
            f"Subscription {subscription_id} not found",
            details={"subscription_id": str(subscription_id)},
        )


# =============================================================================
# Seat allocation
# =============================================================================


class PoolFull(ConflictError):
    """No available seat left in the pool. Expected business condition."""

    default_error_code = "POOL_FULL"

    def __init__(self, pool_id: UUID):
        self.pool_id = pool_id
        super().__init__(
            f"No available seats in pool {pool_id}",
            details={"pool_id": str(pool_id)},
        )


class InsufficientFreeSeats(ConflictError):
    """A shrink would have to evict assigned seats."""

    default_error_code = "INSUFFICIENT_FREE_SEATS"

    def __init__(self, pool_id: UUID, requested: int, assigned: int, removable: int):
        self.pool_id = pool_id
        self.requested = requested
        self.assigned = assigned
        self.removable = removable
        super().__init__(
            f"Cannot shrink pool {pool_id} to {requested} seats: "
            f"{assigned} assigned, only {removable} free seats removable",
            details={
                "pool_id": str(pool_id),
                "requested_max_seats": requested,
                "assigned_seats": assigned,
                "removable_seats": removable,
            },
        )


class SeatAlreadyAssigned(ConflictError):
    """Double-assign attempt. The caller must release the seat first."""

    default_error_code = "SEAT_ALREADY_ASSIGNED"

    def __init__(self, seat_id: UUID, seat_status: str):
        self.seat_id = seat_id
        self.seat_status = seat_status
        super().__init__(
            f"Seat {seat_id} is {seat_status}, not available",
            details={"seat_id": str(seat_id), "seat_status": seat_status},
        )


# =============================================================================
# Lifecycle
# =============================================================================


class InvalidState(ConflictError):
    """Operation not valid from the subscription's current status."""

    default_error_code = "INVALID_STATE"

    def __init__(
        self,
        message: str,
        current_status: str,
        allowed: Optional[list[str]] = None,
        error_code: Optional[str] = None,
    ):
        self.current_status = current_status
        details: dict[str, Any] = {"current_status": current_status}
        if allowed is not None:
            details["allowed_statuses"] = allowed
        super().__init__(message, error_code, details)


class PoolOverrideActive(InvalidState):
    """Custom renewal date rejected: a live pool pins the renewal date."""

    default_error_code = "POOL_OVERRIDE_ACTIVE"

    def __init__(self, subscription_id: UUID, pool_id: UUID, current_status: str):
        super().__init__(
            f"Subscription {subscription_id} follows live pool {pool_id}; "
            "its renewal date cannot be overridden",
            current_status=current_status,
        )
        self.details["pool_id"] = str(pool_id)


class InvalidDateRange(ValidationError):
    default_error_code = "INVALID_DATE_RANGE"


# =============================================================================
# Integrity
# =============================================================================


class IntegrityViolation(SeatpoolException):
    """Stored state broke an invariant. Requires manual reconciliation."""

    status_code = 500
    default_error_code = "INTEGRITY_VIOLATION"
