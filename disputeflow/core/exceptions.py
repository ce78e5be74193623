"""Custom exceptions for DisputeFlow"""

from typing import Any


class AppException(Exception):
    """Base exception for application errors."""

    code: str = "app_error"

    def __init__(
        self,
        message: str,
        status_code: int = 500,
        details: dict[str, Any] | None = None,
    ):
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        super().__init__(self.message)


class NotFoundError(AppException):
    code = "not_found"

    def __init__(self, resource: str, identifier: str | None = None):
        message = f"{resource} not found"
        if identifier:
            message = f"{resource} with id '{identifier}' not found"
        super().__init__(message=message, status_code=404)


class ValidationError(AppException):
    code = "validation_error"

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message=message, status_code=422, details=details)


class AuthenticationError(AppException):
    code = "authentication_failed"

    def __init__(self, message: str = "Authentication failed"):
        super().__init__(message=message, status_code=401)


class AuthorizationError(AppException):
    code = "access_denied"

    def __init__(self, message: str = "Access denied"):
        super().__init__(message=message, status_code=403)


class ExternalServiceError(AppException):
    code = "external_service_error"

    def __init__(self, service: str, message: str):
        super().__init__(
            message=f"{service} error: {message}",
            status_code=502,
            details={"service": service},
        )


# ---------------------------------------------------------------------------
# Dispute validation errors: caller mistakes, nothing was mutated
# ---------------------------------------------------------------------------


class NotAParty(AuthorizationError):
    code = "not_a_party"

    def __init__(self, user_id: Any, dispute_id: Any):
        super().__init__(f"User {user_id} is not a party to dispute {dispute_id}")
        self.details = {"user_id": str(user_id), "dispute_id": str(dispute_id)}


class InvalidPercent(ValidationError):
    code = "invalid_percent"

    def __init__(self, value: Any):
        super().__init__(
            f"Percentage must be an integer between 0 and 100, got {value!r}",
            details={"value": repr(value)},
        )


class CannotAcceptOwnOffer(AppException):
    code = "cannot_accept_own_offer"

    def __init__(self, offer_id: Any):
        super().__init__(
            message="A party cannot accept their own offer",
            status_code=409,
            details={"offer_id": str(offer_id)},
        )


class StaleOffer(AppException):
    code = "stale_offer"

    def __init__(self, offer_id: Any, latest_offer_id: Any | None):
        super().__init__(
            message="Offer has been superseded by a newer offer",
            status_code=409,
            details={
                "offer_id": str(offer_id),
                "latest_offer_id": str(latest_offer_id) if latest_offer_id else None,
            },
        )


class DuplicateDispute(AppException):
    code = "duplicate_dispute"

    def __init__(self, booking_id: Any, dispute_id: Any):
        super().__init__(
            message=f"Booking {booking_id} already has an open dispute",
            status_code=409,
            details={"booking_id": str(booking_id), "dispute_id": str(dispute_id)},
        )


class InvalidBookingState(AppException):
    code = "invalid_booking_state"

    def __init__(self, booking_id: Any, status: str):
        super().__init__(
            message=f"Booking {booking_id} cannot be disputed while '{status}'",
            status_code=409,
            details={"booking_id": str(booking_id), "status": status},
        )


class EvidenceFrozen(AppException):
    code = "evidence_frozen"

    def __init__(self, evidence_id: Any):
        super().__init__(
            message="Evidence has already been submitted to the mediator and cannot be removed",
            status_code=409,
            details={"evidence_id": str(evidence_id)},
        )


# ---------------------------------------------------------------------------
# Phase errors: a race was lost, refetch and decide
# ---------------------------------------------------------------------------


class PhaseClosed(AppException):
    code = "phase_closed"

    def __init__(self, dispute_id: Any, phase: Any, reason: str = "operation not allowed in current phase"):
        phase_value = getattr(phase, "value", phase)
        super().__init__(
            message=f"Dispute {dispute_id} is in {phase_value}: {reason}",
            status_code=409,
            details={"dispute_id": str(dispute_id), "phase": phase_value},
        )


class StaleTransition(AppException):
    code = "stale_transition"

    def __init__(self, dispute_id: Any, expected: Any, actual: Any):
        super().__init__(
            message=f"Dispute {dispute_id} moved on while the mediator was working; retry",
            status_code=409,
            details={
                "dispute_id": str(dispute_id),
                "expected_phase": getattr(expected, "value", expected),
                "actual_phase": getattr(actual, "value", actual),
                "retryable": True,
            },
        )


class SettlementPending(AppException):
    code = "settlement_pending"

    def __init__(self, dispute_id: Any, pending: str):
        super().__init__(
            message=f"Dispute {dispute_id} has an unfinished settlement ({pending}); only that settlement can complete",
            status_code=409,
            details={"dispute_id": str(dispute_id), "pending_settlement": pending, "retryable": True},
        )


# ---------------------------------------------------------------------------
# Dependency errors: transient, dispute left unchanged, safe to retry
# ---------------------------------------------------------------------------


class DependencyError(AppException):
    code = "dependency_error"

    def __init__(self, service: str, message: str, status_code: int = 502):
        super().__init__(
            message=f"{service} error: {message}",
            status_code=status_code,
            details={"service": service, "retryable": True},
        )


class OracleUnavailable(DependencyError):
    code = "oracle_unavailable"

    def __init__(self, message: str = "mediator unavailable", status_code: int = 503):
        super().__init__("AI mediator", message, status_code=status_code)


class OracleTimeout(OracleUnavailable):
    code = "oracle_timeout"

    def __init__(self, timeout: float):
        super().__init__(f"no answer within {timeout:g}s", status_code=504)
        self.details["timeout_seconds"] = timeout


class InsufficientEscrow(DependencyError):
    code = "insufficient_escrow"

    def __init__(self, booking_id: Any, message: str = "insufficient funds held in escrow"):
        super().__init__("Escrow ledger", message, status_code=409)
        self.details["booking_id"] = str(booking_id)


class LedgerUnavailable(DependencyError):
    code = "ledger_unavailable"

    def __init__(self, message: str):
        super().__init__("Escrow ledger", message, status_code=503)


# ---------------------------------------------------------------------------
# Invariant violations: core bugs, never shown to callers as a 4xx
# ---------------------------------------------------------------------------


class InvariantViolation(RuntimeError):
    """Raised when a dispute invariant would be broken. Aborts the transaction."""


class IllegalPhaseTransition(InvariantViolation):
    pass


class PercentSumMismatch(InvariantViolation):
    pass


class DoubleTerminalTransition(InvariantViolation):
    pass
