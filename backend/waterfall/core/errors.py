"""Error Hierarchy — typed, categorized exceptions for all waitlist failure modes.

Invariants:
    - Every error has a code (str), category (ErrorCategory), severity (ErrorSeverity)
    - Domain errors (400-level) are recoverable; infrastructure errors (500-level) are critical
    - TransientContentionError always carries retry_after_ms (callers retry with backoff)
    - to_response() produces the REST envelope
    - No internal details leaked in user-facing messages

Design Decisions:
    - Single hierarchy with WaitlistError base: FastAPI global handler catches all (ADR: uniform error shape)
    - ErrorContext as dataclass: rich observability without coupling to logging framework
    - No error is fatal to the process; the kill switch is the only intentional full stop
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


class ErrorSeverity(str, Enum):
    """Error severity for observability and client handling."""
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class ErrorCategory(str, Enum):
    """High-level error categories for routing and handling."""
    VALIDATION = "validation"
    BUSINESS_RULE = "business_rule"
    RESOURCE_NOT_FOUND = "resource_not_found"
    DATABASE = "database"
    EXTERNAL_API = "external_api"
    INTERNAL = "internal"
    CONFLICT = "conflict"
    TIMEOUT = "timeout"


@dataclass
class ErrorContext:
    """Rich context for error observability and debugging."""
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    cycle_id: str | None = None
    registrant_id: str | None = None
    identity: str | None = None
    user_message: str | None = None
    debug_info: dict[str, Any] | None = None
    retry_after_ms: int | None = None


class WaitlistError(Exception):
    """Base exception for all waitlist errors."""

    def __init__(
        self,
        message: str,
        code: str,
        category: ErrorCategory,
        severity: ErrorSeverity = ErrorSeverity.ERROR,
        context: ErrorContext | None = None,
        http_status: int = 500,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.category = category
        self.severity = severity
        self.context = context or ErrorContext()
        self.http_status = http_status

    def to_response(self) -> dict:
        """Convert to standardized REST error response."""
        return {
            "error": {
                "code": self.code,
                "message": self.context.user_message or self.message,
                "category": self.category.value,
                "severity": self.severity.value,
                "timestamp": self.context.timestamp.isoformat(),
                "context": {
                    "cycle_id": self.context.cycle_id,
                    "registrant_id": self.context.registrant_id,
                    "retry_after_ms": self.context.retry_after_ms,
                },
            }
        }


# ─── Domain Errors (400-level) ──────────────────────────────────

class CycleValidationError(WaitlistError):
    """Cycle definition is inconsistent (dates, capacity, time zone)."""
    def __init__(self, message: str, field: str, context: ErrorContext | None = None):
        super().__init__(
            message, "VALIDATION_ERROR", ErrorCategory.VALIDATION,
            ErrorSeverity.ERROR, context, 400,
        )
        self.field = field


class DuplicateRegistrationError(WaitlistError):
    """Identity already holds a registrant in this cycle."""
    def __init__(
        self, identity: str, cycle_id: str, context: ErrorContext | None = None,
    ):
        ctx = context or ErrorContext()
        ctx.cycle_id = ctx.cycle_id or cycle_id
        ctx.identity = ctx.identity or identity
        super().__init__(
            f"Identity '{identity}' is already registered for cycle '{cycle_id}'",
            "DUPLICATE_REGISTRATION", ErrorCategory.CONFLICT,
            ErrorSeverity.ERROR, ctx, 409,
        )
        self.identity = identity


class InvalidTransitionError(WaitlistError):
    """State machine guard failed — nothing was changed."""
    def __init__(
        self,
        current: str,
        trigger: str,
        reason: str,
        context: ErrorContext | None = None,
    ):
        super().__init__(
            f"Cannot apply '{trigger}' to a registrant in '{current}': {reason}",
            "INVALID_TRANSITION", ErrorCategory.BUSINESS_RULE,
            ErrorSeverity.ERROR, context, 409,
        )
        self.current = current
        self.trigger = trigger
        self.reason = reason


class RegistrationClosedError(WaitlistError):
    """Registration window is not open for this cycle."""
    def __init__(self, cycle_id: str, context: ErrorContext | None = None):
        ctx = context or ErrorContext()
        ctx.cycle_id = ctx.cycle_id or cycle_id
        super().__init__(
            "Registration is not open for this cycle",
            "REGISTRATION_CLOSED", ErrorCategory.BUSINESS_RULE,
            ErrorSeverity.WARNING, ctx, 400,
        )


class PastCutoffError(WaitlistError):
    """Cycle cutoff has passed — no automated promotion or new invitations."""
    def __init__(self, cycle_id: str, context: ErrorContext | None = None):
        ctx = context or ErrorContext()
        ctx.cycle_id = ctx.cycle_id or cycle_id
        super().__init__(
            "The cutoff for this cycle has passed",
            "PAST_CUTOFF", ErrorCategory.BUSINESS_RULE,
            ErrorSeverity.WARNING, ctx, 400,
        )


class AlreadyRolledOutError(WaitlistError):
    """Rollout was already performed for this cycle."""
    def __init__(self, cycle_id: str, context: ErrorContext | None = None):
        ctx = context or ErrorContext()
        ctx.cycle_id = ctx.cycle_id or cycle_id
        super().__init__(
            "This cycle has already been rolled out",
            "ALREADY_ROLLED_OUT", ErrorCategory.CONFLICT,
            ErrorSeverity.INFO, ctx, 409,
        )


class CycleNotActiveError(WaitlistError):
    """Operation not allowed in the cycle's current lifecycle status."""
    def __init__(
        self, cycle_id: str, status: str, operation: str,
        context: ErrorContext | None = None,
    ):
        ctx = context or ErrorContext()
        ctx.cycle_id = ctx.cycle_id or cycle_id
        super().__init__(
            f"Cannot {operation} while cycle is '{status}'",
            "CYCLE_NOT_ACTIVE", ErrorCategory.BUSINESS_RULE,
            ErrorSeverity.ERROR, ctx, 409,
        )
        self.status = status
        self.operation = operation


class AutomationDisabledError(WaitlistError):
    """Kill switch is engaged; automated promotion requests are refused."""
    def __init__(self, cycle_id: str, context: ErrorContext | None = None):
        ctx = context or ErrorContext()
        ctx.cycle_id = ctx.cycle_id or cycle_id
        super().__init__(
            "Automation is disabled for this cycle",
            "AUTOMATION_DISABLED", ErrorCategory.BUSINESS_RULE,
            ErrorSeverity.WARNING, ctx, 409,
        )


class ResourceNotFoundError(WaitlistError):
    """Requested resource does not exist."""
    def __init__(
        self, resource_type: str, resource_id: str, context: ErrorContext | None = None,
    ):
        super().__init__(
            f"{resource_type} '{resource_id}' not found",
            "RESOURCE_NOT_FOUND", ErrorCategory.RESOURCE_NOT_FOUND,
            ErrorSeverity.ERROR, context, 404,
        )


# ─── Infrastructure Errors (500-level) ──────────────────────────

class TransientContentionError(WaitlistError):
    """Per-cycle lock retry budget exhausted. Retry with backoff, never drop."""
    def __init__(
        self,
        cycle_id: str,
        attempts: int,
        retry_after_ms: int,
        context: ErrorContext | None = None,
    ):
        ctx = context or ErrorContext()
        ctx.cycle_id = ctx.cycle_id or cycle_id
        ctx.retry_after_ms = retry_after_ms
        ctx.user_message = ctx.user_message or "The waitlist is busy, please retry shortly"
        super().__init__(
            f"Cycle '{cycle_id}' lock not acquired after {attempts} attempt(s)",
            "TRANSIENT_CONTENTION", ErrorCategory.CONFLICT,
            ErrorSeverity.WARNING, ctx, 503,
        )
        self.attempts = attempts


class DatabaseError(WaitlistError):
    """Database operation failed."""
    def __init__(self, message: str, operation: str, context: ErrorContext | None = None):
        super().__init__(
            f"Database {operation} failed: {message}",
            "DATABASE_ERROR", ErrorCategory.DATABASE,
            ErrorSeverity.CRITICAL, context, 503,
        )
        self.operation = operation


class NotificationDeliveryError(WaitlistError):
    """Notification sink rejected or failed to receive an event."""
    def __init__(
        self, message: str, status_code: int | None = None,
        context: ErrorContext | None = None,
    ):
        super().__init__(
            f"Notification delivery failed: {message}",
            "NOTIFICATION_DELIVERY_FAILED", ErrorCategory.EXTERNAL_API,
            ErrorSeverity.ERROR, context, 502,
        )
        self.status_code = status_code
