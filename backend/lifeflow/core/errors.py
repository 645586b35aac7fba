"""Error Hierarchy — typed, categorized exceptions for all LifeFlow failure modes.

Invariants:
    - Every error has a code (str), category (ErrorCategory), severity (ErrorSeverity)
    - Domain errors (400-level) are caller mistakes; infrastructure errors (500-level) are not
    - to_response() produces the REST envelope
    - Collaborator exceptions never escape DownstreamGateway: they become DownstreamUnavailableError
    - EventPublishError never escapes RequestLifecycle: publish failures are logged, not raised

Design Decisions:
    - Single hierarchy with LifeFlowError base: FastAPI global handler catches all
    - ErrorContext as dataclass: rich observability without coupling to logging framework
    - Expiry is a state change (EXPIRED + RequestExpired event), not an exception
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any
from datetime import datetime, timezone


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
    request_id: str | None = None
    response_id: str | None = None
    collaborator: str | None = None
    debug_info: dict[str, Any] | None = None
    retry_after_ms: int | None = None


class LifeFlowError(Exception):
    """Base exception for all LifeFlow errors."""

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
                "message": self.message,
                "category": self.category.value,
                "severity": self.severity.value,
                "timestamp": self.context.timestamp.isoformat(),
                "context": {
                    "request_id": self.context.request_id,
                    "response_id": self.context.response_id,
                    "collaborator": self.context.collaborator,
                    "retry_after_ms": self.context.retry_after_ms,
                },
            }
        }


# ─── Domain Errors (400-level) ──────────────────────────────────

class ValidationError(LifeFlowError):
    """Malformed input rejected before any state mutation. Never retried."""
    def __init__(self, message: str, field: str, context: ErrorContext | None = None):
        super().__init__(
            message, "VALIDATION_ERROR", ErrorCategory.VALIDATION,
            ErrorSeverity.ERROR, context, 400,
        )
        self.field = field


class ResourceNotFoundError(LifeFlowError):
    """Requested resource does not exist."""
    def __init__(
        self, resource_type: str, resource_id: str, context: ErrorContext | None = None,
    ):
        super().__init__(
            f"{resource_type} '{resource_id}' not found",
            "RESOURCE_NOT_FOUND", ErrorCategory.RESOURCE_NOT_FOUND,
            ErrorSeverity.ERROR, context, 404,
        )
        self.resource_type = resource_type
        self.resource_id = resource_id


class InvalidStateTransitionError(LifeFlowError):
    """Transition attempted from a terminal state or onto an incompatible state."""
    def __init__(
        self,
        entity_id: str,
        current: str,
        target: str,
        reason: str | None = None,
        context: ErrorContext | None = None,
    ):
        message = f"Cannot move '{entity_id}' from {current} to {target}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(
            message, "INVALID_STATE_TRANSITION", ErrorCategory.BUSINESS_RULE,
            ErrorSeverity.WARNING, context, 409,
        )
        self.entity_id = entity_id
        self.current = current
        self.target = target


class CollaboratorInputError(LifeFlowError):
    """Collaborator rejected our input (HTTP 4xx). Not retried, not a breaker failure."""
    def __init__(self, collaborator: str, message: str, context: ErrorContext | None = None):
        ctx = context or ErrorContext()
        ctx.collaborator = collaborator
        super().__init__(
            f"{collaborator} rejected input: {message}",
            "COLLABORATOR_INPUT_REJECTED", ErrorCategory.VALIDATION,
            ErrorSeverity.ERROR, ctx, 400,
        )
        self.collaborator = collaborator


# ─── Infrastructure Errors (500-level) ──────────────────────────

class DownstreamUnavailableError(LifeFlowError):
    """Breaker open, input rejected, or call failed after retries."""
    def __init__(
        self,
        collaborator: str,
        reason: str,
        retry_after_ms: int | None = None,
        context: ErrorContext | None = None,
        code: str = "DOWNSTREAM_UNAVAILABLE",
        category: ErrorCategory = ErrorCategory.EXTERNAL_API,
    ):
        ctx = context or ErrorContext()
        ctx.collaborator = collaborator
        ctx.retry_after_ms = retry_after_ms
        super().__init__(
            f"Downstream '{collaborator}' unavailable: {reason}",
            code, category, ErrorSeverity.WARNING, ctx, 503,
        )
        self.collaborator = collaborator
        self.reason = reason


class DownstreamTimeoutError(DownstreamUnavailableError):
    """Final attempt exceeded the per-call timeout."""
    def __init__(
        self, collaborator: str, timeout_seconds: float, context: ErrorContext | None = None,
    ):
        super().__init__(
            collaborator,
            f"timed out after {timeout_seconds}s",
            context=context,
            code="DOWNSTREAM_TIMEOUT",
            category=ErrorCategory.TIMEOUT,
        )
        self.timeout_seconds = timeout_seconds


class EventPublishError(LifeFlowError):
    """Event could not be handed to the bus."""
    def __init__(self, topic: str, message: str, context: ErrorContext | None = None):
        super().__init__(
            f"Failed to publish to {topic}: {message}",
            "EVENT_PUBLISH_FAILED", ErrorCategory.INTERNAL,
            ErrorSeverity.ERROR, context, 500,
        )
        self.topic = topic


class DatabaseError(LifeFlowError):
    """Database operation failed."""
    def __init__(self, message: str, operation: str, context: ErrorContext | None = None):
        super().__init__(
            f"Database {operation} failed: {message}",
            "DATABASE_ERROR", ErrorCategory.DATABASE,
            ErrorSeverity.CRITICAL, context, 503,
        )
        self.operation = operation


class ConcurrencyError(LifeFlowError):
    """Concurrent modification detected (stale version on update)."""
    def __init__(self, message: str, context: ErrorContext | None = None):
        super().__init__(
            message, "CONCURRENCY_CONFLICT", ErrorCategory.CONFLICT,
            ErrorSeverity.ERROR, context, 409,
        )
