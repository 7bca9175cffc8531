"""
Typed scheduling errors plus error aggregation for unexpected failures.

Every failure the core can produce is a SchedulingError subclass with a stable
machine-readable ``code`` and the HTTP status the API layer maps it to.
"""
import hashlib
import time
from enum import Enum
from typing import Any, Dict, Optional

import structlog

logger = structlog.get_logger(__name__)


class SchedulingError(Exception):
    code = "scheduling_error"
    status_code = 400
    default_message = "Scheduling request failed"

    def __init__(self, message: Optional[str] = None, **details: Any):
        self.message = message or self.default_message
        self.details = details
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "message": self.message, "details": self.details}


# --- configuration / request ---

class ConfigNotFoundError(SchedulingError):
    code = "config_not_found"
    status_code = 404
    default_message = "Business configuration not found"


class InvalidConfigurationError(SchedulingError):
    code = "invalid_configuration"
    status_code = 422
    default_message = "Business configuration is invalid"


class InvalidRequestError(SchedulingError):
    code = "invalid_request"
    status_code = 422
    default_message = "Invalid scheduling request"


# --- timing policy ---

class PastDateError(SchedulingError):
    code = "past_date"
    status_code = 422
    default_message = "Cannot book appointments in the past"


class AdvanceWindowExceededError(SchedulingError):
    code = "advance_window_exceeded"
    status_code = 422
    default_message = "Appointment is too far in advance"


# --- assignment / availability ---

class StaffUnavailableError(SchedulingError):
    code = "staff_unavailable"
    status_code = 409
    default_message = "Selected staff member is not available"


class ResourceUnavailableError(SchedulingError):
    code = "resource_unavailable"
    status_code = 409
    default_message = "Selected resource is not available"


class NoAvailabilityError(SchedulingError):
    code = "no_availability"
    status_code = 409
    default_message = "No availability found for the requested time"


class SlotUnavailableError(SchedulingError):
    code = "slot_unavailable"
    status_code = 409
    default_message = "Time slot is no longer available"


# --- records ---

class NotFoundError(SchedulingError):
    code = "not_found"
    status_code = 404
    default_message = "Record not found"


class InactiveEntityError(SchedulingError):
    code = "inactive_entity"
    status_code = 422
    default_message = "Entity not found or inactive"


class InvalidStatusTransitionError(SchedulingError):
    code = "invalid_status_transition"
    status_code = 409
    default_message = "Appointment status does not allow this operation"


class ConcurrentModificationError(SchedulingError):
    code = "concurrent_modification"
    status_code = 409
    default_message = "Availability record is being modified concurrently, retry later"


class OverrideConflictError(SchedulingError):
    code = "override_conflict"
    status_code = 409
    default_message = "Regenerated schedule no longer fits live bookings"


class AvailabilityConflictError(SchedulingError):
    code = "availability_exists"
    status_code = 409
    default_message = "Availability already exists for this entity and date"


# --- aggregation of unexpected errors ---

class ErrorSeverity(Enum):
    LOW = "low"           # expected failures (validation, not found)
    MEDIUM = "medium"     # recoverable errors, timeouts
    HIGH = "high"         # storage failures, data inconsistencies
    CRITICAL = "critical" # service down


class ErrorPattern:
    """Track error patterns to reduce duplicate logging."""

    def __init__(self, error_type: str, message: str, context: Dict[str, Any]):
        self.error_type = error_type
        self.message = message[:100]
        self.context = {k: v for k, v in context.items() if k in ['endpoint', 'org_id', 'operation']}
        self.fingerprint = self._generate_fingerprint()
        self.first_seen = time.time()
        self.last_seen = time.time()
        self.count = 1

    def _generate_fingerprint(self) -> str:
        content = f"{self.error_type}:{self.message}:{self.context.get('endpoint', '')}:{self.context.get('operation', '')}"
        return hashlib.md5(content.encode(), usedforsecurity=False).hexdigest()[:8]

    def update(self):
        self.last_seen = time.time()
        self.count += 1


class ErrorAggregator:
    """Aggregate and deduplicate unexpected errors."""

    def __init__(self, log_threshold: int = 10, time_window: int = 300):
        self.log_threshold = log_threshold
        self.time_window = time_window
        self.patterns: Dict[str, ErrorPattern] = {}

    def _determine_severity(self, error: Exception) -> ErrorSeverity:
        if isinstance(error, SchedulingError):
            return ErrorSeverity.LOW
        error_type = type(error).__name__
        if "Timeout" in error_type:
            return ErrorSeverity.MEDIUM
        if error_type in ("OperationalError", "IntegrityError", "DatabaseError", "StaleDataError"):
            return ErrorSeverity.HIGH
        return ErrorSeverity.MEDIUM

    def should_log(self, pattern: ErrorPattern, severity: ErrorSeverity) -> bool:
        if severity in (ErrorSeverity.HIGH, ErrorSeverity.CRITICAL):
            return True
        if pattern.count == 1:
            return True
        if severity == ErrorSeverity.MEDIUM and pattern.count % self.log_threshold == 0:
            return True
        if severity == ErrorSeverity.LOW and pattern.count % (self.log_threshold * 5) == 0:
            return True
        return False

    def log_error(self, error: Exception, context: Optional[Dict[str, Any]] = None,
                  severity: Optional[ErrorSeverity] = None) -> str:
        """Log error with deduplication; returns the pattern fingerprint."""
        context = context or {}
        if severity is None:
            severity = self._determine_severity(error)

        pattern = ErrorPattern(type(error).__name__, str(error), context)
        fingerprint = pattern.fingerprint
        if fingerprint in self.patterns:
            self.patterns[fingerprint].update()
            pattern = self.patterns[fingerprint]
        else:
            self.patterns[fingerprint] = pattern

        if self.should_log(pattern, severity):
            logger.error(
                "aggregated_error",
                error_hash=fingerprint,
                error_type=pattern.error_type,
                error=str(error),
                count=pattern.count,
                severity=severity.value,
                **context,
            )
        return fingerprint

    def get_error_summary(self) -> Dict[str, Any]:
        now = time.time()
        recent = [p for p in self.patterns.values() if now - p.last_seen < self.time_window]
        top = sorted(recent, key=lambda p: p.count, reverse=True)[:5]
        return {
            "total_unique_errors": len(recent),
            "total_error_count": sum(p.count for p in recent),
            "top_errors": [
                {"fingerprint": p.fingerprint, "type": p.error_type, "count": p.count}
                for p in top
            ],
        }


error_aggregator = ErrorAggregator()


def log_error(error: Exception, context: Optional[Dict[str, Any]] = None,
              severity: Optional[ErrorSeverity] = None) -> str:
    return error_aggregator.log_error(error, context, severity)
