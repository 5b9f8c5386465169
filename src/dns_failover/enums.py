"""
Enumeration types for the DNS failover system.

These enums provide type-safe constants for endpoint states, failover
reasons, verification outcomes, and error codes.
"""

from enum import Enum


class EndpointState(Enum):
    """Health state of a monitored endpoint."""

    UNKNOWN = "unknown"
    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"


class FailoverReason(Enum):
    """Why the active endpoint was switched."""

    FAILURE = "failure"
    OPTIMIZATION = "optimization"


class VerificationStatus(Enum):
    """Terminal (or interim) status of a verification run."""

    SUCCESS = "success"
    TIMEOUT = "timeout"
    IN_PROGRESS = "in_progress"


class RecommendationPriority(Enum):
    """Priority of a verification recommendation."""

    HIGH = "high"
    MEDIUM = "medium"


class LogLevel(Enum):
    """Logging severity levels."""

    DEBUG = "debug"
    INFO = "info"
    WARN = "warn"
    ERROR = "error"


class ProviderErrorCode(Enum):
    """Error codes for DNS provider operations."""

    MISSING_CREDENTIALS = "missing_credentials"
    ZONE_NOT_FOUND = "zone_not_found"
    AUTH_FAILED = "auth_failed"
    TIMEOUT = "timeout"
    NETWORK_ERROR = "network_error"
    SERVER_ERROR = "server_error"
    RATE_LIMITED = "rate_limited"
    API_ERROR = "api_error"


class AlertType(Enum):
    """Kinds of alerts emitted by the monitor and controller."""

    FAILURE = "failure"
    RECOVERY = "recovery"
    STATUS_CHANGE = "status_change"
    CRITICAL = "critical"


class HostnameValidationErrorCode(Enum):
    """Error codes for hostname validation failures."""

    EMPTY_INPUT = "empty_input"
    FORBIDDEN_CHARS = "forbidden_chars"
    LABEL_TOO_LONG = "label_too_long"
    IDNA_ERROR = "idna_error"
