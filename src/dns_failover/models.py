"""
Data models for the DNS failover system.

This module defines the data structures shared by the provider layer, the
failover controller and the verifier: endpoints and their check results,
record requests and outcomes, failover events, and verification results.
"""

from dataclasses import asdict, dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Optional

from .config import EndpointConfig
from .enums import (
    EndpointState,
    FailoverReason,
    ProviderErrorCode,
    RecommendationPriority,
    VerificationStatus,
)


def to_jsonable(value: Any) -> Any:
    """Convert dataclass dumps into JSON-serializable primitives."""
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, Path):
        return str(value)
    if isinstance(value, dict):
        return {k: to_jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_jsonable(v) for v in value]
    return value


# Endpoint health


@dataclass(frozen=True)
class HealthCheckResult:
    """Outcome of a single check of one endpoint."""

    timestamp: str
    target: str  # Endpoint name
    url: str
    success: bool
    response_time_ms: float
    status_code: Optional[int] = None
    error: Optional[str] = None


@dataclass
class Endpoint:
    """A candidate origin with its rolling health metrics."""

    name: str
    url: str
    target: str
    state: EndpointState = EndpointState.UNKNOWN
    consecutive_failures: int = 0
    consecutive_successes: int = 0
    uptime_percent: float = 100.0
    avg_response_ms: Optional[float] = None
    last_response_ms: Optional[float] = None
    last_check: Optional[HealthCheckResult] = None

    @property
    def healthy(self) -> bool:
        """UNKNOWN counts as healthy until a check proves otherwise."""
        return self.state != EndpointState.UNHEALTHY

    @classmethod
    def from_config(cls, config: EndpointConfig) -> "Endpoint":
        return cls(name=config.name, url=config.url, target=config.target)

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "url": self.url,
            "target": self.target,
            "state": self.state.value,
            "healthy": self.healthy,
            "consecutive_failures": self.consecutive_failures,
            "consecutive_successes": self.consecutive_successes,
            "uptime_percent": round(self.uptime_percent, 2),
            "avg_response_ms": (
                round(self.avg_response_ms, 2) if self.avg_response_ms is not None else None
            ),
            "last_response_ms": self.last_response_ms,
            "last_check": self.last_check.timestamp if self.last_check else None,
        }


@dataclass(frozen=True)
class HealthHistoryEntry:
    """All check results of one cycle."""

    timestamp: float  # time.time() of the cycle
    results: tuple[HealthCheckResult, ...]


# Provider layer


@dataclass(frozen=True)
class RecordRequest:
    """A CNAME record to publish."""

    domain: str
    subdomain: str
    target: str
    ttl: int = 300

    @property
    def fqdn(self) -> str:
        if not self.subdomain or self.subdomain == "@":
            return self.domain
        return f"{self.subdomain}.{self.domain}"


@dataclass
class RecordResult:
    """Result of a provider create-or-update call."""

    success: bool
    record_id: Optional[str] = None
    action: Optional[str] = None  # 'created', 'updated', 'unchanged'
    error: Optional[str] = None
    error_code: Optional[ProviderErrorCode] = None

    @property
    def retryable(self) -> bool:
        return self.error_code in (
            ProviderErrorCode.TIMEOUT,
            ProviderErrorCode.NETWORK_ERROR,
            ProviderErrorCode.SERVER_ERROR,
            ProviderErrorCode.RATE_LIMITED,
        )


@dataclass
class ProviderHealth:
    """Result of a provider health check."""

    healthy: bool
    error: Optional[str] = None
    response_time_ms: float = 0.0


@dataclass(frozen=True)
class ProviderUpdateOutcome:
    """Per-provider result inside a failover."""

    provider: str
    success: bool
    record_id: Optional[str] = None
    error: Optional[str] = None
    duration_ms: float = 0.0
    attempts: int = 1


@dataclass(frozen=True)
class FailoverEvent:
    """Immutable record of an attempted failover."""

    timestamp: str
    previous_endpoint: Optional[str]
    new_endpoint: str
    reason: FailoverReason
    success: bool
    duration_ms: float
    outcomes: tuple[ProviderUpdateOutcome, ...] = ()
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return to_jsonable(asdict(self))


# Verification


@dataclass
class ResolverCheck:
    """CNAME lookup through one resolver (or the system resolver)."""

    resolver: str
    address: Optional[str]
    success: bool
    values: list[str] = field(default_factory=list)
    error: Optional[str] = None
    response_time_ms: float = 0.0


@dataclass
class DNSServersCheck:
    """Aggregate of the public resolver lookups."""

    success: bool
    successful: int
    total: int
    percentage: float
    results: list[ResolverCheck] = field(default_factory=list)


@dataclass
class OnlineServiceCheck:
    """CNAME lookup through one DNS-over-HTTPS service."""

    service: str
    success: bool
    values: list[str] = field(default_factory=list)
    error: Optional[str] = None


@dataclass
class OnlineChecks:
    """Aggregate of the DNS-over-HTTPS lookups."""

    success: bool
    results: list[OnlineServiceCheck] = field(default_factory=list)


@dataclass
class HTTPCheck:
    """Reachability of https://fqdn."""

    success: bool
    status_code: Optional[int] = None
    response_time_ms: float = 0.0
    final_url: Optional[str] = None
    server: Optional[str] = None
    content_type: Optional[str] = None
    error: Optional[str] = None


@dataclass
class SSLCheck:
    """TLS certificate served for fqdn:443."""

    success: bool
    issuer: Optional[str] = None
    subject: Optional[str] = None
    valid_from: Optional[str] = None
    valid_to: Optional[str] = None
    days_until_expiry: Optional[int] = None
    error: Optional[str] = None


@dataclass
class OverallResult:
    """Quorum over the verification dimensions."""

    success: bool
    score: int
    total_checks: int
    percentage: float
    details: dict[str, bool] = field(default_factory=dict)


@dataclass
class CheckCycle:
    """One complete verification pass."""

    timestamp: str
    fqdn: str
    target: str
    local: ResolverCheck
    servers: DNSServersCheck
    online: OnlineChecks
    http: HTTPCheck
    ssl: SSLCheck
    overall: OverallResult

    def progress(self) -> tuple[int, int]:
        """Count individual checks that passed, out of all individual checks."""
        flags = [self.local.success]
        flags.extend(r.success for r in self.servers.results)
        flags.extend(r.success for r in self.online.results)
        flags.append(self.http.success)
        flags.append(self.ssl.success)
        return sum(1 for f in flags if f), len(flags)

    def to_dict(self) -> dict:
        return to_jsonable(asdict(self))


@dataclass(frozen=True)
class Recommendation:
    """A remediation hint attached to a verification report."""

    type: str
    priority: RecommendationPriority
    message: str
    action: str


@dataclass
class ReportSummary:
    """Headline of a verification report."""

    fqdn: str
    target: str
    status: VerificationStatus
    duration_seconds: float
    timestamp: str
    total_checks: int


@dataclass
class VerificationReport:
    """Everything a verification run produced."""

    summary: ReportSummary
    final_state: Optional[CheckCycle]
    recommendations: list[Recommendation] = field(default_factory=list)
    next_steps: list[str] = field(default_factory=list)
    artifact_path: Optional[Path] = None

    @property
    def success(self) -> bool:
        return self.summary.status == VerificationStatus.SUCCESS

    def to_dict(self) -> dict:
        return {
            "summary": to_jsonable(asdict(self.summary)),
            "final_state": self.final_state.to_dict() if self.final_state else None,
            "recommendations": [to_jsonable(asdict(r)) for r in self.recommendations],
            "next_steps": list(self.next_steps),
        }
