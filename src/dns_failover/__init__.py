"""
DNS Failover - health-gated CNAME failover across multiple DNS providers.

This package checks a set of candidate endpoints, repoints a CNAME through
every available DNS provider when the active endpoint goes unhealthy, and
verifies propagation through local, public and DNS-over-HTTPS resolvers.
"""

__version__ = "0.1.0"
__author__ = "DNS Failover Team"

from dns_failover.exceptions import (
    DNSFailoverError,
    ValidationError,
    ConfigurationError,
    CredentialError,
    ZoneNotFoundError,
    NetworkError,
    ProviderError,
    PersistenceError,
    NotificationError,
)
from dns_failover.enums import (
    AlertType,
    EndpointState,
    FailoverReason,
    LogLevel,
    ProviderErrorCode,
    RecommendationPriority,
    VerificationStatus,
)
from dns_failover.config import (
    EndpointConfig,
    FailoverConfig,
    ProviderSettings,
    RetryConfig,
    SystemConfig,
    VerificationConfig,
)
from dns_failover.models import (
    Endpoint,
    FailoverEvent,
    HealthCheckResult,
    RecordRequest,
    RecordResult,
    VerificationReport,
)
from dns_failover.providers import (
    CloudflareProvider,
    DNSProvider,
    NetlifyDNSProvider,
    PorkbunProvider,
    ProviderRegistry,
    create_providers,
)
from dns_failover.failover import FailoverController
from dns_failover.verifier import Verifier
from dns_failover.monitor import DNSMonitor
from dns_failover.orchestrator import DNSConfigurator

__all__ = [
    "__version__",
    # Exceptions
    "DNSFailoverError",
    "ValidationError",
    "ConfigurationError",
    "CredentialError",
    "ZoneNotFoundError",
    "NetworkError",
    "ProviderError",
    "PersistenceError",
    "NotificationError",
    # Enums
    "AlertType",
    "EndpointState",
    "FailoverReason",
    "LogLevel",
    "ProviderErrorCode",
    "RecommendationPriority",
    "VerificationStatus",
    # Config
    "EndpointConfig",
    "FailoverConfig",
    "ProviderSettings",
    "RetryConfig",
    "SystemConfig",
    "VerificationConfig",
    # Models
    "Endpoint",
    "FailoverEvent",
    "HealthCheckResult",
    "RecordRequest",
    "RecordResult",
    "VerificationReport",
    # Components
    "CloudflareProvider",
    "DNSProvider",
    "NetlifyDNSProvider",
    "PorkbunProvider",
    "ProviderRegistry",
    "create_providers",
    "FailoverController",
    "Verifier",
    "DNSMonitor",
    "DNSConfigurator",
]
