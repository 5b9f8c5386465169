"""
Configuration dataclasses for the DNS failover system.

This module defines all configuration structures used throughout the system,
including endpoints, provider settings, failover and verification tuning,
retry logic, notifications, artifact locations, and logging configuration.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional


@dataclass
class EndpointConfig:
    """A named origin that the CNAME can point at."""

    name: str
    url: str  # Health check URL
    target: str  # CNAME value published when this endpoint is active


@dataclass
class ProviderSettings:
    """Per-provider settings; credentials are loaded separately."""

    name: str  # 'porkbun', 'cloudflare', 'netlify'
    priority: int
    enabled: bool = True
    ttl: int = 300
    health_timeout_seconds: float = 10.0
    request_timeout_seconds: float = 30.0
    proxied: bool = False  # Cloudflare only


def default_providers() -> list[ProviderSettings]:
    """Return fresh settings for the built-in provider chain."""
    return [
        ProviderSettings(name="porkbun", priority=1),
        ProviderSettings(name="cloudflare", priority=2),
        ProviderSettings(name="netlify", priority=3),
    ]


@dataclass
class FailoverConfig:
    """Tuning for the health-gated failover controller."""

    domain: str = ""
    subdomain: str = ""
    endpoints: list[EndpointConfig] = field(default_factory=list)
    check_interval_seconds: float = 5.0
    fast_check_interval_seconds: float = 1.0
    check_timeout_seconds: float = 3.0
    failure_threshold: int = 2
    recovery_threshold: int = 3
    optimization_enabled: bool = True
    optimization_ratio: float = 0.5
    optimization_min_successes: int = 10
    health_history_seconds: float = 3600.0
    health_history_limit: int = 100
    failover_history_limit: int = 100
    detect_current_target: bool = True


@dataclass
class ResolverConfig:
    """A public recursive resolver used for propagation checks."""

    name: str
    address: str


DEFAULT_RESOLVERS = [
    ResolverConfig(name="Google Primary", address="8.8.8.8"),
    ResolverConfig(name="Google Secondary", address="8.8.4.4"),
    ResolverConfig(name="Cloudflare Primary", address="1.1.1.1"),
    ResolverConfig(name="Cloudflare Secondary", address="1.0.0.1"),
    ResolverConfig(name="OpenDNS Primary", address="208.67.222.222"),
    ResolverConfig(name="OpenDNS Secondary", address="208.67.220.220"),
    ResolverConfig(name="Quad9", address="9.9.9.9"),
    ResolverConfig(name="Comodo", address="8.26.56.26"),
]


@dataclass
class DoHServiceConfig:
    """A DNS-over-HTTPS JSON API used as an online propagation checker."""

    name: str
    url: str


DEFAULT_DOH_SERVICES = [
    DoHServiceConfig(name="google", url="https://dns.google/resolve"),
    DoHServiceConfig(name="cloudflare", url="https://cloudflare-dns.com/dns-query"),
]


@dataclass
class VerificationConfig:
    """Polling and quorum settings for propagation verification."""

    timeout_seconds: float = 300.0
    check_interval_seconds: float = 10.0
    resolver_timeout_seconds: float = 5.0
    online_timeout_seconds: float = 10.0
    http_timeout_seconds: float = 10.0
    ssl_timeout_seconds: float = 10.0
    max_redirects: int = 5
    resolver_quorum: float = 0.5
    dimension_quorum: int = 3
    resolvers: list[ResolverConfig] = field(
        default_factory=lambda: list(DEFAULT_RESOLVERS)
    )
    doh_services: list[DoHServiceConfig] = field(
        default_factory=lambda: list(DEFAULT_DOH_SERVICES)
    )


@dataclass
class MonitorConfig:
    """Continuous DNS monitoring and alerting settings."""

    check_interval_seconds: float = 60.0
    alert_threshold: int = 3
    history_limit: int = 100
    ssl_warning_days: int = 30
    ssl_critical_days: int = 7


@dataclass
class ConfiguratorConfig:
    """Settings for the one-shot provider chain configuration."""

    ttl: int = 300
    propagation_timeout_seconds: float = 120.0
    propagation_poll_seconds: float = 10.0
    alternative_subdomains: list[str] = field(
        default_factory=lambda: ["{sub}-cal", "{sub}-dashboard", "calendar-{sub}"]
    )


@dataclass
class RetryConfig:
    """Retry behavior configuration."""

    max_retries: int = 3
    base_delay_seconds: float = 1.0
    max_delay_seconds: float = 60.0
    retryable_errors: list[str] = field(
        default_factory=lambda: ["timeout", "server_error", "rate_limited", "network_error"]
    )


@dataclass
class TelegramConfig:
    """Telegram alert channel configuration."""

    bot_token: str
    chat_id: str


@dataclass
class EmailConfig:
    """Email alert channel configuration."""

    smtp_host: str
    smtp_port: int
    username: str
    password: str
    from_address: str
    to_addresses: list[str] = field(default_factory=list)


@dataclass
class WebhookConfig:
    """Generic webhook alert channel configuration."""

    url: str
    headers: dict[str, str] = field(default_factory=dict)


@dataclass
class NotificationConfig:
    """Alert channels configuration."""

    console: bool = True
    file: bool = True
    telegram: Optional[TelegramConfig] = None
    email: Optional[EmailConfig] = None
    webhook: Optional[WebhookConfig] = None


@dataclass
class ArtifactConfig:
    """Locations of report and log artifacts."""

    reports_dir: Path = Path("reports")
    logs_dir: Path = Path("logs")
    credentials_dir: Path = Path("config")


@dataclass
class LoggingConfig:
    """Logging and audit configuration."""

    level: str = "info"
    audit_mode: bool = False
    audit_signing_key: Optional[str] = None
    output_format: str = "text"  # 'json', 'text', 'both'
    max_entries: int = 1000  # In-memory entries kept by the logger


@dataclass
class SystemConfig:
    """Main system configuration combining all sub-configurations."""

    failover: FailoverConfig = field(default_factory=FailoverConfig)
    verification: VerificationConfig = field(default_factory=VerificationConfig)
    monitor: MonitorConfig = field(default_factory=MonitorConfig)
    configurator: ConfiguratorConfig = field(default_factory=ConfiguratorConfig)
    providers: list[ProviderSettings] = field(
        default_factory=default_providers
    )
    retry: RetryConfig = field(default_factory=RetryConfig)
    notifications: NotificationConfig = field(default_factory=NotificationConfig)
    artifacts: ArtifactConfig = field(default_factory=ArtifactConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    simulation_mode: bool = False
