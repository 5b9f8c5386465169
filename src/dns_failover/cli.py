"""
Command-line interface for the DNS failover system.

Commands:
- verify: Poll DNS/HTTP/SSL until a CNAME is confirmed or the timeout hits
- configure: Publish a CNAME through the provider chain with backups
- failover: Run the health-gated failover controller
- monitor: Continuous DNS monitoring with alerts
- self-test: Validate configuration and provider connectivity
- config: Configuration management
"""

import argparse
import asyncio
import contextlib
import json
import os
import signal
import sys
from dataclasses import asdict, dataclass, fields, replace
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from . import __version__
from .audit_logger import AuditLogger
from .config import (
    ArtifactConfig,
    ConfiguratorConfig,
    DoHServiceConfig,
    EmailConfig,
    EndpointConfig,
    FailoverConfig,
    LoggingConfig,
    MonitorConfig,
    NotificationConfig,
    ProviderSettings,
    ResolverConfig,
    RetryConfig,
    SystemConfig,
    TelegramConfig,
    VerificationConfig,
    WebhookConfig,
    default_providers,
)
from .credentials import default_credential_loader
from .events import ControllerEvent, EventType
from .exceptions import DNSFailoverError, ValidationError
from .failover import FailoverController
from .health_checker import EndpointChecker
from .hostname import HostnameValidator
from .models import RecordRequest, to_jsonable
from .monitor import DNSMonitor
from .notifications import AlertRouter, create_alert_router
from .orchestrator import DNSConfigurator
from .site_checks import HTTPChecker
from .providers import ProviderRegistry, create_providers
from .reporting import FileArtifactSink, format_report
from .resolvers import CNAMEResolver
from .retry_manager import RetryManager
from .self_test import SelfTest
from .verifier import Verifier

CONFIG_ENV_VAR = "DNS_FAILOVER_CONFIG"
DEFAULT_CONFIG_PATH = Path.home() / ".dns_failover" / "config.json"

# Written by 'config init' as a template; replace with real origins
EXAMPLE_ENDPOINTS = [
    EndpointConfig(name="primary", url="https://primary.example.net", target="primary.example.net"),
    EndpointConfig(name="secondary", url="https://secondary.example.net", target="secondary.example.net"),
]


def create_default_config(
    domain: str = "",
    subdomain: str = "",
    endpoints: Optional[list[EndpointConfig]] = None,
    simulation_mode: bool = False,
) -> SystemConfig:
    """
    Create a default system configuration.

    Args:
        domain: Zone for the failover record
        subdomain: Record name inside the zone
        endpoints: Candidate endpoints for failover
        simulation_mode: Alert channels log instead of sending

    Returns:
        SystemConfig with default settings
    """
    return SystemConfig(
        failover=FailoverConfig(
            domain=domain,
            subdomain=subdomain,
            endpoints=list(endpoints or []),
        ),
        providers=default_providers(),
        retry=RetryConfig(
            max_retries=3,
            base_delay_seconds=1.0,
            max_delay_seconds=60.0,
        ),
        notifications=NotificationConfig(),
        logging=LoggingConfig(
            level="info",
            output_format="text",
        ),
        simulation_mode=simulation_mode,
    )


def _known(cls, data: dict) -> dict:
    """Keep only keys that are fields of the dataclass ``cls``."""
    names = {f.name for f in fields(cls)}
    return {k: v for k, v in data.items() if k in names}


def load_config_from_file(config_path: Path) -> Optional[SystemConfig]:
    """
    Load configuration from a JSON file.

    Args:
        config_path: Path to the configuration file

    Returns:
        SystemConfig if successful, None otherwise
    """
    try:
        with open(config_path, "r", encoding="utf-8") as f:
            data = json.load(f)

        # Failover section
        failover_data = data.get("failover", {})
        endpoints = [
            EndpointConfig(name=e["name"], url=e["url"], target=e["target"])
            for e in failover_data.get("endpoints", [])
        ]
        failover = FailoverConfig(**{
            **_known(FailoverConfig, failover_data),
            "endpoints": endpoints,
        })

        # Verification section
        verification_data = dict(data.get("verification", {}))
        if "resolvers" in verification_data:
            verification_data["resolvers"] = [
                ResolverConfig(name=r["name"], address=r["address"])
                for r in verification_data["resolvers"]
            ]
        if "doh_services" in verification_data:
            verification_data["doh_services"] = [
                DoHServiceConfig(name=s["name"], url=s["url"])
                for s in verification_data["doh_services"]
            ]
        verification = VerificationConfig(**_known(VerificationConfig, verification_data))

        monitor = MonitorConfig(**_known(MonitorConfig, data.get("monitor", {})))
        configurator = ConfiguratorConfig(**_known(ConfiguratorConfig, data.get("configurator", {})))

        # Providers
        if "providers" in data:
            providers = [
                ProviderSettings(**_known(ProviderSettings, p))
                for p in data["providers"]
            ]
        else:
            providers = default_providers()

        retry = RetryConfig(**_known(RetryConfig, data.get("retry", {})))

        artifacts_data = data.get("artifacts", {})
        artifacts = ArtifactConfig(**{
            k: Path(v) for k, v in _known(ArtifactConfig, artifacts_data).items()
        })

        logging_config = LoggingConfig(**_known(LoggingConfig, data.get("logging", {})))

        # Notification channels
        notifications_data = data.get("notifications", {})
        notifications = NotificationConfig(
            console=notifications_data.get("console", True),
            file=notifications_data.get("file", True),
        )

        telegram_data = notifications_data.get("telegram") or {}
        if telegram_data.get("enabled", True) and telegram_data.get("bot_token") and telegram_data.get("chat_id"):
            notifications.telegram = TelegramConfig(
                bot_token=telegram_data["bot_token"],
                chat_id=str(telegram_data["chat_id"]),
            )

        email_data = notifications_data.get("email") or {}
        if email_data.get("enabled", True) and email_data.get("smtp_host"):
            notifications.email = EmailConfig(
                smtp_host=email_data["smtp_host"],
                smtp_port=email_data.get("smtp_port", 587),
                username=email_data.get("username", ""),
                password=email_data.get("password", ""),
                from_address=email_data.get("from_address", ""),
                to_addresses=email_data.get("to_addresses", []),
            )

        webhook_data = notifications_data.get("webhook") or {}
        if webhook_data.get("enabled", True) and webhook_data.get("url"):
            notifications.webhook = WebhookConfig(
                url=webhook_data["url"],
                headers=webhook_data.get("headers", {}),
            )

        return SystemConfig(
            failover=failover,
            verification=verification,
            monitor=monitor,
            configurator=configurator,
            providers=providers,
            retry=retry,
            notifications=notifications,
            artifacts=artifacts,
            logging=logging_config,
            simulation_mode=data.get("simulation_mode", False),
        )

    except FileNotFoundError:
        return None
    except (json.JSONDecodeError, KeyError, TypeError, AttributeError) as e:
        print(f"Error loading config: {e}", file=sys.stderr)
        return None


def save_config_to_file(config: SystemConfig, config_path: Path) -> bool:
    """
    Save configuration to a JSON file.

    Args:
        config: SystemConfig to save
        config_path: Path to save the configuration

    Returns:
        True if successful, False otherwise
    """
    try:
        config_path.parent.mkdir(parents=True, exist_ok=True)
        data = to_jsonable(asdict(config))
        for channel in ("telegram", "email", "webhook"):
            if data["notifications"][channel] is not None:
                data["notifications"][channel]["enabled"] = True

        with open(config_path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, ensure_ascii=False)
        return True
    except (OSError, TypeError) as e:
        print(f"Error saving config: {e}", file=sys.stderr)
        return False


def resolve_config(args: argparse.Namespace) -> Optional[SystemConfig]:
    """
    Load the config named by --config or $DNS_FAILOVER_CONFIG, else defaults,
    then apply command line overrides.
    """
    path = getattr(args, "config", None) or os.environ.get(CONFIG_ENV_VAR)
    config = None
    if path:
        config = load_config_from_file(Path(path))
        if config is None:
            print(f"Error: Could not load config from {path}", file=sys.stderr)
            return None
    if config is None:
        config = create_default_config()

    artifacts = config.artifacts
    if getattr(args, "reports_dir", None):
        artifacts = replace(artifacts, reports_dir=Path(args.reports_dir))
    if getattr(args, "logs_dir", None):
        artifacts = replace(artifacts, logs_dir=Path(args.logs_dir))
    logging_config = config.logging
    if getattr(args, "verbose", False):
        logging_config = replace(logging_config, level="debug")
    return replace(config, artifacts=artifacts, logging=logging_config)


@dataclass
class Runtime:
    """Shared components wired from one SystemConfig."""

    config: SystemConfig
    logger: AuditLogger
    sink: FileArtifactSink
    retry: RetryManager
    alerts: Optional[AlertRouter]

    def create_registry(self) -> ProviderRegistry:
        credentials = default_credential_loader(
            self.config.artifacts.credentials_dir,
            logger=self.logger,
        )
        providers = create_providers(self.config.providers, credentials, logger=self.logger)
        return ProviderRegistry(providers, logger=self.logger)

    def create_verifier(self) -> Verifier:
        return Verifier(self.config.verification, sink=self.sink, logger=self.logger)


def build_runtime(config: SystemConfig) -> Runtime:
    logger = AuditLogger.from_config(config.logging)
    sink = FileArtifactSink(config.artifacts.reports_dir, config.artifacts.logs_dir)
    return Runtime(
        config=config,
        logger=logger,
        sink=sink,
        retry=RetryManager(config.retry),
        alerts=create_alert_router(
            config.notifications,
            config.retry,
            logger=logger,
            sink=sink,
            simulation_mode=config.simulation_mode,
        ),
    )


def _install_stop_handlers(stop_event: asyncio.Event) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        # add_signal_handler is unavailable on some platforms
        with contextlib.suppress(NotImplementedError, RuntimeError):
            loop.add_signal_handler(sig, stop_event.set)


def _validated_names(domain: str, subdomain: str, target: Optional[str] = None) -> tuple:
    validator = HostnameValidator()
    domain = validator.require(domain, "domain")
    if subdomain != "@":
        subdomain = validator.require(subdomain, "subdomain", allow_single_label=True)
    if target is not None:
        target = validator.require(target, "target")
    return domain, subdomain, target


async def run_verify(
    config: SystemConfig,
    domain: str,
    subdomain: str,
    target: str,
    timeout: Optional[float] = None,
) -> int:
    """
    Verify a published CNAME.

    Returns:
        Exit code (0 when verification succeeded, 1 otherwise)
    """
    runtime = build_runtime(config)
    fqdn = RecordRequest(domain, subdomain, target).fqdn
    print(f"Verifying {fqdn} -> {target}")

    async with runtime.create_verifier() as verifier:
        report = await verifier.verify(fqdn, target, timeout=timeout)

    print()
    print(format_report(report))
    return 0 if report.success else 1


async def run_configure(config: SystemConfig, domain: str, subdomain: str, target: str) -> int:
    runtime = build_runtime(config)
    async with runtime.create_registry() as registry:
        configurator = DNSConfigurator(
            config.configurator,
            registry,
            lookup=CNAMEResolver(timeout=config.verification.resolver_timeout_seconds),
            http_checker=HTTPChecker(
                timeout=config.verification.http_timeout_seconds,
                max_redirects=config.verification.max_redirects,
            ),
            sink=runtime.sink,
            logger=runtime.logger,
            retry_manager=runtime.retry,
        )
        async with configurator:
            result = await configurator.configure_dns(domain, subdomain, target)

    print()
    if result.success:
        via = f" via {result.provider}" if result.provider else ""
        print(f"✓ DNS configured{via} ({result.method})")
        print(f"  URL: {result.url}")
    else:
        print("✗ DNS configuration failed")
        print(f"  Direct access: {result.fallback_url}")
        if result.instructions_path:
            print(f"  Manual instructions: {result.instructions_path}")
    for attempt in result.attempts:
        mark = "✓" if attempt.success else "✗"
        error = f": {attempt.error}" if attempt.error else ""
        print(f"  {mark} {attempt.provider} [{attempt.stage}]{error}")
    return 0 if result.success else 1


def _print_event(event: ControllerEvent) -> None:
    print(f"[{event.timestamp}] {event.severity.value.upper()} {event.event_type.value}: {event.message}")


async def run_failover(
    config: SystemConfig,
    domain: str,
    subdomain: str,
    cycles: Optional[int] = None,
) -> int:
    """
    Run the failover controller until stopped or ``cycles`` cycles ran.

    Returns:
        Exit code (0 when the active endpoint is healthy at exit)
    """
    runtime = build_runtime(config)
    failover_config = replace(config.failover, domain=domain, subdomain=subdomain)
    stop_event = asyncio.Event()
    _install_stop_handlers(stop_event)

    async with runtime.create_registry() as registry, EndpointChecker(
        timeout=failover_config.check_timeout_seconds
    ) as checker:
        controller = FailoverController(
            failover_config,
            registry,
            checker,
            logger=runtime.logger,
            retry_manager=runtime.retry,
            alert_router=runtime.alerts,
            lookup=CNAMEResolver(timeout=config.verification.resolver_timeout_seconds),
        )
        for event_type in EventType:
            if event_type != EventType.HEALTH_CHECK:
                controller.events.subscribe(event_type, _print_event)

        await controller.run(stop_event=stop_event, max_cycles=cycles)
        status = controller.get_status()

    print("\nFinal status:")
    print(json.dumps(to_jsonable(status), indent=2, ensure_ascii=False))
    return 0 if controller.active_endpoint.healthy else 1


async def run_monitor(
    config: SystemConfig,
    domain: str,
    subdomain: str,
    target: str,
    cycles: Optional[int] = None,
) -> int:
    runtime = build_runtime(config)
    fqdn = RecordRequest(domain, subdomain, target).fqdn
    stop_event = asyncio.Event()
    _install_stop_handlers(stop_event)

    async with runtime.create_verifier() as verifier:
        monitor = DNSMonitor(config.monitor, verifier, runtime.alerts, runtime.logger)
        await monitor.run(fqdn, target, stop_event=stop_event, max_cycles=cycles)

    stats = monitor.get_stats()
    if stats is None:
        print("No checks completed")
        return 1
    print(
        f"\nStats: {stats['recent_uptime']}% recent uptime, "
        f"{stats['consecutive_failures']} consecutive failures, "
        f"{stats['total_checks']} total checks"
    )
    return 0 if stats["last_check"]["healthy"] else 1


async def run_self_test(config: SystemConfig, print_output: bool = True):
    runtime = build_runtime(config)
    async with runtime.create_registry() as registry:
        self_test = SelfTest(config, registry)
        result = await self_test.run()
    if print_output:
        self_test.print_results(result)
    return result


def _guarded(command, args: argparse.Namespace) -> int:
    """Run one command, turning domain errors into exit code 1."""
    try:
        return command(args)
    except ValidationError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        return 1
    except DNSFailoverError as e:
        print(f"Error [{e.code}]: {e.message}", file=sys.stderr)
        return 1


def cmd_verify(args: argparse.Namespace) -> int:
    """Handle the 'verify' command."""
    config = resolve_config(args)
    if config is None:
        return 1
    domain, subdomain, target = _validated_names(args.domain, args.subdomain, args.target)
    return asyncio.run(run_verify(config, domain, subdomain, target, timeout=args.timeout))


def cmd_configure(args: argparse.Namespace) -> int:
    """Handle the 'configure' command."""
    config = resolve_config(args)
    if config is None:
        return 1
    return asyncio.run(run_configure(config, args.domain, args.subdomain, args.target))


def cmd_failover(args: argparse.Namespace) -> int:
    """Handle the 'failover' command."""
    config = resolve_config(args)
    if config is None:
        return 1
    if not config.failover.endpoints:
        print("Error: No endpoints configured; add them under failover.endpoints", file=sys.stderr)
        return 1
    domain, subdomain, _ = _validated_names(args.domain, args.subdomain)
    return asyncio.run(run_failover(config, domain, subdomain, cycles=args.cycles))


def cmd_monitor(args: argparse.Namespace) -> int:
    """Handle the 'monitor' command."""
    config = resolve_config(args)
    if config is None:
        return 1
    domain, subdomain, target = _validated_names(args.domain, args.subdomain, args.target)
    return asyncio.run(run_monitor(config, domain, subdomain, target, cycles=args.cycles))


def cmd_self_test(args: argparse.Namespace) -> int:
    """Handle the 'self-test' command."""
    config = resolve_config(args)
    if config is None:
        return 1
    result = asyncio.run(run_self_test(config))
    return 0 if result.success else 1


def cmd_config(args: argparse.Namespace) -> int:
    """Handle the 'config' command."""
    if args.path:
        config_path = Path(args.path)
    else:
        config_path = Path(os.environ.get(CONFIG_ENV_VAR) or DEFAULT_CONFIG_PATH)

    if args.action == "show":
        config = load_config_from_file(config_path)
        if config is None:
            print(f"No configuration found at: {config_path}")
            print("Use 'config init' to create a default configuration.")
            return 1

        print(f"Configuration from: {config_path}")
        print(f"  Record: {config.failover.subdomain or '-'}.{config.failover.domain or '-'}")
        print(f"  Endpoints: {', '.join(e.name for e in config.failover.endpoints) or 'none'}")
        print(f"  Providers: {', '.join(p.name for p in config.providers if p.enabled)}")
        print(f"  Check interval: {config.failover.check_interval_seconds}s")
        print(f"  Reports: {config.artifacts.reports_dir}")
        print(f"  Log level: {config.logging.level}")
        print(f"  Audit mode: {config.logging.audit_mode}")
        print(f"  Simulation mode: {config.simulation_mode}")
        return 0

    elif args.action == "init":
        if config_path.exists() and not args.force:
            print(f"Configuration already exists at: {config_path}")
            print("Use --force to overwrite.")
            return 1

        config = create_default_config(endpoints=EXAMPLE_ENDPOINTS)
        if save_config_to_file(config, config_path):
            print(f"Configuration created at: {config_path}")
            return 0
        return 1

    elif args.action == "validate":
        config = load_config_from_file(config_path)
        if config is None:
            print(f"Error: Could not load config from {config_path}", file=sys.stderr)
            return 1

        validation = SelfTest(config).validate_config()
        for warning in validation.warnings:
            print(f"  Warning: {warning}")
        if not validation.valid:
            print(f"Configuration at {config_path} is invalid:", file=sys.stderr)
            for error in validation.errors:
                print(f"  - {error}", file=sys.stderr)
            return 1

        print(f"Configuration at {config_path} is valid.")
        return 0

    return 1


def _add_common_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--config", "-c",
        help=f"Path to configuration file (default: ${CONFIG_ENV_VAR})",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable debug logging",
    )
    parser.add_argument(
        "--reports-dir",
        help="Directory for report artifacts",
    )
    parser.add_argument(
        "--logs-dir",
        help="Directory for JSON-lines logs",
    )


def _add_record_arguments(parser: argparse.ArgumentParser, with_target: bool = True) -> None:
    parser.add_argument("domain", help="Zone, e.g. example.com")
    parser.add_argument("subdomain", help="Record name inside the zone, e.g. app")
    if with_target:
        parser.add_argument("target", help="CNAME target, e.g. app.netlify.app")


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser for the CLI."""
    parser = argparse.ArgumentParser(
        prog="dns-failover",
        description="Health-gated DNS failover with propagation verification",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # 'verify' command
    verify_parser = subparsers.add_parser(
        "verify",
        help="Verify that a CNAME has propagated and serves HTTPS",
    )
    _add_record_arguments(verify_parser)
    verify_parser.add_argument(
        "timeout",
        nargs="?",
        type=float,
        default=None,
        help="Overall timeout in seconds (default: from config, 300)",
    )
    _add_common_arguments(verify_parser)
    verify_parser.set_defaults(func=cmd_verify)

    # 'configure' command
    configure_parser = subparsers.add_parser(
        "configure",
        help="Publish a CNAME through the provider chain",
    )
    _add_record_arguments(configure_parser)
    _add_common_arguments(configure_parser)
    configure_parser.set_defaults(func=cmd_configure)

    # 'failover' command
    failover_parser = subparsers.add_parser(
        "failover",
        help="Run the failover controller for the configured endpoints",
    )
    _add_record_arguments(failover_parser, with_target=False)
    failover_parser.add_argument(
        "--cycles",
        type=int,
        default=None,
        help="Stop after N health cycles (default: run until interrupted)",
    )
    _add_common_arguments(failover_parser)
    failover_parser.set_defaults(func=cmd_failover)

    # 'monitor' command
    monitor_parser = subparsers.add_parser(
        "monitor",
        help="Continuously monitor a CNAME and send alerts",
    )
    _add_record_arguments(monitor_parser)
    monitor_parser.add_argument(
        "--cycles",
        type=int,
        default=None,
        help="Stop after N monitoring cycles (default: run until interrupted)",
    )
    _add_common_arguments(monitor_parser)
    monitor_parser.set_defaults(func=cmd_monitor)

    # 'self-test' command
    self_test_parser = subparsers.add_parser(
        "self-test",
        help="Validate configuration and provider connectivity",
    )
    _add_common_arguments(self_test_parser)
    self_test_parser.set_defaults(func=cmd_self_test)

    # 'config' command
    config_parser = subparsers.add_parser(
        "config",
        help="Configuration management",
    )
    config_parser.add_argument(
        "action",
        choices=["show", "init", "validate"],
        help="Configuration action",
    )
    config_parser.add_argument(
        "--path", "-p",
        help=f"Path to configuration file (default: ${CONFIG_ENV_VAR} or {DEFAULT_CONFIG_PATH})",
    )
    config_parser.add_argument(
        "--force", "-f",
        action="store_true",
        help="Force overwrite existing configuration",
    )
    config_parser.set_defaults(func=cmd_config)

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    """
    Main entry point for the CLI.

    Args:
        argv: Command line arguments (defaults to sys.argv[1:])

    Returns:
        Exit code
    """
    load_dotenv()

    parser = create_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    return _guarded(args.func, args)


if __name__ == "__main__":
    sys.exit(main())
