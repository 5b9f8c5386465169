"""
DNS configurator for the DNS failover system.

Publishes a CNAME through the provider chain in priority order. Each
provider goes through health check, record upsert and propagation check;
the first one to pass wins. When every provider fails the configurator
falls back to alternative subdomains and finally to written manual
instructions plus the direct target URL, without raising.
"""

import asyncio
import time
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Awaitable, Callable, Optional

from .audit_logger import AuditLogger
from .config import ConfiguratorConfig
from .exceptions import NetworkError, PersistenceError
from .hostname import HostnameValidator, normalize_target
from .models import RecordRequest, RecordResult
from .site_checks import HTTPChecker
from .providers import ProviderRegistry
from .reporting import ArtifactSink
from .resolvers import CNAMELookup, CNAMEResolver
from .retry_manager import RetryManager

COMPONENT = "DNSConfigurator"
FAILURE_LOG_NAME = "dns-failures"
INSTRUCTIONS_NAME = "emergency-dns-instructions"


@dataclass
class ProviderAttempt:
    """What happened when one provider was tried."""

    provider: str
    success: bool
    stage: str  # 'health_check', 'record', 'propagation', 'done'
    error: Optional[str] = None


@dataclass
class ConfigureResult:
    """Outcome of configure_dns."""

    success: bool
    method: str  # 'provider', 'alternative_subdomain', 'manual_instructions'
    fqdn: str
    provider: Optional[str] = None
    fallback_url: Optional[str] = None
    instructions_path: Optional[Path] = None
    attempts: list[ProviderAttempt] = field(default_factory=list)

    @property
    def url(self) -> str:
        return self.fallback_url or f"https://{self.fqdn}"

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "method": self.method,
            "fqdn": self.fqdn,
            "provider": self.provider,
            "fallback_url": self.fallback_url,
            "instructions_path": str(self.instructions_path) if self.instructions_path else None,
            "attempts": [asdict(a) for a in self.attempts],
        }


def render_manual_instructions(
    domain: str,
    subdomain: str,
    target: str,
    ttl: int,
    attempts: list[ProviderAttempt],
) -> str:
    fqdn = RecordRequest(domain, subdomain, target).fqdn
    lines = [
        "# Emergency DNS Configuration Instructions",
        "",
        "## Situation",
        "All automated DNS configuration methods failed. Manual intervention is required.",
        "",
        "## Option 1: Create the record manually",
        f"In the DNS panel for {domain}, add a CNAME record:",
        f"- Host: {subdomain or '@'}",
        f"- Target: {target}",
        f"- TTL: {ttl}",
        "",
        "## Option 2: Use the direct URL",
        "Until DNS is fixed the service is reachable at:",
        f"https://{target}",
        "",
        "## Option 3: Switch DNS provider",
        "Move the nameservers to another supported provider and run `configure` again.",
        "",
        "## Verification",
        f"curl -I https://{fqdn}",
        "",
    ]
    if attempts:
        lines.append("## Failed attempts")
        for attempt in attempts:
            lines.append(f"- {attempt.provider} ({attempt.stage}): {attempt.error}")
        lines.append("")
    lines.append(f"Generated: {datetime.now(timezone.utc).isoformat()}")
    return "\n".join(lines) + "\n"


class DNSConfigurator:
    """Configures a CNAME through the first provider that works."""

    def __init__(
        self,
        config: ConfiguratorConfig,
        registry: ProviderRegistry,
        lookup: Optional[CNAMELookup] = None,
        http_checker: Optional[HTTPChecker] = None,
        sink: Optional[ArtifactSink] = None,
        logger: Optional[AuditLogger] = None,
        retry_manager: Optional[RetryManager] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        """
        Args:
            config: TTL, propagation timing and alternative subdomain patterns
            registry: Providers to try, in priority order
            lookup: CNAME lookup used for the propagation check
            http_checker: HTTPS check run once the CNAME resolves
            sink: Destination of the failure log and manual instructions
            logger: Optional audit logger
            retry_manager: Retries transient record failures when given
        """
        self._config = config
        self._registry = registry
        self._lookup = lookup or CNAMEResolver()
        self._http = http_checker or HTTPChecker()
        self._sink = sink
        self._logger = logger
        self._retry = retry_manager
        self._clock = clock
        self._sleep = sleep
        self._validator = HostnameValidator()

    async def __aenter__(self) -> "DNSConfigurator":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self._http.close()

    async def configure_dns(self, domain: str, subdomain: str, target: str) -> ConfigureResult:
        """
        Publish ``subdomain.domain -> target``.

        Raises:
            ValidationError: If a hostname is malformed (before any network call)
        """
        domain = self._validator.require(domain, "domain")
        if subdomain != "@":
            subdomain = self._validator.require(subdomain, "subdomain", allow_single_label=True)
        target = self._validator.require(target, "target")
        fqdn = RecordRequest(domain, subdomain, target).fqdn

        attempts: list[ProviderAttempt] = []
        usable = []

        for provider in self._registry.providers:
            self._log_info(f"Attempting provider {provider.name}", {"fqdn": fqdn})
            attempt = await self._attempt_provider(provider, domain, subdomain, target)
            attempts.append(attempt)
            if attempt.stage != "health_check":
                usable.append(provider)
            if attempt.success:
                self._log_info(f"Configured {fqdn} with {provider.name}")
                return ConfigureResult(
                    success=True,
                    method="provider",
                    fqdn=fqdn,
                    provider=provider.name,
                    attempts=attempts,
                )
            self._record_failure(fqdn, target, attempt)

        if self._logger:
            self._logger.log_error(
                COMPONENT,
                "All DNS providers failed; running backup strategies",
                additional_data={"fqdn": fqdn},
            )

        if usable:
            result = await self._try_alternative_subdomains(usable[0], domain, subdomain, target)
            if result is not None:
                result.attempts = attempts
                return result

        return self._manual_instructions(domain, subdomain, target, attempts)

    async def _attempt_provider(self, provider, domain: str, subdomain: str, target: str) -> ProviderAttempt:
        health = await provider.health_check()
        if not health.healthy:
            return ProviderAttempt(
                provider=provider.name,
                success=False,
                stage="health_check",
                error=f"Provider health check failed: {health.error}",
            )

        request = RecordRequest(domain, subdomain, target, ttl=self._config.ttl)
        result = await self._upsert(provider, request)
        if not result.success:
            return ProviderAttempt(
                provider=provider.name,
                success=False,
                stage="record",
                error=result.error or "Failed to create DNS record",
            )

        ok, error = await self.verify_propagation(request.fqdn, target)
        return ProviderAttempt(
            provider=provider.name,
            success=ok,
            stage="done" if ok else "propagation",
            error=error,
        )

    async def _upsert(self, provider, request: RecordRequest) -> RecordResult:
        if self._retry is not None:
            result, _ = await self._retry.execute_record_with_retry(
                lambda: provider.create_or_update_record(request)
            )
            return result
        return await provider.create_or_update_record(request)

    async def verify_propagation(self, fqdn: str, target: str) -> tuple[bool, Optional[str]]:
        """
        Poll the local resolver until the CNAME matches, then check HTTPS.

        Returns:
            (success, error)
        """
        expected = normalize_target(target)
        deadline = self._clock() + self._config.propagation_timeout_seconds

        while True:
            try:
                values = await self._lookup(fqdn, None)
            except NetworkError:
                values = []

            if expected in values:
                http = await self._http.check(fqdn)
                return http.success, http.error

            remaining = deadline - self._clock()
            if remaining <= 0:
                return False, "DNS propagation timeout"
            self._log_info(f"Waiting for {fqdn} to propagate")
            await self._sleep(min(self._config.propagation_poll_seconds, remaining))

    async def _try_alternative_subdomains(
        self,
        provider,
        domain: str,
        subdomain: str,
        target: str,
    ) -> Optional[ConfigureResult]:
        if subdomain == "@":
            return None
        for pattern in self._config.alternative_subdomains:
            alt = pattern.format(sub=subdomain)
            request = RecordRequest(domain, alt, target, ttl=self._config.ttl)
            result = await self._upsert(provider, request)
            if result.success:
                self._log_info(
                    f"Alternative subdomain configured: {request.fqdn}",
                    {"provider": provider.name},
                )
                return ConfigureResult(
                    success=True,
                    method="alternative_subdomain",
                    fqdn=request.fqdn,
                    provider=provider.name,
                    fallback_url=f"https://{request.fqdn}",
                )
        return None

    def _manual_instructions(
        self,
        domain: str,
        subdomain: str,
        target: str,
        attempts: list[ProviderAttempt],
    ) -> ConfigureResult:
        path = None
        if self._sink is not None:
            text = render_manual_instructions(domain, subdomain, target, self._config.ttl, attempts)
            try:
                path = self._sink.write_document(INSTRUCTIONS_NAME, text)
            except PersistenceError as e:
                if self._logger:
                    self._logger.log_error(COMPONENT, "Could not write manual instructions", error=e)

        fallback_url = f"https://{target}"
        if self._logger:
            self._logger.warn(
                COMPONENT,
                "Manual DNS configuration required",
                {"fallback_url": fallback_url, "instructions": str(path) if path else None},
            )

        return ConfigureResult(
            success=False,
            method="manual_instructions",
            fqdn=RecordRequest(domain, subdomain, target).fqdn,
            fallback_url=fallback_url,
            instructions_path=path,
            attempts=attempts,
        )

    def _record_failure(self, fqdn: str, target: str, attempt: ProviderAttempt) -> None:
        if self._logger:
            self._logger.warn(
                COMPONENT,
                f"Provider {attempt.provider} failed at {attempt.stage}",
                {"error": attempt.error},
            )
        if self._sink is None:
            return
        try:
            self._sink.append_log(FAILURE_LOG_NAME, {
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "provider": attempt.provider,
                "stage": attempt.stage,
                "error": attempt.error,
                "fqdn": fqdn,
                "target": target,
            })
        except PersistenceError as e:
            if self._logger:
                self._logger.log_error(COMPONENT, "Could not append to failure log", error=e)

    def _log_info(self, message: str, data: Optional[dict] = None) -> None:
        if self._logger:
            self._logger.info(COMPONENT, message, data)
