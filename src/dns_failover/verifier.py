"""
Propagation verification.

A verification run repeatedly checks five dimensions of a published CNAME
(local resolver, public resolvers, DNS-over-HTTPS services, HTTPS
reachability, TLS certificate) until a quorum of them passes or the
deadline expires, then builds a report with recommendations.
"""

import asyncio
import time
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional

from .audit_logger import AuditLogger
from .config import VerificationConfig
from .enums import RecommendationPriority, VerificationStatus
from .exceptions import PersistenceError
from .models import (
    CheckCycle,
    OverallResult,
    Recommendation,
    ReportSummary,
    VerificationReport,
)
from .site_checks import HTTPChecker, SSLChecker
from .reporting import ArtifactSink
from .resolvers import (
    CNAMELookup,
    CNAMEResolver,
    DoHClient,
    check_online,
    check_resolver,
    check_resolvers,
)

REPORT_NAME = "dns-verification"

_PRIORITY_ORDER = {
    RecommendationPriority.HIGH: 0,
    RecommendationPriority.MEDIUM: 1,
}


def evaluate_overall(details: dict[str, bool], quorum: int) -> OverallResult:
    """Success when at least ``quorum`` dimensions passed."""
    score = sum(1 for passed in details.values() if passed)
    total = len(details)
    return OverallResult(
        success=score >= quorum,
        score=score,
        total_checks=total,
        percentage=round(score / total * 100, 1) if total else 0.0,
        details=dict(details),
    )


def build_recommendations(
    cycle: Optional[CheckCycle],
    status: VerificationStatus,
) -> list[Recommendation]:
    """Remediation hints for the last observed cycle, high priority first."""
    recs: list[Recommendation] = []

    if cycle is not None:
        if not cycle.local.success:
            recs.append(Recommendation(
                type="dns_resolution",
                priority=RecommendationPriority.HIGH,
                message="The CNAME does not resolve to the target through the local resolver",
                action="Check the CNAME record configuration at the DNS provider",
            ))
        if not cycle.servers.success:
            recs.append(Recommendation(
                type="dns_propagation",
                priority=RecommendationPriority.MEDIUM,
                message=(
                    f"Only {cycle.servers.percentage:.0f}% of public resolvers "
                    "return the expected target"
                ),
                action="Wait for DNS propagation; resolver caches can take up to 48 hours",
            ))
        if not cycle.http.success and cycle.local.success:
            recs.append(Recommendation(
                type="http_configuration",
                priority=RecommendationPriority.HIGH,
                message="HTTPS access fails although DNS resolves",
                action="Check the custom domain settings on the hosting platform",
            ))
        if not cycle.ssl.success:
            recs.append(Recommendation(
                type="ssl_certificate",
                priority=RecommendationPriority.MEDIUM,
                message=f"TLS certificate problem: {cycle.ssl.error or 'unknown'}",
                action="Wait for certificate provisioning or check the certificate configuration",
            ))

    if status == VerificationStatus.TIMEOUT:
        recs.append(Recommendation(
            type="timeout",
            priority=RecommendationPriority.HIGH,
            message="Verification timed out before the record was confirmed",
            action="Configure the record manually or switch to an alternative provider",
        ))

    return sorted(recs, key=lambda r: _PRIORITY_ORDER[r.priority])


def build_next_steps(status: VerificationStatus, fqdn: str) -> list[str]:
    if status == VerificationStatus.SUCCESS:
        return [
            f"DNS is operational: https://{fqdn} is reachable",
            "Watch the TLS certificate until it is fully provisioned",
            "Start continuous monitoring with the 'monitor' command",
        ]
    if status == VerificationStatus.TIMEOUT:
        return [
            "Create the CNAME manually in the registrar's DNS panel",
            "Try an alternative DNS provider (for example Cloudflare)",
            "Contact registrar support if the record still does not propagate",
        ]
    return [
        "Keep waiting for DNS propagation",
        "Re-run verification in about 30 minutes",
        "Double-check the CNAME record configuration",
    ]


class Verifier:
    """Polls all verification dimensions until success or timeout."""

    def __init__(
        self,
        config: VerificationConfig,
        lookup: Optional[CNAMELookup] = None,
        doh_client: Optional[DoHClient] = None,
        http_checker: Optional[HTTPChecker] = None,
        ssl_checker: Optional[SSLChecker] = None,
        sink: Optional[ArtifactSink] = None,
        logger: Optional[AuditLogger] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._config = config
        self._lookup = lookup or CNAMEResolver(timeout=config.resolver_timeout_seconds)
        self._doh = doh_client or DoHClient(timeout=config.online_timeout_seconds)
        self._http = http_checker or HTTPChecker(
            timeout=config.http_timeout_seconds,
            max_redirects=config.max_redirects,
        )
        self._ssl = ssl_checker or SSLChecker(timeout=config.ssl_timeout_seconds)
        self._sink = sink
        self._logger = logger
        self._clock = clock
        self._sleep = sleep

    async def __aenter__(self) -> "Verifier":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def close(self) -> None:
        await self._doh.close()
        await self._http.close()

    async def run_cycle(self, fqdn: str, target: str) -> CheckCycle:
        """Run every dimension once, concurrently."""
        local, servers, online, http, ssl_check = await asyncio.gather(
            check_resolver(self._lookup, fqdn, target),
            check_resolvers(
                self._lookup, fqdn, target,
                self._config.resolvers, self._config.resolver_quorum,
            ),
            check_online(self._doh, fqdn, target, self._config.doh_services),
            self._http.check(fqdn),
            self._ssl.check(fqdn),
        )

        overall = evaluate_overall(
            {
                "local": local.success,
                "servers": servers.success,
                "online": online.success,
                "http": http.success,
                "ssl": ssl_check.success,
            },
            self._config.dimension_quorum,
        )

        return CheckCycle(
            timestamp=datetime.now(timezone.utc).isoformat(),
            fqdn=fqdn,
            target=target,
            local=local,
            servers=servers,
            online=online,
            http=http,
            ssl=ssl_check,
            overall=overall,
        )

    async def verify(
        self,
        fqdn: str,
        target: str,
        timeout: Optional[float] = None,
        max_cycles: Optional[int] = None,
    ) -> VerificationReport:
        """
        Verify until the quorum passes, the deadline expires, or
        ``max_cycles`` cycles have run.

        Args:
            fqdn: Published name
            target: Expected CNAME value
            timeout: Overall deadline in seconds (config default when None)
            max_cycles: Stop early with status in_progress after this many cycles

        Returns:
            VerificationReport, persisted through the sink when one is configured
        """
        timeout = self._config.timeout_seconds if timeout is None else timeout
        started = self._clock()
        deadline = started + timeout
        cycles = 0
        last: Optional[CheckCycle] = None
        status = VerificationStatus.IN_PROGRESS

        self._log_info(
            f"Verifying {fqdn} -> {target}",
            {"timeout_seconds": timeout, "interval_seconds": self._config.check_interval_seconds},
        )

        while True:
            remaining = deadline - self._clock()
            if remaining <= 0:
                status = VerificationStatus.TIMEOUT
                break

            try:
                cycle = await asyncio.wait_for(self.run_cycle(fqdn, target), timeout=remaining)
            except asyncio.TimeoutError:
                status = VerificationStatus.TIMEOUT
                break

            cycles += 1
            last = cycle
            passed, total = cycle.progress()
            self._log_info(
                f"Check #{cycles}: {cycle.overall.score}/{cycle.overall.total_checks} dimensions passed",
                {"individual_checks": f"{passed}/{total}", "details": cycle.overall.details},
            )

            if cycle.overall.success:
                status = VerificationStatus.SUCCESS
                break
            if max_cycles is not None and cycles >= max_cycles:
                break

            remaining = deadline - self._clock()
            if remaining <= 0:
                status = VerificationStatus.TIMEOUT
                break
            await self._sleep(min(self._config.check_interval_seconds, remaining))

        report = VerificationReport(
            summary=ReportSummary(
                fqdn=fqdn,
                target=target,
                status=status,
                duration_seconds=round(self._clock() - started, 3),
                timestamp=datetime.now(timezone.utc).isoformat(),
                total_checks=cycles,
            ),
            final_state=last,
            recommendations=build_recommendations(last, status),
            next_steps=build_next_steps(status, fqdn),
        )

        if self._sink is not None:
            try:
                report.artifact_path = self._sink.write_report(REPORT_NAME, report.to_dict())
            except PersistenceError as e:
                if self._logger:
                    self._logger.log_error("Verifier", "Could not save verification report", error=e)

        self._log_info(
            f"Verification finished: {status.value}",
            {"checks": cycles, "report": str(report.artifact_path) if report.artifact_path else None},
        )
        return report

    def _log_info(self, message: str, data: dict) -> None:
        if self._logger:
            self._logger.info("Verifier", message, data)
