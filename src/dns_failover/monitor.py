"""
Continuous DNS monitoring with threshold alerts.
"""

import asyncio
from collections import deque
from dataclasses import dataclass, field
from typing import Optional

from .audit_logger import AuditLogger
from .config import MonitorConfig
from .enums import AlertType
from .models import CheckCycle
from .notifications import AlertPayload, AlertRouter
from .verifier import Verifier

COMPONENT = "DNSMonitor"

# 3 of the 4 monitored dimensions must pass
HEALTHY_RATIO = 0.75
PROPAGATION_WARNING_PERCENT = 50.0


@dataclass
class MonitorCheck:
    """One monitoring cycle, reduced to the monitor's health view."""

    cycle: CheckCycle
    healthy: bool
    score: int
    max_score: int
    percentage: int
    dimensions: dict[str, bool] = field(default_factory=dict)
    issues: list[dict] = field(default_factory=list)

    @property
    def timestamp(self) -> str:
        return self.cycle.timestamp

    def to_dict(self) -> dict:
        return {
            "timestamp": self.timestamp,
            "healthy": self.healthy,
            "score": self.score,
            "max_score": self.max_score,
            "percentage": self.percentage,
            "dimensions": dict(self.dimensions),
            "issues": list(self.issues),
        }


def identify_issues(cycle: CheckCycle, config: MonitorConfig) -> list[dict]:
    issues = []

    if not cycle.local.success:
        issues.append({
            "type": "dns_resolution",
            "severity": "critical",
            "message": "DNS resolution failed",
            "details": cycle.local.error,
        })

    if not cycle.http.success:
        issues.append({
            "type": "http_access",
            "severity": "critical",
            "message": f"HTTP access failed ({cycle.http.status_code or 'no response'})",
            "details": cycle.http.error,
        })

    days = cycle.ssl.days_until_expiry
    if days is not None and days < config.ssl_warning_days:
        issues.append({
            "type": "ssl_certificate",
            "severity": "critical" if days < config.ssl_critical_days else "warning",
            "message": f"SSL certificate expires in {days} days",
            "details": {"valid_to": cycle.ssl.valid_to},
        })
    elif not cycle.ssl.success and days is None:
        issues.append({
            "type": "ssl_certificate",
            "severity": "critical",
            "message": "SSL certificate check failed",
            "details": cycle.ssl.error,
        })

    if cycle.servers.percentage < PROPAGATION_WARNING_PERCENT:
        issues.append({
            "type": "dns_propagation",
            "severity": "warning",
            "message": f"Low DNS propagation: {cycle.servers.percentage:.0f}%",
            "details": [r.resolver for r in cycle.servers.results if not r.success],
        })

    return issues


def assess_cycle(cycle: CheckCycle, config: MonitorConfig) -> MonitorCheck:
    dimensions = {
        "dns": cycle.local.success,
        "http": cycle.http.success,
        "ssl": cycle.ssl.success,
        "propagation": cycle.servers.success,
    }
    score = sum(1 for ok in dimensions.values() if ok)
    max_score = len(dimensions)
    return MonitorCheck(
        cycle=cycle,
        healthy=score >= max_score * HEALTHY_RATIO,
        score=score,
        max_score=max_score,
        percentage=round(score / max_score * 100),
        dimensions=dimensions,
        issues=identify_issues(cycle, config),
    )


class DNSMonitor:
    """Runs verification cycles on a fixed interval and alerts on streaks."""

    def __init__(
        self,
        config: MonitorConfig,
        verifier: Verifier,
        alert_router: Optional[AlertRouter] = None,
        logger: Optional[AuditLogger] = None,
    ) -> None:
        self._config = config
        self._verifier = verifier
        self._alerts = alert_router
        self._logger = logger
        self._checks: deque[MonitorCheck] = deque(maxlen=config.history_limit)
        self._consecutive_failures = 0
        self._last: Optional[MonitorCheck] = None
        self._running = False
        self._stop_event: Optional[asyncio.Event] = None

    @property
    def checks(self) -> list[MonitorCheck]:
        return list(self._checks)

    @property
    def consecutive_failures(self) -> int:
        return self._consecutive_failures

    @property
    def is_running(self) -> bool:
        return self._running

    async def check_once(self, fqdn: str, target: str) -> MonitorCheck:
        cycle = await self._verifier.run_cycle(fqdn, target)
        check = assess_cycle(cycle, self._config)
        self._checks.append(check)

        if self._logger:
            status = "healthy" if check.healthy else "unhealthy"
            self._logger.info(
                COMPONENT,
                f"{fqdn} is {status} ({check.score}/{check.max_score})",
                {"issues": [i["type"] for i in check.issues]},
            )

        await self._handle_status(fqdn, check)
        return check

    async def _handle_status(self, fqdn: str, check: MonitorCheck) -> None:
        if check.healthy:
            if self._consecutive_failures > 0:
                await self._send(AlertPayload(
                    alert_type=AlertType.RECOVERY,
                    message=f"DNS service recovered after {self._consecutive_failures} failures",
                    fqdn=fqdn,
                    severity="info",
                ))
            self._consecutive_failures = 0
        else:
            self._consecutive_failures += 1
            if self._consecutive_failures >= self._config.alert_threshold:
                await self._send(AlertPayload(
                    alert_type=AlertType.FAILURE,
                    message=(
                        f"DNS service failure detected "
                        f"({self._consecutive_failures} consecutive failures)"
                    ),
                    fqdn=fqdn,
                    severity="critical",
                    issues=check.issues,
                ))

        # The first cycle establishes a baseline, it is not a change
        if self._last is not None and self._last.healthy != check.healthy:
            status = "healthy" if check.healthy else "unhealthy"
            await self._send(AlertPayload(
                alert_type=AlertType.STATUS_CHANGE,
                message=f"DNS status changed to: {status}",
                fqdn=fqdn,
                severity="info" if check.healthy else "warning",
                data={"previous": self._last.to_dict(), "current": check.to_dict()},
            ))

        self._last = check

    async def _send(self, payload: AlertPayload) -> None:
        if self._alerts is None:
            return
        results = await self._alerts.send(payload)
        failed = [r.channel for r in results if not r.success]
        if failed and self._logger:
            self._logger.warn(COMPONENT, "Alert delivery failed", {"channels": failed})

    def get_stats(self) -> Optional[dict]:
        if not self._checks:
            return None
        recent = list(self._checks)[-10:]
        healthy = sum(1 for c in recent if c.healthy)
        return {
            "total_checks": len(self._checks),
            "recent_uptime": round(healthy / len(recent) * 100),
            "consecutive_failures": self._consecutive_failures,
            "last_check": self._checks[-1].to_dict(),
            "is_running": self._running,
        }

    async def run(
        self,
        fqdn: str,
        target: str,
        stop_event: Optional[asyncio.Event] = None,
        max_cycles: Optional[int] = None,
    ) -> None:
        self._stop_event = stop_event or asyncio.Event()
        self._running = True
        cycles = 0
        if self._logger:
            self._logger.info(
                COMPONENT,
                f"Monitoring {fqdn} every {self._config.check_interval_seconds}s",
                {"target": target, "alert_threshold": self._config.alert_threshold},
            )
        try:
            while not self._stop_event.is_set():
                await self.check_once(fqdn, target)
                cycles += 1
                if max_cycles is not None and cycles >= max_cycles:
                    break
                try:
                    await asyncio.wait_for(
                        self._stop_event.wait(),
                        timeout=self._config.check_interval_seconds,
                    )
                except asyncio.TimeoutError:
                    pass
        finally:
            self._running = False

    def stop(self) -> None:
        if self._stop_event is not None:
            self._stop_event.set()
