"""
Health-gated failover controller.

The controller checks every endpoint on a fixed cadence, feeds the results
through the hysteresis tracker, and repoints the CNAME at every available
provider when the active endpoint goes unhealthy (or when a much faster
healthy endpoint exists). One provider accepting the update is enough.
"""

import asyncio
import time
from collections import deque
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional

from .audit_logger import AuditLogger
from .config import FailoverConfig
from .enums import AlertType, EndpointState, FailoverReason, ProviderErrorCode
from .events import ControllerEvent, EventBus, EventType, Severity
from .exceptions import ConfigurationError, NetworkError
from .health_checker import EndpointHealthTracker, update_uptime
from .hostname import normalize_target
from .models import (
    Endpoint,
    FailoverEvent,
    HealthCheckResult,
    HealthHistoryEntry,
    ProviderUpdateOutcome,
    RecordRequest,
)
from .notifications import AlertPayload, AlertRouter
from .providers import ProviderRegistry
from .resolvers import CNAMELookup
from .retry_manager import RetryManager

CheckFn = Callable[[Endpoint], Awaitable[HealthCheckResult]]

COMPONENT = "FailoverController"

# Errors that will not go away by retrying; the provider is dropped for the run
CONFIGURATION_ERRORS = (ProviderErrorCode.ZONE_NOT_FOUND, ProviderErrorCode.MISSING_CREDENTIALS)


class FailoverController:
    """Owns the active endpoint and every decision to move away from it."""

    def __init__(
        self,
        config: FailoverConfig,
        registry: ProviderRegistry,
        checker: CheckFn,
        events: Optional[EventBus] = None,
        logger: Optional[AuditLogger] = None,
        retry_manager: Optional[RetryManager] = None,
        alert_router: Optional[AlertRouter] = None,
        lookup: Optional[CNAMELookup] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """
        Args:
            config: Failover tuning, domain and endpoints
            registry: Providers to update on failover
            checker: Async callable checking one endpoint
            events: Event bus for lifecycle events (a private one when None)
            logger: Optional audit logger
            retry_manager: Retries transient provider failures when given
            alert_router: Receives the critical no-provider/no-endpoint alert
            lookup: CNAME lookup used to detect the currently published target
            clock: Wall clock in seconds, used for history pruning
        """
        if not config.endpoints:
            raise ConfigurationError(
                code="no_endpoints",
                message="At least one endpoint must be configured",
            )

        self._config = config
        self._registry = registry
        self._checker = checker
        self._events = events or EventBus()
        self._logger = logger
        self._retry = retry_manager
        self._alerts = alert_router
        self._lookup = lookup
        self._clock = clock

        self._endpoints = [Endpoint.from_config(e) for e in config.endpoints]
        self._active = self._endpoints[0]
        self._tracker = EndpointHealthTracker(
            failure_threshold=config.failure_threshold,
            recovery_threshold=config.recovery_threshold,
        )
        self._health_history: deque[HealthHistoryEntry] = deque(
            maxlen=config.health_history_limit
        )
        self._failover_history: deque[FailoverEvent] = deque(
            maxlen=config.failover_history_limit
        )
        self._is_failing_over = False
        self._fast_mode = False
        self._degraded = False
        self._initialized = False
        self._stop_event: Optional[asyncio.Event] = None

    @property
    def fqdn(self) -> str:
        return RecordRequest(self._config.domain, self._config.subdomain, "").fqdn

    @property
    def endpoints(self) -> list[Endpoint]:
        return list(self._endpoints)

    @property
    def active_endpoint(self) -> Endpoint:
        return self._active

    @property
    def is_failing_over(self) -> bool:
        return self._is_failing_over

    @property
    def fast_mode(self) -> bool:
        return self._fast_mode

    @property
    def current_interval(self) -> float:
        if self._fast_mode:
            return self._config.fast_check_interval_seconds
        return self._config.check_interval_seconds

    @property
    def failover_history(self) -> list[FailoverEvent]:
        return list(self._failover_history)

    @property
    def health_history(self) -> list[HealthHistoryEntry]:
        return list(self._health_history)

    @property
    def events(self) -> EventBus:
        return self._events

    def endpoint(self, name: str) -> Optional[Endpoint]:
        for endpoint in self._endpoints:
            if endpoint.name == name:
                return endpoint
        return None

    async def initialize(self) -> None:
        """Verify providers once and adopt the endpoint already published."""
        health = await self._registry.verify_all()
        available = [name for name, h in health.items() if h.healthy]
        if not available:
            self._log_error("No DNS providers available; failover cannot update records")

        if self._config.detect_current_target and self._lookup is not None:
            await self.detect_current_endpoint()

        self._initialized = True
        self._publish(
            EventType.INITIALIZED,
            f"Monitoring {len(self._endpoints)} endpoints for {self.fqdn}",
            detail={
                "active": self._active.name,
                "providers": available,
            },
        )

    async def detect_current_endpoint(self) -> Optional[Endpoint]:
        """Point ``active`` at the endpoint whose target is currently published."""
        try:
            values = await self._lookup(self.fqdn, None)
        except NetworkError as e:
            self._log_warn("Could not resolve current CNAME", {"error": e.message})
            return None

        for endpoint in self._endpoints:
            if normalize_target(endpoint.target) in values:
                self._active = endpoint
                self._log_info(
                    f"Current CNAME points at {endpoint.name}",
                    {"target": endpoint.target},
                )
                return endpoint

        self._log_warn(
            "Current CNAME matches no configured endpoint",
            {"published": values, "assumed_active": self._active.name},
        )
        return None

    async def _check_endpoint(self, endpoint: Endpoint) -> HealthCheckResult:
        try:
            return await self._checker(endpoint)
        except Exception as e:
            return HealthCheckResult(
                timestamp=datetime.now(timezone.utc).isoformat(),
                target=endpoint.name,
                url=endpoint.url,
                success=False,
                response_time_ms=0.0,
                error=f"Check raised {type(e).__name__}: {e}",
            )

    async def run_cycle(self) -> Optional[FailoverEvent]:
        """
        Check all endpoints, apply the results, then evaluate failover.

        Results are applied only after every check has completed, so one
        cycle always sees a consistent snapshot.

        Returns:
            The FailoverEvent if this cycle attempted a failover
        """
        results = await asyncio.gather(*(self._check_endpoint(e) for e in self._endpoints))

        transitions: list[tuple[Endpoint, EndpointState, EndpointState]] = []
        for endpoint, result in zip(self._endpoints, results):
            before = endpoint.state
            after = self._tracker.record(endpoint, result)
            if after is not None:
                transitions.append((endpoint, before, after))

        self._health_history.append(HealthHistoryEntry(timestamp=self._clock(), results=tuple(results)))
        self._prune_history()
        for endpoint in self._endpoints:
            update_uptime(endpoint, self._health_history)

        self._publish(
            EventType.HEALTH_CHECK,
            "Health check cycle completed",
            detail={r.target: r.success for r in results},
        )

        for endpoint, before, after in transitions:
            if after == EndpointState.UNHEALTHY:
                self._fast_mode = True
                self._publish(
                    EventType.ENDPOINT_FAILED,
                    f"Endpoint {endpoint.name} is unhealthy",
                    severity=Severity.WARNING,
                    detail={
                        "endpoint": endpoint.name,
                        "consecutive_failures": endpoint.consecutive_failures,
                        "error": endpoint.last_check.error if endpoint.last_check else None,
                    },
                )
            elif before == EndpointState.UNHEALTHY:
                self._publish(
                    EventType.ENDPOINT_RECOVERED,
                    f"Endpoint {endpoint.name} recovered",
                    detail={"endpoint": endpoint.name},
                )

        event = await self.evaluate()

        if event is not None and event.success:
            self._fast_mode = False
        elif all(e.healthy for e in self._endpoints):
            self._fast_mode = False
        return event

    def _prune_history(self) -> None:
        cutoff = self._clock() - self._config.health_history_seconds
        while self._health_history and self._health_history[0].timestamp < cutoff:
            self._health_history.popleft()

    async def evaluate(self) -> Optional[FailoverEvent]:
        """Decide whether to move away from the active endpoint."""
        if self._is_failing_over:
            return None

        active = self._active
        if not active.healthy:
            candidates = sorted(
                (e for e in self._endpoints if e is not active and e.healthy),
                key=_response_key,
            )
            if not candidates:
                await self._enter_degraded()
                return None
            self._degraded = False
            return await self.perform_failover(candidates[0], FailoverReason.FAILURE)

        self._degraded = False
        if (
            self._config.optimization_enabled
            and active.consecutive_successes >= self._config.optimization_min_successes
        ):
            best = self.find_best_endpoint()
            if best is not None and best is not active and self._should_optimize(active, best):
                return await self.perform_failover(best, FailoverReason.OPTIMIZATION)

        return None

    def _should_optimize(self, active: Endpoint, best: Endpoint) -> bool:
        if active.avg_response_ms is None or best.avg_response_ms is None:
            return False
        return best.avg_response_ms < active.avg_response_ms * self._config.optimization_ratio

    def find_best_endpoint(self) -> Optional[Endpoint]:
        """Lowest score wins: downtime, latency and failure streaks all count against."""
        healthy = [e for e in self._endpoints if e.healthy]
        if not healthy:
            return None
        return min(healthy, key=endpoint_score)

    async def _enter_degraded(self) -> None:
        if self._degraded:
            return
        self._degraded = True
        no_providers = not self._registry.available()
        severity = Severity.CRITICAL if no_providers else Severity.WARNING

        self._log_error(
            "Active endpoint is unhealthy and no healthy alternative exists",
            {"active": self._active.name, "providers_available": not no_providers},
        )
        self._publish(
            EventType.NO_HEALTHY_ENDPOINTS,
            "No healthy endpoints available",
            severity=severity,
            detail={"active": self._active.name},
        )

        if no_providers and self._alerts is not None:
            await self._alerts.send(AlertPayload(
                alert_type=AlertType.CRITICAL,
                message="No DNS provider is available and no endpoint is healthy",
                fqdn=self.fqdn,
                severity="critical",
                data=self.get_status(),
            ))

    async def perform_failover(
        self,
        new_endpoint: Endpoint,
        reason: Optional[FailoverReason] = None,
    ) -> Optional[FailoverEvent]:
        """
        Repoint the CNAME at ``new_endpoint`` through every available provider.

        Returns:
            The recorded FailoverEvent, or None if nothing was attempted
            (unhealthy target, failover already running, no providers)
        """
        if not new_endpoint.healthy:
            self._log_warn(f"Refusing failover to unhealthy endpoint {new_endpoint.name}")
            return None
        if self._is_failing_over:
            return None

        providers = self._registry.available()
        if not providers:
            self._log_error(f"Cannot fail over to {new_endpoint.name}: no DNS providers available")
            self._publish(
                EventType.FAILOVER_FAILED,
                "No DNS providers available",
                severity=Severity.CRITICAL,
                detail={"to": new_endpoint.name},
            )
            return None

        self._is_failing_over = True
        previous = self._active
        if reason is None:
            reason = FailoverReason.OPTIMIZATION if previous.healthy else FailoverReason.FAILURE
        start = time.perf_counter()

        try:
            self._log_info(
                f"Failing over {previous.name} -> {new_endpoint.name}",
                {"reason": reason.value, "providers": [p.name for p in providers]},
            )
            outcomes = tuple(await asyncio.gather(
                *(self._update_provider(p, new_endpoint) for p in providers)
            ))
            success = any(o.success for o in outcomes)
            if success:
                self._active = new_endpoint

            event = FailoverEvent(
                timestamp=datetime.now(timezone.utc).isoformat(),
                previous_endpoint=previous.name,
                new_endpoint=new_endpoint.name,
                reason=reason,
                success=success,
                duration_ms=(time.perf_counter() - start) * 1000,
                outcomes=outcomes,
                error=None if success else "; ".join(
                    f"{o.provider}: {o.error}" for o in outcomes if o.error
                ),
            )
            self._failover_history.append(event)
        finally:
            self._is_failing_over = False

        if success:
            self._publish(
                EventType.FAILOVER_COMPLETED,
                f"Failover to {new_endpoint.name} completed",
                detail=event.to_dict(),
            )
        else:
            self._log_error(f"Failover to {new_endpoint.name} failed at every provider", {"error": event.error})
            self._publish(
                EventType.FAILOVER_FAILED,
                f"Failover to {new_endpoint.name} failed",
                severity=Severity.CRITICAL,
                detail=event.to_dict(),
            )
        return event

    async def _update_provider(self, provider, endpoint: Endpoint) -> ProviderUpdateOutcome:
        request = RecordRequest(
            domain=self._config.domain,
            subdomain=self._config.subdomain,
            target=endpoint.target,
            ttl=getattr(provider, "ttl", 300),
        )
        start = time.perf_counter()
        attempts = 1
        try:
            if self._retry is not None:
                result, attempts = await self._retry.execute_record_with_retry(
                    lambda: provider.create_or_update_record(request)
                )
            else:
                result = await provider.create_or_update_record(request)
        except Exception as e:
            if self._logger:
                self._logger.log_error(COMPONENT, f"Provider {provider.name} raised during update", error=e)
            if isinstance(e, ConfigurationError):
                self._disable_provider(provider, e.message)
            return ProviderUpdateOutcome(
                provider=provider.name,
                success=False,
                error=str(e),
                duration_ms=(time.perf_counter() - start) * 1000,
                attempts=attempts,
            )

        if not result.success and result.error_code in CONFIGURATION_ERRORS:
            self._disable_provider(provider, result.error)

        return ProviderUpdateOutcome(
            provider=provider.name,
            success=result.success,
            record_id=result.record_id,
            error=result.error,
            duration_ms=(time.perf_counter() - start) * 1000,
            attempts=attempts,
        )

    def _disable_provider(self, provider, reason: Optional[str]) -> None:
        provider.available = False
        self._log_warn(
            f"Provider {provider.name} disabled for the rest of the run",
            {"reason": reason},
        )

    def get_status(self) -> dict:
        return {
            "fqdn": self.fqdn,
            "active_endpoint": self._active.name,
            "is_failing_over": self._is_failing_over,
            "fast_mode": self._fast_mode,
            "endpoints": [e.to_dict() for e in self._endpoints],
            "providers": {
                p.name: {"available": p.available, "priority": p.priority}
                for p in self._registry.providers
            },
            "recent_failovers": [e.to_dict() for e in list(self._failover_history)[-10:]],
        }

    async def run(
        self,
        stop_event: Optional[asyncio.Event] = None,
        max_cycles: Optional[int] = None,
    ) -> None:
        """
        Run health cycles until stopped.

        The stop event is only checked between cycles, so a failover that
        has started always finishes before the loop exits.
        """
        self._stop_event = stop_event or asyncio.Event()
        if not self._initialized:
            await self.initialize()

        cycles = 0
        while not self._stop_event.is_set():
            await self.run_cycle()
            cycles += 1
            if max_cycles is not None and cycles >= max_cycles:
                break
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.current_interval)
            except asyncio.TimeoutError:
                pass

        self._publish(EventType.STOPPED, "Failover controller stopped", detail={"cycles": cycles})

    def stop(self) -> None:
        if self._stop_event is not None:
            self._stop_event.set()

    def _publish(
        self,
        event_type: EventType,
        message: str,
        severity: Severity = Severity.INFO,
        detail: Optional[dict] = None,
    ) -> None:
        self._events.publish(ControllerEvent(
            event_type=event_type,
            message=message,
            severity=severity,
            detail=detail or {},
        ))

    def _log_info(self, message: str, data: Optional[dict] = None) -> None:
        if self._logger:
            self._logger.info(COMPONENT, message, data)

    def _log_warn(self, message: str, data: Optional[dict] = None) -> None:
        if self._logger:
            self._logger.warn(COMPONENT, message, data)

    def _log_error(self, message: str, data: Optional[dict] = None) -> None:
        if self._logger:
            self._logger.log_error(COMPONENT, message, additional_data=data)


def endpoint_score(endpoint: Endpoint) -> float:
    avg = endpoint.avg_response_ms if endpoint.avg_response_ms is not None else 0.0
    return (
        (100 - endpoint.uptime_percent) * 10
        + avg
        + endpoint.consecutive_failures * 100
    )


def _response_key(endpoint: Endpoint) -> tuple:
    # Endpoints without samples sort after measured ones
    if endpoint.avg_response_ms is None:
        return (1, 0.0)
    return (0, endpoint.avg_response_ms)
