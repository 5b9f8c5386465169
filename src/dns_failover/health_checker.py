"""
Endpoint checking and the hysteresis state machine.

A check is a plain HTTP GET; 2xx and 3xx count as healthy. The tracker
turns a stream of check results into UNKNOWN/HEALTHY/UNHEALTHY state
changes so that a single failed check never flips an endpoint.
"""

import time
from datetime import datetime, timezone
from typing import Iterable, Optional

import httpx

from .enums import EndpointState
from .models import Endpoint, HealthCheckResult, HealthHistoryEntry

RESPONSE_TIME_WEIGHT = 0.1


class EndpointChecker:
    """Async HTTP checker for endpoint health URLs."""

    def __init__(
        self,
        timeout: float = 3.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        """
        Args:
            timeout: Per-check timeout in seconds
            transport: Optional httpx transport (tests use httpx.MockTransport)
        """
        self._timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def __aenter__(self) -> "EndpointChecker":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self._timeout),
                follow_redirects=True,
                transport=self._transport,
                headers={"User-Agent": "dns-failover-health-check/0.1"},
            )
        return self._client

    async def check(self, endpoint: Endpoint) -> HealthCheckResult:
        """
        Check one endpoint. Never raises; failures are reported in the result.
        """
        start = time.perf_counter()
        status_code: Optional[int] = None
        error: Optional[str] = None

        try:
            response = await self._get_client().get(endpoint.url)
            status_code = response.status_code
            success = 200 <= status_code < 400
            if not success:
                error = f"HTTP {status_code}"
        except httpx.TimeoutException:
            success = False
            error = f"Timed out after {self._timeout}s"
        except httpx.HTTPError as e:
            success = False
            error = f"Connection error: {e}"

        return HealthCheckResult(
            timestamp=datetime.now(timezone.utc).isoformat(),
            target=endpoint.name,
            url=endpoint.url,
            success=success,
            response_time_ms=(time.perf_counter() - start) * 1000,
            status_code=status_code,
            error=error,
        )

    __call__ = check


class EndpointHealthTracker:
    """
    Applies check results to endpoints.

    ``failure_threshold`` consecutive failures mark an endpoint UNHEALTHY;
    ``recovery_threshold`` consecutive successes bring it back. The first
    success of an UNKNOWN endpoint makes it HEALTHY straight away.
    """

    def __init__(self, failure_threshold: int = 2, recovery_threshold: int = 3) -> None:
        if failure_threshold < 1 or recovery_threshold < 1:
            raise ValueError("Thresholds must be at least 1")
        self.failure_threshold = failure_threshold
        self.recovery_threshold = recovery_threshold

    def record(self, endpoint: Endpoint, result: HealthCheckResult) -> Optional[EndpointState]:
        """
        Update counters, response times and state.

        Returns:
            The new state if this result caused a transition, else None
        """
        previous = endpoint.state
        endpoint.last_check = result

        if result.success:
            endpoint.consecutive_failures = 0
            endpoint.consecutive_successes += 1
            endpoint.last_response_ms = result.response_time_ms
            if endpoint.avg_response_ms is None:
                endpoint.avg_response_ms = result.response_time_ms
            else:
                endpoint.avg_response_ms = (
                    endpoint.avg_response_ms * (1 - RESPONSE_TIME_WEIGHT)
                    + result.response_time_ms * RESPONSE_TIME_WEIGHT
                )

            if previous == EndpointState.UNKNOWN:
                endpoint.state = EndpointState.HEALTHY
            elif (
                previous == EndpointState.UNHEALTHY
                and endpoint.consecutive_successes >= self.recovery_threshold
            ):
                endpoint.state = EndpointState.HEALTHY
        else:
            endpoint.consecutive_successes = 0
            endpoint.consecutive_failures += 1
            if (
                previous != EndpointState.UNHEALTHY
                and endpoint.consecutive_failures >= self.failure_threshold
            ):
                endpoint.state = EndpointState.UNHEALTHY

        return endpoint.state if endpoint.state != previous else None


def update_uptime(endpoint: Endpoint, history: Iterable[HealthHistoryEntry]) -> float:
    """Recompute uptime from the retained history; untouched without samples."""
    total = 0
    healthy = 0
    for entry in history:
        for result in entry.results:
            if result.target == endpoint.name:
                total += 1
                healthy += 1 if result.success else 0

    if total:
        endpoint.uptime_percent = healthy / total * 100
    return endpoint.uptime_percent
