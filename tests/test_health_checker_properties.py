"""
Property-based tests for endpoint checking and the hysteresis tracker.

Uses Hypothesis to drive check result sequences through
EndpointHealthTracker and checks the state machine invariants.
"""

import asyncio

import httpx
from hypothesis import given, settings, assume
from hypothesis import strategies as st

from dns_failover.enums import EndpointState
from dns_failover.health_checker import (
    EndpointHealthTracker,
    EndpointChecker,
    update_uptime,
)
from dns_failover.models import Endpoint, HealthCheckResult, HealthHistoryEntry


def make_endpoint(name: str = "primary", state: EndpointState = EndpointState.UNKNOWN) -> Endpoint:
    return Endpoint(
        name=name,
        url=f"https://{name}.example.net/health",
        target=f"{name}.example.net",
        state=state,
    )


def make_result(name: str, success: bool, response_time_ms: float = 50.0) -> HealthCheckResult:
    return HealthCheckResult(
        timestamp="2026-01-01T00:00:00+00:00",
        target=name,
        url=f"https://{name}.example.net/health",
        success=success,
        response_time_ms=response_time_ms,
        status_code=200 if success else 503,
        error=None if success else "HTTP 503",
    )


def run_async(coro):
    """Helper to run async code in tests."""
    return asyncio.run(coro)


threshold_strategy = st.integers(min_value=1, max_value=6)


class TestFailureHysteresisProperty:
    """
    Property 1: An endpoint turns unhealthy exactly once per failure streak.
    """

    @given(
        failure_threshold=threshold_strategy,
        extra_failures=st.integers(min_value=0, max_value=10),
    )
    @settings(max_examples=100)
    def test_unhealthy_transition_happens_exactly_once(
        self, failure_threshold: int, extra_failures: int
    ) -> None:
        """
        *For any* failure threshold N and a healthy endpoint, N consecutive
        failures SHALL produce exactly one transition to UNHEALTHY, on the
        N-th failure, and further failures SHALL produce none.
        """
        tracker = EndpointHealthTracker(failure_threshold=failure_threshold, recovery_threshold=3)
        endpoint = make_endpoint(state=EndpointState.HEALTHY)

        transitions = []
        for i in range(failure_threshold + extra_failures):
            change = tracker.record(endpoint, make_result(endpoint.name, success=False))
            if change is not None:
                transitions.append((i + 1, change))

        assert transitions == [(failure_threshold, EndpointState.UNHEALTHY)]
        assert endpoint.state == EndpointState.UNHEALTHY
        assert endpoint.consecutive_failures == failure_threshold + extra_failures

    @given(
        failure_threshold=st.integers(min_value=2, max_value=6),
        pattern=st.lists(st.booleans(), min_size=1, max_size=40),
    )
    @settings(max_examples=100)
    def test_short_failure_runs_never_flip(self, failure_threshold: int, pattern: list[bool]) -> None:
        """
        *For any* check sequence whose failure runs are all shorter than the
        threshold, a healthy endpoint SHALL stay healthy.
        """
        run = 0
        longest = 0
        for ok in pattern:
            run = 0 if ok else run + 1
            longest = max(longest, run)
        assume(longest < failure_threshold)

        tracker = EndpointHealthTracker(failure_threshold=failure_threshold)
        endpoint = make_endpoint(state=EndpointState.HEALTHY)

        for ok in pattern:
            tracker.record(endpoint, make_result(endpoint.name, success=ok))

        assert endpoint.state == EndpointState.HEALTHY
        assert endpoint.healthy


class TestRecoveryHysteresisProperty:
    """
    Property 2: An unhealthy endpoint recovers exactly once per success streak.
    """

    @given(
        recovery_threshold=threshold_strategy,
        extra_successes=st.integers(min_value=0, max_value=10),
    )
    @settings(max_examples=100)
    def test_recovery_transition_happens_exactly_once(
        self, recovery_threshold: int, extra_successes: int
    ) -> None:
        """
        *For any* recovery threshold M, an UNHEALTHY endpoint SHALL become
        HEALTHY on exactly the M-th consecutive success and not before.
        """
        tracker = EndpointHealthTracker(failure_threshold=2, recovery_threshold=recovery_threshold)
        endpoint = make_endpoint(state=EndpointState.UNHEALTHY)

        transitions = []
        for i in range(recovery_threshold + extra_successes):
            change = tracker.record(endpoint, make_result(endpoint.name, success=True))
            if change is not None:
                transitions.append((i + 1, change))

        assert transitions == [(recovery_threshold, EndpointState.HEALTHY)]
        assert endpoint.state == EndpointState.HEALTHY

    @given(recovery_threshold=st.integers(min_value=2, max_value=6))
    @settings(max_examples=50)
    def test_interrupted_recovery_starts_over(self, recovery_threshold: int) -> None:
        """
        *For any* recovery threshold M >= 2, a failure inside a success streak
        SHALL reset the streak so the endpoint stays UNHEALTHY.
        """
        tracker = EndpointHealthTracker(failure_threshold=2, recovery_threshold=recovery_threshold)
        endpoint = make_endpoint(state=EndpointState.UNHEALTHY)

        for _ in range(recovery_threshold - 1):
            tracker.record(endpoint, make_result(endpoint.name, success=True))
        tracker.record(endpoint, make_result(endpoint.name, success=False))
        for _ in range(recovery_threshold - 1):
            tracker.record(endpoint, make_result(endpoint.name, success=True))

        assert endpoint.state == EndpointState.UNHEALTHY

    def test_unknown_endpoint_becomes_healthy_on_first_success(self) -> None:
        tracker = EndpointHealthTracker(failure_threshold=2, recovery_threshold=3)
        endpoint = make_endpoint()

        change = tracker.record(endpoint, make_result(endpoint.name, success=True))

        assert change == EndpointState.HEALTHY
        assert endpoint.consecutive_successes == 1

    def test_invalid_thresholds_are_rejected(self) -> None:
        try:
            EndpointHealthTracker(failure_threshold=0)
        except ValueError:
            return
        raise AssertionError("Expected ValueError")


class TestResponseTimeProperty:
    """
    Property 3: The rolling average is seeded by the first sample and then
    moves 10% toward each new sample.
    """

    @given(
        samples=st.lists(
            st.floats(min_value=1.0, max_value=5000.0, allow_nan=False),
            min_size=1,
            max_size=30,
        )
    )
    @settings(max_examples=100)
    def test_weighted_average(self, samples: list[float]) -> None:
        tracker = EndpointHealthTracker()
        endpoint = make_endpoint()

        expected = None
        for sample in samples:
            tracker.record(endpoint, make_result(endpoint.name, True, sample))
            expected = sample if expected is None else expected * 0.9 + sample * 0.1

        assert abs(endpoint.avg_response_ms - expected) < 1e-6
        assert endpoint.last_response_ms == samples[-1]
        assert min(samples) - 1e-6 <= endpoint.avg_response_ms <= max(samples) + 1e-6

    def test_failures_do_not_touch_the_average(self) -> None:
        tracker = EndpointHealthTracker()
        endpoint = make_endpoint()
        tracker.record(endpoint, make_result(endpoint.name, True, 120.0))
        tracker.record(endpoint, make_result(endpoint.name, False, 3000.0))

        assert endpoint.avg_response_ms == 120.0


class TestUptimeProperty:
    """
    Property 4: Uptime is the share of successful checks in the retained history.
    """

    @given(outcomes=st.lists(st.booleans(), min_size=1, max_size=100))
    @settings(max_examples=100)
    def test_uptime_matches_success_share(self, outcomes: list[bool]) -> None:
        endpoint = make_endpoint()
        other = make_endpoint("other")
        history = [
            HealthHistoryEntry(
                timestamp=float(i),
                results=(
                    make_result(endpoint.name, ok),
                    make_result(other.name, False),
                ),
            )
            for i, ok in enumerate(outcomes)
        ]

        uptime = update_uptime(endpoint, history)

        assert abs(uptime - sum(outcomes) / len(outcomes) * 100) < 1e-9
        assert endpoint.uptime_percent == uptime

    def test_empty_history_keeps_previous_uptime(self) -> None:
        endpoint = make_endpoint()
        endpoint.uptime_percent = 87.5
        assert update_uptime(endpoint, []) == 87.5


class TestEndpointCheckerProperty:
    """
    Property 5: Checking never raises; 2xx and 3xx are healthy, everything else is not.
    """

    @given(status=st.integers(min_value=200, max_value=599))
    @settings(max_examples=100)
    def test_status_classification(self, status: int) -> None:
        # Redirect statuses without a Location header are returned as-is
        transport = httpx.MockTransport(lambda request: httpx.Response(status))

        async def check():
            async with EndpointChecker(timeout=1.0, transport=transport) as checker:
                return await checker(make_endpoint())

        result = run_async(check())

        assert result.success == (200 <= status < 400)
        assert result.status_code == status
        assert result.target == "primary"
        assert (result.error is None) == result.success

    @given(
        error=st.sampled_from([
            httpx.ConnectError("refused"),
            httpx.ReadTimeout("slow"),
            httpx.RemoteProtocolError("garbage"),
        ])
    )
    @settings(max_examples=20)
    def test_transport_errors_become_failed_results(self, error: Exception) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise error

        async def check():
            async with EndpointChecker(timeout=1.0, transport=httpx.MockTransport(handler)) as checker:
                return await checker.check(make_endpoint())

        result = run_async(check())

        assert not result.success
        assert result.status_code is None
        assert result.error
