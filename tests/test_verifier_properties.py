"""
Property-based tests for propagation verification.

Every dimension is driven by a fake: a scripted CNAME lookup, DoH and
HTTPS endpoints behind httpx.MockTransport, and a certificate fetcher.
Time is a fake clock advanced by the injected sleep.
"""

import asyncio
import ssl
from datetime import datetime, timezone
from pathlib import Path

import httpx
from hypothesis import given, settings
from hypothesis import strategies as st

from dns_failover.config import DoHServiceConfig, ResolverConfig, VerificationConfig
from dns_failover.enums import RecommendationPriority, VerificationStatus
from dns_failover.exceptions import NetworkError, PersistenceError
from dns_failover.site_checks import HTTPChecker, SSLChecker
from dns_failover.resolvers import DoHClient, check_resolvers
from dns_failover.verifier import (
    REPORT_NAME,
    Verifier,
    build_recommendations,
    evaluate_overall,
)

FQDN = "app.example.com"
TARGET = "primary.example.net"
NOW = datetime(2026, 1, 1, tzinfo=timezone.utc)

RESOLVERS = [
    ResolverConfig(name="Google Primary", address="8.8.8.8"),
    ResolverConfig(name="Cloudflare Primary", address="1.1.1.1"),
    ResolverConfig(name="Quad9", address="9.9.9.9"),
    ResolverConfig(name="OpenDNS Primary", address="208.67.222.222"),
]
DOH = [DoHServiceConfig(name="google", url="https://dns.google/resolve")]


def run_async(coro):
    """Helper to run async code in tests."""
    return asyncio.run(coro)


class FakeClock:
    """Monotonic clock advanced only by sleep()."""

    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class RecordingSink:
    def __init__(self, fail: bool = False) -> None:
        self.reports: list[tuple[str, dict]] = []
        self._fail = fail

    def write_report(self, name: str, payload: dict) -> Path:
        if self._fail:
            raise PersistenceError(code="write_failed", message="disk full")
        self.reports.append((name, payload))
        return Path(f"reports/{name}-1.json")


def scripted_lookup(local_ok: bool, passing_resolvers: int, failing_error: bool = False):
    """CNAME lookup where the first ``passing_resolvers`` public resolvers agree."""
    agreeing = {r.address for r in RESOLVERS[:passing_resolvers]}

    async def lookup(fqdn: str, nameserver):
        if nameserver is None:
            return [TARGET] if local_ok else []
        if nameserver in agreeing:
            return [TARGET]
        if failing_error:
            raise NetworkError(code="timeout", message=f"{nameserver} timed out")
        return ["old.example.net"]

    return lookup


def make_verifier(
    clock: FakeClock,
    local_ok: bool = True,
    passing_resolvers: int = 4,
    online_ok: bool = True,
    http_status: int = 200,
    ssl_ok: bool = True,
    dimension_quorum: int = 3,
    interval: float = 10.0,
    sink=None,
) -> Verifier:
    config = VerificationConfig(
        timeout_seconds=60.0,
        check_interval_seconds=interval,
        resolver_quorum=0.5,
        dimension_quorum=dimension_quorum,
        resolvers=list(RESOLVERS),
        doh_services=list(DOH),
    )

    def doh_handler(request: httpx.Request) -> httpx.Response:
        answer = [{"name": FQDN + ".", "type": 5, "data": TARGET + "."}] if online_ok else []
        return httpx.Response(200, json={"Status": 0, "Answer": answer})

    async def fetch_certificate(host: str, port: int, timeout: float) -> dict:
        if not ssl_ok:
            raise ssl.SSLError("handshake failure")
        return {
            "notBefore": "Dec  1 00:00:00 2025 GMT",
            "notAfter": "Jun 15 12:00:00 2026 GMT",
            "issuer": ((("organizationName", "Let's Encrypt"),), (("commonName", "R11"),)),
            "subject": ((("commonName", FQDN),),),
        }

    return Verifier(
        config,
        lookup=scripted_lookup(local_ok, passing_resolvers),
        doh_client=DoHClient(transport=httpx.MockTransport(doh_handler)),
        http_checker=HTTPChecker(transport=httpx.MockTransport(lambda r: httpx.Response(http_status))),
        ssl_checker=SSLChecker(fetcher=fetch_certificate, now=lambda: NOW),
        sink=sink,
        clock=clock,
        sleep=clock.sleep,
    )


class TestDimensionQuorumProperty:
    """
    Property 1: The overall result passes iff at least quorum dimensions pass.
    """

    @given(
        details=st.fixed_dictionaries({
            "local": st.booleans(),
            "servers": st.booleans(),
            "online": st.booleans(),
            "http": st.booleans(),
            "ssl": st.booleans(),
        }),
        quorum=st.integers(min_value=1, max_value=5),
    )
    @settings(max_examples=100)
    def test_evaluate_overall(self, details: dict, quorum: int) -> None:
        result = evaluate_overall(details, quorum)
        score = sum(details.values())

        assert result.score == score
        assert result.total_checks == 5
        assert result.success == (score >= quorum)
        assert result.percentage == round(score / 5 * 100, 1)

    @given(
        local_ok=st.booleans(),
        passing_resolvers=st.integers(min_value=0, max_value=4),
        online_ok=st.booleans(),
        http_status=st.sampled_from([200, 301, 404, 503]),
        ssl_ok=st.booleans(),
    )
    @settings(max_examples=60, deadline=None)
    def test_cycle_reflects_each_dimension(
        self,
        local_ok: bool,
        passing_resolvers: int,
        online_ok: bool,
        http_status: int,
        ssl_ok: bool,
    ) -> None:
        """
        *For any* combination of passing and failing dimensions, one cycle
        SHALL report each dimension as observed, and the public resolver
        dimension SHALL pass iff at least half of the resolvers agree.
        """
        verifier = make_verifier(
            FakeClock(),
            local_ok=local_ok,
            passing_resolvers=passing_resolvers,
            online_ok=online_ok,
            http_status=http_status,
            ssl_ok=ssl_ok,
        )

        async def one_cycle():
            async with verifier:
                return await verifier.run_cycle(FQDN, TARGET)

        cycle = run_async(one_cycle())

        assert cycle.overall.details == {
            "local": local_ok,
            "servers": passing_resolvers >= 2,
            "online": online_ok,
            "http": http_status < 400,
            "ssl": ssl_ok,
        }
        assert cycle.servers.successful == passing_resolvers
        assert cycle.servers.total == len(RESOLVERS)
        passed, total = cycle.progress()
        assert total == 1 + len(RESOLVERS) + len(DOH) + 2
        if ssl_ok:
            assert cycle.ssl.days_until_expiry == (datetime(2026, 6, 15, 12, tzinfo=timezone.utc) - NOW).days
            assert cycle.ssl.issuer == "R11"

    @given(passing=st.integers(min_value=0, max_value=4))
    @settings(max_examples=20, deadline=None)
    def test_resolver_errors_count_as_failures(self, passing: int) -> None:
        result = run_async(check_resolvers(
            scripted_lookup(True, passing, failing_error=True), FQDN, TARGET, RESOLVERS, 0.5
        ))

        assert result.successful == passing
        assert all(r.error for r in result.results if not r.success)
        assert result.percentage == round(passing / len(RESOLVERS) * 100, 1)


class TestVerificationLoopProperty:
    """
    Property 2: Verification stops at the first passing cycle or at the deadline.
    """

    @given(timeout=st.integers(min_value=1, max_value=90), interval=st.integers(min_value=1, max_value=20))
    @settings(max_examples=100, deadline=None)
    def test_timeout_when_quorum_never_passes(self, timeout: int, interval: int) -> None:
        """
        *For any* timeout T and interval I where nothing resolves, the run
        SHALL end TIMEOUT after ceil(T / I) cycles without sleeping past T.
        """
        clock = FakeClock()
        verifier = make_verifier(
            clock,
            local_ok=False,
            passing_resolvers=0,
            online_ok=False,
            http_status=503,
            ssl_ok=False,
            interval=float(interval),
        )

        report = run_async(verifier.verify(FQDN, TARGET, timeout=float(timeout)))

        assert report.summary.status == VerificationStatus.TIMEOUT
        assert report.summary.total_checks == -(-timeout // interval)
        assert sum(clock.sleeps) == timeout
        assert all(s <= interval for s in clock.sleeps)
        assert not report.success
        assert report.recommendations[0].priority == RecommendationPriority.HIGH
        assert any(r.type == "timeout" for r in report.recommendations)

    def test_success_on_first_cycle(self) -> None:
        clock = FakeClock()
        sink = RecordingSink()
        verifier = make_verifier(clock, sink=sink)

        report = run_async(verifier.verify(FQDN, TARGET))

        assert report.success
        assert report.summary.total_checks == 1
        assert clock.sleeps == []
        assert report.recommendations == []
        assert report.next_steps[0].startswith("DNS is operational")
        [(name, payload)] = sink.reports
        assert name == REPORT_NAME
        assert payload["summary"]["status"] == "success"
        assert report.artifact_path == Path(f"reports/{REPORT_NAME}-1.json")

    @given(max_cycles=st.integers(min_value=1, max_value=4))
    @settings(max_examples=10, deadline=None)
    def test_max_cycles_leaves_in_progress(self, max_cycles: int) -> None:
        clock = FakeClock()
        verifier = make_verifier(clock, dimension_quorum=5, ssl_ok=False)

        report = run_async(verifier.verify(FQDN, TARGET, timeout=1000.0, max_cycles=max_cycles))

        assert report.summary.status == VerificationStatus.IN_PROGRESS
        assert report.summary.total_checks == max_cycles
        assert report.final_state is not None
        assert report.final_state.overall.score == 4

    def test_report_write_failure_does_not_fail_verification(self) -> None:
        verifier = make_verifier(FakeClock(), sink=RecordingSink(fail=True))

        report = run_async(verifier.verify(FQDN, TARGET))

        assert report.success
        assert report.artifact_path is None


class TestRecommendationsProperty:
    """
    Property 3: Recommendations are ordered high priority first.
    """

    @given(
        local_ok=st.booleans(),
        passing_resolvers=st.integers(min_value=0, max_value=4),
        http_status=st.sampled_from([200, 503]),
        ssl_ok=st.booleans(),
        status=st.sampled_from(list(VerificationStatus)),
    )
    @settings(max_examples=60, deadline=None)
    def test_ordering_and_content(
        self,
        local_ok: bool,
        passing_resolvers: int,
        http_status: int,
        ssl_ok: bool,
        status: VerificationStatus,
    ) -> None:
        verifier = make_verifier(
            FakeClock(),
            local_ok=local_ok,
            passing_resolvers=passing_resolvers,
            http_status=http_status,
            ssl_ok=ssl_ok,
        )
        async def one_cycle():
            async with verifier:
                return await verifier.run_cycle(FQDN, TARGET)

        cycle = run_async(one_cycle())

        recs = build_recommendations(cycle, status)

        priorities = [r.priority for r in recs]
        assert priorities == sorted(priorities, key=lambda p: p != RecommendationPriority.HIGH)
        types = {r.type for r in recs}
        assert ("dns_resolution" in types) == (not local_ok)
        assert ("dns_propagation" in types) == (passing_resolvers < 2)
        assert ("http_configuration" in types) == (http_status >= 400 and local_ok)
        assert ("ssl_certificate" in types) == (not ssl_ok)
        assert ("timeout" in types) == (status == VerificationStatus.TIMEOUT)
