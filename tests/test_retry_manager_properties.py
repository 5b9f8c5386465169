"""
Property-based tests for the Retry Manager module.

Uses Hypothesis to check exponential backoff and the split between
transient provider failures (retried) and definitive ones (returned).
"""

import asyncio

from hypothesis import given, settings
from hypothesis import strategies as st

from dns_failover.config import RetryConfig
from dns_failover.enums import ProviderErrorCode
from dns_failover.exceptions import ProviderError
from dns_failover.models import RecordResult
from dns_failover.retry_manager import RetryManager

TRANSIENT_CODES = [
    ProviderErrorCode.TIMEOUT,
    ProviderErrorCode.SERVER_ERROR,
    ProviderErrorCode.RATE_LIMITED,
    ProviderErrorCode.NETWORK_ERROR,
]
DEFINITIVE_CODES = [
    ProviderErrorCode.ZONE_NOT_FOUND,
    ProviderErrorCode.AUTH_FAILED,
    ProviderErrorCode.MISSING_CREDENTIALS,
    ProviderErrorCode.API_ERROR,
]


def run_async(coro):
    """Helper to run async code in tests."""
    return asyncio.run(coro)


@st.composite
def retry_config_strategy(draw) -> RetryConfig:
    """Generate RetryConfig objects with delays short enough to sleep through."""
    return RetryConfig(
        max_retries=draw(st.integers(min_value=0, max_value=5)),
        base_delay_seconds=draw(st.floats(min_value=0.0, max_value=0.002)),
        max_delay_seconds=draw(st.floats(min_value=0.002, max_value=0.005)),
    )


class ScriptedOperation:
    """Returns the scripted RecordResults in order, repeating the last one."""

    def __init__(self, results: list[RecordResult]) -> None:
        self._results = results
        self.calls = 0

    async def __call__(self) -> RecordResult:
        result = self._results[min(self.calls, len(self._results) - 1)]
        self.calls += 1
        return result


class TestExponentialBackoffProperty:
    """
    Property 1: Delays double per attempt and never exceed max_delay.
    """

    @given(
        base=st.floats(min_value=0.1, max_value=5.0),
        cap=st.floats(min_value=5.0, max_value=120.0),
        attempts=st.integers(min_value=1, max_value=12),
    )
    @settings(max_examples=100)
    def test_delay_formula(self, base: float, cap: float, attempts: int) -> None:
        """
        *For any* base delay and cap, delay(n) SHALL equal
        min(base * 2^n, cap) and SHALL be non-decreasing in n.
        """
        manager = RetryManager(RetryConfig(base_delay_seconds=base, max_delay_seconds=cap))

        delays = [manager.calculate_delay(n) for n in range(attempts)]

        for n, delay in enumerate(delays):
            assert abs(delay - min(base * 2 ** n, cap)) < 1e-9
        assert delays == sorted(delays)
        assert max(delays) <= cap

    @given(code=st.sampled_from(TRANSIENT_CODES))
    def test_transient_codes_are_retryable(self, code: ProviderErrorCode) -> None:
        manager = RetryManager(RetryConfig(retryable_errors=[]))
        assert manager.is_retryable_error(code)
        assert manager.is_retryable_error(code.value)

    @given(code=st.sampled_from(DEFINITIVE_CODES))
    def test_definitive_codes_are_not_retryable(self, code: ProviderErrorCode) -> None:
        manager = RetryManager(RetryConfig())
        assert not manager.is_retryable_error(code)
        assert not manager.is_retryable_error(None)


class TestRecordRetryProperty:
    """
    Property 2: Record operations are retried only while the failure is transient.
    """

    @given(
        config=retry_config_strategy(),
        code=st.sampled_from(TRANSIENT_CODES),
    )
    @settings(max_examples=100, deadline=None)
    def test_persistent_transient_failure_exhausts_attempts(
        self, config: RetryConfig, code: ProviderErrorCode
    ) -> None:
        """
        *For any* config, an operation that keeps failing transiently SHALL
        be attempted exactly max_retries + 1 times and return its last result.
        """
        operation = ScriptedOperation([RecordResult(success=False, error="busy", error_code=code)])

        result, attempts = run_async(RetryManager(config).execute_record_with_retry(operation))

        assert not result.success
        assert result.error_code == code
        assert attempts == config.max_retries + 1
        assert operation.calls == attempts

    @given(
        config=retry_config_strategy(),
        code=st.sampled_from(DEFINITIVE_CODES),
    )
    @settings(max_examples=100, deadline=None)
    def test_definitive_failure_is_not_retried(
        self, config: RetryConfig, code: ProviderErrorCode
    ) -> None:
        """
        *For any* definitive error such as a missing zone, the operation
        SHALL run exactly once.
        """
        operation = ScriptedOperation([RecordResult(success=False, error="nope", error_code=code)])

        result, attempts = run_async(RetryManager(config).execute_record_with_retry(operation))

        assert attempts == 1
        assert result.error_code == code

    @given(
        failures=st.integers(min_value=0, max_value=4),
        code=st.sampled_from(TRANSIENT_CODES),
    )
    @settings(max_examples=100, deadline=None)
    def test_success_after_transient_failures(self, failures: int, code: ProviderErrorCode) -> None:
        """
        *For any* k transient failures followed by success within the
        retry budget, the result SHALL be the success after k + 1 attempts.
        """
        config = RetryConfig(max_retries=5, base_delay_seconds=0.0, max_delay_seconds=0.0)
        operation = ScriptedOperation(
            [RecordResult(success=False, error_code=code)] * failures
            + [RecordResult(success=True, record_id="r1", action="updated")]
        )

        result, attempts = run_async(RetryManager(config).execute_record_with_retry(operation))

        assert result.success
        assert result.record_id == "r1"
        assert attempts == failures + 1

    @given(
        retryable=st.booleans(),
        max_retries=st.integers(min_value=1, max_value=4),
    )
    @settings(max_examples=50, deadline=None)
    def test_raised_provider_errors_follow_their_flag(self, retryable: bool, max_retries: int) -> None:
        """
        *For any* ProviderError raised by the operation, it SHALL be turned
        into a failed RecordResult and retried only when flagged retryable.
        """
        calls = []

        async def operation() -> RecordResult:
            calls.append(1)
            raise ProviderError(
                code=ProviderErrorCode.API_ERROR.value,
                message="provider said no",
                retryable=retryable,
            )

        config = RetryConfig(max_retries=max_retries, base_delay_seconds=0.0, max_delay_seconds=0.0)
        result, attempts = run_async(RetryManager(config).execute_record_with_retry(operation))

        assert not result.success
        assert result.error_code == ProviderErrorCode.API_ERROR
        assert attempts == (max_retries + 1 if retryable else 1)
        assert len(calls) == attempts

    def test_unexpected_exceptions_are_not_retried(self) -> None:
        calls = []

        async def operation() -> RecordResult:
            calls.append(1)
            raise KeyError("id")

        result, attempts = run_async(
            RetryManager(RetryConfig(base_delay_seconds=0.0)).execute_record_with_retry(operation)
        )

        assert attempts == 1
        assert result.error_code == ProviderErrorCode.API_ERROR


class TestExecuteWithRetryProperty:
    """
    Property 3: Generic operations stop at the first success or a non-retryable exception.
    """

    @given(
        failures=st.integers(min_value=0, max_value=6),
        max_retries=st.integers(min_value=0, max_value=4),
    )
    @settings(max_examples=100, deadline=None)
    def test_attempt_count(self, failures: int, max_retries: int) -> None:
        config = RetryConfig(max_retries=max_retries, base_delay_seconds=0.0, max_delay_seconds=0.0)
        state = {"calls": 0}

        async def operation() -> str:
            state["calls"] += 1
            if state["calls"] <= failures:
                raise ProviderError(code="timeout", message="slow", retryable=True)
            return "ok"

        manager = RetryManager(config)
        result = run_async(manager.execute_with_retry(operation, manager.is_retryable_exception))

        if failures <= max_retries:
            assert result.success
            assert result.result == "ok"
            assert result.attempts == failures + 1
        else:
            assert not result.success
            assert result.attempts == max_retries + 1
            assert isinstance(result.last_error, ProviderError)

    @given(max_retries=st.integers(min_value=-5, max_value=-1))
    @settings(max_examples=10, deadline=None)
    def test_negative_retry_count_still_runs_once(self, max_retries: int) -> None:
        """
        *For any* negative max_retries, both retry helpers SHALL run the
        operation exactly once and return its outcome.
        """
        manager = RetryManager(RetryConfig(max_retries=max_retries, base_delay_seconds=0.0))
        calls = {"record": 0, "plain": 0}

        async def record() -> RecordResult:
            calls["record"] += 1
            return RecordResult(success=False, error="gateway", error_code=ProviderErrorCode.SERVER_ERROR)

        async def plain() -> str:
            calls["plain"] += 1
            return "ok"

        result, attempts = run_async(manager.execute_record_with_retry(record))
        outcome = run_async(manager.execute_with_retry(plain))

        assert not result.success
        assert attempts == 1
        assert outcome.success and outcome.attempts == 1
        assert calls == {"record": 1, "plain": 1}
