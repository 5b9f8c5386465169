"""
Retry Manager for the DNS failover system.

Retries provider calls with exponential backoff when the failure is
transient (timeouts, 5xx, 429, connection errors). Configuration problems
such as a missing zone or rejected credentials are returned immediately.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, Generic, Optional, TypeVar

from .config import RetryConfig
from .enums import ProviderErrorCode
from .exceptions import ProviderError
from .models import RecordResult

T = TypeVar("T")


@dataclass
class RetryResult(Generic[T]):
    """Result of a retry operation."""

    success: bool
    result: Optional[T]
    attempts: int
    last_error: Optional[Exception]


class RetryManager:
    """Manages retry logic with exponential backoff."""

    TRANSIENT_ERROR_CODES = {
        ProviderErrorCode.TIMEOUT.value,
        ProviderErrorCode.SERVER_ERROR.value,
        ProviderErrorCode.RATE_LIMITED.value,
        ProviderErrorCode.NETWORK_ERROR.value,
    }

    def __init__(self, config: RetryConfig) -> None:
        """
        Initialize the retry manager.

        Args:
            config: Retry configuration with max_retries, delays, and retryable errors
        """
        self._config = config

    @property
    def config(self) -> RetryConfig:
        return self._config

    def calculate_delay(self, attempt: int) -> float:
        """
        Calculate wait time with exponential backoff.

        delay(n) = base_delay * 2^n, capped at max_delay.

        Args:
            attempt: The current attempt number (0-indexed)

        Returns:
            The delay in seconds before the next retry
        """
        delay = self._config.base_delay_seconds * (2 ** attempt)
        return min(delay, self._config.max_delay_seconds)

    def is_retryable_error(self, error_code) -> bool:
        """
        Check if an error code indicates a retryable (transient) error.

        Args:
            error_code: The error code to check (string or ProviderErrorCode)

        Returns:
            True if the error is transient and should be retried
        """
        if error_code is None:
            return False
        code = error_code.value if hasattr(error_code, "value") else str(error_code)
        return code in self._config.retryable_errors or code in self.TRANSIENT_ERROR_CODES

    def is_retryable_exception(self, error: Exception) -> bool:
        """Provider errors carry their own flag; anything else is not retried."""
        if isinstance(error, ProviderError):
            return error.retryable or self.is_retryable_error(error.code)
        return False

    async def execute_with_retry(
        self,
        operation: Callable[[], Awaitable[T]],
        is_retryable: Optional[Callable[[Exception], bool]] = None,
    ) -> RetryResult[T]:
        """
        Execute an operation with retry logic and exponential backoff.

        Args:
            operation: The async operation to execute
            is_retryable: Optional function to determine if an exception is retryable.
                         If not provided, all exceptions are considered retryable.

        Returns:
            RetryResult containing success status, result, attempts, and last error
        """
        last_error: Optional[Exception] = None
        attempts = 0
        max_attempts = max(self._config.max_retries, 0) + 1

        while attempts < max_attempts:
            try:
                result = await operation()
                return RetryResult(
                    success=True,
                    result=result,
                    attempts=attempts + 1,
                    last_error=None,
                )
            except Exception as e:
                last_error = e
                attempts += 1

                should_retry = is_retryable(e) if is_retryable else True
                if not should_retry or attempts >= max_attempts:
                    break

                await asyncio.sleep(self.calculate_delay(attempts - 1))

        return RetryResult(
            success=False,
            result=None,
            attempts=attempts,
            last_error=last_error,
        )

    async def execute_record_with_retry(
        self,
        operation: Callable[[], Awaitable[RecordResult]],
    ) -> tuple[RecordResult, int]:
        """
        Execute a provider record operation, retrying transient failures.

        Providers report failures as RecordResult values rather than
        exceptions. A successful result or a non-retryable error code
        ends the loop immediately.

        Args:
            operation: The async record operation to execute

        Returns:
            Tuple of (final RecordResult, number of attempts)
        """
        attempts = 0
        max_attempts = max(self._config.max_retries, 0) + 1
        last_result: Optional[RecordResult] = None

        while attempts < max_attempts:
            attempts += 1
            try:
                last_result = await operation()
            except Exception as e:
                retryable = self.is_retryable_exception(e)
                code = (
                    ProviderErrorCode(e.code)
                    if isinstance(e, ProviderError) and e.code in _PROVIDER_CODES
                    else ProviderErrorCode.API_ERROR
                )
                last_result = RecordResult(
                    success=False,
                    error=str(e),
                    error_code=code,
                )
                if not retryable:
                    break
            else:
                if last_result.success or not self.is_retryable_error(last_result.error_code):
                    break

            if attempts < max_attempts:
                await asyncio.sleep(self.calculate_delay(attempts - 1))

        return last_result, attempts


_PROVIDER_CODES = {code.value for code in ProviderErrorCode}
