"""
Exception classes for the DNS failover system.

All exceptions inherit from DNSFailoverError and provide structured
error information with codes, messages, and optional details.
"""

from typing import Optional


class DNSFailoverError(Exception):
    """Base exception for all DNS failover errors."""

    def __init__(
        self,
        code: str,
        message: str,
        details: Optional[dict] = None,
    ) -> None:
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(code={self.code!r}, message={self.message!r})"

    def to_dict(self) -> dict:
        """Convert exception to dictionary for serialization."""
        return {
            "error_type": self.__class__.__name__,
            "code": self.code,
            "message": self.message,
            "details": self.details,
        }


class ValidationError(DNSFailoverError):
    """Raised when a hostname, subdomain or target fails validation."""

    pass


class ConfigurationError(DNSFailoverError):
    """Raised for non-retryable setup problems (bad config, missing zone)."""

    pass


class CredentialError(ConfigurationError):
    """Raised when no credential source yields a complete credential set."""

    pass


class ZoneNotFoundError(ConfigurationError):
    """Raised when the provider account has no zone for the domain."""

    pass


class NetworkError(DNSFailoverError):
    """Raised when network operations fail."""

    pass


class ProviderError(DNSFailoverError):
    """
    Raised by provider backends for API failures.

    The ``retryable`` flag tells the retry layer whether another attempt
    could succeed (timeouts, 5xx, 429) or not (auth failures, bad input).
    """

    def __init__(
        self,
        code: str,
        message: str,
        details: Optional[dict] = None,
        retryable: bool = False,
    ) -> None:
        super().__init__(code, message, details)
        self.retryable = retryable


class PersistenceError(DNSFailoverError):
    """Raised when report or log artifacts cannot be written."""

    pass


class NotificationError(DNSFailoverError):
    """Raised when alert delivery fails."""

    pass
