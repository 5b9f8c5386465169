"""
Hostname validation and normalization.

Domains, subdomain labels and CNAME targets are normalized to lowercase
ASCII (IDNA for international names) before any provider or resolver
sees them.
"""

import re
from dataclasses import dataclass
from typing import Optional

import idna

from .enums import HostnameValidationErrorCode
from .exceptions import ValidationError


# Control chars, whitespace and symbols that never appear in a hostname
FORBIDDEN_CHARS_PATTERN = re.compile(
    r'[\x00-\x1f\x7f'
    r'\s'
    r'!@#$%^&*()+=\[\]{}|\\:;"\'<>,?/`~]'
)

MAX_LABEL_LENGTH = 63
MAX_HOSTNAME_LENGTH = 253


@dataclass
class HostnameValidationResult:
    """Result of hostname validation."""

    valid: bool
    canonical: Optional[str]
    error_code: Optional[HostnameValidationErrorCode] = None
    message: Optional[str] = None


class HostnameValidator:
    """Validates and normalizes domains, subdomain labels and targets."""

    def validate(self, raw: str, allow_single_label: bool = False) -> HostnameValidationResult:
        """
        Validate and normalize a hostname.

        Args:
            raw: The raw hostname string
            allow_single_label: Accept names without a dot (subdomain labels)

        Returns:
            HostnameValidationResult with the canonical form or an error
        """
        if not raw or not raw.strip():
            return HostnameValidationResult(
                valid=False,
                canonical=None,
                error_code=HostnameValidationErrorCode.EMPTY_INPUT,
                message="Hostname input is empty",
            )

        name = raw.strip().rstrip(".")

        if FORBIDDEN_CHARS_PATTERN.search(name):
            found = sorted(set(FORBIDDEN_CHARS_PATTERN.findall(name)))
            return HostnameValidationResult(
                valid=False,
                canonical=None,
                error_code=HostnameValidationErrorCode.FORBIDDEN_CHARS,
                message=f"Hostname contains forbidden characters: {found}",
            )

        try:
            canonical = self.normalize(name)
        except ValidationError as e:
            return HostnameValidationResult(
                valid=False,
                canonical=None,
                error_code=HostnameValidationErrorCode.IDNA_ERROR,
                message=e.message,
            )

        labels = canonical.split(".")
        if any(not label for label in labels) or (len(labels) < 2 and not allow_single_label):
            return HostnameValidationResult(
                valid=False,
                canonical=None,
                error_code=HostnameValidationErrorCode.EMPTY_INPUT,
                message=f"Hostname has empty labels: {raw!r}",
            )

        too_long = [label for label in labels if len(label) > MAX_LABEL_LENGTH]
        if too_long or len(canonical) > MAX_HOSTNAME_LENGTH:
            return HostnameValidationResult(
                valid=False,
                canonical=None,
                error_code=HostnameValidationErrorCode.LABEL_TOO_LONG,
                message="Hostname or label exceeds the DNS length limit",
            )

        return HostnameValidationResult(valid=True, canonical=canonical)

    def normalize(self, name: str) -> str:
        """
        Convert a hostname to lowercase, IDNA-encoded form.

        Raises:
            ValidationError: If IDNA encoding fails
        """
        lowered = name.lower()
        if all(ord(c) < 128 for c in lowered):
            return lowered

        try:
            return idna.encode(lowered, uts46=True).decode("ascii")
        except idna.IDNAError as e:
            raise ValidationError(
                code=HostnameValidationErrorCode.IDNA_ERROR.value,
                message=f"IDNA encoding failed: {e}",
                details={"hostname": name},
            )

    def require(self, raw: str, field_name: str, allow_single_label: bool = False) -> str:
        """Return the canonical form or raise ValidationError."""
        result = self.validate(raw, allow_single_label=allow_single_label)
        if not result.valid:
            raise ValidationError(
                code=result.error_code.value,
                message=f"Invalid {field_name}: {result.message}",
                details={"field": field_name, "value": raw},
            )
        return result.canonical


def normalize_target(value: str) -> str:
    """Compare-friendly form of a CNAME value (no trailing dot, lowercase)."""
    return value.strip().rstrip(".").lower()
