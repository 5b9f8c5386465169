"""
Property-based tests for Audit Logger module.

Uses Hypothesis to check output formats, level filtering, credential
masking and HMAC signing of log entries.
"""

import json
import string
from io import StringIO

from hypothesis import given, settings, assume
from hypothesis import strategies as st

from dns_failover.audit_logger import AuditLogger
from dns_failover.config import LoggingConfig
from dns_failover.enums import LogLevel
from dns_failover.exceptions import ProviderError


@st.composite
def component_name_strategy(draw) -> str:
    """Generate component names."""
    return draw(st.sampled_from([
        "ProviderRegistry",
        "FailoverController",
        "Verifier",
        "DNSMonitor",
        "PorkbunProvider",
    ]))


@st.composite
def message_strategy(draw) -> str:
    """Generate single-line log messages."""
    return draw(st.text(
        alphabet=st.characters(
            whitelist_categories=('L', 'N', 'P', 'S', 'Zs'),
            blacklist_characters='\x00\n\r',
        ),
        min_size=1,
        max_size=120,
    ))


@st.composite
def plain_data_strategy(draw) -> dict:
    """Generate data dicts whose keys match no sensitive pattern."""
    keys = draw(st.lists(
        st.sampled_from(["fqdn", "target", "provider", "attempts", "status_code", "endpoint"]),
        unique=True,
        max_size=4,
    ))
    value = st.one_of(st.integers(), st.text(alphabet=string.ascii_letters + string.digits + " .-", max_size=20))
    return {key: draw(value) for key in keys}


sensitive_key_strategy = st.sampled_from([
    "api_token", "secret_key", "apikey", "secretapikey", "Authorization",
    "access_token", "password", "bot_token", "webhook_url",
])


class TestOutputFormatProperty:
    """
    Property 1: Each configured format writes one line per entry.
    """

    @given(
        output_format=st.sampled_from(["json", "text", "both"]),
        component=component_name_strategy(),
        message=message_strategy(),
        data=plain_data_strategy(),
    )
    @settings(max_examples=100)
    def test_lines_per_format(self, output_format: str, component: str, message: str, data: dict) -> None:
        """
        *For any* entry, 'json' and 'text' SHALL write one line and 'both'
        SHALL write a JSON line followed by a text line.
        """
        stream = StringIO()
        logger = AuditLogger(output_format=output_format, output_stream=stream)

        entry = logger.info(component, message, data)

        lines = stream.getvalue().splitlines()
        assert len(lines) == (2 if output_format == "both" else 1)
        if output_format in ("json", "both"):
            parsed = json.loads(lines[0])
            assert parsed["component"] == component
            assert parsed["message"] == message
            assert parsed["level"] == "info"
            assert parsed["data"] == data
        if output_format in ("text", "both"):
            assert lines[-1] == logger.format_text(entry)
            assert f"INFO [{component}]" in lines[-1]

    def test_invalid_format_is_rejected(self) -> None:
        try:
            AuditLogger(output_format="xml")
        except ValueError:
            return
        raise AssertionError("Expected ValueError")


class TestLevelFilterProperty:
    """
    Property 2: Entries below the minimum level are dropped.
    """

    @given(
        min_level=st.sampled_from(list(LogLevel)),
        level=st.sampled_from(list(LogLevel)),
    )
    @settings(max_examples=100)
    def test_min_level(self, min_level: LogLevel, level: LogLevel) -> None:
        order = [LogLevel.DEBUG, LogLevel.INFO, LogLevel.WARN, LogLevel.ERROR]
        stream = StringIO()
        logger = AuditLogger(output_format="json", output_stream=stream, min_level=min_level)

        entry = logger.log(level, "Verifier", "checked")

        kept = order.index(level) >= order.index(min_level)
        assert (entry is not None) == kept
        assert bool(stream.getvalue()) == kept
        assert len(logger.entries) == int(kept)

    @given(level=st.sampled_from(["debug", "info", "warn", "error", "verbose"]))
    def test_from_config(self, level: str) -> None:
        logger = AuditLogger.from_config(LoggingConfig(level=level), output_stream=StringIO())
        expected = LogLevel.INFO if level == "verbose" else LogLevel(level)
        assert logger.is_enabled_for(expected)
        if expected != LogLevel.DEBUG:
            assert not logger.is_enabled_for(LogLevel.DEBUG)


class TestRetentionBoundProperty:
    """
    Property 6: The logger keeps at most max_entries entries in memory.
    """

    @given(
        limit=st.integers(min_value=1, max_value=50),
        count=st.integers(min_value=0, max_value=200),
    )
    @settings(max_examples=50)
    def test_oldest_entries_are_dropped(self, limit: int, count: int) -> None:
        logger = AuditLogger(output_format="json", output_stream=StringIO(), max_entries=limit)

        for i in range(count):
            logger.info("DNSMonitor", f"cycle {i}")

        entries = logger.entries
        assert len(entries) == min(count, limit)
        assert [e.message for e in entries] == [f"cycle {i}" for i in range(max(0, count - limit), count)]

    @given(limit=st.integers(min_value=1, max_value=20))
    @settings(max_examples=10)
    def test_limit_from_config(self, limit: int) -> None:
        logger = AuditLogger.from_config(LoggingConfig(max_entries=limit), output_stream=StringIO())

        for _ in range(limit * 3):
            logger.warn("FailoverController", "endpoint down")

        assert len(logger.entries) == limit


class TestSensitiveDataMaskingProperty:
    """
    Property 3: Provider credentials never reach the log output.
    """

    @given(
        key=sensitive_key_strategy,
        secret=st.text(alphabet="abcdefghijklmnopqrstuvwxyz0123456789", min_size=12, max_size=40),
        nested=st.booleans(),
    )
    @settings(max_examples=100)
    def test_credentials_are_masked(self, key: str, secret: str, nested: bool) -> None:
        """
        *For any* sensitive key at the top level or nested in a dict or a
        list of dicts, the value SHALL be masked in both output formats.
        """
        stream = StringIO()
        logger = AuditLogger(output_format="both", output_stream=stream)
        data = {"provider": "porkbun", key: secret}
        if nested:
            data = {"request": data, "attempts": [{key: secret}]}

        logger.info("PorkbunProvider", "request sent", data)

        assert secret not in stream.getvalue()
        assert AuditLogger.MASK_VALUE in stream.getvalue()

    @given(data=plain_data_strategy())
    @settings(max_examples=100)
    def test_plain_data_is_untouched(self, data: dict) -> None:
        assert AuditLogger().mask_sensitive_data(data) == data


class TestAuditSigningProperty:
    """
    Property 4: In audit mode every entry carries a verifiable HMAC signature.
    """

    @given(
        key=st.text(min_size=1, max_size=40),
        component=component_name_strategy(),
        message=message_strategy(),
        data=plain_data_strategy(),
    )
    @settings(max_examples=100)
    def test_entries_are_signed_and_verifiable(
        self, key: str, component: str, message: str, data: dict
    ) -> None:
        logger = AuditLogger(output_format="json", output_stream=StringIO())
        logger.enable_audit_mode(key)

        entry = logger.warn(component, message, data)

        assert entry.signature is not None
        assert len(entry.signature) == 64
        assert logger.verify_signature(entry)

    @given(message=message_strategy(), tampered=message_strategy())
    @settings(max_examples=100)
    def test_tampering_breaks_signature(self, message: str, tampered: str) -> None:
        assume(message != tampered)
        logger = AuditLogger(output_format="json", output_stream=StringIO())
        logger.enable_audit_mode("signing-key")

        entry = logger.info("FailoverController", message)
        entry.message = tampered

        assert not logger.verify_signature(entry)

    def test_no_signature_without_audit_mode(self) -> None:
        logger = AuditLogger(output_format="json", output_stream=StringIO())
        entry = logger.info("Verifier", "done")
        assert entry.signature is None
        assert not logger.verify_signature(entry)

    def test_audit_mode_from_config(self) -> None:
        logger = AuditLogger.from_config(
            LoggingConfig(audit_mode=True, audit_signing_key="k", output_format="json"),
            output_stream=StringIO(),
        )
        assert logger.audit_mode
        assert logger.output_format == "json"


class TestErrorContextProperty:
    """
    Property 5: Error entries carry the exception type, message and code.
    """

    @given(
        code=st.sampled_from(["timeout", "zone_not_found", "auth_failed"]),
        url=st.one_of(st.none(), st.just("https://api.cloudflare.com/client/v4/zones")),
        status=st.one_of(st.none(), st.integers(min_value=400, max_value=599)),
        extra=plain_data_strategy(),
    )
    @settings(max_examples=100)
    def test_error_context(self, code: str, url, status, extra: dict) -> None:
        logger = AuditLogger(output_format="json", output_stream=StringIO())
        error = ProviderError(code=code, message="cloudflare: request failed")

        entry = logger.log_error(
            "CloudflareProvider",
            "Record update failed",
            error=error,
            request_url=url,
            response_status_code=status,
            additional_data=extra,
        )

        assert entry.level == LogLevel.ERROR
        assert entry.data["error_type"] == "ProviderError"
        assert entry.data["error_code"] == code
        assert "request failed" in entry.data["error_message"]
        assert ("request_url" in entry.data) == (url is not None)
        assert ("response_status_code" in entry.data) == (status is not None)
        for key, value in extra.items():
            assert entry.data[key] == value
