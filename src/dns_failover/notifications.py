"""
Alert channels and routing for the DNS failover system.

Alerts are raised by the monitor (failure, recovery, status change) and by
the failover controller (critical: no provider and no healthy endpoint).
The router delivers each alert to every registered channel, retrying with
exponential backoff; one failing channel never blocks the others.
"""

import asyncio
import smtplib
import ssl
from abc import abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import TYPE_CHECKING, Optional, Protocol, runtime_checkable

import httpx

from .config import (
    EmailConfig,
    NotificationConfig,
    RetryConfig,
    TelegramConfig,
    WebhookConfig,
)
from .enums import AlertType, LogLevel
from .exceptions import NotificationError
from .retry_manager import RetryManager

if TYPE_CHECKING:
    from .audit_logger import AuditLogger
    from .reporting import ArtifactSink


ALERT_LOG_NAME = "dns-alerts"

_SEVERITY_ICONS = {
    "info": "ℹ️",
    "warning": "⚠️",
    "critical": "🚨",
}


@dataclass
class AlertPayload:
    """A single alert."""

    alert_type: AlertType
    message: str
    fqdn: str
    severity: str = "warning"  # 'info', 'warning', 'critical'
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    issues: list[dict] = field(default_factory=list)
    data: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "timestamp": self.timestamp,
            "type": self.alert_type.value,
            "severity": self.severity,
            "fqdn": self.fqdn,
            "message": self.message,
            "issues": self.issues,
            "data": self.data,
        }

    def headline(self) -> str:
        icon = _SEVERITY_ICONS.get(self.severity, "")
        return f"{icon} [{self.alert_type.value.upper()}] {self.fqdn}: {self.message}".strip()


@dataclass
class AlertResult:
    """Result of delivering an alert to one channel."""

    channel: str
    success: bool
    error: Optional[str] = None
    attempts: int = 1


@runtime_checkable
class AlertChannel(Protocol):
    """Protocol defining the interface for alert channels."""

    @abstractmethod
    async def send(self, payload: AlertPayload) -> bool:
        """
        Deliver an alert.

        Returns:
            True if delivery was successful, False otherwise
        """
        ...

    @abstractmethod
    def get_name(self) -> str:
        ...


class ConsoleAlertChannel:
    """Writes alerts through the audit logger."""

    def __init__(self, logger: "AuditLogger") -> None:
        self._logger = logger

    async def send(self, payload: AlertPayload) -> bool:
        level = LogLevel.ERROR if payload.severity == "critical" else LogLevel.WARN
        if payload.alert_type == AlertType.RECOVERY:
            level = LogLevel.INFO
        self._logger.log(level, "Alert", payload.headline(), {"issues": payload.issues})
        return True

    def get_name(self) -> str:
        return "console"


class FileAlertChannel:
    """Appends alerts as JSON lines to logs/dns-alerts.jsonl."""

    def __init__(self, sink: "ArtifactSink", log_name: str = ALERT_LOG_NAME) -> None:
        self._sink = sink
        self._log_name = log_name

    async def send(self, payload: AlertPayload) -> bool:
        self._sink.append_log(self._log_name, payload.to_dict())
        return True

    def get_name(self) -> str:
        return "file"


class TelegramAlertChannel:
    """Telegram alert channel using the Bot API."""

    def __init__(
        self,
        config: TelegramConfig,
        simulation_mode: bool = False,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._chat_id = config.chat_id
        self._base_url = f"https://api.telegram.org/bot{config.bot_token}"
        self._simulation_mode = simulation_mode
        self._transport = transport

    async def send(self, payload: AlertPayload) -> bool:
        if self._simulation_mode:
            return True

        lines = [f"<b>{payload.headline()}</b>", f"Time: {payload.timestamp}"]
        for issue in payload.issues:
            lines.append(f"• {issue.get('severity', '')}: {issue.get('message', '')}")

        async with httpx.AsyncClient(transport=self._transport) as client:
            try:
                response = await client.post(
                    f"{self._base_url}/sendMessage",
                    json={
                        "chat_id": self._chat_id,
                        "text": "\n".join(lines),
                        "parse_mode": "HTML",
                    },
                    timeout=30.0,
                )
                return response.status_code == 200
            except httpx.HTTPError:
                return False

    def get_name(self) -> str:
        return "telegram"


class EmailAlertChannel:
    """Email alert channel using SMTP with STARTTLS."""

    def __init__(self, config: EmailConfig, simulation_mode: bool = False) -> None:
        self._config = config
        self._simulation_mode = simulation_mode

    async def send(self, payload: AlertPayload) -> bool:
        if self._simulation_mode:
            return True

        # smtplib blocks; keep it off the event loop
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._send_sync, payload)

    def _send_sync(self, payload: AlertPayload) -> bool:
        try:
            msg = self.format_email(payload)
            context = ssl.create_default_context()
            with smtplib.SMTP(self._config.smtp_host, self._config.smtp_port) as server:
                server.starttls(context=context)
                server.login(self._config.username, self._config.password)
                server.sendmail(
                    self._config.from_address,
                    self._config.to_addresses,
                    msg.as_string(),
                )
            return True
        except (smtplib.SMTPException, OSError):
            return False

    def format_email(self, payload: AlertPayload) -> MIMEMultipart:
        body_lines = [
            f"Domain: {payload.fqdn}",
            f"Type: {payload.alert_type.value}",
            f"Severity: {payload.severity}",
            f"Time: {payload.timestamp}",
            "",
            payload.message,
        ]
        if payload.issues:
            body_lines.append("")
            body_lines.append("Issues:")
            body_lines.extend(
                f"- [{i.get('severity', '')}] {i.get('message', '')}" for i in payload.issues
            )

        msg = MIMEMultipart()
        msg["From"] = self._config.from_address
        msg["To"] = ", ".join(self._config.to_addresses)
        msg["Subject"] = f"[DNS {payload.alert_type.value.upper()}] {payload.fqdn}"
        msg.attach(MIMEText("\n".join(body_lines), "plain"))
        return msg

    def get_name(self) -> str:
        return "email"


class WebhookAlertChannel:
    """Generic webhook alert channel using HTTP POST."""

    def __init__(
        self,
        config: WebhookConfig,
        simulation_mode: bool = False,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._url = config.url
        self._headers = config.headers.copy()
        self._simulation_mode = simulation_mode
        self._transport = transport

    async def send(self, payload: AlertPayload) -> bool:
        if self._simulation_mode:
            return True

        headers = {"Content-Type": "application/json"}
        headers.update(self._headers)

        async with httpx.AsyncClient(transport=self._transport) as client:
            try:
                response = await client.post(
                    self._url,
                    json=payload.to_dict(),
                    headers=headers,
                    timeout=30.0,
                )
                return 200 <= response.status_code < 300
            except httpx.HTTPError:
                return False

    def get_name(self) -> str:
        return "webhook"


@dataclass
class RetryAttempt:
    """Record of a single delivery attempt."""

    attempt_number: int
    error: str
    timestamp: str


class AlertRouter:
    """Routes alerts to registered channels with retry logic."""

    def __init__(
        self,
        retry_config: RetryConfig,
        logger: Optional["AuditLogger"] = None,
    ) -> None:
        """
        Args:
            retry_config: Configuration for retry behavior
            logger: Optional audit logger for delivery failures
        """
        self._channels: list[AlertChannel] = []
        self._retry = RetryManager(retry_config)
        self._logger = logger

    def register_channel(self, channel: AlertChannel) -> None:
        self._channels.append(channel)

    @property
    def channels(self) -> list[AlertChannel]:
        return self._channels.copy()

    async def send(self, payload: AlertPayload) -> list[AlertResult]:
        """
        Deliver an alert to every registered channel.

        Returns:
            One AlertResult per channel, in registration order
        """
        results = []
        for channel in self._channels:
            results.append(await self._send_with_retry(channel, payload))
        return results

    async def _send_with_retry(
        self,
        channel: AlertChannel,
        payload: AlertPayload,
    ) -> AlertResult:
        channel_name = channel.get_name()
        history: list[RetryAttempt] = []

        async def deliver() -> None:
            try:
                delivered = await channel.send(payload)
            except Exception as e:
                error = str(e)
            else:
                if delivered:
                    return
                error = "Channel returned failure"
            history.append(
                RetryAttempt(
                    attempt_number=len(history) + 1,
                    error=error,
                    timestamp=datetime.now(timezone.utc).isoformat(),
                )
            )
            raise NotificationError(code="delivery_failed", message=error, details={"channel": channel_name})

        outcome = await self._retry.execute_with_retry(deliver)
        if outcome.success:
            return AlertResult(channel=channel_name, success=True, attempts=outcome.attempts)

        self._log_all_retries_failed(channel_name, payload, history)
        return AlertResult(
            channel=channel_name,
            success=False,
            error=history[-1].error if history else str(outcome.last_error),
            attempts=outcome.attempts,
        )

    def _log_all_retries_failed(
        self,
        channel_name: str,
        payload: AlertPayload,
        history: list[RetryAttempt],
    ) -> None:
        if self._logger is None:
            return

        self._logger.log(
            level=LogLevel.ERROR,
            component="AlertRouter",
            message=f"All alert retries failed for channel '{channel_name}'",
            data={
                "channel": channel_name,
                "alert_type": payload.alert_type.value,
                "fqdn": payload.fqdn,
                "timestamp": payload.timestamp,
                "total_attempts": len(history),
                "attempts": [
                    {
                        "attempt": a.attempt_number,
                        "error": a.error,
                        "timestamp": a.timestamp,
                    }
                    for a in history
                ],
            },
        )


def create_alert_router(
    config: NotificationConfig,
    retry_config: RetryConfig,
    logger: Optional["AuditLogger"] = None,
    sink: Optional["ArtifactSink"] = None,
    simulation_mode: bool = False,
) -> Optional[AlertRouter]:
    """
    Build a router with every configured channel.

    Returns:
        AlertRouter, or None when no channel is configured
    """
    router = AlertRouter(retry_config=retry_config, logger=logger)

    if config.console and logger is not None:
        router.register_channel(ConsoleAlertChannel(logger))
    if config.file and sink is not None:
        router.register_channel(FileAlertChannel(sink))
    if config.telegram:
        router.register_channel(TelegramAlertChannel(config.telegram, simulation_mode))
    if config.email:
        router.register_channel(EmailAlertChannel(config.email, simulation_mode))
    if config.webhook:
        router.register_channel(WebhookAlertChannel(config.webhook, simulation_mode))

    return router if router.channels else None
