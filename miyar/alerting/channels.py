"""
Alert Channels — Deliver critical and high alerts by email.

Two transports, picked by ALERT_DELIVERY_CHANNEL:
- smtp:   plain-text email via aiosmtplib
- resend: HTML email via the Resend HTTP API (httpx)

Delivery is best-effort: dispatchers never raise, a missing key or
recipient is a skip, and the result is recorded on the alert row.
"""

from datetime import datetime
from email.mime.text import MIMEText
from html import escape
from typing import Optional, Protocol

import aiosmtplib
import httpx
import structlog

from miyar.alerting.schemas import (
    AlertSeverity,
    DeliveryResult,
    DeliveryStatus,
    PlatformAlert,
)
from miyar.config import Settings, settings as default_settings
from miyar.exceptions import DeliveryError

logger = structlog.get_logger(__name__)

DELIVERABLE_SEVERITIES: frozenset[AlertSeverity] = frozenset(
    {AlertSeverity.CRITICAL, AlertSeverity.HIGH}
)

# ALERT_DELIVERY_CHANNEL value → DeliveryResult.channel
CHANNEL_NAMES: dict[str, str] = {"smtp": "email", "resend": "resend"}

SEVERITY_MARKERS: dict[AlertSeverity, str] = {
    AlertSeverity.CRITICAL: "🔴",
    AlertSeverity.HIGH: "🟠",
}


def _skipped(reason: str) -> DeliveryResult:
    return DeliveryResult(delivered=False, channel="skipped", status=DeliveryStatus.SKIPPED, error=reason)


def build_subject(alert: PlatformAlert) -> str:
    marker = SEVERITY_MARKERS.get(alert.severity, "")
    return f"{marker} [{alert.severity.value.upper()}] {alert.title}".strip()


def build_text_body(alert: PlatformAlert) -> str:
    lines = [
        f"MIYAR Alert — {alert.severity.value.upper()}",
        "=" * 50,
        "",
        alert.title,
        "",
        alert.body,
    ]
    if alert.suggested_action:
        lines += ["", f"Suggested action: {alert.suggested_action}"]
    if alert.affected_project_ids:
        lines.append(f"Projects: {', '.join(str(p) for p in alert.affected_project_ids)}")
    lines += [
        "",
        "-" * 50,
        f"Alert type: {alert.alert_type.value}",
        f"Generated: {alert.created_at.isoformat()}",
    ]
    return "\n".join(lines)


def build_html_body(alert: PlatformAlert) -> str:
    action = ""
    if alert.suggested_action:
        action = (
            '<div style="background:#f6f8fa;border-left:4px solid #0969da;padding:12px 16px;">'
            f"<strong>Suggested Action:</strong><p>{escape(alert.suggested_action)}</p></div>"
        )
    return (
        '<div style="font-family:Inter,-apple-system,sans-serif;max-width:600px;margin:0 auto;">'
        f"<h1>{SEVERITY_MARKERS.get(alert.severity, '')} MIYAR Alert — "
        f"{alert.severity.value.upper()}</h1>"
        f"<h2>{escape(alert.title)}</h2>"
        f"<p>{escape(alert.body)}</p>"
        f"{action}"
        f'<p style="font-size:12px;">Alert Type: <code>{alert.alert_type.value}</code> · '
        f"Generated: {alert.created_at.isoformat()}</p>"
        "</div>"
    )


class ChannelDispatcher(Protocol):
    """Protocol for alert delivery transports."""

    async def dispatch(self, alert: PlatformAlert, recipient: str) -> DeliveryResult:
        ...


class EmailDispatcher:
    """Plain-text email over SMTP."""

    def __init__(self, config: Settings):
        self.config = config

    async def dispatch(self, alert: PlatformAlert, recipient: str) -> DeliveryResult:
        if not self.config.alert_smtp_host:
            return _skipped("No SMTP host configured")

        msg = MIMEText(build_text_body(alert))
        msg["Subject"] = build_subject(alert)
        msg["From"] = self.config.alert_from_email
        msg["To"] = recipient

        try:
            await aiosmtplib.send(
                msg,
                hostname=self.config.alert_smtp_host,
                port=self.config.alert_smtp_port,
                username=self.config.alert_smtp_user or None,
                password=self.config.alert_smtp_password or None,
                start_tls=True,
                timeout=self.config.delivery_timeout_seconds,
            )
            logger.info("email_alert_sent", alert_id=alert.id, to=recipient)
            return DeliveryResult(delivered=True, channel="email", status=DeliveryStatus.DELIVERED)
        except Exception as e:
            logger.error("email_dispatch_error", alert_id=alert.id, error=str(e))
            return DeliveryResult(
                delivered=False, channel="email", status=DeliveryStatus.FAILED, error=str(e),
            )


class ResendDispatcher:
    """HTML email through the Resend API."""

    def __init__(self, config: Settings, client: Optional[httpx.AsyncClient] = None):
        self.config = config
        self._client = client

    async def dispatch(self, alert: PlatformAlert, recipient: str) -> DeliveryResult:
        if not self.config.resend_api_key:
            return _skipped("RESEND_API_KEY not set")

        payload = {
            "from": self.config.alert_from_email,
            "to": [recipient],
            "subject": build_subject(alert),
            "html": build_html_body(alert),
        }
        headers = {
            "Authorization": f"Bearer {self.config.resend_api_key}",
            "Content-Type": "application/json",
        }

        try:
            if self._client is not None:
                response = await self._client.post(self.config.resend_api_url, json=payload, headers=headers)
            else:
                async with httpx.AsyncClient(timeout=self.config.delivery_timeout_seconds) as client:
                    response = await client.post(self.config.resend_api_url, json=payload, headers=headers)

            if response.status_code >= 400:
                raise DeliveryError(f"HTTP {response.status_code}: {response.text}", channel="resend")

            logger.info("resend_alert_sent", alert_id=alert.id, status=response.status_code)
            return DeliveryResult(delivered=True, channel="resend", status=DeliveryStatus.DELIVERED)
        except DeliveryError as e:
            logger.warning("resend_alert_failed", alert_id=alert.id, error=e.message)
            return DeliveryResult(
                delivered=False, channel="resend", status=DeliveryStatus.FAILED, error=e.message,
            )
        except Exception as e:
            logger.error("resend_dispatch_error", alert_id=alert.id, error=str(e))
            return DeliveryResult(
                delivered=False, channel="resend", status=DeliveryStatus.FAILED, error=str(e),
            )


class AlertDelivery:
    """
    Routes an alert to the configured transport.

    Medium and info alerts, a disabled channel, or a missing recipient all
    produce a `skipped` result without touching the network.
    """

    def __init__(
        self,
        config: Optional[Settings] = None,
        dispatchers: Optional[dict[str, ChannelDispatcher]] = None,
    ):
        self.config = config or default_settings
        self._dispatchers: dict[str, ChannelDispatcher] = dispatchers or {
            "smtp": EmailDispatcher(self.config),
            "resend": ResendDispatcher(self.config),
        }

    async def deliver(self, alert: PlatformAlert) -> DeliveryResult:
        if alert.severity not in DELIVERABLE_SEVERITIES:
            return _skipped(f"Severity '{alert.severity.value}' is not delivered")

        channel = self.config.alert_delivery_channel
        dispatcher = self._dispatchers.get(channel)
        if dispatcher is None:
            logger.debug("alert_delivery_disabled", alert_id=alert.id, channel=channel)
            return _skipped(f"Delivery channel '{channel}' disabled")

        recipient = self.config.alert_recipient
        if not recipient:
            logger.info("alert_delivery_no_recipient", alert_id=alert.id)
            return _skipped("No ALERT_RECIPIENT_EMAIL or ADMIN_EMAIL set")

        try:
            return await dispatcher.dispatch(alert, recipient)
        except Exception as e:
            logger.error("channel_dispatch_error", channel=channel, alert_id=alert.id, error=str(e))
            return DeliveryResult(
                delivered=False,
                channel=CHANNEL_NAMES.get(channel, channel),
                status=DeliveryStatus.FAILED,
                error=str(e),
            )

    async def deliver_many(self, alerts: list[PlatformAlert]) -> dict[int, DeliveryResult]:
        """Deliver sequentially; keyed by position when alerts have no id."""
        results: dict[int, DeliveryResult] = {}
        for idx, alert in enumerate(alerts):
            key = alert.id if alert.id is not None else idx
            results[key] = await self.deliver(alert)
        attempted = sum(1 for r in results.values() if r.status != DeliveryStatus.SKIPPED)
        logger.info(
            "alert_delivery_batch",
            total=len(alerts),
            attempted=attempted,
            delivered=sum(1 for r in results.values() if r.delivered),
            at=datetime.utcnow().isoformat(),
        )
        return results
