"""
sms_gateway.py — SMS delivery channel via Twilio.

Delivery mechanism:
    • Twilio Programmable Messaging (REST)
    • Payload: ≤160 chars, truncated with "..." when longer
    • Provider message SID reported back as the delivery message id

═══════════════════════════════════════════════════════════════════════════
SMS GATEWAY ARCHITECTURE
═══════════════════════════════════════════════════════════════════════════

    SmsChannel.deliver()  →  TwilioSmsClient.send()  →  Twilio  →  Handset
          │                        │
          │                        └── blocking SDK call, run in a worker
          │                            thread via asyncio.to_thread
          └── bounded by SMS_TIMEOUT_SECONDS

    The channel is usable only when the guardian has a phone number AND
    a client plus sender number are configured. Every failure raises
    ChannelDeliveryError; the dispatcher turns that into a console fallback.

═══════════════════════════════════════════════════════════════════════════
MESSAGE TEMPLATING
═══════════════════════════════════════════════════════════════════════════

    "🚨 GuardPulse Alert: {LABEL} - {ward}[ at location {lat}, {lng}].
     Check your dashboard: {link}"

    Example:
        "🚨 GuardPulse Alert: SOS EMERGENCY - Jane Doe at location
         51.5074, -0.1278. Check your dashboard: https://app/dashboard/ward/w-1"
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Optional

from twilio.rest import Client

from guardpulse.app.alerts.models import (
    AlertContext,
    AlertType,
    DeliveryChannel,
    DeliveryResult,
    GuardianInfo,
)
from guardpulse.app.core.config import settings
from guardpulse.app.core.errors import ChannelDeliveryError, ChannelNotConfiguredError

logger = logging.getLogger(__name__)

SMS_MAX_GSM7 = 160
ELLIPSIS = "..."

_TYPE_LABELS: Dict[AlertType, str] = {
    AlertType.SOS_TRIGGERED: "SOS EMERGENCY",
    AlertType.FALL_DETECTED: "FALL DETECTED",
    AlertType.PANIC_BUTTON:  "PANIC BUTTON",
    AlertType.THROWN_AWAY:   "DEVICE THROWN AWAY",
    AlertType.FAKE_SHUTDOWN: "FAKE SHUTDOWN DETECTED",
}


def _type_label(alert_type: AlertType) -> str:
    return _TYPE_LABELS.get(alert_type) or alert_type.value.replace("_", " ")


def format_sms(context: AlertContext, max_length: int = SMS_MAX_GSM7) -> str:
    """Compose the SMS body, truncated to ``max_length`` characters."""
    ward_name = context.ward_name or "Unknown Ward"
    dashboard_url = context.dashboard_link or settings.WEB_APP_URL

    body = f"🚨 GuardPulse Alert: {_type_label(context.alert_type)} - {ward_name}"
    if context.location is not None:
        body += (
            f" at location {context.location.latitude:.4f},"
            f" {context.location.longitude:.4f}"
        )
    body += f". Check your dashboard: {dashboard_url}"

    if len(body) > max_length:
        body = body[: max_length - len(ELLIPSIS)] + ELLIPSIS
    return body


# ═══════════════════════════════════════════════════════════════════════════
# Provider Client
# ═══════════════════════════════════════════════════════════════════════════

class TwilioSmsClient:
    """Async wrapper around the synchronous Twilio REST client."""

    def __init__(self, account_sid: str, auth_token: str, *, client: Optional[Any] = None):
        self._client = client or Client(account_sid, auth_token)

    async def send(self, body: str, from_: str, to: str) -> str:
        """Send one message; returns the Twilio message SID."""
        message = await asyncio.to_thread(
            self._client.messages.create,
            body=body,
            from_=from_,
            to=to,
        )
        return message.sid


def build_sms_client() -> Optional[TwilioSmsClient]:
    """Twilio client from settings, or None when credentials are incomplete."""
    if not settings.sms_configured:
        logger.warning("Twilio configuration incomplete; SMS alerts disabled")
        return None
    return TwilioSmsClient(settings.TWILIO_ACCOUNT_SID, settings.TWILIO_AUTH_TOKEN)


# ═══════════════════════════════════════════════════════════════════════════
# Channel
# ═══════════════════════════════════════════════════════════════════════════

class SmsChannel:
    """
    Primary per-guardian channel.

    Parameters
    ----------
    client
        Object with ``async send(body, from_, to) -> str``; None disables SMS.
    from_number : str | None
        Sender number (default ``TWILIO_PHONE_NUMBER``).
    timeout_seconds : float
        Upper bound on one provider call.
    max_length : int
        Message length cap.
    """

    channel = DeliveryChannel.SMS

    def __init__(
        self,
        client: Optional[Any],
        *,
        from_number: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
        max_length: Optional[int] = None,
    ):
        self._client = client
        self.from_number = from_number or settings.TWILIO_PHONE_NUMBER
        self.timeout_seconds = timeout_seconds or settings.SMS_TIMEOUT_SECONDS
        self.max_length = max_length or settings.SMS_MAX_LENGTH

    @property
    def configured(self) -> bool:
        return self._client is not None and bool(self.from_number)

    def is_usable(self, guardian: GuardianInfo) -> bool:
        return self.configured and bool(guardian.phone_number)

    async def deliver(
        self,
        guardian: GuardianInfo,
        alert_type: AlertType,
        context: AlertContext,
    ) -> DeliveryResult:
        if self._client is None:
            raise ChannelNotConfiguredError("sms", "SMS client not available")
        if not guardian.phone_number:
            raise ChannelNotConfiguredError("sms", "Guardian phone number not available")
        if not self.from_number:
            raise ChannelNotConfiguredError("sms", "SMS sender number not configured")

        body = format_sms(context, self.max_length)

        try:
            message_id = await asyncio.wait_for(
                self._client.send(body=body, from_=self.from_number, to=guardian.phone_number),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError:
            raise ChannelDeliveryError(
                "sms", f"provider timed out after {self.timeout_seconds:g}s",
            )
        except ChannelDeliveryError:
            raise
        except Exception as e:
            raise ChannelDeliveryError("sms", str(e)) from e

        logger.info(
            "SMS alert sent to guardian %s: %s", guardian.id, message_id,
            extra={"guardian_id": guardian.id, "channel": "sms", "message_id": message_id},
        )
        return DeliveryResult(
            guardian_id=guardian.id,
            success=True,
            channel=DeliveryChannel.SMS,
            message_id=message_id,
            priority=context.priority,
            requires_response=context.requires_response,
        )
