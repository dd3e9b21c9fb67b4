"""
email_alert.py — Email incident notifications via the Mailgun HTTP API.

Delivery mechanism:
    • Mailgun ``/messages`` endpoint, HTTP basic auth ("api", key)
    • HTML body with incident table, map links and call-to-action
    • Plain-text twin for clients that do not render HTML

═══════════════════════════════════════════════════════════════════════════
ROLE NEXT TO SMS / CONSOLE
═══════════════════════════════════════════════════════════════════════════

Email is not part of the per-guardian fallback chain. It is a parallel,
best-effort path that sends one richer notification to every guardian
address of an incident. It never raises: an unconfigured provider, an
empty recipient list, a provider error or a timeout all return False.

═══════════════════════════════════════════════════════════════════════════
EMAIL TEMPLATE STRUCTURE
═══════════════════════════════════════════════════════════════════════════

    Subject: 🚨 URGENT: {type} Alert - {ward}
    Body:
        ┌─────────────────────────────────────────┐
        │  🚨 URGENT SAFETY ALERT                  │
        ├─────────────────────────────────────────┤
        │  Ward / Type / Time / Incident ID table  │
        │  📍 Google Maps | OpenStreetMap          │
        │  ⚡ Immediate action list                │
        │  [View Full Incident Details]            │
        └─────────────────────────────────────────┘

    Resolution notice:  ✅ RESOLVED: {type} - {ward}
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, List, Optional

import httpx

from guardpulse.app.alerts.models import Location
from guardpulse.app.core.config import settings

logger = logging.getLogger(__name__)

_ACTIONS = (
    "Check on your ward immediately",
    "Contact emergency services if needed",
    "Review incident details in your dashboard",
    "Update incident status once resolved",
)


@dataclass(frozen=True)
class IncidentEmail:
    """Fields rendered into incident and resolution emails."""
    ward_name: str
    ward_email: str
    incident_type: str
    incident_id: str
    timestamp: datetime
    dashboard_url: str
    location: Optional[Location] = None


def google_maps_url(location: Location) -> str:
    return f"https://www.google.com/maps?q={location.latitude},{location.longitude}"


def openstreetmap_url(location: Location) -> str:
    return (
        f"https://www.openstreetmap.org/?mlat={location.latitude}"
        f"&mlon={location.longitude}&zoom=15"
    )


def _fmt_time(ts: datetime) -> str:
    return ts.strftime("%Y-%m-%d %H:%M:%S UTC")


# ── Incident alert ──

def build_incident_subject(data: IncidentEmail) -> str:
    return f"🚨 URGENT: {data.incident_type} Alert - {data.ward_name}"


def _location_html(location: Optional[Location]) -> str:
    if location is None:
        return ""
    return f"""
      <div style="background:#fef3cd;border:1px solid #fed136;border-radius:8px;padding:16px;margin:16px 0;">
        <h3 style="margin:0 0 8px;color:#856404;">📍 Location Information</h3>
        <p style="margin:0 0 8px;"><strong>Coordinates:</strong> {location.latitude:.6f}, {location.longitude:.6f}</p>
        <a href="{google_maps_url(location)}"
           style="background:#007bff;color:white;padding:8px 16px;text-decoration:none;border-radius:4px;margin-right:8px;">
          📱 Open in Google Maps
        </a>
        <a href="{openstreetmap_url(location)}"
           style="background:#28a745;color:white;padding:8px 16px;text-decoration:none;border-radius:4px;">
          🗺️ Open in OpenStreetMap
        </a>
      </div>
    """


def build_incident_html(data: IncidentEmail) -> str:
    actions = "".join(f"<li>{a}</li>" for a in _ACTIONS)
    return f"""
    <div style="font-family:Arial,sans-serif;max-width:600px;margin:auto;color:#333;">
      <div style="background:#dc3545;color:white;padding:24px;text-align:center;border-radius:8px 8px 0 0;">
        <h1 style="margin:0;font-size:24px;">🚨 URGENT SAFETY ALERT</h1>
        <p style="margin:8px 0 0;">GuardPulse Emergency Notification</p>
      </div>
      <div style="border:1px solid #ddd;border-top:none;padding:24px;border-radius:0 0 8px 8px;">
        <h2 style="color:#721c24;">{data.incident_type} Detected</h2>
        <p><strong>{data.ward_name}</strong> requires immediate attention.</p>
        <h3>📋 Incident Details</h3>
        <table style="width:100%;border-collapse:collapse;">
          <tr><td style="padding:8px;background:#e9ecef;font-weight:bold;width:30%;">Ward:</td>
              <td style="padding:8px;">{data.ward_name} ({data.ward_email})</td></tr>
          <tr><td style="padding:8px;background:#e9ecef;font-weight:bold;">Type:</td>
              <td style="padding:8px;">{data.incident_type}</td></tr>
          <tr><td style="padding:8px;background:#e9ecef;font-weight:bold;">Time:</td>
              <td style="padding:8px;">{_fmt_time(data.timestamp)}</td></tr>
          <tr><td style="padding:8px;background:#e9ecef;font-weight:bold;">Incident ID:</td>
              <td style="padding:8px;font-family:monospace;">{data.incident_id}</td></tr>
        </table>
        {_location_html(data.location)}
        <h3 style="color:#0c5460;">⚡ Immediate Action Required</h3>
        <ul style="color:#0c5460;">{actions}</ul>
        <div style="text-align:center;margin:24px 0;">
          <a href="{data.dashboard_url}"
             style="background:#007bff;color:white;padding:12px 32px;text-decoration:none;border-radius:6px;font-weight:bold;">
            🔗 View Full Incident Details
          </a>
        </div>
        <p style="font-size:12px;color:#6c757d;">
          Call your local emergency number immediately if this is a life-threatening situation.
        </p>
      </div>
    </div>
    """


def build_incident_text(data: IncidentEmail) -> str:
    if data.location is not None:
        loc = data.location
        location_block = (
            "LOCATION:\n"
            f"- Coordinates: {loc.latitude:.6f}, {loc.longitude:.6f}\n"
            f"- Google Maps: {google_maps_url(loc)}\n"
            f"- OpenStreetMap: {openstreetmap_url(loc)}\n"
        )
    else:
        location_block = "LOCATION: Not available\n"

    return (
        "🚨 URGENT SAFETY ALERT - GuardPulse\n\n"
        f"{data.incident_type} detected for {data.ward_name}\n\n"
        "INCIDENT DETAILS:\n"
        f"- Ward: {data.ward_name} ({data.ward_email})\n"
        f"- Type: {data.incident_type}\n"
        f"- Time: {_fmt_time(data.timestamp)}\n"
        f"- Incident ID: {data.incident_id}\n\n"
        f"{location_block}\n"
        "IMMEDIATE ACTION REQUIRED:\n"
        "- Check on your ward immediately\n"
        "- Contact emergency services if needed\n"
        f"- Review incident details: {data.dashboard_url}\n"
        "- Update incident status once resolved\n"
    )


# ── Resolution notice ──

def build_resolution_subject(data: IncidentEmail) -> str:
    return f"✅ RESOLVED: {data.incident_type} - {data.ward_name}"


def build_resolution_text(data: IncidentEmail, resolved_by: str, resolved_at: datetime) -> str:
    return (
        "✅ INCIDENT RESOLVED - GuardPulse\n\n"
        f"The incident involving {data.ward_name} has been marked as resolved.\n\n"
        "INCIDENT SUMMARY:\n"
        f"- Ward: {data.ward_name}\n"
        f"- Type: {data.incident_type}\n"
        f"- Started: {_fmt_time(data.timestamp)}\n"
        f"- Resolved: {_fmt_time(resolved_at)}\n"
        f"- Resolved By: {resolved_by}\n\n"
        f"View incident history: {data.dashboard_url}\n"
    )


def build_resolution_html(data: IncidentEmail, resolved_by: str, resolved_at: datetime) -> str:
    return f"""
    <div style="font-family:Arial,sans-serif;max-width:600px;margin:auto;color:#333;">
      <div style="background:#28a745;color:white;padding:24px;text-align:center;border-radius:8px 8px 0 0;">
        <h1 style="margin:0;font-size:24px;">✅ INCIDENT RESOLVED</h1>
        <p style="margin:8px 0 0;">GuardPulse Safety Update</p>
      </div>
      <div style="border:1px solid #ddd;border-top:none;padding:24px;border-radius:0 0 8px 8px;">
        <p>The incident involving <strong>{data.ward_name}</strong> has been marked as resolved.</p>
        <table style="width:100%;border-collapse:collapse;">
          <tr><td style="padding:8px;background:#e9ecef;font-weight:bold;width:30%;">Type:</td>
              <td style="padding:8px;">{data.incident_type}</td></tr>
          <tr><td style="padding:8px;background:#e9ecef;font-weight:bold;">Started:</td>
              <td style="padding:8px;">{_fmt_time(data.timestamp)}</td></tr>
          <tr><td style="padding:8px;background:#e9ecef;font-weight:bold;">Resolved:</td>
              <td style="padding:8px;">{_fmt_time(resolved_at)}</td></tr>
          <tr><td style="padding:8px;background:#e9ecef;font-weight:bold;">Resolved By:</td>
              <td style="padding:8px;">{resolved_by}</td></tr>
        </table>
        <div style="text-align:center;margin:24px 0;">
          <a href="{data.dashboard_url}"
             style="background:#007bff;color:white;padding:12px 32px;text-decoration:none;border-radius:6px;font-weight:bold;">
            🔗 View Incident History
          </a>
        </div>
      </div>
    </div>
    """


# ═══════════════════════════════════════════════════════════════════════════
# Provider Client
# ═══════════════════════════════════════════════════════════════════════════

class MailgunEmailClient:
    """
    Mailgun ``/messages`` client.

    Parameters
    ----------
    api_key, api_url : str
        Mailgun credentials and the domain's messages endpoint.
    from_email : str
        Sender header.
    http_client : httpx.AsyncClient | None
        Shared client; a short-lived one is opened per call when omitted.
    """

    def __init__(
        self,
        api_key: str,
        api_url: str,
        *,
        from_email: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.api_key = api_key
        self.api_url = api_url
        self.from_email = from_email or settings.EMAIL_FROM
        self.timeout_seconds = timeout_seconds or settings.EMAIL_TIMEOUT_SECONDS
        self._http = http_client

    async def send(self, to: List[str], subject: str, text: str, html: str) -> bool:
        data = {
            "from": self.from_email,
            "to": ", ".join(to),
            "subject": subject,
            "text": text,
            "html": html,
            "h:X-Priority": "1",
        }
        if self._http is not None:
            response = await self._post(self._http, data)
        else:
            async with httpx.AsyncClient() as client:
                response = await self._post(client, data)

        response.raise_for_status()
        message_id = response.json().get("id", "unknown")
        logger.info("Email sent to %d recipients. Message ID: %s", len(to), message_id)
        return True

    async def _post(self, client: httpx.AsyncClient, data: dict) -> httpx.Response:
        return await client.post(
            self.api_url,
            auth=("api", self.api_key),
            data=data,
            timeout=self.timeout_seconds,
        )


def build_email_client() -> Optional[MailgunEmailClient]:
    """Mailgun client from settings, or None when not configured."""
    if not settings.email_configured:
        logger.warning("Email service not configured; incident emails disabled")
        return None
    return MailgunEmailClient(settings.MAILGUN_API_KEY, settings.MAILGUN_API_URL)


# ═══════════════════════════════════════════════════════════════════════════
# Channel
# ═══════════════════════════════════════════════════════════════════════════

class EmailAlertChannel:
    """Best-effort incident email path. Every public method returns a bool."""

    def __init__(self, client: Optional[Any], *, timeout_seconds: Optional[float] = None):
        self._client = client
        self.timeout_seconds = timeout_seconds or settings.EMAIL_TIMEOUT_SECONDS

    @property
    def configured(self) -> bool:
        return self._client is not None

    async def send_incident_alert(self, recipients: List[str], data: IncidentEmail) -> bool:
        if not recipients:
            logger.warning("No guardian emails provided for incident alert")
            return False
        return await self._send(
            recipients,
            build_incident_subject(data),
            build_incident_text(data),
            build_incident_html(data),
        )

    async def send_incident_resolution(
        self,
        recipients: List[str],
        data: IncidentEmail,
        resolved_by: str,
    ) -> bool:
        if not recipients:
            logger.warning("No guardian emails provided for incident resolution notification")
            return False
        resolved_at = datetime.now(timezone.utc)
        return await self._send(
            recipients,
            build_resolution_subject(data),
            build_resolution_text(data, resolved_by, resolved_at),
            build_resolution_html(data, resolved_by, resolved_at),
        )

    async def _send(self, to: List[str], subject: str, text: str, html: str) -> bool:
        if self._client is None:
            logger.warning("Email service not configured, skipping email send")
            return False
        try:
            sent = await asyncio.wait_for(
                self._client.send(to=to, subject=subject, text=text, html=html),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.error("[EMAIL] Provider timed out after %gs for '%s'", self.timeout_seconds, subject)
            return False
        except httpx.HTTPStatusError as e:
            logger.error("[EMAIL] Mailgun API error: %s - %s", e.response.status_code, e.response.text)
            return False
        except Exception as e:
            logger.error("[EMAIL] Failed to send '%s': %s", subject, e)
            return False
        return bool(sent)
