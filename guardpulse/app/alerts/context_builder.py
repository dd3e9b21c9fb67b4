"""
context_builder.py — Turns partial alert input into delivery-ready contexts.

Two steps, split so that a fan-out pays for the ward lookup only once:

    enrich_alert_data(ward_id, data)        once per fan-out
        ward_id / ward_name   ← one identity read, if either is missing
        dashboard_link        ← WEB_APP_URL + /dashboard/ward/{ward_id}
        timestamp             ← now

    build_context(guardian, ward_id, type, data)   once per guardian
        message               ← DEFAULT_MESSAGES[type]
        priority              ← PRIORITY_BY_TYPE[type]
        requires_response     ← type in RESPONSE_REQUIRED_TYPES

Neither step raises. A failed enrichment hands back whatever was filled
so far and dispatch carries on with it.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Dict, Optional

from guardpulse.app.alerts.models import (
    AlertContext,
    AlertData,
    AlertType,
    GuardianInfo,
    default_priority,
    requires_response,
)
from guardpulse.app.alerts.resolver import GuardianResolver
from guardpulse.app.core.config import settings

logger = logging.getLogger(__name__)

UNKNOWN_WARD = "Unknown Ward"

# ``{ward}`` is the ward's name, or "your ward" when it is unknown
DEFAULT_MESSAGES: Dict[AlertType, str] = {
    AlertType.SOS_TRIGGERED:
        "{ward} has triggered an SOS alert. Immediate attention required.",
    AlertType.FALL_DETECTED:
        "A potential fall has been detected for {ward}. Please check on them immediately.",
    AlertType.PANIC_BUTTON:
        "{ward} has pressed the panic button. Emergency response needed.",
    AlertType.THROWN_AWAY:
        "CRITICAL: {ward}'s device may have been thrown away or damaged. "
        "Last known location recorded. IMMEDIATE attention required.",
    AlertType.FAKE_SHUTDOWN:
        "EMERGENCY: {ward} may be in danger. They attempted to power off their device, "
        "which could indicate duress. IMMEDIATE contact required.",
    AlertType.LOCATION_LOST:
        "Location tracking for {ward} has been lost. Last known location available.",
    AlertType.BATTERY_LOW:
        "{ward}'s device battery is running low. Please remind them to charge it.",
    AlertType.DEVICE_OFFLINE:
        "{ward}'s device has gone offline. Please check connectivity.",
    AlertType.GEOFENCE_VIOLATION:
        "{ward} has left their designated safe area.",
    AlertType.UNUSUAL_ACTIVITY:
        "Unusual activity patterns detected for {ward}.",
    AlertType.EMERGENCY_CONTACT:
        "Emergency contact request from {ward}.",
    AlertType.SYSTEM_ALERT:
        "System alert regarding {ward}.",
}


def default_message(alert_type: AlertType, ward_name: Optional[str]) -> str:
    template = DEFAULT_MESSAGES.get(alert_type, "Alert notification for {ward}.")
    return template.format(ward=ward_name or "your ward")


def dashboard_link_for(ward_id: str, base_url: Optional[str] = None) -> str:
    base = (base_url or settings.WEB_APP_URL).rstrip("/")
    return f"{base}/dashboard/ward/{ward_id}"


class AlertContextBuilder:
    """
    Parameters
    ----------
    resolver : GuardianResolver
        Used for the ward identity read during enrichment.
    web_app_url : str | None
        Base for dashboard deep links (default ``settings.WEB_APP_URL``).
    """

    def __init__(self, resolver: GuardianResolver, *, web_app_url: Optional[str] = None):
        self._resolver = resolver
        self._web_app_url = web_app_url or settings.WEB_APP_URL

    async def enrich_alert_data(self, ward_id: str, data: Optional[AlertData] = None) -> AlertData:
        """Copy of ``data`` with ward identity, dashboard link and timestamp filled."""
        enriched = (data or AlertData()).copy_with()
        try:
            if not enriched.ward_name or not enriched.ward_id:
                ward = await self._resolver.get_ward_identity(ward_id)
                if ward is not None:
                    enriched.ward_id = enriched.ward_id or ward.id
                    enriched.ward_name = enriched.ward_name or ward.display_name or UNKNOWN_WARD

            if not enriched.dashboard_link:
                enriched.dashboard_link = dashboard_link_for(ward_id, self._web_app_url)

            if enriched.timestamp is None:
                enriched.timestamp = datetime.now(timezone.utc)
        except Exception as e:
            logger.error("Error enriching alert data for ward %s: %s", ward_id, e)
        return enriched

    def build_context(
        self,
        guardian: GuardianInfo,
        ward_id: Optional[str],
        alert_type: AlertType,
        data: Optional[AlertData] = None,
    ) -> AlertContext:
        """Delivery-ready context for one guardian. Explicit fields in ``data`` win."""
        data = data or AlertData()
        effective_ward_id = data.ward_id or ward_id

        dashboard_link = data.dashboard_link
        if not dashboard_link and effective_ward_id:
            dashboard_link = dashboard_link_for(effective_ward_id, self._web_app_url)

        return AlertContext(
            guardian_id=guardian.id,
            guardian_name=guardian.display_name,
            guardian_email=guardian.email,
            guardian_phone=guardian.phone_number,
            ward_id=effective_ward_id,
            ward_name=data.ward_name,
            alert_type=alert_type,
            priority=data.priority or default_priority(alert_type),
            requires_response=(
                data.requires_response
                if data.requires_response is not None
                else requires_response(alert_type)
            ),
            timestamp=data.timestamp or datetime.now(timezone.utc),
            message=data.message or default_message(alert_type, data.ward_name),
            dashboard_link=dashboard_link,
            location=data.location,
            metadata=dict(data.metadata),
        )
