"""
console_log.py — Guaranteed last-resort channel: the application log.

Used when SMS is unusable or fails. The alert is written to the log at a
level matching its priority, so it lands in whatever sink the deployment
ships logs to and is never lost silently.

    Priority              Log level
    ───────────────────   ─────────
    EMERGENCY, CRITICAL   ERROR
    HIGH                  WARNING
    MEDIUM, LOW           INFO
"""

from __future__ import annotations

import logging

from guardpulse.app.alerts.models import (
    AlertContext,
    AlertPriority,
    AlertType,
    DeliveryChannel,
    DeliveryResult,
    GuardianInfo,
)

logger = logging.getLogger(__name__)

_LEVEL_BY_PRIORITY = {
    AlertPriority.EMERGENCY: logging.ERROR,
    AlertPriority.CRITICAL:  logging.ERROR,
    AlertPriority.HIGH:      logging.WARNING,
}


def format_console_alert(guardian_id: str, alert_type: AlertType, context: AlertContext) -> str:
    ward_name = context.ward_name or "Unknown Ward"
    if context.location is not None:
        location = f"Location: {context.location.latitude}, {context.location.longitude}"
    else:
        location = "Location: Unknown"
    return (
        f"🚨 ALERT for Guardian [{guardian_id}]: "
        f"Type: [{alert_type.value}] Priority: [{context.priority.name}] - "
        f"Ward: [{ward_name}] - {context.message} - {location} - "
        f"Dashboard: {context.dashboard_link} - Time: {context.timestamp.isoformat()}"
    )


class ConsoleLogChannel:
    """Always usable; always reports success unless logging itself raises."""

    channel = DeliveryChannel.CONSOLE

    def is_usable(self, guardian: GuardianInfo) -> bool:
        return True

    async def deliver(
        self,
        guardian: GuardianInfo,
        alert_type: AlertType,
        context: AlertContext,
    ) -> DeliveryResult:
        level = _LEVEL_BY_PRIORITY.get(context.priority, logging.INFO)
        logger.log(
            level,
            format_console_alert(guardian.id, alert_type, context),
            extra={
                "guardian_id": guardian.id,
                "alert_type": alert_type.value,
                "priority": context.priority.name,
                "channel": "console",
            },
        )
        return DeliveryResult(
            guardian_id=guardian.id,
            success=True,
            channel=DeliveryChannel.CONSOLE,
            priority=context.priority,
            requires_response=context.requires_response,
        )
