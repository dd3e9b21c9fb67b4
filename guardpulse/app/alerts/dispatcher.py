"""
dispatcher.py — Guardian alert fan-out with channel fallback.

═══════════════════════════════════════════════════════════════════════════
DISPATCH FLOW
═══════════════════════════════════════════════════════════════════════════

    send_incident_alert(ward, incident, type, data)
        │  stamp metadata {incidentId, type: "incident_alert"}
        ├──────────────────────────────────────┐
        ▼                                      ▼ (response-required types,
    send_alert_to_all_guardians                  email client configured)
        │                                   task_runner.submit(incident email)
        ├─ resolve_guardians(ward)           (detached; logged + audited, never
        │     └─ [] → return []               delays the returned results)
        ├─ enrich_alert_data (once)
        └─ asyncio.gather(return_exceptions=True)
              ├─ G1: build_context → SMS ─✗→ console → audit
              ├─ G2: build_context → console → audit
              └─ G3: ...
        results in resolution order, one per guardian

═══════════════════════════════════════════════════════════════════════════
PER-GUARDIAN STATE MACHINE
═══════════════════════════════════════════════════════════════════════════

    RESOLVING → BUILDING_CONTEXT → DELIVERING(sms) ─ok─→ DELIVERED
                                        │ fail / unusable
                                        ▼
                                 DELIVERING(console) ──→ DELIVERED
                                        │ raises (unexpected)
                                        ▼
                                 DELIVERED(success=False), CRITICAL log

No public method raises. A guardian that cannot be reached still gets
exactly one DeliveryResult.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, List, Optional

from guardpulse.app.alerts.audit import DeliveryAuditLog
from guardpulse.app.alerts.channels.console_log import ConsoleLogChannel
from guardpulse.app.alerts.channels.email_alert import EmailAlertChannel, IncidentEmail
from guardpulse.app.alerts.context_builder import (
    UNKNOWN_WARD,
    AlertContextBuilder,
    dashboard_link_for,
)
from guardpulse.app.alerts.models import (
    AlertData,
    AlertType,
    ChannelAttempt,
    DeliveryChannel,
    DeliveryResult,
    GuardianInfo,
    requires_response,
)
from guardpulse.app.alerts.resolver import GuardianResolver
from guardpulse.app.core.errors import ChannelDeliveryError
from guardpulse.app.core.logging_config import bind_alert_context
from guardpulse.app.incidents.background import AlertTaskRunner

logger = logging.getLogger(__name__)

SMS_ENABLED_KEY = "alerts.sms_enabled"


class AlertDispatcher:
    """
    Orchestrates resolution, context building, delivery and audit.

    Parameters
    ----------
    resolver : GuardianResolver
    context_builder : AlertContextBuilder
    sms : SmsChannel | None
        Primary channel; None means every guardian goes straight to console.
    console : ConsoleLogChannel
        Guaranteed fallback.
    email : EmailAlertChannel | None
        Parallel incident-email path.
    audit : DeliveryAuditLog
    runtime_config : RuntimeConfig | None
        Consulted for the ``alerts.sms_enabled`` kill switch.
    task_runner : AlertTaskRunner | None
        Runs the incident email detached from the fan-out.
    """

    def __init__(
        self,
        resolver: GuardianResolver,
        context_builder: AlertContextBuilder,
        *,
        sms: Optional[Any] = None,
        console: Optional[ConsoleLogChannel] = None,
        email: Optional[EmailAlertChannel] = None,
        audit: Optional[DeliveryAuditLog] = None,
        runtime_config: Optional[Any] = None,
        task_runner: Optional[AlertTaskRunner] = None,
    ):
        self._resolver = resolver
        self._builder = context_builder
        self._sms = sms
        self._console = console if console is not None else ConsoleLogChannel()
        self._email = email
        self.audit = audit if audit is not None else DeliveryAuditLog()
        self._runtime_config = runtime_config
        self._task_runner = task_runner if task_runner is not None else AlertTaskRunner()

    # ═══════════════════════════════════════════════════════════════════
    # Public API
    # ═══════════════════════════════════════════════════════════════════

    async def send_alert_to_guardian(
        self,
        guardian_id: str,
        alert_type: AlertType,
        data: Optional[AlertData] = None,
    ) -> DeliveryResult:
        """Deliver one alert to one guardian. Unknown ids yield a failed result."""
        data = data or AlertData()
        incident_id = data.metadata.get("incidentId")
        with bind_alert_context(guardian_id=guardian_id, incident_id=incident_id):
            try:
                guardian = await self._resolver.get_guardian(guardian_id)
                if guardian is None:
                    result = DeliveryResult.failed(
                        guardian_id, f"Guardian with ID {guardian_id} not found",
                    )
                    logger.warning("Guardian not found: %s", guardian_id)
                    self.audit.record(
                        alert_type, result, ward_id=data.ward_id, incident_id=incident_id,
                    )
                    return result
                return await self._deliver(guardian, alert_type, data)
            except Exception as e:
                logger.exception("Failed to send alert to guardian %s", guardian_id)
                result = DeliveryResult.failed(guardian_id, str(e) or type(e).__name__)
                self.audit.record(alert_type, result, ward_id=data.ward_id, incident_id=incident_id)
                return result

    async def send_alert_to_all_guardians(
        self,
        ward_id: str,
        alert_type: AlertType,
        data: Optional[AlertData] = None,
    ) -> List[DeliveryResult]:
        """
        Fan out to every active guardian of ``ward_id`` concurrently.

        Returns
        -------
        list of DeliveryResult
            Same order as the resolved guardian list; empty when the ward
            has no active guardians.
        """
        data = data or AlertData()
        with bind_alert_context(ward_id=ward_id, incident_id=data.metadata.get("incidentId")):
            try:
                guardians = await self._resolver.resolve_guardians(ward_id)
                if not guardians:
                    return []

                enriched = await self._builder.enrich_alert_data(ward_id, data)

                outcomes = await asyncio.gather(
                    *(self._deliver(g, alert_type, enriched) for g in guardians),
                    return_exceptions=True,
                )

                results: List[DeliveryResult] = []
                for guardian, outcome in zip(guardians, outcomes):
                    if isinstance(outcome, BaseException):
                        logger.error(
                            "Failed to send alert to guardian %s: %s", guardian.id, outcome,
                            extra={"guardian_id": guardian.id, "error": str(outcome)},
                        )
                        outcome = DeliveryResult.failed(
                            guardian.id, str(outcome) or type(outcome).__name__,
                        )
                        self.audit.record(
                            alert_type, outcome,
                            ward_id=ward_id, incident_id=enriched.metadata.get("incidentId"),
                        )
                    results.append(outcome)

                successes = sum(1 for r in results if r.success)
                logger.info(
                    "Alert batch sent: %d/%d successful deliveries for ward %s",
                    successes, len(results), ward_id,
                )
                return results
            except Exception:
                logger.exception("Alert fan-out failed for ward %s", ward_id)
                return []

    async def send_incident_alert(
        self,
        ward_id: str,
        incident_id: str,
        alert_type: AlertType,
        data: Optional[AlertData] = None,
    ) -> List[DeliveryResult]:
        """
        Fan out with the incident id stamped into every context's metadata.

        The incident email for response-required types is submitted to the
        task runner and never delays the returned results.
        """
        stamped = (data or AlertData()).copy_with()
        stamped.metadata.update({"incidentId": incident_id, "type": "incident_alert"})

        with bind_alert_context(ward_id=ward_id, incident_id=incident_id):
            if self._should_email(alert_type):
                self._task_runner.submit(
                    self._send_incident_email(ward_id, incident_id, alert_type, stamped),
                    name="incident-email",
                )
            return await self.send_alert_to_all_guardians(ward_id, alert_type, stamped)

    async def send_incident_resolution(
        self,
        ward_id: str,
        incident_id: str,
        alert_type: AlertType,
        started_at: datetime,
        resolved_by: str,
    ) -> bool:
        """Email every guardian that the incident was resolved. Best effort."""
        if self._email is None or not self._email.configured:
            return False
        try:
            recipients, email_data = await self._incident_email_data(
                ward_id, incident_id, alert_type, AlertData(timestamp=started_at),
            )
            sent = await self._email.send_incident_resolution(recipients, email_data, resolved_by)
        except Exception:
            logger.exception("Resolution email failed for incident %s", incident_id)
            sent, recipients = False, []
        self.audit.record_email(incident_id, recipients, sent)
        return sent

    # ═══════════════════════════════════════════════════════════════════
    # Per-guardian delivery
    # ═══════════════════════════════════════════════════════════════════

    async def _sms_enabled(self) -> bool:
        if self._sms is None:
            return False
        if self._runtime_config is None:
            return True
        return await self._runtime_config.get_bool(SMS_ENABLED_KEY, True)

    async def _deliver(
        self,
        guardian: GuardianInfo,
        alert_type: AlertType,
        data: AlertData,
    ) -> DeliveryResult:
        with bind_alert_context(guardian_id=guardian.id):
            context = self._builder.build_context(guardian, data.ward_id, alert_type, data)
            attempts: List[ChannelAttempt] = []

            # ── Primary: SMS ──
            if await self._sms_enabled() and self._sms.is_usable(guardian):
                try:
                    result = await self._sms.deliver(guardian, alert_type, context)
                    attempts.append(ChannelAttempt(
                        DeliveryChannel.SMS, True, message_id=result.message_id,
                    ))
                    result.attempts = attempts
                    self.audit.record(alert_type, result, context)
                    return result
                except Exception as e:
                    reason = e.reason if isinstance(e, ChannelDeliveryError) else str(e)
                    logger.error(
                        "Failed to send SMS to guardian %s: %s", guardian.id, reason,
                        extra={"guardian_id": guardian.id, "channel": "sms", "error": reason},
                    )
                    attempts.append(ChannelAttempt(DeliveryChannel.SMS, False, error=reason))
            else:
                logger.debug("SMS unusable for guardian %s, using console", guardian.id)

            # ── Fallback: console ──
            try:
                result = await self._console.deliver(guardian, alert_type, context)
                attempts.append(ChannelAttempt(DeliveryChannel.CONSOLE, True))
            except Exception as e:
                logger.critical(
                    "Console fallback failed for guardian %s: %s", guardian.id, e,
                    extra={"guardian_id": guardian.id, "channel": "console", "error": str(e)},
                )
                result = DeliveryResult(
                    guardian_id=guardian.id,
                    success=False,
                    channel=DeliveryChannel.CONSOLE,
                    error=str(e) or type(e).__name__,
                    priority=context.priority,
                    requires_response=context.requires_response,
                )
                attempts.append(ChannelAttempt(DeliveryChannel.CONSOLE, False, error=result.error))

            result.attempts = attempts
            self.audit.record(alert_type, result, context)
            return result

    # ═══════════════════════════════════════════════════════════════════
    # Incident email
    # ═══════════════════════════════════════════════════════════════════

    def _should_email(self, alert_type: AlertType) -> bool:
        return (
            self._email is not None
            and self._email.configured
            and requires_response(alert_type)
        )

    async def _incident_email_data(
        self,
        ward_id: str,
        incident_id: str,
        alert_type: AlertType,
        data: AlertData,
    ):
        guardians, ward = await asyncio.gather(
            self._resolver.resolve_guardians(ward_id),
            self._resolver.get_ward_identity(ward_id),
        )
        recipients = [g.email for g in guardians if g.email]
        ward_name = data.ward_name or (ward.display_name if ward else None) or UNKNOWN_WARD
        email_data = IncidentEmail(
            ward_name=ward_name,
            ward_email=(ward.email if ward else None) or "",
            incident_type=alert_type.value,
            incident_id=incident_id,
            timestamp=data.timestamp or datetime.now(timezone.utc),
            dashboard_url=data.dashboard_link or dashboard_link_for(ward_id),
            location=data.location,
        )
        return recipients, email_data

    async def _send_incident_email(
        self,
        ward_id: str,
        incident_id: str,
        alert_type: AlertType,
        data: AlertData,
    ) -> bool:
        recipients: List[str] = []
        try:
            recipients, email_data = await self._incident_email_data(
                ward_id, incident_id, alert_type, data,
            )
            sent = await self._email.send_incident_alert(recipients, email_data)
        except Exception:
            logger.exception("Incident email failed for incident %s", incident_id)
            sent = False
        self.audit.record_email(incident_id, recipients, sent)
        return sent
