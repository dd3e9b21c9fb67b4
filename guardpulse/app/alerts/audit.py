"""
audit.py — Delivery audit trail.

Every per-guardian outcome produces:
    1. one structured log line ("Alert delivery recorded") with the
       whitelisted audit fields, for the log aggregator
    2. one AuditEntry in a bounded in-memory history, for the
       /alerts endpoints and for tests

The history is a ring (``deque(maxlen=AUDIT_HISTORY_LIMIT)``); it is a
convenience view of recent activity, not a durable store.
"""

from __future__ import annotations

import logging
from collections import Counter, deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Deque, Dict, List, Optional

from guardpulse.app.alerts.models import AlertContext, AlertType, DeliveryResult
from guardpulse.app.core.config import settings

logger = logging.getLogger(__name__)


@dataclass
class AuditEntry:
    guardian_id: str
    alert_type: AlertType
    success: bool
    channel: str
    timestamp: datetime
    ward_id: Optional[str] = None
    incident_id: Optional[str] = None
    priority: Optional[str] = None
    error: Optional[str] = None
    message_id: Optional[str] = None
    attempts: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "guardian_id": self.guardian_id,
            "ward_id": self.ward_id,
            "incident_id": self.incident_id,
            "alert_type": self.alert_type.value,
            "priority": self.priority,
            "success": self.success,
            "channel": self.channel,
            "timestamp": self.timestamp.isoformat(),
            "error": self.error,
            "message_id": self.message_id,
            "attempts": self.attempts,
        }


@dataclass
class EmailAuditEntry:
    incident_id: str
    recipients: int
    sent: bool
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "incident_id": self.incident_id,
            "recipients": self.recipients,
            "sent": self.sent,
            "timestamp": self.timestamp.isoformat(),
        }


class DeliveryAuditLog:
    """Bounded history of delivery outcomes."""

    def __init__(self, limit: Optional[int] = None):
        self.limit = limit or settings.AUDIT_HISTORY_LIMIT
        self._entries: Deque[AuditEntry] = deque(maxlen=self.limit)
        self._emails: Deque[EmailAuditEntry] = deque(maxlen=self.limit)

    def record(
        self,
        alert_type: AlertType,
        result: DeliveryResult,
        context: Optional[AlertContext] = None,
        *,
        ward_id: Optional[str] = None,
        incident_id: Optional[str] = None,
    ) -> AuditEntry:
        if context is not None:
            ward_id = ward_id or context.ward_id
            incident_id = incident_id or context.incident_id

        priority = result.priority or (context.priority if context else None)
        entry = AuditEntry(
            guardian_id=result.guardian_id,
            alert_type=alert_type,
            success=result.success,
            channel=result.channel.value,
            timestamp=result.timestamp,
            ward_id=ward_id,
            incident_id=incident_id,
            priority=priority.name if priority else None,
            error=result.error,
            message_id=result.message_id,
            attempts=[a.to_dict() for a in result.attempts],
        )
        self._entries.append(entry)

        logger.info(
            "Alert delivery recorded",
            extra={
                "guardian_id": entry.guardian_id,
                "ward_id": entry.ward_id,
                "incident_id": entry.incident_id,
                "alert_type": alert_type.value,
                "priority": entry.priority,
                "success": entry.success,
                "channel": entry.channel,
                "error": entry.error,
                "message_id": entry.message_id,
            },
        )
        return entry

    def record_email(self, incident_id: str, recipients: List[str], sent: bool) -> EmailAuditEntry:
        entry = EmailAuditEntry(incident_id=incident_id, recipients=len(recipients), sent=sent)
        self._emails.append(entry)
        logger.info(
            "Incident email %s for %d recipients",
            "sent" if sent else "not sent", len(recipients),
            extra={"incident_id": incident_id, "channel": "email", "success": sent},
        )
        return entry

    # ── Queries ──

    def for_incident(self, incident_id: str) -> List[AuditEntry]:
        return [e for e in self._entries if e.incident_id == incident_id]

    def emails_for_incident(self, incident_id: str) -> List[EmailAuditEntry]:
        return [e for e in self._emails if e.incident_id == incident_id]

    def for_guardian(self, guardian_id: str) -> List[AuditEntry]:
        return [e for e in self._entries if e.guardian_id == guardian_id]

    def summary(self) -> Dict[str, Any]:
        """Aggregate counts over the retained history."""
        total = len(self._entries)
        successes = sum(1 for e in self._entries if e.success)
        return {
            "total": total,
            "successful": successes,
            "failed": total - successes,
            "success_rate": round(successes / total, 4) if total else None,
            "by_channel": dict(Counter(e.channel for e in self._entries)),
            "by_alert_type": dict(Counter(e.alert_type.value for e in self._entries)),
            "emails": {
                "total": len(self._emails),
                "sent": sum(1 for e in self._emails if e.sent),
            },
            "history_limit": self.limit,
        }

    def __len__(self) -> int:
        return len(self._entries)
