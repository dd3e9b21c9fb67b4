"""
models.py — Shared data structures for the guardian alert engine.

Defines:
    • AlertType        — incident / alert kinds raised for a ward
    • AlertPriority    — escalation levels (ordered)
    • DeliveryChannel  — channels a guardian can be reached on
    • Location, GuardianInfo, WardIdentity, GuardianRelationship
    • AlertData        — partially-filled caller input
    • AlertContext     — per-(incident, guardian) delivery-ready view
    • ChannelAttempt   — one hand-off to one channel
    • DeliveryResult   — final outcome for one guardian
    • Incident         — a detected safety event
    • BufferSnapshot   — pre-incident samples attached to an incident

═══════════════════════════════════════════════════════════════════════════
PRIORITY & RESPONSE TABLE
═══════════════════════════════════════════════════════════════════════════

    Alert Type                                      Priority    Response
    ──────────────────────────────────────────      ─────────   ────────
    SOS_TRIGGERED, PANIC_BUTTON,
    THROWN_AWAY, FAKE_SHUTDOWN                      EMERGENCY   yes
    FALL_DETECTED, EMERGENCY_CONTACT                CRITICAL    yes
    LOCATION_LOST, GEOFENCE_VIOLATION               HIGH        no
    DEVICE_OFFLINE, UNUSUAL_ACTIVITY                MEDIUM      no
    BATTERY_LOW, SYSTEM_ALERT                       LOW         no

Priority is a pure function of type unless the caller supplies one.
An incident's severity follows the same rule.

═══════════════════════════════════════════════════════════════════════════
CHANNEL FALLBACK ORDER
═══════════════════════════════════════════════════════════════════════════

    1. SMS      — guardian has a phone AND an SMS client is configured
    2. Console  — always available; the guaranteed last resort

    Email is not part of the per-guardian chain. It is a parallel,
    best-effort path for full incident notifications.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum, IntEnum
from typing import Any, Dict, FrozenSet, List, Optional


# ═══════════════════════════════════════════════════════════════════════════
# Enums
# ═══════════════════════════════════════════════════════════════════════════

class AlertType(str, Enum):
    """Kinds of alert a ward can raise."""
    SOS_TRIGGERED      = "SOS_TRIGGERED"
    FALL_DETECTED      = "FALL_DETECTED"
    PANIC_BUTTON       = "PANIC_BUTTON"
    THROWN_AWAY        = "THROWN_AWAY"
    FAKE_SHUTDOWN      = "FAKE_SHUTDOWN"
    GEOFENCE_VIOLATION = "GEOFENCE_VIOLATION"
    BATTERY_LOW        = "BATTERY_LOW"
    DEVICE_OFFLINE     = "DEVICE_OFFLINE"
    LOCATION_LOST      = "LOCATION_LOST"
    UNUSUAL_ACTIVITY   = "UNUSUAL_ACTIVITY"
    EMERGENCY_CONTACT  = "EMERGENCY_CONTACT"
    SYSTEM_ALERT       = "SYSTEM_ALERT"


class AlertPriority(IntEnum):
    """
    Alert escalation levels — integer ordering enables comparison.

    Higher value = more severe.
    """
    LOW       = 1
    MEDIUM    = 2
    HIGH      = 3
    CRITICAL  = 4
    EMERGENCY = 5

    @classmethod
    def parse(cls, value: Any) -> "AlertPriority":
        """Accept an AlertPriority, its name (any case) or its int value."""
        if isinstance(value, cls):
            return value
        if isinstance(value, int):
            return cls(value)
        try:
            return cls[str(value).strip().upper()]
        except KeyError:
            valid = [p.name for p in cls]
            raise ValueError(f"Invalid priority '{value}'. Must be one of: {valid}")


class DeliveryChannel(str, Enum):
    """Channels an alert can be handed to."""
    SMS     = "sms"
    CONSOLE = "console"
    EMAIL   = "email"


# ═══════════════════════════════════════════════════════════════════════════
# Type → Priority Mapping
# ═══════════════════════════════════════════════════════════════════════════

PRIORITY_BY_TYPE: Dict[AlertType, AlertPriority] = {
    AlertType.SOS_TRIGGERED:      AlertPriority.EMERGENCY,
    AlertType.PANIC_BUTTON:       AlertPriority.EMERGENCY,
    AlertType.THROWN_AWAY:        AlertPriority.EMERGENCY,
    AlertType.FAKE_SHUTDOWN:      AlertPriority.EMERGENCY,
    AlertType.FALL_DETECTED:      AlertPriority.CRITICAL,
    AlertType.EMERGENCY_CONTACT:  AlertPriority.CRITICAL,
    AlertType.LOCATION_LOST:      AlertPriority.HIGH,
    AlertType.GEOFENCE_VIOLATION: AlertPriority.HIGH,
    AlertType.DEVICE_OFFLINE:     AlertPriority.MEDIUM,
    AlertType.UNUSUAL_ACTIVITY:   AlertPriority.MEDIUM,
    AlertType.BATTERY_LOW:        AlertPriority.LOW,
    AlertType.SYSTEM_ALERT:       AlertPriority.LOW,
}

RESPONSE_REQUIRED_TYPES: FrozenSet[AlertType] = frozenset({
    AlertType.SOS_TRIGGERED,
    AlertType.PANIC_BUTTON,
    AlertType.THROWN_AWAY,
    AlertType.FAKE_SHUTDOWN,
    AlertType.FALL_DETECTED,
    AlertType.EMERGENCY_CONTACT,
})


def default_priority(alert_type: AlertType) -> AlertPriority:
    return PRIORITY_BY_TYPE.get(alert_type, AlertPriority.MEDIUM)


def requires_response(alert_type: AlertType) -> bool:
    return alert_type in RESPONSE_REQUIRED_TYPES


# ═══════════════════════════════════════════════════════════════════════════
# Data Structures
# ═══════════════════════════════════════════════════════════════════════════

def _now() -> datetime:
    return datetime.now(timezone.utc)


def _generate_incident_id() -> str:
    return f"INC-{uuid.uuid4().hex[:12].upper()}"


@dataclass(frozen=True)
class Location:
    """A WGS-84 fix reported by the ward's device."""
    latitude: float
    longitude: float
    accuracy: Optional[float] = None
    address: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> Optional["Location"]:
        if not data:
            return None
        return cls(
            latitude=float(data["latitude"]),
            longitude=float(data["longitude"]),
            accuracy=data.get("accuracy"),
            address=data.get("address"),
        )

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {"latitude": self.latitude, "longitude": self.longitude}
        if self.accuracy is not None:
            d["accuracy"] = self.accuracy
        if self.address:
            d["address"] = self.address
        return d


@dataclass(frozen=True)
class GuardianInfo:
    """
    A guardian as seen by the alert engine.

    Attributes
    ----------
    id : str
        User id of the guardian.
    email : str
        Always present (account login).
    first_name, last_name : str | None
    phone_number : str | None
        E.164 number; required for the SMS channel.
    """
    id: str
    email: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone_number: Optional[str] = None

    @property
    def display_name(self) -> str:
        name = f"{self.first_name or ''} {self.last_name or ''}".strip()
        return name or self.email


@dataclass(frozen=True)
class WardIdentity:
    id: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[str] = None

    @property
    def display_name(self) -> str:
        name = f"{self.first_name or ''} {self.last_name or ''}".strip()
        return name or "Unknown Ward"


@dataclass(frozen=True)
class GuardianRelationship:
    """Ward → guardian link returned by persistence (active rows only)."""
    ward_id: str
    guardian_id: str
    guardian: GuardianInfo
    is_active: bool = True


@dataclass
class AlertData:
    """
    Caller-supplied alert input. Every field is optional; the context
    builder fills defaults for whatever is missing.
    """
    ward_name: Optional[str] = None
    ward_id: Optional[str] = None
    timestamp: Optional[datetime] = None
    location: Optional[Location] = None
    dashboard_link: Optional[str] = None
    message: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    priority: Optional[AlertPriority] = None
    requires_response: Optional[bool] = None

    def copy_with(self, **changes: Any) -> "AlertData":
        """Shallow copy with a fresh metadata dict."""
        changes.setdefault("metadata", dict(self.metadata))
        return replace(self, **changes)


@dataclass(frozen=True)
class AlertContext:
    """Delivery-ready view of one alert for one guardian. Never persisted."""
    guardian_id: str
    guardian_name: str
    guardian_email: str
    guardian_phone: Optional[str]
    ward_id: Optional[str]
    ward_name: Optional[str]
    alert_type: AlertType
    priority: AlertPriority
    requires_response: bool
    timestamp: datetime
    message: str
    dashboard_link: Optional[str] = None
    location: Optional[Location] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def incident_id(self) -> Optional[str]:
        return self.metadata.get("incidentId")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "guardian": {
                "id": self.guardian_id,
                "name": self.guardian_name,
                "email": self.guardian_email,
            },
            "alert": {
                "type": self.alert_type.value,
                "priority": self.priority.name,
                "timestamp": self.timestamp.isoformat(),
                "requires_response": self.requires_response,
            },
            "ward": {"id": self.ward_id, "name": self.ward_name},
            "location": self.location.to_dict() if self.location else None,
            "message": self.message,
            "dashboard_link": self.dashboard_link,
            "metadata": self.metadata,
        }


@dataclass
class ChannelAttempt:
    """Record of one hand-off to one channel."""
    channel: DeliveryChannel
    success: bool
    attempted_at: datetime = field(default_factory=_now)
    error: Optional[str] = None
    message_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "channel": self.channel.value,
            "success": self.success,
            "attempted_at": self.attempted_at.isoformat(),
            "error": self.error,
            "message_id": self.message_id,
        }


@dataclass
class DeliveryResult:
    """
    Outcome of one dispatch to one guardian.

    ``channel`` is the channel that produced the final outcome. ``attempts``
    lists every channel tried, in order, so an SMS failure that fell back
    to the console is still visible in the audit trail.
    """
    guardian_id: str
    success: bool
    channel: DeliveryChannel = DeliveryChannel.CONSOLE
    timestamp: datetime = field(default_factory=_now)
    error: Optional[str] = None
    message_id: Optional[str] = None
    priority: Optional[AlertPriority] = None
    requires_response: Optional[bool] = None
    attempts: List[ChannelAttempt] = field(default_factory=list)

    @classmethod
    def failed(cls, guardian_id: str, error: str) -> "DeliveryResult":
        return cls(guardian_id=guardian_id, success=False, error=error)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "guardian_id": self.guardian_id,
            "success": self.success,
            "channel": self.channel.value,
            "timestamp": self.timestamp.isoformat(),
            "error": self.error,
            "message_id": self.message_id,
            "priority": self.priority.name if self.priority else None,
            "requires_response": self.requires_response,
            "attempts": [a.to_dict() for a in self.attempts],
        }


@dataclass
class BufferSnapshot:
    """Pre-incident samples, oldest first."""
    location_data: List[Dict[str, Any]] = field(default_factory=list)
    sensor_data: List[Dict[str, Any]] = field(default_factory=list)
    retrieved_at: datetime = field(default_factory=_now)

    @property
    def is_empty(self) -> bool:
        return not self.location_data and not self.sensor_data

    def to_dict(self) -> Dict[str, Any]:
        return {
            "location_data": self.location_data,
            "sensor_data": self.sensor_data,
            "retrieved_at": self.retrieved_at.isoformat(),
        }


@dataclass
class Incident:
    """
    A detected safety event for one ward.

    ``severity`` is derived from ``type`` and cannot be passed in; callers
    that need a different level pass ``priority_override``.
    """
    ward_id: str
    type: AlertType
    id: str = field(default_factory=_generate_incident_id)
    created_at: datetime = field(default_factory=_now)
    location: Optional[Location] = None
    pre_incident: Optional[BufferSnapshot] = None
    description: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    is_active: bool = True
    priority_override: Optional[AlertPriority] = None
    severity: AlertPriority = field(init=False)

    def __post_init__(self) -> None:
        self.severity = self.priority_override or default_priority(self.type)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "ward_id": self.ward_id,
            "type": self.type.value,
            "severity": self.severity.name,
            "created_at": self.created_at.isoformat(),
            "location": self.location.to_dict() if self.location else None,
            "description": self.description,
            "is_active": self.is_active,
            "pre_incident": self.pre_incident.to_dict() if self.pre_incident else None,
            "metadata": self.metadata,
        }
