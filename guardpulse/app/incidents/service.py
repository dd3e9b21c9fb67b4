"""
service.py — Incident sources: turn device signals into incidents + alerts.

═══════════════════════════════════════════════════════════════════════════
SOURCES
═══════════════════════════════════════════════════════════════════════════

    Source                 Type             Dispatch
    ─────────────────────  ───────────────  ─────────────────────────────
    sensor stream (fall)   FALL_DETECTED    inline, priority CRITICAL
    manual SOS             SOS_TRIGGERED    inline, priority EMERGENCY
    generic report         any              inline
    thrown-away device     THROWN_AWAY      detached (AlertTaskRunner)
    fake shutdown          FAKE_SHUTDOWN    detached (AlertTaskRunner)

Every path: snapshot pre-incident buffer → persist incident → clear
buffer → dispatch. A dispatch failure never fails incident creation.

═══════════════════════════════════════════════════════════════════════════
FALL DETECTION
═══════════════════════════════════════════════════════════════════════════

    |a| = √(x² + y² + z²)                          (m/s², accelerometer)
    confidence = min(1, (|a| − T) / T)             when |a| > T, else 0
    fall  ⇔  |a| > T  and  confidence ≥ C

    T = fall_detection.threshold             (runtime config, default 20)
    C = fall_detection.confidence_threshold  (runtime config, default 0.7)
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from guardpulse.app.alerts.models import (
    AlertData,
    AlertPriority,
    AlertType,
    DeliveryResult,
    Incident,
    Location,
)
from guardpulse.app.core.config import settings
from guardpulse.app.core.logging_config import bind_alert_context

logger = logging.getLogger(__name__)

FALL_THRESHOLD_KEY = "fall_detection.threshold"
FALL_CONFIDENCE_KEY = "fall_detection.confidence_threshold"

_DESCRIPTIONS = {
    AlertType.SOS_TRIGGERED: "Manual SOS button pressed by user",
    AlertType.THROWN_AWAY: "Device appears to have been thrown or discarded",
    AlertType.FAKE_SHUTDOWN:
        "Fake shutdown triggered - potential duress or emergency situation detected",
}


def default_description(alert_type: AlertType) -> str:
    return _DESCRIPTIONS.get(alert_type, f"Incident of type {alert_type.value} detected")


# ═══════════════════════════════════════════════════════════════════════════
# Inputs / Outputs
# ═══════════════════════════════════════════════════════════════════════════

@dataclass
class SensorReading:
    """One sample from the ward's device."""
    ward_id: str
    timestamp: Optional[datetime]
    accelerometer: Optional[Dict[str, float]] = None
    gyroscope: Optional[Dict[str, float]] = None
    location: Optional[Location] = None
    device_info: Optional[Dict[str, Any]] = None


@dataclass
class ThrownAwayReport:
    """Pattern match reported by the device's throw detector."""
    timestamp: datetime
    confidence: float
    severity: str = "CRITICAL"
    location: Optional[Location] = None
    device_info: Optional[Dict[str, Any]] = None


@dataclass(frozen=True)
class FallDetection:
    is_fall_detected: bool
    confidence: float
    raw_acceleration: float
    threshold: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "is_fall_detected": self.is_fall_detected,
            "confidence": self.confidence,
            "raw_acceleration": self.raw_acceleration,
            "threshold": self.threshold,
        }


@dataclass
class IncidentReport:
    """
    What an incident source hands back to its caller.

    ``deliveries`` is filled for inline dispatch; ``task_id`` for
    detached dispatch (results are then only in the audit log).
    """
    incident: Incident
    deliveries: List[DeliveryResult] = field(default_factory=list)
    task_id: Optional[str] = None
    received_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def guardians_notified(self) -> int:
        return sum(1 for d in self.deliveries if d.success)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "incident": self.incident.to_dict(),
            "deliveries": [d.to_dict() for d in self.deliveries],
            "guardians_notified": self.guardians_notified,
            "alerts_detached": self.task_id is not None,
            "task_id": self.task_id,
            "received_at": self.received_at.isoformat(),
        }


def detect_fall(
    accelerometer: Optional[Dict[str, float]],
    threshold: float,
    confidence_threshold: float,
) -> FallDetection:
    if not accelerometer:
        return FallDetection(False, 0.0, 0.0, threshold)

    x = float(accelerometer.get("x", 0.0))
    y = float(accelerometer.get("y", 0.0))
    z = float(accelerometer.get("z", 0.0))
    acceleration = math.sqrt(x * x + y * y + z * z)

    above = acceleration > threshold
    confidence = min(1.0, (acceleration - threshold) / threshold) if above else 0.0

    return FallDetection(
        is_fall_detected=above and confidence >= confidence_threshold,
        confidence=confidence,
        raw_acceleration=acceleration,
        threshold=threshold,
    )


def validate_reading(reading: SensorReading) -> bool:
    if not reading.ward_id or not isinstance(reading.ward_id, str):
        return False
    if not isinstance(reading.timestamp, datetime):
        return False
    return bool(reading.accelerometer or reading.gyroscope or reading.location)


# ═══════════════════════════════════════════════════════════════════════════
# Service
# ═══════════════════════════════════════════════════════════════════════════

class IncidentService:
    """
    Parameters
    ----------
    repository
        Exposes ``create_incident(incident) -> Incident``.
    dispatcher : AlertDispatcher
    buffer : PreIncidentBuffer
    task_runner : AlertTaskRunner
        Used by the latency-critical report paths.
    runtime_config : RuntimeConfig | None
        Source of fall-detection thresholds; settings defaults otherwise.
    """

    def __init__(
        self,
        repository: Any,
        dispatcher: Any,
        buffer: Any,
        task_runner: Any,
        runtime_config: Optional[Any] = None,
    ):
        self._repository = repository
        self._dispatcher = dispatcher
        self._buffer = buffer
        self._runner = task_runner
        self._runtime_config = runtime_config

    # ── Sensor stream ──

    async def _fall_thresholds(self):
        if self._runtime_config is None:
            return settings.FALL_THRESHOLD, settings.FALL_CONFIDENCE_THRESHOLD
        threshold = await self._runtime_config.get_number(
            FALL_THRESHOLD_KEY, settings.FALL_THRESHOLD,
        )
        if threshold <= 0:
            logger.warning(
                "Ignoring non-positive %s=%s, using %s",
                FALL_THRESHOLD_KEY, threshold, settings.FALL_THRESHOLD,
            )
            threshold = settings.FALL_THRESHOLD
        confidence = await self._runtime_config.get_number(
            FALL_CONFIDENCE_KEY, settings.FALL_CONFIDENCE_THRESHOLD,
        )
        return threshold, confidence

    async def process_sensor_data(self, reading: SensorReading) -> bool:
        """
        Buffer the sample and check it for a fall.

        Returns True when a FALL_DETECTED incident was created. Never raises.
        """
        try:
            if not validate_reading(reading):
                logger.warning("Invalid sensor data received", extra={"ward_id": reading.ward_id})
                return False

            with bind_alert_context(ward_id=reading.ward_id):
                if reading.location is not None:
                    await self._buffer.buffer_location(reading.ward_id, reading.location.to_dict())
                if reading.accelerometer or reading.gyroscope:
                    await self._buffer.buffer_sensor(reading.ward_id, {
                        "accelerometer": reading.accelerometer,
                        "gyroscope": reading.gyroscope,
                    })

                threshold, confidence_threshold = await self._fall_thresholds()
                fall = detect_fall(reading.accelerometer, threshold, confidence_threshold)
                if not fall.is_fall_detected:
                    logger.debug("Sensor data processed - no incidents detected for ward %s",
                                 reading.ward_id)
                    return False

                logger.warning(
                    "Fall detected for ward %s (confidence=%.2f, |a|=%.2f)",
                    reading.ward_id, fall.confidence, fall.raw_acceleration,
                )
                await self.create_incident(
                    reading.ward_id,
                    AlertType.FALL_DETECTED,
                    location=reading.location,
                    description=f"Fall detected with {fall.confidence * 100:.1f}% confidence",
                    priority=AlertPriority.CRITICAL,
                    message="Fall detected - immediate attention required",
                    timestamp=reading.timestamp,
                    metadata={
                        "fallDetection": fall.to_dict(),
                        "sensorData": {
                            "accelerometer": reading.accelerometer,
                            "deviceInfo": reading.device_info,
                        },
                    },
                )
                return True
        except Exception:
            logger.exception("Error processing sensor data for ward %s", reading.ward_id)
            return False

    # ── Generic / manual ──

    async def create_incident(
        self,
        ward_id: str,
        alert_type: AlertType,
        *,
        location: Optional[Location] = None,
        description: Optional[str] = None,
        priority: Optional[AlertPriority] = None,
        message: Optional[str] = None,
        timestamp: Optional[datetime] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> IncidentReport:
        """Persist an incident and dispatch its alerts inline."""
        incident = await self._persist(
            ward_id, alert_type, location=location, description=description,
            priority=priority, metadata=metadata,
        )
        alert_data = self._alert_data(incident, message, priority, timestamp)
        deliveries = await self._dispatch(incident, alert_data)
        return IncidentReport(incident=incident, deliveries=deliveries)

    async def create_manual_sos(
        self,
        ward_id: str,
        location: Optional[Location] = None,
        message: Optional[str] = None,
    ) -> IncidentReport:
        logger.warning("Manual SOS triggered by ward %s", ward_id)
        return await self.create_incident(
            ward_id,
            AlertType.SOS_TRIGGERED,
            location=location,
            priority=AlertPriority.EMERGENCY,
            message=message or "Emergency SOS triggered by user",
            metadata={"userMessage": message} if message else None,
        )

    # ── Latency-critical (detached dispatch) ──

    async def report_thrown_away(self, ward_id: str, report: ThrownAwayReport) -> IncidentReport:
        logger.error(
            "THROWN-AWAY INCIDENT DETECTED for ward %s (confidence=%.2f, severity=%s)",
            ward_id, report.confidence, report.severity,
            extra={"ward_id": ward_id},
        )
        incident = await self._persist(
            ward_id,
            AlertType.THROWN_AWAY,
            location=report.location,
            metadata={
                "detectionConfidence": report.confidence,
                "reportedSeverity": report.severity,
                "deviceThrown": True,
                "immediateResponse": True,
                "deviceInfo": report.device_info,
            },
        )
        alert_data = self._alert_data(incident, None, None, report.timestamp)
        alert_data.metadata.update({
            "detectionConfidence": report.confidence,
            "deviceThrown": True,
            "immediateResponse": True,
        })
        return self._detach(incident, alert_data)

    async def report_fake_shutdown(
        self,
        ward_id: str,
        location: Optional[Location] = None,
        device_info: Optional[Dict[str, Any]] = None,
    ) -> IncidentReport:
        logger.warning("Fake shutdown triggered by ward %s - potential duress situation", ward_id)
        incident = await self._persist(
            ward_id,
            AlertType.FAKE_SHUTDOWN,
            location=location,
            priority=AlertPriority.EMERGENCY,
            metadata={"deviceInfo": device_info} if device_info else None,
        )
        alert_data = self._alert_data(
            incident,
            "EMERGENCY: Ward may be in danger - fake shutdown triggered",
            AlertPriority.EMERGENCY,
            None,
        )
        return self._detach(incident, alert_data)

    # ── Internals ──

    async def _persist(
        self,
        ward_id: str,
        alert_type: AlertType,
        *,
        location: Optional[Location] = None,
        description: Optional[str] = None,
        priority: Optional[AlertPriority] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Incident:
        snapshot = await self._buffer.snapshot_pre_incident_data(ward_id)
        incident = Incident(
            ward_id=ward_id,
            type=alert_type,
            location=location,
            pre_incident=snapshot,
            description=description or default_description(alert_type),
            metadata={k: v for k, v in (metadata or {}).items() if v is not None},
            priority_override=priority,
        )
        incident = await self._repository.create_incident(incident)
        await self._buffer.clear_buffer(ward_id)

        logger.info(
            "Incident created: %s for ward %s", incident.id, ward_id,
            extra={"incident_id": incident.id, "ward_id": ward_id,
                   "alert_type": alert_type.value, "priority": incident.severity.name},
        )
        return incident

    def _alert_data(
        self,
        incident: Incident,
        message: Optional[str],
        priority: Optional[AlertPriority],
        timestamp: Optional[datetime],
    ) -> AlertData:
        return AlertData(
            ward_id=incident.ward_id,
            timestamp=timestamp or incident.created_at,
            location=incident.location,
            message=message,
            priority=priority,
        )

    async def _dispatch(self, incident: Incident, alert_data: AlertData) -> List[DeliveryResult]:
        try:
            results = await self._dispatcher.send_incident_alert(
                incident.ward_id, incident.id, incident.type, alert_data,
            )
        except Exception:
            logger.exception("Failed to send incident alert for incident %s", incident.id)
            return []
        logger.info(
            "%s alert sent for incident %s: %d/%d guardians notified",
            incident.type.value, incident.id,
            sum(1 for r in results if r.success), len(results),
        )
        return results

    def _detach(self, incident: Incident, alert_data: AlertData) -> IncidentReport:
        task_id = self._runner.submit(
            self._dispatch(incident, alert_data),
            name=f"{incident.type.value.lower()}-alert",
        )
        return IncidentReport(incident=incident, task_id=task_id)
