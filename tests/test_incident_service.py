"""
test_incident_service.py — Incident sources feeding the alert engine.

Covers:
    • Fall detection maths and sensor reading validation
    • Sensor stream → buffer → FALL_DETECTED incident with snapshot
    • Runtime-tunable fall thresholds (non-positive values ignored)
    • Manual SOS and generic incidents (inline dispatch)
    • Thrown-away / fake-shutdown reports (detached dispatch)
    • Dispatch failures never failing incident creation
    • Persistence failures propagating to the caller

Run with:
    pytest tests/test_incident_service.py -v
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

import pytest

from guardpulse.app.alerts.models import AlertPriority, AlertType, DeliveryChannel, Location
from guardpulse.app.api.deps import wire_engine
from guardpulse.app.buffer.pre_incident import PreIncidentBuffer
from guardpulse.app.core.config import settings
from guardpulse.app.core.errors import PersistenceError
from guardpulse.app.core.runtime_config import static_runtime_config
from guardpulse.app.incidents.background import AlertTaskRunner, JobStatus
from guardpulse.app.incidents.service import (
    FALL_THRESHOLD_KEY,
    IncidentService,
    SensorReading,
    ThrownAwayReport,
    detect_fall,
    validate_reading,
)
from tests.fakes import WARD_ID

PHONE_1 = "+15551230001"
NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def _reading(accel=None, location=None, **kw) -> SensorReading:
    return SensorReading(
        ward_id=kw.pop("ward_id", WARD_ID),
        timestamp=kw.pop("timestamp", NOW),
        accelerometer=accel,
        location=location,
        **kw,
    )


class FailingDispatcher:
    async def send_incident_alert(self, *args, **kwargs):
        raise RuntimeError("dispatcher exploded")


# ═══════════════════════════════════════════════════════════════════════════
# Pure helpers
# ═══════════════════════════════════════════════════════════════════════════

class TestDetectFall:
    def test_below_threshold(self):
        fall = detect_fall({"x": 3.0, "y": 4.0, "z": 0.0}, 20.0, 0.7)
        assert fall.raw_acceleration == pytest.approx(5.0)
        assert fall.confidence == 0.0
        assert not fall.is_fall_detected

    def test_above_threshold_low_confidence(self):
        fall = detect_fall({"x": 30.0, "y": 0.0, "z": 0.0}, 20.0, 0.7)
        assert fall.confidence == pytest.approx(0.5)
        assert not fall.is_fall_detected

    def test_fall_confidence_capped_at_one(self):
        fall = detect_fall({"x": 60.0, "y": 0.0, "z": 0.0}, 20.0, 0.7)
        assert fall.confidence == 1.0
        assert fall.is_fall_detected

    def test_no_accelerometer(self):
        assert not detect_fall(None, 20.0, 0.7).is_fall_detected


class TestValidateReading:
    def test_requires_some_signal(self):
        assert not validate_reading(_reading())
        assert validate_reading(_reading(location=Location(1.0, 2.0)))

    def test_requires_ward_and_timestamp(self):
        assert not validate_reading(_reading(accel={"x": 1}, ward_id=""))
        assert not validate_reading(_reading(accel={"x": 1}, timestamp=None))


# ═══════════════════════════════════════════════════════════════════════════
# Sensor stream
# ═══════════════════════════════════════════════════════════════════════════

class TestProcessSensorData:
    @pytest.mark.asyncio
    async def test_normal_reading_is_buffered_only(self, engine, repository, redis):
        created = await engine.incidents.process_sensor_data(
            _reading(accel={"x": 0.1, "y": 9.8, "z": 0.2}, location=Location(1.0, 2.0)),
        )
        assert created is False
        assert repository.incidents == []
        snapshot = await engine.buffer.snapshot_pre_incident_data(WARD_ID)
        assert len(snapshot.location_data) == 1
        assert len(snapshot.sensor_data) == 1

    @pytest.mark.asyncio
    async def test_fall_creates_incident_with_snapshot(self, engine, repository):
        repository.add_guardian(WARD_ID, "g1", phone=PHONE_1)
        await engine.buffer.buffer_location(WARD_ID, {"latitude": 0.5, "longitude": 0.5})

        created = await engine.incidents.process_sensor_data(
            _reading(accel={"x": 45.0, "y": 0.0, "z": 0.0}, location=Location(1.0, 2.0)),
        )

        assert created is True
        [incident] = repository.incidents
        assert incident.type is AlertType.FALL_DETECTED
        assert incident.severity is AlertPriority.CRITICAL
        assert incident.description == "Fall detected with 100.0% confidence"
        assert len(incident.pre_incident.location_data) == 2
        assert incident.metadata["fallDetection"]["is_fall_detected"] is True
        assert (await engine.buffer.snapshot_pre_incident_data(WARD_ID)).is_empty
        assert engine.audit.for_incident(incident.id)[0].channel == "sms"

    @pytest.mark.asyncio
    async def test_runtime_threshold_respected(self, repository, redis, sms_client):
        engine = wire_engine(
            repository, redis, sms_client=sms_client,
            runtime_config=static_runtime_config({FALL_THRESHOLD_KEY: "50"}),
        )
        created = await engine.incidents.process_sensor_data(
            _reading(accel={"x": 45.0, "y": 0.0, "z": 0.0}),
        )
        assert created is False

    @pytest.mark.asyncio
    @pytest.mark.parametrize("raw", ["0", "-5"])
    async def test_non_positive_threshold_falls_back_to_default(
        self, repository, redis, sms_client, caplog, raw,
    ):
        engine = wire_engine(
            repository, redis, sms_client=sms_client,
            runtime_config=static_runtime_config({FALL_THRESHOLD_KEY: raw}),
        )
        with caplog.at_level(logging.WARNING, logger="guardpulse.app.incidents.service"):
            created = await engine.incidents.process_sensor_data(
                _reading(accel={"x": 45.0, "y": 0.0, "z": 0.0}),
            )

        assert created is True
        assert repository.incidents[0].metadata["fallDetection"]["threshold"] == settings.FALL_THRESHOLD
        assert any("non-positive" in r.getMessage() for r in caplog.records)
        assert not any(r.levelno >= logging.ERROR for r in caplog.records)

    @pytest.mark.asyncio
    async def test_invalid_reading_rejected(self, engine, redis):
        assert await engine.incidents.process_sensor_data(_reading()) is False
        assert redis.lists == {}

    @pytest.mark.asyncio
    async def test_never_raises(self, engine, repository):
        repository.fail_writes = True
        created = await engine.incidents.process_sensor_data(
            _reading(accel={"x": 45.0, "y": 0.0, "z": 0.0}),
        )
        assert created is False


# ═══════════════════════════════════════════════════════════════════════════
# Inline incidents
# ═══════════════════════════════════════════════════════════════════════════

class TestInlineIncidents:
    @pytest.mark.asyncio
    async def test_manual_sos(self, engine, repository):
        repository.add_guardian(WARD_ID, "g1", phone=PHONE_1)
        repository.add_guardian(WARD_ID, "g2")

        report = await engine.incidents.create_manual_sos(WARD_ID, message="help")

        assert report.incident.type is AlertType.SOS_TRIGGERED
        assert report.incident.severity is AlertPriority.EMERGENCY
        assert report.incident.metadata == {"userMessage": "help"}
        assert report.guardians_notified == 2
        assert [d.channel for d in report.deliveries] == [
            DeliveryChannel.SMS, DeliveryChannel.CONSOLE,
        ]
        assert report.task_id is None

    @pytest.mark.asyncio
    async def test_generic_incident_default_description(self, engine):
        report = await engine.incidents.create_incident(WARD_ID, AlertType.DEVICE_OFFLINE)
        assert report.incident.description == "Incident of type DEVICE_OFFLINE detected"
        assert report.incident.severity is AlertPriority.MEDIUM
        assert report.deliveries == []

    @pytest.mark.asyncio
    async def test_priority_override(self, engine, repository):
        repository.add_guardian(WARD_ID, "g1")
        report = await engine.incidents.create_incident(
            WARD_ID, AlertType.BATTERY_LOW, priority=AlertPriority.HIGH,
        )
        assert report.incident.severity is AlertPriority.HIGH
        assert report.deliveries[0].priority is AlertPriority.HIGH

    @pytest.mark.asyncio
    async def test_dispatch_failure_does_not_fail_creation(self, repository, redis):
        service = IncidentService(
            repository, FailingDispatcher(), PreIncidentBuffer(redis), AlertTaskRunner(),
        )
        report = await service.create_manual_sos(WARD_ID)
        assert report.deliveries == []
        assert len(repository.incidents) == 1

    @pytest.mark.asyncio
    async def test_persistence_failure_propagates(self, engine, repository):
        repository.fail_writes = True
        with pytest.raises(PersistenceError):
            await engine.incidents.create_manual_sos(WARD_ID)


# ═══════════════════════════════════════════════════════════════════════════
# Detached incidents
# ═══════════════════════════════════════════════════════════════════════════

class TestDetachedIncidents:
    @pytest.mark.asyncio
    async def test_thrown_away_dispatches_in_background(self, engine, repository):
        repository.add_guardian(WARD_ID, "g1", phone=PHONE_1)
        report = await engine.incidents.report_thrown_away(
            WARD_ID,
            ThrownAwayReport(timestamp=NOW, confidence=0.92, severity="HIGH"),
        )

        assert report.task_id is not None
        assert report.deliveries == []
        assert report.incident.severity is AlertPriority.EMERGENCY
        assert report.incident.metadata["detectionConfidence"] == 0.92
        assert report.incident.metadata["reportedSeverity"] == "HIGH"
        assert "deviceInfo" not in report.incident.metadata

        await engine.task_runner.drain(timeout=5)

        assert engine.task_runner.get_job(report.task_id).status is JobStatus.COMPLETED
        [entry] = engine.audit.for_incident(report.incident.id)
        assert entry.success is True

    @pytest.mark.asyncio
    async def test_fake_shutdown(self, engine, repository):
        repository.add_guardian(WARD_ID, "g1")
        report = await engine.incidents.report_fake_shutdown(
            WARD_ID, location=Location(1.0, 2.0), device_info={"model": "Pixel"},
        )
        assert report.incident.type is AlertType.FAKE_SHUTDOWN
        assert report.incident.description.startswith("Fake shutdown triggered")
        assert report.incident.metadata == {"deviceInfo": {"model": "Pixel"}}

        await engine.task_runner.drain(timeout=5)

        [entry] = engine.audit.for_incident(report.incident.id)
        assert entry.priority == "EMERGENCY"
