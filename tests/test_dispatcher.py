"""
test_dispatcher.py — Guardian fan-out with SMS → console fallback.

Covers:
    • Empty guardian sets and failed lookups
    • Console delivery for guardians without a phone
    • Per-guardian SMS failure isolated to that guardian
    • SOS end-to-end (mixed SMS / console, EMERGENCY + requires response)
    • Unknown guardian ids
    • Result ordering independent of completion order
    • Runtime SMS kill switch
    • Console failure surfacing as a failed result
    • Incident email path (detached from the fan-out) and resolution notices
    • Audit trail per guardian
    • Engine wiring shares one audit log with the dispatcher

Run with:
    pytest tests/test_dispatcher.py -v
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone

import pytest

from guardpulse.app.alerts.audit import DeliveryAuditLog
from guardpulse.app.alerts.context_builder import AlertContextBuilder
from guardpulse.app.alerts.dispatcher import SMS_ENABLED_KEY, AlertDispatcher
from guardpulse.app.alerts.channels.sms_gateway import SmsChannel
from guardpulse.app.alerts.models import (
    AlertData,
    AlertPriority,
    AlertType,
    DeliveryChannel,
)
from guardpulse.app.alerts.resolver import GuardianResolver
from guardpulse.app.api.deps import wire_engine
from guardpulse.app.core.runtime_config import static_runtime_config
from tests.fakes import SMS_FROM, WARD_ID, FakeRedis, FakeRepository, FakeSmsClient

PHONE_1 = "+15551230001"
PHONE_2 = "+15551230002"
PHONE_3 = "+15551230003"


class ExplodingConsole:
    async def deliver(self, guardian, alert_type, context):
        raise OSError("log sink unavailable")


def _dispatcher(repository, sms_client=None, *, console=None, runtime_values=None) -> AlertDispatcher:
    resolver = GuardianResolver(repository)
    return AlertDispatcher(
        resolver,
        AlertContextBuilder(resolver),
        sms=SmsChannel(sms_client, from_number=SMS_FROM) if sms_client else None,
        console=console,
        audit=DeliveryAuditLog(),
        runtime_config=static_runtime_config(runtime_values),
    )


# ═══════════════════════════════════════════════════════════════════════════
# Fan-out
# ═══════════════════════════════════════════════════════════════════════════

class TestFanOut:
    @pytest.mark.asyncio
    async def test_no_guardians_returns_empty(self, engine):
        results = await engine.dispatcher.send_alert_to_all_guardians(WARD_ID, AlertType.SOS_TRIGGERED)
        assert results == []
        assert len(engine.audit) == 0

    @pytest.mark.asyncio
    async def test_lookup_failure_returns_empty(self, engine, repository):
        repository.add_guardian(WARD_ID, "g1", phone=PHONE_1)
        repository.fail_reads = True
        results = await engine.dispatcher.send_alert_to_all_guardians(WARD_ID, AlertType.SOS_TRIGGERED)
        assert results == []

    @pytest.mark.asyncio
    async def test_guardian_without_phone_gets_console(self, engine, repository, sms_client):
        repository.add_guardian(WARD_ID, "g1", phone=None)
        [result] = await engine.dispatcher.send_alert_to_all_guardians(WARD_ID, AlertType.BATTERY_LOW)
        assert result.success is True
        assert result.channel is DeliveryChannel.CONSOLE
        assert sms_client.sent == []

    @pytest.mark.asyncio
    async def test_one_sms_failure_is_isolated(self, repository):
        sms = FakeSmsClient(fail_for={PHONE_2})
        for gid, phone in (("g1", PHONE_1), ("g2", PHONE_2), ("g3", PHONE_3)):
            repository.add_guardian(WARD_ID, gid, phone=phone)
        dispatcher = _dispatcher(repository, sms)

        results = await dispatcher.send_alert_to_all_guardians(WARD_ID, AlertType.FALL_DETECTED)

        assert [r.guardian_id for r in results] == ["g1", "g2", "g3"]
        assert all(r.success for r in results)
        assert [r.channel for r in results] == [
            DeliveryChannel.SMS, DeliveryChannel.CONSOLE, DeliveryChannel.SMS,
        ]
        failed_over = results[1]
        assert [(a.channel, a.success) for a in failed_over.attempts] == [
            (DeliveryChannel.SMS, False), (DeliveryChannel.CONSOLE, True),
        ]
        assert "Provider rejected" in failed_over.attempts[0].error

    @pytest.mark.asyncio
    async def test_order_preserved_regardless_of_completion(self, repository):
        sms = FakeSmsClient(delays={PHONE_1: 0.06, PHONE_2: 0.0, PHONE_3: 0.03})
        for gid, phone in (("g1", PHONE_1), ("g2", PHONE_2), ("g3", PHONE_3)):
            repository.add_guardian(WARD_ID, gid, phone=phone)
        dispatcher = _dispatcher(repository, sms)

        results = await dispatcher.send_alert_to_all_guardians(WARD_ID, AlertType.SOS_TRIGGERED)

        assert [r.guardian_id for r in results] == ["g1", "g2", "g3"]
        assert [s["to"] for s in sms.sent] == [PHONE_2, PHONE_3, PHONE_1]

    @pytest.mark.asyncio
    async def test_ward_identity_read_once_per_fan_out(self, engine, repository):
        for gid in ("g1", "g2", "g3"):
            repository.add_guardian(WARD_ID, gid)
        await engine.dispatcher.send_alert_to_all_guardians(WARD_ID, AlertType.SYSTEM_ALERT)
        assert repository.identity_reads == 1

    @pytest.mark.asyncio
    async def test_batch_summary_logged(self, engine, repository, caplog):
        repository.add_guardian(WARD_ID, "g1")
        with caplog.at_level(logging.INFO, logger="guardpulse.app.alerts.dispatcher"):
            await engine.dispatcher.send_alert_to_all_guardians(WARD_ID, AlertType.SYSTEM_ALERT)
        assert any(
            "Alert batch sent: 1/1 successful deliveries" in r.getMessage() for r in caplog.records
        )


# ═══════════════════════════════════════════════════════════════════════════
# Incident alerts
# ═══════════════════════════════════════════════════════════════════════════

class TestIncidentAlert:
    @pytest.mark.asyncio
    async def test_sos_end_to_end(self, engine, repository, sms_client):
        repository.add_guardian(WARD_ID, "g1", phone=PHONE_1)
        repository.add_guardian(WARD_ID, "g2", phone=None)

        results = await engine.dispatcher.send_incident_alert(
            WARD_ID, "INC-1", AlertType.SOS_TRIGGERED,
        )

        assert [(r.guardian_id, r.channel) for r in results] == [
            ("g1", DeliveryChannel.SMS), ("g2", DeliveryChannel.CONSOLE),
        ]
        for r in results:
            assert r.success is True
            assert r.priority is AlertPriority.EMERGENCY
            assert r.requires_response is True
        assert "Alice Smith" in sms_client.sent[0]["body"]

        entries = engine.audit.for_incident("INC-1")
        assert {e.guardian_id for e in entries} == {"g1", "g2"}
        assert all(e.ward_id == WARD_ID for e in entries)

    @pytest.mark.asyncio
    async def test_caller_metadata_not_mutated(self, engine, repository):
        repository.add_guardian(WARD_ID, "g1")
        data = AlertData(metadata={"source": "test"})
        await engine.dispatcher.send_incident_alert(WARD_ID, "INC-2", AlertType.SOS_TRIGGERED, data)
        assert data.metadata == {"source": "test"}

    @pytest.mark.asyncio
    async def test_incident_email_sent_for_response_types(
        self, engine_with_email, repository, email_client,
    ):
        repository.add_guardian(WARD_ID, "g1", phone=PHONE_1)
        repository.add_guardian(WARD_ID, "g2")

        results = await engine_with_email.dispatcher.send_incident_alert(
            WARD_ID, "INC-3", AlertType.FALL_DETECTED,
        )
        await engine_with_email.task_runner.drain()

        assert len(results) == 2
        assert len(email_client.sent) == 1
        assert email_client.sent[0]["to"] == ["g1@example.com", "g2@example.com"]
        assert email_client.sent[0]["subject"] == "🚨 URGENT: FALL_DETECTED Alert - Alice Smith"
        [email_entry] = engine_with_email.audit.emails_for_incident("INC-3")
        assert email_entry.sent is True
        assert email_entry.recipients == 2

    @pytest.mark.asyncio
    async def test_no_email_for_informational_types(self, engine_with_email, repository, email_client):
        repository.add_guardian(WARD_ID, "g1")
        await engine_with_email.dispatcher.send_incident_alert(WARD_ID, "INC-4", AlertType.BATTERY_LOW)
        assert engine_with_email.task_runner.pending == 0
        assert email_client.sent == []

    @pytest.mark.asyncio
    async def test_email_failure_does_not_change_results(
        self, engine_with_email, repository, email_client,
    ):
        repository.add_guardian(WARD_ID, "g1")
        email_client.error = RuntimeError("mailgun down")
        results = await engine_with_email.dispatcher.send_incident_alert(
            WARD_ID, "INC-5", AlertType.SOS_TRIGGERED,
        )
        await engine_with_email.task_runner.drain()
        assert [r.success for r in results] == [True]
        assert engine_with_email.audit.emails_for_incident("INC-5")[0].sent is False

    @pytest.mark.asyncio
    async def test_slow_email_does_not_hold_results(
        self, engine_with_email, repository, email_client,
    ):
        repository.add_guardian(WARD_ID, "g1")
        email_client.delay = 5.0

        results = await asyncio.wait_for(
            engine_with_email.dispatcher.send_incident_alert(
                WARD_ID, "INC-8", AlertType.SOS_TRIGGERED,
            ),
            timeout=1.0,
        )

        assert [r.channel for r in results] == [DeliveryChannel.CONSOLE]
        assert email_client.sent == []
        assert engine_with_email.task_runner.pending == 1
        assert engine_with_email.audit.emails_for_incident("INC-8") == []

        await engine_with_email.task_runner.drain(timeout=0.01)
        assert engine_with_email.task_runner.pending == 0

    @pytest.mark.asyncio
    async def test_resolution_notice(self, engine_with_email, repository, email_client):
        repository.add_guardian(WARD_ID, "g1")
        sent = await engine_with_email.dispatcher.send_incident_resolution(
            WARD_ID, "INC-6", AlertType.SOS_TRIGGERED,
            datetime(2024, 5, 1, tzinfo=timezone.utc), "g1",
        )
        assert sent is True
        assert email_client.sent[0]["subject"] == "✅ RESOLVED: SOS_TRIGGERED - Alice Smith"

    @pytest.mark.asyncio
    async def test_resolution_without_email_client(self, engine):
        sent = await engine.dispatcher.send_incident_resolution(
            WARD_ID, "INC-7", AlertType.SOS_TRIGGERED, datetime.now(timezone.utc), "g1",
        )
        assert sent is False


# ═══════════════════════════════════════════════════════════════════════════
# Single guardian
# ═══════════════════════════════════════════════════════════════════════════

class TestSingleGuardian:
    @pytest.mark.asyncio
    async def test_unknown_guardian(self, engine):
        result = await engine.dispatcher.send_alert_to_guardian("nobody", AlertType.SOS_TRIGGERED)
        assert result.success is False
        assert "not found" in result.error
        assert engine.audit.for_guardian("nobody")[0].success is False

    @pytest.mark.asyncio
    async def test_known_guardian_sms(self, engine, repository):
        repository.add_guardian(WARD_ID, "g1", phone=PHONE_1)
        result = await engine.dispatcher.send_alert_to_guardian(
            "g1", AlertType.GEOFENCE_VIOLATION, AlertData(ward_id=WARD_ID),
        )
        assert result.success is True
        assert result.channel is DeliveryChannel.SMS
        assert result.priority is AlertPriority.HIGH
        assert result.requires_response is False


# ═══════════════════════════════════════════════════════════════════════════
# Channel selection
# ═══════════════════════════════════════════════════════════════════════════

class TestChannelSelection:
    @pytest.mark.asyncio
    async def test_sms_kill_switch(self, repository):
        sms = FakeSmsClient()
        repository.add_guardian(WARD_ID, "g1", phone=PHONE_1)
        dispatcher = _dispatcher(repository, sms, runtime_values={SMS_ENABLED_KEY: "false"})

        [result] = await dispatcher.send_alert_to_all_guardians(WARD_ID, AlertType.SOS_TRIGGERED)

        assert result.channel is DeliveryChannel.CONSOLE
        assert sms.sent == []

    @pytest.mark.asyncio
    async def test_no_sms_channel_uses_console(self, repository):
        repository.add_guardian(WARD_ID, "g1", phone=PHONE_1)
        [result] = await _dispatcher(repository).send_alert_to_all_guardians(
            WARD_ID, AlertType.SOS_TRIGGERED,
        )
        assert result.success is True
        assert result.channel is DeliveryChannel.CONSOLE

    @pytest.mark.asyncio
    async def test_console_failure_yields_failed_result(self, repository, caplog):
        repository.add_guardian(WARD_ID, "g1", phone=None)
        dispatcher = _dispatcher(repository, console=ExplodingConsole())

        with caplog.at_level(logging.WARNING):
            [result] = await dispatcher.send_alert_to_all_guardians(WARD_ID, AlertType.SOS_TRIGGERED)

        assert result.success is False
        assert "log sink unavailable" in result.error
        assert any(r.levelno == logging.CRITICAL for r in caplog.records)
        assert dispatcher.audit.summary()["failed"] == 1


# ═══════════════════════════════════════════════════════════════════════════
# Wiring
# ═══════════════════════════════════════════════════════════════════════════

class TestWiring:
    def test_fresh_audit_log_is_shared(self):
        engine = wire_engine(FakeRepository(), FakeRedis(), runtime_config=static_runtime_config())
        assert len(engine.audit) == 0
        assert engine.dispatcher.audit is engine.audit

    @pytest.mark.asyncio
    async def test_deliveries_land_in_engine_audit(self, repository, redis):
        repository.add_guardian(WARD_ID, "g1")
        engine = wire_engine(repository, redis, runtime_config=static_runtime_config())

        results = await engine.dispatcher.send_incident_alert(WARD_ID, "INC-9", AlertType.SOS_TRIGGERED)

        assert len(results) == 1
        assert [e.guardian_id for e in engine.audit.for_incident("INC-9")] == ["g1"]

    def test_empty_audit_log_passed_explicitly_is_kept(self, repository):
        audit = DeliveryAuditLog()
        resolver = GuardianResolver(repository)
        dispatcher = AlertDispatcher(resolver, AlertContextBuilder(resolver), audit=audit)
        assert dispatcher.audit is audit
