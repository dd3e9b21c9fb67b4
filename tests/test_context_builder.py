"""
test_context_builder.py — Guardian resolution and per-guardian alert context.

Covers:
    • Priority / requires-response defaults for every alert type
    • Default messages with and without a ward name
    • Explicit caller fields winning over defaults
    • Dashboard deep links
    • Enrichment: single identity read, no input mutation, failure tolerance
    • GuardianResolver log levels for "none" vs "lookup failed"

Run with:
    pytest tests/test_context_builder.py -v
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

import pytest

from guardpulse.app.alerts.context_builder import (
    DEFAULT_MESSAGES,
    AlertContextBuilder,
    dashboard_link_for,
    default_message,
)
from guardpulse.app.alerts.models import (
    PRIORITY_BY_TYPE,
    AlertData,
    AlertPriority,
    AlertType,
    GuardianInfo,
    Location,
    requires_response,
)
from guardpulse.app.alerts.resolver import GuardianResolver
from tests.fakes import WARD_ID

BASE_URL = "https://app.guardpulse.test"


def _guardian(**kw) -> GuardianInfo:
    defaults = dict(id="g1", email="g1@example.com", first_name="Bob", phone_number="+15551230001")
    defaults.update(kw)
    return GuardianInfo(**defaults)


@pytest.fixture
def builder(repository) -> AlertContextBuilder:
    return AlertContextBuilder(GuardianResolver(repository), web_app_url=BASE_URL)


# ═══════════════════════════════════════════════════════════════════════════
# build_context
# ═══════════════════════════════════════════════════════════════════════════

class TestBuildContext:
    @pytest.mark.parametrize("alert_type", list(AlertType))
    def test_defaults_follow_type_table(self, builder, alert_type):
        ctx = builder.build_context(_guardian(), WARD_ID, alert_type, AlertData(ward_name="Alice"))
        assert ctx.priority is PRIORITY_BY_TYPE[alert_type]
        assert ctx.requires_response is requires_response(alert_type)
        assert ctx.message == DEFAULT_MESSAGES[alert_type].format(ward="Alice")

    def test_guardian_fields_copied(self, builder):
        ctx = builder.build_context(_guardian(last_name="Jones"), WARD_ID, AlertType.SOS_TRIGGERED)
        assert ctx.guardian_id == "g1"
        assert ctx.guardian_name == "Bob Jones"
        assert ctx.guardian_email == "g1@example.com"
        assert ctx.guardian_phone == "+15551230001"

    def test_explicit_priority_and_message_win(self, builder):
        data = AlertData(priority=AlertPriority.LOW, message="custom text")
        ctx = builder.build_context(_guardian(), WARD_ID, AlertType.SOS_TRIGGERED, data)
        assert ctx.priority is AlertPriority.LOW
        assert ctx.message == "custom text"

    def test_explicit_requires_response_false_wins(self, builder):
        data = AlertData(requires_response=False)
        ctx = builder.build_context(_guardian(), WARD_ID, AlertType.FALL_DETECTED, data)
        assert ctx.requires_response is False

    def test_dashboard_link_defaults_to_ward(self, builder):
        ctx = builder.build_context(_guardian(), WARD_ID, AlertType.BATTERY_LOW)
        assert ctx.dashboard_link == f"{BASE_URL}/dashboard/ward/{WARD_ID}"

    def test_data_ward_id_preferred(self, builder):
        ctx = builder.build_context(
            _guardian(), "other", AlertType.BATTERY_LOW, AlertData(ward_id=WARD_ID),
        )
        assert ctx.ward_id == WARD_ID

    def test_metadata_and_location_carried(self, builder):
        data = AlertData(location=Location(1.0, 2.0), metadata={"incidentId": "INC-9"})
        ctx = builder.build_context(_guardian(), WARD_ID, AlertType.THROWN_AWAY, data)
        assert ctx.location == Location(1.0, 2.0)
        assert ctx.incident_id == "INC-9"
        ctx.metadata["x"] = 1
        assert "x" not in data.metadata

    def test_timestamp_defaults_to_now(self, builder):
        before = datetime.now(timezone.utc)
        ctx = builder.build_context(_guardian(), WARD_ID, AlertType.SYSTEM_ALERT)
        assert ctx.timestamp >= before


class TestDefaultMessages:
    def test_every_type_has_a_message(self):
        assert set(DEFAULT_MESSAGES) == set(AlertType)

    def test_unknown_ward_name(self):
        assert default_message(AlertType.SOS_TRIGGERED, None) == (
            "your ward has triggered an SOS alert. Immediate attention required."
        )

    def test_fake_shutdown_wording(self):
        msg = default_message(AlertType.FAKE_SHUTDOWN, "Alice")
        assert msg.startswith("EMERGENCY: Alice may be in danger.")

    def test_dashboard_link_strips_trailing_slash(self):
        assert dashboard_link_for("w1", "https://x.test/") == "https://x.test/dashboard/ward/w1"


# ═══════════════════════════════════════════════════════════════════════════
# enrich_alert_data
# ═══════════════════════════════════════════════════════════════════════════

class TestEnrichAlertData:
    @pytest.mark.asyncio
    async def test_fills_ward_identity(self, builder):
        enriched = await builder.enrich_alert_data(WARD_ID, None)
        assert enriched.ward_id == WARD_ID
        assert enriched.ward_name == "Alice Smith"
        assert enriched.dashboard_link == f"{BASE_URL}/dashboard/ward/{WARD_ID}"
        assert enriched.timestamp is not None

    @pytest.mark.asyncio
    async def test_skips_lookup_when_identity_known(self, builder, repository):
        data = AlertData(ward_id=WARD_ID, ward_name="Ally")
        enriched = await builder.enrich_alert_data(WARD_ID, data)
        assert repository.identity_reads == 0
        assert enriched.ward_name == "Ally"

    @pytest.mark.asyncio
    async def test_does_not_mutate_input(self, builder):
        data = AlertData(metadata={"k": "v"})
        enriched = await builder.enrich_alert_data(WARD_ID, data)
        assert data.ward_name is None
        assert data.dashboard_link is None
        enriched.metadata["k2"] = "v2"
        assert data.metadata == {"k": "v"}

    @pytest.mark.asyncio
    async def test_unknown_ward_leaves_name_empty(self, builder):
        enriched = await builder.enrich_alert_data("ghost", None)
        assert enriched.ward_name is None
        assert enriched.dashboard_link.endswith("/dashboard/ward/ghost")

    @pytest.mark.asyncio
    async def test_lookup_failure_still_enriches(self, builder, repository):
        repository.fail_reads = True
        enriched = await builder.enrich_alert_data(WARD_ID, None)
        assert enriched.ward_name is None
        assert enriched.dashboard_link is not None
        assert enriched.timestamp is not None


# ═══════════════════════════════════════════════════════════════════════════
# GuardianResolver
# ═══════════════════════════════════════════════════════════════════════════

class TestGuardianResolver:
    @pytest.mark.asyncio
    async def test_active_guardians_in_order(self, repository):
        repository.add_guardian(WARD_ID, "g1")
        repository.add_guardian(WARD_ID, "g2", is_active=False)
        repository.add_guardian(WARD_ID, "g3")
        guardians = await GuardianResolver(repository).resolve_guardians(WARD_ID)
        assert [g.id for g in guardians] == ["g1", "g3"]

    @pytest.mark.asyncio
    async def test_no_guardians_warns(self, repository, caplog):
        with caplog.at_level(logging.WARNING):
            assert await GuardianResolver(repository).resolve_guardians(WARD_ID) == []
        assert any(
            r.levelno == logging.WARNING and "No active guardians" in r.getMessage()
            for r in caplog.records
        )

    @pytest.mark.asyncio
    async def test_lookup_failure_logs_error(self, repository, caplog):
        repository.fail_reads = True
        with caplog.at_level(logging.WARNING):
            assert await GuardianResolver(repository).resolve_guardians(WARD_ID) == []
        assert any(
            r.levelno == logging.ERROR and "Guardian lookup failed" in r.getMessage()
            for r in caplog.records
        )

    @pytest.mark.asyncio
    async def test_get_guardian_absorbs_errors(self, repository):
        repository.fail_reads = True
        assert await GuardianResolver(repository).get_guardian("g1") is None
