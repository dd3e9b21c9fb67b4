"""Shared fixtures: in-memory collaborators wired the way the app wires them."""

from __future__ import annotations

import pytest

from guardpulse.app.api.deps import AlertEngine, wire_engine
from guardpulse.app.core.runtime_config import static_runtime_config
from tests.fakes import (
    SMS_FROM,
    WARD_ID,
    FakeEmailClient,
    FakeRedis,
    FakeRepository,
    FakeSmsClient,
)


@pytest.fixture
def repository() -> FakeRepository:
    repo = FakeRepository()
    repo.add_ward(WARD_ID, "Alice", "Smith")
    return repo


@pytest.fixture
def redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def sms_client() -> FakeSmsClient:
    return FakeSmsClient()


@pytest.fixture
def email_client() -> FakeEmailClient:
    return FakeEmailClient()


@pytest.fixture
def engine(repository, redis, sms_client) -> AlertEngine:
    """SMS configured, email not; runtime config empty."""
    return wire_engine(
        repository,
        redis,
        sms_client=sms_client,
        sms_from_number=SMS_FROM,
        runtime_config=static_runtime_config(),
    )


@pytest.fixture
def engine_with_email(repository, redis, sms_client, email_client) -> AlertEngine:
    return wire_engine(
        repository,
        redis,
        sms_client=sms_client,
        sms_from_number=SMS_FROM,
        email_client=email_client,
        runtime_config=static_runtime_config(),
    )
