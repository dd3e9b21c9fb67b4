"""
Composition root + FastAPI dependencies.

``wire_engine`` assembles every alert-engine collaborator from explicit
handles (repository, Redis client, provider clients). The application
lifespan calls it once with real infrastructure; tests call it with
in-memory fakes. Route handlers reach the result through
``request.app.state.engine`` via the ``Depends`` getters below.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

from fastapi import Request

from guardpulse.app.alerts.audit import DeliveryAuditLog
from guardpulse.app.alerts.channels.console_log import ConsoleLogChannel
from guardpulse.app.alerts.channels.email_alert import EmailAlertChannel
from guardpulse.app.alerts.channels.sms_gateway import SmsChannel
from guardpulse.app.alerts.context_builder import AlertContextBuilder
from guardpulse.app.alerts.dispatcher import AlertDispatcher
from guardpulse.app.alerts.resolver import GuardianResolver
from guardpulse.app.buffer.pre_incident import PreIncidentBuffer
from guardpulse.app.core.runtime_config import RuntimeConfig
from guardpulse.app.incidents.background import AlertTaskRunner
from guardpulse.app.incidents.service import IncidentService


@dataclass
class AlertEngine:
    """Every long-lived collaborator, owned by the application lifespan."""
    repository: Any
    redis: Any
    runtime_config: RuntimeConfig
    buffer: PreIncidentBuffer
    dispatcher: AlertDispatcher
    incidents: IncidentService
    task_runner: AlertTaskRunner
    audit: DeliveryAuditLog
    sms_configured: bool = False
    email_configured: bool = False
    db_engine: Optional[Any] = None


def wire_engine(
    repository: Any,
    redis: Any,
    *,
    sms_client: Optional[Any] = None,
    sms_from_number: Optional[str] = None,
    email_client: Optional[Any] = None,
    runtime_config: Optional[RuntimeConfig] = None,
    db_engine: Optional[Any] = None,
) -> AlertEngine:
    runtime_config = runtime_config or RuntimeConfig(repository.load_app_config)
    resolver = GuardianResolver(repository)
    audit = DeliveryAuditLog()
    sms = SmsChannel(sms_client, from_number=sms_from_number) if sms_client is not None else None
    email = EmailAlertChannel(email_client)
    task_runner = AlertTaskRunner()

    dispatcher = AlertDispatcher(
        resolver,
        AlertContextBuilder(resolver),
        sms=sms,
        console=ConsoleLogChannel(),
        email=email,
        audit=audit,
        runtime_config=runtime_config,
        task_runner=task_runner,
    )
    buffer = PreIncidentBuffer(redis)
    incidents = IncidentService(
        repository, dispatcher, buffer, task_runner, runtime_config=runtime_config,
    )
    return AlertEngine(
        repository=repository,
        redis=redis,
        runtime_config=runtime_config,
        buffer=buffer,
        dispatcher=dispatcher,
        incidents=incidents,
        task_runner=task_runner,
        audit=audit,
        sms_configured=sms is not None and sms.configured,
        email_configured=email.configured,
        db_engine=db_engine,
    )


# ── Dependencies ──

def get_engine(request: Request) -> AlertEngine:
    return request.app.state.engine


def get_incident_service(request: Request) -> IncidentService:
    return get_engine(request).incidents


def get_buffer(request: Request) -> PreIncidentBuffer:
    return get_engine(request).buffer


def get_dispatcher(request: Request) -> AlertDispatcher:
    return get_engine(request).dispatcher
