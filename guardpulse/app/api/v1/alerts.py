"""
FastAPI route: Guardian alert dispatch + delivery audit.

Provides endpoints to:
    POST /api/v1/alerts/guardians/{guardian_id}          — alert one guardian
    POST /api/v1/alerts/wards/{ward_id}                  — alert every guardian of a ward
    GET  /api/v1/alerts/incidents/{incident_id}/deliveries — per-guardian outcomes
    GET  /api/v1/alerts/summary                          — audit counters
    GET  /api/v1/alerts/jobs/{task_id}                   — detached dispatch status
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from guardpulse.app.alerts.dispatcher import AlertDispatcher
from guardpulse.app.alerts.models import AlertType
from guardpulse.app.api.deps import AlertEngine, get_dispatcher, get_engine
from guardpulse.app.api.schemas import AlertDataInput
from guardpulse.app.core.errors import NotFoundError

router = APIRouter(prefix="/api/v1/alerts", tags=["alerts"])


class SendAlertRequest(BaseModel):
    alert_type: AlertType = Field(..., examples=["SYSTEM_ALERT"])
    data: Optional[AlertDataInput] = None


# ---------------------------------------------------------------------------
# Dispatch
# ---------------------------------------------------------------------------

@router.post("/guardians/{guardian_id}", summary="Send an alert to one guardian")
async def send_to_guardian(
    guardian_id: str,
    request: SendAlertRequest,
    dispatcher: AlertDispatcher = Depends(get_dispatcher),
):
    data = request.data.to_alert_data() if request.data else None
    result = await dispatcher.send_alert_to_guardian(guardian_id, request.alert_type, data)
    return result.to_dict()


@router.post("/wards/{ward_id}", summary="Send an alert to every guardian of a ward")
async def send_to_ward(
    ward_id: str,
    request: SendAlertRequest,
    dispatcher: AlertDispatcher = Depends(get_dispatcher),
):
    data = request.data.to_alert_data(ward_id) if request.data else None
    results = await dispatcher.send_alert_to_all_guardians(ward_id, request.alert_type, data)
    return {
        "ward_id": ward_id,
        "total": len(results),
        "successful": sum(1 for r in results if r.success),
        "results": [r.to_dict() for r in results],
    }


# ---------------------------------------------------------------------------
# Audit
# ---------------------------------------------------------------------------

@router.get("/incidents/{incident_id}/deliveries", summary="Delivery outcomes for an incident")
async def incident_deliveries(incident_id: str, engine: AlertEngine = Depends(get_engine)):
    entries = engine.audit.for_incident(incident_id)
    emails = engine.audit.emails_for_incident(incident_id)
    if not entries and not emails:
        raise NotFoundError("Delivery record", incident_id=incident_id)
    return {
        "incident_id": incident_id,
        "deliveries": [e.to_dict() for e in entries],
        "emails": [e.to_dict() for e in emails],
    }


@router.get("/summary", summary="Aggregate delivery counters")
async def summary(engine: AlertEngine = Depends(get_engine)):
    return engine.audit.summary()


@router.get("/jobs/{task_id}", summary="Status of a detached alert dispatch")
async def job_status(task_id: str, engine: AlertEngine = Depends(get_engine)):
    job = engine.task_runner.get_job(task_id)
    if job is None:
        raise NotFoundError("Background job", task_id=task_id)
    return job.to_dict()
