"""
FastAPI route: Incident reporting endpoints.

Provides endpoints to:
    POST /api/v1/incidents                 — create an incident of any type, alert inline
    POST /api/v1/incidents/manual-sos      — ward pressed SOS
    POST /api/v1/incidents/thrown-away     — device thrown; ack first, alert detached
    POST /api/v1/incidents/fake-shutdown   — duress power-off; ack first, alert detached
    POST /api/v1/incidents/sensor-data     — buffer sample + fall check

Authentication is handled upstream; the ward id arrives in the body.
"""

from __future__ import annotations

import time
from datetime import datetime, timezone
from typing import Any, Dict, Literal, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from guardpulse.app.alerts.models import AlertPriority, AlertType
from guardpulse.app.api.deps import get_incident_service
from guardpulse.app.api.schemas import LocationInput, Vector3
from guardpulse.app.core.errors import ValidationError
from guardpulse.app.incidents.service import (
    IncidentService,
    SensorReading,
    ThrownAwayReport,
)

router = APIRouter(prefix="/api/v1/incidents", tags=["incidents"])


# ---------------------------------------------------------------------------
# Request Schemas
# ---------------------------------------------------------------------------

class CreateIncidentRequest(BaseModel):
    ward_id: str = Field(..., min_length=1, examples=["ward-123"])
    type: AlertType = Field(..., examples=["FALL_DETECTED"])
    location: Optional[LocationInput] = None
    description: Optional[str] = Field(None, max_length=1000)
    message: Optional[str] = Field(None, max_length=1000)
    priority: Optional[str] = Field(
        None, examples=["CRITICAL"],
        description="Override the type's default priority",
    )


class ManualSosRequest(BaseModel):
    ward_id: str = Field(..., min_length=1)
    location: Optional[LocationInput] = None
    message: Optional[str] = Field(None, max_length=500)


class ThrowPattern(BaseModel):
    throw_phase: bool = False
    tumble_phase: bool = False
    impact_phase: bool = False
    confidence: float = Field(..., ge=0.0, le=1.0)


class ThrownAwayRequest(BaseModel):
    ward_id: str = Field(..., min_length=1)
    timestamp: datetime
    pattern: ThrowPattern
    severity: Literal["LOW", "MEDIUM", "HIGH", "CRITICAL"]
    location: Optional[LocationInput] = None
    device_info: Optional[Dict[str, Any]] = None


class FakeShutdownRequest(BaseModel):
    ward_id: str = Field(..., min_length=1)
    location: Optional[LocationInput] = None
    device_info: Optional[Dict[str, Any]] = None


class SensorDataRequest(BaseModel):
    ward_id: str = Field(..., min_length=1)
    timestamp: datetime
    accelerometer: Optional[Vector3] = None
    gyroscope: Optional[Vector3] = None
    location: Optional[LocationInput] = None
    device_info: Optional[Dict[str, Any]] = None


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@router.post("", status_code=201, summary="Create an incident and alert guardians")
async def create_incident(
    request: CreateIncidentRequest,
    service: IncidentService = Depends(get_incident_service),
):
    try:
        priority = AlertPriority.parse(request.priority) if request.priority else None
    except ValueError as e:
        raise ValidationError(str(e), field="priority")

    report = await service.create_incident(
        request.ward_id,
        request.type,
        location=request.location.to_location() if request.location else None,
        description=request.description,
        priority=priority,
        message=request.message,
    )
    return {"success": True, "data": report.to_dict()}


@router.post("/manual-sos", status_code=201, summary="Trigger a manual SOS")
async def manual_sos(
    request: ManualSosRequest,
    service: IncidentService = Depends(get_incident_service),
):
    report = await service.create_manual_sos(
        request.ward_id,
        location=request.location.to_location() if request.location else None,
        message=request.message,
    )
    return {
        "success": True,
        "data": {
            "incident_id": report.incident.id,
            "message": "SOS alert triggered successfully",
            "timestamp": report.incident.created_at.isoformat(),
            "guardians_notified": report.guardians_notified,
        },
    }


@router.post("/thrown-away", summary="Report a thrown-away device")
async def thrown_away(
    request: ThrownAwayRequest,
    service: IncidentService = Depends(get_incident_service),
):
    """Acknowledges as soon as the incident is stored; guardians are alerted afterwards."""
    start = time.perf_counter()
    report = await service.report_thrown_away(
        request.ward_id,
        ThrownAwayReport(
            timestamp=request.timestamp,
            confidence=request.pattern.confidence,
            severity=request.severity,
            location=request.location.to_location() if request.location else None,
            device_info=request.device_info,
        ),
    )
    return {
        "success": True,
        "incident_id": report.incident.id,
        "alerts_initiated": True,
        "task_id": report.task_id,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "processing_time_ms": round((time.perf_counter() - start) * 1000, 2),
    }


@router.post("/fake-shutdown", status_code=201, summary="Report a fake shutdown (duress)")
async def fake_shutdown(
    request: FakeShutdownRequest,
    service: IncidentService = Depends(get_incident_service),
):
    report = await service.report_fake_shutdown(
        request.ward_id,
        location=request.location.to_location() if request.location else None,
        device_info=request.device_info,
    )
    return {
        "success": True,
        "data": {
            "incident_id": report.incident.id,
            "message": "Emergency alert initiated",
            "task_id": report.task_id,
        },
    }


@router.post("/sensor-data", summary="Buffer a sensor sample and check for falls")
async def sensor_data(
    request: SensorDataRequest,
    service: IncidentService = Depends(get_incident_service),
):
    incident_created = await service.process_sensor_data(SensorReading(
        ward_id=request.ward_id,
        timestamp=request.timestamp,
        accelerometer=request.accelerometer.model_dump() if request.accelerometer else None,
        gyroscope=request.gyroscope.model_dump() if request.gyroscope else None,
        location=request.location.to_location() if request.location else None,
        device_info=request.device_info,
    ))
    return {"success": True, "incident_created": incident_created}
