"""
FastAPI route: Pre-incident buffer.

Provides endpoints to:
    POST   /api/v1/buffer/{ward_id}/location   — append a location sample
    POST   /api/v1/buffer/{ward_id}/sensor     — append a raw sensor sample
    GET    /api/v1/buffer/{ward_id}            — snapshot, oldest first
    DELETE /api/v1/buffer/{ward_id}            — end of live session

Writes never fail the caller: a Redis outage is logged and the sample dropped.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Response
from pydantic import BaseModel, Field

from guardpulse.app.api.deps import get_buffer
from guardpulse.app.api.schemas import Vector3
from guardpulse.app.buffer.pre_incident import PreIncidentBuffer

router = APIRouter(prefix="/api/v1/buffer", tags=["pre-incident-buffer"])


class LocationSample(BaseModel):
    latitude: float = Field(..., ge=-90.0, le=90.0)
    longitude: float = Field(..., ge=-180.0, le=180.0)
    accuracy: Optional[float] = Field(None, ge=0)
    speed: Optional[float] = None
    heading: Optional[float] = None


class SensorSample(BaseModel):
    accelerometer: Optional[Vector3] = None
    gyroscope: Optional[Vector3] = None
    extra: Dict[str, Any] = Field(default_factory=dict)


@router.post("/{ward_id}/location", status_code=202)
async def buffer_location(
    ward_id: str,
    sample: LocationSample,
    buffer: PreIncidentBuffer = Depends(get_buffer),
):
    await buffer.buffer_location(ward_id, sample.model_dump(exclude_none=True))
    return {"buffered": True}


@router.post("/{ward_id}/sensor", status_code=202)
async def buffer_sensor(
    ward_id: str,
    sample: SensorSample,
    buffer: PreIncidentBuffer = Depends(get_buffer),
):
    await buffer.buffer_sensor(ward_id, sample.model_dump(exclude_none=True))
    return {"buffered": True}


@router.get("/{ward_id}")
async def get_snapshot(ward_id: str, buffer: PreIncidentBuffer = Depends(get_buffer)):
    snapshot = await buffer.snapshot_pre_incident_data(ward_id)
    return snapshot.to_dict()


@router.delete("/{ward_id}", status_code=204)
async def clear_buffer(ward_id: str, buffer: PreIncidentBuffer = Depends(get_buffer)):
    await buffer.clear_buffer(ward_id)
    return Response(status_code=204)
