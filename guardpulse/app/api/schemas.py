"""
Pydantic schemas shared by the incident, buffer and alert routes.

Separated from the route handlers so they are reusable across
the codebase (route modules, background workers, tests).
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from pydantic import BaseModel, Field, field_validator

from guardpulse.app.alerts.models import AlertData, AlertPriority, Location


# ---------------------------------------------------------------------------
# Request schemas
# ---------------------------------------------------------------------------

class LocationInput(BaseModel):
    """A GPS fix from the ward's device."""
    latitude: float = Field(
        ..., ge=-90.0, le=90.0,
        description="Latitude in decimal degrees",
        examples=[51.5074],
    )
    longitude: float = Field(
        ..., ge=-180.0, le=180.0,
        description="Longitude in decimal degrees",
        examples=[-0.1278],
    )
    accuracy: Optional[float] = Field(None, ge=0, description="Horizontal accuracy in metres")
    address: Optional[str] = Field(None, max_length=500)

    def to_location(self) -> Location:
        return Location(
            latitude=self.latitude,
            longitude=self.longitude,
            accuracy=self.accuracy,
            address=self.address,
        )


class Vector3(BaseModel):
    """Three-axis sensor reading."""
    x: float
    y: float
    z: float


class AlertDataInput(BaseModel):
    """Optional alert fields; anything omitted is filled with defaults."""
    ward_name: Optional[str] = None
    message: Optional[str] = Field(None, max_length=1000)
    location: Optional[LocationInput] = None
    dashboard_link: Optional[str] = None
    priority: Optional[str] = Field(None, examples=["EMERGENCY"])
    requires_response: Optional[bool] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("priority")
    @classmethod
    def validate_priority(cls, v: Optional[str]) -> Optional[str]:
        if v is not None:
            AlertPriority.parse(v)
        return v

    def to_alert_data(self, ward_id: Optional[str] = None) -> AlertData:
        return AlertData(
            ward_id=ward_id,
            ward_name=self.ward_name,
            message=self.message,
            location=self.location.to_location() if self.location else None,
            dashboard_link=self.dashboard_link,
            priority=AlertPriority.parse(self.priority) if self.priority else None,
            requires_response=self.requires_response,
            metadata=dict(self.metadata),
        )
