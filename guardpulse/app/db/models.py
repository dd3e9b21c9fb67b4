"""
ORM tables read and written by the alert engine.

    users                    — wards and guardians share one table
    guardian_relationships   — ward → guardian links (row id = creation order)
    incidents                — detected safety events
    app_config               — runtime-tunable key/value settings

User management, billing and evidence storage own further tables that the
alert engine never touches.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)

from guardpulse.app.db.session import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UserRow(Base):
    __tablename__ = "users"

    id = Column(String(64), primary_key=True)
    email = Column(String(255), nullable=False, unique=True)
    first_name = Column(String(100))
    last_name = Column(String(100))
    phone_number = Column(String(32))
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)


class GuardianRelationshipRow(Base):
    __tablename__ = "guardian_relationships"
    __table_args__ = (UniqueConstraint("ward_id", "guardian_id", name="uq_ward_guardian"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    ward_id = Column(String(64), ForeignKey("users.id"), nullable=False, index=True)
    guardian_id = Column(String(64), ForeignKey("users.id"), nullable=False, index=True)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)


class IncidentRow(Base):
    __tablename__ = "incidents"

    id = Column(String(64), primary_key=True)
    ward_id = Column(String(64), ForeignKey("users.id"), nullable=False, index=True)
    type = Column(String(32), nullable=False)
    severity = Column(String(16), nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    latitude = Column(Float)
    longitude = Column(Float)
    accuracy = Column(Float)
    description = Column(Text)
    extra_data = Column("metadata", JSON, default=dict)
    pre_incident = Column(JSON)
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)


class AppConfigRow(Base):
    __tablename__ = "app_config"

    key = Column(String(128), primary_key=True)
    value = Column(Text, nullable=False)
    description = Column(Text)
    is_active = Column(Boolean, default=True, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)
