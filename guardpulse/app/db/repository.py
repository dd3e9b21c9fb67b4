"""
SQLAlchemy implementation of the persistence collaborator.

The alert engine only ever sees domain objects (GuardianInfo, WardIdentity,
Incident); ORM rows stay inside this module. Driver errors are re-raised
as PersistenceError so callers can absorb them uniformly.
"""

from __future__ import annotations

import logging
from typing import Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from guardpulse.app.alerts.models import (
    GuardianInfo,
    GuardianRelationship,
    Incident,
    WardIdentity,
)
from guardpulse.app.core.errors import PersistenceError
from guardpulse.app.db.models import (
    AppConfigRow,
    GuardianRelationshipRow,
    IncidentRow,
    UserRow,
)

logger = logging.getLogger(__name__)


def _guardian_from_row(row: UserRow) -> GuardianInfo:
    return GuardianInfo(
        id=row.id,
        email=row.email,
        first_name=row.first_name,
        last_name=row.last_name,
        phone_number=row.phone_number,
    )


class SqlAlchemyRepository:
    """Reads guardians / wards / config and writes incidents."""

    def __init__(self, session_factory: async_sessionmaker):
        self._sessions = session_factory

    # ── Reads ──

    async def find_active_guardian_relationships(self, ward_id: str) -> List[GuardianRelationship]:
        stmt = (
            select(GuardianRelationshipRow, UserRow)
            .join(UserRow, UserRow.id == GuardianRelationshipRow.guardian_id)
            .where(
                GuardianRelationshipRow.ward_id == ward_id,
                GuardianRelationshipRow.is_active.is_(True),
            )
            .order_by(GuardianRelationshipRow.id)
        )
        try:
            async with self._sessions() as session:
                rows = (await session.execute(stmt)).all()
        except SQLAlchemyError as e:
            raise PersistenceError("find_active_guardian_relationships", str(e), ward_id=ward_id) from e

        return [
            GuardianRelationship(
                ward_id=rel.ward_id,
                guardian_id=rel.guardian_id,
                guardian=_guardian_from_row(user),
                is_active=rel.is_active,
            )
            for rel, user in rows
        ]

    async def find_user_identity(self, user_id: str) -> Optional[WardIdentity]:
        try:
            async with self._sessions() as session:
                row = await session.get(UserRow, user_id)
        except SQLAlchemyError as e:
            raise PersistenceError("find_user_identity", str(e), user_id=user_id) from e
        if row is None:
            return None
        return WardIdentity(
            id=row.id,
            first_name=row.first_name,
            last_name=row.last_name,
            email=row.email,
        )

    async def find_guardian(self, guardian_id: str) -> Optional[GuardianInfo]:
        try:
            async with self._sessions() as session:
                row = await session.get(UserRow, guardian_id)
        except SQLAlchemyError as e:
            raise PersistenceError("find_guardian", str(e), guardian_id=guardian_id) from e
        return _guardian_from_row(row) if row is not None else None

    async def load_app_config(self) -> Dict[str, str]:
        stmt = select(AppConfigRow.key, AppConfigRow.value).where(AppConfigRow.is_active.is_(True))
        try:
            async with self._sessions() as session:
                rows = (await session.execute(stmt)).all()
        except SQLAlchemyError as e:
            raise PersistenceError("load_app_config", str(e)) from e
        return {key: value for key, value in rows}

    # ── Writes ──

    async def create_incident(self, incident: Incident) -> Incident:
        row = IncidentRow(
            id=incident.id,
            ward_id=incident.ward_id,
            type=incident.type.value,
            severity=incident.severity.name,
            is_active=incident.is_active,
            latitude=incident.location.latitude if incident.location else None,
            longitude=incident.location.longitude if incident.location else None,
            accuracy=incident.location.accuracy if incident.location else None,
            description=incident.description,
            extra_data=incident.metadata,
            pre_incident=incident.pre_incident.to_dict() if incident.pre_incident else None,
            created_at=incident.created_at,
        )
        try:
            async with self._sessions() as session:
                async with session.begin():
                    session.add(row)
        except SQLAlchemyError as e:
            raise PersistenceError("create_incident", str(e), ward_id=incident.ward_id) from e
        return incident
