"""
resolver.py — Ward → guardian set lookup.

Thin, failure-absorbing layer over the persistence collaborator. Callers
treat "no guardians" and "lookup failed" the same way (nothing to send),
but the two cases log differently so operators can tell them apart:

    persistence raised    →  ERROR    "Guardian lookup failed for ward ..."
    zero active rows      →  WARNING  "No active guardians for ward ..."
"""

from __future__ import annotations

import logging
from typing import Any, List, Optional

from guardpulse.app.alerts.models import GuardianInfo, WardIdentity

logger = logging.getLogger(__name__)


class GuardianResolver:
    """
    Parameters
    ----------
    repository
        Object exposing ``find_active_guardian_relationships``,
        ``find_guardian`` and ``find_user_identity`` coroutines.
    """

    def __init__(self, repository: Any):
        self._repository = repository

    async def resolve_guardians(self, ward_id: str) -> List[GuardianInfo]:
        """Active guardians of ``ward_id`` in persistence order."""
        try:
            relationships = await self._repository.find_active_guardian_relationships(ward_id)
        except Exception as e:
            logger.error(
                "Guardian lookup failed for ward %s: %s", ward_id, e,
                extra={"ward_id": ward_id, "error": str(e)},
            )
            return []

        guardians = [rel.guardian for rel in relationships if rel.is_active]
        if not guardians:
            logger.warning("No active guardians for ward %s", ward_id, extra={"ward_id": ward_id})
        return guardians

    async def get_guardian(self, guardian_id: str) -> Optional[GuardianInfo]:
        try:
            return await self._repository.find_guardian(guardian_id)
        except Exception as e:
            logger.error(
                "Guardian lookup failed for guardian %s: %s", guardian_id, e,
                extra={"guardian_id": guardian_id, "error": str(e)},
            )
            return None

    async def get_ward_identity(self, ward_id: str) -> Optional[WardIdentity]:
        try:
            return await self._repository.find_user_identity(ward_id)
        except Exception as e:
            logger.error(
                "Ward identity lookup failed for ward %s: %s", ward_id, e,
                extra={"ward_id": ward_id, "error": str(e)},
            )
            return None
