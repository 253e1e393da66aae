"""
Trip-history collaborator.

Receives the snapshot of a ride once it is terminal.  The default adapter
stores it in ``ride_archive``; archiving the same ride twice is a no-op so
redelivered events are harmless.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ride_lifecycle.infrastructure.repositories import RideArchiveRepository

logger = logging.getLogger(__name__)


class TripHistoryCollaborator(ABC):
    @abstractmethod
    async def archive(self, snapshot: dict[str, Any], event_id: str) -> None: ...


class ArchiveTripHistory(TripHistoryCollaborator):
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def archive(self, snapshot: dict[str, Any], event_id: str) -> None:
        async with self.session_factory() as session:
            repo = RideArchiveRepository(session)
            if await repo.get(snapshot["id"]) is not None:
                return
            await repo.add(
                ride_id=snapshot["id"],
                status=snapshot["status"],
                snapshot=snapshot,
                event_id=event_id,
            )
            await session.commit()
        logger.info("Archived ride %s (%s)", snapshot["id"], snapshot["status"])
