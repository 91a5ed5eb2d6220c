"""Transaction boundary shared by the reconciliation service operations."""

import logging
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .repository import (
    AliasRepository,
    MutationRepository,
    ResidentDirectoryRepository,
    VerificationRepository,
)

logger = logging.getLogger(__name__)


class UnitOfWork:
    """
    One database transaction with the repositories bound to it.

    Commits when the block exits normally and rolls back when it raises.

    Example:
        async with UnitOfWork(session_factory) as uow:
            mutation = await uow.mutations.get_for_update(mutation_id)
            ...
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory
        self.session: Optional[AsyncSession] = None

    async def __aenter__(self) -> "UnitOfWork":
        self.session = self._session_factory()
        self.mutations = MutationRepository(self.session)
        self.verifications = VerificationRepository(self.session)
        self.aliases = AliasRepository(self.session)
        self.directory = ResidentDirectoryRepository(self.session)
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        try:
            if exc_type is None:
                await self.session.commit()
            else:
                logger.debug(f"Rolling back unit of work: {exc_type.__name__}")
                await self.session.rollback()
        finally:
            await self.session.close()
            self.session = None
