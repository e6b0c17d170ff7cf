from sqlalchemy.ext.asyncio import AsyncSession
from typing import AsyncGenerator
from fastapi import Request
from contextlib import asynccontextmanager
import logging

logger = logging.getLogger(__name__)


# Session dependency for FastAPI routes
async def get_db_session(request: Request) -> AsyncGenerator[AsyncSession, None]:
    """
    Create and yield a database session using the shared engine
    This will be used as a FastAPI dependency
    """
    async_session = request.app.state.session_factory

    async with async_session() as session:
        try:
            yield session
        finally:
            await session.close()


# Context manager for sweeps / event consumers that run outside a request
@asynccontextmanager
async def session_scope(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """
    Provides a DB session for background work using an explicitly passed factory.
    """
    async with session_factory() as session:
        try:
            yield session
        except Exception:
            logger.exception("Error occurred within session_scope context")
            raise


@asynccontextmanager
async def transaction(session: AsyncSession) -> AsyncGenerator[AsyncSession, None]:
    """
    Run the enclosed block atomically.

    Opens a transaction when none is active, otherwise a SAVEPOINT, so engine
    operations compose: a nested failure only rolls back its own writes.
    """
    if session.in_transaction():
        async with session.begin_nested():
            yield session
    else:
        async with session.begin():
            yield session
