# app/db.py
import logging
import os
from typing import AsyncIterator, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from .errors import InternalError

logger = logging.getLogger(__name__)

DATABASE_URL = os.getenv("DATABASE_URL")
DB_CREATE_ALL = os.getenv("DB_CREATE_ALL", "0") == "1"

engine = None
AsyncSessionLocal = None


async def init_db(url: Optional[str] = None, create_all: bool = DB_CREATE_ALL):
    global engine, AsyncSessionLocal
    url = url or DATABASE_URL
    if not url:
        logger.warning("DATABASE_URL not set; skipping database init")
        return
    engine = create_async_engine(url, future=True, echo=False, pool_pre_ping=True)
    AsyncSessionLocal = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    if create_all:
        from .models import Base

        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
    logger.info("Database ready")


async def close_db():
    global engine, AsyncSessionLocal
    if engine:
        await engine.dispose()
    engine = None
    AsyncSessionLocal = None


async def get_session() -> AsyncIterator[AsyncSession]:
    """Request-scoped session: commit on success, roll back on any failure.

    Storage errors are logged with detail here and re-raised as the generic
    ``InternalError`` so nothing about the backend leaks to the caller.
    """
    if AsyncSessionLocal is None:
        raise InternalError("database is not initialised")
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except SQLAlchemyError as exc:
            await session.rollback()
            logger.exception("Storage failure: %s", exc)
            raise InternalError(str(exc)) from exc
        except Exception:
            await session.rollback()
            raise
