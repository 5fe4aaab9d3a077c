"""Database engine, scoped sessions and transaction handling"""

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncIterator

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from tablehold.config import settings
from tablehold.exceptions import ReservationError

Base = declarative_base()


def utcnow() -> datetime:
    """Naive UTC timestamp, matching the naive DateTime columns"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Database:
    """Owns the engine and its connection pool and hands out scoped sessions.

    Every session handed out by :meth:`session` is closed on exit, and rolled
    back first when the block raises, so a connection always returns to the
    pool in a clean state.
    """

    def __init__(self, url: str, **engine_kwargs):
        self.engine = create_async_engine(url, **engine_kwargs)
        self.session_factory = async_sessionmaker(
            self.engine, class_=AsyncSession, expire_on_commit=False
        )

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        session = self.session_factory()
        try:
            yield session
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()

    async def dispose(self) -> None:
        await self.engine.dispose()


database = Database(settings.database_url, pool_pre_ping=True)
engine = database.engine
SessionLocal = database.session_factory


async def get_db() -> AsyncIterator[AsyncSession]:
    """FastAPI dependency yielding a scoped session"""
    async with database.session() as session:
        yield session


@asynccontextmanager
async def transaction(db: AsyncSession) -> AsyncIterator[AsyncSession]:
    """Commit on success, roll back on failure.

    A ReservationError flagged ``persist`` carries a state change (a hold
    marked expired) that must survive the rejection, so it is committed
    before being re-raised.
    """
    try:
        yield db
    except ReservationError as exc:
        if exc.persist:
            await db.commit()
        else:
            await db.rollback()
        raise
    except Exception:
        await db.rollback()
        raise
    else:
        await db.commit()
