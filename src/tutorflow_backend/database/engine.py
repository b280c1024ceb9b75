'''
Database engine and sessions.
1- create_db_engine_and_session_factory: builds the pooled async engine and the session factory.
2- session_scope: one transaction, for scripts and jobs.
3- get_db_session: FastAPI dependency, one transaction per request.
'''
from contextlib import asynccontextmanager
from typing import AsyncGenerator, AsyncIterator, Optional
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, AsyncEngine, async_sessionmaker

from ..common.config import settings
from ..common.logger import log

# Set by the app's lifespan or by a script before the first session is opened.
engine: AsyncEngine | None = None
AsyncSessionLocal: async_sessionmaker[AsyncSession] | None = None


def _pool_options(database_url: str) -> dict:
    # SQLite connections are not pooled the way server connections are.
    if make_url(database_url).get_backend_name() == 'sqlite':
        return {}
    return {
        "pool_size": 5,
        "max_overflow": 10,
        "pool_timeout": 30,
        "pool_pre_ping": True,
    }


def create_db_engine_and_session_factory(database_url: Optional[str] = None):
    global engine, AsyncSessionLocal

    database_url = database_url or settings.database_url
    log.info(f"Creating database engine ({make_url(database_url).get_backend_name()})...")
    try:
        engine = create_async_engine(database_url, echo=False, **_pool_options(database_url))
        AsyncSessionLocal = async_sessionmaker(
            bind=engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )
    except Exception as e:
        log.critical(f"Failed to create async database engine: {e}", exc_info=True)
        raise


async def dispose_db_engine():
    global engine, AsyncSessionLocal
    if engine is not None:
        await engine.dispose()
        log.info("Database engine disposed.")
    engine = None
    AsyncSessionLocal = None


@asynccontextmanager
async def session_scope(commit: bool = True) -> AsyncIterator[AsyncSession]:
    """
    Opens a session and ends its transaction on exit: committed when the
    block succeeds and `commit` is set, rolled back otherwise.
    """
    if AsyncSessionLocal is None:
        log.error("Session factory used before create_db_engine_and_session_factory().")
        raise RuntimeError("Database session factory is not available.")

    async with AsyncSessionLocal() as session:
        try:
            yield session
            if commit:
                await session.commit()
            else:
                await session.rollback()
        except Exception as e:
            await session.rollback()
            log.error(f"Database session rolled back due to error: {e}")
            raise


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """
    Everything a request writes (classes and their participants, a class
    update and its invoice) lands in one transaction.
    """
    async with session_scope() as session:
        yield session
