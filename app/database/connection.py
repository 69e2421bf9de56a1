import asyncio
import logging

from sqlalchemy import text
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, AsyncEngine
from sqlalchemy.orm import sessionmaker
from tenacity import retry, stop_after_attempt, wait_exponential, before_sleep_log

from app.core.config import settings
from app.core.exceptions import OperationalError
from .cache_models import Base

logger = logging.getLogger(__name__)

# Populated by init_database(), one pool per process
async_engine: AsyncEngine = None
SessionLocal = None


def _async_database_url(url: str) -> str:
    """Map a plain database URL onto its asyncio driver"""
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+asyncpg://", 1)
    if url.startswith("postgres://"):
        return url.replace("postgres://", "postgresql+asyncpg://", 1)
    if url.startswith("sqlite://"):
        return url.replace("sqlite://", "sqlite+aiosqlite://", 1)
    return url


def _build_engine(async_url: str) -> AsyncEngine:
    if async_url.startswith("sqlite"):
        return create_async_engine(async_url, echo=settings.DATABASE_ECHO)

    return create_async_engine(
        async_url,
        echo=settings.DATABASE_ECHO,
        pool_pre_ping=True,
        pool_recycle=1800,  # 30 minutes
        pool_size=5,        # refresh batches are sequential, a small pool is enough
        max_overflow=3,
        pool_timeout=30,
        connect_args={
            "command_timeout": 60,
            "server_settings": {
                "application_name": "profile_report_cache",
                "statement_timeout": "60s"
            }
        }
    )


@retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=4),
    before_sleep=before_sleep_log(logger, logging.WARNING),
    reraise=True
)
async def _check_connection(engine: AsyncEngine):
    async with engine.connect() as conn:
        result = await conn.execute(text("SELECT 1"))
        return result.scalar()


async def init_database(database_url: str = None):
    """Create the async engine and session factory, then verify connectivity"""
    global async_engine, SessionLocal

    if async_engine is not None and SessionLocal is not None:
        logger.info("Database already initialized - reusing existing connection pool")
        return

    url = database_url or settings.DATABASE_URL
    if not url:
        logger.warning("WARNING: DATABASE_URL not configured. Skipping database initialization.")
        return

    async_url = _async_database_url(url)
    logger.info(f"Initializing database connection ({async_url.split('://', 1)[0]})...")

    async_engine = _build_engine(async_url)
    SessionLocal = sessionmaker(
        bind=async_engine,
        class_=AsyncSession,
        expire_on_commit=False
    )

    try:
        await asyncio.wait_for(_check_connection(async_engine), timeout=30.0)
        logger.info("SUCCESS: Database connection verified")
    except asyncio.TimeoutError:
        logger.warning("WARNING: Connection check timed out after 30s - continuing with pool")


async def close_database():
    """Dispose the pool and reset module state"""
    global async_engine, SessionLocal

    if async_engine is not None:
        await async_engine.dispose()
        logger.info("Database connection pool closed")

    async_engine = None
    SessionLocal = None


async def create_tables():
    """Create the cache tables if they do not exist"""
    if async_engine is None:
        logger.warning("WARNING: Database not initialized. Skipping table creation.")
        return

    async with async_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("SUCCESS: Profile cache tables ready")


def get_session() -> AsyncSession:
    """New AsyncSession, use as `async with get_session() as db`"""
    if SessionLocal is None:
        raise OperationalError("Database not initialized")
    return SessionLocal()

