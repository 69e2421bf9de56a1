from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
from sqlalchemy import text
import logging
import uvicorn

from app.core.config import settings
from app.core.logging_config import setup_logging
from app.api.profile_cache_routes import router as profile_cache_router
from app.database import init_database, close_database, create_tables
from app.database import connection
from app.tasks.cache_update_scheduler import get_next_update_time

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    setup_logging()
    print("Starting Profile Report Cache...")

    try:
        print("Initializing database connection...")
        await init_database()
        await create_tables()
        print("Database ready")
    except Exception as e:
        print(f"WARNING: Database initialization failed: {e}")
        print("Starting in fallback mode - cache endpoints will fail until the database is reachable")

    if not settings.PROFILE_REPORT_API_KEY:
        print("WARNING: PROFILE_REPORT_API_KEY is not set - refreshes will fail")

    print(f"Next regular cache update: {get_next_update_time().isoformat()}")

    yield
    # Shutdown
    print("Shutting down Profile Report Cache...")
    try:
        await close_database()
    except Exception as e:
        print(f"Cleanup failed: {e}")


app = FastAPI(
    title="Profile Report Cache",
    description="Cached creator profile reports with scheduled refresh",
    version="1.0.0",
    lifespan=lifespan
)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request, exc):
    logger.error(f"VALIDATION ERROR on {request.url}: {exc.errors()}")
    return JSONResponse(
        status_code=422,
        content={"detail": exc.errors()}
    )


app.include_router(profile_cache_router, prefix="/api/v1")


@app.get("/health")
async def health_check():
    """Service and database health"""
    database_status = "not_initialized"
    if connection.async_engine is not None:
        try:
            async with connection.async_engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
            database_status = "healthy"
        except Exception as e:
            logger.warning(f"HEALTH: Database check failed: {e}")
            database_status = "unhealthy"

    return {
        "status": "healthy" if database_status == "healthy" else "degraded",
        "database": database_status,
        "provider_configured": bool(settings.PROFILE_REPORT_API_KEY)
    }


if __name__ == "__main__":
    uvicorn.run(
        "main:app",
        host=settings.API_HOST,
        port=settings.API_PORT,
        reload=settings.DEBUG
    )
