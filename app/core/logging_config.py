import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

from app.core.config import settings

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

# Loggers whose records also go to the cache job log
CACHE_JOB_LOGGERS = (
    "app.services.profile_cache_service",
    "app.tasks.cache_update_scheduler",
)


def _rotating_handler(path: Path, max_mb: int, backups: int) -> RotatingFileHandler:
    handler = RotatingFileHandler(path, maxBytes=max_mb * 1024 * 1024, backupCount=backups)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    return handler


def setup_logging():
    """Console + rotating app log, plus a separate log of cache refresh activity"""
    logs_dir = Path(settings.LOG_DIR)
    logs_dir.mkdir(parents=True, exist_ok=True)

    level = logging.DEBUG if settings.DEBUG else logging.INFO
    root = logging.getLogger()
    if root.handlers:
        # basicConfig is a no-op once configured, so don't open app.log again
        root.setLevel(level)
    else:
        logging.basicConfig(
            level=level,
            format=LOG_FORMAT,
            handlers=[
                logging.StreamHandler(sys.stdout),
                _rotating_handler(logs_dir / "app.log", max_mb=10, backups=5)
            ]
        )

    # Refresh runs spend provider credits, keep them auditable on their own
    job_log_path = os.path.abspath(logs_dir / "profile_cache_jobs.log")
    job_handler = None
    for name in CACHE_JOB_LOGGERS:
        job_logger = logging.getLogger(name)
        if any(getattr(h, "baseFilename", None) == job_log_path for h in job_logger.handlers):
            continue
        if job_handler is None:
            job_handler = _rotating_handler(job_log_path, max_mb=5, backups=10)
        job_logger.addHandler(job_handler)

    # Third-party noise
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.INFO if settings.DATABASE_ECHO else logging.WARNING)
    logging.getLogger("uvicorn").setLevel(logging.INFO)

    # Provider traffic only when debugging
    logging.getLogger("app.scrapers").setLevel(level)
