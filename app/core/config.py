from pydantic_settings import BaseSettings
from typing import Optional
import os
from dotenv import load_dotenv

load_dotenv()


class Settings(BaseSettings):
    # API Configuration
    API_HOST: str = os.getenv("API_HOST", "0.0.0.0")
    API_PORT: int = int(os.getenv("PORT", os.getenv("API_PORT", "8080")))
    DEBUG: bool = os.getenv("DEBUG", "false").lower() == "true"
    LOG_DIR: str = os.getenv("LOG_DIR", "logs")

    # Database Configuration
    DATABASE_URL: str = os.getenv("DATABASE_URL", "")
    DATABASE_ECHO: bool = os.getenv("DATABASE_ECHO", "false").lower() == "true"

    # Profile report provider (Modash-compatible)
    PROFILE_REPORT_API_URL: str = os.getenv("PROFILE_REPORT_API_URL", "https://api.modash.io")
    PROFILE_REPORT_API_KEY: str = os.getenv("PROFILE_REPORT_API_KEY", "")
    PROFILE_REPORT_TIMEOUT: float = float(os.getenv("PROFILE_REPORT_TIMEOUT", "30"))
    MAX_CONCURRENT_REQUESTS: int = int(os.getenv("MAX_CONCURRENT_REQUESTS", "5"))

    # Profile cache
    PROFILE_CACHE_TTL_DAYS: int = int(os.getenv("PROFILE_CACHE_TTL_DAYS", "28"))  # 4 weeks
    PROFILE_CACHE_BATCH_SIZE: int = int(os.getenv("PROFILE_CACHE_BATCH_SIZE", "10"))
    PROFILE_CACHE_REQUEST_DELAY: float = float(os.getenv("PROFILE_CACHE_REQUEST_DELAY", "0.5"))  # seconds between provider calls
    PROFILE_CACHE_EXPIRY_WINDOW_HOURS: int = int(os.getenv("PROFILE_CACHE_EXPIRY_WINDOW_HOURS", "24"))
    PROFILE_CACHE_URGENT_PRIORITY: int = int(os.getenv("PROFILE_CACHE_URGENT_PRIORITY", "75"))
    PROFILE_CACHE_READ_MODE: str = os.getenv("PROFILE_CACHE_READ_MODE", "lazy")  # lazy or strict

    # Shared secret for the external cron trigger (optional)
    CACHE_UPDATE_TOKEN: Optional[str] = os.getenv("CACHE_UPDATE_TOKEN", None)

    class Config:
        case_sensitive = True


settings = Settings()
