import os
from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite:///./netwatch.db")

    # Redis settings (heartbeat freshness store)
    REDIS_HOST: str = os.getenv("REDIS_HOST", "localhost")
    REDIS_PORT: int = int(os.getenv("REDIS_PORT", "6379"))
    REDIS_DB: int = int(os.getenv("REDIS_DB", "0"))
    REDIS_PASSWORD: Optional[str] = os.getenv("REDIS_PASSWORD")
    HEARTBEAT_ENABLED: bool = False
    HEARTBEAT_TTL: int = 60

    # Monitor loop
    PING_INTERVAL: float = 10.0
    PROBE_TIMEOUT: float = 2.0
    PROBE_CONCURRENCY: int = 32
    STORAGE_RETRY_ATTEMPTS: int = 2
    STORAGE_RETRY_DELAY: float = 0.5
    BROADCAST_SEND_TIMEOUT: float = 5.0

    # API server
    API_HOST: str = "0.0.0.0"
    API_PORT: int = 5000
    LOG_LEVEL: str = "INFO"

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"  # This allows extra fields without validation errors


settings = Settings()
