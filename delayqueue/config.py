# delayqueue/config.py
"""
delayqueue configuration - environment variables, optionally from a .env file.

Values are read once when the module is imported; get_settings() returns the
shared instance. DATABASE_URL is resolved on access so tests and tooling can
point a process at another database after import.
"""

import logging.config
import os
from functools import lru_cache
from typing import Optional

from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes")


class Settings:
    """Worker, store, queue and admin API settings"""

    # ==========================================================================
    # Runtime
    # ==========================================================================
    ENVIRONMENT: str = os.getenv("ENVIRONMENT", "development")
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
    LOG_DIR: Optional[str] = os.getenv("LOG_DIR") or None
    LOG_MAX_SIZE_MB: int = int(os.getenv("LOG_MAX_SIZE_MB", "100"))
    SQL_ECHO: bool = _env_bool("SQL_ECHO")

    # ==========================================================================
    # Task store
    # ==========================================================================
    @property
    def DATABASE_URL(self) -> str:
        # SQLite file in the working directory unless configured
        return os.getenv("DATABASE_URL") or "sqlite:///./delayqueue.db"

    DB_POOL_SIZE: int = int(os.getenv("DB_POOL_SIZE", "5"))
    DB_MAX_OVERFLOW: int = int(os.getenv("DB_MAX_OVERFLOW", "10"))
    # Bound to the ORM model when delayqueue.models is imported
    TASK_TABLE: str = os.getenv("TASK_TABLE", "delay_tasks")

    # ==========================================================================
    # Claim queue (Redis sorted set)
    # ==========================================================================
    REDIS_HOST: str = os.getenv("REDIS_HOST", "localhost")
    REDIS_PORT: int = int(os.getenv("REDIS_PORT", "6379"))
    REDIS_DB: int = int(os.getenv("REDIS_DB", "0"))
    REDIS_PASSWORD: Optional[str] = os.getenv("REDIS_PASSWORD") or None
    QUEUE_KEY: str = os.getenv("QUEUE_KEY", "delayqueue:tasks")

    @property
    def REDIS_URL(self) -> str:
        auth = f":{self.REDIS_PASSWORD}@" if self.REDIS_PASSWORD else ""
        return f"redis://{auth}{self.REDIS_HOST}:{self.REDIS_PORT}/{self.REDIS_DB}"

    # ==========================================================================
    # Dispatchers
    # ==========================================================================
    POLL_MIN_MS: int = int(os.getenv("POLL_MIN_MS", "500"))
    POLL_MAX_MS: int = int(os.getenv("POLL_MAX_MS", "1500"))
    TIMEOUT_GRACE_SECONDS: float = float(os.getenv("TIMEOUT_GRACE_SECONDS", "1.0"))
    MAX_BACKOFF_SECONDS: int = int(os.getenv("MAX_BACKOFF_SECONDS", "60"))
    WORKER_COUNT: int = int(os.getenv("WORKER_COUNT", "1"))
    BREAKER_FAILURE_THRESHOLD: int = int(os.getenv("BREAKER_FAILURE_THRESHOLD", "5"))
    BREAKER_RECOVERY_TIMEOUT: float = float(os.getenv("BREAKER_RECOVERY_TIMEOUT", "30"))

    # ==========================================================================
    # Admin API
    # ==========================================================================
    API_HOST: str = os.getenv("API_HOST", "0.0.0.0")
    API_PORT: int = int(os.getenv("API_PORT", "8000"))
    API_KEY: Optional[str] = os.getenv("DELAYQUEUE_API_KEY") or None

    def get_log_config(self) -> dict:
        """dictConfig for worker and API processes; every handler adds correlation ids"""
        handlers = {
            "console": {
                "class": "logging.StreamHandler",
                "formatter": "structured",
                "filters": ["correlation"],
                "stream": "ext://sys.stdout",
            }
        }
        if self.LOG_DIR:
            os.makedirs(self.LOG_DIR, exist_ok=True)
            handlers["file"] = {
                "class": "logging.handlers.RotatingFileHandler",
                "formatter": "structured",
                "filters": ["correlation"],
                "filename": os.path.join(self.LOG_DIR, "delayqueue.log"),
                "maxBytes": self.LOG_MAX_SIZE_MB * 1024 * 1024,
                "backupCount": 5,
            }

        return {
            "version": 1,
            "disable_existing_loggers": False,
            "filters": {
                "correlation": {"()": "delayqueue.middleware.correlation.CorrelationIdFilter"},
            },
            "formatters": {
                "structured": {
                    "format": "[%(asctime)s] [corr-id:%(correlation_id)s] [%(levelname)s] %(name)s: %(message)s",
                    "datefmt": "%Y-%m-%dT%H:%M:%S",
                },
            },
            "handlers": handlers,
            "loggers": {
                "delayqueue": {"level": self.LOG_LEVEL},
            },
            "root": {
                "level": "WARNING",
                "handlers": list(handlers),
            },
        }


@lru_cache()
def get_settings() -> Settings:
    return Settings()


def configure_logging(config: Optional[Settings] = None) -> None:
    logging.config.dictConfig((config or get_settings()).get_log_config())


settings = get_settings()
