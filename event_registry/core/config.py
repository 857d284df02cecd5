import os

# Database configuration
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./event_registry.db")

# Redis configuration
REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")

# Per-event lock: how long a held lock lives, and how long a caller waits for it
EVENT_LOCK_TIMEOUT = int(os.getenv("EVENT_LOCK_TIMEOUT", "10"))
EVENT_LOCK_BLOCKING_TIMEOUT = float(os.getenv("EVENT_LOCK_BLOCKING_TIMEOUT", "5"))

DEFAULT_TIMEZONE = os.getenv("DEFAULT_TIMEZONE", "UTC")

DEFAULT_PAGE_SIZE = int(os.getenv("DEFAULT_PAGE_SIZE", "10"))
MAX_PAGE_SIZE = int(os.getenv("MAX_PAGE_SIZE", "100"))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

CORS_ORIGINS = os.getenv("CORS_ORIGINS", "*")


def get_database_url():
    return DATABASE_URL


def get_redis_url():
    return REDIS_URL


def get_lock_timeouts() -> tuple[int, float]:
    return EVENT_LOCK_TIMEOUT, EVENT_LOCK_BLOCKING_TIMEOUT


def get_default_timezone():
    return DEFAULT_TIMEZONE


def get_cors_origins() -> list[str]:
    return [origin.strip() for origin in CORS_ORIGINS.split(",") if origin.strip()]


# Celery: queue for background jobs and how often counters are reconciled (0 disables the schedule)
CELERY_QUEUE = os.getenv("CELERY_QUEUE", "event_registry")
RECONCILE_INTERVAL_SECONDS = float(os.getenv("RECONCILE_INTERVAL_SECONDS", "3600"))


def get_reconcile_interval() -> float:
    return RECONCILE_INTERVAL_SECONDS
