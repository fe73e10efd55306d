"""
Runtime configuration for the charter booking engine.
Values come from the environment (optionally a .env file).
"""

import os
from dotenv import load_dotenv

load_dotenv()


def _bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() in ("1", "true", "yes", "on")


# Database Configuration - Postgres in production, SQLite for local dev
DATABASE_URL = os.getenv("DATABASE_URL") or os.getenv(
    "POSTGRES_URL",
    "sqlite+aiosqlite:///./charter_booking.db"
)

REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")

CORS_ORIGINS = os.getenv("CORS_ORIGINS", "*").split(",")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# Lifecycle policy
UNCONFIRMED_HOLD_TTL_MINUTES = int(os.getenv("UNCONFIRMED_HOLD_TTL_MINUTES", 30))
DEFAULT_PAYMENT_WINDOW_HOURS = int(os.getenv("DEFAULT_PAYMENT_WINDOW_HOURS", 3))
RESEND_PAYMENT_WINDOW_HOURS = int(os.getenv("RESEND_PAYMENT_WINDOW_HOURS", 24))

# Deadline reaper
REAPER_INTERVAL_SECONDS = float(os.getenv("REAPER_INTERVAL_SECONDS", 60))
REAPER_BATCH_SIZE = int(os.getenv("REAPER_BATCH_SIZE", 200))

# Side-effect dispatcher
DISPATCHER_POLL_SECONDS = float(os.getenv("DISPATCHER_POLL_SECONDS", 5))
DISPATCHER_MAX_ATTEMPTS = int(os.getenv("DISPATCHER_MAX_ATTEMPTS", 5))
DISPATCHER_BASE_DELAY_SECONDS = float(os.getenv("DISPATCHER_BASE_DELAY_SECONDS", 10))
DISPATCHER_MAX_DELAY_SECONDS = float(os.getenv("DISPATCHER_MAX_DELAY_SECONDS", 900))
DISPATCHER_VISIBILITY_TIMEOUT_SECONDS = float(os.getenv("DISPATCHER_VISIBILITY_TIMEOUT_SECONDS", 300))
DISPATCHER_CONCURRENCY = int(os.getenv("DISPATCHER_CONCURRENCY", 4))

# External collaborators
DOCUMENT_SERVICE_URL = os.getenv("DOCUMENT_SERVICE_URL", "http://localhost:8090")
DOCUMENT_SERVICE_TOKEN = os.getenv("DOCUMENT_SERVICE_TOKEN")
DOCUMENTS_ENABLED = _bool("DOCUMENTS_ENABLED")

NOTIFIER_URL = os.getenv("NOTIFIER_URL", "http://localhost:8091")
NOTIFIER_TOKEN = os.getenv("NOTIFIER_TOKEN")
NOTIFICATIONS_ENABLED = _bool("NOTIFICATIONS_ENABLED")

# Public submission hygiene
SUBMIT_RATE_LIMIT = int(os.getenv("SUBMIT_RATE_LIMIT", 5))
SUBMIT_RATE_WINDOW_SECONDS = int(os.getenv("SUBMIT_RATE_WINDOW_SECONDS", 60))
IDEMPOTENCY_TTL_SECONDS = int(os.getenv("IDEMPOTENCY_TTL_SECONDS", 86400))

BACKGROUND_WORKERS_ENABLED = _bool("BACKGROUND_WORKERS_ENABLED", "true")

# Payment gateway callbacks are signed with this shared secret
PAYMENT_WEBHOOK_SECRET = os.getenv("PAYMENT_WEBHOOK_SECRET")
