import os
from pathlib import Path

from dotenv import load_dotenv

# Load .env from project root
env_path = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(dotenv_path=env_path)

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./carebridge.db")

# Connection pool (ignored for SQLite) and slow-query logging
DB_POOL_SIZE = int(os.getenv("DB_POOL_SIZE", "20"))
DB_MAX_OVERFLOW = int(os.getenv("DB_MAX_OVERFLOW", "30"))
DB_POOL_TIMEOUT = int(os.getenv("DB_POOL_TIMEOUT", "30"))
DB_POOL_RECYCLE = int(os.getenv("DB_POOL_RECYCLE", "300"))
DB_LOG_SLOW_QUERIES = os.getenv("DB_LOG_SLOW_QUERIES", "true").lower() == "true"
DB_SLOW_QUERY_THRESHOLD = float(os.getenv("DB_SLOW_QUERY_THRESHOLD", "1.0"))

# Security - CRITICAL: No default secret key in production
SECRET_KEY = os.getenv("SECRET_KEY")
if not SECRET_KEY:
    import warnings

    warnings.warn(
        "SECRET_KEY not set! Using insecure default - DO NOT USE IN PRODUCTION", RuntimeWarning, stacklevel=2
    )
    SECRET_KEY = "INSECURE-DEV-KEY-CHANGE-IN-PRODUCTION"  # noqa: S105 - Dev fallback only

FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:5173")
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", FRONTEND_URL).split(",") if o.strip()]

# Google Calendar OAuth Configuration (used for token refresh when mirroring shifts)
GOOGLE_CLIENT_ID = os.getenv("GOOGLE_CLIENT_ID")
GOOGLE_CLIENT_SECRET = os.getenv("GOOGLE_CLIENT_SECRET")

# Notification dispatch collaborator: POST {user_id, message, metadata}
NOTIFICATION_DISPATCH_URL = os.getenv("NOTIFICATION_DISPATCH_URL")
NOTIFICATION_DISPATCH_TOKEN = os.getenv("NOTIFICATION_DISPATCH_TOKEN")
NOTIFICATION_TIMEOUT_SECONDS = float(os.getenv("NOTIFICATION_TIMEOUT_SECONDS", "10"))

# Rate limiting (search endpoint)
RATE_LIMIT_ENABLED = os.getenv("RATE_LIMIT_ENABLED", "true").lower() == "true"
SEARCH_RATE_LIMIT_PER_MINUTE = int(os.getenv("SEARCH_RATE_LIMIT_PER_MINUTE", "60"))

# Constraint relaxation ladder
RATING_RELAXATION_STEP = float(os.getenv("RATING_RELAXATION_STEP", "0.5"))
RATING_RELAXATION_FLOOR = float(os.getenv("RATING_RELAXATION_FLOOR", "3.0"))
MAX_RELAXATION_LIMIT = int(os.getenv("MAX_RELAXATION_LIMIT", "10"))
SEARCH_RESULT_LIMIT = int(os.getenv("SEARCH_RESULT_LIMIT", "25"))

# Search cache - results expire and are recomputed, never served stale
SEARCH_CACHE_ENABLED = os.getenv("SEARCH_CACHE_ENABLED", "true").lower() == "true"
SEARCH_CACHE_TTL_HOURS = float(os.getenv("SEARCH_CACHE_TTL_HOURS", "4"))

# Availability ledger
SLOT_MINUTES = int(os.getenv("SLOT_MINUTES", "30"))
AVAILABILITY_HORIZON_DAYS = int(os.getenv("AVAILABILITY_HORIZON_DAYS", "14"))

# Shift auto-approval thresholds (confirm with clinical ops before changing)
AUTO_APPROVE_MIN_SCORE = float(os.getenv("AUTO_APPROVE_MIN_SCORE", "80"))
AUTO_APPROVE_MIN_RATING = float(os.getenv("AUTO_APPROVE_MIN_RATING", "4.5"))
SHIFT_APPLICATION_TTL_HOURS = int(os.getenv("SHIFT_APPLICATION_TTL_HOURS", "24"))

# Waitlist matcher
WAITLIST_TOP_N = int(os.getenv("WAITLIST_TOP_N", "5"))
WAITLIST_MIN_MATCH_SCORE = float(os.getenv("WAITLIST_MIN_MATCH_SCORE", "60"))
WAITLIST_URGENT_THRESHOLD = float(os.getenv("WAITLIST_URGENT_THRESHOLD", "70"))
WAITLIST_DEFAULT_MAX_WAIT_DAYS = int(os.getenv("WAITLIST_DEFAULT_MAX_WAIT_DAYS", "30"))
WAITLIST_SLOTS_PER_SPECIALIST = int(os.getenv("WAITLIST_SLOTS_PER_SPECIALIST", "3"))

# Outbox delivery (calendar mirror + notifications)
OUTBOX_MAX_ATTEMPTS = int(os.getenv("OUTBOX_MAX_ATTEMPTS", "5"))
OUTBOX_BATCH_SIZE = int(os.getenv("OUTBOX_BATCH_SIZE", "100"))
