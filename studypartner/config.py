"""
StudyPartner - Configuration
All environment variables and constants. Single source of truth.
No other module reads os.environ directly.
"""

import os
from pathlib import Path

from dotenv import load_dotenv

# ─── Paths ───────────────────────────────────────────────────────────────────
BASE_DIR = Path(__file__).resolve().parent.parent

# Load .env file if present (real environment wins)
load_dotenv(BASE_DIR / ".env", override=False)

# ─── API Keys ────────────────────────────────────────────────────────────────
OPENAI_API_KEY = os.getenv("OPENAI_API_KEY", "")

# ─── LLM Settings ────────────────────────────────────────────────────────────
LLM_REQUEST_TIMEOUT_SECONDS = float(os.getenv("LLM_REQUEST_TIMEOUT_SECONDS", "30"))
LLM_MAX_RETRIES = int(os.getenv("LLM_MAX_RETRIES", "2"))

# Cheap model used by both fallback classifiers
CLASSIFIER_MODEL = os.getenv("CLASSIFIER_MODEL", "gpt-4o-mini")

# Model tiers for freeform answers
FAST_MODEL = os.getenv("FAST_MODEL", "gpt-4o-mini")
ADVANCED_MODEL = os.getenv("ADVANCED_MODEL", "gpt-4o")

# ─── Database ────────────────────────────────────────────────────────────────
DATABASE_URL = os.getenv(
    "DATABASE_URL",
    f"sqlite:///{BASE_DIR / 'studypartner.db'}"
)
# Hosted Postgres often hands out "postgres://", which SQLAlchemy rejects
if DATABASE_URL.startswith("postgres://"):
    DATABASE_URL = DATABASE_URL.replace("postgres://", "postgresql://", 1)

# ─── Guardrails ──────────────────────────────────────────────────────────────
MAX_FALLBACK_CALLS_PER_SESSION = int(os.getenv("MAX_FALLBACK_CALLS_PER_SESSION", "10"))
FALLBACK_CALL_TIMEOUT_MS = int(os.getenv("FALLBACK_CALL_TIMEOUT_MS", "2000"))
MAX_TOKENS_PER_RESPONSE = int(os.getenv("MAX_TOKENS_PER_RESPONSE", "1200"))
MAX_TOKENS_PER_SESSION = int(os.getenv("MAX_TOKENS_PER_SESSION", "50000"))
MEMORY_EXTRACTION_INTERVAL = int(os.getenv("MEMORY_EXTRACTION_INTERVAL", "5"))
MAX_MEMORIES_PER_SESSION = int(os.getenv("MAX_MEMORIES_PER_SESSION", "20"))
MAX_HISTORY_SIZE = int(os.getenv("MAX_HISTORY_SIZE", "50"))

# Rolling window limiter for fallback LLM calls (per session key)
RATE_LIMIT_MAX_CALLS = int(os.getenv("RATE_LIMIT_MAX_CALLS", "10"))
RATE_LIMIT_WINDOW_SECONDS = float(os.getenv("RATE_LIMIT_WINDOW_SECONDS", "60"))

# ─── Intent Classifier ───────────────────────────────────────────────────────
INTENT_CACHE_TTL_SECONDS = float(os.getenv("INTENT_CACHE_TTL_SECONDS", "60"))
INTENT_CACHE_MAX_ENTRIES = int(os.getenv("INTENT_CACHE_MAX_ENTRIES", "1000"))
INTENT_CACHE_KEY_LENGTH = 100

# ─── Query Analyzer ──────────────────────────────────────────────────────────
COMPLEXITY_CONFIDENCE_THRESHOLD = float(os.getenv("COMPLEXITY_CONFIDENCE_THRESHOLD", "0.6"))

# ─── Response Cache ──────────────────────────────────────────────────────────
CACHE_TTL_HOURS = {
    "factual": 24 * 7,
    "conceptual": 24 * 3,
    "procedural": 24,
    "personalized": 24,
}
CACHE_SIMILARITY_THRESHOLD = 0.85
CACHE_FUZZY_SAMPLE_SIZE = 20
CACHE_MIN_QUERY_LENGTH = 10
CACHE_MAX_RESPONSE_LENGTH = 10000

HOT_CACHE_MAX_ENTRIES = int(os.getenv("HOT_CACHE_MAX_ENTRIES", "100"))
HOT_CACHE_TTL_SECONDS = float(os.getenv("HOT_CACHE_TTL_SECONDS", "300"))

CACHE_CLEANUP_INTERVAL_SECONDS = float(os.getenv("CACHE_CLEANUP_INTERVAL_SECONDS", "3600"))

# ─── Logging ─────────────────────────────────────────────────────────────────
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_FORMAT = "%(asctime)s [%(name)s] %(levelname)s: %(message)s"
