"""
Process-wide configuration read from the environment.

Values are loaded once at import time (after `.env`, if present). Modules
import the constants they need; tests override them with monkeypatch.
"""

import os

from dotenv import load_dotenv

load_dotenv()

# ── Service ──────────────────────────────────────────────────────────────────

ENVIRONMENT = os.environ.get("ENVIRONMENT", "development")
API_BASE_URL = os.environ.get("API_BASE_URL", "http://localhost:8000")
MEDIA_RENDER_URL = os.environ.get("MEDIA_RENDER_URL", "http://localhost:8081")

# Comma-separated keys accepted by the /execute endpoints
MEDIAFLOW_API_KEYS = [
    k.strip() for k in os.environ.get("MEDIAFLOW_API_KEYS", "").split(",") if k.strip()
]

# ── Persistence ──────────────────────────────────────────────────────────────

SUPABASE_URL = os.environ.get("SUPABASE_URL", "")
SUPABASE_SERVICE_ROLE_KEY = os.environ.get("SUPABASE_SERVICE_ROLE_KEY", "")
REDIS_URL = os.environ.get("REDIS_URL", "")

# ── Workers ──────────────────────────────────────────────────────────────────

MAX_WORKERS = int(os.environ.get("MAX_WORKERS", "8"))

# Per-operation concurrency caps inside the worker pool
OPERATION_CONCURRENCY = {
    "generate": int(os.environ.get("MAX_CONCURRENT_VIDEO_JOBS", "4")),
    "merge": int(os.environ.get("MAX_CONCURRENT_RENDER_JOBS", "2")),
    "addSubtitles": int(os.environ.get("MAX_CONCURRENT_RENDER_JOBS", "2")),
    "replaceGreenScreen": int(os.environ.get("MAX_CONCURRENT_RENDER_JOBS", "2")),
    "layer": int(os.environ.get("MAX_CONCURRENT_RENDER_JOBS", "2")),
}

# ── Submission limits ────────────────────────────────────────────────────────

SUBMIT_RATE_LIMIT = int(os.environ.get("SUBMIT_RATE_LIMIT", "60"))
SUBMIT_RATE_WINDOW = int(os.environ.get("SUBMIT_RATE_WINDOW", "3600"))

# ── Provider credentials (process-wide fallback) ─────────────────────────────

PROVIDER_KEY_ENV = {
    "replicate": "REPLICATE_API_KEY",
    "fal": "FAL_KEY",
    "elevenlabs": "ELEVENLABS_API_KEY",
    "hume": "HUME_API_KEY",
}


def provider_key_from_env(provider: str) -> str:
    """Look up the fallback credential for a provider ('' when unset)."""
    env_var = PROVIDER_KEY_ENV.get(provider)
    if not env_var:
        return ""
    return os.environ.get(env_var, "")
