"""
In-memory fallback submission limiter.

Used when Redis is not configured or unreachable. Same API as
rate_limiter.check_rate_limit() minus the client argument; state is
per-process and lost on restart, so the default limit is tighter.
"""

import time
import threading
from typing import Dict, List, Tuple

from . import config

# ── Configuration ─────────────────────────────────────────────────────────────
FALLBACK_MAX_REQUESTS = max(1, config.SUBMIT_RATE_LIMIT // 2)
FALLBACK_WINDOW_SECONDS = config.SUBMIT_RATE_WINDOW

# ── State ─────────────────────────────────────────────────────────────────────
_lock = threading.Lock()
_request_log: Dict[str, List[float]] = {}  # client_id → [timestamp, ...]


def check_rate_limit(
    client_id: str,
    max_requests: int = FALLBACK_MAX_REQUESTS,
    window_seconds: int = FALLBACK_WINDOW_SECONDS,
) -> Tuple[bool, int, int]:
    """
    Returns:
        (allowed, remaining, retry_after_seconds)
    """
    now = time.time()
    window_start = now - window_seconds

    with _lock:
        timestamps = [ts for ts in _request_log.get(client_id, []) if ts > window_start]

        if len(timestamps) >= max_requests:
            retry_after = int(timestamps[0] + window_seconds - now) + 1
            _request_log[client_id] = timestamps
            return False, 0, retry_after

        timestamps.append(now)
        _request_log[client_id] = timestamps
        return True, max_requests - len(timestamps), 0


def reset():
    with _lock:
        _request_log.clear()
