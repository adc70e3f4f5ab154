"""
Sliding-window submission limiter backed by Redis sorted sets.

Each API key gets a sorted set keyed by `mediaflow:ratelimit:{client_id}`.
Members are timestamps of recent submissions; the score is the timestamp.
Entries older than the window are trimmed and the remainder counted.
"""

import time
import logging
import uuid
from typing import Tuple

from . import config

logger = logging.getLogger(__name__)

KEY_PREFIX = "mediaflow:ratelimit:"


def check_rate_limit(
    redis_client,
    client_id: str,
    max_requests: int = config.SUBMIT_RATE_LIMIT,
    window_seconds: int = config.SUBMIT_RATE_WINDOW,
) -> Tuple[bool, int, int]:
    """
    Check and record one submission for the given client.

    Returns:
        (allowed, remaining, retry_after_seconds)
    """
    now = time.time()
    window_start = now - window_seconds
    key = f"{KEY_PREFIX}{client_id}"

    pipe = redis_client.pipeline(transaction=True)
    pipe.zremrangebyscore(key, 0, window_start)
    pipe.zcard(key)
    pipe.zrange(key, 0, 0, withscores=True)
    _, current_count, oldest_entries = pipe.execute()

    if current_count >= max_requests:
        if oldest_entries:
            oldest_score = oldest_entries[0][1]
            retry_after = int(oldest_score + window_seconds - now) + 1
        else:
            retry_after = window_seconds
        logger.warning(f"Rate limit exceeded for {client_id}: {current_count}/{max_requests}")
        return False, 0, retry_after

    pipe = redis_client.pipeline(transaction=True)
    # Unique member so two submissions in the same instant both count
    pipe.zadd(key, {f"{now}:{uuid.uuid4().hex[:8]}": now})
    pipe.expire(key, window_seconds + 60)
    pipe.execute()

    remaining = max_requests - current_count - 1
    return True, remaining, 0
