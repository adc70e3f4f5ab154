import time
import random
import logging

import requests

logger = logging.getLogger(__name__)

# ── Retry configuration ──────────────────────────────────────────────────────
# Transport-level only: a job still gets exactly one generation attempt.
MAX_RETRIES = 3
BASE_DELAY = 2.0       # seconds, doubled each retry (2, 4, 8)
JITTER_MAX = 1.0        # random jitter 0–1s added to each delay
RETRYABLE_STATUS_CODES = {429, 502, 503, 504}
REQUEST_TIMEOUT = 60


def request_with_backoff(
    session: requests.Session,
    method: str,
    url: str,
    tag: str = "HTTP",
    max_retries: int = MAX_RETRIES,
    **kwargs,
) -> requests.Response:
    """
    Make an HTTP request with exponential backoff on retryable errors (429, 5xx).

    Uses: base_delay * 2^attempt + random jitter, honouring Retry-After.
    Non-retryable 4xx responses raise immediately.
    """
    kwargs.setdefault("timeout", REQUEST_TIMEOUT)

    for attempt in range(max_retries + 1):
        try:
            response = session.request(method, url, **kwargs)
        except requests.exceptions.RequestException as e:
            if attempt >= max_retries:
                raise
            delay = BASE_DELAY * (2 ** attempt) + random.uniform(0, JITTER_MAX)
            logger.warning(
                f"[{tag}] request error on attempt {attempt + 1}/{max_retries + 1}: {e} "
                f"— retrying in {delay:.1f}s"
            )
            time.sleep(delay)
            continue

        if response.status_code not in RETRYABLE_STATUS_CODES:
            response.raise_for_status()
            return response

        if attempt >= max_retries:
            response.raise_for_status()

        retry_after = response.headers.get("Retry-After")
        if retry_after and retry_after.isdigit():
            delay = int(retry_after)
        else:
            delay = BASE_DELAY * (2 ** attempt) + random.uniform(0, JITTER_MAX)

        logger.warning(
            f"[{tag}] {response.status_code} on attempt {attempt + 1}/{max_retries + 1} "
            f"— retrying in {delay:.1f}s (url={url})"
        )
        time.sleep(delay)

    raise RuntimeError(f"Request to {url} failed after {max_retries + 1} attempts")
