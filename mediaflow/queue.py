"""
Redis-backed ready queue with reliable delivery.

Only jobs whose dependencies are complete are ever pushed here; the
orchestrator has already claimed them (queued → processing) in the store.

Uses the BLMOVE (reliable queue) pattern so a dispatched job is never lost:
  1. LPUSH → `mediaflow:jobs`             (enqueue)
  2. BLMOVE → `mediaflow:processing`      (atomic dequeue + in-flight tracking)
  3. LREM from processing when done       (ack)
  4. → `mediaflow:dead_letter` if the runner itself crashed (no re-run)

Keys:
  mediaflow:jobs               — ready job record ids (Redis list, FIFO)
  mediaflow:processing         — in-flight job record ids (Redis list)
  mediaflow:dead_letter        — runner crashes, kept for inspection
  mediaflow:meta:{record_id}   — per-job metadata (Redis hash, TTL 2h)
"""

import time
import logging
from typing import Optional

logger = logging.getLogger(__name__)

QUEUE_KEY = "mediaflow:jobs"
PROCESSING_KEY = "mediaflow:processing"
DEAD_LETTER_KEY = "mediaflow:dead_letter"
META_PREFIX = "mediaflow:meta:"
META_TTL = 7200  # 2 hours: metadata auto-expires

STALE_TASK_TIMEOUT = 900  # 15 minutes: longer than the largest poll budget


def _decode(value) -> str:
    return value.decode("utf-8") if isinstance(value, bytes) else value


# ── Enqueue ───────────────────────────────────────────────────────────────────

def enqueue_job(redis_client, record_id: str, operation: str, execution_id: str) -> int:
    """
    Add a ready job to the back of the queue.
    Returns the queue length after the push.
    """
    meta = {
        "record_id": record_id,
        "operation": operation,
        "execution_id": execution_id,
        "enqueued_at": str(time.time()),
        "status": "queued",
    }

    pipe = redis_client.pipeline(transaction=True)
    meta_key = f"{META_PREFIX}{record_id}"
    pipe.hset(meta_key, mapping=meta)
    pipe.expire(meta_key, META_TTL)
    # LPUSH = new items go left; pop from right = FIFO
    pipe.lpush(QUEUE_KEY, record_id)
    pipe.execute()

    position = redis_client.llen(QUEUE_KEY)
    logger.info(f"Enqueued job {record_id} ({operation}, execution={execution_id}, pos={position})")
    return position


# ── Reliable Dequeue (BLMOVE) ─────────────────────────────────────────────────

def dequeue_job(redis_client, timeout: int = 5) -> Optional[str]:
    """
    Atomically move a job from the ready queue to the processing list.
    Returns the job record id or None on timeout.
    """
    result = redis_client.blmove(QUEUE_KEY, PROCESSING_KEY, timeout, "RIGHT", "LEFT")
    if result is None:
        return None

    record_id = _decode(result)
    meta_key = f"{META_PREFIX}{record_id}"
    redis_client.hset(meta_key, mapping={"status": "processing", "processing_started_at": str(time.time())})

    logger.info(f"Dequeued job {record_id} → processing")
    return record_id


# ── Ack / Dead-letter ─────────────────────────────────────────────────────────

def ack_job(redis_client, record_id: str):
    """The runner finished (whatever the job outcome) — drop from processing."""
    redis_client.lrem(PROCESSING_KEY, 1, record_id)
    redis_client.hset(f"{META_PREFIX}{record_id}", "status", "done")


def dead_letter_job(redis_client, record_id: str, error_msg: str = ""):
    """The runner raised before recording an outcome. Park the id; never re-run."""
    meta_key = f"{META_PREFIX}{record_id}"
    pipe = redis_client.pipeline(transaction=True)
    pipe.lrem(PROCESSING_KEY, 1, record_id)
    pipe.lpush(DEAD_LETTER_KEY, record_id)
    pipe.hset(meta_key, mapping={"status": "dead_letter", "last_error": error_msg[:500]})
    pipe.execute()
    logger.error(f"Job {record_id} moved to dead-letter list: {error_msg}")


# ── Stale Task Recovery ───────────────────────────────────────────────────────

def recover_stale_jobs(redis_client) -> int:
    """
    Move jobs that have been in-flight longer than STALE_TASK_TIMEOUT (likely
    from a crashed worker) back to the ready queue. The worker resumes them
    from the provider job id already recorded in the store.

    Call this on startup. Returns the number of recovered jobs.
    """
    recovered = 0
    now = time.time()

    for item in redis_client.lrange(PROCESSING_KEY, 0, -1):
        record_id = _decode(item)
        meta = get_job_meta(redis_client, record_id)

        if not meta:
            redis_client.lrem(PROCESSING_KEY, 1, record_id)
            logger.warning(f"Removed orphaned job {record_id} from processing (no metadata)")
            continue

        started_at = float(meta.get("processing_started_at", 0))
        if started_at > 0 and (now - started_at) > STALE_TASK_TIMEOUT:
            redis_client.lrem(PROCESSING_KEY, 1, record_id)
            redis_client.lpush(QUEUE_KEY, record_id)
            redis_client.hset(f"{META_PREFIX}{record_id}", "status", "queued")
            recovered += 1
            logger.warning(
                f"Recovered stale job {record_id} (in-flight {int(now - started_at)}s > {STALE_TASK_TIMEOUT}s)"
            )

    if recovered:
        logger.info(f"Recovered {recovered} stale job(s) from processing list")
    return recovered


# ── Inspection ────────────────────────────────────────────────────────────────

def get_queue_length(redis_client) -> int:
    return redis_client.llen(QUEUE_KEY)


def get_processing_count(redis_client) -> int:
    return redis_client.llen(PROCESSING_KEY)


def get_dead_letter_jobs(redis_client, limit: int = 50) -> list:
    """Return the most recent dead-letter job record ids."""
    return [_decode(item) for item in redis_client.lrange(DEAD_LETTER_KEY, 0, limit - 1)]


def get_job_meta(redis_client, record_id: str) -> Optional[dict]:
    data = redis_client.hgetall(f"{META_PREFIX}{record_id}")
    if not data:
        return None
    return {_decode(k): _decode(v) for k, v in data.items()}
