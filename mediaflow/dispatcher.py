"""
Worker pools that run claimed jobs.

  ThreadPoolDispatcher — in-process bounded pool with per-operation caps.
                         Used when Redis is not configured, and in tests.
  RedisDispatcher      — pushes job ids onto the reliable Redis queue;
                         consumer threads (in this or any other replica)
                         pull and run them.

Both take a `runner(record_id)` that never raises for job-level failures;
the worker records those in the store itself.
"""

import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Callable, Optional

from . import config
from . import metrics
from . import queue as task_queue

logger = logging.getLogger(__name__)

Runner = Callable[[str], None]


class ThreadPoolDispatcher:

    def __init__(self, max_workers: int = config.MAX_WORKERS, operation_limits: Optional[dict[str, int]] = None):
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="mediaflow-job")
        self._limits = {
            op: threading.BoundedSemaphore(n)
            for op, n in (operation_limits if operation_limits is not None else config.OPERATION_CONCURRENCY).items()
        }
        self._runner: Optional[Runner] = None
        self._lock = threading.Lock()
        self._pending: set[Future] = set()
        self._idle = threading.Condition(self._lock)

    def bind(self, runner: Runner):
        self._runner = runner

    def submit(self, record_id: str, operation: str, execution_id: str = ""):
        if self._runner is None:
            raise RuntimeError("Dispatcher has no runner bound")
        with self._lock:
            future = self._executor.submit(self._run, record_id, operation)
            self._pending.add(future)
            metrics.set_gauge("active_jobs", len(self._pending))
        future.add_done_callback(self._done)

    def _run(self, record_id: str, operation: str):
        limit = self._limits.get(operation)
        if limit is None:
            self._runner(record_id)
            return
        with limit:
            self._runner(record_id)

    def _done(self, future: Future):
        exc = future.exception()
        if exc is not None:
            logger.error(f"Job runner crashed: {exc}", exc_info=exc)
        with self._lock:
            self._pending.discard(future)
            metrics.set_gauge("active_jobs", len(self._pending))
            if not self._pending:
                self._idle.notify_all()

    @property
    def active_jobs(self) -> int:
        with self._lock:
            return len(self._pending)

    def join(self, timeout: Optional[float] = None) -> bool:
        """Block until no job is running or queued (including ones submitted meanwhile)."""
        deadline = None if timeout is None else time.monotonic() + timeout
        with self._lock:
            while self._pending:
                remaining = None if deadline is None else deadline - time.monotonic()
                if remaining is not None and remaining <= 0:
                    return False
                self._idle.wait(remaining)
        return True

    def shutdown(self, wait: bool = True):
        self._executor.shutdown(wait=wait)


class RedisDispatcher:

    def __init__(self, redis_client, consumers: int = config.MAX_WORKERS):
        self.redis = redis_client
        self._consumers = consumers
        self._runner: Optional[Runner] = None
        self._stop = threading.Event()
        self._threads: list[threading.Thread] = []

    def bind(self, runner: Runner):
        self._runner = runner

    def submit(self, record_id: str, operation: str, execution_id: str = ""):
        task_queue.enqueue_job(self.redis, record_id, operation, execution_id)

    def start(self):
        recovered = task_queue.recover_stale_jobs(self.redis)
        if recovered:
            logger.info(f"Recovered {recovered} stale job(s) from previous session")
        for i in range(self._consumers):
            t = threading.Thread(target=self._consume_loop, name=f"mediaflow-consumer-{i}", daemon=True)
            t.start()
            self._threads.append(t)
        logger.info(f"Queue consumers launched ({self._consumers} threads, reliable mode)")

    def _consume_loop(self):
        while not self._stop.is_set():
            try:
                record_id = task_queue.dequeue_job(self.redis, timeout=5)
                if record_id is None:
                    continue
                try:
                    self._runner(record_id)
                    task_queue.ack_job(self.redis, record_id)
                except Exception as task_err:
                    task_queue.dead_letter_job(self.redis, record_id, str(task_err))
            except Exception as e:
                logger.error(f"Queue consumer loop error: {e}")
                time.sleep(2)

    def shutdown(self, wait: bool = True):
        self._stop.set()
        if wait:
            for t in self._threads:
                t.join(timeout=10)
