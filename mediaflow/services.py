"""
Wiring of the server-side components.

    store ── orchestrator ── dispatcher ── worker.run
                  │                          │
               notifier                providers / storage

Supabase is used for the store when configured, otherwise the in-memory
store. Ready jobs go through the Redis queue only when both Redis and a
durable store are available, since any replica may pick a job up.
"""

import logging
from dataclasses import dataclass
from typing import Optional, Union

import redis

from . import config
from .dispatcher import RedisDispatcher, ThreadPoolDispatcher
from .notifier import WebhookNotifier
from .orchestrator import ExecutionOrchestrator
from .providers import ProviderFactory
from .storage import ObjectStorage
from .store import ExecutionStore, MemoryExecutionStore, SupabaseExecutionStore
from .worker import JobWorker

logger = logging.getLogger(__name__)

# ── Lazy Redis client ─────────────────────────────────────────────────────────
_redis_client = None


def get_redis():
    """Get or create a Redis client. Returns None if Redis is not configured or unreachable."""
    global _redis_client
    if _redis_client is None and config.REDIS_URL:
        client = redis.from_url(config.REDIS_URL, decode_responses=False)
        try:
            client.ping()
            _redis_client = client
            logger.info(f"Redis connected: {config.REDIS_URL[:30]}...")
        except redis.RedisError as e:
            logger.warning(f"Redis connection failed: {e}; using in-process dispatch")
    return _redis_client


@dataclass
class Services:
    store: ExecutionStore
    orchestrator: ExecutionOrchestrator
    worker: JobWorker
    dispatcher: Union[ThreadPoolDispatcher, RedisDispatcher]
    notifier: WebhookNotifier
    redis: Optional[object] = None

    @property
    def store_backend(self) -> str:
        return "supabase" if isinstance(self.store, SupabaseExecutionStore) else "memory"

    def start(self):
        if isinstance(self.dispatcher, RedisDispatcher):
            self.dispatcher.start()

    def shutdown(self):
        self.dispatcher.shutdown(wait=False)
        self.notifier.shutdown(wait=False)


def build_services(
    store: Optional[ExecutionStore] = None,
    providers: Optional[ProviderFactory] = None,
    storage=None,
    dispatcher=None,
    notifier: Optional[WebhookNotifier] = None,
    redis_client=None,
    **worker_options,
) -> Services:
    if store is None:
        if config.SUPABASE_URL and config.SUPABASE_SERVICE_ROLE_KEY:
            store = SupabaseExecutionStore()
        else:
            logger.warning("Supabase not configured; executions are kept in memory only")
            store = MemoryExecutionStore()

    if dispatcher is None:
        redis_client = redis_client or get_redis()
        if redis_client is not None and isinstance(store, SupabaseExecutionStore):
            dispatcher = RedisDispatcher(redis_client)
        else:
            dispatcher = ThreadPoolDispatcher()

    notifier = notifier or WebhookNotifier(store)
    orchestrator = ExecutionOrchestrator(store, dispatcher, notifier)
    worker = JobWorker(
        store,
        orchestrator,
        providers or ProviderFactory(),
        storage or ObjectStorage(),
        **worker_options,
    )
    dispatcher.bind(worker.run)

    logger.info(
        f"Services ready: store={type(store).__name__}, dispatcher={type(dispatcher).__name__}"
    )
    return Services(
        store=store,
        orchestrator=orchestrator,
        worker=worker,
        dispatcher=dispatcher,
        notifier=notifier,
        redis=redis_client,
    )
