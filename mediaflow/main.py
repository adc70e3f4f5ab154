import os
import time
import logging
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI

from . import config
from . import metrics
from . import queue as task_queue
from .auth_middleware import ApiKeyAuthMiddleware
from .dispatcher import ThreadPoolDispatcher
from .routes import execute_router, webhook_router
from .services import Services, build_services

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


def create_app(services: Optional[Services] = None) -> FastAPI:
    """Build the API. Pass `services` to run against injected components (tests)."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("mediaflow starting up...")
        metrics.set_gauge("start_time", time.time())
        owns_services = app.state.services is None
        if owns_services:
            app.state.services = build_services()
        app.state.services.start()
        yield
        logger.info("mediaflow shutting down...")
        if owns_services:
            app.state.services.shutdown()

    app = FastAPI(title="mediaflow", lifespan=lifespan)
    app.state.services = services
    app.add_middleware(ApiKeyAuthMiddleware)
    app.include_router(execute_router)
    app.include_router(webhook_router)

    @app.get("/health")
    def health_check():
        """Liveness plus which backends are wired in."""
        current = app.state.services
        return {
            "status": "ok" if current is not None else "starting",
            "store": current.store_backend if current else None,
            "redis": bool(current and current.redis is not None),
            "environment": config.ENVIRONMENT,
        }

    @app.get("/metrics")
    def metrics_endpoint():
        """Return a snapshot of all orchestrator metrics."""
        current = app.state.services
        if current is not None and current.redis is not None:
            try:
                metrics.set_gauge("queue_depth", task_queue.get_queue_length(current.redis))
                metrics.set_gauge("processing_count", task_queue.get_processing_count(current.redis))
                metrics.set_gauge("dead_letter_count", len(task_queue.get_dead_letter_jobs(current.redis)))
            except Exception as e:
                logger.warning(f"Queue gauges unavailable: {e}")
        if current is not None and isinstance(current.dispatcher, ThreadPoolDispatcher):
            metrics.set_gauge("active_jobs", current.dispatcher.active_jobs)
        return metrics.get_snapshot()

    return app


app = create_app()


if __name__ == "__main__":
    port = int(os.environ.get("PORT", 8000))
    uvicorn.run("mediaflow.main:app", host="0.0.0.0", port=port)
