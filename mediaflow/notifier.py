"""
Outbound execution webhooks.

When an execution reaches a terminal status and the caller supplied
`options.webhook`, the terminal status view is POSTed there, signed with
HMAC-SHA256 over the raw body when a `webhookSecret` was supplied:

    X-Webhook-Signature: sha256=<hex>

Delivery is retried with exponential backoff; every attempt updates the
execution's webhook_delivery_* fields.
"""

import hashlib
import hmac
import json
import logging
import random
import time
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Callable, Optional

import httpx

from .models import TERMINAL_EXECUTION_STATUSES, utc_now_iso
from .orchestrator import build_status
from .store import ExecutionStore

logger = logging.getLogger(__name__)

MAX_DELIVERY_ATTEMPTS = 5
BASE_DELAY = 1.0
JITTER_MAX = 0.5
DELIVERY_TIMEOUT = 15
USER_AGENT = "mediaflow-webhooks/1.0"


def sign_payload(body: bytes, secret: str) -> str:
    digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return f"sha256={digest}"


def verify_signature(body: bytes, secret: str, signature: str) -> bool:
    """Receiver-side check; constant-time compare."""
    return hmac.compare_digest(sign_payload(body, secret), signature or "")


class WebhookNotifier:

    def __init__(
        self,
        store: ExecutionStore,
        client: Optional[httpx.Client] = None,
        max_attempts: int = MAX_DELIVERY_ATTEMPTS,
        sleep: Callable[[float], None] = time.sleep,
        max_workers: int = 2,
    ):
        self.store = store
        self._client = client
        self.max_attempts = max_attempts
        self.sleep = sleep
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="mediaflow-webhook")

    @property
    def client(self) -> httpx.Client:
        if self._client is None:
            self._client = httpx.Client(timeout=DELIVERY_TIMEOUT)
        return self._client

    def schedule(self, execution_id: str) -> Future:
        return self._executor.submit(self.deliver, execution_id)

    def deliver(self, execution_id: str) -> bool:
        """Deliver the terminal status of one execution. Returns True once acknowledged (2xx)."""
        execution = self.store.get_execution(execution_id)
        if execution is None or not execution.webhook_url:
            return False
        if execution.status not in TERMINAL_EXECUTION_STATUSES:
            logger.warning(f"[{execution_id}] Not terminal ({execution.status.value}), webhook not sent")
            return False
        if execution.webhook_delivered_at:
            return True

        view = build_status(execution, self.store.list_jobs(execution_id))
        body = json.dumps(view.model_dump(mode="json", by_alias=True)).encode("utf-8")
        headers = {"Content-Type": "application/json", "User-Agent": USER_AGENT}
        if execution.webhook_secret:
            headers["X-Webhook-Signature"] = sign_payload(body, execution.webhook_secret)

        attempts = execution.webhook_delivery_attempts
        while attempts < self.max_attempts:
            attempts += 1
            logger.info(
                f"[{execution_id}] Delivering webhook to {execution.webhook_url} "
                f"(attempt {attempts}/{self.max_attempts})"
            )
            try:
                resp = self.client.post(execution.webhook_url, content=body, headers=headers)
                if resp.is_success:
                    self.store.update_execution(
                        execution_id,
                        webhook_delivered_at=utc_now_iso(),
                        webhook_delivery_attempts=attempts,
                        webhook_delivery_error=None,
                    )
                    logger.info(f"[{execution_id}] Webhook delivered ({resp.status_code})")
                    return True
                error = f"Webhook delivery failed: {resp.status_code} {resp.text[:200]}"
            except httpx.HTTPError as e:
                error = f"Webhook delivery failed: {e}"

            logger.warning(f"[{execution_id}] {error}")
            self.store.update_execution(
                execution_id,
                webhook_delivery_attempts=attempts,
                webhook_delivery_error=error[:500],
            )
            if attempts < self.max_attempts:
                self.sleep(BASE_DELAY * (2 ** (attempts - 1)) + random.uniform(0, JITTER_MAX))

        logger.error(f"[{execution_id}] Webhook delivery gave up after {attempts} attempts")
        return False

    def shutdown(self, wait: bool = True):
        self._executor.shutdown(wait=wait)
