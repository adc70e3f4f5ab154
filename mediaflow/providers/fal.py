"""
fal.ai queue REST API.

fal.ai queue protocol:
  POST /{endpoint}?fal_webhook=...                 → { request_id, ... }
  GET  /{app}/requests/{request_id}/status         → { status: IN_QUEUE|IN_PROGRESS|COMPLETED }
  GET  /{app}/requests/{request_id}                → result payload

`{app}` is the first two path segments of the endpoint
(`veed/fabric-1.0/fast` → `veed/fabric-1.0`). The provider job id carries the
endpoint so later status calls can rebuild the URLs: `"{endpoint}::{request_id}"`.
"""

import logging
from typing import Any, Optional

import requests

from ..models import (
    GenerationStart,
    JobStatus,
    ProviderCapabilities,
    ProviderJobStatus,
    WaitingStrategy,
)
from ..registry import normalize_status
from .base import ProviderAdapter
from .http import request_with_backoff

logger = logging.getLogger(__name__)

FAL_API_BASE = "https://queue.fal.run"
JOB_ID_SEPARATOR = "::"


def _app_id(endpoint: str) -> str:
    return "/".join(endpoint.split("/")[:2])


def split_job_id(provider_job_id: str) -> tuple[str, str]:
    if JOB_ID_SEPARATOR not in provider_job_id:
        raise ValueError(f"Invalid fal job id: {provider_job_id}")
    endpoint, request_id = provider_job_id.split(JOB_ID_SEPARATOR, 1)
    return endpoint, request_id


class FalAdapter(ProviderAdapter):
    name = "fal"
    display_name = "fal.ai"
    capabilities = ProviderCapabilities(
        supports_webhooks=True,
        supports_polling=True,
        default_strategy=WaitingStrategy.POLLING,
    )

    def _headers(self) -> dict:
        return {
            "Authorization": f"Key {self.api_key}",
            "Content-Type": "application/json",
        }

    def start_generation(
        self, model_id: str, params: dict[str, Any], webhook_url: Optional[str] = None
    ) -> GenerationStart:
        query = {"fal_webhook": webhook_url} if webhook_url else None
        logger.info(f"[fal] Submitting to {model_id}...")
        try:
            resp = request_with_backoff(
                self.session,
                "POST",
                f"{FAL_API_BASE}/{model_id}",
                tag="fal",
                json=params,
                params=query,
                headers=self._headers(),
            )
        except requests.exceptions.RequestException as e:
            raise self._provider_error("queue submit", e) from e

        request_id = resp.json().get("request_id")
        if not request_id:
            raise self._provider_error("queue submit", ValueError(f"no request_id in response: {resp.text[:300]}"))

        logger.info(f"[fal] Queued: request_id={request_id}")
        strategy = WaitingStrategy.WEBHOOK if webhook_url else WaitingStrategy.POLLING
        return GenerationStart(
            provider_job_id=f"{model_id}{JOB_ID_SEPARATOR}{request_id}",
            waiting_strategy=strategy,
        )

    def _get(self, url: str, action: str) -> dict[str, Any]:
        try:
            resp = request_with_backoff(self.session, "GET", url, tag="fal", headers=self._headers())
        except requests.exceptions.RequestException as e:
            raise self._provider_error(action, e) from e
        return resp.json()

    def get_job_status(self, provider_job_id: str) -> ProviderJobStatus:
        endpoint, request_id = split_job_id(provider_job_id)
        status_data = self._get(
            f"{FAL_API_BASE}/{_app_id(endpoint)}/requests/{request_id}/status", "queue status"
        )
        status = normalize_status(status_data.get("status"))
        if status == JobStatus.FAILED:
            return ProviderJobStatus(status=status, error=status_data.get("error") or "Generation failed")
        return ProviderJobStatus(status=status, progress=status_data.get("progress"))

    def get_raw_job_response(self, provider_job_id: str) -> dict[str, Any]:
        endpoint, request_id = split_job_id(provider_job_id)
        status = self.get_job_status(provider_job_id)
        if status.status != JobStatus.COMPLETED:
            return {"status": status.status.value, "error": status.error, "request_id": request_id}

        result = self._get(f"{FAL_API_BASE}/{_app_id(endpoint)}/requests/{request_id}", "queue result")
        logger.info(f"[fal] Completed: request_id={request_id}")
        return {"status": "COMPLETED", "request_id": request_id, "output": result}
