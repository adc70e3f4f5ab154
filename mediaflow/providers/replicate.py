"""
Replicate predictions API.

  POST /v1/models/{owner}/{name}/predictions   (official models, no version)
  POST /v1/predictions {version}               (model ids pinned as "owner/name:version")
  GET  /v1/predictions/{id}

Replicate calls back on `webhook` when a prediction finishes; polling the
prediction works for every model.
"""

import logging
from typing import Any, Optional

import requests

from ..models import (
    GenerationStart,
    ProviderCapabilities,
    ProviderJobStatus,
    WaitingStrategy,
)
from ..registry import normalize_status
from .base import ProviderAdapter
from .http import request_with_backoff

logger = logging.getLogger(__name__)

REPLICATE_API_BASE = "https://api.replicate.com/v1"


class ReplicateAdapter(ProviderAdapter):
    name = "replicate"
    display_name = "Replicate"
    capabilities = ProviderCapabilities(
        supports_webhooks=True,
        supports_polling=True,
        default_strategy=WaitingStrategy.WEBHOOK,
    )

    def _headers(self) -> dict:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    def start_generation(
        self, model_id: str, params: dict[str, Any], webhook_url: Optional[str] = None
    ) -> GenerationStart:
        body: dict[str, Any] = {"input": params}
        if webhook_url:
            body["webhook"] = webhook_url
            body["webhook_events_filter"] = ["completed"]

        if ":" in model_id:
            _, version = model_id.split(":", 1)
            body["version"] = version
            url = f"{REPLICATE_API_BASE}/predictions"
        else:
            url = f"{REPLICATE_API_BASE}/models/{model_id}/predictions"

        logger.info(f"[Replicate] Creating prediction for {model_id} (webhook={'yes' if webhook_url else 'no'})")
        try:
            resp = request_with_backoff(
                self.session, "POST", url, tag="Replicate", json=body, headers=self._headers()
            )
        except requests.exceptions.RequestException as e:
            raise self._provider_error("prediction create", e) from e

        prediction = resp.json()
        prediction_id = prediction.get("id")
        if not prediction_id:
            raise self._provider_error("prediction create", ValueError(f"no id in response: {prediction}"))

        strategy = WaitingStrategy.WEBHOOK if webhook_url else WaitingStrategy.POLLING
        logger.info(f"[Replicate] Prediction {prediction_id} started ({strategy.value})")
        return GenerationStart(provider_job_id=prediction_id, waiting_strategy=strategy)

    def get_raw_job_response(self, provider_job_id: str) -> dict[str, Any]:
        try:
            resp = request_with_backoff(
                self.session,
                "GET",
                f"{REPLICATE_API_BASE}/predictions/{provider_job_id}",
                tag="Replicate",
                headers=self._headers(),
            )
        except requests.exceptions.RequestException as e:
            raise self._provider_error("prediction status", e) from e
        return resp.json()

    def get_job_status(self, provider_job_id: str) -> ProviderJobStatus:
        prediction = self.get_raw_job_response(provider_job_id)
        status = normalize_status(prediction.get("status"))
        return ProviderJobStatus(
            status=status,
            result=prediction.get("output"),
            error=prediction.get("error"),
        )
