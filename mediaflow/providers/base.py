"""
Provider adapter interface.

Every provider, whether it calls back, must be polled, or answers inline,
is driven through the same four calls:

    start_generation(model_id, params, webhook_url) -> GenerationStart
    get_job_status(provider_job_id)                 -> ProviderJobStatus
    get_raw_job_response(provider_job_id)           -> dict (fed to the model's parser)
    get_capabilities()                              -> ProviderCapabilities

Synchronous providers are wrapped by `SynchronousProviderAdapter`: the call
blocks, the artifact is cached under a locally minted id, and the first
status poll reads it back as `completed`.
"""

import logging
import threading
import uuid
from abc import ABC, abstractmethod
from typing import Any, Optional

import requests

from .. import config
from ..errors import ConfigurationError, ProviderError
from ..models import (
    GenerationStart,
    JobStatus,
    ProviderCapabilities,
    ProviderJobStatus,
    WaitingStrategy,
)

logger = logging.getLogger(__name__)


class ProviderAdapter(ABC):
    name: str = ""
    display_name: str = ""
    capabilities = ProviderCapabilities()

    def __init__(self, api_key: Optional[str] = None, session: Optional[requests.Session] = None):
        self.api_key = api_key or config.provider_key_from_env(self.name)
        if not self.api_key:
            env_var = config.PROVIDER_KEY_ENV.get(self.name, f"{self.name.upper()}_API_KEY")
            raise ConfigurationError(
                f"{self.display_name or self.name} API key is required. Please configure your "
                f"{self.display_name or self.name} API key in the dashboard, pass it in "
                f"providerApiKeys, or export {env_var} in your environment."
            )
        self.session = session or requests.Session()

    @abstractmethod
    def start_generation(
        self, model_id: str, params: dict[str, Any], webhook_url: Optional[str] = None
    ) -> GenerationStart:
        ...

    @abstractmethod
    def get_job_status(self, provider_job_id: str) -> ProviderJobStatus:
        ...

    @abstractmethod
    def get_raw_job_response(self, provider_job_id: str) -> dict[str, Any]:
        ...

    def get_capabilities(self) -> ProviderCapabilities:
        return self.capabilities

    def _provider_error(self, action: str, err: Exception) -> ProviderError:
        detail = str(err)
        response = getattr(err, "response", None)
        if response is not None:
            try:
                body = response.json()
                detail = body.get("detail") or body.get("error") or body.get("message") or detail
            except ValueError:
                detail = response.text[:300] or detail
        return ProviderError(f"{self.display_name or self.name} {action} failed: {detail}")


class SynchronousProviderAdapter(ProviderAdapter):
    """Adapter for providers whose generate call returns the artifact directly."""

    capabilities = ProviderCapabilities(
        supports_webhooks=False,
        supports_polling=True,
        default_strategy=WaitingStrategy.SYNCHRONOUS,
    )

    def __init__(self, api_key: Optional[str] = None, session: Optional[requests.Session] = None):
        super().__init__(api_key, session)
        self._lock = threading.Lock()
        self._completed: dict[str, dict[str, Any]] = {}

    @abstractmethod
    def generate(self, model_id: str, params: dict[str, Any]) -> dict[str, Any]:
        """Run the blocking provider call; return the raw result payload."""

    def start_generation(
        self, model_id: str, params: dict[str, Any], webhook_url: Optional[str] = None
    ) -> GenerationStart:
        result = self.generate(model_id, params)
        job_id = f"{self.name}-{uuid.uuid4()}"
        with self._lock:
            self._completed[job_id] = {"status": "completed", **result}
        logger.info(f"[{self.display_name}] Generated {model_id} inline as {job_id}")
        return GenerationStart(provider_job_id=job_id, waiting_strategy=WaitingStrategy.SYNCHRONOUS)

    def get_job_status(self, provider_job_id: str) -> ProviderJobStatus:
        with self._lock:
            result = self._completed.get(provider_job_id)
            if result is not None and result.get("status") == "failed":
                # Terminal: nothing will read this entry again
                self._completed.pop(provider_job_id)
        if result is None:
            return ProviderJobStatus(status=JobStatus.FAILED, error="Job not found")
        if result.get("status") == "failed":
            return ProviderJobStatus(status=JobStatus.FAILED, error=result.get("error"))
        return ProviderJobStatus(status=JobStatus.COMPLETED, result=result, progress=100)

    def get_raw_job_response(self, provider_job_id: str) -> dict[str, Any]:
        """Hand over the cached result; the entry is released on read."""
        with self._lock:
            result = self._completed.pop(provider_job_id, None)
        if result is None:
            return {"status": "failed", "error": "Job not found"}
        return result
