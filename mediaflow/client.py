"""
Client execution handle.

    execution = execute(pipeline)                       # blocks until terminal
    execution = execute(pipeline, ExecuteConfig(webhook_url="https://..."))
                                                        # returns after submission

Blocking mode polls GET {api_url}/{executionId}/status every poll_interval
seconds and reports PipelineProgress to an optional callback.
"""

import logging
import os
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Union

import httpx

from .config import PROVIDER_KEY_ENV
from .errors import ExecutionFailedError, MediaflowError
from .graph import Pipeline, plan_providers
from .models import (
    TERMINAL_EXECUTION_STATUSES,
    ExecutionStatus,
    ExecutionStatusResponse,
    PipelineProgress,
)

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "http://localhost:8000/execute"
DEFAULT_POLL_INTERVAL = 2.5
REQUEST_TIMEOUT = 30

ProgressCallback = Callable[[PipelineProgress], None]


def provider_keys_from_env() -> dict[str, str]:
    keys = {}
    for provider, env_var in PROVIDER_KEY_ENV.items():
        value = os.environ.get(env_var)
        if value:
            keys[provider] = value
    return keys


@dataclass
class ExecuteConfig:
    api_url: str = field(default_factory=lambda: os.environ.get("MEDIAFLOW_API_URL", DEFAULT_API_URL))
    api_key: Optional[str] = field(default_factory=lambda: os.environ.get("MEDIAFLOW_API_KEY"))
    webhook_url: Optional[str] = None
    webhook_secret: Optional[str] = None
    base_execution_id: Optional[str] = None
    # None → read from the environment
    provider_api_keys: Optional[dict[str, str]] = None
    poll_interval: float = DEFAULT_POLL_INTERVAL
    # None → wait indefinitely
    timeout: Optional[float] = None

    def headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.api_key}"} if self.api_key else {}


class MediaExecution:

    def __init__(
        self,
        execution_id: str,
        config: ExecuteConfig,
        http_client: Optional[httpx.Client] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.id = execution_id
        self.config = config
        self.status = ExecutionStatus.PENDING
        self.result: Optional[dict[str, Any]] = None
        self.error: Optional[str] = None
        self._http = http_client
        self._sleep = sleep

    def __repr__(self) -> str:
        return f"MediaExecution(id={self.id!r}, status={self.status.value!r})"

    def get_status(self) -> ExecutionStatusResponse:
        status = get_execution_status(self.id, self.config, self._http)
        self.status = status.status
        self.result = status.result
        self.error = status.error
        return status

    def wait_for_completion(self, progress_callback: Optional[ProgressCallback] = None) -> dict[str, Any]:
        """
        Poll until the execution is terminal and return its result.

        Raises:
            ExecutionFailedError: the execution ended `failed`.
            TimeoutError:         config.timeout elapsed first.
        """
        deadline = None if self.config.timeout is None else time.monotonic() + self.config.timeout

        while True:
            status = self.get_status()
            if progress_callback is not None:
                progress_callback(PipelineProgress(
                    current_job=status.current_job,
                    progress=status.progress,
                    total_jobs=status.total_jobs,
                    completed_jobs=status.completed_jobs,
                ))

            if status.status in TERMINAL_EXECUTION_STATUSES:
                break
            if deadline is not None and time.monotonic() >= deadline:
                raise TimeoutError(f"Execution {self.id} still {status.status.value} after {self.config.timeout}s")
            self._sleep(self.config.poll_interval)

        if status.status == ExecutionStatus.FAILED:
            raise ExecutionFailedError(status.error or "Pipeline execution failed", execution_id=self.id)
        return status.result or {}


def _request(method: str, url: str, config: ExecuteConfig, http_client: Optional[httpx.Client], **kwargs) -> httpx.Response:
    owns_client = http_client is None
    client = http_client or httpx.Client(timeout=REQUEST_TIMEOUT)
    try:
        return client.request(method, url, headers=config.headers(), **kwargs)
    except httpx.HTTPError as e:
        raise MediaflowError(
            f"Failed to connect to API at {url}: {e}. Make sure the API server is running and api_url is correct."
        ) from e
    finally:
        if owns_client:
            client.close()


def _error_detail(resp: httpx.Response) -> str:
    try:
        body = resp.json()
    except ValueError:
        return resp.text[:300] or resp.reason_phrase
    detail = body.get("detail") or body.get("error") or body.get("message")
    return str(detail) if detail else resp.reason_phrase


def _filter_provider_keys(plan: dict[str, Any], keys: dict[str, str]) -> dict[str, str]:
    """Only send keys for providers the plan actually uses."""
    used = plan_providers(plan)
    return {provider: key for provider, key in keys.items() if provider in used and key}


def execute(
    plan_or_pipeline: Union[Pipeline, dict[str, Any]],
    config: Optional[ExecuteConfig] = None,
    progress_callback: Optional[ProgressCallback] = None,
    http_client: Optional[httpx.Client] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> MediaExecution:
    """Submit a plan; wait for it unless a webhook URL is configured."""
    config = config or ExecuteConfig()
    if isinstance(plan_or_pipeline, Pipeline):
        plan = plan_or_pipeline.to_plan(config.base_execution_id)
    else:
        plan = dict(plan_or_pipeline)

    keys = config.provider_api_keys if config.provider_api_keys is not None else provider_keys_from_env()
    options: dict[str, Any] = {}
    if config.webhook_url:
        options["webhook"] = config.webhook_url
    if config.webhook_secret:
        options["webhookSecret"] = config.webhook_secret
    if config.base_execution_id:
        options["baseExecutionId"] = config.base_execution_id
    filtered = _filter_provider_keys(plan, keys)
    if filtered:
        options["providerApiKeys"] = filtered

    resp = _request("POST", config.api_url, config, http_client, json={"executionPlan": plan, "options": options})
    if resp.status_code >= 400:
        raise MediaflowError(f"Pipeline execution failed: {_error_detail(resp)} ({resp.status_code})")

    body = resp.json()
    execution = MediaExecution(body["executionId"], config, http_client, sleep)
    execution.status = ExecutionStatus(body.get("status", "pending"))
    logger.info(f"Submitted execution {execution.id} ({len(plan.get('jobs', []))} jobs)")

    if config.webhook_url:
        return execution

    execution.wait_for_completion(progress_callback)
    return execution


def get_execution_status(
    execution_id: str,
    config: Optional[ExecuteConfig] = None,
    http_client: Optional[httpx.Client] = None,
) -> ExecutionStatusResponse:
    config = config or ExecuteConfig()
    url = f"{config.api_url.rstrip('/')}/{execution_id}/status"
    resp = _request("GET", url, config, http_client)
    if resp.status_code >= 400:
        raise MediaflowError(f"Failed to fetch status: {_error_detail(resp)} ({resp.status_code})")
    return ExecutionStatusResponse.model_validate(resp.json())
