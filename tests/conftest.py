"""
Shared fixtures: scripted provider adapters, in-memory storage and fully
wired services that run without network, Redis or Supabase.
"""

import base64
import threading

import httpx
import pytest

from mediaflow import config, fallback_limiter, metrics
from mediaflow.dispatcher import ThreadPoolDispatcher
from mediaflow.errors import ConfigurationError, UploadError
from mediaflow.models import (
    ExecuteOptions,
    ExecutionPlan,
    GenerationStart,
    JobStatus,
    ProviderCapabilities,
    ProviderJobStatus,
    WaitingStrategy,
)
from mediaflow.graph import Pipeline
from mediaflow.services import build_services
from mediaflow.store import MemoryExecutionStore

AUDIO_BYTES = b"ID3" + bytes(range(256)) * 2
AUDIO_BASE64 = base64.b64encode(AUDIO_BYTES).decode("ascii")


class FakeAdapter:
    """
    Provider adapter whose outcomes are scripted per prompt/text or model id.

    Unscripted jobs complete with a Replicate-style `output` URL.
    """

    def __init__(self, name: str, strategy: WaitingStrategy = WaitingStrategy.POLLING):
        self.name = name
        self.strategy = strategy
        self.calls: list[dict] = []
        self.status_polls = 0
        self._outcomes: dict[str, tuple] = {}
        self._jobs: dict[str, tuple] = {}
        self._lock = threading.Lock()

    def script(self, key: str, raw=None, status: JobStatus = JobStatus.COMPLETED, error=None):
        self._outcomes[key] = (status, raw or {}, error)

    def _outcome_for(self, model_id: str, params: dict) -> tuple:
        for key in (params.get("prompt"), params.get("text"), model_id):
            if key is not None and key in self._outcomes:
                return self._outcomes[key]
        return JobStatus.COMPLETED, {"status": "succeeded", "output": f"https://x/{model_id}.mp4"}, None

    def start_generation(self, model_id, params, webhook_url=None):
        with self._lock:
            self.calls.append({"model_id": model_id, "params": params, "webhook_url": webhook_url})
            provider_job_id = f"{self.name}-{len(self.calls)}"
            self._jobs[provider_job_id] = self._outcome_for(model_id, params)
        return GenerationStart(provider_job_id=provider_job_id, waiting_strategy=self.strategy)

    def get_job_status(self, provider_job_id):
        with self._lock:
            self.status_polls += 1
            status, _, error = self._jobs[provider_job_id]
        return ProviderJobStatus(status=status, error=error)

    def get_raw_job_response(self, provider_job_id):
        return self._jobs[provider_job_id][1]

    def get_capabilities(self):
        return ProviderCapabilities(default_strategy=self.strategy)


class FakeProviders:
    """Stands in for ProviderFactory; records which credential each lookup used."""

    def __init__(self, adapters: dict[str, FakeAdapter]):
        self.adapters = adapters
        self.requested: list[tuple] = []

    def get_provider(self, provider, api_key=None):
        self.requested.append((provider, api_key))
        if provider not in self.adapters:
            raise ConfigurationError(f"Unsupported provider: {provider}")
        return self.adapters[provider]


class FakeStorage:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.uploads: dict[str, tuple] = {}

    def upload(self, path, data, content_type="application/octet-stream"):
        if self.fail:
            raise UploadError(f"Upload to storage failed for {path}: bucket unavailable")
        self.uploads[path] = (data, content_type)
        return f"https://storage.test/{path}"


class RecordingDispatcher:
    """Accepts submissions without running them."""

    def __init__(self):
        self.submitted: list[tuple] = []
        self.runner = None

    def bind(self, runner):
        self.runner = runner

    def submit(self, record_id, operation, execution_id=""):
        self.submitted.append((record_id, operation, execution_id))

    def shutdown(self, wait=True):
        pass


class RecordingNotifier:
    def __init__(self):
        self.scheduled: list[str] = []

    def schedule(self, execution_id):
        self.scheduled.append(execution_id)

    def shutdown(self, wait=True):
        pass


# ── Hygiene ──────────────────────────────────────────────────────────────────

@pytest.fixture(autouse=True)
def reset_process_state(monkeypatch):
    """Fresh metrics, limiter and auth settings for every test"""
    metrics.reset()
    fallback_limiter.reset()
    monkeypatch.setattr(config, "MEDIAFLOW_API_KEYS", [])
    monkeypatch.setattr(config, "ENVIRONMENT", "development")
    monkeypatch.setattr(config, "API_BASE_URL", "https://api.test")
    yield
    metrics.reset()
    fallback_limiter.reset()


# ── Components ───────────────────────────────────────────────────────────────

@pytest.fixture
def store():
    return MemoryExecutionStore()


@pytest.fixture
def storage():
    return FakeStorage()


@pytest.fixture
def adapters():
    """One scripted adapter per provider; tests adjust strategy and outcomes"""
    return {
        "replicate": FakeAdapter("replicate"),
        "fal": FakeAdapter("fal"),
        "elevenlabs": FakeAdapter("elevenlabs", WaitingStrategy.SYNCHRONOUS),
        "hume": FakeAdapter("hume", WaitingStrategy.SYNCHRONOUS),
    }


@pytest.fixture
def providers(adapters):
    return FakeProviders(adapters)


@pytest.fixture
def sleeps():
    """Every poll-loop sleep, in seconds"""
    return []


@pytest.fixture
def render_requests():
    return []


@pytest.fixture
def render_client(render_requests):
    """Render service double: echoes a tiny MP4 and records each request"""

    def handler(request: httpx.Request) -> httpx.Response:
        render_requests.append(request)
        return httpx.Response(200, content=b"\x00\x00\x00\x18ftypmp42", headers={"Content-Type": "video/mp4"})

    client = httpx.Client(transport=httpx.MockTransport(handler))
    yield client
    client.close()


@pytest.fixture
def make_services(store, providers, storage, sleeps, render_client):
    """Build wired services; pass a dispatcher or notifier to override the defaults"""
    built = []

    def _make(dispatcher=None, notifier=None, storage_override=None):
        services = build_services(
            store=store,
            providers=providers,
            storage=storage_override or storage,
            dispatcher=dispatcher or ThreadPoolDispatcher(max_workers=4),
            notifier=notifier or RecordingNotifier(),
            sleep=sleeps.append,
            render_client=render_client,
        )
        built.append(services)
        return services

    yield _make
    for services in built:
        services.shutdown()


@pytest.fixture
def services(make_services):
    return make_services()


@pytest.fixture
def run_plan(services):
    """Submit a pipeline or wire plan and block until the pool is idle; returns the status view"""

    def _run(plan, **options):
        if isinstance(plan, Pipeline):
            plan = plan.to_plan()
        execution = services.orchestrator.create_execution(
            ExecutionPlan.model_validate(plan), ExecuteOptions(**options)
        )
        assert services.dispatcher.join(timeout=10)
        return services.orchestrator.get_status(execution.id)

    return _run
