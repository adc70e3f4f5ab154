"""
JobWorker — runs one claimed job to a terminal state.

Provider operations (generate*, removeBackground, removeImageBackground,
transcribe):
  1. Resolve the model and dependency tokens
  2. Map + validate options through the model registry
  3. start_generation on the provider adapter (webhook URL only for
     webhook-first models)
  4. Webhook → return; the inbound webhook completes the job
     Polling / synchronous → bounded poll loop, then complete_job

Render operations (merge, addSubtitles, replaceGreenScreen, layer) call the
media render service and upload the MP4 to object storage.

Every outcome goes through complete_job / fail_job, whose store writes are
conditional, then hands control back to the orchestrator.
"""

import logging
import time
from datetime import datetime, timezone
from typing import Any, Callable, Optional

import httpx

from . import config
from . import metrics
from . import render
from .dependencies import PRIMARY_INPUT, extract_media_url, iter_tokens, resolve_params
from .errors import (
    ExtractionError,
    JobTimeoutError,
    MediaflowError,
    ParameterValidationError,
    ProviderError,
)
from .models import (
    ExecutionRecord,
    JobProgress,
    JobRecord,
    JobStatus,
    MediaOutput,
    MediaType,
    OperationType,
    ParseResult,
    WaitingStrategy,
    utc_now_iso,
)
from .providers import ProviderAdapter, ProviderFactory
from .registry import (
    ModelRegistryEntry,
    get_model_info,
    parse_model_polling,
    parse_model_webhook,
    prepare_provider_options,
)
from .storage import decode_inline_payload, extension_for, is_inline_payload
from .store import ExecutionStore

logger = logging.getLogger(__name__)

# (interval seconds, max attempts) per output media type
POLL_BUDGETS: dict[MediaType, tuple[float, int]] = {
    MediaType.AUDIO: (1.0, 30),
    MediaType.IMAGE: (2.0, 60),
    MediaType.VIDEO: (2.0, 60),
    MediaType.TEXT: (2.0, 60),
}

RENDER_OPERATIONS = {
    OperationType.MERGE,
    OperationType.ADD_SUBTITLES,
    OperationType.REPLACE_GREEN_SCREEN,
    OperationType.LAYER,
}


class JobWorker:
    """
    Usage:
        worker = JobWorker(store, orchestrator, ProviderFactory(), ObjectStorage())
        dispatcher.bind(worker.run)
    """

    def __init__(
        self,
        store: ExecutionStore,
        orchestrator,
        providers: ProviderFactory,
        storage,
        sleep: Callable[[float], None] = time.sleep,
        poll_budgets: Optional[dict[MediaType, tuple[float, int]]] = None,
        render_client: Optional[httpx.Client] = None,
    ):
        self.store = store
        self.orchestrator = orchestrator
        self.providers = providers
        self.storage = storage
        self.sleep = sleep
        self.poll_budgets = poll_budgets or POLL_BUDGETS
        self.render_client = render_client

    # ═════════════════════════════════════════════════════════════════════
    # Entry point
    # ═════════════════════════════════════════════════════════════════════

    def run(self, record_id: str):
        job = self.store.get_job(record_id)
        if job is None:
            logger.warning(f"Job record {record_id} not found, skipping")
            return
        if job.is_terminal:
            logger.info(f"[{job.execution_id}] {job.job_id} already {job.status.value}, skipping")
            return

        execution = self.store.get_execution(job.execution_id)
        if execution is None:
            self.fail_job(job, f"Execution {job.execution_id} not found", "internal")
            return

        logger.info(f"[{execution.id}] Running {job.job_id} ({job.operation.value})")
        try:
            if job.operation in RENDER_OPERATIONS:
                self._run_render(job, execution)
            else:
                self._run_provider(job, execution)
        except MediaflowError as e:
            logger.warning(f"[{execution.id}] {job.job_id} failed ({e.kind}): {e}")
            self.fail_job(job, str(e), e.kind)
        except Exception as e:
            logger.error(f"[{execution.id}] {job.job_id} crashed: {e}", exc_info=True)
            self.fail_job(job, str(e) or e.__class__.__name__, "internal")

    # ═════════════════════════════════════════════════════════════════════
    # Provider operations
    # ═════════════════════════════════════════════════════════════════════

    def _run_provider(self, job: JobRecord, execution: ExecutionRecord):
        params = dict(job.params)
        model_id = params.pop("modelId", None) or job.model_id
        api_key = params.pop("apiKey", None)
        params.pop("provider", None)

        if not model_id:
            raise ParameterValidationError("modelId is required in params", fields=["modelId"])
        info = get_model_info(model_id)
        if info is None:
            raise ParameterValidationError(f"Unknown model: {model_id}", fields=["modelId"])

        # Per-job key, then per-execution key, then the environment (inside the factory)
        adapter = self.providers.get_provider(
            info.provider, api_key or execution.provider_api_keys.get(info.provider)
        )

        if job.provider_job_id:
            # Re-delivered after a worker crash: never start a second generation
            if job.waiting_strategy == WaitingStrategy.WEBHOOK:
                logger.info(f"[{execution.id}] {job.job_id} already submitted, awaiting webhook")
                return
            logger.info(f"[{execution.id}] Resuming poll for {job.job_id} ({job.provider_job_id})")
            self._poll(job, adapter, model_id, info, job.provider_job_id,
                       job.waiting_strategy or WaitingStrategy.POLLING)
            return

        results = self._dependency_results(job, execution)
        params = resolve_params(params, results)
        self._fill_primary_input(job, params, results)

        self._progress(job, "validating_params", 5)
        options = prepare_provider_options(model_id, params)

        webhook_url = None
        if info.capabilities.default_strategy == WaitingStrategy.WEBHOOK:
            webhook_url = f"{config.API_BASE_URL.rstrip('/')}/webhooks/job/{job.id}"

        self._progress(job, "submitting", 10)
        start = adapter.start_generation(info.provider_model_id or model_id, options, webhook_url)

        self.store.update_job(
            job.id,
            provider_job_id=start.provider_job_id,
            waiting_strategy=start.waiting_strategy,
            model_id=model_id,
            progress=JobProgress(stage="generating", percentage=20),
        )
        logger.info(
            f"[{execution.id}] {job.job_id} started on {info.provider} "
            f"({start.provider_job_id}, {start.waiting_strategy.value})"
        )

        if start.waiting_strategy == WaitingStrategy.WEBHOOK:
            return

        self._poll(job, adapter, model_id, info, start.provider_job_id, start.waiting_strategy)

    def _poll(
        self,
        job: JobRecord,
        adapter: ProviderAdapter,
        model_id: str,
        info: ModelRegistryEntry,
        provider_job_id: str,
        strategy: WaitingStrategy,
    ):
        interval, max_attempts = self.poll_budgets.get(info.media_type, (2.0, 60))

        for attempt in range(max_attempts):
            # The artifact of a synchronous call is already cached
            if attempt > 0 or strategy != WaitingStrategy.SYNCHRONOUS:
                self.sleep(interval)

            status = adapter.get_job_status(provider_job_id)
            if status.status == JobStatus.FAILED:
                raise ProviderError(status.error or "Provider reported the job as failed")

            if status.status == JobStatus.COMPLETED:
                parsed = parse_model_polling(model_id, adapter.get_raw_job_response(provider_job_id))
                if parsed.status == JobStatus.FAILED:
                    raise ProviderError(parsed.error or "Provider reported the job as failed")
                if parsed.status == JobStatus.COMPLETED:
                    self._complete_parsed(job, parsed)
                    return

            self._progress(job, "processing", min(30 + attempt * 60 // max_attempts, 90))

        raise JobTimeoutError(
            f"Job {job.job_id} timed out after {max_attempts} polling attempts "
            f"({int(interval * max_attempts)}s)"
        )

    def _complete_parsed(self, job: JobRecord, parsed: ParseResult) -> bool:
        if not parsed.outputs and not parsed.data:
            raise ProviderError("No outputs received from provider")
        return self.complete_job(job, parsed.outputs, parsed.data)

    # ═════════════════════════════════════════════════════════════════════
    # Render operations
    # ═════════════════════════════════════════════════════════════════════

    def _run_render(self, job: JobRecord, execution: ExecutionRecord):
        results = self._dependency_results(job, execution)
        params = resolve_params(dict(job.params), results)

        if job.operation == OperationType.MERGE:
            urls = params.get("videos") or [
                self._dependency_url(dep, results) for dep in job.dependencies
            ]
            if len(urls) < 2:
                raise ParameterValidationError(
                    f"Merge requires at least 2 videos, got {len(urls)}", fields=["videos"]
                )
            self._progress(job, "merging", 30)
            rendered = render.merge_videos(
                urls,
                transition=params.get("transition") or "cut",
                transition_duration=params.get("duration"),
                client=self.render_client,
            )
        elif job.operation == OperationType.LAYER:
            rendered = self._render_layers(job, params)
        else:
            self._fill_primary_input(job, params, results)
            video_url = params.get("video")
            if not video_url:
                raise ParameterValidationError(f"{job.operation.value} requires a video", fields=["video"])
            if job.operation == OperationType.REPLACE_GREEN_SCREEN:
                rendered = self._render_green_screen(job, video_url, params)
            else:
                rendered = self._render_subtitles(job, video_url, params)

        self._progress(job, "uploading", 90)
        url = self.storage.upload(
            f"executions/{execution.id}/{job.job_id}/output.mp4", rendered, "video/mp4"
        )
        self.complete_job(job, [MediaOutput(type=MediaType.VIDEO, url=url, mime_type="video/mp4")])

    def _render_subtitles(self, job: JobRecord, video_url: str, params: dict[str, Any]) -> bytes:
        transcript = params.get("transcript")
        if not isinstance(transcript, list) or not transcript:
            raise ParameterValidationError(
                "No transcript provided. Pass a transcript or a transcription model.",
                fields=["transcript"],
            )
        self._progress(job, "burning_captions", 50)
        return render.burn_subtitles(
            video_url,
            transcript,
            style=params.get("style") or "default",
            language=params.get("language") or "en",
            client=self.render_client,
        )

    def _render_green_screen(self, job: JobRecord, video_url: str, params: dict[str, Any]) -> bytes:
        backgrounds = params.get("background")
        if isinstance(backgrounds, str):
            backgrounds = [backgrounds]
        if not isinstance(backgrounds, list) or not backgrounds or not all(
            isinstance(b, str) and b for b in backgrounds
        ):
            raise ParameterValidationError("replaceGreenScreen requires a background", fields=["background"])
        self._progress(job, "keying", 30)
        return render.replace_green_screen(
            video_url,
            backgrounds,
            chroma_key_color=params.get("chromaKeyColor"),
            similarity=params.get("similarity"),
            blend=params.get("blend"),
            client=self.render_client,
        )

    def _render_layers(self, job: JobRecord, params: dict[str, Any]) -> bytes:
        layers = params.get("layers")
        if not isinstance(layers, list) or not layers:
            raise ParameterValidationError("At least one layer is required", fields=["layers"])

        prepared = []
        for index, layer in enumerate(layers):
            if not isinstance(layer, dict):
                raise ParameterValidationError(f"Layer {index} must be an object", fields=["layers"])
            if layer.get("isTimeline"):
                items = layer.get("timeline") or []
                if not items:
                    raise ParameterValidationError(f"Timeline layer {index} has no items", fields=["layers"])
                prepared.append({**layer, "timeline": [_layer_item(item, index) for item in items]})
            else:
                prepared.append(_layer_item(layer, index))

        self._progress(job, "layering", 30)
        return render.layer_media(
            prepared,
            output_duration=params.get("outputDuration"),
            output_width=params.get("outputWidth"),
            output_height=params.get("outputHeight"),
            main_layer=params.get("mainLayer"),
            client=self.render_client,
        )

    # ═════════════════════════════════════════════════════════════════════
    # Dependency inputs
    # ═════════════════════════════════════════════════════════════════════

    def _dependency_results(self, job: JobRecord, execution: ExecutionRecord) -> dict[str, Any]:
        by_id = self.orchestrator.dependency_jobs(execution, self.store.list_jobs(execution.id))
        return {
            job_id: dep.result
            for job_id, dep in by_id.items()
            if dep.status == JobStatus.COMPLETED and dep.result is not None
        }

    @staticmethod
    def _dependency_url(dep: str, results: dict[str, Any]) -> str:
        if dep not in results:
            raise ExtractionError(f"Dependency {dep} has no result")
        return extract_media_url(results[dep], dep)

    def _fill_primary_input(self, job: JobRecord, params: dict[str, Any], results: dict[str, Any]):
        field = PRIMARY_INPUT.get(job.operation)
        if field is None or params.get(field):
            return
        referenced = {job_id for _, job_id in iter_tokens(job.params)}
        source = next((d for d in job.dependencies if d not in referenced), None)
        if source is None:
            return
        params[field] = self._dependency_url(source, results)

    # ═════════════════════════════════════════════════════════════════════
    # Terminal transitions (shared with the inbound webhook path)
    # ═════════════════════════════════════════════════════════════════════

    def complete_job(
        self, job: JobRecord, outputs: list[MediaOutput], data: Optional[dict[str, Any]] = None
    ) -> bool:
        """
        Persist outputs and mark the job completed.

        Inline (base64) outputs are uploaded first. Returns False when the
        job was already terminal, in which case nothing is written.

        Raises:
            UploadError: inline payload could not be stored.
        """
        current = self.store.get_job(job.id)
        if current is None or current.is_terminal:
            return False

        stored = [self._store_output(current, output, i) for i, output in enumerate(outputs)]

        result: dict[str, Any] = {
            "outputs": [o.model_dump(mode="json", by_alias=True, exclude_none=True) for o in stored],
            "completedAt": utc_now_iso(),
        }
        if stored:
            result["url"] = stored[0].url
        if data:
            result.update(data)

        completed = self.store.transition_job(
            current.id,
            {JobStatus.PROCESSING},
            JobStatus.COMPLETED,
            result=result,
            completed_at=utc_now_iso(),
            progress=JobProgress(stage="completed", percentage=100),
        )
        if not completed:
            logger.info(f"[{current.execution_id}] {current.job_id} already terminal, completion ignored")
            return False

        metrics.inc_counter("jobs.completed")
        model_id = current.params.get("modelId") or current.model_id
        info = get_model_info(model_id) if model_id else None
        if info is not None:
            metrics.record_usage(info.provider, model_id)
        self._record_latency(current)

        logger.info(f"[{current.execution_id}] {current.job_id} completed")
        self.orchestrator.on_job_terminal(current.execution_id)
        return True

    def fail_job(self, job: JobRecord, message: str, kind: str = "internal") -> bool:
        failed = self.store.transition_job(
            job.id,
            {JobStatus.QUEUED, JobStatus.PROCESSING},
            JobStatus.FAILED,
            error=message,
            error_kind=kind,
            completed_at=utc_now_iso(),
            progress=JobProgress(stage="failed", percentage=job.progress.percentage),
        )
        if not failed:
            logger.info(f"[{job.execution_id}] {job.job_id} already terminal, failure ignored")
            return False

        metrics.inc_counter("jobs.failed")
        metrics.inc_counter(f"jobs.failed.{kind}")
        metrics.record_error(job.operation.value, kind, message, job.execution_id)
        self._record_latency(job)

        self.orchestrator.on_job_terminal(job.execution_id)
        return True

    def handle_provider_webhook(self, record_id: str, payload: dict[str, Any]) -> dict[str, Any]:
        """
        Apply an inbound provider callback to its job.

        Raises:
            LookupError: no such job record.
            ValueError:  the job has no model to parse the payload with.
        """
        job = self.store.get_job(record_id)
        if job is None:
            raise LookupError(f"Job not found: {record_id}")
        model_id = job.params.get("modelId") or job.model_id
        if not model_id:
            raise ValueError(f"Job {record_id} has no modelId")
        if job.is_terminal:
            return {"success": True, "status": "ignored"}

        parsed = parse_model_webhook(model_id, payload)

        if parsed.status == JobStatus.PROCESSING:
            return {"success": True, "status": "processing"}

        if parsed.status == JobStatus.FAILED:
            self.fail_job(job, parsed.error or "Provider reported the job as failed", "provider")
            return {"success": True, "status": "failed"}

        try:
            completed = self._complete_parsed(job, parsed)
        except MediaflowError as e:
            self.fail_job(job, str(e), e.kind)
            return {"success": True, "status": "failed"}
        return {"success": True, "status": "completed" if completed else "ignored"}

    # ── Helpers ──────────────────────────────────────────────────────────

    def _store_output(self, job: JobRecord, output: MediaOutput, index: int) -> MediaOutput:
        if not is_inline_payload(output.url):
            return output
        data, mime = decode_inline_payload(output.url)
        mime = mime or output.mime_type
        suffix = f"-{index}" if index else ""
        path = f"executions/{job.execution_id}/{job.job_id}{suffix}.{extension_for(mime, output.type)}"
        url = self.storage.upload(path, data, mime or "application/octet-stream")
        return output.model_copy(update={"url": url, "mime_type": mime})

    def _progress(self, job: JobRecord, stage: str, percentage: int):
        self.store.update_job(job.id, progress=JobProgress(stage=stage, percentage=percentage))

    @staticmethod
    def _record_latency(job: JobRecord):
        if not job.started_at:
            return
        try:
            started = datetime.fromisoformat(job.started_at)
        except ValueError:
            return
        elapsed = (datetime.now(timezone.utc) - started).total_seconds() * 1000
        metrics.record_latency(f"job.{job.operation.value}", elapsed)


def _layer_item(item: Any, index: int) -> dict[str, Any]:
    """One layer (or timeline entry) with resolved media as a URL list and a placement."""
    if not isinstance(item, dict):
        raise ParameterValidationError(f"Layer {index} must be an object", fields=["layers"])
    media = item.get("media")
    urls = [media] if isinstance(media, str) else media
    if not isinstance(urls, list) or not urls or not all(isinstance(u, str) and u for u in urls):
        raise ParameterValidationError(f"Layer {index} has no media", fields=["layers"])
    return {**item, "media": urls, "placement": item.get("placement") or "full"}
