"""
Operation graph builder (client side).

Operations are composed into a Pipeline, then flattened into the wire-level
execution plan:

    pipeline = compose(
        generate_video("minimax/video-01", prompt="a lighthouse at dawn"),
        generate_video("minimax/video-01", prompt="waves at noon"),
        merge(),
        captions(model="vaibhavs10/incredibly-fast-whisper"),
    )
    plan = pipeline.to_plan()

Flattening rules:
  - Operations nested under image / audio / video / transcript are extracted
    depth-first into their own jobs, placed before their owner; the owner's
    param becomes a `_<kind>JobDependency:<id>` token. Operations anywhere
    inside `background` or `layers` are extracted the same way, the token
    kind following the media they produce.
  - Ids are job1..jobN in placement order, so every dependency points back.
  - Consecutive generates form a merge group (see MergeAccumulator).
"""

from dataclasses import dataclass, field
from typing import Any, Iterable, Optional, Union

from pydantic.alias_generators import to_camel

from .dependencies import PRIMARY_INPUT, make_token
from .errors import ParameterValidationError
from .models import ExecutionPlan, MediaType, OperationType
from .registry import UnifiedOptions, get_model_info

NESTED_KEYS = ("image", "audio", "video", "transcript")
# Params that may hold operations inside lists or dicts
MEDIA_CONTAINER_KEYS = ("background", "layers")

EXPECTED_MEDIA = {
    OperationType.GENERATE: MediaType.VIDEO,
    OperationType.GENERATE_IMAGE: MediaType.IMAGE,
    OperationType.GENERATE_AUDIO: MediaType.AUDIO,
    OperationType.REMOVE_BACKGROUND: MediaType.VIDEO,
    OperationType.REMOVE_IMAGE_BACKGROUND: MediaType.IMAGE,
    OperationType.TRANSCRIBE: MediaType.TEXT,
}


@dataclass(frozen=True)
class ModelRef:
    """A model id plus an optional per-job provider key."""
    model_id: str
    api_key: Optional[str] = None

    @property
    def provider(self) -> str:
        info = get_model_info(self.model_id)
        if info is None:
            raise ParameterValidationError(f"Unknown model: {self.model_id}", fields=["modelId"])
        return info.provider


ModelLike = Union[str, ModelRef]


@dataclass
class Operation:
    type: OperationType
    params: dict[str, Any] = field(default_factory=dict)


# ═════════════════════════════════════════════════════════════════════════════
# Merge accumulation
# ═════════════════════════════════════════════════════════════════════════════

class MergeAccumulator:
    """
    Decides the chaining dependencies of each top-level job.

    States:
      none            jobs chain linearly on the implicit predecessor
      collecting(ids) a multi-scene group; members do not chain, the next
                      merge depends on all of them

    A generate followed by another generate starts collecting. While
    collecting, every non-merge operation joins the group. A merge takes the
    collected ids (or the predecessor when nothing was collected), resets to
    none and becomes the predecessor.
    """

    def __init__(self):
        self.collected: Optional[list[str]] = None
        self.predecessor: Optional[str] = None

    @property
    def state(self) -> str:
        return "none" if self.collected is None else "collecting"

    def place(
        self, job_id: str, op_type: OperationType, next_type: Optional[OperationType] = None
    ) -> list[str]:
        if op_type == OperationType.MERGE:
            if self.collected:
                deps = list(self.collected)
            else:
                deps = [self.predecessor] if self.predecessor else []
            self.collected = None
            self.predecessor = job_id
            return deps

        if self.collected is not None:
            self.collected.append(job_id)
            return []

        if op_type == OperationType.GENERATE and next_type == OperationType.GENERATE:
            self.collected = [job_id]
            return []

        deps = [self.predecessor] if self.predecessor else []
        self.predecessor = job_id
        return deps


# ═════════════════════════════════════════════════════════════════════════════
# Pipeline
# ═════════════════════════════════════════════════════════════════════════════

class Pipeline:

    def __init__(self, operations: Iterable[Operation] = ()):
        self.operations: list[Operation] = list(operations)

    def __len__(self) -> int:
        return len(self.operations)

    def __iter__(self):
        return iter(self.operations)

    def to_plan(self, base_execution_id: Optional[str] = None) -> dict[str, Any]:
        """Flatten into the wire plan `{jobs: [...], baseExecutionId?}`."""
        jobs: list[dict[str, Any]] = []
        accumulator = MergeAccumulator()

        def place(op_type: OperationType, params: dict[str, Any], depends_on: list[str]) -> str:
            job_id = f"job{len(jobs) + 1}"
            jobs.append({
                "id": job_id,
                "type": op_type.value,
                "params": params,
                "dependsOn": _unique(depends_on),
                "output": f"${job_id}",
            })
            return job_id

        def nest(nested: Operation, source: Optional[str], owner_video: Any) -> str:
            nested_params, nested_deps = extract(nested, source)
            primary = PRIMARY_INPUT.get(nested.type)
            if primary and not nested_params.get(primary):
                if isinstance(owner_video, str):
                    nested_params[primary] = owner_video
                elif source:
                    nested_deps = [source, *nested_deps]
            return place(nested.type, nested_params, nested_deps)

        def embed(value: Any, source: Optional[str], owner_video: Any, deps: list[str]) -> Any:
            if isinstance(value, Operation):
                nested_id = nest(value, source, owner_video)
                deps.append(nested_id)
                return make_token(_token_kind(value), nested_id)
            if isinstance(value, list):
                return [embed(v, source, owner_video, deps) for v in value]
            if isinstance(value, dict):
                return {k: embed(v, source, owner_video, deps) for k, v in value.items()}
            return value

        def extract(op: Operation, inherited: Optional[str]) -> tuple[dict[str, Any], list[str]]:
            params = dict(op.params)
            deps: list[str] = []
            # Where a nested job with an empty primary input reads from:
            # the owner's video URL, its nested video job, or the predecessor
            owner_video = op.params.get("video")
            source = inherited
            for key in NESTED_KEYS:
                nested = params.get(key)
                if not isinstance(nested, Operation):
                    continue
                nested_id = nest(nested, source, owner_video)
                params[key] = make_token(key, nested_id)
                deps.append(nested_id)
                if key == "video":
                    source = nested_id
            for key in MEDIA_CONTAINER_KEYS:
                if key in params:
                    params[key] = embed(params[key], source, owner_video, deps)
            return params, deps

        for index, op in enumerate(self.operations):
            next_type = self.operations[index + 1].type if index + 1 < len(self.operations) else None
            params, nested_deps = extract(op, accumulator.predecessor)
            job_id = f"job{len(jobs) + 1}"
            chain_deps = accumulator.place(job_id, op.type, next_type)
            place(op.type, params, [*chain_deps, *nested_deps])

        plan: dict[str, Any] = {"jobs": jobs}
        if base_execution_id:
            plan["baseExecutionId"] = base_execution_id
        return plan

    def to_execution_plan(self, base_execution_id: Optional[str] = None) -> ExecutionPlan:
        return ExecutionPlan.model_validate(self.to_plan(base_execution_id))

    def providers(self) -> set[str]:
        """Providers referenced by any job of the flattened plan."""
        return plan_providers(self.to_plan())

    def execute(self, config=None, progress_callback=None):
        from .client import execute
        return execute(self, config=config, progress_callback=progress_callback)


def compose(*nodes: Union[Operation, Pipeline]) -> Pipeline:
    """Build a pipeline; sub-pipelines are inlined in order."""
    operations: list[Operation] = []
    for node in nodes:
        if isinstance(node, Pipeline):
            operations.extend(node.operations)
        elif isinstance(node, Operation):
            operations.append(node)
        else:
            raise TypeError(f"compose() expects Operation or Pipeline, got {type(node).__name__}")
    return Pipeline(operations)


def plan_providers(plan: dict[str, Any]) -> set[str]:
    """Providers of every catalog model named by a wire plan's jobs."""
    used = set()
    for job in plan.get("jobs", []):
        model_id = (job.get("params") or {}).get("modelId")
        info = get_model_info(model_id) if isinstance(model_id, str) else None
        if info is not None:
            used.add(info.provider)
    return used


def _unique(ids: list[str]) -> list[str]:
    return list(dict.fromkeys(ids))


def _token_kind(op: Operation) -> str:
    media = EXPECTED_MEDIA.get(op.type, MediaType.VIDEO)
    return "transcript" if media == MediaType.TEXT else media.value


# ═════════════════════════════════════════════════════════════════════════════
# Operation helpers
# ═════════════════════════════════════════════════════════════════════════════

def _model_params(model: ModelLike, op_type: OperationType) -> dict[str, Any]:
    ref = model if isinstance(model, ModelRef) else ModelRef(model)
    info = get_model_info(ref.model_id)
    if info is None:
        raise ParameterValidationError(f"Unknown model: {ref.model_id}", fields=["modelId"])
    expected = EXPECTED_MEDIA.get(op_type)
    if expected is not None and info.media_type != expected:
        raise ParameterValidationError(
            f"Model {ref.model_id} produces {info.media_type.value}, "
            f"but {op_type.value} needs a {expected.value} model",
            fields=["modelId"],
        )
    params = {"modelId": ref.model_id, "provider": info.provider}
    if ref.api_key:
        params["apiKey"] = ref.api_key
    return params


def _wire_options(options: dict[str, Any]) -> dict[str, Any]:
    """Unified options go out under their camelCase alias; native keys unchanged."""
    wire = {}
    for key, value in options.items():
        if value is None:
            continue
        if key in UnifiedOptions.model_fields:
            key = to_camel(key)
        wire[key] = value
    return wire


def _operation(op_type: OperationType, model: ModelLike, **options) -> Operation:
    return Operation(op_type, {**_model_params(model, op_type), **_wire_options(options)})


def generate_video(model: ModelLike, **options) -> Operation:
    """Video generation. `image` / `audio` may be nested operations."""
    return _operation(OperationType.GENERATE, model, **options)


def generate_image(model: ModelLike, **options) -> Operation:
    return _operation(OperationType.GENERATE_IMAGE, model, **options)


def generate_audio(model: ModelLike, **options) -> Operation:
    return _operation(OperationType.GENERATE_AUDIO, model, **options)


def merge(transition: str = "cut", duration: Optional[float] = None) -> Operation:
    params: dict[str, Any] = {"transition": transition}
    if duration is not None:
        params["duration"] = duration
    return Operation(OperationType.MERGE, params)


def remove_background(
    model: ModelLike, video: Union[str, Operation, None] = None, output_type: str = "green-screen"
) -> Operation:
    return _operation(OperationType.REMOVE_BACKGROUND, model, video=video, output_type=output_type)


def remove_image_background(model: ModelLike, image: Union[str, Operation, None] = None) -> Operation:
    return _operation(OperationType.REMOVE_IMAGE_BACKGROUND, model, image=image)


def transcribe(model: ModelLike, audio: Union[str, Operation, None] = None) -> Operation:
    return _operation(OperationType.TRANSCRIBE, model, audio=audio)


def captions(
    video: Union[str, Operation, None] = None,
    transcript: Optional[list[dict[str, Any]]] = None,
    model: Optional[ModelLike] = None,
    style: str = "default",
    language: str = "en",
) -> Operation:
    """
    Burn subtitles into a video.

    Pass either ready-made transcript chunks or a transcription model; with a
    model, a transcribe job is nested under `transcript`. Without `video`, the
    previous job's output is captioned.
    """
    if transcript is None and model is None:
        raise ValueError("captions() needs either a transcript or a transcription model")

    params: dict[str, Any] = {"style": style, "language": language}
    if video is not None:
        params["video"] = video
    params["transcript"] = transcript if transcript is not None else transcribe(model)
    return Operation(OperationType.ADD_SUBTITLES, params)


def lip_sync(
    audio: Union[str, Operation],
    image: Union[str, Operation],
    model: ModelLike = "veed/fabric-1.0",
    **options,
) -> Operation:
    """Talking-head video: animate `image` to speak `audio` with a lip-sync model."""
    return generate_video(model, image=image, audio=audio, **options)


def replace_green_screen(
    background: Union[str, Operation, list[Union[str, Operation]]],
    video: Union[str, Operation, None] = None,
    chroma_key_color: Optional[str] = None,
    similarity: Optional[float] = None,
    blend: Optional[float] = None,
) -> Operation:
    """
    Composite a green-screen video over one or more backgrounds (shown in
    sequence). Without `video`, the previous job's output is keyed, which
    pairs with remove_background(output_type="green-screen").
    """
    params: dict[str, Any] = {"background": background}
    if video is not None:
        params["video"] = video
    params.update(_wire_options({
        "chromaKeyColor": chroma_key_color,
        "similarity": similarity,
        "blend": blend,
    }))
    return Operation(OperationType.REPLACE_GREEN_SCREEN, params)


def layers(
    items: list[Union[dict[str, Any], list[dict[str, Any]]]],
    duration: Optional[float] = None,
    width: Optional[int] = None,
    height: Optional[int] = None,
    main_layer: Optional[int] = None,
) -> Operation:
    """
    Stack media layers into one video, first item at the bottom.

    Each item is a dict with `media` (URL, operation, or a list of them) and
    optional `placement`, `chromaKey`, `chromaKeyColor`, `similarity`,
    `blend` and `main`. A list of such dicts is a timeline: its items play in
    sequence, each for its `duration` or an automatic share when unset.

    Output length: `duration`, else the main layer, else the longest fully
    timed timeline.
    """
    processed: list[dict[str, Any]] = []
    longest_timeline = 0.0
    for item in items:
        if isinstance(item, list):
            explicit = sum(entry.get("duration") or 0 for entry in item)
            needs_auto = any(not isinstance(entry.get("duration"), (int, float)) for entry in item)
            layer: dict[str, Any] = {
                "isTimeline": True,
                "timeline": item,
                "needsAutoDuration": needs_auto,
                "explicitDuration": explicit,
            }
            if not needs_auto:
                layer["totalDuration"] = explicit
                longest_timeline = max(longest_timeline, explicit)
            processed.append(layer)
        else:
            processed.append(item)

    has_main = main_layer is not None or any(
        isinstance(item, dict) and item.get("main") for item in items
    )
    if duration is None and not has_main and longest_timeline > 0:
        duration = longest_timeline

    params: dict[str, Any] = {"layers": processed}
    params.update(_wire_options({
        "outputDuration": duration,
        "outputWidth": width,
        "outputHeight": height,
        "mainLayer": main_layer,
    }))
    return Operation(OperationType.LAYER, params)
