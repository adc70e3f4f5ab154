"""
Model catalog and the registry lookups the worker and webhook handler use.

Every supported model id maps to one `ModelRegistryEntry`: which provider
runs it, which schema validates its options, how its payloads are parsed and
how the worker should wait for it.
"""

import logging
from dataclasses import dataclass
from typing import Any, Optional

from pydantic import BaseModel, ValidationError

from ..errors import ParameterValidationError
from ..models import MediaType, ParseResult, ProviderCapabilities, WaitingStrategy
from . import mappings, schemas
from .parsers import (
    Parser,
    fal_parser,
    inline_audio_parser,
    replicate_parser,
    replicate_transcript_parser,
)
from .unified import UNIFIED_FIELDS, ParameterMapping, UnifiedOptions

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ModelRegistryEntry:
    provider: str
    media_type: MediaType
    schema: type[BaseModel]
    webhook_parser: Parser
    polling_parser: Parser
    capabilities: ProviderCapabilities
    # Identifier sent to the provider when it differs from the registry key
    provider_model_id: Optional[str] = None
    mapping: Optional[ParameterMapping] = None


# ── Capability presets ───────────────────────────────────────────────────────

_WEBHOOK_FIRST = ProviderCapabilities(
    supports_webhooks=True, supports_polling=True, default_strategy=WaitingStrategy.WEBHOOK
)
_POLL_FIRST = ProviderCapabilities(
    supports_webhooks=True, supports_polling=True, default_strategy=WaitingStrategy.POLLING
)
_SYNCHRONOUS = ProviderCapabilities(
    supports_webhooks=False, supports_polling=True, default_strategy=WaitingStrategy.SYNCHRONOUS
)

_replicate_video = replicate_parser(MediaType.VIDEO)
_replicate_image = replicate_parser(MediaType.IMAGE, "image/png")
_fal_video = fal_parser(MediaType.VIDEO)
_fal_image = fal_parser(MediaType.IMAGE, "image/jpeg")


# ═════════════════════════════════════════════════════════════════════════════
# Catalog
# ═════════════════════════════════════════════════════════════════════════════

MODEL_REGISTRY: dict[str, ModelRegistryEntry] = {
    # ── Replicate ────────────────────────────────────────────────────────
    "bytedance/seedance-1-pro": ModelRegistryEntry(
        provider="replicate",
        media_type=MediaType.VIDEO,
        schema=schemas.SeedanceOptions,
        webhook_parser=_replicate_video,
        polling_parser=_replicate_video,
        capabilities=_WEBHOOK_FIRST,
        mapping=mappings.seedance_mapping,
    ),
    "minimax/video-01": ModelRegistryEntry(
        provider="replicate",
        media_type=MediaType.VIDEO,
        schema=schemas.MinimaxVideoOptions,
        webhook_parser=_replicate_video,
        polling_parser=_replicate_video,
        capabilities=_WEBHOOK_FIRST,
        mapping=mappings.minimax_mapping,
    ),
    "bytedance/seedream-4": ModelRegistryEntry(
        provider="replicate",
        media_type=MediaType.IMAGE,
        schema=schemas.SeedreamOptions,
        webhook_parser=_replicate_image,
        polling_parser=_replicate_image,
        capabilities=_POLL_FIRST,
        mapping=mappings.seedream_mapping,
    ),
    "codeplugtech/background_remover": ModelRegistryEntry(
        provider="replicate",
        media_type=MediaType.IMAGE,
        schema=schemas.ImageBackgroundRemoverOptions,
        webhook_parser=_replicate_image,
        polling_parser=_replicate_image,
        capabilities=_POLL_FIRST,
        mapping=mappings.image_background_mapping,
    ),
    "nateraw/video-background-remover": ModelRegistryEntry(
        provider="replicate",
        media_type=MediaType.VIDEO,
        schema=schemas.VideoBackgroundRemoverOptions,
        webhook_parser=_replicate_video,
        polling_parser=_replicate_video,
        capabilities=_POLL_FIRST,
        mapping=mappings.video_background_mapping,
    ),
    "vaibhavs10/incredibly-fast-whisper": ModelRegistryEntry(
        provider="replicate",
        media_type=MediaType.TEXT,
        schema=schemas.WhisperOptions,
        webhook_parser=replicate_transcript_parser,
        polling_parser=replicate_transcript_parser,
        capabilities=_POLL_FIRST,
        provider_model_id=(
            "vaibhavs10/incredibly-fast-whisper:"
            "3ab86df6c8f54c11309d4d1f930ac292bad43ace52d10c80d87eb258b3c9f79c"
        ),
        mapping=mappings.whisper_mapping,
    ),
    # ── fal ──────────────────────────────────────────────────────────────
    "veed/fabric-1.0": ModelRegistryEntry(
        provider="fal",
        media_type=MediaType.VIDEO,
        schema=schemas.FabricOptions,
        webhook_parser=_fal_video,
        polling_parser=_fal_video,
        capabilities=_POLL_FIRST,
        mapping=mappings.fabric_mapping,
    ),
    "veed/fabric-1.0/fast": ModelRegistryEntry(
        provider="fal",
        media_type=MediaType.VIDEO,
        schema=schemas.FabricOptions,
        webhook_parser=_fal_video,
        polling_parser=_fal_video,
        capabilities=_POLL_FIRST,
        mapping=mappings.fabric_mapping,
    ),
    "fal-ai/nano-banana": ModelRegistryEntry(
        provider="fal",
        media_type=MediaType.IMAGE,
        schema=schemas.NanoBananaOptions,
        webhook_parser=_fal_image,
        polling_parser=_fal_image,
        capabilities=_POLL_FIRST,
        mapping=mappings.nano_banana_mapping,
    ),
    # ── Synchronous TTS ──────────────────────────────────────────────────
    "elevenlabs/turbo-v2.5": ModelRegistryEntry(
        provider="elevenlabs",
        media_type=MediaType.AUDIO,
        schema=schemas.ElevenLabsOptions,
        webhook_parser=inline_audio_parser,
        polling_parser=inline_audio_parser,
        capabilities=_SYNCHRONOUS,
        mapping=mappings.text_to_speech_mapping,
    ),
    "hume/tts": ModelRegistryEntry(
        provider="hume",
        media_type=MediaType.AUDIO,
        schema=schemas.HumeOptions,
        webhook_parser=inline_audio_parser,
        polling_parser=inline_audio_parser,
        capabilities=_SYNCHRONOUS,
        mapping=mappings.text_to_speech_mapping,
    ),
}


# ═════════════════════════════════════════════════════════════════════════════
# Lookups
# ═════════════════════════════════════════════════════════════════════════════

def get_model_info(model_id: str) -> Optional[ModelRegistryEntry]:
    return MODEL_REGISTRY.get(model_id)


def _require(model_id: str) -> ModelRegistryEntry:
    info = MODEL_REGISTRY.get(model_id)
    if info is None:
        raise ParameterValidationError(f"Unknown model: {model_id}")
    return info


def get_model_capabilities(model_id: str) -> ProviderCapabilities:
    return _require(model_id).capabilities


def parse_model_options(model_id: str, raw: dict[str, Any]) -> dict[str, Any]:
    """
    Validate and coerce raw options against the model's schema.

    Raises:
        ParameterValidationError naming every offending field.
    """
    info = _require(model_id)
    try:
        validated = info.schema.model_validate(raw)
    except ValidationError as e:
        fields = [".".join(str(p) for p in err["loc"]) or "<root>" for err in e.errors()]
        details = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or '<root>'}: {err['msg']}" for err in e.errors()
        )
        raise ParameterValidationError(
            f"Parameter validation failed for model {model_id}: {details}", fields=fields
        ) from e
    return validated.model_dump(exclude_none=True)


def map_unified_to_provider_options(
    provider: str, model_id: str, unified: UnifiedOptions | dict[str, Any]
) -> dict[str, Any]:
    info = _require(model_id)
    if info.provider != provider:
        raise ParameterValidationError(f"Model {model_id} is not served by provider {provider}")
    if info.mapping is None:
        raise ParameterValidationError(f"No parameter mapping for model: {model_id}")
    if isinstance(unified, dict):
        unified = _unified_from(model_id, unified)
    return info.mapping.to_provider_options(unified)


def map_provider_to_unified_options(
    provider: str, model_id: str, provider_options: dict[str, Any]
) -> UnifiedOptions:
    info = _require(model_id)
    if info.provider != provider:
        raise ParameterValidationError(f"Model {model_id} is not served by provider {provider}")
    if info.mapping is None:
        raise ParameterValidationError(f"No parameter mapping for model: {model_id}")
    return info.mapping.from_provider_options(provider_options)


def _unified_from(model_id: str, values: dict[str, Any]) -> UnifiedOptions:
    try:
        return UnifiedOptions.model_validate(values)
    except ValidationError as e:
        fields = [".".join(str(p) for p in err["loc"]) for err in e.errors()]
        raise ParameterValidationError(
            f"Parameter validation failed for model {model_id}: invalid unified option(s) {', '.join(fields)}",
            fields=fields,
        ) from e


def prepare_provider_options(model_id: str, params: dict[str, Any]) -> dict[str, Any]:
    """
    Turn a job's params into validated provider options.

    Unified fields are run through the model's mapping; any provider-native
    keys the caller set directly override the mapped values.
    """
    info = _require(model_id)
    unified = {k: v for k, v in params.items() if k in UNIFIED_FIELDS and v is not None}
    native = {k: v for k, v in params.items() if k not in UNIFIED_FIELDS}

    if info.mapping is not None and unified:
        mapped = info.mapping.to_provider_options(_unified_from(model_id, unified))
        for field_name, note in info.mapping.lossy_fields.items():
            if field_name in unified:
                logger.info(f"[{model_id}] {field_name}: {note}")
        options = {**mapped, **native}
    else:
        options = {**unified, **native}

    return parse_model_options(model_id, options)


def parse_model_webhook(model_id: str, payload: dict[str, Any]) -> ParseResult:
    return _require(model_id).webhook_parser(payload)


def parse_model_polling(model_id: str, payload: dict[str, Any]) -> ParseResult:
    return _require(model_id).polling_parser(payload)
