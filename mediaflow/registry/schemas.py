"""
Provider-native option schemas, one pydantic model per (provider, model).

Field names match what the provider API expects. Unknown keys are ignored so
a job can carry orchestration-only params alongside the model options.
"""

from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class ProviderOptions(BaseModel):
    model_config = ConfigDict(extra="ignore")


# ── Replicate: video ─────────────────────────────────────────────────────────

class SeedanceOptions(ProviderOptions):
    prompt: str = Field(..., min_length=1)
    duration: Optional[int] = Field(None, ge=2, le=12)
    resolution: Optional[Literal["480p", "720p", "1080p"]] = None
    aspect_ratio: Optional[Literal["16:9", "4:3", "1:1", "3:4", "9:16", "21:9", "9:21"]] = None
    fps: Optional[Literal[24]] = None
    seed: Optional[int] = None
    image: Optional[str] = None
    last_frame_image: Optional[str] = None
    camera_fixed: Optional[bool] = None


class MinimaxVideoOptions(ProviderOptions):
    prompt: str = Field(..., min_length=1)
    prompt_optimizer: bool = True
    first_frame_image: Optional[str] = None
    subject_reference: Optional[str] = None


class VideoBackgroundRemoverOptions(ProviderOptions):
    video: str = Field(..., pattern=r"^https?://")


# ── Replicate: image ─────────────────────────────────────────────────────────

class SeedreamOptions(ProviderOptions):
    prompt: str = Field(..., min_length=1)
    size: Literal["1K", "2K", "4K"] = "2K"
    aspect_ratio: Optional[
        Literal["match_input_image", "1:1", "4:3", "3:4", "16:9", "9:16", "3:2", "2:3", "21:9"]
    ] = None
    image_input: Optional[list[str]] = None
    max_images: int = Field(1, ge=1, le=15)
    sequential_image_generation: Literal["disabled", "auto"] = "disabled"


class ImageBackgroundRemoverOptions(ProviderOptions):
    image: str = Field(..., pattern=r"^https?://")


# ── Replicate: transcription ─────────────────────────────────────────────────

class WhisperOptions(ProviderOptions):
    audio: str
    task: Literal["transcribe", "translate"] = "transcribe"
    language: str = "None"
    timestamp: Literal["chunk", "word"] = "word"
    batch_size: int = Field(24, ge=1)


# ── fal ──────────────────────────────────────────────────────────────────────

class FabricOptions(ProviderOptions):
    image_url: str
    audio_url: str
    resolution: Literal["720p", "480p"] = "720p"


class NanoBananaOptions(ProviderOptions):
    prompt: str = Field(..., min_length=1)
    num_images: int = Field(1, ge=1, le=4)
    aspect_ratio: Optional[
        Literal["21:9", "16:9", "3:2", "4:3", "5:4", "1:1", "4:5", "3:4", "2:3", "9:16"]
    ] = None
    output_format: Literal["jpeg", "png", "webp"] = "jpeg"


# ── Synchronous audio ────────────────────────────────────────────────────────

class ElevenLabsOptions(ProviderOptions):
    text: str = Field(..., min_length=1)
    voice_id: str = "21m00Tcm4TlvDq8ikWAM"
    model_id: str = "eleven_turbo_v2_5"
    stability: Optional[float] = Field(None, ge=0, le=1)
    similarity_boost: Optional[float] = Field(None, ge=0, le=1)
    style: Optional[float] = Field(None, ge=0, le=1)
    use_speaker_boost: Optional[bool] = None
    output_format: Literal[
        "mp3_44100_128", "mp3_44100_64", "mp3_22050_32",
        "pcm_16000", "pcm_22050", "pcm_24000", "pcm_44100",
    ] = "mp3_44100_128"
    language_code: Optional[str] = None
    previous_text: Optional[str] = None
    next_text: Optional[str] = None


class HumeOptions(ProviderOptions):
    text: str = Field(..., min_length=1)
    description: Optional[str] = None
    voice_name: Optional[str] = None
    speed: Optional[float] = Field(None, ge=0.5, le=2.0)
    format: Literal["mp3", "wav"] = "mp3"
