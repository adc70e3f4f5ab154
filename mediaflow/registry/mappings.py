"""
Unified ⇄ provider parameter mappings.

Each mapping is a pair of plain functions. Where a provider cannot represent
a unified field (or silently changes it), the mapping lists it in
`lossy_fields`; round-tripping reproduces every other field.
"""

from typing import Any

from .unified import ParameterMapping, UnifiedOptions

_VIDEO_DROPPED = "not supported by this model; dropped"


# ── Replicate: bytedance/seedance-1-pro ──────────────────────────────────────

def _seedance_to(u: UnifiedOptions) -> dict[str, Any]:
    camera_fixed = None
    if u.camera_motion is not None:
        camera_fixed = u.camera_motion == "fixed"
    return {
        "prompt": u.prompt,
        "duration": u.duration,
        "resolution": u.resolution,
        "aspect_ratio": u.aspect_ratio,
        "seed": u.seed,
        "image": u.start_image or u.image,
        "last_frame_image": u.end_image,
        "camera_fixed": camera_fixed,
    }


def _seedance_from(p: dict[str, Any]) -> UnifiedOptions:
    camera_motion = None
    if p.get("camera_fixed") is not None:
        camera_motion = "fixed" if p["camera_fixed"] else "dynamic"
    return UnifiedOptions(
        prompt=p.get("prompt"),
        duration=p.get("duration"),
        resolution=p.get("resolution"),
        aspect_ratio=p.get("aspect_ratio"),
        seed=p.get("seed"),
        start_image=p.get("image"),
        end_image=p.get("last_frame_image"),
        camera_motion=camera_motion,
    )


seedance_mapping = ParameterMapping(
    to_provider=_seedance_to,
    from_provider=_seedance_from,
    lossy_fields={
        "image": "sent as the start frame; reads back as startImage",
        "audio": _VIDEO_DROPPED,
    },
)


# ── Replicate: minimax/video-01 ──────────────────────────────────────────────

minimax_mapping = ParameterMapping(
    to_provider=lambda u: {
        "prompt": u.prompt,
        "prompt_optimizer": True,
        "first_frame_image": u.start_image or u.image,
    },
    from_provider=lambda p: UnifiedOptions(
        prompt=p.get("prompt"),
        start_image=p.get("first_frame_image"),
    ),
    lossy_fields={
        "duration": "fixed at 6s by the model; dropped",
        "resolution": "fixed at 720p by the model; dropped",
        "aspectRatio": _VIDEO_DROPPED,
        "seed": _VIDEO_DROPPED,
        "endImage": _VIDEO_DROPPED,
        "cameraMotion": _VIDEO_DROPPED,
        "image": "sent as the first frame; reads back as startImage",
    },
)


# ── Replicate: bytedance/seedream-4 ──────────────────────────────────────────

seedream_mapping = ParameterMapping(
    to_provider=lambda u: {
        "prompt": u.prompt,
        "aspect_ratio": u.aspect_ratio,
        "image_input": [u.image] if u.image else None,
    },
    from_provider=lambda p: UnifiedOptions(
        prompt=p.get("prompt"),
        aspect_ratio=p.get("aspect_ratio") if p.get("aspect_ratio") != "match_input_image" else None,
        image=(p.get("image_input") or [None])[0],
    ),
    lossy_fields={
        "resolution": "image size is chosen with the provider-only `size` field; dropped",
        "seed": "not supported by this model; dropped",
    },
)


# ── Replicate: background removal ────────────────────────────────────────────

image_background_mapping = ParameterMapping(
    to_provider=lambda u: {"image": u.image},
    from_provider=lambda p: UnifiedOptions(image=p.get("image")),
)

video_background_mapping = ParameterMapping(
    to_provider=lambda u: {"video": u.video},
    from_provider=lambda p: UnifiedOptions(video=p.get("video")),
    lossy_fields={"outputType": "model always renders green-screen; dropped"},
)


# ── Replicate: transcription ─────────────────────────────────────────────────

whisper_mapping = ParameterMapping(
    to_provider=lambda u: {"audio": u.audio or u.video},
    from_provider=lambda p: UnifiedOptions(audio=p.get("audio")),
    lossy_fields={"video": "sent as the audio source; reads back as audio"},
)


# ── fal: veed/fabric-1.0 ─────────────────────────────────────────────────────

def _fabric_resolution(resolution: str | None) -> str:
    # Fabric renders at 480p or 720p only
    if resolution == "480p":
        return "480p"
    return "720p"


fabric_mapping = ParameterMapping(
    to_provider=lambda u: {
        "image_url": u.image or u.start_image,
        "audio_url": u.audio,
        "resolution": _fabric_resolution(u.resolution),
    },
    from_provider=lambda p: UnifiedOptions(
        image=p.get("image_url"),
        audio=p.get("audio_url"),
        resolution=p.get("resolution"),
    ),
    lossy_fields={
        "resolution": "1080p (or unset) is downgraded to 720p",
        "startImage": "used as the source image when image is unset; reads back as image",
        "prompt": "lip-sync model takes no prompt; dropped",
    },
)


# ── fal: fal-ai/nano-banana ──────────────────────────────────────────────────

def _to_fal_format(fmt: str | None) -> str | None:
    return "jpeg" if fmt == "jpg" else fmt


def _from_fal_format(fmt: str | None) -> str | None:
    return "jpg" if fmt == "jpeg" else fmt


nano_banana_mapping = ParameterMapping(
    to_provider=lambda u: {
        "prompt": u.prompt,
        "aspect_ratio": u.aspect_ratio,
        "output_format": _to_fal_format(u.output_format),
    },
    from_provider=lambda p: UnifiedOptions(
        prompt=p.get("prompt"),
        aspect_ratio=p.get("aspect_ratio"),
        output_format=_from_fal_format(p.get("output_format")),
    ),
    lossy_fields={
        "outputFormat": "'jpeg' and 'jpg' both map to provider 'jpeg' and read back as 'jpg'",
        "aspectRatio": "9:21 is not accepted by the provider and fails validation",
    },
)


# ── Synchronous audio (ElevenLabs, Hume) ─────────────────────────────────────

text_to_speech_mapping = ParameterMapping(
    to_provider=lambda u: {"text": u.prompt},
    from_provider=lambda p: UnifiedOptions(prompt=p.get("text")),
)
