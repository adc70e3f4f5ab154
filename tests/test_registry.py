import pytest

from mediaflow.errors import ParameterValidationError
from mediaflow.models import JobStatus, MediaType, WaitingStrategy
from mediaflow.registry import (
    MODEL_REGISTRY,
    UNIFIED_FIELDS,
    UnifiedOptions,
    get_model_capabilities,
    get_model_info,
    map_provider_to_unified_options,
    map_unified_to_provider_options,
    normalize_status,
    parse_model_options,
    parse_model_polling,
    parse_model_webhook,
    prepare_provider_options,
)


class TestModelLookup:
    """Catalog lookups"""

    def test_known_model(self):
        """Test a catalog entry exposes provider and media type"""
        info = get_model_info("minimax/video-01")
        assert info.provider == "replicate"
        assert info.media_type == MediaType.VIDEO

    def test_unknown_model(self):
        """Test unknown ids return None from get_model_info"""
        assert get_model_info("nobody/nothing") is None

    @pytest.mark.parametrize("model_id,strategy", [
        ("bytedance/seedance-1-pro", WaitingStrategy.WEBHOOK),
        ("minimax/video-01", WaitingStrategy.WEBHOOK),
        ("bytedance/seedream-4", WaitingStrategy.POLLING),
        ("veed/fabric-1.0/fast", WaitingStrategy.POLLING),
        ("elevenlabs/turbo-v2.5", WaitingStrategy.SYNCHRONOUS),
        ("hume/tts", WaitingStrategy.SYNCHRONOUS),
    ])
    def test_capabilities(self, model_id, strategy):
        """Test each model declares its default waiting strategy"""
        assert get_model_capabilities(model_id).default_strategy == strategy

    def test_capabilities_unknown_model(self):
        """Test capabilities of an unknown model raise"""
        with pytest.raises(ParameterValidationError, match="Unknown model: nope"):
            get_model_capabilities("nope")

    def test_every_entry_has_mapping(self):
        """Test every catalog entry can translate unified options"""
        for model_id, info in MODEL_REGISTRY.items():
            assert info.mapping is not None, model_id


class TestParseModelOptions:
    """Schema validation of provider options"""

    def test_unknown_model(self):
        """Test validation against an unknown model"""
        with pytest.raises(ParameterValidationError, match="Unknown model: x/y"):
            parse_model_options("x/y", {})

    def test_missing_required_field(self):
        """Test a missing prompt is named in the error"""
        with pytest.raises(ParameterValidationError) as exc_info:
            parse_model_options("minimax/video-01", {})
        assert exc_info.value.fields == ["prompt"]
        assert "minimax/video-01" in str(exc_info.value)

    def test_every_offending_field_listed(self):
        """Test all invalid fields are reported together"""
        with pytest.raises(ParameterValidationError) as exc_info:
            parse_model_options("bytedance/seedance-1-pro", {"prompt": "", "duration": 30})
        assert set(exc_info.value.fields) == {"prompt", "duration"}

    def test_defaults_applied_and_none_dropped(self):
        """Test schema defaults fill in and unset optionals are omitted"""
        options = parse_model_options("elevenlabs/turbo-v2.5", {"text": "hi"})
        assert options["voice_id"] == "21m00Tcm4TlvDq8ikWAM"
        assert options["output_format"] == "mp3_44100_128"
        assert "stability" not in options

    def test_invalid_url_rejected(self):
        """Test background removal needs an http(s) URL"""
        with pytest.raises(ParameterValidationError):
            parse_model_options("codeplugtech/background_remover", {"image": "not-a-url"})


class TestPrepareProviderOptions:
    """Unified params → validated provider options"""

    def test_unified_fields_mapped(self):
        """Test unified names are translated to provider names"""
        options = prepare_provider_options("bytedance/seedance-1-pro", {
            "prompt": "city at night",
            "aspectRatio": "16:9",
            "cameraMotion": "fixed",
            "startImage": "https://x/a.png",
        })
        assert options == {
            "prompt": "city at night",
            "aspect_ratio": "16:9",
            "camera_fixed": True,
            "image": "https://x/a.png",
        }

    def test_native_fields_override(self):
        """Test provider-native params override mapped values"""
        options = prepare_provider_options("bytedance/seedream-4", {"prompt": "p", "size": "4K"})
        assert options["size"] == "4K"
        assert options["prompt"] == "p"

    def test_text_to_speech_prompt(self):
        """Test TTS models receive the prompt as text"""
        options = prepare_provider_options("hume/tts", {"prompt": "hello", "voice_name": "Ava"})
        assert options["text"] == "hello"
        assert options["voice_name"] == "Ava"

    def test_invalid_unified_value(self):
        """Test out-of-range unified options fail validation"""
        with pytest.raises(ParameterValidationError) as exc_info:
            prepare_provider_options("bytedance/seedance-1-pro", {"prompt": "p", "resolution": "8k"})
        assert "resolution" in exc_info.value.fields

    def test_unified_fields_are_camel_case(self):
        """Test the unified field set uses wire names"""
        assert {"prompt", "aspectRatio", "startImage", "endImage", "cameraMotion"} <= UNIFIED_FIELDS
        assert "aspect_ratio" not in UNIFIED_FIELDS


ROUND_TRIPS = [
    ("bytedance/seedance-1-pro", dict(
        prompt="p", duration=5, resolution="720p", aspect_ratio="16:9", seed=7,
        start_image="https://x/s.png", end_image="https://x/e.png", camera_motion="dynamic",
    )),
    ("minimax/video-01", dict(prompt="p", start_image="https://x/s.png")),
    ("bytedance/seedream-4", dict(prompt="p", aspect_ratio="1:1", image="https://x/ref.png")),
    ("codeplugtech/background_remover", dict(image="https://x/i.png")),
    ("nateraw/video-background-remover", dict(video="https://x/v.mp4")),
    ("vaibhavs10/incredibly-fast-whisper", dict(audio="https://x/a.mp3")),
    ("veed/fabric-1.0", dict(image="https://x/i.png", audio="https://x/a.mp3", resolution="480p")),
    ("fal-ai/nano-banana", dict(prompt="p", aspect_ratio="16:9", output_format="png")),
    ("elevenlabs/turbo-v2.5", dict(prompt="hello")),
    ("hume/tts", dict(prompt="hello")),
]


class TestMappingRoundTrip:
    """from_provider(to_provider(u)) reproduces u outside documented lossy fields"""

    @pytest.mark.parametrize("model_id,fields", ROUND_TRIPS, ids=[m for m, _ in ROUND_TRIPS])
    def test_round_trip(self, model_id, fields):
        """Test unified options survive a provider round trip"""
        info = get_model_info(model_id)
        unified = UnifiedOptions(**fields)

        provider_options = map_unified_to_provider_options(info.provider, model_id, unified)
        back = map_provider_to_unified_options(info.provider, model_id, provider_options)

        lossy = set(info.mapping.lossy_fields)
        original = {k: v for k, v in unified.to_wire().items() if k not in lossy}
        restored = {k: v for k, v in back.to_wire().items() if k not in lossy}
        assert restored == original

    def test_lossy_fields_are_unified_names(self):
        """Test every documented lossy field is a real unified field"""
        for model_id, info in MODEL_REGISTRY.items():
            assert set(info.mapping.lossy_fields) <= UNIFIED_FIELDS, model_id

    def test_documented_format_loss(self):
        """Test jpeg reads back as jpg on nano-banana"""
        unified = UnifiedOptions(prompt="p", output_format="jpeg")
        options = map_unified_to_provider_options("fal", "fal-ai/nano-banana", unified)
        assert options["output_format"] == "jpeg"
        back = map_provider_to_unified_options("fal", "fal-ai/nano-banana", options)
        assert back.output_format == "jpg"

    def test_documented_resolution_loss(self):
        """Test Fabric downgrades 1080p to 720p"""
        options = map_unified_to_provider_options(
            "fal", "veed/fabric-1.0", {"image": "https://x/i.png", "audio": "https://x/a.mp3", "resolution": "1080p"}
        )
        assert options["resolution"] == "720p"

    def test_wrong_provider(self):
        """Test mapping through the wrong provider is rejected"""
        with pytest.raises(ParameterValidationError, match="not served by provider fal"):
            map_unified_to_provider_options("fal", "minimax/video-01", {"prompt": "p"})

    def test_unknown_unified_field(self):
        """Test unified dicts reject unknown keys"""
        with pytest.raises(ParameterValidationError):
            map_unified_to_provider_options("replicate", "minimax/video-01", {"prompt": "p", "colour": "red"})


class TestStatusVocabulary:
    """Provider status strings normalize to three outcomes"""

    @pytest.mark.parametrize("raw", ["failed", "canceled", "cancelled", "FAILED", "ERROR"])
    def test_failed(self, raw):
        """Test failure spellings"""
        assert normalize_status(raw) == JobStatus.FAILED

    @pytest.mark.parametrize("raw", ["succeeded", "COMPLETED", "OK", "success"])
    def test_completed(self, raw):
        """Test success spellings"""
        assert normalize_status(raw) == JobStatus.COMPLETED

    @pytest.mark.parametrize("raw", ["starting", "processing", "queued", "IN_PROGRESS", "IN_QUEUE", "mystery", None])
    def test_in_flight(self, raw):
        """Test in-flight and unknown statuses"""
        assert normalize_status(raw) == JobStatus.PROCESSING


class TestParsers:
    """Webhook and polling payload parsers"""

    def test_replicate_string_output(self):
        """Test a Replicate prediction with a single URL output"""
        parsed = parse_model_polling("minimax/video-01", {
            "id": "p1", "status": "succeeded", "output": "https://x/video.mp4",
        })
        assert parsed.status == JobStatus.COMPLETED
        assert parsed.outputs[0].url == "https://x/video.mp4"
        assert parsed.outputs[0].mime_type == "video/mp4"
        assert parsed.metadata == {"predictionId": "p1"}

    def test_replicate_list_output(self):
        """Test list outputs become one MediaOutput each"""
        parsed = parse_model_webhook("bytedance/seedream-4", {
            "status": "succeeded", "output": ["https://x/1.png", "https://x/2.png"],
        })
        assert [o.url for o in parsed.outputs] == ["https://x/1.png", "https://x/2.png"]
        assert parsed.outputs[0].type == MediaType.IMAGE

    def test_success_without_output_fails(self):
        """Test a success status without extractable output is a failure"""
        parsed = parse_model_polling("minimax/video-01", {"status": "succeeded", "output": None})
        assert parsed.status == JobStatus.FAILED
        assert parsed.error == "No video output in completed response"

    def test_replicate_failure_message(self):
        """Test the provider error text is kept"""
        parsed = parse_model_webhook("minimax/video-01", {"status": "failed", "error": "NSFW content"})
        assert parsed.status == JobStatus.FAILED
        assert parsed.error == "NSFW content"

    def test_replicate_in_flight(self):
        """Test in-flight payloads parse as processing"""
        parsed = parse_model_webhook("minimax/video-01", {"status": "starting"})
        assert parsed.status == JobStatus.PROCESSING
        assert parsed.outputs == []

    def test_whisper_transcript(self):
        """Test Whisper output becomes transcript data"""
        chunks = [{"timestamp": [0.0, 1.5], "text": "hello"}]
        parsed = parse_model_polling("vaibhavs10/incredibly-fast-whisper", {
            "status": "succeeded", "output": {"text": "hello", "chunks": chunks},
        })
        assert parsed.status == JobStatus.COMPLETED
        assert parsed.outputs == []
        assert parsed.data == {"text": "hello", "transcript": chunks}

    def test_fal_webhook_shape(self):
        """Test a fal webhook body with payload.video.url"""
        parsed = parse_model_webhook("veed/fabric-1.0", {
            "status": "OK", "request_id": "r1", "payload": {"video": {"url": "https://fal/v.mp4"}},
        })
        assert parsed.status == JobStatus.COMPLETED
        assert parsed.outputs[0].url == "https://fal/v.mp4"
        assert parsed.metadata == {"requestId": "r1"}

    def test_fal_poll_images(self):
        """Test fal image results expand every image"""
        parsed = parse_model_polling("fal-ai/nano-banana", {
            "status": "COMPLETED",
            "output": {"images": [
                {"url": "https://fal/1.jpg", "width": 1024, "height": 1024},
                {"url": "https://fal/2.png", "content_type": "image/png"},
            ]},
        })
        assert [o.url for o in parsed.outputs] == ["https://fal/1.jpg", "https://fal/2.png"]
        assert parsed.outputs[0].mime_type == "image/jpeg"
        assert parsed.outputs[0].width == 1024
        assert parsed.outputs[1].mime_type == "image/png"

    def test_fal_error(self):
        """Test fal error bodies"""
        parsed = parse_model_webhook("veed/fabric-1.0", {"status": "ERROR", "error": {"message": "bad image"}})
        assert parsed.status == JobStatus.FAILED
        assert parsed.error == "bad image"

    def test_inline_audio(self):
        """Test a cached synchronous result carries the base64 payload"""
        parsed = parse_model_polling("elevenlabs/turbo-v2.5", {
            "status": "completed", "audio": "QUJD" * 40, "mimeType": "audio/mpeg",
        })
        assert parsed.status == JobStatus.COMPLETED
        assert parsed.outputs[0].type == MediaType.AUDIO
        assert parsed.outputs[0].url == "QUJD" * 40

    def test_inline_audio_missing(self):
        """Test a completed synchronous result without audio fails"""
        parsed = parse_model_polling("hume/tts", {"status": "completed"})
        assert parsed.status == JobStatus.FAILED
