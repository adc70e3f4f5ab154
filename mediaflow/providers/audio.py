"""
Synchronous text-to-speech providers (ElevenLabs, Hume).

Both return audio in the response body, so generation happens inside
`start_generation` and the result is cached as base64 for the poll loop to
pick up and upload.
"""

import base64
import logging
from typing import Any

import requests

from .base import SynchronousProviderAdapter
from .http import request_with_backoff

logger = logging.getLogger(__name__)

ELEVENLABS_API_BASE = "https://api.elevenlabs.io/v1"
HUME_API_BASE = "https://api.hume.ai/v0"

_VOICE_SETTING_KEYS = ("stability", "similarity_boost", "style", "use_speaker_boost")


def _mime_for_elevenlabs(output_format: str) -> str:
    if output_format.startswith("pcm"):
        return "audio/wav"
    return "audio/mpeg"


class ElevenLabsAdapter(SynchronousProviderAdapter):
    name = "elevenlabs"
    display_name = "ElevenLabs"

    def generate(self, model_id: str, params: dict[str, Any]) -> dict[str, Any]:
        voice_id = params["voice_id"]
        output_format = params.get("output_format", "mp3_44100_128")

        body: dict[str, Any] = {
            "text": params["text"],
            "model_id": params.get("model_id", "eleven_turbo_v2_5"),
        }
        voice_settings = {k: params[k] for k in _VOICE_SETTING_KEYS if k in params}
        if voice_settings:
            body["voice_settings"] = voice_settings
        for key in ("language_code", "previous_text", "next_text"):
            if params.get(key):
                body[key] = params[key]

        logger.info(f"[ElevenLabs] Synthesizing {len(params['text'])} chars with voice {voice_id}")
        try:
            resp = request_with_backoff(
                self.session,
                "POST",
                f"{ELEVENLABS_API_BASE}/text-to-speech/{voice_id}",
                tag="ElevenLabs",
                params={"output_format": output_format},
                json=body,
                headers={"xi-api-key": self.api_key, "Accept": "audio/*"},
            )
        except requests.exceptions.RequestException as e:
            raise self._provider_error("text-to-speech", e) from e

        return {
            "audio": base64.b64encode(resp.content).decode("ascii"),
            "mimeType": _mime_for_elevenlabs(output_format),
        }


class HumeAdapter(SynchronousProviderAdapter):
    name = "hume"
    display_name = "Hume"

    def generate(self, model_id: str, params: dict[str, Any]) -> dict[str, Any]:
        utterance: dict[str, Any] = {"text": params["text"]}
        if params.get("description"):
            utterance["description"] = params["description"]
        if params.get("voice_name"):
            utterance["voice"] = {"name": params["voice_name"]}
        if params.get("speed"):
            utterance["speed"] = params["speed"]

        audio_format = params.get("format", "mp3")
        logger.info(f"[Hume] Synthesizing {len(params['text'])} chars")
        try:
            resp = request_with_backoff(
                self.session,
                "POST",
                f"{HUME_API_BASE}/tts",
                tag="Hume",
                json={"utterances": [utterance], "format": {"type": audio_format}},
                headers={"X-Hume-Api-Key": self.api_key, "Content-Type": "application/json"},
            )
        except requests.exceptions.RequestException as e:
            raise self._provider_error("tts", e) from e

        generations = resp.json().get("generations") or []
        if not generations or not generations[0].get("audio"):
            return {"status": "failed", "error": "No audio in Hume response"}

        first = generations[0]
        return {
            "audio": first["audio"],
            "mimeType": "audio/wav" if audio_format == "wav" else "audio/mpeg",
            "duration": first.get("duration"),
        }
