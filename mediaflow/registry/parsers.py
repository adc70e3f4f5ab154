"""
Normalize raw provider payloads (webhook bodies and poll responses) into a
`ParseResult`.

Status vocabulary:
  failed      — failed, canceled, cancelled, error
  completed   — succeeded, completed, ok, success (only with an extractable output)
  processing  — starting, processing, queued, in_progress, in_queue, anything else
"""

import logging
from typing import Any, Callable, Optional

from ..models import JobStatus, MediaOutput, MediaType, ParseResult

logger = logging.getLogger(__name__)

Parser = Callable[[dict[str, Any]], ParseResult]

FAILED_STATUSES = {"failed", "canceled", "cancelled", "error"}
SUCCESS_STATUSES = {"succeeded", "completed", "ok", "success"}

DEFAULT_MIME_TYPES = {
    MediaType.VIDEO: "video/mp4",
    MediaType.IMAGE: "image/png",
    MediaType.AUDIO: "audio/mpeg",
}


def normalize_status(raw_status: Any) -> JobStatus:
    status = str(raw_status or "").lower()
    if status in FAILED_STATUSES:
        return JobStatus.FAILED
    if status in SUCCESS_STATUSES:
        return JobStatus.COMPLETED
    return JobStatus.PROCESSING


def _failed(error: str, metadata: Optional[dict] = None) -> ParseResult:
    return ParseResult(status=JobStatus.FAILED, error=error, metadata=metadata or {})


def _error_text(payload: dict[str, Any], default: str) -> str:
    error = payload.get("error") or payload.get("detail")
    if isinstance(error, dict):
        error = error.get("message") or str(error)
    return str(error) if error else default


def _url_from(value: Any, *keys: str) -> Optional[str]:
    """Pull a URL from a string, or the first matching key of a dict."""
    if isinstance(value, str) and value:
        return value
    if isinstance(value, dict):
        for key in keys:
            candidate = value.get(key)
            if isinstance(candidate, str) and candidate:
                return candidate
            if isinstance(candidate, dict) and isinstance(candidate.get("url"), str):
                return candidate["url"]
    return None


# ═════════════════════════════════════════════════════════════════════════════
# Replicate: predictions API
# ═════════════════════════════════════════════════════════════════════════════

def replicate_parser(media_type: MediaType, mime_type: Optional[str] = None) -> Parser:
    """Build a parser for a Replicate prediction of the given media type."""
    mime = mime_type or DEFAULT_MIME_TYPES.get(media_type)

    def parse(payload: dict[str, Any]) -> ParseResult:
        metadata = {"predictionId": payload.get("id")} if payload.get("id") else {}
        status = normalize_status(payload.get("status"))

        if status == JobStatus.FAILED:
            return _failed(_error_text(payload, "Generation failed"), metadata)
        if status == JobStatus.PROCESSING:
            return ParseResult(status=JobStatus.PROCESSING, metadata=metadata)

        output = payload.get("output")
        items = output if isinstance(output, list) else [output]
        urls = [u for u in (_url_from(item, "url", media_type.value, "output") for item in items) if u]
        if not urls:
            return _failed(f"No {media_type.value} output in completed response", metadata)

        outputs = [MediaOutput(type=media_type, url=url, mime_type=mime) for url in urls]
        return ParseResult(status=JobStatus.COMPLETED, outputs=outputs, metadata=metadata)

    return parse


def replicate_transcript_parser(payload: dict[str, Any]) -> ParseResult:
    """Whisper-style output: {text, chunks:[{timestamp:[start, end], text}]}."""
    metadata = {"predictionId": payload.get("id")} if payload.get("id") else {}
    status = normalize_status(payload.get("status"))

    if status == JobStatus.FAILED:
        return _failed(_error_text(payload, "Transcription failed"), metadata)
    if status == JobStatus.PROCESSING:
        return ParseResult(status=JobStatus.PROCESSING, metadata=metadata)

    output = payload.get("output")
    if not isinstance(output, dict) or not (output.get("chunks") or output.get("segments")):
        return _failed("No transcript output in completed response", metadata)

    chunks = output.get("chunks") or output.get("segments")
    return ParseResult(
        status=JobStatus.COMPLETED,
        metadata=metadata,
        data={"text": output.get("text", ""), "transcript": chunks},
    )


# ═════════════════════════════════════════════════════════════════════════════
# fal: queue API (poll result) and webhook body
# ═════════════════════════════════════════════════════════════════════════════

def fal_parser(media_type: MediaType, mime_type: Optional[str] = None) -> Parser:
    """
    fal payloads arrive in three shapes:
      poll:    {status: COMPLETED, output: {...result...}}
      webhook: {status: OK|ERROR, request_id, payload: {...result...}}
      legacy:  {status: COMPLETED, outputs: [{video: {...}}]}
    """
    mime = mime_type or DEFAULT_MIME_TYPES.get(media_type)
    collection_key = "images" if media_type == MediaType.IMAGE else None

    def parse(payload: dict[str, Any]) -> ParseResult:
        request_id = payload.get("request_id") or payload.get("requestId")
        metadata = {"requestId": request_id} if request_id else {}
        status = normalize_status(payload.get("status"))

        if status == JobStatus.FAILED:
            return _failed(_error_text(payload, "Generation failed"), metadata)
        if status == JobStatus.PROCESSING:
            return ParseResult(status=JobStatus.PROCESSING, metadata=metadata)

        result = payload.get("payload") or payload.get("output") or payload.get("outputs")
        if isinstance(result, list):
            result = result[0] if result else None

        outputs: list[MediaOutput] = []
        if isinstance(result, dict):
            if collection_key and isinstance(result.get(collection_key), list):
                for item in result[collection_key]:
                    url = _url_from(item, "url")
                    if url:
                        item_mime = item.get("content_type") if isinstance(item, dict) else None
                        outputs.append(MediaOutput(
                            type=media_type,
                            url=url,
                            mime_type=item_mime or mime,
                            width=item.get("width") if isinstance(item, dict) else None,
                            height=item.get("height") if isinstance(item, dict) else None,
                        ))
            else:
                url = _url_from(result, media_type.value, "url")
                if url:
                    outputs.append(MediaOutput(type=media_type, url=url, mime_type=mime))

        if not outputs:
            return _failed(f"No {media_type.value} output in completed response", metadata)
        return ParseResult(status=JobStatus.COMPLETED, outputs=outputs, metadata=metadata)

    return parse


# ═════════════════════════════════════════════════════════════════════════════
# Synchronous providers: cached inline result
# ═════════════════════════════════════════════════════════════════════════════

def inline_audio_parser(payload: dict[str, Any]) -> ParseResult:
    """Cached synchronous TTS result: {status, audio (base64) | url, mimeType}."""
    status = normalize_status(payload.get("status"))
    if status == JobStatus.FAILED:
        return _failed(_error_text(payload, "Generation failed"))
    if status == JobStatus.PROCESSING:
        return ParseResult(status=JobStatus.PROCESSING)

    data = payload.get("url") or payload.get("audio")
    if not data:
        return _failed("No audio output in completed response")

    return ParseResult(
        status=JobStatus.COMPLETED,
        outputs=[MediaOutput(
            type=MediaType.AUDIO,
            url=data,
            mime_type=payload.get("mimeType") or DEFAULT_MIME_TYPES[MediaType.AUDIO],
            duration=payload.get("duration"),
        )],
    )
