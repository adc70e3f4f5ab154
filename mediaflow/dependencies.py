"""
Dependency-reference tokens.

The graph builder replaces a nested operation with a token such as
`_imageJobDependency:job2`; at run time the worker swaps the token for the
completed job's output. Media tokens resolve to a URL, transcript tokens to
the transcript chunk list.
"""

import json
import re
from typing import Any, Optional

from .errors import ExtractionError
from .models import OperationType

TOKEN_PATTERN = re.compile(r"^_(image|audio|video|transcript)JobDependency:(.+)$")

# Checked in order on an object result
MEDIA_FIELDS = ("image", "url", "output", "imageUrl")
TRANSCRIPT_FIELDS = ("transcript", "chunks")

# Input filled from the chained predecessor when the caller left it empty
PRIMARY_INPUT = {
    OperationType.REMOVE_BACKGROUND: "video",
    OperationType.REMOVE_IMAGE_BACKGROUND: "image",
    OperationType.TRANSCRIBE: "audio",
    OperationType.ADD_SUBTITLES: "video",
    OperationType.REPLACE_GREEN_SCREEN: "video",
}


def make_token(kind: str, job_id: str) -> str:
    return f"_{kind}JobDependency:{job_id}"


def parse_token(value: Any) -> Optional[tuple[str, str]]:
    """Return (kind, job_id) if `value` is a dependency token."""
    if not isinstance(value, str):
        return None
    match = TOKEN_PATTERN.match(value)
    if not match:
        return None
    return match.group(1), match.group(2)


def iter_tokens(value: Any):
    """Yield (kind, job_id) for every token in `value`, including inside lists and dicts."""
    if isinstance(value, dict):
        for item in value.values():
            yield from iter_tokens(item)
    elif isinstance(value, list):
        for item in value:
            yield from iter_tokens(item)
    else:
        token = parse_token(value)
        if token is not None:
            yield token


def extract_media_url(result: Any, job_id: str = "?") -> str:
    """
    Pull a media URL out of a completed dependency's result.

    A raw string is used as-is; an object is checked for image, url, output,
    imageUrl in that order, then for outputs[0].url.
    """
    if isinstance(result, str) and result:
        return result
    if isinstance(result, dict):
        for field in MEDIA_FIELDS:
            value = result.get(field)
            if isinstance(value, str) and value:
                return value
        outputs = result.get("outputs")
        if isinstance(outputs, list) and outputs and isinstance(outputs[0], dict):
            url = outputs[0].get("url")
            if isinstance(url, str) and url:
                return url
    raise ExtractionError(
        f"Could not extract media URL from dependency {job_id} result: {_preview(result)}"
    )


def extract_transcript(result: Any, job_id: str = "?") -> Any:
    if isinstance(result, list):
        return result
    if isinstance(result, dict):
        for field in TRANSCRIPT_FIELDS:
            value = result.get(field)
            if value:
                return value
    raise ExtractionError(
        f"Could not extract transcript from dependency {job_id} result: {_preview(result)}"
    )


def resolve_params(params: dict[str, Any], results: dict[str, Any]) -> dict[str, Any]:
    """
    Replace every dependency token in `params` with the referenced job's output.
    Tokens nested in lists and dicts (layer media, green-screen backgrounds)
    are replaced too.

    Args:
        params:  Job params as stored in the plan.
        results: Map of dependency job id → completed result.
    """
    return {key: _resolve_value(key, value, results) for key, value in params.items()}


def _resolve_value(key: str, value: Any, results: dict[str, Any]) -> Any:
    if isinstance(value, dict):
        return {k: _resolve_value(key, v, results) for k, v in value.items()}
    if isinstance(value, list):
        return [_resolve_value(key, v, results) for v in value]
    token = parse_token(value)
    if token is None:
        return value
    kind, job_id = token
    if job_id not in results:
        raise ExtractionError(f"Dependency {job_id} referenced by '{key}' has no result")
    if kind == "transcript":
        return extract_transcript(results[job_id], job_id)
    return extract_media_url(results[job_id], job_id)


def _preview(value: Any, limit: int = 200) -> str:
    try:
        text = json.dumps(value, default=str)
    except (TypeError, ValueError):
        text = repr(value)
    return text[:limit]
