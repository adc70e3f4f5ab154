"""
Client for the media render service (FFmpeg sidecar) used by merge,
subtitle, green-screen and layer jobs. The service streams the rendered
MP4 back in the response body.
"""

import logging
from typing import Any, Optional

import httpx

from . import config
from .errors import ProviderError

logger = logging.getLogger(__name__)

RENDER_TIMEOUT = 600


def _post(path: str, body: dict[str, Any], client: Optional[httpx.Client] = None) -> bytes:
    url = f"{config.MEDIA_RENDER_URL.rstrip('/')}{path}"
    owns_client = client is None
    client = client or httpx.Client(timeout=RENDER_TIMEOUT)
    try:
        resp = client.post(url, json=body)
        resp.raise_for_status()
        return resp.content
    except httpx.HTTPStatusError as e:
        raise ProviderError(
            f"Render service {path} failed: {e.response.status_code} {e.response.text[:300]}"
        ) from e
    except httpx.HTTPError as e:
        raise ProviderError(f"Render service {path} unreachable: {e}") from e
    finally:
        if owns_client:
            client.close()


def merge_videos(
    video_urls: list[str],
    transition: str = "cut",
    transition_duration: Optional[float] = None,
    client: Optional[httpx.Client] = None,
) -> bytes:
    """Concatenate videos in order; returns the merged MP4 bytes."""
    logger.info(f"Calling render service: merge {len(video_urls)} videos, transition={transition}")
    body = {
        "videos": [{"url": u} for u in video_urls],
        "transition": {"type": transition, "duration": transition_duration},
    }
    return _post("/merge", body, client)


def burn_subtitles(
    video_url: str,
    transcript: list[dict[str, Any]],
    style: str = "default",
    language: str = "en",
    client: Optional[httpx.Client] = None,
) -> bytes:
    """Render transcript chunks onto the video; returns the captioned MP4 bytes."""
    logger.info(f"Calling render service: subtitles ({len(transcript)} chunks, style={style})")
    body = {
        "videoUrl": video_url,
        "transcript": transcript,
        "style": style,
        "language": language,
    }
    return _post("/subtitles", body, client)


def replace_green_screen(
    video_url: str,
    background_urls: list[str],
    chroma_key_color: Optional[str] = None,
    similarity: Optional[float] = None,
    blend: Optional[float] = None,
    client: Optional[httpx.Client] = None,
) -> bytes:
    """
    Key out the green screen of `video_url` and composite it over the
    backgrounds. Several backgrounds are shown in sequence.
    """
    logger.info(f"Calling render service: green screen over {len(background_urls)} background(s)")
    body = {
        "videoUrl": video_url,
        "backgroundUrls": background_urls,
        "chromaKeyColor": chroma_key_color,
        "similarity": similarity,
        "blend": blend,
    }
    return _post("/replace-green-screen", body, client)


def layer_media(
    layers: list[dict[str, Any]],
    output_duration: Optional[float] = None,
    output_width: Optional[int] = None,
    output_height: Optional[int] = None,
    main_layer: Optional[int] = None,
    client: Optional[httpx.Client] = None,
) -> bytes:
    """Stack media layers (bottom first) into one video; returns the MP4 bytes."""
    logger.info(f"Calling render service: layer {len(layers)} layer(s)")
    body = {
        "layers": layers,
        "outputDuration": output_duration,
        "outputWidth": output_width,
        "outputHeight": output_height,
        "mainLayer": main_layer,
    }
    return _post("/layer", body, client)
