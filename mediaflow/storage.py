"""
S3/R2 object storage for job artifacts.

Inline provider payloads (base64 audio, rendered merges) are written under:
  executions/{execution_id}/{job_id}.{ext}
  executions/{execution_id}/{job_id}/output.mp4

Uses boto3 against the R2 (or any S3-compatible) endpoint and returns the
public URL of the stored object.
"""

import base64
import binascii
import logging
import os
import re
from typing import Optional

import boto3
from botocore.config import Config as BotoConfig

from .errors import UploadError
from .models import MediaType

logger = logging.getLogger(__name__)

# ── Config ───────────────────────────────────────────────────────────────────

R2_PUBLIC_URL = os.getenv("R2_PUBLIC_URL", "")
R2_ACCOUNT_ID = os.getenv("R2_ACCOUNT_ID", "")
R2_ACCESS_KEY_ID = os.getenv("R2_ACCESS_KEY_ID", "")
R2_SECRET_ACCESS_KEY = os.getenv("R2_SECRET_ACCESS_KEY", "")
R2_BUCKET_NAME = os.getenv("R2_BUCKET_NAME", "assets")
S3_ENDPOINT_URL = os.getenv("S3_ENDPOINT_URL", "")

MIN_INLINE_LENGTH = 100
_BASE64_RE = re.compile(r"^[A-Za-z0-9+/=\s_-]+$")

EXTENSIONS = {
    "video/mp4": "mp4",
    "video/webm": "webm",
    "video/quicktime": "mov",
    "audio/mpeg": "mp3",
    "audio/mp3": "mp3",
    "audio/wav": "wav",
    "audio/x-wav": "wav",
    "image/png": "png",
    "image/jpeg": "jpg",
    "image/gif": "gif",
    "image/webp": "webp",
}

FALLBACK_EXTENSIONS = {
    MediaType.VIDEO: "mp4",
    MediaType.AUDIO: "mp3",
    MediaType.IMAGE: "png",
}


# ── Helpers ──────────────────────────────────────────────────────────────────

def is_inline_payload(value) -> bool:
    """True for base64 / data: payloads, False for reference URLs."""
    if not isinstance(value, str):
        return False
    if value.startswith("data:"):
        return True
    if value.startswith(("http://", "https://")):
        return False
    return len(value) >= MIN_INLINE_LENGTH and bool(_BASE64_RE.match(value[:MIN_INLINE_LENGTH]))


def decode_inline_payload(value: str) -> tuple[bytes, Optional[str]]:
    """Decode a base64 string or data: URL. Returns (bytes, mime type if known)."""
    mime = None
    if value.startswith("data:"):
        header, _, value = value.partition(",")
        mime = header[5:].split(";")[0] or None
    try:
        return base64.b64decode(value, validate=False), mime
    except (binascii.Error, ValueError) as e:
        raise UploadError(f"Inline payload is not valid base64: {e}") from e


def extension_for(mime_type: Optional[str], media_type: Optional[MediaType] = None) -> str:
    if mime_type and mime_type in EXTENSIONS:
        return EXTENSIONS[mime_type]
    if media_type in FALLBACK_EXTENSIONS:
        return FALLBACK_EXTENSIONS[media_type]
    return "bin"


# ── Storage ──────────────────────────────────────────────────────────────────

class ObjectStorage:
    """Thin wrapper over an S3 client: upload(path, bytes) → public URL."""

    def __init__(self, bucket: str = R2_BUCKET_NAME, public_url: str = R2_PUBLIC_URL, client=None):
        self.bucket = bucket
        self.public_url = public_url.rstrip("/")
        self._client = client

    @property
    def s3(self):
        if self._client is None:
            endpoint = S3_ENDPOINT_URL or (
                f"https://{R2_ACCOUNT_ID}.r2.cloudflarestorage.com" if R2_ACCOUNT_ID else None
            )
            if not endpoint or not R2_ACCESS_KEY_ID or not R2_SECRET_ACCESS_KEY:
                raise UploadError(
                    "Object storage is not configured: set R2_ACCOUNT_ID (or S3_ENDPOINT_URL), "
                    "R2_ACCESS_KEY_ID and R2_SECRET_ACCESS_KEY"
                )
            self._client = boto3.client(
                "s3",
                endpoint_url=endpoint,
                aws_access_key_id=R2_ACCESS_KEY_ID,
                aws_secret_access_key=R2_SECRET_ACCESS_KEY,
                config=BotoConfig(signature_version="s3v4"),
                region_name="auto",
            )
        return self._client

    def upload(self, path: str, data: bytes, content_type: str = "application/octet-stream") -> str:
        try:
            self.s3.put_object(
                Bucket=self.bucket,
                Key=path,
                Body=data,
                ContentType=content_type,
            )
        except UploadError:
            raise
        except Exception as e:
            logger.error(f"Storage upload failed for key={path}: {e}")
            raise UploadError(f"Upload to storage failed for {path}: {e}") from e

        public_url = f"{self.public_url}/{path}"
        logger.info(f"Uploaded {len(data)} bytes to {public_url}")
        return public_url
