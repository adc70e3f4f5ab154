"""
API-key authentication middleware.

Every /execute* endpoint requires a key from MEDIAFLOW_API_KEYS, sent as
either `Authorization: Bearer <key>` or `X-Api-Key: <key>`. Provider
callbacks (/webhooks/job/*), health, metrics and docs are public.
"""

import secrets

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from . import config


def _provided_key(request: Request) -> str:
    auth = request.headers.get("Authorization", "")
    if auth.lower().startswith("bearer "):
        return auth[7:].strip()
    return request.headers.get("X-Api-Key", "")


class ApiKeyAuthMiddleware(BaseHTTPMiddleware):
    """Reject unauthenticated requests to /execute endpoints."""

    PROTECTED_PREFIX = "/execute"

    def __init__(self, app, api_keys: list[str] | None = None, environment: str | None = None):
        super().__init__(app)
        self.api_keys = api_keys if api_keys is not None else config.MEDIAFLOW_API_KEYS
        self.environment = environment or config.ENVIRONMENT

    async def dispatch(self, request: Request, call_next):
        if not request.url.path.startswith(self.PROTECTED_PREFIX):
            return await call_next(request)

        if not self.api_keys:
            # Local development without keys configured: allow all traffic
            if self.environment == "development":
                return await call_next(request)
            return JSONResponse(status_code=500, content={"detail": "MEDIAFLOW_API_KEYS not configured"})

        provided = _provided_key(request)
        # Constant-time compare against every configured key
        if not any(secrets.compare_digest(provided, key) for key in self.api_keys):
            return JSONResponse(status_code=401, content={"detail": "Invalid or missing API key"})

        request.state.api_key = provided
        return await call_next(request)
