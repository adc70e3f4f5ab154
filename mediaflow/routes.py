"""
HTTP routes.

  POST /execute                       submit an execution plan (202)
  GET  /execute/{executionId}/status  status view
  POST /webhooks/job/{jobRecordId}    inbound provider callback
"""

import logging
from typing import Any

from fastapi import APIRouter, Body, Depends, HTTPException, Request

from . import fallback_limiter, metrics, rate_limiter
from .errors import PlanValidationError
from .models import ExecuteRequest, ExecuteResponse, ExecutionStatus, ExecutionStatusResponse
from .services import Services

logger = logging.getLogger(__name__)

execute_router = APIRouter(prefix="/execute", tags=["execute"])
webhook_router = APIRouter(prefix="/webhooks", tags=["webhooks"])


def get_services(request: Request) -> Services:
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise HTTPException(status_code=503, detail="Service is starting up")
    return services


def _enforce_rate_limit(request: Request, services: Services):
    client_id = getattr(request.state, "api_key", None) or (
        request.client.host if request.client else "anonymous"
    )
    if services.redis is not None:
        allowed, _, retry_after = rate_limiter.check_rate_limit(services.redis, client_id)
    else:
        allowed, _, retry_after = fallback_limiter.check_rate_limit(client_id)
    if not allowed:
        raise HTTPException(
            status_code=429,
            detail=f"Rate limit exceeded. Try again in {retry_after}s.",
            headers={"Retry-After": str(retry_after)},
        )


# ── Execute ──────────────────────────────────────────────────────────────────

@execute_router.post("", status_code=202, response_model=ExecuteResponse)
def submit_execution(
    body: ExecuteRequest,
    request: Request,
    services: Services = Depends(get_services),
):
    metrics.inc_counter("requests.execute")
    _enforce_rate_limit(request, services)

    try:
        execution = services.orchestrator.create_execution(body.execution_plan, body.options)
    except PlanValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except PermissionError as e:
        raise HTTPException(status_code=403, detail=str(e))
    except Exception as e:
        logger.error(f"Failed to create execution: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to create execution")

    return ExecuteResponse(
        execution_id=execution.id,
        status=ExecutionStatus.PENDING,
        created_at=execution.created_at,
    )


@execute_router.get("/{execution_id}/status", response_model=ExecutionStatusResponse)
def execution_status(execution_id: str, services: Services = Depends(get_services)):
    try:
        status = services.orchestrator.get_status(execution_id)
    except Exception as e:
        logger.error(f"Failed to load execution {execution_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to load execution")
    if status is None:
        raise HTTPException(status_code=404, detail="Execution not found")
    return status


# ── Provider callbacks ───────────────────────────────────────────────────────

@webhook_router.post("/job/{job_record_id}")
def provider_webhook(
    job_record_id: str,
    payload: dict[str, Any] = Body(...),
    services: Services = Depends(get_services),
):
    metrics.inc_counter("requests.provider_webhook")
    try:
        return services.worker.handle_provider_webhook(job_record_id, payload)
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.error(f"Webhook for job {job_record_id} failed: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to process webhook")
