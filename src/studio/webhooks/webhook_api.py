"""HTTP route receiving vendor callbacks."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request, status

from ..jobs.jobs_errors import JobNotFoundError, JobValidationError, UnauthorizedWebhookError
from ..jobs.jobs_models import FailureReason
from .webhook_schemas import WebhookAck
from .webhook_service import WebhookService
from .webhook_signature import SIGNATURE_HEADER

router = APIRouter(prefix="/api/webhooks", tags=["webhooks"])


def get_webhook_service(request: Request) -> WebhookService:
    try:
        return request.app.state.webhook_service  # type: ignore[attr-defined]
    except AttributeError as exc:  # pragma: no cover - defensive path
        raise RuntimeError("WebhookService is not configured") from exc


@router.post("/vendor", response_model=WebhookAck)
async def vendor_webhook(
    request: Request,
    service: WebhookService = Depends(get_webhook_service),
) -> WebhookAck:
    """Apply a signed completion or failure report from a provider."""
    body = await request.body()
    try:
        job = service.handle(body, request.headers.get(SIGNATURE_HEADER))
    except UnauthorizedWebhookError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"status": "error", "failure_reason": FailureReason.INVALID_SIGNATURE.value},
        ) from exc
    except JobNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"status": "error", "failure_reason": FailureReason.JOB_NOT_FOUND.value},
        ) from exc
    except JobValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={
                "status": "error",
                "failure_reason": FailureReason.INVALID_REQUEST.value,
                "details": str(exc),
            },
        ) from exc
    return WebhookAck(job_id=job.id, job_status=job.status.value)
