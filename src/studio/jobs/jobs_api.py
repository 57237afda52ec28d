"""HTTP routes for jobs and credits."""

from __future__ import annotations

import logging
import secrets
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status

from ..identity.demo_identity import Identity, get_identity
from .jobs_errors import (
    InsufficientCreditsError,
    JobNotFoundError,
    JobStateError,
    JobValidationError,
    RateLimitExceededError,
)
from .jobs_models import FailureReason
from .jobs_schemas import (
    CreateJobRequest,
    CreateJobResponse,
    CreditsResponse,
    GrantCreditsRequest,
    JobDetails,
    JobListResponse,
    job_details,
    job_list,
    job_summary,
)
from .jobs_service import JobOrchestrator

router = APIRouter(prefix="/api", tags=["jobs"])
logger = logging.getLogger(__name__)


def get_job_orchestrator(request: Request) -> JobOrchestrator:
    """Fetch the job orchestrator from application state."""
    try:
        return request.app.state.job_orchestrator  # type: ignore[attr-defined]
    except AttributeError as exc:  # pragma: no cover - defensive path
        raise RuntimeError("JobOrchestrator is not configured") from exc


def _error(status_code: int, reason: FailureReason, **details: Any) -> HTTPException:
    return HTTPException(
        status_code=status_code,
        detail={"status": "error", "failure_reason": reason.value, **details},
    )


@router.post("/jobs", response_model=CreateJobResponse)
async def create_job(
    payload: CreateJobRequest,
    identity: Identity = Depends(get_identity),
    service: JobOrchestrator = Depends(get_job_orchestrator),
) -> CreateJobResponse:
    """Reserve credits, persist a queued job and start it in the background."""
    try:
        job = await service.create_job(
            payload.tool or "",
            payload.prompt,
            payload.inputs,
            user_id=identity.user_id,
            session_id=identity.session_id,
        )
    except JobValidationError as exc:
        logger.warning("jobs.create.invalid", extra={"tool": payload.tool, "error": str(exc)})
        raise _error(
            status.HTTP_400_BAD_REQUEST, FailureReason.INVALID_REQUEST, details=str(exc)
        ) from exc
    except InsufficientCreditsError as exc:
        logger.warning(
            "jobs.create.insufficient_credits",
            extra={"user_id": identity.user_id, "credits": exc.remaining, "cost": exc.cost},
        )
        raise _error(
            status.HTTP_402_PAYMENT_REQUIRED,
            FailureReason.INSUFFICIENT_CREDITS,
            details=str(exc),
            credits=exc.remaining,
            cost=exc.cost,
        ) from exc
    except RateLimitExceededError as exc:
        logger.warning(
            "jobs.create.rate_limited",
            extra={"session_id": identity.session_id, "limit": exc.limit},
        )
        raise _error(
            status.HTTP_429_TOO_MANY_REQUESTS,
            FailureReason.RATE_LIMITED,
            details=str(exc),
            limit=exc.limit,
        ) from exc
    return CreateJobResponse(job=job_summary(job))


@router.get("/jobs", response_model=JobListResponse)
async def list_jobs(
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    identity: Identity = Depends(get_identity),
    service: JobOrchestrator = Depends(get_job_orchestrator),
) -> JobListResponse:
    return job_list(service.list_jobs(identity.user_id, limit=limit, offset=offset))


@router.get("/jobs/{job_id}", response_model=JobDetails)
async def get_job(
    job_id: str,
    service: JobOrchestrator = Depends(get_job_orchestrator),
) -> JobDetails:
    try:
        job = service.get_job(job_id)
    except JobNotFoundError as exc:
        raise _error(status.HTTP_404_NOT_FOUND, FailureReason.JOB_NOT_FOUND) from exc
    return job_details(job)


@router.post("/jobs/{job_id}/cancel", response_model=JobDetails)
async def cancel_job(
    job_id: str,
    identity: Identity = Depends(get_identity),
    service: JobOrchestrator = Depends(get_job_orchestrator),
) -> JobDetails:
    """Fail a running job on the user's request and refund it."""
    try:
        job = service.cancel_job(job_id, user_id=identity.user_id)
    except JobNotFoundError as exc:
        raise _error(status.HTTP_404_NOT_FOUND, FailureReason.JOB_NOT_FOUND) from exc
    except JobStateError as exc:
        raise _error(
            status.HTTP_409_CONFLICT, FailureReason.INVALID_STATE, details=str(exc)
        ) from exc
    return job_details(job)


@router.get("/credits", response_model=CreditsResponse)
async def get_credits(
    identity: Identity = Depends(get_identity),
    service: JobOrchestrator = Depends(get_job_orchestrator),
) -> CreditsResponse:
    return CreditsResponse(credits=service.get_credits(identity.user_id))


@router.post("/admin/credits", response_model=CreditsResponse)
async def grant_credits(
    payload: GrantCreditsRequest,
    request: Request,
    identity: Identity = Depends(get_identity),
    service: JobOrchestrator = Depends(get_job_orchestrator),
) -> CreditsResponse:
    """Top up a user's balance; requires ``ADMIN_PASSWORD`` to be configured."""
    expected = request.app.state.config.admin_password  # type: ignore[attr-defined]
    if not expected:
        raise _error(status.HTTP_401_UNAUTHORIZED, FailureReason.ADMIN_DISABLED)
    if not payload.password or not secrets.compare_digest(
        payload.password.encode("utf-8"), expected.encode("utf-8")
    ):
        logger.warning("jobs.admin.invalid_password")
        raise _error(status.HTTP_401_UNAUTHORIZED, FailureReason.INVALID_PASSWORD)
    try:
        balance = service.grant_credits(payload.user_id or identity.user_id, payload.amount)
    except JobValidationError as exc:
        raise _error(
            status.HTTP_400_BAD_REQUEST, FailureReason.INVALID_REQUEST, details=str(exc)
        ) from exc
    return CreditsResponse(credits=balance)
