"""Download route for generated assets."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from fastapi.responses import FileResponse, RedirectResponse, Response

from ..jobs.jobs_api import get_job_orchestrator
from ..jobs.jobs_errors import JobNotFoundError
from ..jobs.jobs_models import FailureReason
from ..jobs.jobs_service import JobOrchestrator
from .media_service import AssetStore

router = APIRouter(prefix="/api/assets", tags=["assets"])


def _get_asset_store(request: Request) -> AssetStore:
    try:
        return request.app.state.asset_store  # type: ignore[attr-defined]
    except AttributeError as exc:  # pragma: no cover - defensive
        raise RuntimeError("AssetStore is not configured") from exc


@router.get("/{job_id}/download")
async def download_asset(
    job_id: str,
    index: int = Query(0, ge=0),
    service: JobOrchestrator = Depends(get_job_orchestrator),
    asset_store: AssetStore = Depends(_get_asset_store),
) -> Response:
    """Stream a locally stored asset or redirect to the remote one."""
    try:
        job = service.get_job(job_id)
    except JobNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"status": "error", "failure_reason": FailureReason.JOB_NOT_FOUND.value},
        ) from exc
    if index >= len(job.asset_urls):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"status": "error", "failure_reason": FailureReason.ASSET_NOT_FOUND.value},
        )

    url = job.asset_urls[index]
    local_path = asset_store.resolve_public_url(url)
    if local_path is not None:
        return FileResponse(local_path, filename=f"{job.tool.value}-{job.id}{local_path.suffix}")
    if url.startswith(("http://", "https://")):
        return RedirectResponse(url, status_code=status.HTTP_307_TEMPORARY_REDIRECT)
    raise HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail={"status": "error", "failure_reason": FailureReason.ASSET_NOT_FOUND.value},
    )
