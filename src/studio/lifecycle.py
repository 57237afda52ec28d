"""Application lifespan: resume in-flight jobs and stop background tasks."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from .config import DEFAULT_WEBHOOK_SECRET
from .jobs.jobs_service import JobOrchestrator

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Reschedule pollers on startup and cancel them on shutdown."""
    orchestrator: JobOrchestrator = app.state.job_orchestrator
    config = app.state.config
    resumed = orchestrator.resume_inflight()
    webhook_url = f"{config.base_url.rstrip('/')}/api/webhooks/vendor" if config.base_url else None
    logger.info("lifecycle.startup", extra={"resumed_jobs": resumed, "webhook_url": webhook_url})
    if config.webhook_secret == DEFAULT_WEBHOOK_SECRET:
        logger.warning("lifecycle.webhook_secret.default", extra={"webhook_url": webhook_url})
    try:
        yield
    finally:
        await orchestrator.shutdown()
        logger.info("lifecycle.shutdown")


__all__ = ["lifespan"]
