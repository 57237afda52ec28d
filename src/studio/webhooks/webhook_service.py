"""Verification and application of vendor callbacks."""

from __future__ import annotations

from dataclasses import dataclass

import structlog
from pydantic import ValidationError

from ..jobs.jobs_errors import JobValidationError, UnauthorizedWebhookError
from ..jobs.jobs_models import JobRecord
from ..jobs.jobs_service import JobOrchestrator
from ..providers.providers_base import ProviderResult
from .webhook_schemas import WebhookPayload
from .webhook_signature import verify_signature

logger = structlog.get_logger(__name__)

COMPLETED_STATUSES = frozenset({"completed", "succeeded", "success"})


@dataclass(slots=True)
class WebhookService:
    """Authenticate callbacks and hand them to the orchestrator.

    The signature is checked against the raw body before anything is parsed,
    so a rejected callback never changes state.
    """

    orchestrator: JobOrchestrator
    secret: str

    def handle(self, body: bytes, signature: str | None) -> JobRecord:
        if not verify_signature(body, signature, self.secret):
            logger.warning(
                "webhooks.signature.rejected",
                has_signature=bool(signature),
                body_size=len(body),
            )
            raise UnauthorizedWebhookError("Invalid webhook signature")

        try:
            payload = WebhookPayload.model_validate_json(body)
        except ValidationError as exc:
            logger.warning("webhooks.payload.invalid", errors=exc.error_count())
            raise JobValidationError("Malformed webhook payload") from exc

        identifier = payload.identifier
        if not identifier:
            raise JobValidationError("jobId or providerJobId is required")

        result: ProviderResult | None = None
        if payload.status.lower() in COMPLETED_STATUSES:
            if payload.result is None or not payload.result.asset_urls:
                raise JobValidationError("Completed webhooks must include result.assetUrls")
            result = ProviderResult(
                asset_urls=list(payload.result.asset_urls),
                meta=dict(payload.result.meta),
            )

        job = self.orchestrator.handle_provider_update(
            identifier,
            payload.status,
            result=result,
            error=payload.error,
        )
        logger.info(
            "webhooks.processed",
            job_id=job.id,
            reported=payload.status,
            job_status=job.status.value,
        )
        return job
