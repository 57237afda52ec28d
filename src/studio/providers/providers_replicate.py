"""Replicate provider driver (text-to-3D and image-to-video predictions)."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

import httpx

from ..jobs.jobs_errors import ProviderExecutionError, ProviderJobNotFoundError
from ..media.media_service import AssetStore
from .providers_base import (
    ImageToVideoProvider,
    ImageToVideoRequest,
    ProviderJob,
    ProviderJobStatus,
    ProviderResult,
    TextTo3DProvider,
    TextTo3DRequest,
)

logger = logging.getLogger(__name__)

POINT_E_VERSION = "40c76190258990b7ba2e9b3b5125a4ad5c7a09c7"
VIDEO_MODEL_VERSION = "3f0457e4619daac51203dedb472816fd4af51f3149fa7a9e0b5ffcf1b8172438"


@dataclass(slots=True)
class ReplicateDriver(TextTo3DProvider, ImageToVideoProvider):
    """Run Replicate predictions; the prediction id is the provider job id."""

    api_token: str
    asset_store: AssetStore
    api_base: str = "https://api.replicate.com/v1"
    mesh_version: str = POINT_E_VERSION
    video_version: str = VIDEO_MODEL_VERSION
    timeout_seconds: float = 15.0
    name: str = "REPLICATE"
    log: logging.Logger = field(default_factory=lambda: logger)

    def __post_init__(self) -> None:
        if not self.api_token:
            raise ValueError("REPLICATE_API_TOKEN is required")

    async def submit_text_to_3d(self, request: TextTo3DRequest) -> ProviderJob:
        steps = 100 if request.options.get("quality") == "high" else 64
        return await self._create_prediction(
            self.mesh_version,
            {"prompt": request.prompt, "num_inference_steps": steps},
        )

    async def submit_image_to_video(self, request: ImageToVideoRequest) -> ProviderJob:
        payload: dict[str, Any] = {"input_image": request.image_url}
        if request.prompt:
            payload["prompt"] = request.prompt
        for option in ("fps", "duration", "motion_bucket_id"):
            if option in request.options:
                payload[option] = request.options[option]
        return await self._create_prediction(self.video_version, payload)

    async def get_status(self, provider_job_id: str) -> ProviderJob:
        url = f"{self.api_base}/predictions/{provider_job_id}"
        try:
            async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
                response = await client.get(url, headers=self._headers())
        except httpx.HTTPError as exc:
            raise ProviderExecutionError(f"Replicate status HTTP error: {exc}") from exc

        if response.status_code == 404:
            raise ProviderJobNotFoundError(f"Replicate prediction {provider_job_id} not found")
        if response.status_code != 200:
            raise ProviderExecutionError(
                f"Replicate status request failed with status {response.status_code}"
            )
        return await self._interpret(response.json())

    async def _interpret(self, data: dict[str, Any]) -> ProviderJob:
        prediction_id = str(data.get("id", ""))
        vendor_status = str(data.get("status", ""))
        base_meta = {"replicate_id": prediction_id, "vendor_status": vendor_status, "provider": self.name}

        if vendor_status == "succeeded":
            output = data.get("output")
            candidates = output if isinstance(output, list) else [output]
            remote_urls = [url for url in candidates if isinstance(url, str) and url]
            if not remote_urls:
                return ProviderJob(
                    id=prediction_id,
                    status=ProviderJobStatus.FAILED,
                    error="Replicate prediction returned no output",
                    meta=base_meta,
                )
            stored = [
                await self.asset_store.persist_remote(
                    url, key=prediction_id, index=index, default_suffix=".glb"
                )
                for index, url in enumerate(remote_urls)
            ]
            meta = dict(base_meta)
            meta["original_url"] = stored[0].original_url
            meta["local_path"] = str(stored[0].local_path)
            meta["original_urls"] = [asset.original_url for asset in stored]
            return ProviderJob(
                id=prediction_id,
                status=ProviderJobStatus.COMPLETED,
                result=ProviderResult(asset_urls=[asset.public_url for asset in stored], meta=meta),
                meta=base_meta,
            )
        if vendor_status == "failed":
            return ProviderJob(
                id=prediction_id,
                status=ProviderJobStatus.FAILED,
                error=str(data.get("error") or "Replicate generation failed"),
                meta=base_meta,
            )
        if vendor_status == "canceled":
            return ProviderJob(
                id=prediction_id,
                status=ProviderJobStatus.FAILED,
                error="Generation was canceled",
                meta=base_meta,
            )
        status = ProviderJobStatus.QUEUED if vendor_status == "starting" else ProviderJobStatus.PROCESSING
        return ProviderJob(id=prediction_id, status=status, meta=base_meta)

    async def _create_prediction(self, version: str, payload: dict[str, Any]) -> ProviderJob:
        body: dict[str, Any] = {"version": version, "input": payload}
        try:
            async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
                response = await client.post(
                    f"{self.api_base}/predictions", headers=self._headers(), json=body
                )
        except httpx.HTTPError as exc:
            raise ProviderExecutionError(f"Replicate HTTP error: {exc}") from exc

        if response.status_code not in {200, 201}:
            raise ProviderExecutionError(
                f"Replicate prediction failed (status={response.status_code}): {response.text[:500]}"
            )
        data = response.json()
        prediction_id = data.get("id")
        if not prediction_id:
            raise ProviderExecutionError("Replicate did not return a prediction id")
        self.log.info(
            "replicate.prediction.created",
            extra={"provider_job_id": prediction_id, "version": version},
        )
        return ProviderJob(
            id=str(prediction_id),
            status=ProviderJobStatus.PROCESSING,
            meta={"replicate_id": str(prediction_id), "provider": self.name},
        )

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Token {self.api_token}",
            "Content-Type": "application/json",
        }
