"""Meshy provider driver (text-to-3D and texturing)."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

import httpx

from ..jobs.jobs_errors import ProviderExecutionError, ProviderJobNotFoundError
from ..media.media_service import AssetStore
from .providers_base import (
    ProviderJob,
    ProviderJobStatus,
    ProviderResult,
    TextTo3DProvider,
    TextTo3DRequest,
    TexturingProvider,
    TexturingRequest,
)

logger = logging.getLogger(__name__)

TEXT_TO_3D = "text-to-3d"
TEXT_TO_TEXTURE = "text-to-texture"

_ENDPOINTS = {
    TEXT_TO_3D: "/openapi/v2/text-to-3d",
    TEXT_TO_TEXTURE: "/openapi/v1/text-to-texture",
}


@dataclass(slots=True)
class MeshyDriver(TextTo3DProvider, TexturingProvider):
    """Create Meshy tasks and report their state on demand.

    Provider job ids have the form ``<kind>:<meshy task id>`` so status
    lookups need no local bookkeeping and survive restarts.
    """

    api_key: str
    asset_store: AssetStore
    api_base: str = "https://api.meshy.ai"
    timeout_seconds: float = 15.0
    name: str = "MESHY"
    log: logging.Logger = field(default_factory=lambda: logger)

    def __post_init__(self) -> None:
        if not self.api_key:
            raise ValueError("MESHY_API_KEY is required")

    async def submit_text_to_3d(self, request: TextTo3DRequest) -> ProviderJob:
        body = {
            "mode": "preview",
            "prompt": request.prompt,
            "art_style": request.options.get("style", "realistic"),
            "negative_prompt": request.options.get("negative_prompt", ""),
        }
        return await self._create_task(TEXT_TO_3D, body, prompt=request.prompt)

    async def submit_texturing(self, request: TexturingRequest) -> ProviderJob:
        body = {
            "model_url": request.model_url,
            "object_prompt": request.prompt,
            "style_prompt": request.options.get("style", ""),
            "resolution": str(request.options.get("resolution", 1024)),
            "enable_pbr": True,
        }
        return await self._create_task(TEXT_TO_TEXTURE, body, prompt=request.prompt)

    async def get_status(self, provider_job_id: str) -> ProviderJob:
        kind, task_id = _split_job_id(provider_job_id)
        url = f"{self.api_base}{_ENDPOINTS[kind]}/{task_id}"
        try:
            async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
                response = await client.get(url, headers=self._headers())
        except httpx.HTTPError as exc:
            raise ProviderExecutionError(f"Meshy status HTTP error: {exc}") from exc

        if response.status_code == 404:
            raise ProviderJobNotFoundError(f"Meshy task {task_id} not found")
        if response.status_code != 200:
            raise ProviderExecutionError(
                f"Meshy status request failed with status {response.status_code}"
            )

        data = response.json()
        vendor_status = str(data.get("status", "")).upper()
        base_meta = {"meshy_task_id": task_id, "vendor_status": vendor_status, "provider": self.name}

        if vendor_status == "SUCCEEDED":
            remote_urls = _result_urls(kind, data)
            if not remote_urls:
                return ProviderJob(
                    id=provider_job_id,
                    status=ProviderJobStatus.FAILED,
                    error="Meshy task succeeded without downloadable assets",
                    meta=base_meta,
                )
            stored = [
                await self.asset_store.persist_remote(
                    remote_url, key=provider_job_id, index=index, default_suffix=".glb"
                )
                for index, remote_url in enumerate(remote_urls)
            ]
            meta = dict(base_meta)
            meta["original_urls"] = [asset.original_url for asset in stored]
            meta["local_paths"] = [str(asset.local_path) for asset in stored]
            meta["original_url"] = stored[0].original_url
            meta["local_path"] = str(stored[0].local_path)
            self.log.info(
                "meshy.task.succeeded",
                extra={"provider_job_id": provider_job_id, "asset_count": len(stored)},
            )
            return ProviderJob(
                id=provider_job_id,
                status=ProviderJobStatus.COMPLETED,
                result=ProviderResult(asset_urls=[asset.public_url for asset in stored], meta=meta),
                meta=base_meta,
            )

        if vendor_status in {"FAILED", "CANCELED", "EXPIRED"}:
            message = (data.get("task_error") or {}).get("message") or f"Meshy task {vendor_status.lower()}"
            return ProviderJob(
                id=provider_job_id,
                status=ProviderJobStatus.FAILED,
                error=message,
                meta=base_meta,
            )

        status = ProviderJobStatus.QUEUED if vendor_status == "PENDING" else ProviderJobStatus.PROCESSING
        return ProviderJob(id=provider_job_id, status=status, meta=base_meta)

    async def _create_task(self, kind: str, body: dict[str, Any], *, prompt: str) -> ProviderJob:
        url = f"{self.api_base}{_ENDPOINTS[kind]}"
        try:
            async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
                response = await client.post(url, headers=self._headers(), json=body)
        except httpx.HTTPError as exc:
            raise ProviderExecutionError(f"Meshy HTTP error: {exc}") from exc

        if response.status_code not in {200, 201, 202}:
            raise ProviderExecutionError(
                f"Meshy task creation failed (status={response.status_code}): {response.text[:500]}"
            )
        task_id = (response.json() or {}).get("result")
        if not task_id:
            raise ProviderExecutionError("Meshy did not return a task id")

        provider_job_id = f"{kind}:{task_id}"
        self.log.info(
            "meshy.task.created",
            extra={"provider_job_id": provider_job_id, "prompt_len": len(prompt)},
        )
        return ProviderJob(
            id=provider_job_id,
            status=ProviderJobStatus.PROCESSING,
            meta={"meshy_task_id": str(task_id), "provider": self.name},
        )

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }


def _split_job_id(provider_job_id: str) -> tuple[str, str]:
    kind, _, task_id = provider_job_id.partition(":")
    if kind not in _ENDPOINTS or not task_id:
        raise ProviderJobNotFoundError(f"Unknown Meshy job id '{provider_job_id}'")
    return kind, task_id


def _result_urls(kind: str, data: dict[str, Any]) -> list[str]:
    model_urls = data.get("model_urls") or {}
    if kind == TEXT_TO_3D:
        glb = model_urls.get("glb")
        return [glb] if glb else []
    urls: list[str] = []
    if model_urls.get("glb"):
        urls.append(model_urls["glb"])
    for textures in data.get("texture_urls") or []:
        for map_name in ("base_color", "normal", "metallic", "roughness"):
            if textures.get(map_name):
                urls.append(textures[map_name])
    return urls
