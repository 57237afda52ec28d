"""Deterministic in-process provider used when no vendor is configured."""

from __future__ import annotations

import hashlib
import logging
import time
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from ..jobs.jobs_errors import ProviderJobNotFoundError
from .providers_base import (
    ImageToVideoProvider,
    ImageToVideoRequest,
    ProviderJob,
    ProviderJobStatus,
    ProviderResult,
    TextTo3DProvider,
    TextTo3DRequest,
    TextToImageProvider,
    TextToImageRequest,
    TexturingProvider,
    TexturingRequest,
)

logger = logging.getLogger(__name__)

SIM_TEXTURE_ALBEDO = "https://threejs.org/examples/models/gltf/DamagedHelmet/DamagedHelmet_baseColor.png"
SIM_TEXTURE_NORMAL = "https://threejs.org/examples/models/gltf/DamagedHelmet/DamagedHelmet_normal.png"
SIM_TEXTURE_METALLIC = (
    "https://threejs.org/examples/models/gltf/DamagedHelmet/DamagedHelmet_metallicRoughness.png"
)
SIM_VIDEO_SAMPLE = "https://commondatastorage.googleapis.com/gtv-videos-bucket/sample/BigBuckBunny.mp4"
SIM_DEFAULT_MODEL = "https://threejs.org/examples/models/gltf/DamagedHelmet/DamagedHelmet.gltf"

# Ordered: the first keyword set that matches the prompt wins.
MODEL_CATALOG: tuple[tuple[frozenset[str], str], ...] = (
    (
        frozenset({"teapot", "kettle", "pot", "kitchen", "tea", "coffee"}),
        "https://threejs.org/examples/models/gltf/teapot.gltf",
    ),
    (
        frozenset({"robot", "android", "mech", "machine", "tech", "cyber", "futuristic"}),
        "https://modelviewer.dev/shared-assets/models/Astronaut.glb",
    ),
    (
        frozenset({"dog", "cat", "animal", "pet", "creature", "dragon", "bird", "fish"}),
        "https://threejs.org/examples/models/gltf/Horse.glb",
    ),
    (
        frozenset({"car", "vehicle", "truck", "ship", "plane", "boat", "motorcycle"}),
        "https://threejs.org/examples/models/gltf/ferrari.glb",
    ),
    (
        frozenset(
            {"flower", "plant", "tree", "garden", "nature", "organic"}
            | {"bloom", "petal", "rose", "tulip", "lily", "daisy"}
        ),
        "https://modelviewer.dev/shared-assets/models/Flower/Flower.glb",
    ),
    (
        frozenset({"house", "building", "castle", "tower", "structure", "architecture"}),
        "https://threejs.org/examples/models/gltf/LittlestTokyo.glb",
    ),
)

DEFAULT_LATENCIES: dict[str, float] = {
    "text2image": 2.0,
    "text2mesh": 8.0,
    "texturing": 6.0,
    "img2video": 10.0,
}

FAILURE_MARKER = "[fail]"


def select_model_for_prompt(prompt: str) -> str:
    """Return the catalog model whose keywords appear first in ``prompt``."""
    lowered = prompt.lower()
    for keywords, url in MODEL_CATALOG:
        if any(keyword in lowered for keyword in keywords):
            return url
    return SIM_DEFAULT_MODEL


def enhance_prompt(prompt: str, customizations: dict[str, Any]) -> str:
    enhanced = prompt
    for key, suffix in (
        ("style", "style"),
        ("color", "color scheme"),
        ("material", "material"),
        ("quality", "quality"),
    ):
        value = customizations.get(key)
        if value:
            enhanced += f", {value} {suffix}"
    return enhanced


@dataclass(slots=True)
class _SimulatedJob:
    tool: str
    ready_at: float
    result: ProviderResult | None = None
    error: str | None = None


@dataclass
class SimulationProvider(
    TextToImageProvider,
    TextTo3DProvider,
    TexturingProvider,
    ImageToVideoProvider,
):
    """Complete jobs after a per-tool latency without touching the network.

    Completion is derived from ``clock`` at status time, so there are no
    timers to cancel and tests can control time by injecting a clock.
    """

    latencies: dict[str, float] = field(default_factory=lambda: dict(DEFAULT_LATENCIES))
    clock: Callable[[], float] = time.monotonic
    log: logging.Logger = field(default_factory=lambda: logger)
    name: str = "SIM"
    _jobs: dict[str, _SimulatedJob] = field(default_factory=dict, init=False, repr=False)

    @property
    def in_flight(self) -> int:
        """Number of submitted jobs whose terminal status has not been reported yet."""
        return len(self._jobs)

    async def submit_text_to_image(self, request: TextToImageRequest) -> ProviderJob:
        digest = hashlib.sha256(request.prompt.encode("utf-8")).hexdigest()[:12]
        width = int(request.options.get("width", 512))
        height = int(request.options.get("height", 512))
        result = ProviderResult(
            asset_urls=[f"https://picsum.photos/seed/{digest}/{width}/{height}"],
            meta={"prompt": request.prompt, "provider": self.name, "type": "image"},
        )
        return self._start("text2image", request.prompt, result)

    async def submit_text_to_3d(self, request: TextTo3DRequest) -> ProviderJob:
        customizations = request.options.get("customizations") or {}
        model_url = select_model_for_prompt(request.prompt)
        result = ProviderResult(
            asset_urls=[model_url],
            meta={
                "prompt": request.prompt,
                "enhanced_prompt": enhance_prompt(request.prompt, customizations),
                "provider": self.name,
                "customizations": customizations,
                "type": "3d_model",
            },
        )
        return self._start("text2mesh", request.prompt, result)

    async def submit_texturing(self, request: TexturingRequest) -> ProviderJob:
        result = ProviderResult(
            asset_urls=[SIM_TEXTURE_ALBEDO, SIM_TEXTURE_NORMAL, SIM_TEXTURE_METALLIC],
            meta={
                "prompt": request.prompt,
                "model_url": request.model_url,
                "provider": self.name,
                "maps": {
                    "albedo": SIM_TEXTURE_ALBEDO,
                    "normal": SIM_TEXTURE_NORMAL,
                    "metallic_roughness": SIM_TEXTURE_METALLIC,
                },
            },
        )
        return self._start("texturing", request.prompt, result)

    async def submit_image_to_video(self, request: ImageToVideoRequest) -> ProviderJob:
        result = ProviderResult(
            asset_urls=[SIM_VIDEO_SAMPLE],
            meta={
                "prompt": request.prompt,
                "image_url": request.image_url,
                "provider": self.name,
                "note": "sample video",
            },
        )
        return self._start("img2video", request.prompt, result)

    async def get_status(self, provider_job_id: str) -> ProviderJob:
        job = self._jobs.get(provider_job_id)
        if job is None:
            raise ProviderJobNotFoundError(f"Simulated job {provider_job_id} not found")
        return self._observe(provider_job_id, job)

    def _start(self, tool: str, prompt: str, result: ProviderResult) -> ProviderJob:
        job_id = f"sim_{tool}_{uuid.uuid4().hex[:12]}"
        latency = max(0.0, float(self.latencies.get(tool, 0.0)))
        job = _SimulatedJob(tool=tool, ready_at=self.clock() + latency)
        if FAILURE_MARKER in prompt.lower():
            job.error = f"Simulated {tool} failure"
        else:
            job.result = result
        self._jobs[job_id] = job
        self.log.info(
            "providers.sim.submitted",
            extra={"provider_job_id": job_id, "tool": tool, "latency_seconds": latency},
        )
        return self._observe(job_id, job)

    def _observe(self, job_id: str, job: _SimulatedJob) -> ProviderJob:
        snapshot = self._snapshot(job_id, job)
        if snapshot.status is not ProviderJobStatus.PROCESSING:
            del self._jobs[job_id]
        return snapshot

    def _snapshot(self, job_id: str, job: _SimulatedJob) -> ProviderJob:
        if self.clock() < job.ready_at:
            return ProviderJob(id=job_id, status=ProviderJobStatus.PROCESSING)
        if job.error is not None:
            return ProviderJob(id=job_id, status=ProviderJobStatus.FAILED, error=job.error)
        return ProviderJob(id=job_id, status=ProviderJobStatus.COMPLETED, result=job.result)
