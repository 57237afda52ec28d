"""Provider capability interfaces and shared request/response types."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any


class ProviderJobStatus(StrEnum):
    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(slots=True)
class ProviderResult:
    """Assets produced by a provider job."""

    asset_urls: list[str]
    meta: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class ProviderJob:
    """Provider-local handle for a submitted generation."""

    id: str
    status: ProviderJobStatus
    result: ProviderResult | None = None
    error: str | None = None
    meta: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class TextToImageRequest:
    prompt: str
    options: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class TextTo3DRequest:
    prompt: str
    options: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class TexturingRequest:
    prompt: str
    model_url: str
    options: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class ImageToVideoRequest:
    prompt: str
    image_url: str
    options: dict[str, Any] = field(default_factory=dict)


GenerationRequest = TextToImageRequest | TextTo3DRequest | TexturingRequest | ImageToVideoRequest


class StatusProvider(ABC):
    """Common status lookup shared by all capabilities."""

    name: str = "provider"

    @abstractmethod
    async def get_status(self, provider_job_id: str) -> ProviderJob:
        """Return the current state of ``provider_job_id``.

        Unknown ids raise :class:`ProviderJobNotFoundError`.
        """


class TextToImageProvider(StatusProvider):
    @abstractmethod
    async def submit_text_to_image(self, request: TextToImageRequest) -> ProviderJob:
        """Start an image generation and return promptly."""


class TextTo3DProvider(StatusProvider):
    @abstractmethod
    async def submit_text_to_3d(self, request: TextTo3DRequest) -> ProviderJob:
        """Start a mesh generation and return promptly."""


class TexturingProvider(StatusProvider):
    @abstractmethod
    async def submit_texturing(self, request: TexturingRequest) -> ProviderJob:
        """Start texture synthesis for an uploaded model."""


class ImageToVideoProvider(StatusProvider):
    @abstractmethod
    async def submit_image_to_video(self, request: ImageToVideoRequest) -> ProviderJob:
        """Start a video generation from an uploaded image."""


async def submit_request(provider: StatusProvider, request: GenerationRequest) -> ProviderJob:
    """Route ``request`` to the matching capability of ``provider``."""
    if isinstance(request, TextToImageRequest) and isinstance(provider, TextToImageProvider):
        return await provider.submit_text_to_image(request)
    if isinstance(request, TextTo3DRequest) and isinstance(provider, TextTo3DProvider):
        return await provider.submit_text_to_3d(request)
    if isinstance(request, TexturingRequest) and isinstance(provider, TexturingProvider):
        return await provider.submit_texturing(request)
    if isinstance(request, ImageToVideoRequest) and isinstance(provider, ImageToVideoProvider):
        return await provider.submit_image_to_video(request)
    raise TypeError(
        f"Provider '{provider.name}' does not support {type(request).__name__}"
    )
