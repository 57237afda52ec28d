"""Factory for provider drivers."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from ..config import ProviderCredentials, ProviderSelection
from ..jobs.jobs_errors import JobValidationError, ProviderUnavailableError
from ..jobs.jobs_models import Tool
from ..media.media_service import AssetStore
from .providers_base import (
    GenerationRequest,
    ImageToVideoRequest,
    StatusProvider,
    TextTo3DRequest,
    TextToImageRequest,
    TexturingRequest,
)
from .providers_meshy import MeshyDriver
from .providers_replicate import ReplicateDriver
from .providers_sim import DEFAULT_LATENCIES, SimulationProvider

logger = logging.getLogger(__name__)

SIMULATION_NAMES = frozenset({"SIM", "FLUX"})

# Vendors that can actually serve each tool.
SUPPORTED_VENDORS: dict[Tool, frozenset[str]] = {
    Tool.TEXT2IMAGE: frozenset(),
    Tool.TEXT2MESH: frozenset({"MESHY", "REPLICATE"}),
    Tool.TEXTURING: frozenset({"MESHY"}),
    Tool.IMG2VIDEO: frozenset({"REPLICATE"}),
}


def create_driver(
    name: str,
    *,
    credentials: ProviderCredentials,
    asset_store: AssetStore,
) -> StatusProvider:
    """Instantiate a vendor driver by name.

    Raises :class:`ProviderUnavailableError` for unknown names or missing
    credentials.
    """
    upper = name.upper()
    try:
        if upper == "MESHY":
            return MeshyDriver(api_key=credentials.meshy_api_key or "", asset_store=asset_store)
        if upper == "REPLICATE":
            return ReplicateDriver(
                api_token=credentials.replicate_api_token or "", asset_store=asset_store
            )
    except ValueError as exc:
        raise ProviderUnavailableError(str(exc)) from exc
    raise ProviderUnavailableError(f"Unsupported provider '{name}'")


@dataclass
class ProviderFactory:
    """Resolve the provider for a tool, degrading to simulation when needed.

    Vendor drivers are cached per vendor name, and the simulation provider is
    a single shared instance so status lookups reach the job that was
    submitted to it.
    """

    selection: ProviderSelection
    credentials: ProviderCredentials
    asset_store: AssetStore
    sim_latencies: dict[str, float] = field(default_factory=dict)
    sim_clock: Callable[[], float] = time.monotonic
    log: logging.Logger = field(default_factory=lambda: logger)
    _simulation: SimulationProvider | None = field(default=None, init=False, repr=False)
    _drivers: dict[str, StatusProvider] = field(default_factory=dict, init=False, repr=False)

    @property
    def simulation(self) -> SimulationProvider:
        if self._simulation is None:
            latencies = dict(DEFAULT_LATENCIES)
            latencies.update(self.sim_latencies)
            self._simulation = SimulationProvider(latencies=latencies, clock=self.sim_clock)
        return self._simulation

    def provider_name(self, tool: Tool) -> str:
        """Backend name recorded on new jobs.

        Simulation aliases keep their configured name (``FLUX``); a vendor
        that had to fall back reports the simulation provider instead.
        """
        configured = self.selection.for_tool(tool.value).upper()
        if configured in SIMULATION_NAMES:
            return configured
        return self.create_provider(tool).name

    def create_provider(self, tool: Tool) -> StatusProvider:
        configured = self.selection.for_tool(tool.value).upper()
        if configured in SIMULATION_NAMES:
            return self.simulation
        if configured not in SUPPORTED_VENDORS[tool]:
            return self._fallback(tool, configured, reason="unsupported")
        cached = self._drivers.get(configured)
        if cached is not None:
            return cached
        try:
            driver = create_driver(
                configured, credentials=self.credentials, asset_store=self.asset_store
            )
        except ProviderUnavailableError as exc:
            return self._fallback(tool, configured, reason=str(exc))
        self._drivers[configured] = driver
        return driver

    def provider_for_name(self, name: str, tool: Tool) -> StatusProvider:
        """Return the provider that owns jobs recorded under ``name``."""
        upper = name.upper()
        if upper in SIMULATION_NAMES:
            return self.simulation
        cached = self._drivers.get(upper)
        if cached is not None:
            return cached
        try:
            driver = create_driver(upper, credentials=self.credentials, asset_store=self.asset_store)
        except ProviderUnavailableError:
            return self.create_provider(tool)
        self._drivers[upper] = driver
        return driver

    def _fallback(self, tool: Tool, configured: str, *, reason: str) -> SimulationProvider:
        self.log.warning(
            "providers.factory.fallback",
            extra={"tool": tool.value, "configured": configured, "reason": reason},
        )
        return self.simulation


def build_request(tool: Tool, prompt: str, inputs: dict[str, Any] | None) -> GenerationRequest:
    """Translate a job's tool and inputs into a provider request."""
    options = dict(inputs or {})
    if tool is Tool.TEXT2IMAGE:
        return TextToImageRequest(prompt=prompt, options=options)
    if tool is Tool.TEXT2MESH:
        return TextTo3DRequest(prompt=prompt, options=options)
    if tool is Tool.TEXTURING:
        model_url = options.pop("modelUrl", None)
        if not model_url:
            raise JobValidationError("texturing requires inputs.modelUrl")
        return TexturingRequest(prompt=prompt, model_url=str(model_url), options=options)
    if tool is Tool.IMG2VIDEO:
        image_url = options.pop("imageUrl", None)
        if not image_url:
            raise JobValidationError("img2video requires inputs.imageUrl")
        return ImageToVideoRequest(prompt=prompt, image_url=str(image_url), options=options)
    raise JobValidationError(f"Unknown tool '{tool}'")
