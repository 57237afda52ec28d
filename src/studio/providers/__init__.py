"""Provider drivers for generation backends."""

from .providers_base import ProviderJob, ProviderJobStatus, ProviderResult, StatusProvider
from .providers_factory import ProviderFactory, build_request
from .providers_sim import SimulationProvider

__all__ = [
    "ProviderFactory",
    "ProviderJob",
    "ProviderJobStatus",
    "ProviderResult",
    "SimulationProvider",
    "StatusProvider",
    "build_request",
]
