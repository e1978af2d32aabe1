"""Capability providers and the agent registry."""

from .base import CancellationSignal, CapabilityProvider, ProviderResult
from .function import FunctionProvider
from .registry import AgentRegistry, as_provider, load_providers

__all__ = [
    "AgentRegistry",
    "CancellationSignal",
    "CapabilityProvider",
    "FunctionProvider",
    "ProviderResult",
    "as_provider",
    "load_providers",
]
