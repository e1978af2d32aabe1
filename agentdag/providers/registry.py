"""Registry mapping agent ids to capability providers."""

from __future__ import annotations

import importlib
import logging
from typing import Any, Callable, Dict, Mapping, Optional, Union

from ..errors import AgentResolutionError
from .base import CapabilityProvider
from .function import FunctionProvider

logger = logging.getLogger(__name__)

ProviderLike = Union[CapabilityProvider, Callable[..., Any]]


def as_provider(candidate: ProviderLike) -> CapabilityProvider:
    """Wrap plain callables in a :class:`FunctionProvider`."""
    if isinstance(candidate, CapabilityProvider):
        return candidate
    if callable(candidate):
        return FunctionProvider(candidate)
    raise TypeError(f"Cannot use {type(candidate).__name__} as a capability provider")


class AgentRegistry:
    """Explicit agent registry owned by an engine.

    Agents are looked up by the string id a step names in its ``agent`` field.
    """

    def __init__(self, providers: Optional[Mapping[str, ProviderLike]] = None) -> None:
        self._providers: Dict[str, CapabilityProvider] = {}
        for agent_id, provider in (providers or {}).items():
            self.register(agent_id, provider)

    def register(
        self, agent_id: str, provider: ProviderLike, replace: bool = False
    ) -> CapabilityProvider:
        if not agent_id:
            raise ValueError("agent id must be a non-empty string")
        if agent_id in self._providers and not replace:
            raise ValueError(f"Agent {agent_id} is already registered")
        resolved = as_provider(provider)
        self._providers[agent_id] = resolved
        logger.debug(f"Registered agent {agent_id}: {resolved!r}")
        return resolved

    def resolve(self, agent_id: str, step_id: str = "") -> CapabilityProvider:
        try:
            return self._providers[agent_id]
        except KeyError:
            raise AgentResolutionError(step_id, agent_id) from None

    def agent_ids(self) -> list[str]:
        return list(self._providers)

    def __contains__(self, agent_id: object) -> bool:
        return agent_id in self._providers

    def __len__(self) -> int:
        return len(self._providers)


def load_providers(module_path: str, registry: AgentRegistry) -> AgentRegistry:
    """Populate ``registry`` from a Python module.

    The module either exposes a ``PROVIDERS`` mapping of agent id to provider
    or a ``register(registry)`` function.
    """

    module = importlib.import_module(module_path)
    hook = getattr(module, "register", None)
    providers = getattr(module, "PROVIDERS", None)

    if callable(hook):
        hook(registry)
    elif isinstance(providers, Mapping):
        for agent_id, provider in providers.items():
            registry.register(agent_id, provider)
    else:
        raise ValueError(
            f"Module {module_path} defines neither PROVIDERS nor register(registry)"
        )
    logger.info(f"Loaded {len(registry)} agent(s) from {module_path}")
    return registry
