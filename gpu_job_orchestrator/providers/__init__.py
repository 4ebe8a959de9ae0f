"""
Provisioning providers for accelerator instances.

This module contains:
- The abstract provider capability contract
- A deterministic reference provider for tests and local runs
- A CloudRift CLI adapter
- A resilience wrapper adding retry, circuit breaking and fallbacks
"""

import random
from typing import Any, Dict, Optional

from .base import ProvisioningProvider, InstanceStatus, GPUAvailability, GPUPricing, GPUMetrics
from .reference import ReferenceProvider
from .rift import RiftCliProvider
from .resilience import ResilientProvider, CircuitBreaker, CircuitBreakerConfig, CircuitState, RetryPolicy


def create_provider(provider_config: Dict[str, Any],
                    resilience_config: Optional[Dict[str, Any]] = None,
                    rng: Optional[random.Random] = None) -> ProvisioningProvider:
    """Build the configured provider wrapped in a ResilientProvider."""
    provider_type = provider_config.get("type", "reference")

    if provider_type == "rift":
        inner = RiftCliProvider(provider_config)
    else:
        inner = ReferenceProvider(provider_config)

    return ResilientProvider(inner, resilience_config or {}, rng=rng)


__all__ = [
    'ProvisioningProvider',
    'InstanceStatus',
    'GPUAvailability',
    'GPUPricing',
    'GPUMetrics',
    'ReferenceProvider',
    'RiftCliProvider',
    'ResilientProvider',
    'CircuitBreaker',
    'CircuitBreakerConfig',
    'CircuitState',
    'RetryPolicy',
    'create_provider'
]
