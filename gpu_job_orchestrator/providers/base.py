"""
Base provisioning provider interface.

Defines the capability contract every accelerator provider adapter must
implement. The orchestrator depends only on this interface.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Any, List, Optional


@dataclass
class InstanceStatus:
    """Point-in-time view of a provisioned instance."""

    instance_id: str
    status: str
    ip_address: Optional[str] = None
    uptime: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)
    observed_at: datetime = field(default_factory=datetime.utcnow)
    # "provider" for a live answer, "cache" or "synthetic" for a fallback value
    source: str = "provider"

    @property
    def is_stale(self) -> bool:
        return self.source != "provider"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "instance_id": self.instance_id,
            "status": self.status,
            "ip_address": self.ip_address,
            "uptime": self.uptime,
            "details": self.details,
            "observed_at": self.observed_at.isoformat(),
            "source": self.source
        }


@dataclass(frozen=True)
class GPUAvailability:
    """How many instances of a resource type can be allocated right now."""

    resource_type: str
    available: int

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.resource_type, "available": self.available}


@dataclass(frozen=True)
class GPUPricing:
    """Hourly price and headline specs of a resource type."""

    resource_type: str
    price_per_hour: float
    memory: str
    compute: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.resource_type,
            "pricePerHour": self.price_per_hour,
            "memory": self.memory,
            "compute": self.compute
        }


@dataclass(frozen=True)
class GPUMetrics:
    """Utilisation sample of a running instance."""

    utilization: float
    memory_used: float
    memory_total: float
    temperature: float
    power_usage: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "utilization": self.utilization,
            "memory": {"used": self.memory_used, "total": self.memory_total},
            "temperature": self.temperature,
            "powerUsage": self.power_usage
        }


class ProvisioningProvider(ABC):
    """
    Abstract base class for all provisioning providers.

    Every method may raise TransientProviderError when the provider cannot be
    reached, or ProviderError when it answers with a hard failure or with data
    that cannot be interpreted.
    """

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        """
        Initialize the provider.

        Args:
            config: Provider-specific configuration
        """
        self.config = config or {}
        self._is_initialized = False

    async def initialize(self) -> bool:
        """Prepare the provider for use."""
        self._is_initialized = True
        return True

    async def shutdown(self) -> bool:
        """Release provider resources."""
        self._is_initialized = False
        return True

    @abstractmethod
    async def allocate(self, resource_type: str, requirements: Dict[str, Any]) -> str:
        """
        Allocate an instance of the given resource type.

        Args:
            resource_type: Accelerator type, e.g. "A100"
            requirements: Free-form provider-specific requirements

        Returns:
            Provider instance id
        """
        pass

    @abstractmethod
    async def status(self, instance_id: str) -> InstanceStatus:
        """
        Query the status of an instance.

        Args:
            instance_id: Provider instance id

        Returns:
            InstanceStatus snapshot
        """
        pass

    @abstractmethod
    async def terminate(self, instance_id: str) -> None:
        """
        Terminate an instance.

        Args:
            instance_id: Provider instance id
        """
        pass

    @abstractmethod
    async def list_available(self) -> List[GPUAvailability]:
        """List resource types with their current availability."""
        pass

    @abstractmethod
    async def pricing(self) -> List[GPUPricing]:
        """List resource types with price and specs."""
        pass

    @abstractmethod
    async def metrics(self, instance_id: str) -> GPUMetrics:
        """
        Sample utilisation metrics of an instance.

        Args:
            instance_id: Provider instance id
        """
        pass

    @property
    def is_initialized(self) -> bool:
        """Check if provider is initialized."""
        return self._is_initialized

    @property
    def provider_name(self) -> str:
        """Get the name of this provider."""
        return self.__class__.__name__
