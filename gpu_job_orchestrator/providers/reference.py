"""
Reference provisioning provider.

Returns deterministic synthetic data so the orchestrator can run end to end
without a live provider. Used by tests, the CLI demo mode and local development.
"""

import random
from datetime import datetime
from typing import Dict, Any, List, Optional, Set

from .base import ProvisioningProvider, InstanceStatus, GPUAvailability, GPUPricing, GPUMetrics
from ..core.exceptions import ProviderError, TransientProviderError
from ..utils.logger import get_logger

DEFAULT_CATALOG = [
    GPUPricing("RTX 4090", 0.50, "24GB", "83.0 TFLOPS"),
    GPUPricing("A100", 2.00, "40GB", "312 TFLOPS"),
    GPUPricing("H100", 4.00, "80GB", "1000 TFLOPS"),
]

DEFAULT_AVAILABILITY = {
    "RTX 4090": 5,
    "A100": 2,
    "H100": 1,
}

OPERATIONS = ("allocate", "status", "terminate", "list_available", "pricing", "metrics")


class ReferenceProvider(ProvisioningProvider):
    """
    Deterministic in-process provider.

    Instance ids are "gpu-<n>" counting up from `start_index`. Any operation
    can be made unavailable with `set_unavailable()` to exercise the
    orchestrator's error paths.
    """

    def __init__(self, config: Optional[Dict[str, Any]] = None, start_index: int = 1):
        super().__init__(config)
        self._next_index = start_index
        self.catalog = list(DEFAULT_CATALOG)
        self.availability = dict(DEFAULT_AVAILABILITY)
        self.instances: Dict[str, Dict[str, Any]] = {}
        self.terminated: List[str] = []
        self.calls: List[str] = []
        self._unavailable: Set[str] = set()
        self._broken: Set[str] = set()
        self.logger = get_logger(__name__)

    def set_unavailable(self, *operations: str):
        """Make the given operations raise TransientProviderError."""
        self._unavailable.update(self._check_operations(operations))

    def set_broken(self, *operations: str):
        """Make the given operations raise a hard ProviderError."""
        self._broken.update(self._check_operations(operations))

    def restore(self, *operations: str):
        """Restore operations (all of them when none are named)."""
        names = set(operations) or set(OPERATIONS)
        self._unavailable -= names
        self._broken -= names

    def _check_operations(self, operations) -> Set[str]:
        unknown = set(operations) - set(OPERATIONS)
        if unknown:
            raise ValueError(f"Unknown provider operations: {sorted(unknown)}")
        return set(operations)

    def _enter(self, operation: str):
        self.calls.append(operation)
        if operation in self._unavailable:
            raise TransientProviderError(operation, "reference provider marked unavailable", self.provider_name)
        if operation in self._broken:
            raise ProviderError(operation, "reference provider marked broken", self.provider_name)

    async def allocate(self, resource_type: str, requirements: Dict[str, Any]) -> str:
        self._enter("allocate")

        instance_id = f"gpu-{self._next_index}"
        self._next_index += 1
        self.instances[instance_id] = {
            "type": resource_type,
            "requirements": dict(requirements),
            "status": "provisioning",
            "started_at": datetime.utcnow()
        }

        self.logger.debug("Allocated synthetic instance", extra={
            "instance_id": instance_id,
            "resource_type": resource_type
        })
        return instance_id

    async def status(self, instance_id: str) -> InstanceStatus:
        self._enter("status")

        instance = self.instances.get(instance_id)
        if instance is None:
            raise ProviderError("status", f"unknown instance {instance_id}", self.provider_name)

        if instance["status"] != "terminated":
            instance["status"] = "running"

        uptime = int((datetime.utcnow() - instance["started_at"]).total_seconds())
        index = int(instance_id.rsplit("-", 1)[-1]) if instance_id.rsplit("-", 1)[-1].isdigit() else 0
        return InstanceStatus(
            instance_id=instance_id,
            status=instance["status"],
            ip_address=f"10.0.{index // 256 % 256}.{index % 256}",
            uptime=f"{uptime // 3600}h {uptime % 3600 // 60}m",
            details={"type": instance["type"]}
        )

    async def terminate(self, instance_id: str) -> None:
        self._enter("terminate")

        instance = self.instances.get(instance_id)
        if instance is not None:
            instance["status"] = "terminated"
        self.terminated.append(instance_id)

    async def list_available(self) -> List[GPUAvailability]:
        self._enter("list_available")
        return [GPUAvailability(name, count) for name, count in self.availability.items()]

    async def pricing(self) -> List[GPUPricing]:
        self._enter("pricing")
        return list(self.catalog)

    async def metrics(self, instance_id: str) -> GPUMetrics:
        self._enter("metrics")

        if instance_id not in self.instances:
            raise ProviderError("metrics", f"unknown instance {instance_id}", self.provider_name)

        # Seeded per instance so repeated samples are identical
        rng = random.Random(instance_id)
        return GPUMetrics(
            utilization=float(rng.randint(0, 99)),
            memory_used=float(rng.randint(5, 24)),
            memory_total=24.0,
            temperature=float(rng.randint(65, 84)),
            power_usage=float(rng.randint(200, 299))
        )
