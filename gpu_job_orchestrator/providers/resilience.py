"""
Fault tolerance for provisioning providers.

Wraps a provider with:
- Circuit breaker protection so a failing provider is not hammered
- Bounded retry with exponential backoff for allocation
- Fallback values for read-only calls (cached or synthetic status,
  last known availability and pricing)
"""

import asyncio
import random
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Dict, Any, List, Optional, Callable

from .base import ProvisioningProvider, InstanceStatus, GPUAvailability, GPUPricing, GPUMetrics
from ..core.exceptions import TransientProviderError
from ..utils.logger import get_logger


class CircuitState(Enum):
    """Circuit breaker states."""
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass
class RetryPolicy:
    """Configuration for retry behavior."""
    max_attempts: int = 1
    initial_delay: float = 1.0
    max_delay: float = 30.0
    exponential_base: float = 2.0
    jitter: bool = True

    def delay_for(self, attempt: int, rng: random.Random) -> float:
        """Backoff before retry number `attempt` (1-based)."""
        delay = min(self.initial_delay * (self.exponential_base ** (attempt - 1)), self.max_delay)
        if self.jitter:
            delay *= (0.5 + rng.random() * 0.5)
        return delay


@dataclass
class CircuitBreakerConfig:
    """Configuration for circuit breaker."""
    failure_threshold: int = 5
    success_threshold: int = 3
    timeout_duration: float = 60.0


class CircuitBreaker:
    """
    Circuit breaker around provider calls.

    Only TransientProviderError counts as a failure: a hard ProviderError means
    the provider answered, so it is passed through without tripping the breaker.
    """

    def __init__(self, config: CircuitBreakerConfig, name: str = "provider"):
        self.config = config
        self.name = name
        self.state = CircuitState.CLOSED
        self.failure_count = 0
        self.success_count = 0
        self.next_attempt_time: Optional[datetime] = None
        self.logger = get_logger(__name__)

    async def call(self, operation: str, func: Callable, *args, **kwargs):
        """Execute a provider call with circuit breaker protection."""
        if self.state == CircuitState.OPEN:
            if datetime.utcnow() < self.next_attempt_time:
                raise TransientProviderError(operation, f"circuit breaker '{self.name}' is open", self.name)
            self.state = CircuitState.HALF_OPEN
            self.success_count = 0

        try:
            result = await func(*args, **kwargs)
        except TransientProviderError:
            self._on_failure()
            raise

        self._on_success()
        return result

    def _on_success(self):
        if self.state == CircuitState.HALF_OPEN:
            self.success_count += 1
            if self.success_count >= self.config.success_threshold:
                self.state = CircuitState.CLOSED
                self.failure_count = 0
        elif self.state == CircuitState.CLOSED:
            self.failure_count = max(0, self.failure_count - 1)

    def _on_failure(self):
        self.failure_count += 1

        if self.state == CircuitState.HALF_OPEN or self.failure_count >= self.config.failure_threshold:
            self.state = CircuitState.OPEN
            self.next_attempt_time = datetime.utcnow() + timedelta(seconds=self.config.timeout_duration)
            self.logger.warning(f"Circuit breaker '{self.name}' opened after {self.failure_count} failures")

    def reset(self):
        """Reset the breaker to closed state."""
        self.state = CircuitState.CLOSED
        self.failure_count = 0
        self.success_count = 0
        self.next_attempt_time = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "state": self.state.value,
            "failure_count": self.failure_count,
            "success_count": self.success_count,
            "next_attempt_time": self.next_attempt_time.isoformat() if self.next_attempt_time else None
        }


class ResilientProvider(ProvisioningProvider):
    """
    Decorates another provider with retry, circuit breaking and fallbacks.

    Fallback rules:
    - status: last cached snapshot (source="cache"), else a synthetic
      "unknown" snapshot (source="synthetic")
    - list_available / pricing: last known answer, else an empty list
    - allocate / terminate / metrics: errors propagate
    """

    def __init__(self, inner: ProvisioningProvider, config: Optional[Dict[str, Any]] = None,
                 rng: Optional[random.Random] = None):
        super().__init__(config)
        self.inner = inner
        self.rng = rng or random.Random()
        self.allocate_policy = RetryPolicy(
            max_attempts=int(self.config.get("allocate_attempts", 1)),
            initial_delay=float(self.config.get("retry_delay", 1.0))
        )
        self.circuit_breaker = CircuitBreaker(
            CircuitBreakerConfig(
                failure_threshold=int(self.config.get("circuit_failure_threshold", 5)),
                success_threshold=int(self.config.get("circuit_success_threshold", 3)),
                timeout_duration=float(self.config.get("circuit_timeout_duration", 60.0))
            ),
            name=inner.provider_name
        )
        self._status_cache: Dict[str, InstanceStatus] = {}
        self._last_available: Optional[List[GPUAvailability]] = None
        self._last_pricing: Optional[List[GPUPricing]] = None
        self.logger = get_logger(__name__)

    @property
    def provider_name(self) -> str:
        return self.inner.provider_name

    async def initialize(self) -> bool:
        self._is_initialized = await self.inner.initialize()
        return self._is_initialized

    async def shutdown(self) -> bool:
        self._is_initialized = False
        return await self.inner.shutdown()

    async def allocate(self, resource_type: str, requirements: Dict[str, Any]) -> str:
        policy = self.allocate_policy
        attempt = 0

        while True:
            attempt += 1
            try:
                return await self.circuit_breaker.call("allocate", self.inner.allocate, resource_type, requirements)
            except TransientProviderError as e:
                if attempt >= policy.max_attempts:
                    raise
                delay = policy.delay_for(attempt, self.rng)
                self.logger.warning(f"Allocation attempt {attempt}/{policy.max_attempts} failed, retrying in {delay:.2f}s",
                                    extra={"resource_type": resource_type, "error": str(e)})
                await asyncio.sleep(delay)

    async def status(self, instance_id: str) -> InstanceStatus:
        try:
            snapshot = await self.circuit_breaker.call("status", self.inner.status, instance_id)
        except TransientProviderError as e:
            cached = self._status_cache.get(instance_id)
            self.logger.warning("Instance status unavailable, using fallback", extra={
                "instance_id": instance_id,
                "error": str(e),
                "fallback": "cache" if cached else "synthetic"
            })
            if cached is not None:
                return InstanceStatus(
                    instance_id=cached.instance_id,
                    status=cached.status,
                    ip_address=cached.ip_address,
                    uptime=cached.uptime,
                    details=dict(cached.details),
                    observed_at=cached.observed_at,
                    source="cache"
                )
            return InstanceStatus(instance_id=instance_id, status="unknown", source="synthetic")

        self._status_cache[instance_id] = snapshot
        return snapshot

    async def terminate(self, instance_id: str) -> None:
        await self.circuit_breaker.call("terminate", self.inner.terminate, instance_id)
        self._status_cache.pop(instance_id, None)

    async def list_available(self) -> List[GPUAvailability]:
        try:
            self._last_available = await self.circuit_breaker.call("list_available", self.inner.list_available)
        except TransientProviderError as e:
            self.logger.warning(f"Availability unavailable, serving last known list: {e}")
            return list(self._last_available or [])
        return list(self._last_available)

    async def pricing(self) -> List[GPUPricing]:
        try:
            self._last_pricing = await self.circuit_breaker.call("pricing", self.inner.pricing)
        except TransientProviderError as e:
            self.logger.warning(f"Pricing unavailable, serving last known list: {e}")
            return list(self._last_pricing or [])
        return list(self._last_pricing)

    async def metrics(self, instance_id: str) -> GPUMetrics:
        return await self.circuit_breaker.call("metrics", self.inner.metrics, instance_id)
