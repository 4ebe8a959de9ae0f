"""
Configuration for GPU Job Orchestrator

Holds the stage delays, the outcome policy and the provider/store settings.
Values come from defaults, a dictionary, a YAML/JSON file or the environment.
"""

import json
import os
from dataclasses import dataclass, field, fields, asdict
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml

from .exceptions import ConfigurationError

ENV_PREFIX = "GJO_"


class AllocationFailurePolicy(Enum):
    """What happens to a job whose allocation failed on submission."""
    LEAVE_PENDING = "leave_pending"
    MARK_FAILED = "mark_failed"


DEFAULT_PROVIDER_CONFIG = {
    "type": "reference",
    "binary": "rift",
    "image": "nvidia/cuda:latest",
    "timeout": 60,
    "api_key": None,
    "base_url": "https://api.cloudrift.io"
}

DEFAULT_RESILIENCE_CONFIG = {
    "allocate_attempts": 1,
    "retry_delay": 1.0,
    "circuit_failure_threshold": 5,
    "circuit_success_threshold": 3,
    "circuit_timeout_duration": 60.0
}


@dataclass
class OrchestratorConfig:
    """Orchestrator settings."""

    # Stage delays, in seconds
    provisioning_delay: float = 3.0
    running_delay: float = 12.0

    # Probability that a running job ends `completed` rather than `failed`
    success_ratio: float = 0.8

    # Upper bound of the random delay before a resumed running job ticks
    recovery_jitter: float = 5.0

    # Delay before retrying a transition whose store write failed
    store_retry_delay: float = 3.0

    allocation_failure_policy: AllocationFailurePolicy = AllocationFailurePolicy.LEAVE_PENDING

    random_seed: Optional[int] = None
    event_queue_size: int = 1000

    database_url: Optional[str] = None
    provider: Dict[str, Any] = field(default_factory=lambda: dict(DEFAULT_PROVIDER_CONFIG))
    resilience: Dict[str, Any] = field(default_factory=lambda: dict(DEFAULT_RESILIENCE_CONFIG))

    log_level: str = "INFO"
    structured_logs: bool = True

    def __post_init__(self):
        if isinstance(self.allocation_failure_policy, str):
            try:
                self.allocation_failure_policy = AllocationFailurePolicy(self.allocation_failure_policy)
            except ValueError:
                raise ConfigurationError(
                    "allocation_failure_policy",
                    f"must be one of {[p.value for p in AllocationFailurePolicy]}"
                )
        self.provider = {**DEFAULT_PROVIDER_CONFIG, **(self.provider or {})}
        self.resilience = {**DEFAULT_RESILIENCE_CONFIG, **(self.resilience or {})}
        self.validate()

    def validate(self):
        """Raise ConfigurationError on out-of-range values."""
        for name in ("provisioning_delay", "running_delay", "recovery_jitter", "store_retry_delay"):
            if getattr(self, name) < 0:
                raise ConfigurationError(name, "must not be negative")

        if not 0.0 <= self.success_ratio <= 1.0:
            raise ConfigurationError("success_ratio", "must be between 0 and 1")

        if self.event_queue_size < 1:
            raise ConfigurationError("event_queue_size", "must be at least 1")

        if self.provider.get("type") not in ("reference", "rift"):
            raise ConfigurationError("provider.type", "must be 'reference' or 'rift'")

        if int(self.resilience.get("allocate_attempts", 1)) < 1:
            raise ConfigurationError("resilience.allocate_attempts", "must be at least 1")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "OrchestratorConfig":
        """Build a config from a dictionary, ignoring nothing silently."""
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise ConfigurationError(", ".join(sorted(unknown)), "unknown configuration key")

        try:
            return cls(**data)
        except TypeError as e:
            raise ConfigurationError("config", str(e))

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "OrchestratorConfig":
        """Load a YAML (or JSON) configuration file."""
        path = Path(path)
        try:
            text = path.read_text(encoding="utf-8")
        except OSError as e:
            raise ConfigurationError(str(path), f"cannot read file: {e}")

        try:
            if path.suffix == ".json":
                data = json.loads(text)
            else:
                data = yaml.safe_load(text)
        except (ValueError, yaml.YAMLError) as e:
            raise ConfigurationError(str(path), f"cannot parse file: {e}")

        data = data or {}
        if not isinstance(data, dict):
            raise ConfigurationError(str(path), "top level must be a mapping")

        return cls.from_dict(data.get("orchestrator", data))

    @classmethod
    def from_env(cls, environ: Optional[Dict[str, str]] = None,
                 base: Optional["OrchestratorConfig"] = None) -> "OrchestratorConfig":
        """
        Overlay GJO_* environment variables on a base config.

        GJO_PROVISIONING_DELAY=1.5 sets provisioning_delay; the provider's
        CLOUDRIFT_API_KEY and CLOUDRIFT_BASE_URL are honoured as well.
        """
        environ = os.environ if environ is None else environ
        data = (base or cls()).to_dict()

        scalar_types = {
            "provisioning_delay": float,
            "running_delay": float,
            "success_ratio": float,
            "recovery_jitter": float,
            "store_retry_delay": float,
            "allocation_failure_policy": str,
            "random_seed": int,
            "event_queue_size": int,
            "database_url": str,
            "log_level": str,
            "structured_logs": _parse_bool
        }

        for name, caster in scalar_types.items():
            raw = environ.get(ENV_PREFIX + name.upper())
            if raw is None:
                continue
            try:
                data[name] = caster(raw)
            except ValueError:
                raise ConfigurationError(ENV_PREFIX + name.upper(), f"invalid value {raw!r}")

        if environ.get(ENV_PREFIX + "PROVIDER"):
            data["provider"]["type"] = environ[ENV_PREFIX + "PROVIDER"]
        if environ.get("CLOUDRIFT_API_KEY"):
            data["provider"]["api_key"] = environ["CLOUDRIFT_API_KEY"]
        if environ.get("CLOUDRIFT_BASE_URL"):
            data["provider"]["base_url"] = environ["CLOUDRIFT_BASE_URL"]

        return cls.from_dict(data)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["allocation_failure_policy"] = self.allocation_failure_policy.value
        return data


def _parse_bool(value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in ("1", "true", "yes", "on"):
        return True
    if lowered in ("0", "false", "no", "off"):
        return False
    raise ValueError(value)
