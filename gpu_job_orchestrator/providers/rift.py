"""
CloudRift provisioning provider.

Drives the `rift` command-line client. Unlike a fire-and-forget wrapper, every
failure is reported as either a TransientProviderError (client missing, timed
out, non-zero exit) or a ProviderError (output that cannot be interpreted).
"""

import asyncio
import json
import os
import subprocess
from concurrent.futures import ThreadPoolExecutor
from typing import Dict, Any, List, Optional

from .base import ProvisioningProvider, InstanceStatus, GPUAvailability, GPUPricing, GPUMetrics
from .reference import DEFAULT_CATALOG
from ..core.exceptions import ProviderError, TransientProviderError
from ..utils.logger import get_logger


class RiftCliProvider(ProvisioningProvider):
    """
    Provider backed by the `rift` CLI.

    Config keys: binary, image, timeout, api_key, base_url, max_workers.
    """

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        super().__init__(config)
        self.binary = self.config.get("binary", "rift")
        self.image = self.config.get("image", "nvidia/cuda:latest")
        self.timeout = float(self.config.get("timeout", 60))
        self.max_workers = int(self.config.get("max_workers", 4))
        self.executor: Optional[ThreadPoolExecutor] = None
        self.logger = get_logger(__name__)

    async def initialize(self) -> bool:
        self.executor = ThreadPoolExecutor(max_workers=self.max_workers)
        self._is_initialized = True
        self.logger.info("Rift provider initialized", extra={"binary": self.binary})
        return True

    async def shutdown(self) -> bool:
        if self.executor:
            self.executor.shutdown(wait=True)
            self.executor = None
        self._is_initialized = False
        return True

    def _environment(self) -> Dict[str, str]:
        env = dict(os.environ)
        if self.config.get("api_key"):
            env["CLOUDRIFT_API_KEY"] = self.config["api_key"]
        if self.config.get("base_url"):
            env["CLOUDRIFT_BASE_URL"] = self.config["base_url"]
        return env

    async def _run(self, operation: str, args: List[str]) -> str:
        """Run one rift command and return its stdout."""
        command = [self.binary] + args
        loop = asyncio.get_running_loop()

        def run_command():
            return subprocess.run(
                command,
                capture_output=True,
                text=True,
                timeout=self.timeout,
                env=self._environment()
            )

        try:
            result = await loop.run_in_executor(self.executor, run_command)
        except FileNotFoundError:
            raise TransientProviderError(operation, f"{self.binary} not found on PATH", self.provider_name)
        except subprocess.TimeoutExpired:
            raise TransientProviderError(operation, f"timed out after {self.timeout:g} seconds", self.provider_name)
        except OSError as e:
            raise TransientProviderError(operation, str(e), self.provider_name)

        if result.returncode != 0:
            stderr = (result.stderr or "").strip()
            self.logger.warning("rift command failed", extra={
                "operation": operation,
                "return_code": result.returncode,
                "stderr": stderr
            })
            raise TransientProviderError(
                operation, f"exit code {result.returncode}: {stderr}", self.provider_name
            )

        return result.stdout

    async def _run_json(self, operation: str, args: List[str]) -> Any:
        stdout = await self._run(operation, args)
        try:
            return json.loads(stdout)
        except ValueError:
            raise ProviderError(operation, f"unparseable output: {stdout[:200]!r}", self.provider_name)

    async def allocate(self, resource_type: str, requirements: Dict[str, Any]) -> str:
        args = ["docker", "run", "--gpu-type", resource_type, "--detach"]
        for key, value in sorted(requirements.items()):
            if isinstance(value, (str, int, float)) and not isinstance(value, bool):
                args.extend(["--label", f"{key}={value}"])
        args.append(self.config.get("image", self.image))

        instance_id = (await self._run("allocate", args)).strip()
        if not instance_id or len(instance_id.split()) != 1:
            raise ProviderError("allocate", f"unexpected instance id {instance_id!r}", self.provider_name)

        self.logger.info("Provisioned instance", extra={
            "instance_id": instance_id,
            "resource_type": resource_type
        })
        return instance_id

    async def status(self, instance_id: str) -> InstanceStatus:
        data = await self._run_json("status", ["status", instance_id])
        if not isinstance(data, dict) or "status" not in data:
            raise ProviderError("status", "response has no status field", self.provider_name)

        return InstanceStatus(
            instance_id=str(data.get("id", instance_id)),
            status=str(data["status"]).lower(),
            ip_address=data.get("ipAddress"),
            uptime=data.get("uptime"),
            details={k: v for k, v in data.items() if k not in ("id", "status", "ipAddress", "uptime")}
        )

    async def terminate(self, instance_id: str) -> None:
        await self._run("terminate", ["stop", instance_id])
        self.logger.info("Stopped instance", extra={"instance_id": instance_id})

    async def list_available(self) -> List[GPUAvailability]:
        data = await self._run_json("list_available", ["list-gpus", "--available"])
        try:
            return [GPUAvailability(str(item["type"]), int(item["available"])) for item in data]
        except (TypeError, KeyError, ValueError):
            raise ProviderError("list_available", "malformed availability list", self.provider_name)

    async def pricing(self) -> List[GPUPricing]:
        # The CLI has no pricing command; prices come from configuration
        entries = self.config.get("pricing")
        if not entries:
            return list(DEFAULT_CATALOG)
        try:
            return [
                GPUPricing(
                    str(entry["type"]),
                    float(entry["pricePerHour"]),
                    str(entry.get("memory", "")),
                    str(entry.get("compute", ""))
                )
                for entry in entries
            ]
        except (TypeError, KeyError, ValueError):
            raise ProviderError("pricing", "malformed pricing configuration", self.provider_name)

    async def metrics(self, instance_id: str) -> GPUMetrics:
        data = await self._run_json("metrics", ["metrics", instance_id])
        try:
            return GPUMetrics(
                utilization=float(data["utilization"]),
                memory_used=float(data["memory"]["used"]),
                memory_total=float(data["memory"]["total"]),
                temperature=float(data["temperature"]),
                power_usage=float(data["powerUsage"])
            )
        except (TypeError, KeyError, ValueError):
            raise ProviderError("metrics", "malformed metrics response", self.provider_name)
