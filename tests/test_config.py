import json

import pytest

from gpu_job_orchestrator.core.config import OrchestratorConfig, AllocationFailurePolicy
from gpu_job_orchestrator.core.exceptions import ConfigurationError


def test_defaults():
    config = OrchestratorConfig()

    assert config.provisioning_delay == 3.0
    assert config.running_delay == 12.0
    assert config.success_ratio == 0.8
    assert config.recovery_jitter == 5.0
    assert config.allocation_failure_policy == AllocationFailurePolicy.LEAVE_PENDING
    assert config.provider["type"] == "reference"
    assert config.resilience["allocate_attempts"] == 1


@pytest.mark.parametrize("overrides", [
    {"success_ratio": 1.5},
    {"running_delay": -1},
    {"event_queue_size": 0},
    {"allocation_failure_policy": "retry_forever"},
    {"provider": {"type": "carrier-pigeon"}},
    {"resilience": {"allocate_attempts": 0}},
])
def test_invalid_values_rejected(overrides):
    with pytest.raises(ConfigurationError):
        OrchestratorConfig(**overrides)


def test_from_dict_rejects_unknown_keys():
    with pytest.raises(ConfigurationError) as exc_info:
        OrchestratorConfig.from_dict({"provisioning_delay": 1, "warp_speed": True})

    assert "warp_speed" in exc_info.value.message


def test_partial_provider_config_keeps_defaults():
    config = OrchestratorConfig.from_dict({"provider": {"type": "rift", "image": "pytorch/pytorch"}})

    assert config.provider["image"] == "pytorch/pytorch"
    assert config.provider["binary"] == "rift"


def test_from_yaml_file(tmp_path):
    path = tmp_path / "orchestrator.yaml"
    path.write_text(
        "orchestrator:\n"
        "  running_delay: 30\n"
        "  allocation_failure_policy: mark_failed\n"
        "  provider:\n"
        "    type: rift\n"
    )

    config = OrchestratorConfig.from_file(path)

    assert config.running_delay == 30
    assert config.allocation_failure_policy == AllocationFailurePolicy.MARK_FAILED
    assert config.provider["type"] == "rift"


def test_from_json_file(tmp_path):
    path = tmp_path / "orchestrator.json"
    path.write_text(json.dumps({"success_ratio": 1.0, "random_seed": 5}))

    config = OrchestratorConfig.from_file(path)

    assert (config.success_ratio, config.random_seed) == (1.0, 5)


def test_unparseable_file(tmp_path):
    path = tmp_path / "broken.yaml"
    path.write_text("orchestrator: [unclosed\n")

    with pytest.raises(ConfigurationError):
        OrchestratorConfig.from_file(path)


def test_from_env():
    environ = {
        "GJO_PROVISIONING_DELAY": "1.5",
        "GJO_STRUCTURED_LOGS": "false",
        "GJO_DATABASE_URL": "postgresql://localhost/gpu_jobs",
        "GJO_PROVIDER": "rift",
        "CLOUDRIFT_API_KEY": "key-123",
        "CLOUDRIFT_BASE_URL": "https://rift.example.com",
    }

    config = OrchestratorConfig.from_env(environ)

    assert config.provisioning_delay == 1.5
    assert config.structured_logs is False
    assert config.database_url == "postgresql://localhost/gpu_jobs"
    assert config.provider["type"] == "rift"
    assert config.provider["api_key"] == "key-123"
    assert config.provider["base_url"] == "https://rift.example.com"


def test_from_env_overlays_base():
    base = OrchestratorConfig(running_delay=60)

    config = OrchestratorConfig.from_env({"GJO_SUCCESS_RATIO": "0.5"}, base=base)

    assert (config.running_delay, config.success_ratio) == (60, 0.5)


def test_from_env_rejects_bad_number():
    with pytest.raises(ConfigurationError):
        OrchestratorConfig.from_env({"GJO_RUNNING_DELAY": "soon"})


def test_to_dict_round_trip():
    config = OrchestratorConfig(allocation_failure_policy=AllocationFailurePolicy.MARK_FAILED)

    data = config.to_dict()

    assert data["allocation_failure_policy"] == "mark_failed"
    assert OrchestratorConfig.from_dict(data) == config
