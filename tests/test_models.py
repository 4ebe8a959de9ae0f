from datetime import datetime

import pytest

from gpu_job_orchestrator.models.events import LifecycleEvent, job_channel
from gpu_job_orchestrator.models.job import (
    Job,
    JobState,
    ResourceRequest,
    ACTIVE_STATES,
    TERMINAL_STATES,
    can_transition_to,
    get_valid_transitions,
    format_audit_entry,
)


class TestStateGraph:

    @pytest.mark.parametrize("current,target", [
        (JobState.PENDING, JobState.PROVISIONING),
        (JobState.PENDING, JobState.FAILED),
        (JobState.PROVISIONING, JobState.RUNNING),
        (JobState.PROVISIONING, JobState.STOPPED),
        (JobState.RUNNING, JobState.COMPLETED),
        (JobState.RUNNING, JobState.FAILED),
        (JobState.RUNNING, JobState.STOPPED),
    ])
    def test_allowed_transitions(self, current, target):
        assert can_transition_to(current, target)

    @pytest.mark.parametrize("current,target", [
        (JobState.PENDING, JobState.RUNNING),
        (JobState.PENDING, JobState.STOPPED),
        (JobState.PROVISIONING, JobState.FAILED),
        (JobState.PROVISIONING, JobState.PENDING),
        (JobState.RUNNING, JobState.PROVISIONING),
        (JobState.COMPLETED, JobState.STOPPED),
    ])
    def test_backward_and_skipping_transitions_rejected(self, current, target):
        assert not can_transition_to(current, target)

    def test_terminal_states_have_no_exits(self):
        for state in TERMINAL_STATES:
            assert get_valid_transitions(state) == []

    def test_state_partition(self):
        assert ACTIVE_STATES == {JobState.PROVISIONING, JobState.RUNNING}
        assert TERMINAL_STATES == {JobState.COMPLETED, JobState.FAILED, JobState.STOPPED}


class TestJob:

    def test_defaults(self):
        job = Job(resource=ResourceRequest("A100", {"gpu_count": 1}))

        assert job.state == JobState.PENDING
        assert job.instance_id is None
        assert job.user_id == "default-user"
        assert job.resource_type == "A100"
        assert job.requirements == {"gpu_count": 1}
        assert len(job.job_id) == 32

    def test_ids_are_unique(self):
        assert Job(resource=ResourceRequest("A100")).job_id != Job(resource=ResourceRequest("A100")).job_id

    def test_round_trip_through_dict(self):
        job = Job(
            resource=ResourceRequest("H100", {"memory": "80GB"}),
            user_id="alice",
            model_type="llama",
            state=JobState.RUNNING,
            instance_id="gpu-5",
        )
        job.record("provisioning instance gpu-5")

        restored = Job.from_dict(job.to_dict())

        assert restored == job

    def test_from_database_row_ignores_unknown_columns(self):
        row = {
            "job_id": "j1",
            "resource_type": "A100",
            "requirements": None,
            "state": "stopped",
            "created_at": datetime(2024, 1, 1),
            "updated_at": datetime(2024, 1, 2),
            "audit_log": None,
            "row_version": 3,
        }

        job = Job.from_dict(row)

        assert job.state == JobState.STOPPED
        assert job.requirements == {}
        assert job.audit_log == []

    def test_stoppable_and_terminal(self):
        running = Job(resource=ResourceRequest("A100"), state=JobState.RUNNING)
        pending = Job(resource=ResourceRequest("A100"))
        failed = Job(resource=ResourceRequest("A100"), state=JobState.FAILED)

        assert running.can_be_stopped() and not running.is_terminal()
        assert not pending.can_be_stopped()
        assert failed.is_terminal() and not failed.can_be_stopped()

    def test_audit_entries_are_timestamped(self):
        at = datetime(2024, 5, 1, 12, 0, 0)

        assert format_audit_entry("stopped on request", at) == "2024-05-01T12:00:00 stopped on request"


class TestLifecycleEvent:

    def test_for_job(self):
        job = Job(resource=ResourceRequest("A100"), state=JobState.PROVISIONING, instance_id="gpu-1")

        lifecycle_event = LifecycleEvent.for_job(job)

        assert lifecycle_event.channel == job_channel(job.job_id) == f"job-{job.job_id}"
        assert lifecycle_event.to_dict() == {"jobId": job.job_id, "status": "provisioning", "instanceId": "gpu-1"}

    def test_wire_form_omits_missing_instance(self):
        assert LifecycleEvent("j1", JobState.PENDING).to_dict() == {"jobId": "j1", "status": "pending"}
