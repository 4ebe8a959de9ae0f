"""
Exception classes for GPU Job Orchestrator

Provides the hierarchy of exceptions raised by the lifecycle orchestrator,
the job store and the provisioning providers.
"""

from typing import Optional, Dict, Any


class JobOrchestratorError(Exception):
    """Base exception for all job orchestrator errors."""

    def __init__(self, message: str, error_code: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for JSON serialization."""
        return {
            "error": self.__class__.__name__,
            "message": self.message,
            "error_code": self.error_code,
            "details": self.details
        }


class JobNotFoundError(JobOrchestratorError):
    """Raised when a requested job does not exist in the job store."""

    def __init__(self, job_id: str):
        super().__init__(
            f"Job {job_id} not found",
            error_code="JOB_NOT_FOUND",
            details={"job_id": job_id}
        )
        self.job_id = job_id


class JobSubmissionError(JobOrchestratorError):
    """Raised when a job could not be submitted (no instance was provisioned)."""

    def __init__(self, message: str, job_id: Optional[str] = None, resource_type: Optional[str] = None):
        super().__init__(
            f"Job submission failed: {message}",
            error_code="JOB_SUBMISSION_ERROR",
            details={"job_id": job_id, "resource_type": resource_type}
        )
        self.job_id = job_id


class InvalidTransitionError(JobOrchestratorError):
    """
    Raised when a state change does not match the job's persisted state.

    Only used internally: the orchestrator discards the stale event and records
    it in the job's audit log.
    """

    def __init__(self, job_id: str, current_state: Any, target_state: Any):
        super().__init__(
            f"Job {job_id} cannot move from {_tag(current_state)} to {_tag(target_state)}",
            error_code="INVALID_TRANSITION",
            details={
                "job_id": job_id,
                "current_state": _tag(current_state),
                "target_state": _tag(target_state)
            }
        )
        self.job_id = job_id
        self.current_state = current_state
        self.target_state = target_state


class ProviderError(JobOrchestratorError):
    """Raised when a provisioning provider call fails permanently or returns inconsistent data."""

    def __init__(self, operation: str, message: str, provider: Optional[str] = None,
                 error_code: str = "PROVIDER_ERROR"):
        super().__init__(
            f"Provider operation '{operation}' failed: {message}",
            error_code=error_code,
            details={"operation": operation, "provider": provider}
        )
        self.operation = operation


class TransientProviderError(ProviderError):
    """Raised when a provider call failed because the provider is unreachable or unavailable."""

    def __init__(self, operation: str, message: str, provider: Optional[str] = None):
        super().__init__(operation, message, provider=provider, error_code="PROVIDER_UNAVAILABLE")


class ConfigurationError(JobOrchestratorError):
    """Raised when there's an error in configuration."""

    def __init__(self, config_key: str, message: str):
        super().__init__(
            f"Configuration error for {config_key}: {message}",
            error_code="CONFIGURATION_ERROR",
            details={"config_key": config_key}
        )


class DatabaseError(JobOrchestratorError):
    """Raised when job store operations fail."""

    def __init__(self, operation: str, message: str, table: Optional[str] = None):
        super().__init__(
            f"Database operation '{operation}' failed: {message}",
            error_code="DATABASE_ERROR",
            details={"operation": operation, "table": table}
        )
        self.operation = operation


class StoreWriteError(DatabaseError):
    """Raised when a job record could not be durably written."""

    def __init__(self, operation: str, message: str, job_id: Optional[str] = None):
        super().__init__(operation, message, table="jobs")
        self.error_code = "STORE_WRITE_ERROR"
        self.details["job_id"] = job_id
        self.job_id = job_id


class OrchestratorError(JobOrchestratorError):
    """Raised when orchestrator-level operations fail."""

    def __init__(self, message: str):
        super().__init__(
            f"Orchestrator error: {message}",
            error_code="ORCHESTRATOR_ERROR"
        )


def _tag(state: Any) -> str:
    return getattr(state, "value", str(state))
