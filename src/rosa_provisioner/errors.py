"""Typed errors raised by the provisioning engine.

Every error carries a short machine-readable ``code`` in addition to its
message. Components raise these; only the orchestrator decides whether an
error ends the run.
"""

from __future__ import annotations

from collections.abc import Sequence


class ProvisionerError(Exception):
    """Base class for all provisioning errors."""

    default_code = "provisioner_error"

    def __init__(self, message: str, code: str | None = None) -> None:
        super().__init__(message)
        self.code = code or self.default_code


class ValidationError(ProvisionerError):
    """Bad input detected before any side effect."""

    default_code = "validation_error"


class RequestValidationError(ValidationError):
    """Cluster request failed one or more constraints."""

    def __init__(self, violations: Sequence[str]) -> None:
        self.violations = list(violations)
        message = "Cluster request is invalid:\n" + "\n".join(
            f"  - {violation}" for violation in self.violations
        )
        super().__init__(message, "invalid_request")


class InvalidClusterKey(ValidationError):
    default_code = "invalid_cluster_key"


class InvalidClusterFile(ValidationError):
    default_code = "invalid_cluster_file"


class BackendError(ProvisionerError):
    """A cloud or managed-service call failed."""

    default_code = "backend_error"


class NotFoundError(BackendError):
    default_code = "not_found"


class PermissionDeniedError(BackendError):
    default_code = "permission_denied"


class ConflictError(BackendError):
    """Resource exists in an unexpected state; requires a user decision."""

    default_code = "conflict"


class TransientBackendError(BackendError):
    """Network failure, throttling or server error; safe to retry."""

    default_code = "transient"


class BackendRejectedError(BackendError):
    """The managed service refused the request as submitted."""

    default_code = "rejected"


class PartialPlanError(ProvisionerError):
    """The inspector could not determine the state of every resource."""

    default_code = "partial_plan"

    def __init__(self, message: str, unresolved: Sequence[str]) -> None:
        super().__init__(message)
        self.unresolved = list(unresolved)


class ProvisioningError(ProvisionerError):
    """One or more identity resources could not be created."""

    default_code = "provisioning_failed"

    def __init__(self, failures: dict[str, Exception]) -> None:
        self.failures = dict(failures)
        details = "; ".join(f"{name}: {exc}" for name, exc in self.failures.items())
        super().__init__(f"Failed to create identity resources: {details}")


class ConvergenceTimeout(ProvisionerError):
    default_code = "convergence_timeout"


class ConvergenceFailure(ProvisionerError):
    default_code = "convergence_failure"

    def __init__(self, message: str, status: str) -> None:
        super().__init__(message)
        self.status = status


class PollError(ProvisionerError):
    """Status queries kept failing; says nothing about the cluster itself."""

    default_code = "poll_error"


class VerificationError(ProvisionerError):
    default_code = "verification_failed"

    def __init__(self, problems: Sequence[str]) -> None:
        self.problems = list(problems)
        super().__init__("Post-create verification failed: " + "; ".join(self.problems))


class RunCancelled(ProvisionerError):
    default_code = "cancelled"


class InvalidTransition(ProvisionerError):
    default_code = "invalid_transition"


class RollbackIncomplete(ProvisionerError):
    """Some resources created by the run could not be deleted."""

    default_code = "rollback_incomplete"

    def __init__(self, resources: Sequence[str]) -> None:
        self.resources = list(resources)
        listing = "\n".join(f"  - {identifier}" for identifier in self.resources)
        super().__init__(
            "The following resources were created but could not be deleted "
            f"and require manual cleanup:\n{listing}"
        )
