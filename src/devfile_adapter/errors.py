"""Exception types raised by the devfile adapter."""
from __future__ import annotations

from typing import Optional, Sequence

from kubernetes.client import ApiException


class AdapterError(Exception):
    """Base class for every error surfaced by the adapter."""


class DevfileValidationError(AdapterError, ValueError):
    """The devfile, a command selection or an input value is invalid."""


class ClusterOperationError(AdapterError):
    """A cluster API call failed; wraps the underlying ``ApiException``."""

    def __init__(self, message: str, cause: Optional[ApiException] = None) -> None:
        if cause is not None:
            message = f"{message}: {cause.status} {cause.reason}"
        super().__init__(message)
        self.cause = cause

    @property
    def status(self) -> Optional[int]:
        return self.cause.status if self.cause is not None else None

    @property
    def is_forbidden(self) -> bool:
        return self.status in (401, 403)


class ResourceNotFoundError(AdapterError):
    """A resource required by the operation does not exist on the cluster."""


class WaitTimeoutError(AdapterError, TimeoutError):
    """A bounded wait on cluster state ran out of time."""

    def __init__(self, message: str, output: str = "") -> None:
        if output:
            message = f"{message}\n{output}"
        super().__init__(message)
        self.output = output


class CommandExecutionError(AdapterError):
    """A command executed inside a container exited unsuccessfully."""

    def __init__(self, command: Sequence[str], stdout: str = "", stderr: str = "", reason: str = "") -> None:
        self.command = list(command)
        self.stdout = stdout
        self.stderr = stderr
        message = f"command '{' '.join(self.command)}' failed"
        if reason:
            message = f"{message}: {reason}"
        if stderr:
            message = f"{message}\nstderr: {stderr}"
        super().__init__(message)


class BuildFailedError(AdapterError):
    """An image build reached a failed terminal phase."""

    def __init__(self, message: str, output: str = "") -> None:
        if output:
            message = f"{message}\n{output}"
        super().__init__(message)
        self.output = output


class BuildInterruptedError(AdapterError):
    """The build was interrupted by the user; ephemeral resources were cleaned up."""
