"""Exception hierarchy for cluster provisioning."""

from typing import Optional, Sequence


class OcpLibvirtError(Exception):
    """Base class for all provisioning errors."""


class ConfigurationError(OcpLibvirtError, ValueError):
    """Invalid or conflicting parameters, detected before any external call."""


class HypervisorError(OcpLibvirtError, RuntimeError):
    """A libvirt lookup, define, create or update call failed."""


class ReadinessTimeout(OcpLibvirtError, TimeoutError):
    """A readiness gate ran out of attempts."""

    def __init__(self, what: str, attempts: int) -> None:
        super().__init__(f"{what} not ready after {attempts} attempts")
        self.what = what
        self.attempts = attempts


class ExternalCommandError(OcpLibvirtError, RuntimeError):
    """An external tool exited non-zero."""

    def __init__(self, command: Sequence[str], returncode: int, output: str = "") -> None:
        self.command = list(command)
        self.returncode = returncode
        self.output = output
        message = f"{self.command[0]} failed with exit code {returncode}"
        if output:
            message = f"{message}\nOutput: {output.strip()}"
        super().__init__(message)


class ProvisioningError(OcpLibvirtError):
    """A provisioning stage failed; carries the stage and node that failed."""

    def __init__(self, stage: str, node: Optional[str], cause: BaseException) -> None:
        target = f" for {node}" if node else ""
        super().__init__(f"{stage} failed{target}: {cause}")
        self.stage = stage
        self.node = node
        self.cause = cause
