"""
Environment provisioning interface.

Materializing a shell is the job of an external package manager. This module
only defines the narrow seam it is reached through: an injected
EnvironmentProvisioner that turns a DependencySet and a ToolchainPin into an
Environment. The built-in NixShellProvisioner renders the shell.nix
expression and stops there; nothing is built or executed.
"""

import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

from .dependency import DependencySet, ToolchainPin
from .error_handling import ErrorCategory, get_error_handler
from .exporters import render_nix_expression
from .structured_logging import log_environment_provisioned


@dataclass(frozen=True)
class Environment:
    """A provisioned (or ready-to-provision) shell environment."""

    provisioner: str
    dependencies: DependencySet
    toolchain_pin: ToolchainPin
    expression: Optional[str] = None


@dataclass(frozen=True)
class ProvisionResult:
    """Result of handing a dependency set to a provisioner."""

    provisioner: str
    environment: Optional[Environment] = None
    error: Optional[str] = None
    duration_ms: Optional[int] = None

    @property
    def success(self) -> bool:
        return self.error is None and self.environment is not None


class EnvironmentProvisioner(ABC):
    """Base class for external environment provisioners."""

    @abstractmethod
    def provision(
        self, dependencies: DependencySet, toolchain_pin: ToolchainPin
    ) -> Environment:
        """Materialize an environment for the given inputs."""
        pass

    @abstractmethod
    def get_provisioner_type(self) -> str:
        """Get the provisioner type identifier."""
        pass


class NixShellProvisioner(EnvironmentProvisioner):
    """Produces the mkShell expression a Nix evaluator would consume."""

    def __init__(self, sources_file: Optional[str] = None):
        self.sources_file = sources_file

    def provision(
        self, dependencies: DependencySet, toolchain_pin: ToolchainPin
    ) -> Environment:
        expression = render_nix_expression(
            dependencies, toolchain_pin, sources_file=self.sources_file
        )
        return Environment(
            provisioner=self.get_provisioner_type(),
            dependencies=dependencies,
            toolchain_pin=toolchain_pin,
            expression=expression,
        )

    def get_provisioner_type(self) -> str:
        return "nix-shell"


def get_provisioner(provisioner_type: str = "nix-shell") -> EnvironmentProvisioner:
    """
    Factory function to get a provisioner.

    Args:
        provisioner_type: Type of provisioner ('nix-shell')

    Returns:
        A new provisioner instance

    Raises:
        ValueError: If provisioner_type is not supported
    """
    if provisioner_type == "nix-shell":
        return NixShellProvisioner()
    raise ValueError(f"Unsupported provisioner type: {provisioner_type}")


def provision_environment(
    dependencies: DependencySet,
    toolchain_pin: ToolchainPin,
    provisioner: EnvironmentProvisioner,
) -> ProvisionResult:
    """
    Hand a dependency set and toolchain pin to an external provisioner.

    Provisioner failures are reported through the error handler and
    returned as a failed result rather than raised.

    Args:
        dependencies: Packages the environment must provide
        toolchain_pin: Pinned toolchain to include
        provisioner: The external collaborator doing the work

    Returns:
        ProvisionResult: The environment, or the error that prevented it
    """
    provisioner_type = provisioner.get_provisioner_type()
    start_time = time.monotonic()

    try:
        environment = provisioner.provision(dependencies, toolchain_pin)
        result = ProvisionResult(
            provisioner=provisioner_type,
            environment=environment,
            duration_ms=int((time.monotonic() - start_time) * 1000),
        )
    except Exception as e:
        get_error_handler().error(
            ErrorCategory.PROVISIONING,
            f"Provisioner {provisioner_type} failed: {e}",
            "provisioning",
            "provision_environment",
            exception=e,
            details={
                "dependency_count": len(dependencies),
                "toolchain_pin": toolchain_pin.reference,
            },
        )
        result = ProvisionResult(
            provisioner=provisioner_type,
            error=str(e),
            duration_ms=int((time.monotonic() - start_time) * 1000),
        )

    log_environment_provisioned(
        provisioner_type, len(dependencies), toolchain_pin.reference, result.success
    )
    return result
