"""Loader for declarative development shell descriptors."""

__version__ = "0.1.0"

from .dependency import DependencySet, EnvironmentDescriptor, ToolchainPin
from .error_handling import ConfigParseError, DescriptorError, MissingPinError
from .loader import load_descriptor, load_descriptor_text
from .provisioning import (
    EnvironmentProvisioner,
    NixShellProvisioner,
    ProvisionResult,
    provision_environment,
)
from .variants import compare_descriptors

__all__ = [
    "ConfigParseError",
    "DependencySet",
    "DescriptorError",
    "EnvironmentDescriptor",
    "EnvironmentProvisioner",
    "MissingPinError",
    "NixShellProvisioner",
    "ProvisionResult",
    "ToolchainPin",
    "compare_descriptors",
    "load_descriptor",
    "load_descriptor_text",
    "provision_environment",
]
