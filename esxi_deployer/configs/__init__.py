"""
Configuration Module

Provides configuration types and loading utilities.
"""

from .types import (
    BmcVendor,
    BootMode,
    ResetType,
    PowerState,
    BuildStatus,
    SessionState,
    NetworkProfile,
    HostSpec,
    Credentials,
    BootDescriptor,
    BuildArtifact,
    ProvisioningSession,
    HostOutcome,
    RunState,
)

from .run_config import (
    DeploymentConfig,
    DistributionConfig,
    NetworkProfileConfig,
    NetworkOverride,
    KickstartConfig,
    DriverConfig,
    ConcurrencyConfig,
    HostConfig,
)

from .loader import ConfigLoader, StateManager

__all__ = [
    # Enums
    "BmcVendor",
    "BootMode",
    "ResetType",
    "PowerState",
    "BuildStatus",
    "SessionState",
    # Runtime types
    "NetworkProfile",
    "HostSpec",
    "Credentials",
    "BootDescriptor",
    "BuildArtifact",
    "ProvisioningSession",
    "HostOutcome",
    "RunState",
    # Config file schema
    "DeploymentConfig",
    "DistributionConfig",
    "NetworkProfileConfig",
    "NetworkOverride",
    "KickstartConfig",
    "DriverConfig",
    "ConcurrencyConfig",
    "HostConfig",
    # Utilities
    "ConfigLoader",
    "StateManager",
]
