"""
ESXi Deployer

Unattended bare-metal ESXi installs driven through server BMCs.

Features:
- Per-host installer images with an embedded kickstart (KS.CFG)
- Distribution of the images over HTTP or a CIFS share
- Virtual-media boot through Redfish (Dell iDRAC and others) or HPE iLO
- Retry of transport failures, verification of the installed host
- Persistent run state and a per-host status table

Usage:
    from esxi_deployer import EsxiDeployer, Credentials

    deployer = EsxiDeployer.from_config_file("deploy_config.toml", Credentials.load_from_env())
    summary = deployer.deploy_all()

CLI:
    esxi-deployer check -c deploy_config.toml
    esxi-deployer deploy -c deploy_config.toml
    esxi-deployer status -s state/<run_id>.json
"""

__version__ = "0.1.0"

# Core types
from .configs import (
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
    DeploymentConfig,
)

from .exceptions import (
    DeployerError,
    BuildError,
    BmcError,
    TransportError,
    VendorRejected,
    VerificationTimeout,
    ProvisioningAborted,
)

# Main orchestrator
from .main import EsxiDeployer, RunSummary

# Components
from .bmc import VendorAdapter, RedfishAdapter, IloAdapter, BmcAdapterFactory
from .image_building import ImageBuilder, IsoToolchain, render_kickstart, append_kernel_option
from .provisioning import ProvisioningDriver, ReachabilityProbe

# Configuration utilities
from .configs.loader import ConfigLoader, StateManager

__all__ = [
    # Version
    "__version__",
    # Types
    "BmcVendor",
    "BootMode",
    "ResetType",
    "PowerState",
    "BuildStatus",
    "SessionState",
    "NetworkProfile",
    "HostSpec",
    "Credentials",
    "BootDescriptor",
    "BuildArtifact",
    "ProvisioningSession",
    "HostOutcome",
    "RunState",
    "DeploymentConfig",
    # Errors
    "DeployerError",
    "BuildError",
    "BmcError",
    "TransportError",
    "VendorRejected",
    "VerificationTimeout",
    "ProvisioningAborted",
    # Main
    "EsxiDeployer",
    "RunSummary",
    # Components
    "VendorAdapter",
    "RedfishAdapter",
    "IloAdapter",
    "BmcAdapterFactory",
    "ImageBuilder",
    "IsoToolchain",
    "render_kickstart",
    "append_kernel_option",
    "ProvisioningDriver",
    "ReachabilityProbe",
    # Utils
    "ConfigLoader",
    "StateManager",
]
