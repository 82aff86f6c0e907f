"""
Deployment configuration file schema (TOML, validated with pydantic).
"""

from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

from .types import BmcVendor, BootMode


class DistributionConfig(BaseModel):
    # Local directory served to the BMCs
    publish_dir: str = "/home/stageiso"
    # HTTP URL under which publish_dir is served
    http_base_url: str
    # Optional CIFS export of publish_dir, e.g. //10.0.0.5/stageiso
    cifs_share: Optional[str] = None

    def http_uri(self, image_name: str) -> str:
        return f"{self.http_base_url.rstrip('/')}/{image_name}"

    def share_uri(self, image_name: str) -> Optional[str]:
        if not self.cifs_share:
            return None
        return f"{self.cifs_share.rstrip('/')}/{image_name}"


class NetworkProfileConfig(BaseModel):
    netmask: str
    gateway: str
    dns_servers: List[str] = Field(min_length=2, max_length=2)
    ntp_servers: List[str] = Field(min_length=2, max_length=2)
    vlan_id: int = Field(default=0, ge=0, le=4094)


class NetworkOverride(BaseModel):
    """Per-host overrides merged into the shared network profile"""
    netmask: Optional[str] = None
    gateway: Optional[str] = None
    dns_servers: Optional[List[str]] = None
    ntp_servers: Optional[List[str]] = None
    vlan_id: Optional[int] = Field(default=None, ge=0, le=4094)


class KickstartConfig(BaseModel):
    # Network stack switched off in %firstboot; None keeps everything enabled
    disabled_network_stack: Optional[str] = "ipv6"
    enable_shell: bool = True
    # Seconds the firstboot reboot is delayed
    reboot_delay_seconds: int = 15


class DriverConfig(BaseModel):
    max_attempts: int = Field(default=3, ge=1)
    # Fixed pause between two attempts of the whole sequence
    retry_backoff_seconds: float = Field(default=60.0, ge=0)
    poll_interval_seconds: float = Field(default=30.0, ge=0)
    # Installs take roughly 8-12 minutes
    install_timeout_seconds: float = Field(default=1800.0, ge=0)
    verify_window_seconds: float = Field(default=300.0, ge=0)
    verify_successes: int = Field(default=3, ge=1)
    verify_port: int = 443
    write_protected: bool = True
    bmc_timeout_seconds: float = 30.0


class ConcurrencyConfig(BaseModel):
    build_workers: int = Field(default=4, ge=1)
    provision_workers: int = Field(default=8, ge=1)


class HostConfig(BaseModel):
    hostname: str
    mgmt_ip: str
    bmc_ip: str
    vendor: BmcVendor
    boot_mode: BootMode = BootMode.UEFI
    network: Optional[NetworkOverride] = None

    @field_validator("hostname")
    @classmethod
    def _hostname_is_simple(cls, value: str) -> str:
        # Used as a directory and file name
        if not value or "/" in value or value.startswith("."):
            raise ValueError(f"invalid hostname: {value!r}")
        return value


class DeploymentConfig(BaseModel):
    run_id: Optional[str] = None
    # ISO file, or a directory whose newest *.iso is used
    source_iso: str = "/home/deploy/isosrc"
    staging_dir: str = "/home/deploy/baremetal/staging"
    output_dir: str = "/home/deploy/baremetal"
    state_dir: str = "./state"
    log_file: str = "./log/esxi-deployer.log"

    distribution: DistributionConfig
    network: NetworkProfileConfig
    kickstart: KickstartConfig = KickstartConfig()
    driver: DriverConfig = DriverConfig()
    concurrency: ConcurrencyConfig = ConcurrencyConfig()
    hosts: List[HostConfig] = []
