"""
Runtime Type Definitions

Records that flow through a pipeline run: host identities, credentials,
build artifacts and provisioning sessions.
"""

import os
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


class BmcVendor(str, Enum):
    """Supported out-of-band management controllers"""
    REDFISH = "redfish"
    ILO = "ilo"


class BootMode(str, Enum):
    """Firmware boot path used for the one-time virtual CD boot"""
    UEFI = "uefi"
    LEGACY = "legacy"


class ResetType(str, Enum):
    FORCE_RESTART = "force_restart"
    POWER_ON = "power_on"


class PowerState(str, Enum):
    ON = "on"
    OFF = "off"
    UNKNOWN = "unknown"


class BuildStatus(str, Enum):
    PENDING = "pending"
    BUILT = "built"
    FAILED = "failed"


class SessionState(str, Enum):
    """Provisioning state machine states"""
    IDLE = "idle"
    MEDIA_EJECTED = "media_ejected"
    MEDIA_INSERTED = "media_inserted"
    BOOT_CONFIGURED = "boot_configured"
    POWERED_ON = "powered_on"
    INSTALLING = "installing"
    VERIFYING = "verifying"
    SUCCEEDED = "succeeded"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (SessionState.SUCCEEDED, SessionState.FAILED)


# States from which the boot sequence is considered handed over to the installer
_BOOTED_STATES = (
    SessionState.POWERED_ON,
    SessionState.INSTALLING,
    SessionState.VERIFYING,
    SessionState.SUCCEEDED,
)


@dataclass(frozen=True)
class NetworkProfile:
    """Static management network settings shared by a group of hosts"""
    netmask: str
    gateway: str
    dns_servers: Tuple[str, str]
    ntp_servers: Tuple[str, str]
    # 0 means untagged
    vlan_id: int = 0


@dataclass(frozen=True)
class HostSpec:
    """A physical server to install"""
    hostname: str
    # Management IP the installed hypervisor will use
    mgmt_ip: str
    bmc_ip: str
    vendor: BmcVendor
    network: NetworkProfile
    boot_mode: BootMode = BootMode.UEFI

    @property
    def image_name(self) -> str:
        return f"{self.hostname}.iso"


@dataclass(frozen=True)
class Credentials:
    """Secrets for one run. Held in memory only, never logged or persisted."""
    root_password: str = field(repr=False)
    bmc_username: str
    bmc_password: str = field(repr=False)
    share_username: Optional[str] = None
    share_password: Optional[str] = field(default=None, repr=False)

    @classmethod
    def load_from_env(cls) -> "Credentials":
        missing = [
            name for name in ("ESXI_ROOT_PASSWORD", "BMC_USERNAME", "BMC_PASSWORD")
            if not os.environ.get(name)
        ]
        if missing:
            raise ValueError(f"Missing credential environment variables: {', '.join(missing)}")
        return cls(
            root_password=os.environ["ESXI_ROOT_PASSWORD"],
            bmc_username=os.environ["BMC_USERNAME"],
            bmc_password=os.environ["BMC_PASSWORD"],
            share_username=os.environ.get("SHARE_USERNAME") or None,
            share_password=os.environ.get("SHARE_PASSWORD") or None,
        )


@dataclass(frozen=True)
class BootDescriptor:
    """Unattended-install file placed in the image"""
    file_name: str
    content: str


@dataclass
class BuildArtifact:
    """Result of building the per-host installer image"""
    hostname: str
    status: BuildStatus = BuildStatus.PENDING
    image_path: Optional[str] = None
    checksum: Optional[str] = None
    kickstart_sha256: Optional[str] = None
    built_at: Optional[str] = None
    error: Optional[str] = None
    # Filled when the image is copied to the distribution point
    image_uri: Optional[str] = None
    share_uri: Optional[str] = None

    @property
    def is_published(self) -> bool:
        return self.status == BuildStatus.BUILT and self.image_uri is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "hostname": self.hostname,
            "status": self.status.value,
            "image_path": self.image_path,
            "checksum": self.checksum,
            "kickstart_sha256": self.kickstart_sha256,
            "built_at": self.built_at,
            "error": self.error,
            "image_uri": self.image_uri,
            "share_uri": self.share_uri,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BuildArtifact":
        return cls(
            hostname=data["hostname"],
            status=BuildStatus(data.get("status", "pending")),
            image_path=data.get("image_path"),
            checksum=data.get("checksum"),
            kickstart_sha256=data.get("kickstart_sha256"),
            built_at=data.get("built_at"),
            error=data.get("error"),
            image_uri=data.get("image_uri"),
            share_uri=data.get("share_uri"),
        )


@dataclass
class ProvisioningSession:
    """State machine instance for one host"""
    hostname: str
    state: SessionState = SessionState.IDLE
    attempts: int = 0
    max_attempts: int = 3
    last_error: Optional[str] = None
    # Exception class name of the error in last_error (the most recent one)
    error_kind: Optional[str] = None
    started_at: Optional[str] = None
    completed_at: Optional[str] = None
    # (timestamp, state) pairs, oldest first
    history: List[Tuple[str, str]] = field(default_factory=list)

    def transition(self, state: SessionState) -> None:
        self.state = state
        self.history.append((datetime.now().isoformat(), state.value))

    @property
    def succeeded(self) -> bool:
        return self.state == SessionState.SUCCEEDED

    @property
    def reached_boot(self) -> bool:
        """Whether any attempt got as far as powering the host on"""
        booted = {s.value for s in _BOOTED_STATES}
        return any(state in booted for _, state in self.history)

    @property
    def reached_verification(self) -> bool:
        return any(state == SessionState.VERIFYING.value for _, state in self.history)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "hostname": self.hostname,
            "state": self.state.value,
            "attempts": self.attempts,
            "max_attempts": self.max_attempts,
            "last_error": self.last_error,
            "error_kind": self.error_kind,
            "started_at": self.started_at,
            "completed_at": self.completed_at,
            "history": [list(h) for h in self.history],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ProvisioningSession":
        return cls(
            hostname=data["hostname"],
            state=SessionState(data.get("state", "idle")),
            attempts=data.get("attempts", 0),
            max_attempts=data.get("max_attempts", 3),
            last_error=data.get("last_error"),
            error_kind=data.get("error_kind"),
            started_at=data.get("started_at"),
            completed_at=data.get("completed_at"),
            history=[(h[0], h[1]) for h in data.get("history", [])],
        )


@dataclass
class HostOutcome:
    """One row of the final status table"""
    hostname: str
    artifact: Optional[BuildArtifact] = None
    session: Optional[ProvisioningSession] = None

    @property
    def image_built(self) -> bool:
        return self.artifact is not None and self.artifact.status == BuildStatus.BUILT

    @property
    def published(self) -> bool:
        return self.artifact is not None and self.artifact.is_published

    @property
    def provisioned(self) -> bool:
        return self.session is not None and self.session.reached_boot

    @property
    def verified(self) -> bool:
        return self.session is not None and self.session.succeeded

    @property
    def succeeded(self) -> bool:
        return self.image_built and self.verified

    @property
    def first_error(self) -> Optional[str]:
        if self.artifact is not None and self.artifact.error:
            return self.artifact.error
        if self.session is not None and not self.session.succeeded:
            return self.session.last_error or "provisioning did not complete"
        if self.artifact is None:
            return "not built"
        return None


@dataclass
class RunState:
    """Persistent state of one pipeline run"""
    run_id: str
    # initialized, building, built, provisioning, completed, aborted
    phase: str = "initialized"
    artifacts: Dict[str, BuildArtifact] = field(default_factory=dict)
    sessions: Dict[str, ProvisioningSession] = field(default_factory=dict)
    errors: List[str] = field(default_factory=list)
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    def outcomes(self) -> List[HostOutcome]:
        hostnames = list(self.artifacts)
        hostnames += [h for h in self.sessions if h not in self.artifacts]
        return [
            HostOutcome(hostname=h, artifact=self.artifacts.get(h), session=self.sessions.get(h))
            for h in hostnames
        ]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            "phase": self.phase,
            "artifacts": {h: a.to_dict() for h, a in self.artifacts.items()},
            "sessions": {h: s.to_dict() for h, s in self.sessions.items()},
            "errors": self.errors,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RunState":
        return cls(
            run_id=data["run_id"],
            phase=data.get("phase", "initialized"),
            artifacts={h: BuildArtifact.from_dict(a) for h, a in data.get("artifacts", {}).items()},
            sessions={h: ProvisioningSession.from_dict(s) for h, s in data.get("sessions", {}).items()},
            errors=data.get("errors", []),
            created_at=data.get("created_at"),
            updated_at=data.get("updated_at"),
        )
