"""
Configuration Loader and State Manager

Loads the TOML deployment file and persists per-run state (build artifacts and
archived provisioning sessions) for audit and for resuming the provision phase.
"""

import json
import os
import threading
import tomllib
import uuid
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from .run_config import DeploymentConfig, HostConfig, NetworkProfileConfig
from .types import (
    BuildArtifact,
    HostSpec,
    NetworkProfile,
    ProvisioningSession,
    RunState,
)


class ConfigLoader:
    """Loads and validates configuration from files"""

    @staticmethod
    def load_from_file(config_path: str) -> DeploymentConfig:
        """Load deployment configuration from a TOML file"""
        if not os.path.exists(config_path):
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        with open(config_path, "rb") as f:
            data = tomllib.load(f)

        return ConfigLoader.from_dict(data)

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> DeploymentConfig:
        """Create DeploymentConfig from a dictionary"""
        config = DeploymentConfig(**data)
        if not config.run_id:
            config.run_id = f"run-{datetime.now().strftime('%Y%m%d-%H%M%S')}-{uuid.uuid4().hex[:8]}"
        return config

    @staticmethod
    def build_network_profile(base: NetworkProfileConfig, host: HostConfig) -> NetworkProfile:
        override = host.network.model_dump(exclude_none=True) if host.network else {}
        merged = {**base.model_dump(), **override}
        merged = NetworkProfileConfig(**merged)
        return NetworkProfile(
            netmask=merged.netmask,
            gateway=merged.gateway,
            dns_servers=(merged.dns_servers[0], merged.dns_servers[1]),
            ntp_servers=(merged.ntp_servers[0], merged.ntp_servers[1]),
            vlan_id=merged.vlan_id,
        )

    @staticmethod
    def build_host_specs(config: DeploymentConfig) -> List[HostSpec]:
        """Turn host entries into immutable HostSpec records, preserving order"""
        return [
            HostSpec(
                hostname=host.hostname,
                mgmt_ip=host.mgmt_ip,
                bmc_ip=host.bmc_ip,
                vendor=host.vendor,
                network=ConfigLoader.build_network_profile(config.network, host),
                boot_mode=host.boot_mode,
            )
            for host in config.hosts
        ]

    @staticmethod
    def resolve_source_iso(source_iso: str) -> str:
        """Return the ISO file to use; a directory resolves to its newest *.iso"""
        path = Path(source_iso)
        if path.is_dir():
            candidates = sorted(path.glob("*.iso"), key=lambda p: p.stat().st_mtime)
            if not candidates:
                raise FileNotFoundError(f"No .iso file found in {source_iso}")
            return str(candidates[-1])
        return str(path)


class StateManager:
    """Persists run state for audit and recovery. Safe to call from worker threads."""

    def __init__(self, state_file_path: str):
        self.state_file_path = str(state_file_path)
        self._state: Optional[RunState] = None
        self._lock = threading.RLock()

    def initialize(self, run_id: str) -> RunState:
        """Initialize a new run state"""
        with self._lock:
            self._state = RunState(
                run_id=run_id,
                phase="initialized",
                created_at=datetime.now().isoformat(),
                updated_at=datetime.now().isoformat(),
            )
            self.save()
            return self._state

    def load(self) -> Optional[RunState]:
        """Load state from file if exists"""
        if not os.path.exists(self.state_file_path):
            return None

        try:
            with open(self.state_file_path, "r") as f:
                data = json.load(f)
            with self._lock:
                self._state = RunState.from_dict(data)
                return self._state
        except (json.JSONDecodeError, KeyError) as e:
            raise ValueError(f"Invalid state file: {e}")

    def save(self) -> None:
        """Save current state to file"""
        with self._lock:
            if self._state is None:
                return

            self._state.updated_at = datetime.now().isoformat()

            os.makedirs(os.path.dirname(self.state_file_path) or ".", exist_ok=True)

            tmp_path = f"{self.state_file_path}.tmp"
            with open(tmp_path, "w") as f:
                json.dump(self._state.to_dict(), f, indent=2)
            os.replace(tmp_path, self.state_file_path)

    @property
    def state(self) -> Optional[RunState]:
        return self._state

    def update_phase(self, phase: str) -> None:
        with self._lock:
            if self._state:
                self._state.phase = phase
                self.save()

    def record_artifact(self, artifact: BuildArtifact) -> None:
        with self._lock:
            if self._state:
                self._state.artifacts[artifact.hostname] = artifact
                self.save()

    def archive_session(self, session: ProvisioningSession) -> None:
        """Store a session that reached a terminal state"""
        with self._lock:
            if self._state:
                self._state.sessions[session.hostname] = session
                self.save()

    def add_error(self, error: str) -> None:
        with self._lock:
            if self._state:
                self._state.errors.append(f"{datetime.now().isoformat()}: {error}")
                self.save()
