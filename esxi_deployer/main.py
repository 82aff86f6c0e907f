"""
Main Orchestrator Module

Ties the image builder, the distribution point and the provisioning driver
together and fans the work out over the configured hosts.
"""

import shutil
import threading
import traceback
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from loguru import logger

from .bmc import BmcAdapterFactory
from .configs import (
    BmcVendor,
    BuildArtifact,
    BuildStatus,
    ConfigLoader,
    Credentials,
    DeploymentConfig,
    HostOutcome,
    HostSpec,
    ProvisioningSession,
    SessionState,
    StateManager,
)
from .exceptions import BuildError
from .image_building import ImageBuilder
from .provisioning import Probe, ProvisioningDriver


@dataclass
class RunSummary:
    """Outcome of a pipeline run, one row per selected host"""
    run_id: str
    started_at: str
    completed_at: Optional[str] = None
    duration_seconds: float = 0.0
    aborted: bool = False
    outcomes: List[HostOutcome] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return bool(self.outcomes) and not self.aborted and all(o.succeeded for o in self.outcomes)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            "started_at": self.started_at,
            "completed_at": self.completed_at,
            "duration_seconds": self.duration_seconds,
            "aborted": self.aborted,
            "succeeded": self.succeeded,
            "hosts": [
                {
                    "hostname": o.hostname,
                    "image_built": o.image_built,
                    "published": o.published,
                    "provisioned": o.provisioned,
                    "verified": o.verified,
                    "status": o.session.state.value if o.session else (
                        o.artifact.status.value if o.artifact else "pending"
                    ),
                    "attempts": o.session.attempts if o.session else 0,
                    "error": o.first_error,
                    "image_uri": o.artifact.image_uri if o.artifact else None,
                }
                for o in self.outcomes
            ],
        }


class EsxiDeployer:
    """
    Main orchestrator for bare-metal ESXi installs.

    This class provides:
    - Parallel per-host image builds
    - Publishing images to the distribution point
    - Parallel BMC-driven provisioning with per-host failure isolation
    - Operator abort that interrupts every in-flight session
    """

    def __init__(
        self,
        config: DeploymentConfig,
        credentials: Credentials,
        state_path: Optional[Path] = None,
        builder: Optional[ImageBuilder] = None,
        adapter_factory: Optional[BmcAdapterFactory] = None,
        probe: Optional[Probe] = None,
    ):
        """
        Initialize the deployer.

        Args:
            config: Deployment configuration
            credentials: Run credentials, kept in memory only
            state_path: Path to save/load state (defaults to <state_dir>/<run_id>.json)
            builder: Image builder (defaults to one built from config)
            adapter_factory: BMC adapter factory
            probe: Reachability probe handed to every driver

        Raises:
            ValueError: duplicate hostnames in the configuration
        """
        if not config.run_id:
            config.run_id = f"run-{datetime.now().strftime('%Y%m%d-%H%M%S')}"
        self.config = config
        self.credentials = credentials

        self.hosts: List[HostSpec] = ConfigLoader.build_host_specs(config)
        self._check_unique_hostnames(self.hosts)

        if state_path is None:
            state_path = Path(config.state_dir) / f"{config.run_id}.json"
        self.state_path = Path(state_path)
        self.state_manager = StateManager(str(self.state_path))

        self._builder = builder
        self._adapter_factory = adapter_factory
        self.probe = probe

        self.abort_event = threading.Event()
        self._active: Dict[str, ProvisioningDriver] = {}
        self._lock = threading.Lock()

    @staticmethod
    def _check_unique_hostnames(hosts: List[HostSpec]) -> None:
        seen = set()
        duplicates = []
        for host in hosts:
            if host.hostname in seen:
                duplicates.append(host.hostname)
            seen.add(host.hostname)
        if duplicates:
            raise ValueError(f"Duplicate hostnames in configuration: {', '.join(sorted(set(duplicates)))}")

    @property
    def builder(self) -> ImageBuilder:
        if self._builder is None:
            self._builder = ImageBuilder(
                self.config.staging_dir,
                self.config.output_dir,
                kickstart_options=self.config.kickstart,
            )
        return self._builder

    @property
    def adapter_factory(self) -> BmcAdapterFactory:
        if self._adapter_factory is None:
            self._adapter_factory = BmcAdapterFactory(timeout_seconds=self.config.driver.bmc_timeout_seconds)
        return self._adapter_factory

    @property
    def aborted(self) -> bool:
        return self.abort_event.is_set()

    def select_hosts(self, hostnames: Optional[List[str]] = None) -> List[HostSpec]:
        """Hosts to work on, in configuration order. Unknown names raise ValueError."""
        if not hostnames:
            return list(self.hosts)
        known = {h.hostname for h in self.hosts}
        unknown = [name for name in hostnames if name not in known]
        if unknown:
            raise ValueError(f"Unknown hosts: {', '.join(unknown)}")
        wanted = set(hostnames)
        return [h for h in self.hosts if h.hostname in wanted]

    def _ensure_state(self) -> None:
        if self.state_manager.state is not None:
            return
        if self.state_manager.load() is None:
            self.state_manager.initialize(str(self.config.run_id))

    def active_hosts(self) -> List[str]:
        with self._lock:
            return sorted(self._active)

    def abort(self) -> None:
        """Ask every in-flight session to eject, stop and fail"""
        if self.abort_event.is_set():
            return
        logger.warning(f"Abort requested, {len(self.active_hosts())} session(s) in flight")
        self.abort_event.set()

    # === Image Building ===

    def _build_one(self, host: HostSpec, source_iso: str) -> BuildArtifact:
        with logger.contextualize(host=host.hostname):
            if self.aborted:
                return BuildArtifact(hostname=host.hostname, status=BuildStatus.FAILED, error="aborted before build")
            try:
                artifact = self.builder.build(source_iso, host, self.credentials)
            except BuildError as e:
                logger.error(f"Build failed: {e}")
                return BuildArtifact(hostname=host.hostname, status=BuildStatus.FAILED, error=e.message)
            except Exception as e:
                logger.error(f"Unexpected error building image for {host.hostname}: {e}")
                logger.error(traceback.format_exc())
                return BuildArtifact(hostname=host.hostname, status=BuildStatus.FAILED, error=str(e))
            return self.publish(artifact)

    def publish(self, artifact: BuildArtifact) -> BuildArtifact:
        """
        Copy a built image into the distribution directory and fill its URIs.
        A copy failure is recorded on the artifact, which stays unpublished.
        """
        if artifact.status != BuildStatus.BUILT or not artifact.image_path:
            return artifact

        distribution = self.config.distribution
        image_name = Path(artifact.image_path).name
        target = Path(distribution.publish_dir) / image_name
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            if Path(artifact.image_path).resolve() != target.resolve():
                shutil.copyfile(artifact.image_path, target)
        except OSError as e:
            logger.error(f"Publishing {image_name} failed: {e}")
            artifact.error = f"publish failed: {e}"
            return artifact

        artifact.image_uri = distribution.http_uri(image_name)
        artifact.share_uri = distribution.share_uri(image_name)
        logger.info(f"Published {image_name} at {artifact.image_uri}")
        return artifact

    def build_all(self, hostnames: Optional[List[str]] = None) -> Dict[str, BuildArtifact]:
        """
        Build and publish images for the selected hosts in parallel.

        Returns:
            Dict mapping hostname to its artifact (BUILT or FAILED)
        """
        hosts = self.select_hosts(hostnames)
        self._ensure_state()
        self.state_manager.update_phase("building")

        source_iso = ConfigLoader.resolve_source_iso(self.config.source_iso)
        logger.info(f"Building {len(hosts)} image(s) from {source_iso}")

        artifacts: Dict[str, BuildArtifact] = {}
        with ThreadPoolExecutor(max_workers=self.config.concurrency.build_workers) as executor:
            futures = {executor.submit(self._build_one, host, source_iso): host for host in hosts}
            for future in as_completed(futures):
                host = futures[future]
                artifact = future.result()
                artifacts[host.hostname] = artifact
                self.state_manager.record_artifact(artifact)
                if artifact.error:
                    self.state_manager.add_error(f"{host.hostname}: {artifact.error}")

        built = sum(1 for a in artifacts.values() if a.is_published)
        logger.info(f"{built}/{len(hosts)} image(s) built and published")
        self.state_manager.update_phase("built")
        return artifacts

    # === Provisioning ===

    @staticmethod
    def image_uri_for(host: HostSpec, artifact: BuildArtifact) -> str:
        """Redfish BMCs prefer the CIFS share, iLO only mounts over HTTP"""
        if host.vendor == BmcVendor.REDFISH and artifact.share_uri:
            return artifact.share_uri
        if not artifact.image_uri:
            raise ValueError(f"image for {host.hostname} has not been published")
        return artifact.image_uri

    def _failed_session(self, host: HostSpec, error: Exception) -> ProvisioningSession:
        """Session for a host whose driver never started"""
        session = ProvisioningSession(hostname=host.hostname, max_attempts=self.config.driver.max_attempts)
        session.last_error = str(error)
        session.error_kind = type(error).__name__
        session.transition(SessionState.FAILED)
        return session

    def _provision_one(self, host: HostSpec, artifact: BuildArtifact) -> ProvisioningSession:
        with logger.contextualize(host=host.hostname):
            try:
                adapter = self.adapter_factory.create(host, self.credentials)
            except Exception as e:
                logger.error(f"Cannot create BMC adapter for {host.hostname}: {e}")
                return self._failed_session(host, e)

            driver = ProvisioningDriver(adapter, self.config.driver, probe=self.probe, abort_event=self.abort_event)
            with self._lock:
                busy = host.hostname in self._active
                if not busy:
                    self._active[host.hostname] = driver
            if busy:
                adapter.close()
                logger.error(f"{host.hostname} already has an active provisioning session")
                return self._failed_session(host, RuntimeError("another provisioning session is active"))
            try:
                return driver.run(host, self.image_uri_for(host, artifact))
            finally:
                with self._lock:
                    self._active.pop(host.hostname, None)

    def provision_all(
        self,
        artifacts: Optional[Dict[str, BuildArtifact]] = None,
        hostnames: Optional[List[str]] = None,
    ) -> Dict[str, ProvisioningSession]:
        """
        Provision the selected hosts in parallel.

        Only hosts whose artifact is built and published are provisioned.
        Without explicit artifacts, those recorded in the state file are used.

        Returns:
            Dict mapping hostname to its terminal session
        """
        hosts = self.select_hosts(hostnames)
        self._ensure_state()
        if artifacts is None:
            artifacts = dict(self.state_manager.state.artifacts) if self.state_manager.state else {}

        ready = []
        for host in hosts:
            artifact = artifacts.get(host.hostname)
            if artifact is None or not artifact.is_published:
                logger.warning(f"Skipping {host.hostname}: no published image")
                continue
            ready.append((host, artifact))

        self.state_manager.update_phase("provisioning")
        logger.info(f"Provisioning {len(ready)} host(s)")

        sessions: Dict[str, ProvisioningSession] = {}
        with ThreadPoolExecutor(max_workers=self.config.concurrency.provision_workers) as executor:
            futures = {executor.submit(self._provision_one, host, artifact): host for host, artifact in ready}
            for future in as_completed(futures):
                host = futures[future]
                session = future.result()
                sessions[host.hostname] = session
                self.state_manager.archive_session(session)
                if not session.succeeded:
                    self.state_manager.add_error(f"{host.hostname}: {session.last_error}")

        succeeded = sum(1 for s in sessions.values() if s.succeeded)
        logger.info(f"{succeeded}/{len(ready)} host(s) provisioned and verified")
        return sessions

    # === Full Workflow ===

    def summary(self, hostnames: Optional[List[str]] = None, started_at: Optional[str] = None) -> RunSummary:
        state = self.state_manager.state
        hosts = self.select_hosts(hostnames)
        outcomes = [
            HostOutcome(
                hostname=h.hostname,
                artifact=state.artifacts.get(h.hostname) if state else None,
                session=state.sessions.get(h.hostname) if state else None,
            )
            for h in hosts
        ]
        return RunSummary(
            run_id=str(self.config.run_id),
            started_at=started_at or (state.created_at if state and state.created_at else datetime.now().isoformat()),
            aborted=self.aborted,
            outcomes=outcomes,
        )

    def deploy_all(self, hostnames: Optional[List[str]] = None) -> RunSummary:
        """
        Run the full pipeline:
        1. Build images
        2. Publish them
        3. Provision and verify hosts

        Returns:
            Run summary
        """
        logger.info("Starting full deployment...")
        start_time = datetime.now()
        self.state_manager.initialize(str(self.config.run_id))

        artifacts = self.build_all(hostnames)
        if not self.aborted:
            self.provision_all(artifacts, hostnames)

        self.state_manager.update_phase("aborted" if self.aborted else "completed")

        end_time = datetime.now()
        summary = self.summary(hostnames, started_at=start_time.isoformat())
        summary.completed_at = end_time.isoformat()
        summary.duration_seconds = (end_time - start_time).total_seconds()
        logger.info(f"Deployment completed in {summary.duration_seconds:.1f} seconds")
        return summary

    @classmethod
    def from_config_file(
        cls,
        config_path: str,
        credentials: Credentials,
        state_path: Optional[str] = None,
    ) -> "EsxiDeployer":
        config = ConfigLoader.load_from_file(config_path)
        state = Path(state_path) if state_path else None
        return cls(config, credentials, state)
