import threading
from pathlib import Path
from typing import Dict, List, Set

import pytest

from esxi_deployer.configs import (
    BuildArtifact,
    BuildStatus,
    ConfigLoader,
    Credentials,
    HostSpec,
    PowerState,
    SessionState,
)
from esxi_deployer.exceptions import BuildError, VendorRejected
from esxi_deployer.main import EsxiDeployer

from test_provisioning_driver import _FakeAdapter


class _FakeBuilder:
    def __init__(self, output_dir: Path, failing: Set[str] = frozenset()):
        self.output_dir = output_dir
        self.failing = set(failing)
        self.built: List[str] = []
        self._lock = threading.Lock()

    def build(self, source_iso: str, host: HostSpec, credentials: Credentials) -> BuildArtifact:
        with self._lock:
            self.built.append(host.hostname)
        if host.hostname in self.failing:
            raise BuildError(host.hostname, "genisoimage exited with 1")
        self.output_dir.mkdir(parents=True, exist_ok=True)
        image = self.output_dir / host.image_name
        image.write_bytes(f"iso for {host.hostname}".encode())
        return BuildArtifact(
            hostname=host.hostname,
            status=BuildStatus.BUILT,
            image_path=str(image),
            checksum="00" * 32,
            kickstart_sha256="11" * 32,
            built_at="2026-01-01T00:00:00",
        )


class _FakeAdapterFactory:
    def __init__(self):
        self.adapters: Dict[str, _FakeAdapter] = {}
        self.rejecting: Set[str] = set()
        self.inserted: Dict[str, str] = {}
        self._lock = threading.Lock()

    def create(self, host: HostSpec, credentials: Credentials) -> _FakeAdapter:
        adapter = _FakeAdapter(power=PowerState.OFF)
        factory = self
        original_insert = adapter.insert_media

        def insert_media(image_uri: str, write_protected: bool = True) -> None:
            with factory._lock:
                factory.inserted[host.hostname] = image_uri
            original_insert(image_uri, write_protected)

        adapter.insert_media = insert_media
        if host.hostname in self.rejecting:
            adapter.failures["insert_media"] = [VendorRejected(host.bmc_ip, "insert media", "detached")]
        with self._lock:
            self.adapters[host.hostname] = adapter
        return adapter


def _config_dict(tmp_path: Path, hostnames=("esxi01", "esxi02", "esxi03")):
    vendors = ["redfish", "ilo"]
    return {
        "run_id": "run-test",
        "source_iso": str(tmp_path / "installer.iso"),
        "staging_dir": str(tmp_path / "staging"),
        "output_dir": str(tmp_path / "out"),
        "state_dir": str(tmp_path / "state"),
        "distribution": {
            "publish_dir": str(tmp_path / "stageiso"),
            "http_base_url": "http://10.0.0.5/stageiso",
            "cifs_share": "//10.0.0.5/stageiso",
        },
        "network": {
            "netmask": "255.255.255.0",
            "gateway": "10.0.0.1",
            "dns_servers": ["10.0.0.2", "10.0.0.3"],
            "ntp_servers": ["10.0.0.4", "10.0.0.5"],
        },
        "driver": {
            "retry_backoff_seconds": 0,
            "poll_interval_seconds": 0,
            "install_timeout_seconds": 0,
            "verify_window_seconds": 1,
            "verify_successes": 1,
        },
        "hosts": [
            {
                "hostname": name,
                "mgmt_ip": f"10.0.0.{11 + i}",
                "bmc_ip": f"10.0.1.{11 + i}",
                "vendor": vendors[i % 2],
            }
            for i, name in enumerate(hostnames)
        ],
    }


@pytest.fixture
def credentials() -> Credentials:
    return Credentials(root_password="R00t!pass", bmc_username="admin", bmc_password="bmc-secret")


def _deployer(tmp_path, credentials, builder=None, factory=None, probe=None, **overrides) -> EsxiDeployer:
    data = _config_dict(tmp_path, **overrides)
    (tmp_path / "installer.iso").write_bytes(b"installer")
    return EsxiDeployer(
        ConfigLoader.from_dict(data),
        credentials,
        builder=builder or _FakeBuilder(tmp_path / "out"),
        adapter_factory=factory or _FakeAdapterFactory(),
        probe=probe or (lambda host: True),
    )


def test_duplicate_hostnames_rejected_before_dispatch(tmp_path, credentials):
    builder = _FakeBuilder(tmp_path / "out")
    with pytest.raises(ValueError) as exc_info:
        _deployer(tmp_path, credentials, builder=builder, hostnames=("esxi01", "esxi02", "esxi01"))
    assert "esxi01" in str(exc_info.value)
    assert builder.built == []


def test_deploy_all_success(tmp_path, credentials):
    factory = _FakeAdapterFactory()
    deployer = _deployer(tmp_path, credentials, factory=factory)

    summary = deployer.deploy_all()

    assert summary.succeeded
    assert [o.hostname for o in summary.outcomes] == ["esxi01", "esxi02", "esxi03"]
    assert all(o.image_built and o.published and o.provisioned and o.verified for o in summary.outcomes)
    for name in ("esxi01", "esxi02", "esxi03"):
        assert (tmp_path / "stageiso" / f"{name}.iso").exists()
        assert factory.adapters[name].calls[0] == "eject_media"
        assert factory.adapters[name].calls[-1] == "eject_media"

    state = deployer.state_manager.load()
    assert state.phase == "completed"
    assert set(state.sessions) == {"esxi01", "esxi02", "esxi03"}


def test_image_uri_per_vendor(tmp_path, credentials):
    factory = _FakeAdapterFactory()
    _deployer(tmp_path, credentials, factory=factory).deploy_all()

    # redfish hosts mount from the CIFS share, iLO hosts over HTTP
    assert factory.inserted["esxi01"] == "//10.0.0.5/stageiso/esxi01.iso"
    assert factory.inserted["esxi02"] == "http://10.0.0.5/stageiso/esxi02.iso"


def test_build_failure_is_isolated(tmp_path, credentials):
    builder = _FakeBuilder(tmp_path / "out", failing={"esxi02"})
    factory = _FakeAdapterFactory()
    deployer = _deployer(tmp_path, credentials, builder=builder, factory=factory)

    summary = deployer.deploy_all()

    assert not summary.succeeded
    outcomes = {o.hostname: o for o in summary.outcomes}
    assert outcomes["esxi01"].succeeded
    assert outcomes["esxi03"].succeeded
    assert not outcomes["esxi02"].image_built
    assert outcomes["esxi02"].session is None
    assert "genisoimage" in outcomes["esxi02"].first_error
    assert "esxi02" not in factory.adapters


def test_provisioning_failure_is_isolated(tmp_path, credentials):
    factory = _FakeAdapterFactory()
    factory.rejecting.add("esxi03")
    deployer = _deployer(tmp_path, credentials, factory=factory)

    summary = deployer.deploy_all()

    outcomes = {o.hostname: o for o in summary.outcomes}
    assert outcomes["esxi01"].succeeded
    assert outcomes["esxi02"].succeeded
    failed = outcomes["esxi03"]
    assert failed.image_built and failed.published
    assert not failed.provisioned
    assert failed.session.state == SessionState.FAILED
    assert failed.session.attempts == 1
    assert "detached" in failed.first_error


def test_unverified_host_never_reported_succeeded(tmp_path, credentials):
    deployer = _deployer(
        tmp_path,
        credentials,
        probe=lambda host: host.hostname != "esxi02",
    )
    deployer.config.driver.install_timeout_seconds = 0
    deployer.config.driver.verify_window_seconds = 0

    summary = deployer.deploy_all()

    outcomes = {o.hostname: o for o in summary.outcomes}
    assert outcomes["esxi02"].provisioned
    assert not outcomes["esxi02"].verified
    assert not outcomes["esxi02"].succeeded
    assert outcomes["esxi01"].succeeded


def test_host_selection(tmp_path, credentials):
    builder = _FakeBuilder(tmp_path / "out")
    deployer = _deployer(tmp_path, credentials, builder=builder)

    summary = deployer.deploy_all(["esxi03"])

    assert builder.built == ["esxi03"]
    assert [o.hostname for o in summary.outcomes] == ["esxi03"]
    assert summary.succeeded

    with pytest.raises(ValueError):
        deployer.select_hosts(["esxi99"])


def test_provision_from_recorded_artifacts(tmp_path, credentials):
    deployer = _deployer(tmp_path, credentials)
    deployer.build_all()

    factory = _FakeAdapterFactory()
    resumed = _deployer(tmp_path, credentials, factory=factory)
    sessions = resumed.provision_all()

    assert set(sessions) == {"esxi01", "esxi02", "esxi03"}
    assert all(s.succeeded for s in sessions.values())


def test_unpublished_artifacts_are_skipped(tmp_path, credentials):
    factory = _FakeAdapterFactory()
    deployer = _deployer(tmp_path, credentials, factory=factory)
    artifacts = {
        "esxi01": BuildArtifact(hostname="esxi01", status=BuildStatus.FAILED, error="boom"),
    }

    sessions = deployer.provision_all(artifacts)

    assert sessions == {}
    assert factory.adapters == {}


def test_abort_before_provisioning(tmp_path, credentials):
    factory = _FakeAdapterFactory()
    deployer = _deployer(tmp_path, credentials, factory=factory)
    deployer.abort()

    summary = deployer.deploy_all()

    assert summary.aborted
    assert not summary.succeeded
    assert factory.adapters == {}
    assert deployer.state_manager.load().phase == "aborted"


def test_image_uri_for_unpublished_artifact_raises(tmp_path, credentials):
    deployer = _deployer(tmp_path, credentials)
    ilo_host = deployer.select_hosts(["esxi02"])[0]
    artifact = BuildArtifact(hostname="esxi02", status=BuildStatus.BUILT, image_path="/tmp/esxi02.iso")

    with pytest.raises(ValueError):
        deployer.image_uri_for(ilo_host, artifact)
