import json
import threading
from pathlib import Path

import pytest

from esxi_deployer.configs.loader import StateManager
from esxi_deployer.configs.types import (
    BuildArtifact,
    BuildStatus,
    ProvisioningSession,
    RunState,
    SessionState,
)


def _mk_artifact(hostname: str = "esxi01") -> BuildArtifact:
    return BuildArtifact(
        hostname=hostname,
        status=BuildStatus.BUILT,
        image_path=f"/home/deploy/baremetal/{hostname}.iso",
        checksum="ab" * 32,
        kickstart_sha256="cd" * 32,
        built_at="2026-01-01T00:00:00",
        image_uri=f"http://10.0.0.5/stageiso/{hostname}.iso",
    )


def _mk_session(hostname: str = "esxi01", state: SessionState = SessionState.SUCCEEDED) -> ProvisioningSession:
    session = ProvisioningSession(hostname=hostname, attempts=2)
    for s in (SessionState.IDLE, SessionState.MEDIA_EJECTED, SessionState.POWERED_ON, state):
        session.transition(s)
    return session


def test_initialize_creates_file_and_load_roundtrips(tmp_path: Path):
    state_path = tmp_path / "state" / "run-1.json"
    sm = StateManager(str(state_path))
    st = sm.initialize("run-1")

    assert state_path.exists()
    assert st.run_id == "run-1"
    assert st.phase == "initialized"

    sm2 = StateManager(str(state_path))
    loaded = sm2.load()
    assert loaded is not None
    assert loaded.run_id == "run-1"


def test_load_missing_file_returns_none(tmp_path: Path):
    assert StateManager(str(tmp_path / "absent.json")).load() is None


def test_artifacts_sessions_and_errors_persist(tmp_path: Path):
    state_path = tmp_path / "state.json"
    sm = StateManager(str(state_path))
    sm.initialize("run-2")

    sm.record_artifact(_mk_artifact())
    sm.archive_session(_mk_session())
    sm.add_error("esxi02: boom")
    sm.update_phase("completed")

    loaded = StateManager(str(state_path)).load()
    assert loaded is not None
    assert loaded.phase == "completed"
    assert loaded.artifacts["esxi01"].is_published
    assert loaded.sessions["esxi01"].succeeded
    assert loaded.sessions["esxi01"].attempts == 2
    assert any("boom" in e for e in loaded.errors)


def test_state_file_never_contains_credentials(tmp_path: Path):
    state_path = tmp_path / "state.json"
    sm = StateManager(str(state_path))
    sm.initialize("run-3")
    sm.record_artifact(_mk_artifact())

    data = json.loads(state_path.read_text())
    text = json.dumps(data)
    assert "password" not in text.lower()


def test_concurrent_records_are_all_kept(tmp_path: Path):
    state_path = tmp_path / "state.json"
    sm = StateManager(str(state_path))
    sm.initialize("run-4")

    threads = [
        threading.Thread(target=sm.record_artifact, args=(_mk_artifact(f"esxi{i:02d}"),))
        for i in range(20)
    ]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    loaded = StateManager(str(state_path)).load()
    assert loaded is not None
    assert len(loaded.artifacts) == 20


def test_invalid_json_state_file_raises_value_error(tmp_path: Path):
    state_path = tmp_path / "state.json"
    state_path.write_text("{not-json}")

    sm = StateManager(str(state_path))
    with pytest.raises(ValueError):
        sm.load()


def test_run_state_to_from_dict_roundtrip():
    rs = RunState(
        run_id="run-rt",
        phase="provisioning",
        artifacts={"esxi01": _mk_artifact()},
        sessions={"esxi01": _mk_session(state=SessionState.FAILED)},
        errors=["e"],
        created_at="t1",
        updated_at="t2",
    )

    rs2 = RunState.from_dict(json.loads(json.dumps(rs.to_dict())))

    assert rs2.run_id == rs.run_id
    assert rs2.phase == rs.phase
    assert rs2.artifacts["esxi01"].checksum == rs.artifacts["esxi01"].checksum
    session = rs2.sessions["esxi01"]
    assert session.state == SessionState.FAILED
    assert session.reached_boot
    assert session.history == rs.sessions["esxi01"].history


def test_outcomes_flags():
    rs = RunState(
        run_id="run-o",
        artifacts={
            "esxi01": _mk_artifact("esxi01"),
            "esxi02": BuildArtifact(hostname="esxi02", status=BuildStatus.FAILED, error="source image not found"),
        },
        sessions={"esxi01": _mk_session("esxi01", SessionState.SUCCEEDED)},
    )

    outcomes = {o.hostname: o for o in rs.outcomes()}

    ok = outcomes["esxi01"]
    assert ok.image_built and ok.published and ok.provisioned and ok.verified
    assert ok.succeeded
    assert ok.first_error is None

    bad = outcomes["esxi02"]
    assert not bad.image_built
    assert not bad.succeeded
    assert bad.first_error == "source image not found"
