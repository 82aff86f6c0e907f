from typing import Any, List, Optional, Tuple

import hpilo
import pytest

from esxi_deployer.bmc import ilo_adapter
from esxi_deployer.bmc.ilo_adapter import IloAdapter
from esxi_deployer.configs import BootMode, PowerState, ResetType
from esxi_deployer.exceptions import TransportError, VendorRejected


class _FakeIlo:
    """Records calls the way hpilo.Ilo would receive them"""

    instances: List["_FakeIlo"] = []

    def __init__(self, hostname, login=None, password=None, timeout=60, **kwargs):
        self.hostname = hostname
        self.login = login
        self.password = password
        self.timeout = timeout
        self.calls: List[Tuple[str, Tuple[Any, ...]]] = []
        self.image_inserted = "NO"
        self.boot_mode = "UEFI"
        self.power = "ON"
        self.fail_with: Optional[Exception] = None
        _FakeIlo.instances.append(self)

    def _record(self, name, *args):
        self.calls.append((name, args))
        if self.fail_with is not None:
            raise self.fail_with

    def get_vm_status(self, device="CDROM"):
        self._record("get_vm_status", device)
        return {"image_inserted": self.image_inserted, "image_url": ""}

    def eject_virtual_media(self, device="cdrom"):
        self._record("eject_virtual_media", device)
        self.image_inserted = "NO"

    def insert_virtual_media(self, device, image_url):
        self._record("insert_virtual_media", device, image_url)
        self.image_inserted = "YES"

    def set_vm_status(self, device="cdrom", boot_option="boot_once", write_protect=True):
        self._record("set_vm_status", device, boot_option, write_protect)

    def get_current_boot_mode(self):
        self._record("get_current_boot_mode")
        return self.boot_mode

    def set_pending_boot_mode(self, boot_mode):
        self._record("set_pending_boot_mode", boot_mode)

    def set_one_time_boot(self, device):
        self._record("set_one_time_boot", device)

    def get_host_power_status(self):
        self._record("get_host_power_status")
        return self.power

    def set_host_power(self, host_power=True):
        self._record("set_host_power", host_power)

    def reset_server(self):
        self._record("reset_server")


@pytest.fixture
def fake_ilo(monkeypatch):
    _FakeIlo.instances = []
    monkeypatch.setattr(ilo_adapter.hpilo, "Ilo", _FakeIlo)
    adapter = IloAdapter("10.0.1.12", "admin", "bmc-secret", timeout_seconds=15)
    client = adapter.client
    return adapter, client


def _names(client: _FakeIlo) -> List[str]:
    return [name for name, _ in client.calls]


def test_client_created_with_credentials(fake_ilo):
    adapter, client = fake_ilo
    assert client.hostname == "10.0.1.12"
    assert client.login == "admin"
    assert client.password == "bmc-secret"
    assert client.timeout == 15
    assert len(_FakeIlo.instances) == 1


def test_eject_noop_when_nothing_inserted(fake_ilo):
    adapter, client = fake_ilo
    adapter.eject_media()
    assert _names(client) == ["get_vm_status"]


def test_eject_when_inserted(fake_ilo):
    adapter, client = fake_ilo
    client.image_inserted = "YES"
    adapter.eject_media()
    assert ("eject_virtual_media", ("cdrom",)) in client.calls


def test_insert_and_boot_once(fake_ilo):
    adapter, client = fake_ilo
    adapter.insert_media("http://10.0.0.5/stageiso/esxi02.iso", write_protected=True)
    assert adapter.is_media_attached()

    adapter.set_one_time_boot(BootMode.UEFI)

    assert ("insert_virtual_media", ("cdrom", "http://10.0.0.5/stageiso/esxi02.iso")) in client.calls
    assert ("set_vm_status", ("cdrom", "boot_once", True)) in client.calls
    assert ("set_one_time_boot", ("cdrom",)) in client.calls
    assert "set_pending_boot_mode" not in _names(client)


def test_boot_mode_switched_when_different(fake_ilo):
    adapter, client = fake_ilo
    client.boot_mode = "UEFI"
    adapter.set_one_time_boot(BootMode.LEGACY)
    assert ("set_pending_boot_mode", ("LEGACY",)) in client.calls


def test_cifs_uri_rejected(fake_ilo):
    adapter, client = fake_ilo
    with pytest.raises(VendorRejected):
        adapter.insert_media("//10.0.0.5/stageiso/esxi02.iso")
    assert client.calls == []


def test_reset_and_power(fake_ilo):
    adapter, client = fake_ilo
    assert adapter.get_power_state() == PowerState.ON
    client.power = "OFF"
    assert adapter.get_power_state() == PowerState.OFF

    adapter.reset(ResetType.POWER_ON)
    adapter.reset(ResetType.FORCE_RESTART)
    assert ("set_host_power", (True,)) in client.calls
    assert ("reset_server", ()) in client.calls


@pytest.mark.parametrize(
    "error,expected",
    [
        (hpilo.IloCommunicationError("timed out"), TransportError),
        (hpilo.IloLoginFailed("Login failed"), TransportError),
        (ConnectionResetError("reset by peer"), TransportError),
        (hpilo.IloFeatureNotSupported("virtual media"), VendorRejected),
        (hpilo.IloError("Virtual Media option is not available"), VendorRejected),
    ],
)
def test_error_mapping(fake_ilo, error, expected):
    adapter, client = fake_ilo
    client.fail_with = error
    with pytest.raises(expected):
        adapter.get_power_state()


def test_close_drops_client(fake_ilo):
    adapter, client = fake_ilo
    adapter.close()
    assert adapter._client is None
