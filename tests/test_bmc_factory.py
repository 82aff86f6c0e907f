import pytest

from esxi_deployer.bmc import BmcAdapterFactory, IloAdapter, RedfishAdapter
from esxi_deployer.configs import BmcVendor, Credentials, HostSpec, NetworkProfile


def _host(vendor) -> HostSpec:
    return HostSpec(
        hostname="esxi01",
        mgmt_ip="10.0.0.11",
        bmc_ip="10.0.1.11",
        vendor=vendor,
        network=NetworkProfile(
            netmask="255.255.255.0",
            gateway="10.0.0.1",
            dns_servers=("10.0.0.2", "10.0.0.3"),
            ntp_servers=("10.0.0.4", "10.0.0.5"),
        ),
    )


@pytest.fixture
def credentials() -> Credentials:
    return Credentials(
        root_password="R00t!pass",
        bmc_username="admin",
        bmc_password="bmc-secret",
        share_username="deploy",
        share_password="share-secret",
    )


def test_redfish_host_gets_redfish_adapter(credentials):
    adapter = BmcAdapterFactory(timeout_seconds=10).create(_host(BmcVendor.REDFISH), credentials)

    assert isinstance(adapter, RedfishAdapter)
    assert adapter.vendor == BmcVendor.REDFISH
    assert adapter.bmc_ip == "10.0.1.11"
    assert adapter.timeout_seconds == 10


def test_ilo_host_gets_ilo_adapter(credentials):
    adapter = BmcAdapterFactory().create(_host(BmcVendor.ILO), credentials)

    assert isinstance(adapter, IloAdapter)
    assert adapter.vendor == BmcVendor.ILO


def test_each_session_gets_its_own_adapter(credentials):
    factory = BmcAdapterFactory()
    host = _host(BmcVendor.REDFISH)
    assert factory.create(host, credentials) is not factory.create(host, credentials)
