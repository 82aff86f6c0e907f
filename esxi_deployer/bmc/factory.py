"""
BMC Adapter Factory

Creates the vendor adapter for a host.
"""

from typing import Callable, Dict

from ..configs import BmcVendor, Credentials, HostSpec
from .base import VendorAdapter
from .ilo_adapter import IloAdapter
from .redfish_adapter import RedfishAdapter


def _redfish(host: HostSpec, credentials: Credentials, timeout_seconds: int) -> VendorAdapter:
    return RedfishAdapter(
        host.bmc_ip,
        credentials.bmc_username,
        credentials.bmc_password,
        timeout_seconds=timeout_seconds,
        share_username=credentials.share_username,
        share_password=credentials.share_password,
    )


def _ilo(host: HostSpec, credentials: Credentials, timeout_seconds: int) -> VendorAdapter:
    return IloAdapter(
        host.bmc_ip,
        credentials.bmc_username,
        credentials.bmc_password,
        timeout_seconds=timeout_seconds,
    )


AdapterBuilder = Callable[[HostSpec, Credentials, int], VendorAdapter]


class BmcAdapterFactory:
    """
    Factory for BMC adapters.

    Adapters are not cached: every provisioning session gets its own
    connection and closes it when done.
    """

    def __init__(self, timeout_seconds: int = 30):
        self.timeout_seconds = timeout_seconds
        self._builders: Dict[BmcVendor, AdapterBuilder] = {
            BmcVendor.REDFISH: _redfish,
            BmcVendor.ILO: _ilo,
        }

    def create(self, host: HostSpec, credentials: Credentials) -> VendorAdapter:
        """
        Create the adapter for host.vendor.

        Raises:
            ValueError: no adapter for the vendor
        """
        builder = self._builders.get(host.vendor)
        if builder is None:
            raise ValueError(f"Unsupported BMC vendor: {host.vendor}")
        return builder(host, credentials, self.timeout_seconds)
