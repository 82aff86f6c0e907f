"""
HPE iLO Vendor Adapter

Implements VendorAdapter over the iLO RIBCL interface using python-hpilo.
"""

from typing import Any, Callable, Optional

import hpilo
from loguru import logger

from ..configs import BmcVendor, BootMode, PowerState, ResetType
from ..exceptions import TransportError, VendorRejected
from .base import VendorAdapter

VIRTUAL_CD = "cdrom"

BOOT_MODE_MAP = {
    BootMode.UEFI: "UEFI",
    BootMode.LEGACY: "LEGACY",
}


class IloAdapter(VendorAdapter):
    """
    iLO adapter.

    The hpilo client is created lazily. iLO fetches the image itself, so
    image_uri must be an HTTP(S) URL.
    """

    def __init__(self, bmc_ip: str, username: str, password: str, timeout_seconds: int = 30):
        super().__init__(bmc_ip, username, password, timeout_seconds)
        self._client: Optional[hpilo.Ilo] = None
        self._write_protected = True

    @property
    def vendor(self) -> BmcVendor:
        return BmcVendor.ILO

    @property
    def client(self) -> hpilo.Ilo:
        if self._client is None:
            self._client = hpilo.Ilo(
                self.bmc_ip,
                login=self.username,
                password=self._password,
                timeout=self.timeout_seconds,
            )
        return self._client

    def _call(self, operation: str, func: Callable[..., Any], *args: Any) -> Any:
        try:
            return func(*args)
        # Subclasses of IloError, so they are matched first
        except (hpilo.IloCommunicationError, hpilo.IloLoginFailed) as e:
            raise TransportError(self.bmc_ip, operation, str(e))
        except hpilo.IloFeatureNotSupported as e:
            raise VendorRejected(self.bmc_ip, operation, f"not supported: {e}")
        except hpilo.IloError as e:
            raise VendorRejected(self.bmc_ip, operation, str(e))
        except OSError as e:
            raise TransportError(self.bmc_ip, operation, f"{type(e).__name__}: {e}")

    def eject_media(self) -> None:
        if not self.is_media_attached():
            logger.debug(f"{self.bmc_ip}: no media inserted, nothing to eject")
            return
        self._call("eject media", self.client.eject_virtual_media, VIRTUAL_CD)
        logger.info(f"{self.bmc_ip}: ejected virtual media")

    def insert_media(self, image_uri: str, write_protected: bool = True) -> None:
        if not image_uri.lower().startswith(("http://", "https://")):
            raise VendorRejected(self.bmc_ip, "insert media", f"iLO needs an HTTP image URL, got {image_uri}")
        self._write_protected = write_protected
        self._call("insert media", self.client.insert_virtual_media, VIRTUAL_CD, image_uri)
        # connect the image with the requested write protection
        self._call("insert media", self.client.set_vm_status, VIRTUAL_CD, "connect", write_protected)
        logger.info(f"{self.bmc_ip}: inserted {image_uri}")

    def set_one_time_boot(self, mode: BootMode) -> None:
        wanted = BOOT_MODE_MAP[mode]
        current = self._call("set one-time boot", self.client.get_current_boot_mode)
        if str(current).upper() != wanted:
            logger.info(f"{self.bmc_ip}: switching pending boot mode {current} -> {wanted}")
            self._call("set one-time boot", self.client.set_pending_boot_mode, wanted)
        self._call("set one-time boot", self.client.set_vm_status, VIRTUAL_CD, "boot_once", self._write_protected)
        self._call("set one-time boot", self.client.set_one_time_boot, VIRTUAL_CD)
        logger.info(f"{self.bmc_ip}: next boot from virtual CD ({wanted})")

    def reset(self, reset_type: ResetType) -> None:
        if reset_type == ResetType.POWER_ON:
            self._call("reset", self.client.set_host_power, True)
        else:
            self._call("reset", self.client.reset_server)
        logger.info(f"{self.bmc_ip}: reset {reset_type.value}")

    def get_power_state(self) -> PowerState:
        status = self._call("get power state", self.client.get_host_power_status)
        return {"ON": PowerState.ON, "OFF": PowerState.OFF}.get(str(status).upper(), PowerState.UNKNOWN)

    def is_media_attached(self) -> bool:
        status = self._call("check media", self.client.get_vm_status, VIRTUAL_CD.upper())
        return str(status.get("image_inserted", "NO")).upper() == "YES"

    def close(self) -> None:
        self._client = None
