"""
Vendor Adapter Abstract Base Class

Defines the operations the provisioning driver needs from a BMC.
Each vendor protocol (Redfish, HPE iLO) implements this interface so the
driver never sees vendor-specific payloads or error shapes.
"""

from abc import ABC, abstractmethod

from ..configs import BmcVendor, BootMode, PowerState, ResetType


class VendorAdapter(ABC):
    """
    Abstract base class for BMC adapters.

    Errors are reported as TransportError (retryable) or VendorRejected
    (not retryable). An adapter is used by one session at a time.
    """

    def __init__(self, bmc_ip: str, username: str, password: str, timeout_seconds: int = 30):
        self.bmc_ip = bmc_ip
        self.username = username
        self._password = password
        self.timeout_seconds = timeout_seconds

    def __repr__(self) -> str:
        return f"{type(self).__name__}(bmc_ip={self.bmc_ip!r}, username={self.username!r})"

    @property
    @abstractmethod
    def vendor(self) -> BmcVendor:
        """Return the vendor protocol"""
        pass

    @abstractmethod
    def eject_media(self) -> None:
        """Eject the virtual CD. Succeeds when nothing is attached."""
        pass

    @abstractmethod
    def insert_media(self, image_uri: str, write_protected: bool = True) -> None:
        """Attach the image at image_uri as the virtual CD"""
        pass

    @abstractmethod
    def set_one_time_boot(self, mode: BootMode) -> None:
        """Boot from the virtual CD on the next boot only"""
        pass

    @abstractmethod
    def reset(self, reset_type: ResetType) -> None:
        """Force a restart or power the host on"""
        pass

    @abstractmethod
    def get_power_state(self) -> PowerState:
        pass

    @abstractmethod
    def is_media_attached(self) -> bool:
        """Whether the BMC reports an image inserted in the virtual CD"""
        pass

    def close(self) -> None:
        """Release the connection to the BMC"""
        pass

    def __enter__(self) -> "VendorAdapter":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
