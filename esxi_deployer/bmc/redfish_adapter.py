"""
Redfish Vendor Adapter

Implements VendorAdapter over the DMTF Redfish REST API using requests.
Works with Dell iDRAC and other controllers that expose the standard
VirtualMedia and ComputerSystem resources.
"""

from typing import Any, Dict, Optional

import requests
import urllib3
from loguru import logger

from ..configs import BmcVendor, BootMode, PowerState, ResetType
from ..exceptions import TransportError, VendorRejected
from .base import VendorAdapter

# BMCs ship self-signed certificates
urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)

SERVICE_ROOT = "/redfish/v1"

RESET_TYPE_MAP = {
    ResetType.FORCE_RESTART: "ForceRestart",
    ResetType.POWER_ON: "On",
}

BOOT_MODE_MAP = {
    BootMode.UEFI: "UEFI",
    BootMode.LEGACY: "Legacy",
}

POWER_STATE_MAP = {
    "On": PowerState.ON,
    "Off": PowerState.OFF,
    "PoweringOn": PowerState.ON,
    "PoweringOff": PowerState.OFF,
}

# Dell exposes the virtual media attach mode as a manager attribute
DELL_ATTACH_ATTRIBUTE = "VirtualMedia.1.Attached"


def _error_message(response: requests.Response) -> str:
    """Pull the human readable part out of a Redfish error body"""
    try:
        body = response.json()
    except ValueError:
        return response.text[:200] or response.reason
    error = body.get("error", {}) if isinstance(body, dict) else {}
    extended = error.get("@Message.ExtendedInfo") or []
    if extended and isinstance(extended[0], dict) and extended[0].get("Message"):
        return extended[0]["Message"]
    return error.get("message") or response.reason


def is_cifs_uri(image_uri: str) -> bool:
    return image_uri.startswith("//") or image_uri.lower().startswith("smb://")


class RedfishAdapter(VendorAdapter):
    """
    Redfish adapter.

    The manager, system and CD/DVD virtual media resources are discovered
    on first use and cached for the lifetime of the adapter.
    """

    def __init__(
        self,
        bmc_ip: str,
        username: str,
        password: str,
        timeout_seconds: int = 30,
        share_username: Optional[str] = None,
        share_password: Optional[str] = None,
        session: Optional[requests.Session] = None,
    ):
        super().__init__(bmc_ip, username, password, timeout_seconds)
        self.base_url = f"https://{bmc_ip}"
        self._share_username = share_username
        self._share_password = share_password
        self._session = session
        self._manager_path: Optional[str] = None
        self._system_path: Optional[str] = None
        self._media_path: Optional[str] = None

    @property
    def vendor(self) -> BmcVendor:
        return BmcVendor.REDFISH

    @property
    def session(self) -> requests.Session:
        if self._session is None:
            self._session = requests.Session()
            self._session.auth = (self.username, self._password)
            self._session.verify = False
            self._session.headers.update({"Content-Type": "application/json", "Accept": "application/json"})
        return self._session

    # ==================== HTTP ====================

    def _request(self, method: str, path: str, operation: str, payload: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        url = path if path.startswith("http") else f"{self.base_url}{path}"
        try:
            response = self.session.request(method, url, json=payload, timeout=self.timeout_seconds)
        except (requests.ConnectionError, requests.Timeout) as e:
            raise TransportError(self.bmc_ip, operation, f"{type(e).__name__}: {e}")
        except requests.RequestException as e:
            raise TransportError(self.bmc_ip, operation, str(e))

        status = response.status_code
        if status in (401, 403):
            raise TransportError(self.bmc_ip, operation, "authentication failed", status_code=status)
        if status >= 500 and status != 501:
            raise TransportError(self.bmc_ip, operation, _error_message(response), status_code=status)
        if status >= 400:
            raise VendorRejected(self.bmc_ip, operation, _error_message(response), status_code=status)

        if status == 204 or not response.content:
            return {}
        try:
            return response.json()
        except ValueError:
            return {}

    def _get(self, path: str, operation: str) -> Dict[str, Any]:
        return self._request("GET", path, operation)

    def _first_member(self, collection_path: str, operation: str) -> str:
        members = self._get(collection_path, operation).get("Members", [])
        if not members:
            raise VendorRejected(self.bmc_ip, operation, f"{collection_path} has no members")
        return members[0]["@odata.id"]

    # ==================== Discovery ====================

    @property
    def manager_path(self) -> str:
        if self._manager_path is None:
            self._manager_path = self._first_member(f"{SERVICE_ROOT}/Managers", "discover manager")
        return self._manager_path

    @property
    def system_path(self) -> str:
        if self._system_path is None:
            self._system_path = self._first_member(f"{SERVICE_ROOT}/Systems", "discover system")
        return self._system_path

    def _find_cd_media(self, collection_path: str) -> Optional[str]:
        for member in self._get(collection_path, "discover virtual media").get("Members", []):
            path = member["@odata.id"]
            media = self._get(path, "discover virtual media")
            types = media.get("MediaTypes", [])
            if "CD" in types or "DVD" in types or path.rstrip("/").upper().endswith("CD"):
                return path
        return None

    @property
    def media_path(self) -> str:
        if self._media_path is None:
            manager = self._get(self.manager_path, "discover virtual media")
            path = None
            if "VirtualMedia" in manager:
                path = self._find_cd_media(manager["VirtualMedia"]["@odata.id"])
            if path is None:
                system = self._get(self.system_path, "discover virtual media")
                if "VirtualMedia" in system:
                    path = self._find_cd_media(system["VirtualMedia"]["@odata.id"])
            if path is None:
                raise VendorRejected(self.bmc_ip, "discover virtual media", "no CD/DVD virtual media device")
            logger.debug(f"{self.bmc_ip}: virtual CD at {path}")
            self._media_path = path
        return self._media_path

    def _media_action_target(self, media: Dict[str, Any], action: str) -> str:
        actions = media.get("Actions", {})
        target = actions.get(f"#VirtualMedia.{action}", {}).get("target")
        return target or f"{self.media_path}/Actions/VirtualMedia.{action}"

    def _check_attach_mode(self) -> None:
        """Dell refuses to insert media while virtual media is set to Detached"""
        manager = self._get(self.manager_path, "check virtual media attach mode")
        if "Dell" not in manager.get("Oem", {}):
            return
        attributes = self._get(f"{self.manager_path}/Attributes", "check virtual media attach mode")
        if attributes.get("Attributes", {}).get(DELL_ATTACH_ATTRIBUTE) == "Detached":
            raise VendorRejected(
                self.bmc_ip,
                "insert media",
                f"{DELL_ATTACH_ATTRIBUTE} is Detached, set it to Attached or AutoAttach",
            )

    # ==================== VendorAdapter ====================

    def eject_media(self) -> None:
        media = self._get(self.media_path, "eject media")
        if not media.get("Inserted"):
            logger.debug(f"{self.bmc_ip}: no media inserted, nothing to eject")
            return
        target = self._media_action_target(media, "EjectMedia")
        self._request("POST", target, "eject media", {})
        logger.info(f"{self.bmc_ip}: ejected virtual media")

    def insert_media(self, image_uri: str, write_protected: bool = True) -> None:
        self._check_attach_mode()
        media = self._get(self.media_path, "insert media")
        target = self._media_action_target(media, "InsertMedia")
        payload: Dict[str, Any] = {
            "Image": image_uri,
            "Inserted": True,
            "WriteProtected": write_protected,
        }
        if is_cifs_uri(image_uri):
            payload["TransferProtocolType"] = "CIFS"
            if self._share_username:
                payload["UserName"] = self._share_username
                payload["Password"] = self._share_password or ""
        self._request("POST", target, "insert media", payload)
        logger.info(f"{self.bmc_ip}: inserted {image_uri}")

    def set_one_time_boot(self, mode: BootMode) -> None:
        payload = {
            "Boot": {
                "BootSourceOverrideTarget": "Cd",
                "BootSourceOverrideEnabled": "Once",
                "BootSourceOverrideMode": BOOT_MODE_MAP[mode],
            }
        }
        self._request("PATCH", self.system_path, "set one-time boot", payload)
        logger.info(f"{self.bmc_ip}: next boot from virtual CD ({BOOT_MODE_MAP[mode]})")

    def reset(self, reset_type: ResetType) -> None:
        system = self._get(self.system_path, "reset")
        target = system.get("Actions", {}).get("#ComputerSystem.Reset", {}).get("target") \
            or f"{self.system_path}/Actions/ComputerSystem.Reset"
        self._request("POST", target, "reset", {"ResetType": RESET_TYPE_MAP[reset_type]})
        logger.info(f"{self.bmc_ip}: reset {RESET_TYPE_MAP[reset_type]}")

    def get_power_state(self) -> PowerState:
        state = self._get(self.system_path, "get power state").get("PowerState")
        return POWER_STATE_MAP.get(state, PowerState.UNKNOWN)

    def is_media_attached(self) -> bool:
        media = self._get(self.media_path, "check media")
        return bool(media.get("Inserted")) and bool(media.get("Image"))

    def close(self) -> None:
        if self._session is not None:
            self._session.close()
            self._session = None
