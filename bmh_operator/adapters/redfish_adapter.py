import logging
import threading
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

import requests
from urllib3 import disable_warnings
from urllib3.exceptions import InsecureRequestWarning

from .base_adapter import BMCAdapter, BMCError, BMCPermanentError, BMCTransientError
from ..models import Credentials, Image

disable_warnings(InsecureRequestWarning)
logger = logging.getLogger(__name__)


class RedfishAdapter(BMCAdapter):
    """
    DMTF Redfish BMC access (session auth, reset actions, virtual media).

    Cancellation is checked before and after every HTTP request. A request
    already on the wire is not interrupted, so a cancelled command stops
    within one request timeout (BMC_TIMEOUT) at worst; connecting gives up
    after CONNECT_TIMEOUT.
    """

    CONNECT_TIMEOUT = 5.0

    SCHEMES = {
        "redfish": "https",
        "redfish+https": "https",
        "redfish+http": "http",
    }

    def __init__(self, address: str, credentials: Credentials, verify_ssl: bool = False, timeout: float = 30):
        super().__init__(address, credentials, verify_ssl, timeout)
        parsed = urlparse(address)
        scheme = self.SCHEMES.get(parsed.scheme)
        if not scheme or not parsed.netloc:
            raise BMCPermanentError(f"Unsupported Redfish address: {address}")
        self.base_url = f"{scheme}://{parsed.netloc}"
        self._system_path: Optional[str] = parsed.path.rstrip("/") or None
        self._session: Optional[requests.Session] = None
        self._auth_token: Optional[str] = None
        self._session_uri: Optional[str] = None

    @property
    def protocol_name(self) -> str:
        return "redfish"

    def connect(self, cancel: threading.Event) -> None:
        """Open a Redfish session and locate the computer system"""
        if self._session and self._auth_token:
            return

        self.check_cancelled(cancel)
        logger.info(f"Connecting to Redfish BMC at {self.base_url}...")
        self._session = requests.Session()
        self._session.verify = self.verify_ssl

        auth_data = {
            "UserName": self.credentials.username,
            "Password": self.credentials.password,
        }
        try:
            response = self._request("POST", "/redfish/v1/SessionService/Sessions", cancel, json=auth_data)
        except BMCError:
            self._reset_session()
            raise

        self._auth_token = response.headers.get("X-Auth-Token")
        if not self._auth_token:
            self._reset_session()
            raise BMCPermanentError("Redfish BMC did not return X-Auth-Token")
        self._session_uri = response.headers.get("Location")
        self._session.headers.update({"X-Auth-Token": self._auth_token})

        if not self._system_path:
            self._system_path = self._discover_system(cancel)
        logger.info(f"Connected to Redfish BMC {self.base_url} (system {self._system_path})")

    def inspect(self, cancel: threading.Event) -> Dict[str, Any]:
        """Build a hardwareDetails document from the system resources"""
        self.connect(cancel)
        system = self._get(self._system_path, cancel)

        processors = self._members(system.get("Processors"), cancel)
        cpu = {
            "arch": self._normalize_arch(processors[0] if processors else {}),
            "model": (system.get("ProcessorSummary") or {}).get("Model", ""),
            "count": (system.get("ProcessorSummary") or {}).get("Count", len(processors)),
            "clockMegahertz": processors[0].get("MaxSpeedMHz", 0) if processors else 0,
            "flags": [],
        }

        total_gib = (system.get("MemorySummary") or {}).get("TotalSystemMemoryGiB") or 0
        nics = [self._nic(iface) for iface in self._members(system.get("EthernetInterfaces"), cancel)]
        storage = []
        for controller in self._members(system.get("Storage"), cancel):
            for drive_ref in controller.get("Drives", []):
                storage.append(self._drive(self._get(drive_ref["@odata.id"], cancel)))

        return {
            "cpu": cpu,
            "firmware": {"bios": {"version": system.get("BiosVersion", ""), "vendor": "", "date": ""}},
            "hostname": system.get("HostName") or "",
            "nics": nics,
            "ramMebibytes": int(total_gib * 1024),
            "storage": storage,
            "systemVendor": {
                "manufacturer": system.get("Manufacturer", ""),
                "productName": system.get("Model", ""),
                "serialNumber": system.get("SerialNumber", ""),
            },
        }

    def set_power(self, on: bool, force: bool, cancel: threading.Event) -> None:
        self.connect(cancel)
        if on:
            reset_type = "On"
        else:
            reset_type = "ForceOff" if force else "GracefulShutdown"
        logger.info(f"Redfish reset {reset_type} on {self.base_url}{self._system_path}")
        self._reset(reset_type, cancel)

    def provision(self, image: Image, boot_mac_address: str, cancel: threading.Event) -> None:
        """Insert the image as virtual CD, boot from it once and restart"""
        self.connect(cancel)
        media = self._find_virtual_cd(cancel)
        insert = media.get("Actions", {}).get("#VirtualMedia.InsertMedia", {}).get("target")
        if not insert:
            raise BMCPermanentError("Virtual media does not support InsertMedia")
        self._request("POST", insert, cancel, json={"Image": image.url, "Inserted": True})

        boot = {"Boot": {"BootSourceOverrideTarget": "Cd", "BootSourceOverrideEnabled": "Once"}}
        self._request("PATCH", self._system_path, cancel, json=boot)

        system = self._get(self._system_path, cancel)
        self._reset("On" if system.get("PowerState") == "Off" else "ForceRestart", cancel)
        logger.info(f"Provisioning {image.url} via virtual media (boot MAC {boot_mac_address or 'any'})")

    def deprovision(self, cancel: threading.Event) -> None:
        self.connect(cancel)
        media = self._find_virtual_cd(cancel)
        eject = media.get("Actions", {}).get("#VirtualMedia.EjectMedia", {}).get("target")
        if eject and media.get("Inserted"):
            self._request("POST", eject, cancel, json={})
        self._reset("ForceOff", cancel)

    def disconnect(self) -> None:
        """Log out of the Redfish session"""
        if self._session and self._auth_token:
            try:
                if self._session_uri:
                    self._session.delete(self._url(self._session_uri), timeout=self.timeout)
                logger.info(f"Disconnected from Redfish BMC {self.base_url}")
            except requests.RequestException as e:
                logger.warning(f"Error during Redfish logout: {e}")
            finally:
                self._reset_session()

    # ------------------------------------------------------------------

    def _reset_session(self) -> None:
        if self._session:
            self._session.close()
        self._session = None
        self._auth_token = None
        self._session_uri = None

    def _url(self, path: str) -> str:
        if path.startswith("http://") or path.startswith("https://"):
            return path
        return f"{self.base_url}{path}"

    def _request(self, method: str, path: str, cancel: threading.Event, **kwargs) -> requests.Response:
        """Send one request, translating failures into the adapter error classes"""
        self.check_cancelled(cancel)
        timeout = (min(self.CONNECT_TIMEOUT, self.timeout), self.timeout)
        try:
            response = self._session.request(method, self._url(path), timeout=timeout, **kwargs)
        except (requests.ConnectionError, requests.Timeout) as e:
            raise BMCTransientError(f"BMC {self.base_url} unreachable: {e}") from e
        except requests.RequestException as e:
            raise BMCPermanentError(f"BMC request failed: {e}") from e

        # cancellation may arrive while the BMC is answering
        self.check_cancelled(cancel)

        if response.status_code in (401, 403):
            self._reset_session()
            raise BMCPermanentError(f"BMC rejected credentials ({response.status_code})")
        if response.status_code >= 500:
            raise BMCTransientError(f"BMC error {response.status_code} for {method} {path}")
        if response.status_code >= 400:
            raise BMCPermanentError(f"BMC refused {method} {path}: {response.status_code} {response.text[:200]}")
        return response

    def _get(self, path: str, cancel: threading.Event) -> dict:
        return self._request("GET", path, cancel).json()

    def _members(self, collection_ref: Optional[dict], cancel: threading.Event) -> List[dict]:
        if not collection_ref or "@odata.id" not in collection_ref:
            return []
        collection = self._get(collection_ref["@odata.id"], cancel)
        return [self._get(member["@odata.id"], cancel) for member in collection.get("Members", [])]

    def _discover_system(self, cancel: threading.Event) -> str:
        systems = self._get("/redfish/v1/Systems", cancel).get("Members", [])
        if not systems:
            raise BMCPermanentError("Redfish BMC exposes no computer system")
        return systems[0]["@odata.id"]

    def _reset(self, reset_type: str, cancel: threading.Event) -> None:
        target = f"{self._system_path}/Actions/ComputerSystem.Reset"
        self._request("POST", target, cancel, json={"ResetType": reset_type})

    def _find_virtual_cd(self, cancel: threading.Event) -> dict:
        system = self._get(self._system_path, cancel)
        managers = (system.get("Links") or {}).get("ManagedBy") or []
        for manager_ref in managers:
            manager = self._get(manager_ref["@odata.id"], cancel)
            for media in self._members(manager.get("VirtualMedia"), cancel):
                if {"CD", "DVD"} & set(media.get("MediaTypes", [])):
                    return media
        raise BMCPermanentError("No virtual CD/DVD device found on the BMC")

    @staticmethod
    def _normalize_arch(processor: dict) -> str:
        instruction_set = processor.get("InstructionSet", "")
        return {"x86-64": "x86_64", "ARM-A64": "aarch64", "PowerISA": "ppc64le"}.get(instruction_set, instruction_set)

    @staticmethod
    def _nic(iface: dict) -> dict:
        addresses = iface.get("IPv4Addresses") or []
        return {
            "name": iface.get("Id", ""),
            "model": "",
            "mac": (iface.get("MACAddress") or "").lower(),
            "ip": addresses[0].get("Address", "") if addresses else "",
            "speedGbps": int((iface.get("SpeedMbps") or 0) / 1000),
            "pxe": False,
        }

    @staticmethod
    def _drive(drive: dict) -> dict:
        media_type = drive.get("MediaType", "")
        return {
            "name": drive.get("Name", ""),
            "rotational": media_type == "HDD",
            "sizeBytes": drive.get("CapacityBytes") or 0,
            "type": media_type,
            "vendor": drive.get("Manufacturer", ""),
            "model": drive.get("Model", ""),
            "serialNumber": drive.get("SerialNumber", ""),
        }
