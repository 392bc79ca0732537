"""
In-memory BMC used for development and tests.

Addresses look like ``fixture://<machine-name>``. Machines live in a
FixtureFleet so that every adapter instance created for the same address
sees the same simulated hardware.
"""

import copy
import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

from .base_adapter import BMCAdapter, BMCPermanentError, BMCTransientError
from ..models import Credentials, Image

logger = logging.getLogger(__name__)

DEFAULT_INVENTORY: Dict[str, Any] = {
    "cpu": {"arch": "x86_64", "count": 2, "flags": ["avx", "avx2", "vmx"], "model": "Virtual CPU"},
    "firmware": {"bios": {"date": "04/01/2014", "vendor": "SeaBIOS", "version": "1.15.0-1"}},
    "hostname": "localhost.localdomain",
    "nics": [
        {"ip": "192.168.222.122", "mac": "00:60:2f:31:81:01", "model": "0x1af4 0x0001", "name": "enp1s0", "pxe": True}
    ],
    "ramMebibytes": 4096,
    "storage": [
        {
            "alternateNames": ["/dev/vda"],
            "name": "/dev/vda",
            "rotational": True,
            "sizeBytes": 21474836480,
            "type": "HDD",
            "vendor": "0x1af4",
        }
    ],
    "systemVendor": {"manufacturer": "QEMU", "productName": "Standard PC (Q35 + ICH9, 2009)"},
}


@dataclass
class FixtureMachine:
    """
    Simulated machine behind a BMC.

    Attributes:
        name: Machine name used in the fixture:// address
        username: Accepted username, None accepts anything
        password: Accepted password, None accepts anything
        reachable: When False every call fails as unreachable
        powered_on: Current power state
        inventory: Document returned by inspect
        latency: Seconds each command takes
        transient_failures: Per-operation count of transient failures still to inject
        reject_power: Reject power commands permanently
        calls: Operations received, in order
        max_concurrent: Highest number of commands seen in flight at once
    """
    name: str
    username: Optional[str] = None
    password: Optional[str] = None
    reachable: bool = True
    powered_on: bool = False
    inventory: Dict[str, Any] = field(default_factory=lambda: copy.deepcopy(DEFAULT_INVENTORY))
    latency: float = 0.0
    transient_failures: Dict[str, int] = field(default_factory=dict)
    reject_power: bool = False
    provisioned_image: Optional[str] = None
    calls: List[str] = field(default_factory=list)
    power_log: List[bool] = field(default_factory=list)
    max_concurrent: int = 0
    _active: int = 0
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def enter(self, operation: str) -> None:
        with self._lock:
            self.calls.append(operation)
            self._active += 1
            self.max_concurrent = max(self.max_concurrent, self._active)

    def leave(self) -> None:
        with self._lock:
            self._active -= 1

    def consume_failure(self, operation: str) -> bool:
        with self._lock:
            remaining = self.transient_failures.get(operation, 0)
            if remaining > 0:
                self.transient_failures[operation] = remaining - 1
                return True
            return False

    def set_power(self, on: bool) -> None:
        self.powered_on = on
        self.power_log.append(on)


class FixtureFleet:
    """Registry of simulated machines"""

    def __init__(self):
        self._machines: Dict[str, FixtureMachine] = {}
        self._lock = threading.Lock()

    def add(self, name: str, **kwargs) -> FixtureMachine:
        machine = FixtureMachine(name=name, **kwargs)
        with self._lock:
            self._machines[name] = machine
        return machine

    def get(self, name: str) -> Optional[FixtureMachine]:
        with self._lock:
            return self._machines.get(name)


class FixtureAdapter(BMCAdapter):
    """Adapter talking to a FixtureMachine"""

    def __init__(self, address: str, credentials: Credentials, verify_ssl: bool = False, timeout: float = 30,
                 fleet: Optional[FixtureFleet] = None):
        super().__init__(address, credentials, verify_ssl, timeout)
        self.fleet = fleet or FixtureFleet()
        self.machine_name = urlparse(address).netloc

    @property
    def protocol_name(self) -> str:
        return "fixture"

    def connect(self, cancel: threading.Event) -> None:
        self._run("connect", cancel)

    def inspect(self, cancel: threading.Event) -> Dict[str, Any]:
        machine = self._run("inspect", cancel)
        return copy.deepcopy(machine.inventory)

    def set_power(self, on: bool, force: bool, cancel: threading.Event) -> None:
        operation = "power_on" if on else ("power_off_hard" if force else "power_off_soft")
        machine = self._run(operation, cancel)
        if machine.reject_power:
            raise BMCPermanentError(f"{self.machine_name}: power command rejected")
        machine.set_power(on)

    def provision(self, image: Image, boot_mac_address: str, cancel: threading.Event) -> None:
        machine = self._run("provision", cancel)
        machine.provisioned_image = image.url
        machine.set_power(True)

    def deprovision(self, cancel: threading.Event) -> None:
        machine = self._run("deprovision", cancel)
        machine.provisioned_image = None
        machine.set_power(False)

    def _run(self, operation: str, cancel: threading.Event) -> FixtureMachine:
        """Simulate one command: latency, reachability, credentials, injected failures"""
        self.check_cancelled(cancel)
        machine = self.fleet.get(self.machine_name)
        if machine is None:
            raise BMCTransientError(f"No BMC answering at {self.address}")

        machine.enter(operation)
        try:
            if machine.latency and cancel.wait(machine.latency):
                self.check_cancelled(cancel)
            if not machine.reachable:
                raise BMCTransientError(f"{self.machine_name}: BMC unreachable")
            if machine.username is not None and machine.username != self.credentials.username:
                raise BMCPermanentError(f"{self.machine_name}: authentication failed")
            if machine.password is not None and machine.password != self.credentials.password:
                raise BMCPermanentError(f"{self.machine_name}: authentication failed")
            if machine.consume_failure(operation):
                raise BMCTransientError(f"{self.machine_name}: {operation} timed out")
            logger.debug(f"{self.machine_name}: {operation}")
            return machine
        finally:
            machine.leave()
