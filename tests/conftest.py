import json
import random
from datetime import datetime, timedelta, timezone

import pytest

from bmh_operator.adapters import FixtureAdapter, FixtureFleet
from bmh_operator.models import BMCDetails, Host, HostSpec
from bmh_operator.repositories import AdapterFactory, InMemoryHostRepository, InMemorySecretStore
from bmh_operator.services import BackoffPolicy, HostController

NAMESPACE = "metal3"
SECRET = "bmc-credentials"
USER = "admin"
PASSWORD = "password"

HARDWARE_DETAILS = {
    "cpu": {
        "arch": "x86_64",
        "count": 2,
        "flags": ["3dnowprefetch", "abm", "adx", "aes", "avx", "avx2", "vmx", "x2apic"],
        "model": "12th Gen Intel(R) Core(TM) i9-12900H",
    },
    "firmware": {"bios": {"date": "04/01/2014", "vendor": "SeaBIOS", "version": "1.15.0-1"}},
    "hostname": "localhost.localdomain",
    "nics": [
        {"ip": "192.168.222.122", "mac": "00:60:2f:31:81:01", "model": "0x1af4 0x0001", "name": "enp1s0",
         "pxe": True},
        {"ip": "fe80::570a:edf2:a3a7:4eb8%enp1s0", "mac": "00:60:2f:31:81:01", "model": "0x1af4 0x0001",
         "name": "enp1s0", "pxe": True},
    ],
    "ramMebibytes": 4096,
    "storage": [
        {
            "alternateNames": ["/dev/vda", "/dev/disk/by-path/pci-0000:04:00.0"],
            "name": "/dev/disk/by-path/pci-0000:04:00.0",
            "rotational": True,
            "sizeBytes": 21474836480,
            "type": "HDD",
            "vendor": "0x1af4",
        }
    ],
    "systemVendor": {"manufacturer": "QEMU", "productName": "Standard PC (Q35 + ICH9, 2009)"},
}

HARDWARE_DETAILS_JSON = json.dumps(HARDWARE_DETAILS)


class FakeClock:
    """Manually advanced time source"""

    def __init__(self, start=None):
        self.now = start or datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += timedelta(seconds=seconds)


def make_host(name="host-0", address=None, credentials_name=SECRET, online=True, annotations=None, image=None):
    return Host(
        name=name,
        namespace=NAMESPACE,
        spec=HostSpec(
            online=online,
            bmc=BMCDetails(
                address=f"fixture://{name}" if address is None else address,
                credentials_name=credentials_name,
            ),
            boot_mac_address="00:60:2f:31:81:01",
            image=image,
        ),
        annotations=dict(annotations or {}),
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def fleet():
    return FixtureFleet()


@pytest.fixture
def factory(fleet):
    factory = AdapterFactory()
    factory.configure(FixtureAdapter, fleet=fleet)
    return factory


@pytest.fixture
def repo():
    return InMemoryHostRepository()


@pytest.fixture
def secrets():
    store = InMemorySecretStore()
    store.put(NAMESPACE, SECRET, USER, PASSWORD)
    return store


@pytest.fixture
def controller(repo, secrets, factory, clock):
    return HostController(
        repo,
        secrets,
        factory,
        workers=2,
        resync_interval=3600,
        backoff=BackoffPolicy(base_delay=10, max_delay=600, rng=random.Random(7)),
        clock=clock,
    )


def settle(controller, key, limit=25):
    """
    Reconcile synchronously until the host asks for no immediate requeue.

    Returns:
        requeue_after of the last pass
    """
    for _ in range(limit):
        requeue_after = controller.reconcile(key)
        if requeue_after != 0:
            return requeue_after
    raise AssertionError(f"{key} did not settle after {limit} passes")
