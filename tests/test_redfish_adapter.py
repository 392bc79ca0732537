import threading
from unittest.mock import MagicMock, patch

import pytest
import requests

from bmh_operator.adapters import (
    BMCOperationCancelled,
    BMCPermanentError,
    BMCTransientError,
    RedfishAdapter,
)
from bmh_operator.models import Credentials, Image
from bmh_operator.services import HardwareIngestor
from bmh_operator.models import HardwareSource

SYSTEM = "/redfish/v1/Systems/1"

RESOURCES = {
    "/redfish/v1/Systems": {"Members": [{"@odata.id": SYSTEM}]},
    SYSTEM: {
        "HostName": "worker-3",
        "Manufacturer": "Dell Inc.",
        "Model": "PowerEdge R650",
        "SerialNumber": "ABC123",
        "BiosVersion": "1.6.5",
        "PowerState": "Off",
        "ProcessorSummary": {"Count": 2, "Model": "Intel(R) Xeon(R) Gold 6338"},
        "MemorySummary": {"TotalSystemMemoryGiB": 256},
        "Processors": {"@odata.id": SYSTEM + "/Processors"},
        "EthernetInterfaces": {"@odata.id": SYSTEM + "/EthernetInterfaces"},
        "Storage": {"@odata.id": SYSTEM + "/Storage"},
        "Links": {"ManagedBy": [{"@odata.id": "/redfish/v1/Managers/1"}]},
    },
    SYSTEM + "/Processors": {"Members": [{"@odata.id": SYSTEM + "/Processors/CPU.1"}]},
    SYSTEM + "/Processors/CPU.1": {"InstructionSet": "x86-64", "MaxSpeedMHz": 3200},
    SYSTEM + "/EthernetInterfaces": {"Members": [{"@odata.id": SYSTEM + "/EthernetInterfaces/NIC.1"}]},
    SYSTEM + "/EthernetInterfaces/NIC.1": {
        "Id": "NIC.1",
        "MACAddress": "B4:96:91:AA:BB:CC",
        "SpeedMbps": 25000,
        "IPv4Addresses": [{"Address": "10.0.0.30"}],
    },
    SYSTEM + "/Storage": {"Members": [{"@odata.id": SYSTEM + "/Storage/RAID.1"}]},
    SYSTEM + "/Storage/RAID.1": {"Drives": [{"@odata.id": SYSTEM + "/Storage/RAID.1/Drives/Disk.0"}]},
    SYSTEM + "/Storage/RAID.1/Drives/Disk.0": {
        "Name": "Disk 0",
        "MediaType": "SSD",
        "CapacityBytes": 960197124096,
        "Manufacturer": "SAMSUNG",
    },
    "/redfish/v1/Managers/1": {"VirtualMedia": {"@odata.id": "/redfish/v1/Managers/1/VirtualMedia"}},
    "/redfish/v1/Managers/1/VirtualMedia": {"Members": [{"@odata.id": "/redfish/v1/Managers/1/VirtualMedia/CD"}]},
    "/redfish/v1/Managers/1/VirtualMedia/CD": {
        "MediaTypes": ["CD", "DVD"],
        "Inserted": False,
        "Actions": {
            "#VirtualMedia.InsertMedia": {"target": "/redfish/v1/Managers/1/VirtualMedia/CD/Actions/Insert"},
            "#VirtualMedia.EjectMedia": {"target": "/redfish/v1/Managers/1/VirtualMedia/CD/Actions/Eject"},
        },
    },
}


def _response(status_code=200, body=None, headers=None):
    response = MagicMock()
    response.status_code = status_code
    response.json.return_value = body or {}
    response.headers = headers or {}
    response.text = ""
    return response


class FakeBMC:
    """Routes session.request calls to canned Redfish resources"""

    def __init__(self):
        self.posts = []
        self.patches = []
        self.login_status = 201

    def request(self, method, url, timeout=None, **kwargs):
        path = url.replace("https://10.0.0.5", "")
        if method == "POST" and path == "/redfish/v1/SessionService/Sessions":
            if self.login_status != 201:
                return _response(self.login_status)
            return _response(201, headers={"X-Auth-Token": "token-1", "Location": "/redfish/v1/Sessions/1"})
        if method == "POST":
            self.posts.append((path, kwargs.get("json")))
            return _response(204)
        if method == "PATCH":
            self.patches.append((path, kwargs.get("json")))
            return _response(200)
        return _response(200, RESOURCES[path])


@pytest.fixture
def bmc():
    return FakeBMC()


@pytest.fixture
def session(bmc):
    with patch("bmh_operator.adapters.redfish_adapter.requests.Session") as session_class:
        session = session_class.return_value
        session.headers = {}
        session.request.side_effect = bmc.request
        yield session


@pytest.fixture
def cancel():
    return threading.Event()


def make_adapter(address="redfish://10.0.0.5"):
    return RedfishAdapter(address, Credentials("root", "calvin"))


def test_connect_opens_session_and_discovers_system(session, cancel):
    adapter = make_adapter()

    adapter.connect(cancel)

    login = session.request.call_args_list[0]
    assert login.args[:2] == ("POST", "https://10.0.0.5/redfish/v1/SessionService/Sessions")
    assert login.kwargs["json"] == {"UserName": "root", "Password": "calvin"}
    assert session.headers["X-Auth-Token"] == "token-1"
    assert adapter._system_path == SYSTEM


def test_connect_is_reused(session, cancel):
    adapter = make_adapter()
    adapter.connect(cancel)
    calls = session.request.call_count

    adapter.connect(cancel)

    assert session.request.call_count == calls


def test_rejected_credentials_are_permanent(session, bmc, cancel):
    bmc.login_status = 401

    with pytest.raises(BMCPermanentError, match="401"):
        make_adapter().connect(cancel)


def test_server_errors_are_transient(session, bmc, cancel):
    bmc.login_status = 503

    with pytest.raises(BMCTransientError):
        make_adapter().connect(cancel)


def test_unreachable_is_transient(session, cancel):
    session.request.side_effect = requests.ConnectionError("no route to host")

    with pytest.raises(BMCTransientError, match="unreachable"):
        make_adapter().connect(cancel)


def test_cancelled_before_request(session, cancel):
    cancel.set()

    with pytest.raises(BMCOperationCancelled):
        make_adapter().connect(cancel)
    session.request.assert_not_called()


def test_cancel_during_request_drops_the_answer(session, bmc, cancel):
    adapter = make_adapter()
    adapter.connect(cancel)

    def slow_request(method, url, timeout=None, **kwargs):
        cancel.set()
        return bmc.request(method, url, timeout=timeout, **kwargs)

    session.request.side_effect = slow_request
    sent = session.request.call_count

    with pytest.raises(BMCOperationCancelled):
        adapter.set_power(False, True, cancel)
    assert session.request.call_count == sent + 1


def test_requests_use_short_connect_timeout(session, cancel):
    adapter = RedfishAdapter("redfish://10.0.0.5", Credentials("root", "calvin"), timeout=30)

    adapter.connect(cancel)

    assert session.request.call_args.kwargs["timeout"] == (RedfishAdapter.CONNECT_TIMEOUT, 30)


def test_inspect_builds_valid_hardware_details(session, cancel):
    document = make_adapter().inspect(cancel)

    assert document["hostname"] == "worker-3"
    assert document["cpu"]["arch"] == "x86_64"
    assert document["cpu"]["count"] == 2
    assert document["ramMebibytes"] == 256 * 1024
    assert document["nics"][0]["mac"] == "b4:96:91:aa:bb:cc"
    assert document["nics"][0]["speedGbps"] == 25
    assert document["storage"][0]["rotational"] is False
    assert document["systemVendor"]["manufacturer"] == "Dell Inc."
    HardwareIngestor().ingest(document, HardwareSource.FROM_ADAPTER)


@pytest.mark.parametrize("on, force, reset_type", [
    (True, False, "On"),
    (False, False, "GracefulShutdown"),
    (False, True, "ForceOff"),
])
def test_set_power(session, bmc, cancel, on, force, reset_type):
    make_adapter().set_power(on, force, cancel)

    assert bmc.posts == [(SYSTEM + "/Actions/ComputerSystem.Reset", {"ResetType": reset_type})]


def test_provision_uses_virtual_media(session, bmc, cancel):
    image = Image(url="http://images.example.com/rhcos.iso")

    make_adapter().provision(image, "b4:96:91:aa:bb:cc", cancel)

    assert bmc.posts[0] == (
        "/redfish/v1/Managers/1/VirtualMedia/CD/Actions/Insert",
        {"Image": image.url, "Inserted": True},
    )
    assert bmc.patches == [
        (SYSTEM, {"Boot": {"BootSourceOverrideTarget": "Cd", "BootSourceOverrideEnabled": "Once"}})
    ]
    # System is off, so it is powered on rather than restarted
    assert bmc.posts[-1] == (SYSTEM + "/Actions/ComputerSystem.Reset", {"ResetType": "On"})


def test_deprovision_powers_off(session, bmc, cancel):
    make_adapter().deprovision(cancel)

    assert bmc.posts == [(SYSTEM + "/Actions/ComputerSystem.Reset", {"ResetType": "ForceOff"})]


def test_disconnect_logs_out(session, cancel):
    adapter = make_adapter()
    adapter.connect(cancel)

    adapter.disconnect()

    session.delete.assert_called_once_with("https://10.0.0.5/redfish/v1/Sessions/1", timeout=30)
    assert adapter._auth_token is None


def test_unsupported_address():
    with pytest.raises(BMCPermanentError):
        RedfishAdapter("redfish://", Credentials("root", "calvin"))
