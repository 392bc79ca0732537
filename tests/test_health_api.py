import time

import pytest
from fastapi.testclient import TestClient

from conftest import NAMESPACE, make_host, settle
from bmh_operator.health_api import create_app


@pytest.fixture
def client(controller):
    return TestClient(create_app(controller, start_controller=False))


def test_not_ready_before_start(client):
    response = client.get("/readyz")

    assert response.status_code == 503
    assert response.json()["ready"] is False


def test_unhealthy_without_workers(client):
    assert client.get("/healthz").status_code == 503


def test_list_hosts(client, repo, fleet, controller):
    fleet.add("host-0")
    repo.create(make_host())
    repo.create(make_host(name="host-1", credentials_name="missing"))
    settle(controller, (NAMESPACE, "host-0"))
    settle(controller, (NAMESPACE, "host-1"))

    response = client.get("/api/hosts")

    assert response.status_code == 200
    data = response.json()
    assert [h["name"] for h in data["hosts"]] == ["host-0", "host-1"]
    assert data["hosts"][0]["state"] == "available"
    assert data["hosts"][0]["hardware_source"] == "inspection"
    assert data["hosts"][1]["operational_status"] == "discovered"
    assert data["summary"] == {"total": 2, "available": 1, "unmanaged": 1}


def test_get_host(client, repo, fleet, controller):
    fleet.add("host-0")
    repo.create(make_host())
    settle(controller, (NAMESPACE, "host-0"))

    response = client.get(f"/api/hosts/{NAMESPACE}/host-0")

    assert response.status_code == 200
    data = response.json()
    assert data["status"]["provisioning"]["state"] == "available"
    assert data["status"]["operationHistory"]["inspect"]["end"] is not None
    assert data["spec"]["bmc"]["credentialsName"] == "bmc-credentials"
    assert data["finalizers"] == ["baremetalhost.metal3.io"]


def test_unknown_host(client):
    assert client.get(f"/api/hosts/{NAMESPACE}/nope").status_code == 404


def test_controller_runs_with_app(repo, secrets, factory, fleet):
    from bmh_operator.services import HostController

    fleet.add("host-0")
    repo.create(make_host())
    controller = HostController(repo, secrets, factory, workers=1)

    with TestClient(create_app(controller)) as client:
        assert client.get("/readyz").status_code == 200
        assert client.get("/healthz").json()["status"] == "ok"

        deadline = time.time() + 5
        while time.time() < deadline:
            hosts = client.get("/api/hosts").json()["hosts"]
            if hosts and hosts[0]["state"] == "available":
                break
            time.sleep(0.02)
        assert hosts[0]["state"] == "available"

    assert not controller.ready
