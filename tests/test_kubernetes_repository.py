import base64
from unittest.mock import MagicMock, patch

import pytest
from kubernetes.client.rest import ApiException

from bmh_operator.models import FINALIZER, HostState, HostStatus
from bmh_operator.repositories import ConflictError, HostNotFoundError
from bmh_operator.repositories.kubernetes_repository import KubernetesHostRepository, KubernetesSecretStore

RESOURCE = {
    "apiVersion": "metal3.io/v1alpha1",
    "kind": "BareMetalHost",
    "metadata": {"name": "worker-0", "namespace": "metal3", "resourceVersion": "17", "finalizers": []},
    "spec": {"online": True, "bmc": {"address": "redfish://10.0.0.5", "credentialsName": "bmc"}},
}


@pytest.fixture
def custom_api():
    with patch("bmh_operator.repositories.kubernetes_repository.client.CustomObjectsApi") as api_class:
        yield api_class.return_value


@pytest.fixture
def core_api():
    with patch("bmh_operator.repositories.kubernetes_repository.client.CoreV1Api") as api_class:
        yield api_class.return_value


def test_get_parses_resource(custom_api):
    custom_api.get_namespaced_custom_object.return_value = RESOURCE

    host = KubernetesHostRepository(MagicMock()).get("metal3", "worker-0")

    assert host.key == ("metal3", "worker-0")
    assert host.resource_version == "17"
    assert host.spec.bmc.address == "redfish://10.0.0.5"
    kwargs = custom_api.get_namespaced_custom_object.call_args.kwargs
    assert (kwargs["group"], kwargs["version"], kwargs["plural"]) == ("metal3.io", "v1alpha1", "baremetalhosts")


def test_get_missing_returns_none(custom_api):
    custom_api.get_namespaced_custom_object.side_effect = ApiException(status=404, reason="Not Found")

    assert KubernetesHostRepository(MagicMock()).get("metal3", "worker-0") is None


def test_list_uses_namespace_when_configured(custom_api):
    custom_api.list_namespaced_custom_object.return_value = {"items": [RESOURCE]}

    hosts = KubernetesHostRepository(MagicMock(), namespace="metal3").list()

    assert [h.name for h in hosts] == ["worker-0"]
    custom_api.list_cluster_custom_object.assert_not_called()


def test_status_write_sends_resource_version(custom_api):
    repository = KubernetesHostRepository(MagicMock())
    custom_api.get_namespaced_custom_object.return_value = RESOURCE
    host = repository.get("metal3", "worker-0")
    custom_api.replace_namespaced_custom_object_status.return_value = RESOURCE

    repository.update_status(host, HostStatus(state=HostState.REGISTERING))

    body = custom_api.replace_namespaced_custom_object_status.call_args.kwargs["body"]
    assert body["metadata"]["resourceVersion"] == "17"
    assert body["status"]["provisioning"]["state"] == "registering"


@pytest.mark.parametrize("status, error", [(409, ConflictError), (404, HostNotFoundError)])
def test_status_write_errors_translated(custom_api, status, error):
    repository = KubernetesHostRepository(MagicMock())
    custom_api.get_namespaced_custom_object.return_value = RESOURCE
    host = repository.get("metal3", "worker-0")
    custom_api.replace_namespaced_custom_object_status.side_effect = ApiException(status=status, reason="x")

    with pytest.raises(error):
        repository.update_status(host, HostStatus())


def test_finalizer_patch(custom_api):
    repository = KubernetesHostRepository(MagicMock())
    custom_api.get_namespaced_custom_object.return_value = RESOURCE
    host = repository.get("metal3", "worker-0")
    custom_api.patch_namespaced_custom_object.return_value = dict(
        RESOURCE, metadata=dict(RESOURCE["metadata"], finalizers=[FINALIZER], resourceVersion="18")
    )

    updated = repository.add_finalizer(host)

    body = custom_api.patch_namespaced_custom_object.call_args.kwargs["body"]
    assert body == {"metadata": {"finalizers": [FINALIZER], "resourceVersion": "17"}}
    assert custom_api.patch_namespaced_custom_object.call_args.kwargs["_content_type"] == "application/merge-patch+json"
    assert updated.finalizers == [FINALIZER]
    assert updated.resource_version == "18"


def _secret(username, password, version="5"):
    secret = MagicMock()
    secret.data = {
        "username": base64.b64encode(username.encode()).decode(),
        "password": base64.b64encode(password.encode()).decode(),
    }
    secret.metadata.resource_version = version
    return secret


def test_secret_lookup_decodes(core_api):
    core_api.read_namespaced_secret.return_value = _secret("root", "calvin\n")

    credentials = KubernetesSecretStore(MagicMock()).lookup("bmc", "metal3")

    assert credentials.username == "root"
    assert credentials.password == "calvin"
    assert credentials.version == "5"


def test_secret_missing(core_api):
    core_api.read_namespaced_secret.side_effect = ApiException(status=404, reason="Not Found")

    assert KubernetesSecretStore(MagicMock()).lookup("bmc", "metal3") is None
