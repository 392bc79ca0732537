from datetime import datetime, timedelta, timezone

import pytest

from conftest import HARDWARE_DETAILS
from bmh_operator.models import (
    BMCAccessRef,
    BootMode,
    Credentials,
    ErrorType,
    HardwareProvenance,
    HardwareSource,
    Host,
    HostSpec,
    HostState,
    HostStatus,
    Image,
    OperationalStatus,
    OperationHistory,
    OperationKind,
    OperationMetric,
)

T0 = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


def test_operation_metric_never_moves_backwards():
    metric = OperationMetric().started(T0)

    assert metric.started(T0 - timedelta(seconds=5)).start == T0
    assert metric.started(T0 + timedelta(seconds=5)).start == T0 + timedelta(seconds=5)
    assert metric.in_progress()
    assert not metric.finished(T0 + timedelta(seconds=1)).in_progress()


def test_history_updates_one_kind():
    history = OperationHistory().with_started(OperationKind.INSPECT, T0)

    assert history.inspect.start == T0
    assert history.register.start is None
    assert history.get(OperationKind.INSPECT) is history.inspect


def test_status_serialization_keeps_everything():
    access = BMCAccessRef("redfish://10.0.0.5/redfish/v1/Systems/1", "bmc", "metal3", "42")
    status = HostStatus(
        state=HostState.PROVISIONED,
        error_type=ErrorType.POWER_CONTROL_ERROR,
        error_message="power command failed",
        error_count=3,
        next_retry_at=T0,
        operational_status=OperationalStatus.ERROR,
        operation_history=OperationHistory().with_started(OperationKind.REGISTER, T0),
        hardware=HardwareProvenance.from_override(HARDWARE_DETAILS),
        powered_on=True,
        last_reboot_request='{"force": true}',
        good_credentials=access,
        tried_credentials=access,
        provisioned_image=Image(url="http://images/rhcos.qcow2", checksum="abc", checksum_type="sha256"),
        last_updated=T0,
    )

    data = status.to_dict()
    assert data["provisioning"]["state"] == "provisioned"
    assert data["errorType"] == "power management error"
    assert data["hardwareSource"] == "annotation"
    assert data["operationHistory"]["inspect"]["start"] is None
    assert data["operationHistory"]["register"]["start"] == "2024-01-01T12:00:00Z"

    assert HostStatus.from_dict(data) == status


def test_empty_status_parses_to_defaults():
    status = HostStatus.from_dict(None)

    assert status.state is HostState.NONE
    assert status.hardware.source is HardwareSource.ABSENT
    assert status.operation_history == OperationHistory()


def test_same_as_ignores_commit_time():
    status = HostStatus(state=HostState.AVAILABLE)

    assert status.same_as(status.with_changes(last_updated=T0))
    assert not status.same_as(status.with_changes(powered_on=True))


def test_cleared_error():
    status = HostStatus(
        error_type=ErrorType.INSPECTION_ERROR,
        error_message="boom",
        error_count=2,
        next_retry_at=T0,
        operational_status=OperationalStatus.ERROR,
    ).cleared_error()

    assert status.error_type is None
    assert status.error_count == 0
    assert status.next_retry_at is None
    assert status.operational_status is OperationalStatus.OK


def test_host_resource_round_trip():
    resource = {
        "apiVersion": "metal3.io/v1alpha1",
        "kind": "BareMetalHost",
        "metadata": {
            "name": "worker-3",
            "namespace": "metal3",
            "resourceVersion": "1234",
            "annotations": {"inspect.metal3.io": "disabled"},
            "finalizers": ["baremetalhost.metal3.io"],
        },
        "spec": {
            "online": True,
            "bmc": {"address": "redfish://10.0.0.5/redfish/v1/Systems/1", "credentialsName": "bmc"},
            "bootMode": "legacy",
            "bootMACAddress": "00:60:2f:31:81:01",
        },
    }

    host = Host.from_resource(resource)

    assert host.key == ("metal3", "worker-3")
    assert host.spec.boot_mode is BootMode.LEGACY
    assert host.spec.bmc.credentials_name == "bmc"
    assert host.spec.image is None
    assert not host.deleting
    assert Host.from_resource(host.to_resource()) == host


def test_spec_defaults():
    spec = HostSpec.from_dict({})

    assert spec.online is False
    assert spec.boot_mode is BootMode.UEFI
    assert spec.bmc.address == ""


def test_host_requires_name():
    with pytest.raises(ValueError):
        Host(name="")


def test_password_not_in_repr():
    assert "s3cret" not in repr(Credentials("admin", "s3cret"))


def test_access_ref_round_trip():
    access = BMCAccessRef("fixture://a", "bmc", "metal3", "7")

    assert BMCAccessRef.from_dict(access.to_dict()) == access
    assert BMCAccessRef.from_dict(None) is None
