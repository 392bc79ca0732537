"""
Host resource data model - Value Object pattern.

Mirrors the fields of the Metal3 BareMetalHost resource that the controller
reads and writes. Spec and status are immutable; updates produce new
instances.
"""

import copy
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional, Tuple

from .credentials import BMCAccessRef
from .hardware import HardwareProvenance, HardwareSource

FINALIZER = "baremetalhost.metal3.io"


class HostState(Enum):
    """Lifecycle states"""
    NONE = ""
    UNMANAGED = "unmanaged"
    REGISTERING = "registering"
    REGISTRATION_ERROR = "registration error"
    INSPECTING = "inspecting"
    AVAILABLE = "available"
    PROVISIONING = "provisioning"
    PROVISIONED = "provisioned"
    DEPROVISIONING = "deprovisioning"
    DELETING = "deleting"


class ErrorType(Enum):
    """Classification of the last failure recorded in status"""
    REGISTRATION_ERROR = "registration error"
    INSPECTION_ERROR = "inspection error"
    VALIDATION_ERROR = "validation error"
    POWER_CONTROL_ERROR = "power management error"
    PROVISIONING_ERROR = "provisioning error"


class OperationalStatus(Enum):
    OK = "OK"
    DISCOVERED = "discovered"
    ERROR = "error"


class OperationKind(Enum):
    REGISTER = "register"
    INSPECT = "inspect"
    PROVISION = "provision"
    DEPROVISION = "deprovision"


class BootMode(Enum):
    UEFI = "UEFI"
    UEFI_SECURE_BOOT = "UEFISecureBoot"
    LEGACY = "legacy"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def format_time(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def parse_time(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


# ============================================================================
# Spec
# ============================================================================

@dataclass(frozen=True)
class BMCDetails:
    """
    BMC connection details.

    Attributes:
        address: BMC URL, e.g. redfish://10.0.0.5/redfish/v1/Systems/1
        credentials_name: Name of the secret holding username/password
        disable_certificate_verification: Skip TLS verification for this BMC
    """
    address: str = ""
    credentials_name: str = ""
    disable_certificate_verification: bool = False


@dataclass(frozen=True)
class Image:
    """Image to write to the host during provisioning"""
    url: str
    checksum: str = ""
    checksum_type: str = ""
    format: str = ""

    def to_dict(self) -> dict:
        data = {"url": self.url}
        if self.checksum:
            data["checksum"] = self.checksum
        if self.checksum_type:
            data["checksumType"] = self.checksum_type
        if self.format:
            data["format"] = self.format
        return data

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> Optional['Image']:
        if not data or not data.get("url"):
            return None
        return cls(
            url=data["url"],
            checksum=data.get("checksum", ""),
            checksum_type=data.get("checksumType", ""),
            format=data.get("format", ""),
        )


@dataclass(frozen=True)
class HostSpec:
    """Desired state declared by the operator"""
    online: bool = False
    bmc: BMCDetails = field(default_factory=BMCDetails)
    boot_mode: BootMode = BootMode.UEFI
    boot_mac_address: str = ""
    image: Optional[Image] = None

    def to_dict(self) -> dict:
        data = {
            "online": self.online,
            "bmc": {
                "address": self.bmc.address,
                "credentialsName": self.bmc.credentials_name,
                "disableCertificateVerification": self.bmc.disable_certificate_verification,
            },
            "bootMode": self.boot_mode.value,
            "bootMACAddress": self.boot_mac_address,
        }
        if self.image:
            data["image"] = self.image.to_dict()
        return data

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> 'HostSpec':
        data = data or {}
        bmc = data.get("bmc") or {}
        return cls(
            online=bool(data.get("online", False)),
            bmc=BMCDetails(
                address=bmc.get("address", ""),
                credentials_name=bmc.get("credentialsName", ""),
                disable_certificate_verification=bool(bmc.get("disableCertificateVerification", False)),
            ),
            boot_mode=BootMode(data.get("bootMode") or BootMode.UEFI.value),
            boot_mac_address=data.get("bootMACAddress", ""),
            image=Image.from_dict(data.get("image")),
        )


# ============================================================================
# Status
# ============================================================================

@dataclass(frozen=True)
class OperationMetric:
    """
    Start/end timestamps of one operation kind.

    ``start`` stays None until the operation has been attempted. Neither
    timestamp ever moves backwards.
    """
    start: Optional[datetime] = None
    end: Optional[datetime] = None

    def started(self, now: datetime) -> 'OperationMetric':
        if self.start is not None and self.start > now:
            return self
        return replace(self, start=now)

    def finished(self, now: datetime) -> 'OperationMetric':
        if self.end is not None and self.end > now:
            return self
        return replace(self, end=now)

    def in_progress(self) -> bool:
        return self.start is not None and (self.end is None or self.end < self.start)

    def to_dict(self) -> dict:
        return {"start": format_time(self.start), "end": format_time(self.end)}

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> 'OperationMetric':
        data = data or {}
        return cls(start=parse_time(data.get("start")), end=parse_time(data.get("end")))


@dataclass(frozen=True)
class OperationHistory:
    register: OperationMetric = field(default_factory=OperationMetric)
    inspect: OperationMetric = field(default_factory=OperationMetric)
    provision: OperationMetric = field(default_factory=OperationMetric)
    deprovision: OperationMetric = field(default_factory=OperationMetric)

    def get(self, kind: OperationKind) -> OperationMetric:
        return getattr(self, kind.value)

    def with_started(self, kind: OperationKind, now: datetime) -> 'OperationHistory':
        return replace(self, **{kind.value: self.get(kind).started(now)})

    def with_finished(self, kind: OperationKind, now: datetime) -> 'OperationHistory':
        return replace(self, **{kind.value: self.get(kind).finished(now)})

    def to_dict(self) -> dict:
        return {kind.value: self.get(kind).to_dict() for kind in OperationKind}

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> 'OperationHistory':
        data = data or {}
        return cls(**{kind.value: OperationMetric.from_dict(data.get(kind.value)) for kind in OperationKind})


@dataclass(frozen=True)
class HostStatus:
    """
    Observed state written by the controller.

    Attributes:
        state: Lifecycle state
        error_type: Classification of the last failure, None when healthy
        error_message: Human readable detail of the last failure
        error_count: Consecutive failures, drives retry backoff
        next_retry_at: Earliest time a failed operation may be retried
        operational_status: OK / discovered / error
        operation_history: Per-operation start/end timestamps
        hardware: Inventory tagged with its source
        powered_on: Last power state set or observed, None when unknown
        last_reboot_request: Reboot annotation value already acted upon
        good_credentials: BMC access that last registered successfully
        tried_credentials: BMC access used by the last registration attempt
        provisioned_image: Image currently written to the host
        last_updated: Time of the last status commit
    """
    state: HostState = HostState.NONE
    error_type: Optional[ErrorType] = None
    error_message: str = ""
    error_count: int = 0
    next_retry_at: Optional[datetime] = None
    operational_status: OperationalStatus = OperationalStatus.OK
    operation_history: OperationHistory = field(default_factory=OperationHistory)
    hardware: HardwareProvenance = field(default_factory=HardwareProvenance)
    powered_on: Optional[bool] = None
    last_reboot_request: Optional[str] = None
    good_credentials: Optional[BMCAccessRef] = None
    tried_credentials: Optional[BMCAccessRef] = None
    provisioned_image: Optional[Image] = None
    last_updated: Optional[datetime] = None

    def with_changes(self, **changes) -> 'HostStatus':
        """Create a new instance with the given fields replaced (immutable update)"""
        return replace(self, **changes)

    def cleared_error(self) -> 'HostStatus':
        return replace(
            self,
            error_type=None,
            error_message="",
            error_count=0,
            next_retry_at=None,
            operational_status=OperationalStatus.OK,
        )

    def same_as(self, other: 'HostStatus') -> bool:
        """Compare everything except the commit timestamp"""
        return replace(self, last_updated=None) == replace(other, last_updated=None)

    def to_dict(self) -> dict:
        return {
            "provisioning": {
                "state": self.state.value,
                "image": self.provisioned_image.to_dict() if self.provisioned_image else None,
            },
            "errorType": self.error_type.value if self.error_type else "",
            "errorMessage": self.error_message,
            "errorCount": self.error_count,
            "nextRetryAt": format_time(self.next_retry_at),
            "operationalStatus": self.operational_status.value,
            "operationHistory": self.operation_history.to_dict(),
            "hardwareDetails": copy.deepcopy(self.hardware.details),
            "hardwareSource": self.hardware.source.value,
            "poweredOn": self.powered_on,
            "lastRebootRequest": self.last_reboot_request,
            "goodCredentials": self.good_credentials.to_dict() if self.good_credentials else None,
            "triedCredentials": self.tried_credentials.to_dict() if self.tried_credentials else None,
            "lastUpdated": format_time(self.last_updated),
        }

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> 'HostStatus':
        data = data or {}
        provisioning = data.get("provisioning") or {}
        error_type = data.get("errorType")
        details = data.get("hardwareDetails")
        source = HardwareSource(data.get("hardwareSource") or "")
        if details is None:
            hardware = HardwareProvenance.absent()
        elif source is HardwareSource.FROM_OVERRIDE:
            hardware = HardwareProvenance.from_override(details)
        else:
            hardware = HardwareProvenance.from_adapter(details)
        return cls(
            state=HostState(provisioning.get("state") or ""),
            error_type=ErrorType(error_type) if error_type else None,
            error_message=data.get("errorMessage", ""),
            error_count=int(data.get("errorCount") or 0),
            next_retry_at=parse_time(data.get("nextRetryAt")),
            operational_status=OperationalStatus(data.get("operationalStatus") or "OK"),
            operation_history=OperationHistory.from_dict(data.get("operationHistory")),
            hardware=hardware,
            powered_on=data.get("poweredOn"),
            last_reboot_request=data.get("lastRebootRequest"),
            good_credentials=BMCAccessRef.from_dict(data.get("goodCredentials")),
            tried_credentials=BMCAccessRef.from_dict(data.get("triedCredentials")),
            provisioned_image=Image.from_dict(provisioning.get("image")),
            last_updated=parse_time(data.get("lastUpdated")),
        )


# ============================================================================
# Resource
# ============================================================================

@dataclass
class Host:
    """
    Snapshot of one host resource as read from the repository.

    Attributes:
        name: Resource name
        namespace: Resource namespace (secrets are looked up here)
        spec: Desired state
        status: Observed state
        annotations: Operator side-channel
        resource_version: Optimistic concurrency token
        finalizers: Finalizers currently set on the resource
        deletion_timestamp: Set once deletion was requested
    """
    name: str
    namespace: str = "default"
    spec: HostSpec = field(default_factory=HostSpec)
    status: HostStatus = field(default_factory=HostStatus)
    annotations: Dict[str, str] = field(default_factory=dict)
    resource_version: str = ""
    finalizers: List[str] = field(default_factory=list)
    deletion_timestamp: Optional[datetime] = None

    def __post_init__(self):
        """Validate invariants"""
        if not self.name:
            raise ValueError("Host name cannot be empty")

    @property
    def key(self) -> Tuple[str, str]:
        return self.namespace, self.name

    @property
    def deleting(self) -> bool:
        return self.deletion_timestamp is not None

    def copy(self) -> 'Host':
        return copy.deepcopy(self)

    def to_resource(self) -> dict:
        """Render as a BareMetalHost custom resource body"""
        metadata = {
            "name": self.name,
            "namespace": self.namespace,
            "annotations": dict(self.annotations),
            "finalizers": list(self.finalizers),
        }
        if self.resource_version:
            metadata["resourceVersion"] = self.resource_version
        if self.deletion_timestamp:
            metadata["deletionTimestamp"] = format_time(self.deletion_timestamp)
        return {
            "apiVersion": "metal3.io/v1alpha1",
            "kind": "BareMetalHost",
            "metadata": metadata,
            "spec": self.spec.to_dict(),
            "status": self.status.to_dict(),
        }

    @classmethod
    def from_resource(cls, resource: dict) -> 'Host':
        """Build from a BareMetalHost custom resource body"""
        metadata = resource.get("metadata") or {}
        return cls(
            name=metadata.get("name", ""),
            namespace=metadata.get("namespace", "default"),
            spec=HostSpec.from_dict(resource.get("spec")),
            status=HostStatus.from_dict(resource.get("status")),
            annotations=dict(metadata.get("annotations") or {}),
            resource_version=str(metadata.get("resourceVersion", "")),
            finalizers=list(metadata.get("finalizers") or []),
            deletion_timestamp=parse_time(metadata.get("deletionTimestamp")),
        )
