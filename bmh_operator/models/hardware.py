"""
Hardware inventory schema and provenance.

The inventory document is stored exactly as it was received; the pydantic
models below only decide whether a document is well-formed.
"""

import copy
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class _InventoryModel(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)


class CPU(_InventoryModel):
    arch: str = ""
    model: str = ""
    clock_megahertz: float = Field(default=0, alias="clockMegahertz")
    flags: List[str] = []
    count: int = 0


class BIOS(_InventoryModel):
    date: str = ""
    vendor: str = ""
    version: str = ""


class Firmware(_InventoryModel):
    bios: Optional[BIOS] = None


class NIC(_InventoryModel):
    name: str = ""
    model: str = ""
    mac: str = ""
    ip: str = ""
    speed_gbps: int = Field(default=0, alias="speedGbps")
    pxe: bool = False


class StorageDevice(_InventoryModel):
    name: str = ""
    alternate_names: List[str] = Field(default=[], alias="alternateNames")
    rotational: bool = False
    size_bytes: int = Field(default=0, alias="sizeBytes")
    type: str = ""
    vendor: str = ""
    model: str = ""
    serial_number: str = Field(default="", alias="serialNumber")


class SystemVendor(_InventoryModel):
    manufacturer: str = ""
    product_name: str = Field(default="", alias="productName")
    serial_number: str = Field(default="", alias="serialNumber")


class HardwareDetails(_InventoryModel):
    """Inventory document; every top-level section is required"""
    cpu: CPU
    firmware: Firmware
    hostname: str
    nics: List[NIC]
    ram_mebibytes: int = Field(alias="ramMebibytes")
    storage: List[StorageDevice]
    system_vendor: SystemVendor = Field(alias="systemVendor")


class HardwareSource(Enum):
    """Where the committed inventory came from"""
    ABSENT = ""
    FROM_ADAPTER = "inspection"
    FROM_OVERRIDE = "annotation"


@dataclass(frozen=True)
class HardwareProvenance:
    """
    Inventory tagged with its source.

    Either there is no inventory at all, or there is a complete document from
    exactly one source. A record never mixes adapter and override data.
    """
    source: HardwareSource = HardwareSource.ABSENT
    details: Optional[Dict[str, Any]] = None

    def __post_init__(self):
        if (self.source is HardwareSource.ABSENT) != (self.details is None):
            raise ValueError(f"Inconsistent hardware record: source={self.source.name}")

    @classmethod
    def absent(cls) -> 'HardwareProvenance':
        return cls()

    @classmethod
    def from_adapter(cls, details: Dict[str, Any]) -> 'HardwareProvenance':
        return cls(HardwareSource.FROM_ADAPTER, copy.deepcopy(details))

    @classmethod
    def from_override(cls, details: Dict[str, Any]) -> 'HardwareProvenance':
        return cls(HardwareSource.FROM_OVERRIDE, copy.deepcopy(details))

    @property
    def present(self) -> bool:
        return self.source is not HardwareSource.ABSENT
