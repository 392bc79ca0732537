"""
Data models and value objects.
Following Domain-Driven Design patterns for immutable data structures.
"""

from .credentials import BMCAccessRef, Credentials
from .hardware import HardwareDetails, HardwareProvenance, HardwareSource
from .host import (
    FINALIZER,
    BMCDetails,
    BootMode,
    ErrorType,
    Host,
    HostSpec,
    HostState,
    HostStatus,
    Image,
    OperationalStatus,
    OperationHistory,
    OperationKind,
    OperationMetric,
    utcnow,
)

__all__ = [
    'BMCAccessRef',
    'Credentials',
    'HardwareDetails',
    'HardwareProvenance',
    'HardwareSource',
    'FINALIZER',
    'BMCDetails',
    'BootMode',
    'ErrorType',
    'Host',
    'HostSpec',
    'HostState',
    'HostStatus',
    'Image',
    'OperationalStatus',
    'OperationHistory',
    'OperationKind',
    'OperationMetric',
    'utcnow',
]
