"""
Bare Metal Host Controller Package

Manages the lifecycle of Metal3 BareMetalHost resources: registration with
the BMC, hardware inspection, power control and provisioning, steered by
the host spec and by operator annotations.

Architecture:
- Strategy Pattern for BMC protocol adapters
- Factory Pattern for creating adapters by address scheme
- Repository Pattern for host and secret persistence
- Value Object Pattern for immutable spec/status models
"""

from .models import Host, HostSpec, HostState, HostStatus, ErrorType
from .adapters import BMCAdapter, RedfishAdapter, FixtureAdapter
from .repositories import AdapterFactory, HostRepository, SecretStore
from .parsers import AnnotationParser
from .services import HostController, HostStateMachine, StatusReporter

__all__ = [
    # Models
    "Host",
    "HostSpec",
    "HostState",
    "HostStatus",
    "ErrorType",
    # Adapters
    "BMCAdapter",
    "RedfishAdapter",
    "FixtureAdapter",
    # Factory / repositories
    "AdapterFactory",
    "HostRepository",
    "SecretStore",
    # Parsers
    "AnnotationParser",
    # Services
    "HostController",
    "HostStateMachine",
    "StatusReporter",
]
