"""
BMC adapter implementations - Strategy Pattern.
Each BMC protocol has its own adapter for connect, inspect and power control.
"""

from .base_adapter import (
    BMCAdapter,
    BMCError,
    BMCOperationCancelled,
    BMCPermanentError,
    BMCTransientError,
)
from .fixture_adapter import FixtureAdapter, FixtureFleet, FixtureMachine
from .redfish_adapter import RedfishAdapter

__all__ = [
    'BMCAdapter',
    'BMCError',
    'BMCOperationCancelled',
    'BMCPermanentError',
    'BMCTransientError',
    'FixtureAdapter',
    'FixtureFleet',
    'FixtureMachine',
    'RedfishAdapter',
]
