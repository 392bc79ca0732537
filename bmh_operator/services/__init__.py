"""
Business logic services - reconciliation pipeline and control loop.
"""

from .backoff import BackoffPolicy
from .bmc_endpoint import BMCEndpoint, EndpointRegistry
from .controller import HostController, WorkQueue
from .credential_resolver import CredentialLookup, CredentialResolver, CredentialStatus
from .hardware_ingestor import HardwareIngestor, HardwareValidationError
from .state_machine import ALLOWED_TRANSITIONS, HostStateMachine, InvalidTransitionError, ReconcileResult
from .status_reporter import StatusReporter

__all__ = [
    'BackoffPolicy',
    'BMCEndpoint',
    'EndpointRegistry',
    'HostController',
    'WorkQueue',
    'CredentialLookup',
    'CredentialResolver',
    'CredentialStatus',
    'HardwareIngestor',
    'HardwareValidationError',
    'ALLOWED_TRANSITIONS',
    'HostStateMachine',
    'InvalidTransitionError',
    'ReconcileResult',
    'StatusReporter',
]
