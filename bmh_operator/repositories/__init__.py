"""
Repositories and factories - persistence access and the adapter factory.
"""

from .adapter_factory import AdapterFactory
from .host_repository import (
    ConflictError,
    HostNotFoundError,
    HostRepository,
    InMemoryHostRepository,
)
from .secret_store import InMemorySecretStore, SecretStore

__all__ = [
    'AdapterFactory',
    'ConflictError',
    'HostNotFoundError',
    'HostRepository',
    'InMemoryHostRepository',
    'InMemorySecretStore',
    'SecretStore',
]
