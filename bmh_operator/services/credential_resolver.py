"""
Credential Resolver - looks up the BMC secret referenced by a host.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from ..models import BMCAccessRef, Credentials, Host
from ..repositories import SecretStore

logger = logging.getLogger(__name__)


class CredentialStatus(Enum):
    FOUND = "found"
    NOT_CONFIGURED = "not configured"
    NOT_FOUND = "not found"
    INVALID = "invalid"


@dataclass(frozen=True)
class CredentialLookup:
    """
    Outcome of resolving a host's BMC credentials.

    Attributes:
        status: FOUND, NOT_CONFIGURED, NOT_FOUND or INVALID
        credentials: Username/password when the secret exists
        access: BMC address + secret revision, set when the secret exists
        message: Explanation when the credentials are not usable
    """
    status: CredentialStatus
    credentials: Optional[Credentials] = None
    access: Optional[BMCAccessRef] = None
    message: str = ""

    @property
    def usable(self) -> bool:
        return self.status is CredentialStatus.FOUND

    @property
    def absent(self) -> bool:
        """No credentials to work with; the host is left unmanaged"""
        return self.status in (CredentialStatus.NOT_CONFIGURED, CredentialStatus.NOT_FOUND)


class CredentialResolver:
    """Resolves spec.bmc.credentialsName in the host namespace"""

    def __init__(self, secret_store: SecretStore):
        self.secret_store = secret_store

    def resolve(self, host: Host) -> CredentialLookup:
        """
        Resolve the credentials of one host.

        Args:
            host: Host to resolve for

        Returns:
            CredentialLookup; absence is reported, not raised
        """
        bmc = host.spec.bmc
        if not bmc.address or not bmc.credentials_name:
            missing = "address" if not bmc.address else "credentialsName"
            return CredentialLookup(CredentialStatus.NOT_CONFIGURED, message=f"BMC {missing} not set")

        credentials = self.secret_store.lookup(bmc.credentials_name, host.namespace)
        if credentials is None:
            logger.debug(f"Host {host.namespace}/{host.name}: secret {bmc.credentials_name} not found")
            return CredentialLookup(
                CredentialStatus.NOT_FOUND,
                message=f"secret {host.namespace}/{bmc.credentials_name} not found",
            )

        access = BMCAccessRef(
            address=bmc.address,
            secret_name=bmc.credentials_name,
            secret_namespace=host.namespace,
            secret_version=credentials.version,
        )
        if not credentials.is_valid():
            missing = "username" if not credentials.username else "password"
            return CredentialLookup(
                CredentialStatus.INVALID,
                credentials=credentials,
                access=access,
                message=f"secret {host.namespace}/{bmc.credentials_name} has no {missing}",
            )
        return CredentialLookup(CredentialStatus.FOUND, credentials=credentials, access=access)
