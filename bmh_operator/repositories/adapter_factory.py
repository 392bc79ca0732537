"""
Adapter Factory - Factory Pattern implementation.
Creates BMC adapter instances based on the scheme of the BMC address.
"""

import logging
from typing import Any, Dict, Type
from urllib.parse import urlparse

from ..adapters import BMCAdapter, BMCPermanentError, FixtureAdapter, RedfishAdapter
from ..models import Credentials

logger = logging.getLogger(__name__)


class AdapterFactory:
    """
    Factory for creating BMC adapter instances.

    Design Pattern: Factory Pattern + Registry Pattern
    Maps each address scheme to its adapter class and creates instances on demand.
    """

    # Adapter registry
    _ADAPTERS: Dict[str, Type[BMCAdapter]] = {
        "redfish": RedfishAdapter,
        "redfish+http": RedfishAdapter,
        "redfish+https": RedfishAdapter,
        "fixture": FixtureAdapter,
    }

    def __init__(self, verify_ssl: bool = False, timeout: float = 30):
        """
        Args:
            verify_ssl: Default TLS verification for BMC connections
            timeout: Per-request timeout handed to every adapter
        """
        self.verify_ssl = verify_ssl
        self.timeout = timeout
        self._adapter_kwargs: Dict[Type[BMCAdapter], Dict[str, Any]] = {}

    def configure(self, adapter_class: Type[BMCAdapter], **kwargs) -> None:
        """Extra constructor arguments for one adapter class (e.g. the fixture fleet)"""
        self._adapter_kwargs[adapter_class] = kwargs

    def create_adapter(self, address: str, credentials: Credentials,
                       disable_certificate_verification: bool = False) -> BMCAdapter:
        """
        Create a BMC adapter instance.

        Args:
            address: BMC address from the host spec
            credentials: Resolved BMC credentials
            disable_certificate_verification: Per-host override of TLS verification

        Returns:
            Initialized adapter instance

        Raises:
            BMCPermanentError: If the address scheme is not supported
        """
        scheme = urlparse(address).scheme.lower()
        adapter_class = self._ADAPTERS.get(scheme)

        if not adapter_class:
            raise BMCPermanentError(
                f"Unknown BMC address type: {address} (supported: {', '.join(self.get_supported_schemes())})"
            )

        logger.debug(f"Creating {adapter_class.__name__} for {address}")
        verify_ssl = self.verify_ssl and not disable_certificate_verification
        return adapter_class(
            address,
            credentials,
            verify_ssl=verify_ssl,
            timeout=self.timeout,
            **self._adapter_kwargs.get(adapter_class, {})
        )

    @classmethod
    def get_supported_schemes(cls) -> list[str]:
        return sorted(cls._ADAPTERS.keys())

