"""
Per-host BMC endpoint.

Commands sent to one physical BMC are serialized through the endpoint lock,
and every command sees the endpoint's cancellation event.
"""

import logging
import threading
from typing import Any, Callable, Dict, Optional, Tuple

from ..adapters import BMCAdapter
from ..models import BMCAccessRef
from ..repositories import AdapterFactory
from .credential_resolver import CredentialLookup

logger = logging.getLogger(__name__)


class BMCEndpoint:
    """
    Serialized, cancellable access to the BMC of one host.

    Attributes:
        key: (namespace, name) of the host
        cancel: Set when the host is deleted or the controller shuts down
        in_flight: Name of the command currently running, if any
    """

    def __init__(self, key: Tuple[str, str]):
        self.key = key
        self.cancel = threading.Event()
        self.in_flight: Optional[str] = None
        self._lock = threading.Lock()
        self._adapter: Optional[BMCAdapter] = None
        self._adapter_access: Optional[BMCAccessRef] = None

    def adapter_for(self, factory: AdapterFactory, lookup: CredentialLookup,
                    disable_certificate_verification: bool = False) -> BMCAdapter:
        """Reuse the cached adapter unless the BMC address or secret revision changed"""
        if self._adapter is None or self._adapter_access != lookup.access:
            self._drop_adapter()
            self._adapter = factory.create_adapter(
                lookup.access.address,
                lookup.credentials,
                disable_certificate_verification=disable_certificate_verification
            )
            self._adapter_access = lookup.access
        return self._adapter

    @property
    def protocol(self) -> Optional[str]:
        """Protocol of the current adapter, None before the first command"""
        return self._adapter.protocol_name if self._adapter is not None else None

    def run(self, operation: str, command: Callable[..., Any], *args) -> Any:
        """
        Run one BMC command while holding the endpoint lock.

        The cancellation event is appended to the command arguments.
        """
        with self._lock:
            BMCAdapter.check_cancelled(self.cancel)
            self.in_flight = operation
            try:
                return command(*args, self.cancel)
            finally:
                self.in_flight = None

    def wait_idle(self, timeout: float) -> bool:
        """Wait until no command is running; True when idle"""
        if not self._lock.acquire(timeout=timeout):
            return False
        self._lock.release()
        return True

    def close(self) -> None:
        self._drop_adapter()

    def _drop_adapter(self) -> None:
        if self._adapter is not None:
            try:
                self._adapter.disconnect()
            except Exception as e:
                logger.warning(f"Error disconnecting BMC of {self.key[0]}/{self.key[1]}: {e}")
        self._adapter = None
        self._adapter_access = None


class EndpointRegistry:
    """Thread-safe map of host key to BMCEndpoint"""

    def __init__(self):
        self._endpoints: Dict[Tuple[str, str], BMCEndpoint] = {}
        self._lock = threading.Lock()

    def get(self, key: Tuple[str, str]) -> BMCEndpoint:
        with self._lock:
            endpoint = self._endpoints.get(key)
            if endpoint is None:
                endpoint = BMCEndpoint(key)
                self._endpoints[key] = endpoint
            return endpoint

    def peek(self, key: Tuple[str, str]) -> Optional[BMCEndpoint]:
        with self._lock:
            return self._endpoints.get(key)

    def discard(self, key: Tuple[str, str]) -> None:
        with self._lock:
            endpoint = self._endpoints.pop(key, None)
        if endpoint is not None:
            endpoint.close()

    def cancel_all(self) -> None:
        with self._lock:
            endpoints = list(self._endpoints.values())
        for endpoint in endpoints:
            endpoint.cancel.set()

    def __len__(self) -> int:
        with self._lock:
            return len(self._endpoints)
