"""
Base BMC adapter - Abstract base class using Strategy Pattern.
Defines the interface that every BMC access protocol must implement.
"""

import logging
import threading
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

from ..models import Credentials, Image

logger = logging.getLogger(__name__)


class BMCError(Exception):
    """Base class for BMC access failures"""


class BMCTransientError(BMCError):
    """Timeout or connection failure; worth retrying with backoff"""


class BMCPermanentError(BMCError):
    """Authentication failure or a command the BMC rejected"""


class BMCOperationCancelled(BMCError):
    """The surrounding reconciliation was cancelled (host deleted or shutdown)"""


class BMCAdapter(ABC):
    """
    Abstract base class for BMC adapters.

    Design Pattern: Strategy Pattern
    Each protocol implements this interface with protocol-specific logic.

    Every call receives the cancellation event of the host's BMC endpoint.
    Implementations must check it before each request they send and raise
    BMCOperationCancelled once it is set.
    """

    def __init__(self, address: str, credentials: Credentials, verify_ssl: bool = False, timeout: float = 30):
        """
        Initialize adapter.

        Args:
            address: BMC address from the host spec
            credentials: Resolved BMC credentials
            verify_ssl: Verify the BMC TLS certificate
            timeout: Per-request timeout in seconds
        """
        self.address = address
        self.credentials = credentials
        self.verify_ssl = verify_ssl
        self.timeout = timeout

    @property
    @abstractmethod
    def protocol_name(self) -> str:
        """Return protocol name"""
        pass

    @abstractmethod
    def connect(self, cancel: threading.Event) -> None:
        """
        Verify the BMC is reachable and the credentials are accepted.

        Raises:
            BMCTransientError: BMC unreachable or timed out
            BMCPermanentError: Credentials rejected
        """
        pass

    @abstractmethod
    def inspect(self, cancel: threading.Event) -> Dict[str, Any]:
        """
        Collect the hardware inventory.

        Returns:
            Inventory document in the hardwareDetails layout
        """
        pass

    @abstractmethod
    def set_power(self, on: bool, force: bool, cancel: threading.Event) -> None:
        """
        Power the host on or off.

        Args:
            on: Target power state
            force: Hard power-off instead of a graceful shutdown
        """
        pass

    @abstractmethod
    def provision(self, image: Image, boot_mac_address: str, cancel: threading.Event) -> None:
        """Write the image and boot the host from it"""
        pass

    @abstractmethod
    def deprovision(self, cancel: threading.Event) -> None:
        """Remove the image and power the host off"""
        pass

    def disconnect(self) -> None:
        """Release any session held with the BMC"""
        pass

    @staticmethod
    def check_cancelled(cancel: Optional[threading.Event]) -> None:
        if cancel is not None and cancel.is_set():
            raise BMCOperationCancelled("BMC operation cancelled")
