"""
Secret store interface and the in-memory implementation.
"""

import logging
import threading
from abc import ABC, abstractmethod
from typing import Callable, Dict, List, Optional, Tuple

from ..models import Credentials

logger = logging.getLogger(__name__)

SecretKey = Tuple[str, str]
SecretCallback = Callable[[SecretKey], None]


class SecretStore(ABC):
    """Read access to BMC credential secrets"""

    @abstractmethod
    def lookup(self, name: str, namespace: str) -> Optional[Credentials]:
        """
        Read a secret.

        Returns:
            Credentials (possibly with empty fields) or None when the secret does not exist
        """
        pass

    @abstractmethod
    def start_watch(self, callback: SecretCallback, stop: threading.Event) -> None:
        """Call callback with (namespace, name) whenever a secret changes"""
        pass


class InMemorySecretStore(SecretStore):
    """Dictionary-backed secret store"""

    def __init__(self):
        self._secrets: Dict[SecretKey, Credentials] = {}
        self._version = 0
        self._lock = threading.Lock()
        self._listeners: List[SecretCallback] = []

    def lookup(self, name: str, namespace: str) -> Optional[Credentials]:
        with self._lock:
            return self._secrets.get((namespace, name))

    def start_watch(self, callback: SecretCallback, stop: threading.Event) -> None:
        with self._lock:
            self._listeners.append(callback)

    def put(self, namespace: str, name: str, username: str, password: str) -> Credentials:
        with self._lock:
            self._version += 1
            credentials = Credentials(username=username, password=password, version=str(self._version))
            self._secrets[(namespace, name)] = credentials
        self._notify((namespace, name))
        return credentials

    def delete(self, namespace: str, name: str) -> None:
        with self._lock:
            self._secrets.pop((namespace, name), None)
        self._notify((namespace, name))

    def _notify(self, key: SecretKey) -> None:
        for callback in list(self._listeners):
            callback(key)
