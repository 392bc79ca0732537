"""
Host persistence interface and the in-memory implementation.

Writes are guarded by the resource version read with the host: a stale
write raises ConflictError instead of overwriting newer data.
"""

import logging
import threading
from abc import ABC, abstractmethod
from typing import Callable, Dict, List, Optional, Tuple

from ..models import FINALIZER, Host, HostSpec, HostStatus, utcnow

logger = logging.getLogger(__name__)

HostKey = Tuple[str, str]
HostCallback = Callable[[HostKey], None]


class ConflictError(Exception):
    """The host changed since it was read"""


class HostNotFoundError(Exception):
    """The host no longer exists"""


class HostRepository(ABC):
    """Read/write access to host resources"""

    @abstractmethod
    def get(self, namespace: str, name: str) -> Optional[Host]:
        pass

    @abstractmethod
    def list(self) -> List[Host]:
        pass

    @abstractmethod
    def update_status(self, host: Host, status: HostStatus) -> Host:
        """
        Replace the whole status of the host in one write.

        Raises:
            ConflictError: host.resource_version is stale
            HostNotFoundError: host was removed meanwhile
        """
        pass

    @abstractmethod
    def add_finalizer(self, host: Host) -> Host:
        pass

    @abstractmethod
    def remove_finalizer(self, host: Host) -> None:
        """Release the controller finalizer so a deleted host can go away"""
        pass

    @abstractmethod
    def start_watch(self, callback: HostCallback, stop: threading.Event) -> None:
        """Call callback with the host key on every external change until stop is set"""
        pass


class InMemoryHostRepository(HostRepository):
    """
    Thread-safe dictionary-backed repository.

    Besides the controller-facing API it exposes the operations an external
    actor performs (create, edit spec, annotate, delete).
    """

    def __init__(self):
        self._hosts: Dict[HostKey, Host] = {}
        self._version = 0
        self._lock = threading.RLock()
        self._listeners: List[HostCallback] = []

    # ------------------------------------------------------------------
    # controller API
    # ------------------------------------------------------------------

    def get(self, namespace: str, name: str) -> Optional[Host]:
        with self._lock:
            host = self._hosts.get((namespace, name))
            return host.copy() if host else None

    def list(self) -> List[Host]:
        with self._lock:
            return [host.copy() for host in self._hosts.values()]

    def update_status(self, host: Host, status: HostStatus) -> Host:
        with self._lock:
            current = self._current(host)
            current.status = status
            self._bump(current)
            return current.copy()

    def add_finalizer(self, host: Host) -> Host:
        with self._lock:
            current = self._current(host)
            if FINALIZER not in current.finalizers:
                current.finalizers.append(FINALIZER)
                self._bump(current)
            return current.copy()

    def remove_finalizer(self, host: Host) -> None:
        with self._lock:
            current = self._current(host)
            if FINALIZER in current.finalizers:
                current.finalizers.remove(FINALIZER)
                self._bump(current)
            if current.deleting and not current.finalizers:
                del self._hosts[current.key]
                logger.info(f"Host {current.namespace}/{current.name} removed")

    def start_watch(self, callback: HostCallback, stop: threading.Event) -> None:
        with self._lock:
            self._listeners.append(callback)

    # ------------------------------------------------------------------
    # external actor API
    # ------------------------------------------------------------------

    def create(self, host: Host) -> Host:
        with self._lock:
            if host.key in self._hosts:
                raise ValueError(f"Host {host.namespace}/{host.name} already exists")
            stored = host.copy()
            self._hosts[stored.key] = stored
            self._bump(stored)
            created = stored.copy()
        self._notify(created.key)
        return created

    def update_spec(self, namespace: str, name: str, spec: HostSpec) -> Host:
        with self._lock:
            current = self._require(namespace, name)
            current.spec = spec
            self._bump(current)
            updated = current.copy()
        self._notify(updated.key)
        return updated

    def set_annotation(self, namespace: str, name: str, key: str, value: Optional[str]) -> Host:
        """Set an annotation, or remove it when value is None"""
        with self._lock:
            current = self._require(namespace, name)
            if value is None:
                current.annotations.pop(key, None)
            else:
                current.annotations[key] = value
            self._bump(current)
            updated = current.copy()
        self._notify(updated.key)
        return updated

    def delete(self, namespace: str, name: str) -> None:
        with self._lock:
            current = self._require(namespace, name)
            if current.finalizers:
                if not current.deleting:
                    current.deletion_timestamp = utcnow()
                    self._bump(current)
            else:
                del self._hosts[current.key]
        self._notify((namespace, name))

    # ------------------------------------------------------------------

    def _require(self, namespace: str, name: str) -> Host:
        current = self._hosts.get((namespace, name))
        if current is None:
            raise HostNotFoundError(f"Host {namespace}/{name} not found")
        return current

    def _current(self, host: Host) -> Host:
        current = self._require(host.namespace, host.name)
        if current.resource_version != host.resource_version:
            raise ConflictError(
                f"Host {host.namespace}/{host.name} changed "
                f"(have {host.resource_version}, stored {current.resource_version})"
            )
        return current

    def _bump(self, host: Host) -> None:
        self._version += 1
        host.resource_version = str(self._version)

    def _notify(self, key: HostKey) -> None:
        for callback in list(self._listeners):
            callback(key)
