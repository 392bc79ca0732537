"""
Host Controller - the reconciliation control loop.

Runs on asyncio, the same way the dashboard ran its periodic rescan:
- a de-duplicating work queue of host keys
- a pool of worker tasks, each running one reconciliation in a thread
  (adapters do blocking HTTP)
- host and secret watches feeding the queue
- a periodic resync of every host
"""

import asyncio
import logging
import threading
from datetime import datetime
from typing import Callable, Dict, List, Optional, Set, Tuple

from ..adapters import BMCOperationCancelled
from ..models import Host, utcnow
from ..parsers import AnnotationParser
from ..repositories import AdapterFactory, ConflictError, HostNotFoundError, HostRepository, SecretStore
from .backoff import BackoffPolicy
from .bmc_endpoint import EndpointRegistry
from .credential_resolver import CredentialResolver
from .hardware_ingestor import HardwareIngestor
from .state_machine import HostStateMachine
from .status_reporter import StatusReporter

logger = logging.getLogger(__name__)

HostKey = Tuple[str, str]


class WorkQueue:
    """
    Queue of host keys to reconcile.

    A key is handed to at most one worker at a time. Adding a key that is
    already queued is a no-op; adding a key that is being processed marks
    it dirty so it is queued again when the worker calls done().
    """

    def __init__(self):
        self._queue: asyncio.Queue = asyncio.Queue()
        self._dirty: Set[HostKey] = set()
        self._processing: Set[HostKey] = set()
        self._timers: Dict[HostKey, asyncio.TimerHandle] = {}

    def add(self, key: HostKey) -> None:
        if key in self._dirty:
            return
        self._dirty.add(key)
        if key not in self._processing:
            self._queue.put_nowait(key)

    def add_after(self, key: HostKey, delay: float) -> None:
        """Add the key once ``delay`` seconds have passed; the earliest timer wins"""
        if delay <= 0:
            self.add(key)
            return
        loop = asyncio.get_running_loop()
        when = loop.time() + delay
        existing = self._timers.get(key)
        if existing is not None and not existing.cancelled() and existing.when() <= when:
            return
        if existing is not None:
            existing.cancel()
        self._timers[key] = loop.call_at(when, self._fire, key)

    async def get(self) -> HostKey:
        key = await self._queue.get()
        self._dirty.discard(key)
        self._processing.add(key)
        return key

    def done(self, key: HostKey) -> None:
        self._processing.discard(key)
        if key in self._dirty:
            self._queue.put_nowait(key)

    def is_processing(self, key: HostKey) -> bool:
        return key in self._processing

    def shutdown(self) -> None:
        for timer in self._timers.values():
            timer.cancel()
        self._timers.clear()

    @property
    def depth(self) -> int:
        return self._queue.qsize()

    @property
    def in_progress(self) -> int:
        return len(self._processing)

    def _fire(self, key: HostKey) -> None:
        self._timers.pop(key, None)
        self.add(key)


class HostController:
    """
    Wires the reconciliation pipeline and runs it.

    One reconciliation: load host, parse annotations, resolve credentials,
    run the state machine, commit the status.
    """

    def __init__(self, repository: HostRepository, secret_store: SecretStore, adapter_factory: AdapterFactory,
                 workers: int = 4, resync_interval: float = 600, backoff: Optional[BackoffPolicy] = None,
                 enable_watch: bool = True, clock: Callable[[], datetime] = utcnow):
        """
        Args:
            repository: Host persistence
            secret_store: BMC credential secrets
            adapter_factory: Creates BMC adapters by address scheme
            workers: Number of concurrent reconciliations
            resync_interval: Seconds between full resyncs
            backoff: Retry policy for failed operations and unexpected errors
            enable_watch: Subscribe to host and secret changes
            clock: Time source
        """
        self.repository = repository
        self.secret_store = secret_store
        self.workers = workers
        self.resync_interval = resync_interval
        self.enable_watch = enable_watch
        self.backoff = backoff or BackoffPolicy()

        self.engine = HostStateMachine(adapter_factory, HardwareIngestor(), self.backoff, clock)
        self.resolver = CredentialResolver(secret_store)
        self.reporter = StatusReporter(repository, clock)
        self.endpoints = EndpointRegistry()
        self.queue: Optional[WorkQueue] = None

        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._stop = threading.Event()
        self._tasks: List[asyncio.Task] = []
        self._failures: Dict[HostKey, int] = {}
        self.ready = False
        self.reconcile_count = 0
        self.error_count = 0
        self.last_resync: Optional[datetime] = None

    # ------------------------------------------------------------------
    # lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Start watches, the worker pool and the resync timer"""
        self._loop = asyncio.get_running_loop()
        self._stop.clear()
        self.queue = WorkQueue()

        if self.enable_watch:
            self.repository.start_watch(self._on_host_event, self._stop)
            self.secret_store.start_watch(self._on_secret_event, self._stop)

        await self.resync()

        for index in range(self.workers):
            self._tasks.append(asyncio.create_task(self._worker(index), name=f"reconcile-worker-{index}"))
        self._tasks.append(asyncio.create_task(self._periodic_resync(), name="resync"))
        self.ready = True
        logger.info(f"Controller started with {self.workers} workers (resync every {self.resync_interval}s)")

    async def stop(self) -> None:
        """Cancel in-flight BMC commands and stop all tasks"""
        logger.info("Controller stopping...")
        self.ready = False
        self._stop.set()
        self.endpoints.cancel_all()
        if self.queue is not None:
            self.queue.shutdown()
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()
        logger.info("Controller stopped")

    @property
    def healthy(self) -> bool:
        """True while every background task is alive"""
        return bool(self._tasks) and all(not task.done() for task in self._tasks)

    async def resync(self) -> int:
        """Enqueue every host; returns how many"""
        hosts = await asyncio.to_thread(self.repository.list)
        for host in hosts:
            self.queue.add(host.key)
        self.last_resync = utcnow()
        logger.debug(f"Resync queued {len(hosts)} host(s)")
        return len(hosts)

    # ------------------------------------------------------------------
    # reconciliation
    # ------------------------------------------------------------------

    def reconcile(self, key: HostKey) -> Optional[float]:
        """
        Reconcile one host (blocking).

        Returns:
            Seconds until the host should be reconciled again, None for no timer

        Raises:
            ConflictError: host changed while reconciling
            BMCOperationCancelled: host deleted or controller stopping mid-command
        """
        host = self.repository.get(*key)
        if host is None:
            logger.debug(f"Host {key[0]}/{key[1]} is gone")
            self.endpoints.discard(key)
            return None

        host = self.reporter.ensure_finalizer(host)
        overrides = AnnotationParser.parse(host.annotations)
        lookup = self.resolver.resolve(host)
        endpoint = self.endpoints.get(key)

        result = self.engine.reconcile(host, lookup, overrides, endpoint)
        self.reporter.commit(host, result)

        if result.allow_removal:
            self.endpoints.discard(key)
            return None
        return result.requeue_after

    async def _worker(self, index: int) -> None:
        logger.debug(f"Worker {index} started")
        while not self._stop.is_set():
            key = await self.queue.get()
            try:
                await self._process(key)
            finally:
                self.queue.done(key)

    async def _process(self, key: HostKey) -> None:
        name = f"{key[0]}/{key[1]}"
        try:
            requeue_after = await asyncio.to_thread(self.reconcile, key)
        except ConflictError as e:
            logger.debug(f"Conflict on {name}, reconciling again: {e}")
            self.queue.add(key)
            return
        except HostNotFoundError:
            logger.debug(f"Host {name} disappeared while reconciling")
            self.endpoints.discard(key)
            return
        except BMCOperationCancelled as e:
            if not self._stop.is_set():
                logger.info(f"BMC command for {name} cancelled: {e}")
                self.queue.add(key)
            return
        except Exception as e:
            failures = self._failures.get(key, 0) + 1
            self._failures[key] = failures
            self.error_count += 1
            delay = self.backoff.delay(failures)
            logger.error(f"Error reconciling {name} (retry in {delay:.0f}s): {e}", exc_info=True)
            self.queue.add_after(key, delay)
            return

        self._failures.pop(key, None)
        self.reconcile_count += 1
        if requeue_after is not None:
            self.queue.add_after(key, requeue_after)

    async def _periodic_resync(self) -> None:
        while not self._stop.is_set():
            await asyncio.sleep(self.resync_interval)
            try:
                await self.resync()
            except Exception as e:
                logger.error(f"Error in periodic resync: {e}", exc_info=True)

    # ------------------------------------------------------------------
    # watch callbacks (called from watch threads)
    # ------------------------------------------------------------------

    def _on_host_event(self, key: HostKey) -> None:
        self._cancel_if_deleted(key)
        self._enqueue_threadsafe(key)

    def _on_secret_event(self, secret_key: Tuple[str, str]) -> None:
        namespace, name = secret_key
        for host in self.repository.list():
            if self._uses_secret(host, namespace, name):
                logger.debug(f"Secret {namespace}/{name} changed, queueing {host.namespace}/{host.name}")
                self._enqueue_threadsafe(host.key)

    def _cancel_if_deleted(self, key: HostKey) -> None:
        """Abort the running BMC command of a host that was deleted"""
        endpoint = self.endpoints.peek(key)
        if endpoint is None or endpoint.in_flight is None:
            return
        host = self.repository.get(*key)
        if host is None or host.deleting:
            logger.info(f"Host {key[0]}/{key[1]} deleted, cancelling {endpoint.in_flight}")
            endpoint.cancel.set()

    def _enqueue_threadsafe(self, key: HostKey) -> None:
        if self._loop is None or self._loop.is_closed() or self._stop.is_set():
            return
        self._loop.call_soon_threadsafe(self.queue.add, key)

    @staticmethod
    def _uses_secret(host: Host, namespace: str, name: str) -> bool:
        return host.namespace == namespace and host.spec.bmc.credentials_name == name
