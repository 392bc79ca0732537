"""
Status Reporter - the only writer of host status.
"""

import logging
from datetime import datetime
from typing import Callable

from ..models import FINALIZER, Host, utcnow
from ..repositories import HostRepository
from .state_machine import ReconcileResult

logger = logging.getLogger(__name__)


class StatusReporter:
    """
    Commits reconciliation results.

    The whole status is written in one call guarded by the resource version
    read with the host, so a stale write raises ConflictError and nothing is
    partially applied.
    """

    def __init__(self, repository: HostRepository, clock: Callable[[], datetime] = utcnow):
        self.repository = repository
        self.clock = clock

    def ensure_finalizer(self, host: Host) -> Host:
        """Add the controller finalizer on first sight of a live host"""
        if host.deleting or FINALIZER in host.finalizers:
            return host
        logger.debug(f"Adding finalizer to {host.namespace}/{host.name}")
        return self.repository.add_finalizer(host)

    def commit(self, host: Host, result: ReconcileResult) -> bool:
        """
        Persist the status computed for ``host``.

        Args:
            host: Host as read before reconciling
            result: Engine output

        Returns:
            True when something was written

        Raises:
            ConflictError: host changed since it was read
            HostNotFoundError: host disappeared
        """
        written = False
        if not result.status.same_as(host.status):
            status = result.status.with_changes(last_updated=self.clock())
            host = self.repository.update_status(host, status)
            written = True
            logger.debug(f"Committed status of {host.namespace}/{host.name}: {status.state.value}")

        if result.allow_removal:
            logger.info(f"Releasing finalizer of {host.namespace}/{host.name}")
            self.repository.remove_finalizer(host)
            written = True
        return written
