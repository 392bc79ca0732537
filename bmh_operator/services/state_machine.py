"""
State Machine Engine - computes the next status of a host.

Each call to reconcile() looks at the declared spec, the override
annotations, the resolved credentials and the status written by the
previous call. It performs at most one state transition, sends the BMC
commands that the current state needs, and returns the new status for the
Status Reporter to commit. A call with no new input sends no BMC command
and returns the status unchanged.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, FrozenSet, Optional

from ..adapters import BMCError, BMCOperationCancelled, BMCPermanentError
from ..models import (
    ErrorType,
    HardwareSource,
    Host,
    HostState,
    HostStatus,
    OperationalStatus,
    OperationKind,
    utcnow,
)
from ..parsers import DesiredOverrides, PowerOffMode
from ..repositories import AdapterFactory
from .backoff import BackoffPolicy
from .bmc_endpoint import BMCEndpoint
from .credential_resolver import CredentialLookup, CredentialStatus
from .hardware_ingestor import HardwareIngestor, HardwareValidationError

logger = logging.getLogger(__name__)

S = HostState

ALLOWED_TRANSITIONS: Dict[HostState, FrozenSet[HostState]] = {
    S.NONE: frozenset({S.UNMANAGED, S.REGISTERING, S.DELETING}),
    S.UNMANAGED: frozenset({S.REGISTERING, S.DELETING}),
    S.REGISTERING: frozenset({S.UNMANAGED, S.REGISTRATION_ERROR, S.INSPECTING, S.AVAILABLE,
                              S.PROVISIONED, S.DELETING}),
    S.REGISTRATION_ERROR: frozenset({S.UNMANAGED, S.REGISTERING, S.DELETING}),
    S.INSPECTING: frozenset({S.UNMANAGED, S.AVAILABLE, S.DELETING}),
    S.AVAILABLE: frozenset({S.UNMANAGED, S.REGISTERING, S.PROVISIONING, S.DELETING}),
    S.PROVISIONING: frozenset({S.UNMANAGED, S.PROVISIONED, S.DEPROVISIONING, S.DELETING}),
    S.PROVISIONED: frozenset({S.UNMANAGED, S.REGISTERING, S.DEPROVISIONING, S.DELETING}),
    S.DEPROVISIONING: frozenset({S.UNMANAGED, S.AVAILABLE, S.DELETING}),
    S.DELETING: frozenset(),
}

POWER_MANAGED_STATES = frozenset({S.AVAILABLE, S.PROVISIONED})

# Operation timestamps recorded when a state is entered
_STARTS_OPERATION = {
    S.REGISTERING: OperationKind.REGISTER,
    S.INSPECTING: OperationKind.INSPECT,
    S.PROVISIONING: OperationKind.PROVISION,
    S.DEPROVISIONING: OperationKind.DEPROVISION,
}

DELETE_WAIT_SECONDS = 5.0


class InvalidTransitionError(Exception):
    """A transition outside ALLOWED_TRANSITIONS was attempted"""


@dataclass(frozen=True)
class ReconcileResult:
    """
    Outcome of one reconciliation.

    Attributes:
        status: Status to commit
        requeue_after: Seconds until the host should be looked at again, None for no timer
        allow_removal: The host is deleting and its finalizer may be released
    """
    status: HostStatus
    requeue_after: Optional[float] = None
    allow_removal: bool = False


class HostStateMachine:
    """Lifecycle engine for one host per call; holds no per-host state"""

    def __init__(self, adapter_factory: AdapterFactory, ingestor: Optional[HardwareIngestor] = None,
                 backoff: Optional[BackoffPolicy] = None, clock: Callable[[], datetime] = utcnow):
        self.adapter_factory = adapter_factory
        self.ingestor = ingestor or HardwareIngestor()
        self.backoff = backoff or BackoffPolicy()
        self.clock = clock

    def reconcile(self, host: Host, lookup: CredentialLookup, overrides: DesiredOverrides,
                  endpoint: BMCEndpoint) -> ReconcileResult:
        """
        Compute the next status of a host.

        Raises:
            BMCOperationCancelled: the endpoint was cancelled mid-command
        """
        now = self.clock()
        status = host.status

        if host.deleting:
            return self._handle_deleting(host, status, endpoint, now)

        if overrides.paused:
            logger.debug(f"Host {self._name(host)} is paused")
            return ReconcileResult(status)

        if lookup.absent:
            if status.state is S.UNMANAGED:
                return ReconcileResult(status)
            logger.info(f"Host {self._name(host)}: {lookup.message}, leaving it unmanaged")
            status = self._transition(host, status, S.UNMANAGED, now).cleared_error()
            return ReconcileResult(status.with_changes(operational_status=OperationalStatus.DISCOVERED))

        handler = {
            S.NONE: self._handle_new,
            S.UNMANAGED: self._handle_new,
            S.REGISTERING: self._handle_registering,
            S.REGISTRATION_ERROR: self._handle_registration_error,
            S.INSPECTING: self._handle_inspecting,
            S.AVAILABLE: self._handle_available,
            S.PROVISIONING: self._handle_provisioning,
            S.PROVISIONED: self._handle_provisioned,
            S.DEPROVISIONING: self._handle_deprovisioning,
        }.get(status.state)

        if handler is None:
            # Deleting without a deletion request cannot make progress
            return ReconcileResult(status)
        return handler(host, status, lookup, overrides, endpoint, now)

    # ------------------------------------------------------------------
    # state handlers
    # ------------------------------------------------------------------

    def _handle_new(self, host, status, lookup, overrides, endpoint, now) -> ReconcileResult:
        status = self._transition(host, status, S.REGISTERING, now)
        return ReconcileResult(status.with_changes(operational_status=OperationalStatus.OK), requeue_after=0)

    def _handle_registering(self, host, status, lookup, overrides, endpoint, now) -> ReconcileResult:
        registered = (
            status.good_credentials == lookup.access
            and not status.operation_history.register.in_progress()
        )

        if not registered:
            status = status.with_changes(tried_credentials=lookup.access)
            if lookup.status is CredentialStatus.INVALID:
                return self._registration_failed(host, status, lookup.message, now, permanent=True)
            try:
                self._bmc(host, lookup, endpoint, "connect")
            except BMCOperationCancelled:
                raise
            except BMCError as e:
                return self._registration_failed(host, status, str(e), now,
                                                 permanent=isinstance(e, BMCPermanentError))
            logger.info(f"Host {self._name(host)}: registered with {endpoint.protocol} BMC {lookup.access.address}")
            status = status.cleared_error().with_changes(
                good_credentials=lookup.access,
                operation_history=status.operation_history.with_finished(OperationKind.REGISTER, now),
            )

        if overrides.inspection_disabled:
            try:
                override = self._override_record(overrides)
            except HardwareValidationError as e:
                return self._validation_failed(host, status, str(e))
            if override is not None:
                status = status.with_changes(hardware=override)

        if status.provisioned_image is not None:
            next_state = S.PROVISIONED
        elif overrides.inspection_disabled or status.hardware.present:
            next_state = S.AVAILABLE
        else:
            next_state = S.INSPECTING

        status = self._clear_error(status, ErrorType.VALIDATION_ERROR)
        return ReconcileResult(self._transition(host, status, next_state, now), requeue_after=0)

    def _handle_registration_error(self, host, status, lookup, overrides, endpoint, now) -> ReconcileResult:
        if lookup.access == status.tried_credentials:
            wait = self._remaining(status, now)
            if wait:
                return ReconcileResult(status, requeue_after=wait)
        else:
            logger.info(f"Host {self._name(host)}: BMC access changed, retrying registration")
        return ReconcileResult(self._transition(host, status, S.REGISTERING, now), requeue_after=0)

    def _handle_inspecting(self, host, status, lookup, overrides, endpoint, now) -> ReconcileResult:
        if overrides.inspection_disabled:
            try:
                override = self._override_record(overrides)
            except HardwareValidationError as e:
                return self._validation_failed(host, status, str(e))
            if override is not None:
                status = status.with_changes(hardware=override)
            logger.info(f"Host {self._name(host)}: inspection disabled, skipping")
            status = self._clear_error(self._clear_error(status, ErrorType.INSPECTION_ERROR), ErrorType.VALIDATION_ERROR)
            return ReconcileResult(self._transition(host, status, S.AVAILABLE, now), requeue_after=0)

        if status.error_type is ErrorType.INSPECTION_ERROR:
            wait = self._remaining(status, now)
            if wait:
                return ReconcileResult(status, requeue_after=wait)

        try:
            document = self._bmc(host, lookup, endpoint, "inspect")
            record = self.ingestor.ingest(document, HardwareSource.FROM_ADAPTER)
        except BMCOperationCancelled:
            raise
        except (BMCError, HardwareValidationError) as e:
            return self._failed(host, status, ErrorType.INSPECTION_ERROR, f"inspection failed: {e}", now,
                                permanent=isinstance(e, BMCPermanentError))

        logger.info(f"Host {self._name(host)}: inspected {self.ingestor.summarize(document)}")
        status = status.cleared_error().with_changes(
            hardware=record,
            operation_history=status.operation_history.with_finished(OperationKind.INSPECT, now),
        )
        return ReconcileResult(self._transition(host, status, S.AVAILABLE, now), requeue_after=0)

    def _handle_available(self, host, status, lookup, overrides, endpoint, now) -> ReconcileResult:
        if lookup.access != status.good_credentials:
            logger.info(f"Host {self._name(host)}: BMC access changed, registering again")
            return ReconcileResult(self._transition(host, status, S.REGISTERING, now), requeue_after=0)

        status = self._refresh_override(host, status, overrides)

        if host.spec.image is not None:
            logger.info(f"Host {self._name(host)}: provisioning {host.spec.image.url}")
            return ReconcileResult(self._transition(host, status, S.PROVISIONING, now), requeue_after=0)

        return self._converge_power(host, status, lookup, overrides, endpoint, now)

    def _handle_provisioning(self, host, status, lookup, overrides, endpoint, now) -> ReconcileResult:
        image = host.spec.image
        if image is None:
            logger.info(f"Host {self._name(host)}: image removed while provisioning")
            status = self._clear_error(status, ErrorType.PROVISIONING_ERROR)
            return ReconcileResult(self._transition(host, status, S.DEPROVISIONING, now), requeue_after=0)

        if status.error_type is ErrorType.PROVISIONING_ERROR:
            wait = self._remaining(status, now)
            if wait:
                return ReconcileResult(status, requeue_after=wait)

        try:
            self._bmc(host, lookup, endpoint, "provision", image, host.spec.boot_mac_address)
        except BMCOperationCancelled:
            raise
        except BMCError as e:
            return self._failed(host, status, ErrorType.PROVISIONING_ERROR, f"provisioning failed: {e}", now,
                                permanent=isinstance(e, BMCPermanentError))

        status = status.cleared_error().with_changes(
            provisioned_image=image,
            powered_on=True,
            operation_history=status.operation_history.with_finished(OperationKind.PROVISION, now),
        )
        return ReconcileResult(self._transition(host, status, S.PROVISIONED, now), requeue_after=0)

    def _handle_provisioned(self, host, status, lookup, overrides, endpoint, now) -> ReconcileResult:
        if lookup.access != status.good_credentials:
            logger.info(f"Host {self._name(host)}: BMC access changed, registering again")
            return ReconcileResult(self._transition(host, status, S.REGISTERING, now), requeue_after=0)

        if host.spec.image != status.provisioned_image:
            logger.info(f"Host {self._name(host)}: image changed, deprovisioning")
            return ReconcileResult(self._transition(host, status, S.DEPROVISIONING, now), requeue_after=0)

        status = self._refresh_override(host, status, overrides)
        return self._converge_power(host, status, lookup, overrides, endpoint, now)

    def _handle_deprovisioning(self, host, status, lookup, overrides, endpoint, now) -> ReconcileResult:
        if status.error_type is ErrorType.PROVISIONING_ERROR:
            wait = self._remaining(status, now)
            if wait:
                return ReconcileResult(status, requeue_after=wait)

        try:
            self._bmc(host, lookup, endpoint, "deprovision")
        except BMCOperationCancelled:
            raise
        except BMCError as e:
            return self._failed(host, status, ErrorType.PROVISIONING_ERROR, f"deprovisioning failed: {e}", now,
                                permanent=isinstance(e, BMCPermanentError))

        status = status.cleared_error().with_changes(
            provisioned_image=None,
            powered_on=False,
            operation_history=status.operation_history.with_finished(OperationKind.DEPROVISION, now),
        )
        return ReconcileResult(self._transition(host, status, S.AVAILABLE, now), requeue_after=0)

    def _handle_deleting(self, host, status, endpoint, now) -> ReconcileResult:
        if status.state is not S.DELETING:
            logger.info(f"Host {self._name(host)}: deletion requested")
            return ReconcileResult(self._transition(host, status, S.DELETING, now), requeue_after=0)

        endpoint.cancel.set()
        if not endpoint.wait_idle(timeout=DELETE_WAIT_SECONDS):
            logger.info(f"Host {self._name(host)}: waiting for BMC command {endpoint.in_flight} to stop")
            return ReconcileResult(status, requeue_after=DELETE_WAIT_SECONDS)
        endpoint.close()
        return ReconcileResult(status, allow_removal=True)

    # ------------------------------------------------------------------
    # power
    # ------------------------------------------------------------------

    def _converge_power(self, host, status, lookup, overrides, endpoint, now) -> ReconcileResult:
        """
        Drive the power state toward what spec and annotations ask for.

        A reboot request powers the host off once and is remembered by its
        annotation value; the next pass powers the host back on if it should
        be on. Power-off holds win over spec.online.
        """
        if status.state not in POWER_MANAGED_STATES:
            return ReconcileResult(status)

        reboot = overrides.reboot
        if reboot is None and status.last_reboot_request is not None:
            status = status.with_changes(last_reboot_request=None)

        if status.error_type is ErrorType.POWER_CONTROL_ERROR:
            wait = self._remaining(status, now)
            if wait:
                return ReconcileResult(status, requeue_after=wait)

        if reboot is not None and status.last_reboot_request != reboot.raw:
            if status.powered_on is not False:
                force = reboot.mode is PowerOffMode.HARD
                logger.info(f"Host {self._name(host)}: rebooting ({'hard' if force else 'soft'} power off)")
                try:
                    self._bmc(host, lookup, endpoint, "set_power", False, force)
                except BMCOperationCancelled:
                    raise
                except BMCError as e:
                    return self._power_failed(host, status, e, now)
            status = self._clear_error(status, ErrorType.POWER_CONTROL_ERROR)
            return ReconcileResult(
                status.with_changes(powered_on=False, last_reboot_request=reboot.raw),
                requeue_after=0,
            )

        desired = host.spec.online and not overrides.hold_power_off
        if status.powered_on == desired:
            return ReconcileResult(self._clear_error(status, ErrorType.POWER_CONTROL_ERROR))

        force = not desired and overrides.hold_power_off and overrides.power_off_mode is PowerOffMode.HARD
        logger.info(f"Host {self._name(host)}: powering {'on' if desired else 'off'}")
        try:
            self._bmc(host, lookup, endpoint, "set_power", desired, force)
        except BMCOperationCancelled:
            raise
        except BMCError as e:
            return self._power_failed(host, status, e, now)
        status = self._clear_error(status, ErrorType.POWER_CONTROL_ERROR)
        return ReconcileResult(status.with_changes(powered_on=desired))

    def _power_failed(self, host, status, error: BMCError, now) -> ReconcileResult:
        return self._failed(host, status, ErrorType.POWER_CONTROL_ERROR, f"power command failed: {error}", now,
                            permanent=isinstance(error, BMCPermanentError))

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------

    def _bmc(self, host: Host, lookup: CredentialLookup, endpoint: BMCEndpoint, operation: str, *args):
        adapter = endpoint.adapter_for(
            self.adapter_factory,
            lookup,
            disable_certificate_verification=host.spec.bmc.disable_certificate_verification
        )
        return endpoint.run(operation, getattr(adapter, operation), *args)

    def _transition(self, host: Host, status: HostStatus, target: HostState, now: datetime) -> HostStatus:
        if target not in ALLOWED_TRANSITIONS[status.state]:
            raise InvalidTransitionError(f"{status.state.name} -> {target.name}")
        logger.info(f"Host {self._name(host)}: {status.state.value or '<new>'} -> {target.value}")
        history = status.operation_history
        kind = _STARTS_OPERATION.get(target)
        if kind is not None:
            history = history.with_started(kind, now)
        return status.with_changes(state=target, operation_history=history)

    def _override_record(self, overrides: DesiredOverrides):
        """Inventory from the override annotation, None when there is none"""
        if not overrides.inspection_disabled or not overrides.has_hardware_override:
            return None
        if overrides.hardware_override_error:
            raise HardwareValidationError(overrides.hardware_override_error)
        return self.ingestor.ingest(overrides.hardware_override, HardwareSource.FROM_OVERRIDE)

    def _refresh_override(self, host: Host, status: HostStatus, overrides: DesiredOverrides) -> HostStatus:
        """Replace the inventory when inspection is disabled and the override changed"""
        try:
            override = self._override_record(overrides)
        except HardwareValidationError as e:
            logger.warning(f"Host {self._name(host)}: {e}")
            if status.error_type not in (None, ErrorType.VALIDATION_ERROR):
                # a pending retryable error keeps its backoff schedule
                return status
            return self._with_error(status, ErrorType.VALIDATION_ERROR, str(e))
        status = self._clear_error(status, ErrorType.VALIDATION_ERROR)
        if override is not None and override != status.hardware:
            logger.info(f"Host {self._name(host)}: hardware details replaced from annotation")
            status = status.with_changes(hardware=override)
        return status

    def _registration_failed(self, host, status, message, now, permanent=False) -> ReconcileResult:
        logger.warning(f"Host {self._name(host)}: registration failed: {message}")
        failed = self._failed(host, status, ErrorType.REGISTRATION_ERROR, message, now, permanent)
        return ReconcileResult(
            self._transition(host, failed.status, S.REGISTRATION_ERROR, now),
            requeue_after=failed.requeue_after,
        )

    def _validation_failed(self, host, status, message) -> ReconcileResult:
        """Reported without retry; a new annotation value triggers the next attempt"""
        logger.warning(f"Host {self._name(host)}: {message}")
        return ReconcileResult(self._with_error(status, ErrorType.VALIDATION_ERROR, message))

    def _failed(self, host, status, error_type: ErrorType, message: str, now: datetime,
                permanent: bool = False) -> ReconcileResult:
        count = status.error_count + 1
        retry_at = self.backoff.next_retry_at(now, count, permanent=permanent)
        logger.warning(
            f"Host {self._name(host)}: {error_type.value} #{count}: {message} "
            f"(retry in {(retry_at - now).total_seconds():.0f}s)"
        )
        status = status.with_changes(
            error_type=error_type,
            error_message=message,
            error_count=count,
            next_retry_at=retry_at,
            operational_status=OperationalStatus.ERROR,
        )
        return ReconcileResult(status, requeue_after=(retry_at - now).total_seconds())

    @staticmethod
    def _with_error(status: HostStatus, error_type: ErrorType, message: str) -> HostStatus:
        return status.with_changes(
            error_type=error_type,
            error_message=message,
            operational_status=OperationalStatus.ERROR,
        )

    @staticmethod
    def _clear_error(status: HostStatus, error_type: ErrorType) -> HostStatus:
        if status.error_type is error_type:
            return status.cleared_error()
        return status

    @staticmethod
    def _remaining(status: HostStatus, now: datetime) -> Optional[float]:
        if status.next_retry_at is None or status.next_retry_at <= now:
            return None
        return (status.next_retry_at - now).total_seconds()

    @staticmethod
    def _name(host: Host) -> str:
        return f"{host.namespace}/{host.name}"
