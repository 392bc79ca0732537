"""
Annotation parser for turning operator annotations into a desired override.

Recognized annotations:
- inspect.metal3.io                   presence disables inspection, whatever the value
- inspect.metal3.io/hardwaredetails   JSON inventory used instead of inspection
- reboot.metal3.io                    reboot request, optional {"force": bool}
- reboot.metal3.io/<suffix>           hold the host powered off while present
- baremetalhost.metal3.io/paused      skip reconciliation while present

The parser only reads annotations. It is re-run on every reconciliation,
so removing an annotation simply yields an override without it.
"""

import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Tuple

logger = logging.getLogger(__name__)

INSPECT_ANNOTATION_PREFIX = "inspect.metal3.io"
HARDWARE_DETAILS_ANNOTATION = INSPECT_ANNOTATION_PREFIX + "/hardwaredetails"
REBOOT_ANNOTATION_PREFIX = "reboot.metal3.io"
POWER_OFF_ANNOTATION = REBOOT_ANNOTATION_PREFIX + "/poweroff"
PAUSED_ANNOTATION = "baremetalhost.metal3.io/paused"


class PowerOffMode(Enum):
    SOFT = "soft"
    HARD = "hard"


@dataclass(frozen=True)
class RebootRequest:
    """
    A pending reboot.

    Attributes:
        raw: Annotation value as set by the operator, used to recognize a
            request that was already carried out
        mode: How to power off before powering back on
    """
    raw: str
    mode: PowerOffMode = PowerOffMode.SOFT


@dataclass(frozen=True)
class DesiredOverrides:
    """Normalized view of every override annotation on one host"""
    inspection_disabled: bool = False
    hardware_override: Optional[Dict[str, Any]] = None
    hardware_override_error: Optional[str] = None
    reboot: Optional[RebootRequest] = None
    power_off_holds: Tuple[str, ...] = ()
    power_off_mode: PowerOffMode = PowerOffMode.SOFT
    paused: bool = False

    @property
    def hold_power_off(self) -> bool:
        return bool(self.power_off_holds)

    @property
    def has_hardware_override(self) -> bool:
        return self.hardware_override is not None or self.hardware_override_error is not None


class AnnotationParser:
    """
    Parser for the operator-facing annotations of a host.

    Implements the business logic:
    - presence of a key is what requests an action
    - reboot/power-off values only select soft or hard power-off; a value
      that is not valid JSON still counts as a request and falls back to soft
    - a hardware-details value that is not a JSON object is reported as an error
    """

    @classmethod
    def parse(cls, annotations: Optional[Mapping[str, str]]) -> DesiredOverrides:
        """
        Build the desired override for one host.

        Args:
            annotations: Host annotations (never modified)

        Returns:
            DesiredOverrides value
        """
        annotations = annotations or {}

        hardware_override, hardware_error = None, None
        if HARDWARE_DETAILS_ANNOTATION in annotations:
            hardware_override, hardware_error = cls.parse_hardware_details(annotations[HARDWARE_DETAILS_ANNOTATION])

        reboot = None
        if REBOOT_ANNOTATION_PREFIX in annotations:
            value = annotations[REBOOT_ANNOTATION_PREFIX] or ""
            reboot = RebootRequest(raw=value, mode=cls.parse_power_off_mode(REBOOT_ANNOTATION_PREFIX, value))

        holds = []
        hold_mode = PowerOffMode.SOFT
        for key in sorted(annotations):
            if cls.is_power_off_key(key):
                holds.append(key)
                if cls.parse_power_off_mode(key, annotations[key] or "") is PowerOffMode.HARD:
                    hold_mode = PowerOffMode.HARD

        return DesiredOverrides(
            inspection_disabled=INSPECT_ANNOTATION_PREFIX in annotations,
            hardware_override=hardware_override,
            hardware_override_error=hardware_error,
            reboot=reboot,
            power_off_holds=tuple(holds),
            power_off_mode=hold_mode,
            paused=PAUSED_ANNOTATION in annotations,
        )

    @classmethod
    def is_power_off_key(cls, key: str) -> bool:
        """reboot.metal3.io/<anything> holds the host off until removed"""
        prefix = REBOOT_ANNOTATION_PREFIX + "/"
        return key.startswith(prefix) and len(key) > len(prefix)

    @classmethod
    def parse_power_off_mode(cls, key: str, value: str) -> PowerOffMode:
        """
        Read {"force": bool} from a reboot or power-off annotation value.

        Args:
            key: Annotation key (for logging)
            value: Annotation value, empty means soft

        Returns:
            PowerOffMode, SOFT when the value is empty or unreadable
        """
        if not value.strip():
            return PowerOffMode.SOFT
        try:
            options = json.loads(value)
        except ValueError:
            logger.warning(f"Ignoring unreadable value of annotation {key}: {value!r}")
            return PowerOffMode.SOFT
        if not isinstance(options, dict):
            logger.warning(f"Ignoring non-object value of annotation {key}: {value!r}")
            return PowerOffMode.SOFT
        return PowerOffMode.HARD if options.get("force") is True else PowerOffMode.SOFT

    @classmethod
    def parse_hardware_details(cls, value: str) -> Tuple[Optional[Dict[str, Any]], Optional[str]]:
        """
        Decode the hardware-details override.

        Returns:
            Tuple of (document, error); exactly one of them is None
        """
        try:
            document = json.loads(value)
        except ValueError as e:
            return None, f"{HARDWARE_DETAILS_ANNOTATION} is not valid JSON: {e}"
        if not isinstance(document, dict):
            return None, f"{HARDWARE_DETAILS_ANNOTATION} must hold a JSON object"
        return document, None
