"""
Parser utilities for extracting structured data from host annotations.
"""

from .annotation_parser import (
    HARDWARE_DETAILS_ANNOTATION,
    INSPECT_ANNOTATION_PREFIX,
    PAUSED_ANNOTATION,
    POWER_OFF_ANNOTATION,
    REBOOT_ANNOTATION_PREFIX,
    AnnotationParser,
    DesiredOverrides,
    PowerOffMode,
    RebootRequest,
)

__all__ = [
    'HARDWARE_DETAILS_ANNOTATION',
    'INSPECT_ANNOTATION_PREFIX',
    'PAUSED_ANNOTATION',
    'POWER_OFF_ANNOTATION',
    'REBOOT_ANNOTATION_PREFIX',
    'AnnotationParser',
    'DesiredOverrides',
    'PowerOffMode',
    'RebootRequest',
]
