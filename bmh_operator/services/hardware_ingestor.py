"""
Hardware Inventory Ingestor.

Validates an inventory document and wraps it in a provenance-tagged record.
The document itself is kept verbatim; validation never rewrites it.
"""

import logging
from typing import Any, Dict

from pydantic import ValidationError

from ..models import HardwareDetails, HardwareProvenance, HardwareSource

logger = logging.getLogger(__name__)


class HardwareValidationError(Exception):
    """Inventory document does not match the hardwareDetails schema"""


class HardwareIngestor:
    """Turns adapter inventory or an override document into a committed record"""

    def ingest(self, document: Any, source: HardwareSource) -> HardwareProvenance:
        """
        Validate and tag an inventory document.

        Args:
            document: Parsed inventory (adapter result or annotation value)
            source: FROM_ADAPTER or FROM_OVERRIDE

        Returns:
            Complete HardwareProvenance record

        Raises:
            HardwareValidationError: If the document is malformed
        """
        if source is HardwareSource.ABSENT:
            raise ValueError("Cannot ingest inventory without a source")

        self.validate(document)
        if source is HardwareSource.FROM_OVERRIDE:
            record = HardwareProvenance.from_override(document)
        else:
            record = HardwareProvenance.from_adapter(document)
        logger.debug(f"Ingested hardware details from {source.value}: {document.get('hostname')}")
        return record

    @staticmethod
    def validate(document: Any) -> None:
        if not isinstance(document, dict):
            raise HardwareValidationError("hardware details must be a JSON object")
        try:
            HardwareDetails.model_validate(document)
        except ValidationError as e:
            problems = "; ".join(
                f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}" for error in e.errors()
            )
            raise HardwareValidationError(f"invalid hardware details: {problems}") from e

    @staticmethod
    def summarize(document: Dict[str, Any]) -> str:
        """One-line description for logs"""
        cpu = document.get("cpu") or {}
        return (
            f"{document.get('hostname', '?')}: {cpu.get('count', '?')}x {cpu.get('model', '?')}, "
            f"{document.get('ramMebibytes', '?')} MiB RAM, {len(document.get('storage') or [])} disk(s)"
        )
