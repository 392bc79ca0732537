import copy

import pytest

from conftest import HARDWARE_DETAILS
from bmh_operator.models import HardwareProvenance, HardwareSource
from bmh_operator.services import HardwareIngestor, HardwareValidationError


@pytest.fixture
def ingestor():
    return HardwareIngestor()


def test_override_document_kept_verbatim(ingestor):
    document = copy.deepcopy(HARDWARE_DETAILS)

    record = ingestor.ingest(document, HardwareSource.FROM_OVERRIDE)

    assert record.source is HardwareSource.FROM_OVERRIDE
    assert record.details == HARDWARE_DETAILS
    assert record.details is not document


def test_unknown_fields_survive(ingestor):
    document = dict(copy.deepcopy(HARDWARE_DETAILS), extra={"rack": "r12"})

    record = ingestor.ingest(document, HardwareSource.FROM_ADAPTER)

    assert record.details["extra"] == {"rack": "r12"}


def test_missing_section_rejected(ingestor):
    document = copy.deepcopy(HARDWARE_DETAILS)
    del document["systemVendor"]

    with pytest.raises(HardwareValidationError, match="systemVendor"):
        ingestor.ingest(document, HardwareSource.FROM_ADAPTER)


def test_wrong_type_rejected(ingestor):
    document = copy.deepcopy(HARDWARE_DETAILS)
    document["ramMebibytes"] = "a lot"

    with pytest.raises(HardwareValidationError, match="ramMebibytes"):
        ingestor.ingest(document, HardwareSource.FROM_OVERRIDE)


def test_non_object_rejected(ingestor):
    with pytest.raises(HardwareValidationError):
        ingestor.ingest(["not", "a", "dict"], HardwareSource.FROM_OVERRIDE)


def test_absent_source_refused(ingestor):
    with pytest.raises(ValueError):
        ingestor.ingest(HARDWARE_DETAILS, HardwareSource.ABSENT)


def test_provenance_never_mixes_source_and_absence():
    with pytest.raises(ValueError):
        HardwareProvenance(HardwareSource.FROM_ADAPTER, None)
    with pytest.raises(ValueError):
        HardwareProvenance(HardwareSource.ABSENT, {"hostname": "x"})
    assert not HardwareProvenance.absent().present


def test_summary_line(ingestor):
    summary = ingestor.summarize(HARDWARE_DETAILS)

    assert "localhost.localdomain" in summary
    assert "4096 MiB" in summary
    assert "1 disk(s)" in summary
