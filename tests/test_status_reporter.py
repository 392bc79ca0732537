from unittest.mock import MagicMock

import pytest

from conftest import NAMESPACE, make_host
from bmh_operator.models import FINALIZER, HostState, HostStatus
from bmh_operator.repositories import ConflictError
from bmh_operator.services import ReconcileResult, StatusReporter


@pytest.fixture
def reporter(repo, clock):
    return StatusReporter(repo, clock)


def test_finalizer_added_once(repo, reporter):
    host = reporter.ensure_finalizer(repo.create(make_host()))

    assert host.finalizers == [FINALIZER]
    assert reporter.ensure_finalizer(host) is host


def test_commit_writes_status_with_timestamp(repo, reporter, clock):
    host = repo.create(make_host())

    assert reporter.commit(host, ReconcileResult(HostStatus(state=HostState.REGISTERING)))

    status = repo.get(NAMESPACE, "host-0").status
    assert status.state is HostState.REGISTERING
    assert status.last_updated == clock.now


def test_unchanged_status_is_not_written():
    repository = MagicMock()
    host = make_host()

    written = StatusReporter(repository).commit(host, ReconcileResult(host.status))

    assert not written
    repository.update_status.assert_not_called()


def test_conflict_propagates(repo, reporter):
    host = repo.create(make_host())
    repo.set_annotation(NAMESPACE, "host-0", "example.com/x", "1")

    with pytest.raises(ConflictError):
        reporter.commit(host, ReconcileResult(HostStatus(state=HostState.REGISTERING)))


def test_removal_releases_finalizer(repo, reporter):
    host = reporter.ensure_finalizer(repo.create(make_host()))
    repo.delete(NAMESPACE, "host-0")
    host = repo.get(NAMESPACE, "host-0")

    reporter.commit(host, ReconcileResult(host.status, allow_removal=True))

    assert repo.get(NAMESPACE, "host-0") is None
