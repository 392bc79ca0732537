from conftest import NAMESPACE, SECRET, make_host
from bmh_operator.services import CredentialResolver, CredentialStatus


def test_found(secrets):
    lookup = CredentialResolver(secrets).resolve(make_host())

    assert lookup.status is CredentialStatus.FOUND
    assert lookup.usable
    assert lookup.credentials.username == "admin"
    assert lookup.access.address == "fixture://host-0"
    assert lookup.access.secret_name == SECRET
    assert lookup.access.secret_namespace == NAMESPACE


def test_missing_address_is_not_configured(secrets):
    lookup = CredentialResolver(secrets).resolve(make_host(address=""))

    assert lookup.status is CredentialStatus.NOT_CONFIGURED
    assert lookup.absent
    assert "address" in lookup.message


def test_missing_credentials_name_is_not_configured(secrets):
    lookup = CredentialResolver(secrets).resolve(make_host(credentials_name=""))

    assert lookup.status is CredentialStatus.NOT_CONFIGURED
    assert "credentialsName" in lookup.message


def test_missing_secret_is_not_found(secrets):
    lookup = CredentialResolver(secrets).resolve(make_host(credentials_name="nope"))

    assert lookup.status is CredentialStatus.NOT_FOUND
    assert lookup.absent
    assert lookup.access is None


def test_secret_is_looked_up_in_host_namespace(secrets):
    secrets.put("other", "elsewhere", "admin", "password")

    lookup = CredentialResolver(secrets).resolve(make_host(credentials_name="elsewhere"))

    assert lookup.status is CredentialStatus.NOT_FOUND


def test_empty_username_is_invalid(secrets):
    secrets.put(NAMESPACE, "half", "", "password")

    lookup = CredentialResolver(secrets).resolve(make_host(credentials_name="half"))

    assert lookup.status is CredentialStatus.INVALID
    assert not lookup.usable
    assert not lookup.absent
    assert "username" in lookup.message


def test_secret_update_changes_access_version(secrets):
    resolver = CredentialResolver(secrets)
    before = resolver.resolve(make_host()).access

    secrets.put(NAMESPACE, SECRET, "admin", "password")
    after = resolver.resolve(make_host()).access

    assert before != after
    assert before.address == after.address
