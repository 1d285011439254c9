"""Tests for services.credential_manager."""

from unittest.mock import patch

import pytest

from services.credential_manager import (
    CREDENTIAL_KEYS,
    SERVICE_NAME,
    delete_credential,
    get_credential,
    list_credentials,
    set_credential,
)


@pytest.fixture
def mock_keyring():
    with patch("services.credential_manager.keyring") as mock:
        yield mock


# ---------------------------------------------------------------------------
# get_credential
# ---------------------------------------------------------------------------


class TestGetCredential:
    def test_returns_value(self, mock_keyring):
        mock_keyring.get_password.return_value = "secret123"

        result = get_credential("LDAP_BIND_PASSWORD")

        assert result == "secret123"
        mock_keyring.get_password.assert_called_once_with(SERVICE_NAME, "LDAP_BIND_PASSWORD")

    def test_returns_none_when_not_found(self, mock_keyring):
        mock_keyring.get_password.return_value = None
        assert get_credential("LDAP_BIND_PASSWORD") is None

    def test_returns_none_on_keyring_exception(self, mock_keyring):
        mock_keyring.get_password.side_effect = Exception("no backend")
        assert get_credential("LDAP_BIND_PASSWORD") is None


# ---------------------------------------------------------------------------
# set_credential
# ---------------------------------------------------------------------------


class TestSetCredential:
    def test_stores_value(self, mock_keyring):
        assert set_credential("AUTHENTIK_TOKEN", "tok") is True
        mock_keyring.set_password.assert_called_once_with(SERVICE_NAME, "AUTHENTIK_TOKEN", "tok")

    def test_rejects_non_credential_key(self, mock_keyring):
        assert set_credential("LDAP_HOST", "ldap.example.com") is False
        mock_keyring.set_password.assert_not_called()

    def test_rejects_empty_value(self, mock_keyring):
        assert set_credential("AUTHENTIK_TOKEN", "") is False
        assert set_credential("AUTHENTIK_TOKEN", "   ") is False
        mock_keyring.set_password.assert_not_called()

    def test_returns_false_on_keyring_exception(self, mock_keyring):
        mock_keyring.set_password.side_effect = Exception("locked")
        assert set_credential("AUTHENTIK_TOKEN", "tok") is False


# ---------------------------------------------------------------------------
# delete_credential
# ---------------------------------------------------------------------------


class TestDeleteCredential:
    def test_deletes_value(self, mock_keyring):
        assert delete_credential("AUTHENTIK_TOKEN") is True
        mock_keyring.delete_password.assert_called_once_with(SERVICE_NAME, "AUTHENTIK_TOKEN")

    def test_rejects_non_credential_key(self, mock_keyring):
        assert delete_credential("DATABASE_URL") is False
        mock_keyring.delete_password.assert_not_called()

    def test_returns_false_on_keyring_exception(self, mock_keyring):
        mock_keyring.delete_password.side_effect = Exception("not found")
        assert delete_credential("AUTHENTIK_TOKEN") is False


# ---------------------------------------------------------------------------
# list_credentials
# ---------------------------------------------------------------------------


class TestListCredentials:
    def test_lists_stored_credentials(self, mock_keyring):
        mock_keyring.get_password.side_effect = lambda service, key: {"AUTHENTIK_TOKEN": "tok"}.get(key)

        assert list_credentials() == {"AUTHENTIK_TOKEN": "tok"}

    def test_returns_empty_when_nothing_stored(self, mock_keyring):
        mock_keyring.get_password.return_value = None
        assert list_credentials() == {}


class TestCredentialKeys:
    def test_contains_only_secrets(self):
        assert CREDENTIAL_KEYS == {"AUTHENTIK_TOKEN", "LDAP_BIND_PASSWORD"}
        assert "LDAP_BIND_DN" not in CREDENTIAL_KEYS
        assert "DATABASE_URL" not in CREDENTIAL_KEYS

    def test_is_frozen(self):
        assert isinstance(CREDENTIAL_KEYS, frozenset)
