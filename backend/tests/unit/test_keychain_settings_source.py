"""Tests for KeychainSettingsSource integration in config.py."""

import os
from unittest.mock import patch

import pytest
from pydantic import ValidationError

from config import KeychainSettingsSource, Settings
from services.credential_manager import CREDENTIAL_KEYS

# Environment variables that would interfere with Settings defaults if
# set in the test runner's shell.  We clear them for isolation.
_ENV_VARS_TO_CLEAR = {
    "DATABASE_URL",
    "ENVIRONMENT",
    "DEBUG",
    "LOG_LEVEL",
    "LDAP_HOST",
    "SYNC_INTERVAL_MINUTES",
    "SYNC_DRY_RUN",
    "SYNC_DELETE_USERS",
    *CREDENTIAL_KEYS,
}


def _clean_env():
    """Return a dict suitable for ``os.environ`` patching that removes
    any variables the Settings class reads."""
    return {k: v for k, v in os.environ.items() if k not in _ENV_VARS_TO_CLEAR}


class TestKeychainSettingsSource:
    """Test the KeychainSettingsSource pydantic-settings source."""

    def test_keychain_value_overrides_default(self):
        with (
            patch.dict(os.environ, _clean_env(), clear=True),
            patch("config.get_credential") as mock_get,
        ):
            mock_get.side_effect = lambda key: (
                "keychain-value" if key == "LDAP_BIND_PASSWORD" else None
            )
            s = Settings(_env_file=None)
            assert s.LDAP_BIND_PASSWORD == "keychain-value"
            assert s.AUTHENTIK_TOKEN == ""

    def test_init_value_overrides_keychain(self):
        with (
            patch.dict(os.environ, _clean_env(), clear=True),
            patch("config.get_credential", return_value="keychain-value"),
        ):
            s = Settings(_env_file=None, AUTHENTIK_TOKEN="init-value")
            assert s.AUTHENTIK_TOKEN == "init-value"

    def test_non_credential_fields_skip_keychain(self):
        with (
            patch.dict(os.environ, _clean_env(), clear=True),
            patch("config.get_credential") as mock_get,
        ):
            mock_get.return_value = "should-not-be-used"
            s = Settings(_env_file=None)
            assert s.DATABASE_URL == "sqlite:///./directory_sync.db"
            assert s.LDAP_HOST == "localhost"
            called_keys = {call.args[0] for call in mock_get.call_args_list}
            assert called_keys == set(CREDENTIAL_KEYS)

    def test_keychain_overrides_env_var(self):
        env = _clean_env()
        env["AUTHENTIK_TOKEN"] = "from-env"
        with (
            patch.dict(os.environ, env, clear=True),
            patch("config.get_credential") as mock_get,
        ):
            mock_get.side_effect = lambda key: (
                "from-keychain" if key == "AUTHENTIK_TOKEN" else None
            )
            s = Settings(_env_file=None)
            assert s.AUTHENTIK_TOKEN == "from-keychain"

    def test_env_fallback_when_keychain_empty(self):
        env = _clean_env()
        env["AUTHENTIK_TOKEN"] = "from-env"
        with (
            patch.dict(os.environ, env, clear=True),
            patch("config.get_credential", return_value=None),
        ):
            s = Settings(_env_file=None)
            assert s.AUTHENTIK_TOKEN == "from-env"

    def test_source_is_in_priority_chain(self):
        sources = Settings.settings_customise_sources(
            Settings,
            init_settings=object(),
            env_settings=object(),
            dotenv_settings=object(),
            file_secret_settings=object(),
        )
        source_types = [type(s) for s in sources]
        assert source_types.index(KeychainSettingsSource) == 1


class TestSyncSettings:
    def test_defaults(self):
        with (
            patch.dict(os.environ, _clean_env(), clear=True),
            patch("config.get_credential", return_value=None),
        ):
            s = Settings(_env_file=None)
        assert s.SYNC_INTERVAL_MINUTES == 5
        assert s.SYNC_DRY_RUN is False
        assert s.SYNC_DELETE_USERS is False
        assert s.SYNC_ATTRIBUTE_MAPPING["phone"] == "telephoneNumber"

    def test_env_overrides(self):
        env = _clean_env()
        env.update({"SYNC_DRY_RUN": "true", "SYNC_INTERVAL_MINUTES": "15"})
        with (
            patch.dict(os.environ, env, clear=True),
            patch("config.get_credential", return_value=None),
        ):
            s = Settings(_env_file=None)
        assert s.SYNC_DRY_RUN is True
        assert s.SYNC_INTERVAL_MINUTES == 15

    def test_rejects_non_positive_interval(self):
        with (
            patch.dict(os.environ, _clean_env(), clear=True),
            patch("config.get_credential", return_value=None),
            pytest.raises(ValidationError, match="SYNC_INTERVAL_MINUTES"),
        ):
            Settings(_env_file=None, SYNC_INTERVAL_MINUTES=0)
