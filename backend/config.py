"""Application configuration using pydantic-settings."""

from typing import Any

from pydantic import field_validator
from pydantic.fields import FieldInfo
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict

from services.credential_manager import CREDENTIAL_KEYS, get_credential


class KeychainSettingsSource(PydanticBaseSettingsSource):
    """Load credential fields from the OS keychain via ``keyring``.

    Only fields whose uppercase name appears in
    :data:`~services.credential_manager.CREDENTIAL_KEYS` are looked up.
    All other fields return ``None`` so the next source in the chain
    handles them.
    """

    def get_field_value(
        self, field: FieldInfo, field_name: str
    ) -> tuple[Any, str, bool]:
        env_name = field_name.upper()
        if env_name not in CREDENTIAL_KEYS:
            return None, field_name, False
        value = get_credential(env_name)
        return value, field_name, False

    def __call__(self) -> dict[str, Any]:
        d: dict[str, Any] = {}
        for field_name, field_info in self.settings_cls.model_fields.items():
            value, key, is_complex = self.get_field_value(field_info, field_name)
            if value is not None:
                d[key] = value
        return d


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return (
            init_settings,
            KeychainSettingsSource(settings_cls),
            env_settings,
            dotenv_settings,
            file_secret_settings,
        )

    # Database
    DATABASE_URL: str = "sqlite:///./directory_sync.db"

    # Identity provider (source of truth)
    AUTHENTIK_URL: str = "http://localhost:9000"
    AUTHENTIK_TOKEN: str = ""
    AUTHENTIK_TIMEOUT: float = 30.0

    # Target LDAP directory
    LDAP_HOST: str = "localhost"
    LDAP_PORT: int = 389
    LDAP_BIND_DN: str = "cn=Directory Manager,dc=example,dc=com"
    LDAP_BIND_PASSWORD: str = ""
    LDAP_BASE_DN: str = "dc=example,dc=com"
    LDAP_USER_BASE_DN: str = "ou=people,dc=example,dc=com"
    LDAP_GROUP_BASE_DN: str = "ou=groups,dc=example,dc=com"
    LDAP_CONNECT_TIMEOUT: int = 10
    LDAP_RECEIVE_TIMEOUT: int = 5

    # Used for default mail addresses and SASL password pointers
    MAIL_DOMAIN: str = "example.com"

    # Sync behaviour
    SYNC_INTERVAL_MINUTES: int = 5
    SYNC_GROUPS: bool = True
    SYNC_DRY_RUN: bool = False
    SYNC_CREATE_USERS: bool = True
    SYNC_UPDATE_USERS: bool = True
    SYNC_DELETE_USERS: bool = False
    SYNC_AUTOSTART: bool = False

    # Source attribute name -> LDAP attribute name, applied on user creation
    SYNC_ATTRIBUTE_MAPPING: dict[str, str] = {
        "phone": "telephoneNumber",
        "title": "title",
        "department": "ou",
        "employee_number": "employeeNumber",
    }

    @field_validator("SYNC_INTERVAL_MINUTES")
    @classmethod
    def validate_interval(cls, v: int) -> int:
        """Reject non-positive sync intervals."""
        if v < 1:
            raise ValueError(f"SYNC_INTERVAL_MINUTES must be >= 1, got {v}")
        return v

    @field_validator("LOG_LEVEL", mode="before")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate and normalize LOG_LEVEL to an uppercase Python logging level."""
        valid = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v.upper() not in valid:
            raise ValueError(f"LOG_LEVEL must be one of {valid}, got {v!r}")
        return v.upper()

    # App settings
    ENVIRONMENT: str = "development"
    DEBUG: bool = True
    LOG_LEVEL: str = "INFO"


settings = Settings()
