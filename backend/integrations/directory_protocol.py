"""Directory protocol definitions for the source and target gateways.

This module defines the normalized records exchanged with both directories
and the interfaces the sync orchestrator and change lifecycle depend on.
Gateways map their wire formats to these dataclasses; nothing above the
integrations layer sees raw API payloads or LDAP entries.
"""

from dataclasses import dataclass, field
from typing import Any, Protocol


@dataclass
class SourceUser:
    """Normalized user from the identity provider (source of truth)."""

    id: str  # Provider primary key
    identifier: str  # Stable key shared with the target (username / uid)
    email: str | None = None
    display_name: str | None = None
    active: bool = True
    has_credential: bool = False  # False for accounts that never set a password
    attributes: dict[str, Any] = field(default_factory=dict)


@dataclass
class SourceGroup:
    """Normalized group from the identity provider."""

    id: str
    name: str
    description: str | None = None


@dataclass
class TargetUser:
    """Normalized user entry read from the target directory."""

    identifier: str  # uid
    dn: str | None = None
    mail: str | None = None
    cn: str | None = None
    sn: str | None = None
    member_of: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        """Plain dict of the entry, used for change values and snapshots."""
        return {
            "uid": self.identifier,
            "dn": self.dn,
            "mail": self.mail,
            "cn": self.cn,
            "sn": self.sn,
            "memberOf": list(self.member_of),
        }


@dataclass
class TargetGroup:
    """Normalized group entry read from the target directory."""

    name: str  # cn
    dn: str | None = None
    description: str | None = None
    members: list[str] = field(default_factory=list)


class SourceDirectory(Protocol):
    """Read-only view of the source of truth.

    Implementations raise :class:`~integrations.exceptions.UpstreamFetchError`
    on network failures or non-success responses. No retries are built in.
    """

    @property
    def directory_name(self) -> str:
        ...

    def list_users(self) -> list[SourceUser]:
        ...

    def list_groups(self) -> list[SourceGroup]:
        ...

    def list_group_members(self, group_id: str) -> list[str]:
        """Return the identifiers of the group's members."""
        ...


class TargetDirectory(Protocol):
    """Read/write view of the downstream directory.

    Implementations raise
    :class:`~integrations.exceptions.DirectoryConnectionError` when the server
    is unreachable or the bind is rejected, and
    :class:`~integrations.exceptions.DirectoryOperationError` when a single
    operation fails.
    """

    @property
    def directory_name(self) -> str:
        ...

    @property
    def is_connected(self) -> bool:
        ...

    def connect(self) -> None:
        ...

    def disconnect(self) -> None:
        ...

    def user_dn(self, identifier: str) -> str:
        ...

    def list_users(self) -> list[TargetUser]:
        ...

    def get_user(self, identifier: str) -> TargetUser | None:
        ...

    def create_user(self, identifier: str, entry: dict[str, Any]) -> None:
        ...

    def update_user_attribute(self, identifier: str, attribute: str, value: str) -> None:
        ...

    def delete_user(self, identifier: str) -> None:
        ...

    def list_groups(self) -> list[TargetGroup]:
        ...

    def create_group(self, name: str, members: list[str]) -> None:
        ...

    def replace_group_members(self, name: str, members: list[str]) -> None:
        ...
