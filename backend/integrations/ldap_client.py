"""LDAP client for the target directory.

This module implements the TargetDirectory protocol on top of ldap3 for an
inetOrgPerson / groupOfNames layout (389 Directory Server, OpenLDAP).
Users live under ``LDAP_USER_BASE_DN`` as ``uid=<identifier>`` and groups
under ``LDAP_GROUP_BASE_DN`` as ``cn=<name>``.
"""

import logging
import threading
from typing import Any

from ldap3 import MODIFY_REPLACE, NONE, SUBTREE, Connection, Server
from ldap3.core.exceptions import LDAPCommunicationError, LDAPException
from ldap3.utils.conv import escape_filter_chars
from ldap3.utils.dn import escape_rdn

from config import settings
from integrations.directory_protocol import TargetGroup, TargetUser
from integrations.exceptions import DirectoryConnectionError, DirectoryOperationError

logger = logging.getLogger(__name__)

USER_OBJECT_CLASSES = ["inetOrgPerson", "organizationalPerson", "person", "top"]
GROUP_OBJECT_CLASSES = ["groupOfNames", "top"]

_USER_ATTRIBUTES = ["uid", "mail", "cn", "sn", "givenName", "memberOf"]
_GROUP_ATTRIBUTES = ["cn", "description", "member"]


def _first(value: Any) -> str | None:
    """Collapse an ldap3 attribute value (often a list) to a single string."""
    if isinstance(value, (list, tuple)):
        return str(value[0]) if value else None
    if value is None:
        return None
    return str(value)


def _as_list(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return [str(v) for v in value]
    return [str(value)]


class LDAPClient:
    """Wrapper around a single bound ldap3 connection.

    The connection is shared between the sync orchestrator and the change
    lifecycle, so every operation is serialized through an internal lock.
    """

    def __init__(
        self,
        host: str | None = None,
        port: int | None = None,
        bind_dn: str | None = None,
        bind_password: str | None = None,
        user_base_dn: str | None = None,
        group_base_dn: str | None = None,
        connect_timeout: int | None = None,
        receive_timeout: int | None = None,
    ):
        self._host = host or settings.LDAP_HOST
        self._port = port or settings.LDAP_PORT
        self._bind_dn = bind_dn or settings.LDAP_BIND_DN
        self._bind_password = (
            bind_password if bind_password is not None else settings.LDAP_BIND_PASSWORD
        )
        self._user_base_dn = user_base_dn or settings.LDAP_USER_BASE_DN
        self._group_base_dn = group_base_dn or settings.LDAP_GROUP_BASE_DN
        self._connect_timeout = connect_timeout or settings.LDAP_CONNECT_TIMEOUT
        self._receive_timeout = receive_timeout or settings.LDAP_RECEIVE_TIMEOUT
        self._conn: Connection | None = None
        self._lock = threading.RLock()

    @property
    def directory_name(self) -> str:
        return "LDAP"

    @property
    def is_connected(self) -> bool:
        return self._conn is not None and self._conn.bound

    @property
    def user_base_dn(self) -> str:
        return self._user_base_dn

    def user_dn(self, identifier: str) -> str:
        return f"uid={escape_rdn(identifier)},{self._user_base_dn}"

    def group_dn(self, name: str) -> str:
        return f"cn={escape_rdn(name)},{self._group_base_dn}"

    # --- Connection lifecycle ---

    def connect(self) -> None:
        """Open and bind a new connection, replacing any existing one.

        Raises:
            DirectoryConnectionError: If the server is unreachable or the
                bind is rejected.
        """
        with self._lock:
            self._close_quietly()
            server = Server(
                self._host,
                port=self._port,
                connect_timeout=self._connect_timeout,
                get_info=NONE,
            )
            conn = Connection(
                server,
                user=self._bind_dn,
                password=self._bind_password,
                receive_timeout=self._receive_timeout,
                raise_exceptions=False,
            )
            try:
                bound = conn.bind()
            except LDAPException as exc:
                raise DirectoryConnectionError(
                    f"LDAP server {self._host}:{self._port} unreachable: {exc}",
                    directory_name=self.directory_name,
                ) from exc
            if not bound:
                description = (conn.result or {}).get("description", "bind failed")
                raise DirectoryConnectionError(
                    f"LDAP bind as {self._bind_dn} rejected: {description}",
                    directory_name=self.directory_name,
                )
            self._conn = conn
            logger.info("Connected to LDAP server %s:%s", self._host, self._port)

    def disconnect(self) -> None:
        with self._lock:
            if self._conn is not None:
                self._close_quietly()
                logger.info("Disconnected from LDAP server")

    def _close_quietly(self) -> None:
        if self._conn is None:
            return
        try:
            self._conn.unbind()
        except LDAPException:
            logger.debug("LDAP unbind failed", exc_info=True)
        self._conn = None

    def _connection(self) -> Connection:
        if not self.is_connected:
            self.connect()
        return self._conn

    def _run(self, description: str, operation) -> Any:
        """Run ``operation(conn)`` and map failures to typed errors.

        ``operation`` returns the ldap3 boolean status; a falsy status is
        turned into a DirectoryOperationError carrying the LDAP result code.
        """
        with self._lock:
            conn = self._connection()
            try:
                ok = operation(conn)
            except LDAPCommunicationError as exc:
                self._close_quietly()
                raise DirectoryConnectionError(
                    f"LDAP connection lost during {description}: {exc}",
                    directory_name=self.directory_name,
                ) from exc
            except LDAPException as exc:
                raise DirectoryOperationError(
                    f"LDAP {description} failed: {exc}",
                    directory_name=self.directory_name,
                ) from exc
            if not ok:
                result = conn.result or {}
                raise DirectoryOperationError(
                    f"LDAP {description} failed: {result.get('description')} {result.get('message', '')}".strip(),
                    directory_name=self.directory_name,
                    result_code=result.get("result"),
                )
            return conn

    def _search(self, base: str, search_filter: str, attributes: list[str]) -> list[dict]:
        try:
            conn = self._run(
                f"search under {base}",
                lambda c: c.search(
                    base, search_filter, search_scope=SUBTREE, attributes=attributes
                ),
            )
        except DirectoryOperationError as exc:
            # Empty subtree (base entry missing) is an empty result, not a failure
            if exc.no_such_object:
                return []
            raise
        return [e for e in conn.response or [] if e.get("type") == "searchResEntry"]

    # --- Users ---

    def list_users(self) -> list[TargetUser]:
        entries = self._search(
            self._user_base_dn, "(objectClass=inetOrgPerson)", _USER_ATTRIBUTES
        )
        users = []
        for entry in entries:
            attrs = entry.get("attributes", {})
            uid = _first(attrs.get("uid"))
            if not uid:
                continue
            users.append(
                TargetUser(
                    identifier=uid,
                    dn=entry.get("dn"),
                    mail=_first(attrs.get("mail")),
                    cn=_first(attrs.get("cn")),
                    sn=_first(attrs.get("sn")),
                    member_of=_as_list(attrs.get("memberOf")),
                )
            )
        logger.info("LDAP: found %d users", len(users))
        return users

    def get_user(self, identifier: str) -> TargetUser | None:
        entries = self._search(
            self._user_base_dn,
            f"(&(objectClass=inetOrgPerson)(uid={escape_filter_chars(identifier)}))",
            _USER_ATTRIBUTES,
        )
        if not entries:
            return None
        attrs = entries[0].get("attributes", {})
        return TargetUser(
            identifier=identifier,
            dn=entries[0].get("dn"),
            mail=_first(attrs.get("mail")),
            cn=_first(attrs.get("cn")),
            sn=_first(attrs.get("sn")),
            member_of=_as_list(attrs.get("memberOf")),
        )

    def create_user(self, identifier: str, entry: dict[str, Any]) -> None:
        attributes = {k: v for k, v in entry.items() if k != "objectClass"}
        object_class = entry.get("objectClass", USER_OBJECT_CLASSES)
        dn = self.user_dn(identifier)
        self._run(f"add {dn}", lambda c: c.add(dn, object_class, attributes))
        logger.info("LDAP: created user %s", dn)

    def update_user_attribute(self, identifier: str, attribute: str, value: str) -> None:
        dn = self.user_dn(identifier)
        self._run(
            f"modify {dn} ({attribute})",
            lambda c: c.modify(dn, {attribute: [(MODIFY_REPLACE, [value])]}),
        )
        logger.info("LDAP: replaced %s on %s", attribute, dn)

    def delete_user(self, identifier: str) -> None:
        dn = self.user_dn(identifier)
        self._run(f"delete {dn}", lambda c: c.delete(dn))
        logger.info("LDAP: deleted user %s", dn)

    # --- Groups ---

    def list_groups(self) -> list[TargetGroup]:
        entries = self._search(
            self._group_base_dn, "(objectClass=groupOfNames)", _GROUP_ATTRIBUTES
        )
        return [
            TargetGroup(
                name=_first(e["attributes"].get("cn")) or "",
                dn=e.get("dn"),
                description=_first(e["attributes"].get("description")),
                members=_as_list(e["attributes"].get("member")),
            )
            for e in entries
        ]

    def create_group(self, name: str, members: list[str]) -> None:
        dn = self.group_dn(name)
        self._run(
            f"add {dn}",
            lambda c: c.add(dn, GROUP_OBJECT_CLASSES, {"cn": name, "member": members}),
        )
        logger.info("LDAP: created group %s (%d members)", dn, len(members))

    def replace_group_members(self, name: str, members: list[str]) -> None:
        dn = self.group_dn(name)
        self._run(
            f"modify {dn} (member)",
            lambda c: c.modify(dn, {"member": [(MODIFY_REPLACE, members)]}),
        )
        logger.info("LDAP: replaced members of %s (%d members)", dn, len(members))
