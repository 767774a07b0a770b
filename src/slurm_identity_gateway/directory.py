"""Read-only client for the LDAP user directory.

Users live under ``ou=Peoples,<base_dn>`` and groups under
``ou=Groups,<base_dn>``. Entries are returned as attribute mappings with
every value as a list of strings, whatever the attribute's syntax.
"""

import ssl
import threading
import time
from collections.abc import Iterable
from typing import Any, TypeAlias

import ldap3
import structlog
from ldap3.utils.conv import escape_filter_chars
from pydantic import Field

from .accounting.types import UserRecord

logger = structlog.get_logger(__name__)

DirectoryEntry: TypeAlias = dict[str, list[str]]

DEFAULT_PAGE_SIZE = 500
USER_ATTRIBUTES = [ldap3.ALL_ATTRIBUTES, ldap3.ALL_OPERATIONAL_ATTRIBUTES]


class DirectoryUnavailableError(Exception):
    """No directory is configured for this gateway."""


class DirectoryEntryNotFoundError(LookupError):
    """No directory entry has the requested name."""


class DirectoryUser(UserRecord):
    """An accounting user with its directory attributes, if any."""

    ldap_attrs: DirectoryEntry = Field(default_factory=dict)


def _values(value: Any) -> list[str]:
    values = value if isinstance(value, list | tuple) else [value]
    return [
        item.decode("utf-8", errors="replace") if isinstance(item, bytes) else str(item)
        for item in values
    ]


def _to_entry(response_item: dict) -> DirectoryEntry:
    return {
        name: _values(value)
        for name, value in response_item.get("attributes", {}).items()
    }


def _sorted_by_number(entries: Iterable[DirectoryEntry], attribute: str) -> list[DirectoryEntry]:
    """Sort entries by a numeric attribute, dropping those without a valid one."""
    numbered = []
    for entry in entries:
        try:
            number = int(entry.get(attribute, [""])[0])
        except (IndexError, ValueError):
            continue
        numbered.append((number, entry))
    numbered.sort(key=lambda item: item[0])
    return [entry for _, entry in numbered]


class DirectoryClient:
    """Searches users and groups in an LDAP directory.

    ldap3 synchronous connections are not thread-safe, so searches are
    serialized on a lock.
    """

    def __init__(
        self,
        connection: ldap3.Connection,
        base_dn: str,
        username_attr: str = "uid",
        page_size: int = DEFAULT_PAGE_SIZE,
    ):
        """Initialize the client.

        Args:
            connection: Bound ldap3 connection.
            base_dn: Directory base DN.
            username_attr: Attribute holding the login name.
            page_size: Paged search size for listings.

        Raises:
            ValueError: If base_dn is empty.
        """
        if not base_dn:
            msg = "base_dn cannot be empty"
            raise ValueError(msg)
        self._connection = connection
        self._lock = threading.Lock()
        self.base_dn = base_dn
        self.username_attr = username_attr
        self.page_size = page_size

    @classmethod
    def connect(
        cls,
        host: str,
        base_dn: str,
        port: int = 389,
        use_tls: bool = False,
        start_tls: bool = False,
        insecure_skip_verify: bool = False,
        root_ca_file: str | None = None,
        client_cert_file: str | None = None,
        client_key_file: str | None = None,
        bind_dn: str | None = None,
        bind_password: str | None = None,
        connect_timeout: float | None = None,
        receive_timeout: float | None = None,
    ) -> "DirectoryClient":
        """Open and bind a read-only connection.

        Raises:
            ldap3.core.exceptions.LDAPException: If connecting or binding fails.
        """
        tls = None
        if use_tls or start_tls or root_ca_file or client_cert_file:
            tls = ldap3.Tls(
                validate=ssl.CERT_NONE if insecure_skip_verify else ssl.CERT_REQUIRED,
                ca_certs_file=root_ca_file,
                local_certificate_file=client_cert_file,
                local_private_key_file=client_key_file,
            )
        server = ldap3.Server(
            host,
            port=port,
            use_ssl=use_tls,
            tls=tls,
            get_info=ldap3.NONE,
            connect_timeout=connect_timeout,
        )
        auto_bind = ldap3.AUTO_BIND_NO_TLS
        if start_tls and not use_tls:
            auto_bind = ldap3.AUTO_BIND_TLS_BEFORE_BIND
        connection = ldap3.Connection(
            server,
            user=bind_dn or None,
            password=bind_password or None,
            auto_bind=auto_bind,
            read_only=True,
            raise_exceptions=True,
            receive_timeout=receive_timeout,
        )
        logger.info("Connected to directory", host=host, port=port, base_dn=base_dn)
        return cls(connection, base_dn)

    def close(self) -> None:
        """Unbind the connection."""
        with self._lock:
            self._connection.unbind()

    @property
    def people_base(self) -> str:
        """Base DN of user entries."""
        return f"ou=Peoples,{self.base_dn}"

    @property
    def groups_base(self) -> str:
        """Base DN of group entries."""
        return f"ou=Groups,{self.base_dn}"

    def _paged_search(self, base: str, search_filter: str, scope: str) -> list[DirectoryEntry]:
        start_time = time.time()
        with self._lock:
            response = self._connection.extend.standard.paged_search(
                search_base=base,
                search_filter=search_filter,
                search_scope=scope,
                attributes=USER_ATTRIBUTES,
                paged_size=self.page_size,
                generator=False,
            )
        entries = [_to_entry(item) for item in response if item.get("type") == "searchResEntry"]
        logger.debug(
            "Directory search completed",
            base=base,
            filter=search_filter,
            entries=len(entries),
            duration_seconds=round(time.time() - start_time, 3),
        )
        return entries

    def _search_one(self, base: str, search_filter: str) -> DirectoryEntry | None:
        with self._lock:
            self._connection.search(
                search_base=base,
                search_filter=search_filter,
                search_scope=ldap3.LEVEL,
                attributes=USER_ATTRIBUTES,
                size_limit=2,
            )
            response = list(self._connection.response or [])
        for item in response:
            if item.get("type") == "searchResEntry":
                return _to_entry(item)
        return None

    def get_users(self) -> list[DirectoryEntry]:
        """Return all user entries, ordered by ascending uidNumber.

        Entries without a numeric uidNumber are skipped.
        """
        entries = self._paged_search(self.people_base, "(uid=*)", ldap3.LEVEL)
        return _sorted_by_number(entries, "uidNumber")

    def get_user(self, uid: str) -> DirectoryEntry:
        """Return one user entry.

        Raises:
            ValueError: If uid is empty.
            DirectoryEntryNotFoundError: If no user has that uid.
        """
        uid = uid.strip()
        if not uid:
            msg = "uid is required"
            raise ValueError(msg)
        entry = self._search_one(self.people_base, f"(uid={escape_filter_chars(uid)})")
        if entry is None:
            msg = f"directory user {uid!r} not found"
            raise DirectoryEntryNotFoundError(msg)
        return entry

    def get_users_by_uid(self, uids: Iterable[str]) -> dict[str, DirectoryEntry]:
        """Look up several users in one search, keyed by login name.

        Names with no directory entry are absent from the result.
        """
        uids = sorted({uid for uid in uids if uid})
        if not uids:
            return {}
        clauses = "".join(f"({self.username_attr}={escape_filter_chars(uid)})" for uid in uids)
        entries = self._paged_search(self.base_dn, f"(|{clauses})", ldap3.SUBTREE)
        result = {}
        for entry in entries:
            names = entry.get(self.username_attr) or entry.get("cn") or []
            if names:
                result[names[0]] = entry
        return result

    def get_groups(self) -> list[DirectoryEntry]:
        """Return all group entries, ordered by ascending gidNumber."""
        entries = self._paged_search(self.groups_base, "(cn=*)", ldap3.LEVEL)
        return _sorted_by_number(entries, "gidNumber")
