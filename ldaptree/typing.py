"""
LDAP tree reference type definitions.

This module provides type aliases for LDAP data structures along with the
protocols the tree reference resolver expects from a directory store.
"""

from collections.abc import Iterator
from contextlib import AbstractContextManager
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from .options import SearchScope

#: The attribute map of one LDAP entry, as returned by python-ldap.
LDAPAttributes = dict[str, list[bytes]]
#: One search result: ``(dn, attributes)``.
LDAPData = tuple[str, LDAPAttributes]
#: One attribute value assertion of an RDN: ``(type, value)``.
AVA = tuple[str, str]
#: One relative distinguished name; more than one AVA for multi-valued RDNs.
RDN = tuple[AVA, ...]
#: Sorted, de-duplicated identifiers returned by reference lookups.
ResolvedIdentifiers = list[str]


class EntryStore(Protocol):
    """
    What :py:class:`~ldaptree.references.TreeReference` needs from a
    directory.  :py:class:`~ldaptree.managers.DirectoryManager` is the
    python-ldap implementation.
    """

    #: The name of the directory in ``settings.LDAP_DIRECTORIES``.
    name: str
    #: The attribute holding the logical identifier of an entry.
    id_attribute: str

    @property
    def base_filter(self) -> str: ...

    def session(self, key: str = "read") -> AbstractContextManager["EntryStore"]: ...

    def find(self, entry_id: str) -> str | None: ...

    def search(
        self,
        basedn: str,
        searchfilter: str,
        scope: "SearchScope",
        attributes: list[str] | None = None,
    ) -> Iterator[LDAPData]: ...
