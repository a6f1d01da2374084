"""
LDAP tree reference configuration.

This module provides the immutable option classes built from
``settings.LDAP_DIRECTORIES``: one :py:class:`DirectoryOptions` per configured
directory and one :py:class:`ReferenceOptions` per tree reference declared on
it.  Everything is validated when the options are built, so a bad value stops
startup instead of failing on the first lookup.
"""

import enum
from dataclasses import dataclass, field
from typing import Any

from django.core.exceptions import ImproperlyConfigured
from ldap_filter import Filter

from ldaptree import ldap

#: The keys allowed in a reference declaration.
REFERENCE_NAMES = ("field", "directory", "scope")

#: The keys allowed in a directory declaration.
DIRECTORY_NAMES = (
    "ldap_server",
    "basedn",
    "id_attribute",
    "objectclass",
    "filter",
    "scope",
    "ldap_options",
    "pagesize",
    "references",
)


class SearchScope(enum.IntEnum):
    """
    The breadth of an LDAP search relative to its base DN.  The values are the
    python-ldap scope constants, so members can be handed straight to
    ``search_s``.
    """

    #: Only the base entry itself.
    ENTRY_ONLY = ldap.SCOPE_BASE  # type: ignore[attr-defined]
    #: The immediate children of the base entry.
    ONE_LEVEL = ldap.SCOPE_ONELEVEL  # type: ignore[attr-defined]
    #: The base entry and everything below it.
    SUBTREE = ldap.SCOPE_SUBTREE  # type: ignore[attr-defined]

    @classmethod
    def from_string(
        cls, value: "str | SearchScope | None", default: "SearchScope | None" = None
    ) -> "SearchScope":
        """
        Convert a textual scope from settings into a :py:class:`SearchScope`.

        ``entry``, ``onelevel`` and ``subtree`` are accepted, case-insensitively,
        along with the aliases ``object``/``base``, ``one`` and ``sub``.

        Args:
            value: The scope name.  ``None`` means ``default``.

        Keyword Args:
            default: The scope to use when ``value`` is ``None``.  Defaults to
                :py:attr:`ONE_LEVEL`.

        Raises:
            ImproperlyConfigured: ``value`` is not a known scope name.

        Returns:
            The scope.

        """
        if value is None:
            return default if default is not None else cls.ONE_LEVEL
        if isinstance(value, SearchScope):
            return value
        scope = SCOPE_NAMES.get(str(value).strip().lower())
        if scope is None:
            msg = (
                f"Invalid search scope: {value}. Valid options: entry, onelevel, "
                "subtree"
            )
            raise ImproperlyConfigured(msg)
        return scope


#: Textual scope names, as used in settings.
SCOPE_NAMES: dict[str, SearchScope] = {
    "entry": SearchScope.ENTRY_ONLY,
    "object": SearchScope.ENTRY_ONLY,
    "base": SearchScope.ENTRY_ONLY,
    "onelevel": SearchScope.ONE_LEVEL,
    "one": SearchScope.ONE_LEVEL,
    "subtree": SearchScope.SUBTREE,
    "sub": SearchScope.SUBTREE,
}


def _check_names(label: str, data: dict[str, Any], allowed: tuple[str, ...]) -> None:
    """
    Reject any keys in ``data`` that are not in ``allowed``.

    Raises:
        ImproperlyConfigured: there are unknown keys.

    """
    invalid = [key for key in data if key not in allowed]
    if invalid:
        msg = f"{label} got invalid option(s): {','.join(sorted(invalid))}"
        raise ImproperlyConfigured(msg)


@dataclass(frozen=True)
class ReferenceOptions:
    """
    The configuration of one tree reference: which field of which source
    directory it populates, which target directory the referenced entries live
    in, and how deep below a source entry to look for its children.

    Instances are immutable and may be shared freely between threads.
    """

    #: The directory whose entries carry the reference field.
    source_directory: str
    #: The directory the referenced entries live in.
    target_directory: str
    #: The name of the field this reference populates.
    field_name: str
    #: The scope used when listing the children of a source entry.
    scope: SearchScope = SearchScope.ONE_LEVEL

    def __post_init__(self) -> None:
        if not self.field_name:
            msg = f"{self.source_directory}: tree references need a 'field'"
            raise ImproperlyConfigured(msg)
        if not self.target_directory:
            msg = (
                f"{self.source_directory}: tree reference '{self.field_name}' "
                "needs a 'directory'"
            )
            raise ImproperlyConfigured(msg)
        # Accept textual scopes from code that builds these by hand
        object.__setattr__(self, "scope", SearchScope.from_string(self.scope))

    @classmethod
    def from_settings(
        cls, source_directory: str, data: dict[str, Any]
    ) -> "ReferenceOptions":
        """
        Build from one entry of ``LDAP_DIRECTORIES[source_directory]["references"]``.

        Example:
            .. code-block:: python

                {"field": "children", "directory": "units", "scope": "subtree"}

        Args:
            source_directory: The directory the reference is declared on.
            data: The reference declaration.

        Raises:
            ImproperlyConfigured: the declaration is incomplete, has unknown
                keys, or names an invalid scope.

        Returns:
            The reference options.

        """
        _check_names(f"{source_directory}: tree reference", data, REFERENCE_NAMES)
        return cls(
            source_directory=source_directory,
            target_directory=data.get("directory", ""),
            field_name=data.get("field", ""),
            scope=SearchScope.from_string(data.get("scope")),
        )


@dataclass(frozen=True)
class DirectoryOptions:
    """
    The configuration of one LDAP directory: where its entries live, how to
    recognize them, and which attribute identifies them.
    """

    #: The key for this directory in ``settings.LDAP_DIRECTORIES``.
    name: str
    #: The base DN all entries of this directory live under.
    basedn: str
    #: The attribute holding the logical identifier of an entry.
    id_attribute: str
    #: The key into ``settings.LDAP_SERVERS`` for this directory.
    ldap_server: str = "default"
    #: The objectclass every entry of this directory has.
    objectclass: str | None = None
    #: An extra LDAP filter entries must match, e.g. ``(!(ou=archived))``.
    filter: str | None = None
    #: The scope used to find an entry by id below :py:attr:`basedn`.
    scope: SearchScope = SearchScope.SUBTREE
    #: Options for searches.  The only current option is ``paged_search``.
    ldap_options: tuple[str, ...] = ()
    #: The page size to use for paged searches.
    pagesize: int = 100
    #: The tree references declared on this directory.
    references: tuple[ReferenceOptions, ...] = field(default=())

    def __post_init__(self) -> None:
        if not self.basedn:
            msg = f"LDAP_DIRECTORIES['{self.name}'] has no 'basedn'"
            raise ImproperlyConfigured(msg)
        if not self.id_attribute:
            msg = f"LDAP_DIRECTORIES['{self.name}'] has no 'id_attribute'"
            raise ImproperlyConfigured(msg)
        # Building the filter validates it
        self.search_filter  # noqa: B018

    @property
    def search_filter(self) -> Filter:
        """
        The standard entry filter for this directory: :py:attr:`objectclass`
        AND-ed with :py:attr:`filter`.  If neither is set, every entry matches.

        Raises:
            ImproperlyConfigured: :py:attr:`filter` is not a valid LDAP filter.

        """
        filters: list[Filter] = []
        if self.objectclass:
            filters.append(Filter.attribute("objectClass").equal_to(self.objectclass))
        if self.filter:
            try:
                filters.append(Filter.parse(self.filter))
            except Exception as e:
                msg = (
                    f"LDAP_DIRECTORIES['{self.name}'] has an invalid 'filter': "
                    f"{self.filter}"
                )
                raise ImproperlyConfigured(msg) from e
        if not filters:
            return Filter.attribute("objectClass").present()
        if len(filters) == 1:
            return filters[0]
        return Filter.AND(filters).simplify()

    @classmethod
    def from_settings(cls, name: str, data: dict[str, Any]) -> "DirectoryOptions":
        """
        Build from ``settings.LDAP_DIRECTORIES[name]``.

        Args:
            name: The directory name.
            data: The directory declaration.

        Raises:
            ImproperlyConfigured: the declaration is incomplete or invalid.

        Returns:
            The directory options.

        """
        _check_names(f"LDAP_DIRECTORIES['{name}']", data, DIRECTORY_NAMES)
        references = tuple(
            ReferenceOptions.from_settings(name, reference)
            for reference in data.get("references", [])
        )
        fields = [reference.field_name for reference in references]
        duplicates = sorted({f for f in fields if fields.count(f) > 1})
        if duplicates:
            msg = (
                f"LDAP_DIRECTORIES['{name}'] declares more than one reference for "
                f"field(s): {','.join(duplicates)}"
            )
            raise ImproperlyConfigured(msg)
        try:
            pagesize = int(data.get("pagesize", 100))
        except (TypeError, ValueError) as e:
            msg = f"LDAP_DIRECTORIES['{name}'] has an invalid 'pagesize'"
            raise ImproperlyConfigured(msg) from e
        ldap_options = data.get("ldap_options", [])
        if isinstance(ldap_options, str):
            msg = (
                f"LDAP_DIRECTORIES['{name}']['ldap_options'] must be a list of "
                f"option names, not the string {ldap_options!r}"
            )
            raise ImproperlyConfigured(msg)
        return cls(
            name=name,
            basedn=data.get("basedn", ""),
            id_attribute=data.get("id_attribute", ""),
            ldap_server=data.get("ldap_server", "default"),
            objectclass=data.get("objectclass"),
            filter=data.get("filter"),
            scope=SearchScope.from_string(
                data.get("scope"), default=SearchScope.SUBTREE
            ),
            ldap_options=tuple(ldap_options),
            pagesize=pagesize,
            references=references,
        )
