"""
References derived from the LDAP tree.

A tree reference relates LDAP entries by where they sit in the directory
tree rather than by an attribute naming the other entry: the *source* of an
entry is the entry directly above it, and the *targets* of an entry are the
entries below it.  Nothing about the relationship is stored, so the links
cannot be edited; see :py:class:`TreeReference` for what that means for the
mutation methods.
"""

import logging
from contextlib import closing
from typing import TYPE_CHECKING

from django.core.exceptions import ImproperlyConfigured

from .dn import normalize, parent_of
from .exceptions import (
    DirectoryError,
    MalformedNameError,
    NoParentError,
    ReferenceLookupError,
)
from .options import ReferenceOptions, SearchScope
from .utils import first_value

if TYPE_CHECKING:
    from .typing import EntryStore, LDAPAttributes, ResolvedIdentifiers

logger = logging.getLogger("django-ldaptree")


class TreeReference:
    """
    Resolve a reference field from the position of entries in the LDAP tree.

    Given an entry in the target directory, :py:meth:`find_sources_for_target`
    returns the id of the entry directly above it, if that entry belongs to
    the source directory.  Given an entry in the source directory,
    :py:meth:`find_targets_for_source` returns the ids of the target directory
    entries below it, one level down or the whole subtree depending on
    :py:attr:`ReferenceOptions.scope`.

    Each lookup opens its own sessions on the directories and closes them
    before returning, so one instance can serve any number of threads.

    Args:
        options: The reference configuration.
        source: The store for ``options.source_directory``.
        target: The store for ``options.target_directory``.

    Raises:
        ImproperlyConfigured: ``source`` or ``target`` is not the directory
            named in ``options``.

    """

    def __init__(
        self, options: ReferenceOptions, source: "EntryStore", target: "EntryStore"
    ) -> None:
        if source.name != options.source_directory:
            msg = (
                f"{source.name} is not the source directory "
                f"'{options.source_directory}' of the reference for "
                f"{options.field_name}"
            )
            raise ImproperlyConfigured(msg)
        if target.name != options.target_directory:
            msg = (
                f"{target.name} is not the target directory "
                f"'{options.target_directory}' of the reference for "
                f"{options.field_name}"
            )
            raise ImproperlyConfigured(msg)
        self.options = options
        self.source = source
        self.target = target

    @property
    def field_name(self) -> str:
        return self.options.field_name

    @property
    def scope(self) -> SearchScope:
        return self.options.scope

    def __str__(self) -> str:
        return (
            f"TreeReference to resolve field='{self.options.field_name}' of "
            f"source directory='{self.options.source_directory}' with target "
            f"directory='{self.options.target_directory}'"
        )

    def __repr__(self) -> str:
        return (
            f"<TreeReference: {self.options.source_directory}."
            f"{self.options.field_name} -> {self.options.target_directory} "
            f"scope={self.options.scope.name}>"
        )

    def find_sources_for_target(self, target_id: str) -> "ResolvedIdentifiers":
        """
        Return the id of the source entry directly above ``target_id``.

        The target entry's DN is cut by one component and the resulting DN is
        looked up in the source directory.  If the target does not exist, is a
        root-level entry, or its parent is not an entry of the source
        directory, the result is empty.  At most one source is returned: the
        scan stops at the first parent entry that carries an id.

        Args:
            target_id: The id of an entry in the target directory.

        Raises:
            ReferenceLookupError: either directory could not be searched, or
                the source entry's id is not valid UTF-8.
            MalformedNameError: the server returned an unparsable DN for the
                target entry.

        Returns:
            A sorted list with zero or one source id.

        """
        operation = "find_sources_for_target"
        source_ids: set[str] = set()

        # step 1: fetch the dn of the target entry
        try:
            with self.target.session() as store:
                target_dn = store.find(target_id)
        except DirectoryError as e:
            msg = f"error fetching {target_id}"
            raise ReferenceLookupError(msg, operation=operation, operand=target_id) from e
        if target_dn is None:
            # no target, so no parent: a dangling reference is not an error
            return []

        # step 2: look up the entry one level up in the source directory
        try:
            parent_dn = parent_of(normalize(target_dn))
        except NoParentError:
            return []
        basedn = str(parent_dn)
        searchfilter = self.source.base_filter
        logger.debug(
            "ldaptree.reference.%s.search target_id=%s basedn=%s filter=%s "
            "scope=%s reference=%s",
            operation,
            target_id,
            basedn,
            searchfilter,
            SearchScope.ENTRY_ONLY.name,
            self,
        )
        try:
            with self.source.session() as store, closing(
                store.search(
                    basedn,
                    searchfilter,
                    SearchScope.ENTRY_ONLY,
                    attributes=[self.source.id_attribute],
                )
            ) as results:
                for dn, attrs in results:
                    source_id = self._entry_id(self.source, dn, attrs, operation)
                    if source_id is not None:
                        source_ids.add(source_id)
                        # there is only supposed to be one result anyway
                        break
        except DirectoryError as e:
            msg = f"error during reference search for {basedn}"
            raise ReferenceLookupError(msg, operation=operation, operand=basedn) from e
        return sorted(source_ids)

    def find_targets_for_source(self, source_id: str) -> "ResolvedIdentifiers":
        """
        Return the ids of the target entries below ``source_id``.

        The target directory is searched with the source entry's DN as base,
        using the configured scope.  The source entry itself is never part of
        the result, even when it lies in the searched scope and matches the
        target directory's filter.  In a reference from a directory to itself,
        entries with the same id as the source are skipped as well.

        Args:
            source_id: The id of an entry in the source directory.

        Raises:
            ReferenceLookupError: ``source_id`` does not exist in the source
                directory, either directory could not be searched, or the
                server returned an unparsable DN or an undecodable id.

        Returns:
            The sorted, de-duplicated target ids.

        """
        operation = "find_targets_for_source"
        target_ids: set[str] = set()

        # step 1: fetch the dn of the source entry
        try:
            with self.source.session() as store:
                source_dn = store.find(source_id)
        except DirectoryError as e:
            msg = f"error fetching {source_id}"
            raise ReferenceLookupError(msg, operation=operation, operand=source_id) from e
        if source_dn is None:
            msg = f"{source_id} does not exist in {self.options.source_directory}"
            raise ReferenceLookupError(msg, operation=operation, operand=source_id)
        try:
            base = normalize(source_dn)
        except MalformedNameError as e:
            msg = f"{source_id} has a malformed dn"
            raise ReferenceLookupError(msg, operation=operation, operand=source_dn) from e

        # step 2: collect the ids of the entries below the source entry
        basedn = str(base)
        searchfilter = self.target.base_filter
        self_reference = (
            self.options.source_directory == self.options.target_directory
        )
        logger.debug(
            "ldaptree.reference.%s.search source_id=%s basedn=%s filter=%s "
            "scope=%s reference=%s",
            operation,
            source_id,
            basedn,
            searchfilter,
            self.options.scope.name,
            self,
        )
        try:
            with self.target.session() as store, closing(
                store.search(
                    basedn,
                    searchfilter,
                    self.options.scope,
                    attributes=[self.target.id_attribute],
                )
            ) as results:
                for dn, attrs in results:
                    target_id = self._entry_id(self.target, dn, attrs, operation)
                    if target_id is None:
                        continue
                    if self_reference and target_id == source_id:
                        continue
                    try:
                        if normalize(dn) == base:
                            # always remove self as child
                            continue
                    except MalformedNameError as e:
                        msg = f"malformed dn in search results below {basedn}"
                        raise ReferenceLookupError(
                            msg, operation=operation, operand=dn
                        ) from e
                    target_ids.add(target_id)
        except DirectoryError as e:
            msg = f"error during reference search for {basedn}"
            raise ReferenceLookupError(msg, operation=operation, operand=basedn) from e
        return sorted(target_ids)

    def _entry_id(
        self, store: "EntryStore", dn: str, attrs: "LDAPAttributes", operation: str
    ) -> str | None:
        try:
            return first_value(attrs, store.id_attribute)
        except UnicodeDecodeError as e:
            msg = f"{store.id_attribute} of {dn} is not valid UTF-8"
            raise ReferenceLookupError(msg, operation=operation, operand=dn) from e

    # -----------------------
    # Mutations
    # -----------------------
    #
    # Tree links are implied by where entries sit in the directory, so there is
    # nothing to store.  These methods exist so that code written against
    # references in general can call them; they never touch a directory and
    # never raise.  Move the entries to change the links.

    def _ignore(self, operation: str, entry_id: object) -> None:
        logger.debug(
            "ldaptree.reference.%s.not-supported id=%s reference=%s",
            operation,
            entry_id,
            self,
        )

    def add_links(self, source_id: str, target_ids: list[str]) -> None:
        """
        Not supported: does nothing.  Tree links cannot be added.
        """
        self._ignore("add_links", source_id)

    def add_links_to_target(self, source_ids: list[str], target_id: str) -> None:
        """
        Not supported: does nothing.  Tree links cannot be added.
        """
        self._ignore("add_links_to_target", target_id)

    def remove_links_for_source(self, source_id: str) -> None:
        """
        Not supported: does nothing.  Tree links cannot be removed.
        """
        self._ignore("remove_links_for_source", source_id)

    def remove_links_for_target(self, target_id: str) -> None:
        """
        Not supported: does nothing.  Tree links cannot be removed.
        """
        self._ignore("remove_links_for_target", target_id)

    def set_source_ids_for_target(self, target_id: str, source_ids: list[str]) -> None:
        """
        Not supported: does nothing.  Tree links cannot be edited.
        """
        self._ignore("set_source_ids_for_target", target_id)

    def set_target_ids_for_source(self, source_id: str, target_ids: list[str]) -> None:
        """
        Not supported: does nothing.  Tree links cannot be edited.
        """
        self._ignore("set_target_ids_for_source", source_id)
