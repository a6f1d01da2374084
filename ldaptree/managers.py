# mypy: disable-error-code="attr-defined"
"""
LDAP directory access for tree references.

This module provides :py:class:`DirectoryManager`, the python-ldap backed
directory store used by :py:class:`~ldaptree.references.TreeReference`: it
opens per-thread connections from ``settings.LDAP_SERVERS``, finds entries by
their identifier, and runs structural searches below a base DN.
"""

import logging
import threading
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from functools import wraps
from pathlib import Path
from typing import Any, cast

from ldap.controls import SimplePagedResultsControl
from ldap.filter import escape_filter_chars
from ldap_filter import Filter

from ldaptree import ldap

from .exceptions import DirectoryError
from .options import DirectoryOptions, SearchScope
from .typing import LDAPData

logger = logging.getLogger("django-ldaptree")


# -----------------------
# Decorators
# -----------------------


def atomic(key: str = "read") -> Callable:
    """
    Decorator to wrap methods that need to talk to an LDAP server.

    The wrapped method runs inside :py:meth:`DirectoryManager.session`, so it
    reuses the current thread's connection if there is one and otherwise
    opens a connection for the duration of the call.

    Args:
        key: Either "read" or "write". Determines which LDAP server to use.

    Returns:
        A decorator that manages LDAP connection context for the wrapped method.

    """

    def real_decorator(func: Callable) -> Callable:
        @wraps(func)
        def wrapper(self, *args, **kwargs) -> Any:
            with self.session(key):
                return func(self, *args, **kwargs)

        return wrapper

    return real_decorator


# -----------------------
# DirectoryManager
# -----------------------


class DirectoryManager:
    """
    Directory store for one configured LDAP directory.

    This class handles connecting to the LDAP server, finding an entry's DN
    from its identifier, and searching below a base DN.  It never writes to
    the directory.

    This class is thread-safe -- it will use a different LDAP connection for
    each thread.  This is important because LDAP connections are not
    thread-safe.  If you use the same connection in multiple threads, you will
    get errors.

    Args:
        options: The directory's configuration.
        server_config: ``settings.LDAP_SERVERS[options.ldap_server]``: a dict
            with ``read`` and optionally ``write`` connection settings.

    """

    def __init__(self, options: DirectoryOptions, server_config: dict[str, Any]) -> None:
        self.logger = logger
        self.options = options
        #: The part of settings.LDAP_SERVERS that we need for this directory
        self.config = server_config
        self.name = options.name
        self.basedn = options.basedn
        self.id_attribute = options.id_attribute
        # keys in this dictionary get manipulated by .connect() and .disconnect()
        self._ldap_objects: dict[threading.Thread, ldap.ldapobject.LDAPObject] = {}  # type: ignore[name-defined]

    def __repr__(self) -> str:
        return f"<DirectoryManager: {self.name} basedn={self.basedn}>"

    # -----------------------
    # Connection handling
    # -----------------------

    def has_connection(self) -> bool:
        """
        Check if the current thread has an active LDAP connection.

        Returns:
            True if a connection exists, False otherwise.

        """
        return threading.current_thread() in self._ldap_objects

    def remove_connection(self) -> None:
        """
        Remove the LDAP connection object for the current thread.
        """
        del self._ldap_objects[threading.current_thread()]

    def _connect(self, key: str) -> ldap.ldapobject.LDAPObject:  # type: ignore[name-defined]  # noqa: PLR0912
        """
        Create and return a new LDAP connection object.

        Args:
            key: Configuration key for the LDAP server ("read" or "write").

        Raises:
            ImproperlyConfigured: If there is no ``key`` section in the server
                configuration.
            ValueError: If the ``tls_verify`` value in the configuration is invalid.
            OSError: If a configured CA certificate, TLS certificate or TLS key
                file does not exist or is not a file.

        Returns:
            A connected and bound LDAPObject.

        """
        config = self.config[key]
        ldap_object: ldap.ldapobject.LDAPObject = ldap.initialize(config["url"])  # type: ignore[name-defined]
        if config.get("follow_referrals", False):
            ldap_object.set_option(ldap.OPT_REFERRALS, 1)
        else:
            ldap_object.set_option(ldap.OPT_REFERRALS, 0)
        timeout = config.get("timeout", 15.0)
        ldap_object.set_option(ldap.OPT_NETWORK_TIMEOUT, float(timeout))
        sizelimit = config.get("sizelimit", None)
        if sizelimit:
            ldap_object.set_option(ldap.OPT_SIZELIMIT, int(sizelimit))
        tls_verify = config.get("tls_verify", "never")
        if tls_verify == "never":
            ldap_object.set_option(ldap.OPT_X_TLS_REQUIRE_CERT, ldap.OPT_X_TLS_NEVER)
        elif tls_verify == "always":
            ldap_object.set_option(ldap.OPT_X_TLS_REQUIRE_CERT, ldap.OPT_X_TLS_DEMAND)
        else:
            msg = f"Invalid tls_verify value: {tls_verify}"
            raise ValueError(msg)
        for setting, option, label in (
            ("tls_ca_certfile", ldap.OPT_X_TLS_CACERTFILE, "CA Certificate file"),
            ("tls_certfile", ldap.OPT_X_TLS_CERTFILE, "TLS Certificate file"),
            ("tls_keyfile", ldap.OPT_X_TLS_KEYFILE, "TLS Key file"),
        ):
            if filename := config.get(setting, None):
                path = Path(filename)
                if not path.exists():
                    msg = f"{label} does not exist: {filename}"
                    raise OSError(msg)
                if not path.is_file():
                    msg = f"{label} is not a file: {filename}"
                    raise OSError(msg)
                ldap_object.set_option(option, filename)
        ldap_object.set_option(ldap.OPT_X_TLS_NEWCTX, 0)
        if config.get("use_starttls", True):
            ldap_object.start_tls_s()
        ldap_object.simple_bind_s(config["user"], config["password"])
        return ldap_object

    def connect(self, key: str = "read") -> None:
        """
        Set the per-thread LDAP connection object.

        Args:
            key: Configuration key for the LDAP server.

        Raises:
            DirectoryError: the server could not be reached or refused our bind.

        """
        try:
            ldap_object = self._connect(key)
        except ldap.LDAPError as e:
            msg = f"could not connect to the LDAP server for directory {self.name}"
            raise DirectoryError(msg) from e
        self._ldap_objects[threading.current_thread()] = ldap_object

    def disconnect(self) -> None:
        """
        Unbind and forget the current thread's LDAP connection.  The connection
        is forgotten even if the unbind fails.
        """
        try:
            self.connection.unbind_s()
        except ldap.LDAPError:
            self.logger.warning(
                "ldaptree.manager.disconnect.unbind-failed directory=%s",
                self.name,
                exc_info=True,
            )
        finally:
            self.remove_connection()

    @property
    def connection(self) -> ldap.ldapobject.LDAPObject:  # type: ignore[name-defined]
        """
        Get the current thread's LDAP connection object.

        Raises:
            DirectoryError: there is no open session on this thread.

        Returns:
            The LDAPObject for the current thread.

        """
        try:
            return self._ldap_objects[threading.current_thread()]
        except KeyError as e:
            msg = f"no open LDAP session for directory {self.name} on this thread"
            raise DirectoryError(msg) from e

    @contextmanager
    def session(self, key: str = "read") -> Iterator["DirectoryManager"]:
        """
        Context manager that gives the current thread a connection for the
        duration of the block.

        If the thread already has a connection, it is reused and left open;
        otherwise a new one is opened and always unbound on the way out, no
        matter how the block exits.

        Example:
            .. code-block:: python

                with manager.session() as store:
                    dn = store.find("alice")

        Args:
            key: Configuration key for the LDAP server.

        Raises:
            DirectoryError: the connection could not be opened.

        Yields:
            This manager.

        """
        if self.has_connection():
            # Ensure we're not currently in a wrapped block
            yield self
            return
        self.connect(key)
        try:
            yield self
        finally:
            # We do this in a finally: branch so that the ldap connection gets
            # cleaned up no matter what happens in the block.
            self.disconnect()

    # -----------------------
    # Filters
    # -----------------------

    @property
    def base_filter(self) -> str:
        """
        The standard entry filter for this directory, as a string.
        """
        return self.options.search_filter.to_string()

    def entry_filter(self, entry_id: str) -> str:
        """
        Return the filter that matches the entry with identifier ``entry_id``.

        Args:
            entry_id: The entry's logical identifier.

        Returns:
            The base filter AND-ed with an equality test on the id attribute.

        """
        return (
            Filter.AND(
                [
                    self.options.search_filter,
                    Filter.attribute(self.id_attribute).equal_to(
                        escape_filter_chars(entry_id)
                    ),
                ]
            )
            .simplify()
            .to_string()
        )

    # -----------------------
    # Searches
    # -----------------------

    @atomic(key="read")
    def find(self, entry_id: str) -> str | None:
        """
        Return the DN of the entry whose identifier is ``entry_id``.

        Args:
            entry_id: The entry's logical identifier.

        Raises:
            DirectoryError: the search failed, or more than one entry has this
                identifier.

        Returns:
            The DN as returned by the server, or ``None`` if there is no such
            entry.

        """
        searchfilter = self.entry_filter(entry_id)
        self.logger.debug(
            "ldaptree.manager.find directory=%s basedn=%s filter=%s scope=%s",
            self.name,
            self.basedn,
            searchfilter,
            self.options.scope.name,
        )
        try:
            data = self.connection.search_s(
                self.basedn,
                int(self.options.scope),
                filterstr=searchfilter,
                attrlist=[self.id_attribute],
            )
        except ldap.NO_SUCH_OBJECT:
            return None
        except ldap.LDAPError as e:
            msg = f"error fetching {entry_id} from directory {self.name}"
            raise DirectoryError(msg) from e
        # We have to filter out any references that AD puts in
        entries = [obj for obj in data if isinstance(obj[1], dict)]
        if not entries:
            return None
        if len(entries) > 1:
            msg = (
                f"search for {entry_id} in directory {self.name} returned more than "
                "one entry"
            )
            raise DirectoryError(msg)
        return entries[0][0]

    def search(
        self,
        basedn: str,
        searchfilter: str,
        scope: SearchScope,
        attributes: list[str] | None = None,
    ) -> Iterator[LDAPData]:
        """
        Search below ``basedn`` and yield the matching entries.

        This is a generator and does not open a connection of its own: iterate
        it inside :py:meth:`session`, and close it when you are done with it.

        A ``basedn`` that does not exist on the server yields nothing.

        Args:
            basedn: The base DN to search from.
            searchfilter: The LDAP search filter string.
            scope: The search scope.

        Keyword Args:
            attributes: The attributes to retrieve.  Defaults to just the id
                attribute.

        Raises:
            DirectoryError: the search failed.

        Yields:
            ``(dn, attrs)`` tuples.

        """
        if attributes is None:
            attributes = [self.id_attribute]
        connection = self.connection
        try:
            if "paged_search" in self.options.ldap_options:
                yield from self._paged_search(
                    connection, basedn, searchfilter, attributes, scope
                )
            else:
                data = connection.search_s(
                    basedn, int(scope), filterstr=searchfilter, attrlist=attributes
                )
                for dn, attrs in data:
                    # AD returns references that we want to ignore
                    if isinstance(attrs, dict):
                        yield dn, attrs
        except ldap.NO_SUCH_OBJECT:
            return
        except ldap.LDAPError as e:
            msg = f"error searching directory {self.name} below {basedn}"
            raise DirectoryError(msg) from e

    def _paged_search(
        self,
        connection: ldap.ldapobject.LDAPObject,  # type: ignore[name-defined]
        basedn: str,
        searchfilter: str,
        attributes: list[str],
        scope: SearchScope,
    ) -> Iterator[LDAPData]:
        """
        Perform a paged search against the LDAP server, yielding each page's
        entries as it arrives.

        Args:
            connection: The connection to search on.
            basedn: The base DN to search from.
            searchfilter: The LDAP search filter string.
            attributes: List of attributes to retrieve.
            scope: LDAP search scope.

        Yields:
            ``(dn, attrs)`` tuples.

        """
        # Initialize the LDAP controls for paging. Note that we pass ''
        # for the cookie because on first iteration, it starts out empty.
        paging = SimplePagedResultsControl(
            True,  # noqa: FBT003
            size=self.options.pagesize,
            cookie="",
        )
        while True:
            msgid = connection.search_ext(
                basedn, int(scope), searchfilter, attributes, serverctrls=[paging]
            )
            _, rdata, _, serverctrls = connection.result3(msgid)
            for dn, attrs in rdata:
                if isinstance(attrs, dict):
                    yield dn, attrs
            # Look through the returned controls and find the page control,
            # which carries the cookie for the next request.
            paged_controls = [
                c
                for c in serverctrls
                if c.controlType == SimplePagedResultsControl.controlType
            ]
            if not paged_controls or not paged_controls[0].cookie:
                break
            paging.cookie = cast("SimplePagedResultsControl", paged_controls[0]).cookie
