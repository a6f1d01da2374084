"""
The registry of configured LDAP directories and their tree references.

:py:class:`DirectoryRegistry` turns ``settings.LDAP_DIRECTORIES`` and
``settings.LDAP_SERVERS`` into :py:class:`~ldaptree.managers.DirectoryManager`
and :py:class:`~ldaptree.references.TreeReference` instances, validating
everything up front.  The registry for the running project is built by
:py:class:`~ldaptree.apps.LdapTreeConfig` at startup.
"""

from typing import Any

from django.conf import settings
from django.core.exceptions import ImproperlyConfigured

from .managers import DirectoryManager
from .options import DirectoryOptions
from .references import TreeReference


class DirectoryRegistry:
    """
    All configured directories and the tree references declared on them.

    Example settings:

    .. code-block:: python

        LDAP_DIRECTORIES = {
            "units": {
                "ldap_server": "default",
                "basedn": "dc=example,dc=com",
                "objectclass": "organizationalUnit",
                "id_attribute": "ou",
                "references": [
                    {"field": "children", "directory": "units", "scope": "onelevel"},
                    {"field": "members", "directory": "users", "scope": "subtree"},
                ],
            },
            "users": {
                "basedn": "dc=example,dc=com",
                "objectclass": "inetOrgPerson",
                "id_attribute": "uid",
            },
        }

    Args:
        directories: ``settings.LDAP_DIRECTORIES``
        servers: ``settings.LDAP_SERVERS``

    Raises:
        ImproperlyConfigured: any directory or reference is misconfigured.

    """

    def __init__(
        self, directories: dict[str, dict[str, Any]], servers: dict[str, Any]
    ) -> None:
        self.directories: dict[str, DirectoryManager] = {}
        self.references: dict[str, dict[str, TreeReference]] = {}
        for name, data in directories.items():
            options = DirectoryOptions.from_settings(name, data)
            try:
                server_config = servers[options.ldap_server]
            except KeyError as e:
                msg = (
                    f"LDAP_DIRECTORIES['{name}']: settings.LDAP_SERVERS has no key "
                    f"'{options.ldap_server}'"
                )
                raise ImproperlyConfigured(msg) from e
            if "read" not in server_config:
                msg = f"settings.LDAP_SERVERS['{options.ldap_server}'] has no 'read' key"
                raise ImproperlyConfigured(msg)
            self.directories[name] = DirectoryManager(options, server_config)
        # References need every directory in place first
        for name, manager in self.directories.items():
            self.references[name] = {}
            for reference in manager.options.references:
                if reference.target_directory not in self.directories:
                    msg = (
                        f"{reference.target_directory} is not a configured LDAP "
                        "directory and thus cannot be referenced as target by "
                        f"{name}.{reference.field_name}"
                    )
                    raise ImproperlyConfigured(msg)
                self.references[name][reference.field_name] = TreeReference(
                    reference, manager, self.directories[reference.target_directory]
                )

    @classmethod
    def from_settings(cls) -> "DirectoryRegistry":
        """
        Build the registry from ``settings.LDAP_DIRECTORIES`` and
        ``settings.LDAP_SERVERS``.

        Raises:
            ImproperlyConfigured: either setting is missing, or the
                configuration is invalid.

        Returns:
            The registry.

        """
        try:
            directories = settings.LDAP_DIRECTORIES
        except AttributeError as e:
            msg = "settings.LDAP_DIRECTORIES does not exist!"
            raise ImproperlyConfigured(msg) from e
        try:
            servers = settings.LDAP_SERVERS
        except AttributeError as e:
            msg = "settings.LDAP_SERVERS does not exist!"
            raise ImproperlyConfigured(msg) from e
        return cls(directories, servers)

    def get_directory(self, name: str) -> DirectoryManager:
        """
        Return the manager for directory ``name``.

        Raises:
            KeyError: there is no such directory.

        """
        try:
            return self.directories[name]
        except KeyError as e:
            msg = f"No LDAP directory named '{name}'"
            raise KeyError(msg) from e

    def get_references(self, directory: str) -> list[TreeReference]:
        """
        Return the tree references declared on ``directory``.

        Raises:
            KeyError: there is no such directory.

        """
        self.get_directory(directory)
        return list(self.references[directory].values())

    def get_reference(self, directory: str, field_name: str) -> TreeReference:
        """
        Return the tree reference that populates ``field_name`` on
        ``directory``.

        Raises:
            KeyError: there is no such directory, or no reference for that
                field.

        """
        self.get_directory(directory)
        try:
            return self.references[directory][field_name]
        except KeyError as e:
            msg = f"LDAP directory '{directory}' has no reference for '{field_name}'"
            raise KeyError(msg) from e
