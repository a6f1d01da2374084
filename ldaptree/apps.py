from django.apps import AppConfig

from .directories import DirectoryRegistry


class LdapTreeConfig(AppConfig):
    name: str = "ldaptree"
    label: str = "ldaptree"
    verbose_name: str = "LDAP tree references"

    registry: DirectoryRegistry

    def ready(self):
        """
        Build the directory registry, so that a misconfigured directory or
        reference stops the project from starting.
        """
        self.registry = DirectoryRegistry.from_settings()
