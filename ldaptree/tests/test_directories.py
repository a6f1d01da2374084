# type: ignore
import unittest

from django.core.exceptions import ImproperlyConfigured
from django.test import override_settings

import ldaptree
from ldaptree.apps import LdapTreeConfig
from ldaptree.directories import DirectoryRegistry
from ldaptree.managers import DirectoryManager
from ldaptree.options import SearchScope
from ldaptree.references import TreeReference

from .base import LDAP_DIRECTORIES, LDAP_SERVERS


class TestDirectoryRegistry(unittest.TestCase):
    """Test building directories and references from configuration."""

    def setUp(self):
        self.registry = DirectoryRegistry(LDAP_DIRECTORIES, LDAP_SERVERS)

    def test_directories(self):
        self.assertEqual(sorted(self.registry.directories), ["units", "users"])
        users = self.registry.get_directory("users")
        self.assertIsInstance(users, DirectoryManager)
        self.assertEqual(users.id_attribute, "uid")
        self.assertIs(users.config, LDAP_SERVERS["default"])

    def test_references(self):
        members = self.registry.get_reference("units", "members")
        self.assertIsInstance(members, TreeReference)
        self.assertIs(members.source, self.registry.get_directory("units"))
        self.assertIs(members.target, self.registry.get_directory("users"))
        self.assertEqual(members.scope, SearchScope.ONE_LEVEL)
        self.assertEqual(
            [r.field_name for r in self.registry.get_references("units")],
            ["children", "members", "everyone"],
        )
        self.assertEqual(self.registry.get_references("users"), [])

    def test_self_reference_shares_the_manager(self):
        children = self.registry.get_reference("units", "children")
        self.assertIs(children.source, children.target)

    def test_unknown_directory(self):
        with self.assertRaises(KeyError):
            self.registry.get_directory("groups")
        with self.assertRaises(KeyError):
            self.registry.get_references("groups")
        with self.assertRaises(KeyError):
            self.registry.get_reference("groups", "members")

    def test_unknown_reference(self):
        with self.assertRaises(KeyError):
            self.registry.get_reference("users", "members")

    def test_unknown_target_directory(self):
        directories = {
            "units": dict(
                LDAP_DIRECTORIES["units"],
                references=[{"field": "groups", "directory": "groups"}],
            )
        }
        with self.assertRaises(ImproperlyConfigured) as ctx:
            DirectoryRegistry(directories, LDAP_SERVERS)
        self.assertIn("groups is not a configured LDAP directory", str(ctx.exception))

    def test_unknown_ldap_server(self):
        directories = {"users": dict(LDAP_DIRECTORIES["users"], ldap_server="backup")}
        with self.assertRaises(ImproperlyConfigured) as ctx:
            DirectoryRegistry(directories, LDAP_SERVERS)
        self.assertIn("backup", str(ctx.exception))

    def test_server_without_read_config(self):
        servers = {"default": {"write": LDAP_SERVERS["default"]["write"]}}
        with self.assertRaises(ImproperlyConfigured):
            DirectoryRegistry(LDAP_DIRECTORIES, servers)

    def test_invalid_reference_scope(self):
        directories = {
            "units": dict(
                LDAP_DIRECTORIES["units"],
                references=[{"field": "children", "directory": "units", "scope": "x"}],
            )
        }
        with self.assertRaises(ImproperlyConfigured):
            DirectoryRegistry(directories, LDAP_SERVERS)

    def test_from_settings(self):
        registry = DirectoryRegistry.from_settings()
        self.assertEqual(sorted(registry.directories), ["units", "users"])

    def test_from_settings_with_bad_configuration(self):
        directories = {"users": {"basedn": "dc=example,dc=com"}}
        with override_settings(LDAP_DIRECTORIES=directories):
            with self.assertRaises(ImproperlyConfigured):
                DirectoryRegistry.from_settings()


class TestLdapTreeConfig(unittest.TestCase):
    """Test that the app validates configuration when it becomes ready."""

    def test_ready_builds_the_registry(self):
        config = LdapTreeConfig("ldaptree", ldaptree)
        config.ready()
        self.assertEqual(
            config.registry.get_reference("units", "everyone").scope,
            SearchScope.SUBTREE,
        )

    def test_ready_rejects_bad_configuration(self):
        directories = dict(
            LDAP_DIRECTORIES,
            users=dict(LDAP_DIRECTORIES["users"], scope="everything"),
        )
        config = LdapTreeConfig("ldaptree", ldaptree)
        with override_settings(LDAP_DIRECTORIES=directories):
            with self.assertRaises(ImproperlyConfigured):
                config.ready()
