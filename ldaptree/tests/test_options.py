# type: ignore
import dataclasses
import unittest

import ldap
from django.core.exceptions import ImproperlyConfigured

from ldaptree.options import DirectoryOptions, ReferenceOptions, SearchScope

from .base import LDAP_DIRECTORIES


class TestSearchScope(unittest.TestCase):
    """Test parsing of textual search scopes."""

    def test_values_are_python_ldap_scopes(self):
        self.assertEqual(SearchScope.ENTRY_ONLY, ldap.SCOPE_BASE)
        self.assertEqual(SearchScope.ONE_LEVEL, ldap.SCOPE_ONELEVEL)
        self.assertEqual(SearchScope.SUBTREE, ldap.SCOPE_SUBTREE)

    def test_names(self):
        for value, expected in [
            ("entry", SearchScope.ENTRY_ONLY),
            ("object", SearchScope.ENTRY_ONLY),
            ("base", SearchScope.ENTRY_ONLY),
            ("onelevel", SearchScope.ONE_LEVEL),
            ("ONELEVEL", SearchScope.ONE_LEVEL),
            ("one", SearchScope.ONE_LEVEL),
            (" subtree ", SearchScope.SUBTREE),
            ("sub", SearchScope.SUBTREE),
        ]:
            with self.subTest(value=value):
                self.assertEqual(SearchScope.from_string(value), expected)

    def test_default_is_onelevel(self):
        self.assertEqual(SearchScope.from_string(None), SearchScope.ONE_LEVEL)
        self.assertEqual(
            SearchScope.from_string(None, default=SearchScope.SUBTREE),
            SearchScope.SUBTREE,
        )

    def test_scope_passes_through(self):
        self.assertEqual(
            SearchScope.from_string(SearchScope.SUBTREE), SearchScope.SUBTREE
        )

    def test_invalid_scope(self):
        with self.assertRaises(ImproperlyConfigured) as ctx:
            SearchScope.from_string("deep")
        self.assertIn("Invalid search scope: deep", str(ctx.exception))
        self.assertIn("onelevel", str(ctx.exception))


class TestReferenceOptions(unittest.TestCase):
    """Test building reference options from settings."""

    def test_from_settings(self):
        options = ReferenceOptions.from_settings(
            "units", {"field": "children", "directory": "units", "scope": "subtree"}
        )
        self.assertEqual(options.source_directory, "units")
        self.assertEqual(options.target_directory, "units")
        self.assertEqual(options.field_name, "children")
        self.assertEqual(options.scope, SearchScope.SUBTREE)

    def test_scope_defaults_to_onelevel(self):
        options = ReferenceOptions.from_settings(
            "units", {"field": "children", "directory": "units"}
        )
        self.assertEqual(options.scope, SearchScope.ONE_LEVEL)

    def test_invalid_scope_is_rejected_at_configuration_time(self):
        with self.assertRaises(ImproperlyConfigured):
            ReferenceOptions.from_settings(
                "units", {"field": "children", "directory": "units", "scope": "all"}
            )

    def test_textual_scope_in_constructor(self):
        options = ReferenceOptions("units", "users", "members", scope="subtree")
        self.assertEqual(options.scope, SearchScope.SUBTREE)
        with self.assertRaises(ImproperlyConfigured):
            ReferenceOptions("units", "users", "members", scope="nope")

    def test_missing_keys(self):
        with self.assertRaises(ImproperlyConfigured):
            ReferenceOptions.from_settings("units", {"directory": "units"})
        with self.assertRaises(ImproperlyConfigured):
            ReferenceOptions.from_settings("units", {"field": "children"})

    def test_unknown_keys(self):
        with self.assertRaises(ImproperlyConfigured) as ctx:
            ReferenceOptions.from_settings(
                "units", {"field": "children", "directory": "units", "depth": 2}
            )
        self.assertIn("depth", str(ctx.exception))

    def test_immutable(self):
        options = ReferenceOptions("units", "users", "members")
        with self.assertRaises(dataclasses.FrozenInstanceError):
            options.scope = SearchScope.SUBTREE


class TestDirectoryOptions(unittest.TestCase):
    """Test building directory options from settings."""

    def test_from_settings(self):
        options = DirectoryOptions.from_settings("units", LDAP_DIRECTORIES["units"])
        self.assertEqual(options.name, "units")
        self.assertEqual(options.basedn, "dc=example,dc=com")
        self.assertEqual(options.id_attribute, "ou")
        self.assertEqual(options.ldap_server, "default")
        self.assertEqual(options.scope, SearchScope.SUBTREE)
        self.assertEqual(
            [r.field_name for r in options.references],
            ["children", "members", "everyone"],
        )
        self.assertEqual(options.references[2].scope, SearchScope.SUBTREE)

    def test_defaults(self):
        options = DirectoryOptions.from_settings(
            "users", {"basedn": "dc=example,dc=com", "id_attribute": "uid"}
        )
        self.assertEqual(options.ldap_server, "default")
        self.assertEqual(options.scope, SearchScope.SUBTREE)
        self.assertEqual(options.ldap_options, ())
        self.assertEqual(options.pagesize, 100)
        self.assertEqual(options.references, ())

    def test_search_filter_with_objectclass(self):
        options = DirectoryOptions(
            name="users",
            basedn="dc=example,dc=com",
            id_attribute="uid",
            objectclass="inetOrgPerson",
        )
        self.assertEqual(
            options.search_filter.to_string(), "(objectClass=inetOrgPerson)"
        )

    def test_search_filter_without_objectclass(self):
        options = DirectoryOptions(
            name="users", basedn="dc=example,dc=com", id_attribute="uid"
        )
        self.assertEqual(options.search_filter.to_string(), "(objectClass=*)")

    def test_search_filter_with_extra_filter(self):
        options = DirectoryOptions(
            name="units",
            basedn="dc=example,dc=com",
            id_attribute="ou",
            objectclass="organizationalUnit",
            filter="(!(ou=archived))",
        )
        searchfilter = options.search_filter.to_string()
        self.assertTrue(searchfilter.startswith("(&"))
        self.assertIn("(objectClass=organizationalUnit)", searchfilter)
        self.assertIn("(!(ou=archived))", searchfilter)

    def test_invalid_filter_is_rejected(self):
        with self.assertRaises(ImproperlyConfigured):
            DirectoryOptions.from_settings(
                "units",
                {
                    "basedn": "dc=example,dc=com",
                    "id_attribute": "ou",
                    "filter": "(((ou=broken",
                },
            )

    def test_missing_basedn(self):
        with self.assertRaises(ImproperlyConfigured):
            DirectoryOptions.from_settings("users", {"id_attribute": "uid"})

    def test_missing_id_attribute(self):
        with self.assertRaises(ImproperlyConfigured):
            DirectoryOptions.from_settings("users", {"basedn": "dc=example,dc=com"})

    def test_invalid_directory_scope(self):
        with self.assertRaises(ImproperlyConfigured):
            DirectoryOptions.from_settings(
                "users",
                {"basedn": "dc=example,dc=com", "id_attribute": "uid", "scope": "x"},
            )

    def test_invalid_pagesize(self):
        with self.assertRaises(ImproperlyConfigured):
            DirectoryOptions.from_settings(
                "users",
                {"basedn": "dc=example,dc=com", "id_attribute": "uid", "pagesize": "x"},
            )

    def test_ldap_options_must_be_a_list(self):
        data = {"basedn": "dc=example,dc=com", "id_attribute": "uid"}
        with self.assertRaises(ImproperlyConfigured) as ctx:
            DirectoryOptions.from_settings(
                "users", dict(data, ldap_options="paged_search")
            )
        self.assertIn("ldap_options", str(ctx.exception))
        options = DirectoryOptions.from_settings(
            "users", dict(data, ldap_options=["paged_search"])
        )
        self.assertEqual(options.ldap_options, ("paged_search",))

    def test_unknown_keys(self):
        with self.assertRaises(ImproperlyConfigured) as ctx:
            DirectoryOptions.from_settings(
                "users",
                {"basedn": "dc=example,dc=com", "id_attribute": "uid", "base": "x"},
            )
        self.assertIn("base", str(ctx.exception))

    def test_duplicate_reference_fields(self):
        with self.assertRaises(ImproperlyConfigured) as ctx:
            DirectoryOptions.from_settings(
                "units",
                {
                    "basedn": "dc=example,dc=com",
                    "id_attribute": "ou",
                    "references": [
                        {"field": "children", "directory": "units"},
                        {"field": "children", "directory": "users"},
                    ],
                },
            )
        self.assertIn("children", str(ctx.exception))
