"""
Distinguished name parsing and normalization.

Tree references compare and search by DN, and the DNs handed back by an LDAP
server are not canonical: attribute types and values come in whatever case
they were created with, and there may be whitespace after the separators.
:py:class:`DistinguishedName` holds a DN in one normalized form so that

    CN=Alice, OU=People,DC=Example,DC=com

and

    cn=alice,ou=people,dc=example,dc=com

compare equal.

The normalized form is always written most-specific component first, which
is the LDAPv3 string convention, and it is the form used as the base of
every search the resolver issues.  It is never written back to a directory.
"""

from ldap import AVA_STRING, DECODING_ERROR
from ldap.dn import dn2str, str2dn

from .exceptions import MalformedNameError, NoParentError
from .typing import AVA, RDN


def _normalize_rdn(rdn: list[tuple[str, str, int]]) -> RDN:
    """
    Lower-case the types and values of one RDN and sort its AVAs, so that
    multi-valued RDNs compare equal regardless of the order they were
    written in.
    """
    avas: list[AVA] = [(attr.lower(), value.lower()) for attr, value, _ in rdn]
    return tuple(sorted(avas))


class DistinguishedName:
    """
    A normalized distinguished name.

    Build these with :py:func:`normalize` or :py:meth:`parse`; the
    constructor takes already normalized RDNs.

    Two instances are equal when their normalized RDN sequences are equal.
    ``str()`` gives the canonical string, with any special characters in
    values (``,``, ``+``, ``=``, ``\\`` and friends) escaped so that a value can
    never be misread as a component boundary.

    Args:
        rdns: The normalized RDNs, most-specific first.

    """

    def __init__(self, rdns: tuple[RDN, ...] = ()) -> None:
        self.rdns: tuple[RDN, ...] = tuple(rdns)

    @classmethod
    def parse(cls, value: str) -> "DistinguishedName":
        """
        Parse and normalize a DN string.

        Args:
            value: The raw DN.

        Raises:
            MalformedNameError: ``value`` is not a syntactically valid DN.

        Returns:
            The normalized DN.

        """
        if not isinstance(value, str):
            raise MalformedNameError(value)
        try:
            rdns = str2dn(value)
        except DECODING_ERROR as e:
            raise MalformedNameError(value) from e
        return cls(tuple(_normalize_rdn(rdn) for rdn in rdns))

    @property
    def parent(self) -> "DistinguishedName":
        """
        The DN with its most-specific component removed.

        Raises:
            NoParentError: this DN has zero or one component.

        """
        if len(self.rdns) <= 1:
            msg = f"'{self}' has no parent"
            raise NoParentError(msg)
        return DistinguishedName(self.rdns[1:])

    @property
    def rdn(self) -> str:
        """
        The most-specific component as a string, e.g. ``uid=alice``.  Empty
        for the root DN.
        """
        if not self.rdns:
            return ""
        return dn2str([self._as_python_ldap(self.rdns[0])])

    def is_descendant_of(self, other: "DistinguishedName") -> bool:
        """
        Return ``True`` if this DN lies strictly below ``other`` in the tree.

        Args:
            other: The would-be ancestor.

        """
        if len(self.rdns) <= len(other.rdns):
            return False
        return self.rdns[len(self.rdns) - len(other.rdns) :] == other.rdns

    @staticmethod
    def _as_python_ldap(rdn: RDN) -> list[tuple[str, str, int]]:
        return [(attr, value, AVA_STRING) for attr, value in rdn]

    def __str__(self) -> str:
        return dn2str([self._as_python_ldap(rdn) for rdn in self.rdns])

    def __repr__(self) -> str:
        return f"<DistinguishedName: {self}>"

    def __len__(self) -> int:
        return len(self.rdns)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, DistinguishedName):
            return NotImplemented
        return self.rdns == other.rdns

    def __hash__(self) -> int:
        return hash(self.rdns)


def normalize(raw_dn: str) -> DistinguishedName:
    """
    Parse ``raw_dn`` into its normalized :py:class:`DistinguishedName`.

    Args:
        raw_dn: The DN as returned by an LDAP server.

    Raises:
        MalformedNameError: ``raw_dn`` is not a syntactically valid DN.

    Returns:
        The normalized DN.

    """
    return DistinguishedName.parse(raw_dn)


def parent_of(dn: DistinguishedName) -> DistinguishedName:
    """
    Return the parent of ``dn``.

    Args:
        dn: A normalized DN.

    Raises:
        NoParentError: ``dn`` is the root DN or a root-level entry.

    Returns:
        ``dn`` without its most-specific component.

    """
    return dn.parent
