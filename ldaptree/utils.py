from .typing import LDAPAttributes


def first_value(attrs: LDAPAttributes, attribute: str) -> str | None:
    """
    Return the first non-empty value of ``attribute`` in ``attrs``, decoded to
    :py:class:`str`.  Attribute names are matched case-insensitively, as LDAP
    does.

    Args:
        attrs: The attribute map of an LDAP entry.
        attribute: The attribute name to look up.

    Returns:
        The first value, or ``None`` if the attribute is absent or empty.

    """
    wanted = attribute.lower()
    for key, values in attrs.items():
        if key.lower() != wanted:
            continue
        for value in values or []:
            if value is None:
                continue
            if isinstance(value, bytes):
                value = value.decode("utf-8")  # noqa: PLW2901
            if value:
                return value
    return None
