"""
Exceptions raised by the LDAP tree reference machinery.

Configuration problems are reported with Django's
:py:class:`~django.core.exceptions.ImproperlyConfigured` instead of anything
defined here.
"""


class MalformedNameError(ValueError):
    """
    A string could not be parsed as a distinguished name.

    Args:
        dn: The offending value.

    """

    def __init__(self, dn: object) -> None:
        self.dn = dn
        super().__init__(f"Invalid distinguished name: {dn!r}")


class NoParentError(ValueError):
    """
    A distinguished name has no parent: it is the root DN or a root-level
    entry.
    """


class DirectoryError(Exception):
    """
    Talking to an LDAP directory failed, or an entry lookup by id was
    ambiguous.
    """


class ReferenceLookupError(LookupError):
    """
    A reference lookup could not be completed.

    Args:
        msg: The error message.

    Keyword Args:
        operation: The name of the lookup that failed.
        operand: The entry id or DN the lookup was working on.

    """

    def __init__(
        self, msg: str, operation: str | None = None, operand: str | None = None
    ) -> None:
        self.operation = operation
        self.operand = operand
        if operation:
            msg = f"{operation}({operand}): {msg}"
        super().__init__(msg)
