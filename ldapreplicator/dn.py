"""
Distinguished name handling.

Parsing is done by :py:func:`ldap.dn.str2dn`; this module adds the
comparisons the matcher needs on top of it.
"""

from typing import Any

from ldapreplicator import ldap


def _normalize_value(value: str) -> str:
    return " ".join(value.split()).lower()


class DistinguishedName:
    """
    A parsed distinguished name.

    Attribute names and values compare case-insensitively, and multi-valued
    RDNs compare as sets, so ``ou=Users, o=SmartDC`` equals
    ``ou=users,o=smartdc``.

    Args:
        dn: the DN in string form

    Raises:
        ValueError: ``dn`` is not a valid distinguished name

    """

    def __init__(self, dn: str) -> None:
        self.raw = dn
        try:
            parsed = ldap.dn.str2dn(dn)
        except ldap.DECODING_ERROR as e:
            msg = f"Invalid DN: {dn!r}"
            raise ValueError(msg) from e
        #: RDNs from leaf to root, each a frozenset of (attribute, value) pairs
        self.rdns: tuple[frozenset[tuple[str, str]], ...] = tuple(
            frozenset(
                (attr.lower(), _normalize_value(value)) for attr, value, _ in rdn
            )
            for rdn in parsed
        )

    def __len__(self) -> int:
        return len(self.rdns)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, str):
            other = DistinguishedName(other)
        if not isinstance(other, DistinguishedName):
            return NotImplemented
        return self.rdns == other.rdns

    def __hash__(self) -> int:
        return hash(self.rdns)

    def __str__(self) -> str:
        return self.raw

    def __repr__(self) -> str:
        return f"DistinguishedName({self.raw!r})"

    def is_descendant_of(self, other: "DistinguishedName | str") -> bool:
        """
        Test whether ``other`` is an ancestor of this DN, or this DN itself.

        This is the test a ``sub`` scoped search applies: the base entry and
        everything below it.  The empty DN is an ancestor of every DN.

        Args:
            other: the would-be ancestor

        Returns:
            True if this DN lies within the subtree rooted at ``other``.

        """
        if isinstance(other, str):
            other = DistinguishedName(other)
        depth = len(other.rdns)
        if depth > len(self.rdns):
            return False
        if depth == 0:
            return True
        return self.rdns[-depth:] == other.rdns

    def is_ancestor_of(self, other: "DistinguishedName | str") -> bool:
        """
        The inverse of :py:meth:`is_descendant_of`.
        """
        if isinstance(other, str):
            other = DistinguishedName(other)
        return other.is_descendant_of(self)


def parse_dn(value: Any) -> DistinguishedName:
    """
    Coerce ``value`` to a :py:class:`DistinguishedName`.

    Args:
        value: a DN string, bytes as returned by python-ldap, or an already
            parsed DN

    Returns:
        The parsed DN.

    """
    if isinstance(value, DistinguishedName):
        return value
    if isinstance(value, bytes):
        value = value.decode("utf-8")
    return DistinguishedName(value)
