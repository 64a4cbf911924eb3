"""
Subscription query compilation.

A subscription is an LDAP URL relative to the remote directory URL, e.g.::

    /ou=users, o=smartdc??sub?(objectclass=sdcperson)

Queries are compiled exactly once, when a directory is constructed.  The
order of the compiled list is the order of the configured strings, and the
matcher relies on it: additions go to the first query that matches.
"""

import re
from dataclasses import dataclass
from typing import Any

from ldap_filter import Filter

from ldapreplicator import ldap

from .dn import DistinguishedName
from .exceptions import ConfigError

#: Filter used when a query does not specify one
DEFAULT_FILTER = "(objectclass=*)"
#: The only supported search scope
SUPPORTED_SCOPE = "sub"

WHITESPACE_RE = re.compile(r"\s")
#: An attribute description at the start of a filter item, up to its operator
ATTRIBUTE_RE = re.compile(r"\(\s*([A-Za-z0-9][A-Za-z0-9.;-]*)(?=\s*(?:[~<>]?=|:))")

SCOPE_NAMES: dict[int, str] = {
    ldap.SCOPE_BASE: "base",  # type: ignore[attr-defined]
    ldap.SCOPE_ONELEVEL: "one",  # type: ignore[attr-defined]
    ldap.SCOPE_SUBTREE: "sub",  # type: ignore[attr-defined]
}


@dataclass(frozen=True)
class Query:
    """
    A compiled subscription query.
    """

    #: The query string as configured
    raw: str
    #: The absolute LDAP URL the query resolved to
    url: str
    #: The subtree the query covers
    base_dn: DistinguishedName
    #: The parsed filter entries must satisfy
    filter: Any
    #: Always ``"sub"``
    scope: str = SUPPORTED_SCOPE

    def __str__(self) -> str:
        return self.raw


def resolve_url(base_url: str, query: str) -> str:
    """
    Join ``query`` onto ``base_url``, percent-encoding any whitespace.
    """
    return WHITESPACE_RE.sub("%20", base_url + query)


def normalize_filter(filterstr: str) -> str:
    """
    Lowercase the attribute names in an LDAP filter string, leaving values as
    they are.

    Change-log payloads are keyed by lowercase attribute names and filter
    evaluation compares names case-sensitively, so ``(objectClass=person)``
    must be compiled as ``(objectclass=person)``.
    """
    return ATTRIBUTE_RE.sub(lambda m: m.group(0).lower(), filterstr)


def compile_query(base_url: str, query: str) -> Query:
    """
    Compile a single subscription query.

    Args:
        base_url: the URL of the remote directory, e.g. ``ldaps://ufds``
        query: the query, relative to ``base_url``

    Raises:
        ConfigError: the query does not parse, has no base DN, has an
            unparseable filter, or asks for a scope other than ``sub``

    Returns:
        The compiled query.

    """
    url = resolve_url(base_url, query)
    try:
        parsed = ldap.LDAPUrl(url)
    except ValueError as e:
        msg = f"Invalid query {query!r}: {e}"
        raise ConfigError(msg) from e

    if parsed.scope is None:
        scope = SUPPORTED_SCOPE
    else:
        scope = SCOPE_NAMES.get(parsed.scope, str(parsed.scope))
    if scope != SUPPORTED_SCOPE:
        msg = f"Invalid query {query!r}: unsupported scope '{scope}', only 'sub' is supported"
        raise ConfigError(msg)

    if not parsed.dn:
        msg = f"Invalid query {query!r}: no base DN"
        raise ConfigError(msg)
    try:
        base_dn = DistinguishedName(parsed.dn)
    except ValueError as e:
        msg = f"Invalid query {query!r}: {e}"
        raise ConfigError(msg) from e

    filterstr = parsed.filterstr or DEFAULT_FILTER
    try:
        search_filter = Filter.parse(normalize_filter(filterstr))
    except Exception as e:  # noqa: BLE001
        msg = f"Invalid query {query!r}: unparseable filter {filterstr!r}"
        raise ConfigError(msg) from e

    return Query(raw=query, url=url, base_dn=base_dn, filter=search_filter, scope=scope)


def compile_queries(base_url: str, queries: list[str]) -> list[Query]:
    """
    Compile every subscription query for a directory, preserving order.

    Args:
        base_url: the URL of the remote directory
        queries: the queries, relative to ``base_url``

    Raises:
        ConfigError: any of the queries is invalid

    Returns:
        The compiled queries, in the order given.

    """
    return [compile_query(base_url, query) for query in queries]
