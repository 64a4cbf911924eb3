"""
Change-log entry models.

This module provides the :py:class:`ChangeType` enumeration and the
:py:class:`ChangelogEntry` class, which decodes the raw ``(dn, attrs)`` tuples
python-ldap returns from a ``cn=changelog`` search.
"""

import datetime
import enum
import json
from dataclasses import dataclass, field
from typing import Any

import pytz

from ldapreplicator import ldap

from .dn import DistinguishedName, parse_dn
from .exceptions import MalformedEntryError, PayloadParseError
from .typing import ChangePayload, LDAPData


class ChangeType(enum.Enum):
    """
    The closed set of change types a change-log entry can carry.
    """

    ADD = "add"
    MODIFY = "modify"
    DELETE = "delete"

    @property
    def is_definitive(self) -> bool:
        """
        True if the entry carries the full new state of the target.

        Only additions do.  Modifications and deletions carry a delta (or
        nothing), so a filter can't be judged against them without the
        current state of the entry.
        """
        return self is ChangeType.ADD

    @classmethod
    def lookup(cls, value: Any) -> "ChangeType | None":
        """
        Return the member for ``value``, or None if ``value`` is not one.
        """
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            return None


def _first(
    attrs: dict[str, list[bytes]], name: str, errors: str = "replace"
) -> str | None:
    values = attrs.get(name)
    if not values:
        return None
    value = values[0]
    if isinstance(value, bytes):
        return value.decode("utf-8", errors)
    return str(value)


@dataclass
class ChangelogEntry:
    """
    One decoded change-log record.
    """

    #: The DN of the change-log record itself, e.g. ``changenumber=5,cn=changelog``
    dn: str
    #: Position of the change in the change-log
    change_number: int
    #: ``add``, ``modify`` or ``delete`` for a well-formed entry
    change_type: str
    #: The entry the change applies to
    target_dn: DistinguishedName
    #: The decoded JSON payload, or the raw string if it did not decode
    changes: ChangePayload
    #: When the change was made
    change_time: datetime.datetime | None = None
    #: Filters of the subscription queries this change is relevant to
    matched_queries: list[Any] = field(default_factory=list)
    #: Set when the ``changes`` payload could not be decoded
    decode_error: PayloadParseError | None = None

    #: Formats the ``changetime`` attribute is known to arrive in
    CHANGETIME_FORMATS = (  # noqa: RUF012
        "%Y-%m-%dT%H:%M:%S.%fZ",
        "%Y-%m-%dT%H:%M:%SZ",
        "%Y%m%d%H%M%SZ",
    )

    @property
    def kind(self) -> ChangeType | None:
        """
        The :py:class:`ChangeType` of this entry, or None if it is not one.
        """
        return ChangeType.lookup(self.change_type)

    @classmethod
    def parse_changetime(cls, value: str | None) -> datetime.datetime | None:
        """
        Parse a ``changetime`` value into an aware UTC datetime.

        Returns:
            The datetime, or None if ``value`` is empty or in no known format.

        """
        if not value:
            return None
        for fmt in cls.CHANGETIME_FORMATS:
            try:
                dt = datetime.datetime.strptime(value, fmt)
            except ValueError:  # noqa: PERF203
                pass
            else:
                return pytz.utc.localize(dt)
        return None

    @classmethod
    def from_ldap(cls, data: LDAPData) -> "ChangelogEntry":
        """
        Decode a change-log search result.

        A ``changes`` payload that is not valid UTF-8 JSON does not make the
        entry unusable: the raw string is kept and :py:attr:`decode_error` is set
        so the caller can report it.

        Args:
            data: a ``(dn, attrs)`` tuple from python-ldap

        Raises:
            ValueError: the entry has no integer ``changenumber``
            MalformedEntryError: the entry has a change number but its
                ``targetdn`` is not a valid DN

        Returns:
            The decoded entry.

        """
        dn, raw_attrs = data
        attrs = ldap.cidict.cidict(raw_attrs)
        number = _first(attrs, "changenumber")
        try:
            change_number = int(number)  # type: ignore[arg-type]
        except (TypeError, ValueError) as e:
            msg = f"{dn}: changenumber {number!r} is not an integer"
            raise ValueError(msg) from e

        decode_error = None
        try:
            raw_changes = _first(attrs, "changes", "strict") or ""
        except UnicodeDecodeError:
            raw_changes = _first(attrs, "changes") or ""
            decode_error = PayloadParseError(change_number, raw_changes)
        changes: ChangePayload = raw_changes
        if decode_error is None:
            try:
                changes = json.loads(raw_changes)
            except ValueError:
                decode_error = PayloadParseError(change_number, raw_changes)

        try:
            target_dn = parse_dn(_first(attrs, "targetdn", "strict") or "")
        except ValueError as e:
            raise MalformedEntryError(change_number, f"invalid targetdn: {e}") from e

        return cls(
            dn=dn,
            change_number=change_number,
            change_type=_first(attrs, "changetype") or "",
            target_dn=target_dn,
            changes=changes,
            change_time=cls.parse_changetime(_first(attrs, "changetime")),
            decode_error=decode_error,
        )

    def as_dict(self) -> dict[str, Any]:
        """
        Return a JSON serializable representation of this entry.
        """
        return {
            "dn": self.dn,
            "changenumber": self.change_number,
            "changetype": self.change_type,
            "targetdn": str(self.target_dn),
            "changes": self.changes,
            "changetime": self.change_time.isoformat() if self.change_time else None,
            "queries": [f.to_string() for f in self.matched_queries],
        }
