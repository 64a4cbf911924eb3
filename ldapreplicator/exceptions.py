"""
Exceptions raised or reported by the replicator.

Only :py:class:`ConfigError` is ever raised out of the public API, and only
while a directory is being constructed.  Everything else describes a runtime
condition that is logged, handed to an ``on_error`` callback and broadcast
with the :py:data:`ldapreplicator.signals.replication_error` signal.
"""

from typing import Any

from django.core.exceptions import ImproperlyConfigured


class ReplicatorError(Exception):
    """
    Base class for all replicator errors.
    """


class ConfigError(ReplicatorError, ImproperlyConfigured):
    """
    A subscription query or directory configuration is unusable.
    """


class BindError(ReplicatorError):
    """
    The bind step of the connection bootstrap failed.
    """


class VersionQueryError(ReplicatorError):
    """
    The root DSE search for the remote schema version failed.
    """


class UuidQueryError(ReplicatorError):
    """
    The remote instance identity could not be read.
    """


class TransientDirectoryError(ReplicatorError):
    """
    The remote directory answered "unavailable" or "busy".
    """


class SearchError(ReplicatorError):
    """
    A change-log search could not be issued or failed mid-stream.
    """


class PayloadParseError(ReplicatorError):
    """
    The serialized ``changes`` payload of a change-log entry is not JSON.

    Args:
        change_number: the change number of the offending entry
        payload: the raw payload that failed to decode

    """

    def __init__(self, change_number: int, payload: Any) -> None:
        self.change_number = change_number
        self.payload = payload
        super().__init__(
            f"changenumber {change_number}: unable to decode changes payload"
        )


class MatchTypeError(ReplicatorError):
    """
    A change-log entry carries a change type outside add/modify/delete.
    """

    def __init__(self, change_number: int, change_type: Any) -> None:
        self.change_number = change_number
        self.change_type = change_type
        super().__init__(
            f"changenumber {change_number}: invalid change type: {change_type}"
        )


class MalformedEntryError(ReplicatorError, ValueError):
    """
    A change-log entry has a change number but can't otherwise be decoded,
    e.g. its ``targetdn`` is not a valid DN.

    The change number is kept so the entry still counts toward progress.
    """

    def __init__(self, change_number: int, reason: str) -> None:
        self.change_number = change_number
        self.reason = reason
        super().__init__(f"changenumber {change_number}: {reason}")
