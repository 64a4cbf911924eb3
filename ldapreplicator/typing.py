"""
LDAP replicator type definitions.

This module provides type aliases for the LDAP data structures and callbacks
passed between the directory client, the poller and the caller.
"""

from collections.abc import Callable
from typing import Any

LDAPData = tuple[str, dict[str, list[bytes]]]
ChangePayload = dict[str, Any] | str
ErrorCallback = Callable[[Exception], None]
MatchCallback = Callable[[Any], None]
DoneCallback = Callable[[int | None], None]
SetupHook = Callable[[Any, Callable[[Exception | None], None]], None]
