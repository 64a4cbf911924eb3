"""
Connection lifecycle for one remote directory.

The :py:class:`ConnectionSupervisor` owns the directory client session.  Each
time the client establishes a session it runs our bootstrap, strictly in
order:

1. bind with the configured credentials;
2. read the remote schema version from the root DSE;
3. read the remote instance UUID from ``cn=uuid``.

A failure in step 1 or 2 aborts the attempt; the client's reconnect policy
decides when to try again.  Step 3 is best effort.
"""

import enum
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from ldapreplicator import ldap

from .client import DirectoryClient, LdapDirectoryClient, SearchResponse
from .exceptions import (
    BindError,
    TransientDirectoryError,
    UuidQueryError,
    VersionQueryError,
)
from .once import Once
from .typing import LDAPData

logger = logging.getLogger("django-ldapreplicator")

#: Where the remote instance records its UUID
IDENTITY_DN = "cn=uuid"
#: Root DSE attribute carrying the remote schema version
VERSION_ATTRIBUTE = "morayVersion"
#: Directories older than schema version 17 did not report a version, so
#: anything that doesn't report one is at 17
LEGACY_SCHEMA_VERSION = 17

#: Result errors that mean "come back later": we drop the session so the
#: client's reconnect policy takes over
TRANSIENT_ERRORS: tuple[type[Exception], ...] = (
    ldap.UNAVAILABLE,  # type: ignore[attr-defined]
    ldap.BUSY,  # type: ignore[attr-defined]
    TransientDirectoryError,
)


class ConnectionState(enum.Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    BOUND = "bound"
    BOOTSTRAPPING = "bootstrapping"
    READY = "ready"
    ERROR = "error"
    CLOSED = "closed"


@dataclass(frozen=True)
class RemoteIdentity:
    """
    Who we are replicating from.
    """

    url: str
    uuid: str | None = None
    version: int | None = None


def _first_value(data: LDAPData, name: str) -> str | None:
    attrs = ldap.cidict.cidict(data[1])
    values = attrs.get(name)
    if not values:
        return None
    value = values[0]
    return value.decode("utf-8") if isinstance(value, bytes) else str(value)


def parse_version(value: str | None) -> int:
    """
    Interpret a root DSE version value.

    Returns:
        The version, or :py:data:`LEGACY_SCHEMA_VERSION` if ``value`` is not
        a positive integer.

    """
    try:
        version = int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return LEGACY_SCHEMA_VERSION
    if version > 0:
        return version
    return LEGACY_SCHEMA_VERSION


class ConnectionSupervisor:
    """
    Own the directory client session for one remote directory.

    Args:
        config: the validated replica configuration

    Keyword Args:
        client_factory: builds a :py:class:`DirectoryClient` from ``config``.
            Defaults to :py:class:`LdapDirectoryClient`.
        on_connect: called with the :py:class:`RemoteIdentity` each time a
            session becomes ready

    """

    def __init__(
        self,
        config: dict[str, Any],
        client_factory: Callable[[dict[str, Any]], DirectoryClient] | None = None,
        on_connect: Callable[[RemoteIdentity], None] | None = None,
    ) -> None:
        self.config = config
        self.client_factory = client_factory or LdapDirectoryClient
        self.on_connect = on_connect
        self.client: DirectoryClient | None = None
        self._state = ConnectionState.DISCONNECTED
        self._version: int | None = None
        self._uuid: str | None = None

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def version(self) -> int | None:
        """
        The remote schema version read during the current session's bootstrap.
        """
        return self._version

    @property
    def identity(self) -> RemoteIdentity:
        return RemoteIdentity(url=self.config["url"], uuid=self._uuid, version=self._version)

    @property
    def connected(self) -> bool:
        return self.client is not None and self.client.connected

    def connect(self) -> None:
        """
        Start the session, if it isn't already started.

        A no-op while connected or connecting.  After :py:meth:`destroy`, a
        brand new client is created.
        """
        if self.client is not None and not self.client.destroyed:
            self.client.connect()
            return

        client = self.client_factory(self.config)
        client.add_setup(self._setup_bind)
        client.add_setup(self._setup_version)
        client.add_setup(self._setup_identity)
        client.on("connect", self._handle_connect)
        client.on("error", self._handle_error)
        client.on("close", self._handle_close)
        client.on("resultError", self._handle_result_error)
        client.on("connectError", self._handle_connect_error)
        self.client = client
        self._state = ConnectionState.CONNECTING
        client.connect()

    def destroy(self) -> None:
        if self.client is None or self.client.destroyed:
            return
        self.client.destroy()
        self._state = ConnectionState.CLOSED

    def unbind(self, callback: Callable[[Exception | None], None] | None = None) -> None:
        """
        Unbind from the remote directory, if connected.
        """
        if self.client is not None and self.client.connected:
            self.client.unbind(callback or (lambda err: None))  # noqa: ARG005

    # Bootstrap

    def _setup_bind(
        self, client: DirectoryClient, next_: Callable[[Exception | None], None]
    ) -> None:
        # The identity belongs to the session; start each one from scratch.
        self._state = ConnectionState.CONNECTING
        self._uuid = None
        self._version = None
        bind_dn = self.config.get("bindDN")

        def done(err: Exception | None) -> None:
            if err is not None:
                logger.error("invalid bind credentials for %s: %s", bind_dn, err)
                self._state = ConnectionState.ERROR
                next_(BindError(f"bind as {bind_dn} failed: {err}"))
                return
            self._state = ConnectionState.BOUND
            next_(None)

        client.bind(bind_dn, self.config.get("bindCredentials"), done)

    def _setup_version(
        self, client: DirectoryClient, next_: Callable[[Exception | None], None]
    ) -> None:
        self._state = ConnectionState.BOOTSTRAPPING

        def finish(err: Exception | None = None) -> None:
            if err is not None:
                logger.error("unable to query remote directory version: %s", err)
                self._state = ConnectionState.ERROR
                next_(VersionQueryError(str(err)))
                return
            next_(None)

        done = Once(finish)

        def on_entry(data: LDAPData) -> None:
            if done.called:
                return
            self._version = parse_version(_first_value(data, VERSION_ATTRIBUTE))
            done()

        def on_end() -> None:
            if not done.called:
                self._version = LEGACY_SCHEMA_VERSION
                done()

        def on_search(err: Exception | None, res: SearchResponse | None) -> None:
            if err is not None or res is None:
                done(err or VersionQueryError("no search response"))
                return
            res.on_entry(on_entry)
            res.on_error(done)
            res.on_end(on_end)

        client.search("", "base", "(objectclass=*)", on_search)

    def _setup_identity(
        self, client: DirectoryClient, next_: Callable[[Exception | None], None]
    ) -> None:
        done = Once(next_)

        def skip(err: Exception) -> None:
            logger.info("%s", UuidQueryError(f"unable to read {IDENTITY_DN}: {err}"))
            done(None)

        def on_entry(data: LDAPData) -> None:
            uuid = _first_value(data, "uuid")
            if uuid:
                self._uuid = uuid

        def on_search(err: Exception | None, res: SearchResponse | None) -> None:
            if err is not None or res is None:
                skip(err or UuidQueryError("no search response"))
                return
            res.on_entry(on_entry)
            res.on_error(skip)
            res.on_end(lambda: done(None))

        client.search(IDENTITY_DN, "base", "(objectclass=*)", on_search)

    # Client events

    def _handle_connect(self) -> None:
        self._state = ConnectionState.READY
        logger.info(
            "connected and bound to %s as %s (version=%s, uuid=%s)",
            self.config["url"],
            self.config.get("bindDN"),
            self._version,
            self._uuid,
        )
        if self.on_connect:
            self.on_connect(self.identity)

    def _handle_error(self, err: Exception) -> None:
        logger.warning("ldap error: %s", err)

    def _handle_close(self) -> None:
        if self.client is not None and self.client.destroyed:
            self._state = ConnectionState.CLOSED
            return
        logger.warning("ldap disconnect from %s", self.config["url"])
        if self._state is not ConnectionState.ERROR:
            self._state = ConnectionState.DISCONNECTED

    def _handle_result_error(self, err: Exception) -> None:
        if isinstance(err, TRANSIENT_ERRORS):
            logger.warning("ldap unavailable: %s", err)
            if self.client is not None:
                self.client.unbind()
            return
        # Other result errors are the concern of whoever issued the operation
        logger.debug("ldap result error: %s", err)

    def _handle_connect_error(self, err: Exception) -> None:
        logger.warning("ldap connection attempt to %s failed: %s", self.config["url"], err)
        self._state = ConnectionState.ERROR
