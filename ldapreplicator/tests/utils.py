"""
Shared fixtures for the replicator tests: Django settings, a scriptable
in-memory directory client and change-log entry builders.
"""

import json
from typing import Any

from django.conf import settings

from ldapreplicator.client import DirectoryClient, SearchResponse
from ldapreplicator.typing import LDAPData

URL = "ldap://ufds.example.com"

USERS_QUERY = "/ou=users, o=smartdc??sub?(objectclass=sdcperson)"
KEYS_QUERY = "/ou=users, o=smartdc??sub?(objectclass=sdckey)"
GROUPS_QUERY = "/ou=groups, o=smartdc??sub?(objectclass=groupofuniquenames)"

REPLICA = {
    "url": URL,
    "queries": [USERS_QUERY, KEYS_QUERY],
    "bindDN": "cn=root",
    "bindCredentials": "secret",
    "reconnect": {"maxDelay": 1000},
    "pollInterval": 500,
    "queueSize": 10,
}


def configure_settings() -> None:
    if not settings.configured:
        settings.configure(
            USE_I18N=False,
            LDAP_REPLICAS={"ufds": REPLICA},
            LDAPREPLICATOR_POLL_INTERVAL=1000,
            LDAPREPLICATOR_QUEUE_SIZE=50,
        )


def changelog_entry(
    number: int,
    changetype: str,
    targetdn: str,
    changes: Any = None,
    changetime: str | None = "2014-02-24T17:43:33.000Z",
) -> LDAPData:
    """
    Build a change-log search result the way python-ldap returns one.

    ``changes`` is JSON encoded unless it is already a string.
    """
    if changes is None:
        changes = {}
    if not isinstance(changes, str):
        changes = json.dumps(changes)
    attrs: dict[str, list[bytes]] = {
        "changenumber": [str(number).encode("utf-8")],
        "changetype": [changetype.encode("utf-8")],
        "targetdn": [targetdn.encode("utf-8")],
        "changes": [changes.encode("utf-8")],
        "objectclass": [b"changeLogEntry"],
    }
    if changetime:
        attrs["changetime"] = [changetime.encode("utf-8")]
    return (f"changenumber={number}, cn=changelog", attrs)


class FakeResult:
    """
    What the fake client answers for searches under one base DN.

    Args:
        entries: the entries to stream

    Keyword Args:
        error: end the stream with this error instead of a normal end
        search_error: fail the search call itself with this error

    """

    def __init__(
        self,
        entries: list[LDAPData] | None = None,
        error: Exception | None = None,
        search_error: Exception | None = None,
    ) -> None:
        self.entries = entries or []
        self.error = error
        self.search_error = search_error


class FakeDirectoryClient(DirectoryClient):
    """
    An in-memory :py:class:`DirectoryClient`.

    Searches are answered from ``results`` (keyed by base DN).  With
    ``defer=True`` the search callback gets its response but the stream is
    parked in :py:attr:`pending` until :py:meth:`drive_pending` is called,
    which is how a search that is still in flight looks.
    """

    def __init__(
        self,
        config: dict[str, Any],
        bind_error: Exception | None = None,
        connect_error: Exception | None = None,
        results: dict[str, FakeResult] | None = None,
        defer: bool = False,
    ) -> None:
        super().__init__(config)
        self.bind_error = bind_error
        self.connect_error = connect_error
        self.results = results or {}
        self.defer = defer
        self.binds: list[tuple[str | None, str | None]] = []
        self.searches: list[tuple[str, str, str]] = []
        self.pending: list[tuple[SearchResponse, FakeResult]] = []
        self.connect_calls = 0
        self.unbind_calls = 0
        self._connected = False

    @property
    def connected(self) -> bool:
        return self._connected

    def connect(self) -> None:
        self.connect_calls += 1
        if self._destroyed or self._connected:
            return
        if self.connect_error is not None:
            self.emit("connectError", self.connect_error)
            return

        def success() -> None:
            self._connected = True
            self.emit("connect")

        def failure(err: Exception) -> None:  # noqa: ARG001
            self.emit("close")

        self.run_setup(success, failure)

    def bind(self, dn, credentials, callback) -> None:
        self.binds.append((dn, credentials))
        callback(self.bind_error)

    def search(self, base, scope, filterstr, callback) -> None:
        self.searches.append((base, scope, filterstr))
        result = self.results.get(base, FakeResult())
        if result.search_error is not None:
            callback(result.search_error, None)
            return
        response = SearchResponse()
        callback(None, response)
        if self.defer:
            self.pending.append((response, result))
            return
        self.drive(response, result)

    def drive(self, response: SearchResponse, result: FakeResult) -> None:
        for entry in result.entries:
            response.emit_entry(entry)
        if result.error is not None:
            response.emit_error(result.error)
        else:
            response.emit_end()

    def drive_pending(self) -> None:
        pending, self.pending = self.pending, []
        for response, result in pending:
            self.drive(response, result)

    def unbind(self, callback=None) -> None:
        self.unbind_calls += 1
        was_connected = self._connected
        self._connected = False
        if was_connected:
            self.emit("close")
        if callback:
            callback(None)

    def destroy(self) -> None:
        if self._destroyed:
            return
        self._destroyed = True
        self.unbind()


def fake_factory(**kwargs):
    """
    Return a client factory building :py:class:`FakeDirectoryClient` objects,
    and the list the built clients are appended to.
    """
    created: list[FakeDirectoryClient] = []

    def build(config: dict[str, Any]) -> FakeDirectoryClient:
        client = FakeDirectoryClient(config, **kwargs)
        created.append(client)
        return client

    return build, created
