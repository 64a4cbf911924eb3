"""
The remote directory: one replicated LDAP directory and its subscriptions.
"""

import logging
from collections.abc import Callable
from typing import Any

from .client import DirectoryClient
from .conf import get_replica_config, validate_config
from .matcher import QueryMatcher
from .poller import ChangelogPoller
from .queries import Query, compile_queries
from .signals import directory_connected, replication_error
from .supervisor import ConnectionSupervisor, ConnectionState, RemoteIdentity
from .typing import DoneCallback, MatchCallback

logger = logging.getLogger("django-ldapreplicator")


class RemoteDirectory:
    """
    A remote LDAP directory we replicate changes from.

    Subscription queries are compiled when the directory is constructed, so a
    bad query fails fast.  Nothing touches the network until
    :py:meth:`connect`.

    Connection and error notifications are sent as the
    :py:data:`~ldapreplicator.signals.directory_connected` and
    :py:data:`~ldapreplicator.signals.replication_error` signals, with the
    directory as ``sender``.

    Example:

        .. code-block:: python

            directory = RemoteDirectory.from_settings("ufds")
            directory.connect()
            directory.poll(last + 1, last + directory.queue_size, handle, done)

    Args:
        config: the replica configuration; see :py:mod:`ldapreplicator.conf`

    Keyword Args:
        client_factory: builds the directory client for a session.  Defaults
            to :py:class:`~ldapreplicator.client.LdapDirectoryClient`.
        name: a label for log messages

    Raises:
        ConfigError: the configuration or one of its queries is invalid

    """

    def __init__(
        self,
        config: dict[str, Any],
        client_factory: Callable[[dict[str, Any]], DirectoryClient] | None = None,
        name: str = "<inline>",
    ) -> None:
        self.name = name
        self.config = validate_config(config, name=name)
        self.raw_queries: list[str] = list(self.config["queries"])
        self.queries: list[Query] = compile_queries(self.config["url"], self.raw_queries)
        self.poll_interval: int = int(self.config["pollInterval"])
        self.queue_size: int = int(self.config["queueSize"])
        self.supervisor = ConnectionSupervisor(
            self.config, client_factory=client_factory, on_connect=self._connected
        )
        self.matcher = QueryMatcher(self.queries, on_error=self._error)
        self.poller = ChangelogPoller(
            lambda: self.supervisor.client, self.matcher, on_error=self._error
        )

    @classmethod
    def from_settings(
        cls,
        name: str,
        client_factory: Callable[[dict[str, Any]], DirectoryClient] | None = None,
    ) -> "RemoteDirectory":
        """
        Build the directory configured as ``settings.LDAP_REPLICAS[name]``.
        """
        return cls(get_replica_config(name), client_factory=client_factory, name=name)

    def __repr__(self) -> str:
        return f"<RemoteDirectory {self.name}: {self.config['url']}>"

    @property
    def identity(self) -> RemoteIdentity:
        return self.supervisor.identity

    @property
    def connected(self) -> bool:
        return self.supervisor.connected

    @property
    def state(self) -> ConnectionState:
        return self.supervisor.state

    @property
    def polling(self) -> bool:
        return self.poller.polling

    def _connected(self, identity: RemoteIdentity) -> None:
        directory_connected.send(sender=self, identity=identity)

    def _error(self, error: Exception) -> None:
        replication_error.send(sender=self, error=error)

    def connect(self) -> None:
        self.supervisor.connect()

    def poll(
        self, start: int, end: int, on_match: MatchCallback, on_done: DoneCallback
    ) -> None:
        """
        Poll change numbers ``start`` through ``end``.

        See :py:meth:`ldapreplicator.poller.ChangelogPoller.poll`.
        """
        self.poller.poll(start, end, on_match, on_done)

    def destroy(self) -> None:
        self.supervisor.destroy()

    def unbind(self, callback: Callable[[Exception | None], None] | None = None) -> None:
        self.supervisor.unbind(callback)
