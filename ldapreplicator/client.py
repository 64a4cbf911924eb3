"""
The directory client: the transport the replicator core talks through.

:py:class:`DirectoryClient` is the interface the core depends on.  It
owns the network session, the reconnect policy and the lifecycle events the
:py:class:`~ldapreplicator.supervisor.ConnectionSupervisor` reacts to:

``setup``
    hooks run in registration order every time a session is established,
    each called as ``hook(client, next)``; ``next(err)`` continues the chain,
    or aborts it if ``err`` is not None
``connect``
    every setup hook succeeded
``error``
    a transport level error
``close``
    the session went away
``resultError``
    an operation completed with an LDAP error result
``connectError``
    a connection attempt failed

:py:class:`LdapDirectoryClient` implements the interface on top of
python-ldap.
"""

import logging
from collections import defaultdict
from collections.abc import Callable
from typing import Any

from ldapreplicator import ldap

from .exceptions import SearchError
from .typing import LDAPData, SetupHook

logger = logging.getLogger("django-ldapreplicator")

#: Lifecycle events a client emits
EVENTS: tuple[str, ...] = (
    "setup",
    "connect",
    "error",
    "close",
    "resultError",
    "connectError",
)

SCOPES: dict[str, int] = {
    "base": ldap.SCOPE_BASE,  # type: ignore[attr-defined]
    "one": ldap.SCOPE_ONELEVEL,  # type: ignore[attr-defined]
    "sub": ldap.SCOPE_SUBTREE,  # type: ignore[attr-defined]
}


class SearchResponse:
    """
    The stream of results of one search.

    Consumers register handlers with :py:meth:`on_entry`, :py:meth:`on_error`
    and :py:meth:`on_end`; client implementations feed the stream with the
    ``emit_*`` methods.  A stream ends with exactly one ``end`` or ``error``.
    """

    def __init__(self) -> None:
        self._entry_handlers: list[Callable[[LDAPData], None]] = []
        self._error_handlers: list[Callable[[Exception], None]] = []
        self._end_handlers: list[Callable[[], None]] = []
        self.finished: bool = False

    def on_entry(self, handler: Callable[[LDAPData], None]) -> "SearchResponse":
        self._entry_handlers.append(handler)
        return self

    def on_error(self, handler: Callable[[Exception], None]) -> "SearchResponse":
        self._error_handlers.append(handler)
        return self

    def on_end(self, handler: Callable[[], None]) -> "SearchResponse":
        self._end_handlers.append(handler)
        return self

    def emit_entry(self, data: LDAPData) -> None:
        if self.finished:
            return
        for handler in list(self._entry_handlers):
            handler(data)

    def emit_error(self, error: Exception) -> None:
        if self.finished:
            return
        self.finished = True
        for handler in list(self._error_handlers):
            handler(error)

    def emit_end(self) -> None:
        if self.finished:
            return
        self.finished = True
        for handler in list(self._end_handlers):
            handler()


SearchCallback = Callable[[Exception | None, SearchResponse | None], None]


class DirectoryClient:
    """
    Base class for directory clients.

    Subclasses implement the transport (:py:meth:`connect`, :py:meth:`bind`,
    :py:meth:`search`, :py:meth:`unbind`, :py:meth:`destroy` and the
    :py:attr:`connected` property); this class provides event registration
    and the setup hook chain.

    Args:
        config: the replica configuration

    """

    def __init__(self, config: dict[str, Any]) -> None:
        self.config = config
        self.url: str = config["url"]
        self._handlers: dict[str, list[Callable[..., Any]]] = defaultdict(list)
        self._setup_hooks: list[SetupHook] = []
        self._destroyed: bool = False

    # Events

    def on(self, event: str, handler: Callable[..., Any]) -> None:
        """
        Register ``handler`` for ``event``.

        Handlers registered for ``setup`` become setup hooks.

        Raises:
            ValueError: ``event`` is not one of :py:data:`EVENTS`

        """
        if event not in EVENTS:
            msg = f"Unknown directory client event: {event}"
            raise ValueError(msg)
        if event == "setup":
            self._setup_hooks.append(handler)
            return
        self._handlers[event].append(handler)

    def add_setup(self, hook: SetupHook) -> None:
        self.on("setup", hook)

    def emit(self, event: str, *args: Any) -> None:
        for handler in list(self._handlers[event]):
            handler(*args)

    def run_setup(
        self, on_success: Callable[[], None], on_failure: Callable[[Exception], None]
    ) -> None:
        """
        Run the setup hooks in order.

        Each hook only runs after the previous one has called ``next(None)``.
        The first hook to call ``next(err)`` stops the chain.

        Args:
            on_success: called once every hook has succeeded
            on_failure: called with the error of the hook that failed

        """
        hooks = list(self._setup_hooks)

        def step(index: int) -> None:
            if index >= len(hooks):
                on_success()
                return
            called = False

            def next_(err: Exception | None = None) -> None:
                nonlocal called
                if called:
                    return
                called = True
                if err is not None:
                    on_failure(err)
                else:
                    step(index + 1)

            hooks[index](self, next_)

        step(0)

    # Transport

    @property
    def connected(self) -> bool:
        raise NotImplementedError

    @property
    def destroyed(self) -> bool:
        return self._destroyed

    def connect(self) -> None:
        raise NotImplementedError

    def bind(
        self,
        dn: str | None,
        credentials: str | None,
        callback: Callable[[Exception | None], None],
    ) -> None:
        raise NotImplementedError

    def search(
        self,
        base: str,
        scope: str,
        filterstr: str,
        callback: SearchCallback,
    ) -> None:
        raise NotImplementedError

    def unbind(self, callback: Callable[[Exception | None], None] | None = None) -> None:
        raise NotImplementedError

    def destroy(self) -> None:
        raise NotImplementedError


class LdapDirectoryClient(DirectoryClient):
    """
    A :py:class:`DirectoryClient` backed by python-ldap.

    The session is a :py:class:`ldap.ldapobject.ReconnectLDAPObject`, so an
    operation that finds the server gone is retried up to
    ``reconnect["retries"]`` times, ``reconnect["maxDelay"]`` milliseconds
    apart, before it fails.

    Recognized connection options, alongside the replica options:

    * ``timeout``: network timeout in seconds (default 15.0)
    * ``use_starttls``: issue StartTLS before binding (default False)
    * ``tls_verify``: ``never`` or ``always`` (default ``never``)
    * ``tls_ca_certfile``: CA certificate bundle path
    * ``follow_referrals``: chase referrals (default False)

    Args:
        config: the replica configuration

    """

    def __init__(self, config: dict[str, Any]) -> None:
        super().__init__(config)
        self._ldap: Any = None
        self._connecting: bool = False
        self._connected: bool = False

    @property
    def connected(self) -> bool:
        return self._connected and self._ldap is not None

    def _initialize(self) -> Any:
        """
        Create a new python-ldap session object with our options applied.

        Raises:
            ValueError: If the ``tls_verify`` value in the configuration is invalid.
            ldap.LDAPError: the session could not be established

        Returns:
            A connected ReconnectLDAPObject.

        """
        config = self.config
        reconnect = config.get("reconnect") or {}
        ldap_object = ldap.ldapobject.ReconnectLDAPObject(
            self.url,
            retry_max=int(reconnect.get("retries", 5)),
            retry_delay=float(reconnect.get("maxDelay", 10000)) / 1000.0,
        )
        if config.get("follow_referrals", False):
            ldap_object.set_option(ldap.OPT_REFERRALS, 1)  # type: ignore[attr-defined]
        else:
            ldap_object.set_option(ldap.OPT_REFERRALS, 0)  # type: ignore[attr-defined]
        timeout = config.get("timeout", 15.0)
        ldap_object.set_option(ldap.OPT_NETWORK_TIMEOUT, float(timeout))  # type: ignore[attr-defined]
        tls_verify = config.get("tls_verify", "never")
        if tls_verify == "never":
            ldap_object.set_option(ldap.OPT_X_TLS_REQUIRE_CERT, ldap.OPT_X_TLS_NEVER)  # type: ignore[attr-defined]
        elif tls_verify == "always":
            ldap_object.set_option(ldap.OPT_X_TLS_REQUIRE_CERT, ldap.OPT_X_TLS_DEMAND)  # type: ignore[attr-defined]
        else:
            msg = f"Invalid tls_verify value: {tls_verify}"
            raise ValueError(msg)
        if tls_ca_certfile := config.get("tls_ca_certfile", None):
            ldap_object.set_option(ldap.OPT_X_TLS_CACERTFILE, tls_ca_certfile)  # type: ignore[attr-defined]
        ldap_object.set_option(ldap.OPT_X_TLS_NEWCTX, 0)  # type: ignore[attr-defined]
        if config.get("use_starttls", False):
            ldap_object.start_tls_s()
        return ldap_object

    def _is_transport_error(self, error: Exception) -> bool:
        return isinstance(error, (ldap.SERVER_DOWN, ldap.CONNECT_ERROR))  # type: ignore[attr-defined]

    def _handle_error(self, error: Exception) -> None:
        if self._is_transport_error(error):
            self.emit("error", error)
            self._drop_session()
        else:
            self.emit("resultError", error)

    def _drop_session(self) -> None:
        was_open = self._ldap is not None
        self._ldap = None
        self._connected = False
        self._connecting = False
        if was_open:
            self.emit("close")

    def connect(self) -> None:
        """
        Open a session and run the setup hooks.

        A no-op while the client is connected or connecting.
        """
        if self._destroyed or self._connecting or self.connected:
            return
        self._connecting = True
        try:
            self._ldap = self._initialize()
        except ldap.LDAPError as e:  # type: ignore[attr-defined]
            self._connecting = False
            self._ldap = None
            self.emit("connectError", e)
            return

        def success() -> None:
            self._connecting = False
            self._connected = True
            self.emit("connect")

        def failure(err: Exception) -> None:  # noqa: ARG001
            # The hook that failed has already reported why.
            if self._ldap is not None:
                try:
                    self._ldap.unbind_s()
                except ldap.LDAPError as e:  # type: ignore[attr-defined]
                    self.emit("error", e)
            self._drop_session()

        self.run_setup(success, failure)

    def bind(
        self,
        dn: str | None,
        credentials: str | None,
        callback: Callable[[Exception | None], None],
    ) -> None:
        if self._ldap is None:
            callback(SearchError("not connected"))
            return
        try:
            self._ldap.simple_bind_s(dn or "", credentials or "")
        except ldap.LDAPError as e:  # type: ignore[attr-defined]
            self._handle_error(e)
            callback(e)
            return
        callback(None)

    def search(
        self,
        base: str,
        scope: str,
        filterstr: str,
        callback: SearchCallback,
    ) -> None:
        """
        Issue a search and stream its results.

        ``callback(err, response)`` is called before any result is read, so
        the caller can register its handlers on ``response``.

        Args:
            base: the search base DN
            scope: ``base``, ``one`` or ``sub``
            filterstr: the LDAP filter string
            callback: receives ``(None, response)`` or ``(err, None)``

        """
        if self._ldap is None:
            callback(SearchError("not connected"), None)
            return
        try:
            msgid = self._ldap.search_ext(base, SCOPES[scope], filterstr)
        except ldap.LDAPError as e:  # type: ignore[attr-defined]
            self._handle_error(e)
            callback(e, None)
            return

        response = SearchResponse()
        callback(None, response)
        while True:
            try:
                rtype, rdata, _, _ = self._ldap.result3(msgid, all=0)
            except ldap.LDAPError as e:  # type: ignore[attr-defined]
                self._handle_error(e)
                response.emit_error(e)
                return
            if rtype == ldap.RES_SEARCH_ENTRY:  # type: ignore[attr-defined]
                for dn, attrs in rdata:
                    # Skip search references
                    if isinstance(attrs, dict):
                        response.emit_entry((dn, attrs))
            elif rtype == ldap.RES_SEARCH_RESULT:  # type: ignore[attr-defined]
                response.emit_end()
                return

    def unbind(self, callback: Callable[[Exception | None], None] | None = None) -> None:
        error: Exception | None = None
        if self._ldap is not None:
            try:
                self._ldap.unbind_s()
            except ldap.LDAPError as e:  # type: ignore[attr-defined]
                self.emit("error", e)
                error = e
        self._drop_session()
        if callback:
            callback(error)

    def destroy(self) -> None:
        if self._destroyed:
            return
        self._destroyed = True
        self.unbind()
