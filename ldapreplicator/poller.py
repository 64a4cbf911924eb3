"""
Bounded change-log polling.
"""

import logging
import threading
from collections.abc import Callable

from ldap_filter import Filter

from .client import DirectoryClient, SearchResponse
from .exceptions import MalformedEntryError, SearchError
from .matcher import QueryMatcher
from .models import ChangelogEntry
from .once import Once
from .typing import DoneCallback, ErrorCallback, LDAPData, MatchCallback

logger = logging.getLogger("django-ldapreplicator")

#: The container the remote directory keeps its change-log under
CHANGELOG_DN = "cn=changelog"


def changelog_filter(start: int, end: int) -> str:
    """
    Build the filter selecting change numbers ``start`` through ``end``, inclusive.
    """
    return Filter.AND(
        [
            Filter.attribute("changenumber").gte(str(start)),
            Filter.attribute("changenumber").lte(str(end)),
        ]
    ).to_string()


class ChangelogPoller:
    """
    Pull windows of the remote change-log through the query matcher.

    At most one poll runs at a time on a poller; see :py:meth:`poll`.

    Args:
        client: returns the current :py:class:`DirectoryClient`, or None if
            there is no session
        matcher: the matcher for this directory's queries

    Keyword Args:
        on_error: called with each non-fatal error (undecodable payloads,
            malformed entries, failed searches)

    """

    def __init__(
        self,
        client: Callable[[], DirectoryClient | None],
        matcher: QueryMatcher,
        on_error: ErrorCallback | None = None,
    ) -> None:
        self.client = client
        self.matcher = matcher
        self.on_error = on_error
        self.polling: bool = False
        self._lock = threading.Lock()

    def _report(self, error: Exception) -> None:
        if self.on_error:
            self.on_error(error)

    def _process(self, data: LDAPData, on_match: MatchCallback) -> int | None:
        """
        Decode and match one entry.

        Returns:
            The entry's change number, or None if it had none.  An entry that
            has a change number but can't be decoded still returns it.

        """
        try:
            entry = ChangelogEntry.from_ldap(data)
        except ValueError as e:
            logger.warning("skipping malformed changelog entry %s: %s", data[0], e)
            self._report(e)
            if isinstance(e, MalformedEntryError):
                return e.change_number
            return None
        if entry.decode_error is not None:
            logger.warning("%s", entry.decode_error)
            self._report(entry.decode_error)
        entry.matched_queries = self.matcher.match(entry)
        if entry.matched_queries:
            on_match(entry)
        return entry.change_number

    def poll(
        self,
        start: int,
        end: int,
        on_match: MatchCallback,
        on_done: DoneCallback,
    ) -> None:
        """
        Search the change-log for change numbers ``start`` through ``end``.

        Each entry relevant to at least one query is passed to ``on_match``
        with its :py:attr:`~ldapreplicator.models.ChangelogEntry.matched_queries`
        filled in.  ``on_done`` is then called exactly once with the highest
        change number seen, matched or not, or 0 if no entry was seen.  Resume
        from that number plus one.

        If a poll is already running, ``on_done(None)`` is called right away
        and no search is issued.

        Args:
            start: the lowest change number to fetch
            end: the highest change number to fetch
            on_match: receives each relevant :py:class:`ChangelogEntry`
            on_done: receives the last change number seen

        """
        with self._lock:
            if self.polling:
                busy = True
            else:
                busy = False
                self.polling = True
        if busy:
            logger.debug("poll %d-%d skipped: a poll is already in flight", start, end)
            on_done(None)
            return

        last = 0

        def finish(last_seen: int) -> None:
            with self._lock:
                self.polling = False
            logger.debug("poll end: last=%d", last_seen)
            on_done(last_seen)

        done = Once(finish)

        def on_entry(data: LDAPData) -> None:
            nonlocal last
            try:
                number = self._process(data, on_match)
            except Exception:
                # A failing consumer ends the poll; progress so far stands.
                done(last)
                raise
            if number is not None and number > last:
                last = number

        def on_error(err: Exception) -> None:
            logger.warning("error during changelog search: %s", err)
            self._report(SearchError(str(err)))
            done(last)

        def on_search(err: Exception | None, res: SearchResponse | None) -> None:
            if err is not None or res is None:
                on_error(err or SearchError("no search response"))
                return
            res.on_entry(on_entry)
            res.on_error(on_error)
            res.on_end(lambda: done(last))

        logger.debug("poll start: %d-%d", start, end)
        client = self.client()
        if client is None:
            on_error(SearchError("no directory session"))
            return
        try:
            client.search(CHANGELOG_DN, "sub", changelog_filter(start, end), on_search)
        except Exception:
            done(last)
            raise
