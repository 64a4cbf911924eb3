"""
Matching change-log entries against compiled subscription queries.

Additions and modifications/deletions are matched differently:

* an addition carries the full new entry, so each query's filter is evaluated
  against it on the spot, and the first query that matches owns the entry;
* a modification or deletion only carries a delta, so every query whose
  subtree contains the target is recorded as a candidate and the filter is
  left for a consumer that holds the current state of the entry.
"""

import logging
from typing import Any

from .exceptions import MatchTypeError
from .models import ChangelogEntry
from .queries import Query
from .typing import ErrorCallback

logger = logging.getLogger("django-ldapreplicator")


class QueryMatcher:
    """
    Decide which subscription queries a change-log entry is relevant to.

    The matcher keeps no state between entries; the compiled query list is
    only ever read.

    Args:
        queries: the compiled queries, in priority order

    Keyword Args:
        on_error: called with a :py:class:`MatchTypeError` for entries with an
            unknown change type that fall within some query's subtree

    """

    def __init__(
        self, queries: list[Query], on_error: ErrorCallback | None = None
    ) -> None:
        self.queries = queries
        self.on_error = on_error

    def _report(self, error: Exception) -> None:
        logger.warning("%s", error)
        if self.on_error:
            self.on_error(error)

    def _match_add(self, entry: ChangelogEntry, queries: list[Query]) -> list[Any]:
        if not isinstance(entry.changes, dict):
            # The payload did not decode, so the addition can't be judged now.
            return self._match_candidates(entry, queries)
        # Filter attribute names are compiled lowercase
        attributes = {
            str(name).lower(): value for name, value in entry.changes.items()
        }
        for query in queries:
            if query.filter.match(attributes):
                # First match wins: a new entry belongs to one subscription.
                return [query.filter]
        return []

    def _match_candidates(
        self, entry: ChangelogEntry, queries: list[Query]  # noqa: ARG002
    ) -> list[Any]:
        return [query.filter for query in queries]

    def match(
        self, entry: ChangelogEntry, queries: list[Query] | None = None
    ) -> list[Any]:
        """
        Return the filters of the queries ``entry`` is relevant to.

        Only queries whose base DN is the target DN or one of its ancestors
        are considered, in compiled order.

        Args:
            entry: the decoded change-log entry

        Keyword Args:
            queries: match against these instead of the matcher's own queries

        Returns:
            The matched filters; empty if the entry is relevant to no query or
            has an unknown change type.

        """
        if queries is None:
            queries = self.queries
        in_scope = [q for q in queries if entry.target_dn.is_descendant_of(q.base_dn)]
        if not in_scope:
            return []
        change_type = entry.kind
        if change_type is None:
            self._report(MatchTypeError(entry.change_number, entry.change_type))
            return []
        if change_type.is_definitive:
            return self._match_add(entry, in_scope)
        return self._match_candidates(entry, in_scope)
