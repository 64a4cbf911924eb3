"""
Following the change-log over many polls.
"""

import logging
import time
from collections.abc import Callable

from .directory import RemoteDirectory
from .models import ChangelogEntry

logger = logging.getLogger("django-ldapreplicator")


class ChangelogFollower:
    """
    Walk a directory's change-log window by window.

    Each poll covers :py:attr:`RemoteDirectory.queue_size` change numbers
    starting at :py:attr:`position`.  After a poll that saw entries,
    :py:attr:`position` moves past the last change number seen; after one
    that saw nothing it stays put.  Saving :py:attr:`position` between runs
    is the caller's job.

    Args:
        directory: the directory to follow
        sink: receives each matched :py:class:`ChangelogEntry`

    Keyword Args:
        start: the first change number to fetch
        sleep: the function used to wait between polls

    """

    def __init__(
        self,
        directory: RemoteDirectory,
        sink: Callable[[ChangelogEntry], None],
        start: int = 1,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.directory = directory
        self.sink = sink
        self.position = start
        self.sleep = sleep
        self.last: int | None = None

    def _done(self, last: int | None) -> None:
        if last is None:
            # Another poll was in flight
            return
        self.last = last
        if last:
            self.position = last + 1

    def poll_once(self) -> int | None:
        """
        Poll the next window.

        Returns:
            The last change number seen, 0 if the window was empty, or None
            if another poll was already in flight or the poll has not
            completed yet.  :py:attr:`position` is updated on completion
            either way.

        """
        start = self.position
        end = start + self.directory.queue_size - 1
        self.last = None
        self.directory.poll(start, end, self.sink, self._done)
        return self.last

    def run(self, iterations: int | None = None) -> None:
        """
        Poll repeatedly, waiting ``pollInterval`` milliseconds between polls.

        Keyword Args:
            iterations: stop after this many polls; None polls forever

        """
        count = 0
        while iterations is None or count < iterations:
            if not self.directory.connected:
                self.directory.connect()
            if self.directory.connected:
                last = self.poll_once()
                logger.debug(
                    "%s: polled up to %s, next start %d",
                    self.directory.name,
                    last,
                    self.position,
                )
            count += 1
            if iterations is None or count < iterations:
                self.sleep(self.directory.poll_interval / 1000.0)
