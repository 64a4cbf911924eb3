"""
One-shot completion callbacks.
"""

import threading
from collections.abc import Callable
from typing import Any


class Once:
    """
    Wrap a completion callback so that it runs at most one time.

    Event-driven code tends to have several paths that can finish an
    operation (end of stream, stream error, a failure before the stream
    existed).  Route them all through one :py:class:`Once` and only the first
    one wins; later calls are ignored.

    Args:
        func: the callback to guard

    """

    def __init__(self, func: Callable[..., Any]) -> None:
        self.func = func
        self.called: bool = False
        self._lock = threading.Lock()

    def __call__(self, *args, **kwargs) -> bool:
        """
        Invoke the wrapped callback unless it has already been invoked.

        Returns:
            True if this call ran the callback, False if it was ignored.

        """
        with self._lock:
            if self.called:
                return False
            self.called = True
        self.func(*args, **kwargs)
        return True
