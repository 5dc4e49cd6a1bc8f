from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Optional, TypeVar

from seed_toolkit.config import DEFAULT_MAX_CONCURRENT_COMMANDS
from seed_toolkit.errors import ConcurrencyLimitError

T = TypeVar("T")

_LOGGER = logging.getLogger("seed_toolkit.executor")


class CommandExecutor:
    """Admission control for toolkit commands within one process.

    At most ``max_concurrent`` commands run at once. A command submitted while
    the limit is reached is rejected immediately with a recoverable
    :class:`ConcurrencyLimitError`; it is never queued.
    """

    def __init__(
        self,
        max_concurrent: Optional[int] = None,
        logger: Optional[logging.Logger] = None,
    ):
        if not isinstance(max_concurrent, int) or max_concurrent < 1:
            max_concurrent = DEFAULT_MAX_CONCURRENT_COMMANDS
        self.max_concurrent = max_concurrent
        self.logger = logger or _LOGGER
        self._slots = threading.BoundedSemaphore(max_concurrent)
        self._lock = threading.Lock()
        self._in_flight = 0

    @property
    def in_flight(self) -> int:
        with self._lock:
            return self._in_flight

    def execute(self, name: str, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        if not self._slots.acquire(blocking=False):
            self.logger.warning(
                "Rejected %s: %d commands already running", name, self.max_concurrent
            )
            raise ConcurrencyLimitError(self.max_concurrent)

        with self._lock:
            self._in_flight += 1
        try:
            self.logger.debug("Running %s", name)
            return fn(*args, **kwargs)
        finally:
            with self._lock:
                self._in_flight -= 1
            self._slots.release()


__all__ = ["CommandExecutor"]
