from __future__ import annotations

import threading
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Callable, DefaultDict, List, Type

from smartwake.logging_setup import setup_logging

TAG = __name__
logger = setup_logging()

Handler = Callable[[Any], None]


@dataclass
class EventBus:
    """
    In-process publish/subscribe bus for alarm collection events.

    Handlers are registered per event class and invoked synchronously on the
    publishing thread, in subscription order. Synchronous delivery lets a
    publisher rely on every listener having observed the event when
    :meth:`publish` returns (the refresh loop's write-back guard depends on it).

    Concurrency Model
    -----------------
    The handler table is protected by a lock. :meth:`publish` snapshots the
    handlers under the lock and calls them outside it, so handlers may
    publish or (un)subscribe themselves.

    Failure Policy
    --------------
    A raising handler is logged and skipped; remaining handlers still run.
    """

    _handlers: DefaultDict[type, List[Handler]] = field(default_factory=lambda: defaultdict(list))
    _lock: threading.Lock = field(default_factory=threading.Lock)

    def subscribe(self, event_cls: Type[Any], handler: Handler) -> Callable[[], None]:
        """
        Register ``handler`` for events of exactly ``event_cls``.

        Returns
        -------
        callable
            Unsubscribe function; calling it more than once is harmless.
        """
        with self._lock:
            self._handlers[event_cls].append(handler)

        def unsubscribe() -> None:
            with self._lock:
                handlers = self._handlers.get(event_cls, [])
                if handler in handlers:
                    handlers.remove(handler)

        return unsubscribe

    def publish(self, event: Any) -> None:
        with self._lock:
            handlers = list(self._handlers.get(type(event), ()))

        for handler in handlers:
            try:
                handler(event)
            except Exception as e:
                logger.bind(tag=TAG).error(
                    f"handler {getattr(handler, '__qualname__', handler)!s} failed for "
                    f"{type(event).__name__}: {e!r}"
                )
