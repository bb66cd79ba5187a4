from __future__ import annotations

from threading import Lock
from typing import Callable, Sequence

from . import db
from .models import FrontendResult

# Handlers run synchronously inside the reconciler's commit. Calling configure() from a
# handler on the same thread commits a nested configuration before the outer
# delivery finishes; handlers that fan out to other threads must not block on it.
Handler = Callable[[Sequence[FrontendResult]], None]


class ChangeNotifier:
    """Ordered subscriber list for committed configurations."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._handlers: list[Handler] = []

    def subscribe(self, handler: Handler) -> Handler:
        with self._lock:
            self._handlers.append(handler)
        return handler

    def unsubscribe(self, handler: Handler) -> None:
        with self._lock:
            if handler in self._handlers:
                self._handlers.remove(handler)

    def notify(self, results: Sequence[FrontendResult]) -> int:
        """Call every handler in registration order; returns how many succeeded.

        A failing handler is logged and skipped, the rest still run.
        """
        with self._lock:
            handlers = list(self._handlers)

        delivered = 0
        for handler in handlers:
            try:
                handler(results)
                delivered += 1
            except Exception as e:
                name = getattr(handler, "__qualname__", repr(handler))
                db.log_event("ERROR", f"Subscriber {name} failed: {type(e).__name__}: {e}")
        return delivered
