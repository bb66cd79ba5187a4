from __future__ import annotations

from dataclasses import dataclass, field
from functools import partial
from threading import Lock, RLock, Timer
from typing import Any, Callable, Protocol, Sequence

from . import db
from .builder import build, serialize
from .db import utc_now
from .discovery import DiscoveryError, RawMetadata
from .models import FrontendDeclaration, FrontendResult, Unresolved, sha1_hex
from .notifier import ChangeNotifier
from .resolver import resolve


class ConfigurationFailure(Exception):
    """A poll cycle could not produce a candidate configuration."""


class StartupConfigurationError(Exception):
    """The first configuration could not be resolved; there is nothing valid to serve."""


class MetadataSource(Protocol):
    def fetch_raw(self) -> RawMetadata: ...


@dataclass(frozen=True)
class CommittedConfig:
    declarations: tuple[FrontendDeclaration, ...]
    results: tuple[FrontendResult, ...]
    serialized: str
    fingerprint: str
    committed_at: str = field(default_factory=utc_now)


class Reconciler:
    """Keeps the committed routing config in step with discovery.

    Owns the active declarations and the last committed config. Every
    fetch/resolve/build(/commit) pass runs under one lock, so only one cycle
    is ever in flight, whether it comes from the poll timer or an admin write.
    """

    def __init__(
        self,
        client: MetadataSource,
        notifier: ChangeNotifier | None = None,
        interval_s: float = 30,
        timer_factory: Callable[[float, Callable[[], None]], Any] | None = None,
    ):
        if interval_s <= 0:
            raise ValueError("interval_s must be positive")
        self.client = client
        self.notifier = notifier or ChangeNotifier()
        self.interval_s = interval_s
        self._timer_factory = timer_factory or Timer
        # Reentrant: subscribers run inside the commit and may call configure().
        self._cycle_lock = RLock()
        self._timer_lock = Lock()
        self._generation = 0
        self._armed = False
        self._timer: Any = None
        self._declarations: tuple[FrontendDeclaration, ...] | None = None
        self._committed: CommittedConfig | None = None

    @property
    def declarations(self) -> tuple[FrontendDeclaration, ...] | None:
        return self._declarations

    @property
    def committed(self) -> CommittedConfig | None:
        return self._committed

    @property
    def running(self) -> bool:
        return self._armed

    # --- configuration ---

    def _compute(self, declarations: tuple[FrontendDeclaration, ...]) -> tuple[FrontendResult, ...]:
        raw = self.client.fetch_raw()
        return build(declarations, resolve(raw))

    def _commit(self, declarations: tuple[FrontendDeclaration, ...], results: tuple[FrontendResult, ...]) -> None:
        serialized = serialize(results)
        committed = CommittedConfig(
            declarations=declarations,
            results=results,
            serialized=serialized,
            fingerprint=sha1_hex(serialized),
        )
        self._committed = committed
        self._declarations = declarations

        unresolved = [r for r in results if isinstance(r, Unresolved)]
        for r in unresolved:
            db.log_event("WARN", f"Frontend {r.declaration.domain} unresolved: {r.reason}", service_name=r.declaration.service_id)

        delivered = self.notifier.notify(results)
        db.log_event(
            "INFO",
            f"Committed configuration {committed.fingerprint[:12]}: "
            f"{len(results)} frontend(s), {len(unresolved)} unresolved, {delivered} subscriber(s) notified",
        )

    def configure(
        self, declarations: Sequence[FrontendDeclaration], verify_only: bool = False
    ) -> tuple[FrontendResult, ...]:
        """Resolve ``declarations`` against live discovery data.

        Unless ``verify_only``, the result is committed: declarations become the
        active set and subscribers are notified. Discovery errors propagate.
        """
        declarations = tuple(declarations)
        with self._cycle_lock:
            results = self._compute(declarations)
            if not verify_only:
                self._commit(declarations, results)
            return results

    def bootstrap(self, declarations: Sequence[FrontendDeclaration]) -> tuple[FrontendResult, ...]:
        try:
            return self.configure(declarations)
        except DiscoveryError as e:
            db.log_event("ERROR", f"Initial configuration failed: {type(e).__name__}: {e}")
            raise StartupConfigurationError(f"Initial configuration failed: {e}") from e

    # --- polling ---

    def _poll_once(self) -> bool:
        with self._cycle_lock:
            declarations = self._declarations
            if declarations is None:
                # Nothing loaded yet.
                return False
            try:
                candidate = self._compute(declarations)
            except DiscoveryError as e:
                raise ConfigurationFailure(f"{type(e).__name__}: {e}") from e

            committed = self._committed
            if committed is not None and sha1_hex(serialize(candidate)) == committed.fingerprint:
                return False

            db.log_event("INFO", "Discovery services changed. Regenerating the configuration.")
            self._commit(declarations, candidate)
            return True

    def poll(self) -> bool:
        """Run one cycle; returns True when a new configuration was committed."""
        try:
            return self._poll_once()
        except ConfigurationFailure as e:
            db.log_event("ERROR", f"Poll failed: {e}")
            return False

    def _run(self, generation: int) -> None:
        try:
            self.poll()
        except Exception as e:
            db.log_event("ERROR", f"Reconciliation cycle failed: {type(e).__name__}: {e}")
        finally:
            with self._timer_lock:
                # A stop()/start() while this cycle ran belongs to a newer chain.
                if self._armed and self._generation == generation:
                    self._arm()

    def _arm(self) -> None:
        t = self._timer_factory(self.interval_s, partial(self._run, self._generation))
        t.daemon = True
        self._timer = t
        t.start()

    def start(self) -> None:
        with self._timer_lock:
            if self._armed:
                return
            self._armed = True
            self._generation += 1
            self._arm()
        db.log_event("INFO", f"Reconciler started (interval {self.interval_s}s)")

    def stop(self) -> None:
        """Cancel the pending timer. A cycle already running finishes but does not re-arm."""
        with self._timer_lock:
            was_armed = self._armed
            self._armed = False
            self._generation += 1
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
        if was_armed:
            db.log_event("INFO", "Reconciler stopped")
