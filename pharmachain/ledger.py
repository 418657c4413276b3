"""
PharmaChain Ledger

The serially ordered execution substrate shared by every component.

    ┌──────────────────────────────────────────────────────────────────┐
    │  caller ──► component op ──► ledger.transaction(caller)          │
    │                                 │                                │
    │            journal touched keys │ nested component calls join    │
    │                                 │ the same transaction with      │
    │                                 │ their own address as caller    │
    │                                 ▼                                │
    │           success: append events to EventLog, publish on bus     │
    │           failure: undo journaled writes, drop events, re-raise  │
    └──────────────────────────────────────────────────────────────────┘

Transactions are linearized by a re-entrant lock: concurrent submissions
queue on the lock and run one at a time, so no transaction ever observes a
partially applied one. There is no suspension or cancellation; a transaction
commits or reverts as a whole.
"""

from __future__ import annotations

import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Iterator, List, Optional, Protocol, Tuple

from pharmachain.events import Event, EventBus, EventLog, EventRecord
from pharmachain.identity import address_from_seed, is_well_formed, normalize_identity
from pharmachain.observability import (
    Layer,
    generate_correlation_id,
    get_logger,
    reset_correlation_id,
    set_correlation_id,
)

logger = get_logger("ledger", Layer.LEDGER)


# =============================================================================
# CLOCKS
# =============================================================================

class SystemClock:
    """Wall clock in whole unix seconds."""

    def now(self) -> int:
        return int(time.time())


class ManualClock:
    """Clock that only moves when told to."""

    def __init__(self, start: int = 1_700_000_000):
        self._now = start

    def now(self) -> int:
        return self._now

    def set(self, timestamp: int) -> None:
        self._now = timestamp

    def advance(self, seconds: int) -> int:
        self._now += seconds
        return self._now


# =============================================================================
# UNDO JOURNAL
# =============================================================================

_ABSENT = object()


class Journaled(Protocol):
    """A store that can undo the writes of the running transaction."""

    def rollback(self) -> None: ...

    def commit(self) -> None: ...


class UndoJournal:
    """
    Prior values of the keys written in one mapping during a transaction.

    Stores call ``record(key)`` before each write. Only the first write to a
    key in a transaction is remembered.
    """

    def __init__(self, data: Dict[Any, Any]):
        self._data = data
        self._saved: Dict[Any, Any] = {}

    def record(self, key: Any) -> None:
        if key not in self._saved:
            self._saved[key] = self._data.get(key, _ABSENT)

    def rollback(self) -> None:
        for key, value in self._saved.items():
            if value is _ABSENT:
                self._data.pop(key, None)
            else:
                self._data[key] = value
        self._saved.clear()

    def clear(self) -> None:
        self._saved.clear()

    def __len__(self) -> int:
        return len(self._saved)


# =============================================================================
# TRANSACTION CONTEXT
# =============================================================================

@dataclass
class TransactionContext:
    """
    State of the running transaction as seen by one (possibly nested) call.

    ``caller`` is the immediate caller of the current component and
    ``origin`` the identity that submitted the outermost call.
    """
    caller: str
    origin: str
    timestamp: int
    correlation_id: str
    depth: int = 0
    _pending: List[Tuple[str, Event]] = field(default_factory=list, repr=False)

    def emit(self, stream_id: str, event: Event) -> Event:
        """Stamp and buffer an event; it is only recorded if the transaction commits."""
        stamped = replace(
            event,
            timestamp=self.timestamp,
            actor=self.caller,
            correlation_id=self.correlation_id,
        )
        self._pending.append((stream_id, stamped))
        return stamped

    def child(self, caller: str) -> "TransactionContext":
        return TransactionContext(
            caller=caller,
            origin=self.origin,
            timestamp=self.timestamp,
            correlation_id=self.correlation_id,
            depth=self.depth + 1,
            _pending=self._pending,
        )

    @property
    def pending_events(self) -> List[Event]:
        return [e for _, e in self._pending]


# =============================================================================
# LEDGER
# =============================================================================

class Ledger:
    """
    Single owner of all mutable state.

    Stores register themselves with ``register_store`` and journal their
    own writes; if a transaction raises, every store rolls back what it
    journaled, otherwise every store drops its journal.
    """

    def __init__(
        self,
        clock: Optional[Any] = None,
        event_log: Optional[EventLog] = None,
        bus: Optional[EventBus] = None,
    ):
        self.clock = clock or SystemClock()
        self.log = event_log or EventLog()
        self.bus = bus or EventBus()
        self._lock = threading.RLock()
        self._stores: Dict[str, Journaled] = {}
        self._current: Optional[TransactionContext] = None
        self._nonces: Dict[str, int] = {}
        self._committed = 0
        self._reverted = 0

    def register_store(self, name: str, store: Journaled) -> None:
        with self._lock:
            if name in self._stores:
                raise ValueError(f"store already registered: {name}")
            self._stores[name] = store

    def allocate_address(self, deployer: str, label: str) -> str:
        """Deterministic component address from deployer and its deployment nonce."""
        with self._lock:
            nonce = self._nonces.get(deployer, 0)
            self._nonces[deployer] = nonce + 1
            return address_from_seed(f"{deployer}:{nonce}:{label}")

    @property
    def in_transaction(self) -> bool:
        with self._lock:
            return self._current is not None

    @contextmanager
    def read(self) -> Iterator[None]:
        """Hold the ledger lock for a consistent read."""
        with self._lock:
            yield

    @contextmanager
    def transaction(self, caller: str) -> Iterator[TransactionContext]:
        """
        Run a state-changing call atomically.

        A call made while a transaction is already running on this thread
        joins it as a nested call. Well-formed callers are normalized so that
        identity comparisons downstream are exact.
        """
        if is_well_formed(caller):
            caller = normalize_identity(caller)
        with self._lock:
            if self._current is not None:
                parent = self._current
                ctx = parent.child(caller)
                self._current = ctx
                try:
                    yield ctx
                finally:
                    self._current = parent
                return

            ctx = TransactionContext(
                caller=caller,
                origin=caller,
                timestamp=self.clock.now(),
                correlation_id=generate_correlation_id(),
            )
            token = set_correlation_id(ctx.correlation_id)
            self._current = ctx
            try:
                yield ctx
            except BaseException as exc:
                for store in self._stores.values():
                    store.rollback()
                self._reverted += 1
                logger.debug(
                    "Transaction reverted",
                    origin=caller,
                    reason=str(exc),
                    dropped_events=len(ctx.pending_events),
                )
                raise
            finally:
                self._current = None
                reset_correlation_id(token)

            records = self._commit(ctx)

        for record in records:
            self.bus.publish(record.event)

    def _commit(self, ctx: TransactionContext) -> List[EventRecord]:
        records: List[EventRecord] = []
        for stream_id, event in ctx._pending:
            records.extend(self.log.append(stream_id, [event]))
        for store in self._stores.values():
            store.commit()
        self._committed += 1
        return records

    @property
    def metrics(self) -> Dict[str, int]:
        with self._lock:
            return {
                "committed": self._committed,
                "reverted": self._reverted,
                "events": self.log.total_events,
            }
