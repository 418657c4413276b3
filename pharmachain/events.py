"""
PharmaChain Event Infrastructure

Every committed mutation of the ledger produces immutable events. Events are
appended to a hash-chained log (the audit trail) and then published to
in-process subscribers such as external indexers.

Architecture
────────────

    ┌─────────────────────────────────────────────────────────────────┐
    │                        EVENT INFRASTRUCTURE                      │
    │                                                                  │
    │  Domain Events               EventLog              EventBus      │
    │  ├─ RoleGranted              ├─ Append-only        ├─ Pub/sub    │
    │  ├─ RoleRevoked              ├─ Hash chained       ├─ Filters    │
    │  ├─ ProductCreated           ├─ Per-product        └─ Priorities │
    │  ├─ ProductStatusChanged     │  streams                          │
    │  ├─ ProductOwnershipTrans.   └─ Offline verify                   │
    │  └─ ProductVerified                                              │
    └─────────────────────────────────────────────────────────────────┘

Design Principles
─────────────────

    Immutable Events: events are facts about committed transactions. They
    cannot be changed, only new events can be appended.

    Tamper Evidence: each record stores the digest of the previous record, so
    any edit, deletion or reordering of the exported trail is detectable by
    any party holding a copy.

    Ordering: records carry a global sequence number matching the serial
    order of transactions.
"""

from __future__ import annotations

import threading
import uuid
from dataclasses import asdict, dataclass, field
from typing import Any, Callable, Dict, List, Optional, Set, Tuple, Type

from jsonschema import Draft202012Validator

from pharmachain.core import canonical_digest, load_json, schema_path
from pharmachain.observability import Layer, get_logger

logger = get_logger("events", Layer.EVENTS)

GENESIS_DIGEST = "0" * 64
ROLES_STREAM = "roles"


def product_stream(product_id: int) -> str:
    return f"product-{product_id}"


# ════════════════════════════════════════════════════════════════════════════
# EVENT BASE
# ════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class Event:
    """
    Base class for all ledger events.

    Events are frozen; the ledger stamps them with ``dataclasses.replace``.

    ``timestamp`` is the unix time of the transaction that produced the event
    and ``actor`` the identity that called the component emitting it.
    """

    operation = "event"

    event_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    timestamp: int = 0
    actor: str = ""
    correlation_id: Optional[str] = None

    @property
    def event_type(self) -> str:
        return self.__class__.__name__

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["event_type"] = self.event_type
        data["operation"] = self.operation
        return data

    def digest(self) -> str:
        return canonical_digest(self.to_dict())


@dataclass(frozen=True)
class RoleGranted(Event):
    """A capability was added to an identity."""
    operation = "grant"

    account: str = ""
    capability: str = ""


@dataclass(frozen=True)
class RoleRevoked(Event):
    """A capability was removed from an identity."""
    operation = "revoke"

    account: str = ""
    capability: str = ""


@dataclass(frozen=True)
class ProductCreated(Event):
    operation = "create"

    product_id: int = 0
    name: str = ""
    batch_number: str = ""
    expiry_date: int = 0
    manufacturer: str = ""
    certificate_ref: str = ""


@dataclass(frozen=True)
class ProductStatusChanged(Event):
    operation = "set_status"

    product_id: int = 0
    old_status: int = 0
    new_status: int = 0


@dataclass(frozen=True)
class ProductOwnershipTransferred(Event):
    operation = "set_owner"

    product_id: int = 0
    previous_owner: str = ""
    new_owner: str = ""


@dataclass(frozen=True)
class ProductVerified(Event):
    operation = "set_verified"

    product_id: int = 0


# ════════════════════════════════════════════════════════════════════════════
# EVENT LOG
# ════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class EventRecord:
    """A persisted, chained event record. Neither it nor its event can change."""
    sequence_number: int
    stream_id: str
    event: Event
    previous_digest: str
    digest: str = ""

    def __post_init__(self):
        if not self.digest:
            object.__setattr__(self, "digest", self.compute_digest())

    def body(self) -> Dict[str, Any]:
        return {
            "sequence_number": self.sequence_number,
            "stream_id": self.stream_id,
            "event": self.event.to_dict(),
            "previous_digest": self.previous_digest,
        }

    def compute_digest(self) -> str:
        return canonical_digest(self.body())

    def to_dict(self) -> Dict[str, Any]:
        data = self.body()
        data["digest"] = self.digest
        return data


class EventLog:
    """
    Append-only, hash-chained event log.

    Events are organized into streams (one per product plus one for role
    changes) and share a single global sequence.

    Example:
        log = EventLog()
        log.append("product-1", [ProductCreated(product_id=1)])
        history = log.read_stream("product-1")
        ok, bad_index = log.verify_chain()
    """

    def __init__(self):
        self._records: List[EventRecord] = []
        self._streams: Dict[str, List[EventRecord]] = {}
        self._lock = threading.RLock()

    def append(self, stream_id: str, events: List[Event]) -> List[EventRecord]:
        """Append events to a stream and return the chained records."""
        with self._lock:
            stream = self._streams.setdefault(stream_id, [])
            out = []
            for event in events:
                record = EventRecord(
                    sequence_number=len(self._records) + 1,
                    stream_id=stream_id,
                    event=event,
                    previous_digest=self.head_digest,
                )
                self._records.append(record)
                stream.append(record)
                out.append(record)
            return out

    def read_stream(self, stream_id: str) -> List[Event]:
        with self._lock:
            return [r.event for r in self._streams.get(stream_id, [])]

    def read_all(self, from_position: int = 0, max_count: int = 1000) -> List[EventRecord]:
        with self._lock:
            return self._records[from_position:from_position + max_count]

    def stream_ids(self) -> List[str]:
        with self._lock:
            return list(self._streams.keys())

    @property
    def head_digest(self) -> str:
        with self._lock:
            return self._records[-1].digest if self._records else GENESIS_DIGEST

    @property
    def total_events(self) -> int:
        with self._lock:
            return len(self._records)

    def verify_chain(self) -> Tuple[bool, Optional[int]]:
        """
        Verify the log chain integrity.

        Returns (valid, first_invalid_index).
        """
        return verify_exported_chain(self.export())

    def export(self) -> List[Dict[str, Any]]:
        """Export all records as plain dicts, suitable for JSON."""
        with self._lock:
            return [r.to_dict() for r in self._records]


def verify_exported_chain(records: List[Dict[str, Any]]) -> Tuple[bool, Optional[int]]:
    """
    Verify an exported trail without access to the live ledger.

    Returns (valid, first_invalid_index). A record whose body cannot be
    canonicalized, such as one carrying a float, is invalid.
    """
    previous = GENESIS_DIGEST
    for i, rec in enumerate(records):
        body = {k: v for k, v in rec.items() if k != "digest"}
        if rec.get("sequence_number") != i + 1:
            return (False, i)
        if rec.get("previous_digest") != previous:
            return (False, i)
        try:
            digest = canonical_digest(body)
        except (TypeError, ValueError):
            return (False, i)
        if digest != rec.get("digest"):
            return (False, i)
        previous = rec["digest"]
    return (True, None)


# ════════════════════════════════════════════════════════════════════════════
# EVENT BUS
# ════════════════════════════════════════════════════════════════════════════


EventHandler = Callable[[Event], None]


@dataclass
class EventHandlerRegistration:
    """Registration for an event handler."""
    handler: EventHandler
    event_types: Set[Type[Event]]
    priority: int = 0
    filter_func: Optional[Callable[[Event], bool]] = None


class EventHandlerError(Exception):
    """Error during event handling."""
    def __init__(self, event: Event, handler: EventHandler, cause: Exception):
        self.event = event
        self.handler = handler
        self.cause = cause
        super().__init__(f"Handler {handler.__name__} failed for {event.event_type}: {cause}")


class EventBus:
    """
    In-memory synchronous event bus.

    Handlers run after the producing transaction committed; a failing handler
    is reported and never undoes ledger state.

    Example:
        bus = EventBus()

        @bus.subscribe(ProductVerified)
        def on_verified(event):
            index.mark_verified(event.product_id)
    """

    def __init__(self, on_error: Optional[Callable[[EventHandlerError], None]] = None):
        self._handlers: List[EventHandlerRegistration] = []
        self._lock = threading.RLock()
        self._on_error = on_error
        self._published_count = 0
        self._handled_count = 0
        self._error_count = 0

    def subscribe(
        self,
        *event_types: Type[Event],
        priority: int = 0,
        filter_func: Optional[Callable[[Event], bool]] = None,
    ) -> Callable[[EventHandler], EventHandler]:
        """Decorator to subscribe a handler to event types (all events if none given)."""
        def decorator(handler: EventHandler) -> EventHandler:
            registration = EventHandlerRegistration(
                handler=handler,
                event_types=set(event_types) if event_types else {Event},
                priority=priority,
                filter_func=filter_func,
            )
            with self._lock:
                self._handlers.append(registration)
                self._handlers.sort(key=lambda r: -r.priority)
            return handler
        return decorator

    def unsubscribe(self, handler: EventHandler) -> bool:
        with self._lock:
            original_len = len(self._handlers)
            self._handlers = [r for r in self._handlers if r.handler != handler]
            return len(self._handlers) < original_len

    def publish(self, event: Event) -> None:
        """Call every matching handler in priority order."""
        with self._lock:
            self._published_count += 1
            handlers_to_call = [
                r for r in self._handlers
                if any(isinstance(event, t) for t in r.event_types)
                and (r.filter_func is None or r.filter_func(event))
            ]

        for registration in handlers_to_call:
            self._call_handler(registration.handler, event)

    def _call_handler(self, handler: EventHandler, event: Event) -> None:
        try:
            handler(event)
            with self._lock:
                self._handled_count += 1
        except Exception as e:
            with self._lock:
                self._error_count += 1
            error = EventHandlerError(event, handler, e)
            if self._on_error:
                self._on_error(error)
            else:
                logger.error(str(error), error_code="EventHandlerError", exc_info=True)

    @property
    def metrics(self) -> Dict[str, int]:
        with self._lock:
            return {
                "published_count": self._published_count,
                "handled_count": self._handled_count,
                "error_count": self._error_count,
                "handler_count": len(self._handlers),
            }


# ════════════════════════════════════════════════════════════════════════════
# AUDIT EXPORT
# ════════════════════════════════════════════════════════════════════════════


AUDIT_EXPORT_FORMAT = "pharmachain-audit/1"
AUDIT_EXPORT_SCHEMA = "audit-export.schema.json"


def audit_document(log: EventLog) -> Dict[str, Any]:
    """Self-contained export of the full trail for offline auditors."""
    records = log.export()
    return {
        "format": AUDIT_EXPORT_FORMAT,
        "record_count": len(records),
        "head_digest": records[-1]["digest"] if records else GENESIS_DIGEST,
        "records": records,
    }


def verify_audit_document(document: Any) -> Dict[str, Any]:
    """
    Schema-validate and chain-verify an exported audit document.

    Returns a report dict; ``valid`` is False if any check failed.
    """
    validator = Draft202012Validator(load_json(schema_path(AUDIT_EXPORT_SCHEMA)))
    schema_errors = [f"{e.json_path}: {e.message}" for e in validator.iter_errors(document)]
    if schema_errors:
        return {"valid": False, "schema_errors": schema_errors, "first_invalid_index": None}

    records = document["records"]
    ok, bad_index = verify_exported_chain(records)
    head = records[-1]["digest"] if records else GENESIS_DIGEST
    problems = []
    if not ok:
        problems.append(f"chain broken at record index {bad_index}")
    if document["record_count"] != len(records):
        problems.append("record_count does not match the number of records")
    if document["head_digest"] != head:
        problems.append("head_digest does not match the last record")

    return {
        "valid": not problems,
        "record_count": len(records),
        "head_digest": head,
        "first_invalid_index": bad_index,
        "problems": problems,
    }
