"""
OMNILAUNCH Event Infrastructure

Typed facts emitted by each chain's ledger, pool and messenger, and the
in-memory bus that hands them to subscribers.

    Event
    ├─ SaleEvent            (sale_index on the emitting chain)
    │  ├─ SaleCreated
    │  ├─ MirrorRegistered
    │  ├─ TokensBought
    │  ├─ TokensSold
    │  ├─ RemoteDeltaMerged
    │  └─ LiquidityCreated
    ├─ MessageEvent         (guid of the cross-chain message)
    │  ├─ MessageSent
    │  ├─ MessageApplied
    │  └─ MessageRejected
    └─ PoolSwap

Handlers run synchronously inside the emitting call. A failing handler never
rolls back ledger state: the failure is logged, counted and passed to
``on_error``.

Usage
─────

    bus = EventBus()

    @bus.subscribe(TokensBought, sale_index=0)
    def on_buy(event: TokensBought):
        print(event.amount, event.raised)

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

import json
import threading
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple, Type

from omnilaunch.observability import LaunchLayer, current_context, get_logger

logger = get_logger("events", LaunchLayer.LEDGER)


def _bound_correlation_id() -> Optional[str]:
    return current_context().correlation_id or None


# ════════════════════════════════════════════════════════════════════════════
# EVENT TYPES
# ════════════════════════════════════════════════════════════════════════════


@dataclass
class Event:
    """
    Something that happened on one chain.

    The correlation id defaults to the one bound in the launch context, so
    events emitted while a transaction runs share its id.
    """

    event_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    event_timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    correlation_id: Optional[str] = field(default_factory=_bound_correlation_id)
    chain_id: int = 0

    @property
    def event_type(self) -> str:
        return type(self).__name__

    def to_dict(self) -> Dict[str, Any]:
        return {"event_type": self.event_type, **asdict(self)}

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), default=str, sort_keys=True)


@dataclass
class SaleEvent(Event):
    sale_index: int = 0


@dataclass
class SaleCreated(SaleEvent):
    """A sale launched on this chain."""
    token: str = ""
    creator: str = ""
    name: str = ""
    symbol: str = ""
    metadata_uri: str = ""


@dataclass
class MirrorRegistered(SaleEvent):
    """A CREATE_TOKEN from another chain registered a mirror."""
    token: str = ""
    creator: str = ""
    origin_chain_id: int = 0
    origin_index: int = 0


@dataclass
class TokensBought(SaleEvent):
    buyer: str = ""
    amount: int = 0
    cost: int = 0
    sold: int = 0
    raised: int = 0


@dataclass
class TokensSold(SaleEvent):
    seller: str = ""
    amount: int = 0
    proceeds: int = 0
    sold: int = 0
    raised: int = 0


@dataclass
class RemoteDeltaMerged(SaleEvent):
    """A BRIDGE_TOKENS delta from the origin chain was merged into a mirror."""
    source_chain_id: int = 0
    direction: str = ""
    amount: int = 0
    value: int = 0


@dataclass
class LiquidityCreated(SaleEvent):
    """A sale graduated, locally or by notice from its origin."""
    token: str = ""
    native_amount: int = 0
    token_amount: int = 0
    remote: bool = False


@dataclass
class PoolSwap(Event):
    token: str = ""
    trader: str = ""
    native_in: int = 0
    tokens_in: int = 0
    native_out: int = 0
    tokens_out: int = 0


@dataclass
class MessageEvent(Event):
    guid: str = ""


@dataclass
class MessageSent(MessageEvent):
    dst_chain_id: int = 0
    msg_type: str = ""
    fee: int = 0


@dataclass
class MessageApplied(MessageEvent):
    src_chain_id: int = 0
    msg_type: str = ""
    outcome: str = ""


@dataclass
class MessageRejected(MessageEvent):
    src_chain_id: int = 0
    error_code: str = ""
    reason: str = ""


# ════════════════════════════════════════════════════════════════════════════
# EVENT BUS
# ════════════════════════════════════════════════════════════════════════════


EventHandler = Callable[[Event], None]


class EventHandlerError(Exception):
    def __init__(self, event: Event, handler: EventHandler, cause: Exception):
        self.event = event
        self.handler = handler
        self.cause = cause
        super().__init__(f"Handler {getattr(handler, '__name__', handler)} failed for {event.event_type}: {cause}")


@dataclass
class _Subscription:
    handler: EventHandler
    event_types: Tuple[Type[Event], ...]
    priority: int
    sale_index: Optional[int]
    where: Optional[Callable[[Event], bool]]

    def matches(self, event: Event) -> bool:
        if not isinstance(event, self.event_types):
            return False
        if self.sale_index is not None and getattr(event, "sale_index", None) != self.sale_index:
            return False
        return self.where is None or self.where(event)


class EventBus:
    """
    One chain's event bus.

    Handlers are called in descending priority; equal priorities keep
    subscription order. Every published event is kept so tests and the CLI
    can read back a chain's history.
    """

    def __init__(self, on_error: Optional[Callable[[EventHandlerError], None]] = None):
        self._subscriptions: List[_Subscription] = []
        self._history: List[Event] = []
        self._lock = threading.RLock()
        self._on_error = on_error
        self._counts = {"published": 0, "handled": 0, "failed": 0}

    def subscribe(
        self,
        *event_types: Type[Event],
        priority: int = 0,
        sale_index: Optional[int] = None,
        where: Optional[Callable[[Event], bool]] = None,
    ) -> Callable[[EventHandler], EventHandler]:
        """
        Decorator registering a handler.

        With no event types the handler receives every event. ``sale_index``
        restricts it to events about that sale, and ``where`` to events the
        predicate accepts.
        """
        def decorator(handler: EventHandler) -> EventHandler:
            subscription = _Subscription(handler, event_types or (Event,), priority, sale_index, where)
            with self._lock:
                self._subscriptions.append(subscription)
                self._subscriptions.sort(key=lambda s: -s.priority)
            return handler
        return decorator

    def unsubscribe(self, handler: EventHandler) -> bool:
        with self._lock:
            kept = [s for s in self._subscriptions if s.handler != handler]
            removed = len(kept) != len(self._subscriptions)
            self._subscriptions = kept
            return removed

    def publish(self, event: Event) -> None:
        with self._lock:
            self._counts["published"] += 1
            self._history.append(event)
            targets = [s.handler for s in self._subscriptions if s.matches(event)]

        for handler in targets:
            try:
                handler(event)
            except Exception as e:
                self._handler_failed(EventHandlerError(event, handler, e))
            else:
                with self._lock:
                    self._counts["handled"] += 1

    def _handler_failed(self, error: EventHandlerError) -> None:
        with self._lock:
            self._counts["failed"] += 1
        logger.error(str(error), error_code="event_handler_failed", event_type=error.event.event_type)
        if self._on_error:
            self._on_error(error)

    def history(self, event_type: Optional[Type[Event]] = None, sale_index: Optional[int] = None) -> List[Event]:
        """Published events, oldest first, optionally narrowed by type and sale."""
        with self._lock:
            events = list(self._history)
        if event_type is not None:
            events = [e for e in events if isinstance(e, event_type)]
        if sale_index is not None:
            events = [e for e in events if getattr(e, "sale_index", None) == sale_index]
        return events

    def stats(self) -> Dict[str, int]:
        with self._lock:
            return {**self._counts, "subscribers": len(self._subscriptions)}
