from __future__ import annotations
"""In-process "order changed" notifications.

Delivery is best effort and at-most-once: events are published after commit,
a failing subscriber is logged and skipped, and nothing is replayed. Consumers
treat an event as a hint and re-read the order (or poll the list endpoint).
"""
import itertools
import logging
import threading
from dataclasses import dataclass, field, asdict
from datetime import datetime
from typing import Callable, Dict, Optional

from flask import current_app

from app.utils.clock import utcnow

EVENT_CREATED = 'created'
EVENT_UPDATED = 'updated'
EVENT_STATUS_CHANGED = 'status_changed'
EVENT_DELETED = 'deleted'


@dataclass(frozen=True)
class OrderEvent:
    kind: str
    order_id: str
    customer_id: Optional[int]
    assigned_supplier_id: Optional[int]
    status: Optional[str]
    previous_status: Optional[str] = None
    occurred_at: datetime = field(default_factory=utcnow)

    def to_dict(self):
        data = asdict(self)
        data['occurred_at'] = self.occurred_at.isoformat()
        return data


@dataclass
class _Subscription:
    callback: Callable[[OrderEvent], None]
    order_id: Optional[str] = None
    customer_id: Optional[int] = None

    def matches(self, event: OrderEvent) -> bool:
        if self.order_id is not None and event.order_id != self.order_id:
            return False
        if self.customer_id is not None and event.customer_id != self.customer_id:
            return False
        return True


class EventBus:
    def __init__(self, logger: Optional[logging.Logger] = None):
        self._subs: Dict[int, _Subscription] = {}
        self._ids = itertools.count(1)
        self._lock = threading.Lock()
        self._logger = logger or logging.getLogger(__name__)

    def subscribe(self, callback: Callable[[OrderEvent], None], *, order_id: Optional[str] = None,
                  customer_id: Optional[int] = None) -> int:
        """Register a callback, optionally scoped to one order or one customer's orders. Returns a token."""
        with self._lock:
            token = next(self._ids)
            self._subs[token] = _Subscription(callback, order_id, customer_id)
        return token

    def unsubscribe(self, token: int) -> bool:
        with self._lock:
            return self._subs.pop(token, None) is not None

    def publish(self, event: OrderEvent) -> int:
        """Deliver to matching subscribers; returns how many received it without raising."""
        with self._lock:
            targets = [s for s in self._subs.values() if s.matches(event)]
        delivered = 0
        for sub in targets:
            try:
                sub.callback(event)
                delivered += 1
            except Exception:
                self._logger.exception('order event subscriber failed (order=%s kind=%s)', event.order_id, event.kind)
        return delivered

    def __len__(self):
        with self._lock:
            return len(self._subs)


def get_event_bus() -> EventBus:
    return current_app.extensions['order_events']


def publish_order_event(kind: str, order, previous_status: Optional[str] = None) -> int:
    event = OrderEvent(
        kind=kind,
        order_id=order.id,
        customer_id=order.customer_id,
        assigned_supplier_id=order.assigned_supplier_id,
        status=order.status if kind != EVENT_DELETED else None,
        previous_status=previous_status,
    )
    return get_event_bus().publish(event)
