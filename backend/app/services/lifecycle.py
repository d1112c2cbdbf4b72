from __future__ import annotations
"""Order status machine and the canonical status display table."""
from typing import List, NamedTuple, Optional
from flask import current_app

from app.constants.permissions import ACTOR_ADMIN, ACTOR_SUPPLIER, ACTOR_CUSTOMER
from app.models.order import Order
from app.services.history import append_history
from app.utils.fsm import TransitionValidator, build_graph, allow


def _order_graph():
    g = build_graph(Order.ALL_STATUSES)
    allow(g, Order.STATUS_ADMIN_REVIEW, Order.STATUS_REQUEST_CREATED, ACTOR_ADMIN)
    allow(g, Order.STATUS_ADMIN_REVIEW, Order.STATUS_CANCELED, ACTOR_ADMIN)
    allow(g, Order.STATUS_REQUEST_CREATED, Order.STATUS_PRICE_QUOTED, ACTOR_SUPPLIER)
    allow(g, Order.STATUS_PRICE_QUOTED, Order.STATUS_REQUEST_CREATED, ACTOR_CUSTOMER)
    allow(g, Order.STATUS_PRICE_QUOTED, Order.STATUS_PAYMENT_CONFIRMED, ACTOR_ADMIN)
    allow(g, Order.STATUS_PAYMENT_CONFIRMED, Order.STATUS_PRODUCTION_STARTED, ACTOR_SUPPLIER)
    allow(g, Order.STATUS_PRODUCTION_STARTED, Order.STATUS_IN_TRANSIT, ACTOR_SUPPLIER)
    allow(g, Order.STATUS_IN_TRANSIT, Order.STATUS_PRODUCTION_STARTED, ACTOR_SUPPLIER)
    # in_customs is reserved: nothing leads into it but it keeps the admin exits
    for src in Order.ALL_STATUSES:
        if src in Order.TERMINAL_STATUSES:
            continue
        allow(g, src, Order.STATUS_CANCELED, ACTOR_ADMIN)
        allow(g, src, Order.STATUS_DELIVERED, ACTOR_ADMIN)
    for src in Order.EDITABLE_STATUSES:
        allow(g, src, Order.STATUS_CANCELED, ACTOR_CUSTOMER)
    return g


ORDER_FSM = TransitionValidator(_order_graph())

# Statuses the generic admin endpoint may target directly; the others carry
# side effects and go through their own operation (quote, final price, completion).
ADMIN_DIRECT_TARGETS = (Order.STATUS_REQUEST_CREATED, Order.STATUS_CANCELED, Order.STATUS_DELIVERED)


class StatusInfo(NamedTuple):
    status: str
    label: str
    color: str
    step: int
    terminal: bool


STATUS_TABLE: List[StatusInfo] = [
    StatusInfo(Order.STATUS_ADMIN_REVIEW, 'UNDER REVIEW', 'orange', 0, False),
    StatusInfo(Order.STATUS_REQUEST_CREATED, 'ORDER RECEIVED', 'blue', 1, False),
    StatusInfo(Order.STATUS_PRICE_QUOTED, 'PRICE QUOTED', 'yellow', 2, False),
    StatusInfo(Order.STATUS_PAYMENT_CONFIRMED, 'PAYMENT RECEIVED', 'green', 3, False),
    StatusInfo(Order.STATUS_PRODUCTION_STARTED, 'IN PRODUCTION', 'purple', 4, False),
    StatusInfo(Order.STATUS_IN_TRANSIT, 'IN SHIPPING', 'indigo', 5, False),
    StatusInfo(Order.STATUS_IN_CUSTOMS, 'IN CUSTOMS', 'gray', 6, False),
    StatusInfo(Order.STATUS_DELIVERED, 'DELIVERED', 'green', 7, True),
    StatusInfo(Order.STATUS_CANCELED, 'CANCELED', 'red', -1, True),
]
STATUS_INFO = {s.status: s for s in STATUS_TABLE}


def status_info(status: str) -> Optional[StatusInfo]:
    return STATUS_INFO.get(status)


def transition(session, order: Order, target: str, actor, notes: Optional[str] = None) -> str:
    """Validate and apply one status change plus its history row; caller owns the transaction."""
    ORDER_FSM.assert_can_transition(order.status, target, actor.role)
    previous = order.status
    order.status = target
    append_history(session, order, target, notes, actor.user_id)
    current_app.logger.info('order=%s %s -> %s by %s', order.id, previous, target, actor)
    return previous
