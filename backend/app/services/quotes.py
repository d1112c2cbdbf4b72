from __future__ import annotations
"""Supplier quote registry.

The first quote on an order prices it (20% rule), assigns the supplier and
moves the order to ``price_quoted`` in one transaction. The order row update is
version guarded, so when two suppliers race only one commit lands; the loser's
quote insert rolls back with it and the error is reclassified from a fresh read.
"""
from typing import List, Optional

from flask import current_app
from sqlalchemy import select

from app.constants.permissions import ACTOR_ADMIN, ACTOR_SUPPLIER
from app.errors import AlreadyQuoted, OrderAssignedToOther, QuoteNotFound, QuoteLocked, ConcurrencyConflict
from app.models.order import Order
from app.models.quote import SupplierQuote
from app.services import events
from app.services.lifecycle import ORDER_FSM, transition
from app.services.orders import lock_order
from app.services.policy import Actor, assert_role
from app.services.pricing import supplier_quote_pricing, apply_pricing
from app.utils.transactions import atomic, retry_read
from app.utils.validation import parse_money, optional_text


def _find_quote(session, order_id: str, supplier_id: int) -> Optional[SupplierQuote]:
    return session.execute(
        select(SupplierQuote)
        .where(SupplierQuote.order_id == order_id, SupplierQuote.supplier_id == supplier_id)
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()


def _reclassify_conflict(session, order_id: str, actor: Actor):
    """After a lost race: who won decides the error the loser sees."""
    order = lock_order(session, order_id)
    mine = _find_quote(session, order_id, actor.user_id)
    session.rollback()
    if mine is not None:
        return AlreadyQuoted()
    if order.assigned_supplier_id is not None and order.assigned_supplier_id != actor.user_id:
        return OrderAssignedToOther()
    return ConcurrencyConflict()


def submit_quote(session, order_id: str, actor: Actor, price, notes=None) -> SupplierQuote:
    assert_role(actor, ACTOR_SUPPLIER)
    amount = parse_money(price, 'price')
    notes = optional_text(notes, 'notes')
    try:
        with atomic(session):
            order = lock_order(session, order_id)
            if _find_quote(session, order_id, actor.user_id) is not None:
                raise AlreadyQuoted()
            if order.assigned_supplier_id is not None and order.assigned_supplier_id != actor.user_id:
                raise OrderAssignedToOther()
            ORDER_FSM.assert_can_transition(order.status, Order.STATUS_PRICE_QUOTED, actor.role)
            pricing = supplier_quote_pricing(amount)
            quote = SupplierQuote(order_id=order.id, supplier_id=actor.user_id, price=pricing.supplier_price, notes=notes)
            session.add(quote)
            apply_pricing(order, pricing)
            order.assigned_supplier_id = actor.user_id
            previous = transition(session, order, Order.STATUS_PRICE_QUOTED, actor,
                                  f'Quote submitted: ${pricing.supplier_price}')
    except ConcurrencyConflict:
        err = _reclassify_conflict(session, order_id, actor)
        current_app.logger.info('quote race lost order=%s by %s: %s', order_id, actor, err.error_code)
        raise err
    events.publish_order_event(events.EVENT_STATUS_CHANGED, order, previous)
    return quote


def update_quote(session, order_id: str, actor: Actor, price, notes=None) -> SupplierQuote:
    """Revise an existing quote while the order is still price_quoted. Never touches status or history."""
    assert_role(actor, ACTOR_SUPPLIER)
    amount = parse_money(price, 'price')
    notes = optional_text(notes, 'notes')
    with atomic(session):
        order = lock_order(session, order_id)
        quote = _find_quote(session, order_id, actor.user_id)
        if quote is None:
            raise QuoteNotFound()
        if order.status != Order.STATUS_PRICE_QUOTED:
            raise QuoteLocked(f'Quotes are frozen in status {order.status}')
        if quote.price == amount and quote.notes == notes:
            return quote
        pricing = supplier_quote_pricing(amount)
        quote.price = pricing.supplier_price
        quote.notes = notes
        reprices = order.assigned_supplier_id == actor.user_id
        if reprices:
            apply_pricing(order, pricing)
    events.publish_order_event(events.EVENT_UPDATED, order)
    return quote


@retry_read
def list_quotes(session, order_id: str, actor: Actor) -> List[SupplierQuote]:
    """Admins see every quote of the order, suppliers only their own."""
    assert_role(actor, ACTOR_ADMIN, ACTOR_SUPPLIER)
    stmt = select(SupplierQuote).where(SupplierQuote.order_id == order_id)
    if actor.is_supplier:
        stmt = stmt.where(SupplierQuote.supplier_id == actor.user_id)
    return list(session.execute(stmt.order_by(SupplierQuote.id.asc())).scalars())


def quote_json(q: SupplierQuote):
    return {
        'id': q.id,
        'order_id': q.order_id,
        'supplier_id': q.supplier_id,
        'price': float(q.price) if q.price is not None else None,
        'notes': q.notes,
        'created_at': q.created_at.isoformat() if q.created_at else None,
        'updated_at': q.updated_at.isoformat() if q.updated_at else None,
    }
