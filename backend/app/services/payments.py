from __future__ import annotations
"""Bank transfer payments: the customer gets a unique reference to put on the
transfer, the confirmation callback matches it back to the order."""
import secrets
import string
import time
from typing import Any, Dict, Optional

from flask import current_app
from sqlalchemy import select

from app.config.ordering import PAYMENT_AMOUNT_TOLERANCE
from app.constants.permissions import ACTOR_ADMIN, ACTOR_CUSTOMER
from app.errors import OrderNotFound, ValidationError, ConcurrencyConflict
from app.models.order import Order
from app.models.payment import PaymentTransaction
from app.services import events
from app.services.lifecycle import ORDER_FSM, transition
from app.services.orders import lock_order, get_order
from app.services.policy import Actor, SYSTEM_ACTOR, assert_owns_record, assert_role
from app.utils.clock import utcnow
from app.utils.transactions import atomic, retry_read
from app.utils.validation import parse_money, require_text

_B36 = string.digits + string.ascii_lowercase
_REF_ALPHABET = string.ascii_uppercase + string.digits


def _base36(n: int) -> str:
    out = ''
    while n:
        n, r = divmod(n, 36)
        out = _B36[r] + out
    return out or '0'


def new_payment_reference() -> str:
    """UTX-<ms timestamp base36>-<9 random chars>, upper case."""
    stamp = _base36(int(time.time() * 1000)).upper()
    tail = ''.join(secrets.choice(_REF_ALPHABET) for _ in range(9))
    return f'UTX-{stamp}-{tail}'


def generate_payment_reference(session, order_id: str, actor: Actor) -> Order:
    """Idempotent: a quoted order keeps its first reference until an edit reprices it."""
    assert_role(actor, ACTOR_CUSTOMER)
    with atomic(session):
        order = lock_order(session, order_id)
        assert_owns_record(order.customer_id, actor)
        if order.status != Order.STATUS_PRICE_QUOTED or order.final_price is None:
            raise ValidationError(f'Order in status {order.status} is not awaiting payment')
        if not order.payment_reference:
            order.payment_reference = new_payment_reference()
    return order


def record_payment(session, actor: Actor, reference: Any, transaction_id: Any, amount: Any) -> PaymentTransaction:
    assert_role(actor, ACTOR_ADMIN)
    reference = require_text(reference, 'reference')
    transaction_id = require_text(transaction_id, 'transaction_id')
    paid = parse_money(amount, 'amount')
    with atomic(session):
        order = session.execute(
            select(Order).where(Order.payment_reference == reference).with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if order is None:
            raise OrderNotFound('No order with this payment reference')
        if session.execute(
            select(PaymentTransaction.id).where(PaymentTransaction.transaction_id == transaction_id)
        ).first() is not None:
            raise ConcurrencyConflict('Transaction already recorded')
        if order.payment_confirmed_at is not None:
            raise ValidationError('Order already paid')
        ORDER_FSM.assert_can_transition(order.status, Order.STATUS_PAYMENT_CONFIRMED, actor.role)
        if abs(paid - order.final_price) > PAYMENT_AMOUNT_TOLERANCE:
            raise ValidationError(f'amount {paid} does not match order total {order.final_price}')
        now = utcnow()
        tx = PaymentTransaction(
            order_id=order.id,
            amount=paid,
            reference_code=reference,
            transaction_id=transaction_id,
            status=PaymentTransaction.STATUS_CONFIRMED,
            confirmed_at=now,
        )
        session.add(tx)
        order.payment_confirmed_at = now
        # bank callbacks are system driven, so history carries no user
        previous = transition(session, order, Order.STATUS_PAYMENT_CONFIRMED, SYSTEM_ACTOR,
                              f'Payment confirmed via {transaction_id}')
    current_app.logger.info('order=%s payment %s recorded amount=%s', order.id, transaction_id, paid)
    events.publish_order_event(events.EVENT_STATUS_CHANGED, order, previous)
    return tx


@retry_read
def _latest_transaction(session, order_id: str) -> Optional[PaymentTransaction]:
    return session.execute(
        select(PaymentTransaction).where(PaymentTransaction.order_id == order_id)
        .order_by(PaymentTransaction.created_at.desc(), PaymentTransaction.id.desc())
    ).scalars().first()


def payment_status(session, order_id: str, actor: Actor) -> Dict[str, Any]:
    order = get_order(session, order_id, actor)
    tx = _latest_transaction(session, order.id)
    return {
        'order_id': order.id,
        'reference': order.payment_reference,
        'amount_due': float(order.final_price) if order.final_price is not None else None,
        'status': tx.status if tx else PaymentTransaction.STATUS_PENDING,
        'transaction_id': tx.transaction_id if tx else None,
        'amount': float(tx.amount) if tx else None,
        'confirmed_at': tx.confirmed_at.isoformat() if tx and tx.confirmed_at else None,
    }
