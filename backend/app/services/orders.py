from __future__ import annotations
"""Order aggregate: every mutation is one transaction that keeps status, price
fields, quotes and history consistent, followed by a post-commit event.

Service functions take the session explicitly and an ``Actor``; routes pass
``get_db()`` and ``current_actor()``.
"""
from decimal import Decimal
from typing import Any, Dict, List, Optional

from flask import current_app
from sqlalchemy import select, update, func, or_

from app.config.ordering import (
    ATTACHMENT_TYPES, ATTACHMENT_MAX_BYTES, COMPLETION_IMAGE_TYPES, COMPLETION_IMAGE_MAX_BYTES,
)
from app.constants.permissions import ACTOR_ADMIN, ACTOR_SUPPLIER, ACTOR_CUSTOMER
from app.errors import (
    OrderNotFound, OrderNotEditable, OrderNotCancelable, OrderAssignedToOther, NoQuotesAvailable,
    PriceAlreadySet, InvalidTransition, ValidationError,
)
from app.models.order import Order, OrderNumberSequence
from app.models.quote import SupplierQuote
from app.services import events
from app.services.blobs import Upload, get_blob_store, validate_upload, build_blob_key
from app.services.history import append_history
from app.services.lifecycle import ORDER_FSM, ADMIN_DIRECT_TARGETS, transition
from app.services.policy import Actor, assert_owns_record, assert_role
from app.services.pricing import admin_override_pricing, apply_pricing, lowest_quote
from app.utils.clock import utcnow
from app.utils.transactions import atomic, retry_read
from app.utils.validation import (
    require_text, optional_text, parse_quantity, validate_url, parse_percent, parse_money, validate_status,
)

ORDER_SEQUENCE = 'orders'

NOTE_APPROVED = 'Order approved by admin and sent to suppliers'
NOTE_REJECTED = 'Order rejected by admin'
NOTE_EDIT_RESET = 'Order updated by customer - status reset to request created, old quotes removed'
NOTE_CREATED = 'Order created'
NOTE_UNDER_REVIEW = 'Order submitted for admin review'
NOTE_PRODUCTION = 'Order completed by supplier, production image uploaded'
NOTE_SHIPPED = 'Order moved to transit by supplier'
NOTE_REVERTED = 'Order reverted to depo by supplier'
NOTE_ADMIN_EDIT = 'Order updated by admin: Supplier price: {supplier}, Quantity: {quantity}, Final price: {final}'


# --- loading -------------------------------------------------------------

def lock_order(session, order_id: str) -> Order:
    """Fresh read of one order for a mutation (FOR UPDATE where the backend supports it)."""
    stmt = (
        select(Order)
        .where(Order.id == order_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    order = session.execute(stmt).scalar_one_or_none()
    if order is None:
        raise OrderNotFound()
    return order


def _next_order_number(session) -> int:
    bumped = session.execute(
        update(OrderNumberSequence)
        .where(OrderNumberSequence.name == ORDER_SEQUENCE)
        .values(last_value=OrderNumberSequence.last_value + 1)
    )
    if bumped.rowcount == 0:
        # first order ever; seed from existing rows in case they predate the counter
        start = session.execute(select(func.coalesce(func.max(Order.order_number), 0))).scalar_one()
        session.add(OrderNumberSequence(name=ORDER_SEQUENCE, last_value=start + 1))
        session.flush()
        return start + 1
    return session.execute(
        select(OrderNumberSequence.last_value).where(OrderNumberSequence.name == ORDER_SEQUENCE)
    ).scalar_one()


# --- content ---------------------------------------------------------------


def _clean_content(data: Dict[str, Any], partial: bool = False) -> Dict[str, Any]:
    out: Dict[str, Any] = {}
    if not partial or 'title' in data:
        out['title'] = require_text(data.get('title'), 'title')
    if not partial or 'description' in data:
        out['description'] = require_text(data.get('description'), 'description')
    if not partial or 'quantity' in data:
        out['quantity'] = parse_quantity(data.get('quantity', 1))
    if 'product_link' in data:
        out['product_link'] = validate_url(data.get('product_link'))
    if 'delivery_address' in data:
        out['delivery_address'] = optional_text(data.get('delivery_address'), 'delivery_address')
    if 'phone_number' in data:
        out['phone_number'] = optional_text(data.get('phone_number'), 'phone_number')
    return out


def create_order(session, actor: Actor, data: Dict[str, Any]) -> Order:
    assert_role(actor, ACTOR_CUSTOMER)
    content = _clean_content(data)
    moderated = bool(current_app.config.get('ORDER_MODERATION_ENABLED', False))
    initial = Order.STATUS_ADMIN_REVIEW if moderated else Order.STATUS_REQUEST_CREATED
    with atomic(session):
        order = Order(
            customer_id=actor.user_id,
            status=initial,
            order_number=_next_order_number(session),
            uploaded_files=[],
            **content,
        )
        session.add(order)
        session.flush()
        append_history(session, order, initial, NOTE_UNDER_REVIEW if moderated else NOTE_CREATED, actor.user_id)
    current_app.logger.info('order=%s created #%s status=%s by %s', order.id, order.order_number, initial, actor)
    events.publish_order_event(events.EVENT_CREATED, order)
    return order


def edit_order_content(session, order_id: str, actor: Actor, data: Dict[str, Any]) -> Order:
    content = _clean_content(data, partial=True)
    previous = None
    with atomic(session):
        order = lock_order(session, order_id)
        assert_owns_record(order.customer_id, actor)
        if order.status not in Order.EDITABLE_STATUSES:
            raise OrderNotEditable(f'Order in status {order.status} cannot be edited')
        for key, value in content.items():
            setattr(order, key, value)
        if order.status == Order.STATUS_PRICE_QUOTED:
            order.quotes.clear()
            apply_pricing(order, None)
            order.assigned_supplier_id = None
            order.payment_reference = None
            previous = transition(session, order, Order.STATUS_REQUEST_CREATED, actor, NOTE_EDIT_RESET)
    if previous:
        events.publish_order_event(events.EVENT_STATUS_CHANGED, order, previous)
    else:
        events.publish_order_event(events.EVENT_UPDATED, order)
    return order


def attach_files(session, order_id: str, actor: Actor, uploads: List[Upload]) -> Order:
    if not uploads:
        raise ValidationError('at least one file required')
    checked = [(u, validate_upload(u, ATTACHMENT_TYPES, ATTACHMENT_MAX_BYTES)) for u in uploads]
    store = get_blob_store()
    stored_keys: List[str] = []
    try:
        with atomic(session):
            order = lock_order(session, order_id)
            assert_owns_record(order.customer_id, actor)
            if order.status not in Order.EDITABLE_STATUSES:
                raise OrderNotEditable('Files can only be attached while the order awaits quotes')
            now = utcnow()
            files = list(order.uploaded_files or [])
            for upload, content_type in checked:
                key = build_blob_key(f'orders/{order.id}/files', upload.filename)
                url = store.put(key, upload.data, content_type)
                stored_keys.append(key)
                files.append({
                    'id': key.rsplit('/', 1)[-1],
                    'name': upload.filename,
                    'size': upload.size,
                    'type': content_type,
                    'url': url,
                    'uploaded_at': now.isoformat(),
                })
            order.uploaded_files = files
            order.files_uploaded_at = now
    except Exception:
        for key in stored_keys:
            store.delete(key)
        raise
    events.publish_order_event(events.EVENT_UPDATED, order)
    return order


# --- lifecycle -------------------------------------------------------------

def cancel_order(session, order_id: str, actor: Actor, notes: Optional[str] = None) -> Order:
    with atomic(session):
        order = lock_order(session, order_id)
        if actor.is_customer:
            assert_owns_record(order.customer_id, actor)
        if not ORDER_FSM.can_transition(order.status, Order.STATUS_CANCELED, actor.role):
            raise OrderNotCancelable(f'Order in status {order.status} cannot be canceled by {actor.role}')
        default_note = 'Order canceled by customer' if actor.is_customer else 'Order canceled by admin'
        previous = transition(session, order, Order.STATUS_CANCELED, actor, notes or default_note)
    events.publish_order_event(events.EVENT_STATUS_CHANGED, order, previous)
    return order


def _admin_transition(session, order_id: str, actor: Actor, target: str, notes: Optional[str],
                      required_current: Optional[str] = None) -> Order:
    assert_role(actor, ACTOR_ADMIN)
    with atomic(session):
        order = lock_order(session, order_id)
        if required_current and order.status != required_current:
            raise InvalidTransition(order.status, target, actor.role)
        previous = transition(session, order, target, actor, notes)
    events.publish_order_event(events.EVENT_STATUS_CHANGED, order, previous)
    return order


def approve_order(session, order_id: str, actor: Actor, notes: Optional[str] = None) -> Order:
    return _admin_transition(session, order_id, actor, Order.STATUS_REQUEST_CREATED, notes or NOTE_APPROVED,
                             required_current=Order.STATUS_ADMIN_REVIEW)


def reject_order(session, order_id: str, actor: Actor, notes: Optional[str] = None) -> Order:
    return _admin_transition(session, order_id, actor, Order.STATUS_CANCELED, notes or NOTE_REJECTED,
                             required_current=Order.STATUS_ADMIN_REVIEW)


def mark_delivered(session, order_id: str, actor: Actor, notes: Optional[str] = None) -> Order:
    return _admin_transition(session, order_id, actor, Order.STATUS_DELIVERED, notes or 'Order delivered')


def update_status(session, order_id: str, actor: Actor, target: str, notes: Optional[str] = None) -> Order:
    """Generic admin status change; targets with side effects use their own operation."""
    assert_role(actor, ACTOR_ADMIN)
    validate_status(target, ORDER_FSM.states)
    if target == Order.STATUS_CANCELED:
        return cancel_order(session, order_id, actor, notes)
    if target not in ADMIN_DIRECT_TARGETS:
        with atomic(session):
            order = lock_order(session, order_id)
            raise InvalidTransition(order.status, target, actor.role)
    return _admin_transition(session, order_id, actor, target, notes)


MANUAL_PRICE_FIELDS = ('supplier_price', 'final_price')


def _money_note(value: Optional[Decimal]) -> str:
    return f'${value}' if value is not None else 'Not set'


def admin_edit_order(session, order_id: str, actor: Actor, data: Dict[str, Any]) -> Order:
    """Manual correction of a live order by an admin.

    Content fields and both prices are written as given; ``final_price`` may be
    set while ``supplier_price`` stays null. A ``status`` different from the
    current one is an admin move on the order machine. Every edit leaves one
    history row.
    """
    assert_role(actor, ACTOR_ADMIN)
    content = _clean_content(data, partial=True)
    prices = {
        f: (parse_money(data[f], f) if data[f] is not None else None)
        for f in MANUAL_PRICE_FIELDS if f in data
    }
    target = data.get('status')
    if target is not None:
        validate_status(target, ORDER_FSM.states)
    notes = optional_text(data.get('notes'), 'notes')
    if not content and not prices and target is None:
        raise ValidationError('nothing to update')
    previous = None
    with atomic(session):
        order = lock_order(session, order_id)
        if order.is_terminal:
            raise OrderNotEditable(f'Order in status {order.status} cannot be edited')
        moving = target is not None and target != order.status
        if moving:
            if target not in ADMIN_DIRECT_TARGETS:
                raise InvalidTransition(order.status, target, actor.role)
            ORDER_FSM.assert_can_transition(order.status, target, actor.role)
        for key, value in content.items():
            setattr(order, key, value)
        if prices:
            for key, value in prices.items():
                setattr(order, key, value)
            order.pricing_path = Order.PRICING_MANUAL
            order.admin_margin = order.profit_amount
        note = notes or NOTE_ADMIN_EDIT.format(
            supplier=_money_note(order.supplier_price),
            quantity=order.quantity,
            final=_money_note(order.final_price),
        )
        if moving:
            previous = transition(session, order, target, actor, note)
        else:
            append_history(session, order, order.status, note, actor.user_id)
    current_app.logger.info('order=%s edited by %s fields=%s', order.id, actor, sorted({**content, **prices}))
    if previous:
        events.publish_order_event(events.EVENT_STATUS_CHANGED, order, previous)
    else:
        events.publish_order_event(events.EVENT_UPDATED, order)
    return order


def set_final_price(session, order_id: str, actor: Actor, margin_percent) -> Order:
    assert_role(actor, ACTOR_ADMIN)
    margin = parse_percent(margin_percent)
    with atomic(session):
        order = lock_order(session, order_id)
        ORDER_FSM.assert_can_transition(order.status, Order.STATUS_PAYMENT_CONFIRMED, actor.role)
        quotes = list(session.execute(
            select(SupplierQuote).where(SupplierQuote.order_id == order.id).order_by(SupplierQuote.id.asc())
        ).scalars())
        if not quotes:
            raise NoQuotesAvailable()
        if order.final_price is not None:
            raise PriceAlreadySet()
        lowest = lowest_quote(quotes)
        pricing = admin_override_pricing(lowest.price, margin)
        apply_pricing(order, pricing)
        note = (f'Final price set: ${pricing.final_price} '
                f'(Supplier: ${pricing.supplier_price}, Margin: {pricing.admin_margin}%)')
        previous = transition(session, order, Order.STATUS_PAYMENT_CONFIRMED, actor, note)
    events.publish_order_event(events.EVENT_STATUS_CHANGED, order, previous)
    return order


def _assigned_supplier_transition(session, order: Order, actor: Actor, target: str, notes: str) -> str:
    assert_role(actor, ACTOR_SUPPLIER)
    if order.assigned_supplier_id != actor.user_id:
        raise OrderAssignedToOther('Only the assigned supplier can progress this order')
    return transition(session, order, target, actor, notes)


def complete_production(session, order_id: str, actor: Actor, image: Upload, notes: Optional[str] = None) -> Order:
    assert_role(actor, ACTOR_SUPPLIER)
    content_type = validate_upload(image, COMPLETION_IMAGE_TYPES, COMPLETION_IMAGE_MAX_BYTES, label='image')
    store = get_blob_store()
    key = None
    try:
        with atomic(session):
            order = lock_order(session, order_id)
            if order.assigned_supplier_id != actor.user_id:
                raise OrderAssignedToOther('Only the assigned supplier can complete this order')
            ORDER_FSM.assert_can_transition(order.status, Order.STATUS_PRODUCTION_STARTED, actor.role)
            key = build_blob_key(f'orders/{order.id}/completion', image.filename)
            order.supplier_image_url = store.put(key, image.data, content_type)
            order.supplier_completed_at = utcnow()
            previous = transition(session, order, Order.STATUS_PRODUCTION_STARTED, actor, notes or NOTE_PRODUCTION)
    except Exception:
        if key:
            store.delete(key)
        raise
    events.publish_order_event(events.EVENT_STATUS_CHANGED, order, previous)
    return order


def ship_order(session, order_id: str, actor: Actor, notes: Optional[str] = None) -> Order:
    with atomic(session):
        order = lock_order(session, order_id)
        previous = _assigned_supplier_transition(session, order, actor, Order.STATUS_IN_TRANSIT, notes or NOTE_SHIPPED)
    events.publish_order_event(events.EVENT_STATUS_CHANGED, order, previous)
    return order


def revert_to_production(session, order_id: str, actor: Actor, notes: Optional[str] = None) -> Order:
    with atomic(session):
        order = lock_order(session, order_id)
        if order.status != Order.STATUS_IN_TRANSIT:
            raise InvalidTransition(order.status, Order.STATUS_PRODUCTION_STARTED, actor.role)
        previous = _assigned_supplier_transition(session, order, actor, Order.STATUS_PRODUCTION_STARTED,
                                                 notes or NOTE_REVERTED)
    events.publish_order_event(events.EVENT_STATUS_CHANGED, order, previous)
    return order


def delete_order(session, order_id: str, actor: Actor) -> Dict[str, Any]:
    """Hard delete at any status, cascading rows and stored files. Returns a snapshot."""
    assert_role(actor, ACTOR_ADMIN)
    with atomic(session):
        order = lock_order(session, order_id)
        snapshot = {
            'id': order.id,
            'order_number': order.order_number,
            'status': order.status,
            'customer_id': order.customer_id,
            'assigned_supplier_id': order.assigned_supplier_id,
            'final_price': float(order.final_price) if order.final_price is not None else None,
            'quotes': len(order.quotes),
        }
        blob_urls = [f.get('url') for f in order.uploaded_files or []] + [order.supplier_image_url]
        session.delete(order)
    current_app.logger.warning('order=%s #%s hard deleted by %s', snapshot['id'], snapshot['order_number'], actor)
    # bytes go only after the rows are gone
    store = get_blob_store()
    for url in blob_urls:
        key = store.key_from_url(url)
        if key:
            store.delete(key)
    events.publish_order_event(events.EVENT_DELETED, order)
    return snapshot


# --- reads -------------------------------------------------------------------

def can_view(order: Order, actor: Actor) -> bool:
    if actor.is_admin:
        return True
    if actor.is_customer:
        return order.customer_id == actor.user_id
    if actor.is_supplier:
        if order.assigned_supplier_id == actor.user_id:
            return True
        return order.status == Order.STATUS_REQUEST_CREATED and order.assigned_supplier_id is None
    return False


@retry_read
def get_order(session, order_id: str, actor: Actor) -> Order:
    order = session.execute(
        select(Order).where(Order.id == order_id).execution_options(populate_existing=True)
    ).scalar_one_or_none()
    # hidden orders look missing so ids cannot be probed
    if order is None or not can_view(order, actor):
        raise OrderNotFound()
    return order


def visible_orders_query(session, actor: Actor):
    """Legacy Query of the orders this actor may see, for route level filtering and paging."""
    q = session.query(Order).populate_existing()
    if actor.is_customer:
        q = q.filter(Order.customer_id == actor.user_id)
    elif actor.is_supplier:
        q = q.filter(or_(
            Order.assigned_supplier_id == actor.user_id,
            (Order.status == Order.STATUS_REQUEST_CREATED) & Order.assigned_supplier_id.is_(None),
        ))
    return q


def search_filter(q, term: str):
    """'#12' or '12' matches order number 12, anything else is a title substring."""
    term = term.strip()
    digits = term.lstrip('#')
    if digits.isdigit():
        return q.filter(or_(Order.order_number == int(digits), Order.title.ilike(f'%{term}%')))
    return q.filter(Order.title.ilike(f'%{term}%'))


IN_PROGRESS = (Order.STATUS_PAYMENT_CONFIRMED, Order.STATUS_PRODUCTION_STARTED, Order.STATUS_IN_TRANSIT)


@retry_read
def order_stats(session) -> Dict[str, Any]:
    counts = dict(session.execute(select(Order.status, func.count(Order.id)).group_by(Order.status)).all())
    by_status = {s: int(counts.get(s, 0)) for s in Order.ALL_STATUSES}
    earning = IN_PROGRESS + (Order.STATUS_DELIVERED,)
    revenue, cost = session.execute(
        select(func.coalesce(func.sum(Order.final_price), 0), func.coalesce(func.sum(Order.supplier_price), 0))
        .where(Order.status.in_(earning), Order.final_price.is_not(None))
    ).one()
    revenue = Decimal(str(revenue)).quantize(Decimal('0.01'))
    cost = Decimal(str(cost)).quantize(Decimal('0.01'))
    return {
        'total': sum(by_status.values()),
        'by_status': by_status,
        'under_review': by_status[Order.STATUS_ADMIN_REVIEW],
        'awaiting_quotes': by_status[Order.STATUS_REQUEST_CREATED],
        'waiting_payment': by_status[Order.STATUS_PRICE_QUOTED],
        'in_progress': sum(by_status[s] for s in IN_PROGRESS),
        'completed': by_status[Order.STATUS_DELIVERED],
        'canceled': by_status[Order.STATUS_CANCELED],
        'revenue': float(revenue),
        'profit': float(revenue - cost),
    }
