from __future__ import annotations
from datetime import datetime, timezone
from flask import Blueprint, request
from sqlalchemy import select
from app import get_db
from app.models.order import Order
from app.decorators.auth import require_permissions
from app.decorators.audit import audit_log
from app.errors import ValidationError
from app.services import orders as order_service
from app.services import quotes as quote_service
from app.services.blobs import Upload
from app.services.history import list_history, history_json
from app.services.lifecycle import STATUS_TABLE, ORDER_FSM, status_info
from app.services.payments import generate_payment_reference, payment_status
from app.services.policy import current_actor, Actor
from app.utils.listing import apply_pagination, make_cached_list_response, make_cached_item_response, respond, iso_z
from app.utils.filters import apply_filters
from app.utils.sorting import apply_multi_sort
from app.utils.validation import validate_status

orders_bp = Blueprint('orders', __name__)

# Fields only staff see; customers get the final price only.
COST_FIELDS = ('supplier_price', 'admin_margin', 'pricing_path', 'profit_amount', 'margin_percent')


def _money(value):
    return float(value) if value is not None else None


def _order_json(o: Order, actor: Actor = None):
    info = status_info(o.status)
    data = {
        'id': o.id,
        'order_number': o.order_number,
        'display_number': o.display_number,
        'customer_id': o.customer_id,
        'title': o.title,
        'description': o.description,
        'quantity': o.quantity,
        'product_link': o.product_link,
        'delivery_address': o.delivery_address,
        'phone_number': o.phone_number,
        'uploaded_files': list(o.uploaded_files or []),
        'files_uploaded_at': iso_z(o.files_uploaded_at),
        'status': o.status,
        'status_label': info.label if info else o.status,
        'status_color': info.color if info else None,
        'assigned_supplier_id': o.assigned_supplier_id,
        'supplier_price': _money(o.supplier_price),
        'admin_margin': _money(o.admin_margin),
        'final_price': _money(o.final_price),
        'pricing_path': o.pricing_path,
        'profit_amount': _money(o.profit_amount),
        'margin_percent': _money(o.margin_percent),
        'supplier_image_url': o.supplier_image_url,
        'supplier_completed_at': iso_z(o.supplier_completed_at),
        'payment_reference': o.payment_reference,
        'payment_confirmed_at': iso_z(o.payment_confirmed_at),
        'created_at': iso_z(o.created_at),
        'updated_at': iso_z(o.updated_at),
        'version': o.version,
    }
    if actor is not None:
        if actor.is_customer:
            for k in COST_FIELDS:
                data.pop(k, None)
        data['allowed_transitions'] = ORDER_FSM.allowed_targets(o.status, actor.role)
    return data


def _json_body():
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def _parse_since(raw: str) -> datetime:
    dt = datetime.fromisoformat(raw.replace('Z', '+00:00'))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


FILTER_SPECS = {
    'status': {'op': lambda qu, v: qu.filter(Order.status == v), 'validate': lambda v: v in Order.ALL_STATUSES},
    'q': {'op': lambda qu, v: order_service.search_filter(qu, v)},
    'customer_id': {'coerce': int, 'op': lambda qu, v: qu.filter(Order.customer_id == v)},
    'assigned_supplier_id': {'coerce': int, 'op': lambda qu, v: qu.filter(Order.assigned_supplier_id == v)},
    'updated_since': {'coerce': _parse_since, 'op': lambda qu, v: qu.filter(Order.updated_at > v)},
}

SORT_FIELDS = {
    'order_number': Order.order_number,
    'status': Order.status,
    'title': Order.title,
    'final_price': Order.final_price,
    'created_at': Order.created_at,
    'updated_at': Order.updated_at,
}


def _list_response(head: bool = False):
    session = get_db()
    actor = current_actor()
    q = order_service.visible_orders_query(session, actor)
    q = apply_filters(q, FILTER_SPECS, request.args)
    q = apply_multi_sort(q, request.args.get('sort'), SORT_FIELDS, Order.order_number, default='-created_at')
    paged_q, total, limit, offset = apply_pagination(q)
    rows = paged_q.all()
    rows_json = [_order_json(o, actor) for o in rows]
    latest_ts = max((o.updated_at for o in rows), default=None)
    resp, etag = make_cached_list_response(rows_json, total, limit, offset, latest_ts)
    return respond(resp, etag, latest_ts, head=head)


@orders_bp.get('')
@require_permissions('ORDER.READ')
def list_orders():
    return _list_response()


@orders_bp.route('', methods=['HEAD'])
@require_permissions('ORDER.READ')
def head_orders():
    """Return only validator headers (ETag / Last-Modified / X-Poll-Interval) for the orders list."""
    return _list_response(head=True)


@orders_bp.get('/statuses')
@require_permissions('ORDER.READ')
def list_statuses():
    return {'data': [s._asdict() for s in STATUS_TABLE], 'transitions': ORDER_FSM.describe()}


@orders_bp.get('/stats')
@require_permissions('ORDER.ADMIN')
def stats():
    return order_service.order_stats(get_db())


@orders_bp.post('')
@require_permissions('ORDER.CREATE')
def create_order():
    actor = current_actor()
    o = order_service.create_order(get_db(), actor, _json_body())
    return _order_json(o, actor), 201


@orders_bp.route('/<order_id>', methods=['GET', 'HEAD'])
@require_permissions('ORDER.READ')
def get_order(order_id: str):
    actor = current_actor()
    o = order_service.get_order(get_db(), order_id, actor)
    resp, etag = make_cached_item_response(_order_json(o, actor), o.updated_at)
    return respond(resp, etag, o.updated_at, head=request.method == 'HEAD')


@orders_bp.put('/<order_id>')
@require_permissions('ORDER.UPDATE')
def update_order(order_id: str):
    actor = current_actor()
    o = order_service.edit_order_content(get_db(), order_id, actor, _json_body())
    return _order_json(o, actor)


@orders_bp.post('/<order_id>/files')
@require_permissions('ORDER.UPDATE')
def upload_files(order_id: str):
    actor = current_actor()
    uploads = [Upload.from_file_storage(fs) for fs in request.files.getlist('files')]
    o = order_service.attach_files(get_db(), order_id, actor, uploads)
    return _order_json(o, actor), 201


@orders_bp.post('/<order_id>/cancel')
@require_permissions('ORDER.CANCEL')
def cancel(order_id: str):
    actor = current_actor()
    o = order_service.cancel_order(get_db(), order_id, actor, _json_body().get('notes'))
    return _order_json(o, actor)


def _prefetch_order(order_id: str):
    # identity map may hold a copy from an earlier request on this session
    o = get_db().execute(
        select(Order).where(Order.id == order_id).execution_options(populate_existing=True)
    ).scalar_one_or_none()
    if o is None:
        return {}
    return {
        'status': o.status,
        'quantity': o.quantity,
        'supplier_price': _money(o.supplier_price),
        'final_price': _money(o.final_price),
    }


@orders_bp.post('/<order_id>/approve')
@require_permissions('ORDER.ADMIN')
def approve(order_id: str):
    actor = current_actor()
    o = order_service.approve_order(get_db(), order_id, actor, _json_body().get('notes'))
    return _order_json(o, actor)


@orders_bp.post('/<order_id>/reject')
@require_permissions('ORDER.ADMIN')
def reject(order_id: str):
    actor = current_actor()
    o = order_service.reject_order(get_db(), order_id, actor, _json_body().get('notes'))
    return _order_json(o, actor)


@orders_bp.post('/<order_id>/deliver')
@require_permissions('ORDER.ADMIN')
def deliver(order_id: str):
    actor = current_actor()
    o = order_service.mark_delivered(get_db(), order_id, actor, _json_body().get('notes'))
    return _order_json(o, actor)


@orders_bp.post('/<order_id>/status')
@require_permissions('ORDER.ADMIN')
@audit_log(
    'ORDER.STATUS.SET',
    entity='Order',
    entity_id_key='id',
    diff_keys=['status'],
    pre_fetch=lambda a, kw: _prefetch_order(kw.get('order_id')),
    meta_keys=['order_number'],
)
def set_status(order_id: str):
    actor = current_actor()
    data = _json_body()
    target = data.get('status')
    if not target:
        raise ValidationError('status required')
    validate_status(target, Order.ALL_STATUSES)
    o = order_service.update_status(get_db(), order_id, actor, target, data.get('notes'))
    return _order_json(o, actor)


@orders_bp.post('/<order_id>/edit')
@require_permissions('ORDER.ADMIN')
@audit_log(
    'ORDER.ADMIN.EDIT',
    entity='Order',
    entity_id_key='id',
    diff_keys=['status', 'quantity', 'supplier_price', 'final_price'],
    pre_fetch=lambda a, kw: _prefetch_order(kw.get('order_id')),
    meta_keys=['order_number', 'pricing_path'],
)
def admin_edit(order_id: str):
    actor = current_actor()
    o = order_service.admin_edit_order(get_db(), order_id, actor, _json_body())
    return _order_json(o, actor)


@orders_bp.post('/<order_id>/final-price')
@require_permissions('ORDER.PRICE')
@audit_log('ORDER.PRICE.SET', entity='Order', entity_id_key='id', meta_keys=['final_price', 'admin_margin', 'supplier_price'])
def final_price(order_id: str):
    actor = current_actor()
    data = _json_body()
    if 'margin_percent' not in data:
        raise ValidationError('margin_percent required')
    o = order_service.set_final_price(get_db(), order_id, actor, data.get('margin_percent'))
    return _order_json(o, actor)


@orders_bp.delete('/<order_id>')
@require_permissions('ORDER.DELETE')
@audit_log('ORDER.DELETE', entity='Order', entity_id_key='id', meta_keys=['order_number', 'status', 'customer_id', 'final_price', 'quotes'])
def delete_order(order_id: str):
    snapshot = order_service.delete_order(get_db(), order_id, current_actor())
    return {**snapshot, 'deleted': True}


@orders_bp.get('/<order_id>/history')
@require_permissions('ORDER.READ')
def history(order_id: str):
    session = get_db()
    o = order_service.get_order(session, order_id, current_actor())
    return {'data': [history_json(h) for h in list_history(session, o.id)]}


# --- Quotes ---

@orders_bp.get('/<order_id>/quotes')
@require_permissions('QUOTE.READ')
def list_quotes(order_id: str):
    session = get_db()
    actor = current_actor()
    o = order_service.get_order(session, order_id, actor)
    return {'data': [quote_service.quote_json(q) for q in quote_service.list_quotes(session, o.id, actor)]}


@orders_bp.post('/<order_id>/quotes')
@require_permissions('QUOTE.SUBMIT')
def submit_quote(order_id: str):
    data = _json_body()
    q = quote_service.submit_quote(get_db(), order_id, current_actor(), data.get('price'), data.get('notes'))
    return quote_service.quote_json(q), 201


@orders_bp.put('/<order_id>/quotes')
@require_permissions('QUOTE.SUBMIT')
def update_quote(order_id: str):
    data = _json_body()
    q = quote_service.update_quote(get_db(), order_id, current_actor(), data.get('price'), data.get('notes'))
    return quote_service.quote_json(q)


# --- Supplier fulfillment ---

@orders_bp.post('/<order_id>/complete')
@require_permissions('ORDER.FULFILL')
def complete(order_id: str):
    actor = current_actor()
    image = request.files.get('image')
    if image is None:
        raise ValidationError('image required')
    o = order_service.complete_production(get_db(), order_id, actor, Upload.from_file_storage(image),
                                          request.form.get('notes'))
    return _order_json(o, actor)


@orders_bp.post('/<order_id>/ship')
@require_permissions('ORDER.FULFILL')
def ship(order_id: str):
    actor = current_actor()
    o = order_service.ship_order(get_db(), order_id, actor, _json_body().get('notes'))
    return _order_json(o, actor)


@orders_bp.post('/<order_id>/revert')
@require_permissions('ORDER.FULFILL')
def revert(order_id: str):
    actor = current_actor()
    o = order_service.revert_to_production(get_db(), order_id, actor, _json_body().get('notes'))
    return _order_json(o, actor)


# --- Payment ---

@orders_bp.post('/<order_id>/payment-reference')
@require_permissions('PAY.CREATE')
def payment_reference(order_id: str):
    o = generate_payment_reference(get_db(), order_id, current_actor())
    return {
        'order_id': o.id,
        'reference': o.payment_reference,
        'amount_due': _money(o.final_price),
    }


@orders_bp.get('/<order_id>/payment')
@require_permissions('ORDER.READ')
def get_payment(order_id: str):
    return payment_status(get_db(), order_id, current_actor())
