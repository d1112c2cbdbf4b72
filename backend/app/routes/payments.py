from __future__ import annotations
from flask import Blueprint, request
from app import get_db
from app.decorators.auth import require_permissions
from app.decorators.audit import audit_log
from app.services.payments import record_payment
from app.services.policy import current_actor

payments_bp = Blueprint('payments', __name__)


@payments_bp.post('/confirm')
@require_permissions('PAY.CONFIRM')
@audit_log('PAYMENT.CONFIRM', entity='Order', entity_id_key='order_id', meta_keys=['transaction_id', 'amount'])
def confirm_payment():
    data = request.get_json(silent=True) or {}
    tx = record_payment(get_db(), current_actor(), data.get('reference'), data.get('transaction_id'), data.get('amount'))
    return {
        'id': tx.id,
        'order_id': tx.order_id,
        'transaction_id': tx.transaction_id,
        'reference': tx.reference_code,
        'amount': float(tx.amount),
        'status': tx.status,
        'confirmed_at': tx.confirmed_at.isoformat() if tx.confirmed_at else None,
    }, 201
