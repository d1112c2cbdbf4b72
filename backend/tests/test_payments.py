import re
import pytest

from app import get_db
from app.errors import ConcurrencyConflict, OrderNotFound, PriceOutOfRange, ValidationError, NotPermitted
from app.models.order import Order
from app.services.history import list_history
from app.services.payments import new_payment_reference, generate_payment_reference, record_payment, payment_status
from tests.test_utils_seed import seed_cast, create_order, quoted_order, paid_order
from tests.test_lifecycle_helpers import http_cast, quote_http_order


def test_reference_format():
    ref = new_payment_reference()
    assert re.fullmatch(r'UTX-[0-9A-Z]+-[0-9A-Z]{9}', ref)
    assert new_payment_reference() != ref


def test_reference_requires_quoted_order(app_context):
    cast = seed_cast()
    open_order = create_order(cast['customer'])
    with pytest.raises(ValidationError):
        generate_payment_reference(get_db(), open_order.id, cast['customer'])
    quoted = quoted_order(cast)
    with pytest.raises(NotPermitted):
        generate_payment_reference(get_db(), quoted.id, seed_cast()['customer'])
    first = generate_payment_reference(get_db(), quoted.id, cast['customer']).payment_reference
    assert generate_payment_reference(get_db(), quoted.id, cast['customer']).payment_reference == first


def test_edit_drops_reference(app_context):
    from app.services.orders import edit_order_content
    cast = seed_cast()
    order = quoted_order(cast)
    generate_payment_reference(get_db(), order.id, cast['customer'])
    edit_order_content(get_db(), order.id, cast['customer'], {'quantity': 3})
    assert order.payment_reference is None


def test_recording_payment_confirms_order(app_context):
    cast = seed_cast()
    order = paid_order(cast, '100.00', transaction_id='TX-confirm-1')
    assert order.status == Order.STATUS_PAYMENT_CONFIRMED
    assert order.payment_confirmed_at is not None
    last = list_history(get_db(), order.id)[-1]
    assert last.status == Order.STATUS_PAYMENT_CONFIRMED
    assert last.changed_by is None
    assert last.notes == 'Payment confirmed via TX-confirm-1'
    status = payment_status(get_db(), order.id, cast['customer'])
    assert status['status'] == 'confirmed'
    assert status['transaction_id'] == 'TX-confirm-1'
    assert status['amount'] == 120.0


def test_payment_errors(app_context):
    cast = seed_cast()
    order = quoted_order(cast, '100.00')
    ref = generate_payment_reference(get_db(), order.id, cast['customer']).payment_reference
    with pytest.raises(OrderNotFound):
        record_payment(get_db(), cast['admin'], 'UTX-NOPE', 'TX-x', '120.00')
    with pytest.raises(ValidationError):
        record_payment(get_db(), cast['admin'], ref, 'TX-short-1', '119.00')
    with pytest.raises(NotPermitted):
        record_payment(get_db(), cast['customer'], ref, 'TX-self-1', '120.00')
    with pytest.raises(PriceOutOfRange):
        record_payment(get_db(), cast['admin'], ref, 'TX-huge-1', '1e30')
    assert order.status == Order.STATUS_PRICE_QUOTED
    # within one cent is accepted
    record_payment(get_db(), cast['admin'], ref, 'TX-ok-1', '119.99')
    with pytest.raises(ConcurrencyConflict):
        record_payment(get_db(), cast['admin'], ref, 'TX-ok-1', '120.00')
    with pytest.raises(ValidationError):
        record_payment(get_db(), cast['admin'], ref, 'TX-ok-2', '120.00')


def test_pending_status_before_payment(app_context):
    cast = seed_cast()
    order = quoted_order(cast)
    status = payment_status(get_db(), order.id, cast['customer'])
    assert status['status'] == 'pending'
    assert status['amount_due'] == 120.0
    assert status['transaction_id'] is None


def test_confirm_endpoint(client, app_context):
    cast = http_cast()
    order = quote_http_order(client, cast, price=10)
    oid = order['id']
    ref = client.post(f'/orders/{oid}/payment-reference', headers=cast['customer'][1]).get_json()
    assert ref['amount_due'] == 12.0
    payload = {'reference': ref['reference'], 'transaction_id': f'BANK-{oid}', 'amount': '12.00'}
    assert client.post('/payments/confirm', json=payload, headers=cast['customer'][1]).status_code == 403
    resp = client.post('/payments/confirm', json=payload, headers=cast['admin'][1])
    assert resp.status_code == 201, resp.get_json()
    assert resp.get_json()['status'] == 'confirmed'
    dup = client.post('/payments/confirm', json=payload, headers=cast['admin'][1])
    assert dup.status_code == 409
    assert dup.get_json()['error']['code'] == 'CONCURRENCY_CONFLICT'
    missing = client.post('/payments/confirm', json={**payload, 'reference': 'UTX-0-NOPE', 'transaction_id': 'x'},
                          headers=cast['admin'][1])
    assert missing.status_code == 404
    got = client.get(f'/orders/{oid}/payment', headers=cast['customer'][1]).get_json()
    assert got['status'] == 'confirmed' and got['reference'] == ref['reference']
    assert client.get(f'/orders/{oid}', headers=cast['customer'][1]).get_json()['status'] == 'payment_confirmed'
