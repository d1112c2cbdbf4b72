import io
from sqlalchemy import update
from app import get_db
from app.models.audit import AuditLog
from app.models.order import Order
from tests.test_lifecycle_helpers import http_cast, create_http_order, quote_http_order, assert_transition

PNG = b'\x89PNG\r\n\x1a\n' + b'0' * 32


def test_create_and_read_back(client, app_context):
    cast = http_cast()
    body = create_http_order(client, cast['customer'][1], title='Lamp shade')
    assert body['display_number'] == f"#{body['order_number']}"
    assert body['status_label'] == 'ORDER RECEIVED'
    assert 'supplier_price' not in body
    assert 'canceled' in body['allowed_transitions']
    got = client.get(f"/orders/{body['id']}", headers=cast['customer'][1])
    assert got.status_code == 200
    assert got.get_json()['title'] == 'Lamp shade'


def test_create_validation_errors(client, app_context):
    cast = http_cast()
    resp = client.post('/orders', json={'description': 'no title'}, headers=cast['customer'][1])
    assert resp.status_code == 400
    assert resp.get_json()['error']['code'] == 'VALIDATION_ERROR'
    # suppliers lack ORDER.CREATE
    resp = client.post('/orders', json={'title': 'x', 'description': 'y'}, headers=cast['supplier'][1])
    assert resp.status_code == 403


def test_cost_fields_hidden_from_customer(client, app_context):
    cast = http_cast()
    order = quote_http_order(client, cast, price=100)
    mine = client.get(f"/orders/{order['id']}", headers=cast['customer'][1]).get_json()
    assert mine['final_price'] == 120.0
    assert mine['status'] == 'price_quoted'
    for key in ('supplier_price', 'admin_margin', 'profit_amount', 'margin_percent'):
        assert key not in mine
    staff = client.get(f"/orders/{order['id']}", headers=cast['admin'][1]).get_json()
    assert staff['supplier_price'] == 100.0
    assert staff['admin_margin'] == 20.0
    assert staff['profit_amount'] == 20.0
    assert staff['margin_percent'] == 20.0
    assert staff['pricing_path'] == 'supplier_quote'


def test_supplier_visibility(client, app_context):
    cast = http_cast()
    taken = quote_http_order(client, cast)
    resp = client.get(f"/orders/{taken['id']}", headers=cast['supplier2'][1])
    assert resp.status_code == 404
    assert resp.get_json()['error']['code'] == 'ORDER_NOT_FOUND'
    open_order = create_http_order(client, cast['customer'][1])
    listed = client.get('/orders?limit=200', headers=cast['supplier2'][1]).get_json()['data']
    ids = {o['id'] for o in listed}
    assert open_order['id'] in ids
    assert taken['id'] not in ids


def test_customer_list_is_scoped_and_searchable(client, app_context):
    cast = http_cast()
    first = create_http_order(client, cast['customer'][1], title='Brass hinge')
    create_http_order(client, cast['customer'][1], title='Steel hinge')
    other = http_cast()
    create_http_order(client, other['customer'][1], title='Brass hinge')
    listed = client.get('/orders', headers=cast['customer'][1]).get_json()
    assert listed['pagination']['total'] == 2
    assert all(o['customer_id'] == cast['customer'][0].id for o in listed['data'])
    by_number = client.get(f"/orders?q=%23{first['order_number']}", headers=cast['customer'][1]).get_json()
    assert [o['id'] for o in by_number['data']] == [first['id']]
    by_title = client.get('/orders?q=brass', headers=cast['customer'][1]).get_json()
    assert [o['title'] for o in by_title['data']] == ['Brass hinge']
    by_sort = client.get('/orders?sort=title', headers=cast['customer'][1]).get_json()
    assert [o['title'] for o in by_sort['data']] == ['Brass hinge', 'Steel hinge']


def test_list_rejects_bad_params(client, app_context):
    cast = http_cast()
    h = cast['admin'][1]
    assert client.get('/orders?status=lost', headers=h).status_code == 400
    assert client.get('/orders?sort=price_per_kg', headers=h).status_code == 400
    assert client.get('/orders?limit=ten', headers=h).status_code == 400
    assert client.get('/orders?updated_since=yesterday', headers=h).status_code == 400


def test_status_filter_for_admin(client, app_context):
    cast = http_cast()
    order = quote_http_order(client, cast)
    resp = client.get('/orders?status=price_quoted&limit=200', headers=cast['admin'][1])
    assert resp.status_code == 200
    rows = resp.get_json()['data']
    assert order['id'] in {o['id'] for o in rows}
    assert {o['status'] for o in rows} == {'price_quoted'}


def test_item_etag_and_poll_headers(client, app_context):
    cast = http_cast()
    h = cast['customer'][1]
    order = create_http_order(client, h)
    url = f"/orders/{order['id']}"
    first = client.get(url, headers=h)
    etag = first.headers['ETag']
    assert first.headers['X-Poll-Interval'] == '30'
    assert 'Last-Modified' in first.headers
    cached = client.get(url, headers={**h, 'If-None-Match': etag})
    assert cached.status_code == 304
    assert cached.data == b''
    head = client.head(url, headers=h)
    assert head.status_code == 200
    assert head.headers['ETag'] == etag
    assert head.data == b''
    client.put(url, json={'title': 'Renamed'}, headers=h)
    changed = client.get(url, headers={**h, 'If-None-Match': etag})
    assert changed.status_code == 200
    assert changed.headers['ETag'] != etag


def test_list_head_and_if_modified_since(client, app_context):
    cast = http_cast()
    h = cast['customer'][1]
    create_http_order(client, h)
    head = client.head('/orders', headers=h)
    assert head.status_code == 200
    assert head.data == b''
    assert head.headers['X-Poll-Interval'] == '30'
    last_mod = head.headers['Last-Modified']
    fresh = client.get('/orders', headers={**h, 'If-Modified-Since': last_mod})
    assert fresh.status_code == 304
    stale = client.get('/orders', headers={**h, 'If-Modified-Since': 'Mon, 01 Jan 2001 00:00:00 GMT'})
    assert stale.status_code == 200


def test_attach_files(client, app_context):
    cast = http_cast()
    h = cast['customer'][1]
    order = create_http_order(client, h)
    resp = client.post(
        f"/orders/{order['id']}/files",
        data={'files': [(io.BytesIO(b'%PDF-1.4 drawing'), 'drawing.pdf'), (io.BytesIO(PNG), 'photo.png')]},
        headers=h,
        content_type='multipart/form-data',
    )
    assert resp.status_code == 201, resp.get_json()
    files = resp.get_json()['uploaded_files']
    assert [f['name'] for f in files] == ['drawing.pdf', 'photo.png']
    assert files[0]['type'] == 'application/pdf'
    blob = client.get(files[1]['url'])
    assert blob.status_code == 200
    assert blob.data == PNG
    bad = client.post(
        f"/orders/{order['id']}/files",
        data={'files': [(io.BytesIO(b'MZ'), 'setup.exe')]},
        headers=h,
        content_type='multipart/form-data',
    )
    assert bad.status_code == 400
    again = client.get(f"/orders/{order['id']}", headers=h).get_json()
    assert len(again['uploaded_files']) == 2


def test_full_lifecycle_over_http(client, app_context):
    cast = http_cast()
    order = quote_http_order(client, cast, price=50)
    oid = order['id']
    ref = client.post(f'/orders/{oid}/payment-reference', headers=cast['customer'][1])
    assert ref.status_code == 200
    reference = ref.get_json()['reference']
    assert reference.startswith('UTX-')
    paid = client.post('/payments/confirm', json={'reference': reference, 'transaction_id': f'TX-{oid}', 'amount': 60},
                       headers=cast['admin'][1])
    assert paid.status_code == 201, paid.get_json()
    done = client.post(
        f'/orders/{oid}/complete',
        data={'image': (io.BytesIO(PNG), 'done.png'), 'notes': 'printed and packed'},
        headers=cast['supplier'][1],
        content_type='multipart/form-data',
    )
    assert done.status_code == 200, done.get_json()
    assert done.get_json()['status'] == 'production_started'
    assert done.get_json()['supplier_image_url'].startswith('/blobs/')
    assert_transition(client, f'/orders/{oid}/ship', cast['supplier'][1], 200, expected_body_value='in_transit')
    assert_transition(client, f'/orders/{oid}/ship', cast['supplier2'][1], 409)
    assert_transition(client, f'/orders/{oid}/deliver', cast['supplier'][1], 403)
    assert_transition(client, f'/orders/{oid}/deliver', cast['admin'][1], 200, expected_body_value='delivered')
    hist = client.get(f'/orders/{oid}/history', headers=cast['customer'][1]).get_json()['data']
    assert [r['status'] for r in hist] == [
        'request_created', 'price_quoted', 'payment_confirmed', 'production_started', 'in_transit', 'delivered',
    ]
    assert hist[2]['changed_by'] is None
    assert hist[-1]['changed_by'] == cast['admin'][0].id
    frozen = client.put(f'/orders/{oid}', json={'title': 'late'}, headers=cast['customer'][1])
    assert frozen.status_code == 409
    assert frozen.get_json()['error']['code'] == 'ORDER_NOT_EDITABLE'


def test_complete_requires_image(client, app_context):
    cast = http_cast()
    order = quote_http_order(client, cast)
    resp = client.post(f"/orders/{order['id']}/complete", data={}, headers=cast['supplier'][1],
                       content_type='multipart/form-data')
    assert resp.status_code == 400


def test_moderation_endpoints(client, app_context, moderation):
    cast = http_cast()
    created = client.post('/orders', json={'title': 'Odd part', 'description': 'custom'}, headers=cast['customer'][1])
    assert created.status_code == 201
    oid = created.get_json()['id']
    assert created.get_json()['status'] == 'admin_review'
    assert_transition(client, f'/orders/{oid}/approve', cast['customer'][1], 403)
    assert_transition(client, f'/orders/{oid}/approve', cast['admin'][1], 200, expected_body_value='request_created')
    assert_transition(client, f'/orders/{oid}/reject', cast['admin'][1], 400)


def test_cancel_by_customer_and_admin(client, app_context):
    cast = http_cast()
    order = create_http_order(client, cast['customer'][1])
    other = http_cast()['customer'][1]
    assert_transition(client, f"/orders/{order['id']}/cancel", other, 403)
    assert_transition(client, f"/orders/{order['id']}/cancel", cast['customer'][1], 200, expected_body_value='canceled')
    again = assert_transition(client, f"/orders/{order['id']}/cancel", cast['admin'][1], 409)
    assert again.get_json()['error']['code'] == 'ORDER_NOT_CANCELABLE'


def test_admin_status_endpoint_is_audited(client, app_context):
    cast = http_cast()
    order = quote_http_order(client, cast)
    oid = order['id']
    assert_transition(client, f'/orders/{oid}/status', cast['admin'][1], 400, json={})
    bad = assert_transition(client, f'/orders/{oid}/status', cast['admin'][1], 400, json={'status': 'payment_confirmed'})
    assert bad.get_json()['error']['code'] == 'INVALID_TRANSITION'
    assert_transition(client, f'/orders/{oid}/status', cast['admin'][1], 200,
                      json={'status': 'delivered', 'notes': 'picked up'}, expected_body_value='delivered')
    entry = get_db().query(AuditLog).filter(AuditLog.action == 'ORDER.STATUS.SET', AuditLog.entity_id == oid).one()
    assert entry.actor_user_id == cast['admin'][0].id
    assert entry.meta['changes']['status'] == {'before': 'price_quoted', 'after': 'delivered'}


def test_final_price_refused_for_quoted_order(client, app_context):
    cast = http_cast()
    order = quote_http_order(client, cast)
    url = f"/orders/{order['id']}/final-price"
    assert_transition(client, url, cast['admin'][1], 400, json={})
    resp = assert_transition(client, url, cast['admin'][1], 409, json={'margin_percent': 25})
    assert resp.get_json()['error']['code'] == 'PRICE_ALREADY_SET'
    assert_transition(client, url, cast['supplier'][1], 403, json={'margin_percent': 25})


def test_delete_order(client, app_context):
    cast = http_cast()
    order = quote_http_order(client, cast)
    oid = order['id']
    assert client.delete(f'/orders/{oid}', headers=cast['customer'][1]).status_code == 403
    resp = client.delete(f'/orders/{oid}', headers=cast['admin'][1])
    assert resp.status_code == 200
    body = resp.get_json()
    assert body['deleted'] is True and body['quotes'] == 1
    assert client.get(f'/orders/{oid}', headers=cast['admin'][1]).status_code == 404
    assert get_db().query(AuditLog).filter(AuditLog.action == 'ORDER.DELETE', AuditLog.entity_id == oid).count() == 1


def test_statuses_and_stats(client, app_context):
    cast = http_cast()
    statuses = client.get('/orders/statuses', headers=cast['customer'][1]).get_json()
    labels = {s['status']: s['label'] for s in statuses['data']}
    assert labels['price_quoted'] == 'PRICE QUOTED'
    assert statuses['transitions']['request_created']['price_quoted'] == ['supplier']
    assert client.get('/orders/stats', headers=cast['customer'][1]).status_code == 403
    stats = client.get('/orders/stats', headers=cast['admin'][1])
    assert stats.status_code == 200
    body = stats.get_json()
    assert body['total'] == sum(body['by_status'].values())
    assert {'awaiting_quotes', 'waiting_payment', 'in_progress', 'revenue', 'profit'} <= set(body)


def test_requires_token(client):
    assert client.get('/orders').status_code == 401


def test_admin_edit_endpoint(client, app_context):
    cast = http_cast()
    order = create_http_order(client, cast['customer'][1])
    url = f"/orders/{order['id']}/edit"
    assert client.post(url, json={'final_price': 99}, headers=cast['customer'][1]).status_code == 403
    assert client.post(url, json={'final_price': 99}, headers=cast['supplier'][1]).status_code == 403
    resp = client.post(url, json={'final_price': 99, 'supplier_price': None, 'delivery_address': '2 Side St'},
                       headers=cast['admin'][1])
    assert resp.status_code == 200, resp.get_json()
    body = resp.get_json()
    assert body['final_price'] == 99.0 and body['supplier_price'] is None
    assert body['pricing_path'] == 'manual'
    assert body['delivery_address'] == '2 Side St'
    assert client.get(f"/orders/{order['id']}", headers=cast['customer'][1]).get_json()['final_price'] == 99.0
    entry = get_db().query(AuditLog).filter(AuditLog.action == 'ORDER.ADMIN.EDIT', AuditLog.entity_id == order['id']).one()
    assert entry.meta['changes']['final_price'] == {'before': None, 'after': 99.0}
    huge = client.post(url, json={'final_price': 1e30}, headers=cast['admin'][1])
    assert huge.status_code == 400
    assert huge.get_json()['error']['code'] == 'PRICE_OUT_OF_RANGE'
    moved = client.post(url, json={'status': 'canceled'}, headers=cast['admin'][1])
    assert moved.get_json()['status'] == 'canceled'
    history = client.get(f"/orders/{order['id']}/history", headers=cast['admin'][1]).get_json()['data']
    assert history[-1]['status'] == 'canceled'
    done = client.post(url, json={'title': 'Too late'}, headers=cast['admin'][1])
    assert done.status_code == 409
    assert done.get_json()['error']['code'] == 'ORDER_NOT_EDITABLE'


def test_status_audit_reads_the_current_row(client, app_context):
    cast = http_cast()
    order = create_http_order(client, cast['customer'][1])
    oid = order['id']
    session = get_db()
    held = session.get(Order, oid)
    table = Order.__table__
    # change the row behind the session's back
    session.execute(
        update(table).where(table.c.id == oid)
        .values(status=Order.STATUS_PRICE_QUOTED, version=table.c.version + 1)
    )
    session.commit()
    assert held.status == Order.STATUS_REQUEST_CREATED
    resp = client.post(f'/orders/{oid}/status', json={'status': 'delivered'}, headers=cast['admin'][1])
    assert resp.status_code == 200, resp.get_json()
    entry = get_db().query(AuditLog).filter(AuditLog.action == 'ORDER.STATUS.SET', AuditLog.entity_id == oid).one()
    assert entry.meta['changes']['status'] == {'before': 'price_quoted', 'after': 'delivered'}
