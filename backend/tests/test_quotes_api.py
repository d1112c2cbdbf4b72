from tests.test_lifecycle_helpers import http_cast, create_http_order, quote_http_order


def test_quote_submit_and_list(client, app_context):
    cast = http_cast()
    order = create_http_order(client, cast['customer'][1])
    url = f"/orders/{order['id']}/quotes"
    resp = client.post(url, json={'price': '45.50', 'notes': 'PLA, 2 days'}, headers=cast['supplier'][1])
    assert resp.status_code == 201
    quote = resp.get_json()
    assert quote['price'] == 45.5 and quote['supplier_id'] == cast['supplier'][0].id
    admin_list = client.get(url, headers=cast['admin'][1]).get_json()['data']
    assert [q['id'] for q in admin_list] == [quote['id']]
    own = client.get(url, headers=cast['supplier'][1]).get_json()['data']
    assert len(own) == 1
    # customers never see supplier quotes
    assert client.get(url, headers=cast['customer'][1]).status_code == 403


def test_quote_conflicts(client, app_context):
    cast = http_cast()
    order = quote_http_order(client, cast, price=10)
    url = f"/orders/{order['id']}/quotes"
    dup = client.post(url, json={'price': 9}, headers=cast['supplier'][1])
    assert dup.status_code == 409
    assert dup.get_json()['error']['code'] == 'ALREADY_QUOTED'
    other = client.post(url, json={'price': 8}, headers=cast['supplier2'][1])
    # the order is no longer visible to other suppliers, but the write path reports the assignment
    assert other.status_code == 409
    assert other.get_json()['error']['code'] == 'ORDER_ASSIGNED_TO_OTHER'
    bad = client.post(f"/orders/{create_http_order(client, cast['customer'][1])['id']}/quotes",
                      json={'price': 'cheap'}, headers=cast['supplier'][1])
    assert bad.status_code == 400


def test_quote_update_reprices(client, app_context):
    cast = http_cast()
    order = quote_http_order(client, cast, price=10)
    url = f"/orders/{order['id']}/quotes"
    resp = client.put(url, json={'price': 15}, headers=cast['supplier'][1])
    assert resp.status_code == 200
    assert resp.get_json()['price'] == 15.0
    body = client.get(f"/orders/{order['id']}", headers=cast['customer'][1]).get_json()
    assert body['final_price'] == 18.0
    missing = client.put(url, json={'price': 15}, headers=cast['supplier2'][1])
    assert missing.status_code == 404
    assert missing.get_json()['error']['code'] == 'QUOTE_NOT_FOUND'


def test_quote_on_unknown_order(client, app_context):
    cast = http_cast()
    resp = client.post('/orders/doesnotexist/quotes', json={'price': 5}, headers=cast['supplier'][1])
    assert resp.status_code == 404


def test_quote_price_beyond_ceiling_is_a_client_error(client, app_context):
    cast = http_cast()
    order = create_http_order(client, cast['customer'][1])
    url = f"/orders/{order['id']}/quotes"
    resp = client.post(url, json={'price': 1e30}, headers=cast['supplier'][1])
    assert resp.status_code == 400
    assert resp.get_json()['error']['code'] == 'PRICE_OUT_OF_RANGE'
    assert client.post(url, json={'price': '1e30'}, headers=cast['supplier'][1]).status_code == 400
    quoted = quote_http_order(client, cast, price=10)
    again = client.put(f"/orders/{quoted['id']}/quotes", json={'price': 1e30}, headers=cast['supplier'][1])
    assert again.status_code == 400
    final = client.post(f"/orders/{quoted['id']}/final-price", json={'margin_percent': 1e30}, headers=cast['admin'][1])
    assert final.status_code == 400
    assert final.get_json()['error']['code'] == 'PRICE_OUT_OF_RANGE'
