from tests.test_lifecycle_helpers import http_cast, create_http_order


def test_orders_multi_sort(client, app_context):
    cast = http_cast()
    h = cast['customer'][1]
    for title, qty in (('Charlie', 1), ('Bravo', 1), ('Alpha', 2)):
        create_http_order(client, h, title=title, quantity=qty)
    resp = client.get('/orders?sort=-title', headers=h)
    assert resp.status_code == 200
    assert [o['title'] for o in resp.get_json()['data']] == ['Charlie', 'Bravo', 'Alpha']
    resp = client.get('/orders?sort=order_number', headers=h)
    numbers = [o['order_number'] for o in resp.get_json()['data']]
    assert numbers == sorted(numbers)


def test_default_sort_is_newest_first(client, app_context):
    cast = http_cast()
    h = cast['customer'][1]
    first = create_http_order(client, h, title='first')
    second = create_http_order(client, h, title='second')
    data = client.get('/orders', headers=h).get_json()['data']
    assert [o['id'] for o in data] == [second['id'], first['id']]


def test_sort_tokens_with_spaces_and_empties(client, app_context):
    cast = http_cast()
    h = cast['customer'][1]
    create_http_order(client, h, title='B')
    create_http_order(client, h, title='A')
    resp = client.get('/orders', headers=h, query_string={'sort': ' status , ,title'})
    assert resp.status_code == 200
    assert [o['title'] for o in resp.get_json()['data']] == ['A', 'B']
