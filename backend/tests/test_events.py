import logging
from app.services.events import EventBus, OrderEvent, get_event_bus, EVENT_CREATED, EVENT_STATUS_CHANGED
from app.services.quotes import submit_quote
from app import get_db
from tests.test_utils_seed import seed_cast, create_order


def _event(order_id='o1', customer_id=1, kind=EVENT_CREATED):
    return OrderEvent(kind=kind, order_id=order_id, customer_id=customer_id, assigned_supplier_id=None, status='request_created')


def test_subscriptions_filter_by_order_and_customer():
    bus = EventBus()
    everything, per_order, per_customer = [], [], []
    bus.subscribe(everything.append)
    bus.subscribe(per_order.append, order_id='o2')
    bus.subscribe(per_customer.append, customer_id=1)
    assert bus.publish(_event('o1', 1)) == 2
    assert bus.publish(_event('o2', 5)) == 2
    assert [e.order_id for e in everything] == ['o1', 'o2']
    assert [e.order_id for e in per_order] == ['o2']
    assert [e.order_id for e in per_customer] == ['o1']


def test_unsubscribe():
    bus = EventBus()
    seen = []
    token = bus.subscribe(seen.append)
    assert len(bus) == 1
    assert bus.unsubscribe(token) is True
    assert bus.unsubscribe(token) is False
    bus.publish(_event())
    assert seen == []


def test_failing_subscriber_is_logged_and_skipped(caplog):
    bus = EventBus(logging.getLogger('test.events'))
    seen = []

    def broken(event):
        raise RuntimeError('listener down')

    bus.subscribe(broken)
    bus.subscribe(seen.append)
    with caplog.at_level(logging.ERROR, logger='test.events'):
        assert bus.publish(_event('o9')) == 1
    assert len(seen) == 1
    assert 'order event subscriber failed' in caplog.text


def test_event_to_dict_is_json_friendly():
    data = _event().to_dict()
    assert data['kind'] == EVENT_CREATED
    assert isinstance(data['occurred_at'], str)


def test_service_operations_publish_after_commit(app_context):
    cast = seed_cast()
    bus = get_event_bus()
    seen = []
    token = bus.subscribe(seen.append, customer_id=cast['customer'].user_id)
    try:
        order = create_order(cast['customer'])
        submit_quote(get_db(), order.id, cast['supplier'], '10.00')
    finally:
        bus.unsubscribe(token)
    assert [e.kind for e in seen] == [EVENT_CREATED, EVENT_STATUS_CHANGED]
    assert seen[1].previous_status == 'request_created'
    assert seen[1].status == 'price_quoted'
    assert seen[1].assigned_supplier_id == cast['supplier'].user_id
