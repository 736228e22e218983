import threading
import time

import pytest

import orders
from app import create_app
from errors import ValidationError
from seed import demo_data
from store import MemoryStore


class SlowOrderReads(MemoryStore):
    """gives concurrent callers time to read the same order before anyone writes"""

    delay = 0.0

    def get(self, collection, record_id):
        record = super().get(collection, record_id)
        if collection == 'orders':
            time.sleep(self.delay)
        return record


@pytest.fixture
def slow_store():
    return SlowOrderReads(demo_data())


def place_order(app, checkout_body, *product_ids):
    client = app.test_client()
    for pid in product_ids:
        client.post('/cart/add', json={'product_id': pid, 'quantity': 1})
    return client.post('/checkout', json=checkout_body).get_json()


def test_concurrent_payments_record_the_sale_once(slow_store, config, http, checkout_body):
    app = create_app(config, slow_store, http)
    order = place_order(app, checkout_body, 'solar-1', 'solar-2')
    assert order['promotion_id'] == 'promo-flash'
    uses = slow_store.get('promotions', 'promo-flash')['current_uses']

    slow_store.delay = 0.05
    results = []

    def pay():
        results.append(orders.confirm_payment(slow_store, config, http, order['id'], transaction_id='tx-1'))

    threads = [threading.Thread(target=pay) for _ in range(2)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    slow_store.delay = 0.0

    assert [r['payment_status'] for r in results] == ['paid', 'paid']
    assert slow_store.get('promotions', 'promo-flash')['current_uses'] == uses + 1
    assert slow_store.count('promotion_usages', {'order_id': order['id']}) == 1
    assert slow_store.get('customers', order['customer_id'])['total_orders'] == 1
    assert slow_store.count('notifications', {'type': 'order_confirmation'}) == 1


def test_cancelled_order_cannot_be_paid(store, config, http, checkout_body):
    app = create_app(config, store, http)
    order = place_order(app, checkout_body, 'multi-1')
    orders.update_status(store, config, http, order['id'], 'cancelled')
    with pytest.raises(ValidationError):
        orders.confirm_payment(store, config, http, order['id'])
