import threading

import pytest

from errors import NotFound, ValidationError
from inventory import (adjust_stock, bulk_adjust, deduct_stock, inventory_summary, list_movements, restore_stock,
                       stock_alert, stock_alerts)


def hook(store, *events):
    store.insert('webhooks', {'name': 'ops', 'url': 'https://ops.example.com', 'events': list(events),
                              'is_active': True, 'failure_count': 0})


def test_stock_alert_thresholds(config):
    product = {'id': 'p'}
    assert stock_alert(config, product, 6, 5) == 'product.low_stock'
    assert stock_alert(config, product, 5, 4) is None
    assert stock_alert(config, product, 3, 0) == 'product.out_of_stock'
    assert stock_alert(config, product, 0, 10) == 'product.back_in_stock'
    assert stock_alert(config, {'low_stock_threshold': 20}, 25, 18) == 'product.low_stock'


def test_adjust_records_movement(store, config, http):
    result = adjust_stock(store, config, http, 'multi-1', -5, type='damage', notes='broken jars')
    assert result['previous_stock'] == 50
    assert result['new_stock'] == 45
    movement = store.get('inventory_movements', result['movement_id'])
    assert movement['movement_type'] == 'damage'
    assert movement['quantity'] == -5


def test_stock_never_goes_negative(store, config, http):
    result = adjust_stock(store, config, http, 'mono-2', -10)
    assert result['new_stock'] == 0
    assert store.get('products', 'mono-2')['stock_quantity'] == 0


def test_adjust_rejects_bad_input(store, config, http):
    with pytest.raises(ValidationError):
        adjust_stock(store, config, http, 'multi-1', 0)
    with pytest.raises(ValidationError):
        adjust_stock(store, config, http, 'multi-1', 3, type='stolen')
    with pytest.raises(NotFound):
        adjust_stock(store, config, http, 'nope', 3)


def test_low_stock_fires_webhook_and_queues_email(store, config, http):
    hook(store, 'product.low_stock')
    adjust_stock(store, config, http, 'solar-3', -15)
    assert http.post.call_count == 1
    assert http.post.call_args[1]['headers']['X-Modhu-Event'] == 'product.low_stock'
    alerts = store.list('notifications', {'type': 'low_stock'})
    assert [n['recipient'] for n in alerts] == ['admin@example.com']


def test_manual_adjustment_event(store, config, http):
    hook(store, 'inventory.adjusted')
    adjust_stock(store, config, http, 'prop-1', 10, type='purchase')
    assert http.post.call_args[1]['headers']['X-Modhu-Event'] == 'inventory.adjusted'
    http.post.reset_mock()
    adjust_stock(store, config, http, 'prop-1', -1, type='sale', reference_type='order', reference_id='o1')
    http.post.assert_not_called()


def test_bulk_adjust_reports_each_line(store, config, http):
    results = bulk_adjust(store, config, http, [
        {'product_id': 'prop-1', 'quantity': 5},
        {'product_id': 'nope', 'quantity': 5},
    ], type='purchase')
    assert results[0]['success'] and results[0]['new_stock'] == 65
    assert results[1] == {'product_id': 'nope', 'success': False, 'error': 'Product not found'}


def test_alerts_and_movements(store, config, http):
    alerts = stock_alerts(store, config)
    assert [p['id'] for p in alerts['out_of_stock']] == ['polen-1']
    assert [p['id'] for p in alerts['low_stock']] == ['mono-2']

    adjust_stock(store, config, http, 'polen-1', 12, type='purchase')
    adjust_stock(store, config, http, 'prop-1', 2, type='purchase')
    assert list_movements(store, product_id='polen-1')['total'] == 1
    assert list_movements(store, type='purchase')['total'] == 2

    summary = inventory_summary(store, config)
    assert summary['out_of_stock'] == 0
    assert summary['total_products'] == 10


def test_concurrent_decrements_clamp_at_zero(store, config, http):
    store.update('products', 'multi-1', {'stock_quantity': 3})
    threads = [threading.Thread(target=adjust_stock, args=(store, config, http, 'multi-1', qty))
               for qty in (-5, -1)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert store.get('products', 'multi-1')['stock_quantity'] == 0
    taken = sum(m['quantity'] for m in store.list('inventory_movements', {'product_id': 'multi-1'}))
    assert taken == -3


def test_restore_only_returns_what_was_taken(store, config, http):
    store.update('products', 'multi-1', {'stock_quantity': 3})
    deduct_stock(store, config, http, [{'product_id': 'multi-1', 'quantity': 5}], 'ord-1')
    movement = store.find_one('inventory_movements', {'reference_id': 'ord-1'})
    assert movement['quantity'] == -3
    assert movement['requested_quantity'] == -5

    restore_stock(store, config, http, 'ord-1')
    assert store.get('products', 'multi-1')['stock_quantity'] == 3
