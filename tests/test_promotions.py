from datetime import datetime, timedelta

import pytest

from errors import NotFound, ValidationError
from promotions import (create_promotion, delete_promotion, evaluate, get_best_promotion, list_promotions,
                        promotion_stats, record_promotion_usage, select_best_promotion, toggle_promotion,
                        update_promotion)

NOW = datetime(2024, 6, 16, 12, 0)  # a Sunday


def promo(**kw):
    base = {
        'id': 'p',
        'name': 'Promo',
        'type': 'flash_sale',
        'discount_type': 'percentage',
        'discount_value': 10,
        'starts_at': (NOW - timedelta(days=1)).isoformat(),
        'ends_at': (NOW + timedelta(days=1)).isoformat(),
        'is_active': True,
        'priority': 0,
    }
    base.update(kw)
    return base


def cart(*lines):
    items = [{'product_id': pid, 'category_id': cat, 'unit_price': price, 'quantity': qty}
             for pid, cat, price, qty in lines]
    return {'items': items, 'subtotal': sum(i['unit_price'] * i['quantity'] for i in items)}


def test_flash_sale_percentage_on_eligible_category():
    c = cart(('a', 'honey', 100, 2), ('b', 'wax', 50, 1))
    result = evaluate(promo(eligible_categories=['honey']), c, now=NOW)
    assert result['applicable']
    assert result['discount'] == 20


def test_not_started_and_expired():
    c = cart(('a', 'honey', 100, 1))
    early = promo(starts_at=(NOW + timedelta(hours=1)).isoformat())
    late = promo(ends_at=(NOW - timedelta(hours=1)).isoformat())
    assert evaluate(early, c, now=NOW)['message'] == 'Promotion has not started yet'
    assert evaluate(late, c, now=NOW)['message'] == 'Promotion has expired'
    assert not evaluate(late, c, now=NOW)['applicable']


def test_unreadable_dates_are_not_applicable():
    result = evaluate(promo(starts_at='not a date'), cart(('a', None, 100, 1)), now=NOW)
    assert not result['applicable']
    assert result['message'] == 'Invalid promotion dates'


def test_days_of_week_sunday_is_zero():
    c = cart(('a', None, 100, 1))
    assert evaluate(promo(days_of_week=[0]), c, now=NOW)['applicable']
    result = evaluate(promo(days_of_week=[1, 2]), c, now=NOW)
    assert not result['applicable']
    assert result['message'] == 'Promotion is not valid today'


def test_depleted_promotion():
    result = evaluate(promo(max_uses=10, current_uses=10), cart(('a', None, 100, 1)), now=NOW)
    assert result['message'] == 'Promotion is sold out'


def test_tiered_picks_highest_reached_tier():
    p = promo(type='tiered', config={'tiers': [
        {'min_quantity': 3, 'discount': 5},
        {'min_quantity': 6, 'discount': 10},
        {'min_quantity': 12, 'discount': 15},
    ]})
    result = evaluate(p, cart(('a', None, 100, 7)), now=NOW)
    assert result['discount'] == 70


def test_tiered_below_first_tier():
    p = promo(type='tiered', config={'tiers': [{'min_quantity': 3, 'discount': 5}]})
    result = evaluate(p, cart(('a', None, 100, 2)), now=NOW)
    assert not result['applicable']
    assert result['message'] == 'Does not apply to your cart'


def test_bogo_three_for_two():
    p = promo(type='bogo', discount_value=100, config={'buy_quantity': 3, 'get_quantity': 1})
    result = evaluate(p, cart(('a', None, 50, 9)), now=NOW)
    assert result['discount'] == 150


def test_bogo_uses_cheapest_eligible_unit():
    p = promo(type='bogo', discount_value=None, config={'buy_quantity': 2, 'get_quantity': 1})
    result = evaluate(p, cart(('a', None, 80, 1), ('b', None, 30, 1)), now=NOW)
    assert result['discount'] == 30


def test_bundle_discount():
    p = promo(type='bundle', config={'bundle_products': ['a', 'b', 'c'], 'bundle_price': 250})
    full = cart(('a', None, 100, 1), ('b', None, 100, 1), ('c', None, 100, 1))
    assert evaluate(p, full, now=NOW)['discount'] == 50
    missing = cart(('a', None, 100, 1), ('b', None, 100, 1))
    assert not evaluate(p, missing, now=NOW)['applicable']


def test_cart_value_threshold_is_inclusive():
    p = promo(type='cart_value', discount_type='fixed', discount_value=50, min_cart_value=500)
    assert evaluate(p, cart(('a', None, 500, 1)), now=NOW)['discount'] == 50
    assert not evaluate(p, cart(('a', None, 499, 1)), now=NOW)['applicable']


def test_first_purchase():
    p = promo(type='first_purchase', config={'maximum_discount': 150})
    c = cart(('a', None, 2000, 1))
    assert evaluate(p, c, customer={'id': 'c1', 'total_orders': 0}, now=NOW)['discount'] == 150
    assert evaluate(p, c, customer=None, now=NOW)['applicable']
    result = evaluate(p, c, customer={'id': 'c1', 'total_orders': 2}, now=NOW)
    assert result['message'] == 'Only valid on your first purchase'


def test_loyalty_minimum_orders():
    p = promo(type='loyalty', discount_type='fixed', discount_value=40)
    c = cart(('a', None, 300, 1))
    assert not evaluate(p, c, customer=None, now=NOW)['applicable']
    assert evaluate(p, c, customer={'total_orders': 1}, now=NOW)['discount'] == 40
    strict = promo(type='loyalty', discount_type='fixed', discount_value=40, config={'min_orders': 3})
    assert not evaluate(strict, c, customer={'total_orders': 2}, now=NOW)['applicable']
    assert not evaluate(p, c, customer={'total_orders': 1}, now=NOW, loyalty_min_orders=5)['applicable']


def test_misconfigured_promotions_give_no_discount():
    c = cart(('a', None, 100, 5))
    bad_bogo = promo(type='bogo', config={'buy_quantity': 0})
    bad_tiers = promo(type='tiered', config={'tiers': [{'min_quantity': 1}]})
    unknown = promo(type='mystery')
    for p in (bad_bogo, bad_tiers, unknown):
        result = evaluate(p, c, now=NOW)
        assert result['discount'] == 0
        assert not result['applicable']


def test_bad_loyalty_threshold_gives_no_discount():
    c = cart(('a', None, 100, 5))
    for config in ({'min_orders': 'three'}, 'three'):
        p = promo(type='loyalty', config=config)
        result = evaluate(p, c, customer={'total_orders': 5}, now=NOW)
        assert result['discount'] == 0
        assert not result['applicable']
    result = evaluate(promo(type='loyalty', config={'min_orders': 'three'}), c,
                      customer={'total_orders': 5}, now=NOW)
    assert result['message'] == 'Invalid promotion configuration'


def test_evaluate_is_idempotent():
    p = promo()
    c = cart(('a', None, 123.45, 3))
    assert evaluate(p, c, now=NOW) == evaluate(p, c, now=NOW)


def test_best_promotion_is_biggest_discount():
    small = promo(id='small', discount_type='fixed', discount_value=40)
    big = promo(id='big', discount_type='fixed', discount_value=65)
    best = select_best_promotion([small, big], cart(('a', None, 500, 1)), now=NOW)
    assert best['id'] == 'big'
    assert best['calculated_discount'] == 65


def test_equal_discounts_go_to_higher_priority():
    low = promo(id='low', discount_type='fixed', discount_value=50, priority=1)
    high = promo(id='high', discount_type='fixed', discount_value=50, priority=9)
    c = cart(('a', None, 500, 1))
    assert select_best_promotion([low, high], c, now=NOW)['id'] == 'high'
    first = promo(id='first', discount_type='fixed', discount_value=50)
    second = promo(id='second', discount_type='fixed', discount_value=50)
    assert select_best_promotion([first, second], c, now=NOW)['id'] == 'first'


def test_no_applicable_promotion():
    assert select_best_promotion([promo(eligible_products=['zzz'])], cart(('a', None, 10, 1)), now=NOW) is None


# ---------- store-backed ----------

def solar_cart():
    return cart(('solar-1', 'cat-solar', 289.0, 1), ('solar-2', 'cat-solar', 319.0, 1),
                ('solar-3', 'cat-solar', 349.0, 1))


def test_best_active_promotion_from_store(store):
    best = get_best_promotion(store, solar_cart())
    # flash 15% of 957 beats the 850 bundle
    assert best['id'] == 'promo-flash'
    assert best['calculated_discount'] == 143.55


def test_per_customer_cap_excludes_promotion(store):
    customer = store.get('customers', 'cust-ana')
    record_promotion_usage(store, 'promo-flash', 'ord-1', 'cust-ana', 143.55)
    best = get_best_promotion(store, solar_cart(), customer)
    assert best['id'] == 'promo-bundle'
    assert best['calculated_discount'] == 107


def test_record_usage_increments_once(store):
    record_promotion_usage(store, 'promo-3x2', 'ord-1', 'cust-luis', 280)
    assert store.get('promotions', 'promo-3x2')['current_uses'] == 13
    usages = store.list('promotion_usages', {'promotion_id': 'promo-3x2'})
    assert len(usages) == 1
    assert usages[0]['discount_applied'] == 280


def test_delete_with_usages_only_deactivates(store):
    record_promotion_usage(store, 'promo-volume', 'ord-1', None, 32)
    assert delete_promotion(store, 'promo-volume') == {'deleted': False, 'deactivated': True}
    assert store.get('promotions', 'promo-volume')['is_active'] is False
    assert delete_promotion(store, 'promo-welcome') == {'deleted': True, 'deactivated': False}
    with pytest.raises(NotFound):
        delete_promotion(store, 'promo-welcome')


def test_create_update_toggle(store):
    created = create_promotion(store, {
        'name': 'Verano', 'type': 'seasonal', 'discount_value': 12,
        'eligible_categories': 'cat-multi,cat-mono', 'buy_quantity': 4,
    })
    assert created['eligible_categories'] == ['cat-multi', 'cat-mono']
    assert created['config'] == {'buy_quantity': 4}
    assert created['current_uses'] == 0

    updated = update_promotion(store, created['id'], {'priority': 7, 'config': {'get_quantity': 2}})
    assert updated['priority'] == 7
    assert updated['config'] == {'buy_quantity': 4, 'get_quantity': 2}

    assert toggle_promotion(store, created['id'])['is_active'] is False


def test_create_rejects_bad_input(store):
    with pytest.raises(ValidationError):
        create_promotion(store, {'name': 'x', 'type': 'nope'})
    with pytest.raises(ValidationError):
        create_promotion(store, {'name': 'x', 'type': 'bogo', 'days_of_week': [7]})
    with pytest.raises(ValidationError):
        create_promotion(store, {'name': 'x', 'type': 'bogo', 'starts_at': '2024-06-10',
                                 'ends_at': '2024-06-01'})


def test_list_filters_by_status(store):
    create_promotion(store, {'name': 'Navidad', 'type': 'seasonal', 'discount_value': 5,
                             'starts_at': (datetime.now() + timedelta(days=30)).isoformat()})
    scheduled = list_promotions(store, status='scheduled')
    assert [p['name'] for p in scheduled] == ['Navidad']
    assert all(p['type'] == 'bogo' for p in list_promotions(store, type='bogo'))


def test_promotion_stats(store):
    store.insert('orders', {'id': 'ord-1', 'total': 500})
    record_promotion_usage(store, 'promo-flash', 'ord-1', 'cust-ana', 75)
    stats = promotion_stats(store, 'promo-flash')
    assert stats['total_uses'] == 1
    assert stats['total_discount_given'] == 75
    assert stats['average_order_value'] == 500
