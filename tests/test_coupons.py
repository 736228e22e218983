import pytest

from coupons import (calculate_discount, create_coupon, delete_coupon, record_coupon_usage, update_coupon,
                     validate_coupon)
from errors import NotFound, ValidationError


def test_percentage_coupon_is_capped(store):
    assert validate_coupon(store, 'bienvenido10', 1000)['discount'] == 100
    result = validate_coupon(store, 'BIENVENIDO10', 3000)
    assert result['valid']
    assert result['discount'] == 200


def test_unknown_code(store):
    result = validate_coupon(store, 'NOPE', 1000)
    assert not result['valid']
    assert result['message'] == 'Invalid coupon code'


def test_minimum_amount_and_free_shipping(store):
    result = validate_coupon(store, 'ENVIOGRATIS', 499)
    assert not result['valid']
    assert result['message'].startswith('Minimum purchase')
    result = validate_coupon(store, 'ENVIOGRATIS', 600)
    assert result['valid']
    assert result['free_shipping'] is True
    assert result['discount'] == 0


def test_usage_limit_reached(store):
    result = validate_coupon(store, 'DESCUENTO50', 400)
    assert result['message'] == 'Coupon has reached its usage limit'


def test_per_user_limit(store):
    record_coupon_usage(store, 'coup-welcome', 'ord-1', 'cust-ana', 50)
    assert store.get('coupons', 'coup-welcome')['used_count'] == 1
    result = validate_coupon(store, 'BIENVENIDO10', 500, customer_id='cust-ana')
    assert result['message'] == 'You have already used this coupon'
    assert validate_coupon(store, 'BIENVENIDO10', 500, customer_id='cust-luis')['valid']


def test_expired_and_inactive(store):
    create_coupon(store, {'code': 'old', 'discount_type': 'fixed', 'discount_value': 10,
                          'valid_until': '2020-01-01'})
    assert validate_coupon(store, 'OLD', 100)['message'] == 'Coupon has expired'
    coupon = create_coupon(store, {'code': 'off', 'discount_type': 'fixed', 'discount_value': 10,
                                   'is_active': False})
    assert validate_coupon(store, 'off', 100)['message'] == 'Coupon is not active'
    update_coupon(store, coupon['id'], {'is_active': True})
    assert validate_coupon(store, 'off', 100)['valid']


def test_fixed_discount_never_exceeds_subtotal():
    assert calculate_discount({'discount_type': 'fixed', 'discount_value': 50}, 30) == 30


def test_create_normalizes_and_rejects_duplicates(store):
    created = create_coupon(store, {'code': ' verano ', 'discount_type': 'percentage', 'discount_value': 5})
    assert created['code'] == 'VERANO'
    assert created['used_count'] == 0
    with pytest.raises(ValidationError):
        create_coupon(store, {'code': 'Verano', 'discount_type': 'percentage', 'discount_value': 5})
    with pytest.raises(ValidationError):
        create_coupon(store, {'code': 'X', 'discount_type': 'bogus'})


def test_delete(store):
    delete_coupon(store, 'coup-fifty')
    with pytest.raises(NotFound):
        delete_coupon(store, 'coup-fifty')
