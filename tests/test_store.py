from unittest.mock import MagicMock

from pymongo import ReturnDocument

from config import Config
from store import MemoryStore, MongoStore, open_store


def test_memory_store_basics():
    store = MemoryStore()
    rec = store.insert('orders', {'status': 'pending', 'total': 10})
    assert rec['id'].startswith('orde_')
    assert 'created_at' in rec

    # callers get copies
    rec['status'] = 'changed'
    assert store.get('orders', rec['id'])['status'] == 'pending'

    assert store.update('orders', rec['id'], {'status': 'paid'})['status'] == 'paid'
    assert store.update('orders', 'missing', {'status': 'paid'}) is None
    assert store.increment('orders', rec['id'], 'total', 5)['total'] == 15
    assert store.delete('orders', rec['id'])
    assert not store.delete('orders', rec['id'])


def test_memory_store_list_filters_and_sort():
    store = MemoryStore({'products': [
        {'id': 'a', 'price': 30, 'tags': ['x', 'y']},
        {'id': 'b', 'price': 10, 'tags': ['y']},
        {'id': 'c', 'price': 20, 'tags': []},
    ]})
    assert [p['id'] for p in store.list('products', sort='price')] == ['b', 'c', 'a']
    assert [p['id'] for p in store.list('products', sort='-price', limit=2)] == ['a', 'c']
    assert [p['id'] for p in store.list('products', sort='price', offset=1)] == ['c', 'a']
    assert {p['id'] for p in store.list('products', {'tags': 'y'})} == {'a', 'b'}
    assert store.count('products', {'tags': 'x'}) == 1
    assert store.find_one('products', {'price': 20})['id'] == 'c'
    assert store.find_one('products', {'price': 99}) is None


def test_mongo_store_maps_ids():
    db = MagicMock()
    coll = MagicMock()
    db.__getitem__.return_value = coll
    store = MongoStore(db)

    coll.find_one.return_value = {'_id': 'p1', 'name': 'Miel'}
    assert store.get('products', 'p1') == {'id': 'p1', 'name': 'Miel'}
    coll.find_one.assert_called_with({'_id': 'p1'})

    rec = store.insert('products', {'name': 'Polen'})
    doc = coll.insert_one.call_args[0][0]
    assert doc['_id'] == rec['id']
    assert 'id' not in doc


def test_mongo_store_updates_atomically():
    db = MagicMock()
    coll = MagicMock()
    db.__getitem__.return_value = coll
    store = MongoStore(db)

    coll.find_one_and_update.return_value = {'_id': 'c1', 'total_orders': 2}
    assert store.increment('customers', 'c1', 'total_orders')['total_orders'] == 2
    coll.find_one_and_update.assert_called_with(
        {'_id': 'c1'}, {'$inc': {'total_orders': 1}}, return_document=ReturnDocument.AFTER)

    store.update('customers', 'c1', {'id': 'ignored', 'name': 'Ana'})
    coll.find_one_and_update.assert_called_with(
        {'_id': 'c1'}, {'$set': {'name': 'Ana'}}, return_document=ReturnDocument.AFTER)


def test_memory_store_conditional_update():
    store = MemoryStore({'orders': [{'id': 'o1', 'status': 'pending', 'payment_status': 'unpaid'}]})
    expected = {'status': ('pending', 'on_hold'), 'payment_status': ('unpaid', None)}
    assert store.update_if('orders', 'o1', expected, {'payment_status': 'paid'})['payment_status'] == 'paid'
    assert store.update_if('orders', 'o1', expected, {'payment_status': 'paid'}) is None
    assert store.update_if('orders', 'missing', expected, {'payment_status': 'paid'}) is None
    # absent fields count as None
    assert store.update_if('orders', 'o1', {'stock_restored': (False, None)}, {'stock_restored': True})
    assert store.update_if('orders', 'o1', {'stock_restored': (False, None)}, {'stock_restored': True}) is None


def test_memory_store_bounded_increment():
    store = MemoryStore({'products': [{'id': 'p1', 'stock_quantity': 3}]})
    previous, product = store.increment_bounded('products', 'p1', 'stock_quantity', -5)
    assert previous == 3
    assert product['stock_quantity'] == 0
    assert store.increment_bounded('products', 'p1', 'stock_quantity', 4)[1]['stock_quantity'] == 4
    assert store.increment_bounded('products', 'missing', 'stock_quantity', 1) == (None, None)


def test_mongo_store_conditional_writes():
    db = MagicMock()
    coll = MagicMock()
    db.__getitem__.return_value = coll
    store = MongoStore(db)

    coll.find_one_and_update.return_value = None
    assert store.update_if('orders', 'o1', {'status': ('pending', 'on_hold'), 'currency': 'MXN'},
                           {'id': 'ignored', 'status': 'paid'}) is None
    coll.find_one_and_update.assert_called_with(
        {'_id': 'o1', 'status': {'$in': ['pending', 'on_hold']}, 'currency': 'MXN'},
        {'$set': {'status': 'paid'}}, return_document=ReturnDocument.AFTER)

    coll.find_one_and_update.return_value = {'_id': 'p1', 'stock_quantity': 3}
    previous, product = store.increment_bounded('products', 'p1', 'stock_quantity', -5)
    assert previous == 3
    assert product == {'id': 'p1', 'stock_quantity': 0}
    args, kwargs = coll.find_one_and_update.call_args
    assert args[0] == {'_id': 'p1'}
    assert args[1] == [{'$set': {'stock_quantity': {
        '$max': [0, {'$add': [{'$ifNull': ['$stock_quantity', 0]}, -5]}]}}}]
    assert kwargs == {'return_document': ReturnDocument.BEFORE}


def test_mongo_store_list_and_count():
    db = MagicMock()
    coll = MagicMock()
    db.__getitem__.return_value = coll
    cursor = MagicMock()
    coll.find.return_value = cursor
    cursor.sort.return_value = cursor
    cursor.skip.return_value = cursor
    cursor.limit.return_value = cursor
    cursor.__iter__.return_value = iter([{'_id': 'o1', 'status': 'paid'}])
    store = MongoStore(db)

    result = store.list('orders', {'id': 'o1'}, sort='-created_at', limit=5, offset=10)
    assert result == [{'id': 'o1', 'status': 'paid'}]
    coll.find.assert_called_with({'_id': 'o1'})
    cursor.sort.assert_called_with([('created_at', -1)])
    cursor.skip.assert_called_with(10)
    cursor.limit.assert_called_with(5)

    coll.count_documents.return_value = 3
    assert store.count('orders', {'status': 'paid'}) == 3


def test_open_store_without_database_uses_demo_data():
    store = open_store(Config(env='testing'))
    assert isinstance(store, MemoryStore)
    assert store.get('products', 'solar-1')['name'] == 'Amanecer'
