"""
Persistence.

Every module talks to storage through a Store: a handful of collection-level
operations over plain dict records, keyed by a string ``id``. Two backends:

* MemoryStore - dicts in process memory, seeded with the demo catalog.
  Used for development, demos and tests.
* MongoStore  - pymongo collections, one per record type.

Which one runs is decided exactly once, by open_store(), when the app boots.
"""

import copy
import logging
import threading

from flask import current_app
from pymongo import MongoClient, ReturnDocument

from seed import demo_data
from utils import gen_id, now_iso

logger = logging.getLogger(__name__)

ASCENDING = 1
DESCENDING = -1


def _normalize_sort(sort):
    # accepts 'field', '-field' or [(field, direction), ...]
    if not sort:
        return []
    if isinstance(sort, str):
        if sort.startswith('-'):
            return [(sort[1:], DESCENDING)]
        return [(sort, ASCENDING)]
    return list(sort)


class Store:
    """interface every backend implements"""

    def get(self, collection, record_id):
        raise NotImplementedError

    def list(self, collection, filters=None, sort=None, limit=None, offset=0):
        raise NotImplementedError

    def insert(self, collection, record):
        raise NotImplementedError

    def update(self, collection, record_id, changes):
        raise NotImplementedError

    def delete(self, collection, record_id):
        raise NotImplementedError

    def increment(self, collection, record_id, field, amount=1):
        """atomically add amount to a numeric field, returns the updated record"""
        raise NotImplementedError

    def increment_bounded(self, collection, record_id, field, amount, floor=0):
        """
        atomically add amount to a numeric field without letting it drop below
        floor. Returns (previous value, updated record), or (None, None) when
        the record does not exist.
        """
        raise NotImplementedError

    def update_if(self, collection, record_id, expected, changes):
        """
        apply changes only while the record still matches expected, in one
        atomic step. A list in expected means any of those values. Returns the
        updated record, or None when the record is missing or no longer matches.
        """
        raise NotImplementedError

    def count(self, collection, filters=None):
        return len(self.list(collection, filters))

    def find_one(self, collection, filters):
        found = self.list(collection, filters, limit=1)
        return found[0] if found else None

    def _prepare(self, collection, record):
        record = dict(record)
        if not record.get('id'):
            record['id'] = gen_id(collection[:4])
        record.setdefault('created_at', now_iso())
        return record


def _matches(record, filters):
    for key, wanted in filters.items():
        value = record.get(key)
        # list fields match on membership, like mongo does
        if isinstance(value, list) and not isinstance(wanted, list):
            if wanted not in value:
                return False
        elif value != wanted:
            return False
    return True


def _still_matches(record, expected):
    for key, wanted in expected.items():
        value = record.get(key)
        if isinstance(wanted, (list, tuple)):
            if value not in wanted:
                return False
        elif value != wanted:
            return False
    return True


class MemoryStore(Store):

    def __init__(self, data=None):
        self._lock = threading.RLock()
        self._collections = {}
        for name, records in (data or {}).items():
            for record in records:
                self.insert(name, record)

    def _table(self, collection):
        return self._collections.setdefault(collection, {})

    def get(self, collection, record_id):
        with self._lock:
            record = self._table(collection).get(record_id)
            return copy.deepcopy(record) if record is not None else None

    def list(self, collection, filters=None, sort=None, limit=None, offset=0):
        with self._lock:
            rows = [r for r in self._table(collection).values()
                    if not filters or _matches(r, filters)]
            rows = copy.deepcopy(rows)

        # stable sorts applied last key first
        for field, direction in reversed(_normalize_sort(sort)):
            rows.sort(key=lambda r: (r.get(field) is not None, r.get(field)),
                      reverse=direction == DESCENDING)

        rows = rows[offset:]
        if limit is not None:
            rows = rows[:limit]
        return rows

    def insert(self, collection, record):
        record = self._prepare(collection, record)
        with self._lock:
            self._table(collection)[record['id']] = copy.deepcopy(record)
        return record

    def update(self, collection, record_id, changes):
        with self._lock:
            record = self._table(collection).get(record_id)
            if record is None:
                return None
            record.update(copy.deepcopy(changes))
            return copy.deepcopy(record)

    def delete(self, collection, record_id):
        with self._lock:
            return self._table(collection).pop(record_id, None) is not None

    def increment(self, collection, record_id, field, amount=1):
        with self._lock:
            record = self._table(collection).get(record_id)
            if record is None:
                return None
            record[field] = (record.get(field) or 0) + amount
            return copy.deepcopy(record)

    def increment_bounded(self, collection, record_id, field, amount, floor=0):
        with self._lock:
            record = self._table(collection).get(record_id)
            if record is None:
                return None, None
            previous = record.get(field) or 0
            record[field] = max(floor, previous + amount)
            return previous, copy.deepcopy(record)

    def update_if(self, collection, record_id, expected, changes):
        with self._lock:
            record = self._table(collection).get(record_id)
            if record is None or not _still_matches(record, expected):
                return None
            record.update(copy.deepcopy(changes))
            return copy.deepcopy(record)

    def count(self, collection, filters=None):
        with self._lock:
            return sum(1 for r in self._table(collection).values()
                       if not filters or _matches(r, filters))


class MongoStore(Store):

    def __init__(self, db):
        self.db = db

    @staticmethod
    def _out(doc):
        if doc is None:
            return None
        doc = dict(doc)
        doc['id'] = str(doc.pop('_id'))
        return doc

    @staticmethod
    def _query(filters):
        query = dict(filters or {})
        if 'id' in query:
            query['_id'] = query.pop('id')
        return query

    def get(self, collection, record_id):
        return self._out(self.db[collection].find_one({'_id': record_id}))

    def list(self, collection, filters=None, sort=None, limit=None, offset=0):
        cursor = self.db[collection].find(self._query(filters))
        sort = _normalize_sort(sort)
        if sort:
            cursor = cursor.sort(sort)
        if offset:
            cursor = cursor.skip(offset)
        if limit is not None:
            cursor = cursor.limit(limit)
        return [self._out(doc) for doc in cursor]

    def insert(self, collection, record):
        record = self._prepare(collection, record)
        doc = dict(record)
        doc['_id'] = doc.pop('id')
        self.db[collection].insert_one(doc)
        return record

    def update(self, collection, record_id, changes):
        changes = {k: v for k, v in changes.items() if k != 'id'}
        doc = self.db[collection].find_one_and_update(
            {'_id': record_id}, {'$set': changes},
            return_document=ReturnDocument.AFTER)
        return self._out(doc)

    def delete(self, collection, record_id):
        return self.db[collection].delete_one({'_id': record_id}).deleted_count > 0

    def increment(self, collection, record_id, field, amount=1):
        doc = self.db[collection].find_one_and_update(
            {'_id': record_id}, {'$inc': {field: amount}},
            return_document=ReturnDocument.AFTER)
        return self._out(doc)

    def increment_bounded(self, collection, record_id, field, amount, floor=0):
        # clamped server side in one pipeline update
        doc = self.db[collection].find_one_and_update(
            {'_id': record_id},
            [{'$set': {field: {'$max': [floor, {'$add': [{'$ifNull': [f'${field}', 0]}, amount]}]}}}],
            return_document=ReturnDocument.BEFORE)
        if doc is None:
            return None, None
        previous = doc.get(field) or 0
        doc[field] = max(floor, previous + amount)
        return previous, self._out(doc)

    def update_if(self, collection, record_id, expected, changes):
        query = {'_id': record_id}
        for key, wanted in expected.items():
            query[key] = {'$in': list(wanted)} if isinstance(wanted, (list, tuple)) else wanted
        changes = {k: v for k, v in changes.items() if k != 'id'}
        doc = self.db[collection].find_one_and_update(
            query, {'$set': changes}, return_document=ReturnDocument.AFTER)
        return self._out(doc)

    def count(self, collection, filters=None):
        return self.db[collection].count_documents(self._query(filters))


def open_store(config):
    """pick the backend for this process"""
    if config.mongo_uri and not config.demo_mode:
        client = MongoClient(config.mongo_uri, serverSelectionTimeoutMS=5000)
        logger.info('using MongoDB database %s', config.mongo_db)
        return MongoStore(client[config.mongo_db])

    logger.warning('no database configured - running on in-memory demo data')
    return MemoryStore(demo_data())


def current_store():
    return current_app.extensions['shop_store']
