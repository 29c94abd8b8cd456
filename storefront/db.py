import copy
import time
from datetime import datetime

from bson import json_util
from bson.objectid import ObjectId
from flask import current_app
from flask_pymongo import PyMongo
from pymongo import ReturnDocument

mongo = PyMongo()


class TTLCache:
    """
    Naive in-memory cache for query results.

    Entries expire `ttl` seconds after they were stored. There is no size bound
    and writes invalidate by key prefix, so it is only ever per process.
    """

    def __init__(self, ttl=60, clock=time.monotonic):
        self.ttl = ttl
        self.clock = clock
        self._entries = {}

    def get(self, key):
        entry = self._entries.get(key)
        if entry is None:
            return None
        data, stored_at = entry
        if self.clock() - stored_at < self.ttl:
            return copy.deepcopy(data)
        del self._entries[key]
        return None

    def set(self, key, data):
        self._entries[key] = (copy.deepcopy(data), self.clock())

    def clear(self, prefix=None):
        if prefix is None:
            self._entries.clear()
            return
        for key in [k for k in self._entries if k.startswith(prefix)]:
            del self._entries[key]

    def __len__(self):
        return len(self._entries)


def get_db():
    return current_app.extensions["storefront_db"]


def get_cache():
    return current_app.extensions["storefront_cache"]


def cache_key(collection_name, query, options=None):
    payload = json_util.dumps({"query": query, "options": options or {}}, sort_keys=True)
    return f"{collection_name}:{payload}"


def _invalidate(collection_name):
    # The trailing colon keeps "products" from clearing a "products_archive" entry.
    get_cache().clear(f"{collection_name}:")


def find_one(collection_name, query, sort=None, projection=None):
    """Returns one document, served from the cache when a fresh hit exists."""
    options = {"sort": sort, "projection": projection}
    key = cache_key(collection_name, query, options)
    cached = get_cache().get(key)
    if cached is not None:
        return cached

    result = get_db()[collection_name].find_one(query, projection, sort=sort)
    if result is not None:
        get_cache().set(key, result)
    return result


def find_many(collection_name, query=None, sort=None, skip=0, limit=0, projection=None):
    query = query or {}
    options = {"sort": sort, "skip": skip, "limit": limit, "projection": projection}
    key = cache_key(collection_name, query, options)
    cached = get_cache().get(key)
    if cached is not None:
        return cached

    cursor = get_db()[collection_name].find(query, projection)
    if sort:
        cursor = cursor.sort(sort)
    if skip:
        cursor = cursor.skip(skip)
    if limit:
        cursor = cursor.limit(limit)
    result = list(cursor)
    get_cache().set(key, result)
    return result


def count_documents(collection_name, query=None):
    return get_db()[collection_name].count_documents(query or {})


# Each write clears the cache only after it lands.
def insert_one(collection_name, document):
    now = datetime.utcnow()
    doc = dict(document, createdAt=now, updatedAt=now)
    result = get_db()[collection_name].insert_one(doc)
    _invalidate(collection_name)
    doc["_id"] = result.inserted_id
    return doc


def insert_many(collection_name, documents):
    now = datetime.utcnow()
    docs = [dict(document, createdAt=now, updatedAt=now) for document in documents]
    if not docs:
        return []
    result = get_db()[collection_name].insert_many(docs, ordered=False)
    _invalidate(collection_name)
    return result.inserted_ids


def update_one(collection_name, query, update):
    """Applies `update` and returns the document as it is after the write."""
    update = dict(update)
    update["$set"] = dict(update.get("$set") or {}, updatedAt=datetime.utcnow())
    result = get_db()[collection_name].find_one_and_update(
        query, update, return_document=ReturnDocument.AFTER
    )
    _invalidate(collection_name)
    return result


def update_many(collection_name, query, update):
    update = dict(update)
    update["$set"] = dict(update.get("$set") or {}, updatedAt=datetime.utcnow())
    result = get_db()[collection_name].update_many(query, update)
    _invalidate(collection_name)
    return result


def delete_one(collection_name, query):
    result = get_db()[collection_name].delete_one(query)
    _invalidate(collection_name)
    return result


def delete_many(collection_name, query=None):
    result = get_db()[collection_name].delete_many(query or {})
    _invalidate(collection_name)
    return result


def serialize_doc(doc):
    """Converts ObjectIds and datetimes so a document can go through jsonify."""
    if isinstance(doc, list):
        return [serialize_doc(item) for item in doc]
    if isinstance(doc, ObjectId):
        return str(doc)
    if isinstance(doc, datetime):
        return doc.isoformat()
    if not isinstance(doc, dict):
        return doc

    out = {k: serialize_doc(v) for k, v in doc.items()}
    if "_id" in out:
        out["id"] = out["_id"]
    return out
