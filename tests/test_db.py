from bson.objectid import ObjectId
from datetime import datetime

from storefront import db
from storefront.db import TTLCache, cache_key, serialize_doc


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


def test_cache_entry_expires_after_ttl():
    clock = FakeClock()
    cache = TTLCache(ttl=60, clock=clock)
    cache.set("products:a", [{"title": "x"}])

    clock.now += 59
    assert cache.get("products:a") == [{"title": "x"}]

    clock.now += 1
    assert cache.get("products:a") is None
    assert len(cache) == 0


def test_cache_returns_copies():
    cache = TTLCache()
    cache.set("k", {"items": [1]})
    cache.get("k")["items"].append(2)
    assert cache.get("k") == {"items": [1]}


def test_cache_clear_by_prefix():
    cache = TTLCache()
    cache.set("products:1", 1)
    cache.set("products:2", 2)
    cache.set("products_archive:1", 3)
    cache.set("users:1", 4)

    cache.clear("products:")

    assert cache.get("products:1") is None
    assert cache.get("products:2") is None
    assert cache.get("products_archive:1") == 3
    assert cache.get("users:1") == 4

    cache.clear()
    assert len(cache) == 0


def test_cache_key_is_order_independent():
    assert cache_key("products", {"a": 1, "b": 2}) == cache_key("products", {"b": 2, "a": 1})
    assert cache_key("products", {"a": 1}).startswith("products:")


def test_reads_are_cached_until_a_write(ctx):
    db.insert_one("things", {"name": "first"})
    assert len(db.find_many("things")) == 1

    # A write behind the helpers' back is not seen while the entry is fresh.
    db.get_db()["things"].insert_one({"name": "sneaky"})
    assert len(db.find_many("things")) == 1

    db.insert_one("things", {"name": "second"})
    assert len(db.find_many("things")) == 3


def test_find_one_does_not_cache_misses(ctx):
    assert db.find_one("things", {"name": "later"}) is None
    db.get_db()["things"].insert_one({"name": "later"})
    assert db.find_one("things", {"name": "later"})["name"] == "later"


def test_insert_and_update_stamp_timestamps(ctx):
    doc = db.insert_one("things", {"name": "a"})
    assert isinstance(doc["_id"], ObjectId)
    assert doc["createdAt"] == doc["updatedAt"]

    updated = db.update_one("things", {"_id": doc["_id"]}, {"$set": {"name": "b"}})
    assert updated["name"] == "b"
    assert "updatedAt" in updated


def test_insert_many_with_no_documents(ctx):
    assert db.insert_many("things", []) == []


def test_serialize_doc_converts_ids_and_dates():
    oid = ObjectId()
    when = datetime(2024, 1, 2, 3, 4, 5)
    out = serialize_doc({"_id": oid, "createdAt": when, "nested": [{"ref": oid}]})

    assert out["_id"] == str(oid)
    assert out["id"] == str(oid)
    assert out["createdAt"] == "2024-01-02T03:04:05"
    assert out["nested"][0]["ref"] == str(oid)


def test_read_racing_an_update_does_not_keep_stale_entry(ctx, monkeypatch):
    doc = db.insert_one("things", {"name": "a", "n": 1})
    collection = db.get_db()["things"]
    real_update = collection.find_one_and_update

    def update_with_concurrent_read(*args, **kwargs):
        assert db.find_one("things", {"_id": doc["_id"]})["n"] == 1
        return real_update(*args, **kwargs)

    monkeypatch.setattr(collection, "find_one_and_update", update_with_concurrent_read)
    monkeypatch.setattr(db, "get_db", lambda: {"things": collection})

    db.update_one("things", {"_id": doc["_id"]}, {"$set": {"n": 2}})
    assert db.find_one("things", {"_id": doc["_id"]})["n"] == 2
