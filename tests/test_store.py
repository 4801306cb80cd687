"""Tests for the in-memory persistence backend."""

import threading

import pytest

from org_dispenser.shared.exceptions import RecordNotFoundError
from org_dispenser.shared.store import InMemoryPersistence


class TestInMemoryPersistence:
    def test_upsert_then_find(self, store):
        store.upsert({"email": "a@b.io"}, {"email": "a@b.io", "org_guid": "g1"})
        assert store.find_one({"email": "a@b.io"})["org_guid"] == "g1"

    def test_upsert_replaces_matching_document(self, store):
        store.upsert({"email": "a@b.io"}, {"email": "a@b.io", "org_guid": "g1"})
        store.upsert({"email": "a@b.io"}, {"email": "a@b.io", "org_guid": "g2"})
        assert store.count == 1
        assert store.find_one({"email": "a@b.io"})["org_guid"] == "g2"

    def test_find_miss_raises_not_found(self, store):
        with pytest.raises(RecordNotFoundError):
            store.find_one({"email": "nobody@b.io"})

    def test_remove(self, store):
        store.upsert({"email": "a@b.io"}, {"email": "a@b.io"})
        store.remove({"email": "a@b.io"})
        assert store.count == 0

    def test_remove_miss_raises_not_found(self, store):
        with pytest.raises(RecordNotFoundError):
            store.remove({"email": "nobody@b.io"})

    def test_stored_copy_is_isolated(self, store):
        doc = {"email": "a@b.io", "details": "x"}
        store.upsert({"email": "a@b.io"}, doc)
        doc["details"] = "mutated"
        found = store.find_one({"email": "a@b.io"})
        found["details"] = "also mutated"
        assert store.find_one({"email": "a@b.io"})["details"] == "x"

    def test_concurrent_upserts_keep_one_document(self):
        store = InMemoryPersistence()

        def write(i):
            store.upsert({"email": "a@b.io"}, {"email": "a@b.io", "n": i})

        threads = [threading.Thread(target=write, args=(i,)) for i in range(20)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert store.count == 1
