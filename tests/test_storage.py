#!/usr/bin/env python3
"""Client storage tests"""

import json

from portal.storage import (
    PENDING_PAYMENT_KEY,
    UNLINKED_PAYMENTS_KEY,
    JsonFileStore,
    MemoryStore,
    PendingPaymentStore,
)


class TestJsonFileStore:

    def test_survives_reopen(self, temp_dir):
        path = temp_dir / "sessions" / "abc.json"
        JsonFileStore(path).set_item("k", "v")

        assert JsonFileStore(path).get_item("k") == "v"

    def test_remove_and_clear(self, temp_dir):
        store = JsonFileStore(temp_dir / "store.json")
        store.set_item("a", "1")
        store.set_item("b", "2")

        store.remove_item("a")
        assert store.get_item("a") is None
        assert store.get_item("b") == "2"

        store.clear()
        assert store.get_item("b") is None
        assert not (temp_dir / "store.json").exists()

    def test_corrupt_file_reads_empty(self, temp_dir):
        path = temp_dir / "store.json"
        path.write_text("{{{")

        assert JsonFileStore(path).get_item("k") is None

    def test_no_temporary_file_left(self, temp_dir):
        JsonFileStore(temp_dir / "store.json").set_item("k", "v")
        assert [p.name for p in temp_dir.iterdir()] == ["store.json"]


class TestPendingPaymentStore:

    def test_wire_shape(self):
        backing = MemoryStore()
        PendingPaymentStore(backing).set("p1")

        assert json.loads(backing.get_item(PENDING_PAYMENT_KEY)) == {"pendingPaymentId": "p1"}

    def test_clear_only_matching_id(self, pending_store):
        pending_store.set("p2")

        pending_store.clear("p1")
        assert pending_store.get() == "p2"

        pending_store.clear("p2")
        assert pending_store.get() is None

    def test_unconditional_clear(self, pending_store):
        pending_store.set("p1")
        pending_store.clear()
        assert pending_store.get() is None

    def test_garbage_is_advisory_none(self, durable_store, pending_store):
        durable_store.set_item(PENDING_PAYMENT_KEY, "not json")
        assert pending_store.get() is None

        durable_store.set_item(PENDING_PAYMENT_KEY, json.dumps(["p1"]))
        assert pending_store.get() is None

    def test_unlinked_ids_keep_order_without_duplicates(self, durable_store, pending_store):
        pending_store.add_unlinked("p1")
        pending_store.add_unlinked("p2")
        pending_store.add_unlinked("p1")

        assert pending_store.unlinked() == ["p1", "p2"]
        assert json.loads(durable_store.get_item(UNLINKED_PAYMENTS_KEY)) == {"paymentIds": ["p1", "p2"]}

    def test_unlinked_ids_independent_of_pending_record(self, durable_store, pending_store):
        pending_store.add_unlinked("p1")
        pending_store.set("p2")
        pending_store.clear()

        assert pending_store.unlinked() == ["p1"]

        pending_store.discard_unlinked("p1")
        assert pending_store.unlinked() == []
        assert durable_store.get_item(UNLINKED_PAYMENTS_KEY) is None
