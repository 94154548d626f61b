"""
Tests for persisted store properties and counters.
"""

from formdesk.properties import JsonPropertyStore, MemoryPropertyStore, next_counter


class TestPropertyStores:
    """Memory and JSON-file property stores."""

    def test_memory_store(self):
        store = MemoryPropertyStore({"a": "1"})
        assert store.get("a") == "1"
        store.set("b", 2)
        assert store.get("b") == "2"
        assert store.get("missing") is None

    def test_json_store_persists(self, tmp_path):
        path = tmp_path / "data" / "properties.json"
        JsonPropertyStore(path).set("FD_CACHE_VERSION", "abc")
        assert JsonPropertyStore(path).get("FD_CACHE_VERSION") == "abc"

    def test_json_store_ignores_corrupt_file(self, tmp_path):
        path = tmp_path / "properties.json"
        path.write_text("{not json", encoding="utf-8")
        store = JsonPropertyStore(path)
        assert store.get("x") is None
        store.set("x", "1")
        assert store.get("x") == "1"


class TestCounters:
    """Auto-increment counters."""

    def test_next_counter(self):
        store = MemoryPropertyStore()
        assert next_counter(store, "c") == 1
        assert next_counter(store, "c") == 2

    def test_unparsable_counter_restarts(self):
        store = MemoryPropertyStore({"c": "oops"})
        assert next_counter(store, "c") == 1
