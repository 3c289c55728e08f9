"""Tests for the key-value stores, index serialization and the index cache."""

from __future__ import annotations

import json
from unittest.mock import MagicMock

import pytest

from repolens.errors import CorruptPersistedIndex, PersistenceFailure
from repolens.indexer.chunker import Chunk
from repolens.storage.index_cache import (
    IndexCache,
    VectorIndex,
    index_from_payload,
    index_to_payload,
    storage_key,
)
from repolens.storage.kv_store import SqliteKeyValueStore
from tests.helpers import make_index


@pytest.fixture
def index() -> VectorIndex:
    return make_index("octo/demo@main", [
        ("src/a.ts", "export const a = 1", [0.1, 0.2, 0.3]),
        ("src/b.ts", "export const b = 2", [0.333333, -0.5, 1e-7]),
    ])


# ── VectorIndex ──


class TestVectorIndex:
    def test_length_mismatch_rejected(self) -> None:
        with pytest.raises(ValueError):
            VectorIndex(
                key="k",
                chunks=[Chunk("a::0", "a", "x")],
                vectors=[],
                dims=0,
            )

    def test_dims_mismatch_rejected(self) -> None:
        with pytest.raises(ValueError):
            VectorIndex(
                key="k",
                chunks=[Chunk("a::0", "a", "x")],
                vectors=[[1.0, 2.0]],
                dims=3,
            )

    def test_empty_index(self) -> None:
        idx = VectorIndex(key="k")
        assert len(idx) == 0
        assert idx.dims == 0


# ── Serialization ──


class TestPayload:
    def test_round_trip(self, index: VectorIndex) -> None:
        restored = index_from_payload(index_to_payload(index))
        assert restored.key == index.key
        assert restored.chunks == index.chunks
        assert restored.dims == index.dims
        for got, want in zip(restored.vectors, index.vectors):
            assert got == pytest.approx(want, abs=1e-6)

    def test_payload_layout(self, index: VectorIndex) -> None:
        data = json.loads(index_to_payload(index))
        assert set(data) == {"key", "chunks", "vectors", "dims"}
        assert data["chunks"][0] == {"id": "src/a.ts::0", "path": "src/a.ts", "content": "export const a = 1"}
        assert len(data["vectors"]) == len(data["chunks"])

    def test_vectors_rematerialized_as_floats(self) -> None:
        payload = json.dumps({
            "key": "k",
            "chunks": [{"id": "a::0", "path": "a", "content": "x"}],
            "vectors": [[1, 0, "0.5"]],
            "dims": 3,
        })
        restored = index_from_payload(payload)
        assert restored.vectors == [[1.0, 0.0, 0.5]]
        assert all(isinstance(x, float) for x in restored.vectors[0])

    @pytest.mark.parametrize("payload", [
        "not json",
        "[]",
        "null",
        '{"key": "k"}',
        '{"key": "k", "chunks": [], "vectors": [[1.0]], "dims": 1}',
        '{"key": "k", "chunks": [{"id": "a"}], "vectors": [[1.0]], "dims": 1}',
        '{"key": "k", "chunks": [], "vectors": [], "dims": "many"}',
        '{"key": "k", "chunks": [{"id": "a::0", "path": "a", "content": "x"}], "vectors": [["nan"]], "dims": 1}',
        '{"key": "k", "chunks": [{"id": "a::0", "path": "a", "content": "x"}], "vectors": [[NaN]], "dims": 1}',
        '{"key": "k", "chunks": [{"id": "a::0", "path": "a", "content": "x"}], "vectors": [[Infinity]], "dims": 1}',
    ])
    def test_corrupt_payloads(self, payload: str) -> None:
        with pytest.raises(CorruptPersistedIndex):
            index_from_payload(payload)


# ── IndexCache ──


class TestIndexCache:
    def test_save_then_load_resident(self, cache: IndexCache, index: VectorIndex) -> None:
        assert cache.save(index) is True
        assert cache.load(index.key) is index

    def test_load_from_store_after_evict(self, cache: IndexCache, index: VectorIndex) -> None:
        cache.save(index)
        cache.evict(index.key)
        assert not cache.is_resident(index.key)
        loaded = cache.load(index.key)
        assert loaded is not None
        assert loaded is not index
        assert loaded.chunks == index.chunks
        assert cache.is_resident(index.key)

    def test_missing_key_is_none(self, cache: IndexCache) -> None:
        assert cache.load("nobody/nothing@main") is None

    def test_corrupt_entry_is_miss(self, memory_store, cache: IndexCache) -> None:
        memory_store.set(storage_key("o/r@main"), "{broken")
        assert cache.load("o/r@main") is None

    def test_non_finite_vector_entry_is_miss(self, memory_store, cache: IndexCache) -> None:
        payload = json.dumps({
            "key": "o/r@main",
            "chunks": [{"id": "a::0", "path": "a", "content": "x"}],
            "vectors": [["nan"]],
            "dims": 1,
        })
        memory_store.set(storage_key("o/r@main"), payload)
        assert cache.load("o/r@main") is None
        assert not cache.is_resident("o/r@main")

    def test_entry_with_wrong_key_is_miss(self, memory_store, cache: IndexCache, index: VectorIndex) -> None:
        memory_store.set(storage_key("other/repo@main"), index_to_payload(index))
        assert cache.load("other/repo@main") is None

    def test_save_replaces_resident(self, cache: IndexCache, index: VectorIndex) -> None:
        cache.save(index)
        newer = make_index(index.key, [("c.ts", "c", [1.0, 0.0, 0.0])])
        cache.save(newer)
        assert cache.load(index.key) is newer

    def test_persistence_failure_keeps_resident(self, index: VectorIndex) -> None:
        store = MagicMock()
        store.set.side_effect = PersistenceFailure("quota exceeded")
        cache = IndexCache(store)
        assert cache.save(index) is False
        assert cache.load(index.key) is index

    def test_read_failure_is_miss(self) -> None:
        store = MagicMock()
        store.get.side_effect = PersistenceFailure("disk gone")
        cache = IndexCache(store)
        assert cache.load("o/r@main") is None

    def test_persists_under_prefixed_key(self, memory_store, cache: IndexCache, index: VectorIndex) -> None:
        cache.save(index)
        assert memory_store.keys() == ["rag-index:octo/demo@main"]


# ── SqliteKeyValueStore ──


class TestSqliteKeyValueStore:
    def test_get_missing(self, sqlite_store: SqliteKeyValueStore) -> None:
        assert sqlite_store.get("nope") is None

    def test_set_get_replace(self, sqlite_store: SqliteKeyValueStore) -> None:
        sqlite_store.set("k", "v1")
        sqlite_store.set("k", "v2")
        assert sqlite_store.get("k") == "v2"
        assert sqlite_store.keys() == ["k"]

    def test_delete(self, sqlite_store: SqliteKeyValueStore) -> None:
        sqlite_store.set("k", "v")
        sqlite_store.delete("k")
        assert sqlite_store.get("k") is None

    def test_quota_exceeded(self, tmp_path) -> None:
        store = SqliteKeyValueStore(tmp_path / "small.db", max_value_bytes=10)
        with pytest.raises(PersistenceFailure):
            store.set("k", "x" * 11)
        assert store.get("k") is None
        store.close()

    def test_persists_across_connections(self, tmp_path, index: VectorIndex) -> None:
        path = tmp_path / "cache.db"
        s1 = SqliteKeyValueStore(path)
        IndexCache(s1).save(index)
        s1.close()

        s2 = SqliteKeyValueStore(path)
        loaded = IndexCache(s2).load(index.key)
        assert loaded is not None
        assert loaded.chunks == index.chunks
        for got, want in zip(loaded.vectors, index.vectors):
            assert got == pytest.approx(want, abs=1e-6)
        s2.close()

    def test_quota_failure_is_nonfatal_for_cache(self, tmp_path, index: VectorIndex) -> None:
        store = SqliteKeyValueStore(tmp_path / "tiny.db", max_value_bytes=16)
        cache = IndexCache(store)
        assert cache.save(index) is False
        assert cache.load(index.key) is index
        store.close()
