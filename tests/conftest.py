"""Shared fixtures: stores, caches and stub providers."""

import pytest

from repolens.storage.index_cache import IndexCache
from repolens.storage.kv_store import MemoryKeyValueStore, SqliteKeyValueStore
from tests.helpers import make_embedding_provider


@pytest.fixture
def memory_store():
    return MemoryKeyValueStore()


@pytest.fixture
def sqlite_store(tmp_path):
    s = SqliteKeyValueStore(tmp_path / "test.db")
    yield s
    s.close()


@pytest.fixture
def cache(memory_store):
    return IndexCache(memory_store)


@pytest.fixture
def embed_provider():
    """Embedding provider stub returning md5-derived 8-dim vectors."""
    return make_embedding_provider()
