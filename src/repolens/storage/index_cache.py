"""Per-repository vector index and its persisted cache."""

from __future__ import annotations

import json
import logging
import math
import time
from dataclasses import dataclass, field

from repolens.errors import CorruptPersistedIndex, PersistenceFailure
from repolens.indexer.chunker import Chunk
from repolens.storage.kv_store import KeyValueStore

logger = logging.getLogger(__name__)

STORAGE_PREFIX = "rag-index:"


@dataclass
class VectorIndex:
    """Chunks of one repository+branch and their embedding vectors.

    ``vectors[i]`` is the embedding of ``chunks[i]``.
    """

    key: str
    chunks: list[Chunk] = field(default_factory=list)
    vectors: list[list[float]] = field(default_factory=list)
    dims: int = 0

    def __post_init__(self) -> None:
        if len(self.chunks) != len(self.vectors):
            raise ValueError(
                f"Index {self.key!r} has {len(self.chunks)} chunks but {len(self.vectors)} vectors"
            )
        for i, vec in enumerate(self.vectors):
            if len(vec) != self.dims:
                raise ValueError(
                    f"Index {self.key!r} vector {i} has {len(vec)} dims, expected {self.dims}"
                )

    def __len__(self) -> int:
        return len(self.chunks)


def storage_key(key: str) -> str:
    return STORAGE_PREFIX + key


def index_to_payload(index: VectorIndex) -> str:
    """Serialize an index to the JSON text stored in the key-value store."""
    return json.dumps(
        {
            "key": index.key,
            "chunks": [
                {"id": c.id, "path": c.path, "content": c.content}
                for c in index.chunks
            ],
            "vectors": [[float(x) for x in vec] for vec in index.vectors],
            "dims": index.dims,
        },
        separators=(",", ":"),
    )


def index_from_payload(payload: str) -> VectorIndex:
    """Rebuild an index from stored JSON.

    Raises:
        CorruptPersistedIndex: If the payload is not a well-formed index.
    """
    try:
        data = json.loads(payload)
        vectors = [[float(x) for x in vec] for vec in data["vectors"]]
        for i, vec in enumerate(vectors):
            if not all(math.isfinite(x) for x in vec):
                raise ValueError(f"vector {i} has non-finite values")
        return VectorIndex(
            key=str(data["key"]),
            chunks=[
                Chunk(id=str(c["id"]), path=str(c["path"]), content=str(c["content"]))
                for c in data["chunks"]
            ],
            vectors=vectors,
            dims=int(data["dims"]),
        )
    except (ValueError, TypeError, KeyError) as e:
        # json.JSONDecodeError is a ValueError
        raise CorruptPersistedIndex(str(e)) from e


class IndexCache:
    """Keeps one resident index per key and mirrors it into a key-value store.

    Persistence is best-effort: a failed write leaves the resident index
    usable, and an unreadable entry is reported as a miss.
    """

    def __init__(self, store: KeyValueStore) -> None:
        self._store = store
        self._resident: dict[str, VectorIndex] = {}

    def save(self, index: VectorIndex) -> bool:
        """Make ``index`` resident and persist it. Returns False if persisting failed."""
        self._resident[index.key] = index
        t0 = time.perf_counter()
        try:
            self._store.set(storage_key(index.key), index_to_payload(index))
        except PersistenceFailure as e:
            logger.warning("Could not persist index %s: %s", index.key, e)
            return False
        logger.debug(
            "Persisted index %s: %d chunks, %d dims, %.0fms",
            index.key, len(index), index.dims, (time.perf_counter() - t0) * 1000,
        )
        return True

    def load(self, key: str) -> VectorIndex | None:
        """Return the index for ``key``, or None if it must be rebuilt."""
        resident = self._resident.get(key)
        if resident is not None:
            return resident

        try:
            payload = self._store.get(storage_key(key))
        except PersistenceFailure as e:
            logger.warning("Could not read index %s: %s", key, e)
            return None
        if payload is None:
            return None

        try:
            index = index_from_payload(payload)
        except CorruptPersistedIndex as e:
            logger.warning("Discarding corrupt index %s: %s", key, e)
            return None
        if index.key != key:
            logger.warning("Discarding index stored under %s with key %s", key, index.key)
            return None

        self._resident[key] = index
        logger.debug("Loaded index %s: %d chunks", key, len(index))
        return index

    def evict(self, key: str) -> None:
        """Forget the resident copy; the persisted entry is kept."""
        self._resident.pop(key, None)

    def is_resident(self, key: str) -> bool:
        return key in self._resident
