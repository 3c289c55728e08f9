"""Shared test helpers: deterministic provider stubs."""

import hashlib
from unittest.mock import AsyncMock, MagicMock

from repolens.indexer.chunker import Chunk
from repolens.storage.index_cache import VectorIndex

DIMS = 8


def _fake_embed(texts: list[str]) -> list[list[float]]:
    """Return deterministic fake embeddings derived from an md5 of each text."""
    results = []
    for t in texts:
        h = hashlib.md5(t.encode()).digest()
        results.append([float(b) / 255.0 for b in h[:DIMS]])
    return results


def make_embedding_provider(side_effect=_fake_embed) -> MagicMock:
    provider = MagicMock()
    provider.embed = AsyncMock(side_effect=side_effect)
    return provider


def make_generation_provider(text: str = "", side_effect=None) -> MagicMock:
    provider = MagicMock()
    provider.model_id = "test-model"
    if side_effect is not None:
        provider.generate = AsyncMock(side_effect=side_effect)
    else:
        provider.generate = AsyncMock(return_value=text)
    return provider


def make_index(key: str, entries: list[tuple[str, str, list[float]]]) -> VectorIndex:
    """Build an index from (path, content, vector) triples."""
    chunks = [
        Chunk(id=f"{path}::{i}", path=path, content=content)
        for i, (path, content, _vec) in enumerate(entries)
    ]
    vectors = [vec for _path, _content, vec in entries]
    return VectorIndex(
        key=key,
        chunks=chunks,
        vectors=vectors,
        dims=len(vectors[0]) if vectors else 0,
    )


def make_fetcher(contents: dict[str, str]):
    """Async fetch capability serving ``contents``; unknown paths raise."""

    async def fetch(path: str) -> str:
        if path not in contents:
            raise FileNotFoundError(path)
        return contents[path]

    return fetch
