"""Rank indexed chunks against a question by cosine similarity."""

from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass
from typing import Sequence

from repolens import config
from repolens.errors import NoIndex
from repolens.indexer.chunker import Chunk
from repolens.provider import EmbeddingProvider, embed_text
from repolens.storage.index_cache import VectorIndex

logger = logging.getLogger(__name__)

EPSILON = 1e-9


@dataclass(frozen=True)
class RetrievalResult:
    score: float
    chunk: Chunk


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity; all-zero vectors score 0 instead of dividing by zero."""
    dot = 0.0
    norm_a = 0.0
    norm_b = 0.0
    for x, y in zip(a, b):
        dot += x * y
        norm_a += x * x
        norm_b += y * y
    return dot / (math.sqrt(norm_a) * math.sqrt(norm_b) + EPSILON)


def rank_chunks(
    query_vector: Sequence[float],
    index: VectorIndex,
    top_k: int,
) -> list[RetrievalResult]:
    """Score every chunk (full linear scan) and return the best ``top_k``.

    Equal scores keep index order.
    """
    if top_k <= 0:
        return []
    if len(query_vector) != index.dims:
        raise ValueError(
            f"Query vector has {len(query_vector)} dims but index {index.key!r} "
            f"has {index.dims}; rebuild the index"
        )
    scored = [
        RetrievalResult(score=cosine_similarity(vec, query_vector), chunk=chunk)
        for chunk, vec in zip(index.chunks, index.vectors)
    ]
    # sorted() is stable, including with reverse=True
    scored = sorted(scored, key=lambda r: r.score, reverse=True)
    return scored[:top_k]


async def retrieve(
    query: str,
    index: VectorIndex | None,
    top_k: int,
    provider: EmbeddingProvider,
    timeout: float = config.PROVIDER_TIMEOUT_SECS,
) -> list[RetrievalResult]:
    """Embed ``query`` and return the ``top_k`` most similar chunks, best first.

    Raises:
        NoIndex: If ``index`` is None.
        ProviderUnavailable: If the query cannot be embedded.
    """
    if index is None:
        raise NoIndex("No semantic index loaded. Build the index first.")
    if top_k <= 0 or len(index) == 0:
        return []

    t0 = time.perf_counter()
    query_vector = await embed_text(provider, query, timeout)
    embed_ms = (time.perf_counter() - t0) * 1000
    t1 = time.perf_counter()
    results = rank_chunks(query_vector, index, top_k)
    search_ms = (time.perf_counter() - t1) * 1000
    logger.debug(
        "retrieve %s: embed %.0fms, scan %d chunks %.0fms, %d results",
        index.key, embed_ms, len(index), search_ms, len(results),
    )
    return results


def format_results(results: list[RetrievalResult], query: str) -> str:
    """Format retrieval results as a plain-text listing."""
    if not results:
        return f"No results found for '{query}'."

    lines = [f"Results for '{query}' ({len(results)} chunk(s)):"]
    lines.append("")
    for i, r in enumerate(results, 1):
        lines.append(f"  {i}. {r.chunk.path} [{r.chunk.id}]")
        lines.append(f"     Score: {r.score:.4f}")
        preview = r.chunk.content.strip()
        if len(preview) > 300:
            preview = preview[:300] + "..."
        for pl in preview.splitlines()[:8]:
            lines.append(f"     | {pl}")
        lines.append("")
    return "\n".join(lines)
