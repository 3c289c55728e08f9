"""Build a repository's vector index: fetch, chunk, embed, persist."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Sequence

from repolens import config
from repolens.errors import ProviderUnavailable
from repolens.indexer.chunker import Chunk, chunk_source_file
from repolens.provider import EmbeddingProvider, call_provider
from repolens.storage.index_cache import IndexCache, VectorIndex

logger = logging.getLogger(__name__)

FetchContent = Callable[[str], Awaitable[str]]


@dataclass(frozen=True)
class SampledFile:
    path: str


@dataclass
class FetchResult:
    """Outcome of fetching one file: either content or the error."""

    path: str
    content: str | None = None
    error: Exception | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class BuildReport:
    index: VectorIndex
    files_requested: int
    files_indexed: int
    files_failed: int
    persisted: bool

    def summary(self) -> dict:
        return {
            "key": self.index.key,
            "files_requested": self.files_requested,
            "files_indexed": self.files_indexed,
            "files_failed": self.files_failed,
            "chunks": len(self.index),
            "dims": self.index.dims,
            "persisted": self.persisted,
        }


def select_files(
    files: Sequence[SampledFile],
    max_files: int = config.MAX_FILES_FOR_INDEX,
) -> list[SampledFile]:
    """Keep the first ``max_files`` files, skipping repeated paths."""
    kept = list(files[:max_files])
    if len(files) > max_files:
        logger.debug("Dropping %d file(s) beyond the %d-file limit", len(files) - max_files, max_files)
    seen: set[str] = set()
    unique = []
    for f in kept:
        if f.path in seen:
            logger.debug("Skipping duplicate path %s", f.path)
            continue
        seen.add(f.path)
        unique.append(f)
    return unique


async def fetch_files(
    files: Sequence[SampledFile],
    fetch_content: FetchContent,
    concurrency: int = config.EMBED_CONCURRENCY,
) -> list[FetchResult]:
    """Fetch every file, returning one FetchResult per file in input order."""
    sem = asyncio.Semaphore(max(1, concurrency))

    async def _fetch(f: SampledFile) -> FetchResult:
        async with sem:
            try:
                return FetchResult(f.path, content=await fetch_content(f.path))
            except Exception as e:
                return FetchResult(f.path, error=e)

    return list(await asyncio.gather(*(_fetch(f) for f in files)))


async def embed_chunks(
    chunks: Sequence[Chunk],
    provider: EmbeddingProvider,
    batch_size: int = config.EMBED_BATCH_SIZE,
    concurrency: int = config.EMBED_CONCURRENCY,
    timeout: float = config.PROVIDER_TIMEOUT_SECS,
) -> list[list[float]]:
    """Embed chunk contents in batches, keeping vector i aligned with chunk i.

    Raises:
        ProviderUnavailable: If any batch fails; no partial result is returned.
    """
    total = len(chunks)
    if total == 0:
        return []

    vectors: list[list[float] | None] = [None] * total
    sem = asyncio.Semaphore(max(1, concurrency))
    total_batches = (total + batch_size - 1) // batch_size

    async def _embed_batch(start: int) -> None:
        batch = chunks[start : start + batch_size]
        async with sem:
            result = await call_provider(
                provider.embed([c.content for c in batch]), timeout, "embedding"
            )
        if len(result) != len(batch):
            raise ProviderUnavailable(
                f"embedding returned {len(result)} vectors for {len(batch)} chunks"
            )
        for offset, vec in enumerate(result):
            vectors[start + offset] = [float(x) for x in vec]

    t0 = time.perf_counter()
    tasks = [asyncio.ensure_future(_embed_batch(s)) for s in range(0, total, batch_size)]
    try:
        await asyncio.gather(*tasks)
    except BaseException:
        for t in tasks:
            t.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise
    logger.debug(
        "Embedded %d chunks in %d batch(es), %.0fms",
        total, total_batches, (time.perf_counter() - t0) * 1000,
    )

    dims = len(vectors[0])  # type: ignore[arg-type]
    for i, vec in enumerate(vectors):
        if vec is None or len(vec) != dims:
            raise ProviderUnavailable(
                f"embedding for {chunks[i].id} has inconsistent dimensions"
            )
    return vectors  # type: ignore[return-value]


async def run_build(
    key: str,
    files: Sequence[SampledFile],
    fetch_content: FetchContent,
    provider: EmbeddingProvider,
    cache: IndexCache,
    max_files: int = config.MAX_FILES_FOR_INDEX,
    max_chunk_size: int = config.MAX_CHUNK_SIZE,
    batch_size: int = config.EMBED_BATCH_SIZE,
    concurrency: int = config.EMBED_CONCURRENCY,
    timeout: float = config.PROVIDER_TIMEOUT_SECS,
) -> BuildReport:
    """Build, persist and report on a fresh index for ``key``.

    Files that cannot be fetched are logged and skipped. An embedding failure
    aborts the whole build with ProviderUnavailable.
    """
    selected = select_files(files, max_files)
    logger.info("Building index %s from %d file(s)", key, len(selected))
    t0 = time.perf_counter()

    results = await fetch_files(selected, fetch_content, concurrency)
    chunks: list[Chunk] = []
    failed = 0
    for r in results:
        if not r.ok:
            failed += 1
            logger.warning("Skipping %s: %s", r.path, r.error)
            continue
        chunks.extend(chunk_source_file(r.content, r.path, max_chunk_size))

    vectors = await embed_chunks(chunks, provider, batch_size, concurrency, timeout)
    index = VectorIndex(
        key=key,
        chunks=chunks,
        vectors=vectors,
        dims=len(vectors[0]) if vectors else 0,
    )
    persisted = cache.save(index)

    logger.info(
        "Index %s ready: %d chunks from %d file(s), %d failed, %.2fs",
        key, len(chunks), len(results) - failed, failed, time.perf_counter() - t0,
    )
    return BuildReport(
        index=index,
        files_requested=len(files),
        files_indexed=len(results) - failed,
        files_failed=failed,
        persisted=persisted,
    )


async def build_index(
    key: str,
    files: Sequence[SampledFile],
    fetch_content: FetchContent,
    provider: EmbeddingProvider,
    cache: IndexCache,
    **kwargs,
) -> VectorIndex:
    """Build and persist a fresh index for ``key`` and return it."""
    report = await run_build(key, files, fetch_content, provider, cache, **kwargs)
    return report.index
