"""Wires provider, index cache, retriever and generator together."""

from __future__ import annotations

import logging
import time
from typing import Awaitable, Callable, Sequence

from repolens import config
from repolens.diagram.features import FeatureSummary
from repolens.diagram.generator import DiagramGenerator, GenerationResult
from repolens.errors import NoIndex
from repolens.indexer.builder import BuildReport, SampledFile, run_build
from repolens.provider import EmbeddingProvider, GeminiProvider
from repolens.storage.index_cache import IndexCache, VectorIndex
from repolens.storage.kv_store import SqliteKeyValueStore
from repolens.tools.retriever import RetrievalResult, format_results, retrieve

logger = logging.getLogger(__name__)

# (owner, repo, path, branch, token) -> file text
RepoFetcher = Callable[[str, str, str, str, str | None], Awaitable[str]]

_provider: GeminiProvider | None = None


def get_provider() -> GeminiProvider:
    """Return the process-wide provider, constructing it on first use."""
    global _provider
    if _provider is None:
        logger.info("Initializing Gemini provider...")
        t0 = time.perf_counter()
        _provider = GeminiProvider()
        logger.info("Gemini provider ready (%.2fs)", time.perf_counter() - t0)
    return _provider


class RagEngine:
    """Get-or-build indexes per repository and answer diagram questions."""

    def __init__(
        self,
        provider: EmbeddingProvider,
        cache: IndexCache,
        generator: DiagramGenerator | None = None,
        timeout: float = config.PROVIDER_TIMEOUT_SECS,
    ) -> None:
        self._provider = provider
        self._cache = cache
        self._timeout = timeout
        # Without a generation provider every diagram comes from the heuristic builder
        self._generator = generator or DiagramGenerator(None, timeout=timeout)
        self.last_build: BuildReport | None = None

    @property
    def cache(self) -> IndexCache:
        return self._cache

    async def get_or_build_index(
        self,
        owner: str,
        repo: str,
        branch: str,
        files: Sequence[SampledFile],
        fetch_content: RepoFetcher,
        token: str | None = None,
        force_rebuild: bool = False,
    ) -> VectorIndex:
        """Return the cached index for the repo, building it when missing or forced."""
        key = config.make_index_key(owner, repo, branch)
        if not force_rebuild:
            cached = self._cache.load(key)
            if cached is not None:
                logger.info("Using cached index %s (%d chunks)", key, len(cached))
                self.last_build = None
                return cached

        async def _fetch(path: str) -> str:
            return await fetch_content(owner, repo, path, branch, token)

        self.last_build = await run_build(
            key, files, _fetch, self._provider, self._cache, timeout=self._timeout
        )
        logger.info("Build summary: %s", self.last_build.summary())
        return self.last_build.index

    async def retrieve(
        self,
        question: str,
        index: VectorIndex | None,
        top_k: int = config.DEFAULT_TOP_K,
    ) -> list[RetrievalResult]:
        return await retrieve(question, index, top_k, self._provider, self._timeout)

    async def generate(
        self,
        question: str,
        context: Sequence[RetrievalResult],
        features: Sequence[FeatureSummary],
    ) -> GenerationResult:
        return await self._generator.generate(question, context, features)

    async def answer(
        self,
        question: str,
        key: str,
        features: Sequence[FeatureSummary],
        top_k: int = config.DEFAULT_TOP_K,
    ) -> tuple[list[RetrievalResult], GenerationResult]:
        """Retrieve context from the cached index for ``key`` and generate a diagram.

        Raises:
            NoIndex: If no index is cached for ``key``.
        """
        index = self._cache.load(key)
        if index is None:
            raise NoIndex(f"No index for {key}. Build the index first.")
        context = await self.retrieve(question, index, top_k)
        logger.debug("%s", format_results(context, question))
        return context, await self.generate(question, context, features)


def create_engine() -> RagEngine:
    """Build the default engine: Gemini provider and the SQLite-backed cache."""
    store = SqliteKeyValueStore(config.SQLITE_PATH)
    provider = get_provider()
    return RagEngine(provider, IndexCache(store), DiagramGenerator(provider))
