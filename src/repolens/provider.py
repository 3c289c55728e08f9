"""Embedding/generation provider interfaces and the Gemini implementation."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Protocol, TypeVar

from google import genai
from google.genai import errors as genai_errors
from google.genai import types

from repolens import config
from repolens.errors import ProviderUnavailable

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class GenerationOptions:
    """Sampling parameters for a diagram generation call."""

    max_tokens: int = config.GENERATION_MAX_TOKENS
    temperature: float = config.GENERATION_TEMPERATURE
    top_k: int = config.GENERATION_TOP_K
    repetition_penalty: float = config.GENERATION_REPETITION_PENALTY


class EmbeddingProvider(Protocol):
    """Protocol for embedding providers."""

    async def embed(self, texts: list[str]) -> list[list[float]]:
        """Embed a list of texts, returning one float vector per text."""
        ...


class GenerationProvider(Protocol):
    """Protocol for text generation providers."""

    model_id: str

    async def generate(self, prompt: str, options: GenerationOptions) -> str:
        """Generate text from a prompt, returning the response string."""
        ...


async def call_provider(awaitable: Awaitable[T], timeout: float, operation: str) -> T:
    """Await a provider call under a timeout.

    Expiry and any error raised by the provider surface as ProviderUnavailable
    so callers deal with a single failure type.
    """
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout)
    except ProviderUnavailable:
        raise
    except asyncio.TimeoutError as e:
        raise ProviderUnavailable(f"{operation} timed out after {timeout:.0f}s") from e
    except Exception as e:
        raise ProviderUnavailable(f"{operation} failed: {e}") from e


async def embed_text(
    provider: EmbeddingProvider,
    text: str,
    timeout: float = config.PROVIDER_TIMEOUT_SECS,
) -> list[float]:
    """Embed a single text (e.g. a user question)."""
    vectors = await call_provider(provider.embed([text]), timeout, "embedding")
    if len(vectors) != 1:
        raise ProviderUnavailable(f"embedding returned {len(vectors)} vectors for 1 text")
    return [float(x) for x in vectors[0]]


class GeminiProvider:
    """Gemini implementation of embedding and generation.

    The API client is created on first use, so constructing the provider never
    touches the network and a missing key only fails the calls that need it.
    """

    def __init__(
        self,
        api_key: str | None = None,
        embedding_model: str | None = None,
        embedding_dims: int | None = None,
        generation_model: str | None = None,
    ) -> None:
        self._api_key = api_key if api_key is not None else config.GEMINI_API_KEY
        self._embedding_model = embedding_model or config.EMBEDDING_MODEL
        self._embedding_dims = embedding_dims or config.EMBEDDING_DIMS
        self._generation_model = generation_model or config.GEMINI_MODEL
        self._client: genai.Client | None = None
        self._penalty_rejected = False

    @property
    def model_id(self) -> str:
        return self._generation_model

    def _get_client(self) -> genai.Client:
        if self._client is None:
            if not self._api_key:
                raise ProviderUnavailable("GEMINI_API_KEY is not set")
            try:
                self._client = genai.Client(api_key=self._api_key)
            except Exception as e:
                raise ProviderUnavailable(f"Could not create Gemini client: {e}") from e
        return self._client

    async def embed(self, texts: list[str]) -> list[list[float]]:
        """Embed texts using Gemini embedding API.

        Args:
            texts: List of strings to embed. Max 250 per call.

        Returns:
            List of float vectors, one per input text.
        """
        client = self._get_client()
        total_chars = sum(len(t) for t in texts)
        logger.debug("Embedding %d text(s) (%d chars) via %s", len(texts), total_chars, self._embedding_model)
        t0 = time.perf_counter()
        try:
            result = await client.aio.models.embed_content(
                model=self._embedding_model,
                contents=texts,
                config=types.EmbedContentConfig(
                    output_dimensionality=self._embedding_dims,
                ),
            )
        except genai_errors.APIError as e:
            raise ProviderUnavailable(f"Gemini embedding failed: {e}") from e
        logger.debug("Embed complete: %.0fms", (time.perf_counter() - t0) * 1000)
        return [list(e.values or []) for e in result.embeddings or []]

    async def generate(self, prompt: str, options: GenerationOptions) -> str:
        """Generate text using Gemini.

        repetition_penalty has no direct Gemini counterpart; the excess over
        1.0 is sent as frequency_penalty. Models that reject penalty
        parameters answer 400, in which case the call is retried once
        without it.
        """
        client = self._get_client()
        logger.debug("Generate via %s (%d char prompt)", self._generation_model, len(prompt))
        t0 = time.perf_counter()
        penalty = None
        if options.repetition_penalty != 1.0 and not self._penalty_rejected:
            penalty = options.repetition_penalty - 1.0
        try:
            try:
                response = await self._generate_content(client, prompt, options, penalty)
            except genai_errors.ClientError as e:
                if penalty is None or e.code != 400:
                    raise
                logger.warning(
                    "%s rejected frequency_penalty, retrying without it: %s",
                    self._generation_model, e,
                )
                self._penalty_rejected = True
                response = await self._generate_content(client, prompt, options, None)
        except genai_errors.APIError as e:
            raise ProviderUnavailable(f"Gemini generation failed: {e}") from e
        logger.debug("Generate complete: %d chars, %.0fms", len(response.text or ""), (time.perf_counter() - t0) * 1000)
        return response.text or ""

    async def _generate_content(self, client, prompt: str, options: GenerationOptions, penalty: float | None):
        return await client.aio.models.generate_content(
            model=self._generation_model,
            contents=prompt,
            config=types.GenerateContentConfig(
                max_output_tokens=options.max_tokens,
                temperature=options.temperature,
                top_k=options.top_k,
                frequency_penalty=penalty,
            ),
        )
