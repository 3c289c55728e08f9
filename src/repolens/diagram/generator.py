"""Generate a diagram description from retrieved context, with a heuristic fallback."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Sequence

from repolens import config
from repolens.diagram import heuristic
from repolens.diagram.features import FeatureSummary
from repolens.errors import ProviderUnavailable
from repolens.provider import GenerationOptions, GenerationProvider, call_provider
from repolens.tools.retriever import RetrievalResult

logger = logging.getLogger(__name__)

INSTRUCTIONS = (
    "You are an expert software architect. Using the repository context chunks and "
    "component summary below, answer the request with a Mermaid or PlantUML diagram. "
    "Always put the diagram code in a fenced block (Mermaid preferred) and keep any "
    "explanation short."
)

CHUNK_PROMPT_CHARS = 900
FENCE = "```"


@dataclass
class GenerationResult:
    prompt: str
    result: str
    provider_id: str
    used_model: bool


def _truncate(text: str, max_chars: int) -> str:
    if len(text) <= max_chars:
        return text
    return text[:max_chars] + "…"


def build_diagram_prompt(
    question: str,
    chunks: Sequence[RetrievalResult],
    features: Sequence[FeatureSummary],
) -> str:
    """Assemble instructions, question, component bullets and context chunks, in that order."""
    feature_lines = [
        f"- {f.name}: {', '.join(str(t) for t in (f.technologies or [])[:3]) or 'Unknown'} ({f.files} files)"
        for f in features
    ]
    chunk_blocks = [
        f"Chunk {i} (file: {r.chunk.path}):\n{_truncate(r.chunk.content, CHUNK_PROMPT_CHARS)}"
        for i, r in enumerate(chunks, 1)
    ]
    return "\n".join([
        INSTRUCTIONS,
        "",
        f"Question: {question}",
        "",
        "Component summary:",
        "\n".join(feature_lines) or "(none)",
        "",
        "Context chunks:",
        "\n\n".join(chunk_blocks) or "(none)",
        "",
        "Diagram:",
    ])


def sanitize_diagram_output(text: str | None) -> str:
    """Drop any prose before the first code fence.

    Without a fence the trimmed text is returned unchanged.
    """
    if not text:
        return ""
    start = text.find(FENCE)
    if start != -1:
        return text[start:].strip()
    return text.strip()


class DiagramGenerator:
    """Asks a generation provider for a diagram and falls back to the heuristic builder.

    ``generate`` never raises: without a provider, or when the provider
    errors, times out or returns nothing usable, the heuristic diagram is
    returned with ``used_model=False``.
    """

    def __init__(
        self,
        provider: GenerationProvider | None = None,
        options: GenerationOptions | None = None,
        timeout: float = config.PROVIDER_TIMEOUT_SECS,
    ) -> None:
        self._provider = provider
        self._options = options or GenerationOptions()
        self._timeout = timeout

    async def generate(
        self,
        question: str,
        context_chunks: Sequence[RetrievalResult],
        features: Sequence[FeatureSummary],
    ) -> GenerationResult:
        prompt = ""
        try:
            prompt = build_diagram_prompt(question, context_chunks, features)
            text = await self._generate_with_model(prompt)
            return GenerationResult(
                prompt=prompt,
                result=text,
                provider_id=self._provider_id(),
                used_model=True,
            )
        except Exception as e:
            logger.warning("Falling back to heuristic diagram: %s", e)
        return GenerationResult(
            prompt=prompt,
            result=heuristic.build_heuristic_diagram(question, features),
            provider_id=heuristic.PROVIDER_ID,
            used_model=False,
        )

    async def _generate_with_model(self, prompt: str) -> str:
        if self._provider is None:
            raise ProviderUnavailable("no generation provider configured")
        t0 = time.perf_counter()
        raw = await call_provider(
            self._provider.generate(prompt, self._options), self._timeout, "generation"
        )
        if not isinstance(raw, str):
            raise ProviderUnavailable(f"generation returned {type(raw).__name__}, not text")
        text = sanitize_diagram_output(raw)
        if not text:
            raise ProviderUnavailable("generation returned empty output")
        logger.debug("Model diagram: %d chars, %.0fms", len(text), (time.perf_counter() - t0) * 1000)
        return text

    def _provider_id(self) -> str:
        return str(getattr(self._provider, "model_id", type(self._provider).__name__))
