"""Component summaries taken from the structural analysis."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping

MAX_TECHNOLOGIES = 3


@dataclass(frozen=True)
class FeatureSummary:
    name: str
    technologies: list[str] = field(default_factory=list)
    files: int = 0


def describe_features(analysis: Mapping[str, Any] | None) -> list[FeatureSummary]:
    """Turn ``analysis["architecture"]["components"]`` into feature summaries."""
    if not analysis:
        return []
    components = (analysis.get("architecture") or {}).get("components") or []
    return [
        FeatureSummary(
            name=str(c.get("name", "")),
            technologies=[str(t) for t in (c.get("technologies") or [])[:MAX_TECHNOLOGIES]],
            files=int(c.get("files") or 0),
        )
        for c in components
    ]
