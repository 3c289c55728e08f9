"""Model-free Mermaid sequence diagram built from component summaries."""

from __future__ import annotations

import re
from typing import Sequence

from repolens.diagram.features import FeatureSummary

MAX_PARTICIPANTS = 4
PROVIDER_ID = "heuristic-template"

# Characters that end a statement or start a comment/message in Mermaid
_UNSAFE = re.compile(r"[;#:\r\n]+")
_SPACES = re.compile(r"\s+")


def _clean_label(text: str | None, default: str) -> str:
    if text is None:
        return default
    cleaned = _SPACES.sub(" ", _UNSAFE.sub(" ", str(text))).strip()
    return cleaned or default


def build_heuristic_diagram(question: str, features: Sequence[FeatureSummary]) -> str:
    """Chain the first few components into a User-initiated sequence diagram.

    The question is appended after the fenced block so the output can be
    traced back to its request.
    """
    participants = ["participant U as User"]
    messages = []
    steps = list(features[:MAX_PARTICIPANTS])
    for i, feature in enumerate(steps, 1):
        label = _clean_label(feature.name, "Component")
        tech = _clean_label(
            ", ".join(str(t) for t in feature.technologies or [] if t is not None), "Mixed"
        )
        participants.append(f"participant F{i} as {label}<br/>{tech}")
        if i == 1:
            messages.append("U->>F1: Initiate flow")
        else:
            messages.append(f"F{i - 1}->>F{i}: Pass control")
    if not steps:
        participants.append("participant F1 as Application")
        messages.append("U->>F1: Interact")

    return "\n".join([
        "```mermaid",
        "sequenceDiagram",
        "    autonumber",
        *(f"    {line}" for line in participants),
        *(f"    {line}" for line in messages),
        "```",
        "",
        "_Generated via heuristic fallback for request:_",
        question,
    ])
