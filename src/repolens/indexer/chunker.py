"""Split source files into blank-line-delimited chunks for embedding."""

from __future__ import annotations

import re
from dataclasses import dataclass

from repolens import config

# A newline, any whitespace-only lines, then another newline
_BLANK_LINE = re.compile(r"\n[ \t\r\f\v]*(?:\n[ \t\r\f\v]*)+")

# Sections are rejoined with a blank line, which counts toward the size limit
_SEPARATOR = "\n\n"


@dataclass(frozen=True)
class Chunk:
    id: str
    path: str
    content: str


def make_chunk_id(path: str, ordinal: int) -> str:
    return f"{path}::{ordinal}"


def split_sections(content: str) -> list[str]:
    """Split text on blank lines, trimming sections and dropping empty ones."""
    return [s.strip() for s in _BLANK_LINE.split(content) if s.strip()]


def chunk_source_file(
    content: str | None,
    path: str,
    max_chunk_size: int = config.MAX_CHUNK_SIZE,
) -> list[Chunk]:
    """Greedily pack a file's sections into chunks under ``max_chunk_size`` chars.

    A buffer is flushed when adding the next section would reach the size limit.
    A single section longer than the size limit becomes its own oversized chunk;
    sections are never split.
    """
    if not content:
        return []

    texts: list[str] = []
    buffer: list[str] = []
    size = 0
    for section in split_sections(content):
        if buffer and size + len(section) >= max_chunk_size:
            texts.append(_SEPARATOR.join(buffer))
            buffer, size = [], 0
        buffer.append(section)
        size += len(section) + len(_SEPARATOR)
    if buffer:
        texts.append(_SEPARATOR.join(buffer))

    return [
        Chunk(id=make_chunk_id(path, i), path=path, content=text)
        for i, text in enumerate(texts)
    ]
