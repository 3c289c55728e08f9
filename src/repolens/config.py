"""Configuration loaded from environment variables."""

from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()


# Paths
DATA_DIR: Path = Path(os.getenv("DATA_DIR", "./data"))

# API keys
GEMINI_API_KEY: str = os.getenv("GEMINI_API_KEY", "")

# Models
GEMINI_MODEL: str = os.getenv("GEMINI_MODEL", "gemini-3-flash-preview")
EMBEDDING_MODEL: str = os.getenv("EMBEDDING_MODEL", "gemini-embedding-001")
EMBEDDING_DIMS: int = int(os.getenv("EMBEDDING_DIMS", "768"))

# Indexing
MAX_CHUNK_SIZE: int = int(os.getenv("MAX_CHUNK_SIZE", "260"))
MAX_FILES_FOR_INDEX: int = int(os.getenv("MAX_FILES_FOR_INDEX", "60"))
EMBED_BATCH_SIZE: int = int(os.getenv("EMBED_BATCH_SIZE", "20"))
EMBED_CONCURRENCY: int = int(os.getenv("EMBED_CONCURRENCY", "4"))

# Retrieval / generation
DEFAULT_TOP_K: int = int(os.getenv("DEFAULT_TOP_K", "4"))
PROVIDER_TIMEOUT_SECS: float = float(os.getenv("PROVIDER_TIMEOUT_SECS", "60"))
GENERATION_MAX_TOKENS: int = int(os.getenv("GENERATION_MAX_TOKENS", "420"))
GENERATION_TEMPERATURE: float = float(os.getenv("GENERATION_TEMPERATURE", "0.2"))
GENERATION_TOP_K: int = int(os.getenv("GENERATION_TOP_K", "20"))
GENERATION_REPETITION_PENALTY: float = float(
    os.getenv("GENERATION_REPETITION_PENALTY", "1.05")
)

# Server
HOST: str = os.getenv("HOST", "0.0.0.0")
PORT: int = int(os.getenv("PORT", "8000"))
LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()

# Derived paths
SQLITE_PATH: Path = DATA_DIR / "repolens.db"


def make_index_key(owner: str, repo: str, branch: str) -> str:
    """Return the cache key identifying one repository+branch index."""
    return f"{owner}/{repo}@{branch}"
