"""FastAPI server exposing index building and diagram generation."""

from __future__ import annotations

import logging
import time

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field

from repolens import config
from repolens.diagram.features import FeatureSummary
from repolens.engine import RagEngine, create_engine
from repolens.errors import FetchFailure, NoIndex, ProviderUnavailable
from repolens.indexer.builder import SampledFile

# Configure logging on import, before anything else logs
logging.basicConfig(
    level=getattr(logging, config.LOG_LEVEL, logging.INFO),
    format="%(asctime)s %(levelname)-5s [%(name)s] %(message)s",
    datefmt="%H:%M:%S",
)

logger = logging.getLogger(__name__)

app = FastAPI(title="repolens", description="Repository retrieval and diagram service")

# Lazy-initialized engine (created on first request)
_engine: RagEngine | None = None


def _get_engine() -> RagEngine:
    global _engine
    if _engine is None:
        logger.info("Initializing engine...")
        t0 = time.perf_counter()
        _engine = create_engine()
        logger.info("Engine ready (%.2fs)", time.perf_counter() - t0)
    return _engine


class FileIn(BaseModel):
    path: str
    content: str | None = None


class IndexRequest(BaseModel):
    owner: str
    repo: str
    branch: str = "main"
    files: list[FileIn]
    force_rebuild: bool = False


class IndexResponse(BaseModel):
    key: str
    chunks: int
    dims: int
    cached: bool
    files_requested: int = 0
    files_indexed: int = 0
    files_failed: int = 0
    persisted: bool = True


class FeatureIn(BaseModel):
    name: str
    technologies: list[str] = Field(default_factory=list)
    files: int = 0


class DiagramRequest(BaseModel):
    owner: str
    repo: str
    branch: str = "main"
    question: str
    top_k: int = config.DEFAULT_TOP_K
    features: list[FeatureIn] = Field(default_factory=list)


class ContextChunkResponse(BaseModel):
    id: str
    path: str
    score: float


class DiagramResponse(BaseModel):
    prompt: str
    result: str
    provider_id: str
    used_model: bool
    context: list[ContextChunkResponse]


@app.get("/health")
def health():
    return {"status": "ok"}


@app.post("/index", response_model=IndexResponse)
async def build_index(req: IndexRequest):
    logger.info("POST /index %s/%s@%s (%d files)", req.owner, req.repo, req.branch, len(req.files))
    contents = {f.path: f.content for f in req.files}

    async def fetch(owner: str, repo: str, path: str, branch: str, token: str | None) -> str:
        content = contents.get(path)
        if content is None:
            raise FetchFailure(path, "no content supplied")
        return content

    engine = _get_engine()
    try:
        index = await engine.get_or_build_index(
            req.owner, req.repo, req.branch,
            [SampledFile(f.path) for f in req.files],
            fetch,
            force_rebuild=req.force_rebuild,
        )
    except ProviderUnavailable as e:
        logger.error("Index build failed: %s", e)
        raise HTTPException(
            status_code=503,
            detail=f"Embedding model unavailable, index not built: {e}",
        )
    report = engine.last_build
    if report is None:
        return IndexResponse(key=index.key, chunks=len(index), dims=index.dims, cached=True)
    return IndexResponse(cached=False, **report.summary())


@app.post("/diagram", response_model=DiagramResponse)
async def diagram(req: DiagramRequest):
    logger.info("POST /diagram question=%r", req.question[:120])
    t0 = time.perf_counter()
    key = config.make_index_key(req.owner, req.repo, req.branch)
    features = [FeatureSummary(f.name, f.technologies[:3], f.files) for f in req.features]
    try:
        context, result = await _get_engine().answer(req.question, key, features, req.top_k)
    except (NoIndex, ValueError) as e:
        # ValueError: the index was built in a different embedding space
        raise HTTPException(status_code=409, detail=str(e))
    except ProviderUnavailable as e:
        logger.error("Query embedding failed: %s", e)
        raise HTTPException(status_code=503, detail=f"Embedding model unavailable: {e}")
    logger.info(
        "Diagram complete: %d context chunks, model=%s, %.2fs total",
        len(context), result.used_model, time.perf_counter() - t0,
    )
    return DiagramResponse(
        prompt=result.prompt,
        result=result.result,
        provider_id=result.provider_id,
        used_model=result.used_model,
        context=[
            ContextChunkResponse(id=r.chunk.id, path=r.chunk.path, score=r.score)
            for r in context
        ],
    )
