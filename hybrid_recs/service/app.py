"""FastAPI service entrypoint for hybrid article recommendations."""

from __future__ import annotations

import logging
import os
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from ..config import AppConfig, load_config
from ..errors import ArticleNotFoundError, BackendUnavailableError, InvalidInputError
from ..retrieval.backends import CatalogSearchBackend
from ..retrieval.bm25 import BM25BuildConfig, BM25Retriever
from ..retrieval.dense import DenseRetriever, load_bi_encoder
from ..session.recently_visited import SessionRegistry
from ..store.articles import ArticleCatalog
from ..utils import setup_logging
from .pipeline import RecommendationPipeline
from .schemas import (
    RecentlyVisitedResponse,
    RecommendRequest,
    RecommendResponse,
    SearchRequest,
    SearchResponse,
    VisitRequest,
)

logger = logging.getLogger(__name__)


def build_pipeline(config: AppConfig) -> RecommendationPipeline:
    """Load the catalog and the configured retrievers, and wire the pipeline."""
    t0 = time.perf_counter()
    catalog = ArticleCatalog.from_path(config.catalog_path)
    logger.info("Loaded article catalog rows=%d from %s (%.2fs)", len(catalog), config.catalog_path, time.perf_counter() - t0)

    windows = config.recommendations.recency_windows_days

    sparse = None
    if config.bm25.enabled:
        t0 = time.perf_counter()
        bm25 = BM25Retriever.from_corpus(
            catalog.article_ids,
            catalog.contents,
            BM25BuildConfig(tokenizer=config.bm25.tokenizer),
        )
        sparse = CatalogSearchBackend("sparse", bm25, catalog, recency_windows_days=windows)
        logger.info("Built BM25 index: docs=%d (%.2fs)", len(bm25.index.article_ids), time.perf_counter() - t0)

    dense = None
    if config.dense.enabled:
        t0 = time.perf_counter()
        model = load_bi_encoder(config.dense.bi_encoder_model, device=None)
        if config.dense.faiss_index is not None and config.dense.article_ids is not None:
            retriever = DenseRetriever.from_artifacts(
                faiss_index_path=config.dense.faiss_index,
                article_ids_path=config.dense.article_ids,
                model=model,
                normalize_embeddings=config.dense.normalize_embeddings,
            )
        else:
            retriever = DenseRetriever.from_corpus(
                catalog.article_ids,
                catalog.contents,
                model=model,
                normalize_embeddings=config.dense.normalize_embeddings,
                index_type=config.dense.index_type,
            )
        dense = CatalogSearchBackend("dense", retriever, catalog, recency_windows_days=windows)
        logger.info(
            "Loaded dense retriever model=%s index_ntotal=%d dim=%d (%.2fs)",
            config.dense.bi_encoder_model,
            int(retriever.index.ntotal),
            int(retriever.dim),
            time.perf_counter() - t0,
        )

    return RecommendationPipeline(store=catalog, dense=dense, sparse=sparse, config=config.recommendations)


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging(os.getenv("LOG_LEVEL", "INFO"))

    # Tests (or an embedding application) may install their own pipeline first.
    if getattr(app.state, "pipeline", None) is None:
        config = load_config()
        logger.info("Starting service with catalog=%s", config.catalog_path)
        app.state.pipeline = build_pipeline(config)
        app.state.sessions = SessionRegistry(
            capacity=config.recommendations.max_recently_visited,
            max_sessions=config.recommendations.max_sessions,
        )
    if getattr(app.state, "sessions", None) is None:
        app.state.sessions = SessionRegistry()
    yield


app = FastAPI(title="Hybrid Article Recommendation Service", lifespan=lifespan)


@app.exception_handler(RequestValidationError)
async def _validation_error(_request: Request, exc: RequestValidationError) -> JSONResponse:
    """Report malformed bodies as 400, the status the API clients expect."""
    return JSONResponse(status_code=400, content={"error": "Invalid request", "details": jsonable_encoder(exc.errors())})


@app.exception_handler(StarletteHTTPException)
async def _http_error(_request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Render every HTTP error as `{"error": message}`."""
    return JSONResponse(status_code=exc.status_code, content={"error": exc.detail}, headers=getattr(exc, "headers", None))


def _pipeline(app_: FastAPI) -> RecommendationPipeline:
    pipeline = getattr(app_.state, "pipeline", None)
    if pipeline is None:
        raise HTTPException(status_code=503, detail="Recommendation pipeline not initialized")
    return pipeline


def _sessions(app_: FastAPI) -> SessionRegistry:
    sessions = getattr(app_.state, "sessions", None)
    if sessions is None:
        raise HTTPException(status_code=503, detail="Session registry not initialized")
    return sessions


@app.get("/health")
def health() -> dict:
    return {"status": "ok"}


@app.post("/recommended-articles", response_model=RecommendResponse)
async def recommended_articles(req: RecommendRequest) -> dict:
    """Recommend articles similar to `sourceId`, excluding ids the client has already seen."""
    pipeline = _pipeline(app)

    recently_visited = None
    if req.sessionId is not None:
        recently_visited = _sessions(app).peek(req.sessionId)

    logger.info(
        "recommended-articles sourceId=%s limit=%s excludeIds=%s sessionId=%s",
        req.sourceId,
        req.limit,
        req.excludeIds,
        req.sessionId,
    )
    try:
        result = await pipeline.recommend(
            req.sourceId,
            req.excludeIds,
            req.limit,
            recently_visited=recently_visited,
            debug=req.debug,
        )
    except InvalidInputError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except ArticleNotFoundError as exc:
        raise HTTPException(status_code=404, detail="Article not found") from exc
    except BackendUnavailableError as exc:
        logger.error("recommended-articles failed for sourceId=%s: %s", req.sourceId, exc)
        raise HTTPException(status_code=500, detail="Failed to get recommended articles") from exc

    out = {
        "items": [a.to_dict() for a in result.items],
        "count": result.count,
        "sourceId": result.source_id,
    }
    if req.debug:
        out["debug_info"] = result.debug_info
    return out


@app.post("/vector-search", response_model=SearchResponse)
async def vector_search(req: SearchRequest) -> dict:
    """Search articles by free text with the dense, sparse, or hybrid ranking."""
    pipeline = _pipeline(app)
    if req.use_sparse_only:
        mode = "sparse"
    elif req.use_hybrid_search:
        mode = "hybrid"
    else:
        mode = "dense"

    try:
        articles = await pipeline.search(req.query, req.limit, mode)
    except InvalidInputError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except BackendUnavailableError as exc:
        logger.error("vector-search failed for mode=%s: %s", mode, exc)
        raise HTTPException(status_code=500, detail="Failed to perform vector search") from exc

    return {
        "articles": [a.to_dict() for a in articles],
        "count": len(articles),
        "query": req.query,
        "search_method": mode,
    }


@app.post("/sessions/{session_id}/visits", response_model=RecentlyVisitedResponse)
def record_visit(session_id: str, req: VisitRequest) -> dict:
    """Record that the session opened `articleId`."""
    try:
        recent = _sessions(app).get(session_id).record_visit(req.articleId)
    except InvalidInputError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {"sessionId": session_id, "recentlyVisited": recent}


@app.get("/sessions/{session_id}/recently-visited", response_model=RecentlyVisitedResponse)
def recently_visited(session_id: str) -> dict:
    store = _sessions(app).peek(session_id)
    return {"sessionId": session_id, "recentlyVisited": store.list() if store is not None else []}


@app.delete("/sessions/{session_id}/recently-visited", response_model=RecentlyVisitedResponse)
def clear_recently_visited(session_id: str) -> dict:
    _sessions(app).discard(session_id)
    return {"sessionId": session_id, "recentlyVisited": []}
