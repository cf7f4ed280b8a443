"""Recommendation pipeline: resolve source, oversampled hybrid retrieval, fusion, exclusion."""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Iterable, Literal, Optional

from ..config import RecommendationConfig
from ..errors import BackendUnavailableError, InvalidInputError
from ..fusion.rrf import reciprocal_rank_fusion_with_fallback
from ..retrieval.backends import RetrievalBackend
from ..session.recently_visited import RecentlyVisitedStore
from ..store.articles import Article, ArticleStore

logger = logging.getLogger(__name__)

SearchMode = Literal["dense", "sparse", "hybrid"]


@dataclass
class RecommendationResult:
    items: list[Article]
    source_id: str
    debug_info: Optional[dict[str, Any]] = None

    @property
    def count(self) -> int:
        return len(self.items)


@dataclass
class _BackendOutcome:
    name: str
    items: list[Article] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def failed(self) -> bool:
        return self.error is not None


class RecommendationPipeline:
    """Content-based article recommendations over one or two retrieval backends.

    With both a dense and a sparse backend the two rankings are requested
    concurrently and merged with RRF (with fallback for uneven lengths); with a
    single backend its ranking is used directly. A backend that raises or times
    out contributes an empty list; only when every active backend fails does
    the call fail.

    The instance is stateless between calls and is meant to be created once at
    startup and shared by all requests.
    """

    def __init__(
        self,
        *,
        store: ArticleStore,
        dense: RetrievalBackend | None = None,
        sparse: RetrievalBackend | None = None,
        config: RecommendationConfig | None = None,
    ) -> None:
        if dense is None and sparse is None:
            raise ValueError("at least one retrieval backend (dense or sparse) is required")
        self.store = store
        self.dense = dense
        self.sparse = sparse
        self.config = config or RecommendationConfig()

    @property
    def mode(self) -> SearchMode:
        if self.dense is not None and self.sparse is not None:
            return "hybrid"
        return "dense" if self.dense is not None else "sparse"

    async def _call_backend(self, name: str, backend: RetrievalBackend, query_text: str, count: int) -> _BackendOutcome:
        timeout = self.config.backend_timeout_s
        try:
            if inspect.iscoroutinefunction(backend.search):
                call = backend.search(query_text, count)
            else:
                call = asyncio.to_thread(backend.search, query_text, count)
            items = await asyncio.wait_for(call, timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning("%s backend timed out after %.2fs; treating its ranking as empty", name, float(timeout or 0))
            return _BackendOutcome(name=name, error="timeout")
        except Exception as exc:
            logger.warning("%s backend failed (%s: %s); treating its ranking as empty", name, type(exc).__name__, exc)
            return _BackendOutcome(name=name, error=f"{type(exc).__name__}: {exc}")
        return _BackendOutcome(name=name, items=list(items or []))

    async def _retrieve(self, query_text: str, count: int, mode: SearchMode) -> tuple[list[Article], dict[str, Any]]:
        """Fan out to the backends of `mode`, then fuse. Raises if all of them fail."""
        active: list[tuple[str, RetrievalBackend]] = []
        if mode in ("dense", "hybrid") and self.dense is not None:
            active.append(("dense", self.dense))
        if mode in ("sparse", "hybrid") and self.sparse is not None:
            active.append(("sparse", self.sparse))
        if not active:
            raise InvalidInputError(f"search mode {mode!r} is not available (configured: {self.mode})")

        t0 = time.perf_counter()
        outcomes = await asyncio.gather(*(self._call_backend(name, b, query_text, count) for name, b in active))
        timings = {"retrieve_s": time.perf_counter() - t0}
        by_name = {o.name: o for o in outcomes}

        if all(o.failed for o in outcomes):
            raise BackendUnavailableError(
                "all retrieval backends failed: " + ", ".join(f"{o.name}={o.error}" for o in outcomes)
            )

        t0 = time.perf_counter()
        if len(outcomes) == 2:
            fused = reciprocal_rank_fusion_with_fallback(
                by_name["dense"].items,
                by_name["sparse"].items,
                self.config.rrf_k,
            )
        else:
            fused = list(outcomes[0].items)
        timings["fuse_s"] = time.perf_counter() - t0

        info: dict[str, Any] = {
            "timings_s": timings,
            "candidate_counts": {o.name: len(o.items) for o in outcomes},
            "fused_count": len(fused),
            "backend_errors": {o.name: o.error for o in outcomes if o.failed},
        }
        return fused, info

    @staticmethod
    def _validate_limit(limit: Any) -> int:
        # bool is an int subclass but never a meaningful count.
        if isinstance(limit, bool) or not isinstance(limit, int):
            raise InvalidInputError(f"limit must be an integer, got {type(limit).__name__}")
        return int(limit)

    async def recommend(
        self,
        source_id: str,
        exclude_ids: Iterable[str] | None = (),
        limit: int | None = None,
        *,
        recently_visited: RecentlyVisitedStore | Iterable[str] | None = None,
        debug: bool = False,
    ) -> RecommendationResult:
        """Recommend up to `limit` articles similar to `source_id`.

        The result never contains `source_id`, any id of `exclude_ids`, nor any
        id of `recently_visited` (a store or a plain id list, opt-in). It may
        hold fewer than `limit` articles when too few survive filtering.

        Raises
        ------
        InvalidInputError
            `source_id` empty / not a string, or `limit` not an integer.
        ArticleNotFoundError
            `source_id` is unknown to the article store.
        BackendUnavailableError
            Every active retrieval backend failed.
        """
        if not isinstance(source_id, str) or source_id.strip() == "":
            raise InvalidInputError("source_id must be a non-empty string")
        k_out = self._validate_limit(self.config.default_count if limit is None else limit)
        if exclude_ids is None:
            exclude_ids = ()
        elif isinstance(exclude_ids, str):
            raise InvalidInputError("exclude_ids must be a collection of ids, not a string")

        if k_out <= 0:
            return RecommendationResult(items=[], source_id=source_id, debug_info=({"skipped": "limit<=0"} if debug else None))

        t_start = time.perf_counter()
        timings: dict[str, float] = {}

        t0 = time.perf_counter()
        source = await asyncio.to_thread(self.store.get_item, source_id)
        timings["resolve_s"] = time.perf_counter() - t0

        if not isinstance(source.content, str) or source.content.strip() == "":
            logger.info("recommend source_id=%s has no content to search with; returning no recommendations", source_id)
            return RecommendationResult(
                items=[],
                source_id=source_id,
                debug_info=({"skipped": "empty source content", "timings_s": timings} if debug else None),
            )

        search_limit = self.config.search_limit(k_out)
        candidates, info = await self._retrieve(source.content, search_limit, self.mode)
        timings.update(info.pop("timings_s"))

        excluded: set[str] = {source_id, *(str(x) for x in exclude_ids)}
        if recently_visited is not None:
            if isinstance(recently_visited, RecentlyVisitedStore):
                excluded.update(recently_visited.list())
            else:
                excluded.update(str(x) for x in recently_visited)

        results: list[Article] = []
        for article in candidates:
            if article.article_id in excluded:
                continue
            # Backends may repeat an id; the output must not.
            excluded.add(article.article_id)
            results.append(article)
            if len(results) >= k_out:
                break

        timings["total_s"] = time.perf_counter() - t_start
        logger.info(
            "recommend source_id=%s mode=%s limit=%d search_limit=%d | candidates=%s fused=%d exclusions=%d returned=%d | timings_s=%s",
            source_id,
            self.mode,
            k_out,
            search_limit,
            info["candidate_counts"],
            info["fused_count"],
            len(excluded) - len(results),
            len(results),
            {k: round(v, 4) for k, v in timings.items()},
        )

        debug_info: Optional[dict[str, Any]] = None
        if debug:
            debug_info = {
                **info,
                "mode": self.mode,
                "search_limit": int(search_limit),
                "rrf_k": float(self.config.rrf_k),
                "timings_s": {k: float(v) for k, v in timings.items()},
            }
        return RecommendationResult(items=results, source_id=source_id, debug_info=debug_info)

    async def search(self, query_text: str, limit: int = 10, mode: SearchMode | None = None) -> list[Article]:
        """Ad-hoc search over the configured backends (no exclusion policy)."""
        if not isinstance(query_text, str) or query_text.strip() == "":
            raise InvalidInputError("query must be a non-empty string")
        k_out = self._validate_limit(limit)
        if k_out <= 0:
            return []
        mode_final: SearchMode = mode if mode is not None else self.mode
        if mode_final not in ("dense", "sparse", "hybrid"):
            raise InvalidInputError(f"Unsupported mode: {mode_final!r} (expected: dense, sparse, hybrid)")

        results, info = await self._retrieve(query_text, k_out, mode_final)
        logger.info("search mode=%s limit=%d candidates=%s", mode_final, k_out, info["candidate_counts"])
        return results[:k_out]
