"""
Retrieval backend abstraction.

A backend answers `search(query_text, count)` with articles in relevance order.
The pipeline only depends on this protocol; `CatalogSearchBackend` adapts the
id-level BM25 / dense retrievers to it by hydrating ids through the catalog.
"""

from __future__ import annotations

import logging
from typing import List, Protocol, Sequence

from ..store.articles import Article, ArticleCatalog

logger = logging.getLogger(__name__)


class RetrievalBackend(Protocol):
    """Protocol for one ranking strategy (dense or sparse)."""

    def search(self, query_text: str, count: int) -> List[Article]:
        """Return up to `count` articles, most relevant first (best effort)."""
        ...


class IdRetrievalResult(Protocol):
    article_ids: List[str]


class IdRetriever(Protocol):
    def search(self, query_text: str, *, top_k: int) -> IdRetrievalResult:
        ...


class CatalogSearchBackend:
    """Run an id-level retriever and resolve the ids to catalog articles.

    Ids unknown to the catalog are dropped; retriever order is preserved.
    """

    def __init__(
        self,
        name: str,
        retriever: IdRetriever,
        catalog: ArticleCatalog,
        *,
        recency_windows_days: Sequence[int] = (),
    ) -> None:
        self.name = str(name)
        self.retriever = retriever
        self.catalog = catalog
        self.recency_windows_days = tuple(int(d) for d in recency_windows_days)

    def __repr__(self) -> str:
        return f"CatalogSearchBackend(name={self.name!r}, retriever={type(self.retriever).__name__})"

    def search(self, query_text: str, count: int) -> List[Article]:
        query_text = "" if query_text is None else str(query_text)
        # Retrievers reject blank queries; a blank query simply matches nothing.
        if int(count) <= 0 or query_text.strip() == "":
            return []
        result = self.retriever.search(query_text, top_k=int(count))
        articles = self.catalog.fetch_by_ids(
            result.article_ids,
            target_limit=int(count),
            windows_days=self.recency_windows_days,
        )
        if len(articles) < len(result.article_ids):
            logger.debug(
                "%s backend: %d of %d retrieved ids resolved to articles",
                self.name,
                len(articles),
                len(result.article_ids),
            )
        return articles
