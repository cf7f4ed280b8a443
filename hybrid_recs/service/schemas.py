"""Pydantic schemas for the online recommendation API."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class RecommendRequest(BaseModel):
    """Request payload for the `/recommended-articles` endpoint."""

    sourceId: str = Field(..., min_length=1, description="Id of the article to find recommendations for.")
    excludeIds: list[str] = Field(default_factory=list, description="Extra article ids to leave out.")
    limit: Optional[int] = Field(None, description="Number of recommendations (defaults to config).")
    sessionId: Optional[str] = Field(
        None,
        min_length=1,
        description="Opt in to excluding the session's recently visited articles.",
    )
    debug: bool = False


class ArticleItem(BaseModel):
    """A single recommended article."""

    article_id: str
    title: str
    content: str
    date: Optional[datetime] = None
    tag: str = ""
    fingerprint: str = ""


class RecommendResponse(BaseModel):
    items: list[ArticleItem]
    count: int
    sourceId: str
    debug_info: Optional[dict] = None


class SearchRequest(BaseModel):
    """Ad-hoc search request; dense unless a hybrid or sparse flag is set."""

    query: str = Field(..., min_length=1)
    limit: int = Field(10, ge=1, le=100)
    use_hybrid_search: bool = False
    use_sparse_only: bool = False


class SearchResponse(BaseModel):
    articles: list[ArticleItem]
    count: int
    query: str
    search_method: str


class VisitRequest(BaseModel):
    articleId: str = Field(..., min_length=1)


class RecentlyVisitedResponse(BaseModel):
    sessionId: str
    recentlyVisited: list[str]
