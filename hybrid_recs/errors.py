"""Exception taxonomy shared by the pipeline and the HTTP layer."""

from __future__ import annotations


class RecommendationError(Exception):
    """Base class for recoverable recommendation failures."""


class InvalidInputError(RecommendationError, ValueError):
    """Malformed caller input (missing source id, non-integer limit, ...)."""


class ArticleNotFoundError(RecommendationError, KeyError):
    """The requested article does not exist in the article store."""

    def __init__(self, article_id: str) -> None:
        super().__init__(article_id)
        self.article_id = article_id

    def __str__(self) -> str:
        return f"article not found: {self.article_id!r}"


class BackendUnavailableError(RecommendationError, RuntimeError):
    """Every active retrieval backend failed or timed out."""
