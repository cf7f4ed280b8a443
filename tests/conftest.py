from __future__ import annotations

import sys
from pathlib import Path
from typing import Callable

import pytest

# Ensure `import hybrid_recs...` works when pytest uses importlib import mode.
REPO_ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(REPO_ROOT))

from hybrid_recs.errors import ArticleNotFoundError  # noqa: E402
from hybrid_recs.store.articles import Article  # noqa: E402


def make_article(article_id: str, content: str | None = None) -> Article:
    return Article(
        article_id=article_id,
        title=f"Title {article_id}",
        content=content if content is not None else f"content of {article_id}",
    )


class FakeStore:
    """Dict-backed article store recording lookups."""

    def __init__(self, articles: list[Article]) -> None:
        self.articles = {a.article_id: a for a in articles}
        self.calls: list[str] = []

    def get_item(self, article_id: str) -> Article:
        self.calls.append(article_id)
        if article_id not in self.articles:
            raise ArticleNotFoundError(article_id)
        return self.articles[article_id]


class FakeBackend:
    """Returns a fixed ranking (truncated to `count`) or raises `error`."""

    def __init__(self, ids: list[str] | None = None, *, error: Exception | None = None) -> None:
        self.ids = list(ids or [])
        self.error = error
        self.calls: list[tuple[str, int]] = []

    def search(self, query_text: str, count: int) -> list[Article]:
        self.calls.append((query_text, count))
        if self.error is not None:
            raise self.error
        return [make_article(i) for i in self.ids[:count]]


@pytest.fixture
def article() -> Callable[..., Article]:
    return make_article


@pytest.fixture
def fake_store() -> Callable[..., FakeStore]:
    def _make(ids: list[str], contents: dict[str, str] | None = None) -> FakeStore:
        contents = contents or {}
        return FakeStore([make_article(i, contents.get(i)) for i in ids])

    return _make


@pytest.fixture
def fake_backend() -> Callable[..., FakeBackend]:
    return FakeBackend
