from __future__ import annotations

import json
from datetime import datetime, timezone

import pandas as pd
import pytest

from hybrid_recs.errors import ArticleNotFoundError
from hybrid_recs.retrieval.backends import CatalogSearchBackend
from hybrid_recs.retrieval.bm25 import BM25RetrievalResult
from hybrid_recs.store.articles import ArticleCatalog

NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)

RECORDS = [
    {"article_id": "1", "title": "Today", "content": "rates today", "date": "2026-10-19T08:00:00Z", "tag": "economy"},
    {"article_id": "2", "title": "Yesterday", "content": "rates yesterday", "date": "2026-10-18T08:00:00Z"},
    {"article_id": "3", "title": "Last week", "content": "rates last week", "date": "2026-10-14T08:00:00Z"},
    {"article_id": "4", "title": "Last month", "content": "rates last month", "date": "2026-09-25T08:00:00Z"},
    {"article_id": "5", "title": "Undated", "content": "rates undated"},
]


@pytest.fixture
def catalog() -> ArticleCatalog:
    return ArticleCatalog.from_records(RECORDS)


def test_get_item_returns_article(catalog) -> None:
    article = catalog.get_item("1")

    assert article.title == "Today"
    assert article.content == "rates today"
    assert article.tag == "economy"
    assert article.date == datetime(2026, 10, 19, 8, 0, tzinfo=timezone.utc)
    assert catalog.get_item("5").date is None
    assert catalog.get_item("5").to_dict()["date"] is None


def test_get_item_unknown_raises_not_found(catalog) -> None:
    with pytest.raises(ArticleNotFoundError) as excinfo:
        catalog.get_item("missing")
    assert excinfo.value.article_id == "missing"
    # Still a KeyError for callers that only know the builtin.
    assert isinstance(excinfo.value, KeyError)


def test_fetch_by_ids_keeps_requested_order_and_drops_unknown(catalog) -> None:
    articles = catalog.fetch_by_ids(["3", "x", "1", "5"], target_limit=3)
    assert [a.article_id for a in articles] == ["3", "1", "5"]


def test_fetch_by_ids_uses_smallest_sufficient_recency_window(catalog) -> None:
    ids = ["4", "3", "2", "1", "5"]

    two = catalog.fetch_by_ids(ids, target_limit=2, windows_days=[2, 3, 7, 14, 30], now=NOW)
    assert [a.article_id for a in two] == ["2", "1"]

    three = catalog.fetch_by_ids(ids, target_limit=3, windows_days=[2, 3, 7, 14, 30], now=NOW)
    assert [a.article_id for a in three] == ["3", "2", "1"]


def test_fetch_by_ids_falls_back_to_widest_window(catalog) -> None:
    ids = ["4", "3", "2", "1", "5"]
    articles = catalog.fetch_by_ids(ids, target_limit=10, windows_days=[2, 30], now=NOW)
    # Undated articles never match a recency window.
    assert [a.article_id for a in articles] == ["4", "3", "2", "1"]


@pytest.mark.parametrize(
    "records, message",
    [
        ([{"article_id": "1", "title": "t"}], "missing required columns"),
        ([{"article_id": "1", "title": "t", "content": "c"}, {"article_id": "1", "title": "u", "content": "d"}], "duplicate"),
        ([{"article_id": " ", "title": "t", "content": "c"}], "empty article_id"),
    ],
)
def test_invalid_catalogs_are_rejected(records, message) -> None:
    with pytest.raises(ValueError, match=message):
        ArticleCatalog.from_records(records)


def test_catalog_loads_from_jsonl_and_csv(tmp_path) -> None:
    jsonl = tmp_path / "articles.jsonl"
    jsonl.write_text("\n".join(json.dumps(r) for r in RECORDS) + "\n")
    assert len(ArticleCatalog.from_path(jsonl)) == len(RECORDS)

    csv = tmp_path / "articles.csv"
    pd.DataFrame(RECORDS).to_csv(csv, index=False)
    loaded = ArticleCatalog.from_path(csv)
    assert loaded.article_ids == ["1", "2", "3", "4", "5"]

    with pytest.raises(FileNotFoundError):
        ArticleCatalog.from_path(tmp_path / "missing.parquet")
    xml = tmp_path / "articles.xml"
    xml.write_text("")
    with pytest.raises(ValueError):
        ArticleCatalog.from_path(xml)


class _StaticRetriever:
    def __init__(self, ids: list[str]) -> None:
        self.ids = ids
        self.calls: list[int] = []

    def search(self, query_text: str, *, top_k: int):
        self.calls.append(top_k)
        ids = self.ids[:top_k]
        return BM25RetrievalResult(article_ids=ids, scores=[1.0] * len(ids))


def test_catalog_search_backend_hydrates_ids(catalog) -> None:
    retriever = _StaticRetriever(["2", "ghost", "1"])
    backend = CatalogSearchBackend("sparse", retriever, catalog)

    articles = backend.search("rates", 15)

    assert [a.article_id for a in articles] == ["2", "1"]
    assert retriever.calls == [15]
    assert backend.search("rates", 0) == []


@pytest.mark.parametrize("query", ["", "   \n"])
def test_catalog_search_backend_blank_query_matches_nothing(catalog, query: str) -> None:
    retriever = _StaticRetriever(["1", "2"])
    backend = CatalogSearchBackend("dense", retriever, catalog)

    assert backend.search(query, 15) == []
    assert retriever.calls == []
