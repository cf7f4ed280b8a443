"""Lexical retrieval (BM25 index over article content)."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import List

import numpy as np


@dataclass(frozen=True)
class BM25RetrievalResult:
    article_ids: List[str]
    scores: List[float]

# Lowercase + \w+ with no stemming; must match the tokenization used at ingestion.
_WORD_RE = re.compile(r"\w+")


def simple_tokenize(text: str) -> list[str]:
    """Simple tokenizer: lowercase and regex word tokens."""
    if text is None:
        return []
    return _WORD_RE.findall(str(text).lower())


@dataclass(frozen=True)
class BM25BuildConfig:
    tokenizer: str = "simple"


@dataclass
class BM25Index:
    article_ids: list[str]
    bm25: object
    tokenizer: str = "simple"


def build_bm25_index(article_ids: list[str], texts: list[str], cfg: BM25BuildConfig) -> BM25Index:
    """Build a BM25Okapi index aligned to input ordering."""
    if len(article_ids) != len(texts):
        raise ValueError(f"article_ids/texts length mismatch: {len(article_ids)} vs {len(texts)}")
    if not article_ids:
        raise ValueError("cannot build a BM25 index over an empty corpus")
    if cfg.tokenizer != "simple":
        raise ValueError(f"Unsupported tokenizer: {cfg.tokenizer}")

    try:
        from rank_bm25 import BM25Okapi  # type: ignore[import-not-found]
    except Exception as exc:  # pragma: no cover
        raise ImportError("`rank-bm25` is required to build a BM25 index.") from exc

    tokenized_corpus = [simple_tokenize(t) for t in texts]
    bm25 = BM25Okapi(tokenized_corpus)
    return BM25Index(
        article_ids=[str(x) for x in article_ids],
        bm25=bm25,
        tokenizer=cfg.tokenizer,
    )


class BM25Retriever:
    """Online BM25 retriever wrapper around a BM25Index."""

    def __init__(self, index: BM25Index) -> None:
        self.index = index

    @classmethod
    def from_corpus(cls, article_ids: list[str], texts: list[str], cfg: BM25BuildConfig | None = None) -> "BM25Retriever":
        return cls(build_bm25_index(article_ids, texts, cfg or BM25BuildConfig()))

    def search(self, query_text: str, *, top_k: int) -> BM25RetrievalResult:
        """Retrieve the top-k documents for a query string.

        Documents sharing no term with the query (score 0) are not returned.
        """
        if top_k <= 0:
            raise ValueError("top_k must be > 0")

        query_text = "" if query_text is None else str(query_text)
        if query_text.strip() == "":
            raise ValueError("query_text must be non-empty")

        if self.index.tokenizer != "simple":
            raise ValueError(f"Unsupported tokenizer: {self.index.tokenizer!r}")

        query_tokens = simple_tokenize(query_text)
        scores = np.asarray(self.index.bm25.get_scores(query_tokens), dtype=np.float32)
        if scores.ndim != 1 or len(scores) != len(self.index.article_ids):
            raise RuntimeError("BM25 get_scores returned unexpected shape")

        k = int(min(int(top_k), len(scores)))
        if k == 0:
            return BM25RetrievalResult(article_ids=[], scores=[])

        # Efficient top-k: argpartition then sort those k indices.
        top_idx = np.argpartition(-scores, kth=k - 1)[:k]
        top_idx = top_idx[np.argsort(-scores[top_idx], kind="mergesort")]

        article_ids: list[str] = []
        out_scores: list[float] = []
        for i in top_idx.tolist():
            score = float(scores[int(i)])
            if score <= 0.0:
                continue
            article_ids.append(self.index.article_ids[int(i)])
            out_scores.append(score)
        return BM25RetrievalResult(article_ids=article_ids, scores=out_scores)
