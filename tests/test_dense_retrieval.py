from __future__ import annotations

import json

import numpy as np
import pytest

from hybrid_recs.retrieval.dense import DenseRetriever, embed_texts, load_dense_article_ids

VOCAB = ["rates", "inflation", "battery", "vehicle", "model", "safety"]


class BagOfWordsModel:
    """Deterministic stand-in for a SentenceTransformer: counts vocabulary words."""

    def encode(self, texts, batch_size=32, convert_to_numpy=True, show_progress_bar=False):
        rows = []
        for text in texts:
            words = str(text).lower().split()
            rows.append([float(words.count(w)) for w in VOCAB])
        return np.asarray(rows, dtype=np.float32)


def test_embed_texts_normalizes_rows() -> None:
    emb = embed_texts(BagOfWordsModel(), ["rates rates inflation", "nothing here"], batch_size=2, normalize_embeddings=True)

    assert emb.dtype == np.float32
    assert emb.shape == (2, len(VOCAB))
    assert np.isclose(np.linalg.norm(emb[0]), 1.0)
    # All-zero rows stay zero instead of dividing by zero.
    assert np.allclose(emb[1], 0.0)


def test_dense_retriever_ranks_by_similarity() -> None:
    pytest.importorskip("faiss")

    retriever = DenseRetriever.from_corpus(
        ["a1", "a2", "a3"],
        ["rates inflation", "battery vehicle", "model safety"],
        model=BagOfWordsModel(),
    )

    assert retriever.dim == len(VOCAB)
    result = retriever.search("battery vehicle vehicle", top_k=2)
    assert result.article_ids[0] == "a2"
    assert len(result.article_ids) == 2
    assert result.scores[0] >= result.scores[1]


def test_dense_retriever_top_k_larger_than_index() -> None:
    pytest.importorskip("faiss")

    retriever = DenseRetriever.from_corpus(["a1", "a2"], ["rates", "battery"], model=BagOfWordsModel())
    result = retriever.search("rates", top_k=10)

    assert sorted(result.article_ids) == ["a1", "a2"]


def test_dense_retriever_validates_queries() -> None:
    pytest.importorskip("faiss")

    retriever = DenseRetriever.from_corpus(["a1"], ["rates"], model=BagOfWordsModel())
    with pytest.raises(ValueError):
        retriever.search("", top_k=1)
    with pytest.raises(ValueError):
        retriever.search_embedding(np.zeros(3, dtype=np.float32), top_k=1)


def test_load_dense_article_ids(tmp_path) -> None:
    path = tmp_path / "dense_article_ids.json"
    path.write_text(json.dumps([1001, "1002"]))
    assert load_dense_article_ids(path) == ["1001", "1002"]

    path.write_text("[]")
    with pytest.raises(ValueError):
        load_dense_article_ids(path)

    with pytest.raises(FileNotFoundError):
        load_dense_article_ids(tmp_path / "missing.json")
