"""Dense semantic retrieval (bi-encoder embeddings + FAISS index)."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from threading import Lock
from typing import Any, List, Optional, TYPE_CHECKING

import numpy as np

if TYPE_CHECKING:  # pragma: no cover
    import faiss  # type: ignore[import-not-found]
    from sentence_transformers import SentenceTransformer  # type: ignore[import-not-found]

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DenseRetrievalResult:
    article_ids: List[str]
    scores: List[float]


def load_bi_encoder(model_name: str, device: Optional[str] = None) -> "SentenceTransformer":
    """Load a SentenceTransformer bi-encoder."""
    try:
        from sentence_transformers import SentenceTransformer  # type: ignore[import-not-found]
    except Exception as exc:  # pragma: no cover
        raise ImportError("`sentence-transformers` is required for dense retrieval.") from exc

    model = SentenceTransformer(model_name, device=device)
    try:
        model.eval()  # type: ignore[attr-defined]
    except Exception:
        pass
    return model


def embed_texts(
    model: Any,
    texts: list[str],
    *,
    batch_size: int,
    normalize_embeddings: bool,
) -> np.ndarray:
    """Embed texts into a float32 matrix aligned with input ordering."""
    embeddings = model.encode(
        texts,
        batch_size=batch_size,
        convert_to_numpy=True,
        show_progress_bar=False,
    )
    embeddings = np.asarray(embeddings, dtype=np.float32)

    if normalize_embeddings:
        norms = np.linalg.norm(embeddings, axis=1, keepdims=True)
        norms[norms == 0.0] = 1.0
        embeddings = embeddings / norms

    return embeddings.astype(np.float32, copy=False)


def build_faiss_index(embeddings: np.ndarray, index_type: str = "IndexFlatIP") -> "faiss.Index":
    """Build a FAISS index and add embeddings (row-aligned)."""
    try:
        import faiss  # type: ignore[import-not-found]
    except Exception as exc:  # pragma: no cover
        raise ImportError("`faiss-cpu` is required to build a dense index.") from exc

    if embeddings.ndim != 2:
        raise ValueError(f"Expected 2D embeddings array, got shape={embeddings.shape}")

    dim = int(embeddings.shape[1])
    if index_type == "IndexFlatIP":
        index = faiss.IndexFlatIP(dim)
    elif index_type == "IndexFlatL2":
        index = faiss.IndexFlatL2(dim)
    else:
        try:
            index = faiss.index_factory(dim, index_type)
        except Exception as exc:
            raise ValueError(f"Unsupported FAISS index type: {index_type}") from exc

    index.add(embeddings)
    return index


class DenseRetriever:
    """Online dense retriever using a FAISS index and a row-aligned article id mapping."""

    def __init__(
        self,
        *,
        index: "faiss.Index",
        article_ids: list[str],
        model: Any,
        normalize_embeddings: bool = True,
    ) -> None:
        if int(index.ntotal) != len(article_ids):
            raise ValueError(f"FAISS/article_ids mismatch: ntotal={index.ntotal} ids={len(article_ids)}")
        self.index = index
        self.article_ids = [str(x) for x in article_ids]
        self.model = model
        self.normalize_embeddings = bool(normalize_embeddings)
        # SentenceTransformer.encode is not safe to call from several threads at once.
        self._embed_lock = Lock()

    @property
    def dim(self) -> int:
        """Embedding dimension expected by the FAISS index."""
        return int(getattr(self.index, "d"))

    @classmethod
    def from_artifacts(
        cls,
        *,
        faiss_index_path: Path,
        article_ids_path: Path,
        model: Any,
        normalize_embeddings: bool = True,
    ) -> "DenseRetriever":
        """Load a FAISS index + row mapping built offline."""
        index = load_faiss_index(faiss_index_path)
        article_ids = load_dense_article_ids(article_ids_path)
        return cls(index=index, article_ids=article_ids, model=model, normalize_embeddings=normalize_embeddings)

    @classmethod
    def from_corpus(
        cls,
        article_ids: list[str],
        texts: list[str],
        *,
        model: Any,
        normalize_embeddings: bool = True,
        index_type: str = "IndexFlatIP",
        batch_size: int = 64,
    ) -> "DenseRetriever":
        """Embed `texts` and build an in-memory index aligned with `article_ids`."""
        if len(article_ids) != len(texts):
            raise ValueError(f"article_ids/texts length mismatch: {len(article_ids)} vs {len(texts)}")
        embeddings = embed_texts(model, texts, batch_size=int(batch_size), normalize_embeddings=normalize_embeddings)
        index = build_faiss_index(embeddings, index_type)
        return cls(index=index, article_ids=article_ids, model=model, normalize_embeddings=normalize_embeddings)

    def search_embedding(self, query_embedding: np.ndarray, *, top_k: int) -> DenseRetrievalResult:
        """Search with a single query embedding of shape (d,) or (1, d)."""
        if top_k <= 0:
            raise ValueError("top_k must be > 0")

        q = np.asarray(query_embedding, dtype=np.float32)
        if q.ndim == 1:
            q = q.reshape(1, -1)
        if q.ndim != 2 or q.shape[0] != 1:
            raise ValueError(f"Expected query embedding shape (d,) or (1,d); got {q.shape}")
        if int(q.shape[1]) != self.dim:
            raise ValueError(f"Query dim mismatch: got={q.shape[1]} expected={self.dim}")

        scores, row_ids = self.index.search(q, int(top_k))
        rows = [int(r) for r in row_ids[0].tolist() if int(r) >= 0]
        article_ids = [self.article_ids[r] for r in rows]
        out_scores = [float(s) for s in scores[0][: len(article_ids)].tolist()]
        return DenseRetrievalResult(article_ids=article_ids, scores=out_scores)

    def search(self, query_text: str, *, top_k: int) -> DenseRetrievalResult:
        """Embed `query_text` and search the FAISS index."""
        if query_text is None or str(query_text).strip() == "":
            raise ValueError("query_text must be non-empty")

        with self._embed_lock:
            q = embed_texts(self.model, [str(query_text)], batch_size=1, normalize_embeddings=self.normalize_embeddings)
        return self.search_embedding(q, top_k=int(top_k))


def load_faiss_index(path: Path) -> "faiss.Index":
    """Load a FAISS index from disk."""
    try:
        import faiss  # type: ignore[import-not-found]
    except Exception as exc:  # pragma: no cover
        raise ImportError("`faiss-cpu` is required for dense retrieval.") from exc

    if not Path(path).exists():
        raise FileNotFoundError(f"FAISS index not found: {path}")
    return faiss.read_index(str(path))


def load_dense_article_ids(path: Path) -> list[str]:
    """Load the row-aligned article id mapping saved alongside a FAISS index."""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"dense article id mapping not found: {path}")
    raw = json.loads(path.read_text())
    if not isinstance(raw, list) or not raw:
        raise ValueError(f"{path.name} must contain a non-empty JSON list")
    article_ids = [str(x) for x in raw]

    if len(article_ids) != len(set(article_ids)):
        # Not fatal for correctness, but usually indicates a broken mapping.
        logger.warning("%s contains duplicate article ids (len=%d unique=%d)", path.name, len(article_ids), len(set(article_ids)))
    return article_ids
