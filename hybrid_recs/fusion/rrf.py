"""Reciprocal Rank Fusion (RRF) for merging a dense and a sparse ranking."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Dict, Generic, List, Optional, Sequence, TypeVar

T = TypeVar("T")

DEFAULT_RRF_K = 60.0


def article_key(item: Any) -> str:
    """Default identity for ranked items: their `article_id`."""
    return str(item.article_id)


@dataclass
class ScoredEntry(Generic[T]):
    item: T
    score: float
    dense_rank: Optional[int] = None
    sparse_rank: Optional[int] = None


def _check_k(k: float) -> None:
    if not k > 0:
        raise ValueError(f"RRF constant k must be > 0, got {k!r}")


def score_reciprocal_rank(
    dense: Sequence[T],
    sparse: Sequence[T],
    k: float = DEFAULT_RRF_K,
    *,
    key: Callable[[T], str] = article_key,
) -> List[ScoredEntry[T]]:
    """Score items of both lists with RRF and return the entries sorted by score desc.

    Parameters
    ----------
    dense, sparse:
        Ranked lists, best->worst. Only positions matter, not underlying scores.
    k:
        RRF constant. Larger values flatten the influence of rank position.
    key:
        Maps an item to its identifier. Items sharing an id are merged.

    Returns
    -------
    List[ScoredEntry]
        One entry per distinct id. Ties keep the order in which ids were first
        seen scanning `dense` then `sparse`.
    """
    _check_k(k)

    entries: Dict[str, ScoredEntry[T]] = {}
    for rank, item in enumerate(dense, start=1):
        item_id = key(item)
        existing = entries.get(item_id)
        if existing is None:
            entries[item_id] = ScoredEntry(item=item, score=1.0 / (k + rank), dense_rank=rank)
        elif existing.dense_rank is None:
            existing.score += 1.0 / (k + rank)
            existing.dense_rank = rank
        # Repeats inside one list keep their best (first) rank only.

    for rank, item in enumerate(sparse, start=1):
        item_id = key(item)
        existing = entries.get(item_id)
        if existing is None:
            entries[item_id] = ScoredEntry(item=item, score=1.0 / (k + rank), sparse_rank=rank)
        elif existing.sparse_rank is None:
            existing.score += 1.0 / (k + rank)
            existing.sparse_rank = rank

    # sorted() is stable, so equal scores keep first-encounter order.
    return sorted(entries.values(), key=lambda e: e.score, reverse=True)


def reciprocal_rank_fusion(
    dense: Sequence[T],
    sparse: Sequence[T],
    k: float = DEFAULT_RRF_K,
    *,
    key: Callable[[T], str] = article_key,
) -> List[T]:
    """Fuse a dense and a sparse ranking with Reciprocal Rank Fusion.

    Each item scores `sum(1 / (k + rank))` over the lists it appears in (rank is
    1-indexed). Items present in a single list are not penalized for the absence.
    """
    return [entry.item for entry in score_reciprocal_rank(dense, sparse, k, key=key)]


def reciprocal_rank_fusion_with_fallback(
    dense: Sequence[T],
    sparse: Sequence[T],
    k: float = DEFAULT_RRF_K,
    *,
    key: Callable[[T], str] = article_key,
) -> List[T]:
    """RRF that tolerates lists of different lengths.

    - If one list is empty, the other is returned unchanged.
    - Otherwise RRF runs over the first `min(len(dense), len(sparse))` items of
      each list, and the tail of the longer list is appended in its original
      order, skipping ids already present.
    """
    _check_k(k)

    min_length = min(len(dense), len(sparse))
    if min_length == 0:
        return list(dense) if len(dense) > 0 else list(sparse)

    fused = reciprocal_rank_fusion(dense[:min_length], sparse[:min_length], k, key=key)
    if len(dense) == len(sparse):
        return fused

    longer = dense if len(dense) > len(sparse) else sparse
    included = {key(item) for item in fused}
    for item in longer[min_length:]:
        item_id = key(item)
        if item_id in included:
            continue
        fused.append(item)
        included.add(item_id)
    return fused
