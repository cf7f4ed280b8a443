"""Service configuration loaded from `config.yaml`."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .paths import get_repo_root, resolve_path


def _load_yaml(path: Path) -> dict[str, Any]:
    if not path.exists():
        raise FileNotFoundError(f"Config not found: {path}")
    obj = yaml.safe_load(path.read_text())
    if obj is None:
        return {}
    if not isinstance(obj, dict):
        raise ValueError(f"Expected YAML mapping at {path}, got {type(obj)}")
    return obj


def _section(cfg: dict[str, Any], name: str) -> dict[str, Any]:
    value = cfg.get(name, {})
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ValueError(f"config.yaml section {name!r} must be a mapping, got {type(value)}")
    return value


@dataclass(frozen=True)
class RecommendationConfig:
    """Selection policy knobs for the recommendation pipeline.

    `oversample_factor` and `minimum_floor` trade backend load against how many
    candidates survive exclusion filtering.
    """

    default_count: int = 3
    max_recently_visited: int = 4
    max_sessions: int = 10_000
    oversample_factor: int = 5
    minimum_floor: int = 15
    rrf_k: float = 60.0
    backend_timeout_s: float | None = 10.0
    recency_windows_days: tuple[int, ...] = ()

    def __post_init__(self) -> None:
        if self.default_count < 0:
            raise ValueError("recommendations.default_count must be >= 0")
        if self.max_recently_visited < 0:
            raise ValueError("recommendations.max_recently_visited must be >= 0")
        if self.max_sessions < 1:
            raise ValueError("recommendations.max_sessions must be >= 1")
        if self.oversample_factor < 1:
            raise ValueError("recommendations.oversample_factor must be >= 1")
        if self.minimum_floor < 0:
            raise ValueError("recommendations.minimum_floor must be >= 0")
        if self.rrf_k <= 0:
            raise ValueError("recommendations.rrf_k must be > 0")
        if self.backend_timeout_s is not None and self.backend_timeout_s <= 0:
            raise ValueError("recommendations.backend_timeout_s must be > 0 or null")
        if any(int(d) <= 0 for d in self.recency_windows_days):
            raise ValueError("recommendations.recency_windows_days must contain positive day counts")

    def search_limit(self, limit: int) -> int:
        """Oversampled candidate count requested from each backend."""
        return max(int(limit) * self.oversample_factor, self.minimum_floor)

    @classmethod
    def from_mapping(cls, raw: dict[str, Any]) -> "RecommendationConfig":
        timeout_raw = raw.get("backend_timeout_s", 10.0)
        windows_raw = raw.get("recency_windows_days") or []
        if not isinstance(windows_raw, (list, tuple)):
            raise ValueError("recommendations.recency_windows_days must be a list")
        return cls(
            default_count=int(raw.get("default_count", 3)),
            max_recently_visited=int(raw.get("max_recently_visited", 4)),
            max_sessions=int(raw.get("max_sessions", 10_000)),
            oversample_factor=int(raw.get("oversample_factor", 5)),
            minimum_floor=int(raw.get("minimum_floor", 15)),
            rrf_k=float(raw.get("rrf_k", 60)),
            backend_timeout_s=(None if timeout_raw is None else float(timeout_raw)),
            recency_windows_days=tuple(int(d) for d in windows_raw),
        )


@dataclass(frozen=True)
class DenseConfig:
    enabled: bool = True
    bi_encoder_model: str = "sentence-transformers/all-MiniLM-L6-v2"
    normalize_embeddings: bool = True
    index_type: str = "IndexFlatIP"
    # Prebuilt artifacts; when unset the index is built from the catalog at startup.
    faiss_index: Path | None = None
    article_ids: Path | None = None


@dataclass(frozen=True)
class BM25Config:
    enabled: bool = True
    tokenizer: str = "simple"


@dataclass(frozen=True)
class AppConfig:
    catalog_path: Path
    dense: DenseConfig = field(default_factory=DenseConfig)
    bm25: BM25Config = field(default_factory=BM25Config)
    recommendations: RecommendationConfig = field(default_factory=RecommendationConfig)

    @classmethod
    def from_mapping(cls, cfg: dict[str, Any], *, repo_root: Path) -> "AppConfig":
        catalog_cfg = _section(cfg, "catalog")
        retrieval_cfg = _section(cfg, "retrieval")
        dense_cfg = _section(retrieval_cfg, "dense")
        bm25_cfg = _section(retrieval_cfg, "bm25")

        def _opt_path(value: Any) -> Path | None:
            if value is None or str(value).strip() == "":
                return None
            return resolve_path(repo_root, str(value))

        dense = DenseConfig(
            enabled=bool(dense_cfg.get("enabled", True)),
            bi_encoder_model=str(dense_cfg.get("bi_encoder_model", DenseConfig.bi_encoder_model)),
            normalize_embeddings=bool(dense_cfg.get("normalize_embeddings", True)),
            index_type=str(dense_cfg.get("faiss_index_type", DenseConfig.index_type)),
            faiss_index=_opt_path(dense_cfg.get("faiss_index")),
            article_ids=_opt_path(dense_cfg.get("article_ids")),
        )
        if (dense.faiss_index is None) != (dense.article_ids is None):
            raise ValueError("retrieval.dense.faiss_index and retrieval.dense.article_ids must be set together")

        bm25 = BM25Config(
            enabled=bool(bm25_cfg.get("enabled", True)),
            tokenizer=str(bm25_cfg.get("tokenizer", "simple")),
        )
        if not dense.enabled and not bm25.enabled:
            raise ValueError("config.yaml must enable at least one of retrieval.dense / retrieval.bm25")

        return cls(
            catalog_path=resolve_path(repo_root, str(catalog_cfg.get("path", "data/articles.parquet"))),
            dense=dense,
            bm25=bm25,
            recommendations=RecommendationConfig.from_mapping(_section(cfg, "recommendations")),
        )


def load_config(config_path: Path | None = None) -> AppConfig:
    """Load `AppConfig` from `config_path`, `$CONFIG_PATH`, or `<repo_root>/config.yaml`."""
    repo_root = get_repo_root()
    if config_path is None:
        raw = os.getenv("CONFIG_PATH")
        if raw is None or str(raw).strip() == "":
            config_path = repo_root / "config.yaml"
        else:
            config_path = resolve_path(repo_root, str(raw))
    return AppConfig.from_mapping(_load_yaml(Path(config_path)), repo_root=repo_root)
