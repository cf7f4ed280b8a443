"""Article catalog loading and lookup utilities."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Iterable, Mapping, Optional, Protocol, Sequence

import pandas as pd

from ..errors import ArticleNotFoundError

logger = logging.getLogger(__name__)

REQUIRED_COLUMNS = ("article_id", "title", "content")
OPTIONAL_COLUMNS = ("date", "tag", "fingerprint")


@dataclass(frozen=True)
class Article:
    article_id: str
    title: str
    content: str
    date: Optional[datetime] = None
    tag: str = ""
    fingerprint: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "article_id": self.article_id,
            "title": self.title,
            "content": self.content,
            "date": self.date.isoformat() if self.date is not None else None,
            "tag": self.tag,
            "fingerprint": self.fingerprint,
        }


class ArticleStore(Protocol):
    """Read-only lookup of articles by id."""

    def get_item(self, article_id: str) -> Article:
        """Return the article or raise `ArticleNotFoundError`."""
        ...


def _read_table(path: Path) -> pd.DataFrame:
    suffix = path.suffix.lower()
    if suffix == ".parquet":
        return pd.read_parquet(path)
    if suffix == ".csv":
        return pd.read_csv(path, dtype={"article_id": "string"})
    if suffix == ".jsonl":
        return pd.read_json(path, lines=True, dtype={"article_id": str})
    if suffix == ".json":
        return pd.read_json(path, dtype={"article_id": str})
    raise ValueError(f"Unsupported article catalog format: {path.suffix!r} (expected parquet/csv/json/jsonl)")


def normalize_catalog_frame(df: pd.DataFrame) -> pd.DataFrame:
    """Validate columns and coerce dtypes of a raw article table."""
    missing = [c for c in REQUIRED_COLUMNS if c not in df.columns]
    if missing:
        raise ValueError(f"article catalog missing required columns: {missing}")

    df = df.copy()
    df["article_id"] = df["article_id"].astype("string").str.strip()
    if df["article_id"].isna().any() or (df["article_id"] == "").any():
        raise ValueError("article catalog contains empty article_id values")
    if df["article_id"].duplicated().any():
        raise ValueError("article catalog has duplicate article_id values")

    for col in ("title", "content"):
        df[col] = df[col].astype("string").fillna("")

    if "date" in df.columns:
        # Unparseable dates become NaT rather than failing the whole load.
        df["date"] = pd.to_datetime(df["date"], errors="coerce", utc=True)
    else:
        df["date"] = pd.Series(pd.NaT, index=df.index, dtype="datetime64[ns, UTC]")

    for col in ("tag", "fingerprint"):
        if col in df.columns:
            df[col] = df[col].astype("string").fillna("")
        else:
            df[col] = ""

    return df.reset_index(drop=True)


def load_article_catalog(path: Path) -> pd.DataFrame:
    """Load the article table from parquet/csv/json/jsonl."""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"article catalog not found: {path}")
    return normalize_catalog_frame(_read_table(path))


@dataclass(frozen=True)
class ArticleCatalog:
    """In-memory view of the article table with an id -> row lookup map."""

    df: pd.DataFrame
    article_id_to_row: dict[str, int]

    @classmethod
    def from_frame(cls, df: pd.DataFrame) -> "ArticleCatalog":
        df = normalize_catalog_frame(df)
        ids = df["article_id"].astype(str).tolist()
        return cls(df=df, article_id_to_row={aid: i for i, aid in enumerate(ids)})

    @classmethod
    def from_records(cls, records: Iterable[Mapping[str, Any]]) -> "ArticleCatalog":
        return cls.from_frame(pd.DataFrame(list(records)))

    @classmethod
    def from_path(cls, path: Path) -> "ArticleCatalog":
        """Load a catalog file and build lookup indexes."""
        return cls.from_frame(load_article_catalog(path))

    def __len__(self) -> int:
        return len(self.article_id_to_row)

    @property
    def article_ids(self) -> list[str]:
        return self.df["article_id"].astype(str).tolist()

    @property
    def contents(self) -> list[str]:
        return self.df["content"].astype(str).tolist()

    def has_article(self, article_id: str) -> bool:
        """Return True if the catalog contains `article_id`."""
        return str(article_id) in self.article_id_to_row

    def _article_at(self, row_idx: int) -> Article:
        row = self.df.iloc[int(row_idx)]
        date_val = row.get("date", None)
        date: Optional[datetime] = None
        if date_val is not None and not pd.isna(date_val):
            date = pd.Timestamp(date_val).to_pydatetime()
        return Article(
            article_id=str(row["article_id"]),
            title=str(row["title"]),
            content=str(row["content"]),
            date=date,
            tag=str(row.get("tag", "")),
            fingerprint=str(row.get("fingerprint", "")),
        )

    def get_item(self, article_id: str) -> Article:
        """Return the `Article` for `article_id`."""
        row_idx = self.article_id_to_row.get(str(article_id))
        if row_idx is None:
            raise ArticleNotFoundError(str(article_id))
        return self._article_at(row_idx)

    def fetch_by_ids(
        self,
        article_ids: Sequence[str],
        *,
        target_limit: int,
        windows_days: Sequence[int] = (),
        now: datetime | None = None,
    ) -> list[Article]:
        """Return known articles for `article_ids`, keeping the given order.

        With `windows_days` (e.g. `[2, 3, 7, 14, 30]`) only articles dated within
        the first window holding at least `target_limit` matches are returned;
        the widest window is used when none does. Day windows count today, so a
        2-day window starts at midnight yesterday.
        """
        known = [str(a) for a in article_ids if str(a) in self.article_id_to_row]
        if not known:
            return []
        if not windows_days:
            return [self.get_item(a) for a in known]

        now = now or datetime.now(timezone.utc)
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)
        end = now.replace(hour=23, minute=59, second=59, microsecond=999999)
        rows = [self.article_id_to_row[a] for a in known]
        dates = self.df["date"].iloc[rows].tolist()

        selected: list[str] = []
        for days in windows_days:
            start = (now - timedelta(days=int(days) - 1)).replace(hour=0, minute=0, second=0, microsecond=0)
            selected = [
                aid
                for aid, d in zip(known, dates)
                if d is not None and not pd.isna(d) and pd.Timestamp(start) <= d <= pd.Timestamp(end)
            ]
            logger.debug("recency window days=%d matched=%d target=%d", int(days), len(selected), int(target_limit))
            if len(selected) >= int(target_limit):
                break

        if len(selected) < int(target_limit):
            logger.warning(
                "Could not find %d articles even with the widest recency window (%d days); found %d",
                int(target_limit),
                int(windows_days[-1]),
                len(selected),
            )
        return [self.get_item(a) for a in selected]
