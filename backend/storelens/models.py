"""
File: storelens/models.py
Internal data structures used during fetching, aggregation and caching.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional


JsonDict = Dict[str, Any]


class Store(str, Enum):
    APP_STORE = "appstore"
    PLAY_STORE = "playstore"


@dataclass
class HistogramBucket:
    count: int = 0
    percentage: str = "0.0%"


@dataclass
class RatingSummary:
    """Star rating totals. ``histogram`` always holds the keys 1..5.

    ``estimated`` is True when the distribution was synthesised from the
    average rather than read from the store.
    """

    total: int = 0
    average: float = 0.0
    histogram: Dict[int, HistogramBucket] = field(
        default_factory=lambda: {star: HistogramBucket() for star in range(1, 6)}
    )
    estimated: bool = False


@dataclass
class UnifiedApp:
    """Store-agnostic app record. ``(id, store)`` identifies an app."""

    # Essential fields (records missing any of these are dropped)
    id: str
    title: str
    icon: str
    developer: str
    url: str
    store: Store

    description: str = ""
    developer_id: Optional[str] = None
    developer_url: Optional[str] = None
    developer_website: Optional[str] = None
    score: float = 0.0
    ratings: RatingSummary = field(default_factory=RatingSummary)
    price: float = 0.0
    free: bool = True
    currency: str = "USD"
    version: Optional[str] = None
    released: Optional[str] = None
    updated: Optional[str] = None
    release_notes: Optional[str] = None
    size: Optional[str] = None
    content_rating: Optional[str] = None
    required_os_version: Optional[str] = None
    android_version: Optional[str] = None
    installs: Optional[str] = None
    screenshots: List[str] = field(default_factory=list)
    ipad_screenshots: List[str] = field(default_factory=list)
    genres: List[str] = field(default_factory=list)
    genre_ids: List[str] = field(default_factory=list)
    languages: List[str] = field(default_factory=list)
    supported_devices: List[str] = field(default_factory=list)

    # Enrichment (set by the adapters' app detail call)
    privacy: JsonDict = field(default_factory=dict)
    available_countries: List[Dict[str, str]] = field(default_factory=list)


@dataclass
class UnifiedReview:
    id: str
    user_name: str
    text: str
    rating: int
    updated: datetime
    store: Store
    title: str = ""
    version: str = "N/A"
    user_url: str = ""
    url: str = ""

    @property
    def score(self) -> int:
        return self.rating


@dataclass
class ReviewPage:
    """One page (or batch) of reviews plus the cursor for the next one."""

    reviews: List[UnifiedReview]
    next_page_token: Any = None


@dataclass(frozen=True)
class DateRange:
    """Inclusive ``[start, end]`` window; either side may be open."""

    start: Optional[datetime] = None
    end: Optional[datetime] = None

    def key(self) -> str:
        start = self.start.isoformat() if self.start else ""
        end = self.end.isoformat() if self.end else ""
        return f"{start}..{end}"

    def is_before_start(self, moment: datetime) -> bool:
        return self.start is not None and moment < self.start

    def is_after_end(self, moment: datetime) -> bool:
        return self.end is not None and moment > self.end

    def contains(self, moment: datetime) -> bool:
        return not self.is_before_start(moment) and not self.is_after_end(moment)


@dataclass
class AggregatedReviews:
    """Outcome of one aggregation run."""

    reviews: List[UnifiedReview]
    has_more: bool = False
    pages_fetched: int = 0
    state: str = "DONE"  # "DONE" | "ABORTED"


@dataclass
class CachedSentiment:
    app_id: str
    country: str
    date_range_key: str
    analysis: JsonDict
    last_updated: datetime

    def to_document(self) -> JsonDict:
        return {
            "appId": self.app_id,
            "country": self.country,
            "dateRangeKey": self.date_range_key,
            "analysis": self.analysis,
            "lastUpdated": self.last_updated.isoformat(),
        }

    @classmethod
    def from_document(cls, doc: JsonDict) -> "CachedSentiment":
        return cls(
            app_id=doc["appId"],
            country=doc["country"],
            date_range_key=doc.get("dateRangeKey", ""),
            analysis=doc["analysis"],
            last_updated=datetime.fromisoformat(doc["lastUpdated"]),
        )


__all__ = [
    "AggregatedReviews",
    "CachedSentiment",
    "DateRange",
    "HistogramBucket",
    "JsonDict",
    "RatingSummary",
    "ReviewPage",
    "Store",
    "UnifiedApp",
    "UnifiedReview",
]
