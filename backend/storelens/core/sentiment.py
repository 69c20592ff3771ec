"""
Cached review sentiment analysis.

Results are keyed by app, country and the exact requested date range, and
reused until they are older than the staleness window. Only complete,
schema-valid analyses are written; failures are never cached.
"""
from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Dict, Optional, Sequence, Union

import pydantic

from storelens.config import Settings
from storelens.models import CachedSentiment, DateRange, UnifiedReview
from storelens.schemas import SentimentAnalysisResult
from storelens.services.cache import DocumentStore
from storelens.services.classifier import SentimentClassifier, empty_analysis
from storelens.utils import generate_id, now_utc

logger = logging.getLogger(__name__)

ReviewLoader = Callable[[], Awaitable[Sequence[UnifiedReview]]]
ReviewSource = Union[Sequence[UnifiedReview], ReviewLoader]

WHOLE_HISTORY_KEY = "all"


def sentiment_cache_key(app_id: str, country: str, date_range: Optional[DateRange]) -> str:
    """
    Cache key for one sentiment request.

    A missing range (or one with both sides open) is the whole-history key and
    never collides with a bounded range.
    """
    if date_range is None or (date_range.start is None and date_range.end is None):
        return generate_id(app_id, country.upper())
    start = date_range.start.isoformat() if date_range.start else ""
    end = date_range.end.isoformat() if date_range.end else ""
    return generate_id(app_id, country.upper(), start, end)


class SentimentCache:
    """Get-or-compute front for the sentiment classifier."""

    def __init__(
        self,
        store: DocumentStore,
        classifier: SentimentClassifier,
        staleness: timedelta = timedelta(hours=24),
        clock: Callable[[], datetime] = now_utc,
    ):
        self.store = store
        self.classifier = classifier
        self.staleness = staleness
        self._clock = clock
        self._locks: Dict[str, asyncio.Lock] = {}
        self._lock_users: Dict[str, int] = {}

    @classmethod
    def from_settings(cls, settings: Settings, store: DocumentStore, classifier: SentimentClassifier) -> "SentimentCache":
        return cls(store, classifier, staleness=timedelta(hours=settings.SENTIMENT_STALENESS_HOURS))

    async def get_entry(self, app_id: str, country: str, date_range: Optional[DateRange]) -> Optional[CachedSentiment]:
        """Stored entry for the key regardless of age, or None."""
        document = await self.store.get(sentiment_cache_key(app_id, country, date_range))
        if document is None:
            return None
        try:
            return CachedSentiment.from_document(document)
        except (KeyError, TypeError, ValueError) as e:
            logger.warning("Ignoring unreadable sentiment cache entry for %s/%s: %s", app_id, country, e)
            return None

    async def _fresh(self, app_id: str, country: str, date_range: Optional[DateRange]) -> Optional[SentimentAnalysisResult]:
        entry = await self.get_entry(app_id, country, date_range)
        if entry is None:
            return None
        age = self._clock() - entry.last_updated
        if age >= self.staleness:
            logger.info("Sentiment cache entry for %s/%s is stale (%s old)", app_id, country, age)
            return None
        try:
            return SentimentAnalysisResult.model_validate(entry.analysis)
        except pydantic.ValidationError as e:
            logger.warning("Ignoring invalid cached analysis for %s/%s: %s", app_id, country, e)
            return None

    async def get_or_compute(
        self,
        app_id: str,
        country: str,
        date_range: Optional[DateRange],
        reviews: ReviewSource,
    ) -> SentimentAnalysisResult:
        """
        Return the cached analysis if fresh, otherwise classify and store.

        Args:
            app_id: Store-native app id
            country: Storefront code
            date_range: Requested window, or None for the whole history
            reviews: Reviews to analyse, or an async loader called only on a miss

        Returns:
            SentimentAnalysisResult

        Raises:
            SentimentServiceError: classification failed (nothing is cached)
        """
        cached = await self._fresh(app_id, country, date_range)
        if cached is not None:
            logger.info("Sentiment cache hit for %s/%s", app_id, country)
            return cached

        key = sentiment_cache_key(app_id, country, date_range)
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._lock_users[key] = self._lock_users.get(key, 0) + 1
        try:
            async with lock:
                # Another request may have filled the entry while this one waited
                cached = await self._fresh(app_id, country, date_range)
                if cached is not None:
                    logger.info("Sentiment cache filled by concurrent request for %s/%s", app_id, country)
                    return cached
                return await self._compute(app_id, country, date_range, reviews, key)
        finally:
            # Dropped only once no request holds or waits on it
            self._lock_users[key] -= 1
            if not self._lock_users[key]:
                del self._lock_users[key]
                self._locks.pop(key, None)

    async def _compute(
        self,
        app_id: str,
        country: str,
        date_range: Optional[DateRange],
        reviews: ReviewSource,
        key: str,
    ) -> SentimentAnalysisResult:
        logger.info("Sentiment cache miss for %s/%s", app_id, country)
        review_list = list(await reviews()) if callable(reviews) else list(reviews)
        if not review_list:
            logger.info("No reviews to analyse for %s/%s", app_id, country)
            return empty_analysis()

        analysis = await self.classifier.classify(review_list)
        entry = CachedSentiment(
            app_id=app_id,
            country=country.upper(),
            date_range_key=date_range.key() if date_range else WHOLE_HISTORY_KEY,
            analysis=analysis.model_dump(by_alias=True),
            last_updated=self._clock(),
        )
        await self.store.put(key, entry.to_document())
        return analysis
