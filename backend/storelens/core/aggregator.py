"""
Review aggregation across differently paginated stores.

The App Store only reveals page N+1 after page N, so it is walked with a
single sequential cursor. Play Store reviews are fetched as several
independent batches in parallel; each batch walks its own continuation chain
and the batches are merged, deduplicated and re-sorted afterwards.
"""
from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Tuple

from storelens.config import Settings
from storelens.errors import StoreLensError, ValidationError
from storelens.models import AggregatedReviews, DateRange, Store, UnifiedReview
from storelens.sources.base import StoreAdapter

logger = logging.getLogger(__name__)

DONE = "DONE"
ABORTED = "ABORTED"


@dataclass
class CursorWalk:
    """Outcome of following one cursor chain."""

    reviews: List[UnifiedReview] = field(default_factory=list)
    pages_fetched: int = 0
    has_more: bool = False
    state: str = DONE


async def walk_cursor(
    adapter: StoreAdapter,
    app_id: str,
    country: str,
    lang: str,
    cursor: Any,
    limit: int,
    max_pages: int,
    date_range: Optional[DateRange] = None,
    first_page_fatal: bool = True,
) -> CursorWalk:
    """
    Follow a cursor chain until ``limit`` kept reviews, ``max_pages`` pages,
    an empty page, the end of the chain, or a review older than the range start.

    Args:
        adapter: Store adapter serving the pages
        app_id: Store-native app id
        country: Storefront code
        lang: Language code
        cursor: Starting page token
        limit: Number of kept reviews after which paging stops
        max_pages: Upper bound on upstream calls
        date_range: Optional inclusive window; pages are newest first
        first_page_fatal: Re-raise a failure of the first page

    Returns:
        CursorWalk with the kept reviews in upstream order
    """
    walk = CursorWalk()
    exhausted = False

    while cursor is not None and len(walk.reviews) < limit and walk.pages_fetched < max_pages:
        try:
            page = await adapter.reviews_page(app_id, country, lang, cursor)
        except StoreLensError as e:
            if walk.pages_fetched == 0 and first_page_fatal:
                raise
            logger.warning(
                "Review page %d failed for %s/%s, keeping %d reviews: %s",
                walk.pages_fetched + 1, adapter.store.value, app_id, len(walk.reviews), e,
            )
            walk.state = ABORTED
            break

        walk.pages_fetched += 1
        if not page.reviews:
            exhausted = True
            break

        reached_start = False
        for review in page.reviews:
            if date_range is not None:
                if date_range.is_before_start(review.updated):
                    reached_start = True
                    break
                if date_range.is_after_end(review.updated):
                    continue
            walk.reviews.append(review)

        cursor = page.next_page_token
        if reached_start:
            exhausted = True
            break

    walk.has_more = not exhausted and cursor is not None
    return walk


def finalize(reviews: List[UnifiedReview], limit: int, has_more: bool) -> Tuple[List[UnifiedReview], bool]:
    if len(reviews) > limit:
        return reviews[:limit], True
    return reviews, has_more


class PageFetchStrategy(ABC):
    """How the pages of one store are scheduled."""

    @abstractmethod
    async def collect(
        self,
        adapter: StoreAdapter,
        app_id: str,
        country: str,
        lang: str,
        limit: int,
        date_range: Optional[DateRange] = None,
    ) -> AggregatedReviews:
        """Fetch up to ``limit`` reviews, newest first."""


class SequentialCursorStrategy(PageFetchStrategy):
    """One cursor, one page at a time, at most ``max_pages`` upstream calls."""

    def __init__(self, max_pages: int = 10):
        self.max_pages = max_pages

    async def collect(self, adapter, app_id, country, lang, limit, date_range=None):
        tokens = list(adapter.initial_page_tokens())
        walk = await walk_cursor(
            adapter, app_id, country, lang, tokens[0] if tokens else None,
            limit=limit, max_pages=self.max_pages, date_range=date_range,
        )
        ordered = sorted(walk.reviews, key=lambda review: review.updated, reverse=True)
        reviews, has_more = finalize(ordered, limit, walk.has_more)
        return AggregatedReviews(reviews, has_more=has_more, pages_fetched=walk.pages_fetched, state=walk.state)


class ParallelTokenFanoutStrategy(PageFetchStrategy):
    """
    Walk up to ``max_batches`` independent cursors concurrently.

    Only the first batch is fatal on failure; any other failing batch is
    logged and contributes what it collected. Results are deduplicated by
    review id, stably sorted newest first, date filtered and truncated.
    """

    def __init__(self, max_batches: int = 5, max_pages_per_batch: int = 10):
        self.max_batches = max_batches
        self.max_pages_per_batch = max_pages_per_batch

    async def collect(self, adapter, app_id, country, lang, limit, date_range=None):
        tokens = list(adapter.initial_page_tokens())[: self.max_batches]
        tasks = [
            asyncio.ensure_future(
                walk_cursor(
                    adapter, app_id, country, lang, token,
                    limit=limit, max_pages=self.max_pages_per_batch,
                    date_range=date_range, first_page_fatal=index == 0,
                )
            )
            for index, token in enumerate(tokens)
        ]
        try:
            walks = await asyncio.gather(*tasks)
        except BaseException:
            for task in tasks:
                task.cancel()
            raise

        merged: Dict[str, UnifiedReview] = {}
        for walk in walks:
            for review in walk.reviews:
                merged.setdefault(review.id, review)

        ordered = sorted(merged.values(), key=lambda review: review.updated, reverse=True)
        if date_range is not None:
            ordered = [review for review in ordered if date_range.contains(review.updated)]

        reviews, has_more = finalize(ordered, limit, any(walk.has_more for walk in walks))
        state = ABORTED if any(walk.state == ABORTED for walk in walks) else DONE
        return AggregatedReviews(
            reviews,
            has_more=has_more,
            pages_fetched=sum(walk.pages_fetched for walk in walks),
            state=state,
        )


class ReviewAggregator:
    """Selects the page strategy for a store and runs it."""

    def __init__(self, strategies: Mapping[Store, PageFetchStrategy]):
        self.strategies = dict(strategies)

    @classmethod
    def from_settings(cls, settings: Settings) -> "ReviewAggregator":
        return cls({
            Store.APP_STORE: SequentialCursorStrategy(max_pages=settings.MAX_APP_STORE_PAGES),
            Store.PLAY_STORE: ParallelTokenFanoutStrategy(max_batches=settings.MAX_PLAY_STORE_BATCHES),
        })

    async def collect(
        self,
        adapter: StoreAdapter,
        app_id: str,
        country: str,
        lang: str,
        limit: int,
        date_range: Optional[DateRange] = None,
    ) -> AggregatedReviews:
        """
        Gather up to ``limit`` reviews for an app, newest first.

        Fewer reviews than requested is a normal outcome. Only a failure of
        the first page (or first batch) propagates.

        Raises:
            ValidationError: no strategy for the adapter's store
            UpstreamError, NotFoundError: the first page failed
        """
        if limit <= 0:
            return AggregatedReviews([], has_more=False)

        strategy = self.strategies.get(adapter.store)
        if strategy is None:
            raise ValidationError(f"Unsupported store: {adapter.store}")

        result = await strategy.collect(adapter, app_id, country, lang, limit, date_range)
        logger.info(
            "Collected %d %s reviews for %s (%s, %d pages, has_more=%s)",
            len(result.reviews), adapter.store.value, app_id, result.state, result.pages_fetched, result.has_more,
        )
        return result
