"""
Google Play source backed by google-play-scraper.

The scraper is synchronous (urllib based), so every call runs in a worker
thread under an upstream timeout. Play exposes no public chart or developer
listing in this library; listings are built from search queries.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple
from urllib.error import URLError

import google_play_scraper as gps
from google_play_scraper import Sort
from google_play_scraper.exceptions import ExtraHTTPError, NotFoundError as PlayNotFoundError

from storelens.core.collections import CollectionTarget, PlayListing
from storelens.core.normalizer import normalize_app, normalize_apps, normalize_reviews
from storelens.errors import NotFoundError, StoreLensError, UpstreamError
from storelens.models import JsonDict, ReviewPage, Store, UnifiedApp
from storelens.sources.base import StoreAdapter

logger = logging.getLogger(__name__)

SIMILAR_APPS_LIMIT = 10
STAR_FILTERS = (5, 4, 3, 2, 1)


@dataclass(frozen=True)
class PlayReviewCursor:
    """Position in one review batch: an optional star filter plus the scraper's continuation token."""

    score: Optional[int] = None
    continuation: Any = None


class PlayStoreClient:
    """Async facade over the blocking google-play-scraper functions."""

    def __init__(self, timeout: float = 15.0):
        self.timeout = timeout

    async def _call(self, func: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        try:
            return await asyncio.wait_for(asyncio.to_thread(func, *args, **kwargs), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            raise UpstreamError(f"Play Store request timed out after {self.timeout:.0f}s") from e
        except PlayNotFoundError as e:
            raise NotFoundError(str(e) or "App not found") from e
        except ExtraHTTPError as e:
            raise UpstreamError(f"Play Store API error: {e}") from e
        except (URLError, OSError) as e:
            raise UpstreamError(f"Play Store request failed: {e}") from e
        except Exception as e:
            raise UpstreamError(f"Play Store response could not be parsed: {e}") from e

    async def app(self, app_id: str, lang: str, country: str) -> JsonDict:
        return await self._call(gps.app, app_id, lang=lang, country=country)

    async def search(self, query: str, lang: str, country: str, n_hits: int) -> List[JsonDict]:
        results = await self._call(gps.search, query, lang=lang, country=country, n_hits=n_hits)
        return results or []

    async def reviews(self, app_id: str, lang: str, country: str, count: int,
                      filter_score_with: Optional[int] = None,
                      continuation_token: Any = None) -> Tuple[List[JsonDict], Any]:
        result, token = await self._call(
            gps.reviews,
            app_id,
            lang=lang,
            country=country,
            sort=Sort.NEWEST,
            count=count,
            filter_score_with=filter_score_with,
            continuation_token=continuation_token,
        )
        return result or [], token


class PlayStoreAdapter(StoreAdapter):
    """
    Play Store adapter.

    Review fan-out: with at least five batches allowed, each batch follows
    one star filter (5..1), so every batch is an independent newest-first
    stream and their union covers every review. With fewer batches a single
    unfiltered stream is used.
    """

    store = Store.PLAY_STORE

    def __init__(self, client: PlayStoreClient, max_batches: int = 5, page_size: int = 100):
        self.client = client
        self.max_batches = max_batches
        self.page_size = page_size

    async def search(self, term: str, country: str, lang: str, limit: int) -> List[UnifiedApp]:
        term = (term or "").strip()
        if not term:
            return []
        results = await self.client.search(term, lang, country.lower(), limit)
        return normalize_apps(results, self.store)[:limit]

    async def app_detail(self, app_id: str, country: str, lang: str) -> UnifiedApp:
        raw = await self.client.app(app_id, lang, country.lower())
        app = normalize_app(raw, self.store)
        if app is None:
            raise NotFoundError(f"App {app_id} not found in the {country} Play Store")
        return app

    def initial_page_tokens(self) -> Sequence[PlayReviewCursor]:
        if self.max_batches >= len(STAR_FILTERS):
            return [PlayReviewCursor(score=score) for score in STAR_FILTERS]
        return [PlayReviewCursor()]

    async def reviews_page(self, app_id: str, country: str, lang: str, page_token: Any) -> ReviewPage:
        cursor = page_token if isinstance(page_token, PlayReviewCursor) else PlayReviewCursor()
        result, token = await self.client.reviews(
            app_id,
            lang,
            country.lower(),
            count=self.page_size,
            filter_score_with=cursor.score,
            continuation_token=cursor.continuation,
        )
        reviews = normalize_reviews(result, self.store)
        has_next = bool(result) and token is not None and getattr(token, "token", None) is not None
        next_cursor = PlayReviewCursor(score=cursor.score, continuation=token) if has_next else None
        return ReviewPage(reviews=reviews, next_page_token=next_cursor)

    async def similar(self, app_id: str, country: str, lang: str) -> List[UnifiedApp]:
        try:
            raw = await self.client.app(app_id, lang, country.lower())
            genre = raw.get("genre") or raw.get("title")
            results = await self.client.search(str(genre), lang, country.lower(), SIMILAR_APPS_LIMIT + 5)
        except StoreLensError as e:
            logger.warning("Similar apps unavailable for %s: %s", app_id, e)
            return []
        apps = [app for app in normalize_apps(results, self.store) if app.id != app_id]
        return apps[:SIMILAR_APPS_LIMIT]

    async def by_developer(self, developer_id: str, country: str, lang: str, limit: int) -> List[UnifiedApp]:
        try:
            results = await self.client.search(f"pub:{developer_id}", lang, country.lower(), limit)
        except StoreLensError as e:
            logger.warning("Developer %s apps unavailable: %s", developer_id, e)
            return []
        return normalize_apps(results, self.store)[:limit]

    async def by_collection(self, target: CollectionTarget, country: str, lang: str, limit: int) -> List[UnifiedApp]:
        listing = target.value
        if not isinstance(listing, PlayListing):
            raise UpstreamError(f"Unsupported Play Store listing for {target.key}")

        async def run(query: str) -> List[JsonDict]:
            try:
                return await self.client.search(query, lang, country.lower(), limit)
            except NotFoundError:
                return []

        outcomes = await asyncio.gather(*(run(query) for query in listing.queries), return_exceptions=True)
        failures = [outcome for outcome in outcomes if isinstance(outcome, BaseException)]
        if failures and len(failures) == len(outcomes):
            raise failures[0]
        for failure in failures:
            logger.warning("Play Store listing query failed for %s: %s", target.key, failure)

        seen: Dict[str, JsonDict] = {}
        for outcome in outcomes:
            if isinstance(outcome, BaseException):
                continue
            for raw in outcome:
                app_id = raw.get("appId") if isinstance(raw, dict) else None
                if app_id and app_id not in seen and _matches_price(raw, listing.price):
                    seen[app_id] = raw

        if not seen:
            logger.warning("No apps returned for Play Store listing %s", target.key)
        return normalize_apps(seen.values(), self.store)[:limit]


def _matches_price(raw: JsonDict, price: str) -> bool:
    if price == "any":
        return True
    free = raw.get("free")
    if free is None:
        free = not raw.get("price")
    return bool(free) if price == "free" else not free
