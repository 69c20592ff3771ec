"""
Apple App Store source: iTunes Search/Lookup APIs, iTunes RSS feeds and the
AMP catalog (privacy details).
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional, Sequence

import httpx

from storelens.config import SUPPORTED_COUNTRIES
from storelens.core.collections import CollectionTarget
from storelens.core.normalizer import dig, normalize_app, normalize_apps, normalize_reviews
from storelens.errors import NotFoundError, StoreLensError, UpstreamError
from storelens.models import JsonDict, ReviewPage, Store, UnifiedApp
from storelens.sources.base import StoreAdapter

logger = logging.getLogger(__name__)

SIMILAR_APPS_LIMIT = 10


class AppStoreClient:
    """Thin async client over Apple's public catalog endpoints."""

    SEARCH_URL = "https://itunes.apple.com/search"
    LOOKUP_URL = "https://itunes.apple.com/lookup"
    CHART_URL = "https://itunes.apple.com/{country}/rss/{feed}/limit={limit}/json"
    GENRE_CHART_URL = "https://itunes.apple.com/{country}/rss/{feed}/limit={limit}/genre={genre}/json"
    REVIEWS_URL = "https://itunes.apple.com/{country}/rss/customerreviews/page={page}/id={app_id}/sortby=mostrecent/json"
    AMP_APP_URL = "https://amp-api.apps.apple.com/v1/catalog/{country}/apps/{app_id}"

    def __init__(self, http: httpx.AsyncClient, timeout: float = 15.0, amp_token: str = ""):
        self._http = http
        self._timeout = timeout
        self._amp_token = amp_token

    async def _get_json(self, url: str, params: Optional[Dict[str, Any]] = None,
                        headers: Optional[Dict[str, str]] = None) -> Any:
        try:
            response = await self._http.get(url, params=params, headers=headers, timeout=self._timeout)
        except httpx.TimeoutException as e:
            raise UpstreamError(f"App Store request timed out: {url}") from e
        except httpx.HTTPError as e:
            raise UpstreamError(f"App Store request failed: {type(e).__name__}") from e

        if response.status_code == 404:
            raise NotFoundError("App not found")
        if response.status_code >= 400:
            raise UpstreamError(f"App Store API error (HTTP {response.status_code})")

        try:
            return response.json()
        except ValueError as e:
            raise UpstreamError("App Store returned malformed JSON") from e

    @staticmethod
    def _lang(lang: str, country: str) -> str:
        return f"{lang}_{country}".lower()

    async def search(self, term: str, country: str, lang: str, limit: int) -> List[JsonDict]:
        data = await self._get_json(self.SEARCH_URL, params={
            "term": term,
            "country": country.lower(),
            "lang": self._lang(lang, country),
            "entity": "software",
            "limit": limit,
        })
        return data.get("results", []) if isinstance(data, dict) else []

    async def lookup(self, app_id: str, country: str, lang: str) -> JsonDict:
        data = await self._get_json(self.LOOKUP_URL, params={
            "id": app_id,
            "country": country.lower(),
            "lang": self._lang(lang, country),
        })
        results = data.get("results", []) if isinstance(data, dict) else []
        if not results:
            raise NotFoundError(f"App {app_id} not found in the {country} App Store")
        return results[0]

    async def lookup_developer(self, developer_id: str, country: str, lang: str, limit: int) -> List[JsonDict]:
        data = await self._get_json(self.LOOKUP_URL, params={
            "id": developer_id,
            "entity": "software",
            "country": country.lower(),
            "lang": self._lang(lang, country),
            "limit": limit,
        })
        results = data.get("results", []) if isinstance(data, dict) else []
        if not results:
            raise NotFoundError(f"Developer {developer_id} not found")
        # The first result describes the artist itself
        return [item for item in results if item.get("wrapperType") == "software"]

    async def chart(self, feed: str, country: str, limit: int, genre: Optional[int] = None) -> List[JsonDict]:
        if genre is None:
            url = self.CHART_URL.format(country=country.lower(), feed=feed, limit=limit)
        else:
            url = self.GENRE_CHART_URL.format(country=country.lower(), feed=feed, limit=limit, genre=genre)
        data = await self._get_json(url)
        return _feed_entries(data)

    async def reviews(self, app_id: str, country: str, page: int) -> List[JsonDict]:
        url = self.REVIEWS_URL.format(country=country.lower(), page=page, app_id=app_id)
        data = await self._get_json(url)
        return _feed_entries(data)

    async def privacy(self, app_id: str, country: str, lang: str) -> JsonDict:
        """Privacy details from the AMP catalog; {} when no token is configured."""
        if not self._amp_token:
            return {}
        data = await self._get_json(
            self.AMP_APP_URL.format(country=country.lower(), app_id=app_id),
            params={"platform": "web", "fields": "privacyDetails", "l": lang},
            headers={"Authorization": f"Bearer {self._amp_token}", "Origin": "https://apps.apple.com"},
        )
        details = dig(data, "data.0.attributes.privacyDetails")
        return details if isinstance(details, dict) else {}

    async def is_available(self, app_id: str, country: str) -> bool:
        data = await self._get_json(self.LOOKUP_URL, params={"id": app_id, "country": country.lower()})
        return isinstance(data, dict) and data.get("resultCount", 0) > 0


def _feed_entries(data: Any) -> List[JsonDict]:
    """Entries of an iTunes RSS JSON feed (a lone entry is returned as an object)."""
    entries = dig(data, "feed.entry")
    if entries is None:
        return []
    if isinstance(entries, dict):
        return [entries]
    return [entry for entry in entries if isinstance(entry, dict)]


class AppStoreAdapter(StoreAdapter):
    """App Store adapter. Reviews are paged sequentially by integer page index."""

    store = Store.APP_STORE
    FIRST_PAGE = 1

    def __init__(self, client: AppStoreClient, max_pages: int = 10, check_availability: bool = True):
        self.client = client
        self.max_pages = max_pages
        self.check_availability = check_availability

    async def search(self, term: str, country: str, lang: str, limit: int) -> List[UnifiedApp]:
        term = (term or "").strip()
        if not term:
            return []
        results = await self.client.search(term, country, lang, limit)
        return normalize_apps(results, self.store)

    async def app_detail(self, app_id: str, country: str, lang: str) -> UnifiedApp:
        # Enrichment runs concurrently with the core lookup and never fails the request
        enrichment = asyncio.gather(
            self._privacy(app_id, country, lang),
            self._available_countries(app_id),
        )
        try:
            raw = await self.client.lookup(app_id, country, lang)
        except BaseException:
            enrichment.cancel()
            raise
        privacy, countries = await enrichment

        app = normalize_app(raw, self.store)
        if app is None:
            raise NotFoundError(f"App {app_id} not found in the {country} App Store")
        app.privacy = privacy
        app.available_countries = countries
        return app

    async def _privacy(self, app_id: str, country: str, lang: str) -> JsonDict:
        try:
            return await self.client.privacy(app_id, country, lang)
        except StoreLensError as e:
            logger.warning("Privacy details unavailable for %s: %s", app_id, e)
            return {}

    async def _available_countries(self, app_id: str) -> List[Dict[str, str]]:
        if not self.check_availability:
            return []

        async def check(code: str) -> bool:
            try:
                return await self.client.is_available(app_id, code)
            except StoreLensError as e:
                logger.debug("Availability check failed for %s in %s: %s", app_id, code, e)
                return False

        codes = sorted(SUPPORTED_COUNTRIES)
        flags = await asyncio.gather(*(check(code) for code in codes))
        return [{"code": code, "name": SUPPORTED_COUNTRIES[code]} for code, ok in zip(codes, flags) if ok]

    def initial_page_tokens(self) -> Sequence[int]:
        return [self.FIRST_PAGE]

    async def reviews_page(self, app_id: str, country: str, lang: str, page_token: Any) -> ReviewPage:
        page = int(page_token or self.FIRST_PAGE)
        entries = await self.client.reviews(app_id, country, page)
        reviews = normalize_reviews(entries, self.store)
        has_next = bool(entries) and page < self.max_pages
        return ReviewPage(reviews=reviews, next_page_token=page + 1 if has_next else None)

    async def similar(self, app_id: str, country: str, lang: str) -> List[UnifiedApp]:
        try:
            raw = await self.client.lookup(app_id, country, lang)
            genre = raw.get("primaryGenreId")
            entries = await self.client.chart(
                "topfreeapplications", country, limit=SIMILAR_APPS_LIMIT + 1,
                genre=int(genre) if genre else None,
            )
        except StoreLensError as e:
            logger.warning("Similar apps unavailable for %s: %s", app_id, e)
            return []
        apps = [app for app in normalize_apps(entries, self.store) if app.id != str(app_id)]
        return apps[:SIMILAR_APPS_LIMIT]

    async def by_developer(self, developer_id: str, country: str, lang: str, limit: int) -> List[UnifiedApp]:
        try:
            results = await self.client.lookup_developer(developer_id, country, lang, limit)
        except StoreLensError as e:
            logger.warning("Developer %s apps unavailable: %s", developer_id, e)
            return []
        return normalize_apps(results, self.store)[:limit]

    async def by_collection(self, target: CollectionTarget, country: str, lang: str, limit: int) -> List[UnifiedApp]:
        try:
            entries = await self.client.chart(str(target.value), country, limit, genre=target.category)
        except NotFoundError:
            logger.warning("App Store chart %s (genre=%s) not found", target.value, target.category)
            return []
        if not entries:
            logger.warning("No apps returned from App Store chart %s", target.value)
        return normalize_apps(entries, self.store)[:limit]
