"""
Main FastAPI application and routing layer.
"""
from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Awaitable, Dict, List, Optional, TypeVar

import httpx
from fastapi import Depends, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response

from storelens.config import HTTP_HEADERS, SUPPORTED_COUNTRIES, Settings, get_settings
from storelens.core.aggregator import ReviewAggregator
from storelens.core.collections import CollectionResolver
from storelens.core.sentiment import SentimentCache
from storelens.errors import InternalError, InvalidCollectionError, NotFoundError, StoreLensError, UpstreamError
from storelens.models import DateRange, Store, UnifiedApp, UnifiedReview
from storelens.schemas import App, Country, HealthResponse, Review, ReviewList, SentimentAnalysisResult
from storelens.services.cache import DocumentStore, build_document_store
from storelens.services.classifier import SentimentClassifier
from storelens.services.export import csv_filename, reviews_to_csv
from storelens.sources.base import StoreAdapter
from storelens.sources.factory import adapter_for, build_adapters
from storelens.utils import interleave, now_utc
from storelens.validation import (
    clamp_limit,
    country_param,
    date_range_param,
    get_app_settings,
    lang_param,
    list_limit,
    require,
    review_limit,
    store_param,
    validate_store,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

DISCONNECT_POLL_SECONDS = 0.5


@dataclass
class Services:
    """Long-lived collaborators shared by all requests."""

    adapters: Dict[Store, StoreAdapter]
    resolver: CollectionResolver
    aggregator: ReviewAggregator
    sentiment: SentimentCache
    documents: Optional[DocumentStore] = None
    http: Optional[httpx.AsyncClient] = None

    def adapter(self, store: Store) -> StoreAdapter:
        return adapter_for(self.adapters, store)


def build_services(settings: Settings) -> Services:
    http = httpx.AsyncClient(headers=HTTP_HEADERS, follow_redirects=True, timeout=settings.UPSTREAM_TIMEOUT_SECONDS)
    documents = build_document_store(settings)
    classifier = SentimentClassifier.from_settings(settings)
    return Services(
        adapters=build_adapters(http, settings),
        resolver=CollectionResolver(),
        aggregator=ReviewAggregator.from_settings(settings),
        sentiment=SentimentCache.from_settings(settings, documents, classifier),
        documents=documents,
        http=http,
    )


async def run_request(request: Request, work: Awaitable[T]) -> T:
    """
    Run a handler's upstream work under the request's cancellation signal.

    The work is cancelled when the client disconnects or when
    REQUEST_TIMEOUT_SECONDS elapses; the timeout surfaces as UpstreamError.
    """
    settings: Settings = request.app.state.settings
    task = asyncio.ensure_future(work)

    async def watch_disconnect() -> None:
        while not task.done():
            if await request.is_disconnected():
                logger.info("Client disconnected, cancelling %s", request.url.path)
                task.cancel()
                return
            await asyncio.sleep(DISCONNECT_POLL_SECONDS)

    watcher = asyncio.ensure_future(watch_disconnect())
    try:
        return await asyncio.wait_for(task, timeout=settings.REQUEST_TIMEOUT_SECONDS)
    except asyncio.TimeoutError:
        logger.warning("Request %s timed out after %.0fs", request.url.path, settings.REQUEST_TIMEOUT_SECONDS)
        raise UpstreamError("Request timed out") from None
    finally:
        watcher.cancel()


def get_services(request: Request) -> Services:
    return request.app.state.services


def to_apps(apps: List[UnifiedApp]) -> List[App]:
    return [App.model_validate(app) for app in apps]


def to_reviews(reviews: List[UnifiedReview]) -> List[Review]:
    return [Review.model_validate(review) for review in reviews]


async def search_stores(services: Services, stores: List[Store], term: str, country: str, lang: str,
                        limit: int) -> List[UnifiedApp]:
    """
    Search one or both stores concurrently and interleave the results.

    A failing store is logged and skipped; if every store fails the first
    error propagates.
    """
    outcomes = await asyncio.gather(
        *(services.adapter(store).search(term, country, lang, limit) for store in stores),
        return_exceptions=True,
    )
    results: List[List[UnifiedApp]] = []
    errors: List[BaseException] = []
    for store, outcome in zip(stores, outcomes):
        if isinstance(outcome, BaseException):
            if not isinstance(outcome, Exception):
                raise outcome
            logger.warning("Search failed on %s for %r: %s", store.value, term, outcome)
            errors.append(outcome)
        else:
            results.append(outcome)
    if errors and not results:
        raise errors[0]
    return interleave(*results)


def create_app(settings: Optional[Settings] = None, services: Optional[Services] = None) -> FastAPI:
    """
    Build the API application.

    Args:
        settings: Configuration (defaults to the environment)
        services: Prebuilt collaborators; built (and closed) by the lifespan hook when None

    Returns:
        FastAPI application
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = app.state.services is None
        if owned:
            app.state.services = build_services(settings)
            logger.info("Store clients ready (cache backend: %s)", settings.CACHE_BACKEND)
        try:
            yield
        finally:
            if owned:
                built: Services = app.state.services
                if built.http is not None:
                    await built.http.aclose()
                if built.documents is not None:
                    await built.documents.close()

    app = FastAPI(
        title="StoreLens API",
        version="0.1.0",
        description="Unified App Store and Google Play catalog, reviews and review sentiment",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.services = services

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ALLOW_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_error_handlers(app)
    register_routes(app)
    return app


def register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(StoreLensError)
    async def storelens_error_handler(request: Request, exc: StoreLensError):
        body: dict = {"error": exc.message}
        if isinstance(exc, InvalidCollectionError):
            body["validTypes"] = exc.valid_keys
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
        return JSONResponse(status_code=exc.status_code, content=body)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        details = "; ".join(
            f"{'.'.join(str(part) for part in error.get('loc', ()))}: {error.get('msg', '')}"
            for error in exc.errors()
        )
        return JSONResponse(status_code=400, content={"error": f"Invalid request: {details}"})

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        error = InternalError("Internal server error")
        return JSONResponse(status_code=error.status_code, content={"error": error.message})


def register_routes(app: FastAPI) -> None:

    @app.get("/health", response_model=HealthResponse)
    async def health_check():
        """Health check endpoint."""
        return HealthResponse(status="ok", as_of=now_utc().isoformat(), service="storelens-api")

    @app.get("/countries", response_model=List[Country])
    async def list_countries():
        return [Country(code=code, name=name) for code, name in sorted(SUPPORTED_COUNTRIES.items())]

    @app.get("/search", response_model=List[App])
    async def search_apps(
        request: Request,
        term: Optional[str] = Query(None, description="Search term"),
        store: Optional[str] = Query(None, description="Restrict to one store"),
        country: str = Depends(country_param),
        lang: str = Depends(lang_param),
        settings: Settings = Depends(get_app_settings),
        services: Services = Depends(get_services),
    ):
        """Search both stores (or one) and interleave the results."""
        term = require(term, "term")
        stores = [validate_store(store)] if store else list(Store)
        apps = await run_request(request, search_stores(services, stores, term, country, lang, settings.SEARCH_LIMIT))
        return to_apps(apps)

    @app.get("/app/{store}/{app_id}", response_model=App)
    async def get_app(
        request: Request,
        app_id: str,
        store: Store = Depends(store_param),
        country: str = Depends(country_param),
        lang: str = Depends(lang_param),
        services: Services = Depends(get_services),
    ):
        app_record = await run_request(request, services.adapter(store).app_detail(app_id, country, lang))
        return App.model_validate(app_record)

    @app.get("/collection/{store}/{collection_type}", response_model=List[App])
    async def get_collection(
        request: Request,
        collection_type: str,
        store: Store = Depends(store_param),
        country: str = Depends(country_param),
        lang: str = Depends(lang_param),
        limit: int = Depends(list_limit),
        services: Services = Depends(get_services),
    ):
        target = services.resolver.resolve_collection(store, collection_type)
        apps = await run_request(request, services.adapter(store).by_collection(target, country, lang, limit))
        return to_apps(apps)

    @app.get("/category-apps/{store}", response_model=List[App])
    async def get_category_apps(
        request: Request,
        category_id: Optional[str] = Query(None, alias="categoryId"),
        store: Store = Depends(store_param),
        country: str = Depends(country_param),
        lang: str = Depends(lang_param),
        limit: int = Depends(list_limit),
        services: Services = Depends(get_services),
    ):
        target = services.resolver.resolve_category(store, category_id)
        apps = await run_request(request, services.adapter(store).by_category(target, country, lang, limit))
        return to_apps(apps)

    @app.get("/developer-apps/{store}/{developer_id}", response_model=List[App])
    async def get_developer_apps(
        request: Request,
        developer_id: str,
        store: Store = Depends(store_param),
        country: str = Depends(country_param),
        lang: str = Depends(lang_param),
        settings: Settings = Depends(get_app_settings),
        services: Services = Depends(get_services),
    ):
        apps = await run_request(
            request, services.adapter(store).by_developer(developer_id, country, lang, settings.MAX_LIST_LIMIT)
        )
        return to_apps(apps)

    @app.get("/similar/{store}/{app_id}", response_model=List[App])
    async def get_similar_apps(
        request: Request,
        app_id: str,
        store: Store = Depends(store_param),
        country: str = Depends(country_param),
        lang: str = Depends(lang_param),
        services: Services = Depends(get_services),
    ):
        apps = await run_request(request, services.adapter(store).similar(app_id, country, lang))
        return to_apps(apps)

    @app.get("/reviews/{store}/{app_id}", response_model=List[Review])
    async def get_reviews(
        request: Request,
        app_id: str,
        store: Store = Depends(store_param),
        country: str = Depends(country_param),
        lang: str = Depends(lang_param),
        limit: int = Depends(review_limit),
        services: Services = Depends(get_services),
    ):
        result = await run_request(
            request, services.aggregator.collect(services.adapter(store), app_id, country, lang, limit)
        )
        return to_reviews(result.reviews)

    @app.get("/reviews/{store}/{app_id}/all", response_model=ReviewList)
    async def get_all_reviews(
        request: Request,
        app_id: str,
        limit: Optional[int] = Query(None, description="Maximum number of reviews"),
        store: Store = Depends(store_param),
        country: str = Depends(country_param),
        lang: str = Depends(lang_param),
        settings: Settings = Depends(get_app_settings),
        services: Services = Depends(get_services),
    ):
        """Reviews plus whether the upstream history was exhausted."""
        limit = clamp_limit(limit, settings.MAX_REVIEW_LIMIT, settings.MAX_REVIEW_LIMIT)
        result = await run_request(
            request, services.aggregator.collect(services.adapter(store), app_id, country, lang, limit)
        )
        return ReviewList(reviews=to_reviews(result.reviews), total=len(result.reviews), has_more=result.has_more)

    @app.get(
        "/reviews/{store}/{app_id}/sentiment",
        response_model=SentimentAnalysisResult,
        response_model_by_alias=True,
    )
    async def get_review_sentiment(
        request: Request,
        app_id: str,
        limit: Optional[int] = Query(None, description="Maximum number of reviews to analyse"),
        store: Store = Depends(store_param),
        country: str = Depends(country_param),
        lang: str = Depends(lang_param),
        date_range: Optional[DateRange] = Depends(date_range_param),
        settings: Settings = Depends(get_app_settings),
        services: Services = Depends(get_services),
    ):
        """
        Sentiment of the app's reviews, optionally restricted to [startDate, endDate].

        Reviews are only fetched when no fresh cached analysis exists.
        """
        limit = clamp_limit(limit, settings.DEFAULT_SENTIMENT_REVIEW_LIMIT, settings.MAX_REVIEW_LIMIT)
        adapter = services.adapter(store)

        async def load_reviews() -> List[UnifiedReview]:
            result = await services.aggregator.collect(adapter, app_id, country, lang, limit, date_range)
            return result.reviews

        return await run_request(
            request, services.sentiment.get_or_compute(app_id, country, date_range, load_reviews)
        )

    @app.get("/reviews/{store}/{app_id}/csv")
    async def export_reviews_csv(
        request: Request,
        app_id: str,
        store: Store = Depends(store_param),
        country: str = Depends(country_param),
        lang: str = Depends(lang_param),
        settings: Settings = Depends(get_app_settings),
        services: Services = Depends(get_services),
    ):
        """Download reviews as CSV; 404 when no review could be fetched."""
        try:
            result = await run_request(
                request,
                services.aggregator.collect(services.adapter(store), app_id, country, lang, settings.CSV_REVIEW_LIMIT),
            )
            reviews = result.reviews
        except (UpstreamError, NotFoundError) as e:
            logger.warning("CSV export fetch failed for %s/%s: %s", store.value, app_id, e)
            reviews = []

        if not reviews:
            raise NotFoundError("No reviews found")

        return Response(
            content=reviews_to_csv(reviews),
            media_type="text/csv",
            headers={"Content-Disposition": f"attachment; filename={csv_filename(app_id, country)}"},
        )


logging.basicConfig(level=get_settings().LOG_LEVEL, format=get_settings().LOG_FORMAT)

app = create_app()


if __name__ == "__main__":
    # For development
    import uvicorn
    uvicorn.run("storelens.main:app", host="0.0.0.0", port=get_settings().PORT, reload=True)
