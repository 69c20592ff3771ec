import csv
import io

import pytest
from fastapi.testclient import TestClient

from fakes import FakeAdapter, FakeClassifier, make_app, make_review, sequential_pages
from storelens.config import Settings
from storelens.core.aggregator import ReviewAggregator
from storelens.core.collections import CollectionResolver
from storelens.core.sentiment import SentimentCache
from storelens.errors import SentimentServiceError, UpstreamError
from storelens.main import Services, create_app
from storelens.models import ReviewPage, Store
from storelens.services.cache import InMemoryDocumentStore


@pytest.fixture
def settings():
    return Settings(MAX_REVIEW_LIMIT=200, DEFAULT_REVIEW_LIMIT=20, MAX_LIST_LIMIT=100)


@pytest.fixture
def app_store():
    reviews = [make_review(f"a{d}", d) for d in range(30, 0, -1)]
    return FakeAdapter(
        store=Store.APP_STORE,
        apps=[make_app("1"), make_app("2"), make_app("3")],
        pages=sequential_pages(reviews[:10], reviews[10:20], reviews[20:]),
    )


@pytest.fixture
def play_store():
    reviews = [make_review(f"p{d}", d, store=Store.PLAY_STORE) for d in range(12, 0, -1)]
    return FakeAdapter(
        store=Store.PLAY_STORE,
        apps=[make_app("com.one", Store.PLAY_STORE), make_app("com.two", Store.PLAY_STORE)],
        initial_tokens=["batch"],
        pages={"batch": ReviewPage(reviews)},
    )


@pytest.fixture
def classifier():
    return FakeClassifier()


@pytest.fixture
def client(settings, app_store, play_store, classifier):
    services = Services(
        adapters={Store.APP_STORE: app_store, Store.PLAY_STORE: play_store},
        resolver=CollectionResolver(),
        aggregator=ReviewAggregator.from_settings(settings),
        sentiment=SentimentCache(InMemoryDocumentStore(), classifier),
    )
    with TestClient(create_app(settings, services)) as test_client:
        yield test_client


def test_health(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_countries(client):
    countries = client.get("/countries").json()

    assert {"code": "US", "name": "United States"} in countries
    assert len(countries) == 31


def test_search_requires_term(client, app_store):
    response = client.get("/search")

    assert response.status_code == 400
    assert "term" in response.json()["error"]
    assert app_store.search_calls == []


def test_search_interleaves_stores(client):
    response = client.get("/search", params={"term": "music"})

    assert response.status_code == 200
    assert [(a["id"], a["store"]) for a in response.json()] == [
        ("1", "appstore"), ("com.one", "playstore"),
        ("2", "appstore"), ("com.two", "playstore"),
        ("3", "appstore"),
    ]


def test_search_keeps_results_when_one_store_fails(client, play_store):
    play_store.search_error = UpstreamError("blocked")

    response = client.get("/search", params={"term": "music"})

    assert response.status_code == 200
    assert [a["id"] for a in response.json()] == ["1", "2", "3"]


def test_search_fails_when_every_store_fails(client, app_store, play_store):
    app_store.search_error = UpstreamError("down")
    play_store.search_error = UpstreamError("blocked")

    response = client.get("/search", params={"term": "music"})

    assert response.status_code == 502
    assert response.json() == {"error": "down"}


def test_search_single_store(client, play_store):
    response = client.get("/search", params={"term": "music", "store": "appstore"})

    assert [a["store"] for a in response.json()] == ["appstore"] * 3
    assert play_store.search_calls == []


@pytest.mark.parametrize("path", ["/app/appstore/1?country=XX", "/reviews/appstore/1?country=zz"])
def test_unsupported_country_is_rejected(client, path, app_store):
    response = client.get(path)

    assert response.status_code == 400
    assert "country" in response.json()["error"]
    assert app_store.page_calls == []


def test_unknown_store_is_rejected(client):
    response = client.get("/app/windowsstore/1")

    assert response.status_code == 400
    assert "store" in response.json()["error"].lower()


def test_app_detail_uses_camel_case(client):
    body = client.get("/app/appstore/2", params={"country": "gb"}).json()

    assert body["id"] == "2"
    assert sorted(body["ratings"]["histogram"]) == ["1", "2", "3", "4", "5"]
    assert "availableCountries" in body
    assert "developerId" in body


def test_missing_app_is_404(client):
    response = client.get("/app/playstore/com.missing")

    assert response.status_code == 404
    assert response.json() == {"error": "App com.missing not found"}


def test_invalid_collection_lists_valid_types(client):
    response = client.get("/collection/appstore/topgrossing")

    assert response.status_code == 400
    body = response.json()
    assert "topfreeapplications" in body["validTypes"]
    assert "topgrossing" in body["error"]


def test_collection_limit_is_clamped(client, app_store):
    response = client.get("/collection/appstore/topfreeapplications", params={"limit": 500})

    assert response.status_code == 200
    assert app_store.collection_calls[0].value == "topfreeapplications"


def test_category_requires_category_id(client):
    response = client.get("/category-apps/playstore")

    assert response.status_code == 400


def test_category_apps(client, play_store):
    response = client.get("/category-apps/playstore", params={"categoryId": "game_action"})

    assert response.status_code == 200
    assert play_store.collection_calls[0].category == "GAME_ACTION"


def test_reviews_default_limit(client):
    reviews = client.get("/reviews/appstore/1").json()

    assert len(reviews) == 20
    assert reviews[0]["id"] == "a30"
    assert reviews[0]["score"] == reviews[0]["rating"]
    assert "userName" in reviews[0]


def test_reviews_negative_limit_rejected(client):
    assert client.get("/reviews/appstore/1", params={"limit": -1}).status_code == 400


def test_reviews_non_numeric_limit_rejected(client):
    response = client.get("/reviews/appstore/1", params={"limit": "ten"})

    assert response.status_code == 400
    assert "error" in response.json()


def test_first_page_failure_is_502(client, app_store):
    app_store.pages[1] = UpstreamError("App Store API error (HTTP 503)")

    response = client.get("/reviews/appstore/1")

    assert response.status_code == 502
    assert response.json() == {"error": "App Store API error (HTTP 503)"}


def test_all_reviews_reports_exhaustion(client):
    body = client.get("/reviews/appstore/1/all").json()

    assert body["total"] == 30
    assert body["hasMore"] is False

    limited = client.get("/reviews/appstore/1/all", params={"limit": 5}).json()
    assert limited["total"] == 5
    assert limited["hasMore"] is True


def test_sentiment_is_cached(client, classifier):
    first = client.get("/reviews/playstore/com.one/sentiment")
    second = client.get("/reviews/playstore/com.one/sentiment")

    assert first.status_code == 200
    assert first.json() == second.json()
    assert set(first.json()) == {"SentimentDistribution", "TopIssues", "Insights"}
    assert len(classifier.calls) == 1


def test_sentiment_date_range_filters_reviews(client, classifier):
    response = client.get(
        "/reviews/appstore/1/sentiment",
        params={"startDate": "2024-03-21", "endDate": "2024-03-25"},
    )

    assert response.status_code == 200
    assert [r.id for r in classifier.calls[0]] == ["a24", "a23", "a22", "a21", "a20"]


def test_sentiment_rejects_inverted_range(client, classifier):
    response = client.get(
        "/reviews/appstore/1/sentiment",
        params={"startDate": "2024-05-01", "endDate": "2024-04-01"},
    )

    assert response.status_code == 400
    assert classifier.calls == []


def test_sentiment_service_failure_is_502(client, classifier):
    classifier.error = SentimentServiceError("Sentiment service error: rate limited")

    response = client.get("/reviews/appstore/1/sentiment")

    assert response.status_code == 502
    assert response.json() == {"error": "Sentiment service error: rate limited"}


def test_csv_export(client):
    response = client.get("/reviews/playstore/com.one/csv", params={"country": "de"})

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/csv")
    assert response.headers["content-disposition"] == "attachment; filename=reviews-com.one-de.csv"
    rows = list(csv.DictReader(io.StringIO(response.text)))
    assert len(rows) == 12
    assert list(rows[0]) == ["id", "userName", "title", "text", "rating", "version", "updated", "store"]
    assert rows[0]["store"] == "playstore"


def test_csv_without_reviews_is_404(client, play_store):
    play_store.pages["batch"] = UpstreamError("blocked")

    response = client.get("/reviews/playstore/com.one/csv")

    assert response.status_code == 404
    assert response.json() == {"error": "No reviews found"}


def test_unexpected_error_is_500_without_details(settings, app_store, play_store, classifier):
    app_store.detail_error = RuntimeError("secret stack detail")
    services = Services(
        adapters={Store.APP_STORE: app_store, Store.PLAY_STORE: play_store},
        resolver=CollectionResolver(),
        aggregator=ReviewAggregator.from_settings(settings),
        sentiment=SentimentCache(InMemoryDocumentStore(), classifier),
    )
    with TestClient(create_app(settings, services), raise_server_exceptions=False) as test_client:
        response = test_client.get("/app/appstore/1")

    assert response.status_code == 500
    assert response.json() == {"error": "Internal server error"}


def build_client(settings, app_store, play_store, classifier):
    services = Services(
        adapters={Store.APP_STORE: app_store, Store.PLAY_STORE: play_store},
        resolver=CollectionResolver(),
        aggregator=ReviewAggregator.from_settings(settings),
        sentiment=SentimentCache(InMemoryDocumentStore(), classifier),
    )
    return TestClient(create_app(settings, services))


def test_slow_review_fetch_times_out_as_502(app_store, play_store, classifier):
    settings = Settings(REQUEST_TIMEOUT_SECONDS=0.05)
    app_store.page_delay = 1.0
    client = build_client(settings, app_store, play_store, classifier)

    with client:
        response = client.get("/reviews/appstore/1")

    assert response.status_code == 502
    assert response.json() == {"error": "Request timed out"}


def test_timed_out_sentiment_is_not_cached(play_store, app_store):
    settings = Settings(REQUEST_TIMEOUT_SECONDS=0.05)
    classifier = FakeClassifier(delay=1.0)
    client = build_client(settings, app_store, play_store, classifier)

    with client:
        response = client.get("/reviews/appstore/1/sentiment")

        assert response.status_code == 502
        assert response.json() == {"error": "Request timed out"}
        classifier.delay = 0.0
        retried = client.get("/reviews/appstore/1/sentiment")

    assert retried.status_code == 200
    assert len(classifier.calls) == 2
