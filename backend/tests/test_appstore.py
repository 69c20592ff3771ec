import httpx
import pytest

from storelens.core.collections import CollectionResolver
from storelens.errors import NotFoundError, UpstreamError
from storelens.models import Store
from storelens.sources.appstore import AppStoreAdapter, AppStoreClient


def lookup_result(track_id, name="Example", genre_id=6014):
    return {
        "wrapperType": "software",
        "trackId": track_id,
        "trackName": name,
        "artworkUrl512": f"https://is1.mzstatic.com/{track_id}.png",
        "artistName": "Example Studio",
        "artistId": 42,
        "trackViewUrl": f"https://apps.apple.com/us/app/id{track_id}",
        "averageUserRating": 4.5,
        "userRatingCount": 10,
        "price": 0.0,
        "primaryGenreId": genre_id,
        "primaryGenreName": "Games",
    }


def chart_entry(app_id, name):
    return {
        "im:name": {"label": name},
        "im:image": [{"label": f"https://is1.mzstatic.com/{app_id}-100.png"}],
        "im:artist": {"label": "Someone", "attributes": {"href": "https://apps.apple.com/us/developer/id7"}},
        "id": {"label": f"https://apps.apple.com/us/app/id{app_id}", "attributes": {"im:id": str(app_id)}},
        "link": {"attributes": {"href": f"https://apps.apple.com/us/app/id{app_id}"}},
    }


def review_entry(review_id, rating=4, updated="2024-05-01T10:00:00-07:00"):
    return {
        "id": {"label": str(review_id)},
        "author": {"name": {"label": f"user{review_id}"}, "uri": {"label": "https://itunes.apple.com/u"}},
        "im:rating": {"label": str(rating)},
        "im:version": {"label": "1.0"},
        "title": {"label": "Title"},
        "content": {"label": "Body"},
        "updated": {"label": updated},
    }


class Upstream:
    """Routes MockTransport requests to canned JSON bodies."""

    def __init__(self):
        self.requests = []
        self.routes = {}

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        for prefix, reply in self.routes.items():
            if request.url.path.startswith(prefix):
                if isinstance(reply, httpx.Response):
                    return reply
                if isinstance(reply, Exception):
                    raise reply
                if callable(reply):
                    return reply(request)
                return httpx.Response(200, json=reply)
        return httpx.Response(404)


@pytest.fixture
def upstream():
    return Upstream()


@pytest.fixture
async def adapter(upstream):
    async with httpx.AsyncClient(transport=httpx.MockTransport(upstream.handle)) as http:
        yield AppStoreAdapter(AppStoreClient(http, timeout=5), max_pages=3, check_availability=False)


async def test_search_normalizes_results(adapter, upstream):
    upstream.routes["/search"] = {"resultCount": 2, "results": [lookup_result(1, "One"), {"trackId": 2}]}

    apps = await adapter.search("game", "US", "en", 10)

    assert [app.id for app in apps] == ["1"]
    params = upstream.requests[0].url.params
    assert params["entity"] == "software"
    assert params["country"] == "us"
    assert params["term"] == "game"


async def test_blank_search_term_skips_upstream(adapter, upstream):
    assert await adapter.search("   ", "US", "en", 10) == []
    assert upstream.requests == []


async def test_app_detail_without_enrichment(adapter, upstream):
    upstream.routes["/lookup"] = {"resultCount": 1, "results": [lookup_result(99, "Ninety Nine")]}

    app = await adapter.app_detail("99", "US", "en")

    assert app.title == "Ninety Nine"
    assert app.store is Store.APP_STORE
    assert app.privacy == {}
    assert app.available_countries == []
    assert app.ratings.estimated is True


async def test_unknown_app_is_not_found(adapter, upstream):
    upstream.routes["/lookup"] = {"resultCount": 0, "results": []}

    with pytest.raises(NotFoundError):
        await adapter.app_detail("1", "US", "en")


async def test_server_error_maps_to_upstream_error(adapter, upstream):
    upstream.routes["/lookup"] = httpx.Response(503)

    with pytest.raises(UpstreamError):
        await adapter.app_detail("1", "US", "en")


async def test_transport_failure_maps_to_upstream_error(adapter, upstream):
    upstream.routes["/lookup"] = httpx.ConnectError("connection refused")

    with pytest.raises(UpstreamError):
        await adapter.app_detail("1", "US", "en")


async def test_available_countries_enrichment(upstream):
    def lookup(request):
        country = request.url.params.get("country")
        count = 1 if country in ("us", "fr") else 0
        return httpx.Response(200, json={"resultCount": count, "results": [lookup_result(5)] * count})

    upstream.routes["/lookup"] = lookup
    async with httpx.AsyncClient(transport=httpx.MockTransport(upstream.handle)) as http:
        adapter = AppStoreAdapter(AppStoreClient(http), check_availability=True)
        app = await adapter.app_detail("5", "US", "en")

    assert app.available_countries == [{"code": "FR", "name": "France"}, {"code": "US", "name": "United States"}]


async def test_reviews_page_cursor(adapter, upstream):
    upstream.routes["/us/rss/customerreviews/page=1/"] = {
        "feed": {"entry": [review_entry(1), review_entry(2, rating=1)]}
    }

    page = await adapter.reviews_page("123", "US", "en", 1)

    assert [r.id for r in page.reviews] == ["1", "2"]
    assert page.next_page_token == 2
    assert "sortby=mostrecent" in str(upstream.requests[0].url)


async def test_single_review_entry_and_last_page(adapter, upstream):
    upstream.routes["/us/rss/customerreviews/page=3/"] = {"feed": {"entry": review_entry(7)}}

    page = await adapter.reviews_page("123", "US", "en", 3)

    assert [r.id for r in page.reviews] == ["7"]
    assert page.next_page_token is None


async def test_empty_feed_ends_paging(adapter, upstream):
    upstream.routes["/us/rss/customerreviews/"] = {"feed": {"author": {}}}

    page = await adapter.reviews_page("123", "US", "en", 1)

    assert page.reviews == []
    assert page.next_page_token is None


async def test_similar_excludes_the_app_itself(adapter, upstream):
    upstream.routes["/lookup"] = {"resultCount": 1, "results": [lookup_result(1, genre_id=6014)]}
    upstream.routes["/us/rss/topfreeapplications/"] = {
        "feed": {"entry": [chart_entry(1, "Self"), chart_entry(2, "Other"), chart_entry(3, "Another")]}
    }

    apps = await adapter.similar("1", "US", "en")

    assert [app.id for app in apps] == ["2", "3"]
    assert "/genre=6014/" in upstream.requests[1].url.path


async def test_similar_is_empty_for_unknown_app(adapter, upstream):
    upstream.routes["/lookup"] = {"resultCount": 0, "results": []}

    assert await adapter.similar("1", "US", "en") == []


async def test_developer_apps_skip_artist_record(adapter, upstream):
    artist = {"wrapperType": "artist", "artistId": 42, "artistName": "Example Studio"}
    upstream.routes["/lookup"] = {"resultCount": 3, "results": [artist, lookup_result(1), lookup_result(2)]}

    apps = await adapter.by_developer("42", "US", "en", 10)

    assert [app.id for app in apps] == ["1", "2"]


async def test_category_listing_uses_genre_feed(adapter, upstream):
    upstream.routes["/gb/rss/topfreeapplications/limit=5/genre=6014/json"] = {
        "feed": {"entry": [chart_entry(10, "Ten")]}
    }
    target = CollectionResolver().resolve_category(Store.APP_STORE, "6014")

    apps = await adapter.by_category(target, "GB", "en", 5)

    assert [app.id for app in apps] == ["10"]


async def test_read_timeout_maps_to_upstream_error(adapter, upstream):
    upstream.routes["/lookup"] = httpx.ReadTimeout("timed out")

    with pytest.raises(UpstreamError, match="timed out"):
        await adapter.app_detail("1", "US", "en")


async def test_review_page_timeout_maps_to_upstream_error(adapter, upstream):
    upstream.routes["/us/rss/customerreviews/"] = httpx.ConnectTimeout("timed out")

    with pytest.raises(UpstreamError):
        await adapter.reviews_page("123", "US", "en", 1)
