from datetime import datetime, timezone

import pytest

from storelens.core.normalizer import (
    build_rating_summary,
    dig,
    estimate_distribution,
    normalize_app,
    normalize_apps,
    normalize_review,
)
from storelens.models import Store

ITUNES_LOOKUP = {
    "trackId": 284882215,
    "trackName": "Facebook",
    "artworkUrl512": "https://is1.mzstatic.com/image/512.png",
    "artworkUrl100": "https://is1.mzstatic.com/image/100.png",
    "artistName": "Meta Platforms, Inc.",
    "artistId": 284882218,
    "artistViewUrl": "https://apps.apple.com/us/developer/meta-platforms-inc/id284882218?uo=4",
    "trackViewUrl": "https://apps.apple.com/us/app/facebook/id284882215?uo=4",
    "description": "Connect with friends.",
    "averageUserRating": 4.0,
    "userRatingCount": 100,
    "price": 0.0,
    "currency": "USD",
    "version": "450.0",
    "primaryGenreName": "Social Networking",
    "primaryGenreId": 6005,
    "genres": ["Social Networking", "Lifestyle"],
    "genreIds": ["6005", "6012"],
    "screenshotUrls": ["https://is1.mzstatic.com/s1.png"],
    "languageCodesISO2A": ["EN", "FR"],
    "minimumOsVersion": "15.0",
}

RSS_CHART_ENTRY = {
    "im:name": {"label": "Threads"},
    "im:image": [
        {"label": "https://is1.mzstatic.com/53x53.png", "attributes": {"height": "53"}},
        {"label": "https://is1.mzstatic.com/100x100.png", "attributes": {"height": "100"}},
    ],
    "im:price": {"label": "Get", "attributes": {"amount": "0.00000", "currency": "USD"}},
    "im:artist": {
        "label": "Instagram, Inc.",
        "attributes": {"href": "https://apps.apple.com/us/developer/instagram-inc/id389801255?uo=2"},
    },
    "id": {"label": "https://apps.apple.com/us/app/threads/id6446901002?uo=2", "attributes": {"im:id": "6446901002"}},
    "link": {"attributes": {"rel": "alternate", "href": "https://apps.apple.com/us/app/threads/id6446901002?uo=2"}},
    "category": {"attributes": {"im:id": "6005", "label": "Social Networking"}},
}

PLAY_DETAIL = {
    "appId": "com.spotify.music",
    "title": "Spotify",
    "icon": "https://play-lh.googleusercontent.com/icon",
    "developer": "Spotify AB",
    "developerId": "Spotify+AB",
    "score": 4.3,
    "ratings": 30,
    "histogram": [3, 2, 5, 8, 12],
    "free": True,
    "price": 0,
    "installs": "1,000,000,000+",
    "genre": "Music & Audio",
    "genreId": "MUSIC_AND_AUDIO",
    "released": "May 27, 2014",
    "updated": 1717000000,
}


def test_dig_follows_lists_and_negative_indices():
    assert dig(RSS_CHART_ENTRY, "im:image.-1.label") == "https://is1.mzstatic.com/100x100.png"
    assert dig(RSS_CHART_ENTRY, "im:image.5.label") is None
    assert dig(RSS_CHART_ENTRY, "missing.path") is None


def test_normalize_itunes_lookup_record():
    app = normalize_app(ITUNES_LOOKUP, Store.APP_STORE)

    assert app.id == "284882215"
    assert app.title == "Facebook"
    assert app.icon == "https://is1.mzstatic.com/image/512.png"
    assert app.developer_id == "284882218"
    assert app.free is True
    assert app.genres == ["Social Networking", "Lifestyle"]
    assert app.required_os_version == "15.0"
    assert app.ratings.total == 100
    assert app.ratings.estimated is True
    assert app.score == 4.0


def test_normalize_rss_chart_entry():
    app = normalize_app(RSS_CHART_ENTRY, Store.APP_STORE)

    assert app.id == "6446901002"
    assert app.title == "Threads"
    assert app.icon == "https://is1.mzstatic.com/100x100.png"
    assert app.developer == "Instagram, Inc."
    assert app.developer_id == "389801255"
    assert app.url == "https://apps.apple.com/us/app/threads/id6446901002?uo=2"
    assert app.genres == ["Social Networking"]
    assert app.genre_ids == ["6005"]
    assert app.price == 0.0


def test_normalize_amp_catalog_shape():
    raw = {
        "id": "389801252",
        "attributes": {
            "name": "Instagram",
            "artistName": "Instagram, Inc.",
            "url": "https://apps.apple.com/us/app/instagram/id389801252",
            "artwork": {"url": "https://is1.mzstatic.com/{w}x{h}.png"},
            "userRating": {"value": 4.7, "ratingCount": 2500},
        },
    }

    app = normalize_app(raw, Store.APP_STORE)

    assert app.title == "Instagram"
    assert app.ratings.total == 2500
    assert app.ratings.average == 4.7


@pytest.mark.parametrize("missing", ["trackName", "artworkUrl512", "artistName", "trackViewUrl"])
def test_app_missing_essential_field_is_dropped(missing):
    raw = dict(ITUNES_LOOKUP)
    raw.pop(missing)
    if missing == "artworkUrl512":
        raw.pop("artworkUrl100")

    assert normalize_app(raw, Store.APP_STORE) is None


def test_normalize_apps_keeps_only_complete_records():
    apps = normalize_apps([ITUNES_LOOKUP, {"trackId": 1}, "junk"], Store.APP_STORE)

    assert [app.id for app in apps] == ["284882215"]


def test_normalize_play_detail_uses_native_histogram():
    app = normalize_app(PLAY_DETAIL, Store.PLAY_STORE)

    assert app.url == "https://play.google.com/store/apps/details?id=com.spotify.music"
    assert app.installs == "1,000,000,000+"
    assert app.ratings.estimated is False
    assert [app.ratings.histogram[star].count for star in range(1, 6)] == [3, 2, 5, 8, 12]
    assert sum(app.ratings.histogram[star].count for star in range(1, 6)) == app.ratings.total
    assert app.ratings.histogram[5].percentage == "40.0%"
    assert app.genres == ["Music & Audio"]
    assert app.updated.startswith("2024-05-29")


def test_normalize_app_store_review_entry():
    raw = {
        "author": {"uri": {"label": "https://itunes.apple.com/us/reviews/id1"}, "name": {"label": "jdoe"}},
        "updated": {"label": "2024-05-01T10:15:00-07:00"},
        "im:rating": {"label": "2"},
        "im:version": {"label": "3.1"},
        "id": {"label": "10987654321"},
        "title": {"label": "Keeps crashing"},
        "content": {"label": "Crashes   every time\nI open it", "attributes": {"type": "text"}},
        "link": {"attributes": {"rel": "related", "href": "https://itunes.apple.com/us/review?id=1"}},
    }

    review = normalize_review(raw, Store.APP_STORE)

    assert review.id == "10987654321"
    assert review.user_name == "jdoe"
    assert review.rating == review.score == 2
    assert review.version == "3.1"
    assert review.updated == datetime(2024, 5, 1, 17, 15, tzinfo=timezone.utc)
    assert review.title == "Keeps crashing"
    assert review.user_url == "https://itunes.apple.com/us/reviews/id1"


def test_normalize_play_review_defaults():
    raw = {
        "reviewId": "gp:AOqpTO",
        "userName": None,
        "content": "Great",
        "score": 5,
        "reviewCreatedVersion": None,
        "at": datetime(2024, 5, 2, 8, 0),
    }

    review = normalize_review(raw, Store.PLAY_STORE)

    assert review.user_name == "Anonymous"
    assert review.version == "N/A"
    assert review.title == ""
    assert review.url == ""
    assert review.updated.tzinfo is not None


@pytest.mark.parametrize("rating", [0, 6, None])
def test_review_with_out_of_range_rating_is_dropped(rating):
    raw = {"reviewId": "x", "content": "meh", "score": rating, "at": datetime(2024, 5, 2)}

    assert normalize_review(raw, Store.PLAY_STORE) is None


def test_estimate_distribution_centres_on_rounded_average():
    assert estimate_distribution(100, 4.0) == [10, 10, 20, 40, 20]
    assert estimate_distribution(100, 3.0) == [10, 20, 40, 20, 10]


def test_estimate_distribution_assigns_remainder_to_peak():
    assert estimate_distribution(1, 5.0) == [0, 0, 0, 0, 1]
    assert sum(estimate_distribution(5, 3.0)) == 5


@pytest.mark.parametrize("total", [0, 1, 2, 7, 99, 1000, 123457])
@pytest.mark.parametrize("average", [0.0, 1.0, 1.4, 2.5, 3.2, 4.49, 4.5, 5.0])
def test_histogram_invariants(total, average):
    summary = build_rating_summary(total, average)

    assert sorted(summary.histogram) == [1, 2, 3, 4, 5]
    for bucket in summary.histogram.values():
        assert bucket.count >= 0
        assert bucket.percentage.endswith("%")

    percentages = [float(bucket.percentage.rstrip("%")) for bucket in summary.histogram.values()]
    if total > 0 and average > 0:
        assert abs(sum(percentages) - 100.0) <= 0.5
    else:
        assert all(bucket.percentage == "0.0%" for bucket in summary.histogram.values())
