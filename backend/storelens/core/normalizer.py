"""
Normalisation of store-native app and review records into the unified schema.

Upstream payloads come in several shapes (iTunes lookup/search results, RSS
chart and review feed entries, AMP catalog resources, google-play-scraper
dicts). Instead of scattering fallback chains through the code, every unified
field is described once per store by a ``FieldRule``: an ordered tuple of
dotted paths tried in turn, a converter, and an optional derivation used when
no path yields a value. Supporting a new upstream shape means adding a path to
a table below.

Paths use ``.`` as separator; integer segments index into lists (``-1`` is
the last element), so ``"im:image.-1.label"`` reads the largest RSS artwork.
"""
from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from storelens.models import (
    HistogramBucket,
    JsonDict,
    RatingSummary,
    Store,
    UnifiedApp,
    UnifiedReview,
)
from storelens.utils import format_percentage, normalize_text, parse_utc_datetime, round_half_up

logger = logging.getLogger(__name__)

ESSENTIAL_APP_FIELDS = ("id", "title", "icon", "developer", "url")

# Bell-curve template used to estimate App Store star distributions
HISTOGRAM_WEIGHTS = (0.1, 0.2, 0.4, 0.2, 0.1)
OUT_OF_TEMPLATE_WEIGHT = 0.1

PLAY_STORE_DETAILS_URL = "https://play.google.com/store/apps/details?id={app_id}"


# ---------------------------------------------------------------------------
# Path lookup and converters
# ---------------------------------------------------------------------------

def dig(raw: Any, path: str) -> Any:
    """Follow a dotted path through nested dicts/lists, returning None on any miss."""
    current = raw
    for segment in path.split("."):
        if isinstance(current, Mapping):
            current = current.get(segment)
        elif isinstance(current, (list, tuple)) and re.fullmatch(r"-?\d+", segment):
            index = int(segment)
            if -len(current) <= index < len(current):
                current = current[index]
            else:
                return None
        else:
            return None
        if current is None:
            return None
    return current


def _passthrough(value: Any) -> Any:
    return value


def _as_str(value: Any) -> Optional[str]:
    if isinstance(value, (Mapping, list, tuple)):
        return None
    if isinstance(value, bool):
        return str(value).lower()
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    text = str(value).strip()
    return text or None


def _as_float(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def _as_int(value: Any) -> Optional[int]:
    number = _as_float(value)
    return int(number) if number is not None else None


def _as_bool(value: Any) -> Optional[bool]:
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.lower() in ("true", "false"):
        return value.lower() == "true"
    return None


def _as_str_list(value: Any) -> Optional[List[str]]:
    if not isinstance(value, (list, tuple)):
        return None
    items: List[str] = []
    for item in value:
        if isinstance(item, Mapping):
            item = item.get("name") or item.get("label")
        text = _as_str(item) if item is not None else None
        if text:
            items.append(text)
    return items


def _as_date_str(value: Any) -> Optional[str]:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return parse_utc_datetime(value).isoformat()
    return _as_str(value)


def _developer_id_from_href(raw: JsonDict) -> Optional[str]:
    href = dig(raw, "im:artist.attributes.href") or dig(raw, "artistViewUrl")
    if isinstance(href, str):
        match = re.search(r"/id(\d+)", href)
        if match:
            return match.group(1)
    return None


def _play_store_url(raw: JsonDict) -> Optional[str]:
    app_id = _as_str(raw.get("appId") or raw.get("id"))
    return PLAY_STORE_DETAILS_URL.format(app_id=app_id) if app_id else None


@dataclass(frozen=True)
class FieldRule:
    paths: Tuple[str, ...]
    convert: Callable[[Any], Any] = _passthrough
    derive: Optional[Callable[[JsonDict], Any]] = None


def extract(raw: JsonDict, rule: FieldRule) -> Any:
    """Return the first usable value for ``rule`` from ``raw``."""
    for path in rule.paths:
        value = dig(raw, path)
        if value is None:
            continue
        value = rule.convert(value)
        if value is not None and value != "":
            return value
    if rule.derive is not None:
        return rule.derive(raw)
    return None


# ---------------------------------------------------------------------------
# Field mapping tables
# ---------------------------------------------------------------------------

APP_FIELDS: Dict[Store, Dict[str, FieldRule]] = {
    Store.APP_STORE: {
        "id": FieldRule(("trackId", "id.attributes.im:id", "attributes.id", "id"), _as_str),
        "title": FieldRule(("trackName", "title", "im:name.label", "attributes.name", "name"), _as_str),
        "icon": FieldRule(
            ("artworkUrl512", "artworkUrl100", "icon", "im:image.-1.label",
             "attributes.artwork.url", "artworkUrl60"),
            _as_str,
        ),
        "developer": FieldRule(
            ("artistName", "developer", "im:artist.label", "attributes.artistName", "artist"), _as_str
        ),
        "developer_id": FieldRule(
            ("artistId", "developerId", "attributes.artistId"), _as_str, _developer_id_from_href
        ),
        "developer_url": FieldRule(
            ("artistViewUrl", "developerUrl", "im:artist.attributes.href", "attributes.artistViewUrl"), _as_str
        ),
        "developer_website": FieldRule(("sellerUrl", "developerWebsite", "attributes.sellerUrl"), _as_str),
        "url": FieldRule(
            ("trackViewUrl", "url", "href", "link.attributes.href", "link.0.attributes.href",
             "links.0.href", "attributes.url"),
            _as_str,
        ),
        "description": FieldRule(("description", "summary.label", "attributes.description"), _as_str),
        "price": FieldRule(("price", "im:price.attributes.amount", "attributes.price"), _as_float),
        "currency": FieldRule(("currency", "im:price.attributes.currency", "attributes.currency"), _as_str),
        "version": FieldRule(("version", "attributes.version"), _as_str),
        "released": FieldRule(
            ("releaseDate", "released", "im:releaseDate.label", "attributes.releaseDate"), _as_date_str
        ),
        "updated": FieldRule(
            ("currentVersionReleaseDate", "updated", "attributes.currentVersionReleaseDate"), _as_date_str
        ),
        "release_notes": FieldRule(("releaseNotes", "attributes.releaseNotes"), _as_str),
        "size": FieldRule(("fileSizeBytes", "size", "attributes.fileSizeBytes"), _as_str),
        "content_rating": FieldRule(
            ("contentAdvisoryRating", "trackContentRating", "contentRating", "attributes.contentAdvisoryRating"),
            _as_str,
        ),
        "required_os_version": FieldRule(
            ("minimumOsVersion", "requiredOsVersion", "attributes.minimumOsVersion"), _as_str
        ),
        "screenshots": FieldRule(("screenshotUrls", "screenshots", "attributes.screenshotUrls"), _as_str_list),
        "ipad_screenshots": FieldRule(
            ("ipadScreenshotUrls", "ipadScreenshots", "attributes.ipadScreenshotUrls"), _as_str_list
        ),
        "genres": FieldRule(("genres", "attributes.genres"), _as_str_list),
        "primary_genre": FieldRule(
            ("primaryGenreName", "genre", "category.attributes.label", "attributes.primaryGenreName"), _as_str
        ),
        "genre_ids": FieldRule(("genreIds", "attributes.genreIds"), _as_str_list),
        "primary_genre_id": FieldRule(
            ("primaryGenreId", "genreId", "category.attributes.im:id", "attributes.primaryGenreId"), _as_str
        ),
        "languages": FieldRule(("languageCodesISO2A", "languages"), _as_str_list),
        "supported_devices": FieldRule(("supportedDevices",), _as_str_list),
        "rating_total": FieldRule(
            ("userRatingCount", "ratingCount", "attributes.userRating.ratingCount", "ratings.total"), _as_int
        ),
        "rating_average": FieldRule(
            ("averageUserRating", "averageRating", "attributes.userRating.value", "ratings.average", "score"),
            _as_float,
        ),
    },
    Store.PLAY_STORE: {
        "id": FieldRule(("appId", "id"), _as_str),
        "title": FieldRule(("title", "name"), _as_str),
        "icon": FieldRule(("icon",), _as_str),
        "developer": FieldRule(("developer",), _as_str),
        "developer_id": FieldRule(("developerId",), _as_str),
        "developer_url": FieldRule(("developerUrl", "developerPageUrl"), _as_str),
        "developer_website": FieldRule(("developerWebsite",), _as_str),
        "url": FieldRule(("url",), _as_str, _play_store_url),
        "description": FieldRule(("description", "descriptionHTML", "summary"), _as_str),
        "price": FieldRule(("price",), _as_float),
        "free": FieldRule(("free",), _as_bool),
        "currency": FieldRule(("currency",), _as_str),
        "version": FieldRule(("version",), _as_str),
        "released": FieldRule(("released",), _as_date_str),
        "updated": FieldRule(("updated", "lastUpdatedOn"), _as_date_str),
        "release_notes": FieldRule(("recentChanges",), _as_str),
        "size": FieldRule(("size",), _as_str),
        "content_rating": FieldRule(("contentRating",), _as_str),
        "android_version": FieldRule(("androidVersion", "minimumAndroidVersion"), _as_str),
        "installs": FieldRule(("installs", "minInstalls"), _as_str),
        "screenshots": FieldRule(("screenshots",), _as_str_list),
        "genres": FieldRule(("categories", "genres"), _as_str_list),
        "primary_genre": FieldRule(("genre",), _as_str),
        "genre_ids": FieldRule(("genreIds",), _as_str_list),
        "primary_genre_id": FieldRule(("genreId",), _as_str),
        "rating_total": FieldRule(("ratings", "reviews"), _as_int),
        "rating_average": FieldRule(("score",), _as_float),
        "histogram": FieldRule(("histogram",)),
    },
}

REVIEW_FIELDS: Dict[Store, Dict[str, FieldRule]] = {
    Store.APP_STORE: {
        "id": FieldRule(("id.label", "id"), _as_str),
        "user_name": FieldRule(("author.name.label", "userName"), _as_str),
        "user_url": FieldRule(("author.uri.label", "userUrl"), _as_str),
        "title": FieldRule(("title.label", "title"), _as_str),
        "text": FieldRule(("content.label", "text", "content"), _as_str),
        "rating": FieldRule(("im:rating.label", "rating", "score"), _as_int),
        "version": FieldRule(("im:version.label", "version"), _as_str),
        "updated": FieldRule(("updated.label", "updated", "date")),
        "url": FieldRule(("link.attributes.href", "url"), _as_str),
    },
    Store.PLAY_STORE: {
        "id": FieldRule(("reviewId", "id"), _as_str),
        "user_name": FieldRule(("userName",), _as_str),
        "text": FieldRule(("content", "text"), _as_str),
        "rating": FieldRule(("score", "rating"), _as_int),
        "version": FieldRule(("reviewCreatedVersion", "appVersion", "version"), _as_str),
        "updated": FieldRule(("at", "date", "updated")),
    },
}


# ---------------------------------------------------------------------------
# Ratings
# ---------------------------------------------------------------------------

def estimate_distribution(total: int, average: float) -> List[int]:
    """
    Estimate per-star counts from a rating total and average.

    The App Store exposes no per-star counts, so a bell-curve template is
    centred on the rounded average and scaled to ``total``. The rounding
    remainder goes to the bucket of the rounded average. The result is an
    estimate, not a measured distribution.

    Args:
        total: Number of ratings
        average: Average star rating in [0, 5]

    Returns:
        Five counts for 1..5 stars
    """
    if total <= 0 or average <= 0:
        return [0, 0, 0, 0, 0]

    peak = min(4, max(0, round_half_up(average) - 1))
    shift = peak - 2
    weights = []
    for i in range(5):
        source = i - shift
        weights.append(HISTOGRAM_WEIGHTS[source] if 0 <= source < 5 else OUT_OF_TEMPLATE_WEIGHT)

    distribution = [round_half_up(total * weight) for weight in weights]
    distribution[peak] += total - sum(distribution)
    return [max(0, count) for count in distribution]


def build_histogram(counts: Sequence[int], total: int) -> Dict[int, HistogramBucket]:
    return {
        star: HistogramBucket(count=count, percentage=format_percentage(count, total))
        for star, count in zip(range(1, 6), counts)
    }


def _native_counts(histogram: Any) -> List[int]:
    """Read a Play Store histogram given as a 5-list or a ``{star: count}`` mapping."""
    counts = [0, 0, 0, 0, 0]
    if isinstance(histogram, (list, tuple)):
        for i, value in enumerate(histogram[:5]):
            counts[i] = max(0, _as_int(value) or 0)
    elif isinstance(histogram, Mapping):
        for star, value in histogram.items():
            index = _as_int(star)
            if index is not None and 1 <= index <= 5:
                counts[index - 1] = max(0, _as_int(value) or 0)
    return counts


def build_rating_summary(total: Optional[int], average: Optional[float], histogram: Any = None) -> RatingSummary:
    """
    Build a rating summary, synthesising the histogram when none is given.

    Args:
        total: Number of ratings (None treated as 0)
        average: Average score (None treated as 0, clamped to [0, 5])
        histogram: Native per-star counts, or None to estimate

    Returns:
        RatingSummary with keys 1..5 always present
    """
    total = max(0, total or 0)
    average = min(5.0, max(0.0, average or 0.0))
    if histogram is None:
        counts = estimate_distribution(total, average)
        estimated = total > 0
    else:
        counts = _native_counts(histogram)
        estimated = False
    return RatingSummary(
        total=total,
        average=average,
        histogram=build_histogram(counts, total),
        estimated=estimated,
    )


# ---------------------------------------------------------------------------
# Apps
# ---------------------------------------------------------------------------

def _with_primary(values: Optional[List[str]], primary: Optional[str]) -> List[str]:
    values = list(values or [])
    if primary and primary not in values:
        values.insert(0, primary)
    return values


def normalize_app(raw: JsonDict, store: Store) -> Optional[UnifiedApp]:
    """
    Map one store-native app record into a UnifiedApp.

    Args:
        raw: Store-native record
        store: Store the record came from

    Returns:
        UnifiedApp, or None when an essential field is missing
    """
    if not isinstance(raw, Mapping):
        logger.warning("Dropping non-object %s app record: %r", store.value, raw)
        return None

    rules = APP_FIELDS[store]
    values = {name: extract(raw, rule) for name, rule in rules.items()}

    missing = [name for name in ESSENTIAL_APP_FIELDS if not values.get(name)]
    if missing:
        logger.warning("Dropping %s app record missing %s (id=%s)", store.value, ", ".join(missing), values.get("id"))
        return None

    if store is Store.PLAY_STORE:
        ratings = build_rating_summary(values["rating_total"], values["rating_average"], values.get("histogram") or [])
    else:
        ratings = build_rating_summary(values["rating_total"], values["rating_average"])

    price = values["price"] or 0.0
    free = values.get("free")
    if free is None:
        free = price == 0

    return UnifiedApp(
        id=values["id"],
        title=values["title"],
        icon=values["icon"],
        developer=values["developer"],
        url=values["url"],
        store=store,
        description=values["description"] or "",
        developer_id=values["developer_id"],
        developer_url=values["developer_url"],
        developer_website=values["developer_website"],
        score=ratings.average,
        ratings=ratings,
        price=price,
        free=free,
        currency=values["currency"] or "USD",
        version=values["version"],
        released=values["released"],
        updated=values["updated"],
        release_notes=values["release_notes"],
        size=values["size"],
        content_rating=values["content_rating"],
        required_os_version=values.get("required_os_version"),
        android_version=values.get("android_version"),
        installs=values.get("installs"),
        screenshots=values["screenshots"] or [],
        ipad_screenshots=values.get("ipad_screenshots") or [],
        genres=_with_primary(values["genres"], values["primary_genre"]),
        genre_ids=_with_primary(values["genre_ids"], values["primary_genre_id"]),
        languages=values.get("languages") or [],
        supported_devices=values.get("supported_devices") or [],
    )


def normalize_apps(raws: Iterable[JsonDict], store: Store) -> List[UnifiedApp]:
    """Normalise a batch of records, silently dropping the incomplete ones (logged)."""
    apps = []
    for raw in raws or []:
        app = normalize_app(raw, store)
        if app is not None:
            apps.append(app)
    return apps


# ---------------------------------------------------------------------------
# Reviews
# ---------------------------------------------------------------------------

def normalize_review(raw: JsonDict, store: Store) -> Optional[UnifiedReview]:
    """
    Map one store-native review into a UnifiedReview.

    Args:
        raw: Store-native review record
        store: Store the review came from

    Returns:
        UnifiedReview, or None when the id is missing or the rating is not 1..5
    """
    if not isinstance(raw, Mapping):
        return None

    rules = REVIEW_FIELDS[store]
    values = {name: extract(raw, rule) for name, rule in rules.items()}

    rating = values["rating"]
    if not values["id"] or rating is None or not 1 <= rating <= 5:
        logger.debug("Dropping %s review with id=%s rating=%s", store.value, values["id"], rating)
        return None

    try:
        updated = parse_utc_datetime(values["updated"])
    except (ValueError, OverflowError):
        logger.debug("Unparseable date %r on %s review %s", values["updated"], store.value, values["id"])
        return None

    app_store = store is Store.APP_STORE
    return UnifiedReview(
        id=values["id"],
        user_name=values["user_name"] or "Anonymous",
        text=values["text"] or "",
        rating=rating,
        updated=updated,
        store=store,
        title=(values.get("title") or "") if app_store else "",
        version=values["version"] or "N/A",
        user_url=(values.get("user_url") or "") if app_store else "",
        url=(values.get("url") or "") if app_store else "",
    )


def normalize_reviews(raws: Iterable[JsonDict], store: Store) -> List[UnifiedReview]:
    reviews = []
    for raw in raws or []:
        review = normalize_review(raw, store)
        if review is not None:
            reviews.append(review)
    return reviews


def review_text_for_prompt(review: UnifiedReview) -> str:
    """Single-line text of a review (title and body) for prompt building."""
    return normalize_text(" ".join(part for part in (review.title, review.text) if part))
