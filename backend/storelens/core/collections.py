"""
Resolution of logical collection and category identifiers to store-native listings.

The two stores use disjoint vocabularies: App Store keys name iTunes RSS
charts (iPhone, iPad and Mac), Play Store keys name the Play top charts.
Category identifiers are App Store genre ids (integers) or Play Store
category enum names.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple, Union

from storelens.errors import InvalidCollectionError, ValidationError
from storelens.models import Store

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PlayListing:
    """Play Store chart approximated by search queries and a price filter."""

    queries: Tuple[str, ...]
    price: str = "any"  # "free" | "paid" | "any"


@dataclass(frozen=True)
class CollectionTarget:
    """A validated, store-native listing request."""

    store: Store
    key: str
    value: Union[str, PlayListing]
    category: Optional[Union[int, str]] = field(default=None)


# Logical key -> iTunes RSS feed name
APP_STORE_COLLECTIONS: Dict[str, str] = {
    # iOS
    "topfreeapplications": "topfreeapplications",
    "topgrossingapplications": "topgrossingapplications",
    "toppaidapplications": "toppaidapplications",
    "newapplications": "newapplications",
    "newfreeapplications": "newfreeapplications",
    "newpaidapplications": "newpaidapplications",
    # iPad
    "topfreeipadapplications": "topfreeipadapplications",
    "topgrossingipadapplications": "topgrossingipadapplications",
    "toppaidipadapplications": "toppaidipadapplications",
    # Mac
    "topmacapplications": "topmacapps",
    "topfreemacapplications": "topfreemacapps",
    "topgrossingmacapplications": "topgrossingmacapps",
    "toppaidmacapplications": "toppaidmacapps",
}

PLAY_STORE_COLLECTIONS: Dict[str, PlayListing] = {
    "topselling_free": PlayListing(
        ("top free apps", "most downloaded apps", "popular free apps", "trending apps"), price="free"
    ),
    "topselling_paid": PlayListing(("top paid apps", "best paid apps", "premium apps"), price="paid"),
    "topgrossing": PlayListing(("top grossing apps", "popular apps", "best apps")),
}

# App Store genre ids accepted by the category listing
APP_STORE_GENRES: Dict[int, str] = {
    6000: "Business",
    6001: "Weather",
    6002: "Utilities",
    6003: "Travel",
    6004: "Sports",
    6005: "Social Networking",
    6006: "Reference",
    6007: "Productivity",
    6008: "Photo & Video",
    6009: "News",
    6010: "Navigation",
    6011: "Music",
    6012: "Lifestyle",
    6013: "Health & Fitness",
    6014: "Games",
    6015: "Finance",
    6016: "Entertainment",
    6017: "Education",
    6018: "Books",
    6020: "Medical",
    6021: "Magazines & Newspapers",
    6022: "Catalogs",
    6023: "Food & Drink",
    6024: "Shopping",
    6025: "Stickers",
    6026: "Developer Tools",
    6027: "Graphics & Design",
    7001: "Action",
    7002: "Adventure",
    7003: "Casual",
    7004: "Board",
    7005: "Card",
    7006: "Casino",
    7009: "Family",
    7011: "Music",
    7012: "Puzzle",
    7013: "Racing",
    7014: "Role Playing",
    7015: "Simulation",
    7016: "Sports",
    7017: "Strategy",
    7018: "Trivia",
    7019: "Word",
}

PLAY_STORE_CATEGORIES = (
    "APPLICATION", "ANDROID_WEAR", "ART_AND_DESIGN", "AUTO_AND_VEHICLES", "BEAUTY",
    "BOOKS_AND_REFERENCE", "BUSINESS", "COMICS", "COMMUNICATION", "DATING", "EDUCATION",
    "ENTERTAINMENT", "EVENTS", "FINANCE", "FOOD_AND_DRINK", "HEALTH_AND_FITNESS",
    "HOUSE_AND_HOME", "LIBRARIES_AND_DEMO", "LIFESTYLE", "MAPS_AND_NAVIGATION", "MEDICAL",
    "MUSIC_AND_AUDIO", "NEWS_AND_MAGAZINES", "PARENTING", "PERSONALIZATION", "PHOTOGRAPHY",
    "PRODUCTIVITY", "SHOPPING", "SOCIAL", "SPORTS", "TOOLS", "TRAVEL_AND_LOCAL",
    "VIDEO_PLAYERS", "WATCH_FACE", "WEATHER", "GAME", "GAME_ACTION", "GAME_ADVENTURE",
    "GAME_ARCADE", "GAME_BOARD", "GAME_CARD", "GAME_CASINO", "GAME_CASUAL",
    "GAME_EDUCATIONAL", "GAME_MUSIC", "GAME_PUZZLE", "GAME_RACING", "GAME_ROLE_PLAYING",
    "GAME_SIMULATION", "GAME_SPORTS", "GAME_STRATEGY", "GAME_TRIVIA", "GAME_WORD", "FAMILY",
)

# Hand-tuned queries for categories whose enum name makes a poor search term
PLAY_CATEGORY_QUERIES: Dict[str, Tuple[str, ...]] = {
    "APPLICATION": ("top apps", "popular apps"),
    "GAME": ("popular games", "top free games", "best mobile games"),
    "SOCIAL": ("popular social media apps", "top social apps"),
    "ENTERTAINMENT": ("popular streaming apps", "entertainment apps"),
    "HEALTH_AND_FITNESS": ("fitness apps", "workout apps", "health apps"),
    "FINANCE": ("finance apps", "budget apps", "banking apps"),
    "VIDEO_PLAYERS": ("video player apps", "video editor apps"),
    "FAMILY": ("family apps", "kids apps"),
}

DEFAULT_CATEGORY_COLLECTION = {
    Store.APP_STORE: "topfreeapplications",
    Store.PLAY_STORE: "topselling_free",
}


def _play_category_queries(category: str) -> Tuple[str, ...]:
    if category in PLAY_CATEGORY_QUERIES:
        return PLAY_CATEGORY_QUERIES[category]
    words = category.lower().replace("_", " ")
    if words.startswith("game "):
        return (f"{words[5:]} games", f"best {words[5:]} games")
    return (f"{words} apps", f"best {words} apps")


class CollectionResolver:
    """Validates collection/category requests and maps them to native listings."""

    def valid_collection_keys(self, store: Store) -> Tuple[str, ...]:
        if store is Store.APP_STORE:
            return tuple(APP_STORE_COLLECTIONS)
        return tuple(PLAY_STORE_COLLECTIONS)

    def resolve_collection(self, store: Store, key: str) -> CollectionTarget:
        """
        Map a logical collection key to the store-native chart.

        Args:
            store: Target store
            key: Logical key, e.g. "topfreeapplications" or "topselling_free"

        Returns:
            CollectionTarget for the store

        Raises:
            InvalidCollectionError: key unknown for this store (lists valid keys)
        """
        key = (key or "").strip()
        table = APP_STORE_COLLECTIONS if store is Store.APP_STORE else PLAY_STORE_COLLECTIONS
        if key not in table:
            valid = self.valid_collection_keys(store)
            logger.warning("Invalid %s collection type %r", store.value, key)
            raise InvalidCollectionError(
                f"Invalid {store.value} collection type: {key}. Valid types: {', '.join(valid)}",
                valid,
            )
        return CollectionTarget(store=store, key=key, value=table[key])

    def resolve_category(self, store: Store, category_id: Optional[str]) -> CollectionTarget:
        """
        Validate a category id for the store and map it to a listing.

        App Store categories are integer genre ids; Play Store categories are
        enum names such as ``"GAME_PUZZLE"`` (case-insensitive).

        Raises:
            ValidationError: missing or malformed category id
        """
        raw = (category_id or "").strip()
        if not raw:
            raise ValidationError("categoryId parameter is required")

        if store is Store.APP_STORE:
            try:
                genre = int(raw)
            except ValueError:
                raise ValidationError(f"App Store categoryId must be an integer genre id, got {raw!r}") from None
            if genre not in APP_STORE_GENRES:
                raise ValidationError(f"Unknown App Store categoryId: {genre}")
            target = self.resolve_collection(store, DEFAULT_CATEGORY_COLLECTION[store])
            return CollectionTarget(store=store, key=target.key, value=target.value, category=genre)

        category = raw.upper()
        if category not in PLAY_STORE_CATEGORIES:
            raise ValidationError(f"Unknown Play Store categoryId: {raw}")
        chart = PLAY_STORE_COLLECTIONS[DEFAULT_CATEGORY_COLLECTION[store]]
        listing = PlayListing(queries=_play_category_queries(category), price=chart.price)
        return CollectionTarget(
            store=store, key=DEFAULT_CATEGORY_COLLECTION[store], value=listing, category=category
        )
