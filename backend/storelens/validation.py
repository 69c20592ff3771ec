"""
Request validation: store, country, limits and date ranges.

Every check runs before any upstream call. The plain functions are used by
the FastAPI dependencies at the bottom of the module.
"""
from __future__ import annotations

import re
from datetime import timedelta
from typing import Optional

from fastapi import Depends, Query, Request

from storelens.config import DEFAULT_COUNTRY, DEFAULT_LANG, SUPPORTED_COUNTRIES, Settings
from storelens.errors import ValidationError
from storelens.models import DateRange, Store
from storelens.utils import parse_utc_datetime

DATE_ONLY = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def validate_store(value: Optional[str]) -> Store:
    try:
        return Store((value or "").strip().lower())
    except ValueError:
        valid = ", ".join(store.value for store in Store)
        raise ValidationError(f"Invalid store: {value}. Valid stores: {valid}") from None


def validate_country(value: Optional[str]) -> str:
    """Upper-cased country code; missing means the default storefront."""
    code = (value or DEFAULT_COUNTRY).strip().upper()
    if code not in SUPPORTED_COUNTRIES:
        raise ValidationError(f"Invalid country code: {value}")
    return code


def validate_lang(value: Optional[str]) -> str:
    lang = (value or DEFAULT_LANG).strip().lower()
    if not re.fullmatch(r"[a-z]{2,3}([-_][a-z]{2,4})?", lang):
        raise ValidationError(f"Invalid language code: {value}")
    return lang


def clamp_limit(value: Optional[int], default: int, maximum: int) -> int:
    """Default when missing, reject negatives, clamp to ``maximum``."""
    if value is None:
        return min(default, maximum)
    if value < 0:
        raise ValidationError(f"limit must be a non-negative integer, got {value}")
    return min(value, maximum)


def require(value: Optional[str], name: str) -> str:
    text = (value or "").strip()
    if not text:
        raise ValidationError(f"{name} parameter is required")
    return text


def parse_date_range(start: Optional[str], end: Optional[str]) -> Optional[DateRange]:
    """
    Parse optional ISO-8601 bounds into an inclusive UTC range.

    A date-only ``end`` covers that whole day.

    Returns:
        DateRange, or None when neither bound is given

    Raises:
        ValidationError: unparseable bound or start after end
    """
    start = (start or "").strip()
    end = (end or "").strip()
    if not start and not end:
        return None

    try:
        start_dt = parse_utc_datetime(start) if start else None
        end_dt = parse_utc_datetime(end) if end else None
    except (ValueError, OverflowError) as e:
        raise ValidationError(f"Invalid date: {e}") from None

    if end_dt is not None and DATE_ONLY.match(end):
        end_dt = end_dt + timedelta(days=1) - timedelta(microseconds=1)

    if start_dt and end_dt and start_dt > end_dt:
        raise ValidationError("startDate must not be after endDate")
    return DateRange(start=start_dt, end=end_dt)


# FastAPI dependencies

def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def store_param(store: str) -> Store:
    return validate_store(store)


def country_param(country: Optional[str] = Query(None, description="ISO 3166-1 alpha-2 code")) -> str:
    return validate_country(country)


def lang_param(lang: Optional[str] = Query(None, description="Language code, e.g. en")) -> str:
    return validate_lang(lang)


def list_limit(
    limit: Optional[int] = Query(None, description="Maximum number of apps"),
    settings: Settings = Depends(get_app_settings),
) -> int:
    return clamp_limit(limit, settings.DEFAULT_LIST_LIMIT, settings.MAX_LIST_LIMIT)


def review_limit(
    limit: Optional[int] = Query(None, description="Maximum number of reviews"),
    settings: Settings = Depends(get_app_settings),
) -> int:
    return clamp_limit(limit, settings.DEFAULT_REVIEW_LIMIT, settings.MAX_REVIEW_LIMIT)


def date_range_param(
    start_date: Optional[str] = Query(None, alias="startDate"),
    end_date: Optional[str] = Query(None, alias="endDate"),
) -> Optional[DateRange]:
    return parse_date_range(start_date, end_date)
