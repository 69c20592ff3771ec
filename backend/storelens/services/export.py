"""
CSV export of reviews.
"""
from __future__ import annotations

import csv
import io
from typing import Iterable

from storelens.models import UnifiedReview

CSV_FIELDS = ["id", "userName", "title", "text", "rating", "version", "updated", "store"]


def review_row(review: UnifiedReview) -> dict:
    return {
        "id": review.id,
        "userName": review.user_name,
        "title": review.title,
        "text": review.text,
        "rating": review.rating,
        "version": review.version,
        "updated": review.updated.isoformat(),
        "store": review.store.value,
    }


def reviews_to_csv(reviews: Iterable[UnifiedReview]) -> str:
    """Render reviews as CSV text with a header row."""
    si = io.StringIO()
    writer = csv.DictWriter(si, fieldnames=CSV_FIELDS, extrasaction="ignore")
    writer.writeheader()
    for review in reviews:
        writer.writerow(review_row(review))
    return si.getvalue()


def csv_filename(app_id: str, country: str) -> str:
    safe_id = "".join(ch if ch.isalnum() or ch in "._-" else "_" for ch in app_id)
    return f"reviews-{safe_id}-{country.lower()}.csv"
