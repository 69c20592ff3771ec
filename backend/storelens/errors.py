"""
Error taxonomy shared by the adapters, the aggregation pipeline and the HTTP layer.

Each error carries the HTTP status the API answers with; the message is what
the client sees in the ``{"error": ...}`` body.
"""
from __future__ import annotations

from typing import List, Sequence


class StoreLensError(Exception):
    """Base class for every error the API maps to a JSON response."""

    status_code: int = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(StoreLensError):
    """Bad country, store, limit or missing parameter."""

    status_code = 400


class InvalidCollectionError(ValidationError):
    """Collection key unknown for the requested store."""

    def __init__(self, message: str, valid_keys: Sequence[str]):
        super().__init__(message)
        self.valid_keys: List[str] = list(valid_keys)


class NotFoundError(StoreLensError):
    """App or developer absent upstream."""

    status_code = 404


class UpstreamError(StoreLensError):
    """Network failure, 5xx or timeout from a store."""

    status_code = 502


class SentimentServiceError(StoreLensError):
    """Classification call failed or returned an unusable payload."""

    status_code = 502


class InternalError(StoreLensError):
    status_code = 500
