"""
Document stores backing the sentiment cache.

Both stores hold one JSON document per key and overwrite it in place.
"""
from __future__ import annotations

import asyncio
import json
import logging
import sqlite3
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import Callable, Dict, Optional, Tuple

from storelens.config import Settings
from storelens.models import JsonDict
from storelens.utils import now_utc

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


class DocumentStore(ABC):
    @abstractmethod
    async def get(self, key: str) -> Optional[JsonDict]:
        """Return the document stored under ``key``, or None."""

    @abstractmethod
    async def put(self, key: str, document: JsonDict) -> None:
        """Store ``document`` under ``key``, replacing any previous one."""

    async def close(self) -> None:
        return None


class InMemoryDocumentStore(DocumentStore):
    """Process-local store; entries older than ``max_age`` are evicted on access."""

    def __init__(self, max_age: Optional[timedelta] = None, clock: Clock = now_utc):
        self.max_age = max_age
        self._clock = clock
        self._entries: Dict[str, Tuple[datetime, JsonDict]] = {}

    def _evict_expired(self) -> None:
        if self.max_age is None:
            return
        cutoff = self._clock() - self.max_age
        expired = [key for key, (stored_at, _) in self._entries.items() if stored_at < cutoff]
        for key in expired:
            del self._entries[key]
        if expired:
            logger.debug("Evicted %d expired cache entries", len(expired))

    async def get(self, key: str) -> Optional[JsonDict]:
        self._evict_expired()
        entry = self._entries.get(key)
        return dict(entry[1]) if entry else None

    async def put(self, key: str, document: JsonDict) -> None:
        self._evict_expired()
        self._entries[key] = (self._clock(), dict(document))

    def __len__(self) -> int:
        return len(self._entries)


class SqliteDocumentStore(DocumentStore):
    """SQLite-backed store; blocking calls run in a worker thread."""

    def __init__(self, path: str):
        self.path = path
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.path)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_db(self) -> None:
        conn = self._connect()
        try:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS sentiment_cache (
                    cache_key   TEXT PRIMARY KEY,
                    document    TEXT NOT NULL,
                    stored_at   TEXT NOT NULL
                )
                """
            )
            conn.commit()
        finally:
            conn.close()

    def _get(self, key: str) -> Optional[JsonDict]:
        conn = self._connect()
        try:
            row = conn.execute("SELECT document FROM sentiment_cache WHERE cache_key = ?", (key,)).fetchone()
        finally:
            conn.close()
        return json.loads(row["document"]) if row else None

    def _put(self, key: str, document: JsonDict) -> None:
        conn = self._connect()
        try:
            conn.execute(
                "INSERT OR REPLACE INTO sentiment_cache (cache_key, document, stored_at) VALUES (?, ?, ?)",
                (key, json.dumps(document), now_utc().isoformat()),
            )
            conn.commit()
        finally:
            conn.close()

    async def get(self, key: str) -> Optional[JsonDict]:
        return await asyncio.to_thread(self._get, key)

    async def put(self, key: str, document: JsonDict) -> None:
        await asyncio.to_thread(self._put, key, document)


def build_document_store(settings: Settings) -> DocumentStore:
    backend = settings.CACHE_BACKEND.lower()
    if backend == "sqlite":
        logger.info("Using SQLite sentiment cache at %s", settings.CACHE_DB_PATH)
        return SqliteDocumentStore(settings.CACHE_DB_PATH)
    if backend != "memory":
        logger.warning("Unknown CACHE_BACKEND %r, falling back to memory", settings.CACHE_BACKEND)
    return InMemoryDocumentStore(max_age=timedelta(hours=settings.CACHE_MAX_AGE_HOURS))
