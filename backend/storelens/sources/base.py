"""
Store adapter interface.

Each adapter wraps one upstream catalog and returns unified records. Adapters
hold no per-request state; shared HTTP clients are injected.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, List, Sequence

from storelens.core.collections import CollectionTarget
from storelens.models import ReviewPage, Store, UnifiedApp


class StoreAdapter(ABC):
    """Uniform operations over one app store."""

    store: Store

    @abstractmethod
    async def search(self, term: str, country: str, lang: str, limit: int) -> List[UnifiedApp]:
        """Search the catalog. A blank term returns [] without an upstream call."""

    @abstractmethod
    async def app_detail(self, app_id: str, country: str, lang: str) -> UnifiedApp:
        """Full app record with ratings; raises NotFoundError for unknown ids."""

    @abstractmethod
    async def reviews_page(self, app_id: str, country: str, lang: str, page_token: Any) -> ReviewPage:
        """One page of reviews, newest first, and the cursor of the next page (None when exhausted)."""

    @abstractmethod
    def initial_page_tokens(self) -> Sequence[Any]:
        """Starting cursors: one for sequential stores, one per batch for fan-out stores."""

    @abstractmethod
    async def similar(self, app_id: str, country: str, lang: str) -> List[UnifiedApp]:
        """Advisory listing; [] when the app is unknown."""

    @abstractmethod
    async def by_developer(self, developer_id: str, country: str, lang: str, limit: int) -> List[UnifiedApp]:
        """Advisory listing; [] when the developer is unknown."""

    @abstractmethod
    async def by_collection(self, target: CollectionTarget, country: str, lang: str, limit: int) -> List[UnifiedApp]:
        """Apps of a resolved collection; [] when upstream has none."""

    async def by_category(self, target: CollectionTarget, country: str, lang: str, limit: int) -> List[UnifiedApp]:
        """Apps of a resolved category listing (``target.category`` is set)."""
        return await self.by_collection(target, country, lang, limit)
