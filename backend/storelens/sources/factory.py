"""
Adapter wiring: builds one adapter per store from settings.
"""
from __future__ import annotations

from typing import Dict, Mapping

import httpx

from storelens.config import Settings
from storelens.errors import ValidationError
from storelens.models import Store
from storelens.sources.appstore import AppStoreAdapter, AppStoreClient
from storelens.sources.base import StoreAdapter
from storelens.sources.playstore import PlayStoreAdapter, PlayStoreClient


def build_adapters(http: httpx.AsyncClient, settings: Settings) -> Dict[Store, StoreAdapter]:
    app_store = AppStoreAdapter(
        AppStoreClient(http, timeout=settings.UPSTREAM_TIMEOUT_SECONDS, amp_token=settings.APPSTORE_AMP_TOKEN),
        max_pages=settings.MAX_APP_STORE_PAGES,
        check_availability=settings.APPSTORE_CHECK_AVAILABILITY,
    )
    play_store = PlayStoreAdapter(
        PlayStoreClient(timeout=settings.UPSTREAM_TIMEOUT_SECONDS),
        max_batches=settings.MAX_PLAY_STORE_BATCHES,
        page_size=settings.PLAY_STORE_PAGE_SIZE,
    )
    return {Store.APP_STORE: app_store, Store.PLAY_STORE: play_store}


def adapter_for(adapters: Mapping[Store, StoreAdapter], store: Store) -> StoreAdapter:
    try:
        return adapters[store]
    except KeyError:
        raise ValidationError(f"Unsupported store: {store}") from None
