from __future__ import annotations

from functools import lru_cache

from settings import settings
from app.payments.repository import PgPaymentStore
from app.rail.factory import get_rail_client
from app.sync.engine import SyncEngine
from app.webhooks.verification import WebhookVerifier


@lru_cache(maxsize=1)
def _rail():
    return get_rail_client()


@lru_cache(maxsize=1)
def _engine() -> SyncEngine:
    # One engine per process: its lock is what keeps sync passes from overlapping
    return SyncEngine(
        PgPaymentStore(),
        _rail(),
        start_sync_num=settings.START_SYNC_NUM,
        batch_size=settings.SYNC_BATCH_SIZE,
        max_batches=settings.SYNC_MAX_BATCHES,
    )


@lru_cache(maxsize=1)
def _verifier() -> WebhookVerifier:
    return WebhookVerifier(
        _rail(),
        max_age_seconds=settings.WEBHOOK_MAX_AGE_SECONDS,
        key_ttl_seconds=settings.WEBHOOK_KEY_CACHE_SECONDS,
    )


def get_sync_engine() -> SyncEngine:
    return _engine()


def get_webhook_verifier() -> WebhookVerifier | None:
    if not settings.WEBHOOK_VERIFICATION_ENABLED:
        return None
    return _verifier()
