from __future__ import annotations

import logging
import os

from fastapi import APIRouter, Depends, HTTPException
from starlette.concurrency import run_in_threadpool

from app.sync.engine import SyncEngine
from deps.sync import get_sync_engine
from schemas import SyncRunResponse


router = APIRouter(prefix="/server/debug", tags=["debug"])
logger = logging.getLogger("billpay.debug")

DEBUG_ENVS = {"dev", "staging"}


def debug_enabled() -> bool:
    return (os.getenv("ENV") or "dev").strip().lower() in DEBUG_ENVS


def _require_debug() -> None:
    if not debug_enabled():
        raise HTTPException(status_code=404, detail="Not found")


@router.post("/sync_events", response_model=SyncRunResponse, dependencies=[Depends(_require_debug)])
async def sync_events(engine: SyncEngine = Depends(get_sync_engine)):
    """
    Run a sync pass and wait for it. Blocks while a webhook-triggered pass
    is in flight. Rail/store failures surface through the app error handlers.
    """
    logger.info("manual_sync_requested running=%s", engine.running)
    result = await run_in_threadpool(engine.sync_payment_data)
    return SyncRunResponse.from_result(result)
