# routes/webhooks.py
from __future__ import annotations

import json
import logging
from typing import Any

from fastapi import APIRouter, BackgroundTasks, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from starlette.concurrency import run_in_threadpool

from app.sync.engine import SyncEngine
from app.webhooks.dispatch import WebhookAction, dispatch_webhook
from app.webhooks.verification import SIGNATURE_HEADER, KeyUnavailable, WebhookVerifier
from deps.sync import get_sync_engine, get_webhook_verifier
from schemas import ErrorResponse, WebhookAck, WebhookPayload
from services.metrics import increment_webhook
from services.redaction import redact_dict


router = APIRouter(prefix="/server", tags=["webhooks"])
logger = logging.getLogger("billpay.webhooks")


def _error(status_code: int, error_code: str, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error_code=error_code, error_message=message).model_dump(),
    )


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    return value if isinstance(value, str) else str(value)


def _parse_body(raw: bytes) -> dict[str, Any] | None:
    try:
        parsed = json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, ValueError):
        return None
    return parsed if isinstance(parsed, dict) else None


@router.post(
    "/receive_webhook",
    response_model=WebhookAck,
    responses={
        400: {"model": ErrorResponse},
        401: {"model": ErrorResponse},
        503: {"model": ErrorResponse},
    },
)
async def receive_webhook(
    req: Request,
    background_tasks: BackgroundTasks,
    engine: SyncEngine = Depends(get_sync_engine),
    verifier: WebhookVerifier | None = Depends(get_webhook_verifier),
):
    raw = await req.body()

    if verifier is not None:
        try:
            sig_ok, sig_err = await run_in_threadpool(
                verifier.verify,
                raw=raw,
                signature_header=req.headers.get(SIGNATURE_HEADER),
            )
        except KeyUnavailable as e:
            # 5xx so the rail redelivers once the key endpoint is back
            logger.error("webhook_verification_unavailable error=%s", e)
            return _error(503, "VERIFICATION_KEY_UNAVAILABLE", "Could not fetch the webhook verification key")

        if not sig_ok:
            logger.warning("webhook_rejected reason=%s", sig_err)
            increment_webhook("UNVERIFIED", "UNVERIFIED", sig_err or "INVALID_SIGNATURE")
            return _error(401, sig_err or "INVALID_SIGNATURE", "Webhook signature verification failed")

    body = _parse_body(raw)
    if body is None:
        logger.warning("webhook_rejected reason=INVALID_JSON bytes=%s", len(raw))
        return _error(400, "INVALID_JSON", "Webhook body must be a JSON object")

    try:
        payload = WebhookPayload.model_validate(body)
    except ValidationError as e:
        # Acknowledge anyway: a non-2xx only makes the rail redeliver the same body
        ack = WebhookAck(
            webhook_type=_as_text(body.get("webhook_type")),
            webhook_code=_as_text(body.get("webhook_code")),
            action=WebhookAction.IGNORED.value,
        )
        logger.warning(
            "webhook_ignored reason=INVALID_PAYLOAD webhook_type=%s webhook_code=%s errors=%s body=%s",
            ack.webhook_type,
            ack.webhook_code,
            e.error_count(),
            redact_dict(body),
        )
        increment_webhook(ack.webhook_type, ack.webhook_code, ack.action)
        return ack

    logger.info(
        "webhook_received webhook_type=%s webhook_code=%s body=%s",
        payload.webhook_type,
        payload.webhook_code,
        redact_dict(body),
    )

    action = dispatch_webhook(payload.webhook_type, payload.webhook_code, body)
    if action is WebhookAction.SYNC_SCHEDULED:
        # Runs after the response is sent; the engine keeps it single-flight
        background_tasks.add_task(engine.trigger)

    return WebhookAck(
        webhook_type=payload.webhook_type,
        webhook_code=payload.webhook_code,
        action=action.value,
    )
