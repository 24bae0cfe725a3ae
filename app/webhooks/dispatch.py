# app/webhooks/dispatch.py
from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Callable

from services.metrics import increment_webhook
from services.redaction import mask_identifier, redact_text

logger = logging.getLogger("billpay.webhooks")


class WebhookAction(str, Enum):
    SYNC_SCHEDULED = "SYNC_SCHEDULED"
    ITEM_NEEDS_RECONNECT = "ITEM_NEEDS_RECONNECT"
    NEW_ACCOUNTS_AVAILABLE = "NEW_ACCOUNTS_AVAILABLE"
    ITEM_REVOKED = "ITEM_REVOKED"
    ACKNOWLEDGED = "ACKNOWLEDGED"
    UNSUPPORTED = "UNSUPPORTED"
    IGNORED = "IGNORED"


Handler = Callable[[str, dict[str, Any]], WebhookAction]


def _item_ref(payload: dict[str, Any]) -> str:
    item_id = payload.get("item_id")
    return mask_identifier(str(item_id)) if item_id else "-"


def _transfer_events_update(code: str, payload: dict[str, Any]) -> WebhookAction:
    # The webhook doesn't say which transfer changed; a sync pass picks up everything
    logger.info("transfer_events_update received; scheduling sync")
    return WebhookAction.SYNC_SCHEDULED


def _recurring_transfer(code: str, payload: dict[str, Any]) -> WebhookAction:
    logger.warning("webhook_unsupported code=%s; recurring transfers are not used by this app", code)
    return WebhookAction.UNSUPPORTED


def _item_error(code: str, payload: dict[str, Any]) -> WebhookAction:
    error = payload.get("error") or {}
    if not isinstance(error, dict):
        error = {}
    logger.warning(
        "item_error item=%s error_code=%s error_message=%s; user should reconnect their bank",
        _item_ref(payload),
        error.get("error_code"),
        redact_text(str(error.get("error_message") or "")),
    )
    return WebhookAction.ITEM_NEEDS_RECONNECT


def _item_pending_disconnect(code: str, payload: dict[str, Any]) -> WebhookAction:
    logger.warning("item_needs_reconnect item=%s code=%s", _item_ref(payload), code)
    return WebhookAction.ITEM_NEEDS_RECONNECT


def _item_new_accounts(code: str, payload: dict[str, Any]) -> WebhookAction:
    logger.info("item_new_accounts_available item=%s", _item_ref(payload))
    return WebhookAction.NEW_ACCOUNTS_AVAILABLE


def _item_permission_revoked(code: str, payload: dict[str, Any]) -> WebhookAction:
    logger.warning("item_permission_revoked item=%s; item should be removed", _item_ref(payload))
    return WebhookAction.ITEM_REVOKED


def _webhook_update_acknowledged(code: str, payload: dict[str, Any]) -> WebhookAction:
    logger.info("webhook_update_acknowledged item=%s", _item_ref(payload))
    return WebhookAction.ACKNOWLEDGED


HANDLERS: dict[tuple[str, str], Handler] = {
    ("TRANSFER", "TRANSFER_EVENTS_UPDATE"): _transfer_events_update,
    ("TRANSFER", "RECURRING_NEW_TRANSFER"): _recurring_transfer,
    ("TRANSFER", "RECURRING_TRANSFER_SKIPPED"): _recurring_transfer,
    ("TRANSFER", "RECURRING_CANCELLED"): _recurring_transfer,
    ("ITEM", "ERROR"): _item_error,
    ("ITEM", "PENDING_EXPIRATION"): _item_pending_disconnect,
    ("ITEM", "PENDING_DISCONNECT"): _item_pending_disconnect,
    ("ITEM", "NEW_ACCOUNTS_AVAILABLE"): _item_new_accounts,
    ("ITEM", "USER_PERMISSION_REVOKED"): _item_permission_revoked,
    ("ITEM", "WEBHOOK_UPDATE_ACKNOWLEDGED"): _webhook_update_acknowledged,
}

KNOWN_TYPES = frozenset(t for t, _ in HANDLERS)


def dispatch_webhook(webhook_type: str, webhook_code: str, payload: dict[str, Any]) -> WebhookAction:
    """
    Route a webhook by (type, code). Unknown combinations are logged and
    ignored, never raised: a non-2xx answer makes the rail redeliver.
    """
    wtype = (webhook_type or "").strip().upper()
    code = (webhook_code or "").strip().upper()

    handler = HANDLERS.get((wtype, code))
    if handler is None:
        if wtype in KNOWN_TYPES:
            logger.info("webhook_ignored reason=UNKNOWN_CODE webhook_type=%s webhook_code=%s", wtype, code)
        else:
            logger.info("webhook_ignored reason=UNKNOWN_TYPE webhook_type=%s webhook_code=%s", wtype, code)
        action = WebhookAction.IGNORED
    else:
        action = handler(code, payload)

    increment_webhook(wtype, code, action.value)
    return action
