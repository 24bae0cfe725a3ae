# app/rail/plaid.py
from __future__ import annotations

import logging
from typing import Any, Optional

import httpx

from settings import settings
from app.rail.base import EventBatch, RailError, TransferEvent
from app.rail.http import HttpClient, is_retryable_http

logger = logging.getLogger("billpay.rail")

PLAID_API_VERSION = "2020-09-14"


class PlaidTransferClient:
    """
    Plaid Transfer adapter for the sync engine contract:
      - fetch_events(after_id=..., count=...) -> EventBatch  (/transfer/event/sync)
      - get_webhook_verification_key(kid) -> JWK dict         (/webhook_verification_key/get)

    Every failure surfaces as RailError; nothing here retries on its own.
    """

    def __init__(
        self,
        *,
        base_url: Optional[str] = None,
        client_id: Optional[str] = None,
        secret: Optional[str] = None,
        http: Optional[HttpClient] = None,
        debug: bool = False,
    ):
        self.base_url = (base_url or settings.plaid_base_url).strip().rstrip("/")
        self.client_id = (client_id if client_id is not None else settings.PLAID_CLIENT_ID).strip()
        self.secret = (secret if secret is not None else settings.PLAID_SECRET).strip()
        self.http = http or HttpClient(timeout_s=settings.PLAID_HTTP_TIMEOUT_S)
        self.debug = debug

    def _headers(self) -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Plaid-Version": PLAID_API_VERSION,
        }

    def _call(self, path: str, body: dict[str, Any]) -> dict[str, Any]:
        if not (self.client_id and self.secret):
            raise RailError("PLAID_CLIENT_ID_OR_SECRET_NOT_SET", retryable=False)

        url = f"{self.base_url}{path}"
        payload = {"client_id": self.client_id, "secret": self.secret, **body}
        try:
            r = self.http.post(url, headers=self._headers(), json_body=payload, debug=self.debug)
        except httpx.HTTPError as e:
            logger.warning("plaid_call_failed path=%s error=%s", path, type(e).__name__)
            raise RailError(f"{path} request failed: {type(e).__name__}", retryable=True) from e

        if 200 <= r.status_code < 300 and r.json is not None:
            return r.json

        error_obj = r.json or {}
        error_code = error_obj.get("error_code") or f"HTTP_{r.status_code}"
        logger.warning(
            "plaid_call_rejected path=%s status=%s error_type=%s error_code=%s request_id=%s",
            path,
            r.status_code,
            error_obj.get("error_type"),
            error_code,
            error_obj.get("request_id"),
        )
        raise RailError(
            f"{path} failed: {error_code}",
            retryable=is_retryable_http(r.status_code),
            status_code=r.status_code,
            response=error_obj or None,
        )

    def fetch_events(self, *, after_id: int, count: int) -> EventBatch:
        data = self._call("/transfer/event/sync", {"after_id": int(after_id), "count": int(count)})
        raw_events = data.get("transfer_events") or []
        try:
            events = [TransferEvent.from_api(e) for e in raw_events]
        except (KeyError, TypeError, ValueError) as e:
            raise RailError(f"malformed transfer event in sync response: {e}", retryable=False) from e
        return EventBatch(
            events=events,
            has_more=bool(data.get("has_more", False)),
            request_id=data.get("request_id"),
        )

    def get_webhook_verification_key(self, key_id: str) -> dict[str, Any]:
        data = self._call("/webhook_verification_key/get", {"key_id": key_id})
        key = data.get("key")
        if not isinstance(key, dict):
            raise RailError("webhook verification key missing from response", retryable=True)
        return key
