# app/rail/http.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional

import httpx

logger = logging.getLogger("billpay.http")


@dataclass
class HttpResponse:
    status_code: int
    json: Optional[dict[str, Any]]
    text: str


class HttpClient:
    def __init__(
        self,
        timeout_s: float = 20.0,
        *,
        transport: httpx.BaseTransport | None = None,
    ):
        self._client = httpx.Client(timeout=timeout_s, transport=transport)

    def post(
        self,
        url: str,
        *,
        headers: dict[str, str],
        json_body: dict[str, Any] | None = None,
        debug: bool = False,
    ) -> HttpResponse:
        r = self._client.post(url, headers=headers, json=json_body)
        if debug:
            self._debug_dump("POST", url, json_body, r)
        return self._wrap(r)

    @staticmethod
    def _wrap(r: httpx.Response) -> HttpResponse:
        try:
            payload = r.json()
        except ValueError:
            payload = None
        if payload is not None and not isinstance(payload, dict):
            payload = None
        return HttpResponse(status_code=r.status_code, json=payload, text=r.text)

    @staticmethod
    def _debug_dump(method: str, url: str, json_body: Any, r: httpx.Response) -> None:
        # Request bodies carry client_id/secret
        safe_body = dict(json_body or {})
        for key in ("secret", "client_id"):
            if key in safe_body:
                safe_body[key] = "REDACTED"

        logger.debug("%s %s json=%s -> status=%s", method, url, safe_body, r.status_code)
        logger.debug("text=%s", r.text[:300])


def is_retryable_http(code: int) -> bool:
    # Transient / throttling / gateway issues
    return code in (408, 425, 429, 500, 502, 503, 504)
