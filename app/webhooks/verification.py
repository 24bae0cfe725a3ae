# app/webhooks/verification.py
from __future__ import annotations

import hashlib
import hmac
import logging
import time
from threading import Lock
from typing import Any, Callable, Optional

from jose import jwt, JWTError

from app.rail.base import RailError, TransferRailClient

logger = logging.getLogger("billpay.webhooks")

SIGNATURE_HEADER = "Plaid-Verification"
ALLOWED_ALG = "ES256"


class KeyUnavailable(Exception):
    """The verification key could not be fetched from the rail."""


class WebhookVerifier:
    """
    Checks the rail's signed JWT header against the raw request body:
      1. header alg must be ES256, kid selects the verification key
      2. signature verified with the JWK fetched from the rail (cached per kid
         for key_ttl_seconds)
      3. iat no older than max_age_seconds
      4. request_body_sha256 claim equals sha256(raw body)
    """

    def __init__(
        self,
        rail: TransferRailClient,
        *,
        max_age_seconds: int = 300,
        key_ttl_seconds: int = 3600,
        clock: Callable[[], float] = time.time,
    ):
        self.rail = rail
        self.max_age_seconds = int(max_age_seconds)
        self._clock = clock
        self.key_ttl_seconds = int(key_ttl_seconds)
        # kid -> (jwk, fetched_at); refetched after key_ttl_seconds so a rotated-out key picks up expired_at
        self._keys: dict[str, tuple[dict[str, Any], float]] = {}
        self._keys_lock = Lock()

    def _get_key(self, kid: str) -> dict[str, Any]:
        now = self._clock()
        with self._keys_lock:
            cached = self._keys.get(kid)
        if cached is not None and now - cached[1] < self.key_ttl_seconds:
            return cached[0]

        try:
            key = self.rail.get_webhook_verification_key(kid)
        except RailError as e:
            if not e.retryable:
                # Unknown kid: the rail says this key never existed
                return {}
            raise KeyUnavailable(str(e)) from e

        with self._keys_lock:
            self._keys[kid] = (key, now)
        return key

    def verify(self, *, raw: bytes, signature_header: Optional[str]) -> tuple[bool, Optional[str]]:
        """Returns (ok, error_code). Raises KeyUnavailable on rail failure."""
        if not signature_header or not signature_header.strip():
            return False, "MISSING_SIGNATURE"
        token = signature_header.strip()

        try:
            header = jwt.get_unverified_header(token)
        except JWTError:
            return False, "MALFORMED_SIGNATURE"

        if header.get("alg") != ALLOWED_ALG:
            return False, "INVALID_ALGORITHM"

        kid = header.get("kid")
        if not kid:
            return False, "MISSING_KEY_ID"

        key = self._get_key(str(kid))
        if not key:
            return False, "UNKNOWN_KEY_ID"
        if key.get("expired_at") is not None:
            return False, "KEY_EXPIRED"

        try:
            claims = jwt.decode(token, key, algorithms=[ALLOWED_ALG])
        except JWTError:
            return False, "INVALID_SIGNATURE"

        iat = claims.get("iat")
        if not isinstance(iat, (int, float)) or self._clock() - iat > self.max_age_seconds:
            return False, "SIGNATURE_EXPIRED"

        expected = hashlib.sha256(raw).hexdigest()
        claimed = str(claims.get("request_body_sha256") or "")
        if not hmac.compare_digest(expected, claimed):
            return False, "BODY_HASH_MISMATCH"

        return True, None
