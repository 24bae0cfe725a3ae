# app/rail/mock.py
from __future__ import annotations

from threading import Lock
from typing import Any, Iterable, Optional

from app.rail.base import EventBatch, RailError, TransferEvent


class MockTransferRail:
    """
    In-memory rail for dev (RAIL_MODE=mock) and tests.

    - fetch_events returns the `count` lowest event ids above after_id, in the
      order they were added, so callers must sort.
    - fail_on_call=N raises a retryable RailError on the Nth fetch (1-based).
    """

    def __init__(
        self,
        events: Iterable[TransferEvent] = (),
        *,
        verification_keys: Optional[dict[str, dict[str, Any]]] = None,
        fail_on_call: Optional[int] = None,
    ):
        self._lock = Lock()
        self._events: list[TransferEvent] = list(events)
        self.verification_keys = dict(verification_keys or {})
        self.fail_on_call = fail_on_call
        self.calls: list[tuple[int, int]] = []
        self.key_requests: list[str] = []

    def add_events(self, *events: TransferEvent) -> None:
        with self._lock:
            self._events.extend(events)

    def fetch_events(self, *, after_id: int, count: int) -> EventBatch:
        with self._lock:
            self.calls.append((after_id, count))
            if self.fail_on_call is not None and len(self.calls) == self.fail_on_call:
                raise RailError("mock rail unavailable", retryable=True, status_code=503)

            newer = [e for e in self._events if e.event_id > after_id]
            picked_ids = set(sorted(e.event_id for e in newer)[:count])
            page = [e for e in newer if e.event_id in picked_ids]
            return EventBatch(
                events=page,
                has_more=len(newer) > len(page),
                request_id=f"mock-{len(self.calls)}",
            )

    def get_webhook_verification_key(self, key_id: str) -> dict[str, Any]:
        self.key_requests.append(key_id)
        key = self.verification_keys.get(key_id)
        if key is None:
            raise RailError(
                "INVALID_KEY_ID",
                retryable=False,
                status_code=400,
                response={"error_type": "INVALID_INPUT", "error_code": "INVALID_KEY_ID"},
            )
        return key
