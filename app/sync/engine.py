# app/sync/engine.py
from __future__ import annotations

import logging
import threading
import time
from dataclasses import asdict, dataclass, field
from typing import Any, Optional

from app.payments.repository import PaymentEventStore, StoreError
from app.rail.base import RailError, TransferEvent, TransferRailClient
from app.sync.processor import Outcome, ProcessResult, process_event
from services.metrics import increment_sync_pass

logger = logging.getLogger("billpay.sync")

DEFAULT_BATCH_SIZE = 20
DEFAULT_MAX_BATCHES = 500


@dataclass
class SyncResult:
    start_cursor: int
    end_cursor: int
    batches: int = 0
    events_processed: int = 0
    applied: int = 0
    skipped: int = 0
    rejected: int = 0
    anomalies: list[dict[str, Any]] = field(default_factory=list)
    truncated: bool = False
    # Another process held the stream lock; nothing was fetched
    busy: bool = False
    duration_ms: int = 0

    def record(self, event: TransferEvent, res: ProcessResult) -> None:
        self.events_processed += 1
        if res.outcome is Outcome.APPLIED:
            self.applied += 1
            return
        if res.outcome is Outcome.SKIPPED:
            self.skipped += 1
        else:
            self.rejected += 1
        self.anomalies.append(
            {
                "event_id": event.event_id,
                "transfer_id": event.transfer_id,
                "event_type": event.event_type,
                "outcome": res.outcome.value,
                "reason": res.reason.value if res.reason else None,
            }
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class SyncEngine:
    """
    Pulls transfer events from the rail after the stored cursor and applies
    them in event_id order. The cursor is written once, after the last page.

    Owns the lock that serializes passes in this process; the store's stream
    lock does the same across processes. sync_payment_data() waits for it,
    trigger() is single-flight and coalesces concurrent requests.
    """

    def __init__(
        self,
        store: PaymentEventStore,
        rail: TransferRailClient,
        *,
        start_sync_num: int = 0,
        batch_size: int = DEFAULT_BATCH_SIZE,
        max_batches: int = DEFAULT_MAX_BATCHES,
        lock: Optional[threading.Lock] = None,
    ):
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        if max_batches < 1:
            raise ValueError("max_batches must be >= 1")
        self.store = store
        self.rail = rail
        self.start_sync_num = int(start_sync_num)
        self.batch_size = int(batch_size)
        self.max_batches = int(max_batches)
        self._lock = lock or threading.Lock()
        self._rerun = threading.Event()

    @property
    def running(self) -> bool:
        return self._lock.locked()

    def sync_payment_data(self) -> SyncResult:
        try:
            with self._lock:
                return self._run_pass()
        finally:
            # A trigger that arrived while this pass held the lock was told
            # the running owner would pick it up
            if self._rerun.is_set():
                self.trigger()

    def trigger(self) -> bool:
        """
        Background entry point. Returns True if this call ran the pass(es),
        False if it was folded into a pass already running elsewhere or the
        pass failed. Never raises.
        """
        self._rerun.set()
        ran = False
        while self._rerun.is_set():
            if not self._lock.acquire(blocking=False):
                logger.info("sync_trigger_coalesced reason=PASS_IN_FLIGHT")
                return ran
            try:
                while self._rerun.is_set():
                    self._rerun.clear()
                    result = self._run_pass()
                    ran = ran or not result.busy
            except (RailError, StoreError):
                # Already logged by _run_pass; the next trigger retries from the stored cursor
                self._rerun.clear()
                return False
            except Exception:
                logger.exception("sync_pass_crashed")
                self._rerun.clear()
                return False
            finally:
                self._lock.release()
        return ran

    def _load_cursor(self) -> int:
        stored = self.store.get_last_sync_num()
        if stored is None:
            logger.info("sync_cursor_bootstrap start_sync_num=%s", self.start_sync_num)
            return self.start_sync_num
        return int(stored)

    def _run_pass(self) -> SyncResult:
        started = time.monotonic()
        try:
            # Serializes passes across processes (web workers, the daemon)
            with self.store.stream_lock() as held:
                cursor = self._load_cursor()
                if not held:
                    logger.warning(
                        "sync_pass_skipped reason=STREAM_LOCKED cursor=%s; another process is syncing",
                        cursor,
                    )
                    increment_sync_pass("busy")
                    return SyncResult(start_cursor=cursor, end_cursor=cursor, busy=True)
                result = self._drain_rail(cursor)
        except (RailError, StoreError) as e:
            increment_sync_pass("failed")
            logger.error(
                "sync_pass_aborted error=%s retryable=%s; cursor not persisted",
                e,
                getattr(e, "retryable", True),
            )
            raise

        result.duration_ms = int((time.monotonic() - started) * 1000)
        increment_sync_pass("truncated" if result.truncated else "ok")
        logger.info(
            "sync_pass_finished start_cursor=%s end_cursor=%s batches=%s events=%s applied=%s skipped=%s rejected=%s duration_ms=%s",
            result.start_cursor,
            result.end_cursor,
            result.batches,
            result.events_processed,
            result.applied,
            result.skipped,
            result.rejected,
            result.duration_ms,
        )
        return result

    def _drain_rail(self, cursor: int) -> SyncResult:
        result = SyncResult(start_cursor=cursor, end_cursor=cursor)
        logger.info("sync_pass_started cursor=%s batch_size=%s", cursor, self.batch_size)

        while True:
            if result.batches >= self.max_batches:
                result.truncated = True
                logger.warning(
                    "sync_pass_truncated batches=%s cursor=%s; rail still reports more events",
                    result.batches,
                    cursor,
                )
                break

            batch = self.rail.fetch_events(after_id=cursor, count=self.batch_size)
            result.batches += 1

            # Pages are not guaranteed to be ordered
            for event in sorted(batch.events, key=lambda e: e.event_id):
                if event.event_id <= cursor:
                    logger.warning(
                        "event_ignored reason=NOT_AFTER_CURSOR event_id=%s cursor=%s",
                        event.event_id,
                        cursor,
                    )
                    continue
                res = process_event(self.store, event)
                result.record(event, res)
                cursor = event.event_id
                result.end_cursor = cursor

            if not batch.has_more:
                break
            if not batch.events:
                logger.warning("sync_empty_page_with_has_more cursor=%s request_id=%s", cursor, batch.request_id)
                break

        self.store.set_last_sync_num(cursor)
        return result
