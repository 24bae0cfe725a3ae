# tests/conftest.py

import itertools
import threading
from contextlib import contextmanager
from typing import Any, Optional

import pytest
from fastapi.testclient import TestClient

from app.payments.model import Payment, PaymentStatus
from app.payments.repository import StoreError
from app.rail.base import FailureReason, TransferEvent
from app.rail.mock import MockTransferRail
from app.sync.engine import SyncEngine
from deps.sync import get_sync_engine, get_webhook_verifier
from main import create_app
from services.metrics import reset_counters


class InMemoryPaymentStore:
    """
    Test double for PgPaymentStore. Same contract, including the
    compare-and-set on expected_status and the never-regress cursor.
    """

    def __init__(self, *, last_sync_num: Optional[int] = None):
        self._lock = threading.Lock()
        self._ids = itertools.count(1)
        self.payments: dict[Any, Payment] = {}
        self.last_sync_num = last_sync_num
        self.cursor_writes: list[int] = []
        self.updates: list[tuple[Any, str, Any, str]] = []
        self.fail_on_update: bool = False
        self.fail_on_read: bool = False
        self.stream_mutex = threading.Lock()

    def add_payment(self, transfer_id: str, status: str = "NEW", bill_id: str = "bill-1") -> Payment:
        p = Payment(
            id=next(self._ids),
            external_transfer_id=transfer_id,
            bill_id=bill_id,
            status=status,
            error_message=None,
        )
        self.payments[p.id] = p
        return p

    def status_of(self, transfer_id: str) -> Optional[str]:
        p = self.get_payment_by_external_id(transfer_id)
        return p.status if p else None

    @contextmanager
    def stream_lock(self):
        # Stands in for the Postgres advisory lock; shared by every engine on this store
        held = self.stream_mutex.acquire(blocking=False)
        try:
            yield held
        finally:
            if held:
                self.stream_mutex.release()

    def get_last_sync_num(self) -> Optional[int]:
        if self.fail_on_read:
            raise StoreError("store down")
        return self.last_sync_num

    def set_last_sync_num(self, sync_num: int) -> None:
        with self._lock:
            self.cursor_writes.append(sync_num)
            current = self.last_sync_num if self.last_sync_num is not None else sync_num
            self.last_sync_num = max(current, sync_num)

    def get_payment_by_external_id(self, transfer_id: str) -> Optional[Payment]:
        if self.fail_on_read:
            raise StoreError("store down")
        for p in self.payments.values():
            if p.external_transfer_id == transfer_id:
                return p
        return None

    def update_payment_status(self, payment_id, new_status, bill_id, error_message, *, expected_status=None) -> bool:
        if self.fail_on_update:
            raise StoreError("store down")
        with self._lock:
            p = self.payments.get(payment_id)
            if p is None or p.bill_id != bill_id:
                return False
            if expected_status is not None and p.status != expected_status:
                return False
            status = PaymentStatus(new_status).value
            self.payments[payment_id] = Payment(
                id=p.id,
                external_transfer_id=p.external_transfer_id,
                bill_id=p.bill_id,
                status=status,
                error_message=error_message,
            )
            self.updates.append((payment_id, status, bill_id, error_message))
            return True


def make_event(event_id: int, transfer_id: str, event_type: str, description: Optional[str] = None) -> TransferEvent:
    failure = FailureReason(description=description, failure_code="R01") if description else None
    return TransferEvent(
        event_id=event_id,
        transfer_id=transfer_id,
        event_type=event_type,
        failure_reason=failure,
    )


@pytest.fixture(autouse=True)
def _reset_metrics():
    reset_counters()
    yield


@pytest.fixture()
def store() -> InMemoryPaymentStore:
    return InMemoryPaymentStore()


@pytest.fixture()
def rail() -> MockTransferRail:
    return MockTransferRail()


@pytest.fixture()
def engine(store, rail) -> SyncEngine:
    return SyncEngine(store, rail, start_sync_num=0, batch_size=20, max_batches=50)


@pytest.fixture()
def app_factory(monkeypatch):
    def _build(engine: SyncEngine, verifier=None, env: str = "dev"):
        monkeypatch.setenv("ENV", env)
        app = create_app()
        app.dependency_overrides[get_sync_engine] = lambda: engine
        app.dependency_overrides[get_webhook_verifier] = lambda: verifier
        return app

    return _build


@pytest.fixture()
def client(app_factory, engine) -> TestClient:
    # raise_server_exceptions=False so tests can assert 500 bodies
    return TestClient(app_factory(engine), raise_server_exceptions=False)
