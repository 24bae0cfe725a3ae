from __future__ import annotations

from contextlib import contextmanager

import psycopg2
import pytest

from app.payments.model import PaymentStatus
from app.payments.repository import CURSOR_KEY, PgPaymentStore, StoreError


class FakeCursor:
    def __init__(self, conn):
        self.conn = conn
        self.rowcount = conn.rowcount

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def execute(self, sql, params=None):
        if self.conn.raise_on_execute is not None:
            raise self.conn.raise_on_execute
        self.conn.executed.append((" ".join(sql.split()), params))

    def fetchone(self):
        return self.conn.row


class FakeConn:
    def __init__(self, *, row=None, rowcount=1, raise_on_execute=None):
        self.row = row
        self.rowcount = rowcount
        self.raise_on_execute = raise_on_execute
        self.executed: list[tuple[str, tuple]] = []
        self.cursor_kwargs: list[dict] = []

    def cursor(self, **kwargs):
        self.cursor_kwargs.append(kwargs)
        return FakeCursor(self)


def _store(conn: FakeConn) -> PgPaymentStore:
    @contextmanager
    def factory():
        yield conn

    return PgPaymentStore(conn_factory=factory)


def test_get_last_sync_num_reads_cursor_row():
    conn = FakeConn(row=(42,))
    assert _store(conn).get_last_sync_num() == 42

    sql, params = conn.executed[0]
    assert "FROM app.sync_state" in sql
    assert params == (CURSOR_KEY,)


def test_get_last_sync_num_missing_row():
    assert _store(FakeConn(row=None)).get_last_sync_num() is None


def test_set_last_sync_num_never_moves_backwards():
    conn = FakeConn()
    _store(conn).set_last_sync_num(17)

    sql, params = conn.executed[0]
    assert "ON CONFLICT (key) DO UPDATE" in sql
    assert "GREATEST" in sql
    assert params == (CURSOR_KEY, 17)


def test_get_payment_by_external_id_maps_row():
    conn = FakeConn(
        row={"id": 7, "plaid_id": "tr-1", "bill_id": "bill-9", "status": "PENDING", "error_message": None}
    )
    payment = _store(conn).get_payment_by_external_id("tr-1")

    assert payment.id == 7
    assert payment.external_transfer_id == "tr-1"
    assert payment.bill_id == "bill-9"
    assert payment.status == "PENDING"
    assert conn.executed[0][1] == ("tr-1",)
    assert "cursor_factory" in conn.cursor_kwargs[0]


def test_get_payment_by_external_id_not_found():
    assert _store(FakeConn(row=None)).get_payment_by_external_id("nope") is None


def test_update_payment_status_with_expected_status():
    conn = FakeConn(rowcount=1)
    ok = _store(conn).update_payment_status(
        7, PaymentStatus.FAILED, "bill-9", "Insufficient funds", expected_status="PENDING"
    )

    assert ok is True
    sql, params = conn.executed[0]
    assert "AND status = %s" in sql
    assert params == ("FAILED", "Insufficient funds", 7, "bill-9", "PENDING")


def test_update_payment_status_without_guard():
    conn = FakeConn(rowcount=1)
    assert _store(conn).update_payment_status(7, "POSTED", "bill-9", "") is True

    sql, params = conn.executed[0]
    assert "AND status = %s" not in sql
    assert params == ("POSTED", "", 7, "bill-9")


def test_update_payment_status_lost_race_returns_false():
    conn = FakeConn(rowcount=0)
    assert _store(conn).update_payment_status(7, "POSTED", "bill-9", "", expected_status="PENDING") is False


def test_update_rejects_unknown_status():
    with pytest.raises(ValueError):
        _store(FakeConn()).update_payment_status(7, "BOUNCED", "bill-9", "")


@pytest.mark.parametrize(
    "call",
    [
        lambda s: s.get_last_sync_num(),
        lambda s: s.set_last_sync_num(3),
        lambda s: s.get_payment_by_external_id("tr-1"),
        lambda s: s.update_payment_status(1, "POSTED", "b", ""),
    ],
)
def test_driver_errors_become_store_errors(call):
    conn = FakeConn(raise_on_execute=psycopg2.OperationalError("server closed the connection"))

    with pytest.raises(StoreError):
        call(_store(conn))


def test_connection_failure_becomes_store_error():
    @contextmanager
    def factory():
        raise psycopg2.OperationalError("could not connect to server")
        yield  # pragma: no cover

    with pytest.raises(StoreError):
        PgPaymentStore(conn_factory=factory).get_last_sync_num()


def test_stream_lock_takes_advisory_lock_on_cursor_key():
    conn = FakeConn(row=(True,))
    with _store(conn).stream_lock() as held:
        assert held is True

    sql, params = conn.executed[0]
    assert "pg_try_advisory_xact_lock" in sql
    assert params == (f"payment_events:{CURSOR_KEY}",)


def test_stream_lock_reports_contention():
    with _store(FakeConn(row=(False,))).stream_lock() as held:
        assert held is False


def test_stream_lock_keeps_transaction_open_for_the_block():
    events = []

    @contextmanager
    def factory():
        events.append("open")
        yield FakeConn(row=(True,))
        events.append("commit")

    with PgPaymentStore(conn_factory=factory).stream_lock():
        events.append("pass")

    assert events == ["open", "pass", "commit"]


def test_stream_lock_driver_error_becomes_store_error():
    conn = FakeConn(raise_on_execute=psycopg2.OperationalError("server closed the connection"))

    with pytest.raises(StoreError):
        with _store(conn).stream_lock():
            pass
