# app/payments/repository.py
from __future__ import annotations

from contextlib import contextmanager
from typing import Any, ContextManager, Iterator, Optional, Protocol

import psycopg2
from psycopg2.extras import RealDictCursor

from db import get_conn
from app.payments.model import Payment, PaymentStatus

CURSOR_KEY = "transfer_events"


class StoreError(Exception):
    """Store unreachable or a query failed. Callers treat it as transient."""


class PaymentEventStore(Protocol):
    def stream_lock(self) -> ContextManager[bool]: ...
    def get_last_sync_num(self) -> Optional[int]: ...
    def set_last_sync_num(self, sync_num: int) -> None: ...
    def get_payment_by_external_id(self, transfer_id: str) -> Optional[Payment]: ...
    def update_payment_status(
        self,
        payment_id: Any,
        new_status: PaymentStatus,
        bill_id: Any,
        error_message: str,
        *,
        expected_status: Optional[str] = None,
    ) -> bool: ...


def _row_to_payment(row: dict) -> Payment:
    return Payment(
        id=row["id"],
        external_transfer_id=row["plaid_id"],
        bill_id=row["bill_id"],
        status=row["status"],
        error_message=row.get("error_message"),
    )


class PgPaymentStore:
    """
    Postgres-backed store. Each call runs in its own transaction.
    """

    def __init__(self, *, cursor_key: str = CURSOR_KEY, conn_factory=get_conn):
        self.cursor_key = cursor_key
        self._conn_factory = conn_factory

    def get_last_sync_num(self) -> Optional[int]:
        try:
            with self._conn_factory() as conn:
                with conn.cursor() as cur:
                    cur.execute(
                        "SELECT last_sync_num FROM app.sync_state WHERE key = %s",
                        (self.cursor_key,),
                    )
                    row = cur.fetchone()
        except psycopg2.Error as e:
            raise StoreError(f"get_last_sync_num failed: {e}") from e
        return int(row[0]) if row and row[0] is not None else None

    def set_last_sync_num(self, sync_num: int) -> None:
        # GREATEST keeps the stored cursor from moving backwards
        try:
            with self._conn_factory() as conn:
                with conn.cursor() as cur:
                    cur.execute(
                        """
                        INSERT INTO app.sync_state (key, last_sync_num, updated_at)
                        VALUES (%s, %s, now())
                        ON CONFLICT (key) DO UPDATE
                          SET last_sync_num = GREATEST(app.sync_state.last_sync_num, EXCLUDED.last_sync_num),
                              updated_at = now()
                        """,
                        (self.cursor_key, int(sync_num)),
                    )
        except psycopg2.Error as e:
            raise StoreError(f"set_last_sync_num failed: {e}") from e

    def get_payment_by_external_id(self, transfer_id: str) -> Optional[Payment]:
        try:
            with self._conn_factory() as conn:
                with conn.cursor(cursor_factory=RealDictCursor) as cur:
                    cur.execute(
                        """
                        select p.id, p.plaid_id, p.bill_id, p.status, p.error_message
                        from app.payments p
                        where p.plaid_id = %s
                        limit 1
                        """,
                        (transfer_id,),
                    )
                    row = cur.fetchone()
        except psycopg2.Error as e:
            raise StoreError(f"get_payment_by_external_id failed: {e}") from e
        return _row_to_payment(dict(row)) if row else None

    def update_payment_status(
        self,
        payment_id: Any,
        new_status: PaymentStatus,
        bill_id: Any,
        error_message: str,
        *,
        expected_status: Optional[str] = None,
    ) -> bool:
        """
        Compare-and-set when expected_status is given: the row is only
        touched if its status is still the one the caller validated against.
        """
        status_guard_sql = ""
        params: list[Any] = [PaymentStatus(new_status).value, error_message, payment_id, bill_id]
        if expected_status is not None:
            status_guard_sql = "AND status = %s"
            params.append(expected_status)

        try:
            with self._conn_factory() as conn:
                with conn.cursor() as cur:
                    cur.execute(
                        f"""
                        UPDATE app.payments
                        SET
                          status = %s,
                          error_message = %s,
                          updated_at = now()
                        WHERE id = %s
                          AND bill_id = %s
                          {status_guard_sql}
                        """,
                        tuple(params),
                    )
                    return cur.rowcount == 1
        except psycopg2.Error as e:
            raise StoreError(f"update_payment_status failed: {e}") from e

    @contextmanager
    def stream_lock(self) -> Iterator[bool]:
        """
        Transaction-scoped advisory lock on this cursor's event stream, held
        for the caller's block. Yields False when another session holds it;
        Postgres drops it on commit, rollback or a lost connection.
        """
        try:
            with self._conn_factory() as conn:
                with conn.cursor() as cur:
                    cur.execute(
                        "SELECT pg_try_advisory_xact_lock(hashtext(%s))",
                        (f"payment_events:{self.cursor_key}",),
                    )
                    row = cur.fetchone()
                yield bool(row and row[0])
        except psycopg2.Error as e:
            raise StoreError(f"stream_lock failed: {e}") from e
