# app/payments/state_machine.py
from __future__ import annotations

from typing import Optional

from app.payments.model import PaymentStatus


class InvalidTransition(Exception):
    pass


S = PaymentStatus

# The rail can re-emit an event for a status the payment already has, so
# PENDING -> PENDING is allowed. Anything not listed is rejected.
ALLOWED: dict[PaymentStatus, frozenset[PaymentStatus]] = {
    S.NEW: frozenset({S.PENDING}),
    S.PENDING: frozenset({S.PENDING, S.FAILED, S.POSTED, S.CANCELLED}),
    S.POSTED: frozenset({S.SETTLED, S.RETURNED}),
    S.SETTLED: frozenset({S.RETURNED}),  # ACH returns can arrive after settlement
    S.RETURNED: frozenset(),
    S.FAILED: frozenset(),
    S.CANCELLED: frozenset(),
}

TERMINAL_STATUSES = frozenset(status for status, nxt in ALLOWED.items() if not nxt)


def parse_status(raw: str | PaymentStatus | None) -> Optional[PaymentStatus]:
    """
    Normalize a stored status or a rail event_type ("posted") to PaymentStatus.
    Returns None for anything outside the closed set.
    """
    if isinstance(raw, PaymentStatus):
        return raw
    value = (raw or "").strip().upper()
    try:
        return PaymentStatus(value)
    except ValueError:
        return None


def allowed_next(current: str | PaymentStatus | None) -> Optional[frozenset[PaymentStatus]]:
    """
    None means the table has no entry for `current`, which is different from
    an empty set (a terminal status).
    """
    status = parse_status(current)
    if status is None:
        return None
    return ALLOWED.get(status)


def is_terminal(status: str | PaymentStatus | None) -> bool:
    return parse_status(status) in TERMINAL_STATUSES


def assert_transition(old: str | PaymentStatus, new: str | PaymentStatus) -> None:
    nxt = allowed_next(old)
    target = parse_status(new)
    if nxt is None or target is None or target not in nxt:
        raise InvalidTransition(f"Illegal payment transition: {_label(old)} -> {_label(new)}")


def _label(value: str | PaymentStatus) -> str:
    return value.value if isinstance(value, PaymentStatus) else str(value)
