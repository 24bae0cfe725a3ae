import logging

import pytest

from app.payments.model import PaymentStatus
from app.payments.repository import StoreError
from app.payments.state_machine import ALLOWED, TERMINAL_STATUSES
from app.sync.processor import Outcome, Reason, process_event
from services.metrics import get_counter
from tests.conftest import InMemoryPaymentStore, make_event


def test_applies_legal_transition(store):
    p = store.add_payment("tr-1", status="PENDING")

    res = process_event(store, make_event(1, "tr-1", "posted"))

    assert res.outcome is Outcome.APPLIED
    assert res.reason is None
    assert res.payment_id == p.id
    assert (res.status_before, res.status_after) == ("PENDING", "POSTED")
    assert store.status_of("tr-1") == "POSTED"
    assert store.updates == [(p.id, "POSTED", "bill-1", "")]


def test_failure_reason_description_becomes_error_message(store):
    store.add_payment("tr-1", status="PENDING")

    process_event(store, make_event(1, "tr-1", "failed", description="Insufficient funds"))

    p = store.get_payment_by_external_id("tr-1")
    assert p.status == "FAILED"
    assert p.error_message == "Insufficient funds"


def test_unknown_transfer_is_skipped_with_warning(store, caplog):
    caplog.set_level(logging.WARNING, logger="billpay.sync")

    res = process_event(store, make_event(7, "someone-elses-transfer", "posted"))

    assert res.outcome is Outcome.SKIPPED
    assert res.reason is Reason.UNKNOWN_TRANSFER
    assert store.updates == []
    assert any(r.levelno == logging.WARNING and "UNKNOWN_TRANSFER" in r.getMessage() for r in caplog.records)


def test_unknown_event_type_is_skipped(store):
    store.add_payment("tr-1", status="PENDING")

    res = process_event(store, make_event(1, "tr-1", "swept"))

    assert res.outcome is Outcome.SKIPPED
    assert res.reason is Reason.UNKNOWN_EVENT_TYPE
    assert store.status_of("tr-1") == "PENDING"


def test_corrupted_local_status_is_reported_as_error(store, caplog):
    caplog.set_level(logging.WARNING, logger="billpay.sync")
    store.add_payment("tr-1", status="ON_HOLD")

    res = process_event(store, make_event(1, "tr-1", "posted"))

    assert res.outcome is Outcome.SKIPPED
    assert res.reason is Reason.UNRECOGNIZED_CURRENT_STATUS
    assert store.updates == []
    assert any(r.levelno == logging.ERROR for r in caplog.records)


def test_illegal_transition_is_rejected_without_raising(store):
    store.add_payment("tr-1", status="NEW")

    res = process_event(store, make_event(1, "tr-1", "settled"))

    assert res.outcome is Outcome.REJECTED
    assert res.reason is Reason.ILLEGAL_TRANSITION
    assert store.status_of("tr-1") == "NEW"
    assert get_counter("sync_events_total", {"outcome": "REJECTED", "reason": "ILLEGAL_TRANSITION"}) == 1


@pytest.mark.parametrize("current", [s.value for s in PaymentStatus])
def test_disallowed_event_never_changes_status(current):
    for target in PaymentStatus:
        if target in ALLOWED[PaymentStatus(current)]:
            continue
        store = InMemoryPaymentStore()
        store.add_payment("tr-1", status=current)

        res = process_event(store, make_event(1, "tr-1", target.value.lower()))

        assert res.outcome is Outcome.REJECTED
        assert store.status_of("tr-1") == current


@pytest.mark.parametrize("terminal", sorted(s.value for s in TERMINAL_STATUSES))
def test_terminal_payment_is_never_mutated(terminal):
    store = InMemoryPaymentStore()
    store.add_payment("tr-1", status=terminal)

    for i, target in enumerate(PaymentStatus, start=1):
        process_event(store, make_event(i, "tr-1", target.value))

    assert store.status_of("tr-1") == terminal
    assert store.updates == []


def test_redelivery_with_self_loop_is_idempotent(store):
    store.add_payment("tr-1", status="NEW")
    event = make_event(1, "tr-1", "pending")

    first = process_event(store, event)
    second = process_event(store, event)

    assert first.outcome is Outcome.APPLIED
    assert second.outcome is Outcome.APPLIED
    assert store.status_of("tr-1") == "PENDING"


def test_redelivery_without_self_loop_is_rejected(store):
    store.add_payment("tr-1", status="PENDING")
    event = make_event(1, "tr-1", "posted")

    first = process_event(store, event)
    second = process_event(store, event)

    assert first.outcome is Outcome.APPLIED
    assert second.outcome is Outcome.REJECTED
    assert second.reason is Reason.ILLEGAL_TRANSITION
    assert store.status_of("tr-1") == "POSTED"


def test_concurrent_status_change_is_rejected(store, monkeypatch):
    p = store.add_payment("tr-1", status="PENDING")
    stale = store.get_payment_by_external_id("tr-1")
    # Someone else moves the row after we read it
    store.update_payment_status(p.id, PaymentStatus.CANCELLED, p.bill_id, "")
    monkeypatch.setattr(store, "get_payment_by_external_id", lambda transfer_id: stale)

    res = process_event(store, make_event(2, "tr-1", "posted"))

    assert res.outcome is Outcome.REJECTED
    assert res.reason is Reason.CONCURRENT_UPDATE
    assert store.payments[p.id].status == "CANCELLED"


def test_store_failure_propagates(store):
    store.add_payment("tr-1", status="PENDING")
    store.fail_on_update = True

    with pytest.raises(StoreError):
        process_event(store, make_event(1, "tr-1", "posted"))
