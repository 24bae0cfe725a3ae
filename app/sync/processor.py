# app/sync/processor.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

from app.payments.repository import PaymentEventStore
from app.payments.state_machine import allowed_next, parse_status
from app.rail.base import TransferEvent
from services.metrics import increment_sync_event

logger = logging.getLogger("billpay.sync")


class Outcome(str, Enum):
    APPLIED = "APPLIED"
    SKIPPED = "SKIPPED"
    REJECTED = "REJECTED"


class Reason(str, Enum):
    UNKNOWN_TRANSFER = "UNKNOWN_TRANSFER"
    UNKNOWN_EVENT_TYPE = "UNKNOWN_EVENT_TYPE"
    UNRECOGNIZED_CURRENT_STATUS = "UNRECOGNIZED_CURRENT_STATUS"
    ILLEGAL_TRANSITION = "ILLEGAL_TRANSITION"
    CONCURRENT_UPDATE = "CONCURRENT_UPDATE"


@dataclass(frozen=True)
class ProcessResult:
    outcome: Outcome
    reason: Optional[Reason] = None
    payment_id: Any = None
    status_before: Optional[str] = None
    status_after: Optional[str] = None

    @property
    def applied(self) -> bool:
        return self.outcome is Outcome.APPLIED


def _result(outcome: Outcome, reason: Optional[Reason] = None, **kw) -> ProcessResult:
    increment_sync_event(outcome.value, reason.value if reason else None)
    return ProcessResult(outcome=outcome, reason=reason, **kw)


def process_event(store: PaymentEventStore, event: TransferEvent) -> ProcessResult:
    """
    Apply one rail event to the matching local payment.

    Anomalies (unknown transfer, unknown event type, corrupted local status,
    illegal transition) are logged and returned, never raised: a bad event
    must not stop the rest of the pass. Only StoreError escapes.
    """
    logger.debug(
        "event_received event_id=%s transfer_id=%s event_type=%s",
        event.event_id,
        event.transfer_id,
        event.event_type,
    )
    payment = store.get_payment_by_external_id(event.transfer_id)

    if payment is None:
        # Other applications can share the same rail account
        logger.warning(
            "event_skipped reason=UNKNOWN_TRANSFER event_id=%s transfer_id=%s",
            event.event_id,
            event.transfer_id,
        )
        return _result(Outcome.SKIPPED, Reason.UNKNOWN_TRANSFER)

    new_status = parse_status(event.event_type)
    if new_status is None:
        logger.warning(
            "event_skipped reason=UNKNOWN_EVENT_TYPE event_id=%s transfer_id=%s event_type=%r",
            event.event_id,
            event.transfer_id,
            event.event_type,
        )
        return _result(
            Outcome.SKIPPED,
            Reason.UNKNOWN_EVENT_TYPE,
            payment_id=payment.id,
            status_before=payment.status,
            status_after=payment.status,
        )

    nxt = allowed_next(payment.status)
    if nxt is None:
        logger.error(
            "event_skipped reason=UNRECOGNIZED_CURRENT_STATUS event_id=%s payment_id=%s status=%r",
            event.event_id,
            payment.id,
            payment.status,
        )
        return _result(
            Outcome.SKIPPED,
            Reason.UNRECOGNIZED_CURRENT_STATUS,
            payment_id=payment.id,
            status_before=payment.status,
            status_after=payment.status,
        )

    if new_status not in nxt:
        # Usually a replayed batch after a crash or a manual re-run
        logger.warning(
            "event_rejected reason=ILLEGAL_TRANSITION event_id=%s payment_id=%s from=%s to=%s",
            event.event_id,
            payment.id,
            payment.status,
            new_status.value,
        )
        return _result(
            Outcome.REJECTED,
            Reason.ILLEGAL_TRANSITION,
            payment_id=payment.id,
            status_before=payment.status,
            status_after=payment.status,
        )

    error_message = ""
    if event.failure_reason is not None:
        error_message = event.failure_reason.description or ""

    updated = store.update_payment_status(
        payment.id,
        new_status,
        payment.bill_id,
        error_message,
        expected_status=payment.status,
    )
    if not updated:
        logger.warning(
            "event_rejected reason=CONCURRENT_UPDATE event_id=%s payment_id=%s expected_status=%s",
            event.event_id,
            payment.id,
            payment.status,
        )
        return _result(
            Outcome.REJECTED,
            Reason.CONCURRENT_UPDATE,
            payment_id=payment.id,
            status_before=payment.status,
        )

    logger.info(
        "event_applied event_id=%s payment_id=%s from=%s to=%s",
        event.event_id,
        payment.id,
        payment.status,
        new_status.value,
    )
    return _result(
        Outcome.APPLIED,
        payment_id=payment.id,
        status_before=payment.status,
        status_after=new_status.value,
    )
