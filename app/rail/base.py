# app/rail/base.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional, Protocol


class RailError(Exception):
    """
    The rail could not be reached or answered with an error.
    `response` carries the rail's error object when there is one.
    """

    def __init__(
        self,
        message: str,
        *,
        retryable: bool = True,
        status_code: Optional[int] = None,
        response: Optional[dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.retryable = retryable
        self.status_code = status_code
        self.response = response


@dataclass(frozen=True)
class FailureReason:
    description: Optional[str] = None
    failure_code: Optional[str] = None
    ach_return_code: Optional[str] = None

    @classmethod
    def from_api(cls, data: Any) -> Optional["FailureReason"]:
        if not isinstance(data, dict):
            return None
        return cls(
            description=data.get("description"),
            failure_code=data.get("failure_code"),
            ach_return_code=data.get("ach_return_code"),
        )


@dataclass(frozen=True)
class TransferEvent:
    event_id: int
    transfer_id: str
    event_type: str
    failure_reason: Optional[FailureReason] = None
    timestamp: Optional[str] = None

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "TransferEvent":
        return cls(
            event_id=int(data["event_id"]),
            transfer_id=str(data.get("transfer_id") or ""),
            event_type=str(data.get("event_type") or ""),
            failure_reason=FailureReason.from_api(data.get("failure_reason")),
            timestamp=data.get("timestamp"),
        )


@dataclass(frozen=True)
class EventBatch:
    events: list[TransferEvent] = field(default_factory=list)
    has_more: bool = False
    request_id: Optional[str] = None


class TransferRailClient(Protocol):
    def fetch_events(self, *, after_id: int, count: int) -> EventBatch: ...
    def get_webhook_verification_key(self, key_id: str) -> dict[str, Any]: ...
