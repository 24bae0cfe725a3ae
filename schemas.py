# schemas.py
from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing import Optional, List, Any


# -------- WEBHOOKS --------
class WebhookError(BaseModel):
    model_config = ConfigDict(extra="allow")

    error_type: Optional[str] = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None


class WebhookPayload(BaseModel):
    # The rail adds fields over time; keep whatever it sends
    model_config = ConfigDict(extra="allow")

    webhook_type: str = ""
    webhook_code: str = ""
    item_id: Optional[str] = None
    environment: Optional[str] = None
    error: Optional[WebhookError] = None

    @field_validator("webhook_type", "webhook_code", mode="before")
    @classmethod
    def _coerce_code(cls, v: Any) -> str:
        # Odd types still get routed (to IGNORED) instead of failing the webhook
        if v is None:
            return ""
        return v if isinstance(v, str) else str(v)


class WebhookAck(BaseModel):
    status: str = "received"
    webhook_type: str
    webhook_code: str
    action: str


class ErrorResponse(BaseModel):
    error_code: str
    error_message: str


# -------- SYNC --------
class SyncAnomaly(BaseModel):
    event_id: int
    transfer_id: str
    event_type: str
    outcome: str
    reason: Optional[str] = None


class SyncRunResponse(BaseModel):
    ok: bool = True
    start_cursor: int
    end_cursor: int
    batches: int
    events_processed: int
    applied: int
    skipped: int
    rejected: int
    truncated: bool
    busy: bool = False
    duration_ms: int
    anomalies: List[SyncAnomaly] = Field(default_factory=list)

    @classmethod
    def from_result(cls, result: Any) -> "SyncRunResponse":
        return cls(**result.to_dict())
