from __future__ import annotations
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Any


class PaymentStatus(str, Enum):
    NEW = "NEW"
    PENDING = "PENDING"
    POSTED = "POSTED"
    SETTLED = "SETTLED"
    RETURNED = "RETURNED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


@dataclass(frozen=True)
class Payment:
    id: Any
    external_transfer_id: str
    bill_id: Any
    # Raw value as stored; may not be a valid PaymentStatus if the row is corrupted
    status: str
    error_message: Optional[str] = None
