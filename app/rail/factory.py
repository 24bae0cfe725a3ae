# app/rail/factory.py
from __future__ import annotations

import logging

from settings import settings

logger = logging.getLogger("billpay.rail")


def get_rail_client(mode: str | None = None):
    key = (mode or settings.RAIL_MODE or "").strip().lower()

    if key == "plaid":
        from app.rail.plaid import PlaidTransferClient
        return PlaidTransferClient()

    if key == "mock":
        from app.rail.mock import MockTransferRail
        logger.warning("rail_mode=mock; transfer events come from an in-memory rail")
        return MockTransferRail()

    raise ValueError(f"Unsupported RAIL_MODE: {key!r}")
