#main.py
import logging
import os

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from app.payments.repository import StoreError
from app.rail.base import RailError
from middleware import RequestContextMiddleware
from routes.debug import debug_enabled, router as debug_router
from routes.health import router as health_router
from routes.webhooks import router as webhooks_router
from schemas import ErrorResponse
from services.observability import configure_logging
from settings import settings

logger = logging.getLogger("billpay.api")


async def rail_error_handler(request: Request, exc: RailError):
    logger.error("rail_error path=%s status=%s error=%s", request.url.path, exc.status_code, exc)
    if exc.response:
        # Pass the rail's own error object through, it's the most useful thing to show
        return JSONResponse(status_code=500, content=exc.response)
    return JSONResponse(
        status_code=500,
        content=ErrorResponse(error_code="RAIL_UNAVAILABLE", error_message=str(exc)).model_dump(),
    )


async def store_error_handler(request: Request, exc: StoreError):
    logger.error("store_error path=%s error=%s", request.url.path, exc)
    return JSONResponse(
        status_code=500,
        content=ErrorResponse(
            error_code="STORE_UNAVAILABLE",
            error_message="The payment store is unavailable.",
        ).model_dump(),
    )


async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("unhandled_error path=%s", request.url.path, exc_info=exc)
    return JSONResponse(
        status_code=500,
        content=ErrorResponse(error_code="OTHER_ERROR", error_message="Internal server error").model_dump(),
    )


def create_app() -> FastAPI:
    configure_logging()

    app = FastAPI(title="BillPay Transfer Sync API", version="1.0.0")
    app.add_middleware(RequestContextMiddleware)

    # -----------------------------
    # ROUTERS
    # -----------------------------
    app.include_router(health_router)
    app.include_router(webhooks_router)
    if debug_enabled():
        app.include_router(debug_router)

    app.add_exception_handler(RailError, rail_error_handler)
    app.add_exception_handler(StoreError, store_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
    return app


app = create_app()


def _resolve_port() -> int:
    raw = (os.getenv("PORT") or "").strip()
    if raw.isdigit():
        return int(raw)
    return settings.WEBHOOK_PORT


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=_resolve_port())
