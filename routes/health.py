from __future__ import annotations

import os

from fastapi import APIRouter
from fastapi.responses import Response

from db import get_conn
from services.metrics import render_prometheus
from settings import settings

router = APIRouter(tags=["health"])


def _check_db() -> tuple[bool, str | None]:
    try:
        with get_conn() as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT 1;")
                cur.fetchone()
        return True, None
    except Exception as exc:
        return False, f"{type(exc).__name__}: {exc}"


def _resolve_env() -> str:
    return (os.getenv("ENVIRONMENT") or os.getenv("ENV") or "").strip()


def _resolve_git_sha() -> str | None:
    return (os.getenv("GIT_SHA") or "").strip() or None


@router.get("/health")
def health():
    return {
        "ok": True,
        "env": _resolve_env(),
        "rail_mode": settings.RAIL_MODE,
        "plaid_env": settings.PLAID_ENV,
        "git_sha": _resolve_git_sha(),
    }


@router.get("/healthz")
def healthz():
    db_ok, db_error = _check_db()
    return {
        "ok": db_ok,
        "version": os.getenv("APP_VERSION", "1.0.0"),
        "git_sha": _resolve_git_sha(),
        "db_ok": db_ok,
        "db_error": db_error,
    }


@router.get("/metrics", tags=["metrics"])
def metrics():
    return Response(content=render_prometheus(), media_type="text/plain; version=0.0.4")
