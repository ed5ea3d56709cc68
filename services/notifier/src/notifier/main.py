from __future__ import annotations

import json
import logging
import secrets
import time
import uuid
from collections.abc import Callable
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from notifier.config import Settings, load_settings
from notifier.context import AppContext, build_context
from notifier.models import DigestLogEntry, HealthReport, RunSummary

LOGGER = logging.getLogger("jobboard.notifier.api")


class TriggerRequest(BaseModel):
    force: bool = False
    limit: int | None = Field(default=None, ge=1)


class DigestLogListing(BaseModel):
    success: list[DigestLogEntry]
    failed: list[DigestLogEntry]


def tokens_match(expected: str, provided: str | None) -> bool:
    if not provided:
        return False
    return secrets.compare_digest(expected.encode(), provided.strip().encode())


def create_app(
    settings: Settings | None = None,
    *,
    context_factory: Callable[[Settings], AppContext] = build_context,
    start_scheduler: bool = True,
) -> FastAPI:
    resolved_settings = settings or load_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        context = context_factory(resolved_settings)
        await context.start(start_scheduler=start_scheduler)
        app.state.context = context
        try:
            yield
        finally:
            await context.close()

    app = FastAPI(title="JobBoard Notifier", version="0.1.0", lifespan=lifespan)

    @app.middleware("http")
    async def observability_middleware(request: Request, call_next):
        request_id = request.headers.get("x-request-id") or str(uuid.uuid4())
        request.state.request_id = request_id
        started = time.perf_counter()

        try:
            response = await call_next(request)
        except Exception as exc:
            duration_ms = (time.perf_counter() - started) * 1000
            LOGGER.exception(
                json.dumps(
                    {
                        "event": "request_complete",
                        "request_id": request_id,
                        "method": request.method,
                        "path": request.url.path,
                        "status_code": 500,
                        "duration_ms": round(duration_ms, 3),
                        "error": str(exc),
                    }
                )
            )
            return JSONResponse(
                status_code=500,
                content={"detail": "Internal Server Error", "request_id": request_id},
                headers={"x-request-id": request_id},
            )

        duration_ms = (time.perf_counter() - started) * 1000
        response.headers["x-request-id"] = request_id
        LOGGER.info(
            json.dumps(
                {
                    "event": "request_complete",
                    "request_id": request_id,
                    "method": request.method,
                    "path": request.url.path,
                    "status_code": response.status_code,
                    "duration_ms": round(duration_ms, 3),
                }
            )
        )
        return response

    def get_context(request: Request) -> AppContext:
        return request.app.state.context

    def require_health_token(request: Request) -> None:
        expected = get_context(request).settings.health_token
        if not expected:
            return
        provided = (
            request.headers.get("x-marketing-token")
            or request.headers.get("x-marketing-health-token")
            or request.query_params.get("token")
        )
        if not tokens_match(expected, provided):
            raise HTTPException(status_code=401, detail="Unauthorized")

    def require_admin_token(request: Request) -> None:
        expected = get_context(request).settings.admin_token
        if not expected:
            return
        if not tokens_match(expected, request.headers.get("x-admin-key")):
            raise HTTPException(status_code=401, detail="Unauthorized")

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok", "service": "notifier"}

    @app.get("/marketing/health", response_model=HealthReport)
    async def marketing_health(request: Request) -> HealthReport:
        require_health_token(request)
        return await get_context(request).orchestrator.health_report()

    @app.post("/marketing/trigger", response_model=RunSummary)
    async def trigger_digest(
        request: Request, payload: TriggerRequest | None = None
    ) -> RunSummary:
        require_admin_token(request)
        options = payload or TriggerRequest()
        summary = await get_context(request).orchestrator.run(
            source="manual-trigger", force=options.force, limit=options.limit
        )
        LOGGER.info(
            json.dumps(
                {
                    "event": "manual_trigger_complete",
                    "request_id": request.state.request_id,
                    "batch_id": summary.batch_id,
                    "ok": summary.ok,
                    "skipped": summary.skipped,
                }
            )
        )
        return summary

    @app.get("/marketing/summary", response_model=RunSummary | None)
    async def last_summary(request: Request) -> RunSummary | None:
        return get_context(request).orchestrator.last_summary

    @app.get("/marketing/logs", response_model=DigestLogListing)
    async def digest_logs(
        request: Request, limit: int = Query(default=50, ge=1, le=500)
    ) -> DigestLogListing:
        require_admin_token(request)
        digest_log = get_context(request).digest_log
        success = await run_in_threadpool(digest_log.list_recent, "SUCCESS", limit)
        failed = await run_in_threadpool(digest_log.list_recent, "FAILED", limit)
        return DigestLogListing(success=success, failed=failed)

    @app.post("/telegram/webhook")
    async def telegram_webhook(
        request: Request, secret: str | None = Query(default=None)
    ) -> dict[str, Any]:
        context = get_context(request)
        expected = context.settings.webhook_secret
        if expected and not tokens_match(expected, secret):
            raise HTTPException(status_code=401, detail="Unauthorized")
        try:
            body = await request.json()
        except ValueError as exc:
            raise HTTPException(status_code=400, detail="Invalid JSON body") from exc
        results = await context.webhook.process_updates(body)
        return {"ok": True, "processed": [result.model_dump() for result in results]}

    return app


app = create_app()
