from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from bills_agent.core.config import Settings, load_settings
from bills_agent.core.errors import ApiError, InternalError, MethodNotAllowed, NotFound
from bills_agent.core.logging import logger, set_client_ip, set_request_context, set_trace_id, setup_logging
from bills_agent.routers.bills import build_bills_router
from bills_agent.routers.chat import build_chat_router
from bills_agent.routers.push import build_push_router
from bills_agent.services.completions import CompletionClient
from bills_agent.services.push import ExpoPushClient, send_scheduled_reminders
from bills_agent.services.store import BillStore

DOCS_HINT = "See README.md for API usage."
CORS_METHODS = ["GET", "POST", "PUT", "DELETE", "OPTIONS"]
CORS_HEADERS = "Content-Type, Authorization, Accept, X-Trace-Id"


def _error_response(exc: ApiError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.to_body())


def _cors_headers(request: Request) -> Dict[str, str]:
    return {
        "Access-Control-Allow-Origin": "*",
        "Access-Control-Allow-Methods": ",".join(CORS_METHODS),
        "Access-Control-Allow-Headers": request.headers.get("Access-Control-Request-Headers") or CORS_HEADERS,
    }


def _build_scheduler(settings: Settings, store: BillStore, push_client: ExpoPushClient) -> AsyncIOScheduler:
    options: Dict[str, Any] = {}
    if settings.timezone:
        options["timezone"] = settings.timezone
    scheduler = AsyncIOScheduler(**options)
    scheduler.add_job(
        send_scheduled_reminders,
        CronTrigger(hour=settings.push_reminder_hour, minute=0),
        args=[store, push_client],
        max_instances=1,
        coalesce=True,
        misfire_grace_time=3600,
    )
    return scheduler


def create_app(
    settings: Optional[Settings] = None,
    completion_client: Optional[CompletionClient] = None,
    push_client: Optional[ExpoPushClient] = None,
) -> FastAPI:
    settings = settings or load_settings()
    store = BillStore(settings.store_path)
    completion_client = completion_client or CompletionClient(settings)
    push_client = push_client or ExpoPushClient(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        setup_logging(settings.log_level)
        await store.load()
        scheduler = None
        if settings.push_reminder_hour is not None:
            scheduler = _build_scheduler(settings, store, push_client)
            scheduler.start()
            logger.info("Push reminder scheduler started hour=%s", settings.push_reminder_hour)
        app.state.push_scheduler = scheduler
        try:
            yield
        finally:
            if scheduler:
                scheduler.shutdown(wait=False)

    app = FastAPI(title="Bills Agent API", docs_url=None, redoc_url=None, lifespan=lifespan)
    app.state.settings = settings
    app.state.store = store

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=CORS_METHODS,
        allow_headers=["*"],
    )

    # Registered after CORS so it runs outermost and answers every OPTIONS itself.
    @app.middleware("http")
    async def request_context(request: Request, call_next):
        trace_id = set_trace_id(request.headers.get("X-Trace-Id"))
        set_client_ip(request.client.host if request.client else None)
        set_request_context(request.method, request.url.path)
        if request.method == "OPTIONS":
            response = Response(status_code=204, headers=_cors_headers(request))
        else:
            try:
                response = await call_next(request)
            except Exception:
                logger.exception("Unhandled server error")
                response = _error_response(InternalError())
                response.headers.update(_cors_headers(request))
        response.headers["X-Trace-Id"] = trace_id
        return response

    @app.exception_handler(ApiError)
    async def api_error_handler(request: Request, exc: ApiError):
        if exc.status_code >= 500:
            logger.warning("Request failed status=%s error=%s", exc.status_code, exc.error)
        return _error_response(exc)

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        if exc.status_code == 404:
            return _error_response(NotFound())
        if exc.status_code == 405:
            return _error_response(MethodNotAllowed())
        return _error_response(ApiError(str(exc.detail), status_code=exc.status_code))

    @app.get("/")
    async def root():
        body: Dict[str, Any] = {"status": "ok", "docs": DOCS_HINT}
        if settings.public_base_url:
            body["baseUrl"] = settings.public_base_url
        return body

    app.include_router(build_bills_router(store))
    app.include_router(build_push_router(store, push_client))
    app.include_router(build_chat_router(store, completion_client))

    return app


app = create_app()
