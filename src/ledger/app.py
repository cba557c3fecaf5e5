"""Application factory: wires store, index, service and events into FastAPI."""

import asyncio
import contextlib
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from ledger.config import Settings
from ledger.errors import InvalidData, InvalidQuery, LedgerError, NotFound
from ledger.events import BroadcastHub, EventBus
from ledger.middleware.auth import APIKeyMiddleware
from ledger.middleware.cors import configure_cors
from ledger.middleware.logging import RequestLoggingMiddleware
from ledger.records import RecordStore
from ledger.routes import admin, events, health, search, transactions
from ledger.search import SearchIndex, SearchSessions
from ledger.service import LedgerService

logger = structlog.get_logger()

_ERROR_STATUS: dict[type[LedgerError], int] = {
    NotFound: status.HTTP_404_NOT_FOUND,
    InvalidData: 422,
    InvalidQuery: status.HTTP_400_BAD_REQUEST,
}


async def ledger_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """Render typed ledger failures as JSON error bodies.

    Args:
        request: Request that failed.
        exc: The raised LedgerError.

    Returns:
        JSON response with description and recovery suggestion.
    """
    assert isinstance(exc, LedgerError)
    code = next(
        (c for cls, c in _ERROR_STATUS.items() if isinstance(exc, cls)),
        status.HTTP_500_INTERNAL_SERVER_ERROR,
    )
    logger.warning(
        "request_failed",
        path=request.url.path,
        error=type(exc).__name__,
        status=code,
    )
    return JSONResponse(
        status_code=code,
        content={
            "error": exc.description,
            "detail": exc.message,
            "recovery_suggestion": exc.recovery_suggestion,
        },
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Open the store, project it into a fresh index and publish app state.

    Shutdown cancels pending session searches before closing the index and
    the store, so no worker thread reads a closed connection.
    """
    settings: Settings = app.state.settings
    logger.info("ledger_startup", database_path=settings.database_path)

    store = RecordStore(settings.database_path)
    store.initialize()

    index: SearchIndex | None = None
    if settings.search_index_enabled:
        index = SearchIndex()
        index.initialize()

    event_bus = EventBus(
        queue_size=settings.event_queue_size,
        max_subscribers=settings.event_max_subscribers,
    )
    broadcast_hub = BroadcastHub(
        event_bus,
        heartbeat_interval=settings.sse_heartbeat_interval,
    )

    service = LedgerService(
        store,
        index,
        hub=broadcast_hub,
        default_currency=settings.default_currency,
        debounce_ms=settings.search_debounce_ms,
        result_limit=settings.search_result_limit,
    )
    doc_count = await service.reindex()
    logger.info("search_index_ready", enabled=index is not None, document_count=doc_count)

    search_sessions = SearchSessions(
        service.create_coordinator,
        max_sessions=settings.search_max_sessions,
    )

    app.state.event_bus = event_bus
    app.state.broadcast_hub = broadcast_hub
    app.state.service = service
    app.state.search_sessions = search_sessions

    purge_task: asyncio.Task[None] | None = None
    if index is not None:
        purge_task = asyncio.create_task(
            service.purge_periodically(settings.search_purge_interval)
        )

    try:
        yield
    finally:
        if purge_task is not None:
            purge_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await purge_task

        search_sessions.close()
        if index is not None:
            index.close()
        store.close()
        await broadcast_hub.shutdown()
        logger.info("ledger_shutdown")


def create_app(settings: Settings | None = None) -> FastAPI:
    """Build the ledger API.

    Args:
        settings: Service settings; read from the environment when None.

    Returns:
        Application with routes mounted under /api/v1.
    """
    if settings is None:
        settings = Settings()

    app = FastAPI(
        title="Ledger Search API",
        version="0.1.0",
        lifespan=lifespan,
        docs_url="/api/v1/docs" if settings.debug else None,
        redoc_url=None,
        openapi_url="/api/v1/openapi.json" if settings.debug else None,
    )
    app.state.settings = settings

    configure_cors(app, settings.cors_origins)
    app.add_middleware(RequestLoggingMiddleware)
    if settings.key:
        app.add_middleware(APIKeyMiddleware, api_key=settings.key)
    app.add_exception_handler(LedgerError, ledger_error_handler)

    app.include_router(health.router, prefix="/api/v1")
    app.include_router(transactions.router, prefix="/api/v1")
    app.include_router(search.router, prefix="/api/v1")
    app.include_router(events.router, prefix="/api/v1")
    app.include_router(admin.router, prefix="/api/v1")

    return app
