"""Server-Sent Events stream of transaction change notifications."""

from typing import Literal

import structlog
from fastapi import APIRouter, Query, Request, status
from fastapi.responses import JSONResponse
from sse_starlette.sse import EventSourceResponse

from ledger.events.bus import SubscriberLimitReached
from ledger.events.hub import BroadcastHub

logger = structlog.get_logger()

router = APIRouter(prefix="/events", tags=["events"])

_NO_BUFFERING = {"Cache-Control": "no-cache", "X-Accel-Buffering": "no"}


@router.get("/stream", response_model=None)
async def event_stream(
    request: Request,
    topic: Literal["transactions", "system", "*"] = Query(
        default="*",
        description="'transactions' for record changes, 'system' for index rebuilds",
    ),
) -> EventSourceResponse | JSONResponse:
    """Push a notification whenever transactions change.

    Clients refresh their listing or re-run their current search on each
    event; heartbeats keep idle connections open.

    Returns:
        SSE stream, or 503 when the subscriber limit is reached.
    """
    hub: BroadcastHub = request.app.state.broadcast_hub
    try:
        stream = await hub.open_stream(topic)
    except SubscriberLimitReached as e:
        logger.warning("sse_client_refused", topic=topic, reason=str(e))
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={
                "error": "Too many event stream connections",
                "recovery_suggestion": "Please try again later",
            },
        )
    return EventSourceResponse(stream, headers=_NO_BUFFERING)
