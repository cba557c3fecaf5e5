"""Transaction search endpoints."""

from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi import APIRouter, Path, Query, Request, Response, status

from ledger.search.schemas import SearchResponse

if TYPE_CHECKING:
    from ledger.search.sessions import SearchSessions
    from ledger.service import LedgerService

router = APIRouter(prefix="/search", tags=["search"])


@router.get(
    "",
    response_model=SearchResponse,
    summary="Search transactions",
    description=(
        "Ranked full-text lookup with a direct content-filter fallback when "
        "the index has no match or is unavailable."
    ),
)
async def search(
    request: Request,
    q: str = Query(..., max_length=200, description="Search query string"),
) -> SearchResponse:
    """Search merchant, category, location and description text.

    Args:
        request: FastAPI request (provides access to app state).
        q: Search query; blank queries return no results.

    Returns:
        Matching transactions, newest first.
    """
    service: LedgerService = request.app.state.service
    outcome = await service.search(q)
    return SearchResponse.from_outcome(outcome)


@router.get(
    "/sessions/{session_id}",
    response_model=SearchResponse,
    responses={204: {"description": "Superseded by a newer query of the session"}},
    summary="Debounced search-as-you-type",
)
async def session_search(
    request: Request,
    session_id: str = Path(..., min_length=1, max_length=64, pattern=r"^[\w-]+$"),
    q: str = Query(..., max_length=200, description="Search query string"),
) -> SearchResponse | Response:
    """Debounced search scoped to a client session.

    Each request supersedes the session's previous one; only the latest
    request receives results, earlier ones get 204 No Content.

    Args:
        request: FastAPI request (provides access to app state).
        session_id: Client-chosen identifier, one per search box.
        q: Search query as currently typed.

    Returns:
        Matching transactions, or an empty 204 response when superseded.
    """
    sessions: SearchSessions = request.app.state.search_sessions
    outcome = await sessions.get(session_id).search(q)
    if outcome is None:
        return Response(status_code=status.HTTP_204_NO_CONTENT)
    return SearchResponse.from_outcome(outcome)


@router.delete(
    "/sessions/{session_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    response_class=Response,
    summary="End a search session",
)
async def end_session(
    request: Request,
    session_id: str = Path(..., min_length=1, max_length=64, pattern=r"^[\w-]+$"),
) -> Response:
    """Forget a session and cancel its pending query; unknown ids are ignored."""
    sessions: SearchSessions = request.app.state.search_sessions
    sessions.discard(session_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
