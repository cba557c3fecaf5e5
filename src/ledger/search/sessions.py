"""Bounded registry of per-client debounced search coordinators."""

from collections import OrderedDict
from collections.abc import Callable

import structlog

from ledger.search.coordinator import QueryCoordinator

logger = structlog.get_logger()


class SearchSessions:
    """Maps client session ids to their own QueryCoordinator.

    Least-recently-used sessions are evicted once max_sessions is reached;
    an evicted session's pending query is cancelled.
    """

    def __init__(
        self,
        factory: Callable[[], QueryCoordinator],
        max_sessions: int = 256,
    ) -> None:
        """Initialize session registry.

        Args:
            factory: Builds a coordinator for a new session.
            max_sessions: Maximum sessions kept alive.
        """
        self._factory = factory
        self._max_sessions = max_sessions
        self._sessions: OrderedDict[str, QueryCoordinator] = OrderedDict()

    def __len__(self) -> int:
        return len(self._sessions)

    def get(self, session_id: str) -> QueryCoordinator:
        """Return the session's coordinator, creating it if needed."""
        coordinator = self._sessions.get(session_id)
        if coordinator is not None:
            self._sessions.move_to_end(session_id)
            return coordinator

        while len(self._sessions) >= self._max_sessions:
            evicted_id, evicted = self._sessions.popitem(last=False)
            evicted.cancel_pending()
            logger.debug("search_session_evicted", session_id=evicted_id)

        coordinator = self._factory()
        self._sessions[session_id] = coordinator
        return coordinator

    def discard(self, session_id: str) -> None:
        """Forget a session and cancel its pending query."""
        coordinator = self._sessions.pop(session_id, None)
        if coordinator is not None:
            coordinator.cancel_pending()

    def close(self) -> None:
        """Cancel every session's pending query."""
        for coordinator in self._sessions.values():
            coordinator.cancel_pending()
        self._sessions.clear()
