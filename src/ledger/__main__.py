"""Run the ledger API with uvicorn: ``python -m ledger`` or ``ledger-api``."""

import structlog
import uvicorn

from ledger.app import create_app
from ledger.config import Settings
from ledger.logging import configure_logging

logger = structlog.get_logger()


def main() -> None:
    """Start the server with settings from the environment.

    uvicorn owns signal handling; on SIGTERM/SIGINT it runs the lifespan
    shutdown, which cancels pending searches and closes store and index.
    """
    settings = Settings()
    configure_logging(debug=settings.debug)
    logger.info(
        "server_starting",
        host=settings.host,
        port=settings.port,
        database_path=settings.database_path,
        search_index_enabled=settings.search_index_enabled,
    )
    uvicorn.run(
        create_app(settings),
        host=settings.host,
        port=settings.port,
        log_level="debug" if settings.debug else "warning",
        access_log=False,
    )


if __name__ == "__main__":
    main()
