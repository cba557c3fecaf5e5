"""Admin endpoints for search index maintenance."""

import structlog
from fastapi import APIRouter, Request
from pydantic import BaseModel

from ledger.service import LedgerService

logger = structlog.get_logger()

router = APIRouter(prefix="/admin", tags=["admin"])


class ReindexResponse(BaseModel):
    """Result of an index rebuild.

    Attributes:
        indexed: Entries written to the rebuilt index.
        records: Records in the store at rebuild time.
        sync_failures: Index writes that failed since startup.
    """

    indexed: int
    records: int
    sync_failures: int


@router.post("/reindex", response_model=ReindexResponse)
async def reindex(request: Request) -> ReindexResponse:
    """Drop the search index and rebuild it from the record store."""
    service: LedgerService = request.app.state.service
    indexed = await service.reindex()
    records = service.store.count()
    failures = service.synchronizer.failures if service.synchronizer else 0
    logger.info("admin_reindex", indexed=indexed, records=records)
    return ReindexResponse(indexed=indexed, records=records, sync_failures=failures)
