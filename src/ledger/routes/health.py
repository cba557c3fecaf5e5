"""Liveness and readiness probes."""
from typing import Literal

from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from ledger.errors import LedgerError
from ledger.service import LedgerService

router = APIRouter(prefix="/health", tags=["health"])

CheckStatus = Literal["ok", "degraded", "failed"]


class LivenessResponse(BaseModel):
    status: Literal["alive"] = "alive"


class DependencyCheck(BaseModel):
    """Outcome of probing one dependency.

    Attributes:
        name: "record_store" or "search_index".
        status: ok, degraded (search still works through the content
            filter) or failed (requests cannot be served).
        message: Entry count on success, failure reason otherwise.
    """

    name: str
    status: CheckStatus
    message: str | None = None


class ReadinessReport(BaseModel):
    status: Literal["ready", "not_ready"]
    checks: list[DependencyCheck]


def _probe_store(service: LedgerService) -> DependencyCheck:
    try:
        count = service.store.count()
    except LedgerError as e:
        return DependencyCheck(name="record_store", status="failed", message=e.description)
    return DependencyCheck(name="record_store", status="ok", message=f"{count} records")


def _probe_index(service: LedgerService) -> DependencyCheck:
    # Search degrades to the content filter, so the index never fails readiness
    if service.index is None:
        return DependencyCheck(name="search_index", status="degraded", message="disabled")
    try:
        count = service.index.count()
    except LedgerError as e:
        return DependencyCheck(name="search_index", status="degraded", message=e.description)
    return DependencyCheck(name="search_index", status="ok", message=f"{count} entries")


@router.get("/live", response_model=LivenessResponse)
async def liveness() -> LivenessResponse:
    """Answer as long as the process is serving requests."""
    return LivenessResponse()


@router.get("/ready", response_model=ReadinessReport)
async def readiness(request: Request) -> JSONResponse:
    """Report whether transactions can be read and written.

    Returns:
        200 with the per-dependency checks while the record store answers,
        503 when it does not.
    """
    service: LedgerService = request.app.state.service
    checks = [_probe_store(service), _probe_index(service)]
    ready = not any(c.status == "failed" for c in checks)
    report = ReadinessReport(status="ready" if ready else "not_ready", checks=checks)
    return JSONResponse(
        content=report.model_dump(),
        status_code=status.HTTP_200_OK if ready else status.HTTP_503_SERVICE_UNAVAILABLE,
    )
