"""Transaction CRUD endpoints."""

from typing import Literal

from fastapi import APIRouter, Query, Request, Response, status
from pydantic import BaseModel, Field

from ledger.records.schemas import (
    Statistics,
    TransactionCreate,
    TransactionRecord,
    TransactionUpdate,
)
from ledger.records.store import RecordSort
from ledger.service import LedgerService

router = APIRouter(prefix="/transactions", tags=["transactions"])


class TransactionList(BaseModel):
    """Listing of transactions with summary statistics."""

    transactions: list[TransactionRecord]
    statistics: Statistics


class ImportRequest(BaseModel):
    """Bulk import payload."""

    transactions: list[TransactionCreate] = Field(min_length=1, max_length=5000)


def _service(request: Request) -> LedgerService:
    return request.app.state.service


@router.get("", response_model=TransactionList, summary="List transactions")
async def list_transactions(
    request: Request,
    order: Literal["newest", "oldest"] = Query(default="newest"),
) -> TransactionList:
    """List every transaction, newest first by default."""
    sort = RecordSort.NEWEST_FIRST if order == "newest" else RecordSort.OLDEST_FIRST
    records = await _service(request).list_transactions(sort)
    return TransactionList(
        transactions=records, statistics=Statistics.from_records(records)
    )


@router.post(
    "",
    response_model=TransactionRecord,
    status_code=status.HTTP_201_CREATED,
    summary="Record a transaction",
)
async def create_transaction(
    request: Request, payload: TransactionCreate
) -> TransactionRecord:
    """Store a transaction and index it for search."""
    return await _service(request).add_transaction(payload)


@router.post(
    "/import",
    response_model=list[TransactionRecord],
    status_code=status.HTTP_201_CREATED,
    summary="Import many transactions",
)
async def import_transactions(
    request: Request, payload: ImportRequest
) -> list[TransactionRecord]:
    """Store many transactions in one write, indexed in one batch."""
    return await _service(request).import_transactions(payload.transactions)


@router.get("/{transaction_id}", response_model=TransactionRecord)
async def get_transaction(request: Request, transaction_id: str) -> TransactionRecord:
    """Fetch one transaction by id."""
    return await _service(request).get_transaction(transaction_id)


@router.patch("/{transaction_id}", response_model=TransactionRecord)
async def update_transaction(
    request: Request, transaction_id: str, payload: TransactionUpdate
) -> TransactionRecord:
    """Apply a partial update and re-index the transaction."""
    return await _service(request).update_transaction(transaction_id, payload)


@router.delete("/{transaction_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_transaction(request: Request, transaction_id: str) -> Response:
    """Delete a transaction and its index entry."""
    await _service(request).delete_transaction(transaction_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
