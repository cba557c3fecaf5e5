"""Pydantic schemas for transaction records and write payloads."""

import re
import uuid
from datetime import UTC, datetime
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator

CURRENCY_PATTERN = re.compile(r"^[A-Z]{3}$")

# Fields shared by the record and its create/update payloads
OPTIONAL_TEXT_FIELDS: tuple[str, ...] = ("location", "category", "description")


def clean_text(value: str | None) -> str | None:
    """Trim surrounding whitespace, mapping blank strings to None.

    Args:
        value: Raw user-supplied text.

    Returns:
        Trimmed text, or None when nothing remains.
    """
    if value is None:
        return None
    stripped = value.strip()
    return stripped or None


def _require_merchant(value: str) -> str:
    cleaned = clean_text(value)
    if cleaned is None:
        raise ValueError("merchant_name must not be empty")
    return cleaned


def _normalize_currency(value: str) -> str:
    code = value.strip().upper()
    if not CURRENCY_PATTERN.match(code):
        raise ValueError(f"currency must be a three-letter code, got {value!r}")
    return code


def _to_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def new_transaction_id() -> str:
    """Generate a new stable transaction identifier."""
    return uuid.uuid4().hex


class TransactionRecord(BaseModel):
    """Authoritative transaction record as persisted in the store.

    Attributes:
        id: Stable unique identifier, immutable after creation.
        merchant_name: Trimmed, non-empty merchant name.
        amount: Signed amount; negative is an expense, positive is income.
        timestamp: When the transaction happened, normalized to UTC.
        currency: Three-letter currency code.
        location: Optional trimmed location.
        category: Optional trimmed category.
        description: Optional trimmed free-text note.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_transaction_id, min_length=1)
    merchant_name: str
    amount: Decimal
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
    currency: str
    location: str | None = None
    category: str | None = None
    description: str | None = None

    @field_validator("merchant_name")
    @classmethod
    def _trim_merchant(cls, value: str) -> str:
        return _require_merchant(value)

    @field_validator("currency")
    @classmethod
    def _check_currency(cls, value: str) -> str:
        return _normalize_currency(value)

    @field_validator("timestamp")
    @classmethod
    def _utc_timestamp(cls, value: datetime) -> datetime:
        return _to_utc(value)

    @field_validator(*OPTIONAL_TEXT_FIELDS)
    @classmethod
    def _trim_optional(cls, value: str | None) -> str | None:
        return clean_text(value)

    @computed_field
    @property
    def is_expense(self) -> bool:
        """Whether the amount is money going out."""
        return self.amount < 0


class TransactionCreate(BaseModel):
    """Payload for recording a new transaction.

    Attributes:
        merchant_name: Merchant name, trimmed before storage.
        amount: Signed amount.
        timestamp: Optional transaction time; defaults to now.
        currency: Optional currency code; defaults to the configured default.
        location: Optional location.
        category: Optional category.
        description: Optional note.
    """

    merchant_name: str = Field(max_length=200)
    amount: Decimal
    timestamp: datetime | None = None
    currency: str | None = None
    location: str | None = Field(default=None, max_length=200)
    category: str | None = Field(default=None, max_length=100)
    description: str | None = Field(default=None, max_length=2000)

    @field_validator("merchant_name")
    @classmethod
    def _trim_merchant(cls, value: str) -> str:
        return _require_merchant(value)

    @field_validator("currency")
    @classmethod
    def _check_currency(cls, value: str | None) -> str | None:
        return None if value is None else _normalize_currency(value)

    @field_validator(*OPTIONAL_TEXT_FIELDS)
    @classmethod
    def _trim_optional(cls, value: str | None) -> str | None:
        return clean_text(value)

    def to_record(self, default_currency: str) -> TransactionRecord:
        """Build a new record with a fresh id and defaults applied.

        Args:
            default_currency: Currency used when the payload omits one.

        Returns:
            Validated record ready to be stored.
        """
        data = self.model_dump(exclude_none=True)
        data.setdefault("currency", default_currency)
        return TransactionRecord(**data)


class TransactionUpdate(BaseModel):
    """Partial update; only fields explicitly set are applied.

    Optional text fields may be cleared by sending null or a blank string.
    """

    merchant_name: str | None = Field(default=None, max_length=200)
    amount: Decimal | None = None
    timestamp: datetime | None = None
    currency: str | None = None
    location: str | None = Field(default=None, max_length=200)
    category: str | None = Field(default=None, max_length=100)
    description: str | None = Field(default=None, max_length=2000)

    @field_validator("merchant_name")
    @classmethod
    def _trim_merchant(cls, value: str | None) -> str | None:
        return None if value is None else _require_merchant(value)

    @field_validator("currency")
    @classmethod
    def _check_currency(cls, value: str | None) -> str | None:
        return None if value is None else _normalize_currency(value)

    @field_validator(*OPTIONAL_TEXT_FIELDS)
    @classmethod
    def _trim_optional(cls, value: str | None) -> str | None:
        return clean_text(value)

    def changes(self) -> dict[str, Any]:
        """Return the fields the caller set.

        Raises:
            ValueError: If a required field is explicitly set to null.
        """
        fields = self.model_dump(exclude_unset=True)
        for name in ("merchant_name", "amount", "timestamp", "currency"):
            if name in fields and fields[name] is None:
                raise ValueError(f"{name} cannot be cleared")
        return fields


class Statistics(BaseModel):
    """Summary over a returned set of transactions.

    Attributes:
        transaction_count: Number of transactions in the set.
        total_amount: Sum of signed amounts.
        average_amount: Mean signed amount.
        earliest: Oldest timestamp in the set.
        latest: Newest timestamp in the set.
    """

    transaction_count: int = 0
    total_amount: Decimal = Decimal("0")
    average_amount: Decimal = Decimal("0")
    earliest: datetime | None = None
    latest: datetime | None = None

    @classmethod
    def from_records(cls, records: list[TransactionRecord]) -> "Statistics":
        """Compute statistics for a list of records."""
        if not records:
            return cls()
        total = sum((r.amount for r in records), Decimal("0"))
        timestamps = [r.timestamp for r in records]
        return cls(
            transaction_count=len(records),
            total_amount=total,
            average_amount=total / len(records),
            earliest=min(timestamps),
            latest=max(timestamps),
        )
