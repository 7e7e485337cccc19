"""
Inventory Migration - Legacy Movement Records

The legacy inventory_logs collection is loosely shaped: quantities arrive as
numbers or strings, timestamps as store-native values, datetimes or ISO
strings, and field names differ between app versions (cigarId vs productId).
Every document is read into LegacyMovementRecord at the boundary so the rest
of the migration never has to branch on the raw shape.

Coercion rules:
- quantity: parsed as a number, 0 when missing or unparseable
- unitPrice: parsed as a number, absent when missing, unparseable or zero
- referenceNo, reason, operatorId, userId, userName: blank means absent
- itemType: defaults to "cigar"
- createdAt: normalized to an aware UTC datetime; malformed values fall back
  to the migration run time

read_legacy_record() is the single entry point for raw legacy documents.
"""

import math
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Union

from dateutil import parser as date_parser
from pydantic import (
    AliasChoices, BaseModel, ConfigDict, Field, ValidationError, ValidationInfo,
    field_validator, model_validator
)

from .exceptions import InvalidRecordError

DEFAULT_ITEM_TYPE = "cigar"

# Epoch values above this are treated as milliseconds
_EPOCH_MILLIS_THRESHOLD = 1e11

Number = Union[int, float]


class TransactionType(str, Enum):
    """Movement types recorded in the legacy log."""
    IN = "in"
    OUT = "out"
    ADJUSTMENT = "adjustment"


GROUPABLE_TYPES = (TransactionType.IN, TransactionType.OUT)


# =============================================================================
# COERCION HELPERS
# =============================================================================

def read_field(document: Mapping[str, Any], *names: str) -> Any:
    """Return the first non-None value among alternative field names."""
    for name in names:
        value = document.get(name)
        if value is not None:
            return value
    return None


def is_blank(value: Any) -> bool:
    """True for None, empty strings and whitespace-only strings."""
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip() == ""
    return False


def coerce_number(value: Any) -> Optional[Number]:
    """
    Parse a loosely typed numeric value.

    Returns None when the value cannot be read as a finite number. Integral
    values are returned as int so stock sums stay exact.
    """
    if value is None or isinstance(value, bool):
        return None

    if isinstance(value, (int, float)):
        try:
            number = float(value)
        except OverflowError:
            return None
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            number = float(text)
        except ValueError:
            return None
    elif hasattr(value, "to_decimal"):
        # bson Decimal128
        number = float(value.to_decimal())
    else:
        try:
            number = float(value)
        except (TypeError, ValueError, OverflowError):
            return None

    if math.isnan(number) or math.isinf(number):
        return None
    if number.is_integer():
        return int(number)
    return number


def coerce_quantity(value: Any) -> Number:
    """Quantity as a number, 0 when unparseable."""
    number = coerce_number(value)
    return 0 if number is None else number


def coerce_unit_price(value: Any) -> Optional[Number]:
    """Unit price as a number; missing, unparseable and zero prices are absent."""
    number = coerce_number(value)
    if not number:
        return None
    return number


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def normalize_timestamp(value: Any, default: Optional[datetime] = None) -> datetime:
    """
    Normalize any timestamp representation to an aware UTC datetime.

    Accepts datetimes (naive ones are taken as UTC), dates, ISO or loose date
    strings, epoch seconds/milliseconds, exported {"_seconds": ...} maps and
    store-native timestamp objects exposing to_datetime(), as_datetime() or
    toDate(). Anything else yields `default` (or now).
    """
    fallback = default or datetime.now(timezone.utc)

    if value is None:
        return fallback

    for converter_name in ("to_datetime", "as_datetime", "toDate"):
        converter = getattr(value, converter_name, None)
        if callable(converter):
            try:
                value = converter()
            except (TypeError, ValueError, OverflowError):
                return fallback
            break

    if isinstance(value, datetime):
        return _as_utc(value)

    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)

    if isinstance(value, Mapping):
        seconds = read_field(value, "_seconds", "seconds")
        if seconds is None:
            return fallback
        nanos = read_field(value, "_nanoseconds", "nanoseconds") or 0
        value = coerce_quantity(seconds) + coerce_quantity(nanos) / 1e9

    if isinstance(value, bool):
        return fallback

    if isinstance(value, (int, float)):
        seconds = value / 1000 if abs(value) > _EPOCH_MILLIS_THRESHOLD else value
        try:
            return datetime.fromtimestamp(seconds, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return fallback

    if isinstance(value, str):
        text = value.strip()
        if not text:
            return fallback
        try:
            return _as_utc(date_parser.isoparse(text))
        except (ValueError, OverflowError):
            pass
        try:
            return _as_utc(date_parser.parse(text))
        except (ValueError, OverflowError):
            return fallback

    return fallback


# =============================================================================
# SCHEMA
# =============================================================================

class LegacyMovementRecord(BaseModel):
    """
    One row of the legacy inventory_logs collection.

    Build with `from_document()`; pass `now` so malformed timestamps fall back
    to a single, reproducible run time.
    """
    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)

    id: str
    product_id: str = Field(validation_alias=AliasChoices("productId", "cigarId", "product_id"))
    product_name: str = Field(
        default="", validation_alias=AliasChoices("productName", "cigarName", "product_name")
    )
    item_type: str = Field(default=DEFAULT_ITEM_TYPE, validation_alias=AliasChoices("itemType", "item_type"))
    transaction_type: TransactionType = Field(
        validation_alias=AliasChoices("transactionType", "type", "transaction_type")
    )
    quantity: Number = 0
    unit_price: Optional[Number] = Field(default=None, validation_alias=AliasChoices("unitPrice", "unit_price"))
    reference_no: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("referenceNo", "reference_no")
    )
    reason: Optional[str] = None
    operator_id: Optional[str] = Field(default=None, validation_alias=AliasChoices("operatorId", "operator_id"))
    user_id: Optional[str] = Field(default=None, validation_alias=AliasChoices("userId", "user_id"))
    user_name: Optional[str] = Field(default=None, validation_alias=AliasChoices("userName", "user_name"))
    attachments: List[Any] = Field(default_factory=list)
    created_at: datetime = Field(default=None, validation_alias=AliasChoices("createdAt", "created_at"),
                                 validate_default=True)

    @model_validator(mode="before")
    @classmethod
    def default_product_name(cls, data: Any) -> Any:
        if isinstance(data, Mapping):
            name = read_field(data, "productName", "cigarName", "product_name")
            if is_blank(name):
                data = dict(data)
                data["productName"] = read_field(data, "productId", "cigarId", "product_id")
        return data

    @field_validator("id", mode="before")
    @classmethod
    def stringify_id(cls, value: Any) -> str:
        if is_blank(value):
            raise ValueError("record id is required")
        return str(value)

    @field_validator("product_id", mode="before")
    @classmethod
    def require_product_id(cls, value: Any) -> str:
        if is_blank(value):
            raise ValueError("productId is required")
        return str(value).strip()

    @field_validator("product_name", mode="before")
    @classmethod
    def stringify_name(cls, value: Any) -> str:
        return "" if value is None else str(value)

    @field_validator("item_type", mode="before")
    @classmethod
    def default_item_type(cls, value: Any) -> str:
        if is_blank(value):
            return DEFAULT_ITEM_TYPE
        return str(value).strip()

    @field_validator("transaction_type", mode="before")
    @classmethod
    def normalize_type(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip().lower()
        return value

    @field_validator("quantity", mode="before")
    @classmethod
    def parse_quantity(cls, value: Any) -> Number:
        return coerce_quantity(value)

    @field_validator("unit_price", mode="before")
    @classmethod
    def parse_unit_price(cls, value: Any) -> Optional[Number]:
        return coerce_unit_price(value)

    @field_validator("reference_no", "reason", "operator_id", "user_id", "user_name", mode="before")
    @classmethod
    def blank_to_none(cls, value: Any) -> Optional[str]:
        if is_blank(value):
            return None
        return str(value).strip()

    @field_validator("attachments", mode="before")
    @classmethod
    def attachment_list(cls, value: Any) -> List[Any]:
        if isinstance(value, (list, tuple)):
            return list(value)
        return []

    @field_validator("created_at", mode="before")
    @classmethod
    def normalize_created_at(cls, value: Any, info: ValidationInfo) -> datetime:
        now = (info.context or {}).get("now")
        return normalize_timestamp(value, default=now)

    @classmethod
    def from_document(
        cls,
        document: Mapping[str, Any],
        now: Optional[datetime] = None
    ) -> "LegacyMovementRecord":
        """
        Validate a raw legacy document.

        The store key may arrive as `_id` or `id`.

        Raises:
            pydantic.ValidationError: if productId, the record id or a known
            transaction type is missing
        """
        data: Dict[str, Any] = dict(document)
        if "id" not in data and "_id" in data:
            data["id"] = data["_id"]
        return cls.model_validate(data, context={"now": now})

    @property
    def has_reference(self) -> bool:
        return self.reference_no is not None

    @property
    def is_groupable(self) -> bool:
        """True when the record belongs to a reference group."""
        return self.has_reference and self.transaction_type in GROUPABLE_TYPES


def _describe_validation_error(error: ValidationError) -> str:
    return "; ".join(
        f"{'.'.join(str(part) for part in err['loc'])}: {err['msg']}" for err in error.errors()
    )


def read_legacy_record(
    document: Mapping[str, Any],
    now: Optional[datetime] = None
) -> LegacyMovementRecord:
    """
    Read one raw legacy document into the record schema.

    The analyzer and the verifier both read legacy documents through this
    function and must see the same records.

    Raises:
        InvalidRecordError: if the document cannot be read, for any reason
    """
    record_id = read_field(document, "id", "_id")
    record_id = "" if record_id is None else str(record_id)
    try:
        return LegacyMovementRecord.from_document(document, now=now)
    except ValidationError as e:
        raise InvalidRecordError(record_id, _describe_validation_error(e))
    except Exception as e:
        raise InvalidRecordError(record_id, f"{type(e).__name__}: {e}")
