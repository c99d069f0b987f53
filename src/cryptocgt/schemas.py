from __future__ import annotations

"""
Pydantic schemas (data models) shared by the engine, the repository and the API.
- These define the structure, types, and validation rules for the data we accept/return.
- Pydantic gives clear error messages when data doesn't match the expected schema.

Core ideas:
- Keep schemas separate from database models (ORM) to avoid coupling business logic to storage.
- Input transactions and output summaries are frozen: the engine never mutates
  what the caller handed in, and a summary is a value, not a live object.
- Every amount is a Decimal. Floats arriving from JSON/CSV are converted via str()
  so binary representation noise is not carried into cost-basis proration.
"""


from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator
from typing import Any, List, Optional
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from enum import Enum


class TxKind(str, Enum):
    ACQUISITION = "ACQUISITION"
    DISPOSAL = "DISPOSAL"


# Synonyms accepted from CSVs and the API, mapped onto the two kinds the engine knows.
_KIND_SYNONYMS = {
    "ACQUISITION": TxKind.ACQUISITION,
    "BUY": TxKind.ACQUISITION,
    "PURCHASE": TxKind.ACQUISITION,
    "SPOT_BUY": TxKind.ACQUISITION,
    "TRANSFER_IN": TxKind.ACQUISITION,
    "DISPOSAL": TxKind.DISPOSAL,
    "SELL": TxKind.DISPOSAL,
    "TRADE": TxKind.DISPOSAL,
    "TRANSFER_OUT": TxKind.DISPOSAL,
}


class MatchingStrategy(str, Enum):
    """How disposals are identified against acquisitions."""

    PURE_FIFO = "PURE_FIFO"
    UK_HMRC = "UK_HMRC"  # same-day -> 30-day -> FIFO


class UnmatchedDisposalPolicy(str, Enum):
    """What to do with a disposal that exceeds current holdings."""

    REJECT = "REJECT"
    IGNORE = "IGNORE"
    ZERO_COST_BASIS = "ZERO_COST_BASIS"


def _to_decimal(v: Any) -> Decimal:
    if isinstance(v, Decimal):
        return v
    if isinstance(v, bool):
        raise ValueError("boolean is not an amount")
    try:
        d = Decimal(str(v).strip())
    except (InvalidOperation, ValueError):
        raise ValueError(f"invalid decimal amount: {v!r}")
    if not d.is_finite():
        raise ValueError(f"amount must be finite: {v!r}")
    return d


def _dec_to_str(v: Decimal) -> str:
    s = format(v, "f")
    return s.rstrip("0").rstrip(".") if "." in s else s


def to_naive_utc(ts: datetime) -> datetime:
    """Aware timestamps are converted to UTC and stripped; naive ones are taken as UTC."""
    if ts.tzinfo is None:
        return ts
    return ts.astimezone(timezone.utc).replace(tzinfo=None)


def normalize_kind(v: Any) -> TxKind:
    if isinstance(v, TxKind):
        return v
    if v is None:
        raise ValueError("kind is required")
    s = str(v).strip().upper().replace("-", "_").replace(" ", "_")
    kind = _KIND_SYNONYMS.get(s)
    if kind is None:
        raise ValueError(f"unsupported transaction kind: {v!r}")
    return kind


class Transaction(BaseModel):
    """
    Normalized acquisition/disposal record fed to the engine.

    Fields:
      kind: ACQUISITION or DISPOSAL (synonyms like "buy"/"sell" are accepted).
      asset: asset symbol, upper-cased (BTC, ETH, ...).
      quantity: units acquired or disposed; must be > 0.
      unit_price: price per unit in the local (tax) currency.
      fee: fee in local currency. Increases cost on acquisition,
           reduces proceeds on disposal.
      occurred_at: when the event happened.
      exchange, memo: provenance only; ignored by the engine.
    """

    model_config = ConfigDict(frozen=True, from_attributes=True)

    kind: TxKind = Field(..., examples=["ACQUISITION", "DISPOSAL"])
    asset: str = Field(..., min_length=1, description="Asset symbol, e.g. BTC")
    quantity: Decimal = Field(..., description="Units of the asset (Decimal, > 0)")
    unit_price: Decimal = Field(..., description="Price per unit in local currency")
    fee: Decimal = Decimal("0")
    occurred_at: datetime = Field(..., description="Timestamp of the event")
    exchange: Optional[str] = None
    memo: Optional[str] = None

    @field_validator("kind", mode="before")
    @classmethod
    def _normalize_kind(cls, v):
        return normalize_kind(v)

    @field_validator("asset", mode="before")
    @classmethod
    def _upper_asset(cls, v):
        return None if v is None else str(v).strip().upper()

    @field_validator("quantity", "unit_price", mode="before")
    @classmethod
    def _parse_amount(cls, v):
        return _to_decimal(v)

    @field_validator("fee", mode="before")
    @classmethod
    def _parse_fee(cls, v):
        if v is None or v == "":
            return Decimal("0")
        return _to_decimal(v)

    @field_validator("quantity")
    @classmethod
    def _positive_quantity(cls, v: Decimal) -> Decimal:
        if v <= 0:
            raise ValueError("quantity must be > 0")
        return v

    @field_validator("unit_price", "fee")
    @classmethod
    def _non_negative(cls, v: Decimal) -> Decimal:
        if v < 0:
            raise ValueError("amount must be >= 0")
        return v

    @field_serializer("quantity", "unit_price", "fee")
    def _ser_dec(self, v: Decimal) -> str:
        return _dec_to_str(v)


class LotMatch(BaseModel):
    """
    How a disposal matched against one acquisition lot.
    rule is one of: fifo, same_day, thirty_day, zero_cost.
    """

    model_config = ConfigDict(frozen=True)

    acquired_at: Optional[datetime] = None  # None for zero_cost slices
    quantity: Decimal
    cost: Decimal
    rule: str = "fifo"

    @field_serializer("quantity", "cost")
    def _ser_dec(self, v: Decimal) -> str:
        return _dec_to_str(v)


class DisposalEvent(BaseModel):
    """
    A realized gain/loss produced by one disposal.
    gain_or_loss = proceeds - matched_cost_basis; its sign decides gain vs loss.
    """

    model_config = ConfigDict(frozen=True)

    asset: str
    disposed_at: datetime
    quantity: Decimal
    proceeds: Decimal
    matched_cost_basis: Decimal
    gain_or_loss: Decimal
    fee: Decimal = Decimal("0")
    matches: List[LotMatch] = Field(default_factory=list)

    @field_serializer("quantity", "proceeds", "matched_cost_basis", "gain_or_loss", "fee")
    def _ser_dec(self, v: Decimal) -> str:
        return _dec_to_str(v)


class TaxSummary(BaseModel):
    """
    Final result of one computation. Immutable; callers persist or discard it.
    """

    model_config = ConfigDict(frozen=True)

    total_gains: Decimal = Decimal("0")
    total_losses: Decimal = Decimal("0")
    net_position: Decimal = Decimal("0")
    exemption_used: Decimal = Decimal("0")
    exemption_remaining: Decimal = Decimal("0")
    taxable_amount: Decimal = Decimal("0")
    estimated_tax: Decimal = Decimal("0")
    events: List[DisposalEvent] = Field(default_factory=list)

    # parameters the summary was computed with
    annual_exemption: Decimal = Decimal("0")
    flat_tax_rate: Decimal = Decimal("0")
    matching_strategy: MatchingStrategy = MatchingStrategy.PURE_FIFO
    unmatched_policy: UnmatchedDisposalPolicy = UnmatchedDisposalPolicy.IGNORE

    skipped_disposals: int = 0
    warnings: List[str] = Field(default_factory=list)

    @field_serializer(
        "total_gains",
        "total_losses",
        "net_position",
        "exemption_used",
        "exemption_remaining",
        "taxable_amount",
        "estimated_tax",
        "annual_exemption",
        "flat_tax_rate",
    )
    def _ser_dec(self, v: Decimal) -> str:
        return _dec_to_str(v)


class CalcConfig(BaseModel):
    """Parameters for one computation, bundled for hosts (API, scripts)."""

    annual_exemption: Decimal = Decimal("3000")  # UK 2024-25
    flat_tax_rate: Decimal = Decimal("0.20")
    matching_strategy: MatchingStrategy = MatchingStrategy.PURE_FIFO
    unmatched_policy: UnmatchedDisposalPolicy = UnmatchedDisposalPolicy.IGNORE

    @field_validator("annual_exemption", "flat_tax_rate", mode="before")
    @classmethod
    def _parse_amount(cls, v):
        return _to_decimal(v)

    @field_validator("annual_exemption")
    @classmethod
    def _exemption_non_negative(cls, v: Decimal) -> Decimal:
        if v < 0:
            raise ValueError("annual_exemption must be >= 0")
        return v

    @field_validator("flat_tax_rate")
    @classmethod
    def _rate_in_range(cls, v: Decimal) -> Decimal:
        if v < 0 or v > 1:
            raise ValueError("flat_tax_rate must be within [0, 1]")
        return v


class CSVPreviewResponse(BaseModel):
    """
    API response model for /upload/csv (preview only).
    """

    filename: str
    total_valid: int
    total_errors: int
    preview_first_5: List[Transaction]
    errors: List[Any]


class ImportCSVResponse(BaseModel):
    """
    API response model for /import/csv (persists to DB).
    """

    filename: str
    inserted: int
    skipped_duplicates: int
    skipped_errors: int
    note: str
