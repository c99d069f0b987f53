from __future__ import annotations
import datetime
from decimal import Decimal
from sqlalchemy import DateTime, Index, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import Numeric, TypeDecorator

# ---------- Base ----------
class Base(DeclarativeBase):
    pass

# ---------- Decimal helper (fixed 8 dp, satoshi granularity) ----------
AMOUNT_PLACES = 8

class SqliteDecimal(TypeDecorator):
    impl = Numeric(38, AMOUNT_PLACES, asdecimal=True)
    cache_ok = True
    SCALE = Decimal(1).scaleb(-AMOUNT_PLACES)

    @staticmethod
    def fits(value: Decimal) -> bool:
        """True if `value` survives the column without rounding."""
        return value.normalize().as_tuple().exponent >= -AMOUNT_PLACES

    def process_bind_param(self, value, dialect):
        if value is None: return None
        return Decimal(value).quantize(self.SCALE)
    def process_result_value(self, value, dialect):
        if value is None: return None
        return Decimal(value).quantize(self.SCALE)

# ---------- ORM models ----------
class Transaction(Base):
    __tablename__ = "transactions"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    hash: Mapped[str | None] = mapped_column(String(128), nullable=True, index=True)

    # Store as naive UTC datetimes in SQLite
    occurred_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=False), nullable=False, index=True)
    # ACQUISITION / DISPOSAL
    kind: Mapped[str] = mapped_column(String(16), nullable=False, index=True)

    asset: Mapped[str] = mapped_column(String(20), nullable=False)
    quantity: Mapped[Decimal] = mapped_column(SqliteDecimal, nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(SqliteDecimal, nullable=False)
    fee: Mapped[Decimal] = mapped_column(SqliteDecimal, nullable=False, default=Decimal("0"))

    exchange: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    memo: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=False),
        nullable=False,
        default=lambda: datetime.datetime.now(datetime.timezone.utc).replace(tzinfo=None),
    )

Index("idx_transactions_user_ts", Transaction.user_id, Transaction.occurred_at)

# Alias used by app.py / repository.py
TransactionRow = Transaction
