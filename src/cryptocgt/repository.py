# repository.py
"""
Transaction repositories: where the engine's input comes from.

The engine never reaches for a global ledger. Hosts inject a repository and a
user id per call; the repository hands back that user's transactions as
frozen pydantic `Transaction` objects.
"""

from __future__ import annotations

import hashlib
from decimal import Decimal
from typing import Dict, List, Protocol

from sqlalchemy.orm import Session

from .errors import AmountScaleError
from .models import AMOUNT_PLACES, SqliteDecimal, TransactionRow
from .schemas import Transaction, to_naive_utc


class TransactionRepository(Protocol):
    def list_for_user(self, user_id: str) -> List[Transaction]: ...
    def add(self, user_id: str, tx: Transaction) -> bool: ...


def compute_tx_hash(tx: Transaction) -> str:
    """
    Deterministic SHA-256 over the fields that identify a transaction.
    Used to skip duplicates when the same CSV is imported twice.
    """
    base_string = (
        f"{to_naive_utc(tx.occurred_at).isoformat()}|"
        f"{tx.kind.value}|"
        f"{tx.asset}|"
        f"{tx.quantity}|"
        f"{tx.unit_price}|"
        f"{tx.fee}|"
        f"{tx.exchange}|"
        f"{tx.memo}"
    )
    return hashlib.sha256(base_string.encode("utf-8")).hexdigest()


def check_storable(tx: Transaction) -> None:
    """Raise AmountScaleError if an amount would be rounded by the ledger columns."""
    bad = {
        name: getattr(tx, name)
        for name in ("quantity", "unit_price", "fee")
        if not SqliteDecimal.fits(getattr(tx, name))
    }
    if bad:
        raise AmountScaleError(bad, AMOUNT_PLACES)


def row_to_transaction(r: TransactionRow) -> Transaction:
    return Transaction(
        kind=r.kind,
        asset=r.asset,
        quantity=Decimal(str(r.quantity)),
        unit_price=Decimal(str(r.unit_price)),
        fee=Decimal(str(r.fee)) if r.fee is not None else Decimal("0"),
        occurred_at=r.occurred_at,
        exchange=r.exchange,
        memo=r.memo,
    )


class SqlTransactionRepository:
    """SQLAlchemy-backed repository bound to one session."""

    def __init__(self, session: Session) -> None:
        self.session = session

    def list_for_user(self, user_id: str) -> List[Transaction]:
        # id as tiebreaker keeps same-timestamp rows in insertion order
        rows = (
            self.session.query(TransactionRow)
            .filter(TransactionRow.user_id == user_id)
            .order_by(TransactionRow.occurred_at.asc(), TransactionRow.id.asc())
            .all()
        )
        return [row_to_transaction(r) for r in rows]

    def add(self, user_id: str, tx: Transaction) -> bool:
        """Insert unless an identical transaction exists for this user. Returns True if inserted."""
        check_storable(tx)
        tx_hash = compute_tx_hash(tx)
        existing = (
            self.session.query(TransactionRow)
            .filter_by(user_id=user_id, hash=tx_hash)
            .first()
        )
        if existing:
            return False
        self.session.add(
            TransactionRow(
                user_id=user_id,
                hash=tx_hash,
                occurred_at=to_naive_utc(tx.occurred_at),
                kind=tx.kind.value,
                asset=tx.asset,
                quantity=tx.quantity,
                unit_price=tx.unit_price,
                fee=tx.fee,
                exchange=tx.exchange,
                memo=tx.memo,
            )
        )
        self.session.flush()
        return True


class InMemoryTransactionRepository:
    """Dict-backed repository for tests and scripts."""

    def __init__(self) -> None:
        self._by_user: Dict[str, List[Transaction]] = {}
        self._hashes: Dict[str, set] = {}

    def list_for_user(self, user_id: str) -> List[Transaction]:
        return list(self._by_user.get(user_id, []))

    def add(self, user_id: str, tx: Transaction) -> bool:
        tx_hash = compute_tx_hash(tx)
        seen = self._hashes.setdefault(user_id, set())
        if tx_hash in seen:
            return False
        seen.add(tx_hash)
        self._by_user.setdefault(user_id, []).append(tx)
        return True
