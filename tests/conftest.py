from __future__ import annotations

from datetime import datetime, timedelta
from cryptocgt.schemas import Transaction

T0 = datetime(2024, 5, 1, 12, 0, 0)


def acq(asset: str, qty, price, fee="0", at: datetime | int = 0) -> Transaction:
    """Acquisition helper; integer `at` means days after T0."""
    when = T0 + timedelta(days=at) if isinstance(at, int) else at
    return Transaction(kind="ACQUISITION", asset=asset, quantity=qty, unit_price=price, fee=fee, occurred_at=when)


def disp(asset: str, qty, price, fee="0", at: datetime | int = 0) -> Transaction:
    when = T0 + timedelta(days=at) if isinstance(at, int) else at
    return Transaction(kind="DISPOSAL", asset=asset, quantity=qty, unit_price=price, fee=fee, occurred_at=when)
