# errors.py
"""
Exception types raised by the engine.

Two families, handled differently by callers:
- ConfigurationError: the caller passed bad parameters (negative exemption,
  tax rate outside [0, 1], unknown tax year). Raised before any transaction
  is processed.
- UnmatchedDisposalError: a disposal could not be matched against holdings
  and the caller asked for UnmatchedDisposalPolicy.REJECT.
"""

from __future__ import annotations
from datetime import datetime
from decimal import Decimal


class CgtError(Exception):
    """Base class for every error raised by cryptocgt."""


class ConfigurationError(CgtError, ValueError):
    pass


class UnmatchedDisposalError(CgtError):
    def __init__(self, asset: str, disposed_at: datetime, shortfall: Decimal) -> None:
        self.asset = asset
        self.disposed_at = disposed_at
        self.shortfall = shortfall
        super().__init__(
            f"Disposal of {asset} at {disposed_at.isoformat()} exceeds holdings by {shortfall}"
        )


class AmountScaleError(CgtError, ValueError):
    """An amount has more decimal places than the ledger stores."""

    def __init__(self, fields: dict, places: int) -> None:
        self.fields = fields
        self.places = places
        listed = ", ".join(f"{k}={v}" for k, v in fields.items())
        super().__init__(f"amounts must have at most {places} decimal places: {listed}")
