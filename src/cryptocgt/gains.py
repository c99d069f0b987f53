# gains.py
"""
Gain classification and annual-exemption arithmetic.

Both steps are pure functions over Decimals:
- classify_gains: split disposal events into a gains bucket and a losses bucket.
- apply_allowance: offset the net position with the annual exemption.
  Only a positive net position consumes the exemption; a net loss leaves it untouched.
"""

from __future__ import annotations
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Iterable, Tuple

from .errors import ConfigurationError
from .schemas import DisposalEvent

ZERO = Decimal("0")
ONE = Decimal("1")


@dataclass(frozen=True)
class GainTotals:
    total_gains: Decimal = ZERO
    total_losses: Decimal = ZERO  # stored as a positive magnitude


@dataclass(frozen=True)
class AllowanceResult:
    net_position: Decimal
    exemption_used: Decimal
    exemption_remaining: Decimal
    taxable_amount: Decimal


def _as_decimal(name: str, value: Any) -> Decimal:
    if isinstance(value, Decimal):
        return value
    if isinstance(value, (bool, float)):
        raise ConfigurationError(f"{name} must be a Decimal, int or numeric string, got {value!r}")
    try:
        return Decimal(str(value))
    except InvalidOperation:
        raise ConfigurationError(f"{name} is not a number: {value!r}") from None


def check_parameters(annual_exemption: Any, flat_tax_rate: Any) -> Tuple[Decimal, Decimal]:
    """Fail fast on caller programming errors, before any transaction is touched."""
    exemption = _as_decimal("annual_exemption", annual_exemption)
    rate = _as_decimal("flat_tax_rate", flat_tax_rate)
    if not exemption.is_finite() or exemption < 0:
        raise ConfigurationError(f"annual_exemption must be >= 0, got {exemption}")
    if not rate.is_finite() or rate < 0 or rate > ONE:
        raise ConfigurationError(f"flat_tax_rate must be within [0, 1], got {rate}")
    return exemption, rate


def classify_gains(events: Iterable[DisposalEvent]) -> GainTotals:
    gains = ZERO
    losses = ZERO
    for ev in events:
        if ev.gain_or_loss >= 0:
            gains += ev.gain_or_loss
        else:
            losses += abs(ev.gain_or_loss)
    return GainTotals(total_gains=gains, total_losses=losses)


def apply_allowance(totals: GainTotals, annual_exemption: Decimal) -> AllowanceResult:
    if annual_exemption < 0:
        raise ConfigurationError(f"annual_exemption must be >= 0, got {annual_exemption}")

    net = totals.total_gains - totals.total_losses
    used = min(max(net, ZERO), annual_exemption)
    return AllowanceResult(
        net_position=net,
        exemption_used=used,
        exemption_remaining=annual_exemption - used,
        taxable_amount=max(ZERO, net - annual_exemption),
    )
