# reporting.py
"""
Downstream reporting over a TaxSummary.

The engine's contract ends at the ordered `events` list; grouping by asset and
rendering tables is reporting logic and lives here. Nothing in this module
re-derives cost basis: every figure comes from the DisposalEvents.
"""

from __future__ import annotations

import csv
import io
from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, Iterable, List

from .schemas import DisposalEvent, TaxSummary


def dec_to_str(x: Decimal) -> str:
    q = x.quantize(Decimal("0.00000001"))  # 8 decimal places
    s = format(q, "f")
    if "." in s:
        s = s.rstrip("0").rstrip(".")
    return s or "0"


@dataclass
class AssetBreakdownRow:
    symbol: str
    quantity_disposed: Decimal = Decimal("0")
    cost: Decimal = Decimal("0")
    fees: Decimal = Decimal("0")
    proceeds: Decimal = Decimal("0")
    capital_pl: Decimal = Decimal("0")
    disposals: int = 0


def asset_breakdown(events: Iterable[DisposalEvent]) -> List[AssetBreakdownRow]:
    """Group disposal events by asset symbol (sorted by symbol)."""
    rows: Dict[str, AssetBreakdownRow] = {}
    for ev in events:
        row = rows.setdefault(ev.asset, AssetBreakdownRow(symbol=ev.asset))
        row.quantity_disposed += ev.quantity
        row.cost += ev.matched_cost_basis
        row.fees += ev.fee
        row.proceeds += ev.proceeds
        row.capital_pl += ev.gain_or_loss
        row.disposals += 1
    return [rows[k] for k in sorted(rows)]


def summary_totals(summary: TaxSummary) -> Dict[str, str]:
    """Headline figures as display strings, in report order."""
    return {
        "Total gains": dec_to_str(summary.total_gains),
        "Total losses": dec_to_str(summary.total_losses),
        "Net position": dec_to_str(summary.net_position),
        "Annual exemption": dec_to_str(summary.annual_exemption),
        "Exemption used": dec_to_str(summary.exemption_used),
        "Exemption remaining": dec_to_str(summary.exemption_remaining),
        "Taxable amount": dec_to_str(summary.taxable_amount),
        "Tax rate": dec_to_str(summary.flat_tax_rate),
        "Estimated tax": dec_to_str(summary.estimated_tax),
    }


BREAKDOWN_HEADER = ["asset", "quantity_disposed", "cost", "fees", "proceeds", "capital_pl"]
EVENTS_HEADER = ["disposed_at", "asset", "quantity", "proceeds", "cost_basis", "gain_or_loss", "fee"]


def breakdown_table(events: Iterable[DisposalEvent]) -> List[List[str]]:
    data = [list(BREAKDOWN_HEADER)]
    for r in asset_breakdown(events):
        data.append([
            r.symbol,
            dec_to_str(r.quantity_disposed),
            dec_to_str(r.cost),
            dec_to_str(r.fees),
            dec_to_str(r.proceeds),
            dec_to_str(r.capital_pl),
        ])
    return data


def events_table(events: Iterable[DisposalEvent]) -> List[List[str]]:
    data = [list(EVENTS_HEADER)]
    for ev in events:
        data.append([
            ev.disposed_at.isoformat(timespec="seconds"),
            ev.asset,
            dec_to_str(ev.quantity),
            dec_to_str(ev.proceeds),
            dec_to_str(ev.matched_cost_basis),
            dec_to_str(ev.gain_or_loss),
            dec_to_str(ev.fee),
        ])
    return data


def summary_to_csv(summary: TaxSummary) -> str:
    """
    Three blocks separated by a blank row:
      1) field,value totals
      2) per-asset breakdown
      3) per-disposal events
    """
    buf = io.StringIO()
    writer = csv.writer(buf, lineterminator="\n")
    writer.writerow(["field", "value"])
    for k, v in summary_totals(summary).items():
        writer.writerow([k, v])
    writer.writerow([])
    writer.writerows(breakdown_table(summary.events))
    writer.writerow([])
    writer.writerows(events_table(summary.events))
    return buf.getvalue()
