from __future__ import annotations
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Dict, Iterable, List

from ..errors import ConfigurationError
from ..schemas import DisposalEvent, to_naive_utc

# Higher rate threshold (England, Wales, NI)
UK_HIGHER_RATE_THRESHOLD = Decimal("50270")


@dataclass(frozen=True)
class UkTaxYear:
    label: str
    start: date
    end: date  # inclusive
    annual_exemption: Decimal
    basic_rate: Decimal
    higher_rate: Decimal

    def contains(self, when: datetime | date) -> bool:
        day = to_naive_utc(when).date() if isinstance(when, datetime) else when
        return self.start <= day <= self.end


UK_TAX_YEARS: Dict[str, UkTaxYear] = {
    "2022-23": UkTaxYear(
        "2022-23", date(2022, 4, 6), date(2023, 4, 5), Decimal("12300"), Decimal("0.10"), Decimal("0.20")
    ),
    "2023-24": UkTaxYear(
        "2023-24", date(2023, 4, 6), date(2024, 4, 5), Decimal("6000"), Decimal("0.10"), Decimal("0.20")
    ),
    "2024-25": UkTaxYear(
        "2024-25", date(2024, 4, 6), date(2025, 4, 5), Decimal("3000"), Decimal("0.10"), Decimal("0.20")
    ),
}


def tax_year_label_for(when: datetime | date) -> str:
    """UK tax years run 6 April to 5 April, e.g. 2024-05-01 -> '2024-25'."""
    day = when.date() if isinstance(when, datetime) else when
    start_year = day.year if (day.month, day.day) >= (4, 6) else day.year - 1
    return f"{start_year}-{str(start_year + 1)[2:]}"


def get_tax_year(label: str) -> UkTaxYear:
    try:
        return UK_TAX_YEARS[label]
    except KeyError:
        raise ConfigurationError(
            f"unknown UK tax year {label!r}; known: {sorted(UK_TAX_YEARS)}"
        ) from None


def rate_for_income(year: UkTaxYear, annual_income: Decimal) -> Decimal:
    # single flat rate per taxpayer; real CGT splits gains across bands
    return year.higher_rate if annual_income > UK_HIGHER_RATE_THRESHOLD else year.basic_rate


def events_in_tax_year(events: Iterable[DisposalEvent], label: str) -> List[DisposalEvent]:
    """
    Keep the disposal events that fall inside the tax year.

    Matching should run over the full ledger first so earlier disposals have
    already drawn down the lots; only the realized events are restricted.
    """
    year = get_tax_year(label)
    return [ev for ev in events if year.contains(ev.disposed_at)]
