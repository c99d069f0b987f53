from __future__ import annotations
import logging
from typing import Any, Iterable, Optional

from .fifo_engine import MatchResult, match_disposals
from .gains import AllowanceResult, GainTotals, apply_allowance, check_parameters, classify_gains
from .repository import TransactionRepository
from .rules.uk import get_tax_year
from .schemas import (
    CalcConfig,
    MatchingStrategy,
    TaxSummary,
    Transaction,
    UnmatchedDisposalPolicy,
)

logger = logging.getLogger(__name__)


def aggregate_summary(
    result: MatchResult,
    totals: GainTotals,
    allowance: AllowanceResult,
    cfg: CalcConfig,
) -> TaxSummary:
    """Fold matcher output, bucketed totals and the allowance into one TaxSummary."""
    return TaxSummary(
        total_gains=totals.total_gains,
        total_losses=totals.total_losses,
        net_position=allowance.net_position,
        exemption_used=allowance.exemption_used,
        exemption_remaining=allowance.exemption_remaining,
        taxable_amount=allowance.taxable_amount,
        estimated_tax=allowance.taxable_amount * cfg.flat_tax_rate,
        events=list(result.events),
        annual_exemption=cfg.annual_exemption,
        flat_tax_rate=cfg.flat_tax_rate,
        matching_strategy=cfg.matching_strategy,
        unmatched_policy=cfg.unmatched_policy,
        skipped_disposals=result.skipped_disposals,
        warnings=list(result.warnings),
    )


def summarize(result: MatchResult, cfg: CalcConfig) -> TaxSummary:
    totals = classify_gains(result.events)
    allowance = apply_allowance(totals, cfg.annual_exemption)
    summary = aggregate_summary(result, totals, allowance, cfg)
    logger.debug(
        "Summary: gains=%s losses=%s taxable=%s tax=%s",
        summary.total_gains,
        summary.total_losses,
        summary.taxable_amount,
        summary.estimated_tax,
    )
    return summary


def compute_tax_summary(
    transactions: Iterable[Transaction],
    annual_exemption: Any,
    flat_tax_rate: Any,
    *,
    matching_strategy: MatchingStrategy = MatchingStrategy.PURE_FIFO,
    unmatched_policy: UnmatchedDisposalPolicy = UnmatchedDisposalPolicy.IGNORE,
) -> TaxSummary:
    """
    Compute the capital-gains position for one ledger.

    - transactions may be unsorted or empty; they are sorted (stably) by occurred_at.
    - annual_exemption >= 0 and 0 <= flat_tax_rate <= 1, else ConfigurationError
      is raised before any transaction is looked at.
    - Each call builds its own lot queues: same input, same summary.
    """
    exemption, rate = check_parameters(annual_exemption, flat_tax_rate)
    cfg = CalcConfig(
        annual_exemption=exemption,
        flat_tax_rate=rate,
        matching_strategy=matching_strategy,
        unmatched_policy=unmatched_policy,
    )
    result = match_disposals(transactions, cfg.matching_strategy, cfg.unmatched_policy)
    return summarize(result, cfg)


def run_for_user(
    repo: TransactionRepository,
    user_id: str,
    cfg: CalcConfig,
    tax_year: Optional[str] = None,
) -> TaxSummary:
    """
    Load a user's ledger from `repo` and compute their summary.

    With `tax_year` (UK label such as "2024-25"), lots are matched over the
    whole ledger and only disposals realized inside that year are totalled;
    warnings and skipped_disposals are restricted to that year as well.
    """
    check_parameters(cfg.annual_exemption, cfg.flat_tax_rate)
    year = get_tax_year(tax_year) if tax_year is not None else None
    txs = repo.list_for_user(user_id)
    logger.info("Computing tax summary for user=%s (%d transactions)", user_id, len(txs))

    result = match_disposals(txs, cfg.matching_strategy, cfg.unmatched_policy)
    if year is not None:
        result = result.restricted(year.contains)
    return summarize(result, cfg)

