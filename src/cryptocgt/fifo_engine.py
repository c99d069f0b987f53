# fifo_engine.py
"""
Deterministic FIFO cost-basis matcher.

Goal:
- Track open lots per asset, oldest first.
- Produce one DisposalEvent per disposal, carrying proceeds, matched cost basis
  and the signed gain/loss.
- Optionally apply the UK share-identification rules (same-day, then 30-day)
  before falling back to FIFO.

Cost treatment:
- ACQUISITION: total_cost = quantity * unit_price + fee (fee increases cost).
- DISPOSAL: proceeds = quantity * unit_price - fee (fee reduces proceeds).
  If the fee exceeds gross proceeds we clamp proceeds to 0 and emit a warning.

Unmatched disposals (selling more than is held) are handled by an explicit
UnmatchedDisposalPolicy instead of a hardcoded drop:
- IGNORE: the disposal produces no event and leaves the FIFO queue untouched.
- REJECT: raise UnmatchedDisposalError.
- ZERO_COST_BASIS: match what exists, treat the shortfall as zero-cost units.

Design:
- This file is *pure logic* (no DB calls). Give it a list[Transaction]; get back
  a MatchResult (events, warnings, skipped count). Every run builds fresh queues,
  so recomputing the same ledger always yields the same events.
"""

from __future__ import annotations
import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal, getcontext
from typing import Callable, Deque, Dict, Iterable, Iterator, List, Tuple

from .errors import UnmatchedDisposalError
from .schemas import (
    DisposalEvent,
    LotMatch,
    MatchingStrategy,
    Transaction,
    TxKind,
    UnmatchedDisposalPolicy,
    to_naive_utc,
)

# Use sufficient precision for money math (increase if you need sub-satoshi granularity).
getcontext().prec = 28

logger = logging.getLogger(__name__)

ZERO = Decimal("0")
THIRTY_DAYS = timedelta(days=30)


@dataclass
class Lot:
    """
    Represents an acquisition lot for an asset.
    - quantity: units at creation (never changes)
    - remaining_quantity: how much is still available to be disposed
    - total_cost: cost still attached to remaining_quantity; shrinks by the
                  consumed proportion on partial consumption
    """

    quantity: Decimal
    remaining_quantity: Decimal
    cost_per_unit: Decimal
    acquired_at: datetime
    total_cost: Decimal

    @classmethod
    def from_acquisition(cls, tx: Transaction) -> "Lot":
        total_cost = tx.quantity * tx.unit_price + tx.fee
        return cls(
            quantity=tx.quantity,
            remaining_quantity=tx.quantity,
            cost_per_unit=total_cost / tx.quantity,
            acquired_at=tx.occurred_at,
            total_cost=total_cost,
        )


class AssetLotQueue:
    """FIFO queue of open lots for one asset symbol."""

    def __init__(self, asset: str) -> None:
        self.asset = asset
        self._lots: Deque[Lot] = deque()

    def __len__(self) -> int:
        return len(self._lots)

    def __iter__(self) -> Iterator[Lot]:
        return iter(self._lots)

    def enqueue(self, lot: Lot) -> None:
        if lot.remaining_quantity <= 0:
            raise ValueError(f"cannot enqueue an empty lot for {self.asset}")
        self._lots.append(lot)

    def available(self) -> Decimal:
        """Total units still open across all lots."""
        return sum((lot.remaining_quantity for lot in self._lots), ZERO)

    def consume(self, quantity: Decimal) -> Tuple[Decimal, Decimal, List[LotMatch]]:
        """
        Take `quantity` units from the head of the queue, strictly oldest first.

        Returns (matched_cost_basis, shortfall, matches). A non-zero shortfall
        means the queue ran dry; the caller decides what that means.
        """
        needed = quantity
        cost_total = ZERO
        matches: List[LotMatch] = []

        while needed > 0 and self._lots:
            lot = self._lots[0]
            if lot.remaining_quantity <= needed:
                # a fully consumed lot carries all of its remaining cost
                taken_qty = lot.remaining_quantity
                taken_cost = lot.total_cost
                self._lots.popleft()
            else:
                taken_qty = needed
                taken_cost = lot.total_cost * needed / lot.remaining_quantity
                lot.remaining_quantity -= taken_qty
                lot.total_cost -= taken_cost

            matches.append(
                LotMatch(acquired_at=lot.acquired_at, quantity=taken_qty, cost=taken_cost)
            )
            cost_total += taken_cost
            needed -= taken_qty

        return cost_total, needed, matches


@dataclass
class MatchResult:
    events: List[DisposalEvent] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    skipped_disposals: int = 0
    # disposal timestamp behind each warning / skipped disposal
    warned_at: List[datetime] = field(default_factory=list)
    skipped_at: List[datetime] = field(default_factory=list)

    def warn(self, when: datetime, msg: str) -> None:
        logger.warning(msg)
        self.warnings.append(msg)
        self.warned_at.append(when)

    def skip(self, when: datetime, msg: str) -> None:
        self.warn(when, msg)
        self.skipped_disposals += 1
        self.skipped_at.append(when)

    def restricted(self, keep: Callable[[datetime], bool]) -> "MatchResult":
        """Events, warnings and skip counts limited to disposals for which keep(disposed_at) holds."""
        notes = [(msg, at) for msg, at in zip(self.warnings, self.warned_at) if keep(at)]
        skipped = [at for at in self.skipped_at if keep(at)]
        return MatchResult(
            events=[ev for ev in self.events if keep(ev.disposed_at)],
            warnings=[msg for msg, _ in notes],
            skipped_disposals=len(skipped),
            warned_at=[at for _, at in notes],
            skipped_at=skipped,
        )


@dataclass
class _Reservation:
    """Same-day/30-day matches claimed for one disposal before FIFO streaming."""

    quantity: Decimal = ZERO
    cost: Decimal = ZERO
    matches: List[LotMatch] = field(default_factory=list)


class FIFOMatcher:
    """
    Streams one user's ledger through per-asset lot queues.

    The matcher holds configuration only; queues live inside run() and are
    discarded when it returns.
    """

    def __init__(
        self,
        strategy: MatchingStrategy = MatchingStrategy.PURE_FIFO,
        unmatched_policy: UnmatchedDisposalPolicy = UnmatchedDisposalPolicy.IGNORE,
    ) -> None:
        self.strategy = MatchingStrategy(strategy)
        self.unmatched_policy = UnmatchedDisposalPolicy(unmatched_policy)

    def run(self, transactions: Iterable[Transaction]) -> MatchResult:
        # sorted() is stable: same-timestamp rows keep their input order
        txs = sorted(transactions, key=lambda t: to_naive_utc(t.occurred_at))
        queues: Dict[str, AssetLotQueue] = {}
        result = MatchResult()

        if self.strategy is MatchingStrategy.UK_HMRC:
            acquired_left, reservations = self._reserve_uk_matches(txs)
        else:
            acquired_left, reservations = {}, {}

        for idx, tx in enumerate(txs):
            if tx.kind is TxKind.ACQUISITION:
                lot = Lot.from_acquisition(tx)
                if idx in acquired_left:
                    lot.remaining_quantity, lot.total_cost = acquired_left[idx]
                if lot.remaining_quantity > 0:
                    queues.setdefault(tx.asset, AssetLotQueue(tx.asset)).enqueue(lot)
                continue

            event = self._dispose(tx, queues.get(tx.asset), reservations.get(idx), result)
            if event is not None:
                result.events.append(event)

        logger.debug(
            "Matched %d disposals (%d skipped) across %d assets",
            len(result.events),
            result.skipped_disposals,
            len(queues),
        )
        return result

    def _dispose(
        self,
        tx: Transaction,
        queue: AssetLotQueue | None,
        reserved: _Reservation | None,
        result: MatchResult,
    ) -> DisposalEvent | None:
        reserved = reserved or _Reservation()
        needed = tx.quantity - reserved.quantity
        available = queue.available() if queue is not None else ZERO

        shortfall = needed - available if needed > available else ZERO
        if shortfall > 0:
            if self.unmatched_policy is UnmatchedDisposalPolicy.REJECT:
                raise UnmatchedDisposalError(tx.asset, tx.occurred_at, shortfall)
            if self.unmatched_policy is UnmatchedDisposalPolicy.IGNORE:
                msg = (
                    f"Disposal of {tx.quantity} {tx.asset} at {tx.occurred_at.isoformat()} "
                    f"exceeds holdings by {shortfall}; excluded from totals."
                )
                result.skip(tx.occurred_at, msg)
                return None

        cost_total = reserved.cost
        matches = list(reserved.matches)
        if needed > 0 and queue is not None:
            cost, _, lot_matches = queue.consume(min(needed, available))
            cost_total += cost
            matches.extend(lot_matches)

        if shortfall > 0:
            msg = (
                f"Disposal of {tx.quantity} {tx.asset} at {tx.occurred_at.isoformat()} "
                f"exceeds holdings by {shortfall}; assuming zero basis for the shortfall."
            )
            result.warn(tx.occurred_at, msg)
            matches.append(LotMatch(acquired_at=None, quantity=shortfall, cost=ZERO, rule="zero_cost"))

        proceeds = tx.quantity * tx.unit_price - tx.fee
        if proceeds < 0:
            msg = f"Disposal at {tx.occurred_at.isoformat()} has fee > proceeds; clamping to 0."
            result.warn(tx.occurred_at, msg)
            proceeds = ZERO

        return DisposalEvent(
            asset=tx.asset,
            disposed_at=tx.occurred_at,
            quantity=tx.quantity,
            proceeds=proceeds,
            matched_cost_basis=cost_total,
            gain_or_loss=proceeds - cost_total,
            fee=tx.fee,
            matches=matches,
        )

    def _reserve_uk_matches(
        self, txs: List[Transaction]
    ) -> Tuple[Dict[int, Tuple[Decimal, Decimal]], Dict[int, _Reservation]]:
        """
        Pre-pass for the UK identification rules.

        1) every disposal takes from acquisitions on the same calendar day;
        2) what is left takes from acquisitions in the following 30 days,
           earliest disposal first, earliest acquisition first.

        Returns the quantity/cost left on each acquisition (keyed by index in
        `txs`) and what each disposal already claimed.
        """
        left: Dict[int, Tuple[Decimal, Decimal]] = {}
        reservations: Dict[int, _Reservation] = {}
        acquisitions: Dict[str, List[int]] = {}
        disposals: List[int] = []

        for idx, tx in enumerate(txs):
            if tx.kind is TxKind.ACQUISITION:
                lot = Lot.from_acquisition(tx)
                left[idx] = (lot.remaining_quantity, lot.total_cost)
                acquisitions.setdefault(tx.asset, []).append(idx)
            else:
                disposals.append(idx)
                reservations[idx] = _Reservation()

        def claim(d_idx: int, a_idx: int, rule: str) -> None:
            disposal = txs[d_idx]
            res = reservations[d_idx]
            needed = disposal.quantity - res.quantity
            qty_left, cost_left = left[a_idx]
            if needed <= 0 or qty_left <= 0:
                return
            if qty_left <= needed:
                take_qty, take_cost = qty_left, cost_left
            else:
                take_qty = needed
                take_cost = cost_left * needed / qty_left
            left[a_idx] = (qty_left - take_qty, cost_left - take_cost)
            res.quantity += take_qty
            res.cost += take_cost
            res.matches.append(
                LotMatch(
                    acquired_at=txs[a_idx].occurred_at,
                    quantity=take_qty,
                    cost=take_cost,
                    rule=rule,
                )
            )

        for d_idx in disposals:
            d_day = to_naive_utc(txs[d_idx].occurred_at).date()
            for a_idx in acquisitions.get(txs[d_idx].asset, []):
                if to_naive_utc(txs[a_idx].occurred_at).date() == d_day:
                    claim(d_idx, a_idx, "same_day")

        for d_idx in disposals:
            d_day = to_naive_utc(txs[d_idx].occurred_at).date()
            for a_idx in acquisitions.get(txs[d_idx].asset, []):
                a_day = to_naive_utc(txs[a_idx].occurred_at).date()
                if d_day < a_day <= d_day + THIRTY_DAYS:
                    claim(d_idx, a_idx, "thirty_day")

        return left, {k: v for k, v in reservations.items() if v.quantity > 0}


def match_disposals(
    transactions: Iterable[Transaction],
    strategy: MatchingStrategy = MatchingStrategy.PURE_FIFO,
    unmatched_policy: UnmatchedDisposalPolicy = UnmatchedDisposalPolicy.IGNORE,
) -> MatchResult:
    """Convenience wrapper: one fresh FIFOMatcher per call."""
    return FIFOMatcher(strategy, unmatched_policy).run(transactions)
