import random
from datetime import datetime
from decimal import Decimal

import pytest

from conftest import acq, disp
from cryptocgt import compute_tax_summary, run_for_user
from cryptocgt.errors import ConfigurationError, UnmatchedDisposalError
from cryptocgt.repository import InMemoryTransactionRepository
from cryptocgt.schemas import CalcConfig, MatchingStrategy, UnmatchedDisposalPolicy

EXEMPTION = Decimal("3000")
RATE = Decimal("0.2")


def _ledger():
    return [
        acq("BTC", "1", "20000", fee="20", at=0),
        acq("ETH", "10", "1500", at=1),
        acq("BTC", "0.5", "30000", at=2),
        disp("ETH", "4", "2000", fee="8", at=3),
        disp("BTC", "1.2", "35000", fee="35", at=4),
        disp("ETH", "6", "1200", at=5),
        disp("ADA", "100", "0.5", at=6),  # never held
    ]


def test_end_to_end_scenario():
    # 2 BTC bought for 1000 in total plus a 10 fee; half of it sold for 3000 less a 5 fee
    summary = compute_tax_summary(
        [acq("BTC", "2", "500", fee="10", at=0), disp("BTC", "1", "3000", fee="5", at=1)],
        EXEMPTION,
        RATE,
    )
    ev = summary.events[0]
    assert ev.matched_cost_basis == Decimal("505")
    assert ev.proceeds == Decimal("2995")
    assert ev.gain_or_loss == Decimal("2490")
    assert summary.total_gains == Decimal("2490")
    assert summary.total_losses == 0
    assert summary.exemption_used == Decimal("2490")
    assert summary.exemption_remaining == Decimal("510")
    assert summary.taxable_amount == 0
    assert summary.estimated_tax == 0


def test_estimated_tax_applies_flat_rate_to_taxable_amount():
    summary = compute_tax_summary([acq("BTC", "1", "1000"), disp("BTC", "1", "6000", at=1)], EXEMPTION, RATE)
    assert summary.net_position == Decimal("5000")
    assert summary.exemption_used == EXEMPTION
    assert summary.taxable_amount == Decimal("2000")
    assert summary.estimated_tax == Decimal("400")


def test_net_loss_summary():
    summary = compute_tax_summary([acq("BTC", "1", "1000"), disp("BTC", "1", "500", at=1)], EXEMPTION, RATE)
    assert summary.total_losses == Decimal("500")
    assert summary.net_position == Decimal("-500")
    assert summary.exemption_used == 0
    assert summary.taxable_amount == 0
    assert summary.estimated_tax == 0


def test_empty_input_gives_zero_summary():
    summary = compute_tax_summary([], EXEMPTION, RATE)
    assert summary.events == []
    for field in ("total_gains", "total_losses", "net_position", "exemption_used", "taxable_amount", "estimated_tax"):
        assert getattr(summary, field) == 0
    assert summary.exemption_remaining == EXEMPTION
    assert summary.skipped_disposals == 0


def test_idempotent():
    txs = _ledger()
    first = compute_tax_summary(txs, EXEMPTION, RATE)
    second = compute_tax_summary(txs, EXEMPTION, RATE)
    assert first.model_dump_json() == second.model_dump_json()


def test_input_order_does_not_matter():
    txs = _ledger()
    expected = compute_tax_summary(txs, EXEMPTION, RATE).model_dump_json()

    shuffled = list(txs)
    random.Random(7).shuffle(shuffled)
    assert compute_tax_summary(shuffled, EXEMPTION, RATE).model_dump_json() == expected
    assert compute_tax_summary(reversed(txs), EXEMPTION, RATE).model_dump_json() == expected


def test_unmatched_disposal_does_not_change_totals():
    base = [acq("BTC", "1", "100", at=0), disp("BTC", "1", "150", at=1)]
    with_orphan = base + [disp("XRP", "50", "2", at=2)]

    a = compute_tax_summary(base, EXEMPTION, RATE)
    b = compute_tax_summary(with_orphan, EXEMPTION, RATE)
    assert len(a.events) == len(b.events) == 1
    assert a.total_gains == b.total_gains
    assert b.skipped_disposals == 1
    assert b.warnings


def test_policy_is_passed_through():
    txs = [disp("XRP", "50", "2")]
    with pytest.raises(UnmatchedDisposalError):
        compute_tax_summary(txs, EXEMPTION, RATE, unmatched_policy=UnmatchedDisposalPolicy.REJECT)

    summary = compute_tax_summary(txs, EXEMPTION, RATE, unmatched_policy=UnmatchedDisposalPolicy.ZERO_COST_BASIS)
    assert summary.total_gains == Decimal("100")
    assert summary.unmatched_policy is UnmatchedDisposalPolicy.ZERO_COST_BASIS


def test_strategy_is_recorded():
    summary = compute_tax_summary([], EXEMPTION, RATE, matching_strategy=MatchingStrategy.UK_HMRC)
    assert summary.matching_strategy is MatchingStrategy.UK_HMRC


def test_configuration_errors_raise_before_reading_transactions():
    def exploding():
        raise AssertionError("transactions must not be read")
        yield  # pragma: no cover

    with pytest.raises(ConfigurationError):
        compute_tax_summary(exploding(), Decimal("-1"), RATE)
    with pytest.raises(ConfigurationError):
        compute_tax_summary(exploding(), EXEMPTION, Decimal("1.5"))


def test_summary_is_frozen():
    summary = compute_tax_summary([], EXEMPTION, RATE)
    with pytest.raises(Exception):
        summary.total_gains = Decimal("1")


# --------------------------------------------------------------------------------------
# run_for_user (repository + tax year)
# --------------------------------------------------------------------------------------
def _repo():
    repo = InMemoryTransactionRepository()
    repo.add("alice", acq("BTC", "2", "100", at=datetime(2024, 1, 10)))
    repo.add("alice", disp("BTC", "1", "150", at=datetime(2024, 3, 1)))   # 2023-24
    repo.add("alice", disp("BTC", "1", "300", at=datetime(2024, 5, 1)))   # 2024-25
    repo.add("bob", acq("ETH", "1", "1000", at=datetime(2024, 6, 1)))
    return repo


def test_run_for_user_whole_ledger():
    summary = run_for_user(_repo(), "alice", CalcConfig(annual_exemption="0", flat_tax_rate="0.1"))
    assert len(summary.events) == 2
    assert summary.total_gains == Decimal("250")
    assert summary.estimated_tax == Decimal("25")


def test_run_for_user_restricted_to_tax_year_keeps_earlier_matching():
    summary = run_for_user(_repo(), "alice", CalcConfig(), tax_year="2024-25")
    assert len(summary.events) == 1
    ev = summary.events[0]
    # second unit of the lot; the first was drawn down in 2023-24
    assert ev.matched_cost_basis == Decimal("100")
    assert ev.gain_or_loss == Decimal("200")


def test_run_for_user_is_scoped_per_user():
    repo = _repo()
    assert run_for_user(repo, "bob", CalcConfig()).events == []
    assert run_for_user(repo, "nobody", CalcConfig()).events == []


def test_run_for_user_unknown_tax_year():
    with pytest.raises(ConfigurationError):
        run_for_user(_repo(), "alice", CalcConfig(), tax_year="1999-00")


def test_in_memory_repository_dedupes():
    repo = InMemoryTransactionRepository()
    tx = acq("BTC", "1", "100")
    assert repo.add("alice", tx) is True
    assert repo.add("alice", tx) is False
    assert repo.add("bob", tx) is True
    assert len(repo.list_for_user("alice")) == 1


def test_run_for_user_tax_year_limits_warnings_and_skips():
    repo = _repo()
    repo.add("alice", disp("XRP", "50", "2", at=datetime(2024, 3, 2)))  # 2023-24, never held

    whole = run_for_user(repo, "alice", CalcConfig())
    assert whole.skipped_disposals == 1
    assert len(whole.warnings) == 1

    current = run_for_user(repo, "alice", CalcConfig(), tax_year="2024-25")
    assert current.skipped_disposals == 0
    assert current.warnings == []

    previous = run_for_user(repo, "alice", CalcConfig(), tax_year="2023-24")
    assert previous.skipped_disposals == 1
    assert "XRP" in previous.warnings[0]


def test_in_memory_repository_dedupes_same_instant_across_timezones():
    from datetime import timedelta, timezone

    repo = InMemoryTransactionRepository()
    naive = acq("BTC", "1", "100", at=datetime(2024, 5, 1, 10, 0))
    aware = acq("BTC", "1", "100", at=datetime(2024, 5, 1, 12, 0, tzinfo=timezone(timedelta(hours=2))))
    assert repo.add("alice", naive) is True
    assert repo.add("alice", aware) is False
    assert len(repo.list_for_user("alice")) == 1
