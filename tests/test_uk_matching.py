from datetime import datetime
from decimal import Decimal

from conftest import acq, disp
from cryptocgt.fifo_engine import match_disposals
from cryptocgt.schemas import MatchingStrategy

UK = MatchingStrategy.UK_HMRC


def test_same_day_acquisition_is_matched_before_older_lots():
    txs = [
        acq("BTC", "1", "100", at=datetime(2024, 5, 1, 9, 0)),
        acq("BTC", "1", "200", at=datetime(2024, 6, 1, 10, 0)),
        disp("BTC", "1", "300", at=datetime(2024, 6, 1, 12, 0)),
        disp("BTC", "1", "300", at=datetime(2024, 8, 1, 12, 0)),
    ]

    fifo = match_disposals(txs).events
    assert [e.matched_cost_basis for e in fifo] == [Decimal("100"), Decimal("200")]

    uk = match_disposals(txs, strategy=UK).events
    assert [e.matched_cost_basis for e in uk] == [Decimal("200"), Decimal("100")]
    assert uk[0].matches[0].rule == "same_day"
    assert uk[1].matches[0].rule == "fifo"


def test_same_day_applies_to_acquisition_later_that_day():
    txs = [
        acq("ETH", "1", "1000", at=datetime(2024, 5, 1, 9, 0)),
        disp("ETH", "1", "1500", at=datetime(2024, 6, 1, 9, 0)),
        acq("ETH", "1", "1400", at=datetime(2024, 6, 1, 18, 0)),
    ]
    ev = match_disposals(txs, strategy=UK).events[0]
    assert ev.matched_cost_basis == Decimal("1400")
    assert ev.gain_or_loss == Decimal("100")


def test_thirty_day_rule_matches_reacquisition():
    txs = [
        acq("BTC", "1", "100", at=0),
        disp("BTC", "1", "300", at=10),
        acq("BTC", "1", "250", at=20),
        disp("BTC", "1", "300", at=60),
    ]
    uk = match_disposals(txs, strategy=UK).events
    assert uk[0].matched_cost_basis == Decimal("250")
    assert uk[0].matches[0].rule == "thirty_day"
    # the day-0 lot stayed in the pool for the later disposal
    assert uk[1].matched_cost_basis == Decimal("100")

    fifo = match_disposals(txs).events
    assert [e.matched_cost_basis for e in fifo] == [Decimal("100"), Decimal("250")]


def test_reacquisition_after_thirty_days_falls_back_to_fifo():
    txs = [
        acq("BTC", "1", "100", at=0),
        disp("BTC", "1", "300", at=10),
        acq("BTC", "1", "250", at=41),
    ]
    ev = match_disposals(txs, strategy=UK).events[0]
    assert ev.matched_cost_basis == Decimal("100")
    assert ev.matches[0].rule == "fifo"


def test_thirty_day_partial_match_then_fifo():
    txs = [
        acq("BTC", "2", "100", at=0),       # 200 total
        disp("BTC", "2", "300", at=5),
        acq("BTC", "1", "280", at=15),      # covers half the disposal
    ]
    ev = match_disposals(txs, strategy=UK).events[0]
    assert [m.rule for m in ev.matches] == ["thirty_day", "fifo"]
    assert ev.matched_cost_basis == Decimal("380")  # 280 + 1 unit at 100
    assert ev.gain_or_loss == Decimal("220")


def test_forward_match_covers_disposal_without_prior_holdings():
    txs = [disp("SOL", "3", "50", at=0), acq("SOL", "3", "40", at=5)]

    assert match_disposals(txs).skipped_disposals == 1

    uk = match_disposals(txs, strategy=UK)
    assert uk.skipped_disposals == 0
    assert uk.events[0].matched_cost_basis == Decimal("120")
    assert uk.events[0].gain_or_loss == Decimal("30")


def test_earlier_disposal_claims_reacquisition_first():
    txs = [
        acq("BTC", "2", "100", at=0),
        disp("BTC", "1", "300", at=10),
        disp("BTC", "1", "300", at=12),
        acq("BTC", "1", "250", at=20),
    ]
    first, second = match_disposals(txs, strategy=UK).events
    assert first.matched_cost_basis == Decimal("250")
    assert second.matched_cost_basis == Decimal("100")
