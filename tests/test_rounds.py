import sqlite3
from decimal import Decimal

import pandas as pd
import pytest

from backtest.errors import SkippableInputError
from data.rounds import (EmaSignal, RoundRecord, Side, load_rounds_csv,
                         load_rounds_sqlite, rounds_from_frame)

from conftest import WEI, make_round


def raw_row(**overrides):
    row = {
        "epoch": "100",
        "lock_timestamp": "1700000000",
        "lock_bull_wei": str(3 * WEI),
        "lock_bear_wei": str(7 * WEI),
        "t20s_bull_wei": str(2 * WEI),
        "t20s_bear_wei": str(6 * WEI),
        "winner": "bull",
        "lock_price": "312.5",
        "close_price": "313.1",
        "winner_payout_multiple": "3.2333",
        "ema_signal": "bull",
        "ema_gap": "0.21",
    }
    row.update(overrides)
    return row


def test_from_row_parses_exact_values():
    r = RoundRecord.from_row(raw_row())
    assert r.epoch == 100
    assert r.bull_pool_wei == 3 * WEI
    assert r.bear_pool_wei == 7 * WEI
    assert r.winner is Side.UP
    assert r.ema_signal is EmaSignal.BULL
    assert r.close_price == Decimal("313.1")
    assert r.winner_payout_multiple == Decimal("3.2333")
    assert r.ema_gap_percent == Decimal("0.21")


def test_from_row_pool_prefix_selects_snapshot():
    r = RoundRecord.from_row(raw_row(), pool_prefix="t20s")
    assert r.bull_pool_wei == 2 * WEI
    assert r.bear_pool_wei == 6 * WEI


@pytest.mark.parametrize("winner, expected", [
    ("UP", Side.UP), ("bear", Side.DOWN), ("Down", Side.DOWN),
    ("draw", None), ("", None), (None, None),
])
def test_winner_spellings(winner, expected):
    assert RoundRecord.from_row(raw_row(winner=winner)).winner is expected


@pytest.mark.parametrize("field, value", [
    ("lock_bull_wei", None),
    ("lock_bear_wei", "abc"),
    ("lock_bull_wei", "-5"),
    ("epoch", ""),
    ("lock_timestamp", "1.5"),
    ("close_price", "NaN"),
    ("winner", "sideways"),
    ("ema_signal", "maybe"),
])
def test_malformed_rows_raise_skippable(field, value):
    with pytest.raises(SkippableInputError) as exc:
        RoundRecord.from_row(raw_row(**{field: value}))
    assert exc.value.reason == "malformed"


def test_implied_payout_and_crowd():
    r = make_round(bull=1, bear=3)
    assert r.crowd_side() is Side.DOWN
    assert r.implied_payout(Side.UP, Decimal("0.03")) == Decimal("3.88")
    assert r.implied_payout(Side.DOWN, Decimal("0")) == Decimal(4) / Decimal(3)


def test_crowd_tie_and_min_percent():
    assert make_round(bull=2, bear=2).crowd_side() is None
    r = make_round(bull=45, bear=55)
    assert r.crowd_side(Decimal(50)) is Side.DOWN
    assert r.crowd_side(Decimal(60)) is None


def test_implied_payout_empty_side_is_none():
    r = make_round(bull=0, bear=2)
    assert r.implied_payout(Side.UP, Decimal("0.03")) is None


def test_rounds_from_frame_sorts_and_rejects():
    df = pd.DataFrame([
        raw_row(epoch="102", lock_timestamp="1700000600"),
        raw_row(epoch="100"),
        raw_row(epoch="101", lock_bull_wei="oops"),
    ])
    records, rejected = rounds_from_frame(df)
    assert [r.epoch for r in records] == [100, 102]
    assert len(rejected) == 1
    assert rejected[0]["epoch"] == "101"
    assert rejected[0]["reason"] == "malformed"


def test_load_rounds_csv_keeps_wei_exact(tmp_path):
    big = "123456789012345678901"
    path = tmp_path / "rounds.csv"
    pd.DataFrame([raw_row(lock_bull_wei=big)]).to_csv(path, index=False)
    records, rejected = load_rounds_csv(str(path))
    assert not rejected
    assert records[0].bull_pool_wei == int(big)


def test_load_rounds_sqlite(tmp_path):
    path = tmp_path / "prediction.db"
    conn = sqlite3.connect(path)
    pd.DataFrame([raw_row(epoch=str(e), lock_timestamp=str(1700000000 + e * 300))
                  for e in (5, 3, 4)]).to_sql("rounds", conn, index=False)
    conn.close()
    records, rejected = load_rounds_sqlite(str(path))
    assert [r.epoch for r in records] == [3, 4, 5]
    assert rejected == []


def test_load_rounds_sqlite_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_rounds_sqlite(str(tmp_path / "nope.db"))
