from decimal import Decimal

import pytest

from backtest.engine import (BankrollSimulator, RunStatus, SimConfig, settlement_payout,
                             simulate)
from backtest.errors import ConfigurationError, OrderingError
from data.rounds import EmaSignal, Side
from signals.generator import Mode, Signal

from conftest import T0, WEI, make_round, make_sequence


def cfg(**kw):
    kw.setdefault("min_trades_to_evaluate", 0)
    return SimConfig(**kw)


# ── Scenarios ───────────────────────────────────────────────────

def test_three_wins_at_one_and_a_half_compound():
    rounds = make_sequence([True] * 3, multiple="1.5")
    result = simulate(rounds, cfg())
    assert result.total_trades == 3
    assert all(t.multiplier == 1 for t in result.trades)
    assert result.final_bankroll == Decimal("1.0225") ** 3
    assert float(result.final_bankroll) == pytest.approx(1.069, abs=1e-3)
    assert result.status is RunStatus.COMPLETED


def test_fourth_round_inside_cooldown_is_skipped():
    rounds = make_sequence([False] * 4)
    result = simulate(rounds, cfg(cb_loss_count=3, hybrid_enabled=False))
    assert [t.epoch for t in result.trades] == [1, 2, 3]
    assert len(result.skipped) == 1
    assert result.skipped[0].epoch == 4
    assert result.skipped[0].reason == "cooldown"
    assert result.context.breaker_trips == 1
    state = result.final_state()
    assert state["regime"] == "COOLDOWN"
    assert state["breaker_trips"] == 1
    assert state["consecutive_losses"] == 0
    assert state["cooldown_until_timestamp"] == rounds[2].lock_timestamp + 45 * 60
    assert state["recent_results"] == [False, False]
    assert not state["busted"]


def test_cooldown_round_without_hybrid_signal_is_skipped():
    rounds = make_sequence([False] * 4)
    result = simulate(rounds, cfg(cb_loss_count=3))
    assert result.total_trades == 3
    assert result.skipped[0].reason == "no_signal"


def test_one_sided_pool_is_skipped_not_fatal():
    rounds = make_sequence([True] * 3)
    rounds[1] = make_round(epoch=2, bull=0, bear=5)
    result = simulate(rounds, cfg())
    assert [t.epoch for t in result.trades] == [1, 3]
    assert result.skip_counts == {"one_sided_pool": 1}


def test_profit_take_after_two_wins_ignores_multipliers():
    rounds = [
        make_round(epoch=1, gap="0.1"),
        make_round(epoch=2, gap="0.1"),
        make_round(epoch=3, gap="0.9"),
        make_round(epoch=4, gap="0.1"),
    ]
    result = simulate(rounds, cfg(profit_take_after_wins=2, profit_take_fraction=0.03))
    third, fourth = result.trades[2], result.trades[3]
    assert third.profit_taking
    assert third.stake == third.bankroll_before * Decimal("0.03")
    assert not fourth.profit_taking
    assert fourth.stake == fourth.bankroll_before * Decimal("0.045")


# ── Invariants ──────────────────────────────────────────────────

def mixed_rounds(n=80):
    rounds = []
    for i in range(n):
        won = (i * 7) % 5 < 2
        gap = "0.4" if i % 4 == 0 else "0.08"
        rounds.append(make_round(epoch=i + 1, winner=Side.UP if won else Side.DOWN,
                                 gap=gap, close=100 + (i % 9) - 4))
    return rounds


@pytest.mark.parametrize("policy", ["one_time", "martingale"])
def test_stake_never_exceeds_bankroll(policy):
    result = simulate(mixed_rounds(), cfg(base_fraction=0.4, recovery_policy=policy,
                                          recovery_rule="one_loss"))
    assert result.trades
    for t in result.trades:
        assert t.stake <= t.bankroll_before
        assert t.bankroll_after >= 0


def test_bust_is_terminal():
    rounds = make_sequence([False, True, True, True])
    result = simulate(rounds, cfg(base_fraction=1.0))
    assert result.status is RunStatus.BUSTED
    assert result.busted
    assert result.final_bankroll == 0
    assert result.roi_pct == -100.0
    assert len(result.trades) == 1
    assert result.trades[-1].lock_timestamp == rounds[0].lock_timestamp
    state = result.final_state()
    assert state["busted"]
    assert state["bankroll"] == 0
    assert state["peak_bankroll"] == 1
    assert state["max_drawdown"] == 1


def test_replay_is_deterministic():
    rounds = mixed_rounds()
    a = simulate(rounds, cfg())
    b = simulate(rounds, cfg())
    assert a.trades == b.trades
    assert a.final_bankroll == b.final_bankroll
    assert a.skipped == b.skipped


def test_no_primary_trades_inside_cooldown_window():
    rounds = make_sequence([False] * 3 + [True] * 12)
    config = cfg(cb_loss_count=3, cb_cooldown_minutes=45)
    result = simulate(rounds, config)
    trip_at = rounds[2].lock_timestamp
    until = trip_at + 45 * 60
    inside = [t for t in result.trades if trip_at < t.lock_timestamp < until]
    assert all(t.used_hybrid for t in inside)
    resumed = [t for t in result.trades if t.lock_timestamp >= until]
    assert resumed and not resumed[0].used_hybrid
    assert resumed[0].lock_timestamp == until


def test_hybrid_trades_during_cooldown():
    rounds = [make_round(epoch=e, ema=EmaSignal.NEUTRAL, close=100) for e in range(1, 6)]
    rounds += [make_round(epoch=e, winner=Side.DOWN, close=c)
               for e, c in zip((6, 7, 8), (100, 100, 98))]
    rounds.append(make_round(epoch=9, ema=EmaSignal.BEAR, winner=Side.UP))
    result = simulate(rounds, cfg(cb_loss_count=3))
    assert result.skip_counts == {"neutral_ema": 5}
    last = result.trades[-1]
    assert last.epoch == 9
    assert last.used_hybrid and last.won and last.side is Side.UP
    assert last.multiplier == Decimal("1.5")
    assert len(result.hybrid_trades) == 1


@pytest.mark.parametrize("ema", [EmaSignal.NEUTRAL, None])
def test_cooldown_round_without_directional_ema_is_skipped(ema):
    rounds = [make_round(epoch=e, ema=EmaSignal.NEUTRAL, close=100) for e in range(1, 6)]
    rounds += [make_round(epoch=e, winner=Side.DOWN, close=c)
               for e, c in zip((6, 7, 8), (100, 100, 98))]
    rounds.append(make_round(epoch=9, ema=ema, winner=Side.UP, close=97))
    rounds.append(make_round(epoch=10, winner=Side.UP))
    result = simulate(rounds, cfg(cb_loss_count=3))
    assert 9 not in [t.epoch for t in result.trades]
    assert result.skipped[-1].epoch == 9
    assert result.skipped[-1].reason == ("neutral_ema" if ema else "missing_ema")
    # the skipped round's close still feeds the band: 97 after 100,100,98 stays oversold
    last = result.trades[-1]
    assert last.epoch == 10 and last.used_hybrid and last.side is Side.UP


# ── Settlement & bookkeeping ────────────────────────────────────

def test_settles_at_implied_payout_without_recorded_multiple():
    result = simulate([make_round(epoch=1)], cfg())
    t = result.trades[0]
    assert t.payout == Decimal("2.91")
    assert t.profit == Decimal("0.045") * Decimal("1.91")


def test_recorded_multiple_of_one_falls_back_to_implied():
    rnd = make_round(multiple="1")
    sig = Signal(Side.UP, Decimal("2.91"), False, Mode.CONTRARIAN)
    assert settlement_payout(rnd, sig) == Decimal("2.91")


def test_unknown_winner_is_skipped():
    result = simulate([make_round(epoch=1, winner=None)], cfg())
    assert result.total_trades == 0
    assert result.skipped[0].reason == "unknown_winner"


def test_recovery_boost_after_two_losses():
    result = simulate(make_sequence([False, False, True]), cfg())
    third = result.trades[2]
    assert third.multiplier == Decimal("1.5")
    assert third.stake == third.bankroll_before * Decimal("0.045") * Decimal("1.5")


def test_drawdown_tracks_peak():
    result = simulate(make_sequence([True, False]), cfg())
    peak = result.trades[0].bankroll_after
    assert result.context.peak_bankroll == peak
    assert result.context.max_drawdown == (peak - result.final_bankroll) / peak
    assert result.equity_curve == [Decimal(1), peak, result.final_bankroll]


def test_raw_rows_are_coerced_and_bad_rows_skipped():
    rows = [
        {"epoch": 1, "lock_timestamp": T0 + 300, "lock_bull_wei": WEI, "lock_bear_wei": 2 * WEI,
         "winner": "bull", "ema_signal": "BULL", "ema_gap": "0.1"},
        {"epoch": 2, "lock_timestamp": T0 + 600, "lock_bull_wei": None, "lock_bear_wei": 2 * WEI,
         "winner": "bull", "ema_signal": "BULL", "ema_gap": "0.1"},
    ]
    result = simulate(rows, cfg())
    assert result.total_trades == 1
    assert result.skipped[0].epoch == 2
    assert result.skipped[0].reason == "malformed"


def test_out_of_order_rounds_raise():
    rounds = make_sequence([True, True])
    with pytest.raises(OrderingError):
        simulate(list(reversed(rounds)), cfg())
    clash = [make_round(epoch=2), make_round(epoch=3, lock_timestamp=T0)]
    with pytest.raises(OrderingError):
        simulate(clash, cfg())


def test_too_few_trades_is_insufficient_data():
    result = simulate(make_sequence([True] * 3), SimConfig(min_trades_to_evaluate=10))
    assert result.status is RunStatus.INSUFFICIENT_DATA


@pytest.mark.parametrize("bad", [
    dict(base_fraction=0),
    dict(base_fraction=1.5),
    dict(momentum_multiplier=0.9),
    dict(cb_cooldown_minutes=0),
    dict(cb_loss_count=0),
    dict(min_payout=1.0),
    dict(house_fee=1),
    dict(mode="yolo"),
    dict(mode="hybrid"),
    dict(recovery_policy="double_down"),
    dict(hybrid_bb_lower=70),
    dict(initial_bankroll=0),
])
def test_invalid_config_fails_before_run(bad):
    with pytest.raises(ConfigurationError):
        BankrollSimulator(SimConfig(**bad))


def test_summary_row():
    result = simulate(make_sequence([True, False, True, True]), cfg(), label="demo")
    row = result.summary()
    assert row["label"] == "demo"
    assert row["trades"] == 4
    assert row["win_rate"] == 0.75
    assert row["status"] == "completed"


@pytest.mark.parametrize("bad", [
    dict(base_fraction="abc"),
    dict(min_payout=float("nan")),
])
def test_non_numeric_config_is_a_configuration_error(bad):
    with pytest.raises(ConfigurationError):
        SimConfig(**bad)


@pytest.mark.parametrize("bad", [
    dict(cb_loss_count=2.5),
    dict(max_recovery_steps="3"),
    dict(hybrid_bb_period=True),
    dict(cb_cooldown_minutes="45"),
])
def test_wrongly_typed_config_fails_validation(bad):
    with pytest.raises(ConfigurationError):
        BankrollSimulator(SimConfig(**bad))


def test_rows_that_are_not_mappings_are_skipped():
    rows = [None, (1, 2, 3), make_round(epoch=5)]
    result = simulate(rows, cfg())
    assert [t.epoch for t in result.trades] == [5]
    assert [s.reason for s in result.skipped] == ["malformed", "malformed"]
    assert result.skipped[0].epoch is None
