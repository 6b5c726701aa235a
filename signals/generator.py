"""
SIGNAL GENERATION — Crowd vs. Trend
====================================

Each round gives us two opinions for free:

  1. THE CROWD — whichever pool holds more money. The crowd's side pays
     less (its pool is split among more stake), the other side pays more.
  2. THE TREND — the EMA crossover signal computed from recent closes.

How the two are combined is the strategy:

CONTRARIAN (primary)
  - Bet the EMA direction only when it DISAGREES with the crowd
  - We end up on the thin side of the pool → high payout
  - Only bet if that payout clears MIN_PAYOUT

CONSENSUS
  - Bet the EMA direction only when it AGREES with the crowd
  - Payout is low, so cap it: if the crowd is so sure that payout is
    close to 1.0x, there's nothing left to win

HYBRID MEAN REVERSION (only while the circuit breaker is tripped)
  - After a loss streak the trend signal is probably whipsawing
  - Ignore its direction (the round still needs a BULL/BEAR reading to be
    tradeable at all); look at where price sits in a short Bollinger Band and at
    short-term momentum instead:
      band position < lower  or  momentum very negative → oversold → UP
      band position > upper  or  momentum very positive → overbought → DOWN
  - Payout gate is stricter (HYBRID_MIN_PAYOUT)

Everything here is a pure function of (round, mode, config, prior closes).
"""

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Optional, Sequence
import sys, os

import numpy as np

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
from data.rounds import EmaSignal, RoundRecord, Side
from backtest.errors import SkippableInputError


class Mode(str, Enum):
    CONTRARIAN = "contrarian"
    CONSENSUS = "consensus"
    HYBRID_MEAN_REVERSION = "hybrid"


PRIMARY_MODES = (Mode.CONTRARIAN, Mode.CONSENSUS)


@dataclass(frozen=True)
class Signal:
    side: Side
    implied_payout: Decimal
    used_hybrid: bool
    mode: Mode
    reason: str = ""


def bollinger_position(prices: Sequence[float], period: int,
                       num_std: float = 2.0) -> Optional[float]:
    """Where the last price sits in the band, 0 = lower band, 100 = upper band."""
    if period <= 0 or len(prices) < period:
        return None
    window = np.asarray(prices[-period:], dtype=float)
    mean = window.mean()
    std = window.std()  # population std, ddof=0
    upper = mean + num_std * std
    lower = mean - num_std * std
    if upper == lower:
        return None
    return float((window[-1] - lower) / (upper - lower) * 100)


def momentum_pct(prices: Sequence[float], period: int) -> Optional[float]:
    """Percent change of the last price vs. `period` prices earlier."""
    if period <= 0 or len(prices) < period + 1:
        return None
    old = float(prices[-period - 1])
    if old == 0:
        return None
    return (float(prices[-1]) - old) / old * 100


class SignalGenerator:
    """Turns a round into a bet direction (or no bet) for a given mode."""

    def __init__(self, config):
        self.config = config

    def screen(self, rnd: RoundRecord) -> None:
        """Raise SkippableInputError if the round can't produce a signal in any mode."""
        if rnd.total_pool_wei <= 0:
            raise SkippableInputError("empty_pool", f"epoch {rnd.epoch}")
        if rnd.bull_pool_wei == 0 or rnd.bear_pool_wei == 0:
            raise SkippableInputError("one_sided_pool", f"epoch {rnd.epoch}")
        if rnd.ema_signal is None:
            raise SkippableInputError("missing_ema", f"epoch {rnd.epoch}")
        if rnd.ema_signal is EmaSignal.NEUTRAL:
            raise SkippableInputError("neutral_ema", f"epoch {rnd.epoch}")

    def generate(self, rnd: RoundRecord, mode: Mode,
                 prior_closes: Sequence[float] = ()) -> Optional[Signal]:
        try:
            self.screen(rnd)
        except SkippableInputError:
            return None

        if mode is Mode.HYBRID_MEAN_REVERSION:
            return self._hybrid(rnd, prior_closes)

        cfg = self.config
        gap = abs(rnd.ema_gap_percent) if rnd.ema_gap_percent is not None else Decimal(0)
        if gap < cfg.gap_threshold:
            return None

        crowd = rnd.crowd_side(cfg.min_crowd_percent)
        if crowd is None:
            return None
        ema_side = rnd.ema_signal.side

        if mode is Mode.CONTRARIAN:
            if ema_side is crowd:
                return None
            payout = rnd.implied_payout(ema_side, cfg.house_fee)
            if payout is None or payout < cfg.min_payout:
                return None
            return Signal(ema_side, payout, False, mode,
                          f"EMA {rnd.ema_signal.value} vs crowd {crowd.value}")

        # CONSENSUS
        if ema_side is not crowd:
            return None
        payout = rnd.implied_payout(ema_side, cfg.house_fee)
        if payout is None or payout >= cfg.consensus_max_payout:
            return None
        return Signal(ema_side, payout, False, mode,
                      f"EMA {rnd.ema_signal.value} with crowd")

    def _hybrid(self, rnd: RoundRecord, prior_closes: Sequence[float]) -> Optional[Signal]:
        cfg = self.config
        prices = [float(p) for p in prior_closes]
        bb = bollinger_position(prices, cfg.hybrid_bb_period, cfg.hybrid_bb_std)
        mom = momentum_pct(prices, cfg.hybrid_momentum_period)

        side = None
        if bb is not None and bb < cfg.hybrid_bb_lower:
            side, reason = Side.UP, f"BB oversold ({bb:.1f}%)"
        elif bb is not None and bb > cfg.hybrid_bb_upper:
            side, reason = Side.DOWN, f"BB overbought ({bb:.1f}%)"
        elif mom is not None and mom < cfg.hybrid_momentum_bull_thresh:
            side, reason = Side.UP, f"Momentum down ({mom:.2f}%)"
        elif mom is not None and mom > cfg.hybrid_momentum_bear_thresh:
            side, reason = Side.DOWN, f"Momentum up ({mom:.2f}%)"
        if side is None:
            return None

        payout = rnd.implied_payout(side, cfg.house_fee)
        if payout is None or payout < cfg.hybrid_min_payout:
            return None
        return Signal(side, payout, True, Mode.HYBRID_MEAN_REVERSION, reason)
