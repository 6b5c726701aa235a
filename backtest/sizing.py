"""
POSITION SIZING — How Much to Bet
==================================

Start from a fixed fraction of bankroll, then adjust:

  stake = effective_bankroll * BASE_FRACTION
        * MOMENTUM_MULTIPLIER   if |ema gap| >= MOMENTUM_THRESHOLD (primary trades only)
        * RECOVERY_MULTIPLIER   if the recent results match the recovery rule

PROFIT TAKING overrides all of that: after N straight wins the next trade
(exactly one) is sized at a small fixed fraction. Lock in some of the run
before the streak mean-reverts.

RECOVERY POLICIES — the important choice:
  one_time    flat boost each time the rule matches. A 10-loss streak
              still bets 1.5x base, never more. Cannot run away.
  martingale  boost ** (losses in current streak), capped at
              MAX_RECOVERY_STEPS. Recovers faster, and is the variant
              that can take the bankroll to zero.

The stake never exceeds the bankroll, and `effective_bankroll` can be
capped (MAX_BANKROLL) so compounding doesn't produce absurd bet sizes
that the real pools couldn't absorb.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Optional
import sys, os

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
from backtest.stats import RecentResults

RECOVERY_RULES = ("one_loss", "two_losses")
RECOVERY_POLICIES = ("one_time", "martingale")


@dataclass(frozen=True)
class SizingFlags:
    has_momentum: bool = False
    has_recovery: bool = False
    is_profit_taking: bool = False
    loss_streak: int = 0


class PositionSizer:

    def __init__(self, config):
        self.config = config

    def recovery_triggered(self, recent: RecentResults) -> bool:
        if self.config.recovery_rule == "one_loss":
            return recent.last_n_losses(1)
        return recent.last_n_losses(2)

    def flags(self, signal, rnd, recent: RecentResults, loss_streak: int,
              wins_since_profit_take: int) -> SizingFlags:
        cfg = self.config
        gap = abs(rnd.ema_gap_percent) if rnd.ema_gap_percent is not None else Decimal(0)
        return SizingFlags(
            has_momentum=(not signal.used_hybrid) and gap >= cfg.momentum_threshold,
            has_recovery=self.recovery_triggered(recent),
            is_profit_taking=(cfg.profit_take_after_wins > 0
                              and wins_since_profit_take >= cfg.profit_take_after_wins),
            loss_streak=loss_streak,
        )

    def multiplier(self, flags: SizingFlags) -> Decimal:
        cfg = self.config
        mult = Decimal(1)
        if flags.has_momentum:
            mult *= cfg.momentum_multiplier
        if flags.has_recovery:
            if cfg.recovery_policy == "martingale":
                steps = max(1, min(flags.loss_streak, cfg.max_recovery_steps))
                mult *= cfg.recovery_multiplier ** steps
            else:
                mult *= cfg.recovery_multiplier
        return mult

    def effective_bankroll(self, bankroll: Decimal) -> Decimal:
        cap: Optional[Decimal] = self.config.max_bankroll
        if cap is not None and bankroll > cap:
            return cap
        return bankroll

    def size(self, bankroll: Decimal, flags: SizingFlags) -> Decimal:
        """Stake for the next trade. Never more than `bankroll`."""
        if bankroll <= 0:
            raise ValueError("cannot size a bet with an empty bankroll")
        cfg = self.config
        effective = self.effective_bankroll(bankroll)
        if flags.is_profit_taking:
            stake = effective * cfg.profit_take_fraction
        else:
            stake = effective * cfg.base_fraction * self.multiplier(flags)
        return min(stake, bankroll)
