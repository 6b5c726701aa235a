"""
CIRCUIT BREAKER — Knowing When to Stop
=======================================

A trend-based signal fails in streaks: when the market turns choppy the
EMA flips back and forth and every contrarian bet gets run over. The
circuit breaker caps the damage:

  ACTIVE ──(L consecutive losses)──▸ COOLDOWN
     ▴                                  │
     └──(round lock time >= cooldown_until)──┘

  - Tripping sets cooldown_until = lock time of the losing round
    + CB_COOLDOWN_MINUTES, and resets the loss counter
  - While in COOLDOWN the primary strategy is suppressed; the hybrid
    mean-reversion rule may trade instead (or nothing does)
  - Any win resets the loss counter, in either state
  - cooldown_until only ever moves forward

All state lives on the SimulationContext; this class holds only config.
"""

import logging
from enum import Enum

log = logging.getLogger(__name__)


class Regime(str, Enum):
    ACTIVE = "ACTIVE"
    COOLDOWN = "COOLDOWN"


class RiskManager:

    def __init__(self, config):
        self.config = config

    @property
    def cooldown_seconds(self) -> int:
        return int(self.config.cb_cooldown_minutes * 60)

    def regime(self, ctx, lock_timestamp: int) -> Regime:
        """Current regime for a round locking at `lock_timestamp`; leaves cooldown if it has expired."""
        if ctx.regime is Regime.COOLDOWN and lock_timestamp >= ctx.cooldown_until_timestamp:
            ctx.regime = Regime.ACTIVE
            log.info("circuit breaker reset at t=%d (cooldown ended t=%d)",
                     lock_timestamp, ctx.cooldown_until_timestamp)
        return ctx.regime

    def record_result(self, ctx, won: bool, lock_timestamp: int) -> bool:
        """Feed a settled trade back in. Returns True if this result tripped the breaker."""
        if won:
            ctx.consecutive_losses = 0
            return False

        ctx.consecutive_losses += 1
        if ctx.consecutive_losses < self.config.cb_loss_count:
            return False

        until = lock_timestamp + self.cooldown_seconds
        ctx.cooldown_until_timestamp = max(ctx.cooldown_until_timestamp, until)
        ctx.consecutive_losses = 0
        ctx.regime = Regime.COOLDOWN
        ctx.breaker_trips += 1
        log.info("circuit breaker tripped at t=%d after %d losses, cooldown until t=%d",
                 lock_timestamp, self.config.cb_loss_count, ctx.cooldown_until_timestamp)
        return True
