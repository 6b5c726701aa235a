"""
BANKROLL SIMULATOR — Replaying a Strategy Against History
==========================================================

"If you can't backtest it, you can't trade it."

This engine replays recorded prediction rounds in time order and bets
them as a strategy would have, one round at a time:

  for each round (ascending lock time):
    1. RISK      — ACTIVE or COOLDOWN? (leave cooldown if it expired)
    2. SIGNAL    — primary mode when ACTIVE, hybrid mean reversion in
                   COOLDOWN (or skip if hybrid is off)
    3. SIZE      — base fraction x momentum x recovery, or profit-take
    4. SETTLE    — won = our side == recorded winner
                   bankroll += stake * (payout - 1)  or  -= stake
    5. FEEDBACK  — loss counter / circuit breaker, recent results,
                   peak & drawdown, append the Trade
    6. BUST?     — bankroll hit 0 → stop. No more trades, ROI = -100%

PARIMUTUEL PAYOUT:
  - There is no price to pay per share: you stake X into a pool
  - If right: you get X * payout where payout = total*(1-fee)/your_side
  - If wrong: you lose X
  - Betting the thin side of the pool = high payout, and the crowd
    pays for it when you're right

WHAT WE TRACK:
  - Trade log (append-only, one entry per executed bet)
  - Skipped rounds and why (bad data, no signal, cooldown)
  - Equity curve, peak, max drawdown
  - Win rate, ROI, profit factor, win/loss streaks
  - Primary vs. hybrid trades

Everything is a pure function of (rounds, config): same input, same
Trade log, bit for bit. No randomness, no globals.
"""

import dataclasses
import logging
import numbers
from collections import Counter, deque
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Dict, Iterable, List, Mapping, Optional
import sys, os

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
import config as defaults
from data.rounds import RoundRecord, Side
from signals.generator import Mode, PRIMARY_MODES, Signal, SignalGenerator
from backtest.errors import ConfigurationError, OrderingError, SkippableInputError
from backtest.risk import Regime, RiskManager
from backtest.sizing import RECOVERY_POLICIES, RECOVERY_RULES, PositionSizer, SizingFlags
from backtest.stats import RecentResults, drawdown, profit_factor, streaks

log = logging.getLogger(__name__)

_DECIMAL_FIELDS = (
    "initial_bankroll", "base_fraction", "momentum_threshold", "momentum_multiplier",
    "recovery_multiplier", "min_payout", "hybrid_min_payout", "consensus_max_payout",
    "house_fee", "gap_threshold", "min_crowd_percent", "profit_take_fraction",
    "max_bankroll",
)


_INT_FIELDS = (
    "max_recovery_steps", "profit_take_after_wins", "cb_loss_count",
    "hybrid_bb_period", "hybrid_momentum_period", "min_trades_to_evaluate",
)


def _dec(value, name: str) -> Optional[Decimal]:
    if value is None or isinstance(value, Decimal):
        return value
    try:
        d = Decimal(str(value))
    except InvalidOperation:
        raise ConfigurationError(f"{name}={value!r} is not a number")
    if not d.is_finite():
        raise ConfigurationError(f"{name}={value!r} is not finite")
    return d


@dataclass(frozen=True)
class SimConfig:
    """Every knob of one simulation run. Defaults come from config.py."""

    mode: str = defaults.STRATEGY_MODE
    initial_bankroll: Decimal = defaults.INITIAL_BANKROLL

    # Sizing
    base_fraction: Decimal = defaults.BASE_FRACTION
    momentum_threshold: Decimal = defaults.MOMENTUM_THRESHOLD
    momentum_multiplier: Decimal = defaults.MOMENTUM_MULTIPLIER
    recovery_multiplier: Decimal = defaults.RECOVERY_MULTIPLIER
    recovery_rule: str = defaults.RECOVERY_RULE
    recovery_policy: str = defaults.RECOVERY_POLICY
    max_recovery_steps: int = defaults.MAX_RECOVERY_STEPS
    profit_take_after_wins: int = defaults.PROFIT_TAKE_AFTER_WINS
    profit_take_fraction: Decimal = defaults.PROFIT_TAKE_FRACTION
    max_bankroll: Optional[Decimal] = defaults.MAX_BANKROLL

    # Signal
    min_payout: Decimal = defaults.MIN_PAYOUT
    consensus_max_payout: Decimal = defaults.CONSENSUS_MAX_PAYOUT
    house_fee: Decimal = defaults.HOUSE_FEE
    gap_threshold: Decimal = defaults.GAP_THRESHOLD
    min_crowd_percent: Decimal = defaults.MIN_CROWD_PERCENT

    # Circuit breaker
    cb_loss_count: int = defaults.CB_LOSS_COUNT
    cb_cooldown_minutes: float = defaults.CB_COOLDOWN_MINUTES

    # Hybrid
    hybrid_enabled: bool = defaults.HYBRID_ENABLED
    hybrid_min_payout: Decimal = defaults.HYBRID_MIN_PAYOUT
    hybrid_bb_period: int = defaults.HYBRID_BB_PERIOD
    hybrid_bb_std: float = defaults.HYBRID_BB_STD
    hybrid_bb_lower: float = defaults.HYBRID_BB_LOWER
    hybrid_bb_upper: float = defaults.HYBRID_BB_UPPER
    hybrid_momentum_period: int = defaults.HYBRID_MOMENTUM_PERIOD
    hybrid_momentum_bull_thresh: float = defaults.HYBRID_MOMENTUM_BULL_THRESH
    hybrid_momentum_bear_thresh: float = defaults.HYBRID_MOMENTUM_BEAR_THRESH

    min_trades_to_evaluate: int = defaults.MIN_TRADES_TO_EVALUATE
    pool_prefix: str = defaults.POOL_PREFIX

    def __post_init__(self):
        for name in _DECIMAL_FIELDS:
            object.__setattr__(self, name, _dec(getattr(self, name), name))
        if isinstance(self.mode, Mode):
            object.__setattr__(self, "mode", self.mode.value)

    @property
    def primary_mode(self) -> Mode:
        return Mode(self.mode)

    def replace(self, **changes) -> "SimConfig":
        return dataclasses.replace(self, **changes)

    def validate(self) -> "SimConfig":
        """Raise ConfigurationError on the first invalid parameter. Never clamps."""
        def bad(msg):
            raise ConfigurationError(msg)

        for name in _INT_FIELDS:
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, numbers.Integral):
                bad(f"{name} must be an integer, got {value!r}")
        for name in ("cb_cooldown_minutes", "hybrid_bb_std", "hybrid_bb_lower",
                     "hybrid_bb_upper", "hybrid_momentum_bull_thresh",
                     "hybrid_momentum_bear_thresh"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, numbers.Real):
                bad(f"{name} must be a number, got {value!r}")

        try:
            mode = Mode(self.mode)
        except ValueError:
            bad(f"unknown mode {self.mode!r}")
        if mode not in PRIMARY_MODES:
            bad(f"mode must be one of {[m.value for m in PRIMARY_MODES]}, got {self.mode!r}")
        if self.initial_bankroll <= 0:
            bad("initial_bankroll must be > 0")
        if not 0 < self.base_fraction <= 1:
            bad("base_fraction must be in (0, 1]")
        if not 0 < self.profit_take_fraction <= 1:
            bad("profit_take_fraction must be in (0, 1]")
        if self.momentum_threshold < 0:
            bad("momentum_threshold must be >= 0")
        if self.gap_threshold < 0:
            bad("gap_threshold must be >= 0")
        if self.momentum_multiplier < 1 or self.recovery_multiplier < 1:
            bad("momentum/recovery multipliers must be >= 1")
        if self.recovery_rule not in RECOVERY_RULES:
            bad(f"recovery_rule must be one of {RECOVERY_RULES}")
        if self.recovery_policy not in RECOVERY_POLICIES:
            bad(f"recovery_policy must be one of {RECOVERY_POLICIES}")
        if self.max_recovery_steps < 1:
            bad("max_recovery_steps must be >= 1")
        if self.profit_take_after_wins < 0:
            bad("profit_take_after_wins must be >= 0")
        if self.max_bankroll is not None and self.max_bankroll <= 0:
            bad("max_bankroll must be > 0 or None")
        if self.min_payout <= 1 or self.hybrid_min_payout <= 1 or self.consensus_max_payout <= 1:
            bad("payout thresholds must be > 1")
        if not 0 <= self.house_fee < 1:
            bad("house_fee must be in [0, 1)")
        if not 0 <= self.min_crowd_percent <= 100:
            bad("min_crowd_percent must be in [0, 100]")
        if self.cb_loss_count < 1:
            bad("cb_loss_count must be >= 1")
        if self.cb_cooldown_minutes <= 0:
            bad("cb_cooldown_minutes must be > 0")
        if self.hybrid_bb_period < 2 or self.hybrid_momentum_period < 1:
            bad("hybrid periods too short")
        if self.hybrid_bb_std <= 0:
            bad("hybrid_bb_std must be > 0")
        if self.hybrid_bb_lower >= self.hybrid_bb_upper:
            bad("hybrid_bb_lower must be below hybrid_bb_upper")
        if self.hybrid_momentum_bull_thresh >= self.hybrid_momentum_bear_thresh:
            bad("hybrid momentum bull threshold must be below bear threshold")
        if self.min_trades_to_evaluate < 0:
            bad("min_trades_to_evaluate must be >= 0")
        return self


@dataclass
class SimulationContext:
    """All mutable state of one run. Owned by the simulator loop."""

    bankroll: Decimal
    peak_bankroll: Decimal
    max_drawdown: Decimal = Decimal(0)
    consecutive_losses: int = 0
    cooldown_until_timestamp: int = 0
    regime: Regime = Regime.ACTIVE
    recent_results: RecentResults = field(default_factory=RecentResults)
    loss_streak: int = 0
    wins_since_profit_take: int = 0
    breaker_trips: int = 0
    busted: bool = False
    last_epoch: Optional[int] = None
    last_lock_timestamp: Optional[int] = None

    @classmethod
    def start(cls, bankroll: Decimal) -> "SimulationContext":
        return cls(bankroll=bankroll, peak_bankroll=bankroll)

    def snapshot(self) -> Dict[str, object]:
        return {
            "bankroll": self.bankroll,
            "peak_bankroll": self.peak_bankroll,
            "max_drawdown": self.max_drawdown,
            "consecutive_losses": self.consecutive_losses,
            "cooldown_until_timestamp": self.cooldown_until_timestamp,
            "regime": self.regime.value,
            "recent_results": list(self.recent_results),
            "breaker_trips": self.breaker_trips,
            "busted": self.busted,
        }


@dataclass(frozen=True)
class Trade:
    epoch: int
    lock_timestamp: int
    side: Side
    stake: Decimal
    won: bool
    payout: Decimal
    profit: Decimal
    bankroll_before: Decimal
    bankroll_after: Decimal
    used_hybrid: bool = False
    profit_taking: bool = False
    multiplier: Decimal = Decimal(1)


@dataclass(frozen=True)
class SkippedRound:
    epoch: Optional[int]
    lock_timestamp: Optional[int]
    reason: str
    detail: str = ""


class RunStatus(str, Enum):
    COMPLETED = "completed"
    BUSTED = "busted"
    INSUFFICIENT_DATA = "insufficient_data"


@dataclass
class RunResult:
    config: SimConfig
    context: SimulationContext
    trades: List[Trade] = field(default_factory=list)
    skipped: List[SkippedRound] = field(default_factory=list)
    equity_curve: List[Decimal] = field(default_factory=list)
    status: RunStatus = RunStatus.COMPLETED
    label: str = ""

    @property
    def busted(self) -> bool:
        return self.status is RunStatus.BUSTED

    @property
    def final_bankroll(self) -> Decimal:
        return self.context.bankroll

    @property
    def total_trades(self) -> int:
        return len(self.trades)

    @property
    def winning_trades(self) -> int:
        return sum(1 for t in self.trades if t.won)

    @property
    def losing_trades(self) -> int:
        return self.total_trades - self.winning_trades

    @property
    def win_rate(self) -> float:
        return self.winning_trades / max(self.total_trades, 1)

    @property
    def total_pnl(self) -> Decimal:
        return self.final_bankroll - self.config.initial_bankroll

    @property
    def roi_pct(self) -> float:
        if self.busted:
            return -100.0
        return float(self.total_pnl / self.config.initial_bankroll * 100)

    @property
    def max_drawdown(self) -> float:
        return float(self.context.max_drawdown)

    @property
    def profit_factor(self) -> float:
        return profit_factor(t.profit for t in self.trades)

    @property
    def avg_win(self) -> Decimal:
        wins = [t.profit for t in self.trades if t.won]
        return sum(wins, Decimal(0)) / len(wins) if wins else Decimal(0)

    @property
    def avg_loss(self) -> Decimal:
        losses = [t.profit for t in self.trades if not t.won]
        return sum(losses, Decimal(0)) / len(losses) if losses else Decimal(0)

    @property
    def max_win_streak(self) -> int:
        return streaks(t.won for t in self.trades)[0]

    @property
    def max_loss_streak(self) -> int:
        return streaks(t.won for t in self.trades)[1]

    @property
    def primary_trades(self) -> List[Trade]:
        return [t for t in self.trades if not t.used_hybrid]

    @property
    def hybrid_trades(self) -> List[Trade]:
        return [t for t in self.trades if t.used_hybrid]

    @property
    def skip_counts(self) -> Dict[str, int]:
        return dict(Counter(s.reason for s in self.skipped))

    def final_state(self) -> Dict[str, object]:
        """Snapshot of the context at the end of the run (bankroll, drawdown, bust flag, ...)."""
        return self.context.snapshot()

    def summary(self) -> Dict[str, object]:
        """Flat dict of headline numbers (one row of a sweep table)."""
        primary, hybrid = self.primary_trades, self.hybrid_trades
        return {
            "label": self.label,
            "status": self.status.value,
            "trades": self.total_trades,
            "win_rate": round(self.win_rate, 4),
            "roi_pct": round(self.roi_pct, 2),
            "final_bankroll": float(self.final_bankroll),
            "max_drawdown_pct": round(self.max_drawdown * 100, 2),
            "profit_factor": round(self.profit_factor, 3),
            "max_loss_streak": self.max_loss_streak,
            "primary_trades": len(primary),
            "hybrid_trades": len(hybrid),
            "hybrid_win_rate": round(sum(t.won for t in hybrid) / max(len(hybrid), 1), 4),
            "breaker_trips": self.context.breaker_trips,
            "skipped": len(self.skipped),
        }


class BankrollSimulator:
    """Drives signal → size → settle → feedback over an ordered round sequence."""

    def __init__(self, config: Optional[SimConfig] = None):
        self.config = (config or SimConfig()).validate()
        self.signals = SignalGenerator(self.config)
        self.sizer = PositionSizer(self.config)
        self.risk = RiskManager(self.config)
        self._history_len = max(self.config.hybrid_bb_period,
                                 self.config.hybrid_momentum_period + 1)

    def run(self, rounds: Iterable, label: str = "") -> RunResult:
        cfg = self.config
        ctx = SimulationContext.start(cfg.initial_bankroll)
        result = RunResult(config=cfg, context=ctx, label=label)
        result.equity_curve.append(ctx.bankroll)
        prior_closes = deque(maxlen=self._history_len)

        for item in rounds:
            if ctx.busted:
                break
            rnd = self._coerce(item, result)
            if rnd is None:
                continue
            self._check_order(ctx, rnd)
            self.step(ctx, rnd, list(prior_closes), result)
            if rnd.close_price is not None:
                prior_closes.append(float(rnd.close_price))

        if ctx.busted:
            result.status = RunStatus.BUSTED
        elif result.total_trades < cfg.min_trades_to_evaluate:
            result.status = RunStatus.INSUFFICIENT_DATA

        log.info("run %s: %s, %d trades, %d skipped, bankroll %s → %s (ROI %+.1f%%)",
                 label or cfg.mode, result.status.value, result.total_trades,
                 len(result.skipped), cfg.initial_bankroll, ctx.bankroll, result.roi_pct)
        return result

    def step(self, ctx: SimulationContext, rnd: RoundRecord,
             prior_closes: List[float], result: RunResult) -> Optional[Trade]:
        """Process one round. Returns the Trade, or None if the round was skipped."""
        cfg = self.config
        regime = self.risk.regime(ctx, rnd.lock_timestamp)

        if regime is Regime.ACTIVE:
            mode = cfg.primary_mode
        elif cfg.hybrid_enabled:
            mode = Mode.HYBRID_MEAN_REVERSION
        else:
            return self._skip(result, rnd, "cooldown")

        try:
            self.signals.screen(rnd)
        except SkippableInputError as e:
            return self._skip(result, rnd, e.reason, e.detail)

        signal = self.signals.generate(rnd, mode, prior_closes)
        if signal is None:
            return self._skip(result, rnd, "no_signal", mode.value)
        if rnd.winner is None:
            return self._skip(result, rnd, "unknown_winner")

        flags = self.sizer.flags(signal, rnd, ctx.recent_results, ctx.loss_streak,
                                 ctx.wins_since_profit_take)
        stake = self.sizer.size(ctx.bankroll, flags)
        return self._settle(ctx, rnd, signal, flags, stake, result)

    def _settle(self, ctx: SimulationContext, rnd: RoundRecord, signal: Signal,
                flags: SizingFlags, stake: Decimal, result: RunResult) -> Trade:
        before = ctx.bankroll
        won = signal.side is rnd.winner
        payout = settlement_payout(rnd, signal)
        profit = stake * (payout - 1) if won else -stake

        ctx.bankroll = before + profit
        if ctx.bankroll <= 0:
            ctx.bankroll = Decimal(0)
            profit = -before

        self.risk.record_result(ctx, won, rnd.lock_timestamp)
        ctx.recent_results.push(won)
        if won:
            ctx.loss_streak = 0
            ctx.wins_since_profit_take += 1
        else:
            ctx.loss_streak += 1
            ctx.wins_since_profit_take = 0
        if flags.is_profit_taking:
            ctx.wins_since_profit_take = 0

        ctx.peak_bankroll = max(ctx.peak_bankroll, ctx.bankroll)
        ctx.max_drawdown = max(ctx.max_drawdown, drawdown(ctx.peak_bankroll, ctx.bankroll))

        trade = Trade(
            epoch=rnd.epoch,
            lock_timestamp=rnd.lock_timestamp,
            side=signal.side,
            stake=stake,
            won=won,
            payout=payout,
            profit=profit,
            bankroll_before=before,
            bankroll_after=ctx.bankroll,
            used_hybrid=signal.used_hybrid,
            profit_taking=flags.is_profit_taking,
            multiplier=Decimal(1) if flags.is_profit_taking else self.sizer.multiplier(flags),
        )
        result.trades.append(trade)
        result.equity_curve.append(ctx.bankroll)
        log.debug("epoch %d %s %s stake=%.6f payout=%.3f %s bankroll=%.6f",
                  rnd.epoch, signal.mode.value, signal.side.value, stake, payout,
                  "WIN" if won else "LOSS", ctx.bankroll)

        if ctx.bankroll == 0:
            ctx.busted = True
            log.warning("BUST at epoch %d (t=%d) after %d trades",
                        rnd.epoch, rnd.lock_timestamp, len(result.trades))
        return trade

    def _coerce(self, item, result: RunResult) -> Optional[RoundRecord]:
        if isinstance(item, RoundRecord):
            return item
        if not isinstance(item, Mapping):
            result.skipped.append(SkippedRound(None, None, "malformed",
                                               f"not a round row: {type(item).__name__}"))
            log.debug("skip row of type %s", type(item).__name__)
            return None
        try:
            return RoundRecord.from_row(item, self.config.pool_prefix)
        except SkippableInputError as e:
            epoch = item.get("epoch")
            result.skipped.append(SkippedRound(epoch, None, e.reason, e.detail))
            log.debug("skip row %s: %s", epoch, e)
            return None

    @staticmethod
    def _check_order(ctx: SimulationContext, rnd: RoundRecord) -> None:
        if ctx.last_epoch is not None:
            if rnd.epoch <= ctx.last_epoch:
                raise OrderingError(f"epoch {rnd.epoch} after {ctx.last_epoch}")
            if rnd.lock_timestamp < ctx.last_lock_timestamp:
                raise OrderingError(f"epoch {rnd.epoch} locks at {rnd.lock_timestamp}, "
                                    f"before previous round ({ctx.last_lock_timestamp})")
        ctx.last_epoch = rnd.epoch
        ctx.last_lock_timestamp = rnd.lock_timestamp

    @staticmethod
    def _skip(result: RunResult, rnd: RoundRecord, reason: str, detail: str = "") -> None:
        result.skipped.append(SkippedRound(rnd.epoch, rnd.lock_timestamp, reason, detail))
        log.debug("skip epoch %d: %s", rnd.epoch, reason)
        return None


def settlement_payout(rnd: RoundRecord, signal: Signal) -> Decimal:
    """Recorded final payout if the round has one, else the payout implied at decision time."""
    recorded = rnd.winner_payout_multiple
    if recorded is not None and recorded > 1:
        return recorded
    return signal.implied_payout


def simulate(rounds: Iterable, config: Optional[SimConfig] = None,
             label: str = "", **overrides) -> RunResult:
    """Run one simulation. `overrides` are applied on top of `config` (or the defaults)."""
    cfg = config or SimConfig()
    if overrides:
        cfg = cfg.replace(**overrides)
    return BankrollSimulator(cfg).run(rounds, label=label)
