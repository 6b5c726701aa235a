"""
REPORTING & ANALYSIS — Understanding Your Results
===================================================

"A strategy is only as good as its worst streak."

METRICS THAT MATTER FOR A 5-MINUTE PARIMUTUEL STRATEGY:
  1. Did it survive? — BUSTED is a different answer from "-90%"
  2. ROI & Max Drawdown — what you made vs. what you had to sit through
  3. Win Rate × Avg Payout — contrarian bets win less often but pay more,
     so win rate alone says nothing
  4. Profit Factor — gross wins / gross losses (>1.2 is good here)
  5. Max Loss Streak — this is what trips the circuit breaker
  6. Primary vs. Hybrid — is the cooldown strategy pulling its weight,
     or just losing money while we wait?

THINGS TO OBSESS OVER:
  - How many rounds were skipped, and why? (bad data = fake results)
  - How often does the circuit breaker trip?
  - Is the edge decaying from the first quarter to the last?
"""

from typing import List, Sequence
import sys, os

import numpy as np

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
from backtest.engine import RunResult, RunStatus
from backtest.stats import max_drawdown, trailing_streak


def _win_rate(trades) -> float:
    return sum(1 for t in trades if t.won) / max(len(trades), 1)


def generate_report(result: RunResult) -> str:
    """Full text report for one run."""
    cfg = result.config
    lines = []
    lines.append("=" * 70)
    lines.append(f"  SIMULATION REPORT: {result.label or cfg.mode} — {result.status.value.upper()}")
    lines.append("=" * 70)

    # ── Overview ──
    lines.append(f"\n{'─' * 40}")
    lines.append("  OVERVIEW")
    lines.append(f"{'─' * 40}")
    lines.append(f"  Mode:                {cfg.mode}  (hybrid {'on' if cfg.hybrid_enabled else 'off'})")
    lines.append(f"  Starting Bankroll:   {float(cfg.initial_bankroll):,.4f}")
    lines.append(f"  Ending Bankroll:     {float(result.final_bankroll):,.4f}")
    lines.append(f"  ROI:                 {result.roi_pct:+.2f}%")
    lines.append(f"  Total PnL:           {float(result.total_pnl):+,.4f}")
    lines.append(f"  Total Trades:        {result.total_trades}")
    lines.append(f"  Skipped Rounds:      {len(result.skipped)}")

    if result.status is RunStatus.BUSTED:
        last = result.trades[-1]
        lines.append(f"\n  BUSTED at epoch {last.epoch} after {result.total_trades} trades.")
    elif result.status is RunStatus.INSUFFICIENT_DATA:
        lines.append(f"\n  Only {result.total_trades} trades "
                     f"(< {cfg.min_trades_to_evaluate}). Too little data to evaluate.")

    if result.total_trades == 0:
        lines.append("\n  No trades executed. Payout gates may be too strict.")
        return "\n".join(lines)

    # ── Performance Metrics ──
    lines.append(f"\n{'─' * 40}")
    lines.append("  PERFORMANCE METRICS")
    lines.append(f"{'─' * 40}")
    lines.append(f"  Win Rate:            {result.win_rate:.1%}")
    lines.append(f"  Avg Win:             {float(result.avg_win):+.4f}")
    lines.append(f"  Avg Loss:            {float(result.avg_loss):+.4f}")
    lines.append(f"  Avg Payout:          {np.mean([float(t.payout) for t in result.trades]):.3f}x")
    lines.append(f"  Profit Factor:       {result.profit_factor:.2f}")
    lines.append(f"  Max Drawdown:        {result.max_drawdown:.1%}")
    lines.append(f"  Max Win Streak:      {result.max_win_streak}")
    lines.append(f"  Max Loss Streak:     {result.max_loss_streak}")
    last_won, run = trailing_streak([t.won for t in result.trades])
    lines.append(f"  Ending Streak:       {run} x {'WIN' if last_won else 'LOSS'}")

    # ── Risk ──
    primary, hybrid = result.primary_trades, result.hybrid_trades
    lines.append(f"\n{'─' * 40}")
    lines.append("  RISK & REGIMES")
    lines.append(f"{'─' * 40}")
    state = result.final_state()
    lines.append(f"  Breaker Trips:       {state['breaker_trips']}")
    lines.append(f"  Final Regime:        {state['regime']}")
    lines.append(f"  Primary Trades:      {len(primary)} (WR: {_win_rate(primary):.1%})")
    lines.append(f"  Hybrid Trades:       {len(hybrid)} (WR: {_win_rate(hybrid):.1%})")
    boosted = sum(1 for t in result.trades if t.multiplier > 1)
    taken = sum(1 for t in result.trades if t.profit_taking)
    lines.append(f"  Boosted Stakes:      {boosted}")
    lines.append(f"  Profit-Take Trades:  {taken}")

    if result.skipped:
        lines.append(f"\n  Skip reasons:")
        for reason, n in sorted(result.skip_counts.items(), key=lambda kv: -kv[1]):
            lines.append(f"    {reason:<18} {n:>6}")

    # ── Edge Analysis ──
    if result.total_trades >= 20:
        lines.append(f"\n{'─' * 40}")
        lines.append("  EDGE ANALYSIS")
        lines.append(f"{'─' * 40}")

        n = len(result.trades)
        size = max(n//4, 1)
        quarters = [result.trades[i:i + size] for i in range(0, n, size)][:4]
        for q_idx, q_trades in enumerate(quarters):
            if q_trades:
                start = q_idx * size
                q_pnl = sum(float(t.profit) for t in q_trades)
                q_dd = max_drawdown(result.equity_curve[start:start + len(q_trades) + 1])
                lines.append(f"  Q{q_idx+1}: WR={_win_rate(q_trades):.1%}  PnL={q_pnl:+.4f}  "
                             f"MaxDD={float(q_dd):.1%}  Trades={len(q_trades)}")

        if len(quarters) >= 2 and quarters[0] and quarters[-1]:
            early_wr = _win_rate(quarters[0])
            late_wr = _win_rate(quarters[-1])
            if late_wr < early_wr - 0.05:
                lines.append(f"\n  ⚠ WARNING: Possible edge decay detected")
                lines.append(f"    Early WR: {early_wr:.1%} → Late WR: {late_wr:.1%}")

    # ── Trade Distribution ──
    lines.append(f"\n{'─' * 40}")
    lines.append("  TRADE DISTRIBUTION")
    lines.append(f"{'─' * 40}")
    up_trades = [t for t in result.trades if t.side.value == "UP"]
    down_trades = [t for t in result.trades if t.side.value == "DOWN"]
    lines.append(f"  UP bets:   {len(up_trades)} (WR: {_win_rate(up_trades):.1%})")
    lines.append(f"  DOWN bets: {len(down_trades)} (WR: {_win_rate(down_trades):.1%})")

    pnls = [float(t.profit) for t in result.trades]
    lines.append(f"\n  PnL Distribution:")
    lines.append(f"    Min:     {min(pnls):+.4f}")
    lines.append(f"    P25:     {np.percentile(pnls, 25):+.4f}")
    lines.append(f"    Median:  {np.percentile(pnls, 50):+.4f}")
    lines.append(f"    P75:     {np.percentile(pnls, 75):+.4f}")
    lines.append(f"    Max:     {max(pnls):+.4f}")

    lines.append(f"\n{'─' * 40}")
    lines.append("  KEY TAKEAWAYS")
    lines.append(f"{'─' * 40}")

    if result.busted:
        lines.append("  [-] Bankroll went to zero — sizing is too aggressive")
    elif result.roi_pct > 0:
        lines.append("  [+] Positive ROI over the period")
    else:
        lines.append("  [-] Negative ROI — strategy lost money")

    if result.max_drawdown > 0.3:
        lines.append("  [-] Drawdown >30% — expect to give back a lot")
    elif result.max_drawdown > 0.15:
        lines.append("  [~] Drawdown 15-30% — acceptable but monitor closely")
    else:
        lines.append("  [+] Drawdown <15% — well controlled risk")

    if result.profit_factor > 1.2:
        lines.append("  [+] Profit factor >1.2 — wins meaningfully exceed losses")
    elif result.profit_factor > 1.0:
        lines.append("  [~] Profit factor 1-1.2 — profitable but slim margin")
    else:
        lines.append("  [-] Profit factor <1 — losing money on average")

    if hybrid and _win_rate(hybrid) < 0.5 and sum(float(t.profit) for t in hybrid) < 0:
        lines.append("  [-] Hybrid trades lose money — consider --no-hybrid")

    lines.append("\n" + "=" * 70)
    return "\n".join(lines)


def comparison_table(results: Sequence[RunResult]) -> str:
    """One line per run, for eyeballing several configs side by side."""
    lines = []
    lines.append(f"\n{'═' * 78}")
    lines.append(f"  STRATEGY COMPARISON")
    lines.append(f"{'═' * 78}")
    lines.append(f"  {'Strategy':<22} {'ROI':>9} {'WinRate':>8} {'MaxDD':>8} "
                 f"{'Trades':>7} {'PF':>7} {'Status':>10}")
    lines.append(f"  {'─'*22} {'─'*9} {'─'*8} {'─'*8} {'─'*7} {'─'*7} {'─'*10}")
    for r in results:
        name = (r.label or r.config.mode)[:22]
        lines.append(f"  {name:<22} {r.roi_pct:>+8.1f}% {r.win_rate:>7.1%} "
                     f"{r.max_drawdown:>7.1%} {r.total_trades:>7} "
                     f"{r.profit_factor:>7.2f} {r.status.value:>10}")
    return "\n".join(lines)




def print_equity_curve_ascii(result: RunResult, width: int = 60, height: int = 16):
    """Bankroll after each trade. `─` marks the starting bankroll, `✖` a bust."""
    curve = [float(v) for v in result.equity_curve]
    if len(curve) < 2:
        return

    n = len(curve)
    step = max(-(-n // width), 1)
    sampled = curve[::step]
    if sampled[-1] != curve[-1]:
        sampled.append(curve[-1])
    lo, hi = min(sampled), max(sampled)
    span = (hi - lo) or 1.0
    start = float(result.config.initial_bankroll)
    start_row = round((start - lo) / span * height)

    print(f"\n  Equity Curve ({result.label or result.config.mode})")
    print(f"  {hi:>10.4f} ┐")
    for row in range(height, -1, -1):
        level = lo + row / height * span
        cells = []
        for i, val in enumerate(sampled):
            if result.busted and i == len(sampled) - 1 and row == 0:
                cells.append("✖")
            elif val >= level:
                cells.append("█")
            elif row == start_row:
                cells.append("─")
            else:
                cells.append(" ")
        label = f"{start:>10.4f} " if row == start_row else " " * 11
        print(f"  {label}│{''.join(cells)}")
    print(f"  {lo:>10.4f} ┘" + "─" * (len(sampled) + 1))
    print(f"  {' ' * 12}trade 0{' ' * max(len(sampled) - 14, 1)}trade {n - 1}")
