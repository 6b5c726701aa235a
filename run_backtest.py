#!/usr/bin/env python3
"""
5-MINUTE PREDICTION ROUND STRATEGY SIMULATOR
=============================================

This is the main entry point. Run this to execute the full pipeline:

  1. LOAD ROUNDS     — Read the scraper's round table (SQLite or CSV)
  2. VALIDATE        — Coerce rows into RoundRecords, reject bad ones
  3. SIMULATE        — Replay the strategy round by round
  4. REPORT          — ROI, drawdown, streaks, breaker trips

PIPELINE:
  ┌─────────┐    ┌──────────┐    ┌─────────┐    ┌──────────┐    ┌────────┐
  │ ROUNDS  │───▸│  SIGNAL  │───▸│  SIZE   │───▸│ RISK MGT │───▸│ REPORT │
  │ SQLite  │    │ EMA/crowd│    │ fraction│    │ breaker  │    │ ROI/DD │
  └─────────┘    └──────────┘    └─────────┘    └──────────┘    └────────┘

Usage:
  python run_backtest.py                            # default DB, contrarian
  python run_backtest.py --db data/prediction.db    # explicit database
  python run_backtest.py --csv rounds.csv           # CSV export instead
  python run_backtest.py --mode consensus           # follow the crowd
  python run_backtest.py --mode both                # compare both modes
  python run_backtest.py --no-hybrid                # sit out cooldowns
  python run_backtest.py --recovery-policy martingale
  python run_backtest.py --sweep                    # parameter grid
  python run_backtest.py --save                     # write trades/sweep CSV

ROUNDS_DB in the environment (or .env) overrides the default database path.
"""

import argparse
import logging
import sys
import os
import time

import pandas as pd
from dotenv import load_dotenv

# Ensure imports work
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from config import INITIAL_BANKROLL, POOL_PREFIX, RESULTS_DIR, ROUNDS_DB
from data.rounds import load_rounds_csv, load_rounds_sqlite
from backtest.engine import SimConfig, simulate
from backtest.errors import ConfigurationError, OrderingError
from backtest.report import comparison_table, generate_report, print_equity_curve_ascii
from backtest.sweep import DEFAULT_GRID, run_sweep

load_dotenv(os.path.join(os.path.dirname(os.path.abspath(__file__)), ".env"))

log = logging.getLogger("run_backtest")


def trades_frame(result) -> pd.DataFrame:
    return pd.DataFrame([{
        "epoch": t.epoch,
        "lock_timestamp": t.lock_timestamp,
        "side": t.side.value,
        "stake": float(t.stake),
        "payout": float(t.payout),
        "won": t.won,
        "profit": float(t.profit),
        "bankroll_after": float(t.bankroll_after),
        "hybrid": t.used_hybrid,
    } for t in result.trades])


def main(argv=None):
    parser = argparse.ArgumentParser(description="5-Min Prediction Round Strategy Simulator")
    parser.add_argument("--db", type=str, default=os.getenv("ROUNDS_DB", ROUNDS_DB),
                        help="SQLite round database (default: $ROUNDS_DB or %(default)s)")
    parser.add_argument("--csv", type=str, default=None,
                        help="Read rounds from a CSV export instead of SQLite")
    parser.add_argument("--pool-prefix", type=str, default=POOL_PREFIX,
                        help="Pool snapshot columns to use, e.g. lock or t20s")
    parser.add_argument("--derive-ema", action="store_true",
                        help="Recompute EMA signals from close prices")
    parser.add_argument("--mode", type=str, default="contrarian",
                        choices=["contrarian", "consensus", "both"])
    parser.add_argument("--no-hybrid", action="store_true",
                        help="Skip rounds during cooldown instead of trading mean reversion")
    parser.add_argument("--recovery-policy", type=str, default=None,
                        choices=["one_time", "martingale"])
    parser.add_argument("--sweep", action="store_true",
                        help="Run the built-in parameter grid instead of a single run")
    parser.add_argument("--save", action="store_true",
                        help=f"Write trade log / sweep table to {RESULTS_DIR}/")
    parser.add_argument("--verbose", "-v", action="store_true")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)-7s %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )

    print("╔══════════════════════════════════════════════════════════════╗")
    print("║   5-MIN PREDICTION ROUND STRATEGY SIMULATOR                  ║")
    print("╚══════════════════════════════════════════════════════════════╝")
    print(f"\n  Source:      {args.csv or args.db}")
    print(f"  Pools:       {args.pool_prefix}_*")
    print(f"  Mode:        {args.mode}")
    print(f"  Hybrid:      {'off' if args.no_hybrid else 'on'}")
    print(f"  Bankroll:    {INITIAL_BANKROLL:,.4f}")
    print()

    # ── Step 1 & 2: Load and validate ──
    t0 = time.time()
    try:
        if args.csv:
            rounds, rejected = load_rounds_csv(args.csv, args.pool_prefix, args.derive_ema)
        else:
            rounds, rejected = load_rounds_sqlite(args.db, args.pool_prefix,
                                                  derive_ema=args.derive_ema)
    except FileNotFoundError as e:
        log.error("%s", e)
        return 1
    print(f"  {len(rounds)} rounds loaded in {time.time()-t0:.1f}s "
          f"({len(rejected)} rejected)")
    if not rounds:
        log.error("no usable rounds")
        return 1

    overrides = {"pool_prefix": args.pool_prefix, "hybrid_enabled": not args.no_hybrid}
    if args.recovery_policy:
        overrides["recovery_policy"] = args.recovery_policy
    modes = ["contrarian", "consensus"] if args.mode == "both" else [args.mode]

    try:
        # ── Sweep ──
        if args.sweep:
            frames = []
            for mode in modes:
                df = run_sweep(rounds, DEFAULT_GRID, SimConfig(mode=mode, **overrides))
                df.insert(0, "mode", mode)
                frames.append(df)
            table = pd.concat(frames, ignore_index=True).sort_values(
                "roi_pct", ascending=False, kind="mergesort")
            print(f"\n{'═' * 70}")
            print(f"  PARAMETER SWEEP ({len(table)} runs)")
            print(f"{'═' * 70}")
            cols = ["mode"] + list(DEFAULT_GRID) + ["trades", "win_rate", "roi_pct",
                                                    "max_drawdown_pct", "status"]
            print(table[cols].head(20).to_string(index=False))
            if args.save:
                os.makedirs(RESULTS_DIR, exist_ok=True)
                path = os.path.join(RESULTS_DIR, "sweep.csv")
                table.to_csv(path, index=False)
                print(f"\n  Sweep table saved to {path}")
            return 0

        # ── Step 3 & 4: Simulate → Report ──
        results = []
        for mode in modes:
            print(f"\n  ── {mode.upper()} ──")
            t0 = time.time()
            result = simulate(rounds, SimConfig(mode=mode, **overrides), label=mode)
            print(f"  {result.total_trades} trades in {time.time()-t0:.1f}s")
            results.append(result)

            print(generate_report(result))
            print_equity_curve_ascii(result)

            if args.save:
                os.makedirs(RESULTS_DIR, exist_ok=True)
                path = os.path.join(RESULTS_DIR, f"trades_{mode}.csv")
                trades_frame(result).to_csv(path, index=False)
                print(f"\n  Trade log saved to {path}")
    except (ConfigurationError, OrderingError) as e:
        log.error("%s: %s", type(e).__name__, e)
        return 2

    if len(results) > 1:
        print(comparison_table(results))
    return 0


if __name__ == "__main__":
    sys.exit(main())
