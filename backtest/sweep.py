"""
PARAMETER SWEEP — Which Knobs Actually Matter
==============================================

Runs the same round history through every combination of a parameter
grid and tabulates the outcome of each run:

    grid = {"min_payout": [1.35, 1.45, 1.55], "cb_loss_count": [2, 3, 4]}
    df = run_sweep(rounds, grid)          # 9 runs, sorted by ROI

Beware the obvious trap: the best row of a sweep over one history is
overfit to that history. Look for regions of the grid that are
consistently good, not the single best cell.
"""

import dataclasses
import itertools
import logging
from typing import Dict, Iterable, Optional, Sequence
import sys, os

import pandas as pd

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
from backtest.engine import SimConfig, simulate
from backtest.errors import ConfigurationError

log = logging.getLogger(__name__)

DEFAULT_GRID = {
    "min_payout": [1.35, 1.45, 1.55, 1.65],
    "cb_cooldown_minutes": [30, 45, 60],
    "cb_loss_count": [2, 3, 4],
}


def run_sweep(rounds: Iterable, grid: Dict[str, Sequence],
              base: Optional[SimConfig] = None) -> pd.DataFrame:
    """One simulation per grid combination. Returns a DataFrame sorted by ROI (best first)."""
    base = base or SimConfig()
    known = {f.name for f in dataclasses.fields(SimConfig)}
    unknown = sorted(set(grid) - known)
    if unknown:
        raise ConfigurationError(f"unknown sweep parameter(s): {', '.join(unknown)}")

    rounds = list(rounds)
    keys = list(grid)
    rows = []
    for values in itertools.product(*(grid[k] for k in keys)):
        params = dict(zip(keys, values))
        label = " ".join(f"{k}={v}" for k, v in params.items())
        result = simulate(rounds, base.replace(**params), label=label)
        row = dict(params)
        row.update(result.summary())
        rows.append(row)

    log.info("sweep: %d configurations over %d rounds", len(rows), len(rounds))
    df = pd.DataFrame(rows)
    if df.empty:
        return df
    return df.sort_values("roi_pct", ascending=False, kind="mergesort").reset_index(drop=True)
