"""
EMA CROSSOVER — The Directional Signal
=======================================

A fast EMA above a slow EMA = price has been rising recently (BULL).
A fast EMA below a slow EMA = price has been falling (BEAR).
Too close together = no opinion (NEUTRAL).

The gap is expressed in percent of the slow EMA so it means the same
thing at $300 and at $60,000:

    gap% = (ema_fast - ema_slow) / ema_slow * 100

IMPORTANT: the value attached to round i uses only closes of rounds
BEFORE i. Round i's own close is the thing we're betting on, so using
it would be lookahead bias.
"""

from typing import Optional
import sys, os

import numpy as np
import pandas as pd

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
from config import EMA_FAST, EMA_SLOW, EMA_SIGNAL_THRESHOLD


def ema_signal_from_gap(gap: Optional[float],
                        threshold: float = EMA_SIGNAL_THRESHOLD) -> Optional[str]:
    if gap is None or np.isnan(gap):
        return None
    if gap > threshold:
        return "BULL"
    if gap < -threshold:
        return "BEAR"
    return "NEUTRAL"


def ema_gap_series(close: pd.Series, fast: int = EMA_FAST,
                   slow: int = EMA_SLOW) -> pd.Series:
    """Percent gap between fast and slow EMA, aligned so row i sees closes [0, i)."""
    prior = close.shift(1)
    ema_fast = prior.ewm(span=fast, adjust=False, min_periods=fast).mean()
    ema_slow = prior.ewm(span=slow, adjust=False, min_periods=slow).mean()
    return (ema_fast - ema_slow) / ema_slow.replace(0, np.nan) * 100


def compute_ema_columns(df: pd.DataFrame, fast: int = EMA_FAST, slow: int = EMA_SLOW,
                        threshold: float = EMA_SIGNAL_THRESHOLD) -> pd.DataFrame:
    """
    Fill `ema_gap` / `ema_signal` for rounds that don't have them.

    Rows that already carry a stored signal (e.g. from the exchange-candle
    backfill) keep it. Rows too early in the history to have `slow` prior
    closes are left empty and will be skipped by the simulator.
    """
    if "close_price" not in df.columns:
        raise ValueError("close_price column is required to derive EMA signals")

    df = df.copy()
    order = pd.to_numeric(df["epoch"], errors="coerce").sort_values(kind="mergesort").index
    close = pd.to_numeric(df.loc[order, "close_price"], errors="coerce")
    gap = ema_gap_series(close.reset_index(drop=True), fast, slow)
    gap.index = order
    gap = gap.reindex(df.index).round(3)
    signal = gap.map(lambda g: ema_signal_from_gap(g, threshold)).astype(object)
    signal = signal.where(signal.notna(), None)

    if "ema_signal" in df.columns:
        stored = df["ema_signal"].map(lambda v: isinstance(v, str) and v.strip() != "")
        df["ema_signal"] = df["ema_signal"].where(stored, signal)
        if "ema_gap" in df.columns:
            df["ema_gap"] = df["ema_gap"].where(stored, gap)
        else:
            df["ema_gap"] = gap
    else:
        df["ema_signal"] = signal
        df["ema_gap"] = gap
    return df
