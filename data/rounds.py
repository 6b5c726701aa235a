"""
ROUND DATA — The Ingestion Boundary
====================================

Every round of the prediction market is a 5-minute UP/DOWN contest:

  - Bettors stake into a BULL (UP) pool or a BEAR (DOWN) pool
  - At lock time the price is recorded; at close it is recorded again
  - Winners split the whole pool (minus the house fee) pro-rata

So the payout on a side is known the moment the pools are known:

    payout(side) = total_pool * (1 - fee) / side_pool

The round table produced by the scraper is loose: wei amounts stored as
TEXT, NULLs for rounds the scraper missed, lowercase "bull"/"bear"/"draw"
winners. This module turns those rows into validated, immutable
RoundRecord objects ONCE, here, so no NaN or None ever reaches the
bankroll arithmetic. Rows that can't be parsed are rejected with a reason
instead of crashing the run.

Amounts stay exact: pools are integer wei, prices and multiples are
Decimal. Floats would drift over thousands of compounding trades.
"""

import logging
import sqlite3
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Dict, List, Mapping, Optional, Tuple
import sys, os

import pandas as pd

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
from config import POOL_PREFIX, ROUNDS_TABLE
from backtest.errors import SkippableInputError

log = logging.getLogger(__name__)


class Side(str, Enum):
    UP = "UP"
    DOWN = "DOWN"


class EmaSignal(str, Enum):
    BULL = "BULL"
    BEAR = "BEAR"
    NEUTRAL = "NEUTRAL"

    @property
    def side(self) -> Optional[Side]:
        if self is EmaSignal.BULL:
            return Side.UP
        if self is EmaSignal.BEAR:
            return Side.DOWN
        return None


_WINNERS = {
    "up": Side.UP, "bull": Side.UP,
    "down": Side.DOWN, "bear": Side.DOWN,
    "draw": None, "unknown": None, "": None,
}


@dataclass(frozen=True)
class RoundRecord:
    epoch: int
    lock_timestamp: int
    bull_pool_wei: int
    bear_pool_wei: int
    winner: Optional[Side] = None
    lock_price: Optional[Decimal] = None
    close_price: Optional[Decimal] = None
    winner_payout_multiple: Optional[Decimal] = None
    ema_signal: Optional[EmaSignal] = None
    ema_gap_percent: Optional[Decimal] = None

    @property
    def total_pool_wei(self) -> int:
        return self.bull_pool_wei + self.bear_pool_wei

    def pool_on(self, side: Side) -> int:
        return self.bull_pool_wei if side is Side.UP else self.bear_pool_wei

    def implied_payout(self, side: Side, fee: Decimal) -> Optional[Decimal]:
        """Payout multiple for a correct bet on `side`, or None if that pool is empty."""
        pool = self.pool_on(side)
        if pool <= 0:
            return None
        return Decimal(self.total_pool_wei) * (Decimal(1) - fee) / Decimal(pool)

    def crowd_side(self, min_crowd_percent: Decimal = Decimal(50)) -> Optional[Side]:
        """The side holding the larger pool, if it holds at least `min_crowd_percent`."""
        total = self.total_pool_wei
        if total <= 0 or self.bull_pool_wei == self.bear_pool_wei:
            return None
        side = Side.UP if self.bull_pool_wei > self.bear_pool_wei else Side.DOWN
        share = Decimal(self.pool_on(side)) * 100 / Decimal(total)
        if share < min_crowd_percent:
            return None
        return side

    @classmethod
    def from_row(cls, row: Mapping, pool_prefix: str = POOL_PREFIX) -> "RoundRecord":
        """Build a record from a raw database/CSV row.

        Raises SkippableInputError("malformed") when a required field is
        missing or not numeric.
        """
        epoch = _to_int(_first(row, "epoch"), "epoch")
        bull_key, bear_key = _pool_keys(row, pool_prefix)
        return cls(
            epoch=epoch,
            lock_timestamp=_to_int(_first(row, "lock_timestamp", "lock_ts"),
                                   "lock_timestamp", epoch),
            bull_pool_wei=_to_wei(row.get(bull_key), bull_key, epoch),
            bear_pool_wei=_to_wei(row.get(bear_key), bear_key, epoch),
            winner=_to_winner(row.get("winner"), epoch),
            lock_price=_to_decimal(row.get("lock_price"), "lock_price", epoch),
            close_price=_to_decimal(row.get("close_price"), "close_price", epoch),
            winner_payout_multiple=_to_decimal(
                _first(row, "winner_payout_multiple", "winner_multiple"),
                "winner_payout_multiple", epoch),
            ema_signal=_to_ema_signal(row.get("ema_signal"), epoch),
            ema_gap_percent=_to_decimal(_first(row, "ema_gap", "ema_gap_percent"),
                                        "ema_gap", epoch),
        )


# ═══════════════════════════════════════════════════════════════
# Field coercion
# ═══════════════════════════════════════════════════════════════

def _is_missing(value) -> bool:
    if value is None:
        return True
    if isinstance(value, float) and value != value:  # NaN
        return True
    return isinstance(value, str) and value.strip() == ""


def _first(row: Mapping, *keys):
    for k in keys:
        if k in row and not _is_missing(row[k]):
            return row[k]
    return None


def _pool_keys(row: Mapping, prefix: str) -> Tuple[str, str]:
    bull, bear = f"{prefix}_bull_wei", f"{prefix}_bear_wei"
    if bull not in row and "bull_amount_wei" in row:
        return "bull_amount_wei", "bear_amount_wei"
    return bull, bear


def _to_decimal(value, field: str, epoch=None, required: bool = False) -> Optional[Decimal]:
    if _is_missing(value):
        if required:
            raise SkippableInputError("malformed", f"epoch {epoch}: {field} is missing")
        return None
    try:
        d = Decimal(str(value).strip())
    except InvalidOperation:
        raise SkippableInputError("malformed", f"epoch {epoch}: {field}={value!r} is not numeric")
    if not d.is_finite():
        raise SkippableInputError("malformed", f"epoch {epoch}: {field}={value!r} is not finite")
    return d


def _to_int(value, field: str, epoch=None) -> int:
    d = _to_decimal(value, field, epoch, required=True)
    if d != d.to_integral_value():
        raise SkippableInputError("malformed", f"epoch {epoch}: {field}={value!r} is not an integer")
    return int(d)


def _to_wei(value, field: str, epoch) -> int:
    wei = _to_int(value, field, epoch)
    if wei < 0:
        raise SkippableInputError("malformed", f"epoch {epoch}: {field} is negative")
    return wei


def _to_winner(value, epoch) -> Optional[Side]:
    if _is_missing(value):
        return None
    key = str(value).strip().lower()
    if key not in _WINNERS:
        raise SkippableInputError("malformed", f"epoch {epoch}: winner={value!r}")
    return _WINNERS[key]


def _to_ema_signal(value, epoch) -> Optional[EmaSignal]:
    if _is_missing(value):
        return None
    try:
        return EmaSignal(str(value).strip().upper())
    except ValueError:
        raise SkippableInputError("malformed", f"epoch {epoch}: ema_signal={value!r}")


# ═══════════════════════════════════════════════════════════════
# Loaders
# ═══════════════════════════════════════════════════════════════

def rounds_from_frame(df: pd.DataFrame, pool_prefix: str = POOL_PREFIX,
                      derive_ema: bool = False) -> Tuple[List[RoundRecord], List[Dict]]:
    """
    Convert a round table into ordered RoundRecords.

    Returns (records, rejected). `rejected` holds one dict per unusable row
    with its epoch, reason and detail, so the caller can report data quality.
    """
    if derive_ema or "ema_signal" not in df.columns:
        from signals.ema import compute_ema_columns
        df = compute_ema_columns(df)

    records = []
    rejected = []
    for row in df.to_dict("records"):
        try:
            records.append(RoundRecord.from_row(row, pool_prefix))
        except SkippableInputError as e:
            rejected.append({"epoch": row.get("epoch"), "reason": e.reason,
                             "detail": e.detail})

    records.sort(key=lambda r: r.epoch)
    return records, rejected


def load_rounds_sqlite(path: str, pool_prefix: str = POOL_PREFIX,
                       table: str = ROUNDS_TABLE,
                       derive_ema: bool = False) -> Tuple[List[RoundRecord], List[Dict]]:
    """Read every row of the scraper's round table."""
    if not os.path.exists(path):
        raise FileNotFoundError(f"round database not found: {path}")
    conn = sqlite3.connect(path)
    try:
        df = pd.read_sql_query(f"SELECT * FROM {table} ORDER BY epoch ASC", conn)
    finally:
        conn.close()
    log.info("%d rows from %s:%s", len(df), path, table)
    return rounds_from_frame(df, pool_prefix, derive_ema)


def load_rounds_csv(path: str, pool_prefix: str = POOL_PREFIX,
                    derive_ema: bool = False) -> Tuple[List[RoundRecord], List[Dict]]:
    """Read a CSV export of the round table. Everything is read as text to keep wei exact."""
    df = pd.read_csv(path, dtype=str, keep_default_na=False)
    log.info("%d rows from %s", len(df), path)
    return rounds_from_frame(df, pool_prefix, derive_ema)
