"""Streak, drawdown and expectancy helpers shared by the engine and the report."""

from collections import deque
from decimal import Decimal
from typing import Iterable, List, Sequence, Tuple

RECENT_RESULTS_SIZE = 2


class RecentResults:
    """
    Fixed-size ring buffer of the most recent trade outcomes (True = win).

    push() appends and silently evicts the oldest entry beyond `size`.
    """

    def __init__(self, size: int = RECENT_RESULTS_SIZE):
        if size < 1:
            raise ValueError("size must be >= 1")
        self._buf = deque(maxlen=size)

    def push(self, won: bool) -> None:
        self._buf.append(bool(won))

    def last(self, n: int) -> List[bool]:
        if n <= 0:
            return []
        return list(self._buf)[-n:]

    def last_n_losses(self, n: int) -> bool:
        """True if the buffer holds at least n results and the last n were all losses."""
        tail = self.last(n)
        return len(tail) == n and not any(tail)

    def __len__(self) -> int:
        return len(self._buf)

    def __iter__(self):
        return iter(self._buf)

    def __repr__(self) -> str:
        return f"RecentResults({list(self._buf)!r})"


def drawdown(peak: Decimal, value: Decimal) -> Decimal:
    """Fractional decline of `value` from `peak` (0 when at or above peak)."""
    if peak <= 0 or value >= peak:
        return Decimal(0)
    return (peak - value) / peak


def max_drawdown(equity_curve: Sequence) -> Decimal:
    """Maximum peak-to-trough decline in equity, as a fraction."""
    if not equity_curve:
        return Decimal(0)
    peak = Decimal(equity_curve[0])
    max_dd = Decimal(0)
    for eq in equity_curve:
        eq = Decimal(eq)
        if eq > peak:
            peak = eq
        max_dd = max(max_dd, drawdown(peak, eq))
    return max_dd


def streaks(results: Iterable[bool]) -> Tuple[int, int]:
    """Longest run of wins and longest run of losses."""
    best_win = best_loss = cur_win = cur_loss = 0
    for won in results:
        if won:
            cur_win += 1
            cur_loss = 0
        else:
            cur_loss += 1
            cur_win = 0
        best_win = max(best_win, cur_win)
        best_loss = max(best_loss, cur_loss)
    return best_win, best_loss


def trailing_streak(results: Sequence[bool]) -> Tuple[bool, int]:
    """(last outcome, length of the run it ends). (False, 0) for no results."""
    if not results:
        return False, 0
    last = results[-1]
    n = 0
    for won in reversed(results):
        if won != last:
            break
        n += 1
    return last, n


def profit_factor(pnls: Iterable[Decimal]) -> float:
    """Gross profits / gross losses. inf if there were wins and no losses."""
    gross_win = Decimal(0)
    gross_loss = Decimal(0)
    for p in pnls:
        if p > 0:
            gross_win += p
        elif p < 0:
            gross_loss -= p
    if gross_loss == 0:
        return float("inf") if gross_win > 0 else 0.0
    return float(gross_win / gross_loss)
