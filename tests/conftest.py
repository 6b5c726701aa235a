from decimal import Decimal

from data.rounds import EmaSignal, RoundRecord, Side

WEI = 10 ** 18
T0 = 1_700_000_000


def make_round(epoch=1, lock_timestamp=None, bull=1, bear=2, winner=Side.UP,
               ema=EmaSignal.BULL, gap="0.10", multiple=None, close=None):
    """A valid round. Defaults: EMA says UP, crowd is on DOWN, UP wins (contrarian win)."""
    return RoundRecord(
        epoch=epoch,
        lock_timestamp=T0 + epoch * 300 if lock_timestamp is None else lock_timestamp,
        bull_pool_wei=int(Decimal(str(bull)) * WEI),
        bear_pool_wei=int(Decimal(str(bear)) * WEI),
        winner=winner,
        close_price=None if close is None else Decimal(str(close)),
        winner_payout_multiple=None if multiple is None else Decimal(str(multiple)),
        ema_signal=ema,
        ema_gap_percent=None if gap is None else Decimal(str(gap)),
    )


def make_sequence(outcomes, start_epoch=1, **kwargs):
    """One contrarian round per outcome (True = win), 5 minutes apart."""
    return [
        make_round(epoch=start_epoch + i, winner=Side.UP if won else Side.DOWN, **kwargs)
        for i, won in enumerate(outcomes)
    ]
