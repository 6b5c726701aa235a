"""
Configuration for the 5-Minute Prediction Round Strategy Simulator.

This is the control center — every tunable parameter lives here.
Keeping config separate from strategy logic means a parameter sweep is
just a different set of numbers fed into the same engine.
"""

# ── Data Source ──────────────────────────────────────────────────
# Round history is collected by the (separate) on-chain scraper into SQLite.
# The simulator only reads it.
ROUNDS_DB = "data/prediction.db"
ROUNDS_TABLE = "rounds"
POOL_PREFIX = "lock"            # "lock" = final pools, "t20s" = 20s before lock

# ── EMA Crossover Signal ────────────────────────────────────────
EMA_FAST = 3
EMA_SLOW = 7
EMA_SIGNAL_THRESHOLD = 0.05     # % gap needed for BULL/BEAR, else NEUTRAL

# ── Crowd / Payout ──────────────────────────────────────────────
# Payout on a side = total pool * (1 - fee) / side pool
HOUSE_FEE = 0.03
MIN_PAYOUT = 1.45               # contrarian side must pay at least this
CONSENSUS_MAX_PAYOUT = 1.90     # consensus side must pay less than this
MIN_CROWD_PERCENT = 50.0        # larger pool share needed to call it "the crowd"
GAP_THRESHOLD = 0.0             # |ema gap| below this = weak signal, no bet
STRATEGY_MODE = "contrarian"    # "contrarian" | "consensus"

# ── Position Sizing ─────────────────────────────────────────────
INITIAL_BANKROLL = 1.0
BASE_FRACTION = 0.045           # 4.5% of bankroll per bet
MOMENTUM_THRESHOLD = 0.15       # |ema gap| % that counts as momentum
MOMENTUM_MULTIPLIER = 1.889     # 4.5% → ~8.5% on momentum
RECOVERY_MULTIPLIER = 1.5
RECOVERY_RULE = "two_losses"    # "one_loss" | "two_losses"
RECOVERY_POLICY = "one_time"    # "one_time" | "martingale"
MAX_RECOVERY_STEPS = 3          # martingale escalation cap
PROFIT_TAKE_AFTER_WINS = 0      # 0 = disabled
PROFIT_TAKE_FRACTION = 0.03
MAX_BANKROLL = 50.0             # compounding cap on the bankroll we size from

# ── Circuit Breaker ─────────────────────────────────────────────
CB_LOSS_COUNT = 3               # consecutive losses that trip the breaker
CB_COOLDOWN_MINUTES = 45

# ── Hybrid Mean Reversion (only during cooldown) ────────────────
HYBRID_ENABLED = True
HYBRID_MIN_PAYOUT = 1.65        # stricter than the primary strategy
HYBRID_BB_PERIOD = 8
HYBRID_BB_STD = 2.0
HYBRID_BB_LOWER = 35.0          # band position % = oversold
HYBRID_BB_UPPER = 65.0          # band position % = overbought
HYBRID_MOMENTUM_PERIOD = 10     # rounds (~50 min)
HYBRID_MOMENTUM_BULL_THRESH = -0.5
HYBRID_MOMENTUM_BEAR_THRESH = 0.5

# ── Evaluation ──────────────────────────────────────────────────
MIN_TRADES_TO_EVALUATE = 10

# ── Output ──────────────────────────────────────────────────────
RESULTS_DIR = "data/results"
