"""
STRATEGY LAB
Indicator strategies, backtesting and grid-search optimization
"""

__version__ = "1.0.0"

# Starting balance (USDT) when the caller does not pass one
DEFAULT_CAPITAL = 10000.0

# Fraction of the balance committed per entry; the rest is kept for fees/slippage
POSITION_SIZE_FRACTION = 0.95

# Choppiness Index below this value = trending market
CHOPPINESS_TRENDING_THRESHOLD = 38.2

# Minimum candles an optimization run needs before any combination is tried
MIN_OPTIMIZATION_CANDLES = 50

# One trade ~ one trading day
SHARPE_ANNUALIZATION = 252

# Seconds per backtest used for optimization time estimates
ESTIMATED_SECONDS_PER_BACKTEST = 0.1
