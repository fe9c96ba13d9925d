"""
Data Models for STRATEGY LAB
"""
from enum import Enum
from typing import List, Dict, Any, Optional, Literal

from pydantic import BaseModel, ConfigDict, Field

from strategy_lab import DEFAULT_CAPITAL
from strategy_lab.indicator_config import IndicatorConfig, configs_from_parameters


class Candle(BaseModel):
    """OHLCV Candle Data (time in milliseconds)"""
    model_config = ConfigDict(frozen=True)

    time: int
    open: float
    high: float
    low: float
    close: float
    volume: float = 0.0


class Strategy(BaseModel):
    """Trading Strategy

    ``parameters`` is the dashboard's flat option bag. When ``indicators`` is
    given it takes precedence and the bag is not consulted.
    """
    id: str = ''
    name: str = ''
    symbol: str = ''
    timeframe: str = ''
    parameters: Dict[str, Any] = {}
    indicators: Optional[List[IndicatorConfig]] = None

    def indicator_configs(self) -> List[Any]:
        if self.indicators is not None:
            return list(self.indicators)
        return configs_from_parameters(self.parameters)


class SignalType(str, Enum):
    BUY = 'BUY'
    SELL = 'SELL'
    GOLDEN_CROSS = 'GOLDEN_CROSS'
    DEATH_CROSS = 'DEATH_CROSS'

    @property
    def opens_long(self) -> bool:
        return self in (SignalType.BUY, SignalType.GOLDEN_CROSS)

    @property
    def closes_long(self) -> bool:
        return self in (SignalType.SELL, SignalType.DEATH_CROSS)


class Signal(BaseModel):
    """Trading signal emitted at a candle close"""
    model_config = ConfigDict(frozen=True)

    time: int
    type: SignalType
    price: float
    reason: str
    indicators: Dict[str, float] = {}

    @property
    def rsi(self) -> Optional[float]:
        return self.indicators.get('rsi')


class Trade(BaseModel):
    """Simulated position (LONG only)"""
    entryTime: int
    entryPrice: float
    exitTime: Optional[int] = None
    exitPrice: Optional[float] = None
    type: Literal['LONG'] = 'LONG'
    quantity: float
    profit: Optional[float] = None
    profitPercent: Optional[float] = None
    isOpen: bool = True
    entrySignal: Signal
    exitSignal: Optional[Signal] = None
    exitReason: Optional[str] = None

    def close(self, time: int, price: float, signal: Optional[Signal] = None,
              reason: str = 'Signal') -> float:
        """Close the trade in place and return the realized profit"""
        self.exitTime = time
        self.exitPrice = price
        self.profit = (price - self.entryPrice) * self.quantity
        self.profitPercent = (price - self.entryPrice) / self.entryPrice * 100
        self.isOpen = False
        self.exitSignal = signal
        self.exitReason = reason
        return self.profit


class BacktestResult(BaseModel):
    """Backtest Result"""
    signals: List[Signal] = []
    trades: List[Trade] = []
    totalTrades: int
    winningTrades: int
    losingTrades: int
    winRate: float
    totalProfit: float
    totalProfitPercent: float
    averageProfit: float
    averageProfitPercent: float
    averageWin: float
    averageLoss: float
    largestWin: float
    largestLoss: float
    maxDrawdown: float
    maxDrawdownPercent: float
    profitFactor: float
    sharpeRatio: float
    startBalance: float
    endBalance: float
    roi: float


# ---------------------------------------------------------------------------
# Optimization
# ---------------------------------------------------------------------------

class OptimizationMetric(str, Enum):
    TOTAL_PROFIT = 'total_profit'
    TOTAL_PROFIT_PERCENT = 'total_profit_percent'
    SHARPE_RATIO = 'sharpe_ratio'
    PROFIT_FACTOR = 'profit_factor'
    WIN_RATE = 'win_rate'
    MAX_DRAWDOWN = 'max_drawdown'
    COMPOSITE_SCORE = 'composite_score'


class ParameterRange(BaseModel):
    """Inclusive [min, max] range walked by ``step``"""
    name: str
    min: float
    max: float
    step: float
    type: Literal['integer', 'decimal'] = 'decimal'


class OptimizationConfig(BaseModel):
    strategyId: str = ''
    symbol: str = ''
    timeframe: str = ''
    initialCapital: float = DEFAULT_CAPITAL
    dataPoints: int = 500
    parameters: List[ParameterRange] = []
    optimizationMetric: OptimizationMetric = OptimizationMetric.COMPOSITE_SCORE


class OptimizationResult(BaseModel):
    """Optimization Result"""
    parameters: Dict[str, float]
    result: BacktestResult
    score: float


class OptimizationProgress(BaseModel):
    current: int = 0
    total: int = 0
    percentage: float = 0.0
    currentParams: Dict[str, float] = {}
    bestSoFar: Optional[OptimizationResult] = None
    status: Literal['running', 'completed', 'cancelled', 'error'] = 'completed'


# ---------------------------------------------------------------------------
# HTTP requests
# ---------------------------------------------------------------------------

class BacktestRequest(BaseModel):
    """Backtest Request"""
    strategy: Strategy
    candles: List[Candle]
    initialCapital: Optional[float] = Field(default=None, gt=0)


class OptimizationRequest(BaseModel):
    """Optimization Request"""
    strategy: Strategy
    config: OptimizationConfig
    candles: List[Candle]


class EstimateRequest(BaseModel):
    parameters: List[ParameterRange]


class IndicatorRequest(BaseModel):
    candles: List[Candle]
    indicators: List[IndicatorConfig]


class OptimizationResponse(BaseModel):
    success: bool = True
    totalCombinations: int
    elapsedSeconds: float
    results: List[OptimizationResult]
