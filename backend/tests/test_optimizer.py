import asyncio

import pytest

from strategy_lab.backtest import compute_metrics
from strategy_lab.data import InMemoryCandleSource
from strategy_lab.errors import InsufficientDataError, InvalidParameterRangeError
from strategy_lab.indicator_config import RSIConfig
from strategy_lab.models import (
    BacktestResult, OptimizationConfig, OptimizationMetric, OptimizationResult,
    ParameterRange, Strategy,
)
from strategy_lab.optimizer import (
    CancellationToken, GridSearchOptimizer, apply_parameters, calculate_score,
    composite_score, estimate_optimization_time, generate_heatmap_data,
    generate_parameter_combinations, generate_range_values, parameter_statistics,
    run_grid_search,
)

RSI_STRATEGY = Strategy(id='rsi', name='RSI', parameters={'useRSI': True, 'useSMA': False})

RSI_RANGES = [
    ParameterRange(name='rsiPeriod', min=10, max=14, step=2, type='integer'),
    ParameterRange(name='rsiOversold', min=25, max=35, step=5, type='integer'),
]


def _result(**overrides):
    fields = compute_metrics([], 1000.0).model_dump()
    fields.update(overrides)
    return BacktestResult(**fields)


def _scored(params, score):
    return OptimizationResult(parameters=params, result=_result(), score=score)


def test_integer_range_values():
    values = generate_range_values(ParameterRange(name='p', min=10, max=14, step=2, type='integer'))

    assert values == [10, 12, 14]
    assert all(isinstance(v, int) for v in values)


def test_decimal_range_reaches_inclusive_max():
    values = generate_range_values(ParameterRange(name='p', min=0.1, max=0.3, step=0.1))

    assert values == [0.1, 0.2, 0.3]


def test_integer_range_rounds_halves_up():
    values = generate_range_values(ParameterRange(name='p', min=0.5, max=3.5, step=1, type='integer'))

    assert values == [1, 2, 3, 4]
    assert len(set(values)) == len(values)


def test_single_value_range():
    assert generate_range_values(ParameterRange(name='p', min=5, max=5, step=1)) == [5.0]


@pytest.mark.parametrize("bad_range", [
    ParameterRange(name='p', min=1, max=5, step=0),
    ParameterRange(name='p', min=1, max=5, step=-1),
    ParameterRange(name='p', min=5, max=1, step=1),
])
def test_invalid_ranges_raise(bad_range):
    with pytest.raises(InvalidParameterRangeError):
        generate_range_values(bad_range)


def test_combinations_are_cartesian_product():
    combos = generate_parameter_combinations([
        ParameterRange(name='a', min=1, max=3, step=1, type='integer'),
        ParameterRange(name='b', min=0.5, max=1.0, step=0.5),
    ])

    assert len(combos) == 6
    assert combos[0] == {'a': 1, 'b': 0.5}
    assert combos[-1] == {'a': 3, 'b': 1.0}
    assert generate_parameter_combinations([]) == [{}]


def test_apply_parameters_copies_strategy():
    updated = apply_parameters(RSI_STRATEGY, {'rsiPeriod': 21})

    assert updated.parameters['rsiPeriod'] == 21
    assert 'rsiPeriod' not in RSI_STRATEGY.parameters
    assert updated.indicator_configs() == [RSIConfig(period=21)]


def test_apply_parameters_dotted_keys_target_typed_configs():
    strategy = Strategy(indicators=[RSIConfig()])
    updated = apply_parameters(strategy, {'rsi.oversold': 25})

    assert updated.indicators[0].oversold == 25.0
    assert strategy.indicators[0].oversold == 30.0


def test_composite_score_weights():
    result = _result(
        totalTrades=30, totalProfit=100.0, totalProfitPercent=10.0, sharpeRatio=1.0,
        winRate=50.0, profitFactor=2.0, maxDrawdownPercent=5.0,
    )

    # 4 + 25 + 7.5 + 10 - 0.5 + 5
    assert composite_score(result) == pytest.approx(51.0)


def test_composite_score_caps_infinite_profit_factor():
    result = _result(totalTrades=1, totalProfit=50.0, totalProfitPercent=5.0,
                     winRate=100.0, profitFactor=float('inf'))

    assert composite_score(result) == pytest.approx(2.0 + 15.0 + 90.0)


def test_metric_selection():
    result = _result(totalProfit=80.0, totalProfitPercent=8.0, sharpeRatio=1.5,
                     profitFactor=1.2, winRate=60.0, maxDrawdownPercent=4.0)

    assert calculate_score(result, OptimizationMetric.TOTAL_PROFIT) == 80.0
    assert calculate_score(result, OptimizationMetric.TOTAL_PROFIT_PERCENT) == 8.0
    assert calculate_score(result, OptimizationMetric.SHARPE_RATIO) == 1.5
    assert calculate_score(result, OptimizationMetric.PROFIT_FACTOR) == 1.2
    assert calculate_score(result, OptimizationMetric.WIN_RATE) == 60.0
    assert calculate_score(result, OptimizationMetric.MAX_DRAWDOWN) == -4.0


def test_grid_search_ranks_every_combination(random_walk_candles):
    config = OptimizationConfig(parameters=RSI_RANGES, initialCapital=5000.0)
    progress = []

    results = asyncio.run(run_grid_search(
        config, RSI_STRATEGY, InMemoryCandleSource(random_walk_candles), progress.append
    ))

    assert len(results) == 9
    scores = [r.score for r in results]
    assert scores == sorted(scores, reverse=True)
    assert progress[0].current == 0
    assert progress[0].status == 'running'
    assert progress[-1].status == 'completed'
    assert progress[-1].current == progress[-1].total == 9
    assert progress[-1].percentage == 100.0
    assert progress[-1].bestSoFar.score == results[0].score
    assert [p.current for p in progress[1:-1]] == list(range(1, 10))
    assert 'rsiPeriod' not in RSI_STRATEGY.parameters


def test_grid_search_matches_direct_backtests(random_walk_candles):
    config = OptimizationConfig(parameters=RSI_RANGES[:1], initialCapital=5000.0,
                                optimizationMetric=OptimizationMetric.TOTAL_PROFIT)
    results = asyncio.run(run_grid_search(config, RSI_STRATEGY, InMemoryCandleSource(random_walk_candles)))

    optimizer = GridSearchOptimizer(random_walk_candles[-500:], RSI_STRATEGY, 5000.0,
                                    OptimizationMetric.TOTAL_PROFIT)
    for result in results:
        direct = optimizer.evaluate(result.parameters)
        assert direct.score == result.score == result.result.totalProfit


def test_grid_search_accepts_async_sources_and_callbacks(random_walk_candles):
    class AsyncSource:
        async def get_candles(self, symbol, interval, limit):
            return random_walk_candles[-limit:]

    seen = []

    async def on_progress(progress):
        seen.append(progress.status)

    config = OptimizationConfig(parameters=RSI_RANGES[:1], dataPoints=200)
    results = asyncio.run(run_grid_search(config, RSI_STRATEGY, AsyncSource(), on_progress))

    assert len(results) == 3
    assert seen[-1] == 'completed'


def test_grid_search_rejects_short_history(candle_factory):
    candles = candle_factory([100 + i for i in range(49)])
    config = OptimizationConfig(parameters=RSI_RANGES)

    with pytest.raises(InsufficientDataError, match='Insufficient historical data'):
        asyncio.run(run_grid_search(config, RSI_STRATEGY, InMemoryCandleSource(candles)))


def test_grid_search_cancellation_keeps_partial_results(random_walk_candles):
    token = CancellationToken()
    progress = []

    def on_progress(p):
        progress.append(p)
        if p.current == 2 and p.status == 'running':
            token.cancel()

    config = OptimizationConfig(parameters=RSI_RANGES)
    results = asyncio.run(run_grid_search(
        config, RSI_STRATEGY, InMemoryCandleSource(random_walk_candles), on_progress, token
    ))

    assert len(results) == 2
    assert results[0].score >= results[1].score
    assert progress[-1].status == 'cancelled'
    assert progress[-1].current == 2


def test_synchronous_optimize(random_walk_candles):
    optimizer = GridSearchOptimizer(random_walk_candles, RSI_STRATEGY)
    seen = []

    results = optimizer.optimize(RSI_RANGES, seen.append)

    assert len(results) == 9
    assert seen[-1].status == 'completed'
    assert len(seen) == 10


def test_estimate_optimization_time():
    assert estimate_optimization_time(RSI_RANGES) == {'combinations': 9, 'estimatedSeconds': 1}
    assert estimate_optimization_time([]) == {'combinations': 1, 'estimatedSeconds': 1}


def test_heatmap_and_parameter_statistics():
    results = [
        _scored({'rsiPeriod': 10, 'rsiOversold': 25}, 1.0),
        _scored({'rsiPeriod': 12, 'rsiOversold': 30}, 3.0),
        _scored({'rsiPeriod': 14, 'rsiOversold': 35}, 2.0),
        _scored({'rsiOversold': 40}, 9.0),
    ]

    heatmap = generate_heatmap_data(results, 'rsiPeriod', 'rsiOversold')
    assert heatmap[1] == {'x': 12, 'y': 30, 'value': 3.0}
    assert len(heatmap) == 3

    stats = parameter_statistics(results, 'rsiPeriod')
    assert stats == {'best': 12, 'worst': 10, 'average': 12.0, 'median': 12}
    assert parameter_statistics(results, 'missing')['best'] == 0.0
