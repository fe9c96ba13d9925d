"""
Indicator Configurations
One typed config per indicator family; a family is enabled when its config is present.
"""
import math
from typing import Annotated, Any, Dict, List, Literal, Union

from pydantic import BaseModel, Field

from strategy_lab import CHOPPINESS_TRENDING_THRESHOLD


class RSIConfig(BaseModel):
    kind: Literal['rsi'] = 'rsi'
    period: int = 14
    oversold: float = 30.0
    overbought: float = 70.0


class SMAConfig(BaseModel):
    """Short/long SMA crossover (golden / death cross)"""
    kind: Literal['sma'] = 'sma'
    shortPeriod: int = 20
    longPeriod: int = 50


class MACDConfig(BaseModel):
    kind: Literal['macd'] = 'macd'
    fastPeriod: int = 12
    slowPeriod: int = 26
    signalPeriod: int = 9


class BollingerConfig(BaseModel):
    kind: Literal['bollinger'] = 'bollinger'
    period: int = 20
    stdDev: float = 2.0


class StochasticConfig(BaseModel):
    kind: Literal['stochastic'] = 'stochastic'
    kPeriod: int = 14
    dPeriod: int = 3
    oversold: float = 20.0
    overbought: float = 80.0


class ChoppinessConfig(BaseModel):
    """Gate only: signals pass while the market is trending (CI below threshold)"""
    kind: Literal['choppiness'] = 'choppiness'
    period: int = 14
    threshold: float = CHOPPINESS_TRENDING_THRESHOLD


class ATRConfig(BaseModel):
    """Snapshot only, ATR does not emit signals"""
    kind: Literal['atr'] = 'atr'
    period: int = 14


IndicatorConfig = Annotated[
    Union[RSIConfig, SMAConfig, MACDConfig, BollingerConfig,
          StochasticConfig, ChoppinessConfig, ATRConfig],
    Field(discriminator='kind'),
]


# ---------------------------------------------------------------------------
# Flat parameter bag -> typed configs
# ---------------------------------------------------------------------------

# (enable flag, enabled when flag is absent, config type, {bag key: config field})
# Order here is the signal emission order for bag-derived strategies.
PARAMETER_BAG_LAYOUT = [
    ('useBollingerBands', False, BollingerConfig,
     {'bbPeriod': 'period', 'bbStdDev': 'stdDev'}),
    ('useRSI', False, RSIConfig,
     {'rsiPeriod': 'period', 'rsiOversold': 'oversold', 'rsiOverbought': 'overbought'}),
    ('useSMA', True, SMAConfig,
     {'smaShortPeriod': 'shortPeriod', 'smaLongPeriod': 'longPeriod'}),
    ('useMACD', False, MACDConfig,
     {'macdFastPeriod': 'fastPeriod', 'macdSlowPeriod': 'slowPeriod',
      'macdSignalPeriod': 'signalPeriod'}),
    ('useStochastic', False, StochasticConfig,
     {'stochKPeriod': 'kPeriod', 'stochDPeriod': 'dPeriod',
      'stochOversold': 'oversold', 'stochOverbought': 'overbought'}),
    ('useChoppiness', False, ChoppinessConfig,
     {'choppinessPeriod': 'period', 'choppinessThreshold': 'threshold'}),
    ('useATR', False, ATRConfig,
     {'atrPeriod': 'period'}),
]


def _is_enabled(value: Any, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, str):
        return value.strip().lower() in ('1', 'true', 'yes', 'on')
    return bool(value)


def round_half_up(value: Any) -> int:
    """Nearest int with exact halves rounded up (0.5 -> 1, 2.5 -> 3)"""
    return int(math.floor(float(value) + 0.5))


def _coerce(config_type: type, field: str, value: Any) -> Any:
    # Optimizer ranges hand back floats even for period-like fields
    annotation = config_type.model_fields[field].annotation
    if annotation is int:
        return round_half_up(value)
    return float(value)


def configs_from_parameters(parameters: Dict[str, Any]) -> List[Any]:
    """Translate a flat strategy parameter bag into typed indicator configs.

    Missing (or ``None``) values fall back to the config defaults. ``useSMA`` is
    the only family enabled when its flag is absent.
    """
    configs = []
    for flag, enabled_by_default, config_type, keys in PARAMETER_BAG_LAYOUT:
        if not _is_enabled(parameters.get(flag), enabled_by_default):
            continue
        values = {
            field: _coerce(config_type, field, parameters[key])
            for key, field in keys.items()
            if parameters.get(key) is not None
        }
        configs.append(config_type(**values))
    return configs


def apply_config_override(configs: List[Any], name: str, value: Any) -> List[Any]:
    """Return a copy of ``configs`` with a dotted ``kind.field`` override applied.

    Example: ``apply_config_override(configs, 'rsi.period', 21)``. Unknown kinds
    or fields leave the list untouched.
    """
    kind, _, field = name.partition('.')
    updated = []
    for config in configs:
        if config.kind == kind and field in type(config).model_fields and field != 'kind':
            config = config.model_copy(update={field: _coerce(type(config), field, value)})
        updated.append(config)
    return updated
