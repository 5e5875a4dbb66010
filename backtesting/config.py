"""
Backtest Configuration

Dataclasses capturing everything a single simulation run needs besides
the bars and the strategy itself: capital, lot size, leverage, warm-up,
the capital floor and the pip-size heuristic. Also holds the exit-rule
shape (TP/SL offsets, max holding time) and the timeframe tables.

Defaults come from config.settings.EngineSettings via from_settings() so
deployments can tune them through STRATLAB_* environment variables.
"""

from dataclasses import dataclass, asdict
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from config.settings import EngineSettings, get_engine_settings


# Minutes per bar for every timeframe the engine understands
TIMEFRAME_MINUTES: Dict[str, int] = {
    '1m': 1,
    '5m': 5,
    '15m': 15,
    '30m': 30,
    '1h': 60,
    '4h': 240,
    '1d': 1440,
}

# Coarse timeframes accepted for Stage 1
STAGE1_TIMEFRAMES: Tuple[str, ...] = ('15m', '30m', '1h', '4h', '1d')

# Stage 2 always re-runs on the finest series
STAGE2_TIMEFRAME = '1m'


def timeframe_minutes(timeframe: str) -> int:
    """Minutes per bar for a timeframe, ValueError when unknown."""
    try:
        return TIMEFRAME_MINUTES[timeframe]
    except KeyError:
        raise ValueError(
            f"Unsupported timeframe: {timeframe!r}. "
            f"Use one of {sorted(TIMEFRAME_MINUTES, key=TIMEFRAME_MINUTES.get)}"
        )


class OffsetUnit(str, Enum):
    """How a TP/SL offset is expressed."""
    PERCENT = 'percent'
    PIPS = 'pips'


@dataclass(frozen=True)
class PriceOffset:
    """Distance of a TP or SL threshold from the entry price."""
    value: float
    unit: OffsetUnit = OffsetUnit.PERCENT

    def distance(self, entry_price: float, pip_size: float) -> float:
        """Absolute price distance for a given entry price."""
        if self.unit == OffsetUnit.PERCENT:
            return entry_price * self.value / 100.0
        return self.value * pip_size

    def to_dict(self) -> Dict[str, Any]:
        return {'value': self.value, 'unit': self.unit.value}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'PriceOffset':
        return cls(value=float(data['value']), unit=OffsetUnit(data.get('unit', 'percent')))


@dataclass(frozen=True)
class ExitSettings:
    """
    Fixed exit rules applied to every position.

    Attributes:
        take_profit: Offset of the take-profit threshold from entry
        stop_loss: Offset of the stop-loss threshold from entry
        max_holding_minutes: Timeout after this much holding time (None = never)
    """
    take_profit: PriceOffset
    stop_loss: PriceOffset
    max_holding_minutes: Optional[int] = None

    def validate(self) -> List[str]:
        """Validate exit settings and return list of issues."""
        issues = []
        if self.take_profit.value <= 0:
            issues.append('take_profit offset must be positive')
        if self.stop_loss.value <= 0:
            issues.append('stop_loss offset must be positive')
        if self.max_holding_minutes is not None and self.max_holding_minutes <= 0:
            issues.append('max_holding_minutes must be positive when set')
        return issues

    def to_dict(self) -> Dict[str, Any]:
        return {
            'take_profit': self.take_profit.to_dict(),
            'stop_loss': self.stop_loss.to_dict(),
            'max_holding_minutes': self.max_holding_minutes,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ExitSettings':
        return cls(
            take_profit=PriceOffset.from_dict(data['take_profit']),
            stop_loss=PriceOffset.from_dict(data['stop_loss']),
            max_holding_minutes=data.get('max_holding_minutes'),
        )


@dataclass
class BacktestConfig:
    """
    Per-run simulation parameters.

    Capital floor: once running capital falls to bankruptcy_ratio *
    initial_capital or below, the run halts.

    Pip heuristic: entries priced above pip_price_threshold use
    high_price_pip_size, everything else low_price_pip_size.
    """

    # ── Account ─────────────────────────────────────────────────────
    initial_capital: float = 1_000_000.0
    lot_size: float = 10_000.0
    leverage: float = 25.0

    # ── Simulation ──────────────────────────────────────────────────
    warmup_bars: int = 50
    bankruptcy_ratio: float = 0.5
    record_snapshots: bool = True

    # ── Pip Heuristic ───────────────────────────────────────────────
    pip_price_threshold: float = 50.0
    high_price_pip_size: float = 0.01
    low_price_pip_size: float = 0.0001

    # ── Data Guards ─────────────────────────────────────────────────
    coverage_warning_ratio: float = 0.8
    max_range_days: Optional[int] = None

    @classmethod
    def from_settings(
        cls,
        settings: Optional[EngineSettings] = None,
        **overrides: Any,
    ) -> 'BacktestConfig':
        """
        Build a config whose engine-wide defaults come from EngineSettings.

        Args:
            settings: Explicit settings (default: read from environment)
            **overrides: Field values taking precedence over settings
        """
        settings = settings or get_engine_settings()
        values = dict(
            warmup_bars=settings.warmup_bars,
            bankruptcy_ratio=settings.bankruptcy_ratio,
            pip_price_threshold=settings.pip_price_threshold,
            high_price_pip_size=settings.high_price_pip_size,
            low_price_pip_size=settings.low_price_pip_size,
            coverage_warning_ratio=settings.coverage_warning_ratio,
        )
        values.update(overrides)
        return cls(**values)

    @property
    def bankruptcy_threshold(self) -> float:
        """Capital at or below which the run halts."""
        return self.initial_capital * self.bankruptcy_ratio

    def pip_size(self, price: float) -> float:
        """Pip size for an instrument trading at the given price."""
        if price > self.pip_price_threshold:
            return self.high_price_pip_size
        return self.low_price_pip_size

    def required_margin(self, entry_price: float) -> float:
        """Margin tied up by one position at the given entry price."""
        return self.lot_size * entry_price / self.leverage

    def validate(self) -> List[str]:
        """Validate configuration and return list of issues."""
        issues = []
        if self.initial_capital <= 0:
            issues.append('initial_capital must be positive')
        if self.lot_size <= 0:
            issues.append('lot_size must be positive')
        if self.leverage <= 0:
            issues.append('leverage must be positive')
        if self.warmup_bars < 0:
            issues.append('warmup_bars cannot be negative')
        if not 0.0 <= self.bankruptcy_ratio < 1.0:
            issues.append('bankruptcy_ratio must be in [0, 1)')
        if self.high_price_pip_size <= 0 or self.low_price_pip_size <= 0:
            issues.append('pip sizes must be positive')
        if self.max_range_days is not None and self.max_range_days <= 0:
            issues.append('max_range_days must be positive when set')
        return issues

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
