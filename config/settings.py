"""
Centralized Configuration Loading for the Strategy Lab engine.

- Single source of truth for engine tunables read from the environment
- Optional project-root .env file (local development)
- Documented defaults for the capital floor and pip-size heuristic

Usage:
    from config.settings import load_config, get_engine_settings

    # At app startup (call once)
    load_config()

    settings = get_engine_settings()
    print(settings.bankruptcy_ratio)
"""

import os
from dataclasses import dataclass, asdict
from pathlib import Path
from typing import Any, Dict, Optional

# Flag to track if config has been loaded
_CONFIG_LOADED = False

ENV_PREFIX = 'STRATLAB_'


@dataclass(frozen=True)
class EngineSettings:
    """
    Engine-wide tunables.

    The capital floor and pip heuristic are desk conventions, kept
    configurable rather than hardcoded.
    """
    warmup_bars: int = 50
    bankruptcy_ratio: float = 0.5
    pip_price_threshold: float = 50.0
    high_price_pip_size: float = 0.01
    low_price_pip_size: float = 0.0001
    coverage_warning_ratio: float = 0.8
    max_workers: int = 4
    monte_carlo_seed: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def load_config(force_reload: bool = False) -> None:
    """
    Load environment variables from the project root .env file.

    Missing .env is fine: deployments set STRATLAB_* variables directly.

    Args:
        force_reload: If True, reload even if already loaded
    """
    global _CONFIG_LOADED

    if _CONFIG_LOADED and not force_reload:
        return

    # Import here to keep module import cheap
    from dotenv import load_dotenv

    project_root = Path(__file__).parent.parent
    env_path = project_root / '.env'

    if env_path.exists():
        load_dotenv(env_path, override=True)

    _CONFIG_LOADED = True


def _env_int(name: str, default: Optional[int]) -> Optional[int]:
    raw = os.getenv(ENV_PREFIX + name)
    if raw is None or raw.strip() == '':
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{ENV_PREFIX}{name} must be an integer, got {raw!r}")


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(ENV_PREFIX + name)
    if raw is None or raw.strip() == '':
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{ENV_PREFIX}{name} must be a number, got {raw!r}")


def get_engine_settings() -> EngineSettings:
    """
    Build EngineSettings from the environment.

    Recognized variables (all optional):
        STRATLAB_WARMUP_BARS, STRATLAB_BANKRUPTCY_RATIO,
        STRATLAB_PIP_PRICE_THRESHOLD, STRATLAB_HIGH_PRICE_PIP_SIZE,
        STRATLAB_LOW_PRICE_PIP_SIZE, STRATLAB_COVERAGE_WARNING_RATIO,
        STRATLAB_MAX_WORKERS, STRATLAB_MONTE_CARLO_SEED

    Raises:
        ValueError: If a variable is set but cannot be parsed
    """
    load_config()
    defaults = EngineSettings()
    return EngineSettings(
        warmup_bars=_env_int('WARMUP_BARS', defaults.warmup_bars),
        bankruptcy_ratio=_env_float('BANKRUPTCY_RATIO', defaults.bankruptcy_ratio),
        pip_price_threshold=_env_float('PIP_PRICE_THRESHOLD', defaults.pip_price_threshold),
        high_price_pip_size=_env_float('HIGH_PRICE_PIP_SIZE', defaults.high_price_pip_size),
        low_price_pip_size=_env_float('LOW_PRICE_PIP_SIZE', defaults.low_price_pip_size),
        coverage_warning_ratio=_env_float(
            'COVERAGE_WARNING_RATIO', defaults.coverage_warning_ratio
        ),
        max_workers=_env_int('MAX_WORKERS', defaults.max_workers),
        monte_carlo_seed=_env_int('MONTE_CARLO_SEED', defaults.monte_carlo_seed),
    )


def is_config_loaded() -> bool:
    """Check if config has been loaded."""
    return _CONFIG_LOADED
