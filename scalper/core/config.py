"""scalper.core.config

Two config surfaces only:
1) `config/default.yaml` + `config/presets/*.yaml`
2) Environment variables (`SCALPER_` prefix, `__` for nesting)

Every heuristic weight used by sizing and exits lives here, not in code.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings

from scalper.core.exceptions import ConfigError

WRAPPED_SOL = "So11111111111111111111111111111111111111112"


def _deep_merge(base: dict[str, Any], overlay: dict[str, Any]) -> dict[str, Any]:
    result: dict[str, Any] = dict(base)
    for k, v in overlay.items():
        if k in result and isinstance(result[k], dict) and isinstance(v, dict):
            result[k] = _deep_merge(result[k], v)
        else:
            result[k] = v
    return result


class RiskConfig(BaseModel):
    max_concurrent_trades: int = 3
    max_position_size: float = 1.0  # base units
    max_daily_loss: float = 0.2  # base units, rolling 24h
    max_price_impact_pct: float = 2.0
    min_liquidity: float = 100.0
    starting_balance: float = 10.0
    rolling_window_hours: float = 24.0

    @field_validator("max_concurrent_trades")
    @classmethod
    def at_least_one_trade(cls, v: int) -> int:
        if v < 1:
            raise ValueError("max_concurrent_trades must be >= 1")
        return v

    @field_validator("max_position_size", "rolling_window_hours")
    @classmethod
    def strictly_positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("must be > 0")
        return v


class ExitConfig(BaseModel):
    max_loss_percent: float = 0.01
    min_profit_percent: float = 0.015
    trailing_stop_percent: float = 0.01
    max_hold_time_ms: int = 300_000
    default_round_trip_cost: float = 0.001  # base units, used when the oracle has no estimate

    # Informational stop/target levels stored on the position.
    stop_loss_base_pct: float = 0.01
    take_profit_base_pct: float = 0.02
    strong_trend_stop_mult: float = 1.2
    bearish_stop_mult: float = 0.8
    strong_trend_target_mult: float = 1.3
    bearish_target_mult: float = 0.7


class SizingConfig(BaseModel):
    strong_confidence: float = 0.7
    oversold_rsi: float = 30.0
    overbought_rsi: float = 70.0
    oversold_mult: float = 1.2
    overbought_mult: float = 0.8
    bullish_momentum_mult: float = 1.1
    bearish_momentum_mult: float = 0.9

    strong_trend_slippage_mult: float = 1.2
    bearish_slippage_mult: float = 0.8
    volume_increasing_slippage_mult: float = 1.1
    volume_decreasing_slippage_mult: float = 0.9

    entry_filter_enabled: bool = False


class ExecutionConfig(BaseModel):
    mode: Literal["paper", "live"] = "paper"
    base_asset: str = WRAPPED_SOL
    max_slippage_bps: int = 500

    @field_validator("max_slippage_bps")
    @classmethod
    def slippage_in_range(cls, v: int) -> int:
        if not 0 < v <= 10_000:
            raise ValueError("max_slippage_bps must be in (0, 10000]")
        return v


class PaperConfig(BaseModel):
    slippage_bps: float = 30.0
    fee_rate: float = 0.003


class RetryConfig(BaseModel):
    attempts: int = 3
    base_delay_ms: int = 1000

    @field_validator("attempts")
    @classmethod
    def attempts_at_least_one(cls, v: int) -> int:
        if v < 1:
            raise ValueError("retry.attempts must be >= 1")
        return v


class MonitorConfig(BaseModel):
    tick_interval_s: float = 10.0


class LoopConfig(BaseModel):
    poll_interval_s: float = 30.0
    max_consecutive_failures: int = 5
    failure_backoff_ms: int = 5000
    min_time_between_trades_s: float = 0.0
    trade_amount: float = 0.01


class VenueConfig(BaseModel):
    quote_url: str = "https://lite-api.jup.ag/swap/v1"
    price_url: str = "https://lite-api.jup.ag/price/v2"
    token_url: str = "https://lite-api.jup.ag/tokens/v1/token"
    user_public_key: str = ""
    rate_limit_rps: float = 2.0
    timeout_s: float = 20.0
    decimals: int = 9


class NotifyConfig(BaseModel):
    webhook_url: str = ""
    recent_limit: int = 100


class LoggingConfig(BaseModel):
    level: str = "INFO"
    json_output: bool = False


class Config(BaseSettings):
    """Root configuration. Single source of truth."""

    data_dir: Path = Path("data")
    config_dir: Path = Path("config")

    preset: Literal["conservative", "balanced", "aggressive", "custom"] = "balanced"

    risk: RiskConfig = Field(default_factory=RiskConfig)
    exits: ExitConfig = Field(default_factory=ExitConfig)
    sizing: SizingConfig = Field(default_factory=SizingConfig)
    execution: ExecutionConfig = Field(default_factory=ExecutionConfig)
    paper: PaperConfig = Field(default_factory=PaperConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    monitor: MonitorConfig = Field(default_factory=MonitorConfig)
    loop: LoopConfig = Field(default_factory=LoopConfig)
    venue: VenueConfig = Field(default_factory=VenueConfig)
    notify: NotifyConfig = Field(default_factory=NotifyConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = {"env_prefix": "SCALPER_", "env_nested_delimiter": "__"}

    @model_validator(mode="after")
    def trade_amount_fits_position_cap(self) -> Config:
        if self.loop.trade_amount > self.risk.max_position_size:
            raise ValueError("loop.trade_amount exceeds risk.max_position_size")
        return self

    @classmethod
    def from_yaml(cls, path: Path) -> Config:
        if not path.exists():
            raise ConfigError(f"Config file not found: {path}")

        raw = yaml.safe_load(path.read_text()) or {}

        preset_name = raw.get("preset", "balanced")
        preset_path = path.parent / "presets" / f"{preset_name}.yaml"
        if preset_path.exists():
            preset_data = yaml.safe_load(preset_path.read_text()) or {}
            raw = _deep_merge(preset_data, raw)

        return cls(**raw)

    @classmethod
    def from_repo_defaults(cls, repo_root: Path | None = None) -> Config:
        root = repo_root or Path.cwd()
        return cls.from_yaml(root / "config" / "default.yaml")
