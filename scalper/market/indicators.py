"""scalper.market.indicators

Momentum indicators over short price/volume histories.

These are heuristics for sizing and slippage, not alpha. Every function
degrades to a neutral value when the history is too short.
"""

from __future__ import annotations

from collections.abc import Sequence

import numpy as np

from scalper.core.types import MarketCondition, Trend, VolumeTrend


def _arr(values: Sequence[float]) -> np.ndarray:
    return np.asarray(values, dtype=np.float64)


def rsi(prices: Sequence[float], period: int = 14) -> float:
    """Wilder RSI of the last value. 50 when there is not enough history."""

    close = _arr(prices)
    if period <= 1 or close.size < period + 1:
        return 50.0

    diff = np.diff(close)
    up = np.maximum(diff, 0.0)
    down = np.maximum(-diff, 0.0)

    avg_up = float(np.mean(up[:period]))
    avg_down = float(np.mean(down[:period]))
    for i in range(period, diff.size):
        avg_up = (avg_up * (period - 1) + up[i]) / period
        avg_down = (avg_down * (period - 1) + down[i]) / period

    if avg_down <= 0:
        return 100.0 if avg_up > 0 else 50.0
    rs = avg_up / avg_down
    return float(100.0 - (100.0 / (1.0 + rs)))


def ema_series(values: Sequence[float], period: int) -> np.ndarray:
    x = _arr(values)
    out = np.empty_like(x)
    if x.size == 0:
        return out
    k = 2.0 / (period + 1.0)
    out[0] = x[0]
    for i in range(1, x.size):
        out[i] = (x[i] - out[i - 1]) * k + out[i - 1]
    return out


def macd_histogram(prices: Sequence[float], fast: int = 12, slow: int = 26, signal: int = 9) -> float:
    close = _arr(prices)
    if close.size < 2:
        return 0.0
    line = ema_series(close, fast) - ema_series(close, slow)
    sig = ema_series(line, signal)
    return float(line[-1] - sig[-1])


def trend(prices: Sequence[float], threshold: float = 0.02) -> Trend:
    close = _arr(prices)
    if close.size < 2 or close[0] == 0:
        return Trend.NEUTRAL
    change = (close[-1] - close[0]) / close[0]
    if change > threshold:
        return Trend.UP
    if change < -threshold:
        return Trend.DOWN
    return Trend.NEUTRAL


def volume_trend(volumes: Sequence[float], threshold: float = 0.1) -> VolumeTrend:
    v = _arr(volumes)[-10:]
    if v.size < 2 or v[0] == 0:
        return VolumeTrend.STABLE
    change = (v[-1] - v[0]) / v[0]
    if change > threshold:
        return VolumeTrend.INCREASING
    if change < -threshold:
        return VolumeTrend.DECREASING
    return VolumeTrend.STABLE


def volatility(prices: Sequence[float]) -> float:
    """Standard deviation of simple returns."""

    close = _arr(prices)
    if close.size < 3 or np.any(close[:-1] == 0):
        return 0.0
    returns = np.diff(close) / close[:-1]
    return float(np.std(returns))


def market_condition(prices: Sequence[float], volumes: Sequence[float]) -> tuple[MarketCondition, float]:
    """Vote bullish/bearish signals into a condition and a confidence in [0, 1]."""

    if len(prices) < 2 or len(volumes) < 2:
        return MarketCondition.NEUTRAL, 0.5

    recent = list(prices)[-20:]
    r = rsi(recent)
    hist = macd_histogram(recent)
    short = trend(recent[-5:])
    medium = trend(recent[-10:])
    long = trend(recent)
    vol = volume_trend(list(volumes)[-20:])

    bullish = 0
    bearish = 0
    if r > 70:
        bearish += 1
    elif r < 30:
        bullish += 1

    if hist > 0:
        bullish += 1
    else:
        bearish += 1

    if vol == VolumeTrend.INCREASING and short == Trend.UP:
        bullish += 1
    elif vol == VolumeTrend.DECREASING and short == Trend.DOWN:
        bearish += 1

    if short == medium == long:
        if short == Trend.UP:
            bullish += 2
        elif short == Trend.DOWN:
            bearish += 2

    total = bullish + bearish
    confidence = max(bullish, bearish) / total if total > 0 else 0.5
    if bullish > bearish:
        return MarketCondition.BULLISH, confidence
    if bearish > bullish:
        return MarketCondition.BEARISH, confidence
    return MarketCondition.NEUTRAL, confidence
