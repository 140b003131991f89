"""
Risk-neutral density from a single expiration's call prices.

Breeden-Litzenberger: the second derivative of the call price with respect
to strike, grown by e^{rT}, is the risk-neutral density of the terminal
price. On a listed chain this becomes a central second difference over
neighbouring strikes:

    f(K_i) ~ e^{rT} * (C_{i+1} - 2 C_i + C_{i-1}) / h^2,
    h = (K_{i+1} - K_{i-1}) / 2

Quoted mids are noisy, so negative curvature (an arbitrage in the quotes,
not a negative probability) is clipped to zero, and the result is
normalised to unit area with the trapezoid rule.
"""

import math
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Optional

import numpy as np
import pandas as pd

from . import config
from .models import OptionQuote


@dataclass(frozen=True, eq=False)
class RiskNeutralDensity:
    """Density values at the listed call strikes (endpoints are always 0)."""

    strikes: np.ndarray
    density: np.ndarray
    expiration: datetime

    def area(self) -> float:
        """Trapezoid-rule integral over the strike axis."""
        return _trapezoid(self.density, self.strikes)

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame({"strike": self.strikes, "density": self.density})


def _trapezoid(y: np.ndarray, x: np.ndarray) -> float:
    if len(x) < 2:
        return 0.0
    return float(np.sum(0.5 * (y[1:] + y[:-1]) * np.diff(x)))


def risk_neutral_density(quotes: Iterable[OptionQuote],
                         risk_free_rate: float = config.RISK_FREE_RATE,
                         now: Optional[datetime] = None) -> Optional[RiskNeutralDensity]:
    """
    Breeden-Litzenberger density from call mids.

    All quotes are taken to share one expiration; time to expiry is read
    from the first call after sorting by strike. Puts are ignored.

    Parameters
    ----------
    quotes : one expiration's chain
    risk_free_rate : continuously compounded rate
    now : valuation time (defaults to the current UTC time)

    Returns
    -------
    RiskNeutralDensity, or None with fewer than 3 quotes or 3 calls, or
    once the chain has expired.
    """
    quotes = list(quotes)
    if len(quotes) < 3:
        return None

    calls = sorted((q for q in quotes if q.contract.is_call), key=lambda q: q.contract.strike)
    if len(calls) < 3:
        return None

    T = calls[0].contract.time_to_expiration(now)
    if T <= 0:
        return None

    strikes = np.array([q.contract.strike for q in calls], dtype=float)
    prices = np.array([q.mid_price for q in calls], dtype=float)
    growth = math.exp(risk_free_rate * T)

    h = (strikes[2:] - strikes[:-2]) / 2
    second = np.full(len(h), np.nan)
    spaced = h > 0
    second[spaced] = (prices[2:] - 2 * prices[1:-1] + prices[:-2])[spaced] / h[spaced] ** 2

    density = np.zeros(len(strikes))
    interior = growth * second
    keep = np.isfinite(interior) & (interior > 0)
    density[1:-1][keep] = interior[keep]

    total = _trapezoid(density, strikes)
    if total > 0:
        density /= total

    return RiskNeutralDensity(strikes, density, calls[0].contract.expiration)
