"""
SVI-inspired synthetic option chains.

The SVI model (Gatheral, 2004) parameterizes total implied variance
w(k) as a function of log-moneyness k = ln(K/F):

    w(k) = a + b * (rho * (k - m) + sqrt((k - m)^2 + sigma^2))

For an offline, reproducible feed we do not need the full fit, only a
surface with the qualitative features of a real equity index: negative
skew, steeper at short maturities, smile curvature at the wings, and a
term structure that flattens. The reduced-form model below is a
second-order expansion of SVI around the money.

Vols from the model are turned into quotes by pricing them with
Black-Scholes and putting a symmetric spread around the price. Only the
out-of-the-money side is listed (puts below spot, calls at and above),
which is what carries the information in a real chain.

References:
    Gatheral, J. (2004). A parsimonious arbitrage-free implied volatility
    parameterization with application to the valuation of volatility derivatives.
"""

import math
from datetime import datetime, timedelta
from typing import List, Optional, Sequence

import numpy as np

from . import config
from .black_scholes import bs_price
from .models import (
    OptionContract,
    OptionQuote,
    OptionType,
    expiry_instant,
    utcnow,
    year_fraction,
)


# ════════════════════════════════════════════════════════════════════════
#  REDUCED-FORM SVI
# ════════════════════════════════════════════════════════════════════════

def model_vol(log_moneyness: float, T: float) -> float:
    """
    Implied vol from the reduced-form model at one (k, T) point.

    Three components, each with a long-run base plus a short-maturity
    boost that decays exponentially (parameters in config.py):

        1. ATM level:    decays with maturity (term structure)
        2. Skew:         steeper at short maturities
        3. Curvature:    wings lift at all maturities
    """
    atm_vol = config.SVI_ATM_BASE + config.SVI_ATM_DECAY * math.exp(-config.SVI_ATM_LAMBDA * T)
    skew = config.SVI_SKEW_SHORT * math.exp(-config.SVI_SKEW_LAMBDA * T) + config.SVI_SKEW_BASE
    smile = config.SVI_SMILE_SHORT * math.exp(-config.SVI_SMILE_LAMBDA * T) + config.SVI_SMILE_BASE
    m = log_moneyness
    return atm_vol + skew * m + smile * m**2


def default_strikes(spot: float, step: float = None) -> np.ndarray:
    """Strikes on a ``step`` grid covering the moneyness bound around spot."""
    if step is None:
        step = config.SVI_STRIKE_STEP
    lo = math.ceil(spot * math.exp(-config.MONEYNESS_BOUND) / step) * step
    hi = math.floor(spot * math.exp(config.MONEYNESS_BOUND) / step) * step
    return np.arange(lo, hi + step / 2, step)


def default_expirations(now: datetime, days: Sequence[int] = None) -> List[datetime]:
    if days is None:
        days = config.SVI_EXPIRY_DAYS
    return [expiry_instant((now + timedelta(days=int(d))).date()) for d in days]


# ════════════════════════════════════════════════════════════════════════
#  QUOTES
# ════════════════════════════════════════════════════════════════════════

def quote_contract(
    contract: OptionContract,
    spot: float,
    now: datetime,
    rng: np.random.RandomState,
    r: float = None,
    noise_std: float = None,
) -> Optional[OptionQuote]:
    """
    Price one contract off the model surface.

    Returns None when the contract is expired or its theoretical value is
    below SVI_MIN_PRICE (nobody lists those).
    """
    if r is None:
        r = config.RISK_FREE_RATE
    if noise_std is None:
        noise_std = config.SVI_NOISE_STD

    T = year_fraction(now, contract.expiration)
    if T <= 0:
        return None

    iv = model_vol(math.log(contract.strike / spot), T)
    # real IV grids are never perfectly smooth
    iv = float(np.clip(iv + rng.normal(0, noise_std), config.MIN_IV, config.MAX_IV))

    price = bs_price(spot, contract.strike, T, r, iv, contract.is_call)
    if price < config.SVI_MIN_PRICE:
        return None

    half = max(price * config.SVI_HALF_SPREAD, 0.005)
    return OptionQuote(
        contract=contract,
        bid=round(price - half, 4),
        ask=round(price + half, 4),
        last=round(price, 4),
        volume=int(rng.poisson(50)),
        open_interest=int(rng.poisson(500)),
        underlying_price=spot,
        timestamp=now,
    )


def list_contracts(
    underlying: str,
    spot: float,
    expirations: Sequence[datetime],
    strikes: Sequence[float],
) -> List[OptionContract]:
    """Out-of-the-money contracts: puts below spot, calls at and above."""
    contracts = []
    for expiration in expirations:
        for K in strikes:
            option_type = OptionType.PUT if K < spot else OptionType.CALL
            contracts.append(OptionContract(underlying, option_type, float(K), expiration))
    return contracts


def generate_chain(
    underlying: str = None,
    spot: float = None,
    now: datetime = None,
    expirations: Sequence[datetime] = None,
    strikes: Sequence[float] = None,
    r: float = None,
    seed: int = None,
) -> List[OptionQuote]:
    """
    Generate a full synthetic chain snapshot.

    Parameters
    ----------
    underlying : symbol (default: config.TICKER)
    spot : spot price (default: config.SPOT)
    now : valuation time (default: wall clock)
    expirations : expiry instants (default: SVI_EXPIRY_DAYS out from now)
    strikes : absolute strikes (default: SVI_STRIKE_STEP grid within MONEYNESS_BOUND)
    r : risk-free rate (default: config.RISK_FREE_RATE)
    seed : random seed for micro-noise (default: config.SEED)

    Returns
    -------
    list of OptionQuote, priced contracts only
    """
    underlying = underlying or config.TICKER
    spot = config.SPOT if spot is None else spot
    now = utcnow() if now is None else now
    rng = np.random.RandomState(config.SEED if seed is None else seed)

    if expirations is None:
        expirations = default_expirations(now)
    if strikes is None:
        strikes = default_strikes(spot)

    quotes = []
    for contract in list_contracts(underlying, spot, expirations, strikes):
        quote = quote_contract(contract, spot, now, rng, r)
        if quote is not None:
            quotes.append(quote)
    return quotes
