"""
Black-Scholes pricing, greeks, and implied volatility inversion.

Everything here is closed-form except the IV solver, which is a plain
Newton-Raphson iteration on vega. The pipeline calls it once per quote,
inline, so it is bounded (IV_MAX_ITER) and never suspends.

The normal CDF comes from scipy.special.ndtr rather than scipy.stats.norm:
same numbers, but without the per-call argument checking of the
distribution object, which dominates at streaming quote rates.

References:
    Black, F. & Scholes, M. (1973). The Pricing of Options and Corporate Liabilities.
    Hull, J.C. (2018). Options, Futures, and Other Derivatives. 10th ed.
"""

import math

import numpy as np
from scipy.special import ndtr

from . import config
from .errors import InvalidInputError, NonConvergenceError


_INV_SQRT_2PI = 1.0 / math.sqrt(2.0 * math.pi)


def _norm_pdf(x: float) -> float:
    return _INV_SQRT_2PI * math.exp(-0.5 * x * x)


def _norm_cdf(x: float) -> float:
    return float(ndtr(x))


# ════════════════════════════════════════════════════════════════════════
#  PRICING
# ════════════════════════════════════════════════════════════════════════

def d1(S: float, K: float, T: float, r: float, sigma: float, q: float = 0.0) -> float:
    """
    Compute d1 in the Black-Scholes formula.

    Parameters
    ----------
    S : spot price
    K : strike price
    T : time to expiry in years
    r : risk-free rate (annualized, continuous compounding)
    sigma : volatility (annualized)
    q : continuous dividend yield (default 0)

    Returns
    -------
    float
    """
    if T <= 0 or sigma <= 0:
        return 0.0
    return (math.log(S / K) + (r - q + 0.5 * sigma**2) * T) / (sigma * math.sqrt(T))


def d2(S: float, K: float, T: float, r: float, sigma: float, q: float = 0.0) -> float:
    """Compute d2 = d1 - sigma * sqrt(T)."""
    return d1(S, K, T, r, sigma, q) - sigma * math.sqrt(max(T, 0.0))


def bs_price(S: float, K: float, T: float, r: float, sigma: float,
             is_call: bool = True, q: float = 0.0) -> float:
    """
    European option price under Black-Scholes-Merton.

    For T <= 0 this is the payoff; for sigma <= 0 the discounted
    forward intrinsic. Neither is reachable from implied_vol, which
    validates its inputs first.

    Returns
    -------
    float : theoretical option price
    """
    if T <= 0:
        return max(S - K, 0.0) if is_call else max(K - S, 0.0)

    df_q = math.exp(-q * T)
    df_r = math.exp(-r * T)
    if sigma <= 0:
        fwd = S * df_q - K * df_r
        return max(fwd, 0.0) if is_call else max(-fwd, 0.0)

    _d1 = d1(S, K, T, r, sigma, q)
    _d2 = _d1 - sigma * math.sqrt(T)
    if is_call:
        return S * df_q * _norm_cdf(_d1) - K * df_r * _norm_cdf(_d2)
    return K * df_r * _norm_cdf(-_d2) - S * df_q * _norm_cdf(-_d1)


# ════════════════════════════════════════════════════════════════════════
#  GREEKS
# ════════════════════════════════════════════════════════════════════════

def delta(S: float, K: float, T: float, r: float, sigma: float,
          is_call: bool = True, q: float = 0.0) -> float:
    """
    Option delta: dV/dS.

    Call delta is in [0, 1]; put delta is in [-1, 0].
    Near expiry, delta approaches a step function at the strike.
    """
    if T <= 0 or sigma <= 0:
        if is_call:
            return 1.0 if S > K else 0.0
        return -1.0 if S < K else 0.0

    _d1 = d1(S, K, T, r, sigma, q)
    if is_call:
        return math.exp(-q * T) * _norm_cdf(_d1)
    return math.exp(-q * T) * (_norm_cdf(_d1) - 1.0)


def vega(S: float, K: float, T: float, r: float, sigma: float, q: float = 0.0) -> float:
    """
    Option vega: dV/dσ.

    Returns the sensitivity per 1 unit (100%) change in vol, which is
    what the Newton step needs. Same for calls and puts.
    """
    if T <= 0 or sigma <= 0 or S <= 0:
        return 0.0
    _d1 = d1(S, K, T, r, sigma, q)
    return S * math.exp(-q * T) * _norm_pdf(_d1) * math.sqrt(T)


# ════════════════════════════════════════════════════════════════════════
#  IMPLIED VOLATILITY
# ════════════════════════════════════════════════════════════════════════

def implied_vol(
    market_price: float,
    S: float,
    K: float,
    T: float,
    r: float,
    is_call: bool = True,
    q: float = 0.0,
    initial_guess: float = None,
    max_iter: int = None,
    tol: float = None,
) -> float:
    """
    Compute implied volatility by inverting Black-Scholes with Newton-Raphson.

    Quadratic convergence near the solution, so a handful of iterations
    for well-behaved quotes. The failure modes are explicit instead of a
    NaN return, so the caller can log why a quote was dropped.

    Parameters
    ----------
    market_price : observed option price (ideally mid = (bid+ask)/2)
    S : spot price
    K : strike
    T : time to expiry (years)
    r : risk-free rate
    is_call : True for calls, False for puts
    q : dividend yield
    initial_guess : starting vol (default config.IV_INITIAL_GUESS = 30%)
    max_iter : iteration limit (default config.IV_MAX_ITER)
    tol : convergence tolerance on price difference (default 1e-8)

    Returns
    -------
    float : implied volatility

    Raises
    ------
    InvalidInputError : non-positive price, time, spot or strike
    NonConvergenceError : vega collapsed, or the iteration budget ran out

    Notes
    -----
    A Newton step that lands on sigma <= 0 is clamped to IV_SIGMA_FLOOR
    and the iteration continues from there.
    """
    if initial_guess is None:
        initial_guess = config.IV_INITIAL_GUESS
    if max_iter is None:
        max_iter = config.IV_MAX_ITER
    if tol is None:
        tol = config.IV_PRICE_TOL

    if not all(np.isfinite(x) for x in (market_price, S, K, T, r, q)):
        raise InvalidInputError(
            f"non-finite input: price={market_price} S={S} K={K} T={T} r={r} q={q}"
        )
    if market_price <= 0 or T <= 0 or S <= 0 or K <= 0:
        raise InvalidInputError(
            f"price, time, spot and strike must be positive: "
            f"price={market_price} S={S} K={K} T={T}"
        )

    sigma = initial_guess

    for _ in range(max_iter):
        diff = bs_price(S, K, T, r, sigma, is_call, q) - market_price
        if abs(diff) < tol:
            return sigma

        v = vega(S, K, T, r, sigma, q)
        if abs(v) < config.IV_MIN_VEGA:
            # deep OTM or very near expiry: the step would be huge
            raise NonConvergenceError(
                f"vega {v:.3e} too small at sigma={sigma:.6f} (K={K}, T={T:.6f})"
            )

        sigma = sigma - diff / v
        if sigma <= 0:
            sigma = config.IV_SIGMA_FLOOR

    raise NonConvergenceError(
        f"no convergence after {max_iter} iterations (K={K}, T={T:.6f}, price={market_price})"
    )
