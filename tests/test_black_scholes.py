"""
Tests for the Black-Scholes pricing module.

Covers: pricing accuracy, put-call parity, greek signs/bounds,
IV round-trip consistency, and the solver's failure modes.

Run with: pytest tests/ -v
"""

import math

import numpy as np
import pytest

from volstream.black_scholes import bs_price, d1, d2, delta, implied_vol, vega
from volstream.errors import InvalidInputError, NonConvergenceError, VolSurfaceError


# ── fixtures ─────────────────────────────────────────────────────────

# standard test parameters: ATM SPY-like option
S = 600.0
K = 600.0
T = 0.25  # 3 months
r = 0.05
sigma = 0.20
q = 0.013


class TestPricing:
    """Basic pricing correctness."""

    def test_call_price_positive(self):
        assert bs_price(S, K, T, r, sigma, True, q) > 0

    def test_put_price_positive(self):
        assert bs_price(S, K, T, r, sigma, False, q) > 0

    def test_known_value(self):
        """S=K=100, T=1, r=5%, sigma=20%: the textbook 10.4506 call."""
        assert abs(bs_price(100, 100, 1.0, 0.05, 0.20) - 10.4506) < 1e-4

    def test_put_call_parity(self):
        """
        Put-call parity: C - P = S*e^{-qT} - K*e^{-rT}

        This is model-independent for European options. If this fails,
        something fundamental is wrong with the pricing formulas.
        """
        c = bs_price(S, K, T, r, sigma, True, q)
        p = bs_price(S, K, T, r, sigma, False, q)
        rhs = S * np.exp(-q * T) - K * np.exp(-r * T)
        assert abs((c - p) - rhs) < 1e-10

    def test_put_call_parity_otm(self):
        for K_test in [500.0, 550.0, 650.0, 700.0]:
            c = bs_price(S, K_test, T, r, sigma, True, q)
            p = bs_price(S, K_test, T, r, sigma, False, q)
            rhs = S * np.exp(-q * T) - K_test * np.exp(-r * T)
            assert abs((c - p) - rhs) < 1e-10, f"PCP failed at K={K_test}"

    def test_call_lower_bound(self):
        c = bs_price(S, K, T, r, sigma, True, q)
        intrinsic = max(S * np.exp(-q * T) - K * np.exp(-r * T), 0)
        assert c >= intrinsic - 1e-10

    def test_expired_is_payoff(self):
        assert bs_price(600, 550, 0, r, sigma, True) == 50.0
        assert bs_price(600, 650, 0, r, sigma, True) == 0.0
        assert bs_price(600, 650, 0, r, sigma, False) == 50.0

    def test_zero_vol_call(self):
        """With zero vol, call = max(S*e^{-qT} - K*e^{-rT}, 0)."""
        c = bs_price(600, 550, 0.5, 0.05, 0.0, True)
        expected = max(600 - 550 * np.exp(-0.05 * 0.5), 0)
        assert abs(c - expected) < 1e-10

    def test_d2_relation(self):
        assert abs(d1(S, K, T, r, sigma, q) - d2(S, K, T, r, sigma, q) - sigma * math.sqrt(T)) < 1e-12


class TestGreeks:
    """Greek signs and bounds."""

    def test_call_delta_bounds(self):
        for K_test in [500, 550, 600, 650, 700]:
            d = delta(S, K_test, T, r, sigma, True, q)
            assert 0 <= d <= 1, f"Call delta out of bounds at K={K_test}: {d}"

    def test_put_delta_bounds(self):
        for K_test in [500, 550, 600, 650, 700]:
            d = delta(S, K_test, T, r, sigma, False, q)
            assert -1 <= d <= 0, f"Put delta out of bounds at K={K_test}: {d}"

    def test_delta_step_at_expiry(self):
        assert delta(600, 550, 0, r, sigma, True) == 1.0
        assert delta(600, 650, 0, r, sigma, False) == -1.0

    def test_vega_positive(self):
        for K_test in [500, 550, 600, 650, 700]:
            assert vega(S, K_test, T, r, sigma, q) >= 0

    def test_vega_matches_finite_difference(self):
        h = 1e-5
        fd = (bs_price(S, K, T, r, sigma + h, True, q) - bs_price(S, K, T, r, sigma - h, True, q)) / (2 * h)
        assert abs(vega(S, K, T, r, sigma, q) - fd) < 1e-4


class TestImpliedVol:
    """Implied volatility solver tests."""

    def test_iv_round_trip_call(self):
        price = bs_price(S, K, T, r, sigma, True, q)
        assert abs(implied_vol(price, S, K, T, r, True, q) - sigma) < 1e-6

    def test_iv_round_trip_put(self):
        price = bs_price(S, K, T, r, sigma, False, q)
        assert abs(implied_vol(price, S, K, T, r, False, q) - sigma) < 1e-6

    @pytest.mark.parametrize("test_sigma", [0.05, 0.10, 0.25, 0.50, 1.0, 2.0, 2.9])
    def test_iv_round_trip_various_vols(self, test_sigma):
        """At the money the solver recovers any vol in (0, 3)."""
        price = bs_price(100.0, 100.0, 0.5, 0.043, test_sigma, True)
        assert abs(implied_vol(price, 100.0, 100.0, 0.5, 0.043, True) - test_sigma) < 1e-6

    def test_iv_round_trip_otm(self):
        for K_test in [500, 550, 650, 700]:
            is_call = K_test > S
            price = bs_price(S, K_test, T, r, 0.25, is_call, q)
            assert abs(implied_vol(price, S, K_test, T, r, is_call, q) - 0.25) < 1e-4

    def test_deterministic(self):
        price = bs_price(S, 640.0, T, r, 0.31, True, q)
        runs = {implied_vol(price, S, 640.0, T, r, True, q) for _ in range(5)}
        assert len(runs) == 1

    @pytest.mark.parametrize("args", [
        (0.0, S, K, T, r),       # zero price
        (-5.0, S, K, T, r),      # negative price
        (10.0, S, K, 0.0, r),    # expired
        (10.0, 0.0, K, T, r),    # zero spot
        (10.0, S, 0.0, T, r),    # zero strike
        (float("nan"), S, K, T, r),
        (10.0, S, K, float("inf"), r),
    ])
    def test_invalid_inputs(self, args):
        with pytest.raises(InvalidInputError):
            implied_vol(*args)

    def test_invalid_input_is_value_error(self):
        with pytest.raises(ValueError):
            implied_vol(-1.0, S, K, T, r)

    def test_vanishing_vega(self):
        """Far OTM, a few days out: the Newton step is meaningless."""
        with pytest.raises(NonConvergenceError):
            implied_vol(0.01, 100.0, 300.0, 0.01, 0.0, True, initial_guess=0.05)

    def test_iteration_budget(self):
        price = bs_price(S, K, T, r, 0.9, True)
        with pytest.raises(NonConvergenceError):
            implied_vol(price, S, K, T, r, True, max_iter=1)

    def test_errors_share_base(self):
        assert issubclass(NonConvergenceError, VolSurfaceError)
        assert issubclass(InvalidInputError, VolSurfaceError)
