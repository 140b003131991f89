"""
Shared test fixtures and pytest configuration.
"""

from datetime import date, datetime, timedelta

import numpy as np
import pytest
from loguru import logger

from volstream.black_scholes import bs_price
from volstream.models import (
    ImpliedVolatility,
    OptionContract,
    OptionQuote,
    OptionType,
    expiry_instant,
    utcnow,
    year_fraction,
)


@pytest.fixture(autouse=True)
def set_random_seed():
    """Ensure test reproducibility."""
    np.random.seed(42)
    yield


@pytest.fixture(autouse=True)
def quiet_logs():
    """Per-quote debug lines are noise in test output."""
    logger.remove()
    yield


def future_expiry(days: int) -> datetime:
    return expiry_instant((utcnow() + timedelta(days=days)).date())


def make_contract(strike=100.0, expiration=None, option_type=OptionType.CALL,
                  underlying="SPY") -> OptionContract:
    if expiration is None:
        expiration = future_expiry(30)
    return OptionContract(underlying, option_type, strike, expiration)


def make_iv(strike: float, expiration, value: float, underlying="SPY") -> ImpliedVolatility:
    """A solved vol without going through the solver."""
    if isinstance(expiration, date) and not isinstance(expiration, datetime):
        expiration = expiry_instant(expiration)
    contract = OptionContract(underlying, OptionType.CALL, strike, expiration)
    return ImpliedVolatility(
        contract=contract,
        value=value,
        underlying_price=strike,
        option_price=1.0,
        time_to_expiration=0.1,
        delta=0.5,
        vega=10.0,
    )


def make_quote(strike=100.0, expiration=None, sigma=0.25, spot=100.0, r=0.043,
               option_type=OptionType.CALL, spread=0.01, now=None) -> OptionQuote:
    """A quote whose mid is the Black-Scholes price at ``sigma``."""
    contract = make_contract(strike, expiration, option_type)
    now = utcnow() if now is None else now
    T = year_fraction(now, contract.expiration)
    price = bs_price(spot, strike, T, r, sigma, contract.is_call) if T > 0 else 1.0
    return OptionQuote(contract=contract, bid=price - spread / 2, ask=price + spread / 2,
                       underlying_price=spot, timestamp=now)


class FakeClock:
    """Monotonic clock the test advances by hand."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()
