"""
Tests for the SVI-inspired synthetic chain.
"""

import math
from datetime import datetime, timezone

import numpy as np
import pytest

from volstream.black_scholes import implied_vol
from volstream.models import OptionType
from volstream.svi import (
    default_expirations,
    default_strikes,
    generate_chain,
    list_contracts,
    model_vol,
)


NOW = datetime(2030, 6, 3, 14, 30, tzinfo=timezone.utc)


class TestModel:

    def test_atm_level_realistic(self):
        assert 0.15 < model_vol(0.0, 0.25) < 0.25

    def test_negative_skew(self):
        """Lower strikes should have higher IV."""
        assert model_vol(-0.1, 0.1) > model_vol(0.1, 0.1)

    def test_skew_steeper_short_dated(self):
        short = model_vol(-0.1, 0.05) - model_vol(0.1, 0.05)
        long = model_vol(-0.1, 2.0) - model_vol(0.1, 2.0)
        assert short > long

    def test_term_structure_decays(self):
        assert model_vol(0.0, 0.05) > model_vol(0.0, 2.0)


class TestGrid:

    def test_strikes_within_bound(self):
        strikes = default_strikes(600.0)
        assert np.all(np.abs(np.log(strikes / 600.0)) <= 0.25)
        assert np.allclose(np.diff(strikes), 5.0)

    def test_expirations_at_1600_utc(self):
        exps = default_expirations(NOW, (7, 30))
        assert [e.hour for e in exps] == [16, 16]
        assert exps[0].date().isoformat() == "2030-06-10"

    def test_otm_side_only(self):
        contracts = list_contracts("SPY", 600.0, default_expirations(NOW, (30,)), [590.0, 600.0, 610.0])
        assert [c.option_type for c in contracts] == [OptionType.PUT, OptionType.CALL, OptionType.CALL]


class TestChain:

    def test_generates_quotes(self):
        quotes = generate_chain("SPY", 600.0, NOW, seed=42)
        assert len(quotes) > 100
        assert all(q.bid < q.ask for q in quotes)
        assert all(q.underlying_price == 600.0 for q in quotes)

    def test_reproducibility(self):
        a = generate_chain("SPY", 600.0, NOW, seed=123)
        b = generate_chain("SPY", 600.0, NOW, seed=123)
        assert [q.bid for q in a] == [q.bid for q in b]

    def test_different_seeds_differ(self):
        a = generate_chain("SPY", 600.0, NOW, seed=1)
        b = generate_chain("SPY", 600.0, NOW, seed=2)
        assert [q.bid for q in a] != [q.bid for q in b]

    def test_mids_invert_near_model(self):
        """Solving the quoted mid lands close to the model vol."""
        quotes = generate_chain("SPY", 600.0, NOW, seed=42)
        for q in quotes[::25]:
            c = q.contract
            T = (c.expiration - NOW).total_seconds() / (365 * 24 * 3600)
            iv = implied_vol(q.mid_price, 600.0, c.strike, T, 0.043, c.is_call)
            assert iv == pytest.approx(model_vol(math.log(c.strike / 600.0), T), abs=0.02)
