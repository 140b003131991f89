"""
Tests for OCC symbol encoding and decoding.

Covers: canonical format, round trips, malformed fields, the leftmost
marker scan on C/P underlyings, and the anchored suffix decode.
"""

from datetime import date, datetime, timezone

import pytest

from volstream.errors import InvalidInputError, SymbolParseError
from volstream.models import OptionContract, OptionType, expiry_instant
from volstream.occ import decode, encode, is_occ_symbol


EXPIRY = datetime(2025, 1, 17, 16, 0, tzinfo=timezone.utc)


class TestEncode:

    def test_canonical_call(self):
        assert encode("AAPL", OptionType.CALL, 145.0, EXPIRY) == "AAPL250117C00145000"

    def test_canonical_put_fractional_strike(self):
        assert encode("SPY", OptionType.PUT, 602.5, EXPIRY) == "SPY250117P00602500"

    def test_contract_symbol_property(self):
        contract = OptionContract("AAPL", OptionType.CALL, 145.0, EXPIRY)
        assert contract.symbol == "AAPL250117C00145000"

    def test_strike_overflow(self):
        """Eight digits at 1/1000 resolution caps strikes below 100,000."""
        with pytest.raises(InvalidInputError):
            encode("BRK", OptionType.CALL, 100000.0, EXPIRY)

    def test_largest_strike_fits(self):
        assert encode("X", OptionType.CALL, 99999.999, EXPIRY).endswith("C99999999")

    @pytest.mark.parametrize("strike", [100000.0, 150000.0, 0.0004])
    def test_contract_rejects_unencodable_strike(self, strike):
        """A contract that exists always has a symbol."""
        with pytest.raises(InvalidInputError):
            OptionContract("BRK", OptionType.CALL, strike, EXPIRY)


class TestDecode:

    def test_basic(self):
        c = decode("AMZN250117C00145000")
        assert c.underlying == "AMZN"
        assert c.option_type is OptionType.CALL
        assert c.strike == 145.0
        assert c.expiration == EXPIRY

    def test_expiration_is_1600_utc(self):
        c = decode("QQQ250321P00500000")
        assert c.expiration.hour == 16
        assert c.expiration.tzinfo is not None
        assert c.expiration.utcoffset().total_seconds() == 0

    def test_vendor_prefix_stripped(self):
        assert decode("O:QQQ250117P00600000") == decode("QQQ250117P00600000")

    @pytest.mark.parametrize("expiry", [
        date(2025, 1, 17),
        date(2024, 12, 31),
        date(2025, 1, 1),
        date(2024, 2, 29),
        date(2030, 11, 30),
    ])
    @pytest.mark.parametrize("opt", [OptionType.CALL, OptionType.PUT])
    @pytest.mark.parametrize("underlying,strike", [
        ("AMZN", 145.0),
        ("IWM", 202.5),
        ("QQQ", 0.5),
        ("TSLA", 1234.125),
        ("XYZ", 99999.999),
    ])
    def test_round_trip(self, underlying, strike, opt, expiry):
        contract = OptionContract(underlying, opt, strike, expiry_instant(expiry))
        assert decode(contract.symbol) == contract

    def test_five_char_date_rejected(self):
        with pytest.raises(SymbolParseError):
            decode("AMZN25011C00145000")

    def test_no_marker(self):
        with pytest.raises(SymbolParseError):
            decode("AMZN25011700145000")

    def test_non_numeric_strike(self):
        with pytest.raises(SymbolParseError):
            decode("AMZN250117C00ABC000")

    def test_missing_strike(self):
        with pytest.raises(SymbolParseError):
            decode("AMZN250117C")

    def test_zero_strike(self):
        with pytest.raises(SymbolParseError):
            decode("AMZN250117C00000000")

    def test_impossible_date(self):
        with pytest.raises(SymbolParseError):
            decode("AMZN250230C00145000")

    def test_is_occ_symbol(self):
        assert is_occ_symbol("AMZN250117C00145000")
        assert not is_occ_symbol("AMZN")


class TestMarkerInUnderlying:
    """Underlyings containing 'C' or 'P' ahead of the date."""

    @pytest.mark.parametrize("symbol", [
        "CSCO250117C00050000",
        "SPY250117P00600000",
        "AAPL250117C00145000",
    ])
    def test_leftmost_scan_misreads(self, symbol):
        # the first C/P inside the ticker is taken as the marker
        with pytest.raises(SymbolParseError):
            decode(symbol)

    @pytest.mark.parametrize("symbol,underlying", [
        ("CSCO250117C00050000", "CSCO"),
        ("SPY250117P00600000", "SPY"),
        ("AAPL250117C00145000", "AAPL"),
    ])
    def test_anchored_reads_suffix(self, symbol, underlying):
        assert decode(symbol, anchored=True).underlying == underlying

    def test_anchored_decodes_cisco(self):
        c = decode("CSCO250117C00050000", anchored=True)
        assert c.underlying == "CSCO"
        assert c.option_type is OptionType.CALL
        assert c.strike == 50.0
        assert c.expiry_date == date(2025, 1, 17)

    def test_anchored_round_trip(self):
        contract = OptionContract("PEP", OptionType.PUT, 150.0, EXPIRY)
        assert decode(contract.symbol, anchored=True) == contract

    def test_anchored_agrees_on_plain_symbols(self):
        s = "AMZN250117C00145000"
        assert decode(s, anchored=True) == decode(s)

    def test_anchored_too_short(self):
        with pytest.raises(SymbolParseError):
            decode("250117C00145000", anchored=True)
