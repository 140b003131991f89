"""
OCC-style option symbols.

Format:   {UNDERLYING}{YY}{MM}{DD}{C/P}{strike*1000:08d}
Example:  AAPL250117C00145000   (AAPL, 2025-01-17, call, strike 145.00)

decode() finds the type marker by scanning from the left, which breaks on
any underlying containing a 'C' or 'P' (CSCO, SPY, AAPL, ...): the ticker
letter is taken as the marker and the symbol is misread or rejected. Pass
anchored=True to read the fixed-width 15-char suffix instead.
"""

from datetime import date

from .errors import InvalidInputError, SymbolParseError
from .models import OptionContract, OptionType, expiry_instant

DATE_WIDTH = 6
STRIKE_WIDTH = 8
STRIKE_SCALE = 1000
MAX_SCALED_STRIKE = 10**STRIKE_WIDTH - 1
SUFFIX_WIDTH = DATE_WIDTH + 1 + STRIKE_WIDTH
VENDOR_PREFIX = "O:"


def encode(underlying: str, option_type, strike: float, expiration) -> str:
    """
    Build the canonical symbol.

    Raises
    ------
    InvalidInputError : scaled strike does not fit in 8 digits
    """
    scaled = int(round(strike * STRIKE_SCALE))
    if scaled < 0 or scaled > MAX_SCALED_STRIKE:
        raise InvalidInputError(
            f"strike {strike} does not fit the {STRIKE_WIDTH}-digit strike field"
        )
    marker = OptionType(option_type).marker
    return f"{underlying}{expiration:%y%m%d}{marker}{scaled:0{STRIKE_WIDTH}d}"


def _parse_date(field: str, symbol: str) -> date:
    if len(field) != DATE_WIDTH or not (field.isascii() and field.isdigit()):
        raise SymbolParseError(f"bad date field {field!r} in {symbol!r}")
    year, month, day = 2000 + int(field[:2]), int(field[2:4]), int(field[4:6])
    try:
        return date(year, month, day)
    except ValueError as e:
        raise SymbolParseError(f"invalid expiration {field!r} in {symbol!r}: {e}") from e


def _parse_strike(field: str, symbol: str) -> float:
    if not field or not (field.isascii() and field.isdigit()):
        raise SymbolParseError(f"bad strike field {field!r} in {symbol!r}")
    return int(field) / STRIKE_SCALE


def decode(symbol: str, anchored: bool = False) -> OptionContract:
    """
    Parse a symbol back into a contract expiring 16:00:00 UTC.

    Parameters
    ----------
    symbol : OCC-style symbol, optionally with the 'O:' vendor prefix
    anchored : read date/type/strike from the fixed-width suffix rather
               than scanning for the first 'C' or 'P'

    Raises
    ------
    SymbolParseError : missing marker, short fields, non-numeric strike,
                       or a date that is not on the calendar
    """
    body = symbol[len(VENDOR_PREFIX):] if symbol.startswith(VENDOR_PREFIX) else symbol

    if anchored:
        if len(body) <= SUFFIX_WIDTH:
            raise SymbolParseError(f"{symbol!r} is too short for an OCC symbol")
        type_pos = len(body) - STRIKE_WIDTH - 1
        if body[type_pos] not in "CP":
            raise SymbolParseError(f"no C/P marker at position {type_pos} in {symbol!r}")
    else:
        positions = [i for i in (body.find("C"), body.find("P")) if i >= 0]
        if not positions:
            raise SymbolParseError(f"no C/P marker in {symbol!r}")
        type_pos = min(positions)

    if type_pos < DATE_WIDTH:
        raise SymbolParseError(f"date field too short in {symbol!r}")
    if type_pos + 1 >= len(body):
        raise SymbolParseError(f"missing strike field in {symbol!r}")

    underlying = body[:type_pos - DATE_WIDTH]
    expiry = _parse_date(body[type_pos - DATE_WIDTH:type_pos], symbol)
    option_type = OptionType.from_marker(body[type_pos])
    strike = _parse_strike(body[type_pos + 1:], symbol)
    if strike <= 0:
        raise SymbolParseError(f"zero strike in {symbol!r}")

    return OptionContract(underlying, option_type, strike, expiry_instant(expiry))


def is_occ_symbol(symbol: str, anchored: bool = False) -> bool:
    try:
        decode(symbol, anchored=anchored)
    except SymbolParseError:
        return False
    return True
