"""
Domain records: contracts, quotes, solved vols, grid keys, published updates.

Contracts and solved vols are immutable. A SurfaceUpdate is what leaves
the pipeline; it is a plain projection of the grid and knows nothing
about how the Surface Store holds its matrix.
"""

import math
from dataclasses import dataclass, field
from datetime import date, datetime, time, timezone
from enum import Enum
from typing import NamedTuple, Optional, Tuple

from . import config
from .black_scholes import delta, implied_vol, vega
from .errors import InvalidInputError


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(dt: datetime) -> datetime:
    """Naive datetimes are taken to be UTC already."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def expiry_instant(d: date) -> datetime:
    """Calendar expiry date -> 16:00:00 UTC on that day."""
    return datetime.combine(d, time(config.EXPIRY_HOUR_UTC), tzinfo=timezone.utc)


def year_fraction(t0: datetime, t1: datetime) -> float:
    """Seconds between two instants as a fraction of a 365-day year."""
    return (t1 - t0).total_seconds() / config.SECONDS_PER_YEAR


class OptionType(str, Enum):
    CALL = "call"
    PUT = "put"

    @property
    def marker(self) -> str:
        """Single-letter OCC marker."""
        return "C" if self is OptionType.CALL else "P"

    @classmethod
    def from_marker(cls, marker: str) -> "OptionType":
        m = marker.strip().lower()
        if m in ("c", "call"):
            return cls.CALL
        if m in ("p", "put"):
            return cls.PUT
        raise ValueError(f"Unknown option type: {marker}. Use 'call' or 'put'.")


@dataclass(frozen=True)
class OptionContract:
    """
    A listed option. ``symbol`` is derived from the other four fields and
    cannot be set independently.
    """

    underlying: str
    option_type: OptionType
    strike: float
    expiration: datetime

    def __post_init__(self):
        if not (self.strike > 0) or not math.isfinite(self.strike):
            raise InvalidInputError(f"strike must be positive, got {self.strike}")
        from .occ import MAX_SCALED_STRIKE, STRIKE_SCALE
        if not 1 <= round(self.strike * STRIKE_SCALE) <= MAX_SCALED_STRIKE:
            raise InvalidInputError(f"strike {self.strike} has no OCC encoding")
        object.__setattr__(self, "option_type", OptionType(self.option_type))
        object.__setattr__(self, "expiration", as_utc(self.expiration))

    @property
    def symbol(self) -> str:
        from .occ import encode
        return encode(self.underlying, self.option_type, self.strike, self.expiration)

    @property
    def is_call(self) -> bool:
        return self.option_type is OptionType.CALL

    @property
    def expiry_date(self) -> date:
        return self.expiration.date()

    def time_to_expiration(self, now: Optional[datetime] = None) -> float:
        """Years until expiration; 0.0 once expired."""
        now = utcnow() if now is None else as_utc(now)
        if now >= self.expiration:
            return 0.0
        return year_fraction(now, self.expiration)


@dataclass(frozen=True)
class OptionQuote:
    contract: OptionContract
    bid: float
    ask: float
    last: float = 0.0
    volume: int = 0
    open_interest: int = 0
    underlying_price: float = 0.0
    timestamp: datetime = field(default_factory=utcnow)

    @property
    def mid_price(self) -> float:
        return (self.bid + self.ask) / 2


@dataclass(frozen=True)
class ImpliedVolatility:
    """One solved vol. Not kept once it has been folded into a surface."""

    contract: OptionContract
    value: float
    underlying_price: float
    option_price: float
    time_to_expiration: float
    delta: float
    vega: float

    @classmethod
    def from_quote(cls, quote: OptionQuote, risk_free_rate: float,
                   dividend_yield: float = 0.0,
                   now: Optional[datetime] = None) -> "ImpliedVolatility":
        """
        Solve a quote's mid price for vol and attach delta/vega at that vol.

        The dividend yield is folded into the rate (r - q) before solving.

        Raises
        ------
        InvalidInputError : expired contract, non-positive mid, bad spot
        NonConvergenceError : solver gave up
        """
        contract = quote.contract
        T = contract.time_to_expiration(now)
        if T <= 0:
            raise InvalidInputError(f"{contract.symbol} is expired")

        price = quote.mid_price
        if not (price > 0):
            raise InvalidInputError(f"{contract.symbol} mid price {price} is not positive")

        S = quote.underlying_price
        K = contract.strike
        r = risk_free_rate - dividend_yield
        sigma = implied_vol(price, S, K, T, r, contract.is_call)

        return cls(
            contract=contract,
            value=sigma,
            underlying_price=S,
            option_price=price,
            time_to_expiration=T,
            delta=delta(S, K, T, r, sigma, contract.is_call),
            vega=vega(S, K, T, r, sigma),
        )


# ════════════════════════════════════════════════════════════════════════
#  GRID KEYS
# ════════════════════════════════════════════════════════════════════════

class GridKey(NamedTuple):
    """Canonical cell address shared by the surface and the pipeline."""

    strike_ticks: int
    expiry: date


def strike_to_ticks(strike: float) -> int:
    return int(round(strike * config.STRIKE_TICKS_PER_UNIT))


def ticks_to_strike(ticks: int) -> float:
    return ticks / config.STRIKE_TICKS_PER_UNIT


def to_expiry_date(expiration) -> date:
    """Accepts a date or a datetime; datetimes are read in UTC."""
    if isinstance(expiration, datetime):
        return as_utc(expiration).date()
    return expiration


def grid_key(strike: float, expiration) -> GridKey:
    return GridKey(strike_to_ticks(strike), to_expiry_date(expiration))


# ════════════════════════════════════════════════════════════════════════
#  PUBLISHED SNAPSHOT
# ════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class SurfaceUpdate:
    """
    Wire shape of one published surface.

    sigma is row-major: sigma[row * len(strikes) + col] is the vol at
    (expiries[row], strikes[col]); NaN where nothing has been solved.
    """

    strikes: Tuple[float, ...]
    expiries: Tuple[date, ...]
    sigma: Tuple[float, ...]
    symbol: str = ""
    version: int = 0
    timestamp: datetime = field(default_factory=utcnow)
    low_confidence: bool = False

    def __post_init__(self):
        object.__setattr__(self, "strikes", tuple(self.strikes))
        object.__setattr__(self, "expiries", tuple(self.expiries))
        object.__setattr__(self, "sigma", tuple(self.sigma))
        if len(self.sigma) != len(self.strikes) * len(self.expiries):
            raise InvalidInputError(
                f"sigma has {len(self.sigma)} values for a "
                f"{len(self.expiries)}x{len(self.strikes)} grid"
            )

    @classmethod
    def placeholder(cls, symbol: str = "") -> "SurfaceUpdate":
        """Empty, flagged update so consumers never wait forever."""
        return cls(strikes=(), expiries=(), sigma=(), symbol=symbol, low_confidence=True)

    @property
    def shape(self) -> Tuple[int, int]:
        return len(self.expiries), len(self.strikes)

    @property
    def is_empty(self) -> bool:
        return not self.sigma

    def value_at(self, row: int, col: int) -> float:
        return self.sigma[row * len(self.strikes) + col]

    def populated(self) -> int:
        return sum(1 for v in self.sigma if not math.isnan(v))

    def to_dict(self) -> dict:
        """JSON-safe form; NaN becomes None."""
        return {
            "symbol": self.symbol,
            "version": self.version,
            "timestamp": self.timestamp.isoformat(),
            "low_confidence": self.low_confidence,
            "strikes": list(self.strikes),
            "expiries": [d.isoformat() for d in self.expiries],
            "sigma": [None if math.isnan(v) else v for v in self.sigma],
        }
