"""
Quote sources: where the pipeline's initial chain and live quotes come from.

A source answers two questions:

    snapshot()  -> the full chain right now (one shot, awaited with a timeout)
    stream()    -> an async iterator of subsequent quotes

Three implementations:
    StaticQuoteSource     in-memory lists, for tests and replay
    FrameQuoteSource      vendor-style quote frames ({"T": "q", "S": ...})
    SyntheticQuoteSource  SVI model chain plus a random-walk re-quote stream

Network transports are out of scope; FrameQuoteSource takes whatever
iterable of frames the caller's connection produces.
"""

import asyncio
import json
import math
from datetime import datetime, timezone
from typing import AsyncIterator, Callable, Iterable, List, Optional, Protocol, Union

import numpy as np
from loguru import logger

from . import config
from .errors import InvalidInputError, SymbolParseError
from .models import OptionQuote, utcnow
from .occ import decode
from .svi import default_expirations, default_strikes, generate_chain, list_contracts, quote_contract


class QuoteSource(Protocol):
    async def snapshot(self) -> List[OptionQuote]:
        ...

    def stream(self) -> AsyncIterator[OptionQuote]:
        ...


# ════════════════════════════════════════════════════════════════════════
#  STATIC
# ════════════════════════════════════════════════════════════════════════

class StaticQuoteSource:
    """
    Replays fixed lists.

    Parameters
    ----------
    initial : quotes returned by snapshot()
    updates : quotes yielded by stream(), in order
    snapshot_delay : seconds snapshot() sleeps first (None sleeps forever)
    delay : seconds between streamed quotes
    """

    def __init__(self, initial: Iterable[OptionQuote] = (),
                 updates: Iterable[OptionQuote] = (),
                 snapshot_delay: Optional[float] = 0.0, delay: float = 0.0):
        self.initial = list(initial)
        self.updates = list(updates)
        self.snapshot_delay = snapshot_delay
        self.delay = delay

    async def snapshot(self) -> List[OptionQuote]:
        if self.snapshot_delay is None:
            await asyncio.Event().wait()
        elif self.snapshot_delay > 0:
            await asyncio.sleep(self.snapshot_delay)
        return list(self.initial)

    async def stream(self) -> AsyncIterator[OptionQuote]:
        for quote in self.updates:
            if self.delay:
                await asyncio.sleep(self.delay)
            yield quote


# ════════════════════════════════════════════════════════════════════════
#  VENDOR FRAMES
# ════════════════════════════════════════════════════════════════════════

def _parse_timestamp(raw) -> datetime:
    """RFC 3339 strings or epoch numbers (s, ms or ns by magnitude)."""
    if raw is None:
        return utcnow()
    if isinstance(raw, (int, float)):
        value = float(raw)
        if value > 1e17:
            value /= 1e9
        elif value > 1e11:
            value /= 1e3
        try:
            return datetime.fromtimestamp(value, tz=timezone.utc)
        except (OverflowError, OSError, ValueError) as e:
            raise InvalidInputError(f"bad timestamp {raw!r}") from e
    text = str(raw)
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        ts = datetime.fromisoformat(text)
    except ValueError as e:
        raise InvalidInputError(f"bad timestamp {raw!r}") from e
    return ts if ts.tzinfo else ts.replace(tzinfo=timezone.utc)


def quote_from_frame(frame: Union[dict, str, bytes],
                     underlying_price: Union[float, Callable[[str], float]],
                     anchored: bool = True) -> Optional[OptionQuote]:
    """
    Translate one vendor frame into a quote.

    Frames look like {"T": "q", "S": "O:SPY250117C00600000", "bp": 1.2,
    "ap": 1.3, "t": "2025-01-10T15:00:00Z"}, with optional "lp", "v" and
    "oi" (last price, volume, open interest). Frames of another type
    (trades, status messages) return None.

    ``underlying_price`` may be a callable taking the underlying symbol.

    Raises
    ------
    SymbolParseError : "S" is not an OCC symbol
    InvalidInputError : missing/invalid prices or timestamp, or not JSON
    """
    if isinstance(frame, (str, bytes)):
        try:
            frame = json.loads(frame)
        except ValueError as e:
            raise InvalidInputError(f"frame is not JSON: {e}") from e
    if not isinstance(frame, dict):
        raise InvalidInputError(f"frame must be an object, got {type(frame).__name__}")
    if frame.get("T") != "q":
        return None

    symbol = frame.get("S")
    if not symbol:
        raise InvalidInputError("quote frame has no symbol")
    contract = decode(symbol, anchored=anchored)

    try:
        bid = float(frame.get("bp", 0.0))
        ask = float(frame.get("ap", 0.0))
        last = float(frame.get("lp", 0.0) or 0.0)
        volume = int(frame.get("v", 0) or 0)
        open_interest = int(frame.get("oi", 0) or 0)
    except (OverflowError, TypeError, ValueError) as e:
        raise InvalidInputError(f"bad prices or volume in frame for {symbol}: {e}") from e
    if not (math.isfinite(bid) and math.isfinite(ask)):
        raise InvalidInputError(f"non-finite prices in frame for {symbol}")
    try:
        if callable(underlying_price):
            spot = float(underlying_price(contract.underlying))
        else:
            spot = float(underlying_price)
    except (KeyError, TypeError, ValueError) as e:
        raise InvalidInputError(f"no usable spot for {contract.underlying}: {e}") from e

    return OptionQuote(
        contract=contract,
        bid=bid,
        ask=ask,
        last=last,
        volume=volume,
        open_interest=open_interest,
        underlying_price=spot,
        timestamp=_parse_timestamp(frame.get("t")),
    )


class FrameQuoteSource:
    """
    Quotes decoded from vendor frames.

    Parameters
    ----------
    frames : sync or async iterable of frames (dicts or JSON text)
    underlying_price : spot level, or a callable taking the underlying
                       symbol and returning its current price
    initial : chain returned by snapshot(), typically a REST pull made
              by the caller before the socket was opened
    anchored : decode symbols from the fixed-width suffix (default); the
               leftmost scan misreads tickers such as SPY or CSCO

    Malformed frames are logged and skipped; ``dropped`` counts them.
    """

    def __init__(self, frames, underlying_price: Union[float, Callable[[str], float]],
                 initial: Iterable[OptionQuote] = (), anchored: bool = True):
        self.frames = frames
        self.underlying_price = underlying_price
        self.initial = list(initial)
        self.anchored = anchored
        self.dropped = 0

    def translate(self, frame) -> Optional[OptionQuote]:
        try:
            return quote_from_frame(frame, self.underlying_price, anchored=self.anchored)
        except (SymbolParseError, InvalidInputError) as e:
            self.dropped += 1
            logger.warning("dropping frame: {}", e)
            return None

    async def snapshot(self) -> List[OptionQuote]:
        return list(self.initial)

    async def stream(self) -> AsyncIterator[OptionQuote]:
        if hasattr(self.frames, "__aiter__"):
            async for frame in self.frames:
                quote = self.translate(frame)
                if quote is not None:
                    yield quote
        else:
            for frame in self.frames:
                quote = self.translate(frame)
                if quote is not None:
                    yield quote
                # let the consumer run between frames of a plain iterable
                await asyncio.sleep(0)


# ════════════════════════════════════════════════════════════════════════
#  SYNTHETIC
# ════════════════════════════════════════════════════════════════════════

class SyntheticQuoteSource:
    """
    Offline, reproducible market.

    snapshot() is a full SVI chain. stream() then random-walks the spot
    and re-quotes a random batch of listed contracts every ``tick``
    seconds, forever unless ``max_batches`` is given.

    Parameters
    ----------
    underlying : symbol (default: config.TICKER)
    spot : starting spot (default: config.SPOT)
    seed : random seed (default: config.SEED)
    tick : seconds between batches (default: config.SYNTHETIC_TICK)
    batch_size : contracts re-quoted per batch (default: config.SVI_BATCH_SIZE)
    max_batches : stop after this many batches (None = unbounded)
    """

    def __init__(self, underlying: str = None, spot: float = None, seed: int = None,
                 tick: float = None, batch_size: int = None,
                 max_batches: Optional[int] = None, r: float = None):
        self.underlying = underlying or config.TICKER
        self.spot = config.SPOT if spot is None else spot
        self.seed = config.SEED if seed is None else seed
        self.tick = config.SYNTHETIC_TICK if tick is None else tick
        self.batch_size = batch_size or config.SVI_BATCH_SIZE
        self.max_batches = max_batches
        self.r = config.RISK_FREE_RATE if r is None else r
        self._rng = np.random.RandomState(self.seed)
        self._contracts = []

    async def snapshot(self) -> List[OptionQuote]:
        now = utcnow()
        expirations = default_expirations(now)
        strikes = default_strikes(self.spot)
        self._contracts = list_contracts(self.underlying, self.spot, expirations, strikes)
        quotes = generate_chain(self.underlying, self.spot, now, expirations, strikes,
                                self.r, self.seed)
        logger.info("synthetic chain: {} quotes over {} expirations, spot={:.2f}",
                    len(quotes), len(expirations), self.spot)
        return quotes

    async def stream(self) -> AsyncIterator[OptionQuote]:
        if not self._contracts:
            now = utcnow()
            self._contracts = list_contracts(self.underlying, self.spot,
                                             default_expirations(now),
                                             default_strikes(self.spot))
        batches = 0
        while self.max_batches is None or batches < self.max_batches:
            await asyncio.sleep(self.tick)
            self.spot *= math.exp(self._rng.normal(0, config.SVI_SPOT_STEP_STD))
            now = utcnow()
            picks = self._rng.choice(len(self._contracts),
                                     size=min(self.batch_size, len(self._contracts)),
                                     replace=False)
            for i in picks:
                quote = quote_contract(self._contracts[i], self.spot, now, self._rng, self.r)
                if quote is not None:
                    yield quote
            batches += 1
