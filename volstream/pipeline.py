"""
Streaming vol surface pipeline.

    source.snapshot() ──► initial grid ──► first publish
    source.stream() ──► QuoteChannel ──► compute ──► PublishBus ──► subscribers
                                             └──────► LatestSurface

The compute side is a single writer. For every quote it:

    1. drops expired contracts and non-positive mids
    2. solves the mid for implied vol (failures are counted, not raised)
    3. drops vols outside the [min_iv, max_iv] sanity band
    4. writes the vol into the working grid at (expiry date, strike cents)
    5. if the debounce interval has elapsed and the grid changed since the
       last publish, materializes a SurfaceUpdate and publishes it

When the quote stream goes quiet the compute task still wakes up when
the interval is due, so the last change is never held back indefinitely.

SurfaceAccumulator holds steps 1-5 with no asyncio in it; the clock is
injectable so the debounce behaviour can be tested without sleeping.
"""

import asyncio
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, List, Optional

from loguru import logger

from . import config
from .channels import LatestSurface, PublishBus, QuoteChannel, Subscription
from .errors import (
    AcquisitionTimeout,
    ChannelClosed,
    InvalidInputError,
    NoUsableQuotesError,
    NonConvergenceError,
)
from .models import ImpliedVolatility, OptionQuote, SurfaceUpdate, utcnow
from .surface import VolatilitySurface


@dataclass
class PipelineConfig:
    risk_free_rate: float = config.RISK_FREE_RATE
    dividend_yield: float = config.DIVIDEND_YIELD
    debounce_interval: float = config.DEBOUNCE_INTERVAL
    quote_capacity: int = config.QUOTE_CHANNEL_CAPACITY
    publish_capacity: int = config.PUBLISH_CAPACITY
    acquisition_timeout: float = config.ACQUISITION_TIMEOUT
    send_timeout: Optional[float] = config.SEND_TIMEOUT
    min_iv: float = config.MIN_IV
    max_iv: float = config.MAX_IV

    def __post_init__(self):
        if self.debounce_interval < 0:
            raise InvalidInputError(f"debounce_interval must be >= 0, got {self.debounce_interval}")
        if self.acquisition_timeout <= 0:
            raise InvalidInputError(f"acquisition_timeout must be > 0, got {self.acquisition_timeout}")
        if not (0 < self.min_iv < self.max_iv):
            raise InvalidInputError(f"bad IV band [{self.min_iv}, {self.max_iv}]")


@dataclass
class PipelineStats:
    received: int = 0
    accepted: int = 0
    expired: int = 0
    bad_price: int = 0
    solver_failed: int = 0
    out_of_band: int = 0
    send_timeouts: int = 0
    published: int = 0

    @property
    def rejected(self) -> int:
        return self.expired + self.bad_price + self.solver_failed + self.out_of_band


class SurfaceAccumulator:
    """
    Single-writer working grid plus the debounce timer.

    Parameters
    ----------
    symbol : underlying symbol
    cfg : PipelineConfig (defaults if omitted)
    clock : monotonic seconds; drives the debounce interval
    wall_clock : UTC "now" used for time to expiration
    """

    def __init__(self, symbol: str, cfg: PipelineConfig = None,
                 clock: Callable[[], float] = time.monotonic,
                 wall_clock: Callable[[], datetime] = utcnow):
        self.symbol = symbol
        self.config = cfg or PipelineConfig()
        self.clock = clock
        self.wall_clock = wall_clock
        self.surface: Optional[VolatilitySurface] = None
        self.stats = PipelineStats()
        self._dirty = False
        self._last_publish = clock()

    # ── steps 1-3 ────────────────────────────────────────────────────────

    def solve(self, quote: OptionQuote) -> Optional[ImpliedVolatility]:
        """Solved vol for ``quote``, or None if it was rejected."""
        self.stats.received += 1
        contract = quote.contract
        now = self.wall_clock()

        if contract.time_to_expiration(now) <= 0:
            self.stats.expired += 1
            logger.debug("{}: expired, skipping", contract.symbol)
            return None
        if not (quote.mid_price > 0):
            self.stats.bad_price += 1
            logger.debug("{}: mid {} not positive, skipping", contract.symbol, quote.mid_price)
            return None

        try:
            iv = ImpliedVolatility.from_quote(quote, self.config.risk_free_rate,
                                              self.config.dividend_yield, now)
        except (InvalidInputError, NonConvergenceError) as e:
            self.stats.solver_failed += 1
            logger.debug("{}: no implied vol ({})", contract.symbol, e)
            return None

        if not (self.config.min_iv <= iv.value <= self.config.max_iv):
            self.stats.out_of_band += 1
            logger.debug("{}: iv {:.4f} outside sanity band", contract.symbol, iv.value)
            return None
        return iv

    # ── step 4 ───────────────────────────────────────────────────────────

    def fold(self, iv: ImpliedVolatility) -> bool:
        """Write one solved vol into the working grid."""
        self.stats.accepted += 1
        if self.surface is None:
            self.surface = VolatilitySurface(self.symbol, [iv])
            changed = True
        else:
            changed = self.surface.set_value(iv.contract.expiration, iv.contract.strike, iv.value)
        self._dirty = self._dirty or changed
        return changed

    def ingest(self, quotes) -> int:
        """Solve and fold a batch without publishing; returns the accepted count."""
        accepted = 0
        for quote in quotes:
            iv = self.solve(quote)
            if iv is not None:
                self.fold(iv)
                accepted += 1
        return accepted

    # ── step 5 ───────────────────────────────────────────────────────────

    def on_quote(self, quote: OptionQuote) -> Optional[SurfaceUpdate]:
        iv = self.solve(quote)
        if iv is not None:
            self.fold(iv)
        return self.poll()

    def time_until_due(self) -> Optional[float]:
        """Seconds until a pending change may publish; None if nothing is pending."""
        if not self._dirty:
            return None
        elapsed = self.clock() - self._last_publish
        return max(self.config.debounce_interval - elapsed, 0.0)

    def poll(self) -> Optional[SurfaceUpdate]:
        """Publish if the interval has elapsed and the grid changed since the last one."""
        if not self._dirty:
            return None
        if self.clock() - self._last_publish < self.config.debounce_interval:
            return None
        return self._emit()

    def flush(self) -> Optional[SurfaceUpdate]:
        """Publish any pending change now, ignoring the interval."""
        if not self._dirty:
            return None
        return self._emit()

    def _emit(self) -> SurfaceUpdate:
        update = self.surface.to_update()
        self._dirty = False
        self._last_publish = self.clock()
        self.stats.published += 1
        return update


class VolSurfacePipeline:
    """
    Owns the quote channel, the publish bus and the latest-surface holder
    for one underlying. Single use: run() closes the bus when it returns.

    Usage
    -----
        pipeline = VolSurfacePipeline("SPY")
        sub = pipeline.subscribe()
        task = asyncio.create_task(pipeline.run(SyntheticQuoteSource()))
        async for update in sub:
            ...
    """

    def __init__(self, symbol: str, cfg: PipelineConfig = None,
                 clock: Callable[[], float] = time.monotonic,
                 wall_clock: Callable[[], datetime] = utcnow):
        self.symbol = symbol
        self.config = cfg or PipelineConfig()
        self.quotes = QuoteChannel(self.config.quote_capacity, self.config.send_timeout)
        self.bus = PublishBus(self.config.publish_capacity)
        self.latest_surface = LatestSurface()
        self.accumulator = SurfaceAccumulator(symbol, self.config, clock, wall_clock)
        self._stopping = False

    @property
    def stats(self) -> PipelineStats:
        return self.accumulator.stats

    def subscribe(self, capacity: int = None) -> Subscription:
        return self.bus.subscribe(capacity)

    def latest(self) -> Optional[SurfaceUpdate]:
        """Most recently published update, from any thread."""
        return self.latest_surface.get()

    def surface(self) -> Optional[VolatilitySurface]:
        """Read-only copy of the working grid."""
        if self.accumulator.surface is None:
            return None
        return self.accumulator.surface.snapshot()

    def stop(self) -> None:
        """Ask run() to wind down: the producer stops and pending changes are flushed."""
        self._stopping = True
        self.quotes.close_receiver()

    def _publish(self, update: SurfaceUpdate) -> None:
        self.latest_surface.swap(update)
        try:
            receivers = self.bus.publish(update)
        except ChannelClosed:
            logger.debug("publish bus closed, update v{} kept only as latest", update.version)
            return
        logger.debug("published v{} {}x{} to {} receivers",
                     update.version, *update.shape, receivers)

    def _publish_placeholder(self) -> None:
        self._publish(SurfaceUpdate.placeholder(self.symbol))

    # ── acquisition ──────────────────────────────────────────────────────

    async def acquire(self, source) -> List[OptionQuote]:
        """
        Initial chain pull, bounded by acquisition_timeout.

        On failure a low-confidence placeholder is published first, so
        consumers waiting on the bus are never left hanging.

        Raises
        ------
        AcquisitionTimeout : the source did not answer in time
        NoUsableQuotesError : the source answered with nothing
        """
        timeout = self.config.acquisition_timeout
        try:
            quotes = await asyncio.wait_for(source.snapshot(), timeout)
        except asyncio.TimeoutError:
            logger.error("{}: initial chain not received within {}s", self.symbol, timeout)
            self._publish_placeholder()
            raise AcquisitionTimeout(f"{self.symbol}: no chain within {timeout}s") from None

        if not quotes:
            logger.error("{}: initial chain is empty", self.symbol)
            self._publish_placeholder()
            raise NoUsableQuotesError(f"{self.symbol}: empty option chain")
        logger.info("{}: acquired {} quotes", self.symbol, len(quotes))
        return list(quotes)

    # ── tasks ────────────────────────────────────────────────────────────

    async def _produce(self, source) -> None:
        sent = 0
        try:
            async for quote in source.stream():
                if self._stopping:
                    break
                try:
                    await self.quotes.send(quote)
                except asyncio.TimeoutError:
                    self.stats.send_timeouts += 1
                    logger.warning("quote channel full, dropping {}", quote.contract.symbol)
                    continue
                sent += 1
        except ChannelClosed:
            logger.info("{}: compute side gone, producer stopping", self.symbol)
        finally:
            self.quotes.close_sender()
            logger.debug("{}: producer done after {} quotes", self.symbol, sent)

    async def _compute(self) -> None:
        acc = self.accumulator
        while True:
            try:
                quote = await self.quotes.recv(timeout=acc.time_until_due())
            except ChannelClosed:
                return
            if quote is None:
                update = acc.poll()
            else:
                update = acc.on_quote(quote)
            if update is not None:
                self._publish(update)

    async def run(self, source) -> PipelineStats:
        """
        Acquire, publish the initial surface, then stream until the source
        is exhausted or stop() is called.

        Raises
        ------
        AcquisitionTimeout, NoUsableQuotesError : see acquire()
        NoUsableQuotesError : the run ended without a single usable vol
        """
        try:
            initial = await self.acquire(source)
            accepted = self.accumulator.ingest(initial)
            logger.info("{}: {} of {} initial quotes usable",
                        self.symbol, accepted, len(initial))

            update = self.accumulator.flush()
            if update is not None:
                self._publish(update)
            else:
                self._publish_placeholder()

            producer = asyncio.create_task(self._produce(source))
            try:
                await self._compute()
            finally:
                self.quotes.close_receiver()
                if not producer.done():
                    producer.cancel()
                results = await asyncio.gather(producer, return_exceptions=True)

            update = self.accumulator.flush()
            if update is not None:
                self._publish(update)

            error = results[0]
            if isinstance(error, Exception):
                raise error

            if self.accumulator.surface is None:
                self._publish_placeholder()
                raise NoUsableQuotesError(f"{self.symbol}: no quote produced a usable vol")

            s = self.stats
            logger.info("{}: done. received={} accepted={} rejected={} published={}",
                        self.symbol, s.received, s.accepted, s.rejected, s.published)
            return s
        finally:
            self.bus.close()
