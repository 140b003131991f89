"""
Tests for quote sources and vendor frame translation.
"""

import json
from datetime import datetime, timezone

import pytest

from volstream.errors import InvalidInputError, SymbolParseError
from volstream.models import OptionType
from volstream.pipeline import PipelineConfig, VolSurfacePipeline
from volstream.sources import (
    FrameQuoteSource,
    StaticQuoteSource,
    SyntheticQuoteSource,
    quote_from_frame,
)

from conftest import make_quote


FRAME = {"T": "q", "S": "O:SPY310117C00600000", "bp": 12.1, "ap": 12.3,
         "t": "2031-01-10T15:00:00Z"}


class TestQuoteFromFrame:

    def test_basic(self):
        q = quote_from_frame(FRAME, 601.5)
        assert q.contract.underlying == "SPY"
        assert q.contract.option_type is OptionType.CALL
        assert q.contract.strike == 600.0
        assert q.mid_price == pytest.approx(12.2)
        assert q.underlying_price == 601.5
        assert q.timestamp == datetime(2031, 1, 10, 15, tzinfo=timezone.utc)

    def test_optional_fields(self):
        q = quote_from_frame(dict(FRAME, lp=12.0, v=250, oi=1800), 600.0)
        assert (q.last, q.volume, q.open_interest) == (12.0, 250, 1800)

    def test_json_text(self):
        assert quote_from_frame(json.dumps(FRAME), 600.0).contract.strike == 600.0

    def test_callable_spot(self):
        q = quote_from_frame(FRAME, lambda underlying: {"SPY": 599.0}[underlying])
        assert q.underlying_price == 599.0

    def test_epoch_millis(self):
        q = quote_from_frame(dict(FRAME, t=1_700_000_000_000), 600.0)
        assert q.timestamp.year == 2023

    def test_other_frame_types_ignored(self):
        assert quote_from_frame({"T": "t", "S": "SPY"}, 600.0) is None

    def test_bad_symbol(self):
        with pytest.raises(SymbolParseError):
            quote_from_frame(dict(FRAME, S="SPY"), 600.0)

    def test_bad_price(self):
        with pytest.raises(InvalidInputError):
            quote_from_frame(dict(FRAME, bp="n/a"), 600.0)

    def test_not_json(self):
        with pytest.raises(InvalidInputError):
            quote_from_frame("{nope", 600.0)

    def test_leftmost_decode_on_request(self):
        with pytest.raises(SymbolParseError):
            quote_from_frame(FRAME, 600.0, anchored=False)


class TestFrameQuoteSource:

    @pytest.mark.asyncio
    async def test_malformed_frames_dropped(self):
        frames = [FRAME, {"T": "q", "S": "garbage"}, "{bad json", {"T": "status"}, FRAME]
        source = FrameQuoteSource(frames, 600.0)
        quotes = [q async for q in source.stream()]
        assert len(quotes) == 2
        assert source.dropped == 2

    @pytest.mark.asyncio
    async def test_bad_volume_or_last_dropped(self):
        frames = [dict(FRAME, v="n/a"), dict(FRAME, lp=[1.0]), dict(FRAME, oi="-"),
                  dict(FRAME, t=1e300), FRAME]
        source = FrameQuoteSource(frames, 600.0)
        quotes = [q async for q in source.stream()]
        assert len(quotes) == 1
        assert source.dropped == 4

    @pytest.mark.asyncio
    async def test_unknown_underlying_dropped(self):
        source = FrameQuoteSource([FRAME], lambda underlying: {"QQQ": 500.0}[underlying])
        assert [q async for q in source.stream()] == []
        assert source.dropped == 1

    @pytest.mark.asyncio
    async def test_async_frames(self):
        async def feed():
            for _ in range(3):
                yield FRAME

        source = FrameQuoteSource(feed(), 600.0)
        assert len([q async for q in source.stream()]) == 3

    @pytest.mark.asyncio
    async def test_snapshot_is_initial(self):
        initial = [make_quote(100.0)]
        assert await FrameQuoteSource([], 100.0, initial=initial).snapshot() == initial


class TestStaticQuoteSource:

    @pytest.mark.asyncio
    async def test_replay(self):
        a, b = make_quote(100.0), make_quote(105.0)
        source = StaticQuoteSource([a], [b])
        assert await source.snapshot() == [a]
        assert [q async for q in source.stream()] == [b]


class TestSyntheticQuoteSource:

    @pytest.mark.asyncio
    async def test_snapshot_and_stream(self):
        source = SyntheticQuoteSource("SPY", spot=600.0, seed=7, tick=0.0,
                                      batch_size=5, max_batches=3)
        chain = await source.snapshot()
        assert len(chain) > 100
        streamed = [q async for q in source.stream()]
        assert 0 < len(streamed) <= 15

    @pytest.mark.asyncio
    async def test_drives_pipeline(self):
        source = SyntheticQuoteSource("SPY", spot=600.0, tick=0.0, max_batches=20)
        pipeline = VolSurfacePipeline("SPY", PipelineConfig(debounce_interval=0.0))
        stats = await pipeline.run(source)
        assert stats.accepted > 100
        update = pipeline.latest()
        assert update.shape[0] == 7
        assert not update.low_confidence
