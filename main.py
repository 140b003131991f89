#!/usr/bin/env python3
"""
main.py: run the streaming implied volatility surface pipeline.

Usage:
    python main.py                              # synthetic SPY for 10s
    python main.py --ticker QQQ --spot 520 --duration 30
    python main.py --json > updates.jsonl       # one published update per line
"""

import argparse
import asyncio
import json
import sys
import time

import numpy as np
from loguru import logger

from volstream import config
from volstream.errors import VolSurfaceError
from volstream.log import setup_logging
from volstream.pipeline import PipelineConfig, VolSurfacePipeline
from volstream.sources import SyntheticQuoteSource
from volstream.surface import compute_surface_statistics


def parse_args(argv=None):
    p = argparse.ArgumentParser(description="Stream implied volatility surfaces.")
    p.add_argument("--ticker", type=str, default=None)
    p.add_argument("--spot", type=float, default=config.SPOT)
    p.add_argument("--duration", type=float, default=10.0,
                   help="seconds to stream before stopping")
    p.add_argument("--interval", type=float, default=config.DEBOUNCE_INTERVAL,
                   help="minimum seconds between published surfaces")
    p.add_argument("--tick", type=float, default=config.SYNTHETIC_TICK,
                   help="seconds between synthetic quote batches")
    p.add_argument("--seed", type=int, default=config.SEED)
    p.add_argument("--rate", type=float, default=config.RISK_FREE_RATE)
    p.add_argument("--json", action="store_true",
                   help="print each update as a JSON line instead of a summary")
    p.add_argument("--log-level", type=str, default=None)
    p.add_argument("--log-file", type=str, default=None)
    return p.parse_args(argv)


def _summary(update, pipeline, spot) -> str:
    surface = pipeline.surface()
    if update.is_empty or surface is None:
        return f"  v{update.version:<5} (no surface yet, low confidence)"

    stats = compute_surface_statistics(surface, spot)
    line = (f"  v{update.version:<5} {stats['n_expiries']}x{stats['n_strikes']}"
            f"  coverage {stats['coverage']:.0%}"
            f"  IV {stats['iv_range'][0]:.1%}-{stats['iv_range'][1]:.1%}")
    if not np.isnan(stats["atm_iv_mean"]):
        line += f"  ATM {stats['atm_iv_mean']:.1%}"
    if not np.isnan(stats["skew_proxy"]):
        line += f"  skew {stats['skew_proxy']:+.1%}"
    return line


async def _consume(sub, pipeline, args):
    async for update in sub:
        if args.json:
            print(json.dumps(update.to_dict()), flush=True)
        else:
            print(_summary(update, pipeline, args.spot), flush=True)
    if sub.lagged:
        logger.warning("console fell behind; {} updates skipped", sub.lagged)


async def run(args) -> int:
    ticker = args.ticker or config.TICKER
    cfg = PipelineConfig(risk_free_rate=args.rate, debounce_interval=args.interval)
    pipeline = VolSurfacePipeline(ticker, cfg)
    source = SyntheticQuoteSource(ticker, spot=args.spot, seed=args.seed, tick=args.tick)

    sub = pipeline.subscribe()
    consumer = asyncio.create_task(_consume(sub, pipeline, args))
    runner = asyncio.create_task(pipeline.run(source))

    done, _ = await asyncio.wait({runner}, timeout=args.duration)
    if not done:
        pipeline.stop()

    try:
        stats = await runner
    except VolSurfaceError as e:
        logger.error("pipeline failed: {}", e)
        return 1
    finally:
        await consumer

    if not args.json:
        print(f"\n  quotes {stats.received}  accepted {stats.accepted}  "
              f"rejected {stats.rejected}  published {stats.published}")
    return 0


def main():
    args = parse_args()
    setup_logging(args.log_level, args.log_file)
    ticker = args.ticker or config.TICKER

    if not args.json:
        print(f"\n{'='*60}")
        print(f"  Streaming Volatility Surface")
        print(f"  Ticker: {ticker}  |  Spot: {args.spot:.2f}  |  {args.duration:.0f}s")
        print(f"{'='*60}\n")

    t0 = time.time()
    try:
        code = asyncio.run(run(args))
    except KeyboardInterrupt:
        code = 130

    if not args.json:
        print(f"\n  Done in {time.time() - t0:.1f}s.\n")
    sys.exit(code)


if __name__ == "__main__":
    main()
