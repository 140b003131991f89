"""
Surface store: the (expiration x strike) implied vol grid.

Unlike a batch interpolation onto a regular mesh, a live chain grows one
quote at a time. The store keeps the raw listed grid instead:

    1. Axes are the sorted unique expiry dates and strikes seen so far
    2. Cells are addressed by GridKey (strike in integer ticks, calendar
       date), the same key the pipeline uses, so float strikes never
       miss each other by an ulp
    3. Unknown cells are NaN
    4. update() grows the axes, copies every populated cell forward,
       then writes the new values; version/timestamp move only when
       something actually changed

Queries (interpolate, slices) never extrapolate and never fill gaps; they
raise and leave the surface as it was.

Exactly one writer owns a surface. Readers get snapshot() copies whose
arrays are read-only.
"""

import copy
import math
from bisect import bisect_right
from datetime import date, datetime
from typing import Dict, Iterable, Optional, Tuple

import numpy as np
import pandas as pd

from . import config
from .errors import DataGapError, InvalidInputError, NotFoundError, OutOfRangeError
from .models import (
    GridKey,
    ImpliedVolatility,
    SurfaceUpdate,
    as_utc,
    expiry_instant,
    grid_key,
    strike_to_ticks,
    ticks_to_strike,
    to_expiry_date,
    utcnow,
    year_fraction,
)


def _cells(ivs: Iterable[ImpliedVolatility]) -> Dict[GridKey, float]:
    """Collapse a batch to one value per cell; last one wins."""
    cells = {}
    for iv in ivs:
        cells[grid_key(iv.contract.strike, iv.contract.expiration)] = float(iv.value)
    return cells


class VolatilitySurface:
    """
    Implied vol grid for one underlying.

    Parameters
    ----------
    symbol : underlying symbol
    ivs : non-empty batch of solved vols to seed the grid with

    Attributes
    ----------
    version : bumped by exactly one per effective mutation (1 after construction)
    timestamp : UTC time of the last effective mutation
    """

    def __init__(self, symbol: str, ivs: Iterable[ImpliedVolatility]):
        cells = _cells(ivs)
        if not cells:
            raise InvalidInputError("cannot build a volatility surface from no data")

        self.symbol = symbol
        self.version = 0
        self.timestamp = utcnow()
        self._expiries = []
        self._strike_ticks = []
        self._exp_index = {}
        self._strike_index = {}
        self._vols = np.full((0, 0), np.nan)
        self._readonly = False
        self._apply(cells)

    # ── axes ─────────────────────────────────────────────────────────────

    @property
    def expiry_dates(self) -> Tuple[date, ...]:
        return tuple(self._expiries)

    @property
    def expirations(self) -> Tuple[datetime, ...]:
        """Expiration axis as 16:00 UTC instants."""
        return tuple(expiry_instant(d) for d in self._expiries)

    @property
    def strikes(self) -> np.ndarray:
        return np.array([ticks_to_strike(t) for t in self._strike_ticks], dtype=float)

    @property
    def volatilities(self) -> np.ndarray:
        """Read-only view of the (expirations, strikes) matrix."""
        view = self._vols.view()
        view.flags.writeable = False
        return view

    @property
    def shape(self) -> Tuple[int, int]:
        return self._vols.shape

    def __repr__(self):
        return (f"VolatilitySurface({self.symbol!r}, shape={self.shape}, "
                f"version={self.version})")

    # ── mutation ─────────────────────────────────────────────────────────

    def _apply(self, cells: Dict[GridKey, float]) -> bool:
        if self._readonly:
            raise TypeError("surface snapshots are read-only")

        new_exp = {k.expiry for k in cells} - set(self._exp_index)
        new_strikes = {k.strike_ticks for k in cells} - set(self._strike_index)
        changed = bool(new_exp or new_strikes)

        if changed:
            self._regrid(new_exp, new_strikes)

        for key, value in cells.items():
            i = self._exp_index[key.expiry]
            j = self._strike_index[key.strike_ticks]
            prev = self._vols[i, j]
            if math.isnan(prev) or abs(value - prev) > config.CHANGE_TOLERANCE:
                changed = True
            self._vols[i, j] = value

        if changed:
            self.version += 1
            self.timestamp = utcnow()
        return changed

    def _regrid(self, new_exp, new_strikes) -> None:
        """Grow both axes and carry every old cell to its new position."""
        old = self._vols
        old_exp, old_strikes = self._expiries, self._strike_ticks

        self._expiries = sorted(set(old_exp) | new_exp)
        self._strike_ticks = sorted(set(old_strikes) | new_strikes)
        self._exp_index = {d: i for i, d in enumerate(self._expiries)}
        self._strike_index = {t: j for j, t in enumerate(self._strike_ticks)}

        vols = np.full((len(self._expiries), len(self._strike_ticks)), np.nan)
        if old.size:
            rows = [self._exp_index[d] for d in old_exp]
            cols = [self._strike_index[t] for t in old_strikes]
            vols[np.ix_(rows, cols)] = old
        self._vols = vols

    def update(self, new_ivs: Iterable[ImpliedVolatility]) -> bool:
        """
        Merge a batch of solved vols into the grid.

        Returns True if the merge was effective: an axis grew, a NaN cell
        was filled, or a value moved by more than CHANGE_TOLERANCE.
        Re-submitting the same data is a no-op returning False.
        """
        cells = _cells(new_ivs)
        if not cells:
            return False
        return self._apply(cells)

    def set_value(self, expiration, strike: float, sigma: float) -> bool:
        """Single-cell update(); used by the pipeline's working grid."""
        return self._apply({grid_key(strike, expiration): float(sigma)})

    def snapshot(self) -> "VolatilitySurface":
        """Independent, read-only copy for handing to readers."""
        snap = copy.copy(self)
        snap._expiries = list(self._expiries)
        snap._strike_ticks = list(self._strike_ticks)
        snap._exp_index = dict(self._exp_index)
        snap._strike_index = dict(self._strike_index)
        snap._vols = self._vols.copy()
        snap._vols.flags.writeable = False
        snap._readonly = True
        return snap

    # ── queries ──────────────────────────────────────────────────────────

    def interpolate(self, expiration, strike: float) -> float:
        """
        Bilinear interpolation between the four bracketing grid nodes.

        The time weight is elapsed seconds between the bracketing
        expirations, the strike weight is linear in strike. Vol (not total
        variance) is blended linearly in time. A query sitting exactly on
        a node uses that node on both sides of its bracket.

        Raises
        ------
        OutOfRangeError : query outside either axis (no extrapolation)
        DataGapError : one of the corners has no solved vol
        """
        if isinstance(expiration, datetime):
            when = as_utc(expiration)
        else:
            when = expiry_instant(expiration)

        instants = self.expirations
        strikes = [ticks_to_strike(t) for t in self._strike_ticks]

        e1, e2 = self._bracket(instants, when, "expiration")
        s1, s2 = self._bracket(strikes, strike, "strike")

        v11 = self._vols[e1, s1]
        v12 = self._vols[e1, s2]
        v21 = self._vols[e2, s1]
        v22 = self._vols[e2, s2]
        if np.isnan([v11, v12, v21, v22]).any():
            raise DataGapError(
                f"missing vol around expiration={when:%Y-%m-%d} strike={strike}"
            )

        span = (instants[e2] - instants[e1]).total_seconds()
        t = (when - instants[e1]).total_seconds() / span if span else 0.0
        width = strikes[s2] - strikes[s1]
        u = (strike - strikes[s1]) / width if width else 0.0

        return float(
            (1 - t) * (1 - u) * v11
            + (1 - t) * u * v12
            + t * (1 - u) * v21
            + t * u * v22
        )

    @staticmethod
    def _bracket(axis, value, name: str) -> Tuple[int, int]:
        """Index of the last node <= value and the first node > value."""
        i = bisect_right(axis, value)
        if i == 0 or (i == len(axis) and axis[-1] != value):
            raise OutOfRangeError(
                f"{name} {value} outside surface range [{axis[0]}, {axis[-1]}]"
            )
        lo = i - 1
        if axis[lo] == value or i == len(axis):
            return lo, lo
        return lo, i

    def slice_by_expiration(self, expiration) -> Tuple[np.ndarray, np.ndarray]:
        """(strikes, vols) for one expiry row. Exact date match only."""
        d = to_expiry_date(expiration)
        if d not in self._exp_index:
            raise NotFoundError(f"expiration {d} not in surface")
        return self.strikes, self._vols[self._exp_index[d], :].copy()

    def slice_by_strike(self, strike: float,
                        now: Optional[datetime] = None) -> Tuple[np.ndarray, np.ndarray]:
        """
        (times_to_expiration, vols) for one strike column.

        Times are years from the wall clock at call time (or ``now``), not
        from the surface timestamp; expired rows give 0.
        """
        ticks = strike_to_ticks(strike)
        if ticks not in self._strike_index:
            raise NotFoundError(f"strike {strike} not in surface")
        now = utcnow() if now is None else as_utc(now)
        times = np.array([max(year_fraction(now, e), 0.0) for e in self.expirations])
        return times, self._vols[:, self._strike_index[ticks]].copy()

    # ── projections ──────────────────────────────────────────────────────

    def to_update(self, low_confidence: bool = False) -> SurfaceUpdate:
        return SurfaceUpdate(
            strikes=tuple(float(s) for s in self.strikes),
            expiries=self.expiry_dates,
            sigma=tuple(float(v) for v in self._vols.ravel()),
            symbol=self.symbol,
            version=self.version,
            timestamp=self.timestamp,
            low_confidence=low_confidence,
        )

    def to_frame(self) -> pd.DataFrame:
        """Long-format [expiry, strike, iv] table of the populated cells."""
        rows, cols = np.nonzero(~np.isnan(self._vols))
        return pd.DataFrame({
            "expiry": [self._expiries[i] for i in rows],
            "strike": self.strikes[cols],
            "iv": self._vols[rows, cols],
        })


def ensure_surface(current: Optional[VolatilitySurface], symbol: str,
                   ivs) -> Tuple[Optional[VolatilitySurface], bool]:
    """Create the surface on first data, merge into it afterwards."""
    ivs = list(ivs)
    if current is None:
        if not ivs:
            return None, False
        return VolatilitySurface(symbol, ivs), True
    return current, current.update(ivs)


def compute_surface_statistics(surface: VolatilitySurface, spot: float = None) -> dict:
    """
    Summary statistics for the vol surface.

    Useful for quick diagnostics and the CLI's per-publish line.

    Parameters
    ----------
    surface : the surface (or a snapshot)
    spot : spot price; enables the ATM and skew fields

    Returns
    -------
    dict with keys:
        n_points      : populated cells
        n_expiries    : expiration axis length
        n_strikes     : strike axis length
        coverage      : populated / total cells
        strike_range  : (min, max)
        iv_range      : (min, max) over populated cells
        atm_iv_mean   : average IV for strikes within 1% of spot
        skew_proxy    : IV at ~90% moneyness minus IV at ~110%
    """
    df = surface.to_frame()
    n_exp, n_strikes = surface.shape
    strikes = surface.strikes

    stats = {
        "n_points": len(df),
        "n_expiries": n_exp,
        "n_strikes": n_strikes,
        "coverage": len(df) / (n_exp * n_strikes) if n_exp * n_strikes else 0.0,
        "strike_range": (float(strikes.min()), float(strikes.max())) if n_strikes else (np.nan, np.nan),
        "iv_range": (df["iv"].min(), df["iv"].max()) if len(df) else (np.nan, np.nan),
        "atm_iv_mean": np.nan,
        "skew_proxy": np.nan,
    }

    if spot is not None and len(df):
        moneyness = df["strike"] / spot
        atm_mask = moneyness.between(0.99, 1.01)
        if atm_mask.any():
            stats["atm_iv_mean"] = df.loc[atm_mask, "iv"].mean()

        put_side = df[moneyness.between(0.89, 0.91)]
        call_side = df[moneyness.between(1.09, 1.11)]
        if len(put_side) > 0 and len(call_side) > 0:
            stats["skew_proxy"] = put_side["iv"].mean() - call_side["iv"].mean()

    return stats
