"""
Exception types.

Per-quote failures (InvalidInputError, NonConvergenceError,
SymbolParseError) are caught by the pipeline and the quote is dropped.
Query failures (OutOfRangeError, DataGapError, NotFoundError) go back to
whoever asked. AcquisitionTimeout and NoUsableQuotesError end a run.
"""


class VolSurfaceError(Exception):
    """Base class for everything raised by volstream."""


class InvalidInputError(VolSurfaceError, ValueError):
    """Inputs outside the domain where a price or vol is defined."""


class NonConvergenceError(VolSurfaceError, ArithmeticError):
    """Newton-Raphson stalled on a flat vega or ran out of iterations."""


class SymbolParseError(VolSurfaceError, ValueError):
    """String is not a well-formed OCC-style option symbol."""


class OutOfRangeError(VolSurfaceError):
    """Interpolation query falls outside the surface axes."""


class DataGapError(VolSurfaceError):
    """An interpolation corner has no solved volatility."""


class NotFoundError(VolSurfaceError, LookupError):
    """Exact-match slice requested for an axis value the surface lacks."""


class AcquisitionTimeout(VolSurfaceError, TimeoutError):
    """The initial chain pull did not finish within its deadline."""


class NoUsableQuotesError(VolSurfaceError):
    """The source produced nothing a surface could be built from."""


class ChannelClosed(VolSurfaceError):
    """The other end of a channel has gone away."""
