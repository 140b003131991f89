"""
vol-surface-stream
==================
Live implied volatility surfaces from streaming option quotes.

Modules:
    black_scholes      - Pricing, greeks, implied vol inversion
    occ                - OCC option symbol encode/decode
    models             - Contracts, quotes, solved vols, published updates
    surface            - (expiration x strike) vol grid and its queries
    channels           - Bounded quote channel, lossy publish bus
    pipeline           - Quote -> vol -> grid -> debounced publish
    sources            - Static, vendor-frame and synthetic quote sources
    svi                - SVI-inspired synthetic chains
    density            - Breeden-Litzenberger risk-neutral density
    errors             - Exception hierarchy
    log                - loguru sink setup
    config             - Global constants and defaults
"""

__version__ = "0.3.0"
__author__ = "Leo"
