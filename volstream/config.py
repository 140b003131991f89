"""
Global configuration for the live vol surface pipeline.

Keeps all magic numbers in one place. Everything here is a default:
PipelineConfig picks these up, and main.py overrides them from CLI args.
"""

import os


# ── market parameters ────────────────────────────────────────────────────
TICKER = "SPY"
RISK_FREE_RATE = 0.043          # annualized; approximate fed funds rate
DIVIDEND_YIELD = 0.0            # folded into the rate before solving
SPOT = 602.0                    # synthetic source spot level


# ── implied vol solver ───────────────────────────────────────────────────
IV_INITIAL_GUESS = 0.30         # Newton-Raphson starting sigma
IV_MAX_ITER = 100
IV_PRICE_TOL = 1e-8             # |model - target| convergence threshold
IV_MIN_VEGA = 1e-8              # below this the Newton step is meaningless
IV_SIGMA_FLOOR = 1e-4           # clamp for non-positive Newton updates


# ── IV sanity band (applied by the pipeline, not the solver) ────────────
MAX_IV = 5.0                    # anything above 500% is noise
MIN_IV = 1e-4


# ── surface grid ─────────────────────────────────────────────────────────
STRIKE_TICKS_PER_UNIT = 100     # strikes quantized to integer cents
EXPIRY_HOUR_UTC = 16            # contracts expire 16:00:00 UTC
CHANGE_TOLERANCE = 1e-6         # smaller moves are not an effective change
SECONDS_PER_YEAR = 365.0 * 24 * 3600


# ── pipeline ─────────────────────────────────────────────────────────────
DEBOUNCE_INTERVAL = 0.5         # seconds between published snapshots
QUOTE_CHANNEL_CAPACITY = 1024
PUBLISH_CAPACITY = 32           # per-subscriber buffered snapshots
ACQUISITION_TIMEOUT = 30.0      # seconds for the initial chain pull
SEND_TIMEOUT = None             # blocking-tier enqueue timeout (None = wait)


# ── SVI synthetic source ─────────────────────────────────────────────────
# tuned to produce realistic SPY-like surfaces
MONEYNESS_BOUND = 0.25          # |log(K/S)| < 0.25 keeps ~75%-125% of spot
SVI_ATM_BASE = 0.18             # base ATM vol level
SVI_ATM_DECAY = 0.03            # how much ATM vol drops with maturity
SVI_ATM_LAMBDA = 1.5            # decay rate parameter
SVI_SKEW_BASE = -0.04           # long-run skew coefficient
SVI_SKEW_SHORT = -0.12          # additional skew at short maturities
SVI_SKEW_LAMBDA = 0.8           # skew decay rate
SVI_SMILE_BASE = 0.10           # long-run smile/curvature coefficient
SVI_SMILE_SHORT = 0.25          # additional curvature at short maturities
SVI_SMILE_LAMBDA = 1.0          # curvature decay rate
SVI_NOISE_STD = 0.002           # micro-noise std for realism
SVI_EXPIRY_DAYS = (7, 14, 30, 60, 91, 182, 365)
SVI_STRIKE_STEP = 5.0
SVI_HALF_SPREAD = 0.005         # synthetic bid/ask half-width, fraction of mid
SVI_MIN_PRICE = 0.05            # synthetic contracts priced below this are not listed
SVI_SPOT_STEP_STD = 0.0002     # per-batch relative spot move for the synthetic stream
SVI_BATCH_SIZE = 16            # re-quoted contracts per synthetic batch
SYNTHETIC_TICK = 0.01           # seconds between synthetic quote batches


# ── logging ──────────────────────────────────────────────────────────────
LOG_LEVEL = os.environ.get("VOLSTREAM_LOG_LEVEL", "INFO")
LOG_FORMAT = (
    "<green>{time:HH:mm:ss.SSS}</green> | <level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan> - <level>{message}</level>"
)


# ── random seed ──────────────────────────────────────────────────────────
SEED = 42  # reproducibility for synthetic generation
