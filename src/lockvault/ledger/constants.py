# src/lockvault/ledger/constants.py
from __future__ import annotations

"""Ledger constants.

Reward rates are expressed in basis points of principal:
  10_000 bps = 100% of principal paid as reward at full term.
"""

BPS_DENOMINATOR: int = 10_000

# The plan table is fixed-size and never changes after construction.
PLAN_COUNT: int = 4

SECONDS_PER_DAY: int = 24 * 60 * 60

# (lock_duration_seconds, reward_rate_bps), indexed by plan id.
DEFAULT_PLANS = (
    (30 * SECONDS_PER_DAY, 500),
    (90 * SECONDS_PER_DAY, 1_500),
    (180 * SECONDS_PER_DAY, 3_500),
    (365 * SECONDS_PER_DAY, 8_000),
)

# Default account id holding staked principal and the reward pool.
DEFAULT_CUSTODY_ADDRESS: str = "LOCKVAULT"
