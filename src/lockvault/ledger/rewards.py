# src/lockvault/ledger/rewards.py
from __future__ import annotations

"""Reward math.

All amounts are integers; every division floors. Two payout rules exist,
selected by the ledger phase at claim time (not at stake time):

  normal:  reward = floor(principal * rate_bps / 10_000), once the lock ends
  refund:  reward = floor(full * elapsed / duration),
           elapsed = clamp(refund_activation_time - start_time, 0, duration)
"""

from dataclasses import dataclass
from typing import Optional

from lockvault.ledger.constants import BPS_DENOMINATOR
from lockvault.ledger.types import Plan, Position
from lockvault.runtime.errors import (
    INVALID_PLAN_DURATION,
    LOCK_NOT_ENDED,
    REFUND_BEFORE_STAKE,
    LedgerError,
)


def full_reward(amount: int, rate_bps: int) -> int:
    """Full-term reward promised for `amount` at `rate_bps`."""
    return (int(amount) * int(rate_bps)) // BPS_DENOMINATOR


def lock_end(position: Position, plan: Plan) -> int:
    return int(position.start_time) + int(plan.lock_duration)


def refund_elapsed(*, start_time: int, refund_activation_time: int, duration: int) -> int:
    elapsed = int(refund_activation_time) - int(start_time)
    return max(0, min(elapsed, int(duration)))


def prorated_reward(full: int, elapsed: int, duration: int) -> int:
    if int(duration) <= 0:
        raise LedgerError(INVALID_PLAN_DURATION, "zero_lock_duration", {"duration": duration})
    return (int(full) * int(elapsed)) // int(duration)


@dataclass(frozen=True, slots=True)
class Payout:
    principal: int
    reward: int
    full_reward: int

    @property
    def total(self) -> int:
        return self.principal + self.reward

    @property
    def released(self) -> int:
        """Part of the reservation not consumed by this claim."""
        return self.full_reward - self.reward


def compute_payout(
    position: Position,
    plan: Plan,
    *,
    now: int,
    refund_mode: bool,
    refund_activation_time: Optional[int],
) -> Payout:
    """Compute a claim payout or raise the claim's time-condition error."""
    full = full_reward(position.principal, plan.reward_rate_bps)

    if not refund_mode:
        end = lock_end(position, plan)
        if int(now) < end:
            raise LedgerError(LOCK_NOT_ENDED, "lock_not_ended", {"now": int(now), "unlock_time": end})
        return Payout(principal=int(position.principal), reward=full, full_reward=full)

    activated = int(refund_activation_time or 0)
    if not activated > int(position.start_time):
        raise LedgerError(
            REFUND_BEFORE_STAKE,
            "refund_activated_before_stake",
            {"refund_activation_time": activated, "start_time": int(position.start_time)},
        )
    duration = int(plan.lock_duration)
    if duration <= 0:
        raise LedgerError(INVALID_PLAN_DURATION, "zero_lock_duration", plan.to_json())
    elapsed = refund_elapsed(start_time=position.start_time, refund_activation_time=activated, duration=duration)
    reward = prorated_reward(full, elapsed, duration)
    return Payout(principal=int(position.principal), reward=reward, full_reward=full)
