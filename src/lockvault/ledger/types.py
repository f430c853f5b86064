# src/lockvault/ledger/types.py
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

Json = Dict[str, Any]


class Phase(str, Enum):
    """Ledger lifecycle. The only allowed transition is ACTIVE -> WOUND_DOWN."""

    ACTIVE = "active"
    WOUND_DOWN = "wound_down"


@dataclass(frozen=True, slots=True)
class Plan:
    plan_id: int
    lock_duration: int  # seconds
    reward_rate_bps: int

    def to_json(self) -> Json:
        return {
            "plan_id": int(self.plan_id),
            "lock_duration": int(self.lock_duration),
            "reward_rate_bps": int(self.reward_rate_bps),
        }

    @staticmethod
    def from_json(j: Json) -> "Plan":
        return Plan(
            plan_id=int(j["plan_id"]),
            lock_duration=int(j["lock_duration"]),
            reward_rate_bps=int(j["reward_rate_bps"]),
        )


@dataclass(slots=True)
class Position:
    """One stake event.

    Mutated exactly once, by a claim, which sets `claimed`, `reward_paid`
    and `claimed_at`.
    """

    principal: int
    start_time: int
    plan_id: int
    claimed: bool = False
    reward_paid: Optional[int] = None
    claimed_at: Optional[int] = None

    def to_json(self) -> Json:
        return {
            "principal": int(self.principal),
            "start_time": int(self.start_time),
            "plan_id": int(self.plan_id),
            "claimed": bool(self.claimed),
            "reward_paid": self.reward_paid,
            "claimed_at": self.claimed_at,
        }

    @staticmethod
    def from_json(j: Json) -> "Position":
        rp = j.get("reward_paid")
        ca = j.get("claimed_at")
        return Position(
            principal=int(j["principal"]),
            start_time=int(j["start_time"]),
            plan_id=int(j["plan_id"]),
            claimed=bool(j.get("claimed", False)),
            reward_paid=None if rp is None else int(rp),
            claimed_at=None if ca is None else int(ca),
        )


@dataclass(frozen=True, slots=True)
class LedgerStats:
    total_staked: int
    reward_pool: int
    total_users: int
    total_positions: int
    reserved_rewards: int
    refund_mode: bool
    refund_activation_time: int

    def to_json(self) -> Json:
        return {
            "total_staked": self.total_staked,
            "reward_pool": self.reward_pool,
            "total_users": self.total_users,
            "total_positions": self.total_positions,
            "reserved_rewards": self.reserved_rewards,
            "refund_mode": self.refund_mode,
            "refund_activation_time": self.refund_activation_time,
        }
