from __future__ import annotations

from dataclasses import dataclass, field
import copy
from typing import Any, Dict, List, Optional, Set, Tuple

from lockvault.ledger.plans import PlanRegistry
from lockvault.ledger.types import LedgerStats, Phase, Plan, Position


Json = Dict[str, Any]


@dataclass(frozen=True, slots=True)
class Checkpoint:
    counters: Tuple[Any, ...]
    positions: Dict[str, Optional[List[Position]]]
    stakers: Dict[str, bool]


@dataclass
class LedgerState:
    """
    The single shared mutable ledger.

    Only StakingEngine mutates it, always under the engine lock. Positions are
    an append-only arena keyed by account: indices are stable, never reused,
    and claimed positions stay in place with their flag set.
    """

    plans: PlanRegistry
    positions: Dict[str, List[Position]] = field(default_factory=dict)
    stakers: Set[str] = field(default_factory=set)

    total_staked: int = 0
    reward_pool: int = 0
    # Full-term rewards promised to unclaimed positions, moved out of reward_pool at stake time.
    reserved_rewards: int = 0
    total_users: int = 0
    total_positions: int = 0

    phase: Phase = Phase.ACTIVE
    refund_activation_time: int = 0

    @property
    def refund_mode(self) -> bool:
        return self.phase is Phase.WOUND_DOWN

    def checkpoint(self, *accounts: str) -> "Checkpoint":
        """Capture the globals plus the position lists of `accounts`.

        Enough to undo any single operation, which only touches its caller's
        positions.
        """
        return Checkpoint(
            counters=(
                self.total_staked,
                self.reward_pool,
                self.reserved_rewards,
                self.total_users,
                self.total_positions,
                self.phase,
                self.refund_activation_time,
            ),
            positions={a: [copy.copy(p) for p in self.positions[a]] if a in self.positions else None for a in accounts},
            stakers={a: a in self.stakers for a in accounts},
        )

    def rollback(self, cp: "Checkpoint") -> None:
        (
            self.total_staked,
            self.reward_pool,
            self.reserved_rewards,
            self.total_users,
            self.total_positions,
            self.phase,
            self.refund_activation_time,
        ) = cp.counters
        for account, seq in cp.positions.items():
            if seq is None:
                self.positions.pop(account, None)
            else:
                self.positions[account] = seq
        for account, was_staker in cp.stakers.items():
            if was_staker:
                self.stakers.add(account)
            else:
                self.stakers.discard(account)

    def account_positions(self, account: str) -> List[Position]:
        return self.positions.get(account, [])

    def get_position(self, account: str, index: int) -> Optional[Position]:
        seq = self.positions.get(account)
        if not seq or isinstance(index, bool) or not isinstance(index, int):
            return None
        if 0 <= index < len(seq):
            return seq[index]
        return None

    def append_position(self, account: str, position: Position) -> int:
        seq = self.positions.setdefault(account, [])
        seq.append(position)
        return len(seq) - 1

    def stats(self) -> LedgerStats:
        return LedgerStats(
            total_staked=self.total_staked,
            reward_pool=self.reward_pool,
            total_users=self.total_users,
            total_positions=self.total_positions,
            reserved_rewards=self.reserved_rewards,
            refund_mode=self.refund_mode,
            refund_activation_time=self.refund_activation_time,
        )

    def globals_json(self) -> Json:
        return {
            "plans": self.plans.to_json(),
            "total_staked": int(self.total_staked),
            "reward_pool": int(self.reward_pool),
            "reserved_rewards": int(self.reserved_rewards),
            "total_users": int(self.total_users),
            "total_positions": int(self.total_positions),
            "phase": self.phase.value,
            "refund_activation_time": int(self.refund_activation_time),
        }

    def to_json(self) -> Json:
        out = self.globals_json()
        out["stakers"] = sorted(self.stakers)
        out["positions"] = {k: [p.to_json() for p in v] for k, v in sorted(self.positions.items())}
        return out

    @classmethod
    def from_json(cls, j: Json) -> "LedgerState":
        plans = PlanRegistry(Plan.from_json(p) for p in j.get("plans", []))
        positions_raw = j.get("positions") if isinstance(j.get("positions"), dict) else {}
        return cls(
            plans=plans,
            positions={str(k): [Position.from_json(p) for p in v] for k, v in positions_raw.items()},
            stakers={str(s) for s in j.get("stakers", [])},
            total_staked=int(j.get("total_staked", 0)),
            reward_pool=int(j.get("reward_pool", 0)),
            reserved_rewards=int(j.get("reserved_rewards", 0)),
            total_users=int(j.get("total_users", 0)),
            total_positions=int(j.get("total_positions", 0)),
            phase=Phase(str(j.get("phase", Phase.ACTIVE.value))),
            refund_activation_time=int(j.get("refund_activation_time", 0)),
        )
