# src/lockvault/runtime/state_invariants.py
from __future__ import annotations

"""Ledger invariants.

The engine maintains these incrementally; this module recomputes them from
scratch so tests and the service can audit a ledger after the fact:

  - total_staked equals the principal of all unclaimed positions
  - reserved_rewards equals the full-term reward of all unclaimed positions
  - total_positions equals the number of positions ever created
  - total_users equals the number of distinct stakers
  - no counter is negative
  - refund_activation_time stays 0 until refund mode is on
  - claimed positions carry a reward no larger than their full-term reward
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from lockvault.ledger.rewards import full_reward
from lockvault.ledger.state import LedgerState

Json = Dict[str, Any]


@dataclass
class InvariantError(RuntimeError):
    code: str
    reason: str
    details: Json

    def __str__(self) -> str:
        return f"{self.code}:{self.reason}:{self.details}"


def find_violations(st: LedgerState, *, custody_balance: Optional[int] = None) -> List[Json]:
    out: List[Json] = []

    unclaimed_principal = 0
    unclaimed_reserved = 0
    count = 0
    for account, seq in st.positions.items():
        for idx, pos in enumerate(seq):
            count += 1
            plan = st.plans.plan_for(pos.plan_id)
            full = full_reward(pos.principal, plan.reward_rate_bps)
            if pos.claimed:
                if pos.reward_paid is None or not (0 <= pos.reward_paid <= full):
                    out.append({"check": "claimed_reward", "account": account, "index": idx, "reward_paid": pos.reward_paid})
            else:
                unclaimed_principal += pos.principal
                unclaimed_reserved += full

    if st.total_staked != unclaimed_principal:
        out.append({"check": "total_staked", "have": st.total_staked, "want": unclaimed_principal})
    if st.reserved_rewards != unclaimed_reserved:
        out.append({"check": "reserved_rewards", "have": st.reserved_rewards, "want": unclaimed_reserved})
    if st.total_positions != count:
        out.append({"check": "total_positions", "have": st.total_positions, "want": count})
    if st.total_users != len(st.stakers):
        out.append({"check": "total_users", "have": st.total_users, "want": len(st.stakers)})

    for name in ("total_staked", "reward_pool", "reserved_rewards", "total_users", "total_positions"):
        if int(getattr(st, name)) < 0:
            out.append({"check": "non_negative", "field": name, "have": int(getattr(st, name))})

    if not st.refund_mode and st.refund_activation_time != 0:
        out.append(
            {
                "check": "refund_activation_time",
                "refund_mode": st.refund_mode,
                "refund_activation_time": st.refund_activation_time,
            }
        )

    if custody_balance is not None:
        owed = st.total_staked + st.reserved_rewards + st.reward_pool
        if int(custody_balance) != owed:
            out.append({"check": "custody_balance", "have": int(custody_balance), "want": owed})

    return out


def ensure_invariants(st: LedgerState, *, custody_balance: Optional[int] = None) -> LedgerState:
    """Raise InvariantError on the first audit failure; returns `st` otherwise."""
    bad = find_violations(st, custody_balance=custody_balance)
    if bad:
        raise InvariantError("invariant_violation", str(bad[0].get("check")), {"violations": bad})
    return st


__all__ = ["InvariantError", "ensure_invariants", "find_violations"]
