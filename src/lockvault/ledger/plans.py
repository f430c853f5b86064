# src/lockvault/ledger/plans.py
from __future__ import annotations

import json
from typing import Any, Iterable, List, Sequence, Tuple

from lockvault.ledger.constants import BPS_DENOMINATOR, DEFAULT_PLANS, PLAN_COUNT, SECONDS_PER_DAY
from lockvault.ledger.types import Plan
from lockvault.runtime.errors import INVALID_PLAN, INVALID_PLAN_CONFIG, LedgerError


class PlanRegistry:
    """Fixed table of PLAN_COUNT plans, populated once and read-only thereafter."""

    __slots__ = ("_plans",)

    def __init__(self, plans: Iterable[Plan]) -> None:
        table = tuple(plans)
        if len(table) != PLAN_COUNT:
            raise LedgerError(INVALID_PLAN_CONFIG, "wrong_plan_count", {"have": len(table), "want": PLAN_COUNT})
        for i, p in enumerate(table):
            if p.plan_id != i:
                raise LedgerError(INVALID_PLAN_CONFIG, "plan_id_mismatch", {"index": i, "plan_id": p.plan_id})
            if not (0 <= p.reward_rate_bps <= BPS_DENOMINATOR):
                raise LedgerError(INVALID_PLAN_CONFIG, "rate_out_of_range", p.to_json())
            if p.lock_duration < 0:
                raise LedgerError(INVALID_PLAN_CONFIG, "negative_duration", p.to_json())
        self._plans: Tuple[Plan, ...] = table

    @classmethod
    def from_pairs(cls, pairs: Sequence[Sequence[int]]) -> "PlanRegistry":
        """Build from (lock_duration_seconds, reward_rate_bps) pairs."""
        return cls(Plan(plan_id=i, lock_duration=int(d), reward_rate_bps=int(r)) for i, (d, r) in enumerate(pairs))

    @classmethod
    def default(cls) -> "PlanRegistry":
        return cls.from_pairs(DEFAULT_PLANS)

    def plan_for(self, plan_id: Any) -> Plan:
        if isinstance(plan_id, bool) or not isinstance(plan_id, int):
            raise LedgerError(INVALID_PLAN, "plan_id_not_int", {"plan_id": repr(plan_id)})
        if not (0 <= plan_id < len(self._plans)):
            raise LedgerError(INVALID_PLAN, "plan_id_out_of_range", {"plan_id": plan_id})
        return self._plans[plan_id]

    def all_plans(self) -> List[Plan]:
        return list(self._plans)

    def to_json(self) -> List[dict]:
        return [p.to_json() for p in self._plans]

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, PlanRegistry):
            return NotImplemented
        return self._plans == other._plans

    def __len__(self) -> int:
        return len(self._plans)


def parse_plans_json(raw: str) -> PlanRegistry:
    """Parse the LOCKVAULT_PLANS value.

    Accepted shapes (list of exactly PLAN_COUNT entries):
      [{"lock_duration": 2592000, "reward_rate_bps": 500}, ...]
      [{"lock_days": 30, "reward_rate_bps": 500}, ...]
      [[2592000, 500], ...]
    """
    try:
        data = json.loads(raw)
    except ValueError as e:
        raise LedgerError(INVALID_PLAN_CONFIG, "plans_not_json", {"error": str(e)}) from e
    if not isinstance(data, list):
        raise LedgerError(INVALID_PLAN_CONFIG, "plans_not_list", {"type": type(data).__name__})

    pairs: List[Tuple[int, int]] = []
    for rec in data:
        if isinstance(rec, (list, tuple)) and len(rec) == 2:
            pairs.append((int(rec[0]), int(rec[1])))
        elif isinstance(rec, dict):
            if "lock_duration" in rec:
                dur = int(rec["lock_duration"])
            elif "lock_days" in rec:
                dur = int(rec["lock_days"]) * SECONDS_PER_DAY
            else:
                raise LedgerError(INVALID_PLAN_CONFIG, "plan_missing_duration", {"plan": rec})
            pairs.append((dur, int(rec.get("reward_rate_bps", -1))))
        else:
            raise LedgerError(INVALID_PLAN_CONFIG, "plan_bad_shape", {"plan": repr(rec)})
    return PlanRegistry.from_pairs(pairs)
