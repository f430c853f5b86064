from __future__ import annotations

import json

import pytest

from lockvault.ledger.constants import DEFAULT_PLANS, SECONDS_PER_DAY
from lockvault.ledger.plans import PlanRegistry, parse_plans_json
from lockvault.ledger.rewards import compute_payout, full_reward, prorated_reward, refund_elapsed
from lockvault.ledger.types import Plan, Position
from lockvault.runtime.errors import LedgerError


def test_default_plans_are_fixed_table_of_four() -> None:
    reg = PlanRegistry.default()
    plans = reg.all_plans()
    assert len(plans) == 4
    assert [p.plan_id for p in plans] == [0, 1, 2, 3]
    assert [(p.lock_duration, p.reward_rate_bps) for p in plans] == list(DEFAULT_PLANS)
    assert plans[0].lock_duration == 30 * SECONDS_PER_DAY


@pytest.mark.parametrize("bad", [-1, 4, 99, True, "1", None, 1.0])
def test_plan_for_rejects_out_of_range_and_non_int(bad) -> None:
    reg = PlanRegistry.default()
    with pytest.raises(LedgerError) as ei:
        reg.plan_for(bad)
    assert ei.value.code == "invalid_plan"


def test_registry_rejects_wrong_count_and_bad_rate() -> None:
    with pytest.raises(LedgerError) as ei:
        PlanRegistry.from_pairs([(10, 100)] * 3)
    assert ei.value.code == "invalid_plan_config"

    with pytest.raises(LedgerError) as ei:
        PlanRegistry.from_pairs([(10, 100), (10, 100), (10, 10_001), (10, 100)])
    assert ei.value.code == "invalid_plan_config"


def test_registry_accepts_zero_duration_at_construction() -> None:
    reg = PlanRegistry.from_pairs([(0, 100), (10, 100), (20, 100), (30, 100)])
    assert reg.plan_for(0).lock_duration == 0


def test_parse_plans_json_accepts_all_shapes() -> None:
    pairs = parse_plans_json(json.dumps([[10, 100], [20, 200], [30, 300], [40, 400]]))
    objs = parse_plans_json(
        json.dumps(
            [
                {"lock_duration": 10, "reward_rate_bps": 100},
                {"lock_duration": 20, "reward_rate_bps": 200},
                {"lock_duration": 30, "reward_rate_bps": 300},
                {"lock_duration": 40, "reward_rate_bps": 400},
            ]
        )
    )
    assert pairs == objs

    days = parse_plans_json(json.dumps([{"lock_days": d, "reward_rate_bps": 500} for d in (1, 2, 3, 4)]))
    assert days.plan_for(3).lock_duration == 4 * SECONDS_PER_DAY


@pytest.mark.parametrize("raw", ["not json", "{}", "[[1, 2]]", '[{"reward_rate_bps": 1}, 1, 2, 3]'])
def test_parse_plans_json_fails_closed(raw: str) -> None:
    with pytest.raises(LedgerError) as ei:
        parse_plans_json(raw)
    assert ei.value.code == "invalid_plan_config"


def test_full_reward_floors() -> None:
    assert full_reward(1000, 1000) == 100
    assert full_reward(999, 1000) == 99
    assert full_reward(1, 9999) == 0
    assert full_reward(10_000, 10_000) == 10_000


def test_refund_elapsed_clamps_to_duration() -> None:
    assert refund_elapsed(start_time=0, refund_activation_time=5, duration=10) == 5
    assert refund_elapsed(start_time=0, refund_activation_time=50, duration=10) == 10
    assert refund_elapsed(start_time=10, refund_activation_time=5, duration=10) == 0


def test_prorated_reward_floors_and_rejects_zero_duration() -> None:
    assert prorated_reward(100, 3, 7) == 42
    with pytest.raises(LedgerError) as ei:
        prorated_reward(100, 0, 0)
    assert ei.value.code == "invalid_plan_duration"


def test_compute_payout_normal_mode_waits_for_lock_end() -> None:
    plan = Plan(plan_id=0, lock_duration=10, reward_rate_bps=1000)
    pos = Position(principal=1000, start_time=0, plan_id=0)

    with pytest.raises(LedgerError) as ei:
        compute_payout(pos, plan, now=9, refund_mode=False, refund_activation_time=0)
    assert ei.value.code == "lock_not_ended"

    p = compute_payout(pos, plan, now=10, refund_mode=False, refund_activation_time=0)
    assert (p.principal, p.reward, p.total, p.released) == (1000, 100, 1100, 0)


def test_compute_payout_refund_mode_is_prorated() -> None:
    plan = Plan(plan_id=0, lock_duration=10, reward_rate_bps=1000)
    pos = Position(principal=1000, start_time=0, plan_id=0)

    # claim time does not matter in refund mode, only activation time
    p = compute_payout(pos, plan, now=10_000, refund_mode=True, refund_activation_time=5)
    assert (p.reward, p.total, p.released) == (50, 1050, 50)


def test_compute_payout_refund_requires_activation_after_start() -> None:
    plan = Plan(plan_id=0, lock_duration=10, reward_rate_bps=1000)
    pos = Position(principal=1000, start_time=5, plan_id=0)
    with pytest.raises(LedgerError) as ei:
        compute_payout(pos, plan, now=100, refund_mode=True, refund_activation_time=5)
    assert ei.value.code == "refund_before_stake"
