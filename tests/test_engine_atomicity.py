from __future__ import annotations

import random
import threading

import pytest

from conftest import CUSTODY, OWNER, make_ledger
from lockvault.ledger.plans import PlanRegistry
from lockvault.ledger.state import LedgerState
from lockvault.runtime import metrics
from lockvault.runtime.collaborators import InMemoryAssetBank, ManualClock, OwnerPauseGate
from lockvault.runtime.engine import StakingEngine
from lockvault.runtime.errors import LedgerError
from lockvault.runtime.state_invariants import InvariantError, ensure_invariants, find_violations


class _FlakyBank(InMemoryAssetBank):
    """Bank whose outgoing transfers can be switched off."""

    fail_out = False

    def transfer_out(self, to: str, amount: int) -> bool:
        if self.fail_out:
            return False
        return super().transfer_out(to, amount)


class _ReentrantBank(InMemoryAssetBank):
    """Bank that calls back into the engine while a transfer is in flight."""

    engine = None
    nested_error = None
    reenter_on_in = False

    def transfer_in(self, frm: str, amount: int) -> bool:
        if self.reenter_on_in:
            try:
                self.engine.stake(frm, 0, 1)
            except LedgerError as e:
                self.nested_error = e
                raise
        return super().transfer_in(frm, amount)

    def transfer_out(self, to: str, amount: int) -> bool:
        try:
            self.engine.claim(to, 1)
        except LedgerError as e:
            self.nested_error = e
            raise
        return super().transfer_out(to, amount)


def _engine_with(bank: InMemoryAssetBank) -> StakingEngine:
    state = LedgerState(plans=PlanRegistry.from_pairs([(10, 1000), (10, 1000), (10, 1000), (10, 1000)]))
    return StakingEngine(state=state, bank=bank, gate=OwnerPauseGate(owner=OWNER), clock=ManualClock(0))


def test_failed_payout_transfer_leaves_state_untouched() -> None:
    bank = _FlakyBank(custody=CUSTODY, balances={OWNER: 10_000, "alice": 5_000})
    e = _engine_with(bank)
    e.deposit_rewards(OWNER, 1_000)
    e.stake("alice", 0, 1_000)
    e._clock.set(10)

    before = e.state.to_json()
    bank.fail_out = True
    with pytest.raises(LedgerError) as ei:
        e.claim("alice", 0)
    assert ei.value.code == "transfer_failed"
    assert e.state.to_json() == before
    assert e.get_position("alice", 0).claimed is False

    bank.fail_out = False
    assert e.claim("alice", 0)["payout"] == 1_100


def test_failed_withdraw_transfer_restores_pool() -> None:
    bank = _FlakyBank(custody=CUSTODY, balances={OWNER: 10_000})
    e = _engine_with(bank)
    e.deposit_rewards(OWNER, 1_000)
    bank.fail_out = True
    with pytest.raises(LedgerError):
        e.withdraw_reward(OWNER, 400)
    assert e.state.reward_pool == 1_000


def test_reentrant_call_is_rejected_and_outer_rolled_back() -> None:
    bank = _ReentrantBank(custody=CUSTODY, balances={OWNER: 10_000, "alice": 5_000})
    e = _engine_with(bank)
    bank.engine = e
    e.deposit_rewards(OWNER, 1_000)
    e.stake("alice", 0, 1_000)
    e.stake("alice", 0, 1_000)
    e._clock.set(10)

    before = e.state.to_json()
    with pytest.raises(LedgerError) as ei:
        e.claim("alice", 0)
    assert ei.value.code == "reentrant_call"
    assert bank.nested_error is not None and bank.nested_error.code == "reentrant_call"
    assert e.state.to_json() == before
    assert bank.balance_of("alice") == 3_000


def test_reentrant_stake_during_transfer_in_is_rolled_back() -> None:
    bank = _ReentrantBank(custody=CUSTODY, balances={OWNER: 10_000, "alice": 5_000})
    e = _engine_with(bank)
    bank.engine = e
    e.deposit_rewards(OWNER, 1_000)

    before = e.state.to_json()
    bank.reenter_on_in = True
    with pytest.raises(LedgerError) as ei:
        e.stake("alice", 0, 1_000)
    assert ei.value.code == "reentrant_call"
    assert bank.nested_error is not None and bank.nested_error.code == "reentrant_call"
    assert e.state.to_json() == before
    assert e.get_user_positions("alice") == []
    assert bank.balance_of("alice") == 5_000
    assert bank.balance_of(CUSTODY) == 1_000

    bank.reenter_on_in = False
    assert e.stake("alice", 0, 1_000)["index"] == 0


def test_concurrent_stakes_serialize() -> None:
    lg = make_ledger(balances={OWNER: 1_000_000, **{f"u{i}": 1_000 for i in range(8)}})
    lg.engine.deposit_rewards(OWNER, 100_000)

    def _worker(i: int) -> None:
        for _ in range(25):
            lg.engine.stake(f"u{i}", 0, 10)

    threads = [threading.Thread(target=_worker, args=(i,)) for i in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    st = lg.state
    assert st.total_positions == 200
    assert st.total_users == 8
    assert st.total_staked == 2_000
    assert find_violations(st, custody_balance=lg.bank.balance_of(CUSTODY)) == []

    gauges = metrics.snapshot()["gauges"]
    assert gauges["total_staked"] == 2_000
    assert gauges["total_positions"] == 200
    assert gauges["reserved_rewards"] == st.reserved_rewards


def test_invariants_hold_after_random_mixed_operations() -> None:
    rng = random.Random(1234)
    users = ["alice", "bob", "carol", "dave"]
    lg = make_ledger(balances={OWNER: 10_000_000, **{u: 50_000 for u in users}})
    e, st, bank, clock = lg.engine, lg.state, lg.bank, lg.clock
    e.deposit_rewards(OWNER, 20_000)

    for step in range(400):
        clock.advance(rng.randint(0, 30))
        op = rng.random()
        u = rng.choice(users)
        try:
            if op < 0.45:
                e.stake(u, rng.randrange(4), rng.randint(0, 2_000))
            elif op < 0.80:
                n = len(e.get_user_positions(u))
                e.claim(u, rng.randrange(n + 1) if n else 0)
            elif op < 0.90:
                e.deposit_rewards(OWNER, rng.randint(1, 3_000))
            else:
                e.withdraw_reward(OWNER, rng.randint(1, 3_000))
        except LedgerError:
            pass
        if step == 300:
            e.activate_refund_mode(OWNER)

        ensure_invariants(st, custody_balance=bank.balance_of(CUSTODY))

    assert st.reward_pool >= 0
    assert e.solvency_report()["ok"] is True


def test_invariant_audit_detects_drift(funded) -> None:
    funded.engine.stake("alice", 0, 1_000)
    funded.state.total_staked += 1
    with pytest.raises(InvariantError) as ei:
        ensure_invariants(funded.state)
    assert ei.value.reason == "total_staked"


def test_solvency_report_flags_custody_mismatch(funded) -> None:
    e = funded.engine
    e.stake("alice", 0, 1_000)
    rep = e.solvency_report()
    assert rep["liabilities"] == 1_000 + 100 + 9_900
    assert rep["custody_balance"] == rep["liabilities"]
    assert rep["ok"] is True

    funded.bank.mint(CUSTODY, 1)
    assert e.solvency_report()["ok"] is False
